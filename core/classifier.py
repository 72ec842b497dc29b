"""
Concierge Intent Classifier

Sends chat text to an OpenAI chat model in JSON mode and turns the reply
into a ClassificationResult. Also serves as the delegate for the
reference resolver when literal matching finds nothing.

Usage:
    from core.classifier import IntentClassifier

    classifier = IntentClassifier(api_key, model="gpt-4o-mini")
    result = await classifier.classify("redo the latest housewives")
    result.intent            # "redownload_tv"
    result.reference         # "latest housewives"
"""

import json
import logging
from dataclasses import dataclass, field
from typing import Any

import openai

from core.prompts import CLASSIFIER_SYSTEM_PROMPT, INTENTS, build_resolve_prompt

logger = logging.getLogger("concierge.classifier")


class ClassifierError(RuntimeError):
    """The classifier is unconfigured or the model reply was unusable."""


# ---------------------------------------------------------------------------
# Data structures
# ---------------------------------------------------------------------------

@dataclass
class Entities:
    """Slots extracted from the message."""
    title: str = ""
    season_number: int = 0
    episode_number: int = 0
    media_type: str = "auto"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Entities":
        data = data or {}
        media_type = str(data.get("type") or "auto").lower()
        return cls(
            title=str(data.get("title") or "").strip(),
            season_number=_as_int(data.get("seasonNumber", data.get("season_number"))),
            episode_number=_as_int(data.get("episodeNumber", data.get("episode_number"))),
            media_type=media_type if media_type in ("tv", "movie", "auto") else "auto",
        )


@dataclass
class ClassificationResult:
    """A classified message.

    Attributes:
        intent: One of core.prompts.INTENTS ("unknown" when unsure).
        entities: Extracted title and season/episode numbers.
        reference: The user's own words for the target. Never empty when
            produced by classify().
    """
    intent: str = "unknown"
    entities: Entities = field(default_factory=Entities)
    reference: str = ""

    @classmethod
    def from_dict(cls, data: dict[str, Any], raw_text: str = "") -> "ClassificationResult":
        intent = str(data.get("intent") or "unknown")
        if intent not in INTENTS:
            logger.info("Model returned unrecognised intent %r", intent)
        entities = Entities.from_dict(data.get("entities"))
        reference = str(data.get("reference") or "").strip() or entities.title or raw_text
        return cls(intent=intent, entities=entities, reference=reference)

    def to_dict(self) -> dict[str, Any]:
        return {
            "intent": self.intent,
            "entities": {
                "title": self.entities.title,
                "seasonNumber": self.entities.season_number,
                "episodeNumber": self.entities.episode_number,
                "type": self.entities.media_type,
            },
            "reference": self.reference,
        }


def _as_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0


# ---------------------------------------------------------------------------
# IntentClassifier
# ---------------------------------------------------------------------------

class IntentClassifier:
    """OpenAI-backed classifier.

    Args:
        api_key: OpenAI API key.
        model: Chat model name.
        max_tokens: Reply budget; the JSON replies are short.
        client: Pre-built AsyncOpenAI-compatible client (tests).
    """

    def __init__(self, api_key: str, model: str = "gpt-4o-mini", max_tokens: int = 300, client=None):
        self.model = model
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._client = client

    @property
    def is_configured(self) -> bool:
        return self._client is not None or bool(self._api_key)

    def _get_client(self):
        if self._client is None:
            if not self._api_key:
                raise ClassifierError("OPENAI_API_KEY is not configured")
            self._client = openai.AsyncOpenAI(api_key=self._api_key)
        return self._client

    async def _complete_json(self, system_prompt: str, user_text: str) -> dict[str, Any]:
        client = self._get_client()
        response = await client.chat.completions.create(
            model=self.model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_text},
            ],
            max_tokens=self.max_tokens,
            response_format={"type": "json_object"},
        )
        text = (response.choices[0].message.content or "").strip()
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            logger.error("Model reply was not JSON: %s", text[:200])
            raise ClassifierError(f"Model reply was not valid JSON: {e}") from e
        if not isinstance(data, dict):
            raise ClassifierError("Model reply was not a JSON object")
        return data

    async def classify(self, text: str) -> ClassificationResult:
        data = await self._complete_json(CLASSIFIER_SYSTEM_PROMPT, text)
        result = ClassificationResult.from_dict(data, raw_text=text)
        logger.info("Classified %r as %s (reference=%r)", text[:80], result.intent, result.reference)
        return result

    async def resolve_ambiguous(
        self, reference: str, options: list[dict[str, Any]], purpose: str = "generic",
    ) -> dict[str, Any]:
        """Ask the model to pick one option. Returns {"best": {...}} or {"best": "none"}."""
        if not options:
            return {"best": "none"}
        options_json = "\n".join(json.dumps(o, ensure_ascii=False) for o in options)
        prompt = build_resolve_prompt(reference, options_json, purpose)
        data = await self._complete_json(prompt, reference)
        if "best" not in data:
            return {"best": "none"}
        return data
