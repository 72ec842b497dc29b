"""
Concierge Reference Resolver

Turns a fuzzy phrase ("the block us", "that cooking one") into a concrete
entity from a candidate pool. Two strategies, in order:

  1. Literal: token-overlap scoring with prefix, exact and region bonuses.
  2. Delegated: ask the classifier to pick from the serialized pool, then
     accept its answer only if it matches a pool tuple field-for-field.

Usage:
    from core.resolver import ReferenceResolver

    resolver = ReferenceResolver(delegate=classifier.resolve_ambiguous)
    res = await resolver.resolve(pool, "the block us", purpose="redownload")
    if res:
        print(res.best, res.alternates)
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable

logger = logging.getLogger("concierge.resolver")

STOPWORDS = frozenset({"the", "a", "an", "of", "and", "season"})
REGION_WORDS = frozenset({"uk", "us", "au", "nz", "ca"})
MIN_SCORE = 0.3

_NON_ALNUM = re.compile(r"[^a-z0-9 ]+")

# delegate(phrase, options, purpose) -> {"best": {...}} | {"best": "none"}
Delegate = Callable[[str, list[dict[str, Any]], str], Awaitable[dict[str, Any]]]


# ---------------------------------------------------------------------------
# Scoring
# ---------------------------------------------------------------------------

def normalize(text: str) -> str:
    """Lowercase, strip punctuation, drop stop-words, single-space join."""
    words = _NON_ALNUM.sub(" ", (text or "").lower()).split()
    return " ".join(w for w in words if w not in STOPWORDS)


def token_set(normalized: str) -> set[str]:
    return {t for t in normalized.split(" ") if len(t) > 1}


def token_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the token sets; 0 when both are empty."""
    set_a, set_b = token_set(a), token_set(b)
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def score_title(title: str, phrase: str) -> float:
    title_norm = normalize(title)
    query_norm = normalize(phrase)
    score = token_similarity(title_norm, query_norm)
    if title_norm.startswith(query_norm):
        score += 0.4
    if title_norm == query_norm:
        score += 0.5
    query_regions = {w for w in query_norm.split(" ") if w in REGION_WORDS}
    if query_regions and query_regions & set(title_norm.split(" ")):
        score += 0.5
    return score


def rank(
    pool: list[Any], phrase: str, title_of: Callable[[Any], str] | None = None,
) -> list[tuple[Any, float]]:
    """Score every candidate and return (candidate, score) pairs above
    MIN_SCORE, best first. Ties keep pool order."""
    title_of = title_of or _default_title
    scored = [(item, score_title(title_of(item), phrase)) for item in pool]
    kept = [pair for pair in scored if pair[1] > MIN_SCORE]
    kept.sort(key=lambda pair: pair[1], reverse=True)
    for item, score in kept:
        logger.debug("  %s score=%.3f", title_of(item), score)
    return kept


def _default_title(item: Any) -> str:
    if isinstance(item, dict):
        return item.get("title") or ""
    return getattr(item, "title", "") or ""


# ---------------------------------------------------------------------------
# Resolution
# ---------------------------------------------------------------------------

@dataclass
class Resolution:
    """Outcome of a successful resolve.

    Attributes:
        best: The chosen candidate (an element of the pool).
        alternates: Other literal matches, best first. Always empty for
            delegated resolutions.
        source: "literal" or "delegated".
    """
    best: Any
    alternates: list[Any] = field(default_factory=list)
    source: str = "literal"


class ReferenceResolver:
    """Maps a phrase to a pool member, literal match first.

    Args:
        delegate: Async callable used when nothing matches literally.
            Receives the phrase, the pool serialized as plain dicts and
            a purpose tag; returns {"best": {...}} or {"best": "none"}.
    """

    def __init__(self, delegate: Delegate | None = None):
        self._delegate = delegate

    async def resolve(
        self,
        pool: list[Any],
        phrase: str,
        serialize: Callable[[Any], dict[str, Any]] | None = None,
        title_of: Callable[[Any], str] | None = None,
        purpose: str = "generic",
    ) -> Resolution | None:
        """Resolve phrase against pool.

        Args:
            pool: Candidates (dicts or objects with a title).
            phrase: The user's reference text.
            serialize: Maps a candidate to the primitive tuple shown to the
                delegate and compared against its answer. Defaults to
                {"title": ...}.
            title_of: Extracts the title used for literal scoring.
            purpose: Tag passed through to the delegate prompt.
        """
        if not pool or not (phrase or "").strip():
            return None

        ranked = rank(pool, phrase, title_of)
        if ranked:
            best = ranked[0][0]
            logger.info("Resolved %r literally to %r", phrase, _default_title(best) or best)
            return Resolution(
                best=best, alternates=[item for item, _ in ranked[1:]], source="literal",
            )

        if self._delegate is None:
            return None

        serialize = serialize or (lambda item: {"title": (title_of or _default_title)(item)})
        options = [serialize(item) for item in pool]
        try:
            answer = await self._delegate(phrase, options, purpose)
        except Exception as e:
            logger.error("Delegated resolution failed for %r: %s", phrase, e)
            return None

        chosen = (answer or {}).get("best")
        if not isinstance(chosen, dict):
            return None
        for item, option in zip(pool, options):
            if all(chosen.get(key) == value for key, value in option.items()):
                logger.info("Resolved %r via delegate to %r", phrase, option)
                return Resolution(best=item, alternates=[], source="delegated")

        logger.info("Delegate answer %r matched nothing in the pool", chosen)
        return None
