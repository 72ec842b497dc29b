"""
Concierge Pending States

One dataclass per confirmation flow. A conversation holds at most one of
these at a time (see core.conversation_store). Callback handlers check
the variant with isinstance before touching its fields, so a stale
button from another flow can never read the wrong shape.

Every variant records the id of the confirmation message it belongs to;
some also track a secondary picker message. message_ids() lists them so
a superseded state can clean up after itself.
"""

from dataclasses import dataclass, field
from typing import Any, ClassVar


@dataclass
class PendingState:
    """Base for all pending states."""
    mode: ClassVar[str] = ""
    message_id: int | None = None

    def message_ids(self) -> list[int]:
        return [self.message_id] if self.message_id is not None else []


# ---------------------------------------------------------------------------
# TV: redownload and tidy
# ---------------------------------------------------------------------------

@dataclass
class RedownloadPending(PendingState):
    """Explicit redownload: a series chosen from the cache plus S/E.

    Attributes:
        series_list: Cache matches offered under "Pick different show",
            as {"id", "title"} dicts.
        series: The selected series.
        season: Season number asked for.
        episode: Episode number asked for.
        episode_id: Sonarr episode id of the matched episode.
        episode_file_id: Current file id, 0 when there is none.
    """
    mode: ClassVar[str] = "redownload"
    series_list: list[dict[str, Any]] = field(default_factory=list)
    series: dict[str, Any] = field(default_factory=dict)
    season: int = 0
    episode: int = 0
    episode_id: int = 0
    episode_file_id: int = 0


@dataclass
class RedownloadResolvedPending(PendingState):
    """Redownload of an in-progress Continue Watching item."""
    mode: ClassVar[str] = "redownload_resolved"
    best: dict[str, Any] = field(default_factory=dict)
    alternates: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class TidyPending(PendingState):
    """Season tidy-up awaiting confirmation.

    confirmation_text is kept so "back" from the series picker can
    restore the original prompt without another Sonarr round-trip.
    """
    mode: ClassVar[str] = "tidy"
    series_list: list[dict[str, Any]] = field(default_factory=list)
    series: dict[str, Any] = field(default_factory=dict)
    season: int = 0
    file_ids: list[int] = field(default_factory=list)
    size_on_disk: int = 0
    confirmation_text: str = ""


# ---------------------------------------------------------------------------
# Adding media
# ---------------------------------------------------------------------------

@dataclass
class AddMediaChoosePending(PendingState):
    """Both Sonarr and Radarr matched; waiting for the user to pick a kind."""
    mode: ClassVar[str] = "add_media_choose"
    query: str = ""
    tv_results: list[dict[str, Any]] = field(default_factory=list)
    movie_results: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class AddMediaPending(PendingState):
    """Browsing lookup results one card at a time."""
    mode: ClassVar[str] = "add_media"
    kind: str = "tv"
    query: str = ""
    index: int = 0
    tv_results: list[dict[str, Any]] = field(default_factory=list)
    movie_results: list[dict[str, Any]] = field(default_factory=list)
    has_photo: bool = False

    @property
    def results(self) -> list[dict[str, Any]]:
        return self.tv_results if self.kind == "tv" else self.movie_results

    @property
    def current(self) -> dict[str, Any] | None:
        results = self.results
        if not results:
            return None
        return results[self.index % len(results)]


@dataclass
class MovieSeriesPickPending(PendingState):
    """Several TMDB collections matched; waiting for a choice."""
    mode: ClassVar[str] = "movie_series_pick"
    query: str = ""
    choices: list[dict[str, Any]] = field(default_factory=list)


@dataclass
class MovieSeriesConfirmPending(PendingState):
    """A collection with the movies still missing from Radarr."""
    mode: ClassVar[str] = "movie_series_confirm"
    collection: dict[str, Any] = field(default_factory=dict)
    existing: list[dict[str, Any]] = field(default_factory=list)
    missing: list[dict[str, Any]] = field(default_factory=list)


# ---------------------------------------------------------------------------
# Optimization
# ---------------------------------------------------------------------------

@dataclass
class OptimizePending(PendingState):
    """Optimization candidates waiting for "all" or a picked subset.

    Attributes:
        candidates: Items proposed for a profile change, largest first.
        target_profile: The quality profile they would move to.
        selected: Indexes ticked in the picker.
        picker_message_id: The separate picker message, when open.
    """
    candidates: list[dict[str, Any]] = field(default_factory=list)
    target_profile: dict[str, Any] = field(default_factory=dict)
    selected: set[int] = field(default_factory=set)
    picker_message_id: int | None = None

    def message_ids(self) -> list[int]:
        ids = super().message_ids()
        if self.picker_message_id is not None:
            ids.append(self.picker_message_id)
        return ids


@dataclass
class OptimizeMoviesPending(OptimizePending):
    mode: ClassVar[str] = "optimize_movies"


@dataclass
class OptimizeTvPending(OptimizePending):
    mode: ClassVar[str] = "optimize_tv"


# ---------------------------------------------------------------------------
# Housekeeping: NAS and torrents
# ---------------------------------------------------------------------------

@dataclass
class NasEmptyPending(PendingState):
    """Recycle-bin summary awaiting clear-all, pick or cancel."""
    mode: ClassVar[str] = "nas_empty"
    bins: list[Any] = field(default_factory=list)
    selection_message_id: int | None = None

    def message_ids(self) -> list[int]:
        ids = super().message_ids()
        if self.selection_message_id is not None:
            ids.append(self.selection_message_id)
        return ids


@dataclass
class TorrentCleanupPending(PendingState):
    """Unregistered torrents awaiting deletion."""
    mode: ClassVar[str] = "qb_unregistered"
    scope: str = "all"
    torrents: list[dict[str, Any]] = field(default_factory=list)
    total_size: int = 0
