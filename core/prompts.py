"""
Concierge Prompt Templates

System prompts for intent classification and for picking one candidate
out of a list when the literal resolver finds nothing.
"""

INTENTS = (
    "redownload_tv",
    "tidy_tv",
    "list_fully_watched_tv",
    "add_media",
    "add_tv",
    "add_movie",
    "download_movie_series",
    "nas_empty_recycle_bin",
    "nas_check_free_space",
    "qb_delete_unregistered",
    "qb_delete_unregistered_tv",
    "qb_delete_unregistered_movies",
    "show_largest_tv",
    "show_largest_movies",
    "show_top_rated_tv",
    "show_top_rated_movies",
    "optimize_movies",
    "optimize_tv",
    "list_tv_profiles",
    "list_movie_profiles",
    "have_media",
    "help",
    "unknown",
)

CLASSIFIER_SYSTEM_PROMPT = """
You classify chat messages sent to a home media assistant that manages
Sonarr (TV), Radarr (movies), Plex, qBittorrent and a NAS.

Reply with a single JSON object and nothing else:

{
  "intent": "<one of the intents below>",
  "entities": {
    "title": "<explicit show or movie title, or empty string>",
    "seasonNumber": <number, 0 if not stated>,
    "episodeNumber": <number, 0 if not stated>,
    "type": "tv" | "movie" | "auto"
  },
  "reference": "<the words the user used for the thing they mean>"
}

Intents:
%(intents)s

Guidance:
- redownload_tv: replace a bad or broken TV episode ("redo", "re-download").
- tidy_tv: delete the files of a watched season and stop monitoring it.
- list_fully_watched_tv: which seasons are fully watched and safe to tidy.
- add_tv / add_movie / add_media: add something new; use add_media when
  the kind is unclear.
- download_movie_series: add every movie of a franchise or collection
  ("get all the mission impossible movies").
- nas_empty_recycle_bin: free up space, empty or clear the NAS recycle bin.
- nas_check_free_space: how full the NAS is, free or remaining space.
- qb_delete_unregistered(_tv/_movies): remove torrents the tracker no
  longer recognises, optionally for TV or movies only.
- show_largest_* / show_top_rated_*: rankings of the library.
- optimize_movies / optimize_tv: shrink large items by moving them to a
  smaller quality profile.
- list_tv_profiles / list_movie_profiles: show Sonarr or Radarr quality
  profiles.
- have_media: whether something is already in the library.
- help: what the assistant can do.
- unknown: anything else.

Entity rules:
- title is only filled when the user names the show or movie outright.
- type is "tv" for shows or series, "movie" for films, else "auto".
- reference is never empty. Keep the user's own phrasing even when it is
  vague ("the one from last night", "latest housewives"). When a clear
  title is given, reference may simply repeat it.

Examples:
"redownload the block season 3 episode 12" ->
{"intent":"redownload_tv","entities":{"title":"the block","seasonNumber":3,"episodeNumber":12,"type":"tv"},"reference":"the block season 3 episode 12"}
"redo the latest housewives" ->
{"intent":"redownload_tv","entities":{"title":"","seasonNumber":0,"episodeNumber":0,"type":"tv"},"reference":"latest housewives"}
"tidy up destination x season 1" ->
{"intent":"tidy_tv","entities":{"title":"destination x","seasonNumber":1,"episodeNumber":0,"type":"tv"},"reference":"destination x season 1"}
"optimize the 10 biggest movies to 1080p" ->
{"intent":"optimize_movies","entities":{"title":"","seasonNumber":0,"episodeNumber":0,"type":"movie"},"reference":"optimize the 10 biggest movies to 1080p"}
"do we have luther season 3?" ->
{"intent":"have_media","entities":{"title":"luther","seasonNumber":3,"episodeNumber":0,"type":"tv"},"reference":"luther season 3"}
""".strip() % {"intents": "\n".join(f"- {name}" for name in INTENTS)}


_RESOLVE_TEMPLATE = """
The user of a home media assistant referred to {subject} as:
"{reference}"

Candidates (JSON, one per line):
{options}

Choose the single candidate the user most likely meant. Copy its fields
exactly. If none of them fits, answer {{"best": "none"}}.

Reply with JSON only, in this shape:
{{"best": {shape}}}
or
{{"best": "none"}}
""".strip()

_PURPOSES = {
    "redownload": (
        "a TV episode they are watching and want to redownload",
        '{"title": "...", "season": N, "episode": N}',
    ),
    "tidy": (
        "a TV season they want to tidy up (delete files and unmonitor)",
        '{"title": "...", "season": N}',
    ),
}


def build_resolve_prompt(reference: str, options_json: str, purpose: str) -> str:
    """Fill the candidate-picking prompt for a purpose ("redownload", "tidy", ...)."""
    subject, shape = _PURPOSES.get(purpose, ("a title in their library", '{"title": "..."}'))
    return _RESOLVE_TEMPLATE.format(
        subject=subject, reference=reference, options=options_json, shape=shape,
    )
