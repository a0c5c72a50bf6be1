"""Patch name extraction from game version strings."""

UNKNOWN_PATCH = "unknown"


def extract_patch(game_version: str) -> str:
    """
    Reduce a game version to its patch name.

    ``"15.24.734.7485"`` becomes ``"25.24"``: the API still reports the old
    season-15 numbering while patch notes use the year-based name.
    """
    if not game_version:
        return UNKNOWN_PATCH

    parts = game_version.split(".")
    if len(parts) < 2 or not parts[0] or not parts[1]:
        return UNKNOWN_PATCH

    major, minor = parts[0], parts[1]
    if major == "15":
        major = "25"
    return f"{major}.{minor}"
