"""Per-item value normalization for harvested videos."""

import re

import config

_DURATION_RE = re.compile(r"PT(?:(\d+)H)?(?:(\d+)M)?(?:(\d+)S)?")

# Highest resolution first
THUMBNAIL_PREFERENCE = ("maxres", "standard", "high", "medium", "default")

# Ceiling on items per harvest; config can lower it, not raise it
HARD_LIMIT = 100


def parse_iso_duration(value) -> int:
    """``PT1H2M3S`` -> 3723. Each component is optional; unparseable -> 0."""
    if not isinstance(value, str):
        return 0
    m = _DURATION_RE.search(value)
    if not m:
        return 0
    hours, minutes, seconds = (int(g) if g else 0 for g in m.groups())
    return hours * 3600 + minutes * 60 + seconds


def parse_counter(value) -> int:
    """View/like/comment counters arrive as strings; absent or bad -> 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        n = int(str(value).strip())
    except ValueError:
        return 0
    return max(n, 0)


def best_thumbnail(thumbnails) -> str:
    if not isinstance(thumbnails, dict):
        return ""
    for key in THUMBNAIL_PREFERENCE:
        url = (thumbnails.get(key) or {}).get("url")
        if url:
            return url
    return ""


def date_prefix(timestamp) -> str:
    """``2024-03-01T12:00:00Z`` -> ``2024-03-01``."""
    if not timestamp:
        return ""
    return str(timestamp).split("T", 1)[0]


def clamp_limit(raw, default: int | None = None, maximum: int | None = None) -> int:
    """Parse a requested item count and clamp it to ``[1, maximum]``.

    Absent or unparseable input gives ``default``. Zero and negatives clamp
    to 1. ``maximum`` never exceeds ``HARD_LIMIT``.
    """
    maximum = config.INGEST_MAX_LIMIT if maximum is None else maximum
    maximum = max(1, min(maximum, HARD_LIMIT))
    default = config.INGEST_DEFAULT_LIMIT if default is None else default
    default = min(max(1, default), maximum)
    if raw is None or isinstance(raw, bool):
        return default
    try:
        n = int(str(raw).strip())
    except ValueError:
        try:
            n = int(float(str(raw).strip()))
        except (ValueError, OverflowError):
            return default
    return min(max(1, n), maximum)
