"""
Single-record lookup for ``lookup_record``.

Resolution order: ordinal word, then superlative phrase over a numeric or
date field, then fuzzy title match. The first rule that matches decides;
an ordinal that points past the end of the collection is a miss, not a
fall-through.
"""

from __future__ import annotations
import re
from typing import TYPE_CHECKING, Optional

from data_ops.store import Dataset, to_number
from agent.tool_results import CardPayload, ToolError

if TYPE_CHECKING:
    from agent.tool_handlers import LookupRecordArgs

ORDINALS = {
    "first": 0, "second": 1, "third": 2, "fourth": 3, "fifth": 4,
    "sixth": 5, "seventh": 6, "eighth": 7, "ninth": 8, "tenth": 9,
    "last": -1,
}

# (phrases, field, descending, is_date), evaluated in order
SUPERLATIVES = [
    (("most viewed", "highest view"), "view_count", True, False),
    (("least viewed", "lowest view"), "view_count", False, False),
    (("most liked", "highest like"), "like_count", True, False),
    (("most comment", "most discussed"), "comment_count", True, False),
    (("least comment", "fewest comment"), "comment_count", False, False),
    (("longest",), "duration", True, False),
    (("shortest",), "duration", False, False),
    (("latest", "newest", "recent"), "release_date", True, True),
    (("oldest", "earliest"), "release_date", False, True),
]

_LEADING_VERB_RE = re.compile(r"^(play|open|watch|show)\s+(the\s+)?", re.IGNORECASE)
_TRAILING_VIDEO_RE = re.compile(r"\s+video$", re.IGNORECASE)

_CARD_FIELDS = (
    "title", "thumbnail", "video_url", "video_id",
    "view_count", "like_count", "release_date",
)


def _by_ordinal(query: str, records: tuple) -> tuple[bool, Optional[dict]]:
    for word, idx in ORDINALS.items():
        if word in query:
            if idx == -1:
                return True, records[-1]
            return True, records[idx] if idx < len(records) else None
    return False, None


def _by_superlative(query: str, dataset: Dataset) -> Optional[dict]:
    for phrases, field_name, descending, is_date in SUPERLATIVES:
        if not any(p in query for p in phrases):
            continue
        field = dataset.resolve(field_name)
        if is_date:
            key = lambda r: str(r.get(field) or "")  # noqa: E731
        else:
            key = lambda r: to_number(r.get(field)) or 0.0  # noqa: E731
        # sorted() is stable in both directions: ties keep original order
        return sorted(dataset.records, key=key, reverse=descending)[0]
    return None


def _by_title(query: str, dataset: Dataset) -> Optional[dict]:
    words = _TRAILING_VIDEO_RE.sub("", _LEADING_VERB_RE.sub("", query)).strip()
    if not words:
        return None
    tokens = words.split()
    title_field = dataset.resolve("title")

    best, best_score = None, 0
    for record in dataset.records:
        title = str(record.get(title_field) or "").lower()
        score = sum(1 for w in tokens if w in title)
        if score > best_score:
            best, best_score = record, score
    return best


def resolve_record(query: str, dataset: Dataset) -> Optional[dict]:
    """Return the record ``query`` refers to, or None."""
    if not dataset.records:
        return None
    q = query.lower().strip()

    matched, record = _by_ordinal(q, dataset.records)
    if matched:
        return record

    record = _by_superlative(q, dataset)
    if record is not None:
        return record

    return _by_title(q, dataset)


def handle_lookup_record(dataset: Dataset, args: "LookupRecordArgs") -> CardPayload | ToolError:
    record = resolve_record(args.query, dataset)
    if record is None:
        titles = ", ".join(dataset.sample_titles())
        return ToolError(
            f'Could not find a video matching "{args.query}". '
            f"Available titles: {titles}..."
        )
    card = {}
    for name in _CARD_FIELDS:
        resolved = dataset.resolve(name)
        card[name] = record.get(resolved)
    return CardPayload(kind="video", record=card)
