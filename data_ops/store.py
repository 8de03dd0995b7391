"""
In-memory dataset store.

A Dataset holds one user upload (CSV or JSON) as an immutable, ordered
sequence of records keyed by a fixed field list. Datasets are never
mutated after load; attaching a new file replaces the session's dataset
wholesale (see agent.session.SessionContext).

Numeric statistics go through pandas so the tool layer and the prompt
synopsis agree on mean/median/std semantics.
"""

import base64
import csv
import io
import json
import logging
import math
import re
from dataclasses import dataclass
from enum import Enum
from functools import cached_property
from typing import Any, Optional

import pandas as pd

import config

logger = logging.getLogger("tubechat")

# Numeric fields reported in the synopsis and slim CSV
_SUMMARY_DIGITS = 4
_SAMPLE_TITLES = 5


class ParseFailure(ValueError):
    """Raised when an uploaded file cannot be turned into a Dataset."""


class DatasetKind(str, Enum):
    TABULAR = "tabular"
    RECORDS = "records"

    @classmethod
    def from_filename(cls, name: str) -> "DatasetKind":
        if name.lower().endswith(".json"):
            return cls.RECORDS
        return cls.TABULAR


@dataclass(frozen=True)
class Dataset:
    """A single uploaded dataset.

    Attributes:
        name: Original file name (e.g. "channel_data.json").
        kind: Tabular (CSV) or record-oriented (JSON).
        fields: Ordered, unique field names taken from the first row/record.
        records: Ordered records; every record has exactly ``fields`` as keys.
        source_text: Raw upload text, capped at ``csv.base64_char_limit``.
        truncated: True if ``source_text`` was cut at the cap.
    """

    name: str
    kind: DatasetKind
    fields: tuple
    records: tuple
    source_text: str = ""
    truncated: bool = False

    def __len__(self) -> int:
        return len(self.records)

    @cached_property
    def numeric_fields(self) -> tuple:
        """Fields where at least half the records parse as a finite number."""
        if not self.records:
            return ()
        threshold = len(self.records) * 0.5
        return tuple(
            f for f in self.fields
            if len(numeric_values(self, f)) >= threshold
        )

    def column(self, name: str) -> list:
        return [r.get(name) for r in self.records]

    def resolve(self, name: Optional[str]) -> Optional[str]:
        return resolve_field(self.fields, name)

    def sample_titles(self, n: int = _SAMPLE_TITLES) -> list[str]:
        title_field = self.resolve("title")
        if title_field not in self.fields:
            return []
        return [str(r.get(title_field) or "") for r in self.records[:n]]


# ---------------------------------------------------------------------------
# Value helpers
# ---------------------------------------------------------------------------

def to_number(value: Any) -> Optional[float]:
    """Parse a scalar as a finite float, or return None.

    Booleans, empty strings and NaN/inf are not numbers.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        num = float(value)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            num = float(text)
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(num):
        return None
    return num


def numeric_values(dataset: Dataset, field_name: str) -> list[float]:
    """All parseable numeric values of ``field_name``, in record order."""
    out = []
    for record in dataset.records:
        num = to_number(record.get(field_name))
        if num is not None:
            out.append(num)
    return out


def _norm_field(name: str) -> str:
    return re.sub(r"[\s_-]+", "", name.lower())


def resolve_field(fields, name: Optional[str]) -> Optional[str]:
    """Resolve a user/model supplied field name against ``fields``.

    Exact match first, then a case-insensitive match that ignores
    whitespace, underscores and hyphens. Falls back to ``name`` unchanged.
    """
    if not name or not fields:
        return name
    if name in fields:
        return name
    target = _norm_field(name)
    for f in fields:
        if _norm_field(f) == target:
            return f
    return name


def describe_values(values: list[float]) -> dict:
    """count/mean/median/std(population)/min/max over ``values``, rounded to 4 decimals."""
    series = pd.Series(values, dtype="float64")
    return {
        "count": int(series.count()),
        "mean": round(float(series.mean()), _SUMMARY_DIGITS),
        "median": round(float(series.median()), _SUMMARY_DIGITS),
        "std": round(float(series.std(ddof=0)), _SUMMARY_DIGITS),
        "min": round(float(series.min()), _SUMMARY_DIGITS),
        "max": round(float(series.max()), _SUMMARY_DIGITS),
    }


def _fmt(num: float) -> str:
    """Render a number like JS ``+n.toFixed(4)`` (no trailing zeros)."""
    rounded = round(num, _SUMMARY_DIGITS)
    if rounded == int(rounded):
        return str(int(rounded))
    return repr(rounded)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------

def _cap_source(text: str) -> tuple[str, bool]:
    limit = config.CSV_BASE64_CHAR_LIMIT
    if limit and len(text) > limit:
        return text[:limit], True
    return text, False


def _unique(cells: list[str]) -> tuple:
    seen: dict[str, None] = {}
    for c in cells:
        if c not in seen:
            seen[c] = None
    return tuple(seen)


def _parse_tabular(raw_text: str, name: str) -> Dataset:
    lines = [line for line in raw_text.splitlines() if line.strip()]
    if not lines:
        raise ParseFailure(f"'{name or 'upload'}' is empty")

    header = [cell.strip().strip('"') for cell in lines[0].split(",")]
    fields = _unique(header)

    records = []
    for row in csv.reader(lines[1:]):
        cells = [c.strip() for c in row]
        record = {}
        for idx, f in enumerate(header):
            if f in record:
                continue
            value = cells[idx] if idx < len(cells) else None
            record[f] = value if value != "" else None
        records.append(record)

    source, truncated = _cap_source(raw_text)
    return Dataset(
        name=name,
        kind=DatasetKind.TABULAR,
        fields=fields,
        records=tuple(records),
        source_text=source,
        truncated=truncated,
    )


def _parse_records(raw_text: str, name: str) -> Dataset:
    try:
        data = json.loads(raw_text)
    except json.JSONDecodeError as e:
        raise ParseFailure(f"'{name or 'upload'}' is not valid JSON: {e}") from e

    items = data if isinstance(data, list) else [data]
    if not items:
        raise ParseFailure(f"'{name or 'upload'}' contains no records")
    if not all(isinstance(item, dict) for item in items):
        raise ParseFailure(f"'{name or 'upload'}' must contain JSON objects")

    fields = tuple(items[0].keys())
    records = tuple({f: item.get(f) for f in fields} for item in items)

    source, truncated = _cap_source(raw_text)
    return Dataset(
        name=name,
        kind=DatasetKind.RECORDS,
        fields=fields,
        records=records,
        source_text=source,
        truncated=truncated,
    )


def load(raw_text: str, kind: DatasetKind | str, name: str = "") -> Dataset:
    """Parse an uploaded file into a Dataset.

    Args:
        raw_text: Full file contents.
        kind: ``"tabular"`` for CSV, ``"records"`` for JSON.
        name: Original file name, used in prompts and error messages.

    Raises:
        ParseFailure: If the input is empty or malformed.
    """
    kind = DatasetKind(kind)
    if raw_text is None:
        raise ParseFailure("no content")
    if kind is DatasetKind.RECORDS:
        dataset = _parse_records(raw_text, name)
    else:
        dataset = _parse_tabular(raw_text, name)
    logger.debug(
        f"[Store] Loaded '{name}' ({kind.value}): "
        f"{len(dataset.records)} records, {len(dataset.fields)} fields"
    )
    return dataset


# ---------------------------------------------------------------------------
# Derived views
# ---------------------------------------------------------------------------

def summarize(dataset: Dataset) -> str:
    """Compact natural-language synopsis used to brief the model.

    Deterministic for a given dataset: count, fields, per-numeric-field
    mean/min/max/n, and a few sample titles when a title field exists.
    """
    if not dataset.records:
        return ""
    noun = "videos" if dataset.kind is DatasetKind.RECORDS else "rows"
    heading = "JSON Data" if dataset.kind is DatasetKind.RECORDS else "CSV Data"
    lines = [
        f"**{heading}: {len(dataset.records)} {noun}**",
        f"**Fields:** {', '.join(dataset.fields)}",
        "",
    ]

    if dataset.numeric_fields:
        lines.append("**Numeric fields** (use these exact names in tool calls):")
        for f in dataset.numeric_fields:
            vals = numeric_values(dataset, f)
            mean = sum(vals) / len(vals)
            lines.append(
                f'  • "{f}": mean={_fmt(mean)}, min={_fmt(min(vals))}, '
                f"max={_fmt(max(vals))}, n={len(vals)}"
            )

    titles = dataset.sample_titles()
    if titles:
        quoted = ", ".join(f'"{t[:60]}"' for t in titles)
        more = "..." if len(dataset.records) > _SAMPLE_TITLES else ""
        lines.append(f"\n**Sample titles:** {quoted}{more}")

    return "\n".join(lines)


def enrich_with_engagement(dataset: Dataset) -> Dataset:
    """Return a copy with an ``engagement_rate`` column, when computable.

    engagement_rate = (likes + comments) / views. Needs a views column and at
    least one of likes/comments. The input dataset is left untouched.
    """
    views = _first_present(dataset, ("view_count", "views"))
    likes = _first_present(dataset, ("like_count", "likes"))
    comments = _first_present(dataset, ("comment_count", "comments"))
    if views is None or (likes is None and comments is None):
        return dataset
    if "engagement_rate" in dataset.fields:
        return dataset

    records = []
    for r in dataset.records:
        v = to_number(r.get(views))
        n_likes = to_number(r.get(likes)) if likes else None
        n_comments = to_number(r.get(comments)) if comments else None
        rate = None
        if v:
            rate = round(((n_likes or 0.0) + (n_comments or 0.0)) / v, 6)
        records.append({**r, "engagement_rate": rate})

    return Dataset(
        name=dataset.name,
        kind=dataset.kind,
        fields=dataset.fields + ("engagement_rate",),
        records=tuple(records),
        source_text=dataset.source_text,
        truncated=dataset.truncated,
    )


def _first_present(dataset: Dataset, candidates) -> Optional[str]:
    for c in candidates:
        resolved = dataset.resolve(c)
        if resolved in dataset.fields:
            return resolved
    return None


def build_slim_csv(dataset: Dataset, max_rows: Optional[int] = None) -> str:
    """Key columns (title, date, numeric fields) as CSV text for prompts."""
    max_rows = config.SLIM_CSV_MAX_ROWS if max_rows is None else max_rows
    keep = []
    for candidate in ("title", "release_date", "date"):
        resolved = dataset.resolve(candidate)
        if resolved in dataset.fields and resolved not in keep:
            keep.append(resolved)
    keep.extend(f for f in dataset.numeric_fields if f not in keep)
    if not keep:
        return ""

    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(keep)
    for r in dataset.records[:max_rows]:
        writer.writerow(["" if r.get(f) is None else r.get(f) for f in keep])
    return buf.getvalue().rstrip("\n")


def to_base64(dataset: Dataset) -> str:
    """Base64 of the (capped) upload text, for loading inside executed code."""
    return base64.b64encode(dataset.source_text.encode("utf-8")).decode("ascii")
