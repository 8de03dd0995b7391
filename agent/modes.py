"""
Per-turn mode classification.

Each user turn runs in exactly one DispatchMode. Classification is a pair of
pure functions: ``detect_signals`` evaluates the vocabulary tables against
the turn, ``select_mode`` picks the mode in fixed priority order.

The tables are ordered ``(name, pattern)`` lists. Any of them can be replaced
from config.json, e.g.::

    {"classification": {"code_patterns": [["stats", "\\\\b(mean|median)\\\\b"]]}}
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum

import config


class DispatchMode(str, Enum):
    JSON_TOOLS = "json_tools"
    CSV_TOOLS = "csv_tools"
    CODE_EXECUTION = "code_execution"
    IMAGE_GENERATION = "image_generation"
    GENERATION = "generation"


# Statistical / plotting vocabulary that needs real executable analysis.
PLOT_PATTERNS: list[tuple[str, str]] = [
    ("plot_vocabulary",
     r"\b(regression|scatter|histogram|seaborn|matplotlib|numpy|time.?series|heatmap"
     r"|box.?plot|violin|distribut|linear.?model|logistic|forecast|trend.?line)\b"),
]

# Broader "write and run code" vocabulary. Only consulted when the session
# has no dataset; with a dataset the tool catalog answers these questions.
CODE_PATTERNS: list[tuple[str, str]] = [
    ("language", r"\b(python|pandas|dataframe|scipy|sklearn|script)\b"),
    ("run_code", r"\b(run|execute|write)\s+(some\s+|the\s+|a\s+)?code\b"),
    ("math", r"\b(calculate|compute|simulate|solve|integral|derivative|equation|factorial|prime)\b"),
    ("stats", r"\b(correlation|standard\s+deviation|variance|percentile|statistic)"),
    ("charts", r"\b(plot|chart|graph|visuali[sz]e)\b"),
]

IMAGE_PATTERNS: list[tuple[str, str]] = [
    ("image_intent",
     r"\b(generate\s+(an?\s+)?image|create\s+(an?\s+)?image|make\s+(an?\s+)?image"
     r"|draw|generate\s+picture|create\s+picture)\b"),
]

# Edit verbs count as image intent only when the turn carries an image.
EDIT_PATTERNS: list[tuple[str, str]] = [
    ("edit_verb", r"\b(generate|create|make|edit|transform|modify)\b"),
]


def _table(key: str, default: list[tuple[str, str]]) -> list[tuple[str, re.Pattern]]:
    entries = config.get(f"classification.{key}", default)
    compiled = []
    for entry in entries:
        if isinstance(entry, str):
            name, pattern = entry, entry
        else:
            name, pattern = entry[0], entry[1]
        compiled.append((name, re.compile(pattern, re.IGNORECASE)))
    return compiled


def first_match(text: str, table: list[tuple[str, re.Pattern]]) -> str | None:
    """Return the name of the first pattern in ``table`` matching ``text``."""
    for name, pattern in table:
        if pattern.search(text):
            return name
    return None


@dataclass(frozen=True)
class TurnSignals:
    """Everything mode selection looks at, computed once per turn."""
    has_json: bool = False
    has_csv: bool = False
    csv_fresh: bool = False
    wants_plot: bool = False
    wants_code: bool = False
    wants_image: bool = False


def detect_signals(text: str, ctx, has_images: bool = False) -> TurnSignals:
    """Evaluate the vocabulary tables for one turn.

    Args:
        text: The user's literal text.
        ctx: SessionContext (only the dataset flags are read).
        has_images: Whether the turn carries attached images.
    """
    text = text or ""
    has_dataset = ctx.has_json or ctx.has_csv

    wants_plot = first_match(text, _table("plot_patterns", PLOT_PATTERNS)) is not None
    wants_code = (
        not has_dataset
        and first_match(text, _table("code_patterns", CODE_PATTERNS)) is not None
    )
    wants_image = first_match(text, _table("image_patterns", IMAGE_PATTERNS)) is not None
    if not wants_image and has_images:
        wants_image = first_match(text, _table("edit_patterns", EDIT_PATTERNS)) is not None

    return TurnSignals(
        has_json=ctx.has_json,
        has_csv=ctx.has_csv,
        csv_fresh=ctx.csv_fresh,
        wants_plot=wants_plot,
        wants_code=wants_code,
        wants_image=wants_image,
    )


def select_mode(signals: TurnSignals) -> DispatchMode:
    """Pick the execution mode. First matching rule wins."""
    needs_code = signals.wants_plot or signals.wants_code
    if signals.has_json and not needs_code:
        return DispatchMode.JSON_TOOLS
    if signals.has_csv and not signals.csv_fresh and not needs_code:
        return DispatchMode.CSV_TOOLS
    if needs_code:
        return DispatchMode.CODE_EXECUTION
    if signals.wants_image:
        return DispatchMode.IMAGE_GENERATION
    return DispatchMode.GENERATION
