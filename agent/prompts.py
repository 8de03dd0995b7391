"""
System prompts and per-turn prompt assembly.

The prompt sent to the model is prefixed in a fixed order: user display-name
tag, JSON dataset synopsis, tabular dataset synopsis, then the user's text.
Tools resolve field names against the synopsis the model saw last, so the
order must not change.
"""

from datetime import datetime

from data_ops.store import build_slim_csv, summarize, to_base64

from .modes import TurnSignals

DEFAULT_IMAGE_PROMPT = "What do you see in this image?"
DEFAULT_JSON_PROMPT = "I have uploaded YouTube channel data as JSON. What can you tell me about it?"
DEFAULT_CSV_PROMPT = "Please analyze this CSV data."

_SEPARATOR = "\n\n---\n\n"

_JSON_TOOLS_PROMPT = """\
You are a YouTube channel analyst. Today is {today}.

The user has loaded channel data as a list of videos. Fields: {fields}.

Use the tools instead of guessing:
- compute_stats(field) for averages, medians, spread and ranges of a numeric field.
- plot_metric_vs_time(metric, title?) when the user asks how a metric changes over time.
- lookup_record(query) to show a specific video ("most viewed", "latest", "3rd", or part of a title).
- request_image(prompt) when the user asks for an image, thumbnail or illustration.

Field names are matched loosely ("views" finds "view_count"). If a tool
returns an error, read the available fields or titles it lists and try once
more with a better argument. Keep answers short and cite the numbers the
tools returned.
"""

_CSV_TOOLS_PROMPT = """\
You are a data analyst. Today is {today}.

The user has loaded a CSV file. Columns: {fields}.

Use compute_stats(field) for summary statistics of a numeric column and
plot_metric_vs_time(metric, title?) to chart a column against the date
column. Do not invent values; answer from the tool results.
"""


def _today() -> str:
    return datetime.now().strftime("%Y-%m-%d")


def get_json_tools_prompt(fields) -> str:
    return _JSON_TOOLS_PROMPT.format(today=_today(), fields=", ".join(fields))


def get_csv_tools_prompt(fields) -> str:
    return _CSV_TOOLS_PROMPT.format(today=_today(), fields=", ".join(fields))


def _json_prefix(ctx) -> str:
    dataset = ctx.json_dataset
    if dataset is None:
        return ""
    return (
        f"[JSON Data: {len(dataset)} videos | Fields: {', '.join(dataset.fields)}]\n\n"
        f"{summarize(dataset)}{_SEPARATOR}"
    )


def _csv_prefix(ctx, signals: TurnSignals) -> str:
    dataset = ctx.csv_dataset
    if dataset is None:
        return ""
    summary = summarize(dataset)
    if not ctx.csv_fresh:
        return f"[CSV columns: {', '.join(dataset.fields)}]\n\n{summary}{_SEPARATOR}"

    block = (
        f'[CSV File: "{dataset.name}" | {len(dataset)} rows | '
        f"Columns: {', '.join(dataset.fields)}]\n\n{summary}"
    )
    slim = build_slim_csv(dataset)
    if slim:
        block += f"\n\nFull dataset (key columns):\n```csv\n{slim}\n```"
    if signals.wants_plot:
        block += (
            "\n\nIMPORTANT: to load the full data in Python use this exact pattern:\n"
            "```python\n"
            "import pandas as pd, io, base64\n"
            f'df = pd.read_csv(io.BytesIO(base64.b64decode("{to_base64(dataset)}")))\n'
            "```"
        )
    return block + _SEPARATOR


def default_text(ctx, has_images: bool) -> str:
    """Text used when the turn carries only attachments."""
    if has_images:
        return DEFAULT_IMAGE_PROMPT
    if ctx.csv_fresh:
        return DEFAULT_CSV_PROMPT
    if ctx.json_fresh or ctx.has_json:
        return DEFAULT_JSON_PROMPT
    return DEFAULT_CSV_PROMPT


def user_display_text(ctx, text: str, has_images: bool) -> str:
    """What the user turn is recorded as in history."""
    if text:
        return text
    if has_images:
        return "(Image)"
    if ctx.csv_fresh:
        return "(CSV attached)"
    if ctx.json_fresh:
        return "(JSON attached)"
    return ""


def build_prompt(ctx, text: str, has_images: bool, signals: TurnSignals) -> str:
    """Assemble the model prompt for one turn.

    Args:
        ctx: SessionContext holding the attached datasets.
        text: The user's literal text (may be empty).
        has_images: Whether the turn carries attached images.
        signals: Classification signals for the turn.
    """
    name = ctx.display_name
    user_tag = f"[User: {name}]\n" if name else ""
    return (
        user_tag
        + _json_prefix(ctx)
        + _csv_prefix(ctx, signals)
        + (text or default_text(ctx, has_images))
    )
