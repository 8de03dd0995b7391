from __future__ import annotations
from typing import TYPE_CHECKING

from data_ops.store import Dataset, describe_values, numeric_values, to_number
from agent.tool_results import ChartPayload, ChartPoint, StatsResult, ToolError

if TYPE_CHECKING:
    from agent.tool_handlers import ComputeStatsArgs, PlotMetricArgs

_DATE_FIELD = "release_date"
_LABEL_CHARS = 40


def _available(dataset: Dataset) -> str:
    return ", ".join(dataset.fields)


def handle_compute_stats(dataset: Dataset, args: "ComputeStatsArgs") -> StatsResult | ToolError:
    field = dataset.resolve(args.field)
    values = numeric_values(dataset, field)
    if not values:
        return ToolError(
            f'No numeric values found for field "{field}". '
            f"Available fields: {_available(dataset)}"
        )
    return StatsResult(field=field, **describe_values(values))


def handle_plot_metric_vs_time(dataset: Dataset, args: "PlotMetricArgs") -> ChartPayload | ToolError:
    metric = dataset.resolve(args.metric)
    date_field = dataset.resolve(_DATE_FIELD)
    title_field = dataset.resolve("title")
    title = args.title or f"{metric} Over Time"

    points = []
    for record in dataset.records:
        date = record.get(date_field)
        value = to_number(record.get(metric))
        if not date or value is None:
            continue
        label = str(record.get(title_field) or "")[:_LABEL_CHARS]
        points.append(ChartPoint(date=str(date), value=value, label=label))

    if not points:
        return ToolError(
            f'No data found for metric "{metric}" with release dates. '
            f"Available fields: {_available(dataset)}"
        )

    # ISO dates (YYYY-MM-DD) sort correctly as strings
    points.sort(key=lambda p: p.date)
    return ChartPayload(
        kind="metric_vs_time",
        metric=metric,
        title=title,
        series=tuple(points),
    )
