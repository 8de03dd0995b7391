"""
Analytics tool layer: argument models, registry and executor.

Each tool has a pydantic model for its arguments. ``execute_tool`` validates
the raw arguments the model sent, then calls the handler with the active
dataset. Handlers are pure: same dataset and arguments, same result.
"""

from __future__ import annotations
from typing import Any, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from data_ops.store import Dataset
from agent.tool_results import ToolError, ToolResult


class _ToolArgs(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, str_strip_whitespace=True)


class ComputeStatsArgs(_ToolArgs):
    field: str = Field(..., min_length=1)


class PlotMetricArgs(_ToolArgs):
    metric: str = Field(..., min_length=1)
    title: Optional[str] = None


class LookupRecordArgs(_ToolArgs):
    query: str = Field(..., min_length=1)


class RequestImageArgs(_ToolArgs):
    prompt: str = Field(..., min_length=1)


ToolHandler = Callable[[Dataset, Any], ToolResult]

from agent.tool_handlers.analytics import handle_compute_stats, handle_plot_metric_vs_time  # noqa: E402
from agent.tool_handlers.records import handle_lookup_record  # noqa: E402
from agent.tool_handlers.media import handle_request_image  # noqa: E402

# name -> (argument model, handler)
TOOL_REGISTRY: dict[str, tuple[type[_ToolArgs], ToolHandler]] = {
    "compute_stats": (ComputeStatsArgs, handle_compute_stats),
    "plot_metric_vs_time": (PlotMetricArgs, handle_plot_metric_vs_time),
    "lookup_record": (LookupRecordArgs, handle_lookup_record),
    "request_image": (RequestImageArgs, handle_request_image),
}


def _describe_validation_error(tool_name: str, exc: ValidationError) -> str:
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())) or "arguments"
        problems.append(f"{loc}: {err.get('msg', 'invalid')}")
    return f"Invalid arguments for {tool_name}: " + "; ".join(problems)


def execute_tool(name: str, arguments: dict | None, dataset: Dataset) -> ToolResult:
    """Validate ``arguments`` and run tool ``name`` against ``dataset``.

    Never raises for bad input: unknown tools and invalid arguments come
    back as ``ToolError`` so the model can correct itself.
    """
    entry = TOOL_REGISTRY.get(name)
    if entry is None:
        return ToolError(f"Unknown tool: {name}")
    args_model, handler = entry
    try:
        args = args_model.model_validate(arguments or {})
    except ValidationError as e:
        return ToolError(_describe_validation_error(name, e))
    return handler(dataset, args)
