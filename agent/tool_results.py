"""
Typed results for the analytics tools.

Every tool returns exactly one of these variants. ``to_dict()`` produces the
payload fed back to the model as the function response and stored in the
turn's tool-call log; the dispatcher uses the variant type (not dict keys)
to decide what to fold into the turn (charts, cards, image requests).
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Union


@dataclass(frozen=True)
class ToolError:
    """Unresolvable request (unknown field, no matching record, bad args)."""
    message: str

    def to_dict(self) -> dict:
        return {"status": "error", "message": self.message}


@dataclass(frozen=True)
class StatsResult:
    field: str
    count: int
    mean: float
    median: float
    std: float
    min: float
    max: float

    def to_dict(self) -> dict:
        return {"status": "success", **asdict(self)}


@dataclass(frozen=True)
class ChartPoint:
    date: str
    value: float
    label: str


@dataclass(frozen=True)
class ChartPayload:
    """Time-series chart rendered by the client.

    Attributes:
        kind: Chart type, currently always ``"metric_vs_time"``.
        metric: Resolved field plotted on the Y axis.
        title: Chart title.
        series: Points sorted ascending by date.
    """
    kind: str
    metric: str
    title: str
    series: tuple[ChartPoint, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "status": "success",
            "chart_type": self.kind,
            "metric": self.metric,
            "title": self.title,
            "data": [asdict(p) for p in self.series],
        }


@dataclass(frozen=True)
class CardPayload:
    kind: str
    record: dict

    def to_dict(self) -> dict:
        return {"status": "success", "card_type": self.kind, **self.record}


@dataclass(frozen=True)
class ImageRequest:
    """Marker asking the dispatcher to call the image-generation collaborator."""
    prompt: str

    def to_dict(self) -> dict:
        return {
            "status": "success",
            "generate_image": True,
            "prompt": self.prompt,
        }


ToolResult = Union[ToolError, StatsResult, ChartPayload, CardPayload, ImageRequest]


@dataclass(frozen=True)
class ToolInvocation:
    """One executed tool call inside a dispatch cycle. Never mutated."""
    name: str
    arguments: dict[str, Any]
    result: ToolResult
    elapsed_ms: int = 0

    @property
    def ok(self) -> bool:
        return not isinstance(self.result, ToolError)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "args": dict(self.arguments),
            "result": self.result.to_dict(),
            "elapsed_ms": self.elapsed_ms,
        }
