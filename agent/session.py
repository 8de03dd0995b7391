"""
Per-session conversation state.

A SessionContext is owned by one chat session and passed explicitly into
the dispatcher and the tool layer. Attaching a file swaps the dataset
reference; the previous Dataset object is never modified.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from data_ops.store import Dataset, DatasetKind, enrich_with_engagement
from agent.llm import GeneratedImage, ImageAttachment, StructuredPart
from agent.tool_results import CardPayload, ChartPayload, ToolInvocation


@dataclass(frozen=True)
class TurnRequest:
    """One user turn as received from the client."""
    text: str = ""
    images: tuple[ImageAttachment, ...] = ()
    display_name: str = ""


@dataclass
class AssistantTurn:
    """The single assistant record written for a user turn.

    ``turn_id`` is assigned before any tool work starts so incremental
    updates can target it.
    """
    turn_id: str
    mode: str
    content: str = ""
    charts: list[ChartPayload] = field(default_factory=list)
    cards: list[CardPayload] = field(default_factory=list)
    tool_calls: list[ToolInvocation] = field(default_factory=list)
    generated_images: list[GeneratedImage] = field(default_factory=list)
    parts: list[StructuredPart] = field(default_factory=list)
    grounding: Optional[dict] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def saved_content(self) -> str:
        """Text persisted for history: structured text parts win over streamed text."""
        if self.parts:
            return "\n".join(p.text for p in self.parts if p.type == "text")
        return self.content

    def to_dict(self) -> dict:
        out = {
            "id": self.turn_id,
            "role": "model",
            "mode": self.mode,
            "content": self.content,
            "timestamp": self.created_at.isoformat(),
        }
        if self.charts:
            out["charts"] = [c.to_dict() for c in self.charts]
        if self.cards:
            out["cards"] = [c.to_dict() for c in self.cards]
        if self.tool_calls:
            out["tool_calls"] = [t.to_dict() for t in self.tool_calls]
        if self.generated_images:
            out["generated_images"] = [
                ImageAttachment(data=img.data, mime_type=img.mime_type).to_dict()
                for img in self.generated_images
            ]
        if self.parts:
            out["parts"] = [p.to_dict() for p in self.parts]
        if self.grounding:
            out["grounding"] = self.grounding
        return out


def new_turn_id() -> str:
    return f"a-{uuid.uuid4().hex[:12]}"


class SessionContext:
    """Datasets, history and recorded turns for one chat session."""

    def __init__(self, session_id: str | None = None, display_name: str = ""):
        self.session_id = session_id or uuid.uuid4().hex[:16]
        self.display_name = display_name
        self.json_dataset: Optional[Dataset] = None
        self.csv_dataset: Optional[Dataset] = None
        # True from an upload until the next turn completes
        self.csv_fresh = False
        self.json_fresh = False
        self.history: list[dict] = []
        self.turns: list[AssistantTurn] = []

    @property
    def has_json(self) -> bool:
        return self.json_dataset is not None

    @property
    def has_csv(self) -> bool:
        return self.csv_dataset is not None

    @property
    def has_fresh_dataset(self) -> bool:
        """A file was attached since the last recorded turn."""
        return self.csv_fresh or self.json_fresh

    def attach(self, dataset: Dataset) -> Dataset:
        """Attach ``dataset``, replacing any previous dataset of the same kind.

        Tabular uploads get the derived ``engagement_rate`` column. Either
        kind is flagged fresh until the next turn is recorded. Returns the
        dataset actually stored.
        """
        if dataset.kind is DatasetKind.RECORDS:
            self.json_dataset = dataset
            self.json_fresh = True
            return dataset
        enriched = enrich_with_engagement(dataset)
        self.csv_dataset = enriched
        self.csv_fresh = True
        return enriched

    def record_turn(self, user_text: str, turn: AssistantTurn) -> None:
        self.history.append({"role": "user", "content": user_text})
        self.history.append({"role": "model", "content": turn.saved_content})
        self.turns.append(turn)
        self.csv_fresh = False
        self.json_fresh = False
