"""Pydantic request/response schemas for the FastAPI backend."""

from datetime import datetime
from typing import Any, Optional

from pydantic import AliasChoices, BaseModel, Field, field_validator

from ingest.normalize import clamp_limit


# ---- Requests ----

class ImagePayload(BaseModel):
    data: str = Field(..., min_length=1, description="Base64-encoded image bytes")
    mime_type: str = Field(
        default="image/png",
        validation_alias=AliasChoices("mime_type", "mimeType"),
    )


class ChatRequest(BaseModel):
    message: str = Field(default="", description="User message; may be empty with images or a freshly attached file")
    images: list[ImagePayload] = Field(default_factory=list)
    display_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("display_name", "displayName"),
    )


class DatasetUpload(BaseModel):
    name: str = Field(default="", max_length=255, description="Original file name")
    kind: Optional[str] = Field(default=None, description="'tabular' or 'records'; inferred from name when absent")
    content: str = Field(..., description="Raw file text")


class ChannelDataRequest(BaseModel):
    reference: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("reference", "url"),
        description="Channel URL, /channel/UC... link or @handle",
    )
    limit: int = Field(
        default=10,
        validation_alias=AliasChoices("limit", "maxVideos"),
    )

    @field_validator("limit", mode="before")
    @classmethod
    def _clamp(cls, value: Any) -> int:
        return clamp_limit(value)


class ConfigUpdate(BaseModel):
    config: dict[str, Any] = Field(..., description="Partial config to merge")


# ---- Responses ----

class SessionInfo(BaseModel):
    session_id: str
    model: str
    created_at: datetime
    last_active: datetime
    busy: bool = False
    display_name: str = ""


class DatasetInfo(BaseModel):
    name: str
    kind: str
    count: int
    fields: list[str]
    summary: str = ""
    truncated: bool = False


class SessionDetail(SessionInfo):
    datasets: list[DatasetInfo] = Field(default_factory=list)
    turns: list[dict] = Field(default_factory=list)


class ServerStatus(BaseModel):
    status: str = "ok"
    active_sessions: int = 0
    max_sessions: int = 20
    uptime_seconds: float = 0.0
    api_key_configured: bool = False
    youtube_key_configured: bool = False
