"""Provider-agnostic types and abstract base class for LLM adapters.

All agent code should depend on these types, never on provider-specific SDKs.
"""

from __future__ import annotations

import base64
from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass, field
from typing import Any, Optional, Union


# ---------------------------------------------------------------------------
# Data classes
# ---------------------------------------------------------------------------

@dataclass
class ToolCall:
    """A single function/tool invocation extracted from the LLM response.

    Attributes:
        name: Tool/function name.
        args: Parsed arguments dict.
        id: Provider-assigned call ID. None for Gemini, which matches
            function responses by name.
    """
    name: str
    args: dict
    id: str | None = None


@dataclass
class UsageMetadata:
    """Normalized token counts."""
    input_tokens: int = 0
    output_tokens: int = 0
    thinking_tokens: int = 0
    cached_tokens: int = 0


@dataclass
class LLMResponse:
    """Provider-agnostic response from an LLM call.

    Attributes:
        text: Concatenated text output (excludes thinking text).
        tool_calls: Extracted function/tool calls.
        usage: Token usage for this call.
        raw: The original provider-specific response object.
    """
    text: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    usage: UsageMetadata = field(default_factory=UsageMetadata)
    raw: Any = None


@dataclass
class FunctionSchema:
    """Wraps a tool/function schema dict for type clarity."""
    name: str
    description: str
    parameters: dict


@dataclass(frozen=True)
class ImageAttachment:
    """An image the user attached to a turn (raw bytes, not base64)."""
    data: bytes
    mime_type: str = "image/png"

    @classmethod
    def from_base64(cls, data: str, mime_type: str = "image/png") -> "ImageAttachment":
        return cls(data=base64.b64decode(data, validate=True), mime_type=mime_type)

    def to_dict(self) -> dict:
        return {
            "data": base64.b64encode(self.data).decode("ascii"),
            "mime_type": self.mime_type,
        }


@dataclass(frozen=True)
class GeneratedImage:
    """Output of the image-generation collaborator."""
    data: bytes
    mime_type: str = "image/png"
    text: str = ""


# ---------------------------------------------------------------------------
# Streaming chunks
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class StructuredPart:
    """One segment of a code-execution response.

    ``type`` is one of ``text``, ``code``, ``result``, ``image``; only the
    attributes relevant to that type are set.
    """
    type: str
    text: str = ""
    code: str = ""
    language: str = ""
    outcome: str = ""
    output: str = ""
    data: Optional[bytes] = None
    mime_type: str = ""

    def to_dict(self) -> dict:
        if self.type == "text":
            return {"type": "text", "text": self.text}
        if self.type == "code":
            return {"type": "code", "code": self.code, "language": self.language}
        if self.type == "result":
            return {"type": "result", "outcome": self.outcome, "output": self.output}
        return {
            "type": "image",
            "data": base64.b64encode(self.data or b"").decode("ascii"),
            "mime_type": self.mime_type,
        }


@dataclass(frozen=True)
class TextChunk:
    text: str


@dataclass(frozen=True)
class PartsChunk:
    parts: tuple[StructuredPart, ...]


@dataclass(frozen=True)
class GroundingChunk:
    """Citation bundle from grounded generation.

    Attributes:
        chunks: ``[{"uri": ..., "title": ...}, ...]`` web sources.
        queries: Search queries the model issued.
    """
    chunks: tuple[dict, ...] = ()
    queries: tuple[str, ...] = ()

    def to_dict(self) -> dict:
        return {"chunks": list(self.chunks), "queries": list(self.queries)}


StreamChunk = Union[TextChunk, PartsChunk, GroundingChunk]


# ---------------------------------------------------------------------------
# ChatSession ABC
# ---------------------------------------------------------------------------

class ChatSession(ABC):
    """Abstract multi-turn chat session."""

    @abstractmethod
    def send(self, message) -> LLMResponse:
        """Send a user message or tool results and return the model response.

        ``message`` can be:
        - A string (user text message)
        - A list of tool-result objects (built via
          ``LLMAdapter.make_tool_result_message()``)
        - A multimodal message (built via
          ``LLMAdapter.make_multimodal_message()``)
        """


# ---------------------------------------------------------------------------
# LLMAdapter ABC
# ---------------------------------------------------------------------------

class LLMAdapter(ABC):
    """Abstract interface that every LLM provider adapter must implement."""

    @abstractmethod
    def create_chat(
        self,
        model: str,
        system_prompt: str,
        tools: list[FunctionSchema] | None = None,
        *,
        history: list[dict] | None = None,
    ) -> ChatSession:
        """Create a new multi-turn chat session.

        Args:
            model: Model identifier (e.g. ``"gemini-2.5-flash"``).
            system_prompt: System instruction for the session.
            tools: Tool/function schemas available to the model.
            history: Prior turns as ``{"role": "user"|"model", "content": str}``.
        """

    @abstractmethod
    def stream_generate(
        self,
        model: str,
        prompt: str,
        *,
        history: list[dict] | None = None,
        images: list[ImageAttachment] | None = None,
        code_execution: bool = False,
    ) -> Iterator[StreamChunk]:
        """Stream a single generation.

        With ``code_execution`` the model may run code; text deltas are
        yielded as they arrive and the structured parts once at the end.
        Without it, generation is grounded with web search and a
        ``GroundingChunk`` is yielded last when citations exist.
        """

    @abstractmethod
    def generate_image(
        self,
        model: str,
        prompt: str,
        anchor: ImageAttachment | None = None,
    ) -> GeneratedImage:
        """Generate (or edit ``anchor`` into) an image. Raises on failure."""

    @abstractmethod
    def make_tool_result_message(
        self, tool_name: str, result: dict, *, tool_call_id: str | None = None
    ) -> Any:
        """Build a provider-specific tool result object for ``ChatSession.send()``."""

    @abstractmethod
    def make_multimodal_message(
        self, text: str, images: list[ImageAttachment]
    ) -> Any:
        """Build a provider-specific message combining text and images."""

    @abstractmethod
    def is_quota_error(self, exc: Exception) -> bool:
        """Return True if ``exc`` represents a quota/rate-limit error (429)."""
