"""Gemini adapter: wraps all google-genai SDK calls.

This is the **only** module in the project that imports ``google.genai``.
All other agent code talks to Gemini through the :class:`GeminiAdapter` and
:class:`GeminiChatSession` interfaces defined here.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from typing import Any

from google import genai
from google.genai import errors as genai_errors, types

from .base import (
    ChatSession,
    FunctionSchema,
    GeneratedImage,
    GroundingChunk,
    ImageAttachment,
    LLMAdapter,
    LLMResponse,
    PartsChunk,
    StreamChunk,
    StructuredPart,
    TextChunk,
    ToolCall,
    UsageMetadata,
)

logger = logging.getLogger("tubechat")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _build_function_declarations(
    tools: list[FunctionSchema] | None,
) -> list[types.FunctionDeclaration] | None:
    """Convert our FunctionSchema list to Gemini FunctionDeclaration list."""
    if not tools:
        return None
    return [
        types.FunctionDeclaration(
            name=t.name,
            description=t.description,
            parameters=t.parameters,
        )
        for t in tools
    ]


def _history_to_contents(history: list[dict] | None) -> list[types.Content]:
    """Convert ``{"role", "content"}`` turns to Gemini Content objects."""
    contents = []
    for turn in history or []:
        text = turn.get("content") or ""
        if not text:
            continue
        role = "model" if turn.get("role") == "model" else "user"
        contents.append(types.Content(role=role, parts=[types.Part.from_text(text=text)]))
    return contents


def _enum_value(value) -> str:
    if value is None:
        return ""
    return str(getattr(value, "value", value))


def _parse_response(raw) -> LLMResponse:
    """Parse a raw Gemini response into a provider-agnostic LLMResponse."""
    text_parts: list[str] = []
    tool_calls: list[ToolCall] = []

    candidates = getattr(raw, "candidates", None) or []
    if candidates:
        content = candidates[0].content
        if content and content.parts:
            for part in content.parts:
                if getattr(part, "thought", False):
                    continue
                if getattr(part, "function_call", None) and part.function_call.name:
                    tool_calls.append(ToolCall(
                        name=part.function_call.name.removeprefix("default_api:"),
                        args=dict(part.function_call.args) if part.function_call.args else {},
                    ))
                elif getattr(part, "text", None):
                    text_parts.append(part.text)

    meta = getattr(raw, "usage_metadata", None)
    usage = UsageMetadata(
        input_tokens=getattr(meta, "prompt_token_count", 0) or 0,
        output_tokens=getattr(meta, "candidates_token_count", 0) or 0,
        thinking_tokens=getattr(meta, "thoughts_token_count", 0) or 0,
        cached_tokens=getattr(meta, "cached_content_token_count", 0) or 0,
    ) if meta else UsageMetadata()

    return LLMResponse(
        text="\n".join(text_parts) if text_parts else "",
        tool_calls=tool_calls,
        usage=usage,
        raw=raw,
    )


def _structured_part(part) -> StructuredPart | None:
    """Map one Gemini Part to a StructuredPart (None for empty/unknown parts)."""
    if getattr(part, "thought", False):
        return None
    if getattr(part, "executable_code", None):
        ec = part.executable_code
        return StructuredPart(type="code", code=ec.code or "", language=_enum_value(ec.language))
    if getattr(part, "code_execution_result", None):
        cr = part.code_execution_result
        return StructuredPart(type="result", outcome=_enum_value(cr.outcome), output=cr.output or "")
    if getattr(part, "inline_data", None) and part.inline_data.data:
        return StructuredPart(
            type="image",
            data=part.inline_data.data,
            mime_type=part.inline_data.mime_type or "image/png",
        )
    if getattr(part, "text", None):
        return StructuredPart(type="text", text=part.text)
    return None


def _merge_text(parts: list[StructuredPart]) -> tuple[StructuredPart, ...]:
    """Join consecutive text segments (streaming splits them arbitrarily)."""
    merged: list[StructuredPart] = []
    for p in parts:
        if p.type == "text" and merged and merged[-1].type == "text":
            merged[-1] = StructuredPart(type="text", text=merged[-1].text + p.text)
        else:
            merged.append(p)
    return tuple(merged)


def _grounding(candidate) -> GroundingChunk | None:
    meta = getattr(candidate, "grounding_metadata", None)
    if meta is None:
        return None
    chunks = []
    for gc in getattr(meta, "grounding_chunks", None) or []:
        web = getattr(gc, "web", None)
        if web is not None:
            chunks.append({"uri": web.uri or "", "title": web.title or ""})
    queries = tuple(getattr(meta, "web_search_queries", None) or ())
    if not chunks and not queries:
        return None
    return GroundingChunk(chunks=tuple(chunks), queries=queries)


# ---------------------------------------------------------------------------
# GeminiChatSession
# ---------------------------------------------------------------------------

class GeminiChatSession(ChatSession):
    """Wraps a ``genai`` chat session."""

    def __init__(self, chat):
        self._chat = chat

    def send(self, message) -> LLMResponse:
        """Send a message (text, multimodal Parts or tool-result Parts) and parse the response."""
        raw = self._chat.send_message(message)
        return _parse_response(raw)


# ---------------------------------------------------------------------------
# GeminiAdapter
# ---------------------------------------------------------------------------

class GeminiAdapter(LLMAdapter):
    """Adapter that wraps all ``google-genai`` SDK calls."""

    def __init__(self, api_key: str, timeout_ms: int = 300_000):
        self._client = genai.Client(
            api_key=api_key,
            http_options=types.HttpOptions(timeout=timeout_ms),
        )

    # -- LLMAdapter interface --------------------------------------------------

    def create_chat(
        self,
        model: str,
        system_prompt: str,
        tools: list[FunctionSchema] | None = None,
        *,
        history: list[dict] | None = None,
    ) -> ChatSession:
        config_kwargs: dict[str, Any] = {"system_instruction": system_prompt}
        fds = _build_function_declarations(tools)
        if fds:
            config_kwargs["tools"] = [types.Tool(function_declarations=fds)]
            config_kwargs["automatic_function_calling"] = types.AutomaticFunctionCallingConfig(
                disable=True
            )

        create_kwargs: dict[str, Any] = {
            "model": model,
            "config": types.GenerateContentConfig(**config_kwargs),
        }
        contents = _history_to_contents(history)
        if contents:
            create_kwargs["history"] = contents

        chat = self._client.chats.create(**create_kwargs)
        return GeminiChatSession(chat)

    def stream_generate(
        self,
        model: str,
        prompt: str,
        *,
        history: list[dict] | None = None,
        images: list[ImageAttachment] | None = None,
        code_execution: bool = False,
    ) -> Iterator[StreamChunk]:
        contents = _history_to_contents(history)
        parts = [types.Part.from_bytes(data=img.data, mime_type=img.mime_type) for img in images or []]
        parts.append(types.Part.from_text(text=prompt))
        contents.append(types.Content(role="user", parts=parts))

        if code_execution:
            tool = types.Tool(code_execution=types.ToolCodeExecution())
        else:
            tool = types.Tool(google_search=types.GoogleSearch())
        config = types.GenerateContentConfig(tools=[tool])

        collected: list[StructuredPart] = []
        grounding: GroundingChunk | None = None
        stream = self._client.models.generate_content_stream(
            model=model, contents=contents, config=config,
        )
        for raw in stream:
            candidates = getattr(raw, "candidates", None) or []
            if not candidates:
                continue
            candidate = candidates[0]
            content = candidate.content
            for part in (content.parts if content and content.parts else []):
                sp = _structured_part(part)
                if sp is None:
                    continue
                collected.append(sp)
                if sp.type == "text":
                    yield TextChunk(text=sp.text)
            grounding = _grounding(candidate) or grounding

        if code_execution and any(p.type != "text" for p in collected):
            yield PartsChunk(parts=_merge_text(collected))
        if grounding is not None:
            yield grounding

    def generate_image(
        self,
        model: str,
        prompt: str,
        anchor: ImageAttachment | None = None,
    ) -> GeneratedImage:
        contents: list[Any] = [prompt]
        if anchor is not None:
            contents.append(types.Part.from_bytes(data=anchor.data, mime_type=anchor.mime_type))

        raw = self._client.models.generate_content(
            model=model,
            contents=contents,
            config=types.GenerateContentConfig(response_modalities=["TEXT", "IMAGE"]),
        )

        texts: list[str] = []
        image: StructuredPart | None = None
        for candidate in getattr(raw, "candidates", None) or []:
            content = candidate.content
            for part in (content.parts if content and content.parts else []):
                sp = _structured_part(part)
                if sp is None:
                    continue
                if sp.type == "image" and image is None:
                    image = sp
                elif sp.type == "text":
                    texts.append(sp.text)
        if image is None:
            raise RuntimeError("the model returned no image")
        return GeneratedImage(data=image.data, mime_type=image.mime_type, text="\n".join(texts))

    def make_tool_result_message(
        self, tool_name: str, result: dict, *, tool_call_id: str | None = None
    ) -> Any:
        # Gemini matches function responses by name, ignores tool_call_id.
        return types.Part.from_function_response(
            name=tool_name,
            response={"result": result},
        )

    def make_multimodal_message(
        self, text: str, images: list[ImageAttachment]
    ) -> list:
        """Build a Gemini multimodal message (images + text as Part list)."""
        parts = [types.Part.from_bytes(data=img.data, mime_type=img.mime_type) for img in images]
        parts.append(types.Part.from_text(text=text))
        return parts

    def is_quota_error(self, exc: Exception) -> bool:
        if isinstance(exc, genai_errors.ClientError):
            return getattr(exc, "code", None) == 429 or "RESOURCE_EXHAUSTED" in str(exc)
        return False
