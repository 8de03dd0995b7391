"""LLM abstraction layer: provider-agnostic interface for LLM interactions.

Re-exports the public API so consumers can write:
    from agent.llm import LLMAdapter, LLMResponse, ToolCall, ...

``GeminiAdapter`` is imported lazily on first attribute access.
"""

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


def __getattr__(name: str):
    if name == "GeminiAdapter":
        from .gemini_adapter import GeminiAdapter
        return GeminiAdapter
    raise AttributeError(f"module 'agent.llm' has no attribute {name!r}")
