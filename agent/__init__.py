"""Chat layer: mode dispatch, analytics tools and the LLM adapter.

Lazy imports keep ``import agent.<submodule>`` cheap for the API layer.
"""


def __getattr__(name: str):
    if name == "ModeDispatcher":
        from .dispatcher import ModeDispatcher
        return ModeDispatcher
    if name in ("SessionContext", "TurnRequest"):
        from .session import SessionContext, TurnRequest
        return SessionContext if name == "SessionContext" else TurnRequest
    if name in ("TOOLS", "get_tool_schemas"):
        from .tools import TOOLS, get_tool_schemas
        return TOOLS if name == "TOOLS" else get_tool_schemas
    raise AttributeError(f"module 'agent' has no attribute {name!r}")
