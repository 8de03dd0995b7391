"""
Tool definitions for Gemini function calling.

Each tool schema defines what the model can call and what parameters it
needs. Tools are executed by ``agent.tool_handlers.execute_tool`` against
the session's active dataset.

Tool access per dispatch mode is controlled by the name lists at the bottom
of this module.
"""

_FIELD_NOTE = (
    "Use the exact field name from the loaded data "
    "(e.g. view_count, like_count, comment_count, duration)."
)

TOOLS = [
    {
        "name": "compute_stats",
        "description": f"""Compute descriptive statistics (count, mean, median, std, min, max) for a numeric field of the loaded dataset. Use this when:
- User asks for an average, total spread, minimum or maximum
- User asks for a summary or distribution of a numeric column

{_FIELD_NOTE}""",
        "parameters": {
            "type": "object",
            "properties": {
                "field": {
                    "type": "string",
                    "description": "Numeric field name (e.g. 'view_count', 'like_count', 'duration')"
                }
            },
            "required": ["field"]
        }
    },
    {
        "name": "plot_metric_vs_time",
        "description": f"""Plot a numeric field against release date. Creates a time-series chart that is rendered in the chat. Use this when:
- User asks how a metric changed over time
- User asks for a trend of views, likes, comments or duration

{_FIELD_NOTE}""",
        "parameters": {
            "type": "object",
            "properties": {
                "metric": {
                    "type": "string",
                    "description": "Field plotted on the Y axis (e.g. 'view_count', 'like_count')"
                },
                "title": {
                    "type": "string",
                    "description": "Chart title (e.g. 'Views Over Time')"
                }
            },
            "required": ["metric"]
        }
    },
    {
        "name": "lookup_record",
        "description": """Find one video in the loaded channel data and show it as a clickable card with title and thumbnail. The user can identify the video by:
- ordinal ("play the first video", "the last one")
- metric ("most viewed", "least viewed", "most liked", "longest", "latest")
- partial title ("play the asbestos video")""",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {
                    "type": "string",
                    "description": "Ordinal ('first'...'tenth', 'last'), superlative ('most viewed'), or words from the title"
                }
            },
            "required": ["query"]
        }
    },
    {
        "name": "request_image",
        "description": """Generate an image from a text prompt, optionally anchored on an image the user attached. Use this only when the user explicitly asks to generate, create, make, draw or edit an image.""",
        "parameters": {
            "type": "object",
            "properties": {
                "prompt": {
                    "type": "string",
                    "description": "Detailed description of the image to generate, or how to modify the attached image"
                }
            },
            "required": ["prompt"]
        }
    },
]

# Tool sets per dispatch mode
JSON_TOOL_NAMES = ["compute_stats", "plot_metric_vs_time", "lookup_record", "request_image"]
CSV_TOOL_NAMES = ["compute_stats", "plot_metric_vs_time"]


def get_tool_schemas(names: list[str] | None = None) -> list[dict]:
    """Return tool schemas for LLM function calling.

    Args:
        names: Optional list of tool names to include.
            If None, returns all tools.
    """
    if names is None:
        return list(TOOLS)
    wanted = set(names)
    return [t for t in TOOLS if t["name"] in wanted]


def get_function_schemas(names: list[str] | None = None) -> "list[FunctionSchema]":
    """Return tool schemas as ``FunctionSchema`` objects ready for LLM adapters."""
    from .llm.base import FunctionSchema
    return [
        FunctionSchema(
            name=ts["name"],
            description=ts["description"],
            parameters=ts["parameters"],
        )
        for ts in get_tool_schemas(names=names)
    ]
