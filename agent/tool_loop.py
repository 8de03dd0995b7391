"""
Tool-calling loop used by the json_tools and csv_tools dispatch modes.

Tool calls run sequentially: a later call may depend on what an earlier one
returned, and the protocol is strictly request/response per round.
"""

import logging
import threading
import time
from typing import Callable

from .llm import ChatSession, LLMAdapter, LLMResponse
from .logging import tagged
from .loop_guard import LoopGuard
from .tool_results import ToolError, ToolInvocation, ToolResult

logger = logging.getLogger("tubechat")


def run_tool_loop(
    chat: ChatSession,
    response: LLMResponse,
    tool_executor: Callable[[str, dict], ToolResult],
    adapter: LLMAdapter,
    agent_name: str = "Agent",
    max_total_calls: int = 10,
    cancel_event: threading.Event | None = None,
    on_invocation: Callable[[ToolInvocation], None] | None = None,
) -> tuple[LLMResponse, list[ToolInvocation]]:
    """Run a tool-calling loop on an existing chat session.

    Keeps sending tool results back to the model until it stops issuing
    function calls (or a guard limit is hit).

    Args:
        chat: An active ChatSession.
        response: The initial LLMResponse.
        tool_executor: ``(tool_name, tool_args) -> ToolResult`` callable.
        adapter: LLMAdapter instance for building tool result messages.
        agent_name: Label for log messages.
        max_total_calls: Hard cap on total tool invocations.
        cancel_event: Stops the loop before the next round when set.
        on_invocation: Called with each ToolInvocation as soon as it completes,
            so callers can fold results into the visible turn incrementally.

    Returns:
        ``(final_response, invocations)`` in execution order.
    """
    guard = LoopGuard(max_total_calls=max_total_calls)
    invocations: list[ToolInvocation] = []

    while True:
        if cancel_event and cancel_event.is_set():
            logger.debug(f"[{agent_name}] Tool loop interrupted by user")
            break

        function_calls = response.tool_calls
        if not function_calls:
            break

        stop_reason = guard.check_limit(len(function_calls))
        if stop_reason:
            logger.debug(f"[{agent_name}] Tool loop stopping: {stop_reason}")
            break

        function_responses = []
        for fc in function_calls:
            tool_name = fc.name
            tool_args = fc.args if isinstance(fc.args, dict) else (dict(fc.args) if fc.args else {})
            logger.debug(f"[{agent_name}] Tool: {tool_name}({tool_args})", extra=tagged("tool_call"))

            verdict = guard.record_tool_call(tool_name, tool_args)
            if verdict.blocked:
                payload = ToolError(verdict.warning).to_dict()
            else:
                start = time.monotonic()
                result = tool_executor(tool_name, tool_args)
                elapsed_ms = int((time.monotonic() - start) * 1000)

                invocation = ToolInvocation(
                    name=tool_name,
                    arguments=dict(tool_args),
                    result=result,
                    elapsed_ms=elapsed_ms,
                )
                invocations.append(invocation)
                if on_invocation is not None:
                    on_invocation(invocation)
                payload = result.to_dict()

                if isinstance(result, ToolError):
                    logger.warning(f"[{agent_name}] Tool error: {result.message}")
                else:
                    logger.debug(f"[{agent_name}] {tool_name} -> success ({elapsed_ms} ms)")

            function_responses.append(
                adapter.make_tool_result_message(
                    tool_name, payload, tool_call_id=getattr(fc, "id", None)
                )
            )

        guard.record_calls(len(function_calls))

        logger.debug(f"[{agent_name}] Sending {len(function_responses)} tool result(s) back...")
        response = chat.send(function_responses)

    return response, invocations
