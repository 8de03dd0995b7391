import threading

from agent.llm import LLMResponse
from agent.loop_guard import LoopGuard
from agent.tool_loop import run_tool_loop
from agent.tool_results import StatsResult
from conftest import FakeAdapter, FakeChat, tool_call_response


def _stats(name, args):
    return StatsResult(field=args["field"], count=1, mean=1.0, median=1.0, std=0.0, min=1.0, max=1.0)


def test_loop_runs_until_no_tool_calls():
    chat = FakeChat([tool_call_response("compute_stats", field="b"), LLMResponse(text="done")])
    final, invocations = run_tool_loop(
        chat, tool_call_response("compute_stats", field="a"), _stats, FakeAdapter(),
    )
    assert final.text == "done"
    assert [i.arguments["field"] for i in invocations] == ["a", "b"]
    assert all(i.ok for i in invocations)


def test_duplicate_calls_are_blocked_after_free_passes():
    same = tool_call_response("compute_stats", field="a")
    chat = FakeChat([same, same, LLMResponse(text="ok")])
    executed = []

    def executor(name, args):
        executed.append(args)
        return _stats(name, args)

    _, invocations = run_tool_loop(chat, same, executor, FakeAdapter())
    assert len(executed) == 2
    assert len(invocations) == 2
    blocked_payload = chat.sent[2][0]["result"]
    assert blocked_payload["status"] == "error"
    assert blocked_payload["message"].startswith("BLOCKED:")


def test_total_call_limit_stops_loop():
    responses = [tool_call_response("compute_stats", field=str(i)) for i in range(1, 20)]
    chat = FakeChat(responses)
    _, invocations = run_tool_loop(
        chat, tool_call_response("compute_stats", field="0"), _stats, FakeAdapter(), max_total_calls=3,
    )
    assert len(invocations) == 3


def test_cancel_event_stops_before_next_round():
    cancel = threading.Event()
    cancel.set()
    chat = FakeChat([])
    _, invocations = run_tool_loop(
        chat, tool_call_response("compute_stats", field="a"), _stats, FakeAdapter(), cancel_event=cancel,
    )
    assert invocations == []
    assert chat.sent == []


def test_on_invocation_called_incrementally():
    seen = []
    chat = FakeChat([LLMResponse(text="x")])
    run_tool_loop(chat, tool_call_response("compute_stats", field="a"), _stats, FakeAdapter(),
                  on_invocation=seen.append)
    assert [i.name for i in seen] == ["compute_stats"]


def test_guard_limit_message():
    guard = LoopGuard(max_total_calls=2)
    assert guard.check_limit(2) is None
    guard.record_calls(2)
    assert "total call limit (2)" in guard.check_limit(1)
