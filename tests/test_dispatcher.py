from agent.dispatcher import ModeDispatcher
from agent.llm import GeneratedImage, GroundingChunk, ImageAttachment, LLMResponse, PartsChunk, StructuredPart
from agent.session import SessionContext, TurnRequest
from conftest import FakeAdapter, stream_of, tool_call_response


def _run(adapter, ctx, text="", images=(), display_name="", cancel_event=None):
    dispatcher = ModeDispatcher(adapter, model="test-model", image_model="test-image")
    request = TurnRequest(text=text, images=tuple(images), display_name=display_name)
    return list(dispatcher.run_turn(ctx, request, cancel_event=cancel_event))


def _turn(events):
    assert events[-1]["type"] == "turn"
    return events[-1]["turn"]


def test_generation_streams_text_and_grounding():
    adapter = FakeAdapter(stream_chunks=stream_of("Par", "is.") + [
        GroundingChunk(chunks=({"uri": "https://example.org", "title": "Example"},), queries=("capital of france",)),
    ])
    ctx = SessionContext()
    events = _run(adapter, ctx, "capital of France?")

    assert [e["type"] for e in events] == ["start", "text", "text", "grounding", "turn"]
    assert events[0]["mode"] == "generation"
    turn = _turn(events)
    assert turn["content"] == "Paris."
    assert turn["id"] == events[0]["turn_id"]
    assert turn["grounding"]["queries"] == ["capital of france"]
    assert adapter.stream_calls[0]["code_execution"] is False


def test_exactly_one_turn_recorded_and_history_appended():
    adapter = FakeAdapter(stream_chunks=stream_of("hi"))
    ctx = SessionContext()
    _run(adapter, ctx, "hello")
    _run(adapter, ctx, "again")
    assert len(ctx.turns) == 2
    assert ctx.history == [
        {"role": "user", "content": "hello"},
        {"role": "model", "content": "hi"},
        {"role": "user", "content": "again"},
        {"role": "model", "content": "hi"},
    ]
    # second call saw only the first exchange
    assert len(adapter.stream_calls[1]["history"]) == 2


def test_code_execution_parts_replace_content():
    parts = (
        StructuredPart(type="text", text="Here is the plot."),
        StructuredPart(type="code", code="print(1)", language="PYTHON"),
        StructuredPart(type="result", outcome="OUTCOME_OK", output="1\n"),
    )
    adapter = FakeAdapter(stream_chunks=stream_of("Here is") + [PartsChunk(parts)])
    ctx = SessionContext()
    events = _run(adapter, ctx, "draw a histogram with matplotlib")

    assert events[0]["mode"] == "code_execution"
    assert adapter.stream_calls[0]["code_execution"] is True
    turn = _turn(events)
    assert [p["type"] for p in turn["parts"]] == ["text", "code", "result"]
    assert ctx.history[-1] == {"role": "model", "content": "Here is the plot."}


def test_json_tools_folds_charts_and_cards(json_dataset):
    adapter = FakeAdapter(chat_responses=[
        tool_call_response("plot_metric_vs_time", metric="view_count"),
        tool_call_response("lookup_record", query="most viewed"),
        LLMResponse(text="Views peaked in January."),
    ])
    ctx = SessionContext(display_name="Ada")
    ctx.attach(json_dataset)
    events = _run(adapter, ctx, "how did views evolve?")

    assert [e["type"] for e in events] == ["start", "turn"]
    turn = _turn(events)
    assert turn["mode"] == "json_tools"
    assert turn["content"] == "Views peaked in January."
    assert len(turn["charts"]) == 1
    assert turn["cards"][0]["video_id"] == "b2"
    assert [c["name"] for c in turn["tool_calls"]] == ["plot_metric_vs_time", "lookup_record"]
    assert adapter.created[0]["tools"] == ["compute_stats", "plot_metric_vs_time", "lookup_record", "request_image"]
    first_message = adapter.chats[0].sent[0]
    assert first_message.startswith("[User: Ada]\n[JSON Data: 5 videos")


def test_csv_tools_restricted_catalog(csv_dataset):
    adapter = FakeAdapter(chat_responses=[
        tool_call_response("compute_stats", field="views"),
        LLMResponse(text="Mean views: 1166.67"),
    ])
    ctx = SessionContext()
    ctx.attach(csv_dataset)
    ctx.csv_fresh = False
    turn = _turn(_run(adapter, ctx, "average views?"))

    assert turn["mode"] == "csv_tools"
    assert adapter.created[0]["tools"] == ["compute_stats", "plot_metric_vs_time"]
    assert turn["tool_calls"][0]["result"]["mean"] == 1166.6667


def test_tool_error_is_fed_back_not_raised(json_dataset):
    adapter = FakeAdapter(chat_responses=[
        tool_call_response("compute_stats", field="dislikes"),
        LLMResponse(text="There is no dislikes field."),
    ])
    ctx = SessionContext()
    ctx.attach(json_dataset)
    turn = _turn(_run(adapter, ctx, "average dislikes"))
    assert turn["content"] == "There is no dislikes field."
    tool_message = adapter.chats[0].sent[1][0]
    assert tool_message["result"]["status"] == "error"


def test_request_image_uses_anchor_and_prepends_text(json_dataset):
    image = GeneratedImage(data=b"img", mime_type="image/png", text="A cat thumbnail.")
    adapter = FakeAdapter(
        chat_responses=[tool_call_response("request_image", prompt="cat thumbnail"), LLMResponse(text="Done.")],
        image=image,
    )
    anchor = ImageAttachment(data=b"ref", mime_type="image/jpeg")
    ctx = SessionContext()
    ctx.attach(json_dataset)
    turn = _turn(_run(adapter, ctx, "thumbnail idea for my top video", images=[anchor]))

    assert adapter.image_calls == [{"prompt": "cat thumbnail", "anchor": anchor}]
    assert turn["content"] == "A cat thumbnail.\n\nDone."
    assert len(turn["generated_images"]) == 1


def test_image_failure_in_json_tools_is_inline(json_dataset):
    adapter = FakeAdapter(
        chat_responses=[tool_call_response("request_image", prompt="x"), LLMResponse(text="Sure.")],
        image_error=RuntimeError("quota"),
    )
    ctx = SessionContext()
    ctx.attach(json_dataset)
    turn = _turn(_run(adapter, ctx, "make a banner"))
    assert turn["content"] == "Sure.\n\n(Image generation failed: quota)"


def test_direct_image_vocabulary_in_json_tools(json_dataset):
    adapter = FakeAdapter(chat_responses=[LLMResponse(text="Okay.")])
    ctx = SessionContext()
    ctx.attach(json_dataset)
    _run(adapter, ctx, "generate an image of my channel mascot")
    assert adapter.image_calls[0]["prompt"] == "generate an image of my channel mascot"


def test_image_generation_mode():
    adapter = FakeAdapter()
    turn = _turn(_run(adapter, SessionContext(), "draw a lighthouse"))
    assert turn["mode"] == "image_generation"
    assert turn["content"] == "Here is the generated image:"
    assert turn["generated_images"][0]["mime_type"] == "image/png"


def test_image_generation_failure_is_inline():
    adapter = FakeAdapter(image_error=RuntimeError("blocked"))
    turn = _turn(_run(adapter, SessionContext(), "draw a lighthouse"))
    assert turn["content"] == "Image generation failed: blocked"


def test_collaborator_error_becomes_error_message(json_dataset):
    adapter = FakeAdapter(chat_responses=[
        tool_call_response("plot_metric_vs_time", metric="view_count"),
        RuntimeError("model unavailable"),
    ])
    ctx = SessionContext()
    ctx.attach(json_dataset)
    events = _run(adapter, ctx, "views over time")

    turn = _turn(events)
    assert turn["content"] == "Error: model unavailable"
    # chart folded before the failure stays visible
    assert len(turn["charts"]) == 1
    assert len(ctx.turns) == 1


def test_stream_error_keeps_session_usable():
    adapter = FakeAdapter(stream_chunks=stream_of("par"), stream_error=ConnectionError("reset"))
    ctx = SessionContext()
    turn = _turn(_run(adapter, ctx, "hello"))
    assert turn["content"] == "Error: reset"
    assert ctx.history[-1]["content"] == "Error: reset"


def test_cancel_keeps_partial_text():
    import threading
    cancel = threading.Event()
    adapter = FakeAdapter(stream_chunks=stream_of("one ", "two"))
    ctx = SessionContext()
    dispatcher = ModeDispatcher(adapter)
    gen = dispatcher.run_turn(ctx, TurnRequest(text="count"), cancel_event=cancel)
    assert next(gen)["type"] == "start"
    assert next(gen)["text"] == "one "
    cancel.set()
    rest = list(gen)
    assert [e["type"] for e in rest] == ["turn"]
    assert rest[0]["turn"]["content"] == "one "


def test_turn_recorded_when_consumer_stops_early():
    adapter = FakeAdapter(stream_chunks=stream_of("a", "b", "c"))
    ctx = SessionContext()
    gen = ModeDispatcher(adapter).run_turn(ctx, TurnRequest(text="hi"))
    next(gen)
    next(gen)
    gen.close()
    assert len(ctx.turns) == 1
    assert ctx.turns[0].content == "a"


def test_fresh_flag_cleared_after_turn(csv_dataset):
    adapter = FakeAdapter(stream_chunks=stream_of("ok"))
    ctx = SessionContext()
    ctx.attach(csv_dataset)
    assert ctx.csv_fresh
    events = _run(adapter, ctx, "what is in this file?")
    assert events[0]["mode"] == "generation"
    assert not ctx.csv_fresh


def test_config_changes_apply_to_next_turn(json_dataset, monkeypatch):
    import config

    adapter = FakeAdapter(chat_responses=[
        tool_call_response("compute_stats", field="view_count"),
        tool_call_response("compute_stats", field="like_count"),
        LLMResponse(text="done"),
    ])
    dispatcher = ModeDispatcher(adapter)
    ctx = SessionContext()
    ctx.attach(json_dataset)

    monkeypatch.setattr(config, "MODEL", "reloaded-model")
    monkeypatch.setattr(config, "TOOL_LOOP_MAX_CALLS", 1)
    events = list(dispatcher.run_turn(ctx, TurnRequest(text="average views?")))

    assert adapter.created[0]["model"] == "reloaded-model"
    assert len(_turn(events)["tool_calls"]) == 1
