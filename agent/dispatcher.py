"""
Mode dispatcher: drives one user turn end to end.

``ModeDispatcher.run_turn`` is a generator of turn events. Callers (the SSE
route, the CLI, tests) iterate it until exhausted:

    {"type": "start", "turn_id": ..., "mode": ...}     always first
    {"type": "text", "text": ...}                      incremental delta
    {"type": "parts", "parts": [...]}                  code-execution segments
    {"type": "grounding", "grounding": {...}}          search citations
    {"type": "turn", "turn": {...}}                    final record, always last

Exactly one AssistantTurn is recorded per user turn, including when the
mode raises or the consumer stops iterating early.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator

import config

from .llm import (
    GroundingChunk,
    ImageAttachment,
    LLMAdapter,
    PartsChunk,
    TextChunk,
)
from .logging import tagged
from .modes import DispatchMode, TurnSignals, detect_signals, select_mode
from .prompts import (
    build_prompt,
    get_csv_tools_prompt,
    get_json_tools_prompt,
    user_display_text,
)
from .session import AssistantTurn, SessionContext, TurnRequest, new_turn_id
from .tool_handlers import execute_tool
from .tool_loop import run_tool_loop
from .tool_results import CardPayload, ChartPayload, ImageRequest, ToolInvocation
from .tools import CSV_TOOL_NAMES, JSON_TOOL_NAMES, get_function_schemas

logger = logging.getLogger("tubechat")


class ModeDispatcher:
    """Classifies each turn and runs the matching protocol against ``adapter``."""

    def __init__(
        self,
        adapter: LLMAdapter,
        model: str | None = None,
        image_model: str | None = None,
        max_tool_calls: int | None = None,
    ):
        self.adapter = adapter
        # None means "follow config", re-read on every turn
        self._model = model
        self._image_model = image_model
        self._max_tool_calls = max_tool_calls

    @property
    def model(self) -> str:
        return self._model or config.MODEL

    @property
    def image_model(self) -> str:
        return self._image_model or config.IMAGE_MODEL

    @property
    def max_tool_calls(self) -> int:
        return self._max_tool_calls or config.TOOL_LOOP_MAX_CALLS

    def classify(self, ctx: SessionContext, request: TurnRequest) -> tuple[TurnSignals, DispatchMode]:
        signals = detect_signals(request.text, ctx, has_images=bool(request.images))
        return signals, select_mode(signals)

    def run_turn(
        self,
        ctx: SessionContext,
        request: TurnRequest,
        cancel_event: threading.Event | None = None,
    ) -> Iterator[dict]:
        """Run one user turn, yielding turn events (see module docstring)."""
        if request.display_name:
            ctx.display_name = request.display_name

        signals, mode = self.classify(ctx, request)
        has_images = bool(request.images)
        prompt = build_prompt(ctx, request.text, has_images, signals)
        user_text = user_display_text(ctx, request.text, has_images)
        history = list(ctx.history)

        turn = AssistantTurn(turn_id=new_turn_id(), mode=mode.value)
        log_extra = {"session_id": ctx.session_id, **tagged("dispatch")}
        logger.debug(f"Turn {turn.turn_id}: mode={mode.value} signals={signals}", extra=log_extra)

        yield {"type": "start", "turn_id": turn.turn_id, "mode": mode.value}

        try:
            if mode is DispatchMode.JSON_TOOLS:
                self._run_tools(ctx, turn, prompt, history, request, JSON_TOOL_NAMES,
                                get_json_tools_prompt(ctx.json_dataset.fields),
                                ctx.json_dataset, cancel_event)
                self._resolve_images(turn, request, signals)
            elif mode is DispatchMode.CSV_TOOLS:
                self._run_tools(ctx, turn, prompt, history, request, CSV_TOOL_NAMES,
                                get_csv_tools_prompt(ctx.csv_dataset.fields),
                                ctx.csv_dataset, cancel_event)
            elif mode is DispatchMode.IMAGE_GENERATION:
                self._run_image_generation(turn, request)
            else:
                yield from self._run_streaming(
                    turn, prompt, history, request,
                    code_execution=mode is DispatchMode.CODE_EXECUTION,
                    cancel_event=cancel_event,
                )
        except Exception as e:
            logger.warning(f"Turn {turn.turn_id} failed: {e}",
                           exc_info=not self.adapter.is_quota_error(e), extra=log_extra)
            turn.content = f"Error: {e}"
            turn.parts = []
        finally:
            ctx.record_turn(user_text, turn)

        yield {"type": "turn", "turn": turn.to_dict()}

    # ---- Tool-calling modes --------------------------------------------------

    def _run_tools(self, ctx, turn, prompt, history, request, tool_names,
                   system_prompt, dataset, cancel_event) -> None:
        chat = self.adapter.create_chat(
            self.model,
            system_prompt,
            tools=get_function_schemas(tool_names),
            history=history,
        )
        if request.images:
            message = self.adapter.make_multimodal_message(prompt, list(request.images))
        else:
            message = prompt
        response = chat.send(message)

        def fold(invocation: ToolInvocation) -> None:
            turn.tool_calls.append(invocation)
            result = invocation.result
            if isinstance(result, ChartPayload):
                turn.charts.append(result)
            elif isinstance(result, CardPayload):
                turn.cards.append(result)

        final, _ = run_tool_loop(
            chat,
            response,
            lambda name, args: execute_tool(name, args, dataset),
            self.adapter,
            agent_name=f"Dispatcher:{turn.mode}",
            max_total_calls=self.max_tool_calls,
            cancel_event=cancel_event,
            on_invocation=fold,
        )
        turn.content = final.text or ""

    def _resolve_images(self, turn: AssistantTurn, request: TurnRequest,
                        signals: TurnSignals) -> None:
        """Honor a request_image result, or image vocabulary in the text."""
        image_request = next(
            (t.result for t in turn.tool_calls if isinstance(t.result, ImageRequest)),
            None,
        )
        if image_request is not None:
            prompt = image_request.prompt
        elif signals.wants_image:
            prompt = request.text
        else:
            return

        try:
            image = self.adapter.generate_image(self.image_model, prompt, _anchor(request))
        except Exception as e:
            logger.warning(f"Image generation failed: {e}")
            turn.content += f"\n\n(Image generation failed: {e})"
            return
        turn.generated_images.append(image)
        if image.text and image_request is not None:
            turn.content = f"{image.text}\n\n{turn.content}"
        elif image.text:
            turn.content = image.text

    # ---- Single-shot image generation -----------------------------------------

    def _run_image_generation(self, turn: AssistantTurn, request: TurnRequest) -> None:
        try:
            image = self.adapter.generate_image(self.image_model, request.text, _anchor(request))
        except Exception as e:
            logger.warning(f"Image generation failed: {e}")
            turn.content = f"Image generation failed: {e}"
            return
        turn.generated_images.append(image)
        turn.content = image.text or "Here is the generated image:"

    # ---- Streaming modes -------------------------------------------------------

    def _run_streaming(self, turn, prompt, history, request, *, code_execution,
                       cancel_event) -> Iterator[dict]:
        stream = self.adapter.stream_generate(
            self.model,
            prompt,
            history=history,
            images=list(request.images),
            code_execution=code_execution,
        )
        for chunk in stream:
            if cancel_event is not None and cancel_event.is_set():
                logger.debug(f"Turn {turn.turn_id}: stopped by user")
                break
            if isinstance(chunk, TextChunk):
                turn.content += chunk.text
                yield {"type": "text", "text": chunk.text}
            elif isinstance(chunk, PartsChunk):
                turn.parts = list(chunk.parts)
                turn.content = turn.saved_content
                yield {"type": "parts", "parts": [p.to_dict() for p in chunk.parts]}
            elif isinstance(chunk, GroundingChunk):
                turn.grounding = chunk.to_dict()
                yield {"type": "grounding", "grounding": turn.grounding}


def _anchor(request: TurnRequest) -> ImageAttachment | None:
    return request.images[0] if request.images else None
