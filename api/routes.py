"""All REST + SSE endpoints for the FastAPI backend."""

import asyncio
import binascii
import json
import logging
import os
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable

import config
from fastapi import APIRouter, HTTPException
from sse_starlette.sse import EventSourceResponse

from agent.llm import ImageAttachment
from agent.session import TurnRequest
from data_ops.store import Dataset, DatasetKind, load, summarize
from ingest import IngestionJob, IngestionPipeline
from ingest.source import CollectionSource, YouTubeSource

from .models import (
    ChannelDataRequest,
    ChatRequest,
    ConfigUpdate,
    DatasetInfo,
    DatasetUpload,
    ServerStatus,
    SessionDetail,
    SessionInfo,
)
from .session_manager import APISessionManager, SessionLimitError
from .streaming import SSEBridge, sse_payload

logger = logging.getLogger("tubechat")

router = APIRouter(prefix="/api")

# These are injected by app.py lifespan
session_manager: APISessionManager = None  # type: ignore[assignment]
_start_time: float = 0.0
_thread_pool: ThreadPoolExecutor = None  # type: ignore[assignment]

# Swapped out in tests
source_factory: Callable[[str], CollectionSource] = YouTubeSource

# session_id: alphanumeric + underscore/dot/dash
_SAFE_PATH_RE = re.compile(r"^[a-zA-Z0-9_.-]+$")


def _session_info(state) -> dict:
    return SessionInfo(
        session_id=state.session_id,
        model=state.model,
        created_at=state.created_at,
        last_active=state.last_active,
        busy=state.busy,
        display_name=state.context.display_name,
    ).model_dump(mode="json")


def _dataset_info(dataset: Dataset) -> DatasetInfo:
    return DatasetInfo(
        name=dataset.name,
        kind=dataset.kind.value,
        count=len(dataset),
        fields=list(dataset.fields),
        summary=summarize(dataset),
        truncated=dataset.truncated,
    )


def _get_session_or_404(session_id: str):
    if not _SAFE_PATH_RE.match(session_id):
        raise HTTPException(status_code=400, detail=f"Invalid session_id: {session_id!r}")
    state = session_manager.get_session(session_id)
    if state is None:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return state


def _stream_from_worker(work: Callable[[Callable[[dict], None], threading.Event], None]):
    """Run ``work(emit, cancel_event)`` on the thread pool and stream its events.

    The client disconnecting sets ``cancel_event``.
    """
    loop = asyncio.get_running_loop()
    bridge = SSEBridge(loop)
    cancel_event = threading.Event()

    def _run():
        try:
            work(bridge.callback, cancel_event)
            bridge.finish()
        except Exception as e:
            logger.warning(f"Stream worker failed: {e}", exc_info=True)
            bridge.error(str(e))

    loop.run_in_executor(_thread_pool, _run)

    async def event_generator():
        try:
            async for event in bridge.events():
                yield sse_payload(event)
        finally:
            cancel_event.set()

    return EventSourceResponse(event_generator(), sep="\n")


# ---- Status ----


@router.get("/status")
async def server_status():
    """Server health + configuration flags."""
    return ServerStatus(
        active_sessions=len(session_manager.list_sessions()),
        max_sessions=session_manager.max_sessions,
        uptime_seconds=round(time.time() - _start_time, 1),
        api_key_configured=bool(config.get_api_key()),
        youtube_key_configured=bool(config.get_youtube_api_key()),
    ).model_dump()


# ---- Sessions CRUD ----


@router.post("/sessions", status_code=201)
async def create_session():
    """Create a new chat session."""
    try:
        loop = asyncio.get_running_loop()
        state = await loop.run_in_executor(_thread_pool, session_manager.create_session)
    except SessionLimitError as e:
        raise HTTPException(status_code=429, detail=str(e))
    except RuntimeError as e:
        logger.warning(f"Could not create session: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    return _session_info(state)


@router.get("/sessions")
async def list_sessions():
    """List all active sessions."""
    return [_session_info(s) for s in session_manager.list_sessions()]


@router.get("/sessions/{session_id}")
async def get_session(session_id: str):
    """Session detail: attached datasets and recorded assistant turns."""
    state = _get_session_or_404(session_id)
    ctx = state.context
    datasets = [_dataset_info(d) for d in (ctx.json_dataset, ctx.csv_dataset) if d is not None]
    return SessionDetail(
        session_id=state.session_id,
        model=state.model,
        created_at=state.created_at,
        last_active=state.last_active,
        busy=state.busy,
        display_name=ctx.display_name,
        datasets=datasets,
        turns=[t.to_dict() for t in ctx.turns],
    ).model_dump(mode="json")


@router.delete("/sessions/{session_id}", status_code=204)
async def delete_session(session_id: str):
    """Delete a session."""
    if not session_manager.delete_session(session_id):
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")


# ---- Datasets ----


@router.post("/sessions/{session_id}/datasets", status_code=201)
async def upload_dataset(session_id: str, req: DatasetUpload):
    """Attach a CSV or JSON upload to the session, replacing one of the same kind."""
    state = _get_session_or_404(session_id)
    if state.busy:
        raise HTTPException(status_code=409, detail="Session is busy")
    state.touch()
    kind = req.kind or DatasetKind.from_filename(req.name)
    try:
        dataset = load(req.content, kind, name=req.name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"Could not parse '{req.name}': {e}")
    stored = state.context.attach(dataset)
    return _dataset_info(stored).model_dump()


# ---- Chat (SSE) ----


@router.post("/sessions/{session_id}/chat")
async def chat(session_id: str, req: ChatRequest):
    """Run one turn and stream its events.

    One turn per session at a time: a second request while busy gets 409.
    """
    state = _get_session_or_404(session_id)
    if not req.message.strip() and not req.images and not state.context.has_fresh_dataset:
        raise HTTPException(status_code=422, detail="message, images or a newly attached file required")
    try:
        images = tuple(ImageAttachment.from_base64(i.data, i.mime_type) for i in req.images)
    except (binascii.Error, ValueError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid image data: {e}")
    if not state.try_acquire():
        raise HTTPException(status_code=409, detail="Session is busy")
    state.touch()

    request = TurnRequest(
        text=req.message.strip(),
        images=images,
        display_name=req.display_name or "",
    )

    def _work(emit, cancel_event):
        try:
            for event in state.dispatcher.run_turn(state.context, request, cancel_event=cancel_event):
                emit(event)
        finally:
            state.release()
            state.touch()

    return _stream_from_worker(_work)


# ---- YouTube channel harvest (SSE) ----


@router.post("/youtube/channel-data")
async def channel_data(req: ChannelDataRequest):
    """Harvest a channel's latest videos, streaming progress events."""
    api_key = config.get_youtube_api_key()
    if not api_key:
        raise HTTPException(status_code=500, detail="YOUTUBE_API_KEY not configured on server")
    source = source_factory(api_key)
    job = IngestionJob(reference=req.reference, limit=req.limit)
    logger.info(f"Harvesting {job.reference!r} (limit={job.limit})")

    def _work(emit, cancel_event):
        pipeline = IngestionPipeline(source, cancel_event=cancel_event)
        for event in pipeline.run(job):
            emit(event)

    return _stream_from_worker(_work)


# ---- Config ----

# Never echoed back or written from a request
_SECRET_KEYS = {"api_key", "google_api_key", "youtube_api_key", "_descriptions"}


@router.get("/config")
async def get_config():
    """Get current config (no secrets)."""
    cfg = {k: v for k, v in config._load_config().items() if k not in _SECRET_KEYS}
    cfg = {k: v for k, v in cfg.items() if not k.startswith("_comment")}
    cfg["_descriptions"] = config.CONFIG_DESCRIPTIONS
    return cfg


@router.get("/config/schema")
async def get_config_schema():
    """Return setting descriptions for the UI."""
    return {"descriptions": config.CONFIG_DESCRIPTIONS}


@router.put("/config")
async def update_config(req: ConfigUpdate):
    """Merge partial config into the user config.json and reload it."""
    current = {}
    if config.CONFIG_PATH.exists():
        try:
            current = json.loads(config.CONFIG_PATH.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, OSError):
            pass

    def _merge(base, update):
        for k, v in update.items():
            if isinstance(v, dict) and isinstance(base.get(k), dict):
                _merge(base[k], v)
            else:
                base[k] = v

    _merge(current, {k: v for k, v in req.config.items() if k not in _SECRET_KEYS})

    config.CONFIG_PATH.parent.mkdir(parents=True, exist_ok=True)
    tmp = config.CONFIG_PATH.with_suffix(".tmp")
    tmp.write_text(json.dumps(current, indent=2), encoding="utf-8")
    os.replace(tmp, config.CONFIG_PATH)

    # New turns pick up changed models, limits and routing tables
    config.reload_config()
    logger.info(f"Config updated: {sorted(req.config)}")
    return {"status": "saved"}
