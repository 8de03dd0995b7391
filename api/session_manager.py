"""Multi-session lifecycle manager for the FastAPI backend."""

import asyncio
import threading
from datetime import datetime, timezone
from typing import Callable, Optional

import config
from agent.dispatcher import ModeDispatcher
from agent.llm import LLMAdapter
from agent.session import SessionContext


class SessionLimitError(RuntimeError):
    """Raised when creating a session would exceed ``max_sessions``."""


def default_adapter_factory() -> LLMAdapter:
    from agent.llm import GeminiAdapter
    api_key = config.get_api_key()
    if not api_key:
        raise RuntimeError("GOOGLE_API_KEY not configured on server")
    return GeminiAdapter(api_key=api_key, timeout_ms=config.LLM_TIMEOUT_MS)


class SessionState:
    """State for a single API session."""

    def __init__(self, context: SessionContext, dispatcher: ModeDispatcher):
        self.context = context
        self.dispatcher = dispatcher
        self.created_at = datetime.now(timezone.utc)
        self.last_active = self.created_at
        self._busy_lock = threading.Lock()

    @property
    def session_id(self) -> str:
        return self.context.session_id

    @property
    def model(self) -> str:
        return self.dispatcher.model

    @property
    def busy(self) -> bool:
        return self._busy_lock.locked()

    def try_acquire(self) -> bool:
        """Claim the session for one turn. False if a turn is already running."""
        return self._busy_lock.acquire(blocking=False)

    def release(self) -> None:
        if self._busy_lock.locked():
            self._busy_lock.release()

    def touch(self) -> None:
        self.last_active = datetime.now(timezone.utc)


class APISessionManager:
    """Manages multiple concurrent chat sessions, held in memory.

    Each session owns its SessionContext (datasets + history) and a
    ModeDispatcher. Sessions share the LLM adapter.
    """

    def __init__(
        self,
        max_sessions: int = 20,
        idle_timeout_seconds: float = 3600,
        adapter_factory: Callable[[], LLMAdapter] = default_adapter_factory,
    ):
        self._sessions: dict[str, SessionState] = {}
        self._lock = threading.Lock()
        self.max_sessions = max_sessions
        self.idle_timeout_seconds = idle_timeout_seconds
        self._adapter_factory = adapter_factory
        self._adapter: Optional[LLMAdapter] = None
        self._cleanup_task: Optional[asyncio.Task] = None

    def _get_adapter(self) -> LLMAdapter:
        with self._lock:
            if self._adapter is None:
                self._adapter = self._adapter_factory()
            return self._adapter

    # ---- Lifecycle ----

    def create_session(self, display_name: str = "") -> SessionState:
        """Create a new session.

        Raises:
            SessionLimitError: If the session limit is reached.
            RuntimeError: If the LLM adapter cannot be created (e.g. no API key).
        """
        with self._lock:
            if len(self._sessions) >= self.max_sessions:
                raise SessionLimitError(
                    f"Maximum sessions ({self.max_sessions}) reached. "
                    f"Delete an existing session first."
                )
        dispatcher = ModeDispatcher(self._get_adapter())
        state = SessionState(SessionContext(display_name=display_name), dispatcher)
        with self._lock:
            self._sessions[state.session_id] = state
        return state

    def get_session(self, session_id: str) -> Optional[SessionState]:
        with self._lock:
            return self._sessions.get(session_id)

    def delete_session(self, session_id: str) -> bool:
        with self._lock:
            state = self._sessions.pop(session_id, None)
        return state is not None

    def list_sessions(self) -> list[SessionState]:
        with self._lock:
            return list(self._sessions.values())

    # ---- Idle cleanup ----

    async def start_cleanup_loop(self) -> None:
        """Start a background task that evicts idle sessions."""
        self._cleanup_task = asyncio.create_task(self._cleanup_loop())

    async def stop_cleanup_loop(self) -> None:
        if self._cleanup_task:
            self._cleanup_task.cancel()
            try:
                await self._cleanup_task
            except asyncio.CancelledError:
                pass

    def evict_idle(self, now: datetime | None = None) -> list[str]:
        """Drop sessions idle longer than the timeout. Returns their IDs."""
        now = now or datetime.now(timezone.utc)
        to_remove = []
        with self._lock:
            for sid, state in self._sessions.items():
                idle = (now - state.last_active).total_seconds()
                if idle > self.idle_timeout_seconds and not state.busy:
                    to_remove.append(sid)
        for sid in to_remove:
            self.delete_session(sid)
        return to_remove

    async def _cleanup_loop(self) -> None:
        while True:
            await asyncio.sleep(60)
            self.evict_idle()

    # ---- Shutdown ----

    def shutdown(self) -> None:
        """Delete all sessions (called on server shutdown)."""
        with self._lock:
            self._sessions.clear()
