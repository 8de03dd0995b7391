"""FastAPI app factory + lifespan (startup/shutdown)."""

import os
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

import config
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .session_manager import APISessionManager
from . import routes


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    # Startup
    manager = app.state.session_manager_factory()
    routes.session_manager = manager
    routes._start_time = time.time()
    routes._thread_pool = ThreadPoolExecutor(max_workers=8)
    await manager.start_cleanup_loop()

    yield

    # Shutdown
    await manager.stop_cleanup_loop()
    manager.shutdown()
    routes._thread_pool.shutdown(wait=False)


def create_app(session_manager_factory=None) -> FastAPI:
    """Build and return the configured FastAPI application.

    Args:
        session_manager_factory: Zero-arg callable returning an
            APISessionManager. Defaults to one built from config.
    """
    app = FastAPI(
        title="TubeChat API",
        description="Chat with your data and YouTube channels",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.session_manager_factory = session_manager_factory or (
        lambda: APISessionManager(
            max_sessions=config.MAX_SESSIONS,
            idle_timeout_seconds=config.SESSION_IDLE_TIMEOUT,
        )
    )

    # CORS: restrict origins in production, allow the dev frontend otherwise
    cors_origins = os.getenv("CORS_ORIGINS", "").strip()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins.split(",") if cors_origins else ["http://localhost:3000", "http://127.0.0.1:3000"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes.router)
    return app
