"""FastAPI app factory + lifespan (startup/shutdown)."""

import logging
import os
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import asynccontextmanager

import config
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from agent.core import DataChatAgent
from data_ops.store import Database

from . import routes

logger = logging.getLogger("datachat")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    # Startup
    db = Database(config.get_db_path())
    db.init_schema()
    logger.info(f"Database ready at {db.path}")
    routes._db = db
    routes._agent = getattr(app.state, "agent", None) or DataChatAgent(db)
    routes._start_time = time.time()
    routes._thread_pool = ThreadPoolExecutor(max_workers=int(config.get("api.max_workers", 4)))

    yield

    # Shutdown
    routes._thread_pool.shutdown(wait=False)


def create_app(agent: DataChatAgent | None = None) -> FastAPI:
    """Build and return the configured FastAPI application.

    Args:
        agent: Pre-built agent to serve (used by tests to plug in a
            scripted reasoning provider). It must have been created over
            the same database file as ``config.get_db_path()``.
    """
    app = FastAPI(
        title="datachat API",
        description="Ask natural-language questions about uploaded spreadsheets",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.agent = agent

    # CORS: restrict origins in production, allow all in development
    cors_origins = os.getenv("CORS_ORIGINS", "").strip()
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins.split(",") if cors_origins else ["http://localhost:5173", "http://127.0.0.1:5173"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(routes.router)
    return app
