"""Transcript reconciler FastAPI app: main application entry point."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from reconciler import __version__, config
from reconciler.engine import ReconciliationEngine
from reconciler.observability import initialize as initialize_observability, shutdown as shutdown_observability
from reconciler.routers.api import projects_router, sessions_router, terminals_router

logging.basicConfig(level=getattr(logging, config.LOG_LEVEL, logging.INFO))
logger = logging.getLogger("reconciler")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup / shutdown lifecycle."""
    logger.info("Transcript reconciler starting up (claude_dir=%s)", config.CLAUDE_DIR)
    initialize_observability(app)
    app.state.engine = ReconciliationEngine(config.CLAUDE_DIR)

    yield

    logger.info("Transcript reconciler shutting down")
    await app.state.engine.stop()
    shutdown_observability(app)


app = FastAPI(
    title="Transcript Reconciler API",
    description="Merged live-stream and transcript session state for coding-agent sessions",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        config.FRONTEND_ORIGIN,
        "http://localhost:3000",
        "http://127.0.0.1:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(sessions_router)
app.include_router(projects_router)
app.include_router(terminals_router)


@app.get("/api/health")
async def health():
    """Health check endpoint."""
    engine = getattr(app.state, "engine", None)
    return {
        "status": "ok",
        "sessions": len(engine.registry.sessions) if engine else 0,
        "activeSessionId": engine.registry.active_session_id if engine else None,
    }


def run() -> None:
    import uvicorn

    uvicorn.run("reconciler.main:app", host=config.HOST, port=config.PORT)


if __name__ == "__main__":
    run()
