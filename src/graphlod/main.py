"""GraphLOD - level-of-detail service for very large node-link graphs"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from graphlod.config import settings
from graphlod.middleware import TimingMiddleware, setup_logging
from graphlod.routes import api
from graphlod.services.importer import load_graph_file
from graphlod.services.session import SessionRegistry, open_session
from graphlod.services.validation import InputError

logger = logging.getLogger("graphlod")

DEFAULT_SESSION_ID = "default"


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging(settings.log_level)
    registry = SessionRegistry()
    app.state.sessions = registry

    if settings.graph_path is not None:
        try:
            raw = load_graph_file(settings.graph_path)
        except InputError as e:
            logger.error(f"Startup graph not loaded: {e}")
            raw = {"nodes": [], "edges": []}
        registry.add(open_session(raw, settings, session_id=DEFAULT_SESSION_ID))

    yield

    registry.close_all()


app = FastAPI(
    title="GraphLOD",
    description="Sampling, clustering and level-of-detail for large graphs",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    TimingMiddleware,
    slow_request_threshold=settings.slow_request_threshold,
    log_all_requests=settings.debug,
)

app.include_router(api.router)


@app.get("/health")
async def health():
    """Health check endpoint"""
    return {"status": "ok"}


def run() -> None:
    """Serve the application with uvicorn."""
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
