"""API routes for graph sessions and the worker message protocol.

This module provides REST API endpoints for:
- Loading a raw graph into a new session
- Re-sampling a session with new sampling settings
- Reporting camera moves (level of detail, viewport culling, clustering)
- Clicking nodes (selection, edge highlighting, cluster expansion)
- Running a single worker protocol message
"""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, Field

from graphlod.config import settings
from graphlod.models import CameraState, SamplingSettings
from graphlod.services.render import ViewportRenderer
from graphlod.services.session import GraphSession, SessionRegistry, open_session
from graphlod.services.worker import handle_message

router = APIRouter(prefix="/api", tags=["api"])


# =============================================================================
# Request/Response Models
# =============================================================================


class GraphDocument(BaseModel):
    """Raw graph records; individual records are validated by the session."""
    nodes: list[Any] = Field(default_factory=list)
    edges: list[Any] = Field(default_factory=list)


class SessionResponse(BaseModel):
    """Response model for session state."""
    id: str
    status: str
    status_message: str | None
    raw_nodes: int
    raw_edges: int
    active_nodes: int
    active_edges: int
    discarded_nodes: int
    discarded_edges: int
    sampling: dict[str, int]
    uses_worker: bool
    latest_token: int
    zoom_level: int | None


class CameraMoveResponse(BaseModel):
    """Response model for a camera move."""
    lod: dict[str, Any] | None
    snapshot: dict[str, Any] | None


class ClickResponse(BaseModel):
    """Response model for a node click."""
    selection: dict[str, Any] | None
    snapshot: dict[str, Any] | None


# =============================================================================
# Helpers
# =============================================================================


def get_registry(request: Request) -> SessionRegistry:
    registry = getattr(request.app.state, "sessions", None)
    if registry is None:
        registry = SessionRegistry()
        request.app.state.sessions = registry
    return registry


def _get_session(registry: SessionRegistry, graph_id: str) -> GraphSession:
    session = registry.get(graph_id)
    if session is None:
        raise HTTPException(status_code=404, detail="Graph not found")
    return session


def _snapshot(session: GraphSession) -> dict[str, Any] | None:
    if isinstance(session.renderer, ViewportRenderer) and not session.renderer.killed:
        return session.renderer.render()
    return None


# =============================================================================
# Session Endpoints
# =============================================================================


@router.post("/graphs", response_model=SessionResponse, status_code=201)
async def create_graph(
    document: GraphDocument,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    """Load a raw graph into a new session and sample it.

    A document without any valid node still creates a session, in the
    failed state, so the client can show the loading failure.
    """
    session = registry.add(open_session(document.model_dump(), settings))
    await session.wait_pending()
    return SessionResponse(**session.summary())


@router.get("/graphs/{graph_id}", response_model=SessionResponse)
async def get_graph(
    graph_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    """Get the state of a session."""
    session = _get_session(registry, graph_id)
    session.process_replies()
    return SessionResponse(**session.summary())


@router.delete("/graphs/{graph_id}", status_code=204)
async def delete_graph(
    graph_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> None:
    """Close a session and stop its worker."""
    if not registry.remove(graph_id):
        raise HTTPException(status_code=404, detail="Graph not found")


@router.get("/graphs/{graph_id}/snapshot")
async def get_snapshot(
    graph_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> dict[str, Any]:
    """Get the display payload of the active snapshot."""
    session = _get_session(registry, graph_id)
    session.process_replies()
    snapshot = _snapshot(session)
    if snapshot is None:
        raise HTTPException(status_code=409, detail=f"Graph is {session.status.value}")
    return snapshot


@router.post("/graphs/{graph_id}/sampling", response_model=SessionResponse)
async def apply_sampling(
    graph_id: str,
    sampling: SamplingSettings,
    registry: SessionRegistry = Depends(get_registry),
) -> SessionResponse:
    """Re-sample the raw graph with new settings.

    Out-of-range settings are clamped to the accepted ranges.
    """
    session = _get_session(registry, graph_id)
    session.apply_settings(sampling)
    await session.wait_pending()
    return SessionResponse(**session.summary())


@router.post("/graphs/{graph_id}/camera", response_model=CameraMoveResponse)
async def move_camera(
    graph_id: str,
    camera: CameraState,
    registry: SessionRegistry = Depends(get_registry),
) -> CameraMoveResponse:
    """Report a camera move and get the resulting level of detail.

    When zoomed far out the visible nodes are re-clustered and the
    returned snapshot holds the clusters.
    """
    session = _get_session(registry, graph_id)
    session.process_replies()
    state = session.on_camera_moved(camera)
    await session.wait_pending()
    return CameraMoveResponse(
        lod=state.to_dict() if state is not None else None,
        snapshot=_snapshot(session),
    )


@router.post("/graphs/{graph_id}/nodes/{node_id}/click", response_model=ClickResponse)
async def click_node(
    graph_id: str,
    node_id: str,
    registry: SessionRegistry = Depends(get_registry),
) -> ClickResponse:
    """Select a node; clicking a cluster expands it into its members."""
    session = _get_session(registry, graph_id)
    session.process_replies()
    resolved = session.find_node_id(node_id)
    if resolved is None:
        raise HTTPException(status_code=404, detail="Node not found")

    selection = session.on_click_node(resolved)
    return ClickResponse(
        selection=selection.to_dict() if selection is not None else None,
        snapshot=_snapshot(session),
    )


# =============================================================================
# Worker Protocol Endpoint
# =============================================================================


@router.post("/worker/messages")
async def post_worker_message(message: dict[str, Any]) -> dict[str, Any]:
    """Run one worker protocol message and return its reply."""
    return handle_message(message, grid_size=settings.grid_size)
