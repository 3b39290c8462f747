"""Graph sessions: the owner of all rendering state for one graph.

A session holds the immutable raw snapshot, the active snapshot handed to
the renderer, the renderer itself, the optional background worker and the
token of the latest request. All snapshot changes happen on the thread that
owns the session; the worker only produces replies, which the owner
installs through ``receive``.

Snapshot transitions (raw -> sampled -> clustered) replace the whole active
snapshot. Cluster expansion and edge highlighting on click edit the active
snapshot in place but only commit once the new snapshot is fully built.
"""

import asyncio
import logging
import random
import threading
import uuid
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from functools import partial
from typing import Any, Callable

from pydantic import ValidationError

from graphlod.config import Settings, settings as default_settings
from graphlod.models import (
    DEFAULT_EDGE_COLOR,
    DEFAULT_EDGE_SIZE,
    CameraState,
    Edge,
    GraphData,
    Node,
    NodeId,
    SamplingSettings,
)
from graphlod.services.clustering import cluster_nodes, flatten_clusters, replace_cluster
from graphlod.services.render import ViewportRenderer
from graphlod.services.sampling import sample_graph
from graphlod.services.semantic_zoom import (
    LODController,
    LODState,
    Renderer,
    compute_visible_node_ids,
)
from graphlod.services.validation import InputError, ValidationReport, validate_graph
from graphlod.services.worker import (
    GraphWorker,
    MessageType,
    StaleResultError,
    TransportError,
    build_cluster_request,
    build_sample_request,
    handle_message,
)

logger = logging.getLogger("graphlod.session")

HIGHLIGHT_EDGE_COLOR = "#4287f5"
HIGHLIGHT_EDGE_SIZE = 2.0


class SessionStatus(str, Enum):
    """Loading indicator shown to the user."""
    LOADING = "loading"
    READY = "ready"
    FAILED = "failed"


@dataclass
class NodeSelection:
    """A clicked node together with its neighbours."""
    node: Node
    connected_nodes: list[Node] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        data = self.node.to_dict()
        if self.node.is_cluster:
            data["memberCount"] = len(self.node.members or [])
        data["connectedNodes"] = [
            {"id": n.id, "label": n.label, "color": n.color} for n in self.connected_nodes
        ]
        return data


def connected_nodes(graph: GraphData, node_id: NodeId) -> list[Node]:
    """Neighbours of a node in either edge direction, in edge order."""
    index = graph.node_index()
    neighbours: list[Node] = []
    seen: set[NodeId] = set()
    for edge in graph.edges:
        if edge.source == node_id:
            other = edge.target
        elif edge.target == node_id:
            other = edge.source
        else:
            continue
        if other in seen or other not in index:
            continue
        seen.add(other)
        neighbours.append(index[other])
    return neighbours


def highlight_edges(edges: list[Edge], node_id: NodeId) -> list[Edge]:
    """Reset every edge to the default style and highlight those touching a node."""
    highlighted = []
    for edge in edges:
        touches = edge.source == node_id or edge.target == node_id
        highlighted.append(edge.model_copy(update={
            "color": HIGHLIGHT_EDGE_COLOR if touches else DEFAULT_EDGE_COLOR,
            "size": HIGHLIGHT_EDGE_SIZE if touches else DEFAULT_EDGE_SIZE,
        }))
    return highlighted


def _graph_from_payload(data: dict[str, Any]) -> GraphData:
    return GraphData(
        nodes=[Node.model_validate(n) for n in data["nodes"]],
        edges=[Edge.model_validate(e) for e in data.get("edges", [])],
    )


class GraphSession:
    """Owns the snapshots and rendering state of one graph."""

    def __init__(
        self,
        config: Settings = default_settings,
        worker: GraphWorker | None = None,
        renderer_factory: Callable[[GraphData], Renderer] = ViewportRenderer,
        rng: random.Random | None = None,
        session_id: str | None = None,
    ):
        self.id = session_id or uuid.uuid4().hex
        self.config = config
        self.worker = worker
        self.rng = rng
        self._renderer_factory = renderer_factory

        self.raw = GraphData()
        self._raw_index: dict[NodeId, Node] = {}
        self.validation: ValidationReport | None = None
        self.active: GraphData | None = None
        self.renderer: Renderer | None = None
        self.lod = LODController(margin=config.viewport_margin)
        self.sampling = SamplingSettings(
            node_limit=config.node_limit,
            edge_limit=config.edge_limit,
            important_nodes_percent=config.important_nodes_percent,
        )

        self.status = SessionStatus.LOADING
        self.status_message: str | None = None
        self.visible_node_ids: set[NodeId] = set()
        self.selection: NodeSelection | None = None
        self.pending: Future | None = None
        self._latest_token = 0

    # -------------------------------------------------------------------------
    # Loading and sampling
    # -------------------------------------------------------------------------

    def load(self, raw: Any) -> bool:
        """Validate a raw graph document and keep it as the raw snapshot.

        Returns False, leaving the session failed with an empty graph, if
        the document holds no usable node.
        """
        try:
            report = validate_graph(raw)
        except InputError as e:
            logger.error(f"Session {self.id}: failed to load graph: {e}")
            self.raw = GraphData()
            self._raw_index = {}
            self.active = GraphData()
            self.status = SessionStatus.FAILED
            self.status_message = str(e)
            return False

        self.validation = report
        self.raw = report.graph
        self._raw_index = self.raw.node_index()
        self.status = SessionStatus.LOADING
        self.status_message = None
        return True

    @property
    def latest_token(self) -> int:
        return self._latest_token

    @property
    def uses_worker(self) -> bool:
        return (
            self.worker is not None
            and len(self.raw.nodes) >= self.config.worker_threshold
        )

    @property
    def camera(self) -> CameraState | None:
        return self.renderer.camera if self.renderer is not None else None

    def _issue_token(self) -> int:
        self._latest_token += 1
        return self._latest_token

    def teardown(self) -> None:
        """Drop the renderer and every derived snapshot."""
        if self.renderer is not None:
            self.renderer.kill()
            self.renderer = None
        self.active = None
        self.selection = None
        self.visible_node_ids = set()
        self.lod.zoom_level = None
        self.pending = None

    def apply_settings(self, sampling: SamplingSettings | None = None) -> int:
        """Re-sample from the raw snapshot with new settings.

        The current rendering state is torn down first. Large graphs are
        sampled on the worker; the result is installed once its reply is
        received.

        Returns:
            The token of the issued request
        """
        self.sampling = (sampling or self.sampling).clamped()
        self.teardown()
        token = self._issue_token()

        if self.status == SessionStatus.FAILED:
            logger.warning(f"Session {self.id}: no graph loaded, nothing to sample")
            self.active = GraphData()
            return token

        if self.uses_worker:
            message = build_sample_request(
                [n.to_dict() for n in self.raw.nodes],
                [e.to_dict() for e in self.raw.edges],
                self.sampling,
                token,
            )
            if self._post(message):
                self.status = SessionStatus.LOADING
                return token

        self._install(sample_graph(self.raw, self.sampling, rng=self.rng))
        return token

    def _post(self, message: dict[str, Any]) -> bool:
        try:
            self.pending = self.worker.post_message(message)
        except TransportError as e:
            logger.warning(f"Session {self.id}: {e}; computing in-thread from now on")
            self.worker = None
            return False
        return True

    def _install(self, graph: GraphData) -> None:
        self.active = graph
        if self.renderer is None:
            self.renderer = self._renderer_factory(graph)
        else:
            self.renderer.load(graph)
        self.renderer.refresh()
        self.status = SessionStatus.READY
        self.status_message = None
        self._refresh_visible()

    def _refresh_visible(self) -> None:
        # Before the first camera move nothing has been measured yet
        if self.lod.zoom_level is None:
            return
        self.visible_node_ids = compute_visible_node_ids(
            self.active.nodes, self.renderer, self.lod.margin
        )

    # -------------------------------------------------------------------------
    # Worker replies
    # -------------------------------------------------------------------------

    def _check_token(self, reply: dict[str, Any]) -> None:
        token = reply.get("token")
        if token != self._latest_token:
            raise StaleResultError(
                f"Discarding {reply.get('type')} reply for request {token}, "
                f"latest is {self._latest_token}"
            )

    def receive(self, reply: dict[str, Any]) -> bool:
        """Install a worker reply if it answers the latest request.

        Returns:
            True if the reply replaced the active snapshot
        """
        try:
            self._check_token(reply)
        except StaleResultError as e:
            logger.debug(str(e))
            return False

        self.pending = None
        msg_type = reply.get("type")

        if msg_type == MessageType.ERROR.value:
            message = reply.get("message", "Unknown worker error")
            logger.warning(f"Session {self.id}: worker error: {message}")
            self.status_message = message
            if self.active is None:
                self.status = SessionStatus.FAILED
            return False

        if msg_type not in (MessageType.SAMPLED_DATA.value, MessageType.CLUSTERED_DATA.value):
            logger.warning(f"Session {self.id}: unknown reply type {msg_type!r}")
            return False

        try:
            graph = _graph_from_payload(reply["data"])
        except (KeyError, TypeError, ValidationError) as e:
            logger.error(f"Session {self.id}: malformed {msg_type} reply: {e}")
            return False

        self._install(graph)
        return True

    def process_replies(self) -> int:
        """Install every reply the worker has delivered so far.

        Returns:
            Number of replies that replaced the active snapshot
        """
        if self.worker is None:
            return 0
        return sum(1 for reply in self.worker.poll_replies() if self.receive(reply))

    async def wait_pending(self) -> None:
        """Wait for the in-flight request, if any, and process replies."""
        pending = self.pending
        if pending is not None:
            # Handler failures arrive as ERROR replies, so the outcome is not re-raised here
            await asyncio.wait([asyncio.wrap_future(pending)])
        self.process_replies()

    # -------------------------------------------------------------------------
    # Renderer events
    # -------------------------------------------------------------------------

    def on_camera_moved(self, camera: CameraState) -> LODState | None:
        """Handle a camera move: update visibility, LOD settings and clusters.

        Does nothing while no snapshot is rendered.
        """
        if self.renderer is None or self.active is None:
            return None

        self.renderer.set_camera(camera)
        state = self.lod.handle_camera_moved(self.active, self.renderer)
        self.visible_node_ids = state.visible_node_ids
        if state.needs_clustering:
            self.request_clustering(state.visible_node_ids)
        return state

    def request_clustering(self, node_ids: set[NodeId]) -> int | None:
        """Cluster the given nodes of the active snapshot.

        Returns:
            The request token, or None if no request was issued
        """
        if not node_ids:
            logger.debug(f"Session {self.id}: no visible nodes to cluster")
            return None

        visible = [n for n in self.active.nodes if n.id in node_ids]
        try:
            flat = flatten_clusters(visible, self._raw_index)
        except ValueError as e:
            logger.error(f"Session {self.id}: cannot cluster visible nodes: {e}")
            return None

        token = self._issue_token()
        if self.uses_worker:
            if self._post(build_cluster_request([n.to_dict() for n in flat], token)):
                return token

        self._install(GraphData(nodes=cluster_nodes(flat, self.config.grid_size)))
        return token

    def on_click_node(self, node_id: NodeId) -> NodeSelection | None:
        """Select a node, highlight its edges and expand it if it is a cluster.

        On any failure the active snapshot is left as it was.
        """
        if self.renderer is None or self.active is None:
            return None

        node = self.active.node_index().get(node_id)
        if node is None:
            return None

        try:
            selection = NodeSelection(node=node, connected_nodes=connected_nodes(self.active, node_id))
            graph = GraphData(
                nodes=list(self.active.nodes),
                edges=highlight_edges(self.active.edges, node_id),
            )
            if node.is_cluster:
                graph = replace_cluster(
                    graph, node_id, self._raw_index, self.config.expanded_size_factor
                )
        except ValueError as e:
            logger.error(f"Session {self.id}: click on {node_id!r} failed, snapshot unchanged: {e}")
            return None

        # Supersedes any clustering request still in flight
        self._issue_token()
        self.active = graph
        self.renderer.load(graph)
        self.renderer.refresh()
        self.selection = selection
        self._refresh_visible()
        return selection

    def find_node_id(self, value: str) -> NodeId | None:
        """Resolve a node id received as text against the active snapshot."""
        if self.active is None:
            return None
        index = self.active.node_index()
        if value in index:
            return value
        for parse in (int, float):
            try:
                number = parse(value)
            except ValueError:
                continue
            if number in index:
                return number
        return None

    def close(self) -> None:
        self.teardown()
        if self.worker is not None:
            self.worker.terminate()
            self.worker = None

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": self.status.value,
            "status_message": self.status_message,
            "raw_nodes": len(self.raw.nodes),
            "raw_edges": len(self.raw.edges),
            "active_nodes": len(self.active.nodes) if self.active is not None else 0,
            "active_edges": len(self.active.edges) if self.active is not None else 0,
            "discarded_nodes": self.validation.discarded_nodes if self.validation else 0,
            "discarded_edges": self.validation.discarded_edges if self.validation else 0,
            "sampling": self.sampling.to_message(),
            "uses_worker": self.uses_worker,
            "latest_token": self._latest_token,
            "zoom_level": int(self.lod.zoom_level) if self.lod.zoom_level is not None else None,
        }


def open_session(
    raw: Any,
    config: Settings = default_settings,
    rng: random.Random | None = None,
    session_id: str | None = None,
) -> GraphSession:
    """Create a session, load a raw graph and issue the first sampling request.

    A worker is started only for graphs at or above the worker threshold;
    if it cannot start, the session computes everything in-thread.
    """
    session = GraphSession(config, rng=rng, session_id=session_id)
    if session.load(raw) and config.use_worker and len(session.raw.nodes) >= config.worker_threshold:
        handler = partial(handle_message, rng=rng, grid_size=config.grid_size)
        try:
            session.worker = GraphWorker(handler=handler).start()
        except TransportError as e:
            logger.warning(f"Session {session.id}: {e}; computing in-thread")
    session.apply_settings()
    return session


class SessionRegistry:
    """Open sessions by id."""

    def __init__(self):
        self._sessions: dict[str, GraphSession] = {}
        self._lock = threading.Lock()

    def add(self, session: GraphSession) -> GraphSession:
        with self._lock:
            previous = self._sessions.get(session.id)
            self._sessions[session.id] = session
        if previous is not None and previous is not session:
            previous.close()
        return session

    def get(self, session_id: str) -> GraphSession | None:
        return self._sessions.get(session_id)

    def remove(self, session_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.close()
        return True

    def close_all(self) -> None:
        with self._lock:
            sessions = list(self._sessions.values())
            self._sessions.clear()
        for session in sessions:
            session.close()

    def __len__(self) -> int:
        return len(self._sessions)
