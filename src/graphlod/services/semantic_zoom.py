"""Semantic zoom service for level-of-detail graph rendering.

The camera ratio selects one of three zoom bands:
- CLUSTER (ratio > 5): visible nodes are re-clustered on a grid, no labels
- OVERVIEW (2 < ratio <= 5): only cluster nodes keep their label, nodes
  are drawn at 80% of their size, label threshold 15
- DETAILED (ratio <= 2): every node labelled above threshold 8, true sizes

On every camera move the controller also recomputes the set of nodes that
fall inside the viewport (plus a margin, so nodes do not pop in at the
edges). That set drives clustering and is the record of what is on screen.
"""

import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, Protocol

from graphlod.models import CameraState, GraphData, Node, NodeId

logger = logging.getLogger("graphlod.semantic_zoom")

CLUSTER_RATIO_THRESHOLD = 5.0
OVERVIEW_RATIO_THRESHOLD = 2.0
DEFAULT_VIEWPORT_MARGIN = 100.0

NodeReducer = Callable[[NodeId, dict[str, Any]], dict[str, Any]]


class ZoomLevel(IntEnum):
    """Semantic zoom levels for graph rendering."""
    CLUSTER = 0      # Grid clusters of the visible nodes
    OVERVIEW = 1     # Reduced labels and sizes
    DETAILED = 2     # Full detail


def get_zoom_level_for_ratio(ratio: float) -> ZoomLevel:
    """Determine the zoom band for a camera ratio (larger = further out)."""
    if ratio > CLUSTER_RATIO_THRESHOLD:
        return ZoomLevel.CLUSTER
    elif ratio > OVERVIEW_RATIO_THRESHOLD:
        return ZoomLevel.OVERVIEW
    else:
        return ZoomLevel.DETAILED


def identity_reducer(node: NodeId, data: dict[str, Any]) -> dict[str, Any]:
    return dict(data)


def overview_reducer(node: NodeId, data: dict[str, Any]) -> dict[str, Any]:
    """Keep cluster labels only and shrink every node to 80%."""
    return {
        **data,
        "label": data.get("label", "") if data.get("isCluster") else "",
        "size": data["size"] * 0.8,
    }


@dataclass(frozen=True)
class LODSettings:
    """Renderer settings applied for one zoom band."""
    render_labels: bool
    label_rendered_size_threshold: float | None
    node_reducer: NodeReducer

    def apply(self, renderer: "Renderer") -> None:
        renderer.set_setting("renderLabels", self.render_labels)
        if self.label_rendered_size_threshold is not None:
            renderer.set_setting("labelRenderedSizeThreshold", self.label_rendered_size_threshold)
        renderer.set_setting("nodeReducer", self.node_reducer)


LOD_SETTINGS: dict[ZoomLevel, LODSettings] = {
    ZoomLevel.CLUSTER: LODSettings(
        render_labels=False,
        label_rendered_size_threshold=None,
        node_reducer=identity_reducer,
    ),
    ZoomLevel.OVERVIEW: LODSettings(
        render_labels=True,
        label_rendered_size_threshold=15,
        node_reducer=overview_reducer,
    ),
    ZoomLevel.DETAILED: LODSettings(
        render_labels=True,
        label_rendered_size_threshold=8,
        node_reducer=identity_reducer,
    ),
}


class Renderer(Protocol):
    """The rendering collaborator driven by the LOD controller."""

    @property
    def camera(self) -> CameraState: ...

    def load(self, graph: GraphData) -> None: ...

    def graph_to_viewport(self, x: float, y: float) -> tuple[float, float]: ...

    def set_setting(self, name: str, value: Any) -> None: ...

    def get_setting(self, name: str) -> Any: ...

    def set_camera(self, camera: CameraState) -> None: ...

    def refresh(self) -> None: ...

    def kill(self) -> None: ...


@dataclass(frozen=True)
class GraphExtent:
    """Bounding box used to normalise graph coordinates into the unit square.

    The larger side of the box maps to length 1 and the box is centred on
    (0.5, 0.5), so the aspect ratio of the layout is preserved.
    """
    min_x: float = 0.0
    max_x: float = 1.0
    min_y: float = 0.0
    max_y: float = 1.0

    @classmethod
    def from_nodes(cls, nodes: Iterable[Node]) -> "GraphExtent":
        xs, ys = [], []
        for node in nodes:
            xs.append(node.x)
            ys.append(node.y)
        if not xs:
            return cls()
        return cls(min(xs), max(xs), min(ys), max(ys))

    @property
    def span(self) -> float:
        return max(self.max_x - self.min_x, self.max_y - self.min_y) or 1.0

    def normalize(self, x: float, y: float) -> tuple[float, float]:
        cx = (self.min_x + self.max_x) / 2
        cy = (self.min_y + self.max_y) / 2
        return 0.5 + (x - cx) / self.span, 0.5 + (y - cy) / self.span


def project_to_viewport(
    x: float,
    y: float,
    camera: CameraState,
    extent: GraphExtent,
) -> tuple[float, float]:
    """Project a graph position to viewport pixels.

    The normalised position is taken relative to the camera centre, rotated
    by the camera angle, scaled by ``min(width, height) / ratio`` and placed
    around the viewport centre. Viewport y grows downwards.
    """
    nx, ny = extent.normalize(x, y)
    dx, dy = nx - camera.x, ny - camera.y
    cos, sin = math.cos(camera.angle), math.sin(camera.angle)
    rx = dx * cos - dy * sin
    ry = dx * sin + dy * cos
    scale = camera.smaller_dimension / camera.ratio
    return camera.width / 2 + rx * scale, camera.height / 2 - ry * scale


def is_in_viewport(
    position: tuple[float, float],
    camera: CameraState,
    margin: float = DEFAULT_VIEWPORT_MARGIN,
) -> bool:
    """Check a viewport position against the viewport grown by ``margin``."""
    px, py = position
    return (
        -margin <= px <= camera.width + margin
        and -margin <= py <= camera.height + margin
    )


def compute_visible_node_ids(
    nodes: Iterable[Node],
    renderer: Renderer,
    margin: float = DEFAULT_VIEWPORT_MARGIN,
) -> set[NodeId]:
    """Ids of the nodes whose projected position lies in the viewport."""
    camera = renderer.camera
    return {
        node.id
        for node in nodes
        if is_in_viewport(renderer.graph_to_viewport(node.x, node.y), camera, margin)
    }


@dataclass
class LODState:
    """Outcome of one camera move."""
    zoom_level: ZoomLevel
    visible_node_ids: set[NodeId] = field(default_factory=set)

    @property
    def needs_clustering(self) -> bool:
        return self.zoom_level == ZoomLevel.CLUSTER

    def to_dict(self) -> dict[str, Any]:
        return {
            "zoom_level": int(self.zoom_level),
            "zoom_name": self.zoom_level.name.lower(),
            "visible_count": len(self.visible_node_ids),
            "needs_clustering": self.needs_clustering,
        }


class LODController:
    """Chooses the zoom band and visible set on each camera move."""

    def __init__(self, margin: float = DEFAULT_VIEWPORT_MARGIN):
        self.margin = margin
        self.zoom_level: ZoomLevel | None = None

    def handle_camera_moved(
        self,
        graph: GraphData | None,
        renderer: Renderer | None,
    ) -> LODState | None:
        """Recompute visibility and apply the band's renderer settings.

        Returns None, doing nothing, while the graph or renderer is missing.
        """
        if graph is None or renderer is None:
            return None

        level = get_zoom_level_for_ratio(renderer.camera.ratio)
        visible = compute_visible_node_ids(graph.nodes, renderer, self.margin)

        if level != self.zoom_level:
            logger.debug(f"Zoom level changed: {self.zoom_level!r} -> {level.name}")
        self.zoom_level = level

        LOD_SETTINGS[level].apply(renderer)
        renderer.refresh()
        return LODState(zoom_level=level, visible_node_ids=visible)
