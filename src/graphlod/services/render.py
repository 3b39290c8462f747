"""Headless rendering collaborator.

ViewportRenderer holds the snapshot, camera and display settings that a
browser-side renderer would hold, and produces the display payload sent to
API clients: node attributes after the active node reducer, with labels
hidden where the renderer would not draw them.
"""

import logging
import math
from typing import Any

from graphlod.models import CameraState, Edge, GraphData
from graphlod.services.semantic_zoom import GraphExtent, project_to_viewport

logger = logging.getLogger("graphlod.render")

DEFAULT_RENDER_SETTINGS: dict[str, Any] = {
    "minCameraRatio": 0.01,
    "maxCameraRatio": 200,
    "renderLabels": True,
    "labelRenderedSizeThreshold": 1,
    "hideEdgesOnMove": True,
    "defaultNodeColor": "#6c757d",
    "defaultEdgeColor": "#ccc",
    "defaultNodeSize": 5,
    "defaultEdgeSize": 1,
    "labelSize": 14,
    "labelWeight": "bold",
    "renderEdgeArrows": True,
    "edgeArrowSize": 6,
    "nodeReducer": None,
}


class RendererKilledError(RuntimeError):
    """Raised when a killed renderer is asked to draw"""


def dedupe_edges(edges: list[Edge]) -> list[Edge]:
    """Keep the first edge for each (source, target) pair."""
    seen: set[tuple] = set()
    unique = []
    for edge in edges:
        key = (edge.source, edge.target)
        if key in seen:
            continue
        seen.add(key)
        unique.append(edge)
    return unique


class ViewportRenderer:
    """In-process stand-in for the graph rendering engine."""

    def __init__(
        self,
        graph: GraphData,
        camera: CameraState | None = None,
        settings: dict[str, Any] | None = None,
    ):
        self._settings = {**DEFAULT_RENDER_SETTINGS, **(settings or {})}
        self._camera = self._clamp_camera(camera or CameraState())
        self._graph = GraphData()
        self._extent = GraphExtent()
        self._killed = False
        self.refresh_count = 0
        self.load(graph)

    def _clamp_camera(self, camera: CameraState) -> CameraState:
        low = self._settings["minCameraRatio"]
        high = self._settings["maxCameraRatio"]
        ratio = min(max(camera.ratio, low), high)
        if ratio != camera.ratio:
            return camera.model_copy(update={"ratio": ratio})
        return camera

    @property
    def graph(self) -> GraphData:
        return self._graph

    @property
    def camera(self) -> CameraState:
        return self._camera

    @property
    def killed(self) -> bool:
        return self._killed

    def load(self, graph: GraphData) -> None:
        """Replace the whole drawn graph."""
        edges = dedupe_edges(graph.edges)
        if len(edges) != len(graph.edges):
            logger.debug(f"Skipped {len(graph.edges) - len(edges)} duplicate edges")
        self._graph = GraphData(nodes=list(graph.nodes), edges=edges)
        self._extent = GraphExtent.from_nodes(self._graph.nodes)

    def set_camera(self, camera: CameraState) -> None:
        self._camera = self._clamp_camera(camera)

    def set_setting(self, name: str, value: Any) -> None:
        self._settings[name] = value

    def get_setting(self, name: str) -> Any:
        return self._settings.get(name)

    def graph_to_viewport(self, x: float, y: float) -> tuple[float, float]:
        return project_to_viewport(x, y, self._camera, self._extent)

    def refresh(self) -> None:
        self.refresh_count += 1

    def kill(self) -> None:
        self._killed = True
        self._graph = GraphData()

    def rendered_size(self, size: float) -> float:
        """On-screen size of a node: sizes shrink with the square root of the ratio."""
        return size / math.sqrt(self._camera.ratio)

    def render(self) -> dict[str, Any]:
        """Build the display payload for the current snapshot and settings.

        Raises:
            RendererKilledError: If the renderer has been killed
        """
        if self._killed:
            raise RendererKilledError("renderer has been killed")

        reducer = self._settings.get("nodeReducer")
        render_labels = self._settings["renderLabels"]
        threshold = self._settings["labelRenderedSizeThreshold"]

        nodes = []
        for node in self._graph.nodes:
            data = {
                "x": node.x,
                "y": node.y,
                "size": node.size,
                "color": node.color,
                "label": node.label,
                "isCluster": node.is_cluster,
            }
            if node.is_cluster:
                data["memberCount"] = len(node.members or [])
            if reducer is not None:
                data = reducer(node.id, data)
            show_label = (
                render_labels
                and bool(data.get("label"))
                and self.rendered_size(data["size"]) >= threshold
            )
            if not show_label:
                data["label"] = ""
            nodes.append({"id": node.id, **data})

        edges = [
            {**edge.to_dict(), "type": "arrow" if self._settings["renderEdgeArrows"] else "line"}
            for edge in self._graph.edges
        ]

        return {
            "nodes": nodes,
            "edges": edges,
            "camera": self._camera.model_dump(),
            "settings": {
                "renderLabels": render_labels,
                "labelRenderedSizeThreshold": threshold,
            },
        }
