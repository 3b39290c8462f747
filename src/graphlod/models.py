"""Pydantic models for GraphLOD"""

import logging
import math
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

logger = logging.getLogger("graphlod.models")

NodeId = Union[int, float, str]

DEFAULT_NODE_SIZE = 5.0
DEFAULT_NODE_COLOR = "#6c757d"
DEFAULT_EDGE_COLOR = "#ccc"
DEFAULT_EDGE_SIZE = 1.0

# Ranges accepted from the interactive sampling controls
NODE_LIMIT_RANGE = (100, 10000)
EDGE_LIMIT_RANGE = (100, 20000)
IMPORTANT_PERCENT_RANGE = (1, 100)


class Node(BaseModel):
    """A node in a graph snapshot.

    Cluster nodes are synthetic: they carry the ids of the original nodes
    they aggregate in ``members`` and their size is derived from the
    member count.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: NodeId
    x: float = Field(allow_inf_nan=False)
    y: float = Field(allow_inf_nan=False)
    size: float = Field(default=DEFAULT_NODE_SIZE, gt=0)
    color: str = DEFAULT_NODE_COLOR
    label: str = ""
    is_cluster: bool = Field(default=False, alias="isCluster")
    members: list[NodeId] | None = None

    @model_validator(mode="before")
    @classmethod
    def _default_label(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("label") and data.get("id") is not None:
            data = {**data, "label": str(data["id"])}
        return data

    @model_validator(mode="after")
    def _check_members(self) -> "Node":
        if not self.is_cluster and self.members is not None:
            raise ValueError("only cluster nodes may carry members")
        return self

    def to_dict(self) -> dict[str, Any]:
        """Serialize using the renderer's attribute names."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Edge(BaseModel):
    """A link between two nodes of the same snapshot"""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    source: NodeId
    target: NodeId
    weight: float = Field(default=1.0, ge=0, allow_inf_nan=False)
    color: str = DEFAULT_EDGE_COLOR
    size: float = DEFAULT_EDGE_SIZE
    label: str = ""

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True)


class GraphData(BaseModel):
    """A complete node and edge set handed to the renderer"""

    nodes: list[Node] = Field(default_factory=list)
    edges: list[Edge] = Field(default_factory=list)

    def node_index(self) -> dict[NodeId, Node]:
        """Map node ids to nodes."""
        return {node.id: node for node in self.nodes}

    def to_dict(self) -> dict[str, Any]:
        return {
            "nodes": [n.to_dict() for n in self.nodes],
            "edges": [e.to_dict() for e in self.edges],
        }


def _clamp(name: str, value: int, bounds: tuple[int, int]) -> int:
    low, high = bounds
    clamped = min(max(value, low), high)
    if clamped != value:
        logger.warning(f"Sampling setting {name}={value} out of range, clamped to {clamped}")
    return clamped


class SamplingSettings(BaseModel):
    """User-facing sampling configuration"""

    model_config = ConfigDict(populate_by_name=True)

    node_limit: int = Field(default=1000, alias="nodeLimit")
    edge_limit: int = Field(default=10000, alias="edgeLimit")
    important_nodes_percent: int = Field(default=20, alias="importantNodesPercent")

    def clamped(self) -> "SamplingSettings":
        """Return a copy with every value forced into its accepted range."""
        return SamplingSettings(
            node_limit=_clamp("nodeLimit", self.node_limit, NODE_LIMIT_RANGE),
            edge_limit=_clamp("edgeLimit", self.edge_limit, EDGE_LIMIT_RANGE),
            important_nodes_percent=_clamp(
                "importantNodesPercent", self.important_nodes_percent, IMPORTANT_PERCENT_RANGE
            ),
        )

    def to_message(self) -> dict[str, int]:
        """Serialize for the worker message protocol."""
        return self.model_dump(by_alias=True)


class CameraState(BaseModel):
    """Camera parameters reported by the renderer.

    ``ratio`` grows as the view zooms out. ``x``/``y`` locate the camera
    centre in normalised graph space and ``width``/``height`` give the
    viewport size in pixels.
    """

    model_config = ConfigDict(frozen=True)

    ratio: float = Field(default=1.5, gt=0, allow_inf_nan=False)
    angle: float = Field(default=0.0, allow_inf_nan=False)
    x: float = Field(default=0.5, allow_inf_nan=False)
    y: float = Field(default=0.5, allow_inf_nan=False)
    width: float = Field(default=1024, gt=0)
    height: float = Field(default=768, gt=0)

    def rotated(self, delta: float) -> "CameraState":
        """Return a camera turned by a scroll delta (500 units per radian)."""
        return self.model_copy(update={"angle": self.angle - delta / 500})

    @property
    def smaller_dimension(self) -> float:
        return min(self.width, self.height)


def is_finite_number(value: Any) -> bool:
    """True for int/float values (not bool) that are neither NaN nor infinite."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def is_node_id(value: Any) -> bool:
    """True for values usable as a node id: strings and finite numbers."""
    return isinstance(value, str) or is_finite_number(value)
