"""Input validation for raw graph records.

Every record that reaches the sampling and clustering services has passed
through this gate, so downstream code may assume:
- every node has an id and finite numeric ``x``/``y`` coordinates
- node ids are unique within a snapshot
- every edge references two nodes of the same snapshot

Validation never mutates its input and never raises for a single bad
record; bad records are dropped and counted.
"""

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError

from graphlod.models import (
    DEFAULT_EDGE_COLOR,
    DEFAULT_EDGE_SIZE,
    DEFAULT_NODE_COLOR,
    DEFAULT_NODE_SIZE,
    Edge,
    GraphData,
    Node,
    NodeId,
    is_finite_number,
    is_node_id,
)

logger = logging.getLogger("graphlod.validation")


class InputError(Exception):
    """Raised when a raw graph document cannot produce any usable node"""


@dataclass
class ValidationReport:
    """Result of validating a raw graph document."""
    graph: GraphData = field(default_factory=GraphData)
    discarded_nodes: int = 0
    discarded_edges: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "nodes": len(self.graph.nodes),
            "edges": len(self.graph.edges),
            "discarded_nodes": self.discarded_nodes,
            "discarded_edges": self.discarded_edges,
        }


def is_valid_node_record(record: Any) -> bool:
    """Check the minimum shape every node record must have."""
    return (
        isinstance(record, Mapping)
        and is_node_id(record.get("id"))
        and is_finite_number(record.get("x"))
        and is_finite_number(record.get("y"))
    )


def _display_text(value: Any, default: str) -> str:
    if value is None or value == "":
        return default
    return value if isinstance(value, str) else str(value)


def _node_from_record(record: Mapping[str, Any]) -> Node:
    """Build a Node, replacing unusable display attributes by their defaults."""
    data = {k: v for k, v in record.items() if k not in ("members", "isCluster", "is_cluster")}
    if not is_finite_number(data.get("size")) or data["size"] <= 0:
        data["size"] = DEFAULT_NODE_SIZE
    if not isinstance(data.get("color"), str) or not data["color"]:
        data["color"] = DEFAULT_NODE_COLOR
    data["label"] = _display_text(data.get("label"), str(data["id"]))
    return Node.model_validate(data)


def _edge_from_record(record: Mapping[str, Any]) -> Edge:
    """Build an Edge, replacing unusable weight and display attributes."""
    data = dict(record)
    if not is_finite_number(data.get("weight")) or data["weight"] < 0:
        data["weight"] = 1.0
    if not isinstance(data.get("color"), str) or not data["color"]:
        data["color"] = DEFAULT_EDGE_COLOR
    if not is_finite_number(data.get("size")) or data["size"] <= 0:
        data["size"] = DEFAULT_EDGE_SIZE
    data["label"] = _display_text(data.get("label"), "")
    return Edge.model_validate(data)


def validate_nodes(records: Iterable[Any]) -> tuple[list[Node], int]:
    """Filter raw node records down to well-formed nodes.

    Args:
        records: Candidate node records (usually decoded JSON objects)

    Returns:
        Tuple of (valid nodes in input order, number of records discarded)
    """
    nodes: list[Node] = []
    seen: set[NodeId] = set()
    discarded = 0

    for record in records:
        if not is_valid_node_record(record):
            discarded += 1
            continue
        if record.get("isCluster") or record.get("is_cluster"):
            # Clusters are derived data and never part of a raw snapshot
            discarded += 1
            continue
        try:
            node = _node_from_record(record)
        except ValidationError as e:
            logger.debug(f"Discarding node {record.get('id')!r}: {e.error_count()} errors")
            discarded += 1
            continue
        if node.id in seen:
            discarded += 1
            continue
        seen.add(node.id)
        nodes.append(node)

    if discarded:
        logger.info(f"Discarded {discarded} malformed node records, kept {len(nodes)}")
    return nodes, discarded


def _is_known_id(value: Any, node_ids: set[NodeId]) -> bool:
    return is_node_id(value) and value in node_ids


def filter_edges(edges: Iterable[Edge], node_ids: set[NodeId]) -> list[Edge]:
    """Keep only edges whose endpoints are both in ``node_ids``."""
    return [e for e in edges if e.source in node_ids and e.target in node_ids]


def validate_edges(records: Iterable[Any], node_ids: set[NodeId]) -> tuple[list[Edge], int]:
    """Filter raw edge records down to edges between known nodes.

    Edges whose source or target is not in ``node_ids`` are dropped rather
    than reported as errors.

    Args:
        records: Candidate edge records
        node_ids: Ids of the currently valid nodes

    Returns:
        Tuple of (valid edges in input order, number of records discarded)
    """
    edges: list[Edge] = []
    discarded = 0

    for record in records:
        if not isinstance(record, Mapping):
            discarded += 1
            continue
        if not (
            _is_known_id(record.get("source"), node_ids)
            and _is_known_id(record.get("target"), node_ids)
        ):
            discarded += 1
            continue
        try:
            edges.append(_edge_from_record(record))
        except ValidationError:
            discarded += 1

    return edges, discarded


def validate_graph(raw: Any) -> ValidationReport:
    """Validate a complete raw graph document.

    Args:
        raw: Mapping with ``nodes`` and optional ``edges`` collections

    Returns:
        ValidationReport with the validated snapshot and discard counts

    Raises:
        InputError: If the document has no node list or no valid node
    """
    if not isinstance(raw, Mapping):
        raise InputError("Invalid data format")

    raw_nodes = raw.get("nodes")
    if not isinstance(raw_nodes, list) or not raw_nodes:
        raise InputError("Invalid data format")

    raw_edges = raw.get("edges")
    if not isinstance(raw_edges, list):
        raw_edges = []

    nodes, discarded_nodes = validate_nodes(raw_nodes)
    if not nodes:
        raise InputError("No valid nodes found in data")

    edges, discarded_edges = validate_edges(raw_edges, {n.id for n in nodes})

    logger.info(
        f"Validated graph: {len(nodes)} nodes ({discarded_nodes} discarded), "
        f"{len(edges)} edges ({discarded_edges} discarded)"
    )
    return ValidationReport(
        graph=GraphData(nodes=nodes, edges=edges),
        discarded_nodes=discarded_nodes,
        discarded_edges=discarded_edges,
    )
