"""Grid clustering and cluster expansion.

When zoomed far out, the visible nodes are collapsed into one cluster per
grid cell. A cluster node only records the ids of its members; expanding a
cluster resolves those ids against the raw snapshot, so the expanded nodes
carry their original attributes.
"""

import logging
import math
from collections import defaultdict
from collections.abc import Iterable, Mapping, Sequence

from graphlod.models import GraphData, Node, NodeId

logger = logging.getLogger("graphlod.clustering")

DEFAULT_GRID_SIZE = 50.0
CLUSTER_SIZE_SCALE = 5.0
CLUSTER_ID_PREFIX = "cluster:"


def grid_cell(node: Node, grid_size: float = DEFAULT_GRID_SIZE) -> tuple[int, int]:
    """Return the (column, row) of the grid cell containing a node."""
    return math.floor(node.x / grid_size), math.floor(node.y / grid_size)


def cell_id(gx: int, gy: int) -> str:
    """Encode a grid cell as a cluster id, e.g. ``"cluster:3,-1"``."""
    return f"{CLUSTER_ID_PREFIX}{gx},{gy}"


def cluster_size(member_count: int) -> float:
    """Cluster markers grow with the square root of their member count."""
    return math.sqrt(member_count) * CLUSTER_SIZE_SCALE


def cluster_nodes(nodes: Iterable[Node], grid_size: float = DEFAULT_GRID_SIZE) -> list[Node]:
    """Aggregate nodes into one cluster node per occupied grid cell.

    Args:
        nodes: Plain (non-cluster) nodes to aggregate
        grid_size: Width and height of a grid cell in graph units

    Returns:
        Cluster nodes in order of first appearance of their cell. Every
        input node is a member of exactly one cluster; single-member cells
        still produce a cluster.

    Raises:
        ValueError: If ``grid_size`` is not positive or a cluster node is given
    """
    if grid_size <= 0:
        raise ValueError(f"grid size must be positive, got {grid_size}")

    cells: dict[tuple[int, int], list[Node]] = defaultdict(list)
    for node in nodes:
        if node.is_cluster:
            raise ValueError(f"cannot re-cluster cluster node {node.id!r}")
        cells[grid_cell(node, grid_size)].append(node)

    clusters = []
    for (gx, gy), members in cells.items():
        clusters.append(Node(
            id=cell_id(gx, gy),
            x=(gx + 0.5) * grid_size,
            y=(gy + 0.5) * grid_size,
            size=cluster_size(len(members)),
            color=members[0].color,
            label=f"Cluster ({len(members)})",
            is_cluster=True,
            members=[m.id for m in members],
        ))

    logger.debug(f"Grouped {sum(len(m) for m in cells.values())} nodes into {len(clusters)} clusters")
    return clusters


def expand_cluster(
    cluster: Node,
    lookup: Mapping[NodeId, Node],
    size_factor: float = 1.0,
) -> list[Node]:
    """Resolve a cluster back into its member nodes.

    Args:
        cluster: The cluster node to expand
        lookup: Original nodes by id
        size_factor: Display multiplier applied to each member's size

    Returns:
        The member nodes, in membership order

    Raises:
        ValueError: If the node is not a cluster or a member id is unknown
    """
    if not cluster.is_cluster:
        raise ValueError(f"node {cluster.id!r} is not a cluster")

    expanded = []
    for member_id in cluster.members or []:
        member = lookup.get(member_id)
        if member is None:
            raise ValueError(f"cluster {cluster.id!r} references unknown node {member_id!r}")
        if size_factor != 1.0:
            member = member.model_copy(update={"size": member.size * size_factor})
        expanded.append(member)
    return expanded


def replace_cluster(
    graph: GraphData,
    cluster_id: NodeId,
    lookup: Mapping[NodeId, Node],
    size_factor: float = 1.0,
) -> GraphData:
    """Return a new snapshot with one cluster swapped for its members.

    Sibling clusters stay collapsed. Edges are kept when both endpoints
    remain in the snapshot. The input snapshot is not modified.

    Raises:
        ValueError: If the cluster is missing, cannot be expanded, or a
            member id equals the id of a sibling cluster
    """
    target = next((n for n in graph.nodes if n.id == cluster_id), None)
    if target is None:
        raise ValueError(f"cluster {cluster_id!r} is not in the snapshot")

    members = expand_cluster(target, lookup, size_factor)
    kept = [n for n in graph.nodes if n.id != cluster_id]
    present = {n.id: n for n in kept}
    for member in members:
        if member.id in present and present[member.id].is_cluster:
            raise ValueError(
                f"member {member.id!r} of cluster {cluster_id!r} collides with a cluster id"
            )
    nodes = kept + [m for m in members if m.id not in present]

    node_ids = {n.id for n in nodes}
    edges = [e for e in graph.edges if e.source in node_ids and e.target in node_ids]

    logger.info(f"Expanded cluster {cluster_id!r} into {len(members)} nodes")
    return GraphData(nodes=nodes, edges=edges)


def flatten_clusters(nodes: Sequence[Node], lookup: Mapping[NodeId, Node]) -> list[Node]:
    """Replace cluster nodes by their original members.

    Plain nodes are resolved through ``lookup`` too when possible, which
    drops any display-only changes made on expansion.
    """
    flat: list[Node] = []
    seen: set[NodeId] = set()
    for node in nodes:
        resolved = expand_cluster(node, lookup) if node.is_cluster else [lookup.get(node.id, node)]
        for member in resolved:
            if member.id not in seen:
                seen.add(member.id)
                flat.append(member)
    return flat
