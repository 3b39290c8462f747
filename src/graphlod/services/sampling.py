"""Node and edge sampling for oversized graphs.

Node sampling keeps a deterministic block of "important" nodes (ranked by
size, used as a proxy for importance) and fills the rest of the budget with
a uniform random draw, without replacement, from the remaining nodes. Edge
sampling keeps only edges between surviving nodes and, when over budget,
the heaviest ones.
"""

import logging
import random
from collections.abc import Sequence

from graphlod.models import Edge, GraphData, Node, SamplingSettings
from graphlod.services.validation import filter_edges

logger = logging.getLogger("graphlod.sampling")

DEFAULT_NODE_LIMIT = 10000
DEFAULT_EDGE_LIMIT = 10000
DEFAULT_IMPORTANT_PERCENT = 20


class ConfigError(ValueError):
    """Raised for sampling parameters outside their valid range"""


def check_sampling_params(node_limit: int, important_percent: int) -> None:
    """Raise ConfigError if the node sampling parameters are unusable."""
    if isinstance(node_limit, bool) or not isinstance(node_limit, int) or node_limit <= 0:
        raise ConfigError(f"nodeLimit must be a positive integer, got {node_limit!r}")
    if (
        isinstance(important_percent, bool)
        or not isinstance(important_percent, (int, float))
        or not 0 <= important_percent <= 100
    ):
        raise ConfigError(
            f"importantNodesPercent must be within [0, 100], got {important_percent!r}"
        )


def resolve_sampling_params(node_limit, important_percent) -> tuple[int, int]:
    """Substitute defaults for invalid sampling parameters.

    Each invalid parameter is replaced independently; a valid one is kept.

    Returns:
        Tuple of (node_limit, important_percent) safe to sample with
    """
    try:
        check_sampling_params(node_limit, DEFAULT_IMPORTANT_PERCENT)
    except ConfigError as e:
        logger.warning(f"{e}; using default {DEFAULT_NODE_LIMIT}")
        node_limit = DEFAULT_NODE_LIMIT

    try:
        check_sampling_params(DEFAULT_NODE_LIMIT, important_percent)
    except ConfigError as e:
        logger.warning(f"{e}; using default {DEFAULT_IMPORTANT_PERCENT}")
        important_percent = DEFAULT_IMPORTANT_PERCENT

    return node_limit, int(important_percent)


def resolve_edge_limit(edge_limit) -> int:
    """Return ``edge_limit`` or the default when it is not a positive integer."""
    if isinstance(edge_limit, bool) or not isinstance(edge_limit, int) or edge_limit <= 0:
        logger.warning(
            f"edgeLimit must be a positive integer, got {edge_limit!r}; "
            f"using default {DEFAULT_EDGE_LIMIT}"
        )
        return DEFAULT_EDGE_LIMIT
    return edge_limit


def rank_by_importance(nodes: Sequence[Node]) -> list[Node]:
    """Order nodes by size, largest first.

    The sort is stable, so equal sizes keep their input order.
    """
    return sorted(nodes, key=lambda n: n.size, reverse=True)


def sample_nodes(
    nodes: Sequence[Node],
    node_limit: int = DEFAULT_NODE_LIMIT,
    important_percent: int = DEFAULT_IMPORTANT_PERCENT,
    rng: random.Random | None = None,
) -> list[Node]:
    """Reduce a node set to at most ``node_limit`` nodes.

    Args:
        nodes: Validated nodes
        node_limit: Target maximum number of nodes
        important_percent: Share of ``node_limit`` reserved for the largest nodes
        rng: Source of randomness for the random part of the sample

    Returns:
        The input nodes unchanged when they fit the budget, otherwise the
        important nodes followed by the randomly drawn ones
    """
    node_limit, important_percent = resolve_sampling_params(node_limit, important_percent)

    if len(nodes) <= node_limit:
        logger.debug(f"{len(nodes)} nodes fit within limit {node_limit}, not sampling")
        return list(nodes)

    ranked = rank_by_importance(nodes)
    important_count = node_limit * important_percent // 100
    important = ranked[:important_count]
    remaining = ranked[important_count:]

    rng = rng or random.Random()
    drawn = rng.sample(remaining, node_limit - important_count)

    logger.info(
        f"Sampled {node_limit} of {len(nodes)} nodes "
        f"({important_count} important, {len(drawn)} random)"
    )
    return important + drawn


def sample_edges(
    edges: Sequence[Edge],
    sampled_nodes: Sequence[Node],
    edge_limit: int = DEFAULT_EDGE_LIMIT,
) -> list[Edge]:
    """Reduce an edge set to at most ``edge_limit`` edges between sampled nodes.

    Args:
        edges: All candidate edges, including ones to nodes dropped by sampling
        sampled_nodes: The node set that survived sampling
        edge_limit: Target maximum number of edges

    Returns:
        Edges with both endpoints in ``sampled_nodes``; when more than
        ``edge_limit`` remain, the ``edge_limit`` heaviest ones
    """
    edge_limit = resolve_edge_limit(edge_limit)
    valid = filter_edges(edges, {n.id for n in sampled_nodes})

    if len(valid) <= edge_limit:
        return valid

    logger.info(f"Truncating {len(valid)} edges to the {edge_limit} heaviest")
    return sorted(valid, key=lambda e: e.weight, reverse=True)[:edge_limit]


def sample_graph(
    graph: GraphData,
    sampling: SamplingSettings,
    rng: random.Random | None = None,
) -> GraphData:
    """Sample nodes, then the edges between them."""
    nodes = sample_nodes(
        graph.nodes,
        sampling.node_limit,
        sampling.important_nodes_percent,
        rng=rng,
    )
    edges = sample_edges(graph.edges, nodes, sampling.edge_limit)
    return GraphData(nodes=nodes, edges=edges)
