"""Tests for node and edge sampling"""

import random

import pytest

from graphlod.models import Edge, GraphData, Node, SamplingSettings
from graphlod.services.sampling import (
    DEFAULT_EDGE_LIMIT,
    DEFAULT_IMPORTANT_PERCENT,
    DEFAULT_NODE_LIMIT,
    ConfigError,
    check_sampling_params,
    rank_by_importance,
    resolve_edge_limit,
    resolve_sampling_params,
    sample_edges,
    sample_graph,
    sample_nodes,
)


def make_node(id, size=5.0, x=0.0, y=0.0) -> Node:
    return Node(id=id, x=x, y=y, size=size)


def make_edge(source, target, weight=1.0) -> Edge:
    return Edge(source=source, target=target, weight=weight)


@pytest.fixture
def large_nodes() -> list[Node]:
    """1500 nodes with distinct sizes, shuffled so input order is not size order."""
    nodes = [make_node(i, size=float(i + 1)) for i in range(1500)]
    random.Random(7).shuffle(nodes)
    return nodes


class TestResolveSamplingParams:
    """Test recovery from invalid sampling configuration"""

    def test_valid_params_are_kept(self):
        assert resolve_sampling_params(500, 30) == (500, 30)

    def test_boundary_percentages_are_valid(self):
        assert resolve_sampling_params(500, 0) == (500, 0)
        assert resolve_sampling_params(500, 100) == (500, 100)

    @pytest.mark.parametrize("node_limit", [0, -5, None, "100", 1.5, True])
    def test_invalid_node_limit_uses_default(self, node_limit):
        assert resolve_sampling_params(node_limit, 30) == (DEFAULT_NODE_LIMIT, 30)

    @pytest.mark.parametrize("percent", [-1, 101, None, "20"])
    def test_invalid_percent_uses_default(self, percent):
        assert resolve_sampling_params(500, percent) == (500, DEFAULT_IMPORTANT_PERCENT)

    def test_check_raises_config_error(self):
        with pytest.raises(ConfigError):
            check_sampling_params(0, 20)
        with pytest.raises(ConfigError):
            check_sampling_params(10, 150)

    def test_edge_limit(self):
        assert resolve_edge_limit(300) == 300
        assert resolve_edge_limit(0) == DEFAULT_EDGE_LIMIT
        assert resolve_edge_limit(None) == DEFAULT_EDGE_LIMIT


class TestSampleNodes:
    """Test degree-biased node sampling"""

    def test_small_input_returned_unchanged(self):
        nodes = [make_node(i) for i in range(10)]
        assert sample_nodes(nodes, node_limit=10, important_percent=20) == nodes

    def test_small_input_does_not_use_randomness(self):
        class ExplodingRandom(random.Random):
            def sample(self, *args, **kwargs):
                raise AssertionError("should not sample")

        nodes = [make_node(i) for i in range(3)]
        assert sample_nodes(nodes, 5, 20, rng=ExplodingRandom()) == nodes

    def test_exact_size_and_important_nodes(self, large_nodes):
        """1500 nodes, limit 1000, 20% important -> top 200 always kept."""
        result = sample_nodes(large_nodes, 1000, 20, rng=random.Random(1))

        assert len(result) == 1000
        ids = [n.id for n in result]
        assert len(set(ids)) == 1000

        top_200 = {n.id for n in rank_by_importance(large_nodes)[:200]}
        assert top_200 <= set(ids)

        input_ids = {n.id for n in large_nodes}
        assert set(ids) <= input_ids

        random_part = ids[200:]
        assert not set(random_part) & top_200

    def test_important_nodes_come_first_in_rank_order(self, large_nodes):
        result = sample_nodes(large_nodes, 100, 10, rng=random.Random(3))
        assert [n.size for n in result[:10]] == [1500.0 - i for i in range(10)]

    def test_important_set_is_deterministic(self, large_nodes):
        first = sample_nodes(large_nodes, 300, 50, rng=random.Random(1))
        second = sample_nodes(large_nodes, 300, 50, rng=random.Random(2))
        assert [n.id for n in first[:150]] == [n.id for n in second[:150]]

    def test_seeded_rng_is_reproducible(self, large_nodes):
        first = sample_nodes(large_nodes, 300, 20, rng=random.Random(42))
        second = sample_nodes(large_nodes, 300, 20, rng=random.Random(42))
        assert [n.id for n in first] == [n.id for n in second]

    def test_importance_is_node_size(self):
        """Importance is the rendered size attribute, not the edge count."""
        nodes = [make_node("hub", size=1.0)] + [make_node(i, size=2.0) for i in range(9)]
        ranked = rank_by_importance(nodes)
        assert ranked[-1].id == "hub"

    def test_ties_broken_by_input_order(self):
        nodes = [make_node(i, size=1.0) for i in range(20)]
        result = sample_nodes(nodes, 10, 50, rng=random.Random(0))
        assert [n.id for n in result[:5]] == [0, 1, 2, 3, 4]

    def test_zero_percent_is_all_random(self, large_nodes):
        result = sample_nodes(large_nodes, 50, 0, rng=random.Random(5))
        assert len(result) == 50
        assert len({n.id for n in result}) == 50

    def test_hundred_percent_is_all_important(self, large_nodes):
        result = sample_nodes(large_nodes, 50, 100, rng=random.Random(5))
        assert {n.id for n in result} == {n.id for n in rank_by_importance(large_nodes)[:50]}

    def test_invalid_config_uses_defaults(self):
        nodes = [make_node(i) for i in range(20)]
        # Default limit of 10000 covers every node
        assert sample_nodes(nodes, node_limit=-1, important_percent=500) == nodes

    def test_input_is_not_reordered(self, large_nodes):
        before = [n.id for n in large_nodes]
        sample_nodes(large_nodes, 100, 20, rng=random.Random(0))
        assert [n.id for n in large_nodes] == before


class TestSampleEdges:
    """Test edge sampling restricted to sampled nodes"""

    def test_drops_edges_to_unsampled_nodes(self):
        nodes = [make_node(1), make_node(2)]
        edges = [make_edge(1, 2), make_edge(1, 3), make_edge(4, 2)]
        result = sample_edges(edges, nodes, edge_limit=10)
        assert [(e.source, e.target) for e in result] == [(1, 2)]

    def test_under_limit_keeps_order(self):
        nodes = [make_node(i) for i in range(4)]
        edges = [make_edge(0, 1, 1), make_edge(1, 2, 9), make_edge(2, 3, 5)]
        assert sample_edges(edges, nodes, edge_limit=3) == edges

    def test_truncates_to_heaviest(self):
        nodes = [make_node(i) for i in range(6)]
        edges = [make_edge(i, i + 1, weight=w) for i, w in enumerate([3, 1, 5, 2, 4])]
        result = sample_edges(edges, nodes, edge_limit=3)
        assert len(result) == 3
        assert sorted(e.weight for e in result) == [3, 4, 5]

    def test_result_size_is_min_of_limit_and_valid(self):
        nodes = [make_node(i) for i in range(10)]
        edges = [make_edge(i, (i + 1) % 10) for i in range(10)] + [make_edge(1, 99)]
        assert len(sample_edges(edges, nodes, edge_limit=4)) == 4
        assert len(sample_edges(edges, nodes, edge_limit=50)) == 10

    def test_no_dangling_edges(self):
        rng = random.Random(11)
        nodes = [make_node(i, size=float(i + 1)) for i in range(200)]
        edges = [make_edge(rng.randrange(200), rng.randrange(200)) for _ in range(1000)]
        sampled = sample_nodes(nodes, 50, 20, rng=rng)
        kept_ids = {n.id for n in sampled}
        for edge in sample_edges(edges, sampled, edge_limit=100):
            assert edge.source in kept_ids
            assert edge.target in kept_ids


class TestSampleGraph:
    """Test combined graph sampling"""

    def test_sample_graph(self):
        nodes = [make_node(i, size=float(i + 1)) for i in range(300)]
        edges = [make_edge(i, i + 1) for i in range(299)]
        graph = GraphData(nodes=nodes, edges=edges)
        settings = SamplingSettings(node_limit=100, edge_limit=100, important_nodes_percent=50)

        result = sample_graph(graph, settings, rng=random.Random(9))

        assert len(result.nodes) == 100
        assert {n.id for n in result.nodes} >= set(range(250, 300))
        kept = {n.id for n in result.nodes}
        assert all(e.source in kept and e.target in kept for e in result.edges)
        # Raw snapshot untouched
        assert len(graph.nodes) == 300
        assert len(graph.edges) == 299
