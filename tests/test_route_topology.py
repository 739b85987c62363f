"""Tests for route_topology.py"""

import logging
import random

import pytest

from route_topology import (
    NOT_ROUTABLE,
    ONE_WAY,
    ROUND_TRIP,
    CompositeTopologyError,
    RouteTopologyError,
    SegmentRef,
    TopologyError,
    build_route_graph,
    end_nodes,
    is_connected,
    is_routable,
    node_degrees,
    order_route_graph,
    route_shape,
)


# --- Helpers -------------------------------------------------------------- #

class _Segment:
    def __init__(self, id, start, end):
        self.id = id
        self.end_nodes = (start, end)


class _BrokenSegment:
    def __init__(self, id):
        self.id = id

    @property
    def end_nodes(self):
        raise TopologyError(f"{self.id} has no end nodes", element_id=self.id)


def _graph(*edges):
    """Route graph from (id, start, end) tuples."""
    return build_route_graph([_Segment(*e) for e in edges], "relation/1", "Test Route")


def _oriented(edges, ref):
    """(start, end) of a referenced segment after applying its direction."""
    _, start, end = next(e for e in edges if e[0] == ref.id)
    return (end, start) if ref.reversed else (start, end)


def _assert_continuous(edges, ordered):
    for prev, curr in zip(ordered, ordered[1:]):
        assert _oriented(edges, prev)[1] == _oriented(edges, curr)[0]


def _shuffled_path(n, seed, closed=False):
    """Segments along nodes 0..n in random order and orientation."""
    rng = random.Random(seed)
    edges = []
    for i in range(n):
        end = 0 if closed and i == n - 1 else i + 1
        a, b = (i, end) if rng.random() < 0.5 else (end, i)
        edges.append((f"way/{i}", a, b))
    rng.shuffle(edges)
    return edges


# --- Tests ---------------------------------------------------------------- #

class TestSegmentRef:
    def test_str_forward(self):
        assert str(SegmentRef("way/1")) == "way/1"

    def test_str_reversed(self):
        assert str(SegmentRef("way/1", reversed=True)) == "-way/1"

    def test_invert(self):
        ref = SegmentRef("way/1")
        assert ~ref == SegmentRef("way/1", True)
        assert ~~ref == ref

    def test_hashable(self):
        assert len({SegmentRef("1"), SegmentRef("1"), SegmentRef("1", True)}) == 2


class TestBuildRouteGraph:
    def test_symmetric_edges(self):
        graph = _graph(("1", "A", "B"))
        assert graph == {
            "A": {"B": SegmentRef("1")},
            "B": {"A": SegmentRef("1", True)},
        }

    def test_merges_into_existing_node(self):
        graph = _graph(("1", "A", "B"), ("2", "B", "C"))
        assert graph["B"] == {"A": SegmentRef("1", True), "C": SegmentRef("2")}

    def test_insertion_order_kept(self):
        graph = _graph(("2", "C", "B"), ("1", "A", "B"))
        assert list(graph) == ["C", "B", "A"]

    def test_duplicate_endpoint_pair_overwrites(self, caplog):
        # Parallel ways between the same junctions collapse into one edge;
        # the later one wins and a warning is logged.
        with caplog.at_level(logging.WARNING, logger="route_topology"):
            graph = _graph(("1", "A", "B"), ("2", "B", "A"))

        assert graph["A"]["B"] == SegmentRef("2", True)
        assert graph["B"]["A"] == SegmentRef("2")
        assert "overwrites" in caplog.text

    def test_repeated_member_does_not_warn(self, caplog):
        with caplog.at_level(logging.WARNING, logger="route_topology"):
            _graph(("1", "A", "B"), ("1", "A", "B"))
        assert "overwrites" not in caplog.text

    def test_collects_all_member_errors(self):
        segments = [
            _BrokenSegment("way/1"),
            _Segment("way/2", "A", "B"),
            _BrokenSegment("way/3"),
        ]
        with pytest.raises(CompositeTopologyError) as exc_info:
            build_route_graph(segments, "relation/9", "Broken Route")

        err = exc_info.value
        assert [e.element_id for e in err.errors] == ["way/1", "way/3"]
        assert str(err).startswith("relation/9 (Broken Route) is not routable")
        assert "\n  way/1 has no end nodes" in str(err)

    def test_composite_error_needs_errors(self):
        with pytest.raises(ValueError):
            CompositeTopologyError("relation/1", "", [])

    def test_empty(self):
        assert build_route_graph([]) == {}


class TestNodeDegrees:
    def test_bins_path(self):
        graph = _graph(("1", "A", "B"), ("2", "B", "C"))
        assert node_degrees(graph) == [[], ["A", "C"], ["B"], []]

    def test_bins_star(self):
        graph = _graph(("1", "A", "B"), ("2", "B", "C"), ("3", "B", "D"))
        assert node_degrees(graph) == [[], ["A", "C", "D"], [], ["B"]]

    def test_degree_capped_at_three(self):
        graph = _graph(*[(str(i), "hub", f"n{i}") for i in range(5)])
        assert node_degrees(graph)[3] == ["hub"]

    def test_order_follows_graph(self):
        graph = _graph(("1", "Z", "Y"), ("2", "X", "W"))
        assert node_degrees(graph)[1] == ["Z", "Y", "X", "W"]

    def test_does_not_mutate_graph(self):
        graph = _graph(("1", "A", "B"))
        node_degrees(graph)
        assert graph == _graph(("1", "A", "B"))


class TestRoutability:
    def test_one_way(self):
        degrees = node_degrees(_graph(("1", "A", "B"), ("2", "B", "C")))
        assert is_routable(degrees)
        assert route_shape(degrees) == ONE_WAY

    def test_round_trip(self):
        degrees = node_degrees(_graph(("1", "A", "B"), ("2", "B", "C"), ("3", "C", "A")))
        assert is_routable(degrees)
        assert route_shape(degrees) == ROUND_TRIP

    def test_single_edge_is_routable(self):
        assert is_routable(node_degrees({"A": {"B": SegmentRef("1")}, "B": {"A": SegmentRef("1", True)}}))

    def test_degree_three_not_routable(self):
        degrees = node_degrees(_graph(("1", "A", "B"), ("2", "B", "C"), ("3", "B", "D")))
        assert not is_routable(degrees)
        assert route_shape(degrees) == NOT_ROUTABLE

    def test_single_dead_end_not_routable(self):
        assert not is_routable([[], ["A"], ["B", "C"], []])

    def test_three_dead_ends_not_routable(self):
        assert not is_routable([[], ["A", "B", "C"], [], []])

    def test_four_dead_ends_not_routable(self):
        # two disjoint paths
        degrees = node_degrees(_graph(("1", "A", "B"), ("2", "C", "D")))
        assert not is_routable(degrees)

    def test_empty_graph_not_routable(self):
        assert not is_routable(node_degrees({}))


class TestIsConnected:
    def test_path(self):
        assert is_connected(_graph(("1", "A", "B"), ("2", "B", "C")))

    def test_path_with_separate_loop(self):
        graph = _graph(("1", "A", "B"), ("2", "C", "D"), ("3", "D", "E"), ("4", "E", "C"))
        assert not is_connected(graph)

    def test_two_loops(self):
        graph = _graph(
            ("1", "A", "B"), ("2", "B", "C"), ("3", "C", "A"),
            ("4", "D", "E"), ("5", "E", "F"), ("6", "F", "D"),
        )
        assert not is_connected(graph)

    def test_empty(self):
        assert not is_connected({})


class TestEndNodes:
    def test_one_way(self):
        degrees = node_degrees(_graph(("1", "A", "B"), ("2", "B", "C")))
        assert end_nodes(degrees) == ("A", "C")

    def test_round_trip_starts_and_ends_at_first_node(self):
        degrees = node_degrees(_graph(("1", "A", "B"), ("2", "B", "C"), ("3", "C", "A")))
        assert end_nodes(degrees) == ("A", "A")

    def test_not_routable_lists_junction(self):
        degrees = node_degrees(_graph(("1", "A", "B"), ("2", "B", "C"), ("3", "B", "D")))
        with pytest.raises(RouteTopologyError) as exc_info:
            end_nodes(degrees, "relation/5", "Forked")

        err = exc_info.value
        assert err.err_nodes == ["B", "A", "C", "D"]
        assert str(err) == "relation/5 (Forked) is not routable: 1 nodes with degree>2,3 dead ends"

    def test_two_paths_lists_dead_ends(self):
        degrees = node_degrees(_graph(("1", "A", "B"), ("2", "C", "D")))
        with pytest.raises(RouteTopologyError) as exc_info:
            end_nodes(degrees)
        assert exc_info.value.err_nodes == ["A", "B", "C", "D"]
        assert "4 dead ends" in str(exc_info.value)

    def test_route_topology_error_is_topology_error(self):
        with pytest.raises(TopologyError):
            end_nodes([[], [], [], []])


class TestOrderRouteGraph:
    def test_single_edge(self):
        graph = {"A": {"B": SegmentRef("1")}, "B": {"A": SegmentRef("1", True)}}
        assert [str(r) for r in order_route_graph(graph)] == ["1"]

    def test_simple_path(self):
        ordered = order_route_graph(_graph(("1", "A", "B"), ("2", "B", "C")))
        assert [str(r) for r in ordered] == ["1", "2"]

    def test_reversed_member(self):
        ordered = order_route_graph(_graph(("1", "A", "B"), ("2", "C", "B")))
        assert [str(r) for r in ordered] == ["1", "-2"]

    def test_starts_at_first_dead_end_in_graph(self):
        ordered = order_route_graph(_graph(("2", "B", "C"), ("1", "A", "B")))
        assert [str(r) for r in ordered] == ["-2", "-1"]

    def test_round_trip(self):
        edges = [("1", "A", "B"), ("2", "B", "C"), ("3", "C", "A")]
        ordered = order_route_graph(_graph(*edges))

        assert [str(r) for r in ordered] == ["1", "2", "3"]
        assert _oriented(edges, ordered[-1])[1] == _oriented(edges, ordered[0])[0]

    def test_not_routable_raises(self):
        graph = _graph(("1", "A", "B"), ("2", "B", "C"), ("3", "B", "D"))
        with pytest.raises(RouteTopologyError) as exc_info:
            order_route_graph(graph, "relation/3", "Star")
        assert exc_info.value.err_nodes[0] == "B"

    def test_empty_graph_raises(self):
        with pytest.raises(RouteTopologyError):
            order_route_graph({})

    def test_path_with_separate_loop_raises(self):
        # dead ends A, B pass the degree check; C-D-E is never reached
        graph = _graph(("1", "A", "B"), ("2", "C", "D"), ("3", "D", "E"), ("4", "E", "C"))
        with pytest.raises(RouteTopologyError) as exc_info:
            order_route_graph(graph, "relation/4", "Split")
        assert str(exc_info.value) == "relation/4 (Split) is not routable: disconnected"

    def test_two_separate_loops_raise(self):
        graph = _graph(
            ("1", "A", "B"), ("2", "B", "C"), ("3", "C", "A"),
            ("4", "D", "E"), ("5", "E", "F"), ("6", "F", "D"),
        )
        with pytest.raises(RouteTopologyError, match="disconnected"):
            order_route_graph(graph)

    def test_repeatable(self):
        graph = _graph(("1", "A", "B"), ("2", "C", "B"), ("3", "C", "D"))
        assert order_route_graph(graph) == order_route_graph(graph)

    @pytest.mark.parametrize("seed", range(8))
    def test_shuffled_one_way_is_continuous(self, seed):
        edges = _shuffled_path(12, seed)
        graph = build_route_graph([_Segment(*e) for e in edges])
        ordered = order_route_graph(graph)

        assert len(ordered) == len(edges)
        assert {r.id for r in ordered} == {e[0] for e in edges}
        _assert_continuous(edges, ordered)
        assert _oriented(edges, ordered[0])[0] in (0, 12)
        assert _oriented(edges, ordered[-1])[1] in (0, 12)

    @pytest.mark.parametrize("seed", range(8))
    def test_shuffled_round_trip_is_cycle(self, seed):
        edges = _shuffled_path(9, seed, closed=True)
        graph = build_route_graph([_Segment(*e) for e in edges])
        ordered = order_route_graph(graph)

        assert len(ordered) == len(edges)
        assert {r.id for r in ordered} == {e[0] for e in edges}
        _assert_continuous(edges, ordered)
        assert _oriented(edges, ordered[-1])[1] == _oriented(edges, ordered[0])[0]
        assert _oriented(edges, ordered[0])[0] == next(iter(graph))
