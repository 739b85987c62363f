"""
route_topology.py — Route graph construction and ordering for OSM route relations.

A route relation lists its ways in no particular order and orientation.  This
module turns the way-like members into an endpoint adjacency graph, bins the
graph nodes by degree, decides whether the route is a single path or a single
loop, and walks it to produce the ordered sequence of member references.

Route graph layout:

    {
      end_node_id: {
          other_end_node_id: SegmentRef(member_id, reversed),
      }
    }

Every member (A, B) is stored as A -> B (forward) and B -> A (reversed), so the
graph is symmetric.
"""

import logging
from dataclasses import dataclass
from typing import Hashable, Iterable

logger = logging.getLogger(__name__)

ONE_WAY = "one-way"
ROUND_TRIP = "round-trip"
NOT_ROUTABLE = "not-routable"


@dataclass(frozen=True)
class SegmentRef:
    """A member id plus the direction it is traversed in."""

    id: str
    reversed: bool = False

    def inverted(self) -> "SegmentRef":
        return SegmentRef(self.id, not self.reversed)

    def __invert__(self) -> "SegmentRef":
        return self.inverted()

    def __str__(self) -> str:
        return f"-{self.id}" if self.reversed else self.id


RouteGraph = dict[Hashable, dict[Hashable, SegmentRef]]


# ── Errors ───────────────────────────────────────────────────────────

class TopologyError(Exception):
    """A route (or one of its members) cannot be represented as one line."""

    def __init__(self, message: str, element_id: str = "", err_nodes=None):
        super().__init__(message)
        self.element_id = element_id
        self.err_nodes = list(err_nodes or [])


class RouteTopologyError(TopologyError):
    """Raised when an operation needing a routable graph meets one that isn't.

    ``err_nodes`` holds every node with degree > 2 and, when there are more
    than two dead ends, every degree-1 node.
    """

    def __init__(self, element_id: str, name: str, degrees: list[list], disconnected: bool = False):
        err_nodes = []
        err = []

        if degrees[3]:
            err_nodes.extend(degrees[3])
            err.append(f"{len(degrees[3])} nodes with degree>2")

        if len(degrees[1]) > 2:
            err_nodes.extend(degrees[1])
            err.append(f"{len(degrees[1])} dead ends")
        elif len(degrees[1]) == 1:
            err.append("1 dead end")

        if not any(degrees):
            err.append("no members")

        if disconnected:
            err.append("disconnected")

        super().__init__(
            f"{element_id} ({name}) is not routable: {','.join(err)}",
            element_id=element_id,
            err_nodes=err_nodes,
        )
        self.degrees = degrees


class CompositeTopologyError(TopologyError):
    """Raised when one or more members of a route have no usable end nodes."""

    def __init__(self, element_id: str, name: str, errors: list[TopologyError]):
        if not errors:
            raise ValueError("CompositeTopologyError needs at least one error")

        sub_messages = [str(e).replace("\n", "\n  ") for e in errors]
        lines = [f"{element_id} ({name}) is not routable", *sub_messages]

        err_nodes = [node for e in errors for node in e.err_nodes]
        super().__init__("\n  ".join(lines), element_id=element_id, err_nodes=err_nodes)
        self.errors = list(errors)


# ── Graph builder ────────────────────────────────────────────────────

def build_route_graph(members: Iterable, element_id: str = "", name: str = "") -> RouteGraph:
    """Build the adjacency graph from way-like members.

    Each member needs an ``id`` and an ``end_nodes`` pair.  Members whose end
    nodes can't be determined are collected; if there are any, the whole build
    fails with a CompositeTopologyError listing all of them.
    """
    route_graph: RouteGraph = {}
    errors = []

    for member in members:
        try:
            start, end = member.end_nodes
        except TopologyError as e:
            errors.append(e)
            continue

        forward = SegmentRef(member.id)
        for a, b, ref in ((start, end, forward), (end, start, ~forward)):
            neighbors = route_graph.setdefault(a, {})
            existing = neighbors.get(b)
            if existing is not None and existing.id != ref.id:
                logger.warning(
                    f"{element_id}: {ref.id} overwrites {existing.id} "
                    f"between nodes {a} and {b}"
                )
            neighbors[b] = ref

    if errors:
        raise CompositeTopologyError(element_id, name, errors)

    return route_graph


# ── Degree classifier ────────────────────────────────────────────────

def node_degrees(route_graph: RouteGraph) -> list[list]:
    """Bin node ids by degree: [deg 0, deg 1, deg 2, deg 3+]."""
    degrees = [[], [], [], []]

    for node_id, neighbors in route_graph.items():
        degrees[min(len(neighbors), 3)].append(node_id)

    return degrees


# ── Routability ──────────────────────────────────────────────────────

def route_shape(degrees: list[list]) -> str:
    """Classify a route as one-way, round-trip or not-routable."""
    if not any(degrees) or degrees[3]:
        return NOT_ROUTABLE
    if len(degrees[1]) == 0:
        return ROUND_TRIP
    if len(degrees[1]) == 2:
        return ONE_WAY
    return NOT_ROUTABLE


def is_routable(degrees: list[list]) -> bool:
    """True if the route can be represented as a single LineString."""
    return route_shape(degrees) != NOT_ROUTABLE


def is_connected(route_graph: RouteGraph) -> bool:
    """True if every node can be reached from the first one."""
    if not route_graph:
        return False

    start = next(iter(route_graph))
    seen = {start}
    stack = [start]
    while stack:
        for node_id in route_graph[stack.pop()]:
            if node_id not in seen:
                seen.add(node_id)
                stack.append(node_id)

    return len(seen) == len(route_graph)


def end_nodes(degrees: list[list], element_id: str = "", name: str = "") -> tuple:
    """Start and end node of a routable route.

    A round trip starts and ends at its first degree-2 node.
    """
    shape = route_shape(degrees)
    if shape == ONE_WAY:
        return degrees[1][0], degrees[1][1]
    if shape == ROUND_TRIP:
        return degrees[2][0], degrees[2][0]
    raise RouteTopologyError(element_id, name, degrees)


# ── Path orderer ─────────────────────────────────────────────────────

def _next_node(route_graph: RouteGraph, curr_id, last_id):
    # neighbor that isn't the node we just came from
    for node_id in route_graph[curr_id]:
        if node_id != last_id:
            return node_id
    return None


def order_route_graph(route_graph: RouteGraph, element_id: str = "", name: str = "") -> list[SegmentRef]:
    """Walk a routable graph and return its member references in order.

    One-way routes start from the first degree-1 node in the graph and run to
    the other end.  Round trips start from the first node in the graph, leave
    through its first neighbor and stop once they are back at the start.
    """
    degrees = node_degrees(route_graph)
    if not is_routable(degrees):
        raise RouteTopologyError(element_id, name, degrees)

    edge_count = sum(len(neighbors) for neighbors in route_graph.values()) // 2
    if edge_count == 1:
        first_neighbors = next(iter(route_graph.values()))
        return [next(iter(first_neighbors.values()))]

    ordered = []
    last_id = curr_id = next_id = end_id = None

    for node_id, neighbors in route_graph.items():
        if len(neighbors) == 1:
            curr_id = node_id
            next_id = _next_node(route_graph, curr_id, last_id)
            break

    if curr_id is None:
        curr_id = end_id = next(iter(route_graph))
        next_id = next(iter(route_graph[curr_id]))

    while next_id is not None:
        ordered.append(route_graph[curr_id][next_id])

        last_id, curr_id = curr_id, next_id
        next_id = _next_node(route_graph, curr_id, last_id)

        if end_id is not None and curr_id == end_id:
            break

    # pieces the walk never reached
    if len(ordered) != edge_count:
        raise RouteTopologyError(element_id, name, degrees, disconnected=True)

    return ordered
