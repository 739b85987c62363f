"""
osm_route_relation.py — OSM ways and route relations as GeoJSON-producing objects.

Importable usage:
    from osm_route_relation import relations_from_overpass
    for relation in relations_from_overpass(data):
        print(relation.id, relation.is_routable, relation.statistics)

An OSMRouteRelation is built once from its members and never changes, so the
route graph, degree bins, routability verdict, ordering and statistics are each
computed on first access and cached on the instance.  Dict and list results
are handed out as copies, so callers can't alter the cached values.
"""

import copy
import logging
import threading
from dataclasses import dataclass

from shapely.geometry import LineString

from config import ALTERNATIVE_ROLE, ROUTE_TYPES
from route_statistics import aggregate_statistics
from route_topology import (
    NOT_ROUTABLE,
    RouteTopologyError,
    TopologyError,
    build_route_graph,
    end_nodes,
    is_connected,
    is_routable,
    node_degrees,
    order_route_graph,
    route_shape,
)

logger = logging.getLogger(__name__)


def reverse_line_feature(feature: dict) -> dict:
    """Copy of a LineString feature with its coordinates in reverse order."""
    return {
        "type": "Feature",
        "properties": dict(feature.get("properties") or {}),
        "geometry": {
            "type": "LineString",
            "coordinates": feature["geometry"]["coordinates"][::-1],
        },
    }


# ── Ways ─────────────────────────────────────────────────────────────

class OSMWay:
    """A single OSM way: two end nodes and a line geometry."""

    def __init__(self, osm_id, node_ids, coordinates, tags=None):
        self.osm_id = osm_id
        self.id = f"way/{osm_id}"
        self.node_ids = list(node_ids)
        self.tags = dict(tags or {})
        self.geometry = LineString(coordinates) if len(coordinates) > 1 else None

    @property
    def name(self) -> str:
        return self.tags.get("name", "")

    @property
    def properties(self) -> dict:
        return {**self.tags, "@id": self.id}

    @property
    def end_nodes(self) -> tuple:
        if len(self.node_ids) < 2:
            raise TopologyError(
                f"{self.id} ({self.name}) has {len(self.node_ids)} node(s), needs 2",
                element_id=self.id,
            )
        return self.node_ids[0], self.node_ids[-1]

    @property
    def line_string_feature(self) -> dict:
        coords = [] if self.geometry is None else [list(c) for c in self.geometry.coords]
        return {
            "type": "Feature",
            "properties": self.properties,
            "geometry": {"type": "LineString", "coordinates": coords},
        }

    def __repr__(self):
        return f"OSMWay({self.osm_id!r}, nodes={len(self.node_ids)})"


@dataclass(frozen=True)
class RelationMember:
    type: str
    ref: object
    role: str = ""
    element: object = None


# ── Route relations ──────────────────────────────────────────────────

class OSMRouteRelation:
    """An OSM route relation whose way-like members form one line.

    Way-like members are ways and nested route relations.  Members with the
    ``alternative`` role are left out of the route graph and statistics.
    """

    def __init__(self, osm_id, members, tags=None):
        self.osm_id = osm_id
        self.id = f"relation/{osm_id}"
        self.members = tuple(members)
        self.tags = dict(tags or {})

        self._lock = threading.RLock()
        self._route_graph = None
        self._node_degrees = None
        self._is_routable = None
        self._ordered_child_ids = None
        self._statistics = None

    def __repr__(self):
        return f"OSMRouteRelation({self.osm_id!r}, members={len(self.members)})"

    def _cached(self, attr: str, compute):
        # compute-once; the lock is re-entrant because accessors call each other
        with self._lock:
            value = getattr(self, attr)
            if value is None:
                value = compute()
                setattr(self, attr, value)
            return value

    @property
    def name(self) -> str:
        return self.tags.get("name", "")

    @property
    def properties(self) -> dict:
        return {**self.tags, "@id": self.id}

    @property
    def children(self) -> list[RelationMember]:
        """Way-like members (ways and nested route relations)."""
        return [
            m for m in self.members
            if isinstance(m.element, (OSMWay, OSMRouteRelation))
        ]

    @property
    def main_children(self) -> list[RelationMember]:
        return [m for m in self.children if m.role != ALTERNATIVE_ROLE]

    # ── Topology ─────────────────────────────────────────────────────

    def _graph(self) -> dict:
        return self._cached(
            "_route_graph",
            lambda: build_route_graph(
                [m.element for m in self.main_children], self.id, self.name
            ),
        )

    def _degrees(self) -> list[list]:
        return self._cached("_node_degrees", lambda: node_degrees(self._graph()))

    def _topology_error(self) -> RouteTopologyError:
        graph = self._graph()
        return RouteTopologyError(
            self.id, self.name, self._degrees(),
            disconnected=bool(graph) and not is_connected(graph),
        )

    @property
    def route_graph(self) -> dict:
        """Copy of the cached route graph."""
        return copy.deepcopy(self._graph())

    @property
    def node_degrees(self) -> list[list]:
        """Graph node ids binned by degree; node_degrees[1] are dead ends."""
        return copy.deepcopy(self._degrees())

    @property
    def is_routable(self) -> bool:
        """True if the route can be represented as a single LineString."""

        def compute():
            try:
                return is_routable(self._degrees()) and is_connected(self._graph())
            except TopologyError as e:
                logger.debug(f"{self.id} treated as not routable: {e}")
                return False

        return self._cached("_is_routable", compute)

    @property
    def shape(self) -> str:
        if not self.is_routable:
            return NOT_ROUTABLE
        return route_shape(self._degrees())

    @property
    def end_nodes(self) -> tuple:
        """Node ids of the route's start and end (equal for round trips)."""
        if not self.is_routable:
            raise self._topology_error()
        return end_nodes(self._degrees(), self.id, self.name)

    @property
    def ordered_child_ids(self) -> tuple:
        """Member references in route order, each flagged if reversed."""
        if not self.is_routable:
            raise self._topology_error()

        return self._cached(
            "_ordered_child_ids",
            lambda: tuple(order_route_graph(self._graph(), self.id, self.name)),
        )

    # ── GeoJSON features ─────────────────────────────────────────────

    @property
    def feature_collection(self) -> dict:
        """Unordered LineStrings of all main members."""
        return {
            "type": "FeatureCollection",
            "features": [m.element.line_string_feature for m in self.main_children],
        }

    @property
    def deep_feature_collection(self) -> dict:
        """Like feature_collection, with nested routes expanded to their ways."""
        features = []
        for m in self.main_children:
            if isinstance(m.element, OSMRouteRelation):
                features.extend(m.element.deep_feature_collection["features"])
            else:
                features.append(m.element.line_string_feature)
        return {"type": "FeatureCollection", "features": features}

    @property
    def ordered_feature_collection(self) -> dict:
        """LineStrings of all main members in route order and direction."""
        children = {m.element.id: m.element for m in self.main_children}

        features = []
        for ref in self.ordered_child_ids:
            feature = children[ref.id].line_string_feature
            features.append(reverse_line_feature(feature) if ref.reversed else feature)

        return {"type": "FeatureCollection", "features": features}

    @property
    def line_string_feature(self) -> dict:
        """The whole route as one LineString; raises if not routable."""
        features = self.ordered_feature_collection["features"]

        coordinates = list(features[0]["geometry"]["coordinates"])
        for feature in features[1:]:
            coordinates.extend(feature["geometry"]["coordinates"][1:])

        return {
            "type": "Feature",
            "properties": self.properties,
            "geometry": {"type": "LineString", "coordinates": coordinates},
        }

    @property
    def multi_line_string_feature(self) -> dict:
        return {
            "type": "Feature",
            "properties": self.properties,
            "geometry": {
                "type": "MultiLineString",
                "coordinates": [
                    f["geometry"]["coordinates"]
                    for f in self.deep_feature_collection["features"]
                ],
            },
        }

    @property
    def alternatives(self) -> dict:
        """All alternative-role members as a single MultiLineString."""
        return {
            "type": "FeatureCollection",
            "features": [{
                "type": "Feature",
                "properties": {},
                "geometry": {
                    "type": "MultiLineString",
                    "coordinates": [
                        m.element.line_string_feature["geometry"]["coordinates"]
                        for m in self.children
                        if m.role == ALTERNATIVE_ROLE
                    ],
                },
            }],
        }

    @property
    def simplest_feature(self) -> dict:
        """LineString if routable, otherwise MultiLineString."""
        return self.line_string_feature if self.is_routable else self.multi_line_string_feature

    # ── Statistics ───────────────────────────────────────────────────

    @property
    def statistics(self) -> dict:
        def compute():
            line_coordinates = None
            if self.is_routable:
                line_coordinates = self.line_string_feature["geometry"]["coordinates"]
            return aggregate_statistics(
                self.deep_feature_collection["features"], line_coordinates
            )

        return copy.deepcopy(self._cached("_statistics", compute))


# ── Overpass parsing ─────────────────────────────────────────────────

def _node_coordinates(elem: dict) -> list[float]:
    coord = [elem["lon"], elem["lat"]]
    ele = (elem.get("tags") or {}).get("ele")
    if ele is not None:
        try:
            coord.append(float(ele))
        except ValueError:
            logger.warning(f"node/{elem['id']} has non-numeric ele={ele!r}, ignoring")
    return coord


def _build_way(elem: dict, osm_nodes: dict) -> OSMWay:
    """Build a way from either node refs or inline 'out geom' geometry."""
    node_ids = elem.get("nodes", [])

    if "geometry" in elem:
        coords = [[p["lon"], p["lat"]] for p in elem["geometry"] if p]
    else:
        coords = [osm_nodes[n] for n in node_ids if n in osm_nodes]

    # mixed 2D/3D coordinates can't form one line: drop elevation
    if coords and len({len(c) for c in coords}) > 1:
        coords = [c[:2] for c in coords]

    return OSMWay(elem["id"], node_ids, coords, elem.get("tags"))


def relations_from_overpass(data: dict) -> list[OSMRouteRelation]:
    """Build every route relation in an Overpass JSON response.

    Way members and nested route relation members are resolved to their
    elements; members missing from the response are skipped with a warning.
    """
    elements = data.get("elements", [])

    osm_nodes = {
        e["id"]: _node_coordinates(e)
        for e in elements
        if e["type"] == "node" and "lat" in e and "lon" in e
    }
    ways = {
        e["id"]: _build_way(e, osm_nodes)
        for e in elements
        if e["type"] == "way"
    }
    raw_relations = {
        e["id"]: e
        for e in elements
        if e["type"] == "relation" and (e.get("tags") or {}).get("type") in ROUTE_TYPES
    }

    built: dict[int, OSMRouteRelation] = {}
    in_progress: set[int] = set()

    def build(relation_id) -> OSMRouteRelation | None:
        if relation_id in built:
            return built[relation_id]
        if relation_id in in_progress:
            logger.warning(f"relation/{relation_id} contains itself, skipping nested member")
            return None

        in_progress.add(relation_id)
        elem = raw_relations[relation_id]
        members = []
        for m in elem.get("members", []):
            element = None
            if m["type"] == "way":
                element = ways.get(m["ref"])
            elif m["type"] == "relation" and m["ref"] in raw_relations:
                element = build(m["ref"])
            elif m["type"] == "node":
                continue

            if element is None:
                logger.warning(f"relation/{relation_id}: member {m['type']}/{m['ref']} not resolved")
                continue
            members.append(RelationMember(m["type"], m["ref"], m.get("role", ""), element))

        in_progress.discard(relation_id)
        built[relation_id] = OSMRouteRelation(relation_id, members, elem.get("tags"))
        return built[relation_id]

    relations = [build(relation_id) for relation_id in raw_relations]
    logger.info(f"Built {len(relations)} route relations from {len(ways)} ways")
    return relations
