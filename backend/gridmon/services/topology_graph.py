"""
topology_graph.py

Purpose:
  The element/connection graph and the invariants every topology write must
  respect.

Invariants:
  - **Bus star**: a connection is legal only between a bus and a
    load/generator/transformer/line (either direction).
  - **One edge per pair**: at most one connection row per unordered endpoint
    pair; re-issuing a request updates the existing row.
  - **Derived line length**: `length` is the haversine sum over the ordered
    path and is written together with the path, never on its own.
  - **Soft delete**: elements are tagged deleted, connections are kept for
    audit but drop out of every snapshot.

Graph model:
  The store holds rows; `TopologyGraph` is an in-memory snapshot (arena of
  elements by id + edges keyed by unordered pair) built per request and then
  discarded.
"""
from __future__ import annotations

import logging
from collections import defaultdict, deque
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence, Set, Tuple

from gridmon import errors
from gridmon.models.domain import (
    BUS_NEIGHBOR_TYPES,
    Connection,
    ElementStatus,
    ElementType,
    GridElement,
    LinePathPoint,
    PointType,
    validate_properties,
)
from gridmon.services.cache import TOPOLOGY_PATTERN, Cache
from gridmon.services.geo import path_length_km
from gridmon.services.store import GridStore

logger = logging.getLogger(__name__)


# ============================================================
# 1) CONNECTION LEGALITY
# ============================================================

def is_valid_connection(from_type: ElementType, to_type: ElementType) -> bool:
    a, b = ElementType(from_type), ElementType(to_type)
    if a == ElementType.BUS:
        return b in BUS_NEIGHBOR_TYPES
    if b == ElementType.BUS:
        return a in BUS_NEIGHBOR_TYPES
    return False


def validate_connection(from_type: ElementType, to_type: ElementType) -> None:
    if not is_valid_connection(from_type, to_type):
        raise errors.InvalidTopology(ElementType(from_type).value, ElementType(to_type).value)


# ============================================================
# 2) LINE PATHS
# ============================================================

MIN_PATH_POINTS = 2


def recompute_line_length(points: Sequence[LinePathPoint]) -> Tuple[List[LinePathPoint], float]:
    """
    Sorts by `sequence_order`, renumbers 0..n-1 and returns the normalized
    points with the total haversine length (km). Endpoints left at the default
    type are typed start/end.
    """
    if len(points) < MIN_PATH_POINTS:
        raise errors.ValidationError.field("coordinates", f"At least {MIN_PATH_POINTS} coordinates are required")

    ordered = sorted(points, key=lambda p: p.sequence_order)
    out: List[LinePathPoint] = []
    last = len(ordered) - 1
    for i, p in enumerate(ordered):
        point_type = p.point_type
        if point_type == PointType.INTERMEDIATE:
            if i == 0:
                point_type = PointType.START
            elif i == last:
                point_type = PointType.END
        out.append(p.model_copy(update={"sequence_order": i, "point_type": point_type}))

    length = path_length_km((p.latitude, p.longitude) for p in out)
    return out, length


# ============================================================
# 3) SNAPSHOT GRAPH
# ============================================================

def _pair_key(a: str, b: str) -> FrozenSet[str]:
    return frozenset((a, b))


class TopologyGraph:
    """
    Immutable-by-convention snapshot. Connections whose endpoints are not in
    the element set are dropped at construction.
    """

    def __init__(self, elements: Iterable[GridElement], connections: Iterable[Connection]):
        self.elements: Dict[str, GridElement] = {}
        for e in elements:
            self.elements[e.id] = e
        self.order: List[str] = list(self.elements.keys())

        self.connections: List[Connection] = []
        self.edges: Dict[FrozenSet[str], Connection] = {}
        self._adj: Dict[str, List[Tuple[str, Connection]]] = defaultdict(list)

        for c in connections:
            if c.from_element_id not in self.elements or c.to_element_id not in self.elements:
                continue
            key = _pair_key(c.from_element_id, c.to_element_id)
            if key in self.edges:
                continue
            self.edges[key] = c
            self.connections.append(c)
            self._adj[c.from_element_id].append((c.to_element_id, c))
            self._adj[c.to_element_id].append((c.from_element_id, c))

    def __len__(self) -> int:
        return len(self.elements)

    def __contains__(self, element_id: object) -> bool:
        return element_id in self.elements

    def element(self, element_id: str) -> GridElement:
        return self.elements[element_id]

    def incident(self, element_id: str) -> List[Tuple[str, Connection]]:
        return list(self._adj.get(element_id, ()))

    def neighbors(self, element_id: str, connected_only: bool = True) -> List[str]:
        return [n for n, c in self._adj.get(element_id, ()) if c.is_connected or not connected_only]

    def degree(self, element_id: str, connected_only: bool = True) -> int:
        return len(self.neighbors(element_id, connected_only))

    def edge(self, a: str, b: str) -> Optional[Connection]:
        return self.edges.get(_pair_key(a, b))

    def buses(self) -> List[GridElement]:
        return [self.elements[i] for i in self.order if self.elements[i].element_type == ElementType.BUS]

    def bfs(self, root_id: str, visited: Optional[Set[str]] = None) -> List[Tuple[str, Optional[str], int]]:
        """
        Breadth-first walk over connected edges. Returns (node, parent, depth)
        in discovery order. A shared `visited` set lets several walks partition
        the graph: each node is attached to the first walk that reaches it.
        """
        seen = visited if visited is not None else set()
        if root_id in seen or root_id not in self.elements:
            return []
        seen.add(root_id)
        out: List[Tuple[str, Optional[str], int]] = [(root_id, None, 0)]
        q = deque([(root_id, 0)])
        while q:
            u, d = q.popleft()
            for v in self.neighbors(u):
                if v not in seen:
                    seen.add(v)
                    out.append((v, u, d + 1))
                    q.append((v, d + 1))
        return out


# ============================================================
# 4) MUTATIONS
# ============================================================

class TopologyService:
    """
    Write side of the topology: validates, persists through `GridStore` and
    invalidates cached views.
    """

    def __init__(self, store: GridStore, cache: Cache):
        self.store = store
        self.cache = cache

    def _invalidate_views(self) -> None:
        self.cache.invalidate_pattern(TOPOLOGY_PATTERN)

    # -----------------------------
    # Elements
    # -----------------------------
    def create_element(
        self,
        element_type: ElementType,
        name: str,
        properties: Dict[str, Any],
        status: ElementStatus = ElementStatus.ACTIVE,
        description: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
        path: Optional[Sequence[LinePathPoint]] = None,
    ) -> GridElement:
        element_type = ElementType(element_type)
        props = validate_properties(element_type, properties)

        points: Optional[List[LinePathPoint]] = None
        if element_type == ElementType.LINE:
            points, length = recompute_line_length(path or [])
            props["length"] = length
        elif path:
            raise errors.ValidationError.field("path", "Only lines carry a path")

        element = self.store.insert_element(
            element_type=element_type,
            name=name,
            properties=props,
            status=ElementStatus(status).value,
            description=description,
            latitude=latitude,
            longitude=longitude,
            path=points,
        )
        self._invalidate_views()
        logger.info("Created %s element %s (%s)", element_type.value, element.id, name)
        return element

    def get_element(self, element_id: str) -> GridElement:
        element = self.store.get_element(element_id)
        if element is None:
            raise errors.NotFound("Element")
        return element

    def list_elements(
        self,
        element_type: Optional[str] = None,
        status: Optional[str] = None,
        search: Optional[str] = None,
    ) -> List[GridElement]:
        return self.store.list_elements(element_type=element_type, status=status, search=search)

    def update_element(self, element_id: str, changes: Dict[str, Any]) -> GridElement:
        current = self.get_element(element_id)
        changes = {k: v for k, v in changes.items() if v is not None}

        if "properties" in changes:
            merged = {k: v for k, v in current.properties.items() if k != "length"}
            merged.update(changes["properties"])
            props = validate_properties(current.element_type, merged)
            if current.element_type == ElementType.LINE:
                props["length"] = current.properties.get("length", 0.0)
            changes["properties"] = props
        if "status" in changes:
            changes["status"] = ElementStatus(changes["status"]).value

        if not changes:
            return current

        element = self.store.update_element(element_id, changes)
        if element is None:
            raise errors.NotFound("Element")
        self._invalidate_views()
        return element

    def soft_delete_element(self, element_id: str) -> None:
        if not self.store.soft_delete_element(element_id):
            raise errors.NotFound("Element")
        self._invalidate_views()
        logger.info("Soft-deleted element %s", element_id)

    # -----------------------------
    # Connections
    # -----------------------------
    def upsert_connection(
        self,
        from_id: str,
        to_id: str,
        connection_type: str = "electrical",
        is_connected: bool = True,
    ) -> Tuple[Connection, bool]:
        if from_id == to_id:
            raise errors.ValidationError.field("to_element_id", "An element cannot be connected to itself")

        found = self.store.get_elements([from_id, to_id])
        if len(found) != 2:
            raise errors.NotFound("Element", "One or both elements not found")

        validate_connection(found[from_id].element_type, found[to_id].element_type)

        conn, created = self.store.upsert_connection(from_id, to_id, connection_type, is_connected)
        self._invalidate_views()
        logger.info(
            "%s connection %s (%s <-> %s, connected=%s)",
            "Created" if created else "Updated",
            conn.id,
            from_id,
            to_id,
            conn.is_connected,
        )
        return conn, created

    def disconnect(self, connection_id: str) -> Connection:
        conn = self.store.set_connected(connection_id, False)
        if conn is None:
            raise errors.NotFound("Connection")
        self._invalidate_views()
        logger.info("Disconnected connection %s", connection_id)
        return conn

    def element_connections(self, element_id: str) -> List[Connection]:
        self.get_element(element_id)
        return self.store.connections_for(element_id)

    # -----------------------------
    # Line paths
    # -----------------------------
    def get_line_points(self, line_id: str) -> List[LinePathPoint]:
        element = self.get_element(line_id)
        if element.element_type != ElementType.LINE:
            raise errors.NotFound("Transmission line")
        return self.store.get_line_points(line_id)

    def replace_line_points(self, line_id: str, points: Sequence[LinePathPoint]) -> Tuple[List[LinePathPoint], float]:
        normalized, length = recompute_line_length(points)
        self.store.replace_line_points(line_id, normalized, length)
        self._invalidate_views()
        logger.info("Replaced %d path points on line %s (length=%.3f km)", len(normalized), line_id, length)
        return normalized, length
