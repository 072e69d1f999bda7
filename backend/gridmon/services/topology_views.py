"""
topology_views.py

Purpose:
  Renders the live topology snapshot into the representations the dashboard
  consumes:
    - **graph**         nodes + links for force/geo layouts
    - **adjacency**     per-element neighbour lists (symmetric)
    - **matrix**        square 0/1 connectivity matrix in snapshot order
    - **hierarchical**  rooted spanning forest from high-voltage / slack buses

Snapshot:
  Live elements matching the filters, plus connections with both endpoints in
  that set. Disconnected edges are dropped unless `include_disconnected`.

Caching:
  Rendered views are cached under `topology:{format}:{voltage}:{type}:{flag}`;
  every topology mutation clears `topology:*`.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set

from gridmon import errors
from gridmon.models.domain import BusType, ElementType, GridElement, utcnow
from gridmon.services.cache import Cache
from gridmon.services.store import GridStore
from gridmon.services.topology_graph import TopologyGraph

logger = logging.getLogger(__name__)

VALID_FORMATS = ("graph", "adjacency", "matrix", "hierarchical")

# Buses at or above this level are transmission roots for the hierarchy
ROOT_VOLTAGE_KV = 132.0


def topology_cache_key(
    fmt: str,
    voltage_level: Optional[float] = None,
    element_type: Optional[str] = None,
    include_disconnected: bool = False,
) -> str:
    v = "all" if voltage_level is None else f"{float(voltage_level):g}"
    t = element_type or "all"
    return f"topology:{fmt}:{v}:{t}:{str(bool(include_disconnected)).lower()}"


# ============================================================
# VIEW FUNCTIONS (pure, over a snapshot)
# ============================================================

def build_metadata(graph: TopologyGraph) -> Dict[str, Any]:
    voltages: Set[float] = set()
    types: Set[str] = set()
    for e in graph.elements.values():
        voltages.update(e.voltage_levels())
        types.add(e.element_type.value)
    return {
        "element_count": len(graph),
        "connection_count": len(graph.connections),
        "voltage_levels": sorted(voltages),
        "element_types": sorted(types),
        "timestamp": utcnow().isoformat(),
    }


def graph_view(graph: TopologyGraph) -> Dict[str, Any]:
    nodes = []
    for eid in graph.order:
        e = graph.element(eid)
        nodes.append(
            {
                "id": e.id,
                "label": e.name,
                "type": e.element_type.value,
                "status": e.status.value,
                "properties": e.properties,
                "position": {"x": e.longitude or 0, "y": e.latitude or 0},
            }
        )

    links = []
    for c in graph.connections:
        src = graph.element(c.from_element_id)
        dst = graph.element(c.to_element_id)
        links.append(
            {
                "id": c.id,
                "source": c.from_element_id,
                "target": c.to_element_id,
                "type": c.connection_type,
                "connected": c.is_connected,
                "label": f"{src.name} → {dst.name}",
            }
        )
    return {"nodes": nodes, "links": links}


def adjacency_view(graph: TopologyGraph) -> Dict[str, Any]:
    out: Dict[str, Any] = {}
    for eid in graph.order:
        e = graph.element(eid)
        out[eid] = {
            "element": {
                "id": e.id,
                "name": e.name,
                "type": e.element_type.value,
                "status": e.status.value,
                "properties": e.properties,
            },
            "connections": [
                {
                    "to": other,
                    "to_name": graph.element(other).name,
                    "type": c.connection_type,
                    "connected": c.is_connected,
                    "connection_id": c.id,
                }
                for other, c in graph.incident(eid)
            ],
        }
    return out


def matrix_view(graph: TopologyGraph) -> Dict[str, Any]:
    index = {eid: i for i, eid in enumerate(graph.order)}
    n = len(index)
    matrix = [[0] * n for _ in range(n)]
    for c in graph.connections:
        if not c.is_connected:
            continue
        i, j = index[c.from_element_id], index[c.to_element_id]
        matrix[i][j] = 1
        matrix[j][i] = 1

    elements = [
        {"id": e.id, "name": e.name, "type": e.element_type.value}
        for e in (graph.element(eid) for eid in graph.order)
    ]
    return {"elements": elements, "matrix": matrix}


def _is_root_bus(e: GridElement) -> bool:
    voltage = e.properties.get("voltage_level")
    if voltage is not None and float(voltage) >= ROOT_VOLTAGE_KV:
        return True
    return e.properties.get("bus_type") == BusType.SLACK.value


def hierarchical_view(graph: TopologyGraph) -> List[Dict[str, Any]]:
    """
    Spanning forest: roots are high-voltage or slack buses (fallback: the
    first bus). Each element is placed under the first parent that reaches it;
    elements no root reaches are appended as single-node trees.
    """
    buses = graph.buses()
    roots = [b for b in buses if _is_root_bus(b)]
    if not roots and buses:
        roots = [buses[0]]

    def make_node(eid: str, depth: int) -> Dict[str, Any]:
        e = graph.element(eid)
        return {
            "id": e.id,
            "name": e.name,
            "type": e.element_type.value,
            "properties": e.properties,
            "depth": depth,
            "children": [],
        }

    visited: Set[str] = set()
    forest: List[Dict[str, Any]] = []
    for root in roots:
        walk = graph.bfs(root.id, visited)
        if not walk:
            continue
        nodes: Dict[str, Dict[str, Any]] = {}
        for eid, parent, depth in walk:
            node = make_node(eid, depth)
            nodes[eid] = node
            if parent is not None:
                nodes[parent]["children"].append(node)
        forest.append(nodes[root.id])

    for eid in graph.order:
        if eid not in visited:
            visited.add(eid)
            forest.append(make_node(eid, 0))
    return forest


RENDERERS = {
    "graph": graph_view,
    "adjacency": adjacency_view,
    "matrix": matrix_view,
    "hierarchical": hierarchical_view,
}


# ============================================================
# BUILDER (store + cache)
# ============================================================

class TopologyViewBuilder:
    def __init__(self, store: GridStore, cache: Cache, ttl_s: int = 600):
        self.store = store
        self.cache = cache
        self.ttl_s = ttl_s

    def snapshot(
        self,
        element_type: Optional[str] = None,
        voltage_level: Optional[float] = None,
        include_disconnected: bool = False,
    ) -> TopologyGraph:
        elements = self.store.list_elements(element_type=element_type)
        if voltage_level is not None:
            elements = [e for e in elements if e.matches_voltage(float(voltage_level))]
        connections = self.store.list_connections(include_disconnected=include_disconnected)
        return TopologyGraph(elements, connections)

    def render(
        self,
        fmt: str = "graph",
        voltage_level: Optional[float] = None,
        element_type: Optional[str] = None,
        include_disconnected: bool = False,
    ) -> Dict[str, Any]:
        if fmt not in RENDERERS:
            raise errors.ValidationError.field(
                "format", f"Invalid format. Must be one of: {', '.join(VALID_FORMATS)}"
            )
        if element_type is not None:
            try:
                element_type = ElementType(element_type).value
            except ValueError:
                raise errors.ValidationError.field(
                    "element_type", f"Unknown element type '{element_type}'"
                ) from None

        key = topology_cache_key(fmt, voltage_level, element_type, include_disconnected)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        graph = self.snapshot(element_type, voltage_level, include_disconnected)
        result = {
            "format": fmt,
            "data": RENDERERS[fmt](graph),
            "metadata": build_metadata(graph),
        }
        self.cache.set(key, result, ttl_s=self.ttl_s)
        logger.debug("Rendered %s topology (%d elements)", fmt, len(graph))
        return result
