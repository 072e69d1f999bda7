"""
routes_topology.py

Purpose:
  Exposes the grid topology in the representation the caller asks for, and
  the connection writes that shape it.

Endpoints:
  - **GET /topology**: `format` = graph | adjacency | matrix | hierarchical,
    filtered by `voltage_level` / `element_type`; disconnected edges only with
    `include_disconnected=true`. Cached for 10 minutes per filter set.
  - **POST /topology/connections**: Connect two elements (bus star rule).
    Re-posting the same pair updates the existing connection.
  - **DELETE /topology/connections/{id}**: Mark a connection disconnected.
    The row stays for audit.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status

from gridmon.deps import get_topology_service, get_view_builder
from gridmon.schemas.topology import ConnectionOut, ConnectionRequest, ConnectionResult, TopologyResponse
from gridmon.services.topology_graph import TopologyService
from gridmon.services.topology_views import TopologyViewBuilder

router = APIRouter()


@router.get("", response_model=TopologyResponse)
def get_topology(
    format: str = Query("graph", description="graph | adjacency | matrix | hierarchical"),
    voltage_level: Optional[float] = Query(None, gt=0),
    element_type: Optional[str] = Query(None),
    include_disconnected: bool = Query(False),
    views: TopologyViewBuilder = Depends(get_view_builder),
) -> TopologyResponse:
    result = views.render(
        fmt=format,
        voltage_level=voltage_level,
        element_type=element_type,
        include_disconnected=include_disconnected,
    )
    return TopologyResponse(**result)


@router.post("/connections", response_model=ConnectionResult)
def upsert_connection(
    body: ConnectionRequest,
    response: Response,
    svc: TopologyService = Depends(get_topology_service),
) -> ConnectionResult:
    conn, created = svc.upsert_connection(
        body.from_element_id,
        body.to_element_id,
        connection_type=body.connection_type,
        is_connected=body.is_connected,
    )
    response.status_code = status.HTTP_201_CREATED if created else status.HTTP_200_OK
    return ConnectionResult(
        message="Connection created successfully" if created else "Connection updated successfully",
        created=created,
        connection=ConnectionOut.from_connection(conn),
    )


@router.delete("/connections/{connection_id}", response_model=ConnectionOut)
def disconnect(connection_id: str, svc: TopologyService = Depends(get_topology_service)) -> ConnectionOut:
    return ConnectionOut.from_connection(svc.disconnect(connection_id))
