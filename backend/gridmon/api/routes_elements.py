"""
routes_elements.py

Purpose:
  CRUD over grid elements and the routed path of transmission lines.

Endpoints:
  - **POST /elements**: Create an element. Lines must carry `path` (>= 2
    points); their `length` is computed from it.
  - **GET /elements**: List live elements (filter by type, status, name).
  - **GET/PUT/DELETE /elements/{id}**: Read, update in place, soft-delete.
  - **GET/PUT /elements/lines/{id}/coordinates**: Read or replace a line's
    path. Replacing rewrites `length` in the same transaction.

Every mutation invalidates cached topology views.
"""
from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from gridmon.deps import get_topology_service
from gridmon.models.domain import ElementStatus, ElementType
from gridmon.schemas.elements import ElementCreate, ElementList, ElementOut, ElementUpdate
from gridmon.schemas.topology import ConnectionOut, LinePointsRequest, LinePointsResponse
from gridmon.services.topology_graph import TopologyService

router = APIRouter()


@router.post("", response_model=ElementOut, status_code=status.HTTP_201_CREATED)
def create_element(body: ElementCreate, svc: TopologyService = Depends(get_topology_service)) -> ElementOut:
    element = svc.create_element(
        element_type=body.element_type,
        name=body.name,
        properties=body.properties,
        status=body.status,
        description=body.description,
        latitude=body.latitude,
        longitude=body.longitude,
        path=body.path,
    )
    return ElementOut.from_element(element)


@router.get("", response_model=ElementList)
def list_elements(
    element_type: Optional[ElementType] = Query(None, alias="type"),
    element_status: Optional[ElementStatus] = Query(None, alias="status"),
    search: Optional[str] = Query(None, max_length=255),
    svc: TopologyService = Depends(get_topology_service),
) -> ElementList:
    elements = svc.list_elements(
        element_type=element_type.value if element_type else None,
        status=element_status.value if element_status else None,
        search=search,
    )
    return ElementList(count=len(elements), elements=[ElementOut.from_element(e) for e in elements])


@router.get("/lines/{line_id}/coordinates", response_model=LinePointsResponse)
def get_line_coordinates(line_id: str, svc: TopologyService = Depends(get_topology_service)) -> LinePointsResponse:
    line = svc.get_element(line_id)
    points = svc.get_line_points(line_id)
    return LinePointsResponse(
        line_id=line_id,
        length_km=float(line.properties.get("length", 0.0)),
        count=len(points),
        coordinates=points,
    )


@router.put("/lines/{line_id}/coordinates", response_model=LinePointsResponse)
def replace_line_coordinates(
    line_id: str,
    body: LinePointsRequest,
    svc: TopologyService = Depends(get_topology_service),
) -> LinePointsResponse:
    points, length = svc.replace_line_points(line_id, body.coordinates)
    return LinePointsResponse(line_id=line_id, length_km=length, count=len(points), coordinates=points)


@router.get("/{element_id}", response_model=ElementOut)
def get_element(element_id: str, svc: TopologyService = Depends(get_topology_service)) -> ElementOut:
    return ElementOut.from_element(svc.get_element(element_id))


@router.get("/{element_id}/connections", response_model=List[ConnectionOut])
def element_connections(element_id: str, svc: TopologyService = Depends(get_topology_service)):
    return [ConnectionOut.from_connection(c) for c in svc.element_connections(element_id)]


@router.put("/{element_id}", response_model=ElementOut)
def update_element(
    element_id: str,
    body: ElementUpdate,
    svc: TopologyService = Depends(get_topology_service),
) -> ElementOut:
    element = svc.update_element(element_id, body.model_dump(exclude_unset=True))
    return ElementOut.from_element(element)


@router.delete("/{element_id}")
def delete_element(element_id: str, svc: TopologyService = Depends(get_topology_service)):
    svc.soft_delete_element(element_id)
    return {"id": element_id, "message": "Element deleted successfully"}
