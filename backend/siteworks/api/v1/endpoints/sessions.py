"""
Map session endpoints: selection, subdivision and electrical nodes.
"""

from typing import List

from fastapi import APIRouter, Depends, Request, Response, status
from shapely.geometry import Point

from siteworks.geometry.esri import crs_from_spatial_reference
from siteworks.schemas.sessions import (
    BoundaryLineOut,
    CableOut,
    ClickIn,
    ClickOut,
    ConnectionLineOut,
    FeatureIn,
    NodeOut,
    ParcelOut,
    PinSearchIn,
    SelectionOut,
    SessionOut,
    SubdivisionLineOut,
    SubdivisionOut,
    SubdivisionPointOut,
    SubdivisionStateOut,
    VisualizationOut,
    to_geojson,
)
from siteworks.services.session import MapSession, SelectionResult, SessionStore

router = APIRouter()


def get_session_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def get_map_session(
    session_id: str,
    store: SessionStore = Depends(get_session_store),
) -> MapSession:
    return store.get(session_id)


def _selection_out(result: SelectionResult) -> SelectionOut:
    classification = result.frontage.classification
    return SelectionOut(
        generation=result.generation,
        parcel=ParcelOut.from_domain(result.parcel),
        frontage=[BoundaryLineOut.from_domain(line) for line in classification.frontage],
        valid_line_count=len(result.frontage.valid_lines),
        interior_count=len(classification.interior),
        other_count=len(classification.other),
        setback=to_geojson(result.setback),
        node=NodeOut.from_domain(result.node) if result.node else None,
        visualization=VisualizationOut.from_domain(result.visualization),
        connection_line=(
            ConnectionLineOut.from_domain(result.connection_line)
            if result.connection_line
            else None
        ),
        cables=[CableOut.from_domain(cable) for cable in result.cables],
    )


def _subdivision_state(session: MapSession) -> SubdivisionStateOut:
    engine = session.subdivision
    return SubdivisionStateOut(
        state=engine.state.value,
        parcel_id=engine.parent.parcel_id if engine.parent else None,
        pending_points=[SubdivisionPointOut.from_domain(p) for p in engine.points],
        lines=[SubdivisionLineOut.from_domain(line) for line in engine.lines],
    )


@router.post("", response_model=SessionOut, status_code=status.HTTP_201_CREATED)
async def create_session(store: SessionStore = Depends(get_session_store)):
    """Open a new map session."""
    session = store.create()
    return SessionOut(session_id=session.session_id, generation=session.generation)


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session(session_id: str, store: SessionStore = Depends(get_session_store)):
    store.delete(session_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{session_id}/selection", response_model=SelectionOut)
async def select_parcel(feature: FeatureIn, session: MapSession = Depends(get_map_session)):
    """Select a clicked cadastral polygon."""
    parcel = session.normalizer.parcel(feature.model_dump())
    result = await session.select_parcel(parcel)
    return _selection_out(result)


@router.post("/{session_id}/selection/pin", response_model=SelectionOut)
async def select_by_pin(search: PinSearchIn, session: MapSession = Depends(get_map_session)):
    """Look a parcel up by PIN and select it."""
    result = await session.search_by_pin(search.pin)
    return _selection_out(result)


@router.post("/{session_id}/selection/sub-polygons/{sub_id}", response_model=SelectionOut)
async def select_sub_polygon(sub_id: str, session: MapSession = Depends(get_map_session)):
    result = await session.select_sub_polygon(sub_id)
    return _selection_out(result)


@router.delete("/{session_id}/selection", status_code=status.HTTP_204_NO_CONTENT)
async def deselect(session: MapSession = Depends(get_map_session)):
    await session.deselect()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{session_id}/subdivision", response_model=SubdivisionStateOut)
async def enable_subdivision(session: MapSession = Depends(get_map_session)):
    """Start drawing subdivision lines on the selected parcel."""
    await session.enable_subdivision()
    return _subdivision_state(session)


@router.get("/{session_id}/subdivision", response_model=SubdivisionStateOut)
async def subdivision_state(session: MapSession = Depends(get_map_session)):
    return _subdivision_state(session)


@router.post("/{session_id}/subdivision/points", response_model=ClickOut)
async def add_subdivision_point(click: ClickIn, session: MapSession = Depends(get_map_session)):
    """Place a subdivision click; the response carries the finished line, if any."""
    source_crs = crs_from_spatial_reference(click.spatial_reference, session.engine.working_crs)
    point = session.engine.to_working(Point(click.x, click.y), source_crs)
    result = await session.add_subdivision_point(point)
    return ClickOut.from_domain(result)


@router.delete("/{session_id}/subdivision/lines", response_model=SubdivisionStateOut)
async def clear_subdivision_lines(session: MapSession = Depends(get_map_session)):
    await session.clear_subdivisions()
    return _subdivision_state(session)


@router.post("/{session_id}/subdivision/complete", response_model=SubdivisionOut)
async def complete_subdivision(session: MapSession = Depends(get_map_session)):
    """Cut the parcel, propagate frontage and assign nodes to the sub-polygons."""
    result = await session.complete_subdivision()
    return SubdivisionOut.from_domain(result)


@router.delete("/{session_id}/subdivision", response_model=SubdivisionStateOut)
async def disable_subdivision(session: MapSession = Depends(get_map_session)):
    await session.disable_subdivision()
    return _subdivision_state(session)


@router.get("/{session_id}/nodes", response_model=List[NodeOut])
async def list_nodes(session: MapSession = Depends(get_map_session)):
    return [NodeOut.from_domain(node) for node in session.nodes()]


@router.post("/{session_id}/nodes/{parcel_id}/confirm", response_model=NodeOut)
async def confirm_node(parcel_id: str, session: MapSession = Depends(get_map_session)):
    """Turn the parcel's potential node into an active service point."""
    node = await session.confirm_node(parcel_id)
    return NodeOut.from_domain(node)
