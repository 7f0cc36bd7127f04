"""
Map sessions: the per-browser-session context the decision services run in.

Each session owns its node registry, subdivision state and current
selection. Every mutating call is serialised on the session lock. Selection
changes bump ``generation`` *before* waiting for the lock, so a selection
still awaiting upstream data notices it was superseded when it resumes and
discards its result instead of writing it over the newer one.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from shapely.geometry import Point
from shapely.geometry.base import BaseGeometry

from siteworks.connectors.arcgis import ArcGISConnector
from siteworks.core.exceptions import (
    InvalidInputError,
    ParcelNotFoundError,
    SessionNotFoundError,
    StaleSelectionError,
)
from siteworks.geometry.engine import GeometryEngine
from siteworks.models.electrical import (
    Cable,
    ConnectionLine,
    ElectricalNode,
    NodeVisualization,
)
from siteworks.models.parcels import (
    BoundaryLine,
    FrontageClassification,
    FrontageResult,
    Parcel,
    SubPolygon,
)
from siteworks.models.subdivision import ClickResult, SubdivisionResult
from siteworks.services.electrical import ElectricalNodeRegistry, Guard
from siteworks.services.feature_sources import (
    CadastralLineSource,
    CadastralPolygonSource,
    InfrastructureInventory,
    LineSource,
    PillarSource,
    PolygonSource,
)
from siteworks.services.frontage import FrontageClassifier
from siteworks.services.normalization import FeatureNormalizer
from siteworks.services.setback import SetbackGenerator
from siteworks.services.subdivision import SubdivisionEngine

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SelectionResult:
    """Everything the UI draws for a selected parcel or sub-polygon."""

    generation: int
    parcel: Parcel
    frontage: FrontageResult
    setback: Optional[BaseGeometry] = None
    node: Optional[ElectricalNode] = None
    visualization: NodeVisualization = field(default_factory=NodeVisualization)
    connection_line: Optional[ConnectionLine] = None
    cables: List[Cable] = field(default_factory=list)


class MapSession:
    """Selection, node and subdivision state for one map."""

    def __init__(
        self,
        session_id: str,
        engine: GeometryEngine,
        line_source: LineSource,
        polygon_source: Optional[PolygonSource] = None,
        inventory: Optional[PillarSource] = None,
    ):
        self.session_id = session_id
        self.engine = engine
        self.normalizer = FeatureNormalizer(engine)
        self.classifier = FrontageClassifier(line_source, self.normalizer, engine)
        self.registry = ElectricalNodeRegistry(engine, inventory, self.normalizer)
        self.setback_generator = SetbackGenerator(engine)
        self.subdivision = SubdivisionEngine(engine)
        self.polygon_source = polygon_source

        self.generation = 0
        self._lock = asyncio.Lock()

        self.parcel: Optional[Parcel] = None
        self.frontage: FrontageResult = FrontageResult()
        self.setback: Optional[BaseGeometry] = None
        self.visualization: NodeVisualization = NodeVisualization()
        self.sub_polygons: Dict[str, SubPolygon] = {}

    @property
    def frontage_lines(self) -> List[BoundaryLine]:
        return self.frontage.frontage

    def _bump(self) -> int:
        self.generation += 1
        return self.generation

    def _check(self, issued: int) -> None:
        if issued != self.generation:
            logger.info(
                "selection_superseded",
                extra={"issued": issued, "current": self.generation},
            )
            raise StaleSelectionError(issued, self.generation)

    def _guard(self, issued: int) -> Guard:
        def check() -> None:
            self._check(issued)

        return check

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    async def select_parcel(self, parcel: Parcel) -> SelectionResult:
        """Classify frontage, derive the setback and assign a node for ``parcel``."""
        issued = self._bump()
        async with self._lock:
            self._check(issued)
            self.registry.remove_all_potential_nodes()
            if self.subdivision.active:
                self.subdivision.disable()

            frontage = await self.classifier.find_frontage(parcel)
            self._check(issued)
            return await self._apply_selection(issued, parcel, frontage)

    async def select_sub_polygon(self, sub_id: str) -> SelectionResult:
        """Select a sub-polygon from the last subdivision; frontage is the propagated one."""
        issued = self._bump()
        async with self._lock:
            self._check(issued)
            sub = self.sub_polygons.get(sub_id)
            if sub is None:
                raise ParcelNotFoundError(f"unknown sub-polygon {sub_id}")
            self.registry.remove_all_potential_nodes()
            frontage = FrontageResult(
                valid_lines=list(sub.frontage_lines),
                classification=FrontageClassification(frontage=list(sub.frontage_lines)),
            )
            return await self._apply_selection(issued, sub.as_parcel(), frontage)

    async def search_by_pin(self, pin: str) -> SelectionResult:
        """Look a parcel up by PIN and select it."""
        try:
            number = int(str(pin).strip())
        except ValueError:
            raise InvalidInputError(f"PIN must be numeric, got {pin!r}") from None
        if self.polygon_source is None:
            raise ParcelNotFoundError("no cadastral polygon source configured")

        issued = self._bump()
        feature = await self.polygon_source.by_pin(number)
        self._check(issued)
        if feature is None:
            raise ParcelNotFoundError(f"no parcel with PIN {number}")
        return await self.select_parcel(self.normalizer.parcel(feature))

    async def deselect(self) -> None:
        self._bump()
        async with self._lock:
            if self.parcel is not None:
                self.registry.remove_potential_nodes_for_property(self.parcel.parcel_id)
            self.registry.remove_all_potential_nodes()
            self.subdivision.disable()
            self._clear_selection()
        logger.info("parcel_deselected", extra={"session_id": self.session_id})

    async def _apply_selection(
        self,
        issued: int,
        parcel: Parcel,
        frontage: FrontageResult,
    ) -> SelectionResult:
        frontage_lines = frontage.frontage
        setback = self.setback_generator.generate(frontage_lines, parcel.geometry)
        # assignment may add this parcel to a shared node before the cable lookup
        snapshot = self.registry.snapshot()
        try:
            node = await self.registry.assign(
                parcel.parcel_id, frontage_lines, parcel.geometry, guard=self._guard(issued)
            )

            cables: List[Cable] = []
            if node is not None and not node.is_candidate:
                cables = await self.registry.connected_cables(node)
                self._check(issued)
        except StaleSelectionError:
            self.registry.restore(snapshot)
            raise

        visualization = self.registry.update_visualization(
            frontage_lines, parcel.geometry, node.node_id if node else None
        )

        self.parcel = parcel
        self.frontage = frontage
        self.setback = setback
        self.visualization = visualization
        logger.info(
            "parcel_selected",
            extra={
                "parcel_id": parcel.parcel_id,
                "generation": issued,
                "frontage": len(frontage_lines),
                "node_id": node.node_id if node else None,
            },
        )
        return SelectionResult(
            generation=issued,
            parcel=parcel,
            frontage=frontage,
            setback=setback,
            node=node,
            visualization=visualization,
            connection_line=(
                self.registry.connection_line(node, parcel.parcel_id) if node else None
            ),
            cables=cables,
        )

    def _clear_selection(self) -> None:
        self.parcel = None
        self.frontage = FrontageResult()
        self.setback = None
        self.visualization = NodeVisualization()

    # ------------------------------------------------------------------
    # Subdivision
    # ------------------------------------------------------------------

    async def enable_subdivision(self) -> None:
        async with self._lock:
            self.subdivision.enable(self.parcel, self.frontage_lines)
            self.sub_polygons = {}

    async def add_subdivision_point(self, click: Point) -> ClickResult:
        async with self._lock:
            return self.subdivision.add_point(click)

    async def clear_subdivisions(self) -> None:
        async with self._lock:
            self.subdivision.clear()

    async def disable_subdivision(self) -> None:
        async with self._lock:
            self.subdivision.disable()

    async def complete_subdivision(self) -> SubdivisionResult:
        async with self._lock:
            issued = self.generation
            result = await self.subdivision.complete(
                self.registry, self.setback_generator, guard=self._guard(issued)
            )
            self.sub_polygons = {sub.sub_id: sub for sub in result.sub_polygons}
            if result.visualization is not None:
                self.visualization = result.visualization
            self.setback = result.setback
            return result

    # ------------------------------------------------------------------
    # Nodes
    # ------------------------------------------------------------------

    async def confirm_node(self, parcel_id: str) -> ElectricalNode:
        """Promote the parcel's potential node to an active service point."""
        async with self._lock:
            node = self.registry.confirm(parcel_id)
            if self.parcel is not None and self.parcel.parcel_id == parcel_id:
                self.visualization = self.registry.update_visualization(
                    self.frontage_lines, self.parcel.geometry, node.node_id
                )
            return node

    def nodes(self) -> List[ElectricalNode]:
        return self.registry.nodes()


class SessionStore:
    """In-memory map sessions keyed by id."""

    def __init__(
        self,
        connector: Optional[ArcGISConnector] = None,
        engine: Optional[GeometryEngine] = None,
        line_source: Optional[LineSource] = None,
        polygon_source: Optional[PolygonSource] = None,
        inventory: Optional[PillarSource] = None,
    ):
        self.engine = engine or GeometryEngine()
        crs = self.engine.working_crs
        if connector is not None:
            line_source = line_source or CadastralLineSource(connector, crs)
            polygon_source = polygon_source or CadastralPolygonSource(connector, crs)
            inventory = inventory or InfrastructureInventory(connector, crs)
        if line_source is None:
            raise ValueError("SessionStore needs a connector or a line source")
        self.line_source = line_source
        self.polygon_source = polygon_source
        self.inventory = inventory
        self._sessions: Dict[str, MapSession] = {}

    def create(self) -> MapSession:
        session_id = uuid.uuid4().hex
        session = MapSession(
            session_id,
            self.engine,
            self.line_source,
            polygon_source=self.polygon_source,
            inventory=self.inventory,
        )
        self._sessions[session_id] = session
        logger.info("session_created", extra={"session_id": session_id})
        return session

    def get(self, session_id: str) -> MapSession:
        session = self._sessions.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"unknown session {session_id}")
        return session

    def delete(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is None:
            raise SessionNotFoundError(f"unknown session {session_id}")
        logger.info("session_deleted", extra={"session_id": session_id})

    def __len__(self) -> int:
        return len(self._sessions)
