"""
Electrical connection node registry.

Decides, per parcel, whether an existing node or a Western Power pillar
within the sharing threshold of the frontage can serve it, or whether a
potential service point has to be proposed instead.

Confirmed nodes (pillars and service points) and candidates (potential
service points) are kept in separate stores. Confirmed nodes are never
removed and only gain served parcels; candidates are keyed by the single
parcel they were proposed for, so there is at most one per parcel.
"""
from __future__ import annotations

import asyncio
import logging
import math
import uuid
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import httpx
from shapely.geometry import LineString, MultiLineString, Point, Polygon
from shapely.geometry.base import BaseGeometry

from siteworks.connectors.arcgis import ArcGISError
from siteworks.core.config import settings
from siteworks.core.exceptions import InvalidGeometryError, InvalidInputError
from siteworks.core.metrics import record_node_assignment
from siteworks.geometry.engine import GeometryEngine
from siteworks.models.electrical import (
    Cable,
    CandidatePosition,
    ConnectionLine,
    ElectricalNode,
    NodeKind,
    NodeSide,
    NodeVisualization,
    RenderedNode,
)
from siteworks.models.parcels import BoundaryLine
from siteworks.services.feature_sources import Feature, PillarSource
from siteworks.services.normalization import FeatureNormalizer

logger = logging.getLogger(__name__)

# Raises StaleSelectionError when the selection that started the call is gone
Guard = Callable[[], None]

CANDIDATE_LABELS = ("first-left", "first-right", "last-left", "last-right")
CHOSEN_CANDIDATE = 1  # first-right


@dataclass(frozen=True, slots=True)
class RegistrySnapshot:
    confirmed: Tuple[ElectricalNode, ...]
    candidates: Tuple[ElectricalNode, ...]


def _copy_node(node: ElectricalNode) -> ElectricalNode:
    return replace(node, served=list(node.served), centroids=dict(node.centroids))


class ElectricalNodeRegistry:
    """In-memory node store for one map session."""

    def __init__(
        self,
        engine: GeometryEngine,
        inventory: Optional[PillarSource] = None,
        normalizer: Optional[FeatureNormalizer] = None,
        sharing_threshold: Optional[float] = None,
        search_radius: Optional[float] = None,
        inset_distance: Optional[float] = None,
        query_timeout: Optional[float] = None,
    ):
        self.engine = engine
        self.inventory = inventory
        self.normalizer = normalizer or FeatureNormalizer(engine)
        self.sharing_threshold = (
            settings.SHARING_THRESHOLD if sharing_threshold is None else sharing_threshold
        )
        self.search_radius = settings.SEARCH_RADIUS if search_radius is None else search_radius
        self.inset_distance = settings.INSET_DISTANCE if inset_distance is None else inset_distance
        self.query_timeout = (
            settings.PILLAR_QUERY_TIMEOUT if query_timeout is None else query_timeout
        )
        self._confirmed: Dict[str, ElectricalNode] = {}
        self._candidates: Dict[str, ElectricalNode] = {}

    # ------------------------------------------------------------------
    # Store access
    # ------------------------------------------------------------------

    def nodes(self) -> List[ElectricalNode]:
        """Every node, confirmed first, in creation order."""
        return [*self._confirmed.values(), *self._candidates.values()]

    def get(self, node_id: str) -> Optional[ElectricalNode]:
        node = self._confirmed.get(node_id)
        if node is not None:
            return node
        for candidate in self._candidates.values():
            if candidate.node_id == node_id:
                return candidate
        return None

    def node_for_parcel(self, parcel_id: str) -> Optional[ElectricalNode]:
        for node in self._confirmed.values():
            if node.serves(parcel_id):
                return node
        return self._candidates.get(parcel_id)

    def snapshot(self) -> RegistrySnapshot:
        return RegistrySnapshot(
            confirmed=tuple(_copy_node(n) for n in self._confirmed.values()),
            candidates=tuple(_copy_node(n) for n in self._candidates.values()),
        )

    def restore(self, snapshot: RegistrySnapshot) -> None:
        self._confirmed = {n.node_id: _copy_node(n) for n in snapshot.confirmed}
        self._candidates = {n.served[0]: _copy_node(n) for n in snapshot.candidates}

    # ------------------------------------------------------------------
    # Assignment
    # ------------------------------------------------------------------

    def frontage_union(self, frontage_lines: Iterable[BoundaryLine]) -> Optional[BaseGeometry]:
        return self.engine.union(line.geometry for line in frontage_lines)

    async def assign(
        self,
        parcel_id: str,
        frontage_lines: Sequence[BoundaryLine],
        parcel_geometry: Polygon,
        guard: Optional[Guard] = None,
    ) -> Optional[ElectricalNode]:
        """
        Node serving ``parcel_id``; ``None`` only when there is no frontage.

        Order of preference: a confirmed node already serving the parcel,
        the confirmed node or pillar closest to the frontage within the
        sharing threshold, and finally a potential service point placed
        inside the parcel.
        """
        if not frontage_lines:
            logger.info("node_assignment_skipped", extra={"parcel_id": parcel_id})
            record_node_assignment("none")
            return None

        centroid = parcel_geometry.centroid
        positions = self.candidate_positions(frontage_lines, parcel_geometry)

        shared, outcome = await self._find_shareable(
            parcel_id, frontage_lines, guard
        )
        if shared is not None:
            shared.add_parcel(parcel_id, centroid)
            self.remove_potential_nodes_for_property(parcel_id)
            logger.info(
                "node_shared",
                extra={
                    "parcel_id": parcel_id,
                    "node_id": shared.node_id,
                    "node_kind": shared.kind.value,
                    "served_count": len(shared.served),
                },
            )
            record_node_assignment(outcome)
            return shared

        if not positions:
            logger.warning("node_placement_failed", extra={"parcel_id": parcel_id})
            record_node_assignment("none")
            return None

        self.remove_potential_nodes_for_property(parcel_id)
        chosen = positions[CHOSEN_CANDIDATE]
        potential = ElectricalNode(
            node_id=f"POTENTIAL_{parcel_id}",
            kind=NodeKind.POTENTIAL_SERVICE_POINT,
            position=chosen.position,
            served=[parcel_id],
            centroids={parcel_id: centroid},
            side=chosen.side,
        )
        self._candidates[parcel_id] = potential
        logger.info(
            "potential_node_created",
            extra={
                "parcel_id": parcel_id,
                "node_id": potential.node_id,
                "side": chosen.side.value,
                "threshold": self.sharing_threshold,
            },
        )
        record_node_assignment("potential")
        return potential

    async def _find_shareable(
        self,
        parcel_id: str,
        frontage_lines: Sequence[BoundaryLine],
        guard: Optional[Guard],
    ) -> Tuple[Optional[ElectricalNode], str]:
        merged = self.frontage_union(frontage_lines)
        if merged is None:
            if guard is not None:
                guard()
            return None, "none"

        sharing_zone = self.engine.buffer(merged, self.sharing_threshold)

        best: Optional[ElectricalNode] = None
        best_distance = math.inf
        for node in self._confirmed.values():
            if node.serves(parcel_id):
                return node, "existing"
            if self.engine.contains(sharing_zone, node.position):
                distance = self.engine.distance(node.position, merged)
                if distance < best_distance:
                    best, best_distance = node, distance
        outcome = "shared"

        pillar_features = await self._query_pillars(sharing_zone)
        if guard is not None:
            guard()

        for feature in pillar_features:
            pillar = self._register_pillar(feature)
            if pillar is None:
                continue
            if pillar.serves(parcel_id):
                return pillar, "existing"
            distance = self.engine.distance(pillar.position, merged)
            if distance < best_distance:
                best, best_distance, outcome = pillar, distance, "pillar"

        return best, outcome

    async def _query_pillars(self, area: BaseGeometry) -> List[Feature]:
        if self.inventory is None:
            return []
        try:
            return await asyncio.wait_for(
                self.inventory.pillars_within(area), timeout=self.query_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("pillar_query_timeout", extra={"timeout": self.query_timeout})
        except (httpx.HTTPError, ArcGISError):
            logger.warning("pillar_query_failed", exc_info=True)
        return []

    def _register_pillar(self, feature: Feature) -> Optional[ElectricalNode]:
        """Tracked node for a pillar feature, registering it on first sight."""
        pick_id = (feature.get("attributes") or {}).get("pick_id")
        if pick_id is None:
            return None
        node_id = str(pick_id)
        existing = self._confirmed.get(node_id)
        if existing is not None:
            return existing
        try:
            position = self.normalizer.geometry(feature)
        except InvalidGeometryError:
            logger.warning("pillar_geometry_invalid", extra={"pick_id": node_id})
            return None
        if not isinstance(position, Point):
            position = position.representative_point()
        pillar = ElectricalNode(node_id=node_id, kind=NodeKind.PILLAR, position=position)
        self._confirmed[node_id] = pillar
        logger.info("pillar_registered", extra={"node_id": node_id})
        return pillar

    # ------------------------------------------------------------------
    # Potential node placement
    # ------------------------------------------------------------------

    def candidate_positions(
        self,
        frontage_lines: Sequence[BoundaryLine],
        parcel_geometry: Polygon,
    ) -> List[CandidatePosition]:
        """
        The four placements: first/last frontage line x left/right end.

        Left uses the line's start point, right its end point; each is
        moved ``inset_distance`` perpendicular to the line into the parcel.
        """
        first = frontage_lines[0].endpoints
        last = frontage_lines[-1].endpoints
        if first is None or last is None:
            return []

        positions: List[CandidatePosition] = []
        labels = iter(CANDIDATE_LABELS)
        for start, end in (first, last):
            for side in (NodeSide.LEFT, NodeSide.RIGHT):
                positions.append(
                    CandidatePosition(
                        label=next(labels),
                        side=side,
                        position=self._inset_position(start, end, parcel_geometry, side),
                    )
                )
        return positions

    def _inset_position(
        self,
        start: Point,
        end: Point,
        parcel_geometry: Polygon,
        side: NodeSide,
    ) -> Point:
        edge_point = start if side is NodeSide.LEFT else end
        dx = end.x - start.x
        dy = end.y - start.y
        length = math.hypot(dx, dy)
        if length == 0:
            return edge_point

        perp_x = -dy / length
        perp_y = dx / length
        for sign in (1.0, -1.0):
            inset = Point(
                edge_point.x + sign * perp_x * self.inset_distance,
                edge_point.y + sign * perp_y * self.inset_distance,
            )
            if self.engine.contains(parcel_geometry, inset):
                return inset
        # narrow lots
        return edge_point

    # ------------------------------------------------------------------
    # Pruning and lifecycle
    # ------------------------------------------------------------------

    def remove_potential_nodes_for_property(self, parcel_id: str) -> int:
        removed = self._candidates.pop(parcel_id, None)
        if removed is None:
            return 0
        logger.info(
            "potential_node_removed",
            extra={"parcel_id": parcel_id, "node_id": removed.node_id},
        )
        return 1

    def remove_all_potential_nodes(self) -> int:
        count = len(self._candidates)
        self._candidates.clear()
        if count:
            logger.info("potential_nodes_cleared", extra={"count": count})
        return count

    def confirm(self, parcel_id: str) -> ElectricalNode:
        """Turn the parcel's potential node into an active service point."""
        candidate = self._candidates.pop(parcel_id, None)
        if candidate is None:
            raise InvalidInputError(f"parcel {parcel_id} has no potential node to confirm")
        node = ElectricalNode(
            node_id=f"NODE_{uuid.uuid4().hex[:12]}",
            kind=NodeKind.SERVICE_POINT,
            position=candidate.position,
            served=list(candidate.served),
            centroids=dict(candidate.centroids),
            side=candidate.side,
        )
        self._confirmed[node.node_id] = node
        logger.info(
            "service_point_confirmed",
            extra={"parcel_id": parcel_id, "node_id": node.node_id},
        )
        return node

    # ------------------------------------------------------------------
    # Presentation
    # ------------------------------------------------------------------

    def update_visualization(
        self,
        frontage_lines: Sequence[BoundaryLine],
        parcel_geometry: BaseGeometry,
        primary_node_id: Optional[str] = None,
    ) -> NodeVisualization:
        """
        Nodes to show for the selected parcel.

        Only nodes within the search radius of the frontage are considered,
        plus the primary node wherever it is. Of those, the primary node and
        nodes within the sharing threshold are rendered.
        """
        merged = self.frontage_union(frontage_lines) if frontage_lines else None
        if merged is None:
            return NodeVisualization(primary_node_id=primary_node_id)

        sharing_zone = self.engine.buffer(merged, self.sharing_threshold)
        search_zone = self.engine.buffer(merged, self.search_radius)

        in_scope = [n for n in self.nodes() if self.engine.contains(search_zone, n.position)]
        if primary_node_id and not any(n.node_id == primary_node_id for n in in_scope):
            primary = self.get(primary_node_id)
            if primary is not None:
                in_scope.append(primary)

        rendered: List[RenderedNode] = []
        for node in in_scope:
            is_primary = primary_node_id is not None and node.node_id == primary_node_id
            is_nearby = self.engine.contains(sharing_zone, node.position)
            if not (is_primary or is_nearby):
                continue
            on_site = self.engine.contains(parcel_geometry, node.position)
            rendered.append(
                RenderedNode(
                    node=node,
                    is_primary=is_primary,
                    is_nearby=is_nearby,
                    on_site=on_site,
                    distance_to_parcel=(
                        None if on_site else self.engine.distance(node.position, parcel_geometry)
                    ),
                    distance_to_frontage=self.engine.distance(node.position, merged),
                )
            )
        return NodeVisualization(primary_node_id=primary_node_id, nodes=rendered)

    def connection_line(self, node: ElectricalNode, parcel_id: str) -> Optional[ConnectionLine]:
        """Line from an active node to the parcel's centroid."""
        if node.is_candidate:
            return None
        centroid = node.centroids.get(parcel_id)
        if centroid is None:
            logger.warning(
                "connection_line_missing_centroid",
                extra={"node_id": node.node_id, "parcel_id": parcel_id},
            )
            return None
        return ConnectionLine(
            node_id=node.node_id,
            parcel_id=parcel_id,
            geometry=LineString([node.position, centroid]),
            is_pillar=node.is_pillar,
        )

    async def connected_cables(
        self,
        node: ElectricalNode,
        tolerance: Optional[float] = None,
    ) -> List[Cable]:
        """Underground cables with a path end point within ``tolerance`` of ``node``."""
        limit = settings.CABLE_CONNECTION_TOLERANCE if tolerance is None else tolerance
        if self.inventory is None:
            return []
        area = self.engine.buffer(node.position, limit)
        try:
            features = await asyncio.wait_for(
                self.inventory.cables_within(area), timeout=self.query_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("cable_query_timeout", extra={"node_id": node.node_id})
            return []
        except (httpx.HTTPError, ArcGISError):
            logger.warning("cable_query_failed", extra={"node_id": node.node_id}, exc_info=True)
            return []

        cables: List[Cable] = []
        for feature in features:
            try:
                geometry = self.normalizer.geometry(feature)
            except InvalidGeometryError:
                continue
            if self._ends_near(geometry, node.position, limit):
                cables.append(Cable(geometry=geometry, attributes=feature.get("attributes") or {}))
        return cables

    @staticmethod
    def _ends_near(geometry: BaseGeometry, point: Point, tolerance: float) -> bool:
        if isinstance(geometry, LineString):
            paths = [geometry]
        elif isinstance(geometry, MultiLineString):
            paths = list(geometry.geoms)
        else:
            return False
        for path in paths:
            coords = list(path.coords)
            if not coords:
                continue
            if (
                Point(coords[0]).distance(point) <= tolerance
                or Point(coords[-1]).distance(point) <= tolerance
            ):
                return True
        return False
