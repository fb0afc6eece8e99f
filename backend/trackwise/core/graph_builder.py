"""
Graph Builder for the Trackwise rail network.
Turns route templates into a directed multigraph of speed-limited track segments.
"""
import networkx as nx
from typing import Dict, Any, Iterable, List, Optional, Set, Tuple
import logging

from trackwise.core.config import settings
from trackwise.core.geo import haversine_km
from trackwise.core.models import Edge, Station
from trackwise.core.twin_schema import RouteTemplate

logger = logging.getLogger(__name__)


def segment_key(a: str, b: str) -> str:
    """Direction-free key for a station pair, e.g. 'BPL|NDLS'."""
    x, y = sorted((a, b))
    return f"{x}|{y}"


class TrackGraph:
    """Immutable track network: stations, directed edges and the adjacency map."""

    def __init__(self, stations: Dict[str, Station], edges: List[Edge]):
        self.stations = stations
        self.edges = edges
        self.adjacency: Dict[str, List[Edge]] = {}
        self.edges_by_track: Dict[str, Edge] = {}
        self.graph = nx.MultiDiGraph()

        for edge in edges:
            self.adjacency.setdefault(edge.from_station, []).append(edge)
            self.edges_by_track[edge.track_id] = edge
            self.graph.add_edge(
                edge.from_station,
                edge.to_station,
                key=edge.track_id,
                distance_km=edge.distance_km,
                speed_limit_kmh=edge.speed_limit_kmh,
                edge=edge,
            )
        for code, station in stations.items():
            if code in self.graph:
                self.graph.nodes[code].update(lat=station.lat, lon=station.lon, name=station.name)

    def has_station(self, code: str) -> bool:
        return code in self.adjacency

    def outgoing(self, code: str) -> List[Edge]:
        return self.adjacency.get(code, [])

    def neighbors(self, code: str) -> List[str]:
        seen: List[str] = []
        for edge in self.outgoing(code):
            if edge.to_station not in seen:
                seen.append(edge.to_station)
        return seen

    def physical_tracks(self) -> Set[str]:
        return {edge.physical_track_id for edge in self.edges}

    def nodes(self) -> List[str]:
        return list(self.adjacency.keys())

    def get_network_stats(self) -> Dict[str, Any]:
        """Get network statistics"""
        return {
            "stations": len(self.stations),
            "nodes": self.graph.number_of_nodes(),
            "edges": len(self.edges),
            "physical_tracks": len(self.physical_tracks()),
            "is_connected": nx.is_strongly_connected(self.graph) if self.graph.number_of_nodes() > 0 else False,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "stations": [
                {
                    "id": s.id,
                    "name": s.name,
                    "lat": s.lat,
                    "lon": s.lon,
                    "state": s.state,
                    "neighbors": self.neighbors(s.id),
                }
                for s in self.stations.values()
            ],
            "edges": [edge.to_dict() for edge in self.edges],
            "stats": self.get_network_stats(),
        }


class TrackGraphBuilder:
    """Builds the track graph from route templates and a station registry"""

    def __init__(
        self,
        stations: Iterable[Station],
        templates: List[RouteTemplate],
        speed_overrides: Optional[Dict[str, float]] = None,
        priority_corridors: Optional[int] = None,
    ):
        self.stations: Dict[str, Station] = {s.id: s for s in stations}
        self.templates = templates
        self.speed_overrides = speed_overrides or {}
        self.priority_corridors = (
            settings.PRIORITY_CORRIDOR_COUNT if priority_corridors is None else priority_corridors
        )

    def _track_count(self, index: int, template: RouteTemplate) -> int:
        if template.tracks:
            return template.tracks
        return 2 if index < self.priority_corridors else 1

    def build(self) -> TrackGraph:
        """Build the complete track graph"""
        logger.info("Building track graph...")
        edges: List[Edge] = []
        built_pairs: Set[str] = set()
        skipped = 0

        for index, template in enumerate(self.templates):
            corridor_id = index + 1
            tracks = self._track_count(index, template)
            for a, b in zip(template.stations, template.stations[1:]):
                sa = self.stations.get(a)
                sb = self.stations.get(b)
                if sa is None or sb is None:
                    skipped += 1
                    continue
                key = segment_key(a, b)
                if key in built_pairs or a == b:
                    continue
                built_pairs.add(key)

                distance = haversine_km(sa.lat, sa.lon, sb.lat, sb.lon)
                limit = float(self.speed_overrides.get(key, template.speed_limit_kmh))
                for n in range(1, tracks + 1):
                    edges.append(Edge(a, b, distance, f"{a}-{b}-T{n}", corridor_id, limit, n))
                    edges.append(Edge(b, a, distance, f"{b}-{a}-T{n}", corridor_id, limit, n))

        if skipped:
            logger.warning(f"Skipped {skipped} segments with stations missing from the registry")

        graph = TrackGraph(self.stations, edges)
        logger.info(
            f"Graph built: {len(graph.adjacency)} stations, {len(built_pairs)} segments, {len(edges)} directed edges"
        )
        return graph


def collect_segments(stations: Dict[str, Station], templates: List[RouteTemplate]) -> List[Tuple[str, str]]:
    """Unique station pairs the builder would create, in template order."""
    seen: Set[str] = set()
    pairs: List[Tuple[str, str]] = []
    for template in templates:
        for a, b in zip(template.stations, template.stations[1:]):
            if a not in stations or b not in stations or a == b:
                continue
            key = segment_key(a, b)
            if key in seen:
                continue
            seen.add(key)
            pairs.append((a, b))
    return pairs
