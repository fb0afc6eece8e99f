"""
Shortest-path lookups over the track graph, memoized per ordered station pair.
"""
import logging
from typing import Dict, Optional, Sequence, Tuple

import networkx as nx

from trackwise.core.graph_builder import TrackGraph
from trackwise.core.models import Edge

logger = logging.getLogger(__name__)

Path = Tuple[Edge, ...]


def _hop_weight(u, v, data) -> float:
    # MultiDiGraph passes {key: attrs} for every parallel edge
    return min(attrs["distance_km"] for attrs in data.values())


def path_length_km(path: Sequence[Edge]) -> float:
    return sum(edge.distance_km for edge in path)


def min_speed_limit(path: Sequence[Edge], default: float = 90.0) -> float:
    if not path:
        return default
    return min(edge.speed_limit_kmh for edge in path)


class PathResolver:
    """Dijkstra over edge distance with a session-long cache (hits and misses)."""

    def __init__(self, graph: TrackGraph):
        self.graph = graph
        self._cache: Dict[Tuple[str, str], Optional[Path]] = {}
        self.hits = 0
        self.misses = 0

    def resolve(self, from_id: str, to_id: str) -> Optional[Path]:
        key = (from_id, to_id)
        if key in self._cache:
            self.hits += 1
            return self._cache[key]
        self.misses += 1
        path = self._search(from_id, to_id)
        self._cache[key] = path
        return path

    def _search(self, from_id: str, to_id: str) -> Optional[Path]:
        if from_id == to_id:
            return None
        if not self.graph.has_station(from_id) or to_id not in self.graph.graph:
            return None
        try:
            nodes = nx.dijkstra_path(self.graph.graph, from_id, to_id, weight=_hop_weight)
        except (nx.NetworkXNoPath, nx.NodeNotFound):
            logger.debug(f"No path {from_id} -> {to_id}")
            return None

        edges = []
        for u, v in zip(nodes, nodes[1:]):
            edges.append(self._pick_edge(u, v))
        return tuple(edges)

    def _pick_edge(self, u: str, v: str) -> Edge:
        """First shortest parallel edge in adjacency order."""
        best: Optional[Edge] = None
        for edge in self.graph.outgoing(u):
            if edge.to_station != v:
                continue
            if best is None or edge.distance_km < best.distance_km:
                best = edge
        return best

    def is_connected(self, from_id: str, to_id: str) -> bool:
        return self.resolve(from_id, to_id) is not None

    def distance_km(self, from_id: str, to_id: str) -> Optional[float]:
        path = self.resolve(from_id, to_id)
        if path is None:
            return None
        return path_length_km(path)

    def cache_stats(self) -> Dict[str, int]:
        return {"entries": len(self._cache), "hits": self.hits, "misses": self.misses}
