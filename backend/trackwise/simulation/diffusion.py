"""
Occupancy diffusion over station nodes.

Each train gets its own row of presence mass. Seeding splits one unit of
mass between the endpoints of the train's active edge by fractional
position. Every step, nodes holding mass push `rate` of it to their
neighbours (weighted by the number of parallel outgoing edges) and the
mass left behind decays by `decay`. All nodes update from the same
snapshot.
"""
import logging
from typing import Dict, Iterable, List, Optional, Tuple

import numpy as np

from trackwise.core.config import settings
from trackwise.core.graph_builder import TrackGraph
from trackwise.core.models import Edge, pair_key

logger = logging.getLogger(__name__)

NEGLIGIBLE_MASS = 1e-9


class OccupancyDiffusion:
    def __init__(self, graph: TrackGraph, rate: Optional[float] = None, decay: Optional[float] = None):
        self.rate = settings.DIFFUSION_RATE if rate is None else rate
        self.decay = settings.DIFFUSION_DECAY if decay is None else decay
        self.nodes: List[str] = list(graph.stations.keys())
        self.index: Dict[str, int] = {code: i for i, code in enumerate(self.nodes)}

        n = len(self.nodes)
        transition = np.zeros((n, n))
        for edge in graph.edges:
            i = self.index.get(edge.from_station)
            j = self.index.get(edge.to_station)
            if i is not None and j is not None:
                transition[i, j] += 1.0
        out_degree = transition.sum(axis=1)
        self.has_outgoing = out_degree > 0
        transition[self.has_outgoing] /= out_degree[self.has_outgoing][:, None]
        self.transition = transition

        self.train_ids: List[str] = []
        self.row: Dict[str, int] = {}
        self.mass = np.zeros((0, n))
        self._overlap: Dict[Tuple[str, str], float] = {}

    def seed(self, placements: Iterable[Tuple[str, Edge, float]]) -> None:
        """Reset and seed from (train_id, active_edge, km_into_edge) triples."""
        rows = []
        ids = []
        for train_id, edge, offset_km in placements:
            i = self.index.get(edge.from_station)
            j = self.index.get(edge.to_station)
            if i is None or j is None:
                continue
            f = 0.0 if edge.distance_km <= 0 else max(0.0, min(1.0, offset_km / edge.distance_km))
            row = np.zeros(len(self.nodes))
            row[i] += 1.0 - f
            row[j] += f
            rows.append(row)
            ids.append(train_id)
        self.train_ids = ids
        self.row = {tid: k for k, tid in enumerate(ids)}
        self.mass = np.vstack(rows) if rows else np.zeros((0, len(self.nodes)))
        self._overlap = {}

    def step(self) -> None:
        if self.mass.size == 0:
            return
        active = self.mass > NEGLIGIBLE_MASS
        pushing = active & self.has_outgoing[None, :]
        push = np.where(pushing, self.rate * self.mass, 0.0)
        remaining = self.mass - push
        remaining = np.where(active, remaining * (1.0 - self.decay), remaining)
        self.mass = remaining + push @ self.transition
        self._overlap = {}

    def run(self, steps: Optional[int] = None) -> None:
        for _ in range(settings.DIFFUSION_STEPS if steps is None else steps):
            self.step()

    def pair_risk(self, a: str, b: str) -> float:
        """Overlap of two trains' mass, clipped to [0, 1]. Unknown trains score 0."""
        key = pair_key(a, b)
        if key in self._overlap:
            return self._overlap[key]
        ra = self.row.get(a)
        rb = self.row.get(b)
        if ra is None or rb is None or ra == rb:
            value = 0.0
        else:
            value = float(np.clip(np.minimum(self.mass[ra], self.mass[rb]).sum(), 0.0, 1.0))
        self._overlap[key] = value
        return value

    def train_mass(self, train_id: str) -> Dict[str, float]:
        r = self.row.get(train_id)
        if r is None:
            return {}
        return {self.nodes[i]: float(m) for i, m in enumerate(self.mass[r]) if m > NEGLIGIBLE_MASS}

    def total_mass(self) -> float:
        return float(self.mass.sum())

    def occupancy(self) -> Dict[str, float]:
        """Summed mass per station, for display."""
        if self.mass.size == 0:
            return {}
        totals = self.mass.sum(axis=0)
        return {self.nodes[i]: round(float(v), 4) for i, v in enumerate(totals) if v > NEGLIGIBLE_MASS}
