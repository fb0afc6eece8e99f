"""
Collision-risk pass: sample future positions, compare trains sharing a
physical track (or meeting at a station), and fuse a geometric flag with
the occupancy-diffusion overlap.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import combinations
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from trackwise.core.config import settings
from trackwise.core.geo import haversine_km, heading_difference
from trackwise.core.models import RiskRecord, Train, TrainPosition
from trackwise.simulation.diffusion import OccupancyDiffusion
from trackwise.simulation.movement import MovementEngine

logger = logging.getLogger(__name__)

HEAD_ON = "head-on"
REAR_END = "rear-end"
PROXIMITY = "proximity"


@dataclass
class RiskConfig:
    horizon_minutes: float = field(default_factory=lambda: settings.RISK_HORIZON_MINUTES)
    step_seconds: float = field(default_factory=lambda: settings.RISK_STEP_SECONDS)
    distance_km: float = field(default_factory=lambda: settings.RISK_DISTANCE_KM)
    # head-on when (bA - bB + 180) mod 360 is below the low or above the high bound
    head_on_low_deg: float = 60.0
    head_on_high_deg: float = 300.0
    # same direction when (bA - bB) mod 360 is at most the low or at least the high bound
    same_dir_low_deg: float = 30.0
    same_dir_high_deg: float = 330.0
    geometric_score: float = field(default_factory=lambda: settings.GEOMETRIC_RISK_SCORE)
    min_combined_risk: float = field(default_factory=lambda: settings.MIN_COMBINED_RISK)
    top_n: int = field(default_factory=lambda: settings.RISK_TOP_N)
    diffusion_steps: int = field(default_factory=lambda: settings.DIFFUSION_STEPS)


def classify(bearing_a: float, bearing_b: float, config: RiskConfig) -> str:
    reciprocal = heading_difference(bearing_a + 180.0, bearing_b)
    if reciprocal < config.head_on_low_deg or reciprocal > config.head_on_high_deg:
        return HEAD_ON
    same = heading_difference(bearing_a, bearing_b)
    if same <= config.same_dir_low_deg or same >= config.same_dir_high_deg:
        return REAR_END
    return PROXIMITY


def track_coordinate(pos: TrainPosition) -> Tuple[float, int]:
    """(km from the track's canonical first endpoint, +1/-1 travel direction)."""
    edge = pos.edge
    first, _ = sorted((edge.from_station, edge.to_station))
    if edge.from_station == first:
        return pos.edge_offset_km, 1
    return edge.distance_km - pos.edge_offset_km, -1


def is_converging(a: TrainPosition, b: TrainPosition, kind: str) -> bool:
    sa, da = track_coordinate(a)
    sb, db = track_coordinate(b)
    if abs(sa - sb) < 1e-9:
        return True
    if kind == HEAD_ON:
        return (sb - sa) * da > 0 and (sa - sb) * db > 0
    if kind == REAR_END:
        # the follower is the one the other lies ahead of
        if (sb - sa) * da > 0:
            return a.speed_kmh >= b.speed_kmh
        return b.speed_kmh >= a.speed_kmh
    return True


def sample_states(movement: MovementEngine, trains: Iterable[Train], at: datetime) -> Dict[str, TrainPosition]:
    """Predicted state per train id; trains without a valid state are left out."""
    states: Dict[str, TrainPosition] = {}
    for train in trains:
        try:
            pos = movement.state_at(train, at)
        except (KeyError, ValueError):
            logger.debug(f"No predicted state for {train.train_id} at {at}", exc_info=True)
            continue
        if pos is not None:
            states[train.train_id] = pos
    return states


class RiskEngine:
    def __init__(self, movement: MovementEngine, diffusion: OccupancyDiffusion, config: Optional[RiskConfig] = None):
        self.movement = movement
        self.diffusion = diffusion
        self.config = config or RiskConfig()

    def seed_diffusion(self, trains: Iterable[Train]) -> None:
        self.diffusion.seed(
            (t.train_id, t.active_edge, t.edge_offset_km) for t in trains if t.active_edge is not None
        )
        self.diffusion.run(self.config.diffusion_steps)

    def compute(
        self,
        trains: Sequence[Train],
        now: datetime,
        horizon_minutes: Optional[float] = None,
        step_seconds: Optional[float] = None,
        truncate: bool = True,
    ) -> List[RiskRecord]:
        cfg = self.config
        horizon = cfg.horizon_minutes if horizon_minutes is None else horizon_minutes
        step = cfg.step_seconds if step_seconds is None else step_seconds
        steps = max(1, int((horizon * 60) // step))

        self.seed_diffusion(trains)

        best: Dict[Tuple[str, str], RiskRecord] = {}
        for s in range(1, steps + 1):
            at = now + timedelta(seconds=s * step)
            ttc = s * step / 60.0
            states = sample_states(self.movement, trains, at)
            for record in self.scan_step(states, ttc):
                prev = best.get(record.key)
                # strongest signal per pair, earliest step among equals
                if prev is None or (-record.risk_score, record.time_to_conflict_min) < (
                    -prev.risk_score,
                    prev.time_to_conflict_min,
                ):
                    best[record.key] = record

        ranked = sorted(best.values(), key=lambda r: (-r.risk_score, r.time_to_conflict_min))
        if truncate:
            ranked = ranked[: cfg.top_n]
        return ranked

    def scan_step(self, states: Dict[str, TrainPosition], ttc: float) -> List[RiskRecord]:
        on_track = {tid: pos for tid, pos in states.items() if pos.edge is not None}
        records: List[RiskRecord] = []

        by_track: Dict[str, List[str]] = {}
        by_station: Dict[str, List[str]] = {}
        for tid, pos in on_track.items():
            by_track.setdefault(pos.edge.physical_track_id, []).append(tid)
            for station in (pos.edge.from_station, pos.edge.to_station):
                by_station.setdefault(station, []).append(tid)

        for track_id, members in by_track.items():
            if len(members) < 2:
                continue
            ordered = sorted(members, key=lambda tid: track_coordinate(on_track[tid])[0])
            coords = [track_coordinate(on_track[tid])[0] for tid in ordered]
            for i, j in combinations(range(len(ordered)), 2):
                between = [
                    ordered[k] for k in range(i + 1, j) if coords[i] < coords[k] < coords[j]
                ]
                barrier = f"train:{between[0]}" if between else None
                rec = self._score(ordered[i], ordered[j], on_track, track_id, ttc, barrier)
                if rec is not None:
                    records.append(rec)

        seen = set()
        for station, members in by_station.items():
            for a, b in combinations(sorted(set(members)), 2):
                ea = on_track[a].edge
                eb = on_track[b].edge
                if ea.stations == eb.stations or (a, b) in seen:
                    continue
                seen.add((a, b))
                rec = self._score(a, b, on_track, ea.physical_track_id, ttc, f"station:{station}")
                if rec is not None:
                    records.append(rec)
        return records

    def _score(
        self,
        a: str,
        b: str,
        states: Dict[str, TrainPosition],
        track_id: str,
        ttc: float,
        barrier: Optional[str],
    ) -> Optional[RiskRecord]:
        cfg = self.config
        pa = states[a]
        pb = states[b]
        dist = haversine_km(pa.lat, pa.lon, pb.lat, pb.lon)
        kind = classify(pa.bearing, pb.bearing, cfg)

        geometric = 0.0
        if dist <= cfg.distance_km and barrier is None and is_converging(pa, pb, kind):
            geometric = cfg.geometric_score
        diffusion = self.diffusion.pair_risk(a, b)
        combined = max(geometric, diffusion)
        if combined < cfg.min_combined_risk:
            return None
        return RiskRecord(
            train_a=a,
            train_b=b,
            track_id=track_id,
            time_to_conflict_min=ttc,
            risk_score=combined,
            classification=kind,
            distance_km=dist,
            geometric_risk=geometric,
            diffusion_risk=diffusion,
            suppressed_by=barrier,
        )
