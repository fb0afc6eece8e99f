"""
Simulation engine: owns the SimulationState and runs one tick at a time.

A tick applies forced stops that have come due, advances the clock by
tick_seconds * speed_multiplier, moves every train from its schedule
(feeding each train's predictor), recomputes the risk list and notifies
subscribers with a snapshot.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from trackwise.core.config import settings
from trackwise.core.graph_builder import TrackGraph
from trackwise.core.models import RiskRecord, Train, TrainPosition
from trackwise.core.path_resolver import PathResolver
from trackwise.services.timetable import category_info
from trackwise.simulation.esn import EchoStateNetwork, build_features
from trackwise.simulation.evaluation import EvaluationParams, EvaluationResult, evaluate_performance
from trackwise.simulation.movement import MovementEngine
from trackwise.simulation.risk_engine import RiskEngine

logger = logging.getLogger(__name__)

Subscriber = Callable[[Dict[str, Any]], None]


@dataclass
class SimulationState:
    clock: datetime
    epoch: date
    graph: TrackGraph
    resolver: PathResolver
    trains: List[Train]
    tick_seconds: float = field(default_factory=lambda: settings.TICK_SECONDS)
    speed_multiplier: float = field(default_factory=lambda: settings.DEFAULT_SPEED_MULTIPLIER)
    tick_count: int = 0
    risks: List[RiskRecord] = field(default_factory=list)
    # train id -> monotonic time at which the stop takes effect
    pending_stops: Dict[str, float] = field(default_factory=dict)
    last_evaluation: Optional[EvaluationResult] = None

    def __post_init__(self):
        self.trains_by_id: Dict[str, Train] = {t.train_id: t for t in self.trains}


class SimulationEngine:
    def __init__(
        self,
        state: SimulationState,
        movement: MovementEngine,
        risk_engine: RiskEngine,
        monotonic: Callable[[], float] = time.monotonic,
        stop_delay_seconds: Optional[float] = None,
        esn_seed: Optional[int] = None,
    ):
        self.state = state
        self.movement = movement
        self.risk_engine = risk_engine
        self.monotonic = monotonic
        self.stop_delay_seconds = settings.FORCED_STOP_DELAY_SECONDS if stop_delay_seconds is None else stop_delay_seconds
        self.esn_seed = settings.FLEET_SEED if esn_seed is None else esn_seed
        self.subscribers: List[Subscriber] = []

    # ------------------------------------------------------------------
    # User commands
    # ------------------------------------------------------------------
    def set_speed_multiplier(self, value: float) -> float:
        try:
            v = float(value)
        except (TypeError, ValueError):
            v = float("nan")
        if not math.isfinite(v) or v <= 0:
            logger.warning(f"Rejected speed multiplier {value!r}; keeping {self.state.speed_multiplier}")
            raise ValueError("Speed multiplier must be a finite number greater than 0")
        self.state.speed_multiplier = v
        logger.info(f"Speed multiplier set to {v}")
        return v

    def request_stop(self, train_ids: Sequence[str]) -> float:
        """Schedule a forced stop for one or two trains; returns the monotonic due time."""
        ids = list(dict.fromkeys(train_ids))
        if not 1 <= len(ids) <= 2:
            logger.warning(f"Rejected stop request for {len(ids)} trains")
            raise ValueError("A forced stop applies to one or two trains")
        unknown = [tid for tid in ids if tid not in self.state.trains_by_id]
        if unknown:
            logger.warning(f"Rejected stop request for unknown trains {unknown}")
            raise KeyError(f"Unknown train(s): {', '.join(unknown)}")
        due = self.monotonic() + self.stop_delay_seconds
        for tid in ids:
            self.state.pending_stops[tid] = due
        logger.info(f"Forced stop requested for {ids}, effective in {self.stop_delay_seconds}s")
        return due

    def release_stop(self, train_id: str) -> None:
        train = self.state.trains_by_id.get(train_id)
        if train is None:
            raise KeyError(f"Unknown train: {train_id}")
        self.state.pending_stops.pop(train_id, None)
        train.is_stopped = False

    def subscribe(self, callback: Subscriber) -> None:
        self.subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        if callback in self.subscribers:
            self.subscribers.remove(callback)

    # ------------------------------------------------------------------
    # Tick
    # ------------------------------------------------------------------
    def _apply_due_stops(self) -> None:
        now = self.monotonic()
        for tid, due in list(self.state.pending_stops.items()):
            if now >= due:
                self.state.trains_by_id[tid].is_stopped = True
                del self.state.pending_stops[tid]
                logger.info(f"Train {tid} is now stopped")

    def _feed_predictor(self, index: int, train: Train, pos: TrainPosition, dt_seconds: float) -> None:
        if pos.edge is None:
            return
        if train.esn is None:
            train.esn = EchoStateNetwork(seed=self.esn_seed + index)
        u = build_features(train.speed_kmh, train.prev_speed_kmh, dt_seconds, False, pos.edge.speed_limit_kmh)
        train.esn_output = train.esn.step(u)
        train.esn.train(pos.fraction)

    def update_trains(self, dt_seconds: float = 0.0) -> None:
        at = self.state.clock
        for i, train in enumerate(self.state.trains):
            pos = self.movement.locate(train, at)
            if pos is not None and not train.is_stopped:
                self._feed_predictor(i, train, pos, dt_seconds)

    def compute_risks(self) -> List[RiskRecord]:
        self.state.risks = self.risk_engine.compute(self.state.trains, self.state.clock)
        return self.state.risks

    def prime(self) -> Dict[str, Any]:
        """Place every train at the current clock without advancing it."""
        self.update_trains()
        self.compute_risks()
        return self.snapshot()

    def tick(self) -> Dict[str, Any]:
        self._apply_due_stops()
        dt = self.state.tick_seconds * self.state.speed_multiplier
        self.state.clock = self.state.clock + timedelta(seconds=dt)
        self.state.tick_count += 1
        self.update_trains(dt)
        self.compute_risks()
        snapshot = self.snapshot()
        for callback in list(self.subscribers):
            try:
                callback(snapshot)
            except Exception:
                logger.error("Snapshot subscriber failed", exc_info=True)
        return snapshot

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------
    def at_risk_ids(self) -> set:
        ids = set()
        for r in self.state.risks:
            ids.add(r.train_a)
            ids.add(r.train_b)
        return ids

    def train_snapshot(self, train: Train, at_risk: bool) -> Dict[str, Any]:
        return {
            "id": train.train_id,
            "displayName": f"{train.train_id} {train.name}",
            "category": train.category,
            "color": category_info(train.category)["color"],
            "lat": round(train.lat, 6),
            "lon": round(train.lon, 6),
            "bearingDegrees": round(train.bearing, 2),
            "speedKmh": round(train.speed_kmh, 2),
            "currentEdge": train.active_edge.track_id if train.active_edge else None,
            "from": train.current_from,
            "to": train.current_to,
            "isAtRisk": at_risk,
            "isStopped": train.is_stopped,
            "predictedProgress": round(train.esn_output, 4),
        }

    def snapshot(self) -> Dict[str, Any]:
        at_risk = self.at_risk_ids()
        return {
            "clock": self.state.clock.isoformat(),
            "tick": self.state.tick_count,
            "speedMultiplier": self.state.speed_multiplier,
            "trains": [self.train_snapshot(t, t.train_id in at_risk) for t in self.state.trains],
            "risks": [r.to_dict() for r in self.state.risks],
            "occupancy": self.risk_engine.diffusion.occupancy(),
            "pendingStops": sorted(self.state.pending_stops),
        }

    def evaluate(self, params: Optional[EvaluationParams] = None) -> EvaluationResult:
        result = evaluate_performance(self.risk_engine, self.state.trains, self.state.clock, params)
        self.state.last_evaluation = result
        # evaluation reseeds the diffusion model; restore the live one
        self.risk_engine.seed_diffusion(self.state.trains)
        return result
