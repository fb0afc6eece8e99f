"""
Offline scoring of the risk engine against a track-aware ground truth and
a distance-only baseline over the same simulated window.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from itertools import combinations
from typing import Any, Dict, Iterable, Optional, Sequence, Set, Tuple

import pandas as pd

from trackwise.core.geo import haversine_km
from trackwise.core.models import Train, pair_key
from trackwise.simulation.risk_engine import RiskEngine, sample_states

logger = logging.getLogger(__name__)

Pair = Tuple[str, str]


@dataclass
class EvaluationParams:
    horizon_min: float = 60.0
    step_sec: float = 60.0
    truth_dist_km: float = 1.0
    ours_dist_km: float = 2.0
    baseline_dist_km: float = 5.0


@dataclass
class ConfusionMetrics:
    tp: int = 0
    fp: int = 0
    tn: int = 0
    fn: int = 0

    @property
    def accuracy(self) -> float:
        return (self.tp + self.tn) / max(1, self.tp + self.fp + self.tn + self.fn)

    @property
    def sensitivity(self) -> float:
        return self.tp / max(1, self.tp + self.fn)

    @property
    def specificity(self) -> float:
        return self.tn / max(1, self.tn + self.fp)

    @property
    def balanced_accuracy(self) -> float:
        return 0.5 * (self.sensitivity + self.specificity)

    @property
    def f1(self) -> float:
        precision = self.tp / max(1, self.tp + self.fp)
        recall = self.sensitivity
        if precision + recall <= 0:
            return 0.0
        return 2 * precision * recall / (precision + recall)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "TP": self.tp,
            "FP": self.fp,
            "TN": self.tn,
            "FN": self.fn,
            "Accuracy": self.accuracy,
            "Sensitivity": self.sensitivity,
            "Specificity": self.specificity,
            "BalancedAccuracy": self.balanced_accuracy,
            "F1": self.f1,
        }


@dataclass
class EvaluationResult:
    params: EvaluationParams
    ours: ConfusionMetrics
    baseline: ConfusionMetrics
    truth_pairs: Set[Pair] = field(default_factory=set)
    ours_pairs: Set[Pair] = field(default_factory=set)
    baseline_pairs: Set[Pair] = field(default_factory=set)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "params": vars(self.params),
            "ours": self.ours.to_dict(),
            "baseline": self.baseline.to_dict(),
            "counts": {
                "truth": len(self.truth_pairs),
                "ours": len(self.ours_pairs),
                "baseline": len(self.baseline_pairs),
            },
        }

    def to_frame(self) -> pd.DataFrame:
        base = self.baseline.to_dict()
        ours = self.ours.to_dict()
        return pd.DataFrame(
            {"Metric": list(base.keys()), "Existing": list(base.values()), "Ours": [ours[k] for k in base]}
        )

    def to_csv(self) -> str:
        return self.to_frame().to_csv(index=False)


def confusion(predicted: Set[Pair], truth: Set[Pair], universe: Iterable[Pair]) -> ConfusionMetrics:
    m = ConfusionMetrics()
    for pair in universe:
        p = pair in predicted
        t = pair in truth
        if p and t:
            m.tp += 1
        elif p:
            m.fp += 1
        elif t:
            m.fn += 1
        else:
            m.tn += 1
    return m


def _sample_times(now: datetime, horizon_min: float, step_sec: float):
    steps = max(1, int((horizon_min * 60) // step_sec))
    for s in range(1, steps + 1):
        yield now + timedelta(seconds=s * step_sec)


def baseline_pairs(engine: RiskEngine, trains: Sequence[Train], now: datetime, horizon_min: float, step_sec: float, dist_km: float) -> Set[Pair]:
    """Any two trains within `dist_km` straight-line at any sampled instant."""
    pairs: Set[Pair] = set()
    for at in _sample_times(now, horizon_min, step_sec):
        states = sample_states(engine.movement, trains, at)
        for a, b in combinations(sorted(states), 2):
            pa, pb = states[a], states[b]
            if haversine_km(pa.lat, pa.lon, pb.lat, pb.lon) <= dist_km:
                pairs.add(pair_key(a, b))
    return pairs


def ground_truth_pairs(engine: RiskEngine, trains: Sequence[Train], now: datetime, horizon_min: float, step_sec: float, dist_km: float) -> Set[Pair]:
    """Two trains on the same physical track within `dist_km` at any sampled instant."""
    pairs: Set[Pair] = set()
    for at in _sample_times(now, horizon_min, step_sec):
        states = sample_states(engine.movement, trains, at)
        by_track: Dict[str, list] = {}
        for tid, pos in states.items():
            if pos.edge is not None:
                by_track.setdefault(pos.edge.physical_track_id, []).append(tid)
        for members in by_track.values():
            for a, b in combinations(sorted(members), 2):
                pa, pb = states[a], states[b]
                if haversine_km(pa.lat, pa.lon, pb.lat, pb.lon) <= dist_km:
                    pairs.add(pair_key(a, b))
    return pairs


def evaluate_performance(
    engine: RiskEngine,
    trains: Sequence[Train],
    now: datetime,
    params: Optional[EvaluationParams] = None,
) -> EvaluationResult:
    p = params or EvaluationParams()
    risks = engine.compute(trains, now, p.horizon_min, p.step_sec, truncate=False)
    ours = {r.key for r in risks if r.distance_km <= p.ours_dist_km}
    base = baseline_pairs(engine, trains, now, p.horizon_min, p.step_sec, p.baseline_dist_km)
    truth = ground_truth_pairs(engine, trains, now, p.horizon_min, p.step_sec, p.truth_dist_km)

    universe = ours | base | truth
    result = EvaluationResult(
        params=p,
        ours=confusion(ours, truth, universe),
        baseline=confusion(base, truth, universe),
        truth_pairs=truth,
        ours_pairs=ours,
        baseline_pairs=base,
    )
    logger.info(
        f"Evaluation over {p.horizon_min} min: truth={len(truth)} ours={len(ours)} baseline={len(base)} "
        f"F1 ours={result.ours.f1:.3f} baseline={result.baseline.f1:.3f}"
    )
    return result
