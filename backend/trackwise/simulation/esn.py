"""
Echo state network used as a short-horizon progress predictor.

Each train owns one reservoir. Every tick it is stepped with four features
(normalized speed, normalized acceleration, at-station flag, normalized
segment speed limit) and its linear readout is adapted by recursive least
squares toward the observed fractional progress along the current path.

The output is an auxiliary, bounded signal: it is clamped to [0, 1] and is
never used to move a train.

Covariance update modes:
    "diagonal"  P_ij -= k_i * r_j * P_jj   (cheap approximation)
    "exact"     P    -= k (r^T P)         (textbook RLS)
Both agree on the first update (P starts as a scaled identity) and drift
apart from the second, because the diagonal mode ignores
the off-diagonal terms of P that the exact update introduces.
"""
import logging
from typing import Optional, Sequence

import numpy as np

from trackwise.core.config import settings

logger = logging.getLogger(__name__)

INPUT_SIZE = 4
DENSITY = 0.05
SPECTRAL_RADIUS = 0.9


class EchoStateNetwork:
    def __init__(
        self,
        input_size: int = INPUT_SIZE,
        reservoir_size: Optional[int] = None,
        leak: Optional[float] = None,
        ridge: Optional[float] = None,
        covariance_update: str = "diagonal",
        seed: Optional[int] = None,
    ):
        if covariance_update not in ("diagonal", "exact"):
            raise ValueError(f"Unknown covariance update mode: {covariance_update}")
        self.input_size = input_size
        self.n = reservoir_size or settings.ESN_RESERVOIR_SIZE
        self.leak = settings.ESN_LEAK if leak is None else leak
        self.ridge = settings.ESN_RIDGE if ridge is None else ridge
        self.covariance_update = covariance_update

        rng = np.random.default_rng(seed)
        self.w_in = rng.uniform(-0.5, 0.5, size=(self.n, input_size))
        mask = rng.random((self.n, self.n)) < DENSITY
        w = np.where(mask, rng.uniform(-0.5, 0.5, size=(self.n, self.n)), 0.0)
        # sparse masks can come out nilpotent and report only eigenvalue noise
        radius = float(np.max(np.abs(np.linalg.eigvals(w)))) if mask.any() else 0.0
        if radius > 1e-3:
            w *= SPECTRAL_RADIUS / radius
        self.w = w

        self.state = np.zeros(self.n)
        self.reset_readout()

    def reset_readout(self) -> None:
        self.w_out = np.zeros(self.n)
        self.P = np.eye(self.n) / self.ridge

    def step(self, u: Sequence[float]) -> float:
        """Advance the reservoir one tick and return the clamped readout."""
        u = np.asarray(u, dtype=float)
        pre = self.w_in @ u + self.w @ self.state
        self.state = (1.0 - self.leak) * self.state + self.leak * np.tanh(pre)
        return self.output()

    def output(self) -> float:
        y = float(self.w_out @ self.state)
        if not np.isfinite(y):
            logger.warning("ESN readout became non-finite; resetting readout")
            self.reset_readout()
            return 0.0
        return min(1.0, max(0.0, y))

    def train(self, target: float) -> None:
        r = self.state
        pr = self.P @ r
        denom = 1.0 + float(r @ pr)
        if not np.isfinite(denom) or abs(denom) < 1e-12:
            logger.warning("ESN covariance degenerate; resetting readout")
            self.reset_readout()
            return
        k = pr / denom
        err = target - float(self.w_out @ r)
        self.w_out = self.w_out + k * err
        if self.covariance_update == "exact":
            self.P = self.P - np.outer(k, r @ self.P)
        else:
            self.P = self.P - np.outer(k, r * np.diag(self.P))
        if not np.all(np.isfinite(self.w_out)):
            logger.warning("ESN readout weights diverged; resetting readout")
            self.reset_readout()


def build_features(speed_kmh: float, prev_speed_kmh: float, dt_seconds: float, at_station: bool, vmax_kmh: float) -> np.ndarray:
    accel = (speed_kmh - prev_speed_kmh) / max(dt_seconds, 1.0)
    return np.array([
        min(1.0, max(0.0, speed_kmh / 200.0)),
        max(-1.0, min(1.0, accel / 10.0)),
        1.0 if at_station else 0.0,
        min(1.0, max(0.0, vmax_kmh / 200.0)),
    ])
