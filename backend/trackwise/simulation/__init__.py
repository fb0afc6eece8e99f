"""
Trackwise simulation core: schedule-driven movement, the reservoir
predictor, occupancy diffusion, the collision-risk pass and evaluation.
"""
from .movement import MovementEngine, ease_in_out_sine, interpolate_along_path
from .esn import EchoStateNetwork
from .diffusion import OccupancyDiffusion
from .risk_engine import RiskConfig, RiskEngine
from .evaluation import EvaluationParams, EvaluationResult, evaluate_performance
from .engine import SimulationEngine, SimulationState

__all__ = [
    'MovementEngine',
    'ease_in_out_sine',
    'interpolate_along_path',
    'EchoStateNetwork',
    'OccupancyDiffusion',
    'RiskConfig',
    'RiskEngine',
    'EvaluationParams',
    'EvaluationResult',
    'evaluate_performance',
    'SimulationEngine',
    'SimulationState',
]
