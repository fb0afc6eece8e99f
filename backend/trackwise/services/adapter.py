"""
Adapter that loads the network, schedules and fleet and builds a
SimulationEngine ready for real-time use.
"""
import logging
from datetime import datetime, tzinfo
from pathlib import Path
from typing import Dict, List, Optional, Union
from zoneinfo import ZoneInfo

from trackwise.core.config import settings
from trackwise.core.graph_builder import TrackGraphBuilder, collect_segments
from trackwise.core.models import Station
from trackwise.core.path_resolver import PathResolver
from trackwise.core.twin_schema import RouteTemplate
from trackwise.services.fleet import FleetBuilder
from trackwise.services.network_loader import load_route_templates, load_stations
from trackwise.services.schedule_loader import load_schedules
from trackwise.services.speed_limits import fetch_speed_overrides
from trackwise.services.timetable import TimetableConfig
from trackwise.simulation.diffusion import OccupancyDiffusion
from trackwise.simulation.engine import SimulationEngine, SimulationState
from trackwise.simulation.movement import MovementEngine
from trackwise.simulation.risk_engine import RiskConfig, RiskEngine

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


def build_engine(
    stations: List[Station],
    templates: List[RouteTemplate],
    start: Optional[datetime] = None,
    tz: Optional[tzinfo] = None,
    schedules_path: Optional[PathLike] = None,
    n_trains: Optional[int] = None,
    days: Optional[int] = None,
    speed_overrides: Optional[Dict[str, float]] = None,
    risk_config: Optional[RiskConfig] = None,
    seed: Optional[int] = None,
) -> SimulationEngine:
    """Wire graph, resolver, fleet, movement, diffusion and risk into one engine."""
    tz = tz or ZoneInfo(settings.SIM_TIMEZONE)
    start = (start or datetime.now(tz)).astimezone(tz).replace(microsecond=0)
    epoch = start.date()

    graph = TrackGraphBuilder(stations, templates, speed_overrides).build()
    resolver = PathResolver(graph)
    config = TimetableConfig()
    if days is not None:
        config.days = days
    fleet = FleetBuilder(graph, resolver, templates, epoch, tz, config=config, seed=seed)

    trains = []
    schedules_path = schedules_path or settings.SCHEDULES_FILE
    if schedules_path:
        trains = fleet.from_official(load_schedules(schedules_path), n_trains)
    if not trains:
        trains = fleet.synthetic(n_trains)

    movement = MovementEngine(graph, resolver, epoch, tz)
    risk_engine = RiskEngine(movement, OccupancyDiffusion(graph), risk_config)
    state = SimulationState(clock=start, epoch=epoch, graph=graph, resolver=resolver, trains=trains)
    engine = SimulationEngine(state, movement, risk_engine, esn_seed=seed)
    engine.prime()
    logger.info(f"Simulation ready: {len(trains)} trains on {len(graph.edges)} edges, clock {start.isoformat()}")
    return engine


async def load_speed_overrides(stations: List[Station], templates: List[RouteTemplate]) -> Dict[str, float]:
    """OSM speed limits for every template segment; empty unless enabled."""
    if not settings.ENABLE_OSM_FETCH:
        return {}
    index = {s.id: s for s in stations}
    return await fetch_speed_overrides(index, collect_segments(index, templates))


async def build_simulation_async(
    stations_path: Optional[PathLike] = None,
    routes_path: Optional[PathLike] = None,
    **kwargs,
) -> SimulationEngine:
    """Load stations and templates from disk, enrich speed limits, then build the engine."""
    stations = load_stations(stations_path)
    templates = load_route_templates(routes_path)
    overrides = await load_speed_overrides(stations, templates)
    return build_engine(stations, templates, speed_overrides=overrides, **kwargs)
