from datetime import date, datetime, timedelta, timezone

import pytest

from trackwise.core.graph_builder import TrackGraphBuilder
from trackwise.core.models import DailySchedule, ScheduledStop, Station, Train
from trackwise.core.path_resolver import PathResolver
from trackwise.core.twin_schema import RouteTemplate
from trackwise.services.network_loader import load_route_templates, load_stations
from trackwise.simulation.diffusion import OccupancyDiffusion
from trackwise.simulation.movement import MovementEngine
from trackwise.simulation.risk_engine import RiskConfig, RiskEngine

UTC = timezone.utc
EPOCH = date(2025, 1, 6)  # a Monday


def at(hour, minute=0, second=0, day=0):
    return datetime(EPOCH.year, EPOCH.month, EPOCH.day, hour, minute, second, tzinfo=UTC) + timedelta(days=day)


# ---------------------------------------------------------------------------
# Small line network along the equator: A - B - C - D, with a spur B - E.
# Adjacent stations are 0.2 degrees (about 22.24 km) apart.
# ---------------------------------------------------------------------------

@pytest.fixture
def line_stations():
    return [
        Station("A", "Alpha", 0.0, 0.0),
        Station("B", "Bravo", 0.0, 0.2),
        Station("C", "Charlie", 0.0, 0.4),
        Station("D", "Delta", 0.0, 0.6),
        Station("E", "Echo", 0.2, 0.2),
    ]


@pytest.fixture
def line_templates():
    return [
        RouteTemplate(name="Main line", stations=["A", "B", "C", "D"], speed_limit_kmh=100, tracks=1),
        RouteTemplate(name="Spur", stations=["B", "E"], speed_limit_kmh=80, tracks=1),
    ]


@pytest.fixture
def line_graph(line_stations, line_templates):
    return TrackGraphBuilder(line_stations, line_templates).build()


@pytest.fixture
def line_resolver(line_graph):
    return PathResolver(line_graph)


@pytest.fixture
def movement(line_graph, line_resolver):
    return MovementEngine(line_graph, line_resolver, EPOCH, UTC)


@pytest.fixture
def risk_engine(movement, line_graph):
    config = RiskConfig(
        horizon_minutes=10,
        step_seconds=30,
        distance_km=2.0,
        geometric_score=0.9,
        min_combined_risk=0.5,
        top_n=20,
        diffusion_steps=3,
    )
    return RiskEngine(movement, OccupancyDiffusion(line_graph, rate=0.3, decay=0.05), config)


@pytest.fixture
def make_train():
    """Factory for a train with a single day-0 schedule of (station, arrival, departure) tuples."""

    def _make(train_id, stops, day_index=0):
        train = Train(train_id=train_id, name=f"Test {train_id}", category="EXPRESS", speed_range=(60, 90))
        entry = DailySchedule(
            day_index=day_index,
            calendar_date=EPOCH + timedelta(days=day_index),
            stops=[ScheduledStop(station, arr, dep) for station, arr, dep in stops],
        )
        train.route = [s[0] for s in stops]
        train.set_schedule([entry])
        return train

    return _make


@pytest.fixture
def head_on_pair(make_train):
    """Two trains entering the single B-C track from opposite ends at 10:00."""
    t1 = make_train("T1", [("B", None, at(10)), ("C", at(10, 20), None)])
    t2 = make_train("T2", [("C", None, at(10)), ("B", at(10, 20), None)])
    return t1, t2


# ---------------------------------------------------------------------------
# Bundled hub network
# ---------------------------------------------------------------------------

@pytest.fixture(scope="session")
def hub_stations():
    return load_stations()


@pytest.fixture(scope="session")
def hub_templates():
    return load_route_templates()


@pytest.fixture(scope="session")
def hub_graph(hub_stations, hub_templates):
    return TrackGraphBuilder(hub_stations, hub_templates).build()


@pytest.fixture
def hub_resolver(hub_graph):
    return PathResolver(hub_graph)
