"""
Core records shared by the graph, timetable, movement and risk modules.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, FrozenSet, List, Optional, Tuple


@dataclass(frozen=True)
class Station:
    id: str
    name: str
    lat: float
    lon: float
    state: str = ""


@dataclass(frozen=True)
class Edge:
    """One directed track segment between two adjacent stations."""
    from_station: str
    to_station: str
    distance_km: float
    track_id: str
    corridor_id: int
    speed_limit_kmh: float
    track_number: int = 1

    @property
    def physical_track_id(self) -> str:
        # A->B and B->A siblings share this id
        a, b = sorted((self.from_station, self.to_station))
        return f"{a}-{b}-T{self.track_number}"

    @property
    def stations(self) -> FrozenSet[str]:
        return frozenset((self.from_station, self.to_station))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from": self.from_station,
            "to": self.to_station,
            "distanceKm": round(self.distance_km, 3),
            "trackId": self.track_id,
            "corridorId": self.corridor_id,
            "speedLimitKmh": self.speed_limit_kmh,
        }


@dataclass
class ScheduledStop:
    station: str
    arrival: Optional[datetime] = None
    departure: Optional[datetime] = None

    @property
    def reached_at(self) -> Optional[datetime]:
        """When the train is first at this station (departure for the origin)."""
        return self.arrival or self.departure


@dataclass
class DailySchedule:
    day_index: int
    calendar_date: date
    stops: List[ScheduledStop] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dayIndex": self.day_index,
            "date": self.calendar_date.isoformat(),
            "stops": [
                {
                    "station": s.station,
                    "arrival": s.arrival.isoformat() if s.arrival else None,
                    "departure": s.departure.isoformat() if s.departure else None,
                }
                for s in self.stops
            ],
        }


@dataclass
class TrainPosition:
    """Where a train is at one instant. `edge` is None while parked."""
    lat: float
    lon: float
    bearing: float = 0.0
    edge: Optional[Edge] = None
    progress_km: float = 0.0
    path_km: float = 0.0
    edge_offset_km: float = 0.0
    speed_kmh: float = 0.0
    from_station: Optional[str] = None
    to_station: Optional[str] = None

    @property
    def fraction(self) -> float:
        if self.path_km <= 0:
            return 0.0
        return max(0.0, min(1.0, self.progress_km / self.path_km))


@dataclass
class Train:
    train_id: str
    name: str
    category: str
    speed_range: Tuple[float, float]
    route: List[str] = field(default_factory=list)
    operating_days: List[str] = field(default_factory=lambda: ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"])
    avg_speed_kmh: Optional[float] = None

    schedule: List[DailySchedule] = field(default_factory=list)
    _by_day: Dict[int, DailySchedule] = field(default_factory=dict, repr=False)

    # Live state, overwritten every tick
    lat: float = 0.0
    lon: float = 0.0
    bearing: float = 0.0
    active_edge: Optional[Edge] = None
    progress_km: float = 0.0
    path_km: float = 0.0
    edge_offset_km: float = 0.0
    speed_kmh: float = 0.0
    prev_speed_kmh: float = 0.0
    current_from: Optional[str] = None
    current_to: Optional[str] = None
    is_stopped: bool = False

    # Reservoir predictor (created lazily by the movement engine)
    esn: Any = field(default=None, repr=False)
    esn_output: float = 0.0

    def set_schedule(self, entries: List[DailySchedule]) -> None:
        self.schedule = list(entries)
        self._by_day = {entry.day_index: entry for entry in self.schedule}

    def schedule_for_day(self, day_index: int) -> Optional[DailySchedule]:
        return self._by_day.get(day_index)

    def apply_position(self, pos: TrainPosition) -> None:
        self.lat = pos.lat
        self.lon = pos.lon
        self.bearing = pos.bearing
        self.active_edge = pos.edge
        self.progress_km = pos.progress_km
        self.path_km = pos.path_km
        self.edge_offset_km = pos.edge_offset_km
        self.prev_speed_kmh = self.speed_kmh
        self.speed_kmh = pos.speed_kmh
        self.current_from = pos.from_station
        self.current_to = pos.to_station

    def frozen_position(self) -> TrainPosition:
        """Current position with zero speed (used while a forced stop is active)."""
        return TrainPosition(
            lat=self.lat,
            lon=self.lon,
            bearing=self.bearing,
            edge=self.active_edge,
            progress_km=self.progress_km,
            path_km=self.path_km,
            edge_offset_km=self.edge_offset_km,
            speed_kmh=0.0,
            from_station=self.current_from,
            to_station=self.current_to,
        )


def pair_key(a: str, b: str) -> Tuple[str, str]:
    """Unordered train-pair key."""
    return (a, b) if a <= b else (b, a)


@dataclass
class RiskRecord:
    train_a: str
    train_b: str
    track_id: str
    time_to_conflict_min: float
    risk_score: float
    classification: str
    distance_km: float
    geometric_risk: float = 0.0
    diffusion_risk: float = 0.0
    suppressed_by: Optional[str] = None

    @property
    def key(self) -> Tuple[str, str]:
        return pair_key(self.train_a, self.train_b)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "trainA": self.train_a,
            "trainB": self.train_b,
            "trackId": self.track_id,
            "classification": self.classification,
            "distanceKm": round(self.distance_km, 3),
            "urgency": round(self.time_to_conflict_min, 2),
            "riskScore": round(self.risk_score, 3),
            "geometricRisk": round(self.geometric_risk, 3),
            "diffusionRisk": round(self.diffusion_risk, 3),
            "suppressedBy": self.suppressed_by,
        }
