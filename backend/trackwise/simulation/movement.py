"""
Schedule-driven movement: where is a train at a given instant.
"""
import logging
import math
from datetime import date, datetime, tzinfo
from typing import Dict, Optional, Sequence

from trackwise.core.geo import bearing_deg, destination_point
from trackwise.core.graph_builder import TrackGraph
from trackwise.core.models import DailySchedule, Edge, Station, Train, TrainPosition
from trackwise.core.path_resolver import PathResolver, path_length_km

logger = logging.getLogger(__name__)


def ease_in_out_sine(t: float) -> float:
    return 0.5 - 0.5 * math.cos(math.pi * t)


def interpolate_along_path(path: Sequence[Edge], along_km: float, stations: Dict[str, Station]) -> Optional[TrainPosition]:
    """Walk the path edge by edge and project the remainder from the edge start."""
    if not path:
        return None
    remaining = max(0.0, along_km)
    total = path_length_km(path)
    if along_km < total:
        for edge in path:
            a = stations[edge.from_station]
            b = stations[edge.to_station]
            brg = bearing_deg(a.lat, a.lon, b.lat, b.lon)
            if remaining <= edge.distance_km:
                lat, lon = destination_point(a.lat, a.lon, brg, remaining)
                return TrainPosition(lat, lon, brg, edge, along_km, total, remaining)
            remaining -= edge.distance_km

    # at or past the end: exactly at the terminal
    last = path[-1]
    a = stations[last.from_station]
    b = stations[last.to_station]
    brg = bearing_deg(a.lat, a.lon, b.lat, b.lon)
    return TrainPosition(b.lat, b.lon, brg, last, min(along_km, total), total, last.distance_km)


class MovementEngine:
    """Locates trains from their daily schedules. Day 0 is `epoch` in `tz`."""

    def __init__(self, graph: TrackGraph, resolver: PathResolver, epoch: date, tz: tzinfo):
        self.graph = graph
        self.resolver = resolver
        self.epoch = epoch
        self.tz = tz

    def day_index(self, at: datetime) -> int:
        return (at.astimezone(self.tz).date() - self.epoch).days

    def predict_at(self, train: Train, at: datetime) -> Optional[TrainPosition]:
        """Pure variant: never touches the train's live fields."""
        if not train.schedule:
            return None
        idx = self.day_index(at)
        today = train.schedule_for_day(idx)
        if today is not None:
            pos = self._in_motion(today, at)
            if pos is not None:
                return pos
        # overnight run that started yesterday
        yesterday = train.schedule_for_day(idx - 1)
        if yesterday is not None:
            pos = self._in_motion(yesterday, at)
            if pos is not None:
                return pos
        if today is None:
            return None
        return self._parked(today, at)

    def state_at(self, train: Train, at: datetime) -> Optional[TrainPosition]:
        """Future state for risk sampling; a stopped train stays where it is."""
        if train.is_stopped:
            return train.frozen_position()
        return self.predict_at(train, at)

    def locate(self, train: Train, at: datetime) -> Optional[TrainPosition]:
        pos = self.state_at(train, at)
        if pos is not None:
            train.apply_position(pos)
        else:
            train.active_edge = None
            train.speed_kmh = 0.0
        return pos

    def _in_motion(self, entry: DailySchedule, at: datetime) -> Optional[TrainPosition]:
        stops = entry.stops
        for i in range(len(stops) - 1):
            dep = stops[i].departure
            arr = stops[i + 1].arrival
            if dep is None or arr is None:
                continue
            if dep <= at <= arr:
                return self._between(stops[i].station, stops[i + 1].station, dep, arr, at)
        return None

    def _between(self, from_id: str, to_id: str, dep: datetime, arr: datetime, at: datetime) -> TrainPosition:
        total_s = max((arr - dep).total_seconds(), 1e-3)
        frac_lin = max(0.0, min(1.0, (at - dep).total_seconds() / total_s))
        frac = ease_in_out_sine(frac_lin)
        path = self.resolver.resolve(from_id, to_id)
        origin = self.graph.stations[from_id]
        if not path:
            return TrainPosition(origin.lat, origin.lon, 0.0, None, 0.0, 0.0, 0.0, 0.0, from_id, to_id)

        path_km = path_length_km(path)
        pos = interpolate_along_path(path, frac * path_km, self.graph.stations)
        # derivative of the eased distance curve
        pos.speed_kmh = path_km * 0.5 * math.pi * math.sin(math.pi * frac_lin) / (total_s / 3600.0)
        pos.from_station = from_id
        pos.to_station = to_id
        return pos

    def _parked(self, entry: DailySchedule, at: datetime) -> TrainPosition:
        last = entry.stops[0]
        for stop in entry.stops:
            event = stop.reached_at
            if event is not None and event <= at:
                last = stop
        s = self.graph.stations[last.station]
        return TrainPosition(s.lat, s.lon, 0.0, None, 0.0, 0.0, 0.0, 0.0, last.station, last.station)
