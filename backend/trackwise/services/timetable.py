"""Timetable synthesis and normalization.

Stop times are first built as a per-train template of minute offsets from the
service day's midnight (values past 1440 belong to the following day), then
stamped onto every simulated calendar day the train operates.

Two ways in:
  - `synthesize_times` builds times from a trapezoidal accel/cruise/brake
    profile plus category dwell.
  - `normalize_stops` keeps externally supplied HH:MM times when they are
    complete and plausible, otherwise falls back to synthesis for the whole
    train.
"""
from __future__ import annotations
import logging
import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, tzinfo
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from trackwise.core.config import settings
from trackwise.core.models import DailySchedule, ScheduledStop
from trackwise.core.path_resolver import PathResolver, min_speed_limit, path_length_km
from trackwise.core.twin_schema import ScheduleStopIn

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
WEEKDAYS = ["mon", "tue", "wed", "thu", "fri", "sat", "sun"]

CATEGORIES: Dict[str, Dict] = {
	"RAJDHANI": {"name": "Rajdhani Express", "speed_range": (110, 130), "color": "#d62728", "dwell_min": 3},
	"SHATABDI": {"name": "Shatabdi Express", "speed_range": (100, 120), "color": "#ff7f0e", "dwell_min": 3},
	"SUPERFAST": {"name": "Superfast Express", "speed_range": (80, 110), "color": "#2ca02c", "dwell_min": 4},
	"EXPRESS": {"name": "Express", "speed_range": (60, 90), "color": "#1f77b4", "dwell_min": 5},
	"PASSENGER": {"name": "Passenger", "speed_range": (40, 70), "color": "#9467bd", "dwell_min": 6},
	"FREIGHT": {"name": "Freight", "speed_range": (25, 50), "color": "#8c564b", "dwell_min": 10},
}
DEFAULT_CATEGORY = "EXPRESS"

MAJOR_STATIONS = frozenset(["NDLS", "BCT", "MAS", "HWH", "PNBE", "LKO", "SC", "NGP", "BPL", "SBC", "JP", "ADI"])


@dataclass
class TimetableConfig:
	acceleration_ms2: float = field(default_factory=lambda: settings.ACCELERATION_MS2)
	max_plausible_speed_kmh: float = field(default_factory=lambda: settings.MAX_PLAUSIBLE_SPEED_KMH)
	days: int = field(default_factory=lambda: settings.SIMULATED_DAYS)
	default_departure: str = "06:00"
	expand_via_graph: bool = True


@dataclass
class TimedStop:
	"""A stop with minute offsets from the service day's midnight."""
	station: str
	arr_min: Optional[float] = None
	dep_min: Optional[float] = None


# ---------------------------------------------------------------------------
# Category lookups
# ---------------------------------------------------------------------------

def category_info(category: str) -> Dict:
	return CATEGORIES.get(category, CATEGORIES[DEFAULT_CATEGORY])


def cruise_speed(category: str) -> float:
	lo, hi = category_info(category)["speed_range"]
	return (lo + hi) / 2.0


def dwell_minutes(category: str) -> int:
	return category_info(category)["dwell_min"]


def dwell_at(station: str, category: str) -> float:
	"""Dwell at an intermediate stop, including the major-hub extra."""
	dwell = dwell_minutes(category)
	extra = max(5, math.floor(dwell * 0.5)) if station in MAJOR_STATIONS else 0
	return float(dwell + extra)


def infer_category(name: Optional[str] = "", meta_category: Optional[str] = "") -> str:
	"""Guess a train category from metadata first, then the train name."""
	n = (name or "").lower()
	c = (meta_category or "").lower()
	if c:
		if "rajdhani" in c:
			return "RAJDHANI"
		if "shatabdi" in c:
			return "SHATABDI"
		if any(k in c for k in ("vande bharat", "tejas", "gatiman", "duronto", "superfast")):
			return "SUPERFAST"
		if "mail" in c or "express" in c:
			return "EXPRESS"
		if any(k in c for k in ("passenger", "memu", "demu")):
			return "PASSENGER"
		if "goods" in c or "freight" in c:
			return "FREIGHT"
	if "rajdhani" in n:
		return "RAJDHANI"
	if "shatabdi" in n or "janshatabdi" in n:
		return "SHATABDI"
	if any(k in n for k in ("vande bharat", "tejas", "gatimaan", "duronto", "sampark kranti", "superfast")):
		return "SUPERFAST"
	if any(k in n for k in ("passenger", "memu", "demu")):
		return "PASSENGER"
	if "goods" in n or "freight" in n:
		return "FREIGHT"
	return DEFAULT_CATEGORY


# ---------------------------------------------------------------------------
# Physics and clock helpers
# ---------------------------------------------------------------------------

def travel_time_seconds(distance_km: float, vmax_kmh: float, accel_ms2: float = 0.35) -> float:
	"""Trapezoidal accel/cruise/brake time; triangular when cruise is never reached."""
	d = max(0.0, distance_km) * 1000.0
	vmax = max(5.0, vmax_kmh) / 3.6
	a = max(0.1, accel_ms2)
	t_acc = vmax / a
	d_acc = 0.5 * a * t_acc * t_acc
	if 2 * d_acc >= d:
		return 2.0 * math.sqrt(d / a)
	return 2.0 * t_acc + (d - 2 * d_acc) / vmax


def parse_clock(value: Optional[str]) -> Optional[int]:
	"""'HH:MM' (or 'HH:MM:SS') to minutes after midnight; None when absent or invalid."""
	if value is None:
		return None
	text = str(value).strip()
	if not text or text in ("--", "-"):
		return None
	parts = text.split(":")
	if len(parts) < 2:
		return None
	try:
		hh = int(parts[0])
		mm = int(parts[1])
	except ValueError:
		return None
	if not (0 <= hh < 24 and 0 <= mm < 60):
		return None
	return hh * 60 + mm


def format_clock(minutes: float) -> str:
	m = int(round(minutes)) % MINUTES_PER_DAY
	return f"{m // 60:02d}:{m % 60:02d}"


def clamp_avg_speed(value: Optional[float]) -> Optional[float]:
	if value is None:
		return None
	try:
		v = float(value)
	except (TypeError, ValueError):
		return None
	if not math.isfinite(v) or v <= 0:
		return None
	return max(30.0, min(130.0, v))


# ---------------------------------------------------------------------------
# Stop sequence operations
# ---------------------------------------------------------------------------

def drop_unconnected(items: Sequence, resolver: PathResolver, key: Callable = lambda s: s.station) -> List:
	"""Keep the first in-graph stop, then each stop reachable from the previously kept one."""
	kept: List = []
	for item in items:
		station = key(item)
		if not kept:
			if resolver.graph.has_station(station):
				kept.append(item)
			continue
		if resolver.is_connected(key(kept[-1]), station):
			kept.append(item)
		else:
			logger.debug(f"Dropping unconnected stop {station}")
	return kept


def synthesize_times(
	stations: Sequence[str],
	category: str,
	resolver: PathResolver,
	start_min: float,
	avg_speed_kmh: Optional[float] = None,
	config: Optional[TimetableConfig] = None,
) -> List[TimedStop]:
	"""Physics-based times for a station sequence departing at `start_min`."""
	config = config or TimetableConfig()
	route = drop_unconnected(list(stations), resolver, key=lambda s: s)
	if len(route) < 2:
		return []
	cruise = clamp_avg_speed(avg_speed_kmh) or cruise_speed(category)

	t = float(start_min)
	out = [TimedStop(route[0], None, t)]
	for i in range(1, len(route)):
		path = resolver.resolve(route[i - 1], route[i])
		km = path_length_km(path)
		vlim = min(cruise, min_speed_limit(path, cruise))
		t += travel_time_seconds(km, vlim, config.acceleration_ms2) / 60.0
		arr = t
		if i == len(route) - 1:
			out.append(TimedStop(route[i], arr, None))
		else:
			t += dwell_at(route[i], category)
			out.append(TimedStop(route[i], arr, t))
	return out


def _apply_rollover(stops: Sequence[TimedStop]) -> List[TimedStop]:
	"""Add a day whenever a clock time goes backwards against the previous event."""
	offset = 0
	prev: Optional[float] = None
	out: List[TimedStop] = []
	for s in stops:
		arr, dep = s.arr_min, s.dep_min
		if arr is not None:
			if prev is not None and arr + offset < prev:
				offset += MINUTES_PER_DAY
			arr = arr + offset
			prev = arr
		if dep is not None:
			if prev is not None and dep + offset < prev:
				offset += MINUTES_PER_DAY
			dep = dep + offset
			prev = dep
		out.append(TimedStop(s.station, arr, dep))
	return out


def _max_implied_speed(stops: Sequence[TimedStop], resolver: PathResolver) -> float:
	worst = 0.0
	for prev, cur in zip(stops, stops[1:]):
		t0 = prev.dep_min if prev.dep_min is not None else prev.arr_min
		t1 = cur.arr_min if cur.arr_min is not None else cur.dep_min
		dt = max(1.0, t1 - t0)
		km = resolver.distance_km(prev.station, cur.station) or 0.0
		worst = max(worst, km / (dt / 60.0))
	return worst


def _fill_single_times(stops: Sequence[TimedStop]) -> List[TimedStop]:
	"""First stop departs only, last arrives only; intermediates borrow the missing time."""
	out: List[TimedStop] = []
	last = len(stops) - 1
	for i, s in enumerate(stops):
		arr = s.arr_min if s.arr_min is not None else s.dep_min
		dep = s.dep_min if s.dep_min is not None else s.arr_min
		if i == 0:
			out.append(TimedStop(s.station, None, dep))
		elif i == last:
			out.append(TimedStop(s.station, arr, None))
		else:
			out.append(TimedStop(s.station, arr, max(arr, dep)))
	return out


def expand_via_graph(stops: Sequence[TimedStop], resolver: PathResolver) -> List[TimedStop]:
	"""Insert pass-through stations lying on each resolved path, timed by distance."""
	if len(stops) < 2:
		return list(stops)
	out: List[TimedStop] = [stops[0]]
	for a, b in zip(stops, stops[1:]):
		path = resolver.resolve(a.station, b.station)
		if path and len(path) > 1:
			t0 = a.dep_min if a.dep_min is not None else a.arr_min
			t1 = b.arr_min if b.arr_min is not None else b.dep_min
			total = path_length_km(path)
			run = 0.0
			for edge in path[:-1]:
				run += edge.distance_km
				t = t0 + (t1 - t0) * (run / total if total > 0 else 0.0)
				out.append(TimedStop(edge.to_station, t, t))
		out.append(b)
	return out


def normalize_stops(
	stops: Sequence[ScheduleStopIn],
	category: str,
	resolver: PathResolver,
	avg_speed_kmh: Optional[float] = None,
	config: Optional[TimetableConfig] = None,
) -> Tuple[List[TimedStop], bool]:
	"""Repair an official stop list. Returns (timed stops, rebuilt_from_physics)."""
	config = config or TimetableConfig()
	parsed = [TimedStop(s.station, parse_clock(s.arr), parse_clock(s.dep)) for s in stops]
	connected = drop_unconnected(parsed, resolver)
	if len(connected) < 2:
		return [], False

	rebuild = any(s.arr_min is None and s.dep_min is None for s in connected)
	timed: List[TimedStop] = []
	if not rebuild:
		timed = _apply_rollover(connected)
		implied = _max_implied_speed(timed, resolver)
		if implied > config.max_plausible_speed_kmh:
			logger.info(f"Implied speed {implied:.0f} km/h is implausible; rebuilding times")
			rebuild = True

	if rebuild:
		first_dep = connected[0].dep_min
		if first_dep is None:
			first_dep = parse_clock(config.default_departure)
		logger.debug(f"Synthesizing times for {len(connected)} stops from {format_clock(first_dep)}")
		timed = synthesize_times(
			[s.station for s in connected], category, resolver, first_dep, avg_speed_kmh, config
		)
	else:
		timed = _fill_single_times(timed)

	if config.expand_via_graph:
		timed = expand_via_graph(timed, resolver)
	return timed, rebuild


# ---------------------------------------------------------------------------
# Calendar stamping
# ---------------------------------------------------------------------------

def runs_on(day: date, operating_days: Optional[Iterable[str]]) -> bool:
	if not operating_days:
		return True
	allowed = {str(d).strip().lower()[:3] for d in operating_days}
	return WEEKDAYS[day.weekday()] in allowed


def build_daily_schedules(
	stops: Sequence[TimedStop],
	start_date: date,
	tz: tzinfo,
	days: Optional[int] = None,
	operating_days: Optional[Iterable[str]] = None,
) -> List[DailySchedule]:
	"""Stamp a stop template onto each operating day of the simulated window."""
	if len(stops) < 2:
		return []
	days = settings.SIMULATED_DAYS if days is None else days
	operating = list(operating_days) if operating_days else None
	entries: List[DailySchedule] = []
	for d in range(days):
		day = start_date + timedelta(days=d)
		if not runs_on(day, operating):
			continue
		midnight = datetime(day.year, day.month, day.day, tzinfo=tz)
		out = []
		for s in stops:
			arr = midnight + timedelta(minutes=s.arr_min) if s.arr_min is not None else None
			dep = midnight + timedelta(minutes=s.dep_min) if s.dep_min is not None else None
			out.append(ScheduledStop(s.station, arr, dep))
		entries.append(DailySchedule(day_index=d, calendar_date=day, stops=out))
	return entries
