"""Fleet initialization.

Trains come either from official schedule records (normalized against the
graph) or are synthesized: the famous named trains first, then a category
mix drawn over random sub-routes of the corridor templates.
"""
from __future__ import annotations
import logging
import random
from datetime import date, tzinfo
from typing import List, Optional, Sequence

from trackwise.core.config import settings
from trackwise.core.graph_builder import TrackGraph
from trackwise.core.models import Train
from trackwise.core.path_resolver import PathResolver
from trackwise.core.twin_schema import RouteTemplate, ScheduleRecordIn
from trackwise.services.timetable import (
	CATEGORIES,
	TimedStop,
	TimetableConfig,
	build_daily_schedules,
	category_info,
	clamp_avg_speed,
	expand_via_graph,
	infer_category,
	normalize_stops,
	synthesize_times,
)

logger = logging.getLogger(__name__)

FAMOUS_TRAINS = [
	{"no": "12301", "name": "Rajdhani Express", "category": "RAJDHANI", "route": ["NDLS", "CNB", "LKO", "PNBE", "HWH"]},
	{"no": "12002", "name": "Bhopal Shatabdi", "category": "SHATABDI", "route": ["NDLS", "BPL"]},
	{"no": "12621", "name": "Tamil Nadu Express", "category": "SUPERFAST", "route": ["NDLS", "BPL", "NGP", "SC", "MAS"]},
	{"no": "16031", "name": "Andaman Express", "category": "EXPRESS", "route": ["MAS", "BZA", "SC", "NGP", "BPL"]},
	{"no": "19023", "name": "Firozpur Janata", "category": "EXPRESS", "route": ["BCT", "BPL", "NDLS", "CDG"]},
]

CATEGORY_SHARES = [
	("RAJDHANI", 0.05),
	("SHATABDI", 0.08),
	("SUPERFAST", 0.25),
	("EXPRESS", 0.45),
	("PASSENGER", 0.12),
	("FREIGHT", 0.05),
]

NAME_SUFFIXES = ["Express", "Passenger", "Special", "Mail", "Fast"]


class FleetBuilder:
	def __init__(
		self,
		graph: TrackGraph,
		resolver: PathResolver,
		templates: Sequence[RouteTemplate],
		start_date: date,
		tz: tzinfo,
		config: Optional[TimetableConfig] = None,
		seed: Optional[int] = None,
	):
		self.graph = graph
		self.resolver = resolver
		self.templates = list(templates)
		self.start_date = start_date
		self.tz = tz
		self.config = config or TimetableConfig()
		self.rng = random.Random(settings.FLEET_SEED if seed is None else seed)

	def _departure_minute(self) -> int:
		return self.rng.randint(0, 23) * 60 + self.rng.choice(range(0, 60, 5))

	def _make_train(
		self,
		train_id: str,
		name: str,
		category: str,
		stops: List[TimedStop],
		days: Optional[List[str]] = None,
		avg_speed_kmh: Optional[float] = None,
	) -> Optional[Train]:
		if len(stops) < 2:
			logger.warning(f"Train {train_id} has fewer than two connected stops; skipped")
			return None
		info = category_info(category)
		train = Train(
			train_id=train_id,
			name=name or info["name"],
			category=category if category in CATEGORIES else "EXPRESS",
			speed_range=tuple(info["speed_range"]),
			route=[s.station for s in stops],
			avg_speed_kmh=avg_speed_kmh,
		)
		if days:
			train.operating_days = list(days)
		train.set_schedule(
			build_daily_schedules(stops, self.start_date, self.tz, self.config.days, train.operating_days)
		)
		return train

	def synthetic_train(self, train_id: str, name: str, category: str, route: Sequence[str]) -> Optional[Train]:
		stops = synthesize_times(route, category, self.resolver, self._departure_minute(), config=self.config)
		if self.config.expand_via_graph:
			stops = expand_via_graph(stops, self.resolver)
		return self._make_train(train_id, name, category, stops)

	def _random_route(self) -> List[str]:
		template = self.rng.choice(self.templates).stations
		sub_len = self.rng.randint(2, len(template))
		start = self.rng.randint(0, len(template) - sub_len)
		route = list(template[start:start + sub_len])
		if self.rng.random() < 0.5:
			route.reverse()
		return route

	def synthetic(self, n: Optional[int] = None) -> List[Train]:
		"""Famous trains first, then the category mix, up to `n` trains."""
		n = settings.MAX_TRAINS if n is None else n
		trains: List[Train] = []
		for famous in FAMOUS_TRAINS:
			if len(trains) >= n:
				break
			t = self.synthetic_train(famous["no"], famous["name"], famous["category"], famous["route"])
			if t is not None:
				trains.append(t)

		if not self.templates:
			return trains
		for category, share in CATEGORY_SHARES:
			for _ in range(int(n * share)):
				if len(trains) >= n:
					break
				train_id = str(10000 + len(trains) + 1)
				route = self._random_route()
				name = f"{route[0]}-{route[-1]} {self.rng.choice(NAME_SUFFIXES)}"
				t = self.synthetic_train(train_id, name, category, route)
				if t is not None:
					trains.append(t)
		logger.info(f"Synthesized {len(trains)} trains")
		return trains

	def from_official(self, records: Sequence[ScheduleRecordIn], n: Optional[int] = None) -> List[Train]:
		n = settings.MAX_TRAINS if n is None else n
		trains: List[Train] = []
		rebuilt = 0
		for record in records:
			if len(trains) >= n:
				break
			stops = [s for s in record.stops if self.graph.has_station(s.station)]
			if len(stops) < 2:
				continue
			category = (record.category or "").upper()
			if category not in CATEGORIES:
				category = infer_category(record.train_name, record.category)
			try:
				timed, was_rebuilt = normalize_stops(
					stops, category, self.resolver, clamp_avg_speed(record.avg_speed_kmh), self.config
				)
			except (ValueError, KeyError, TypeError):
				logger.error(f"Official train init failed for {record.train_no}", exc_info=True)
				continue
			rebuilt += int(was_rebuilt)
			t = self._make_train(record.train_no, record.train_name, category, timed, record.days, record.avg_speed_kmh)
			if t is not None:
				trains.append(t)
		logger.info(f"Initialized {len(trains)} official trains ({rebuilt} with rebuilt times)")
		return trains
