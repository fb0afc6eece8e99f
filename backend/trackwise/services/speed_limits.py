"""
Per-segment speed limits from OpenStreetMap (Overpass API).

Queries railway ways carrying a `maxspeed` tag around each segment's
midpoint and keeps the median. Results are cached in a JSON file keyed by
the unordered station pair ("A|B"). Individual failures are logged and
skipped; the segment keeps its corridor default.
"""
import asyncio
import json
import logging
import os
import re
from typing import Dict, List, Optional, Sequence, Tuple

import httpx

from trackwise.core.config import settings
from trackwise.core.geo import haversine_km
from trackwise.core.graph_builder import segment_key
from trackwise.core.models import Station

logger = logging.getLogger(__name__)

MPH_TO_KMH = 1.60934
_MAXSPEED_RE = re.compile(r"([0-9]+(?:\.[0-9]+)?)\s*(mph|kmh|km/h|kph)?", re.IGNORECASE)


def parse_maxspeed_tag(value: Optional[str]) -> Optional[float]:
	"""'110', '110 km/h', '70 mph', '100;90' -> km/h clamped to 20..200."""
	if not value:
		return None
	primary = str(value).split(";")[0].strip()
	m = _MAXSPEED_RE.search(primary)
	if not m:
		return None
	num = float(m.group(1))
	unit = (m.group(2) or "kmh").lower()
	if "mph" in unit:
		num *= MPH_TO_KMH
	return max(20.0, min(200.0, num))


def search_radius_m(distance_km: float) -> int:
	return int(max(3000.0, min(15000.0, distance_km * 500.0)))


def build_overpass_query(lat: float, lon: float, radius_m: int) -> str:
	return (
		"[out:json][timeout:25];\n"
		f'way["railway"="rail"]["maxspeed"](around:{radius_m},{lat},{lon});\n'
		"out tags;"
	)


def median_speed(elements: List[Dict]) -> Optional[float]:
	speeds = []
	for el in elements:
		if not isinstance(el, dict):
			continue
		tags = el.get("tags")
		if not isinstance(tags, dict):
			continue
		v = parse_maxspeed_tag(tags.get("maxspeed") or tags.get("maxspeed:forward") or tags.get("maxspeed:backward"))
		if v:
			speeds.append(v)
	if not speeds:
		return None
	speeds.sort()
	return float(round(speeds[len(speeds) // 2]))


class SpeedLimitClient:
	"""Fetch segment speed limits from Overpass with a polite delay between requests."""

	def __init__(
		self,
		url: Optional[str] = None,
		client: Optional[httpx.AsyncClient] = None,
		delay_seconds: Optional[float] = None,
		max_fetch: Optional[int] = None,
		cache_path: Optional[str] = None,
	):
		self.url = url or settings.OVERPASS_URL
		self._client = client
		self._owns_client = client is None
		self.delay_seconds = settings.OSM_REQUEST_DELAY_SECONDS if delay_seconds is None else delay_seconds
		self.max_fetch = settings.OSM_MAX_FETCH if max_fetch is None else max_fetch
		self.cache_path = cache_path if cache_path is not None else settings.OSM_CACHE_PATH
		self.cache: Dict[str, float] = self._load_cache()

	async def _get_client(self) -> httpx.AsyncClient:
		if self._client is None:
			# Use connection pooling to prevent file descriptor exhaustion
			limits = httpx.Limits(max_keepalive_connections=5, max_connections=10)
			self._client = httpx.AsyncClient(timeout=30.0, limits=limits)
		return self._client

	async def close(self) -> None:
		if self._client is not None and self._owns_client:
			await self._client.aclose()
			self._client = None

	def _load_cache(self) -> Dict[str, float]:
		if not self.cache_path or not os.path.exists(self.cache_path):
			return {}
		try:
			with open(self.cache_path, "r", encoding="utf-8") as f:
				raw = json.load(f)
			return {str(k): float(v) for k, v in raw.items()}
		except (OSError, ValueError, AttributeError) as e:
			logger.warning(f"Ignoring unreadable speed cache {self.cache_path}: {e}")
			return {}

	def _save_cache(self) -> None:
		if not self.cache_path:
			return
		try:
			with open(self.cache_path, "w", encoding="utf-8") as f:
				json.dump(self.cache, f, indent=2, sort_keys=True)
		except OSError as e:
			logger.warning(f"Could not write speed cache {self.cache_path}: {e}")

	async def fetch_segment(self, a: Station, b: Station) -> Optional[float]:
		mid_lat = (a.lat + b.lat) / 2.0
		mid_lon = (a.lon + b.lon) / 2.0
		radius = search_radius_m(haversine_km(a.lat, a.lon, b.lat, b.lon))
		client = await self._get_client()
		response = await client.post(self.url, data={"data": build_overpass_query(mid_lat, mid_lon, radius)})
		response.raise_for_status()
		payload = response.json()
		elements = payload.get("elements", []) if isinstance(payload, dict) else None
		if not isinstance(elements, list):
			raise ValueError(f"Unexpected Overpass payload: {type(payload).__name__}")
		return median_speed(elements)

	async def enrich(self, segments: Sequence[Tuple[Station, Station]]) -> Dict[str, float]:
		"""Return speed overrides for every cached or freshly fetched segment."""
		pending = [(a, b) for a, b in segments if segment_key(a.id, b.id) not in self.cache]
		pending = pending[: self.max_fetch]
		fetched = 0
		for i, (a, b) in enumerate(pending):
			key = segment_key(a.id, b.id)
			try:
				speed = await self.fetch_segment(a, b)
				if speed:
					self.cache[key] = speed
					fetched += 1
			except (httpx.HTTPError, ValueError) as e:
				logger.warning(f"Speed lookup failed for {key}: {e}")
			if self.delay_seconds > 0 and i < len(pending) - 1:
				await asyncio.sleep(self.delay_seconds)

		if pending:
			self._save_cache()
			logger.info(f"Fetched {fetched}/{len(pending)} segment speed limits from Overpass")
		wanted = {segment_key(a.id, b.id) for a, b in segments}
		return {k: v for k, v in self.cache.items() if k in wanted}


async def fetch_speed_overrides(stations: Dict[str, Station], pairs: Sequence[Tuple[str, str]], **kwargs) -> Dict[str, float]:
	client = SpeedLimitClient(**kwargs)
	try:
		return await client.enrich([(stations[a], stations[b]) for a, b in pairs])
	finally:
		await client.close()
