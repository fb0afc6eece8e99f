"""
Network loader for the station registry and route templates.
Stations come from JSON or CSV; route templates from JSON.
"""
import json
import pandas as pd
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import logging

from pydantic import ValidationError

from trackwise.core.config import settings
from trackwise.core.models import Station
from trackwise.core.twin_schema import RouteTemplate, StationRecord

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Column aliases seen in station exports
STATION_COLUMNS = {
	"station_id": "id",
	"station_code": "id",
	"code": "id",
	"station_name": "name",
	"latitude": "lat",
	"longitude": "lon",
	"lng": "lon",
}


def _data_path(name: str) -> Path:
	path = Path(name)
	if path.is_absolute():
		return path
	return Path(settings.data_dir) / name


def _stations_from_frame(df: pd.DataFrame) -> List[Station]:
	df = df.rename(columns={c: c.strip().lower() for c in df.columns})
	for old_col, new_col in STATION_COLUMNS.items():
		if old_col in df.columns and new_col not in df.columns:
			df = df.rename(columns={old_col: new_col})

	for col in ("id", "lat", "lon"):
		if col not in df.columns:
			logger.error(f"Missing required station column: {col}")
			return []

	stations: List[Station] = []
	skipped = 0
	for _, row in df.iterrows():
		try:
			record = StationRecord(
				id=str(row["id"]).strip().upper(),
				name=str(row["name"]) if "name" in df.columns and pd.notna(row.get("name")) else "",
				lat=float(row["lat"]),
				lon=float(row["lon"]),
				state=str(row["state"]) if "state" in df.columns and pd.notna(row.get("state")) else "",
			)
		except (ValidationError, ValueError, TypeError):
			skipped += 1
			continue
		if pd.isna(record.lat) or pd.isna(record.lon):
			skipped += 1
			continue
		stations.append(Station(record.id, record.name or record.id, record.lat, record.lon, record.state))

	if skipped:
		logger.warning(f"Skipped {skipped} station rows with invalid id or coordinates")
	return stations


def load_stations(path: Optional[PathLike] = None) -> List[Station]:
	"""
	Load the station registry.

	Args:
		path: JSON (list of records or {"stations": [...]}) or CSV file.
			Defaults to the configured STATIONS_FILE in the data directory.

	Returns:
		List of Station records
	"""
	file = _data_path(str(path or settings.STATIONS_FILE))
	if not file.exists():
		logger.warning(f"Stations file not found: {file}")
		return []

	if file.suffix.lower() == ".csv":
		df = pd.read_csv(file)
	else:
		with open(file, "r", encoding="utf-8") as f:
			raw = json.load(f)
		if isinstance(raw, dict):
			raw = raw.get("stations", [])
		df = pd.DataFrame(raw)

	stations = _stations_from_frame(df)
	logger.info(f"Loaded {len(stations)} stations from {file.name}")
	return stations


def parse_route_templates(raw: List[Any], default_speed: Optional[float] = None) -> List[RouteTemplate]:
	"""Accept plain station lists or objects with a `stations` field."""
	default_speed = settings.DEFAULT_SPEED_LIMIT_KMH if default_speed is None else default_speed
	templates: List[RouteTemplate] = []
	for i, item in enumerate(raw):
		if isinstance(item, list):
			item = {"stations": item}
		if not isinstance(item, dict):
			logger.warning(f"Skipping route template {i}: unsupported type {type(item).__name__}")
			continue
		data: Dict[str, Any] = dict(item)
		data.setdefault("name", f"Corridor {i + 1}")
		data.setdefault("speed_limit_kmh", default_speed)
		data["stations"] = [str(s).strip().upper() for s in data.get("stations", [])]
		try:
			templates.append(RouteTemplate(**data))
		except ValidationError as e:
			logger.warning(f"Skipping route template {i}: {e.errors()[0].get('msg')}")
	return templates


def load_route_templates(path: Optional[PathLike] = None) -> List[RouteTemplate]:
	file = _data_path(str(path or settings.ROUTES_FILE))
	if not file.exists():
		logger.warning(f"Route templates file not found: {file}")
		return []
	with open(file, "r", encoding="utf-8") as f:
		raw = json.load(f)
	if isinstance(raw, dict):
		raw = raw.get("templates", [])
	templates = parse_route_templates(raw)
	logger.info(f"Loaded {len(templates)} route templates from {file.name}")
	return templates
