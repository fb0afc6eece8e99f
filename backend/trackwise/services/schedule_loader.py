"""
Official schedule loader.

Accepted inputs:
  - nested JSON: [{no, name, days, stops: [{station, arr, dep}]}]
  - flat JSON rows: [{train_no, train_name, seq, station, arrival, departure}]
  - CSV rows: train_no, train_name, days, seq, station, arr, dep
"""
import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import pandas as pd
from pydantic import ValidationError

from trackwise.core.twin_schema import ScheduleRecordIn, ScheduleStopIn

logger = logging.getLogger(__name__)

ALL_DAYS = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

ROW_COLUMNS = {
	"no": "train_no",
	"train_number": "train_no",
	"name": "train_name",
	"station_id": "station",
	"station_code": "station",
	"arrival": "arr",
	"departure": "dep",
	"sequence": "seq",
	"run_days": "days",
	"avg_speed_kmph": "avg_speed_kmh",
}


def parse_days(value: Any) -> List[str]:
	"""'Mon|Wed', 'Mon,Tue', ['mon'], 'Daily' -> canonical day names."""
	if value is None or (isinstance(value, float) and pd.isna(value)):
		return list(ALL_DAYS)
	items = value if isinstance(value, list) else re.split(r"[|,;/\s]+", str(value))
	out: List[str] = []
	for item in items:
		key = str(item).strip().lower()[:3]
		if key in ("dai", "all"):
			return list(ALL_DAYS)
		for day in ALL_DAYS:
			if day.lower() == key and day not in out:
				out.append(day)
	return out or list(ALL_DAYS)


def _clean(value: Any) -> Optional[str]:
	if value is None or (isinstance(value, float) and pd.isna(value)):
		return None
	text = str(value).strip()
	return text or None


def _optional_float(value: Any) -> Optional[float]:
	try:
		v = float(value)
	except (TypeError, ValueError):
		return None
	return None if pd.isna(v) else v


def records_from_nested(raw: List[Dict[str, Any]]) -> List[ScheduleRecordIn]:
	records: List[ScheduleRecordIn] = []
	for entry in raw:
		try:
			stops = [
				ScheduleStopIn(
					station=str(s.get("station") or s.get("station_id") or "").strip().upper(),
					arr=_clean(s.get("arr", s.get("arrival"))),
					dep=_clean(s.get("dep", s.get("departure"))),
				)
				for s in entry.get("stops", [])
			]
			records.append(ScheduleRecordIn(
				train_no=str(entry.get("no") or entry.get("train_no") or "").strip(),
				train_name=str(entry.get("name") or entry.get("train_name") or ""),
				days=parse_days(entry.get("days")),
				avg_speed_kmh=_optional_float(entry.get("avg_speed_kmh", entry.get("avg_speed_kmph"))),
				category=_clean(entry.get("category")),
				stops=[s for s in stops if s.station],
			))
		except (ValidationError, AttributeError, TypeError) as e:
			logger.warning(f"Skipping schedule entry {entry!r:.60}: {e}")
	return [r for r in records if r.train_no]


def records_from_rows(df: pd.DataFrame) -> List[ScheduleRecordIn]:
	"""Group one-row-per-stop tables into per-train records ordered by seq."""
	df = df.rename(columns={c: str(c).strip().lower() for c in df.columns})
	for old_col, new_col in ROW_COLUMNS.items():
		if old_col in df.columns and new_col not in df.columns:
			df = df.rename(columns={old_col: new_col})
	for col in ("train_no", "station"):
		if col not in df.columns:
			logger.error(f"Missing required schedule column: {col}")
			return []

	df = df[df["train_no"].notna() & df["station"].notna()].copy()
	df["train_no"] = df["train_no"].astype(str).str.strip()
	if "seq" in df.columns:
		df["seq"] = pd.to_numeric(df["seq"], errors="coerce")
		df = df.sort_values(["train_no", "seq"], kind="stable")

	records: List[ScheduleRecordIn] = []
	for train_no, group in df.groupby("train_no", sort=False):
		first = group.iloc[0]
		try:
			records.append(ScheduleRecordIn(
				train_no=train_no,
				train_name=_clean(first.get("train_name")) or "",
				days=parse_days(first.get("days")),
				avg_speed_kmh=_optional_float(first.get("avg_speed_kmh")),
				category=_clean(first.get("category")),
				stops=[
					ScheduleStopIn(
						station=str(row["station"]).strip().upper(),
						arr=_clean(row.get("arr")),
						dep=_clean(row.get("dep")),
					)
					for _, row in group.iterrows()
				],
			))
		except ValidationError as e:
			logger.warning(f"Skipping schedule rows for train {train_no}: {e}")
	return records


def parse_schedules(raw: Any) -> List[ScheduleRecordIn]:
	if isinstance(raw, dict):
		raw = raw.get("trains") or raw.get("schedules") or []
	if not isinstance(raw, list) or not raw:
		return []
	if any(isinstance(item, dict) and "stops" in item for item in raw):
		return records_from_nested([item for item in raw if isinstance(item, dict)])
	return records_from_rows(pd.DataFrame([item for item in raw if isinstance(item, dict)]))


def load_schedules(path: Union[str, Path]) -> List[ScheduleRecordIn]:
	file = Path(path)
	if not file.exists():
		logger.warning(f"Schedule file not found: {file}")
		return []
	if file.suffix.lower() == ".csv":
		records = records_from_rows(pd.read_csv(file, dtype=str))
	else:
		with open(file, "r", encoding="utf-8") as f:
			records = parse_schedules(json.load(f))
	logger.info(f"Loaded {len(records)} official schedules from {file.name}")
	return records
