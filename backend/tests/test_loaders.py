import json

import pandas as pd

from trackwise.services.network_loader import load_route_templates, load_stations, parse_route_templates
from trackwise.services.schedule_loader import load_schedules, parse_days, parse_schedules, records_from_rows


# ---------------------------------------------------------------------------
# Stations and route templates
# ---------------------------------------------------------------------------

def test_bundled_network_loads(hub_stations, hub_templates):
    assert len(hub_stations) == 25
    assert len(hub_templates) == 12
    codes = {s.id for s in hub_stations}
    for template in hub_templates:
        assert set(template.stations) <= codes


def test_stations_from_csv_with_aliases(tmp_path):
    path = tmp_path / "stations.csv"
    pd.DataFrame([
        {"station_code": "ndls", "station_name": "New Delhi", "latitude": 28.64, "longitude": 77.22},
        {"station_code": "BAD", "station_name": "Broken", "latitude": "n/a", "longitude": 77.0},
        {"station_code": "BPL", "station_name": "Bhopal", "latitude": 23.27, "longitude": 77.41},
    ]).to_csv(path, index=False)
    stations = load_stations(path)
    assert [s.id for s in stations] == ["NDLS", "BPL"]
    assert stations[0].name == "New Delhi"


def test_stations_json_wrapped(tmp_path):
    path = tmp_path / "stations.json"
    path.write_text(json.dumps({"stations": [{"id": "X", "lat": 1, "lon": 2}]}))
    stations = load_stations(path)
    assert stations[0].id == "X"
    assert stations[0].name == "X"


def test_missing_files_yield_empty(tmp_path):
    assert load_stations(tmp_path / "nope.json") == []
    assert load_route_templates(tmp_path / "nope.json") == []


def test_parse_route_templates_formats():
    templates = parse_route_templates(
        [
            ["ndls", "bpl"],
            {"name": "Fast", "stations": ["BPL", "NGP"], "speed_limit_kmh": 130, "tracks": 2},
            {"stations": ["ONLY"]},
            "garbage",
        ],
        default_speed=80,
    )
    assert len(templates) == 2
    assert templates[0].stations == ["NDLS", "BPL"]
    assert templates[0].speed_limit_kmh == 80
    assert templates[0].name == "Corridor 1"
    assert templates[1].tracks == 2


# ---------------------------------------------------------------------------
# Official schedules
# ---------------------------------------------------------------------------

def test_parse_days():
    assert parse_days("Mon|Wed") == ["Mon", "Wed"]
    assert parse_days(["tue", "TUE", "fri"]) == ["Tue", "Fri"]
    assert parse_days("Daily") == ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
    assert len(parse_days(None)) == 7


def test_nested_schedules():
    records = parse_schedules([
        {
            "no": "12002",
            "name": "Bhopal Shatabdi",
            "days": "Mon,Tue",
            "stops": [
                {"station": "ndls", "dep": "06:00"},
                {"station": "BPL", "arr": "14:25"},
            ],
        },
        {"name": "no number", "stops": []},
    ])
    assert len(records) == 1
    rec = records[0]
    assert rec.train_no == "12002"
    assert rec.days == ["Mon", "Tue"]
    assert [s.station for s in rec.stops] == ["NDLS", "BPL"]
    assert rec.stops[0].arr is None and rec.stops[0].dep == "06:00"


def test_flat_rows_are_grouped_and_ordered():
    records = parse_schedules({
        "trains": [
            {"train_no": "1", "train_name": "One", "seq": 2, "station": "BPL", "arrival": "12:00"},
            {"train_no": "1", "train_name": "One", "seq": 1, "station": "NDLS", "departure": "06:00"},
            {"train_no": "2", "train_name": "Two", "seq": 1, "station": "MAS", "departure": "07:00"},
        ]
    })
    by_no = {r.train_no: r for r in records}
    assert [s.station for s in by_no["1"].stops] == ["NDLS", "BPL"]
    assert by_no["1"].stops[1].arr == "12:00"
    assert len(by_no["2"].stops) == 1


def test_rows_missing_required_columns():
    assert records_from_rows(pd.DataFrame([{"foo": 1}])) == []


def test_csv_schedules(tmp_path):
    path = tmp_path / "schedules.csv"
    path.write_text(
        "train_no,train_name,days,seq,station,arr,dep,avg_speed_kmh\n"
        "12621,Tamil Nadu Express,Daily,1,NDLS,,22:30,75\n"
        "12621,Tamil Nadu Express,Daily,2,BPL,06:10,06:15,75\n"
        "12621,Tamil Nadu Express,Daily,3,NGP,11:30,11:35,75\n"
    )
    records = load_schedules(path)
    assert len(records) == 1
    rec = records[0]
    assert rec.avg_speed_kmh == 75
    assert [s.station for s in rec.stops] == ["NDLS", "BPL", "NGP"]
    assert rec.stops[0].arr is None
    assert rec.stops[1].dep == "06:15"
