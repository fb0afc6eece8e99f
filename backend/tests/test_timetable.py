import math
from datetime import datetime

from conftest import EPOCH, UTC

from trackwise.core.twin_schema import ScheduleStopIn
from trackwise.services.timetable import (
    MINUTES_PER_DAY,
    TimedStop,
    TimetableConfig,
    build_daily_schedules,
    clamp_avg_speed,
    drop_unconnected,
    dwell_at,
    expand_via_graph,
    format_clock,
    infer_category,
    normalize_stops,
    parse_clock,
    runs_on,
    synthesize_times,
    travel_time_seconds,
)


def stops_in(*rows):
    return [ScheduleStopIn(station=s, arr=a, dep=d) for s, a, d in rows]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def test_travel_time_triangular_profile():
    # 1 km never reaches 100 km/h at 0.35 m/s^2
    assert math.isclose(travel_time_seconds(1.0, 100, 0.35), 2 * math.sqrt(1000 / 0.35))


def test_travel_time_trapezoidal_profile():
    v = 100 / 3.6
    t_acc = v / 0.35
    d_acc = 0.5 * 0.35 * t_acc ** 2
    expected = 2 * t_acc + (100000 - 2 * d_acc) / v
    assert math.isclose(travel_time_seconds(100.0, 100, 0.35), expected)


def test_parse_clock():
    assert parse_clock("06:30") == 390
    assert parse_clock("6:5") == 365
    assert parse_clock("06:30:15") == 390
    assert parse_clock("24:00") is None
    assert parse_clock("--") is None
    assert parse_clock("") is None
    assert parse_clock(None) is None


def test_format_clock_wraps_day():
    assert format_clock(1455) == "00:15"
    assert format_clock(390) == "06:30"


def test_clamp_avg_speed():
    assert clamp_avg_speed(200) == 130
    assert clamp_avg_speed(10) == 30
    assert clamp_avg_speed(0) is None
    assert clamp_avg_speed("abc") is None
    assert clamp_avg_speed(None) is None


def test_dwell_includes_major_station_extra():
    assert dwell_at("B", "EXPRESS") == 5
    assert dwell_at("NDLS", "EXPRESS") == 10
    assert dwell_at("NDLS", "FREIGHT") == 15


def test_infer_category():
    assert infer_category("Mumbai Rajdhani", "") == "RAJDHANI"
    assert infer_category("Some Train", "Superfast") == "SUPERFAST"
    assert infer_category("Pune Janshatabdi") == "SHATABDI"
    assert infer_category("Goods special") == "FREIGHT"
    assert infer_category("Local MEMU") == "PASSENGER"
    assert infer_category("Whatever") == "EXPRESS"


# ---------------------------------------------------------------------------
# Synthesis
# ---------------------------------------------------------------------------

def test_synthesize_times_shape(line_resolver):
    stops = synthesize_times(["A", "B", "C", "D"], "EXPRESS", line_resolver, 360)
    assert [s.station for s in stops] == ["A", "B", "C", "D"]
    assert stops[0].arr_min is None and stops[0].dep_min == 360
    assert stops[-1].dep_min is None and stops[-1].arr_min is not None
    assert math.isclose(stops[1].dep_min - stops[1].arr_min, 5)

    events = [stops[0].dep_min]
    for s in stops[1:]:
        events.append(s.arr_min)
        if s.dep_min is not None:
            events.append(s.dep_min)
    assert events == sorted(events)


def test_synthesize_times_drops_unknown_stations(line_resolver):
    stops = synthesize_times(["A", "ZZZ", "C"], "EXPRESS", line_resolver, 0)
    assert [s.station for s in stops] == ["A", "C"]
    assert synthesize_times(["ZZZ", "YYY"], "EXPRESS", line_resolver, 0) == []


def test_drop_unconnected_keeps_first_in_graph(line_resolver):
    kept = drop_unconnected(["ZZZ", "A", "YYY", "B"], line_resolver, key=lambda s: s)
    assert kept == ["A", "B"]


def test_expand_via_graph_inserts_pass_through(line_resolver):
    expanded = expand_via_graph([TimedStop("A", None, 600), TimedStop("C", 640, None)], line_resolver)
    assert [s.station for s in expanded] == ["A", "B", "C"]
    b = expanded[1]
    assert math.isclose(b.arr_min, 620, abs_tol=1e-6)
    assert b.arr_min == b.dep_min


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------

def test_normalize_keeps_plausible_times(line_resolver):
    timed, rebuilt = normalize_stops(
        stops_in(("A", None, "10:00"), ("B", "10:20", "10:22"), ("C", "10:45", None)),
        "EXPRESS",
        line_resolver,
    )
    assert rebuilt is False
    assert [(s.station, s.arr_min, s.dep_min) for s in timed] == [
        ("A", None, 600),
        ("B", 620, 622),
        ("C", 645, None),
    ]


def test_normalize_rebuilds_implausible_speed(line_resolver):
    timed, rebuilt = normalize_stops(
        stops_in(("A", None, "10:00"), ("B", "10:02", "10:03"), ("C", "10:30", None)),
        "EXPRESS",
        line_resolver,
    )
    assert rebuilt is True
    assert timed[0].dep_min == 600
    assert timed[1].arr_min > 602


def test_normalize_rebuilds_when_a_stop_has_no_times(line_resolver):
    timed, rebuilt = normalize_stops(
        stops_in(("A", None, None), ("B", None, None), ("C", None, None)),
        "EXPRESS",
        line_resolver,
        config=TimetableConfig(default_departure="07:30"),
    )
    assert rebuilt is True
    assert timed[0].dep_min == 450
    assert timed[-1].station == "C"


def test_normalize_rolls_over_midnight(line_resolver):
    timed, rebuilt = normalize_stops(
        stops_in(("A", None, "23:50"), ("B", "00:15", "00:17"), ("C", "00:40", None)),
        "EXPRESS",
        line_resolver,
    )
    assert rebuilt is False
    assert timed[1].arr_min == MINUTES_PER_DAY + 15
    assert timed[2].arr_min == MINUTES_PER_DAY + 40


def test_normalize_drops_unconnected_stops(line_resolver):
    timed, _ = normalize_stops(
        stops_in(("A", None, "10:00"), ("ZZZ", "10:10", "10:11"), ("B", "10:30", None)),
        "EXPRESS",
        line_resolver,
    )
    assert [s.station for s in timed] == ["A", "B"]


def test_normalize_needs_two_connected_stops(line_resolver):
    assert normalize_stops(stops_in(("A", None, "10:00"), ("ZZZ", "11:00", None)), "EXPRESS", line_resolver) == ([], False)


# ---------------------------------------------------------------------------
# Calendar stamping
# ---------------------------------------------------------------------------

def test_build_daily_schedules_respects_operating_days():
    stops = [TimedStop("A", None, 600), TimedStop("B", MINUTES_PER_DAY + 15, None)]
    entries = build_daily_schedules(stops, EPOCH, UTC, days=7, operating_days=["Mon", "Wed"])
    assert [e.day_index for e in entries] == [0, 2]

    first = entries[0]
    assert first.stops[0].arrival is None
    assert first.stops[0].departure == datetime(2025, 1, 6, 10, 0, tzinfo=UTC)
    assert first.stops[1].arrival == datetime(2025, 1, 7, 0, 15, tzinfo=UTC)
    assert first.stops[1].departure is None


def test_runs_on_defaults_to_daily():
    assert runs_on(EPOCH, None)
    assert runs_on(EPOCH, ["monday"])
    assert not runs_on(EPOCH, ["Tue"])
