import pytest
from conftest import EPOCH, UTC

from trackwise.core.twin_schema import ScheduleRecordIn, ScheduleStopIn
from trackwise.services.fleet import FAMOUS_TRAINS, FleetBuilder
from trackwise.services.timetable import TimetableConfig


@pytest.fixture
def builder(hub_graph, hub_resolver, hub_templates):
    return FleetBuilder(hub_graph, hub_resolver, hub_templates, EPOCH, UTC, config=TimetableConfig(days=3), seed=42)


def test_synthetic_fleet_starts_with_famous_trains(builder):
    trains = builder.synthetic(20)
    assert len(trains) == 20
    assert [t.train_id for t in trains[: len(FAMOUS_TRAINS)]] == [f["no"] for f in FAMOUS_TRAINS]
    assert len({t.train_id for t in trains}) == 20


def test_synthetic_schedules_are_well_formed(builder, hub_resolver):
    for train in builder.synthetic(15):
        assert len(train.schedule) == 3
        for entry in train.schedule:
            stops = entry.stops
            assert stops[0].arrival is None
            assert stops[-1].departure is None
            events = [stops[0].departure]
            for s in stops[1:]:
                events.append(s.arrival)
                if s.departure is not None:
                    events.append(s.departure)
            assert events == sorted(events)
            for prev, cur in zip(stops, stops[1:]):
                assert hub_resolver.is_connected(prev.station, cur.station)


def test_synthetic_fleet_is_deterministic(hub_graph, hub_resolver, hub_templates):
    def ids_and_routes(seed):
        b = FleetBuilder(hub_graph, hub_resolver, hub_templates, EPOCH, UTC, config=TimetableConfig(days=1), seed=seed)
        return [(t.train_id, tuple(t.route)) for t in b.synthetic(12)]

    assert ids_and_routes(5) == ids_and_routes(5)


def test_official_records_are_normalized(builder):
    records = [
        ScheduleRecordIn(
            train_no="12951",
            train_name="Mumbai Rajdhani",
            days=["Mon"],
            stops=[
                ScheduleStopIn(station="BCT", dep="17:00"),
                ScheduleStopIn(station="XXXX", arr="18:00", dep="18:05"),
                ScheduleStopIn(station="ADI", arr="23:30", dep="23:40"),
                ScheduleStopIn(station="JP", arr="05:50", dep="06:00"),
                ScheduleStopIn(station="NDLS", arr="10:30"),
            ],
        ),
        ScheduleRecordIn(train_no="99999", stops=[ScheduleStopIn(station="NOWHERE", dep="10:00")]),
    ]
    trains = builder.from_official(records)
    assert [t.train_id for t in trains] == ["12951"]
    train = trains[0]
    assert train.category == "RAJDHANI"
    assert train.route[0] == "BCT" and train.route[-1] == "NDLS"
    assert "XXXX" not in train.route
    assert [e.day_index for e in train.schedule] == [0]
    # overnight run lands on the next calendar day
    assert train.schedule[0].stops[-1].arrival.day == EPOCH.day + 1
