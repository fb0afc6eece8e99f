import asyncio
import json

import httpx
import pytest

from trackwise.core.models import Station
from trackwise.services.speed_limits import (
    SpeedLimitClient,
    build_overpass_query,
    median_speed,
    parse_maxspeed_tag,
    search_radius_m,
)

NDLS = Station("NDLS", "New Delhi", 28.6425, 77.2197)
CDG = Station("CDG", "Chandigarh", 30.6692, 76.8206)
JP = Station("JP", "Jaipur", 26.9196, 75.7878)


def test_parse_maxspeed_tag():
    assert parse_maxspeed_tag("110") == 110
    assert parse_maxspeed_tag("110 km/h") == 110
    assert parse_maxspeed_tag("100;90") == 100
    assert parse_maxspeed_tag("50 mph") == pytest.approx(80.467)
    assert parse_maxspeed_tag("5") == 20
    assert parse_maxspeed_tag("400") == 200
    assert parse_maxspeed_tag("signals") is None
    assert parse_maxspeed_tag(None) is None


def test_median_speed_uses_upper_middle():
    elements = [{"tags": {"maxspeed": v}} for v in ("100", "130", "110", "120")]
    assert median_speed(elements) == 120
    assert median_speed([{"tags": {}}]) is None


def test_search_radius_bounds():
    assert search_radius_m(1) == 3000
    assert search_radius_m(20) == 10000
    assert search_radius_m(1000) == 15000


def test_query_mentions_radius_and_point():
    query = build_overpass_query(28.5, 77.1, 4000)
    assert "around:4000,28.5,77.1" in query
    assert '"railway"="rail"' in query


# ---------------------------------------------------------------------------
# Client against a mocked Overpass endpoint
# ---------------------------------------------------------------------------

def overpass_transport(calls, fail_first=False):
    def handler(request):
        calls.append(request)
        if fail_first and len(calls) == 1:
            return httpx.Response(503, text="busy")
        return httpx.Response(200, json={"elements": [{"tags": {"maxspeed": "130"}}]})

    return httpx.MockTransport(handler)


def run_enrich(segments, transport, **kwargs):
    async def go():
        async with httpx.AsyncClient(transport=transport) as http:
            client = SpeedLimitClient(url="http://overpass.test/api", client=http, delay_seconds=0, **kwargs)
            return await client.enrich(segments)

    return asyncio.run(go())


def test_failures_are_skipped():
    calls = []
    overrides = run_enrich([(NDLS, CDG), (NDLS, JP)], overpass_transport(calls, fail_first=True), cache_path="")
    assert len(calls) == 2
    assert overrides == {"JP|NDLS": 130.0}


def test_max_fetch_caps_requests():
    calls = []
    overrides = run_enrich([(NDLS, CDG), (NDLS, JP)], overpass_transport(calls), cache_path="", max_fetch=1)
    assert len(calls) == 1
    assert list(overrides) == ["CDG|NDLS"]


def test_cache_is_reused(tmp_path):
    cache = tmp_path / "speeds.json"
    cache.write_text(json.dumps({"CDG|NDLS": 95}))
    calls = []
    overrides = run_enrich([(NDLS, CDG), (NDLS, JP)], overpass_transport(calls), cache_path=str(cache))
    assert len(calls) == 1
    assert overrides == {"CDG|NDLS": 95.0, "JP|NDLS": 130.0}
    assert json.loads(cache.read_text())["JP|NDLS"] == 130.0


@pytest.mark.parametrize("bad_payload", [[], {"elements": "none"}, {"elements": [42, {"tags": "x"}]}])
def test_unexpected_payload_is_skipped(bad_payload):
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(200, json=bad_payload)
        return httpx.Response(200, json={"elements": [{"tags": {"maxspeed": "130"}}]})

    overrides = run_enrich([(NDLS, CDG), (NDLS, JP)], httpx.MockTransport(handler), cache_path="")
    assert len(calls) == 2
    assert overrides == {"JP|NDLS": 130.0}


def test_median_speed_ignores_malformed_elements():
    assert median_speed([42, {"tags": None}, {"tags": {"maxspeed": "110"}}]) == 110
