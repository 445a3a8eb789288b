import asyncio

import httpx
import pytest

from fra_webgis.errors import MalformedPayload, NetworkError, ServerError
from fra_webgis.filters import FilterSnapshot


def _claim(claim_id, fra_type):
    return {
        "type": "Feature",
        "geometry": {"type": "Point", "coordinates": [82.0, 19.0]},
        "properties": {"claim_id": claim_id, "fra_type": fra_type, "state": "Odisha"},
    }


def run(coro):
    return asyncio.run(coro)


def test_fetch_features_encodes_snapshot_and_resolves_ids(upstream, make_client):
    upstream.route("/api/claims", json={"features": [_claim("C-1", "IFR"), _claim("C-2", "CR")]})

    async def scenario():
        async with make_client("fra") as client:
            return await client.fetch_features(FilterSnapshot({"state": "Odisha", "fra_type": "IFR"}))

    features = run(scenario())

    assert [(f.id, f.category) for f in features] == [("C-1", "IFR"), ("C-2", "CR")]
    assert upstream.params("/api/claims") == [{"state": "Odisha", "fra_type": "IFR"}]


def test_missing_category_and_numeric_category(upstream, make_client):
    upstream.route("/api/data", json={"features": [
        {"type": "Feature", "geometry": None, "properties": {"class_id": 7}},
        {"type": "Feature", "geometry": None, "properties": {"class_id": 8, "class": 3}},
        {"type": "Feature", "id": "g-1", "geometry": None, "properties": {"class": "urban"}},
    ]})

    async def scenario():
        async with make_client("india") as client:
            return await client.fetch_features(FilterSnapshot())

    features = run(scenario())

    assert [(f.id, f.category) for f in features] == [("7", None), ("8", "3"), ("g-1", "urban")]


def test_payload_error_field_raises_server_error(upstream, make_client):
    upstream.route("/api/data", json={"error": "no data"})

    async def scenario():
        async with make_client("india") as client:
            await client.fetch_features(FilterSnapshot())

    with pytest.raises(ServerError, match="no data"):
        run(scenario())


def test_error_status_raises_server_error(upstream, make_client):
    upstream.route("/api/data", json={"detail": "boom"}, status=500)

    async def scenario():
        async with make_client("india") as client:
            await client.fetch_features(FilterSnapshot())

    with pytest.raises(ServerError) as excinfo:
        run(scenario())
    assert excinfo.value.status_code == 500
    assert upstream.calls("/api/data") == 1


@pytest.mark.parametrize("payload", [
    {"type": "FeatureCollection"},
    {"features": "nope"},
    [1, 2, 3],
    {"features": [{"properties": {"class": "urban"}}]},
    {"features": ["not a feature"]},
])
def test_malformed_payloads(upstream, make_client, payload):
    upstream.route("/api/data", json=payload)

    async def scenario():
        async with make_client("india") as client:
            await client.fetch_features(FilterSnapshot())

    with pytest.raises(MalformedPayload):
        run(scenario())


def test_non_json_body_is_malformed(upstream, make_client):
    upstream.route("/api/data", lambda request: httpx.Response(200, text="<html>"))

    async def scenario():
        async with make_client("india") as client:
            await client.fetch_features(FilterSnapshot())

    with pytest.raises(MalformedPayload):
        run(scenario())


def test_transport_failure_is_retried_then_raised(upstream, make_client):
    def broken(request):
        raise httpx.ConnectError("connection refused", request=request)

    upstream.route("/api/data", broken)

    async def scenario():
        async with make_client("india", retry_attempts=3) as client:
            await client.fetch_features(FilterSnapshot())

    with pytest.raises(NetworkError):
        run(scenario())
    assert upstream.calls("/api/data") == 3


def test_transport_failure_recovers_on_retry(upstream, make_client):
    attempts = []

    def flaky(request):
        attempts.append(request)
        if len(attempts) == 1:
            raise httpx.ReadTimeout("slow", request=request)
        return httpx.Response(200, json={"features": []})

    upstream.route("/api/data", flaky)

    async def scenario():
        async with make_client("india", retry_attempts=2) as client:
            return await client.fetch_features(FilterSnapshot())

    assert run(scenario()) == []
    assert len(attempts) == 2


def test_filter_options_are_cached(upstream, make_client):
    upstream.route("/api/filter-options", json={
        "states": ["Odisha", "Telangana"],
        "districts": ["Koraput", None, ""],
        "note": "ignored",
    })

    async def scenario():
        async with make_client("fra") as client:
            first = await client.filter_options()
            second = await client.filter_options()
            return first, second

    first, second = run(scenario())

    assert first == {"states": ["Odisha", "Telangana"], "districts": ["Koraput"]}
    assert second == first
    assert upstream.calls("/api/filter-options") == 1


def test_layer_hints(upstream, make_client):
    upstream.route("/api/layers", json={
        "water": {"name": "Water", "visible": True},
        "urban": {"name": "Urban", "visible": False},
    })

    async def scenario():
        async with make_client("india") as client:
            return await client.layer_hints()

    hints = run(scenario())

    assert hints["urban"].visible is False
    assert hints["water"].name == "Water"


def test_detail_quotes_the_id(upstream, make_client):
    upstream.route("/api/claim/OD 1", json={"claim_id": "OD 1", "fra_type": "IFR"})

    async def scenario():
        async with make_client("fra") as client:
            return await client.detail("OD 1")

    record = run(scenario())

    assert record.entity_id == "OD 1"
    assert record.data["fra_type"] == "IFR"


def test_unknown_panel(make_client):
    async def scenario():
        async with make_client("fra") as client:
            await client.panel("weather")

    with pytest.raises(ValueError):
        run(scenario())


def test_status_endpoint(upstream, make_client):
    upstream.route("/status", json={"data_available": True})

    async def scenario():
        async with make_client("landuse") as client:
            return await client.status()

    assert run(scenario()).data_available is True
