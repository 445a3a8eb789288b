import asyncio

import httpx

from fra_webgis.controller import LoadState
from fra_webgis.session import ViewerSession

BASE_URL = "http://webgis.test"


def run(coro):
    return asyncio.run(coro)


def _land_use(fid, category):
    return {"type": "Feature", "geometry": None, "properties": {"class_id": fid, "class": category}}


def test_bootstrap_loads_options_hints_and_data(upstream):
    upstream.route("/api/filter-options", json={"states": ["Telangana"], "classes": ["water", "urban"]})
    upstream.route("/api/layers", json={
        "water": {"name": "Water", "visible": True},
        "urban": {"name": "Urban", "visible": False},
    })
    upstream.route("/api/data", json={"features": [
        _land_use(1, "water"), _land_use(2, "urban"), _land_use(3, "urban"),
    ]})

    async def scenario():
        session = ViewerSession.create("india", BASE_URL, transport=upstream.transport, retry_wait=0)
        async with session:
            summary = await session.bootstrap()
        return session, summary

    session, summary = run(scenario())

    assert summary.total == 3
    assert session.filter_options["states"] == ["Telangana"]
    assert session.registry.visible_categories() == {"water"}
    views = {view.category: view for view in session.layer_views()}
    assert views["urban"].name == "Urban"
    assert views["urban"].count == 2
    assert views["urban"].visible is False


def test_bootstrap_survives_missing_side_endpoints(upstream):
    upstream.route("/api/data", json={"features": [_land_use(1, "water")]})

    async def scenario():
        session = ViewerSession.create("india", BASE_URL, transport=upstream.transport, retry_wait=0)
        async with session:
            return session, await session.bootstrap()

    session, summary = run(scenario())

    assert summary.total == 1
    assert session.filter_options == {}
    assert session.registry.visible_categories() == {"water"}


def test_bootstrap_stops_when_no_data_available(upstream):
    upstream.route("/status", json={"data_available": False})
    upstream.route("/data", json={"features": [_land_use(1, "water")]})

    async def scenario():
        session = ViewerSession.create("landuse", BASE_URL, transport=upstream.transport, retry_wait=0)
        async with session:
            return session, await session.bootstrap()

    session, summary = run(scenario())

    assert summary is None
    assert upstream.calls("/data") == 0
    assert session.controller.state is LoadState.IDLE
    assert "No classified data available" in session.controller.status.message


def test_panels_pass_through(upstream):
    stats = {"total_features": 10, "class_distribution": {"water": 4, "urban": 6}}
    upstream.route("/api/statistics", json=stats)

    async def scenario():
        session = ViewerSession.create("india", BASE_URL, transport=upstream.transport, retry_wait=0)
        async with session:
            return await session.panel("statistics")

    assert run(scenario()) == stats


def test_bootstrap_overtaken_by_filters_returns_latest_summary(upstream):
    async def scenario():
        gate = asyncio.Event()

        async def data(request):
            if "state" not in request.url.params:
                await gate.wait()
                return httpx.Response(200, json={"features": [_land_use(1, "water"), _land_use(2, "urban")]})
            return httpx.Response(200, json={"features": [_land_use(3, "forest")]})

        upstream.route("/api/data", data)
        session = ViewerSession.create("india", BASE_URL, transport=upstream.transport, retry_wait=0)
        async with session:
            first_load = asyncio.ensure_future(session.bootstrap())
            while upstream.calls("/api/data") == 0:
                await asyncio.sleep(0)
            filtered = await session.controller.apply_filters({"state": "Goa"})
            gate.set()
            return session, filtered, await first_load

    session, filtered, summary = run(scenario())

    assert summary == filtered
    assert summary.filters == {"state": "Goa"}
    assert session.controller.state is LoadState.LOADED
    assert session.registry.categories() == ["forest"]
