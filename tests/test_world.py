"""Tests for ScenarioWorld construction, teardown and helpers."""
from __future__ import annotations

import json

import httpx
import pytest

from void_e2e.environments import CI, NATIVE
from void_e2e.errors import ResourceAcquisitionFailure, TeardownFailure
from void_e2e.world import ScenarioWorld

pytestmark = pytest.mark.asyncio


async def test_construct_applies_environment(fake_browser, transport):
    world = await ScenarioWorld.construct(CI, fake_browser, transport=transport, name="s1")

    context = fake_browser.contexts[0]
    assert world.context is context
    assert context.base_url == CI.app_url
    assert context.default_timeout == CI.timeouts.element
    assert context.navigation_timeout == CI.timeouts.page
    assert world.page is context.pages[0]
    assert str(world.http.base_url).rstrip("/") == CI.app_url
    assert world.test_data == {}

    await world.destroy()


async def test_destroy_releases_everything(fake_browser, transport):
    world = await ScenarioWorld.construct(NATIVE, fake_browser, transport=transport)

    await world.destroy()

    assert world.closed
    assert world.page.closed
    assert world.context.closed
    assert world.http.is_closed


async def test_destroy_is_idempotent(fake_browser, transport):
    world = await ScenarioWorld.construct(NATIVE, fake_browser, transport=transport)

    await world.destroy()
    await world.destroy()


async def test_destroy_continues_after_failure(fake_browser, transport):
    fake_browser.fail_page_close = True
    world = await ScenarioWorld.construct(NATIVE, fake_browser, transport=transport, name="broken")

    with pytest.raises(TeardownFailure) as excinfo:
        await world.destroy()

    assert len(excinfo.value.errors) == 1
    assert excinfo.value.scope == "broken"
    assert world.context.closed
    assert world.http.is_closed


async def test_construct_failure_on_context(fake_browser):
    fake_browser.fail_new_context = True

    with pytest.raises(ResourceAcquisitionFailure):
        await ScenarioWorld.construct(NATIVE, fake_browser)

    assert fake_browser.contexts == []


async def test_construct_failure_releases_partial_context(fake_browser):
    fake_browser.fail_new_page = True

    with pytest.raises(ResourceAcquisitionFailure):
        await ScenarioWorld.construct(NATIVE, fake_browser)

    assert fake_browser.contexts[0].closed


async def test_worlds_do_not_share_state(fake_browser, transport):
    first = await ScenarioWorld.construct(NATIVE, fake_browser, transport=transport)
    first.test_data["memory_id"] = "m1"
    first.force_mock("neo4j")
    await first.destroy()

    second = await ScenarioWorld.construct(NATIVE, fake_browser, transport=transport)
    assert second.test_data == {}
    assert not second.should_mock("neo4j")
    assert second.context is not first.context
    await second.destroy()


async def test_should_mock(fake_browser, transport):
    native = await ScenarioWorld.construct(NATIVE, fake_browser, transport=transport)
    ci = await ScenarioWorld.construct(CI, fake_browser, transport=transport)
    forced = await ScenarioWorld.construct(NATIVE, fake_browser, use_mocks=True, transport=transport)

    try:
        assert not native.should_mock("lmstudio")
        assert ci.should_mock("lmstudio")
        assert not ci.should_mock("neo4j")
        assert all(forced.should_mock(s) for s in ("lmstudio", "neo4j", "ipfs"))

        native.force_mock("ipfs")
        assert native.should_mock("ipfs")

        with pytest.raises(KeyError):
            native.should_mock("redis")
        with pytest.raises(KeyError):
            native.force_mock("redis")
    finally:
        for world in (native, ci, forced):
            await world.destroy()


async def test_service_url(fake_browser, transport):
    world = await ScenarioWorld.construct(CI, fake_browser, transport=transport)
    assert world.service_url("neo4j") == "bolt://localhost:4422"
    await world.destroy()


async def test_http_helpers(fake_browser):
    seen = []

    def handler(request):
        seen.append((request.method, request.url.path, request.content))
        if request.url.path == "/api/empty":
            return httpx.Response(204)
        if request.url.path == "/api/text":
            return httpx.Response(200, text="plain")
        return httpx.Response(200, json={"method": request.method})

    world = await ScenarioWorld.construct(
        NATIVE, fake_browser, transport=httpx.MockTransport(handler)
    )
    try:
        assert await world.get("/api/things") == {"method": "GET"}
        assert await world.post("/api/things", {"a": 1}) == {"method": "POST"}
        assert await world.put("/api/things/1", {"a": 2}) == {"method": "PUT"}
        assert await world.delete("/api/things/1") == {"method": "DELETE"}
        assert await world.get("/api/empty") is None
        assert await world.get("/api/text") is None

        response = await world.request("POST", "/api/raw", {"x": 1})
        assert response.status_code == 200
    finally:
        await world.destroy()

    assert [(method, path) for method, path, _ in seen[:4]] == [
        ("GET", "/api/things"),
        ("POST", "/api/things"),
        ("PUT", "/api/things/1"),
        ("DELETE", "/api/things/1"),
    ]
    assert json.loads(seen[1][2]) == {"a": 1}


async def test_request_timeout_propagates(fake_browser):
    def handler(request):
        raise httpx.ReadTimeout("slow", request=request)

    world = await ScenarioWorld.construct(
        NATIVE, fake_browser, transport=httpx.MockTransport(handler)
    )
    try:
        with pytest.raises(httpx.TimeoutException):
            await world.get("/api/slow")
    finally:
        await world.destroy()


async def test_screenshot(fake_browser, transport):
    world = await ScenarioWorld.construct(NATIVE, fake_browser, transport=transport)
    assert (await world.screenshot()).startswith(b"\x89PNG")
    await world.destroy()
