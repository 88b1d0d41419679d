"""Shared fixtures for harness tests.

The Playwright browser is replaced by small fakes that record what was opened
and closed; void-server is replaced by httpx.MockTransport handlers.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

import httpx
import pytest

from void_e2e.mocks import reset_adapters

PNG_BYTES = b"\x89PNG\r\n\x1a\nfake"


class FakePage:
    def __init__(self, fail_close: bool = False, fail_screenshot: bool = False):
        self.closed = False
        self.fail_close = fail_close
        self.fail_screenshot = fail_screenshot
        self.screenshots = 0

    async def close(self) -> None:
        if self.fail_close:
            raise RuntimeError("page close failed")
        self.closed = True

    async def screenshot(self, full_page: bool = False) -> bytes:
        if self.fail_screenshot:
            raise RuntimeError("screenshot failed")
        self.screenshots += 1
        return PNG_BYTES


class FakeContext:
    def __init__(self, browser: "FakeBrowser", base_url: Optional[str]):
        self.browser = browser
        self.base_url = base_url
        self.pages: List[FakePage] = []
        self.closed = False
        self.default_timeout: Optional[float] = None
        self.navigation_timeout: Optional[float] = None

    def set_default_timeout(self, timeout: float) -> None:
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout: float) -> None:
        self.navigation_timeout = timeout

    async def new_page(self) -> FakePage:
        if self.browser.fail_new_page:
            raise RuntimeError("cannot open page")
        page = FakePage(
            fail_close=self.browser.fail_page_close,
            fail_screenshot=self.browser.fail_screenshot,
        )
        self.pages.append(page)
        return page

    async def close(self) -> None:
        self.closed = True


class FakeBrowser:
    def __init__(self) -> None:
        self.contexts: List[FakeContext] = []
        self.closed = False
        self.fail_new_context = False
        self.fail_new_page = False
        self.fail_page_close = False
        self.fail_screenshot = False

    async def new_context(self, base_url: Optional[str] = None, **kwargs: Any) -> FakeContext:
        if self.fail_new_context:
            raise RuntimeError("browser has been closed")
        context = FakeContext(self, base_url)
        self.contexts.append(context)
        return context

    async def close(self) -> None:
        self.closed = True


class VoidServerStub:
    """Records requests and answers the void-server endpoints the harness uses."""

    def __init__(self) -> None:
        self.requests: List[Any] = []
        self.lmstudio_endpoint: Optional[str] = "http://localhost:1234/v1"
        self.neo4j_connected = True
        self.ipfs_status: Dict[str, Any] = {"daemonOnline": True}
        self.is_docker = False
        self.lmstudio_test_status = 200

    def handler(self, request):
        self.requests.append(request)
        path = request.url.path
        if path == "/api/ai-providers" and request.method == "GET":
            return httpx.Response(
                200, json={"providers": {"lmstudio": {"endpoint": self.lmstudio_endpoint}}}
            )
        if path == "/api/ai-providers/lmstudio" and request.method == "PUT":
            body = json.loads(request.content)
            self.lmstudio_endpoint = body["endpoint"]
            return httpx.Response(200, json={"success": True})
        if path == "/api/ai-providers/lmstudio/test":
            return httpx.Response(self.lmstudio_test_status, json={})
        if path == "/api/memories/status":
            return httpx.Response(200, json={"neo4j": {"connected": self.neo4j_connected}})
        if path == "/api/ipfs/status":
            return httpx.Response(200, json=self.ipfs_status)
        if path == "/api/version/environment":
            return httpx.Response(200, json={"isDocker": self.is_docker})
        return httpx.Response(404, json={"error": "Not found"})

    def paths(self) -> List[str]:
        return [r.url.path for r in self.requests]


@pytest.fixture(autouse=True)
def fresh_mock_adapters(monkeypatch):
    """Ephemeral mock ports and no adapter singletons leaking between tests."""
    monkeypatch.setenv("E2E_MOCK_LMSTUDIO_PORT", "0")
    monkeypatch.delenv("E2E_MOCK_LMSTUDIO_HOST", raising=False)
    monkeypatch.delenv("E2E_MOCK_LMSTUDIO_BIND", raising=False)
    reset_adapters()
    yield
    reset_adapters()


@pytest.fixture
def fake_browser() -> FakeBrowser:
    return FakeBrowser()


@pytest.fixture
def launcher(fake_browser):
    async def launch():
        return None, fake_browser
    return launch


@pytest.fixture
def void_server() -> VoidServerStub:
    return VoidServerStub()


@pytest.fixture
def transport(void_server):
    return httpx.MockTransport(void_server.handler)
