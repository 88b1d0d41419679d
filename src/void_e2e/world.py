"""Per-scenario execution context.

Every scenario gets its own World: a fresh browsing context and page on the
shared browser, an HTTP client for the void-server API, and an empty
test_data bag. Nothing in a World outlives its scenario.

Usage:
    world = await ScenarioWorld.construct(config, browser)
    try:
        await world.page.goto("/memories")
        status = await world.get("/api/memories/status")
    finally:
        await world.destroy()
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Set

import httpx
from playwright.async_api import Browser, BrowserContext, Page

from void_e2e.environments import EnvironmentConfig
from void_e2e.errors import ResourceAcquisitionFailure, TeardownFailure

logger = logging.getLogger(__name__)


class ScenarioWorld:
    """Page, HTTP client and scratch data owned by one scenario."""

    def __init__(
        self,
        config: EnvironmentConfig,
        context: BrowserContext,
        page: Page,
        http: httpx.AsyncClient,
        use_mocks: bool = False,
        name: Optional[str] = None,
    ) -> None:
        self.config = config
        self.context = context
        self.page = page
        self.http = http
        self.use_mocks = use_mocks
        self.name = name
        self.test_data: Dict[str, Any] = {}
        self.mock_overrides: Set[str] = set()
        self.closed = False

    def __repr__(self) -> str:
        return f"ScenarioWorld(name={self.name}, env={self.config.name}, closed={self.closed})"

    @classmethod
    async def construct(
        cls,
        config: EnvironmentConfig,
        browser: Browser,
        use_mocks: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        name: Optional[str] = None,
    ) -> "ScenarioWorld":
        """Acquire a browsing context, a page and an HTTP client.

        Args:
            config: Active environment config
            browser: Shared browser engine (only used to spawn the context)
            use_mocks: Force should_mock() true for every service
            transport: Optional httpx transport (tests inject a MockTransport)
            name: Scenario name, for logs

        Raises:
            ResourceAcquisitionFailure: If any resource cannot be acquired.
                Whatever was acquired before the failure is released.
        """
        context: Optional[BrowserContext] = None
        page: Optional[Page] = None
        try:
            context = await browser.new_context(base_url=config.app_url)
            context.set_default_timeout(config.timeouts.element)
            context.set_default_navigation_timeout(config.timeouts.page)
            page = await context.new_page()
            http = httpx.AsyncClient(
                base_url=config.app_url,
                timeout=config.timeouts.api_seconds,
                transport=transport,
            )
        except Exception as exc:
            for resource in (page, context):
                if resource is None:
                    continue
                try:
                    await resource.close()
                except Exception as close_exc:
                    logger.warning("Error releasing partial world: %s", close_exc)
            raise ResourceAcquisitionFailure(f"Could not build scenario world: {exc}") from exc

        world = cls(config, context, page, http, use_mocks=use_mocks, name=name)
        logger.debug("Created %r", world)
        return world

    async def destroy(self) -> None:
        """Release page, context and HTTP client, each regardless of the others.

        Raises:
            TeardownFailure: After all releases were attempted, if any failed
        """
        if self.closed:
            return
        self.closed = True

        errors: List[BaseException] = []
        for label, release in (
            ("page", self.page.close),
            ("context", self.context.close),
            ("http", self.http.aclose),
        ):
            try:
                await release()
            except Exception as exc:
                logger.warning("Error closing %s for %r: %s", label, self, exc)
                errors.append(exc)

        if errors:
            raise TeardownFailure(errors, scope=self.name or "scenario")
        logger.debug("Destroyed %r", self)

    # ---- mock decisions ----------------------------------------------------------
    def should_mock(self, service: str) -> bool:
        """Whether `service` is to be treated as mocked for this scenario."""
        descriptor = self.config.service(service)
        return descriptor.mock or self.use_mocks or service in self.mock_overrides

    def force_mock(self, service: str) -> None:
        self.config.service(service)  # validates the name
        self.mock_overrides.add(service)

    def service_url(self, service: str) -> str:
        return self.config.service_url(service)

    # ---- void-server API -----------------------------------------------------------
    async def request(self, method: str, endpoint: str, body: Any = None) -> httpx.Response:
        """Send a request to {app_url}{endpoint}. Timeouts propagate."""
        return await self.http.request(method, endpoint, json=body)

    @staticmethod
    def _decode(response: httpx.Response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return None

    async def get(self, endpoint: str) -> Any:
        return self._decode(await self.request("GET", endpoint))

    async def post(self, endpoint: str, body: Any = None) -> Any:
        return self._decode(await self.request("POST", endpoint, body))

    async def put(self, endpoint: str, body: Any = None) -> Any:
        return self._decode(await self.request("PUT", endpoint, body))

    async def delete(self, endpoint: str, body: Any = None) -> Any:
        return self._decode(await self.request("DELETE", endpoint, body))

    # ---- artifacts -------------------------------------------------------------------
    async def screenshot(self) -> bytes:
        return await self.page.screenshot(full_page=True)
