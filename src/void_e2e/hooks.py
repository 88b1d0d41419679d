"""
Suite and scenario lifecycle for e2e runs.

The Orchestrator owns a SuiteContext built at suite start and handed to every
later hook:

    orchestrator = Orchestrator(resolve("ci"))
    await orchestrator.start_suite()          # browser, mocks, void-server config
    world = await orchestrator.begin_scenario("chat streams a reply")
    await orchestrator.run_guards(world, ["requires-lmstudio"])
    ...                                       # steps
    await orchestrator.end_scenario(world, failed=False)
    await orchestrator.stop_suite()           # mocks, restore config, browser

Suite phases run IDLE -> STARTING -> READY -> STOPPING -> IDLE; scenarios run
STARTING -> RUNNING -> ENDING, one at a time.
"""

import asyncio
import logging
import os
import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

import httpx
from playwright.async_api import Browser, Playwright, async_playwright

from void_e2e.environments import EnvironmentConfig
from void_e2e.errors import (
    HarnessError,
    MockStartupFailure,
    ResourceAcquisitionFailure,
    TeardownFailure,
)
from void_e2e.guards import check_guard, guards_for_tags
from void_e2e.mocks import MockAdapter, get_adapter, has_adapter
from void_e2e.mocks.lmstudio import MockLmStudioServer, advertised_host
from void_e2e.world import ScenarioWorld

logger = logging.getLogger(__name__)

PROVIDERS_ENDPOINT = "/api/ai-providers"
LMSTUDIO_PROVIDER_ENDPOINT = "/api/ai-providers/lmstudio"
DEFAULT_ARTIFACT_DIR = "test-results/screenshots"

BrowserLauncher = Callable[[], Awaitable[Tuple[Optional[Playwright], Browser]]]


class SuitePhase(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    READY = "ready"
    STOPPING = "stopping"


class ScenarioPhase(str, Enum):
    STARTING = "starting"
    RUNNING = "running"
    ENDING = "ending"


def headless_from_env() -> bool:
    return os.getenv("PLAYWRIGHT_HEADLESS", "true").lower() in {"true", "1"}


async def launch_chromium(headless: Optional[bool] = None) -> Tuple[Playwright, Browser]:
    """Start Playwright and launch the shared chromium engine."""
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(
            headless=headless_from_env() if headless is None else headless,
        )
    except Exception:
        await playwright.stop()
        raise
    return playwright, browser


@dataclass
class SuiteContext:
    """State shared by every hook of one suite run."""

    config: EnvironmentConfig
    use_mocks: bool = False
    artifact_dir: Path = Path(DEFAULT_ARTIFACT_DIR)
    phase: SuitePhase = SuitePhase.IDLE
    scenario_phase: Optional[ScenarioPhase] = None
    playwright: Optional[Playwright] = None
    browser: Optional[Browser] = None
    adapters: Dict[str, MockAdapter] = field(default_factory=dict)
    admin: Optional[httpx.AsyncClient] = None
    # void-server's LM Studio endpoint before we pointed it at the mock
    endpoint_snapshot: Optional[str] = None
    endpoint_overridden: bool = False


class Orchestrator:
    """Binds browser, mock adapter and World lifecycles to suite/scenario hooks."""

    def __init__(
        self,
        config: EnvironmentConfig,
        use_mocks: bool = False,
        launcher: Optional[BrowserLauncher] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        artifact_dir: Optional[Path] = None,
    ):
        """
        Args:
            config: Active environment config
            use_mocks: Treat every service as mocked
            launcher: Coroutine returning (playwright, browser); defaults to chromium
            transport: httpx transport for void-server calls (tests inject one)
            artifact_dir: Where failure screenshots are written
        """
        self.suite = SuiteContext(
            config=config,
            use_mocks=use_mocks,
            artifact_dir=Path(artifact_dir or DEFAULT_ARTIFACT_DIR),
        )
        self.launcher = launcher or launch_chromium
        self.transport = transport

    # ---- state machine -------------------------------------------------------------
    def _transition(self, expected: SuitePhase, new: SuitePhase) -> None:
        if self.suite.phase != expected:
            raise HarnessError(
                f"Suite cannot move to {new.value} from {self.suite.phase.value} "
                f"(expected {expected.value})"
            )
        logger.debug("Suite %s -> %s", self.suite.phase.value, new.value)
        self.suite.phase = new

    def _scenario_transition(self, expected: Optional[ScenarioPhase],
                             new: Optional[ScenarioPhase]) -> None:
        if self.suite.scenario_phase != expected:
            current = self.suite.scenario_phase.value if self.suite.scenario_phase else "none"
            raise HarnessError(
                f"Scenario cannot move to {new.value if new else 'none'} from {current}"
            )
        self.suite.scenario_phase = new

    def mocked_services(self) -> List[str]:
        """Services in the active config that get a mock adapter."""
        return [
            name for name, svc in self.suite.config.services.items()
            if (svc.mock or self.suite.use_mocks) and has_adapter(name)
        ]

    # ---- suite ----------------------------------------------------------------------
    async def start_suite(self) -> SuiteContext:
        """Launch the browser, start mocks, point void-server at them.

        Raises:
            ResourceAcquisitionFailure: Browser engine could not be launched
            MockStartupFailure: A mock adapter failed; nothing may run
        """
        self._transition(SuitePhase.IDLE, SuitePhase.STARTING)
        logger.info(
            "Starting suite (environment=%s, app=%s, use_mocks=%s)",
            self.suite.config.name, self.suite.config.app_url, self.suite.use_mocks,
        )
        try:
            await self._launch_browser()
            await self._start_mocks()
            await self._point_app_at_mocks()
            await self._confirm_mocks()
        except BaseException:
            await self._release_suite()
            self.suite.phase = SuitePhase.IDLE
            raise

        self._transition(SuitePhase.STARTING, SuitePhase.READY)
        return self.suite

    async def _launch_browser(self) -> None:
        try:
            self.suite.playwright, self.suite.browser = await self.launcher()
        except Exception as exc:
            raise ResourceAcquisitionFailure(f"Could not launch browser engine: {exc}") from exc
        logger.info("Browser launched")

    async def _start_mocks(self) -> None:
        # Adapters start synchronously (socket bind, readiness polling), off the loop
        for service in self.mocked_services():
            try:
                adapter = get_adapter(service)
                await asyncio.to_thread(adapter.start)
            except MockStartupFailure:
                raise
            except Exception as exc:
                raise MockStartupFailure(service, str(exc)) from exc
            self.suite.adapters[service] = adapter
            logger.info("Mock %s started", service)

    async def _point_app_at_mocks(self) -> None:
        adapter = self.suite.adapters.get("lmstudio")
        if not isinstance(adapter, MockLmStudioServer):
            return

        descriptor = self.suite.config.services.get("lmstudio")
        endpoint = adapter.endpoint_for(advertised_host(descriptor.locator if descriptor else None))

        self.suite.admin = httpx.AsyncClient(
            base_url=self.suite.config.app_url,
            timeout=self.suite.config.timeouts.api_seconds,
            transport=self.transport,
        )
        try:
            response = await self.suite.admin.get(PROVIDERS_ENDPOINT)
            response.raise_for_status()
            providers = response.json().get("providers") or {}
            self.suite.endpoint_snapshot = (providers.get("lmstudio") or {}).get("endpoint")

            response = await self.suite.admin.put(
                LMSTUDIO_PROVIDER_ENDPOINT,
                json={"endpoint": endpoint, "enabled": True},
            )
            response.raise_for_status()
        except (httpx.HTTPError, ValueError, AttributeError) as exc:
            raise MockStartupFailure(
                "lmstudio", f"could not point void-server at {endpoint}: {exc}"
            ) from exc

        self.suite.endpoint_overridden = True
        logger.info(
            "Configured LM Studio to use mock at %s (was %s)",
            endpoint, self.suite.endpoint_snapshot,
        )

    async def _confirm_mocks(self) -> None:
        for service, adapter in self.suite.adapters.items():
            if not await asyncio.to_thread(adapter.is_available):
                raise MockStartupFailure(service, "not accepting connections")

    def reset_mocks(self) -> None:
        """Clear the state of every started mock adapter."""
        for adapter in self.suite.adapters.values():
            adapter.reset()

    async def stop_suite(self) -> None:
        """Stop mocks, restore void-server config, close the browser."""
        if self.suite.phase == SuitePhase.IDLE:
            return
        self._transition(SuitePhase.READY, SuitePhase.STOPPING)
        await self._release_suite()
        self._transition(SuitePhase.STOPPING, SuitePhase.IDLE)
        logger.info("Suite stopped")

    async def _release_suite(self) -> List[BaseException]:
        """Undo start_suite step by step; every step runs even if one fails."""
        errors: List[BaseException] = []

        for service, adapter in list(self.suite.adapters.items()):
            try:
                adapter.stop()
            except Exception as exc:
                logger.warning("Error stopping mock %s: %s", service, exc)
                errors.append(exc)
        self.suite.adapters.clear()

        if self.suite.admin is not None:
            if self.suite.endpoint_overridden:
                try:
                    await self._restore_endpoint()
                except Exception as exc:
                    logger.warning("Could not restore LM Studio endpoint: %s", exc)
                    errors.append(exc)
            try:
                await self.suite.admin.aclose()
            except Exception as exc:
                errors.append(exc)
            self.suite.admin = None

        if self.suite.browser is not None:
            try:
                await self.suite.browser.close()
                logger.info("Browser closed")
            except Exception as exc:
                logger.warning("Error closing browser: %s", exc)
                errors.append(exc)
            self.suite.browser = None

        if self.suite.playwright is not None:
            try:
                await self.suite.playwright.stop()
            except Exception as exc:
                errors.append(exc)
            self.suite.playwright = None

        return errors

    async def _restore_endpoint(self) -> None:
        snapshot = self.suite.endpoint_snapshot
        if snapshot is None:
            logger.warning("No LM Studio endpoint was configured before the run, leaving mock in place")
        else:
            response = await self.suite.admin.put(
                LMSTUDIO_PROVIDER_ENDPOINT, json={"endpoint": snapshot}
            )
            response.raise_for_status()
            logger.info("Restored original LM Studio endpoint %s", snapshot)
        self.suite.endpoint_overridden = False

    # ---- scenarios ------------------------------------------------------------------
    async def begin_scenario(self, name: Optional[str] = None) -> ScenarioWorld:
        """Build a fresh World for the next scenario."""
        if self.suite.phase != SuitePhase.READY:
            raise HarnessError(f"Suite is {self.suite.phase.value}, not ready for scenarios")
        self._scenario_transition(None, ScenarioPhase.STARTING)
        try:
            return await ScenarioWorld.construct(
                self.suite.config,
                self.suite.browser,
                use_mocks=self.suite.use_mocks,
                transport=self.transport,
                name=name,
            )
        except BaseException:
            self.suite.scenario_phase = None
            raise

    async def run_guards(self, world: ScenarioWorld, tags: Iterable[str]) -> None:
        """Run the guard of every recognized tag, in tag order.

        Raises:
            ServiceUnavailable: For the first guard whose service is unavailable
        """
        self._scenario_transition(ScenarioPhase.STARTING, ScenarioPhase.RUNNING)
        for kind in guards_for_tags(tags):
            await check_guard(kind, world)

    async def end_scenario(self, world: ScenarioWorld, failed: bool = False,
                           name: Optional[str] = None) -> Optional[Path]:
        """Capture a screenshot on failure, then release the World.

        Teardown errors are logged and never raised, so they cannot replace
        the scenario's result.

        Returns:
            Path of the failure screenshot, if one was taken
        """
        self.suite.scenario_phase = ScenarioPhase.ENDING
        artifact: Optional[Path] = None
        try:
            if failed:
                artifact = await self._capture_failure(world, name or world.name or "scenario")
        finally:
            try:
                await world.destroy()
            except TeardownFailure as exc:
                logger.warning("%s", exc)
            except Exception as exc:
                logger.warning("Unexpected error releasing %r: %s", world, exc)
            self.suite.scenario_phase = None
        return artifact

    async def _capture_failure(self, world: ScenarioWorld, name: str) -> Optional[Path]:
        try:
            image = await world.screenshot()
        except Exception as exc:
            logger.warning("Could not capture failure screenshot for %s: %s", name, exc)
            return None

        path = self.suite.artifact_dir / f"{_safe_filename(name)}.png"
        try:
            self.suite.artifact_dir.mkdir(parents=True, exist_ok=True)
            path.write_bytes(image)
        except OSError as exc:
            logger.warning("Could not write failure screenshot %s: %s", path, exc)
            return None
        logger.info("Saved failure screenshot: %s", path)
        return path


def _safe_filename(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9_.-]+", "_", name).strip("_")[:120] or "scenario"
