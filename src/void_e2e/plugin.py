"""pytest plugin wiring the e2e harness into a test run.

Load it from the top-level conftest.py:

    pytest_plugins = ["void_e2e.plugin"]

Launch parameters (option beats environment variable):
    --e2e-env / E2E_ENVIRONMENT            native | docker | ci (default native)
    --e2e-use-mocks / E2E_USE_MOCKS        mock every service
    --e2e-strict-env / E2E_STRICT_ENVIRONMENT
                                           unknown environment names abort the run
    --e2e-artifacts / E2E_ARTIFACT_DIR     failure screenshot directory

Scenarios request the `world` fixture and run on the session event loop:

    pytestmark = pytest.mark.asyncio(loop_scope="session")

    @pytest.mark.requires_lmstudio
    async def test_chat_replies(world):
        ...
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple

import pytest
import pytest_asyncio

from void_e2e.environments import (
    EnvironmentConfig,
    get_environment_name,
    resolve,
    resolve_strict,
)
from void_e2e.errors import (
    MockStartupFailure,
    ResourceAcquisitionFailure,
    ServiceUnavailable,
    UnknownEnvironment,
)
from void_e2e.guards import GUARDS
from void_e2e.hooks import DEFAULT_ARTIFACT_DIR, Orchestrator

logger = logging.getLogger(__name__)

TRUE_VALUES = {"1", "true", "yes", "on"}

_CALL_REPORT = pytest.StashKey[pytest.TestReport]()
_GUARD_SKIP = pytest.StashKey[ServiceUnavailable]()
_SCREENSHOT = pytest.StashKey[Path]()
_COVERAGE_GAPS = pytest.StashKey[List[Tuple[str, ServiceUnavailable]]]()


@dataclass(frozen=True)
class LaunchParameters:
    environment: str
    use_mocks: bool
    strict: bool
    artifact_dir: Path


def _env_flag(name: str) -> bool:
    return os.getenv(name, "").strip().lower() in TRUE_VALUES


def pytest_addoption(parser):
    group = parser.getgroup("void-e2e", "environment-aware e2e harness")
    group.addoption(
        "--e2e-env", dest="e2e_env", default=None,
        help="Run target: native, docker or ci (default: $E2E_ENVIRONMENT or native)",
    )
    group.addoption(
        "--e2e-use-mocks", dest="e2e_use_mocks", action="store_true", default=False,
        help="Mock every external service regardless of the environment",
    )
    group.addoption(
        "--e2e-strict-env", dest="e2e_strict_env", action="store_true", default=False,
        help="Abort on an unknown environment name instead of falling back to native",
    )
    group.addoption(
        "--e2e-artifacts", dest="e2e_artifacts", default=None,
        help=f"Directory for failure screenshots (default: {DEFAULT_ARTIFACT_DIR})",
    )


def pytest_configure(config):
    for kind, spec in GUARDS.items():
        subject = spec.service or "void-server running in docker"
        config.addinivalue_line(
            "markers", f"{kind.marker}: skip unless {subject} is available or mocked"
        )
    config.stash[_COVERAGE_GAPS] = []


def launch_parameters(config) -> LaunchParameters:
    artifacts = (
        config.getoption("e2e_artifacts")
        or os.getenv("E2E_ARTIFACT_DIR")
        or DEFAULT_ARTIFACT_DIR
    )
    return LaunchParameters(
        environment=config.getoption("e2e_env") or get_environment_name(),
        use_mocks=config.getoption("e2e_use_mocks") or _env_flag("E2E_USE_MOCKS"),
        strict=config.getoption("e2e_strict_env") or _env_flag("E2E_STRICT_ENVIRONMENT"),
        artifact_dir=Path(artifacts),
    )


def scenario_tags(item: pytest.Item) -> List[str]:
    """Marker names on the item in declaration order, each once.

    The item's own markers come first, top decorator first (pytest stores
    stacked decorators bottom-up), followed by class and module markers,
    closest first.
    """
    own = list(reversed(item.own_markers))
    inherited = [m for node in reversed(item.listchain()[:-1]) for m in node.own_markers]
    tags: List[str] = []
    for marker in own + inherited:
        if marker.name not in tags:
            tags.append(marker.name)
    return tags


# ---- fixtures ----------------------------------------------------------------------

@pytest.fixture(scope="session")
def e2e_launch(pytestconfig) -> LaunchParameters:
    return launch_parameters(pytestconfig)


@pytest.fixture(scope="session")
def e2e_config(e2e_launch) -> EnvironmentConfig:
    """The active environment, resolved once per run."""
    try:
        if e2e_launch.strict:
            return resolve_strict(e2e_launch.environment)
        return resolve(e2e_launch.environment)
    except UnknownEnvironment as exc:
        pytest.exit(str(exc), returncode=pytest.ExitCode.USAGE_ERROR)


@pytest.fixture(scope="session")
def e2e_browser_launcher():
    """Override to replace the chromium launcher (None = default)."""
    return None


@pytest.fixture(scope="session")
def e2e_http_transport():
    """Override to route void-server HTTP calls through a custom transport."""
    return None


@pytest_asyncio.fixture(scope="session", loop_scope="session")
async def e2e_suite(e2e_config, e2e_launch, e2e_browser_launcher, e2e_http_transport):
    """Suite lifecycle: shared browser, mocks, void-server reconfiguration."""
    orchestrator = Orchestrator(
        e2e_config,
        use_mocks=e2e_launch.use_mocks,
        launcher=e2e_browser_launcher,
        transport=e2e_http_transport,
        artifact_dir=e2e_launch.artifact_dir,
    )
    try:
        await orchestrator.start_suite()
    except (MockStartupFailure, ResourceAcquisitionFailure) as exc:
        logger.error("Suite start failed: %s", exc)
        pytest.exit(f"Aborting e2e suite: {exc}", returncode=pytest.ExitCode.INTERNAL_ERROR)

    yield orchestrator

    await orchestrator.stop_suite()


@pytest.fixture(scope="session")
def e2e_mocks(e2e_suite):
    """Started mock adapters by service name."""
    return e2e_suite.suite.adapters


@pytest_asyncio.fixture(loop_scope="session")
async def world(request, e2e_suite):
    """Fresh ScenarioWorld for one scenario, after its tag guards passed."""
    item = request.node
    orchestrator: Orchestrator = e2e_suite
    scenario = await orchestrator.begin_scenario(item.nodeid)

    try:
        await orchestrator.run_guards(scenario, scenario_tags(item))
    except ServiceUnavailable as exc:
        await orchestrator.end_scenario(scenario)
        item.stash[_GUARD_SKIP] = exc
        pytest.skip(str(exc))
    except BaseException:
        await orchestrator.end_scenario(scenario)
        raise

    yield scenario

    call_report: Optional[pytest.TestReport] = item.stash.get(_CALL_REPORT, None)
    failed = call_report is not None and call_report.failed
    screenshot = await orchestrator.end_scenario(scenario, failed=failed, name=item.nodeid)
    if screenshot is not None:
        item.stash[_SCREENSHOT] = screenshot


@pytest.fixture
def isolated_mocks(e2e_suite):
    """Reset mock adapter state around a scenario that needs a clean slate."""
    e2e_suite.reset_mocks()
    yield e2e_suite.suite.adapters
    e2e_suite.reset_mocks()


# ---- reporting --------------------------------------------------------------------

@pytest.hookimpl(hookwrapper=True)
def pytest_runtest_makereport(item, call):
    outcome = yield
    report = outcome.get_result()
    if report.when == "call":
        item.stash[_CALL_REPORT] = report
    elif report.when == "teardown":
        # The screenshot is taken during fixture teardown, after the call report
        screenshot = item.stash.get(_SCREENSHOT, None)
        if screenshot is not None:
            report.user_properties.append(("screenshot", str(screenshot)))
    elif report.when == "setup" and report.skipped:
        gap = item.stash.get(_GUARD_SKIP, None)
        if gap is not None:
            item.config.stash[_COVERAGE_GAPS].append((item.nodeid, gap))


def pytest_terminal_summary(terminalreporter, exitstatus, config):
    gaps = config.stash.get(_COVERAGE_GAPS, [])
    if not gaps:
        return
    terminalreporter.section("environment coverage gaps")
    terminalreporter.write_line(
        f"{len(gaps)} scenario(s) skipped because a required service was unavailable "
        f"(not counted as failures):"
    )
    for nodeid, gap in gaps:
        terminalreporter.write_line(f"  SKIPPED [{gap.tag}] {nodeid}: {gap.reason}")
