"""
Tag guards: skip scenarios whose required service is not available.

Each recognized tag maps to one GuardSpec: the void-server endpoint that
reports the service's health and the predicate that reads it. A mocked
service always passes its guard without touching the network.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterable, List, Optional

import httpx

from void_e2e.errors import ServiceUnavailable
from void_e2e.world import ScenarioWorld

logger = logging.getLogger(__name__)


class GuardKind(str, Enum):
    """Tags that gate a scenario on a service."""

    NEO4J = "requires-neo4j"
    LMSTUDIO = "requires-lmstudio"
    IPFS = "requires-ipfs"
    DOCKER = "requires-docker"

    @property
    def marker(self) -> str:
        """pytest marker spelling, e.g. requires_neo4j."""
        return self.value.replace("-", "_")

    @classmethod
    def from_tag(cls, tag: str) -> Optional["GuardKind"]:
        """Map '@requires-neo4j', 'requires-neo4j' or 'requires_neo4j' to a kind."""
        return _TAGS.get(tag.lstrip("@"))


_TAGS = {}
for _kind in GuardKind:
    _TAGS[_kind.value] = _kind
    _TAGS[_kind.marker] = _kind


def _neo4j_connected(status: Any) -> bool:
    return bool(isinstance(status, dict) and (status.get("neo4j") or {}).get("connected"))


def _ipfs_online(status: Any) -> bool:
    # daemonOnline is current; online is what older servers report
    return bool(isinstance(status, dict) and (status.get("daemonOnline") or status.get("online")))


def _is_docker(env: Any) -> bool:
    return bool(isinstance(env, dict) and env.get("isDocker"))


@dataclass(frozen=True)
class GuardSpec:
    """Health endpoint and predicate for one guard kind.

    `is_available` receives the decoded JSON body, or None when json_body is
    False (status code alone decides).
    """

    kind: GuardKind
    service: Optional[str]
    method: str
    health_endpoint: str
    is_available: Callable[[Any], bool]
    json_body: bool = True


GUARDS = {
    GuardKind.NEO4J: GuardSpec(
        GuardKind.NEO4J, "neo4j", "GET", "/api/memories/status", _neo4j_connected,
    ),
    GuardKind.LMSTUDIO: GuardSpec(
        GuardKind.LMSTUDIO, "lmstudio", "POST", "/api/ai-providers/lmstudio/test",
        lambda _: True, json_body=False,
    ),
    GuardKind.IPFS: GuardSpec(
        GuardKind.IPFS, "ipfs", "GET", "/api/ipfs/status", _ipfs_online,
    ),
    GuardKind.DOCKER: GuardSpec(
        GuardKind.DOCKER, None, "GET", "/api/version/environment", _is_docker,
    ),
}


def guards_for_tags(tags: Iterable[str]) -> List[GuardKind]:
    """Recognized guard kinds in tag order, each once. Other tags are ignored."""
    kinds: List[GuardKind] = []
    for tag in tags:
        kind = GuardKind.from_tag(tag)
        if kind is not None and kind not in kinds:
            kinds.append(kind)
    return kinds


async def check_health(spec: GuardSpec, world: ScenarioWorld) -> Optional[str]:
    """Query the health endpoint. Returns None when available, else the reason."""
    timeout = world.config.timeouts.api_seconds
    try:
        response = await world.http.request(spec.method, spec.health_endpoint, timeout=timeout)
    except httpx.TimeoutException:
        return f"{spec.health_endpoint} timed out after {timeout}s"
    except httpx.HTTPError as exc:
        return f"{spec.health_endpoint} unreachable ({type(exc).__name__}: {exc})"

    if not response.is_success:
        return f"{spec.health_endpoint} returned HTTP {response.status_code}"

    body = None
    if spec.json_body:
        try:
            body = response.json()
        except ValueError:
            return f"{spec.health_endpoint} returned a non-JSON body"

    if not spec.is_available(body):
        subject = spec.service or "environment"
        return f"{subject} reported unavailable by {spec.health_endpoint}"
    return None


async def check_guard(kind: GuardKind, world: ScenarioWorld) -> None:
    """Run one guard.

    Raises:
        ServiceUnavailable: If the service is live-configured and not healthy
    """
    spec = GUARDS[kind]
    if spec.service is not None and world.should_mock(spec.service):
        logger.debug("%s: %s is mocked, guard passes", kind.value, spec.service)
        return

    reason = await check_health(spec, world)
    if reason is not None:
        logger.info("Skipping %s: %s", world.name or "scenario", reason)
        raise ServiceUnavailable(kind.value, reason)
