"""Environment configuration registry for e2e runs.

Three run targets are declared statically:
- native: void-server started locally (default)
- docker: the docker-compose stack
- ci: the CI stack, inference backend always mocked

Select one with E2E_ENVIRONMENT (or --e2e-env). Configs are frozen: pick a
different environment to get different endpoints or timeouts.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import List, Literal, Mapping, Optional

from void_e2e.errors import UnknownEnvironment

logger = logging.getLogger(__name__)

EnvironmentName = Literal["native", "docker", "ci"]

DEFAULT_ENVIRONMENT: EnvironmentName = "native"


@dataclass(frozen=True)
class Credentials:
    """Login for a service that needs one."""
    user: str
    password: str


@dataclass(frozen=True)
class ServiceDescriptor:
    """How to reach one external service, or that it must be mocked."""
    locator: str
    mock: bool = False
    credentials: Optional[Credentials] = None
    gateway: Optional[str] = None


@dataclass(frozen=True)
class Timeouts:
    """Timeouts in milliseconds."""
    page: int
    api: int
    element: int

    @property
    def api_seconds(self) -> float:
        return self.api / 1000


@dataclass(frozen=True)
class EnvironmentConfig:
    """Resolved endpoints, timeouts and mock flags for one run target."""

    name: str
    app_url: str
    services: Mapping[str, ServiceDescriptor]
    timeouts: Timeouts

    def __post_init__(self) -> None:
        # Freeze the service map as well as the dataclass fields.
        object.__setattr__(self, "services", MappingProxyType(dict(self.services)))

    def service(self, name: str) -> ServiceDescriptor:
        try:
            return self.services[name]
        except KeyError:
            raise KeyError(
                f"Unknown service {name!r} in environment {self.name!r} "
                f"(known: {', '.join(sorted(self.services))})"
            ) from None

    def service_url(self, name: str) -> str:
        return self.service(name).locator

    def mocked_services(self) -> List[str]:
        return [name for name, svc in self.services.items() if svc.mock]


NATIVE = EnvironmentConfig(
    name="native",
    app_url="http://localhost:4401",
    services={
        "neo4j": ServiceDescriptor(
            locator="bolt://localhost:7687",
            credentials=Credentials(user="neo4j", password="voidserver"),
        ),
        "ipfs": ServiceDescriptor(
            locator="http://localhost:5001",
            gateway="http://localhost:8080/ipfs",
        ),
        "lmstudio": ServiceDescriptor(locator="http://localhost:1234/v1"),
    },
    timeouts=Timeouts(page=30000, api=10000, element=5000),
)

DOCKER = EnvironmentConfig(
    name="docker",
    app_url="http://localhost:4420",
    services={
        "neo4j": ServiceDescriptor(
            locator="bolt://localhost:4422",
            credentials=Credentials(user="neo4j", password="testpassword"),
        ),
        "ipfs": ServiceDescriptor(
            locator="http://localhost:4423",
            gateway="http://localhost:4424/ipfs",
        ),
        "lmstudio": ServiceDescriptor(
            locator="http://host.docker.internal:1234/v1", mock=True
        ),
    },
    timeouts=Timeouts(page=45000, api=15000, element=10000),
)

CI = EnvironmentConfig(
    name="ci",
    app_url="http://localhost:4420",
    services={
        "neo4j": ServiceDescriptor(
            locator="bolt://localhost:4422",
            credentials=Credentials(user="neo4j", password="testpassword"),
        ),
        "ipfs": ServiceDescriptor(
            locator="http://localhost:4423",
            gateway="http://localhost:4424/ipfs",
        ),
        "lmstudio": ServiceDescriptor(locator="http://localhost:1234/v1", mock=True),
    },
    timeouts=Timeouts(page=60000, api=20000, element=15000),
)

ENVIRONMENTS: Mapping[str, EnvironmentConfig] = MappingProxyType({
    "native": NATIVE,
    "docker": DOCKER,
    "ci": CI,
})


def available_environments() -> List[str]:
    return list(ENVIRONMENTS)


def _normalize(name: Optional[str]) -> str:
    return (name or "").strip().lower()


def resolve(name: Optional[str]) -> EnvironmentConfig:
    """Look up an environment by name.

    Absent or unrecognized names fall back to the default environment.
    An unrecognized name is logged so the fallback does not go unnoticed.

    Args:
        name: Environment name (native, docker, ci) or None

    Returns:
        The frozen EnvironmentConfig
    """
    key = _normalize(name)
    if not key:
        return ENVIRONMENTS[DEFAULT_ENVIRONMENT]

    config = ENVIRONMENTS.get(key)
    if config is None:
        logger.warning(
            "Unknown environment %r, falling back to %r (known: %s)",
            name, DEFAULT_ENVIRONMENT, ", ".join(ENVIRONMENTS),
        )
        return ENVIRONMENTS[DEFAULT_ENVIRONMENT]
    return config


def resolve_strict(name: Optional[str]) -> EnvironmentConfig:
    """Like resolve(), but an unrecognized name raises UnknownEnvironment."""
    key = _normalize(name)
    if key and key not in ENVIRONMENTS:
        raise UnknownEnvironment(name, available_environments())
    return resolve(name)


def get_environment_name() -> str:
    """Environment name requested through E2E_ENVIRONMENT."""
    return os.getenv("E2E_ENVIRONMENT", DEFAULT_ENVIRONMENT)
