"""
Mock adapter registry.

One process-wide instance per adapter kind, created on first use and kept
until reset_adapters(). Keys are the service names used in environment
configs.
"""

import logging
from typing import Callable, Dict, List, Protocol

from .graph_store import MockGraphStore
from .lmstudio import MockLmStudioServer
from .pinning import MockPinningService

logger = logging.getLogger(__name__)


class MockAdapter(Protocol):
    """What the orchestrator needs from every mock adapter."""

    name: str

    def start(self) -> None: ...

    def stop(self) -> None: ...

    def reset(self) -> None: ...

    def is_available(self) -> bool: ...


# Registry of adapter factories by service name
ADAPTER_REGISTRY: Dict[str, Callable[[], MockAdapter]] = {
    'lmstudio': MockLmStudioServer,
    'neo4j': MockGraphStore,
    'ipfs': MockPinningService,
}

_instances: Dict[str, MockAdapter] = {}


def has_adapter(service: str) -> bool:
    return service in ADAPTER_REGISTRY


def get_adapter(service: str) -> MockAdapter:
    """Get the process-wide adapter for a service.

    Raises:
        KeyError: If no mock exists for the service
    """
    if service not in _instances:
        factory = ADAPTER_REGISTRY.get(service)
        if factory is None:
            raise KeyError(f"No mock adapter for service: {service}")
        _instances[service] = factory()
    return _instances[service]


def active_adapters() -> List[MockAdapter]:
    return list(_instances.values())


def reset_adapters() -> None:
    """Stop and forget every adapter instance."""
    for service, adapter in list(_instances.items()):
        try:
            adapter.stop()
        except Exception as exc:
            logger.warning("Error stopping mock %s: %s", service, exc)
    _instances.clear()


__all__ = [
    'ADAPTER_REGISTRY',
    'MockAdapter',
    'MockGraphStore',
    'MockLmStudioServer',
    'MockPinningService',
    'active_adapters',
    'get_adapter',
    'has_adapter',
    'reset_adapters',
]
