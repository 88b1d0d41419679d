"""
Environment-aware end-to-end test harness for void-server.

Scenarios are pytest tests that take the `world` fixture from
void_e2e.plugin; see that module for the launch parameters.
"""

from .environments import EnvironmentConfig, available_environments, resolve, resolve_strict
from .errors import (
    HarnessError,
    MockStartupFailure,
    ResourceAcquisitionFailure,
    ServiceUnavailable,
    TeardownFailure,
    UnknownEnvironment,
)
from .world import ScenarioWorld

__version__ = "1.0.0"

__all__ = [
    'EnvironmentConfig',
    'HarnessError',
    'MockStartupFailure',
    'ResourceAcquisitionFailure',
    'ScenarioWorld',
    'ServiceUnavailable',
    'TeardownFailure',
    'UnknownEnvironment',
    'available_environments',
    'resolve',
    'resolve_strict',
]
