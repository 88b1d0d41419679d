"""
Error taxonomy for the e2e harness.

Each class maps to one way a run can go wrong, and the plugin decides from
the class alone whether the scenario fails, skips, or the whole suite aborts.
"""

from typing import List, Optional


class HarnessError(Exception):
    """Base class for harness failures."""
    pass


class UnknownEnvironment(HarnessError):
    """Raised by strict resolution for a name with no registered config."""

    def __init__(self, name: str, known: List[str]):
        self.name = name
        self.known = known
        super().__init__(
            f"Unknown environment: {name!r} (known: {', '.join(known)})"
        )


class ResourceAcquisitionFailure(HarnessError):
    """Browser engine or World construction failed. Never retried."""
    pass


class MockStartupFailure(HarnessError):
    """A mock adapter could not start; no scenario may run."""

    def __init__(self, adapter: str, message: str):
        self.adapter = adapter
        super().__init__(f"Mock adapter '{adapter}' failed to start: {message}")


class ServiceUnavailable(HarnessError):
    """A tag guard found its service unavailable. Reported as a skip."""

    def __init__(self, tag: str, reason: str):
        self.tag = tag
        self.reason = reason
        super().__init__(f"{tag}: {reason}")


class TeardownFailure(HarnessError):
    """One or more resources could not be released."""

    def __init__(self, errors: List[BaseException], scope: Optional[str] = None):
        self.errors = errors
        self.scope = scope
        details = "; ".join(f"{type(e).__name__}: {e}" for e in errors)
        prefix = f"{scope} teardown" if scope else "Teardown"
        super().__init__(f"{prefix} failed: {details}")
