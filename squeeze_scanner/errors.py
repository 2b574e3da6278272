"""
Exception taxonomy for the staging pipeline.

FetchError, ConfigError and NotFoundError are fatal to the operation that
raised them. LockContention is not a failure: the orchestrator turns it into
a "skipped" outcome.
"""
from typing import Optional


class ScannerError(Exception):
    """Base class for all pipeline errors."""


class FetchError(ScannerError):
    """The symbol listing (or another remote source) could not be fetched."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class ConfigError(ScannerError):
    """No usable configuration, e.g. no active filter can be resolved."""


class NotFoundError(ScannerError):
    """A named filter or keyed row does not exist."""

    def __init__(self, kind: str, key: str):
        self.kind = kind
        self.key = key
        super().__init__(f"{kind} not found: {key!r}")


class LockContention(ScannerError):
    """Another invocation holds the pipeline lock."""

    def __init__(self, lock_path: str, waited_seconds: float):
        self.lock_path = lock_path
        self.waited_seconds = waited_seconds
        super().__init__(
            f"Pipeline lock {lock_path} busy after waiting {waited_seconds:.1f}s"
        )
