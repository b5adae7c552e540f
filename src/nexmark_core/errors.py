"""Exception hierarchy shared by the generator and verification kernel."""

from __future__ import annotations


class NexmarkError(Exception):
    """Base class for all workload-kernel failures."""


class InvalidArgument(NexmarkError, ValueError):
    """Raised when a rate, count or budget is outside its valid range."""


class ConfigurationError(NexmarkError, ValueError):
    """Raised when verification windowing parameters are missing or inconsistent."""


class ExhaustedSource(NexmarkError, RuntimeError):
    """Raised when a batch-mode event source ends before the requested count."""

    def __init__(self, worker: int, requested: int, produced: int) -> None:
        super().__init__(
            f"Event source for generator {worker} ended after {produced} "
            f"of {requested} requested events."
        )
        self.worker = worker
        self.requested = requested
        self.produced = produced
