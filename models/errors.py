"""Exception hierarchy shared by the informant services."""

from __future__ import annotations


class InformantError(Exception):
    """Base exception for all informant errors."""


class ConfigError(InformantError):
    """Invalid configuration; the process must not start."""


class StorageUnavailable(InformantError):
    """The time-series backend could not be reached or answered with an error."""

    def __init__(self, message: str, *, backend: str = "") -> None:
        self.backend = backend
        super().__init__(message)


class InvalidRange(InformantError):
    """A query range is inverted or wider than allowed."""


class UnknownWorker(InformantError):
    """The address was never registered or has no recorded activity."""

    def __init__(self, address: str, message: str | None = None) -> None:
        self.address = address
        super().__init__(message or f"Worker {address!r} is unknown.")


class WakeSignalFailure(InformantError):
    """Sending a wake signal to a single worker failed."""

    def __init__(self, address: str, reason: str) -> None:
        self.address = address
        self.reason = reason
        super().__init__(f"Waking {address} failed: {reason}")


class NeighborLookupError(InformantError):
    """The neighbour table of the host could not be read or parsed."""
