# errors.py
"""
Exception taxonomy for the cache.

Only InvalidType and ComputationFailed ever reach callers of Caker.get.
StorageError subclasses are raised by the codec and stores and absorbed
by the coordinator.
"""
from typing import Any


class CakerError(Exception):
    """Base class for all cache errors"""


class InvalidType(CakerError):
    def __init__(self, key: str, expected: Any, actual: Any):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Cached value for {key!r} is {type(actual).__name__}, expected {getattr(expected, '__name__', expected)}"
        )


class ComputationFailed(CakerError):
    """The refresh computation raised; ``error`` is the original exception."""

    def __init__(self, key: str, error: BaseException):
        self.key = key
        self.error = error
        super().__init__(f"Computation for {key!r} failed: {error!r}")


class StorageError(CakerError):
    """Store or codec failure; the coordinator logs it and carries on."""


class StorageDecodeError(StorageError):
    pass


class StorageWriteError(StorageError):
    pass
