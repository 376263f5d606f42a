"""Exception types raised inside the sync and discovery services."""

from __future__ import annotations


class StackrError(Exception):
    """Base class for service level failures."""


class TransientFetchError(StackrError):
    """A provider or durable store call failed in a way worth retrying later."""

    def __init__(self, message: str, *, source: str | None = None):
        super().__init__(message)
        self.source = source


class DeserializationError(StackrError):
    """A persisted payload could not be decoded."""

    def __init__(self, key: str, reason: str):
        super().__init__(f"Could not decode stored entry {key!r}: {reason}")
        self.key = key
        self.reason = reason
