"""Custom exception hierarchy for blepresence."""

from __future__ import annotations


class PresenceError(Exception):
    """Base exception for all blepresence errors."""


class PresenceConfigError(PresenceError):
    """Invalid or missing configuration."""


class ReportError(PresenceError):
    """Incoming report payload could not be parsed at all.

    Reports that parse but are incomplete (missing receiver ID, entries
    without an address) are not errors; the merger rejects or skips them.
    """

    def __init__(self, message: str, *, source: str = "") -> None:
        self.source = source
        super().__init__(message)


class PersistenceError(PresenceError):
    """Reading or writing the persisted registry document failed."""

    def __init__(self, message: str, *, path: str = "") -> None:
        self.path = path
        super().__init__(message)
