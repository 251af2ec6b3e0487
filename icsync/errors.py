from __future__ import annotations


class IcsSyncError(Exception):
    """Base class for errors raised inside a sync cycle."""


class ConfigError(IcsSyncError):
    """The feed list configuration cannot be interpreted."""


class FetchError(IcsSyncError):
    """A feed responded with something other than 200 or 304."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseError(IcsSyncError):
    """The fetched body is not usable calendar data."""


class UpsertError(IcsSyncError):
    """The destination store refused or lost a record."""
