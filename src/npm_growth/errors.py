from __future__ import annotations


class NpmGrowthError(Exception):
    """Base class for errors raised by npm_growth."""


class InvalidPackageName(NpmGrowthError, ValueError):
    def __init__(self, name: str, reason: str):
        super().__init__(f"Invalid package name {name!r}: {reason}")
        self.name = name
        self.reason = reason


class ProviderError(NpmGrowthError):
    def __init__(self, package: str, message: str):
        super().__init__(f"{package}: {message}")
        self.package = package


class PackageNotFound(ProviderError):
    """The package does not exist upstream. Retrying will not help."""


class ProviderUnavailable(ProviderError):
    """Network failure, timeout, non-2xx status or an unreadable payload."""


class StorageError(NpmGrowthError):
    pass


class StoreConnectionError(StorageError):
    """The store itself is unreachable; batch jobs stop on this one."""
