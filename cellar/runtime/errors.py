from __future__ import annotations


class CellarError(RuntimeError):
    pass


class ConfigurationError(CellarError):
    """Invalid or missing configuration. Raised before any model call is made."""


class StoreError(CellarError):
    """A durable read/write failed for a reason other than the resource being absent."""

    def __init__(self, message: str, *, path: str | None = None) -> None:
        super().__init__(message)
        self.path = path
