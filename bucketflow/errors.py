"""
BucketFlow exception hierarchy.

Hierarchy::

    BucketFlowError
    ├── ConfigurationError        - workspace config missing or invalid
    ├── UnsupportedContentError   - stream payload where bytes are required
    ├── TransportError            - a remote head/put/list/delete request failed
    └── SyncError                 - the whole sync pass failed
        ├── ListingError          - remote listing could not be obtained
        └── DeleteError           - bulk delete of remote-only keys failed

UnsupportedContentError and TransportError raised for one file never stop the
other files of a run. SyncError subclasses abort the sync pass.
"""

from __future__ import annotations


class BucketFlowError(Exception):
    """Base exception for all BucketFlow errors."""

    def __init__(self, message: str, *, details: dict | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(BucketFlowError):
    """Raised when the workspace config cannot be loaded or is incomplete."""


class UnsupportedContentError(BucketFlowError):
    """Raised when a record carries a stream instead of materialized bytes."""

    def __init__(self, remote_key: str) -> None:
        super().__init__(
            f"Stream content is not supported: {remote_key}",
            details={"key": remote_key},
        )
        self.remote_key = remote_key


class TransportError(BucketFlowError):
    """Raised when a remote store request fails."""

    def __init__(self, operation: str, key: str | None, cause: BaseException | str) -> None:
        target = f" {key}" if key else ""
        super().__init__(
            f"{operation}{target} failed: {cause}",
            details={"operation": operation, "key": key},
        )
        self.operation = operation
        self.key = key


class SyncError(BucketFlowError):
    """Raised when a sync pass cannot complete."""


class ListingError(SyncError):
    """Raised when the remote listing request fails."""


class DeleteError(SyncError):
    """Raised when the bulk delete request fails."""

    def __init__(self, message: str, *, keys: list[str] | None = None) -> None:
        super().__init__(message, details={"keys": list(keys or [])})
        self.keys = list(keys or [])
