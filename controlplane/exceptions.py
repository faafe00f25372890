"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (decryption failures, config validation, storage faults, etc.).
  The global handler logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``ValueError``: for *business logic* validation errors that are safe to
  forward to clients (unknown provider, malformed root id, etc.).
- Mirror errors below are mapped to specific status codes by the handlers in
  ``controlplane/main.py``. ``ProviderError`` and ``CacheWriteError`` are
  normally absorbed by the sync orchestrator; they only reach the HTTP layer
  when a whole pass aborts.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients."""


class ProviderError(Exception):
    """Raised when a remote provider cannot list or serve content."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class CacheWriteError(Exception):
    """Raised when file content could not be persisted into the blob cache."""


class MirrorNotFoundError(Exception):
    """Raised when no remote root is linked for a (provider, workspace) pair."""


class ManifestNotFoundError(Exception):
    """Raised when an operation needs a manifest that has not been written yet."""


class SyncInProgressError(Exception):
    """Raised when another sync pass holds the lease for the same mirror."""


class MirrorChangedError(Exception):
    """Raised when a pass loses its lease because the mirror was relinked or unlinked."""


class MissingCredentialsError(Exception):
    """Raised when no provider access token is stored for a mirror."""
