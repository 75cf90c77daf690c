"""Application-level exception types.

Convention:
- ``InternalServerError``: for errors whose details must never reach clients
  (decryption failures, corrupted hierarchy data, etc.). The global handler
  logs the full message at ERROR and returns a generic
  "Internal server error" (500) to the client.
- ``ValueError``: for *business logic* validation errors that are safe to
  forward to clients. The global ``ValueError`` handler returns ``str(exc)``
  as the 422 detail.
- The sync-specific errors below carry their own status codes in
  ``backend/main.py``: configuration problems are client errors (400),
  missing vaults 404, concurrent runs 409, remote failures 502.
"""

from __future__ import annotations


class InternalServerError(Exception):
    """Raised for internal errors whose details must not be exposed to clients.

    The global exception handler in ``backend/main.py`` catches this, logs
    the full message server-side, and returns HTTP 500 with a generic
    ``"Internal server error"`` detail.
    """


class ConfigurationError(Exception):
    """Raised when a sync cannot start because setup is incomplete."""


class VaultNotFoundError(Exception):
    """Raised when a vault id does not exist."""

    def __init__(self, vault_id: int) -> None:
        super().__init__(f"Vault {vault_id} not found")
        self.vault_id = vault_id


class SyncConflictError(Exception):
    """Raised when a sync run is already in progress for a vault."""

    def __init__(self, vault_id: int) -> None:
        super().__init__(f"Sync already in progress for vault {vault_id}")
        self.vault_id = vault_id


class RemoteApiError(Exception):
    """Raised when the remote document cloud is unreachable or rejects us."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class HierarchyCycleError(InternalServerError):
    """Raised when parent references form a cycle."""

    def __init__(self, node_ids: list[str]) -> None:
        preview = ", ".join(node_ids[:10])
        super().__init__(f"Parent references form a cycle involving: {preview}")
        self.node_ids = node_ids
