"""Protocol for remote document listings."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class DocumentSource(Protocol):
    """Anything that can list the raw documents of a remote account."""

    async def list_documents(self) -> list[dict[str, Any]]:
        """Return the flat raw listing. Raises RemoteApiError on failure."""
        ...
