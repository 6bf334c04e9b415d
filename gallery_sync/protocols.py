"""
Protocols (Interfaces) for the external collaborators.

The engine depends only on these; concrete adapters live in services/.
"""
from typing import Any, Dict, List, Optional, Protocol, Sequence, runtime_checkable

from .models import MediaFile


@runtime_checkable
class IObjectStore(Protocol):
    """Accepts a file and returns a durable URL."""

    async def upload(self, file: MediaFile, prefix: str) -> str:
        """Upload one file, raising UploadError on failure."""
        ...


@runtime_checkable
class IBatchObjectStore(Protocol):
    """Object store with a true multi-file upload call."""

    async def upload_batch(self, files: Sequence[MediaFile], prefix: str) -> List[str]:
        """Upload files, returning URLs in the same order."""
        ...


@runtime_checkable
class IDocumentStore(Protocol):
    """Persists the ordered URL collection."""

    async def load(self) -> List[str]:
        """Read the persisted collection."""
        ...

    async def persist(self, urls: List[str]) -> None:
        """Replace the persisted collection, raising PersistError on failure."""
        ...


@runtime_checkable
class IAuthGate(Protocol):
    """Admin capability check."""

    def is_authorized(self) -> bool:
        ...


@runtime_checkable
class IAPIClient(Protocol):
    """Interface for API operations."""

    async def get(self, endpoint: str, params: Optional[Any] = None) -> Any:
        """GET request to API."""
        ...

    async def patch(self, endpoint: str, json: Dict, params: Optional[Any] = None) -> Any:
        """PATCH request to API."""
        ...
