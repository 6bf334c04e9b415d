"""Error taxonomy for gallery_sync."""
from typing import Optional, Union

from .models import MediaFile, MutationKind, RejectionKind


class GalleryError(Exception):
    """Base exception for gallery engine operations."""


class ValidationError(GalleryError):
    """A single file (or URL) refused by the validation gate."""

    def __init__(self, file: Union[MediaFile, str], kind: RejectionKind, message: str):
        self.file = file
        self.name = file.name if isinstance(file, MediaFile) else str(file)
        self.kind = kind
        self.message = message
        super().__init__(f"{self.name}: {message}")


class UploadError(GalleryError):
    """Object store could not accept a file. Retryable."""


class PersistError(GalleryError):
    """Document store did not confirm a write."""

    kind: Optional[MutationKind] = None

    def __init__(self, message: str, kind: Optional[MutationKind] = None):
        super().__init__(message)
        if kind is not None:
            self.kind = kind


class AppendFailed(PersistError):
    """Uploaded media could not be saved to the gallery."""
    kind = MutationKind.APPEND


class ReorderFailed(PersistError):
    """New gallery order could not be saved."""
    kind = MutationKind.REORDER


class DeleteFailed(PersistError):
    """Photo removal could not be saved."""
    kind = MutationKind.DELETE


PERSIST_ERRORS = {
    MutationKind.APPEND: AppendFailed,
    MutationKind.REORDER: ReorderFailed,
    MutationKind.DELETE: DeleteFailed,
}


class Unauthorized(GalleryError):
    """Caller lacks the admin capability."""


class InvalidTransition(GalleryError):
    """Requested task state change is not allowed."""


class UnknownTask(GalleryError, KeyError):
    """Task id is not (or no longer) in the registry."""

    def __str__(self) -> str:
        return Exception.__str__(self)
