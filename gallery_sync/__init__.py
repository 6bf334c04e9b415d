"""
gallery_sync - Bulk media upload and ordered gallery synchronization.

Follows the same layering as the rest of the package:
- Validation gate decides which files of a batch are admitted
- Registry tracks one UploadTask per admitted file
- Scheduler uploads a batch and appends its URLs in one mutation
- Synchronizer keeps the ordered URL list consistent with the document store
- Coordinators handle drag reorder and per-item deletion

Usage:
    from gallery_sync import GalleryEngine, GalleryConfig
    from gallery_sync.services import CloudinaryObjectStore, StaticAuthGate

    async with CloudinaryObjectStore("my-cloud") as objects:
        async with GalleryEngine(objects, documents, StaticAuthGate(True)) as engine:
            admission = await engine.admit_batch(["a.jpg", "b.png"])
            result = await admission.wait()

            # Drag item 0 to position 3
            await engine.reorder(0, 3)

            # Remove the second photo
            await engine.remove(1)
"""
from .engine import BatchAdmission, GalleryEngine
from .errors import (
    AppendFailed,
    DeleteFailed,
    GalleryError,
    InvalidTransition,
    PersistError,
    ReorderFailed,
    Unauthorized,
    UnknownTask,
    UploadError,
    ValidationError,
)
from .models import (
    BatchResult,
    GalleryConfig,
    GallerySnapshot,
    MediaFile,
    MutationKind,
    RejectionKind,
    UploadStatus,
    UploadTask,
    ValidationPolicy,
)
from .validation import ValidationReport, validate_batch

__version__ = "0.1.0"
__all__ = [
    # Main
    "GalleryEngine",
    "BatchAdmission",
    # Models
    "BatchResult",
    "GalleryConfig",
    "GallerySnapshot",
    "MediaFile",
    "MutationKind",
    "RejectionKind",
    "UploadStatus",
    "UploadTask",
    "ValidationPolicy",
    # Validation
    "ValidationReport",
    "validate_batch",
    # Errors
    "GalleryError",
    "ValidationError",
    "UploadError",
    "PersistError",
    "AppendFailed",
    "ReorderFailed",
    "DeleteFailed",
    "Unauthorized",
    "InvalidTransition",
    "UnknownTask",
]
