"""
Models for gallery_sync.

Immutable dataclasses for configuration and results, one mutable record
(UploadTask) owned by the task registry.
"""
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import FrozenSet, Optional, Tuple
import mimetypes
import os

MB = 1024 * 1024

# Not in every platform's mime table
mimetypes.add_type("image/webp", ".webp")

DEFAULT_ALLOWED_TYPES = frozenset({
    "image/jpeg",
    "image/png",
    "image/webp",
    "image/gif",
})


class UploadStatus(Enum):
    """Lifecycle state of a single file upload."""
    PENDING = "pending"
    UPLOADING = "uploading"
    SUCCESS = "success"
    ERROR = "error"


class RejectionKind(Enum):
    """Why the validation gate refused a file."""
    UNSUPPORTED_TYPE = "unsupported_type"
    TOO_LARGE = "too_large"
    CAPACITY_EXCEEDED = "capacity_exceeded"
    UNREADABLE = "unreadable"


class MutationKind(Enum):
    """Gallery mutation that a persistence failure belongs to."""
    APPEND = "append"
    REORDER = "reorder"
    DELETE = "delete"


@dataclass(frozen=True)
class MediaFile:
    """Reference to a local binary. The bytes are never loaded here."""
    path: Path
    content_type: str
    size: int

    @property
    def name(self) -> str:
        return self.path.name

    @classmethod
    def from_path(cls, path) -> "MediaFile":
        path = Path(path)
        content_type, _ = mimetypes.guess_type(path.name)
        return cls(
            path=path,
            content_type=content_type or "application/octet-stream",
            size=path.stat().st_size,
        )


@dataclass
class UploadTask:
    """Tracked lifecycle record for one file's upload attempt."""
    id: str
    file: MediaFile
    batch_id: str
    status: UploadStatus = UploadStatus.PENDING
    progress: int = 0
    result_url: Optional[str] = None
    error: Optional[str] = None
    preview: Optional[str] = None  # data URI

    @property
    def filename(self) -> str:
        return self.file.name

    @property
    def is_terminal(self) -> bool:
        return self.status in (UploadStatus.SUCCESS, UploadStatus.ERROR)

    @property
    def in_flight(self) -> bool:
        return self.status in (UploadStatus.PENDING, UploadStatus.UPLOADING)


@dataclass(frozen=True)
class ValidationPolicy:
    """Caller-supplied admission rules. Never mutated by the engine."""
    allowed_types: FrozenSet[str] = DEFAULT_ALLOWED_TYPES
    max_size_bytes: int = 10 * MB
    max_items: int = 20

    @property
    def max_size_mb(self) -> float:
        return self.max_size_bytes / MB


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    return int(value)


@dataclass(frozen=True)
class GalleryConfig:
    """Immutable configuration for the gallery engine."""
    upload_prefix: str = "gallery"
    policy: ValidationPolicy = field(default_factory=ValidationPolicy)
    # Cosmetic progress ramp
    progress_seed: int = 10
    progress_cap: int = 90
    progress_step: int = 10
    progress_interval: float = 0.3
    # Seconds before successful tasks leave the registry (None keeps them)
    auto_dismiss_delay: Optional[float] = 2.0
    # Upper bound on concurrent uploads (None issues a whole batch at once)
    max_parallel: Optional[int] = None
    use_batch_upload: bool = True

    @classmethod
    def from_env(cls) -> "GalleryConfig":
        """Build config from GALLERY_* environment variables."""
        defaults = cls()
        policy = ValidationPolicy(
            max_size_bytes=_env_int("GALLERY_MAX_SIZE_MB", defaults.policy.max_size_bytes // MB) * MB,
            max_items=_env_int("GALLERY_MAX_ITEMS", defaults.policy.max_items),
        )

        auto_dismiss = defaults.auto_dismiss_delay
        raw_dismiss = os.getenv("GALLERY_AUTO_DISMISS")
        if raw_dismiss is not None and raw_dismiss.strip():
            if raw_dismiss.strip().lower() in {"off", "none", "no", "false"}:
                auto_dismiss = None
            else:
                auto_dismiss = float(raw_dismiss)

        return cls(
            upload_prefix=os.getenv("GALLERY_UPLOAD_PREFIX") or defaults.upload_prefix,
            policy=policy,
            auto_dismiss_delay=auto_dismiss,
            max_parallel=max(0, _env_int("GALLERY_MAX_PARALLEL", 0)) or None,
        )


@dataclass(frozen=True)
class BatchResult:
    """Outcome of one batch once every task reached a terminal state."""
    batch_id: str
    task_ids: Tuple[str, ...]
    appended: Tuple[str, ...] = ()
    failed: Tuple[str, ...] = ()
    persist_error: Optional[str] = None

    @property
    def committed(self) -> bool:
        return bool(self.appended) and self.persist_error is None

    @property
    def all_success(self) -> bool:
        return not self.failed and self.persist_error is None


@dataclass(frozen=True)
class GallerySnapshot:
    """Read-only view handed to renderers."""
    tasks: Tuple[UploadTask, ...]
    items: Tuple[str, ...]
    displayed: Tuple[str, ...]
    deleting: FrozenSet[str] = frozenset()

    @property
    def uploading(self) -> int:
        return sum(1 for t in self.tasks if t.in_flight)

    @property
    def failed(self) -> int:
        return sum(1 for t in self.tasks if t.status == UploadStatus.ERROR)
