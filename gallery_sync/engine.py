"""Gallery engine - the surface the admin layer talks to."""
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Sequence, Set, Tuple, Union
import asyncio
import logging

from .coordinators import DeletionCoordinator, ReorderCoordinator
from .errors import Unauthorized, ValidationError
from .models import (
    BatchResult,
    GalleryConfig,
    GallerySnapshot,
    MediaFile,
    RejectionKind,
    UploadStatus,
    ValidationPolicy,
)
from .protocols import IAuthGate, IDocumentStore, IObjectStore
from .registry import UploadTaskRegistry
from .scheduler import UploadScheduler, generate_batch_id
from .services.preview import PreviewService
from .synchronizer import GallerySynchronizer
from .utils.events import EventEmitter
from .validation import validate_batch

logger = logging.getLogger(__name__)

FileLike = Union[MediaFile, Path, str]


def _resolve_files(files: Iterable[FileLike]) -> Tuple[List[MediaFile], List[ValidationError]]:
    """Stat paths into MediaFile objects. Unreadable paths become rejections."""
    media: List[MediaFile] = []
    unreadable: List[ValidationError] = []
    for f in files:
        if isinstance(f, MediaFile):
            media.append(f)
            continue
        try:
            media.append(MediaFile.from_path(f))
        except OSError as e:
            unreadable.append(
                ValidationError(Path(f).name, RejectionKind.UNREADABLE, f"cannot read file: {e.strerror or e}")
            )
    return media, unreadable


class BatchAdmission:
    """
    Handle for an admitted batch whose uploads run in the background.

    Usage:
        admission = await engine.admit_batch(paths)
        for rejection in admission.rejected:
            print(rejection)
        result = await admission.wait()
    """

    def __init__(
        self,
        batch_id: str,
        task_ids: Sequence[str],
        rejected: Sequence[ValidationError],
        task: Optional[asyncio.Task] = None
    ):
        self.batch_id = batch_id
        self.task_ids: Tuple[str, ...] = tuple(task_ids)
        self.rejected: Tuple[ValidationError, ...] = tuple(rejected)
        self._task = task

    @property
    def admitted(self) -> int:
        return len(self.task_ids)

    @property
    def done(self) -> bool:
        return self._task is None or self._task.done()

    async def wait(self) -> Optional[BatchResult]:
        """Wait for every task of the batch to settle. None if nothing was admitted."""
        if self._task is None:
            return None
        return await self._task


class GalleryEngine:
    """
    Bulk upload and ordered gallery synchronization.

    Wires the validation gate, task registry, upload scheduler, gallery
    synchronizer and the reorder/deletion coordinators around three
    collaborators: an object store, a document store and an auth gate.

    Usage:
        async with GalleryEngine(object_store, document_store, auth_gate) as engine:
            engine.subscribe(render)
            admission = await engine.admit_batch(paths)
            await admission.wait()
            await engine.reorder(0, 3)
            await engine.remove(1)
    """

    def __init__(
        self,
        object_store: IObjectStore,
        document_store: IDocumentStore,
        auth_gate: IAuthGate,
        config: Optional[GalleryConfig] = None,
        preview_service: Optional[PreviewService] = None,
    ):
        self._config = config or GalleryConfig()
        self._auth = auth_gate
        self._previews = preview_service or PreviewService()

        self._registry = UploadTaskRegistry()
        self._sync = GallerySynchronizer(document_store)
        self._scheduler = UploadScheduler(self._registry, object_store, self._sync, self._config)
        self._reorder = ReorderCoordinator(self._sync)
        self._deletion = DeletionCoordinator(self._sync)

        self._events = EventEmitter()
        self._batches: Set[asyncio.Task] = set()

        self._registry.subscribe(self._on_change)
        self._sync.subscribe(self._on_change)
        self._deletion.subscribe(self._on_change)

    async def __aenter__(self):
        await self.start()
        return self

    async def __aexit__(self, *args):
        await self.close()

    async def start(self) -> None:
        """Load the persisted gallery."""
        await self._sync.load()

    async def close(self) -> None:
        """Let running batches settle, then drop auto-dismiss timers."""
        if self._batches:
            await asyncio.gather(*list(self._batches), return_exceptions=True)
        await self._scheduler.close()

    # Read side
    @property
    def config(self) -> GalleryConfig:
        return self._config

    @property
    def items(self) -> Tuple[str, ...]:
        return self._sync.committed

    def snapshot(self) -> GallerySnapshot:
        return GallerySnapshot(
            tasks=self._registry.snapshot(),
            items=self._sync.committed,
            displayed=self._sync.displayed,
            deleting=self._deletion.deleting,
        )

    def subscribe(self, callback: Callable[[GallerySnapshot], None]):
        """Called with a fresh snapshot whenever tasks or items change."""
        self._events.on("snapshot", callback)

    def unsubscribe(self, callback: Callable):
        self._events.off("snapshot", callback)

    def on_batch_complete(self, callback: Callable[[BatchResult], None]):
        """Called with the BatchResult of every finished batch or retry."""
        self._events.on("batch_complete", callback)

    def _on_change(self, *args):
        if self._events.has_listeners("snapshot"):
            self._events.emit_nowait("snapshot", self.snapshot())

    # Uploads
    def _require_admin(self, action: str) -> None:
        if not self._auth.is_authorized():
            raise Unauthorized(f"You must be logged in as admin to {action}")

    def _occupied(self) -> int:
        # In-flight tasks and uploads not yet saved already hold a slot
        return (
            len(self._sync.committed)
            + self._registry.in_flight_count()
            + self._scheduler.awaiting_commit()
        )

    def _capacity_error(self, file: Union[MediaFile, str]) -> ValidationError:
        max_items = self._config.policy.max_items
        return ValidationError(
            file,
            RejectionKind.CAPACITY_EXCEEDED,
            f"gallery limit reached, maximum {max_items} photos allowed",
        )

    async def admit_batch(
        self,
        files: Iterable[FileLike],
        policy: Optional[ValidationPolicy] = None
    ) -> BatchAdmission:
        """
        Validate a batch, register its tasks and start uploading.

        Args:
            files: MediaFile objects or paths
            policy: Admission rules (defaults to config.policy)

        Returns:
            BatchAdmission with task ids and per-file rejections

        Raises:
            Unauthorized: caller is not an admin (nothing is admitted)
        """
        self._require_admin("upload images")
        policy = policy or self._config.policy

        media, unreadable = _resolve_files(files)
        report = validate_batch(media, self._occupied(), policy)
        rejected = unreadable + report.rejected
        for rejection in rejected:
            logger.warning(f"Rejected {rejection}")

        batch_id = generate_batch_id()
        if not report.admitted:
            return BatchAdmission(batch_id, (), rejected)

        task_ids = self._registry.admit(report.admitted, batch_id)
        task = self._launch(batch_id, task_ids)
        await self._attach_previews(task_ids, report.admitted)
        return BatchAdmission(batch_id, task_ids, rejected, task)

    async def _attach_previews(self, task_ids: List[str], files: List[MediaFile]) -> None:
        previews = await self._previews.generate_many(files)
        for task_id, preview in zip(task_ids, previews):
            if preview:
                self._registry.update(task_id, preview=preview)

    def _launch(self, batch_id: str, task_ids: Sequence[str]) -> asyncio.Task:
        task = asyncio.create_task(self._run_batch(batch_id, list(task_ids)))
        self._batches.add(task)
        task.add_done_callback(self._batches.discard)
        return task

    async def _run_batch(self, batch_id: str, task_ids: List[str]) -> BatchResult:
        result = await self._scheduler.run_batch(batch_id, task_ids)
        await self._events.emit("batch_complete", result)
        return result

    async def retry(self, task_id: str) -> BatchAdmission:
        """
        Fresh upload attempt for a failed task (PENDING, progress 0).

        Raises:
            Unauthorized: caller is not an admin
            ValidationError: the gallery has no free slot left
        """
        self._require_admin("upload images")
        failed = self._registry.get(task_id)
        if failed is not None and failed.status == UploadStatus.ERROR:
            if self._occupied() >= self._config.policy.max_items:
                raise self._capacity_error(failed.file)
        batch_id = self._scheduler.reset_for_retry(task_id)
        task = self._launch(batch_id, [task_id])
        return BatchAdmission(batch_id, [task_id], (), task)

    def dismiss(self, task_id: str) -> None:
        self._scheduler.dismiss(task_id)

    def clear_completed(self) -> int:
        return self._scheduler.clear_completed()

    # Gallery mutations
    async def append(self, urls: Sequence[str]) -> Tuple[str, ...]:
        """Add already hosted images (e.g. pasted URLs) as one mutation."""
        self._require_admin("add images")
        committed = set(self._sync.committed)
        new = [u for u in dict.fromkeys(urls) if u and u not in committed]

        available = max(self._config.policy.max_items - self._occupied(), 0)
        if len(new) > available:
            raise self._capacity_error(new[available])
        return await self._sync.append(new)

    async def reorder(self, source: int, dest: int) -> Tuple[str, ...]:
        return await self._reorder.move(source, dest)

    async def remove(self, index: int) -> Tuple[str, ...]:
        self._require_admin("delete images")
        return await self._deletion.remove(index)
