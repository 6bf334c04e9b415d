from typing import Dict, List, Optional, Sequence, Set
import asyncio
import logging
import uuid

from .errors import AppendFailed, InvalidTransition, UnknownTask
from .models import BatchResult, GalleryConfig, MediaFile, UploadStatus, UploadTask
from .progress import ProgressRamp
from .protocols import IBatchObjectStore, IObjectStore
from .registry import UploadTaskRegistry
from .synchronizer import GallerySynchronizer

logger = logging.getLogger(__name__)

PERSIST_FAILED_DETAIL = "Uploaded but failed to save to gallery"


def generate_batch_id() -> str:
    return uuid.uuid4().hex[:8]


def _describe_exception(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return f"{type(exc).__name__}: {repr(exc)}"


class UploadScheduler:
    """
    Drives admitted tasks from PENDING to SUCCESS or ERROR.

    - All files of a batch are issued together (max_parallel bounds them when set)
    - One failed file never aborts its siblings
    - Successful URLs reach the gallery as one append, in submission order,
      after every task of the batch is terminal
    """

    def __init__(
        self,
        registry: UploadTaskRegistry,
        object_store: IObjectStore,
        synchronizer: GallerySynchronizer,
        config: Optional[GalleryConfig] = None
    ):
        self._registry = registry
        self._store = object_store
        self._sync = synchronizer
        self._config = config or GalleryConfig()
        self._semaphore = (
            asyncio.Semaphore(self._config.max_parallel)
            if self._config.max_parallel
            else None
        )
        # Tasks of batches whose append has not settled yet
        self._unsettled: Set[str] = set()
        self._prune_tasks: Set[asyncio.Task] = set()

    async def run_batch(self, batch_id: str, task_ids: Sequence[str]) -> BatchResult:
        """
        Upload every task of a batch and commit the results atomically.

        Args:
            batch_id: Batch identifier (for logging and results)
            task_ids: PENDING task ids in submission order

        Returns:
            BatchResult once all tasks are terminal and the append settled
        """
        ids = list(task_ids)
        self._unsettled.update(ids)
        try:
            return await self._run(batch_id, ids)
        finally:
            self._unsettled.difference_update(ids)

    async def _run(self, batch_id: str, ids: List[str]) -> BatchResult:
        logger.info(f"Batch {batch_id}: uploading {len(ids)} file(s)")

        for task_id in ids:
            self._registry.update(
                task_id,
                status=UploadStatus.UPLOADING,
                progress=self._config.progress_seed,
            )

        ramp = ProgressRamp(self._registry, ids, self._config).start()
        try:
            urls = await self._upload(ids)
        finally:
            await ramp.stop()

        succeeded = [tid for tid in ids if urls.get(tid)]
        failed = [tid for tid in ids if not urls.get(tid)]
        ordered_urls = [urls[tid] for tid in succeeded]

        appended: tuple = ()
        persist_error = None
        if ordered_urls:
            try:
                await self._sync.append(ordered_urls)
                appended = tuple(ordered_urls)
            except AppendFailed as exc:
                persist_error = str(exc)
                logger.error(f"Batch {batch_id}: {len(ordered_urls)} upload(s) not saved: {persist_error}")
                for task_id in succeeded:
                    self._registry.update(
                        task_id,
                        status=UploadStatus.ERROR,
                        error=f"{PERSIST_FAILED_DETAIL}: {persist_error}",
                    )
                failed.extend(succeeded)
                failed.sort(key=ids.index)

        logger.info(
            f"Batch {batch_id} complete: {len(appended)} added, {len(failed)} failed"
        )

        if appended:
            self._schedule_prune(succeeded)

        return BatchResult(
            batch_id=batch_id,
            task_ids=tuple(ids),
            appended=appended,
            failed=tuple(failed),
            persist_error=persist_error,
        )

    async def _upload(self, task_ids: List[str]) -> Dict[str, Optional[str]]:
        files = [self._file_for(tid) for tid in task_ids]

        if (
            self._config.use_batch_upload
            and len(task_ids) > 1
            and isinstance(self._store, IBatchObjectStore)
        ):
            return await self._upload_together(task_ids, files)

        results = await asyncio.gather(
            *(self._upload_single_file(tid, f) for tid, f in zip(task_ids, files))
        )
        return dict(zip(task_ids, results))

    def _file_for(self, task_id: str) -> MediaFile:
        task = self._registry.get(task_id)
        if task is None:
            raise UnknownTask(f"Unknown task: {task_id}")
        return task.file

    async def _upload_single_file(self, task_id: str, file: MediaFile) -> Optional[str]:
        """Upload one file and record its terminal state. Never raises for remote failures."""
        if self._semaphore is None:
            return await self._upload_one(task_id, file)
        async with self._semaphore:
            return await self._upload_one(task_id, file)

    async def _upload_one(self, task_id: str, file: MediaFile) -> Optional[str]:
        logger.debug(f"Uploading {file.name} ({file.size} bytes)")
        try:
            url = await self._store.upload(file, self._config.upload_prefix)
        except Exception as e:
            return self._fail(task_id, file, _describe_exception(e))

        if not url:
            return self._fail(task_id, file, "Object store returned no URL")
        return self._succeed(task_id, file, url)

    async def _upload_together(
        self,
        task_ids: List[str],
        files: List[MediaFile]
    ) -> Dict[str, Optional[str]]:
        """Single multi-file call; one failure fails the whole call."""
        try:
            urls = await self._store.upload_batch(files, self._config.upload_prefix)
        except Exception as e:
            error = _describe_exception(e)
            return {tid: self._fail(tid, f, error) for tid, f in zip(task_ids, files)}

        if len(urls) != len(files):
            error = f"Object store returned {len(urls)} URL(s) for {len(files)} file(s)"
            return {tid: self._fail(tid, f, error) for tid, f in zip(task_ids, files)}

        return {
            tid: self._succeed(tid, f, url) if url else self._fail(tid, f, "Object store returned no URL")
            for tid, f, url in zip(task_ids, files, urls)
        }

    def _succeed(self, task_id: str, file: MediaFile, url: str) -> Optional[str]:
        if not self._registry.update(task_id, status=UploadStatus.SUCCESS, progress=100, result_url=url):
            logger.info(f"Task for {file.name} was dismissed, ignoring its result")
            return None
        logger.info(f"✓ Uploaded {file.name}")
        return url

    def _fail(self, task_id: str, file: MediaFile, error: str) -> None:
        logger.error(f"✗ Upload failed for {file.name}: {error}")
        self._registry.update(task_id, status=UploadStatus.ERROR, error=error, progress=0)
        return None

    # Registry maintenance requested by the UI
    def reset_for_retry(self, task_id: str) -> str:
        """Return an ERROR task to PENDING with progress 0. Returns its batch id."""
        self._registry.reset(task_id)
        task = self._registry.get(task_id)
        logger.info(f"Retrying {task.filename}")
        return task.batch_id

    async def retry(self, task_id: str) -> BatchResult:
        """Fresh attempt for one failed task."""
        batch_id = self.reset_for_retry(task_id)
        return await self.run_batch(batch_id, [task_id])

    def dismiss(self, task_id: str) -> None:
        """Remove a finished task. In-flight uploads cannot be aborted."""
        task = self._registry.get(task_id)
        if task is None:
            raise UnknownTask(f"Unknown task: {task_id}")
        if task.in_flight:
            raise InvalidTransition(f"Cannot dismiss {task.filename} while it is {task.status.value}")
        if self._awaits_commit(task):
            raise InvalidTransition(f"Cannot dismiss {task.filename} before it is saved to the gallery")
        self._registry.remove(task_id)

    def clear_completed(self) -> int:
        """Remove every SUCCESS and ERROR task, except uploads still being saved."""
        return self._registry.remove_where(
            lambda t: t.is_terminal and not self._awaits_commit(t)
        )

    def _awaits_commit(self, task: UploadTask) -> bool:
        return task.status == UploadStatus.SUCCESS and task.id in self._unsettled

    def awaiting_commit(self) -> int:
        """Uploaded files whose batch append has not settled. They still hold a gallery slot."""
        count = 0
        for task_id in self._unsettled:
            task = self._registry.get(task_id)
            if task is not None and self._awaits_commit(task):
                count += 1
        return count

    # Auto-prune
    def _schedule_prune(self, task_ids: List[str]) -> None:
        delay = self._config.auto_dismiss_delay
        if delay is None:
            return
        task = asyncio.create_task(self._prune_later(set(task_ids), delay))
        self._prune_tasks.add(task)
        task.add_done_callback(self._prune_tasks.discard)

    async def _prune_later(self, task_ids: Set[str], delay: float) -> None:
        await asyncio.sleep(delay)
        removed = self._registry.remove_where(
            lambda t: t.id in task_ids and t.status == UploadStatus.SUCCESS
        )
        if removed:
            logger.debug(f"Auto-dismissed {removed} completed upload(s)")

    async def close(self) -> None:
        """Cancel pending auto-dismiss timers."""
        for task in list(self._prune_tasks):
            task.cancel()
        if self._prune_tasks:
            await asyncio.gather(*self._prune_tasks, return_exceptions=True)
        self._prune_tasks.clear()
