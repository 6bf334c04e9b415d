"""Cosmetic progress ramp for uploads whose real progress is unknown."""
from typing import Optional, Sequence
import asyncio
import logging
import random

from .models import GalleryConfig, UploadStatus
from .registry import UploadTaskRegistry

logger = logging.getLogger(__name__)


class ProgressRamp:
    """
    Periodically nudges UPLOADING tasks forward, never reaching 100.

    Only the progress field is touched. Completion is decided by the
    scheduler from the remote result, never from this value.
    """

    def __init__(
        self,
        registry: UploadTaskRegistry,
        task_ids: Sequence[str],
        config: Optional[GalleryConfig] = None,
        rng: Optional[random.Random] = None
    ):
        self._registry = registry
        self._task_ids = list(task_ids)
        self._config = config or GalleryConfig()
        self._rng = rng or random.Random()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> "ProgressRamp":
        if self._task is None:
            self._task = asyncio.create_task(self._run())
        return self

    async def stop(self) -> None:
        if self._task is None:
            return
        if not self._task.done():
            self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def tick(self) -> int:
        """Advance every in-flight task once. Returns how many moved."""
        cap = min(self._config.progress_cap, 99)
        moved = 0
        for task_id in self._task_ids:
            task = self._registry.get(task_id)
            if task is None or task.status != UploadStatus.UPLOADING:
                continue
            if task.progress >= cap:
                continue
            step = self._rng.randint(1, max(1, self._config.progress_step))
            self._registry.update(task_id, progress=min(cap, task.progress + step))
            moved += 1
        return moved

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._config.progress_interval)
            self.tick()
