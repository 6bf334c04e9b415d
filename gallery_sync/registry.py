"""
Upload task registry.

Ordered, in-memory collection of UploadTask records. Tasks are appended a
batch at a time and mutated by id. Listeners receive the full snapshot after
every change; the registry itself performs no I/O.
"""
from dataclasses import fields, replace
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple
import logging
import uuid

from .errors import InvalidTransition, UnknownTask
from .models import MediaFile, UploadStatus, UploadTask
from .utils.events import EventEmitter

logger = logging.getLogger(__name__)

_ALLOWED_TRANSITIONS = {
    UploadStatus.PENDING: {UploadStatus.UPLOADING},
    UploadStatus.UPLOADING: {UploadStatus.SUCCESS, UploadStatus.ERROR},
    # Binary reached the object store but the gallery record did not
    UploadStatus.SUCCESS: {UploadStatus.ERROR},
    # Explicit retry
    UploadStatus.ERROR: {UploadStatus.PENDING},
}

_MUTABLE_FIELDS = {f.name for f in fields(UploadTask)} - {"id", "file", "batch_id"}


def generate_task_id() -> str:
    return uuid.uuid4().hex[:12]


class UploadTaskRegistry:
    """
    Registry of upload tasks in admission order.

    Usage:
        registry = UploadTaskRegistry()
        registry.subscribe(lambda tasks: render(tasks))
        ids = registry.admit(files, batch_id)
        registry.update(ids[0], status=UploadStatus.UPLOADING, progress=10)
    """

    def __init__(self):
        self._tasks: Dict[str, UploadTask] = {}
        self._events = EventEmitter()

    # Subscription
    def subscribe(self, callback: Callable[[Tuple[UploadTask, ...]], None]):
        """Receive the full snapshot after every change."""
        self._events.on("changed", callback)

    def unsubscribe(self, callback: Callable):
        self._events.off("changed", callback)

    def _notify(self):
        if self._events.has_listeners("changed"):
            self._events.emit_nowait("changed", self.snapshot())

    # Reads
    def get(self, task_id: str) -> Optional[UploadTask]:
        """Return a copy of the task, or None if it is gone."""
        task = self._tasks.get(task_id)
        return replace(task) if task else None

    def snapshot(self) -> Tuple[UploadTask, ...]:
        return tuple(replace(t) for t in self._tasks.values())

    def in_flight_count(self) -> int:
        return sum(1 for t in self._tasks.values() if t.in_flight)

    def __contains__(self, task_id: str) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)

    # Writes
    def admit(
        self,
        files: Sequence[MediaFile],
        batch_id: str,
        previews: Optional[Sequence[Optional[str]]] = None
    ) -> List[str]:
        """
        Create PENDING tasks for a batch.

        Args:
            files: Admitted files in submission order
            batch_id: Batch the tasks belong to
            previews: Optional preview per file (same order)

        Returns:
            Task ids in submission order
        """
        if previews is not None and len(previews) != len(files):
            raise ValueError("previews must match files one to one")

        ids = []
        for idx, file in enumerate(files):
            task = UploadTask(
                id=generate_task_id(),
                file=file,
                batch_id=batch_id,
                preview=previews[idx] if previews is not None else None,
            )
            self._tasks[task.id] = task
            ids.append(task.id)

        logger.debug(f"Admitted {len(ids)} task(s) for batch {batch_id}")
        self._notify()
        return ids

    def update(self, task_id: str, **changes) -> bool:
        """
        Apply a partial state change.

        Returns:
            False when the task was already removed (stale result), True otherwise
        """
        unknown = set(changes) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update task fields: {', '.join(sorted(unknown))}")

        task = self._tasks.get(task_id)
        if task is None:
            logger.debug(f"Ignoring update for dismissed task {task_id}")
            return False

        status = changes.get("status", task.status)
        if status != task.status and status not in _ALLOWED_TRANSITIONS[task.status]:
            raise InvalidTransition(
                f"Task {task_id} cannot move from {task.status.value} to {status.value}"
            )

        progress = changes.get("progress", task.progress)
        progress = max(0, min(100, int(progress)))

        if status == UploadStatus.PENDING and status != task.status:
            changes.update(result_url=None, error=None)
            progress = 0
        elif status == UploadStatus.UPLOADING and status == task.status:
            # Never move backwards while in flight
            progress = max(progress, task.progress)
        elif status == UploadStatus.SUCCESS:
            if not changes.get("result_url", task.result_url):
                raise InvalidTransition(f"Task {task_id} cannot succeed without a URL")
            changes["error"] = None
        elif status == UploadStatus.ERROR and status != task.status:
            changes["result_url"] = None
            if "progress" not in changes:
                progress = 0

        changes["status"] = status
        changes["progress"] = progress
        for name, value in changes.items():
            setattr(task, name, value)

        self._notify()
        return True

    def reset(self, task_id: str) -> None:
        """Move an ERROR task back to PENDING for a fresh attempt."""
        task = self._tasks.get(task_id)
        if task is None:
            raise UnknownTask(f"Unknown task: {task_id}")
        if task.status != UploadStatus.ERROR:
            raise InvalidTransition(f"Only failed tasks can be retried (task {task_id} is {task.status.value})")
        self.update(task_id, status=UploadStatus.PENDING)

    def remove(self, task_id: str) -> bool:
        removed = self._tasks.pop(task_id, None) is not None
        if removed:
            self._notify()
        return removed

    def remove_where(self, predicate: Callable[[UploadTask], bool]) -> int:
        """Remove every task matching the predicate, returning how many went."""
        doomed = [tid for tid, task in self._tasks.items() if predicate(task)]
        for tid in doomed:
            del self._tasks[tid]
        if doomed:
            self._notify()
        return len(doomed)

    def remove_many(self, task_ids: Iterable[str]) -> int:
        ids = set(task_ids)
        return self.remove_where(lambda t: t.id in ids)
