"""Thin drivers that turn UI gestures into synchronizer mutations."""
from typing import Callable, FrozenSet, List, Sequence, Set, Tuple
import logging

from .errors import DeleteFailed, ReorderFailed
from .models import MutationKind
from .synchronizer import GallerySynchronizer
from .utils.events import EventEmitter

logger = logging.getLogger(__name__)


def move_item(items: Sequence[str], source: int, dest: int) -> List[str]:
    """Remove the element at source and reinsert it at dest, keeping the rest in order."""
    if not 0 <= source < len(items):
        raise IndexError(f"Source index out of range: {source}")
    if not 0 <= dest < len(items):
        raise IndexError(f"Destination index out of range: {dest}")
    moved = list(items)
    moved.insert(dest, moved.pop(source))
    return moved


class ReorderCoordinator:
    """Drag-and-drop outcome -> reorder mutation."""

    def __init__(self, synchronizer: GallerySynchronizer):
        self._sync = synchronizer

    async def move(self, source: int, dest: int) -> Tuple[str, ...]:
        """
        Move one photo from source to dest.

        The permutation is built from the committed value when the mutation
        runs. The new order is displayed right away; if it cannot be saved
        the synchronizer restores the committed order and ReorderFailed
        propagates to the caller.
        """
        move_item(self._sync.committed, source, dest)  # validate against the current view
        if source == dest:
            return self._sync.committed

        try:
            return await self._sync.mutate(
                MutationKind.REORDER,
                lambda items: move_item(items, source, dest),
                optimistic=True,
            )
        except ReorderFailed as exc:
            logger.warning(f"Reorder {source}->{dest} reverted: {exc}")
            raise


class DeletionCoordinator:
    """
    Per-item deletion with its own busy marker.

    Busy state is a set of URLs rather than a single flag, so other items
    stay interactive while one is being removed.
    """

    def __init__(self, synchronizer: GallerySynchronizer):
        self._sync = synchronizer
        self._deleting: Set[str] = set()
        self._events = EventEmitter()

    @property
    def deleting(self) -> FrozenSet[str]:
        return frozenset(self._deleting)

    def is_deleting(self, url: str) -> bool:
        return url in self._deleting

    def subscribe(self, callback: Callable[[FrozenSet[str]], None]):
        self._events.on("changed", callback)

    def unsubscribe(self, callback: Callable):
        self._events.off("changed", callback)

    def _notify(self):
        self._events.emit_nowait("changed", self.deleting)

    async def remove(self, index: int) -> Tuple[str, ...]:
        """
        Delete the photo at index. The item only disappears after the
        document store confirms; on failure it stays in place.
        """
        items = self._sync.committed
        if not 0 <= index < len(items):
            raise IndexError(f"Gallery index out of range: {index}")

        url = items[index]
        if url in self._deleting:
            logger.debug(f"Already deleting {url}, ignoring")
            return items

        self._deleting.add(url)
        self._notify()
        try:
            return await self._sync.remove(index, expected=url)
        except DeleteFailed as exc:
            logger.warning(f"Delete of item {index} failed, item kept: {exc}")
            raise
        finally:
            self._deleting.discard(url)
            self._notify()
