"""
Gallery Synchronizer - single mutation gateway for the ordered photo list.

Every mutation follows persist-then-commit:
1. Build the candidate list from the last committed value
2. Optionally show it as the displayed (optimistic) value
3. Persist the candidate through the document store
4. Commit on success; on failure restore the displayed value and raise
   the mutation-specific PersistError

Mutations are serialized with a lock, so a queued mutation always sees the
result of the one before it, never an unconfirmed draft.
"""
from typing import Callable, Iterable, List, Optional, Sequence, Tuple
import asyncio
import logging

from .errors import PERSIST_ERRORS
from .models import MutationKind
from .protocols import IDocumentStore
from .utils.events import EventEmitter

logger = logging.getLogger(__name__)

CandidateBuilder = Callable[[Tuple[str, ...]], Sequence[str]]


def _describe_exception(exc: Exception) -> str:
    message = str(exc).strip()
    if message:
        return message
    return f"{type(exc).__name__}: {repr(exc)}"


class GallerySynchronizer:
    """
    Owns the authoritative ordered sequence of media URLs.

    Usage:
        sync = GallerySynchronizer(document_store)
        await sync.load()
        await sync.append(["https://.../a.jpg", "https://.../b.jpg"])
        await sync.reorder(list(reversed(sync.committed)))
        await sync.remove(0)
    """

    def __init__(self, document_store: IDocumentStore, items: Iterable[str] = ()):
        self._store = document_store
        self._committed: Tuple[str, ...] = tuple(items)
        self._displayed: Tuple[str, ...] = self._committed
        self._lock = asyncio.Lock()
        self._events = EventEmitter()

    @property
    def committed(self) -> Tuple[str, ...]:
        """Last value confirmed by the document store."""
        return self._committed

    @property
    def displayed(self) -> Tuple[str, ...]:
        """Value a renderer may show; ahead of committed only while a mutation is in flight."""
        return self._displayed

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    def __len__(self) -> int:
        return len(self._committed)

    def subscribe(self, callback: Callable[[Tuple[str, ...], Tuple[str, ...]], None]):
        """Receive (committed, displayed) after every change."""
        self._events.on("changed", callback)

    def unsubscribe(self, callback: Callable):
        self._events.off("changed", callback)

    def _notify(self):
        self._events.emit_nowait("changed", self._committed, self._displayed)

    async def load(self) -> Tuple[str, ...]:
        """Replace the committed value with what the document store holds."""
        async with self._lock:
            items = await self._store.load()
            self._committed = tuple(items)
            self._displayed = self._committed
            logger.info(f"Loaded gallery with {len(self._committed)} item(s)")
            self._notify()
            return self._committed

    async def mutate(
        self,
        kind: MutationKind,
        build_candidate: CandidateBuilder,
        optimistic: bool = False
    ) -> Tuple[str, ...]:
        """
        Run one mutation through the persist-then-commit protocol.

        Args:
            kind: Mutation kind, selects the error raised on failure
            build_candidate: Called with the committed value once the lock is held
            optimistic: Show the candidate as displayed before persistence confirms

        Returns:
            The committed value after the mutation

        Raises:
            AppendFailed / ReorderFailed / DeleteFailed: persistence failed, nothing committed
        """
        async with self._lock:
            candidate = tuple(build_candidate(self._committed))
            if candidate == self._committed:
                logger.debug(f"{kind.value}: no change, skipping persist")
                return self._committed

            if optimistic:
                self._displayed = candidate
                self._notify()

            try:
                await self._store.persist(list(candidate))
            except Exception as exc:
                self._displayed = self._committed
                self._notify()
                reason = _describe_exception(exc)
                logger.warning(f"{kind.value} not saved, rolled back: {reason}")
                raise PERSIST_ERRORS[kind](reason) from exc

            self._committed = candidate
            self._displayed = candidate
            logger.info(f"{kind.value} committed ({len(candidate)} item(s))")
            self._notify()
            return self._committed

    async def append(self, urls: Sequence[str], optimistic: bool = False) -> Tuple[str, ...]:
        """Append URLs in order as one atomic extension."""
        urls = list(urls)

        def build(items: Tuple[str, ...]) -> List[str]:
            seen = set(items)
            extended = list(items)
            for url in urls:
                if url and url not in seen:
                    seen.add(url)
                    extended.append(url)
            return extended

        return await self.mutate(MutationKind.APPEND, build, optimistic=optimistic)

    async def reorder(self, new_ordering: Sequence[str], optimistic: bool = False) -> Tuple[str, ...]:
        """Replace the order with a permutation of the committed items."""
        new_ordering = list(new_ordering)

        def build(items: Tuple[str, ...]) -> List[str]:
            if sorted(new_ordering) != sorted(items):
                raise ValueError("New ordering is not a permutation of the gallery items")
            return new_ordering

        return await self.mutate(MutationKind.REORDER, build, optimistic=optimistic)

    async def remove(self, index: int, expected: Optional[str] = None) -> Tuple[str, ...]:
        """
        Remove one item.

        Args:
            index: Position in the committed list when the call was made
            expected: URL the caller saw at that position; located again
                when the mutation runs so queued deletions stay correct
        """

        def build(items: Tuple[str, ...]) -> List[str]:
            position = index
            if expected is not None:
                if not (0 <= index < len(items) and items[index] == expected):
                    if expected not in items:
                        raise LookupError(f"Item is no longer in the gallery: {expected}")
                    position = items.index(expected)
            elif not 0 <= index < len(items):
                raise IndexError(f"Gallery index out of range: {index}")
            return [url for i, url in enumerate(items) if i != position]

        return await self.mutate(MutationKind.DELETE, build)
