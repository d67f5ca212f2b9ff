"""
Base service class for the CTF board services.

Holds the injected document store and packs planned writes into
size-bounded atomic batches.
"""

import inspect
import logging
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple, Union

from ctfboard.database.documents import PendingWrite
from ctfboard.utils.exceptions import BatchLimitExceededError

logger = logging.getLogger(__name__)

# progress(current, total, message); may be sync or async
ProgressCallback = Callable[[int, int, str], Union[None, Awaitable[None]]]


async def report_progress(progress: Optional[ProgressCallback], current: int, total: int, message: str) -> None:
    """Invoke an optional progress callback, awaiting it if it is a coroutine."""
    if progress is None:
        return
    result = progress(current, total, message)
    if inspect.isawaitable(result):
        await result


class BaseService:
    """Base class for all services with an injected document store."""

    def __init__(self, store, batch_limit: Optional[int] = None):
        """
        Initialize base service with a document store.

        Args:
            store: Document store (see ctfboard.database.database.Database)
            batch_limit: Max operations per atomic batch; defaults to the store's limit
        """
        self.store = store
        self.batch_limit = min(batch_limit or store.batch_limit, store.batch_limit)

    def pack_groups(self, groups: Sequence[Sequence[PendingWrite]]) -> List[List[Sequence[PendingWrite]]]:
        """
        Pack write groups into batches of at most batch_limit operations.

        A group is never split across batches, so writes that must land
        together share one atomic commit.
        """
        batches: List[List[Sequence[PendingWrite]]] = []
        current: List[Sequence[PendingWrite]] = []
        current_size = 0
        for group in groups:
            if len(group) > self.batch_limit:
                raise BatchLimitExceededError(self.batch_limit)
            if current and current_size + len(group) > self.batch_limit:
                batches.append(current)
                current, current_size = [], 0
            current.append(group)
            current_size += len(group)
        if current:
            batches.append(current)
        return batches

    async def commit_groups(
        self,
        groups: Sequence[Sequence[PendingWrite]],
        on_batch: Optional[Callable[[int, int], Awaitable[None]]] = None
    ) -> Tuple[int, int]:
        """
        Commit write groups batch by batch, in order.

        Each batch commits independently; a failure stops the remaining
        batches and propagates, leaving earlier batches committed.

        Returns:
            (batches_committed, groups_committed)
        """
        batches_committed = 0
        groups_committed = 0
        for packed in self.pack_groups(groups):
            batch = self.store.batch()
            for group in packed:
                for write in group:
                    batch.add(write)
            await batch.commit()
            batches_committed += 1
            groups_committed += len(packed)
            logger.debug(f"Committed batch {batches_committed} ({len(batch)} operations)")
            if on_batch:
                await on_batch(batches_committed, groups_committed)
        return batches_committed, groups_committed
