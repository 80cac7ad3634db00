"""
esrepository Bulk — Batched Write Session
=========================================

Groups individual writes into bulk requests of a fixed size:

    OPEN → (accumulate* → flush)* → CLOSED

A batch is flushed as soon as it reaches bulk_size and once more when the
session is closed. Each flushed batch goes to the store as a single
submit_batch call; batches are submitted one after the other in the order
they were filled.

Every submitted operation gets exactly one item_callback(operation, result)
call. Item failures are expected and never abort the session. Only use
after close, a failure of the whole submit call, or an error raised by a
callback propagates; the last one only after the rest of the batch has been
dispatched.

Typical usage:
    async with repository.bulk(bulk_size=500, retry_conflicting_updates=2) as session:
        await session.index("1", doc)
        await session.update("2", lambda d: {**d, "seen": True})
"""

import inspect
import logging
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from .errors import DocumentNotFoundError, SessionClosedError, UpdateFailedError
from .store import (
    BulkOperation,
    ItemResult,
    OperationKind,
    UpdateFunction,
    VersionedStore,
    VersionToken,
)
from .updater import apply_update, update_document

logger = logging.getLogger(__name__)

DEFAULT_BULK_SIZE = 100

ItemCallback = Callable[[BulkOperation, ItemResult], Union[None, Awaitable[None]]]


class BulkSession:
    """
    Accumulates write operations and submits them in batches.

    Not safe for concurrent use; drive a session from a single task.
    """

    def __init__(
        self,
        store: VersionedStore,
        bulk_size: int = DEFAULT_BULK_SIZE,
        retry_conflicting_updates: int = 0,
        refresh: Optional[str] = "wait_for",
        item_callback: Optional[ItemCallback] = None
    ):
        """
        Open a bulk session.

        Args:
            store: Store the batches are submitted to
            bulk_size: Operations per batch
            retry_conflicting_updates: Retries for updates that fail with a
                version conflict (0 disables)
            refresh: Refresh policy passed with every batch
            item_callback: Called once per submitted operation; replaces the
                default failure handling entirely when given
        """
        if bulk_size < 1:
            raise ValueError("bulk_size must be at least 1")

        self.store = store
        self.bulk_size = bulk_size
        self.retry_conflicting_updates = retry_conflicting_updates
        self.refresh = refresh
        self.item_callback = item_callback or self.default_item_callback

        self.failures: List[Tuple[BulkOperation, ItemResult]] = []
        self.submissions = 0
        self._buffer: List[BulkOperation] = []
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Number of operations waiting for the next flush."""
        return len(self._buffer)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    async def create(self, id: str, obj: Any) -> None:
        """Create a document; the item fails if the id already exists."""
        await self._add(BulkOperation(OperationKind.CREATE, id, value=obj))

    async def index(
        self,
        id: str,
        obj: Any,
        create: bool = False,
        version: Optional[VersionToken] = None
    ) -> None:
        """Index (upsert) a document, optionally guarded by a version token."""
        kind = OperationKind.CREATE if create else OperationKind.INDEX
        await self._add(BulkOperation(kind, id, value=obj, version=version))

    async def delete(self, id: str) -> None:
        await self._add(BulkOperation(OperationKind.DELETE, id))

    async def update(self, id: str, update_function: UpdateFunction) -> None:
        """
        Read the current document, transform it, and queue a versioned index.

        The read happens now; DocumentNotFoundError propagates. A conflict at
        submit time is handled by the item callback.
        """
        self._check_open()
        current = await self.store.read_with_version(id)
        value = await apply_update(update_function, current.value)
        await self._add(BulkOperation(
            OperationKind.UPDATE,
            id,
            value=value,
            version=current.version,
            update_function=update_function
        ))

    # ------------------------------------------------------------------
    # Batching
    # ------------------------------------------------------------------

    async def _add(self, operation: BulkOperation) -> None:
        self._check_open()
        self._buffer.append(operation)
        if len(self._buffer) >= self.bulk_size:
            await self.flush()

    async def flush(self) -> None:
        """Submit the pending operations as one batch."""
        if not self._buffer:
            return

        batch = self._buffer
        self._buffer = []
        logger.debug("flushing bulk batch of %d operations", len(batch))

        results = await self.store.submit_batch(batch, refresh=self.refresh)
        self.submissions += 1

        # every item gets its callback; the first callback error is re-raised at the end
        first_error: Optional[Exception] = None
        for operation, result in zip(batch, results):
            try:
                outcome = self.item_callback(operation, result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception as exc:
                logger.error("item callback failed for %s: %s", operation.id, exc)
                if first_error is None:
                    first_error = exc
        if first_error is not None:
            raise first_error

    async def close(self) -> None:
        """Flush the remaining operations and close the session."""
        if self._closed:
            return
        try:
            await self.flush()
        finally:
            self._closed = True

    def _check_open(self) -> None:
        if self._closed:
            raise SessionClosedError("bulk session is closed")

    async def __aenter__(self) -> "BulkSession":
        self._check_open()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        if exc_type is None:
            await self.close()
            return
        if self._buffer:
            logger.warning(
                "discarding %d pending bulk operations after %s",
                len(self._buffer), exc_type.__name__
            )
        self._buffer = []
        self._closed = True

    # ------------------------------------------------------------------
    # Item handling
    # ------------------------------------------------------------------

    async def default_item_callback(
        self,
        operation: BulkOperation,
        result: ItemResult
    ) -> None:
        """
        Retry conflicting updates when configured; record other failures.

        Retries run as independent updates outside the batch that failed.
        """
        if result.ok:
            return

        if (
            self.retry_conflicting_updates > 0
            and operation.kind is OperationKind.UPDATE
            and result.is_conflict
        ):
            try:
                await update_document(
                    self.store,
                    operation.id,
                    operation.update_function,
                    max_tries=self.retry_conflicting_updates
                )
            except (DocumentNotFoundError, UpdateFailedError) as exc:
                logger.warning("retrying update of %s failed: %s", operation.id, exc)
                self.failures.append((operation, result))
                return
            logger.debug("retried updating %s after version conflict", operation.id)
            return

        logger.warning(
            "failed item %s on %s because %s %s",
            result.op_type, result.id, result.status, result.error
        )
        self.failures.append((operation, result))
