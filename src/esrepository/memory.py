"""
esrepository Memory — In-Process Versioned Store
================================================

A dict-backed VersionedStore with the same write semantics as an
Elasticsearch index:

    - every successful write gets a new, strictly increasing seq_no
    - a write carrying a stale token fails with a version conflict
    - create=True fails with a version conflict when the id exists

Every call yields to the event loop once, so concurrent updaters interleave
between their read and their write the way they do against a server.
Values are deep-copied in and out; callers never share state with the store.
"""

import asyncio
import copy
from typing import Any, Dict, List, Optional, Tuple

from .errors import DocumentNotFoundError, VersionConflictError
from .store import (
    BulkOperation,
    ItemResult,
    OperationKind,
    VersionedDocument,
    VersionToken,
)


class MemoryStore:
    """
    Versioned document store held in memory.

    Example:
        store = MemoryStore()
        await store.conditional_write("1", {"name": "a"}, create=True)
        doc = await store.read_with_version("1")
    """

    PRIMARY_TERM = 1

    def __init__(self):
        self._docs: Dict[str, Tuple[Any, VersionToken]] = {}
        self._seq_no = -1

    def __len__(self) -> int:
        return len(self._docs)

    def __contains__(self, key: str) -> bool:
        return key in self._docs

    def _next_token(self) -> VersionToken:
        self._seq_no += 1
        return VersionToken(self._seq_no, self.PRIMARY_TERM)

    async def read_with_version(self, key: str) -> VersionedDocument:
        await asyncio.sleep(0)
        if key not in self._docs:
            raise DocumentNotFoundError(key)
        value, token = self._docs[key]
        return VersionedDocument(copy.deepcopy(value), token)

    async def conditional_write(
        self,
        key: str,
        value: Any,
        version: Optional[VersionToken] = None,
        create: bool = False
    ) -> VersionToken:
        await asyncio.sleep(0)
        return self._write(key, value, version, create)

    def _write(
        self,
        key: str,
        value: Any,
        version: Optional[VersionToken],
        create: bool
    ) -> VersionToken:
        current = self._docs.get(key)
        if version is not None:
            if current is None:
                raise VersionConflictError(key, "document does not exist")
            if current[1] != version:
                raise VersionConflictError(
                    key, f"current {current[1]} does not match {version}"
                )
        elif create and current is not None:
            raise VersionConflictError(key, "document already exists")

        token = self._next_token()
        self._docs[key] = (copy.deepcopy(value), token)
        return token

    async def delete(self, key: str) -> bool:
        await asyncio.sleep(0)
        return self._docs.pop(key, None) is not None

    async def submit_batch(
        self,
        operations: List[BulkOperation],
        refresh: Optional[str] = None
    ) -> List[ItemResult]:
        """Apply operations in order; each one succeeds or fails on its own."""
        await asyncio.sleep(0)

        results = []
        for op in operations:
            if op.kind is OperationKind.DELETE:
                found = self._docs.pop(op.id, None) is not None
                results.append(ItemResult(op.id, "delete", 200 if found else 404))
                continue

            create = op.kind is OperationKind.CREATE
            op_type = "create" if create else "index"
            try:
                self._write(op.id, op.value, op.version, create)
            except VersionConflictError as exc:
                results.append(ItemResult(op.id, op_type, 409, str(exc)))
            else:
                results.append(ItemResult(op.id, op_type, 201 if create else 200))
        return results
