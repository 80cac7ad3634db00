"""
esrepository — Typed Async Repository for Elasticsearch
=======================================================

A convenience layer over the official async Elasticsearch client:

- IndexRepository: typed CRUD, aliases, search and count for one index
- Optimistic concurrency: update() re-reads and retries on version conflicts
- BulkSession: batched writes with per-item callbacks and conflict retries
- MemoryStore: the same versioned-store contract, in process

Usage:
    from esrepository import ClientSettings, IndexRepository, create_client

    client = create_client(ClientSettings(hosts=["http://localhost:9200"]))
    repo = IndexRepository(client, "articles")

    await repo.index("1", {"title": "hello"})
    await repo.update("1", lambda doc: {**doc, "title": "bye"})

    async with repo.bulk(bulk_size=500, retry_conflicting_updates=2) as session:
        await session.index("2", {"title": "more"})

License: MIT
"""

__version__ = "0.1.0"

from .bulk import BulkSession
from .codec import DataclassCodec, DictCodec, ModelCodec
from .config import ClientSettings, create_client
from .errors import (
    DocumentNotFoundError,
    RefreshNotAllowedError,
    RepositoryError,
    SessionClosedError,
    UpdateFailedError,
    VersionConflictError,
)
from .memory import MemoryStore
from .repository import IndexRepository, ScrollResults
from .store import (
    BulkOperation,
    ItemResult,
    OperationKind,
    VersionedDocument,
    VersionedStore,
    VersionToken,
)
from .updater import update_document

__all__ = [
    "BulkOperation",
    "BulkSession",
    "ClientSettings",
    "DataclassCodec",
    "DictCodec",
    "DocumentNotFoundError",
    "IndexRepository",
    "ItemResult",
    "MemoryStore",
    "ModelCodec",
    "OperationKind",
    "RefreshNotAllowedError",
    "RepositoryError",
    "ScrollResults",
    "SessionClosedError",
    "UpdateFailedError",
    "VersionConflictError",
    "VersionToken",
    "VersionedDocument",
    "VersionedStore",
    "create_client",
    "update_document",
]
