"""
esrepository Store — Versioned Store Contract
=============================================

The update coordinator and the bulk session do not talk to Elasticsearch
directly. They work against any store that offers three things:

    read_with_version(key)                      -> VersionedDocument
    conditional_write(key, value, version, create) -> VersionToken
    submit_batch(operations, refresh)           -> List[ItemResult]

IndexRepository implements this on top of AsyncElasticsearch and
MemoryStore implements it in-process.

Version tokens mirror Elasticsearch optimistic concurrency control:
a (seq_no, primary_term) pair that changes on every successful write.
"""

import enum
from dataclasses import dataclass
from typing import Any, Callable, List, NamedTuple, Optional, Protocol

# Update functions may be plain or async: (T) -> T or async (T) -> T
UpdateFunction = Callable[[Any], Any]


@dataclass(frozen=True)
class VersionToken:
    """Write generation of a document, as reported by the store."""

    seq_no: int
    primary_term: int


class VersionedDocument(NamedTuple):
    """A document value together with the token it was read at."""

    value: Any
    version: VersionToken


class OperationKind(enum.Enum):
    CREATE = "create"
    INDEX = "index"
    DELETE = "delete"
    UPDATE = "update"


@dataclass
class BulkOperation:
    """
    A pending write in a bulk session.

    UPDATE operations are submitted as a versioned index of the already
    transformed value; update_function is kept so a conflicting item can be
    retried from a fresh read.
    """

    kind: OperationKind
    id: str
    value: Any = None
    version: Optional[VersionToken] = None
    update_function: Optional[UpdateFunction] = None


@dataclass
class ItemResult:
    """Outcome of one operation in a submitted batch."""

    id: str
    op_type: str
    status: int
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def is_conflict(self) -> bool:
        return self.status == 409


class VersionedStore(Protocol):
    """Collaborator interface required by the coordinator and the session."""

    async def read_with_version(self, key: str) -> VersionedDocument:
        ...

    async def conditional_write(
        self,
        key: str,
        value: Any,
        version: Optional[VersionToken] = None,
        create: bool = False
    ) -> VersionToken:
        ...

    async def submit_batch(
        self,
        operations: List[BulkOperation],
        refresh: Optional[str] = None
    ) -> List[ItemResult]:
        ...
