"""Shared fixtures: an in-memory store and a fake AsyncElasticsearch client."""

from typing import Any, Dict, List, Optional
from unittest.mock import Mock

import pytest
from elasticsearch import ConflictError, NotFoundError

from esrepository import BulkOperation, MemoryStore


def api_error(cls, status: int, message: str = "error"):
    """Build an elasticsearch ApiError subclass without a live transport."""
    return cls(message, Mock(status=status), {})


class RecordingStore(MemoryStore):
    """MemoryStore that records reads and submitted batches."""

    def __init__(self) -> None:
        super().__init__()
        self.reads = 0
        self.batches: List[List[BulkOperation]] = []

    async def read_with_version(self, key):
        self.reads += 1
        return await super().read_with_version(key)

    async def submit_batch(self, operations, refresh=None):
        self.batches.append(list(operations))
        return await super().submit_batch(operations, refresh=refresh)


class _FakeIndices:
    def __init__(self) -> None:
        self.calls: List[tuple] = []
        self.errors: Dict[str, Exception] = {}
        self.aliases: Dict[str, Dict[str, Any]] = {}

    async def _call(self, name: str, **kwargs):
        self.calls.append((name, kwargs))
        if name in self.errors:
            raise self.errors[name]
        return {"acknowledged": True}

    async def create(self, **kwargs):
        return await self._call("create", **kwargs)

    async def delete(self, **kwargs):
        return await self._call("delete", **kwargs)

    async def refresh(self, **kwargs):
        return await self._call("refresh", **kwargs)

    async def get_alias(self, **kwargs):
        await self._call("get_alias", **kwargs)
        index = kwargs["index"]
        return {index: {"aliases": self.aliases.get(index, {})}}


class FakeElasticsearch:
    """
    Records requests and keeps documents with seq_no/primary_term the way
    an index does, including 409s on stale if_seq_no writes.
    """

    def __init__(self) -> None:
        self.indices = _FakeIndices()
        self.docs: Dict[str, Dict[str, Any]] = {}
        self.seq_no = -1
        self.calls: List[tuple] = []
        self.bulk_response: Optional[Dict[str, Any]] = None
        self.search_hits: List[Dict[str, Any]] = []
        self.scroll_pages: List[List[Dict[str, Any]]] = []
        self.closed = False

    def _stored(self, id: str, document: Dict[str, Any]) -> Dict[str, Any]:
        self.seq_no += 1
        self.docs[id] = {"_source": dict(document), "_seq_no": self.seq_no, "_primary_term": 1}
        return {"_id": id, "_seq_no": self.seq_no, "_primary_term": 1, "result": "created"}

    async def get(self, **kwargs):
        self.calls.append(("get", kwargs))
        doc = self.docs.get(kwargs["id"])
        if doc is None:
            raise api_error(NotFoundError, 404, "not_found")
        return {"_id": kwargs["id"], "found": True, **doc}

    async def index(self, **kwargs):
        self.calls.append(("index", kwargs))
        id = kwargs["id"]
        current = self.docs.get(id)
        if kwargs.get("op_type") == "create" and current is not None:
            raise api_error(ConflictError, 409, "version_conflict_engine_exception")
        if "if_seq_no" in kwargs:
            if current is None or current["_seq_no"] != kwargs["if_seq_no"]:
                raise api_error(ConflictError, 409, "version_conflict_engine_exception")
        return self._stored(id, kwargs["document"])

    async def delete(self, **kwargs):
        self.calls.append(("delete", kwargs))
        if self.docs.pop(kwargs["id"], None) is None:
            raise api_error(NotFoundError, 404, "not_found")
        return {"result": "deleted"}

    async def bulk(self, **kwargs):
        self.calls.append(("bulk", kwargs))
        if self.bulk_response is not None:
            return self.bulk_response
        items = []
        lines = iter(kwargs["operations"])
        for line in lines:
            (action, meta), = line.items()
            if action != "delete":
                next(lines)
            items.append({action: {"_id": meta["_id"], "status": 200}})
        return {"errors": False, "items": items}

    async def search(self, **kwargs):
        self.calls.append(("search", kwargs))
        if "scroll" in kwargs:
            return self._scroll_page(0)
        return {"hits": {"hits": self.search_hits}}

    def _scroll_page(self, n: int) -> Dict[str, Any]:
        hits = self.scroll_pages[n] if n < len(self.scroll_pages) else []
        total = sum(len(page) for page in self.scroll_pages)
        return {
            "_scroll_id": f"scroll-{n + 1}",
            "hits": {"total": {"value": total, "relation": "eq"}, "hits": hits},
        }

    async def scroll(self, **kwargs):
        self.calls.append(("scroll", kwargs))
        return self._scroll_page(int(kwargs["scroll_id"].split("-")[1]))

    async def clear_scroll(self, **kwargs):
        self.calls.append(("clear_scroll", kwargs))
        return {"succeeded": True}

    async def count(self, **kwargs):
        self.calls.append(("count", kwargs))
        return {"count": len(self.docs)}

    async def close(self):
        self.closed = True


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


@pytest.fixture
def es_client() -> FakeElasticsearch:
    return FakeElasticsearch()


@pytest.fixture
def no_backoff(monkeypatch):
    """Make retry backoff instant."""
    monkeypatch.setattr("esrepository.updater.random_backoff", lambda: 0)
