"""Tests for optimistic concurrency updates."""

import asyncio
import logging

import pytest

from esrepository import (
    DocumentNotFoundError,
    UpdateFailedError,
    VersionConflictError,
    VersionedDocument,
    VersionToken,
    update_document,
)
from esrepository.updater import MAX_BACKOFF, MIN_BACKOFF, random_backoff


class ConflictingStore:
    """Every conditional write reports a version conflict."""

    def __init__(self):
        self.reads = 0
        self.writes = 0

    async def read_with_version(self, key):
        self.reads += 1
        await asyncio.sleep(0)
        return VersionedDocument({"n": 0}, VersionToken(self.reads, 1))

    async def conditional_write(self, key, value, version=None, create=False):
        self.writes += 1
        raise VersionConflictError(key)


class BrokenStore(ConflictingStore):
    async def conditional_write(self, key, value, version=None, create=False):
        self.writes += 1
        raise ConnectionError("node unreachable")


def increment(doc):
    return {**doc, "count": doc["count"] + 1}


@pytest.mark.asyncio
async def test_update_applies_function(store):
    await store.conditional_write("1", {"count": 0}, create=True)
    first = await store.read_with_version("1")

    token = await update_document(store, "1", increment)

    current = await store.read_with_version("1")
    assert current.value == {"count": 1}
    assert current.version == token
    assert token != first.version


@pytest.mark.asyncio
async def test_update_accepts_async_function(store):
    await store.conditional_write("1", {"count": 41}, create=True)

    async def bump(doc):
        await asyncio.sleep(0)
        return increment(doc)

    await update_document(store, "1", bump)
    assert (await store.read_with_version("1")).value == {"count": 42}


@pytest.mark.asyncio
async def test_update_missing_document_raises_not_found(store):
    with pytest.raises(DocumentNotFoundError) as excinfo:
        await update_document(store, "missing", increment)
    assert excinfo.value.key == "missing"
    assert "missing" not in store


@pytest.mark.asyncio
@pytest.mark.parametrize("max_tries", [0, 1, 3])
async def test_conflicts_exhaust_retry_budget(max_tries):
    store = ConflictingStore()

    with pytest.raises(UpdateFailedError) as excinfo:
        await update_document(store, "k", lambda d: d, max_tries=max_tries, backoff=lambda: 0)

    assert store.reads == max_tries + 1
    assert store.writes == max_tries + 1
    assert excinfo.value.key == "k"
    assert excinfo.value.tries == max_tries
    assert isinstance(excinfo.value.__cause__, VersionConflictError)


@pytest.mark.asyncio
async def test_other_errors_are_not_retried():
    store = BrokenStore()

    with pytest.raises(ConnectionError):
        await update_document(store, "k", lambda d: d, max_tries=5, backoff=lambda: 0)

    assert store.reads == 1


@pytest.mark.asyncio
async def test_concurrent_updates_do_not_lose_writes(store, no_backoff):
    await store.conditional_write("counter", {"count": 0}, create=True)

    await asyncio.gather(*[
        update_document(store, "counter", increment, max_tries=10)
        for _ in range(10)
    ])

    assert (await store.read_with_version("counter")).value == {"count": 10}


@pytest.mark.asyncio
async def test_two_racing_updates_apply_in_sequence(store, no_backoff):
    await store.conditional_write("doc", {"log": []}, create=True)

    def append(tag):
        return lambda doc: {"log": doc["log"] + [tag]}

    await asyncio.gather(
        update_document(store, "doc", append("a"), max_tries=2),
        update_document(store, "doc", append("b"), max_tries=2),
    )

    log = (await store.read_with_version("doc")).value["log"]
    assert sorted(log) == ["a", "b"]


@pytest.mark.asyncio
async def test_racing_update_without_retries_fails(store, no_backoff):
    await store.conditional_write("doc", {"count": 0}, create=True)

    results = await asyncio.gather(
        update_document(store, "doc", increment, max_tries=0),
        update_document(store, "doc", increment, max_tries=0),
        return_exceptions=True,
    )

    failures = [r for r in results if isinstance(r, UpdateFailedError)]
    assert len(failures) == 1
    assert (await store.read_with_version("doc")).value == {"count": 1}


@pytest.mark.asyncio
async def test_success_after_retry_logs_warning(store, no_backoff, caplog):
    await store.conditional_write("doc", {"count": 0}, create=True)

    with caplog.at_level(logging.DEBUG, logger="esrepository.updater"):
        await asyncio.gather(
            update_document(store, "doc", increment),
            update_document(store, "doc", increment),
        )

    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    debugs = [r for r in caplog.records if r.levelno == logging.DEBUG]
    assert len(warnings) == 1
    assert "succeeded after tries=1" in warnings[0].getMessage()
    assert debugs


@pytest.mark.asyncio
async def test_cancel_during_backoff_stops_retrying():
    store = ConflictingStore()
    task = asyncio.ensure_future(
        update_document(store, "k", lambda d: d, max_tries=5, backoff=lambda: 60)
    )
    for _ in range(10):
        await asyncio.sleep(0)

    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert store.reads == 1


def test_random_backoff_bounds():
    delays = [random_backoff() for _ in range(200)]
    assert all(MIN_BACKOFF <= d <= MAX_BACKOFF for d in delays)
    assert MIN_BACKOFF == 0.05
    assert MAX_BACKOFF == 0.5
