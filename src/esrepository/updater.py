"""
esrepository Updater — Optimistic Concurrency Updates
=====================================================

Read-modify-write against a versioned store:

    read (value, token) → transform → conditional write with token
                              ↑                    │
                              └── backoff ← conflict

A conflict means the token in hand is obsolete, so every retry starts from
a fresh read. There is no locking; the conditional write is the only
guard against concurrent updaters of the same key.
"""

import asyncio
import inspect
import logging
import random
from typing import Callable, Optional

from .errors import UpdateFailedError, VersionConflictError
from .store import UpdateFunction, VersionedStore, VersionToken

logger = logging.getLogger(__name__)

# Backoff bounds in seconds (50-500ms)
MIN_BACKOFF = 0.05
MAX_BACKOFF = 0.5

DEFAULT_UPDATE_TRIES = 2


def random_backoff() -> float:
    """Return a delay drawn uniformly between MIN_BACKOFF and MAX_BACKOFF."""
    return random.uniform(MIN_BACKOFF, MAX_BACKOFF)


async def apply_update(update_function: UpdateFunction, value):
    """Call a plain or async update function."""
    result = update_function(value)
    if inspect.isawaitable(result):
        result = await result
    return result


async def update_document(
    store: VersionedStore,
    key: str,
    update_function: UpdateFunction,
    max_tries: int = DEFAULT_UPDATE_TRIES,
    backoff: Optional[Callable[[], float]] = None
) -> VersionToken:
    """
    Update the document at `key` by applying `update_function` to its
    current value.

    Version conflicts are retried up to `max_tries` times, each after a
    randomized backoff; `max_tries=0` disables retrying. Any other error,
    including DocumentNotFoundError, propagates immediately.

    Args:
        store: Store providing read_with_version and conditional_write
        key: Document id
        update_function: (T) -> T, plain or async; may run more than once
        max_tries: Retries allowed after the first attempt
        backoff: Returns the delay in seconds before the next retry
            (default: random_backoff)

    Returns:
        The version token of the successful write

    Raises:
        UpdateFailedError: if the document still conflicts after max_tries retries
    """
    backoff = backoff or random_backoff
    tries = 0
    while True:
        current = await store.read_with_version(key)
        candidate = await apply_update(update_function, current.value)
        try:
            token = await store.conditional_write(
                key, candidate, version=current.version, create=False
            )
        except VersionConflictError as exc:
            if tries >= max_tries:
                raise UpdateFailedError(key, tries) from exc
            delay = backoff()
            logger.debug(
                "version conflict updating %s, retrying in %.0fms (tries=%d)",
                key, delay * 1000, tries
            )
            await asyncio.sleep(delay)
            tries += 1
            continue

        if tries > 0:
            # frequent occurrences mean heavy concurrent updates on the same id
            logger.warning("retry update %s succeeded after tries=%d", key, tries)
        return token
