"""
esrepository Loader — JSONL Bulk Loading
========================================

Streams JSON-lines files into a repository through a BulkSession.

Design principles:
    - Stream processing: files are read line by line, never loaded whole
    - Bulk API: writes are grouped into bulk_size batches by the session
    - Partial failure: bad lines and failed items are counted, not fatal
    - Progress reporting: logged every progress_interval records

Typical usage:
    stats = await load_jsonl(repository, ["data/a.jsonl", "data/b.jsonl"])
"""

import json
import logging
import time
from pathlib import Path
from typing import Any, Dict, Iterable, Union

from .bulk import DEFAULT_BULK_SIZE
from .store import BulkOperation, ItemResult

logger = logging.getLogger(__name__)

DEFAULT_PROGRESS_INTERVAL = 10_000


def expand_paths(patterns: Iterable[Union[str, Path]]) -> list:
    """Expand glob patterns (including ** for recursion) into sorted files."""
    files = []
    for pattern in patterns:
        pattern = str(pattern)
        if "**" in pattern:
            base, _, rest = pattern.partition("**")
            files.extend(sorted(Path(base or ".").rglob(rest.lstrip("/") or "*")))
        elif any(ch in pattern for ch in "*?["):
            path = Path(pattern)
            files.extend(sorted(path.parent.glob(path.name)))
        else:
            files.append(Path(pattern))
    return files


async def load_jsonl(
    repository,
    paths: Iterable[Union[str, Path]],
    id_field: str = "id",
    bulk_size: int = DEFAULT_BULK_SIZE,
    progress_interval: int = DEFAULT_PROGRESS_INTERVAL,
    refresh: Any = False
) -> Dict[str, Any]:
    """
    Upsert every JSON object in the given JSONL files.

    Args:
        repository: IndexRepository (or anything with a compatible bulk())
        paths: Files or glob patterns
        id_field: Field holding the document id
        bulk_size: Operations per bulk request
        progress_interval: Records between progress log lines
        refresh: Refresh policy for the bulk requests

    Returns:
        Load statistics dict; an unreadable file counts as one error and
        is left out of files_processed

    Raises:
        ValueError: if progress_interval is less than 1
    """
    if progress_interval < 1:
        raise ValueError("progress_interval must be at least 1")

    files = expand_paths(paths)
    logger.info("loading %d files", len(files))

    total_records = 0
    total_errors = 0
    files_processed = 0
    start_time = time.time()

    def on_item(operation: BulkOperation, result: ItemResult) -> None:
        nonlocal total_errors
        if not result.ok:
            total_errors += 1
            logger.warning("failed to load %s: %s", result.id, result.error)

    async with repository.bulk(
        bulk_size=bulk_size, refresh=refresh, item_callback=on_item
    ) as session:
        for filepath in files:
            try:
                with open(filepath, "r", encoding="utf-8") as f:
                    for line_no, line in enumerate(f, 1):
                        if not line.strip():
                            continue
                        try:
                            record = json.loads(line)
                        except json.JSONDecodeError:
                            total_errors += 1
                            logger.warning("%s:%d: invalid JSON", filepath, line_no)
                            continue

                        doc_id = record.get(id_field) if isinstance(record, dict) else None
                        if doc_id is None:
                            total_errors += 1
                            logger.warning("%s:%d: missing %s", filepath, line_no, id_field)
                            continue

                        await session.index(str(doc_id), record)
                        total_records += 1

                        if total_records % progress_interval == 0:
                            elapsed = time.time() - start_time
                            logger.info(
                                "%s records | %s rec/sec | %s",
                                f"{total_records:,}",
                                f"{total_records / elapsed:,.0f}" if elapsed > 0 else "-",
                                filepath
                            )
            except (OSError, UnicodeDecodeError) as e:
                # records read before the error stay queued
                logger.warning("error processing %s: %s", filepath, e)
                total_errors += 1
                continue

            files_processed += 1

    elapsed = time.time() - start_time
    return {
        "total_records": total_records,
        "total_errors": total_errors,
        "elapsed_seconds": elapsed,
        "rate_per_second": total_records / elapsed if elapsed > 0 else 0,
        "files_processed": files_processed
    }
