"""
esrepository CLI — Command-Line Interface
=========================================

Command-line access to a single index through IndexRepository.

Usage:
    python -m esrepository create-index articles --shards 1
    python -m esrepository put articles 1 '{"title": "hello"}'
    python -m esrepository get articles 1
    python -m esrepository update articles 1 title=bye views=3
    python -m esrepository delete articles 1
    python -m esrepository count articles
    python -m esrepository load articles "data/*.jsonl" --bulk-size 500
    python -m esrepository delete-index articles -f

Connection settings default to the ESREPO_* environment variables;
--hosts and --api-key override them.
"""

import argparse
import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from .bulk import DEFAULT_BULK_SIZE
from .codec import dumps
from .config import ClientSettings, create_client
from .errors import DocumentNotFoundError, RepositoryError
from .loader import load_jsonl
from .repository import IndexRepository
from .updater import DEFAULT_UPDATE_TRIES


def get_settings(args) -> ClientSettings:
    """Environment settings with command-line overrides."""
    settings = ClientSettings.from_env()
    if args.hosts:
        settings.hosts = args.hosts.split(",")
    if args.api_key:
        settings.api_key = args.api_key
    return settings


def open_repository(args) -> IndexRepository:
    return IndexRepository(create_client(get_settings(args)), args.index)


def parse_assignments(pairs: List[str]) -> Dict[str, Any]:
    """
    Parse key=value pairs; values are read as JSON when possible.

    Example:
        parse_assignments(["title=bye", "views=3"])  # {"title": "bye", "views": 3}
    """
    fields: Dict[str, Any] = {}
    for pair in pairs:
        key, sep, raw = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"expected key=value, got {pair!r}")
        try:
            fields[key] = json.loads(raw)
        except json.JSONDecodeError:
            fields[key] = raw
    return fields


async def cmd_create_index(args):
    """Create an index."""
    async with open_repository(args) as repo:
        await repo.create_index(body={
            "settings": {
                "number_of_shards": args.shards,
                "number_of_replicas": args.replicas
            },
            "mappings": dict(IndexRepository.DEFAULT_MAPPING)
        })

    print(f"Created index: {args.index}")
    print(f"  Shards: {args.shards}")
    print(f"  Replicas: {args.replicas}")


async def cmd_delete_index(args):
    """Delete an index."""
    if not args.force:
        confirm = input(f"Delete index '{args.index}'? [y/N] ")
        if confirm.lower() != 'y':
            print("Aborted.")
            return

    async with open_repository(args) as repo:
        deleted = await repo.delete_index()

    if deleted:
        print(f"Deleted index: {args.index}")
    else:
        print(f"Index not found: {args.index}")


async def cmd_get(args):
    """Print a document and its version."""
    async with open_repository(args) as repo:
        document = await repo.get_with_version(args.id)

    if document is None:
        raise DocumentNotFoundError(args.id)

    print(dumps(document.value, pretty=True))
    print(f"seq_no={document.version.seq_no} primary_term={document.version.primary_term}")


async def cmd_put(args):
    """Index a document from a JSON string."""
    body = json.loads(args.document)
    async with open_repository(args) as repo:
        token = await repo.index(args.id, body, create=args.create)
    print(f"Indexed {args.id} (seq_no={token.seq_no} primary_term={token.primary_term})")


async def cmd_update(args):
    """Set fields on a document with an optimistic update."""
    fields = parse_assignments(args.fields)

    def apply(doc: Dict[str, Any]) -> Dict[str, Any]:
        return {**doc, **fields}

    async with open_repository(args) as repo:
        token = await repo.update(args.id, apply, max_tries=args.tries)
    print(f"Updated {args.id} (seq_no={token.seq_no} primary_term={token.primary_term})")


async def cmd_delete(args):
    """Delete a document."""
    async with open_repository(args) as repo:
        deleted = await repo.delete(args.id)
    print(f"Deleted {args.id}" if deleted else f"Not found: {args.id}")


async def cmd_count(args):
    """Count documents."""
    query = json.loads(args.query) if args.query else None
    async with open_repository(args) as repo:
        count = await repo.count(query)
    print(f"{count:,}")


async def cmd_load(args):
    """Load JSONL files."""
    async with open_repository(args) as repo:
        stats = await load_jsonl(
            repo,
            args.patterns,
            id_field=args.id_field,
            bulk_size=args.bulk_size
        )

    print()
    print("=" * 60)
    print("LOAD COMPLETE")
    print("=" * 60)
    print(f"Total records: {stats['total_records']:,}")
    print(f"Total errors: {stats['total_errors']:,}")
    print(f"Time elapsed: {stats['elapsed_seconds']:.1f} seconds")
    print(f"Average rate: {stats['rate_per_second']:,.0f} records/second")
    print(f"Files processed: {stats['files_processed']}")
    print("=" * 60)


COMMANDS = {
    "create-index": cmd_create_index,
    "delete-index": cmd_delete_index,
    "get": cmd_get,
    "put": cmd_put,
    "update": cmd_update,
    "delete": cmd_delete,
    "count": cmd_count,
    "load": cmd_load,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="esrepository",
        description="esrepository — typed async Elasticsearch index repository"
    )

    # Global options
    parser.add_argument(
        "--hosts",
        help="Elasticsearch hosts (comma-separated)",
        default=None
    )
    parser.add_argument(
        "--api-key",
        dest="api_key",
        help="Elasticsearch API key",
        default=None
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    create_parser = subparsers.add_parser("create-index", help="Create an index")
    create_parser.add_argument("index", help="Index name")
    create_parser.add_argument("--shards", type=int, default=1, help="Primary shards")
    create_parser.add_argument("--replicas", type=int, default=1, help="Replica shards")

    delete_index_parser = subparsers.add_parser("delete-index", help="Delete an index")
    delete_index_parser.add_argument("index", help="Index name")
    delete_index_parser.add_argument("-f", "--force", action="store_true", help="Skip confirmation")

    get_parser = subparsers.add_parser("get", help="Show a document")
    get_parser.add_argument("index", help="Index name")
    get_parser.add_argument("id", help="Document id")

    put_parser = subparsers.add_parser("put", help="Index a document")
    put_parser.add_argument("index", help="Index name")
    put_parser.add_argument("id", help="Document id")
    put_parser.add_argument("document", help="Document as JSON")
    put_parser.add_argument("--create", action="store_true", help="Fail if the id exists")

    update_parser = subparsers.add_parser("update", help="Set fields on a document")
    update_parser.add_argument("index", help="Index name")
    update_parser.add_argument("id", help="Document id")
    update_parser.add_argument("fields", nargs="+", help="key=value pairs")
    update_parser.add_argument(
        "--tries", type=int, default=DEFAULT_UPDATE_TRIES, help="Retries on version conflict"
    )

    delete_parser = subparsers.add_parser("delete", help="Delete a document")
    delete_parser.add_argument("index", help="Index name")
    delete_parser.add_argument("id", help="Document id")

    count_parser = subparsers.add_parser("count", help="Count documents")
    count_parser.add_argument("index", help="Index name")
    count_parser.add_argument("--query", help="Query clause as JSON")

    load_parser = subparsers.add_parser("load", help="Load JSONL files")
    load_parser.add_argument("index", help="Index name")
    load_parser.add_argument("patterns", nargs="+", help="Files or glob patterns")
    load_parser.add_argument("--id-field", default="id", help="Field holding the document id")
    load_parser.add_argument("--bulk-size", type=int, default=DEFAULT_BULK_SIZE, help="Batch size")

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s"
    )

    command = COMMANDS.get(args.command)
    if command is None:
        parser.print_help()
        return 0

    try:
        asyncio.run(command(args))
    except DocumentNotFoundError as e:
        print(f"Error: not found: {e.key}")
        return 1
    except (RepositoryError, ValueError) as e:
        print(f"Error: {e}")
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
