"""
esrepository Repository — Typed Async Index Repository
======================================================

One IndexRepository per index. It maps model objects to documents through
a ModelCodec and exposes:

    - CRUD with optimistic concurrency (seq_no / primary_term)
    - update(): read-modify-write with conflict retries
    - bulk(): batched writes through a BulkSession
    - index management (create, delete, aliases, refresh)
    - pass-through search and count, plus scrolling over large result sets

Reads can go through a separate alias from writes, which allows reindexing
behind aliases. Optimistic updates always read through the write alias so
the version token matches the index being written.

Example:
    client = create_client(ClientSettings(hosts=["http://localhost:9200"]))
    articles = IndexRepository(client, "articles", codec=DataclassCodec(Article))

    await articles.index("1", Article(title="hello"))
    await articles.update("1", lambda a: replace(a, title="bye"))

    async with articles.bulk(bulk_size=500) as session:
        for a in batch:
            await session.index(a.id, a)
"""

from typing import Any, AsyncIterator, Dict, List, Optional, Sequence, Set

from elasticsearch import AsyncElasticsearch, ConflictError, NotFoundError

from .bulk import DEFAULT_BULK_SIZE, BulkSession, ItemCallback
from .codec import DictCodec, ModelCodec
from .errors import (
    DocumentNotFoundError,
    RefreshNotAllowedError,
    RepositoryError,
    VersionConflictError,
)
from .store import (
    BulkOperation,
    ItemResult,
    OperationKind,
    UpdateFunction,
    VersionedDocument,
    VersionToken,
)
from .updater import DEFAULT_UPDATE_TRIES, update_document

DEFAULT_SCROLL_SIZE = 500


class IndexRepository:
    """
    Repository for the documents of a single Elasticsearch index.

    Implements the VersionedStore contract, so the update coordinator and
    bulk sessions run directly against it.
    """

    # Used by create_index() when no body is given
    DEFAULT_SETTINGS = {
        "number_of_shards": 1,
        "number_of_replicas": 1
    }

    DEFAULT_MAPPING = {
        "dynamic": True
    }

    def __init__(
        self,
        client: AsyncElasticsearch,
        index_name: str,
        codec: Optional[ModelCodec] = None,
        refresh_allowed: bool = False,
        index_write_alias: Optional[str] = None,
        index_read_alias: Optional[str] = None,
        source_includes: Optional[Sequence[str]] = None
    ):
        """
        Create a repository for an index.

        Args:
            client: AsyncElasticsearch client (see config.create_client)
            index_name: Name of the index
            codec: Model serialization (default: plain dicts)
            refresh_allowed: Permit refresh(); meant for tests
            index_write_alias: Alias used for writes (default: index_name)
            index_read_alias: Alias used for reads (default: write alias)
            source_includes: Restrict _source fields returned by get and search
        """
        self.client = client
        self.index_name = index_name
        self.codec = codec or DictCodec()
        self.refresh_allowed = refresh_allowed
        self.index_write_alias = index_write_alias or index_name
        self.index_read_alias = index_read_alias or self.index_write_alias
        self.source_includes = list(source_includes) if source_includes else None

    # ------------------------------------------------------------------
    # Index management
    # ------------------------------------------------------------------

    async def create_index(
        self,
        body: Optional[Dict[str, Any]] = None,
        wait_for_active_shards: Optional[str] = None
    ) -> None:
        """
        Create the index.

        Args:
            body: {"settings": ..., "mappings": ..., "aliases": ...};
                defaults to DEFAULT_SETTINGS and DEFAULT_MAPPING
            wait_for_active_shards: e.g. "1" or "all"
        """
        if body is None:
            body = {
                "settings": dict(self.DEFAULT_SETTINGS),
                "mappings": dict(self.DEFAULT_MAPPING)
            }

        kwargs: Dict[str, Any] = {"index": self.index_name}
        for key in ("settings", "mappings", "aliases"):
            if key in body:
                kwargs[key] = body[key]
        if wait_for_active_shards is not None:
            kwargs["wait_for_active_shards"] = wait_for_active_shards

        await self.client.indices.create(**kwargs)

    async def delete_index(self) -> bool:
        """Delete the index. Returns False if it did not exist."""
        try:
            await self.client.indices.delete(index=self.index_name)
        except NotFoundError:
            return False
        return True

    async def current_aliases(self) -> Set[str]:
        """Names of the aliases currently pointing at the index."""
        try:
            response = await self.client.indices.get_alias(index=self.index_name)
        except NotFoundError as exc:
            raise RepositoryError(f"index {self.index_name} does not exist") from exc
        return set(response[self.index_name]["aliases"].keys())

    async def refresh(self) -> None:
        """
        Refresh the index so recent writes become searchable.

        Not safe for production traffic; repositories must opt in with
        refresh_allowed=True.
        """
        if not self.refresh_allowed:
            raise RefreshNotAllowedError(
                "refresh is not allowed; you need to opt in by setting refresh_allowed to True"
            )
        await self.client.indices.refresh(index=self.index_name)

    # ------------------------------------------------------------------
    # Documents
    # ------------------------------------------------------------------

    async def index(
        self,
        id: str,
        obj: Any,
        create: bool = True,
        version: Optional[VersionToken] = None
    ) -> VersionToken:
        """
        Index a document.

        With create=True (default) this fails if the id exists; set it to
        False for upserts. Passing a version makes the write conditional on
        it; prefer update() which handles reading and retrying for you.

        Raises:
            VersionConflictError: on an existing id with create=True, or a stale version
        """
        return await self.conditional_write(id, obj, version=version, create=create)

    async def conditional_write(
        self,
        key: str,
        value: Any,
        version: Optional[VersionToken] = None,
        create: bool = False
    ) -> VersionToken:
        kwargs: Dict[str, Any] = {
            "index": self.index_write_alias,
            "id": key,
            "document": self.codec.to_document(value),
            "op_type": "create" if create and version is None else "index"
        }
        if version is not None:
            kwargs["if_seq_no"] = version.seq_no
            kwargs["if_primary_term"] = version.primary_term

        try:
            response = await self.client.index(**kwargs)
        except ConflictError as exc:
            raise VersionConflictError(key, str(exc)) from exc
        return VersionToken(response["_seq_no"], response["_primary_term"])

    async def read_with_version(self, key: str) -> VersionedDocument:
        document = await self._get(key, self.index_write_alias, source_includes=None)
        if document is None:
            raise DocumentNotFoundError(key)
        return document

    async def get(self, id: str) -> Optional[Any]:
        """Return the document for `id`, or None if it does not exist."""
        document = await self.get_with_version(id)
        return document.value if document else None

    async def get_with_version(self, id: str) -> Optional[VersionedDocument]:
        """Return the document for `id` with its version token, or None."""
        return await self._get(id, self.index_read_alias, self.source_includes)

    async def _get(
        self,
        id: str,
        index: str,
        source_includes: Optional[List[str]]
    ) -> Optional[VersionedDocument]:
        kwargs: Dict[str, Any] = {"index": index, "id": id}
        if source_includes:
            kwargs["source_includes"] = source_includes
        try:
            response = await self.client.get(**kwargs)
        except NotFoundError:
            return None
        return VersionedDocument(
            self.codec.from_document(response["_source"]),
            VersionToken(response["_seq_no"], response["_primary_term"])
        )

    async def update(
        self,
        id: str,
        update_function: UpdateFunction,
        max_tries: int = DEFAULT_UPDATE_TRIES
    ) -> VersionToken:
        """
        Update a document by applying `update_function` to its current value.

        Version conflicts from concurrent updates are retried from a fresh
        read, up to max_tries times.
        """
        return await update_document(self, id, update_function, max_tries=max_tries)

    async def delete(self, id: str) -> bool:
        """Delete a document. Returns False if it did not exist."""
        try:
            await self.client.delete(index=self.index_write_alias, id=id)
        except NotFoundError:
            return False
        return True

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    def bulk(
        self,
        bulk_size: int = DEFAULT_BULK_SIZE,
        retry_conflicting_updates: int = 0,
        refresh: Optional[str] = "wait_for",
        item_callback: Optional[ItemCallback] = None
    ) -> BulkSession:
        """
        Open a bulk session on this repository.

        Use it as an async context manager; leaving the block flushes what
        is left. See BulkSession for the parameters.
        """
        return BulkSession(
            self,
            bulk_size=bulk_size,
            retry_conflicting_updates=retry_conflicting_updates,
            refresh=refresh,
            item_callback=item_callback
        )

    async def submit_batch(
        self,
        operations: List[BulkOperation],
        refresh: Optional[str] = None
    ) -> List[ItemResult]:
        lines: List[Dict[str, Any]] = []
        for op in operations:
            lines.extend(self._bulk_lines(op))

        kwargs: Dict[str, Any] = {"operations": lines}
        if refresh is not None:
            kwargs["refresh"] = refresh

        response = await self.client.bulk(**kwargs)
        return [_item_result(item) for item in response["items"]]

    def _bulk_lines(self, op: BulkOperation) -> List[Dict[str, Any]]:
        meta: Dict[str, Any] = {"_index": self.index_write_alias, "_id": op.id}

        if op.kind is OperationKind.DELETE:
            return [{"delete": meta}]

        if op.version is not None:
            meta["if_seq_no"] = op.version.seq_no
            meta["if_primary_term"] = op.version.primary_term

        action = "create" if op.kind is OperationKind.CREATE else "index"
        return [{action: meta}, self.codec.to_document(op.value)]

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    async def search(
        self,
        query: Optional[Dict[str, Any]] = None,
        size: Optional[int] = None,
        **kwargs: Any
    ) -> List[Any]:
        """
        Run a search on the read alias and return the decoded hits.

        Args:
            query: Query DSL clause (default: match_all)
            size: Maximum hits
            **kwargs: Passed through to AsyncElasticsearch.search
        """
        params: Dict[str, Any] = {"index": self.index_read_alias}
        if query is not None:
            params["query"] = query
        if size is not None:
            params["size"] = size
        if self.source_includes and "source_includes" not in kwargs:
            params["source_includes"] = self.source_includes
        params.update(kwargs)

        response = await self.client.search(**params)
        return [
            self.codec.from_document(hit["_source"])
            for hit in response["hits"]["hits"]
        ]

    async def scroll(
        self,
        query: Optional[Dict[str, Any]] = None,
        batch_size: int = DEFAULT_SCROLL_SIZE,
        scroll_ttl_minutes: int = 1,
        **kwargs: Any
    ) -> "ScrollResults":
        """
        Start a scrolling search on the read alias.

        The first page is fetched now, so `total` is available right away;
        iterating the result walks every page and clears the scroll context
        when done.

        Example:
            results = await articles.scroll({"term": {"tag": "news"}})
            print(results.total)
            async for article in results:
                ...

        Args:
            query: Query DSL clause (default: match_all)
            batch_size: Hits per page
            scroll_ttl_minutes: How long the server keeps the context between pages
            **kwargs: Passed through to AsyncElasticsearch.search
        """
        ttl = f"{scroll_ttl_minutes}m"
        params: Dict[str, Any] = {
            "index": self.index_read_alias,
            "scroll": ttl,
            "size": batch_size,
            "query": query if query is not None else {"match_all": {}}
        }
        if self.source_includes and "source_includes" not in kwargs:
            params["source_includes"] = self.source_includes
        params.update(kwargs)

        response = await self.client.search(**params)
        return ScrollResults(self.client, self.codec, response, ttl)

    async def count(self, query: Optional[Dict[str, Any]] = None) -> int:
        """Count documents, optionally matching a query clause."""
        if query is not None:
            response = await self.client.count(index=self.index_read_alias, query=query)
        else:
            response = await self.client.count(index=self.index_read_alias)
        return response["count"]

    async def close(self) -> None:
        """Close the Elasticsearch client connection."""
        await self.client.close()

    async def __aenter__(self) -> "IndexRepository":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()


class ScrollResults:
    """
    Decoded hits of a scrolling search, fetched page by page.

    Can be iterated once; the scroll context is cleared when iteration
    ends, including when the consumer stops early and the iterator is closed.
    """

    def __init__(
        self,
        client: AsyncElasticsearch,
        codec: ModelCodec,
        response: Dict[str, Any],
        scroll_ttl: str
    ):
        self.client = client
        self.codec = codec
        self.scroll_ttl = scroll_ttl
        self.total = _total_hits(response)
        self._first = response
        self._consumed = False

    def __aiter__(self) -> AsyncIterator[Any]:
        if self._consumed:
            raise RepositoryError("scroll results can only be iterated once")
        self._consumed = True
        return self._pages()

    async def _pages(self) -> AsyncIterator[Any]:
        response = self._first
        scroll_id = response.get("_scroll_id")
        try:
            hits = response["hits"]["hits"]
            while hits:
                for hit in hits:
                    yield self.codec.from_document(hit["_source"])
                if scroll_id is None:
                    break
                response = await self.client.scroll(scroll_id=scroll_id, scroll=self.scroll_ttl)
                scroll_id = response.get("_scroll_id", scroll_id)
                hits = response["hits"]["hits"]
        finally:
            if scroll_id is not None:
                await self.client.clear_scroll(scroll_id=scroll_id)


def _total_hits(response: Dict[str, Any]) -> int:
    total = response["hits"].get("total", 0)
    # {"value": n, "relation": "eq"} on 7.x and later
    if isinstance(total, dict):
        return int(total.get("value", 0))
    return int(total)


def _item_result(item: Dict[str, Any]) -> ItemResult:
    op_type, body = next(iter(item.items()))
    error = body.get("error")
    if isinstance(error, dict):
        error = f"{error.get('type')}: {error.get('reason')}"
    return ItemResult(
        id=str(body.get("_id")),
        op_type=op_type,
        status=int(body.get("status", 0)),
        error=error
    )
