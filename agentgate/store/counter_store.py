"""
Retry-wrapped key-value store over SQLite.

Items are JSON documents grouped into collections. Each collection declares
a KeySchema; the partition and sort key values are lifted into indexed
columns while the full item is kept as JSON. Filters and conditions are
evaluated in Python against the decoded item.

Pagination follows key-value store conventions: `limit` bounds the number of
items *evaluated* (before filtering), and a cursor is returned whenever more
items remain, even if the current page came back empty after filtering.
"""
import base64
import binascii
import json
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, TypeVar

from .adapter import DatabaseAdapter, SQLiteAdapter, TransactionProtocol
from .errors import (
    ConditionalCheckFailedError,
    ItemNotFoundError,
    StoreValidationError,
)
from .models import (
    Condition,
    KeyCondition,
    KeySchema,
    Page,
    UpdateSpec,
    matches_all,
)
from .retry import StoreRetry

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS items (
    collection TEXT NOT NULL,
    pk TEXT NOT NULL,
    sk TEXT NOT NULL DEFAULT '',
    data TEXT NOT NULL,
    PRIMARY KEY (collection, pk, sk)
)
"""


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _json_path(attribute: str) -> str:
    return '$."' + attribute.replace('"', '\\"') + '"'


def _encode_cursor(payload: Dict[str, Any]) -> str:
    raw = json.dumps(payload, separators=(",", ":")).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii")


def _decode_cursor(cursor: str) -> Dict[str, Any]:
    try:
        payload = json.loads(base64.urlsafe_b64decode(cursor.encode("ascii")))
    except (binascii.Error, ValueError, UnicodeError) as e:
        raise StoreValidationError(f"Invalid cursor: {e}") from e
    if not isinstance(payload, dict) or "sk" not in payload:
        raise StoreValidationError("Invalid cursor: malformed payload")
    return payload


class CounterStore:
    """
    put/get/query/scan/update/delete over registered collections.

    Every operation runs inside one exclusive transaction and is wrapped by
    StoreRetry, so transient SQLite failures (busy database, I/O errors) are
    retried with exponential backoff while validation, not-found and
    condition failures surface immediately.

    Usage:
        store = CounterStore(SQLiteAdapter(":memory:"))
        store.register("usage_counters", KeySchema("subjectId", "windowKey"))
        await store.put("usage_counters", {"subjectId": "u1", "windowKey": "storage", "count": 0})
    """

    def __init__(
        self,
        adapter: DatabaseAdapter,
        retry: Optional[StoreRetry] = None,
    ):
        self._adapter = adapter
        self._retry = retry or StoreRetry()
        self._schemas: Dict[str, KeySchema] = {}
        self._initialized = False

    @classmethod
    def open(
        cls,
        db_path: str = ":memory:",
        max_attempts: int = 3,
        base_delay: float = 0.1,
    ) -> "CounterStore":
        """Build a store backed by SQLiteAdapter."""
        return cls(
            SQLiteAdapter(db_path),
            StoreRetry(max_attempts=max_attempts, base_delay=base_delay),
        )

    def register(self, collection: str, schema: KeySchema) -> None:
        """Declare the key schema of a collection."""
        existing = self._schemas.get(collection)
        if existing is not None and existing != schema:
            raise StoreValidationError(
                f"Collection '{collection}' already registered with a different schema"
            )
        self._schemas[collection] = schema
        logger.debug(f"Registered collection {collection}: {schema}")

    def schema(self, collection: str) -> KeySchema:
        try:
            return self._schemas[collection]
        except KeyError:
            raise StoreValidationError(f"Unknown collection: {collection}") from None

    async def close(self) -> None:
        await self._adapter.close()

    # ========================================================================
    # Operations
    # ========================================================================

    async def put(
        self,
        collection: str,
        item: Dict[str, Any],
        condition: Optional[Sequence[Condition]] = None,
    ) -> None:
        """
        Insert or replace an item.

        Args:
            collection: Target collection
            item: Full item including its key attributes
            condition: Optional guard evaluated against the existing item
                (an absent item is evaluated as {})

        Raises:
            ConditionalCheckFailedError: If the guard is false
        """
        schema = self.schema(collection)
        pk, sk = schema.key_values(item)
        data = self._dumps(item)

        async def op() -> None:
            async with self._transaction() as tx:
                if condition:
                    current = await self._load(tx, collection, pk, sk)
                    if not matches_all(condition, current or {}):
                        raise ConditionalCheckFailedError(
                            f"Condition failed for put on {collection} ({pk}, {sk})",
                            item=current,
                        )
                await tx.execute(
                    "INSERT OR REPLACE INTO items (collection, pk, sk, data) VALUES (?, ?, ?, ?)",
                    (collection, pk, sk, data),
                )

        await self._run(op, f"put {collection}")

    async def get(self, collection: str, key: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Return the item with the given key, or None."""
        pk, sk = self.schema(collection).key_values(key)

        async def op() -> Optional[Dict[str, Any]]:
            async with self._transaction() as tx:
                return await self._load(tx, collection, pk, sk)

        return await self._run(op, f"get {collection}")

    async def query(
        self,
        collection: str,
        key_condition: KeyCondition,
        filter: Optional[Sequence[Condition]] = None,
        limit: Optional[int] = None,
        index_hint: Optional[str] = None,
        sort_descending: bool = False,
        cursor: Optional[str] = None,
    ) -> Page:
        """
        Query one partition, optionally restricted to a sort-key prefix.

        Args:
            collection: Target collection
            key_condition: Partition value and optional sort-key prefix
            filter: Conditions applied to each evaluated item
            limit: Maximum number of items evaluated
            index_hint: Name of a KeySchema index to order by; items lacking
                the indexed attribute are not returned
            sort_descending: Reverse the sort order
            cursor: Continuation cursor from a previous page

        Returns:
            Page of matching items
        """
        schema = self.schema(collection)
        self._check_limit(limit)
        index_attr = None
        if index_hint is not None:
            index_attr = schema.indexes.get(index_hint)
            if index_attr is None:
                raise StoreValidationError(
                    f"Unknown index '{index_hint}' on collection '{collection}'"
                )

        sql = "SELECT pk, sk, data FROM items WHERE collection = ? AND pk = ?"
        params: List[Any] = [collection, str(key_condition.partition)]
        if key_condition.sort_prefix:
            sql += " AND substr(sk, 1, ?) = ?"
            params += [len(key_condition.sort_prefix), key_condition.sort_prefix]

        direction = "DESC" if sort_descending else "ASC"
        cmp = "<" if sort_descending else ">"
        after = _decode_cursor(cursor) if cursor else None

        if index_attr is not None:
            path = _json_path(index_attr)
            sql += " AND json_extract(data, ?) IS NOT NULL"
            params.append(path)
            if after is not None:
                sql += (
                    f" AND (json_extract(data, ?) {cmp} ?"
                    f" OR (json_extract(data, ?) = ? AND sk {cmp} ?))"
                )
                params += [path, after.get("idx"), path, after.get("idx"), after["sk"]]
            sql += f" ORDER BY json_extract(data, ?) {direction}, sk {direction}"
            params.append(path)
        else:
            if after is not None:
                sql += f" AND sk {cmp} ?"
                params.append(after["sk"])
            sql += f" ORDER BY sk {direction}"

        def cursor_for(row: Dict[str, Any], item: Dict[str, Any]) -> str:
            payload = {"pk": row["pk"], "sk": row["sk"]}
            if index_attr is not None:
                payload["idx"] = item.get(index_attr)
            return _encode_cursor(payload)

        return await self._run(
            lambda: self._page(sql, params, filter, limit, cursor_for),
            f"query {collection}",
        )

    async def scan(
        self,
        collection: str,
        filter: Optional[Sequence[Condition]] = None,
        limit: Optional[int] = None,
        cursor: Optional[str] = None,
    ) -> Page:
        """Scan a whole collection in key order."""
        self.schema(collection)
        self._check_limit(limit)

        sql = "SELECT pk, sk, data FROM items WHERE collection = ?"
        params: List[Any] = [collection]
        if cursor:
            after = _decode_cursor(cursor)
            sql += " AND (pk > ? OR (pk = ? AND sk > ?))"
            params += [after.get("pk"), after.get("pk"), after["sk"]]
        sql += " ORDER BY pk ASC, sk ASC"

        def cursor_for(row: Dict[str, Any], item: Dict[str, Any]) -> str:
            return _encode_cursor({"pk": row["pk"], "sk": row["sk"]})

        return await self._run(
            lambda: self._page(sql, params, filter, limit, cursor_for),
            f"scan {collection}",
        )

    async def update(
        self,
        collection: str,
        key: Dict[str, Any],
        spec: UpdateSpec,
    ) -> Dict[str, Any]:
        """
        Apply an UpdateSpec atomically and return the updated item.

        The read, condition evaluation and write happen inside one
        BEGIN IMMEDIATE transaction, so `add` guarded by a `le` condition
        is an atomic "increment if the result stays within the limit". A `reset`
        applied in the same transaction lets a window restart and its first
        increment happen together.

        Raises:
            ConditionalCheckFailedError: If spec.condition is false
            ItemNotFoundError: If the item is absent and create_if_missing is False
            StoreValidationError: If the spec touches key attributes or adds
                to a non-numeric attribute
        """
        schema = self.schema(collection)
        pk, sk = schema.key_values(key)
        key_attrs = {schema.partition_key}
        if schema.sort_key:
            key_attrs.add(schema.sort_key)

        touched = set(spec.set) | set(spec.add) | set(spec.floor) | set(spec.reset)
        if touched & key_attrs:
            raise StoreValidationError(
                f"Cannot update key attributes: {sorted(touched & key_attrs)}"
            )
        for attr, delta in spec.add.items():
            if not _is_number(delta):
                raise StoreValidationError(f"Increment for '{attr}' must be numeric")
        self._dumps(spec.set)
        self._dumps(spec.reset)

        async def op() -> Dict[str, Any]:
            async with self._transaction() as tx:
                current = await self._load(tx, collection, pk, sk)
                if current is None and not spec.create_if_missing:
                    raise ItemNotFoundError(f"No item in {collection} for ({pk}, {sk})")

                base = dict(current) if current is not None else {}
                if spec.resets(current):
                    base.update(spec.reset)
                view = {attr: 0 for attr in spec.add if attr not in base}
                view.update(base)
                if not matches_all(spec.condition, view):
                    raise ConditionalCheckFailedError(
                        f"Condition failed for update on {collection} ({pk}, {sk})",
                        item=base or current,
                    )

                updated = dict(base)
                updated.update(spec.set)
                for attr, delta in spec.add.items():
                    value = updated.get(attr, 0)
                    if not _is_number(value):
                        raise StoreValidationError(
                            f"Cannot increment non-numeric attribute '{attr}'"
                        )
                    updated[attr] = value + delta
                for attr, minimum in spec.floor.items():
                    if _is_number(updated.get(attr)) and updated[attr] < minimum:
                        updated[attr] = minimum
                updated.update(schema.key_of(key))

                await tx.execute(
                    "INSERT OR REPLACE INTO items (collection, pk, sk, data) VALUES (?, ?, ?, ?)",
                    (collection, pk, sk, self._dumps(updated)),
                )
                return updated

        return await self._run(op, f"update {collection}")

    async def delete(self, collection: str, key: Dict[str, Any]) -> None:
        """Delete an item. Deleting an absent item is a no-op."""
        pk, sk = self.schema(collection).key_values(key)

        async def op() -> None:
            async with self._transaction() as tx:
                await tx.execute(
                    "DELETE FROM items WHERE collection = ? AND pk = ? AND sk = ?",
                    (collection, pk, sk),
                )

        await self._run(op, f"delete {collection}")

    # ========================================================================
    # Internals
    # ========================================================================

    async def _run(self, operation: Callable[[], Awaitable[T]], description: str) -> T:
        return await self._retry.execute(operation, description)

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[TransactionProtocol]:
        fresh = not self._initialized
        async with self._adapter.exclusive_transaction() as tx:
            if fresh:
                await tx.execute(SCHEMA_SQL)
            yield tx
        if fresh:
            self._initialized = True

    async def _page(
        self,
        sql: str,
        params: List[Any],
        filter: Optional[Sequence[Condition]],
        limit: Optional[int],
        cursor_for: Callable[[Dict[str, Any], Dict[str, Any]], str],
    ) -> Page:
        query = sql
        query_params = list(params)
        if limit is not None:
            query += " LIMIT ?"
            query_params.append(limit + 1)

        async with self._transaction() as tx:
            rows = await tx.fetch_all(query, tuple(query_params))

        has_more = limit is not None and len(rows) > limit
        evaluated = rows[:limit] if limit is not None else rows

        page = Page()
        last_item: Dict[str, Any] = {}
        for row in evaluated:
            last_item = json.loads(row["data"])
            if matches_all(filter, last_item):
                page.items.append(last_item)
        if has_more and evaluated:
            page.cursor = cursor_for(evaluated[-1], last_item)
        return page

    @staticmethod
    async def _load(
        tx: TransactionProtocol, collection: str, pk: str, sk: str
    ) -> Optional[Dict[str, Any]]:
        row = await tx.fetch_one(
            "SELECT data FROM items WHERE collection = ? AND pk = ? AND sk = ?",
            (collection, pk, sk),
        )
        if row is None:
            return None
        return json.loads(row["data"])

    @staticmethod
    def _dumps(item: Dict[str, Any]) -> str:
        try:
            return json.dumps(item, allow_nan=False)
        except (TypeError, ValueError) as e:
            raise StoreValidationError(f"Item is not JSON-serializable: {e}") from e

    @staticmethod
    def _check_limit(limit: Optional[int]) -> None:
        if limit is not None and limit < 1:
            raise StoreValidationError("limit must be a positive integer")
