"""Upsert-capable collection store.

Provides multiple backends selectable via STORE_BACKEND env var:
- postgres (default): raw SQL over psycopg2, INSERT ... ON CONFLICT DO UPDATE
- memory: process-local dicts (for dev/tests)

Upserts only overwrite the columns present in the rows, so a partial row
(e.g. a chat id plus a new display name) leaves the other columns alone.
"""

import asyncio
import copy
import os
from typing import Any, Protocol, Sequence

import psycopg2
from psycopg2 import sql
from psycopg2.extras import Json, execute_values

from wabridge.infra.db import txn

STORE_BACKEND = os.environ.get("STORE_BACKEND", "postgres")

SESSION_STATUS = "session_status"
CHATS = "chats"
MESSAGES = "messages"

COLLECTIONS: dict[str, tuple[str, ...]] = {
    SESSION_STATUS: ("id", "status", "identity", "qr_code", "updated_at"),
    CHATS: ("id", "display_name", "unread_count", "is_archived", "last_activity"),
    MESSAGES: (
        "id",
        "chat_id",
        "sender_id",
        "content",
        "timestamp",
        "from_me",
        "type",
        "has_media",
        "media_meta",
        "ack",
    ),
}

_JSON_COLUMNS = frozenset({"media_meta"})

# Column defaults for rows first created by a partial upsert
_DEFAULTS: dict[str, dict[str, Any]] = {
    CHATS: {"display_name": None, "unread_count": 0, "is_archived": False, "last_activity": 0},
}

_GROUP_PATTERN = "%@g.us"


class StoreError(Exception):
    """Raised when the backing store rejects a read or write."""

    pass


class UnknownCollectionError(ValueError):
    """Raised for a collection or column outside the schema."""

    pass


def validate_rows(collection: str, rows: Sequence[dict[str, Any]], on_conflict: str) -> tuple[str, ...]:
    """Check rows against the schema and return their shared column list.

    Raises:
        UnknownCollectionError: Unknown collection, column or conflict key.
        ValueError: Rows with differing column sets or a missing key.
    """
    allowed = COLLECTIONS.get(collection)
    if allowed is None:
        raise UnknownCollectionError(f"unknown collection: {collection}")
    if on_conflict not in allowed:
        raise UnknownCollectionError(f"unknown conflict key {on_conflict!r} for {collection}")

    columns = tuple(c for c in allowed if c in rows[0])
    for row in rows:
        unknown = set(row) - set(allowed)
        if unknown:
            raise UnknownCollectionError(f"unknown columns for {collection}: {sorted(unknown)}")
        if set(row) != set(columns):
            raise ValueError(f"rows for {collection} must share the same columns")
        if row.get(on_conflict) is None:
            raise ValueError(f"row for {collection} missing conflict key {on_conflict!r}")
    return columns


def dedupe_rows(rows: Sequence[dict[str, Any]], on_conflict: str) -> list[dict[str, Any]]:
    """Collapse rows sharing a key, last one wins, first-seen order kept."""
    by_key: dict[Any, dict[str, Any]] = {}
    for row in rows:
        by_key[row[on_conflict]] = row
    return list(by_key.values())


class UpsertStore(Protocol):
    """Store surface used by the sync core and the read routes."""

    async def upsert(
        self, collection: str, rows: Sequence[dict[str, Any]], on_conflict: str = "id"
    ) -> None:
        ...

    async def get_session_status(self) -> dict[str, Any] | None:
        ...

    async def list_chats(self, limit: int, offset: int) -> tuple[list[dict[str, Any]], int]:
        ...

    async def list_messages(
        self, chat_id: str, limit: int, offset: int
    ) -> tuple[list[dict[str, Any]], int]:
        ...

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        ...


class InMemoryStore:
    """Dict-backed store with the same upsert semantics as Postgres."""

    def __init__(self) -> None:
        self.collections: dict[str, dict[Any, dict[str, Any]]] = {
            name: {} for name in COLLECTIONS
        }
        self.upsert_calls: list[tuple[str, int]] = []

    async def upsert(
        self, collection: str, rows: Sequence[dict[str, Any]], on_conflict: str = "id"
    ) -> None:
        if not rows:
            return
        validate_rows(collection, rows, on_conflict)
        self.upsert_calls.append((collection, len(rows)))
        table = self.collections[collection]
        for row in dedupe_rows(rows, on_conflict):
            key = row[on_conflict]
            merged = table.get(key) or dict(_DEFAULTS.get(collection, {}))
            merged.update(copy.deepcopy(row))
            table[key] = merged

    async def get_session_status(self) -> dict[str, Any] | None:
        row = self.collections[SESSION_STATUS].get(1)
        return dict(row) if row else None

    async def list_chats(self, limit: int, offset: int) -> tuple[list[dict[str, Any]], int]:
        visible = [
            c
            for c in self.collections[CHATS].values()
            if not c.get("is_archived") and not str(c["id"]).endswith("@g.us")
        ]
        visible.sort(key=lambda c: c.get("last_activity") or 0, reverse=True)
        return [dict(c) for c in visible[offset:offset + limit]], len(visible)

    async def list_messages(
        self, chat_id: str, limit: int, offset: int
    ) -> tuple[list[dict[str, Any]], int]:
        in_chat = [m for m in self.collections[MESSAGES].values() if m["chat_id"] == chat_id]
        in_chat.sort(key=lambda m: m["timestamp"], reverse=True)
        return [dict(m) for m in in_chat[offset:offset + limit]], len(in_chat)

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        row = self.collections[MESSAGES].get(message_id)
        return dict(row) if row else None


class PostgresStore:
    """Postgres backend. Each call runs in a worker thread on its own connection."""

    async def upsert(
        self, collection: str, rows: Sequence[dict[str, Any]], on_conflict: str = "id"
    ) -> None:
        if not rows:
            return
        columns = validate_rows(collection, rows, on_conflict)
        await asyncio.to_thread(
            self._upsert_sync, collection, columns, dedupe_rows(rows, on_conflict), on_conflict
        )

    def _upsert_sync(
        self,
        collection: str,
        columns: tuple[str, ...],
        rows: list[dict[str, Any]],
        on_conflict: str,
    ) -> None:
        updates = [c for c in columns if c != on_conflict]
        if updates:
            conflict_action = sql.SQL("DO UPDATE SET {}").format(
                sql.SQL(", ").join(
                    sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(c))
                    for c in updates
                )
            )
        else:
            conflict_action = sql.SQL("DO NOTHING")

        query = sql.SQL("INSERT INTO {table} ({cols}) VALUES %s ON CONFLICT ({key}) {action}").format(
            table=sql.Identifier(collection),
            cols=sql.SQL(", ").join(sql.Identifier(c) for c in columns),
            key=sql.Identifier(on_conflict),
            action=conflict_action,
        )
        values = [
            tuple(Json(row[c]) if c in _JSON_COLUMNS and row[c] is not None else row[c] for c in columns)
            for row in rows
        ]

        try:
            with txn() as cur:
                execute_values(cur, query.as_string(cur), values)
        except psycopg2.Error as exc:
            raise StoreError(f"upsert into {collection} failed: {exc}") from exc

    def _fetch(self, query: str, params: Sequence[Any]) -> list[dict[str, Any]]:
        try:
            with txn(dict_rows=True) as cur:
                cur.execute(query, params)
                return [dict(r) for r in cur.fetchall()]
        except psycopg2.Error as exc:
            raise StoreError(f"query failed: {exc}") from exc

    async def get_session_status(self) -> dict[str, Any] | None:
        rows = await asyncio.to_thread(
            self._fetch,
            "SELECT id, status, identity, qr_code, updated_at FROM session_status WHERE id = %s",
            (1,),
        )
        return rows[0] if rows else None

    async def list_chats(self, limit: int, offset: int) -> tuple[list[dict[str, Any]], int]:
        rows = await asyncio.to_thread(
            self._fetch,
            """
            SELECT id, display_name, unread_count, is_archived, last_activity,
                   COUNT(*) OVER () AS total
            FROM chats
            WHERE is_archived = false AND id NOT LIKE %s
            ORDER BY last_activity DESC
            LIMIT %s OFFSET %s
            """,
            (_GROUP_PATTERN, limit, offset),
        )
        return _split_total(rows)

    async def list_messages(
        self, chat_id: str, limit: int, offset: int
    ) -> tuple[list[dict[str, Any]], int]:
        rows = await asyncio.to_thread(
            self._fetch,
            """
            SELECT id, chat_id, sender_id, content, "timestamp", from_me, "type",
                   has_media, media_meta, ack,
                   COUNT(*) OVER () AS total
            FROM messages
            WHERE chat_id = %s
            ORDER BY "timestamp" DESC
            LIMIT %s OFFSET %s
            """,
            (chat_id, limit, offset),
        )
        return _split_total(rows)

    async def get_message(self, message_id: str) -> dict[str, Any] | None:
        rows = await asyncio.to_thread(
            self._fetch,
            """
            SELECT id, chat_id, sender_id, content, "timestamp", from_me, "type",
                   has_media, media_meta, ack
            FROM messages WHERE id = %s
            """,
            (message_id,),
        )
        return rows[0] if rows else None


def _split_total(rows: list[dict[str, Any]]) -> tuple[list[dict[str, Any]], int]:
    # COUNT(*) OVER () is absent when the page is past the end
    total = int(rows[0]["total"]) if rows else 0
    for row in rows:
        row.pop("total", None)
    return rows, total


def create_store(backend: str | None = None) -> UpsertStore:
    """Build the store named by STORE_BACKEND.

    Raises:
        ValueError: If the backend is unknown.
    """
    backend = backend or STORE_BACKEND
    if backend == "postgres":
        return PostgresStore()
    if backend == "memory":
        return InMemoryStore()
    raise ValueError(f"Unknown STORE_BACKEND: {backend}")
