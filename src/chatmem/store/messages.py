"""Append-only SQLite message log with token-budgeted LTM paging."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any

import aiosqlite
import structlog

from chatmem.events.bus import ChatMemEvent, EventBus
from chatmem.models.config import StoreConfig
from chatmem.models.message import (
    ClearResult,
    CountResult,
    IdRangeResult,
    LTMPage,
    Message,
    MessagesResult,
    RebuildResult,
    SaveResult,
    TokenTotalResult,
)
from chatmem.store.pool import open_connection

if TYPE_CHECKING:
    from chatmem.store.pool import StorePool

# ── Exceptions ─────────────────────────────────────────────────────────────────


class ChatMemStoreError(Exception):
    """Base class for store errors."""


class StoreNotReadyError(ChatMemStoreError):
    """Raised when the database could not be opened or migrated."""


_STORE_ERRORS = (aiosqlite.Error, ChatMemStoreError, OSError)

# ── SQL ────────────────────────────────────────────────────────────────────────

_FTS_SCHEMA = """
CREATE VIRTUAL TABLE IF NOT EXISTS messages_fts USING fts5(content, role);

CREATE TRIGGER IF NOT EXISTS messages_fts_insert AFTER INSERT ON messages BEGIN
    INSERT INTO messages_fts (rowid, content, role) VALUES (new.id, new.content, new.role);
END;

CREATE TRIGGER IF NOT EXISTS messages_fts_delete AFTER DELETE ON messages BEGIN
    DELETE FROM messages_fts WHERE rowid = old.id;
END;

CREATE TRIGGER IF NOT EXISTS messages_fts_update AFTER UPDATE ON messages BEGIN
    DELETE FROM messages_fts WHERE rowid = old.id;
    INSERT INTO messages_fts (rowid, content, role) VALUES (new.id, new.content, new.role);
END;
"""

# Qualifying LTM rows with their cumulative token position. Every LTM query
# must use this exact ordering or offsets from one call won't line up with
# the next.
_LTM_CUMULATIVE = """
    SELECT
        id, role, content, timestamp, session_id, is_summarization, token_count,
        SUM(token_count) OVER (
            ORDER BY timestamp ASC, id ASC
            ROWS BETWEEN UNBOUNDED PRECEDING AND CURRENT ROW
        ) AS cumulative_tokens
    FROM messages
    WHERE is_summarization = 0 AND token_count IS NOT NULL{filters}
"""

_MIGRATION_COLUMNS = (
    "ALTER TABLE messages ADD COLUMN is_summarization INTEGER NOT NULL DEFAULT 0",
    "ALTER TABLE messages ADD COLUMN token_count INTEGER",
    "ALTER TABLE messages ADD COLUMN session_id TEXT",
)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _fts_match_expression(query: str) -> str:
    """Quote each word as an FTS5 string so operators in user text stay literal."""
    return " ".join('"' + word.replace('"', '""') + '"' for word in query.split())


def _format_timestamp(value: str | datetime | None) -> str | None:
    """
    Normalize an explicit timestamp to the UTC ``YYYY-MM-DD HH:MM:SS`` form of
    ``CURRENT_TIMESTAMP``, so rows sort chronologically as text.

    Naive values are taken as UTC. Strings must be ISO 8601; anything else
    raises ``ValueError``.
    """
    if value is None:
        return None
    if isinstance(value, str):
        value = datetime.fromisoformat(value.strip())
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc)
    return value.strftime("%Y-%m-%d %H:%M:%S")


# ── MessageStore ───────────────────────────────────────────────────────────────


class MessageStore:
    """
    Append-only, SQLite-backed chat message log.

    Every public operation returns a result model whose ``success`` flag the
    caller must check; database errors are logged and reported, not raised.

    The store opens lazily: the first operation calls ``ensure_ready()``,
    which is idempotent and safe under concurrent first use. If opening
    fails the operation returns a failure result and the next call tries
    again.

    A secondary FTS5 index mirrors ``content`` and ``role`` through triggers.
    When the SQLite build has no FTS5 (or ``StoreConfig.enable_fts`` is off),
    full-text search falls back to a substring scan.

    Usage::

        store = MessageStore(StoreConfig(db_path="chat_memory.db"))
        saved = await store.save_message("user", "hello", token_count=2)
        page = await store.get_lt_messages_by_tokens(max_tokens=96_000)
        await store.close()
    """

    def __init__(
        self,
        config: StoreConfig,
        pool: StorePool | None = None,
        event_bus: EventBus | None = None,
    ) -> None:
        self._config = config
        self._db_path = str(Path(config.db_path).expanduser())
        self._pool = pool
        self._event_bus = event_bus
        self._conn: aiosqlite.Connection | None = None
        self._init_lock = asyncio.Lock()
        self._local_write_lock = asyncio.Lock()
        self._fts_available = False
        self._logger = structlog.get_logger("chatmem.store")

    @property
    def fts_available(self) -> bool:
        """True when the FTS5 index exists and is kept in sync by triggers."""
        return self._fts_available

    @property
    def is_ready(self) -> bool:
        return self._conn is not None

    # ── Lifecycle ──────────────────────────────────────────────────────────────

    async def ensure_ready(self) -> aiosqlite.Connection:
        """
        Open (or borrow) the connection and apply schema and migrations.

        Idempotent: later calls return the already-open connection.

        Raises:
            StoreNotReadyError: If the database cannot be opened or migrated.
        """
        if self._conn is not None:
            return self._conn

        async with self._init_lock:
            if self._conn is not None:
                return self._conn
            try:
                conn = await self._open()
                await self._apply_schema(conn)
            except (aiosqlite.Error, OSError) as exc:
                raise StoreNotReadyError(f"Could not initialize {self._db_path}: {exc}") from exc
            self._conn = conn
            self._logger.info(
                "store_initialized", db_path=self._db_path, fts=self._fts_available
            )
            return conn

    async def close(self) -> None:
        """
        Release the connection.

        Pool-managed connections stay open (the pool owns them); a private
        connection is closed.
        """
        if self._conn is None:
            return
        if self._pool is None:
            await self._conn.close()
        self._conn = None

    async def _open(self) -> aiosqlite.Connection:
        if self._pool is not None:
            return await self._pool.acquire(
                self._db_path,
                wal_mode=self._config.wal_mode,
                connection_timeout=self._config.connection_timeout,
            )
        return await open_connection(
            self._db_path,
            wal_mode=self._config.wal_mode,
            connection_timeout=self._config.connection_timeout,
        )

    async def _apply_schema(self, conn: aiosqlite.Connection) -> None:
        schema = (Path(__file__).parent / "schema.sql").read_text()
        await conn.executescript(schema)

        # Databases created before token accounting lack these columns.
        for ddl in _MIGRATION_COLUMNS:
            try:
                await conn.execute(ddl)
            except aiosqlite.OperationalError:
                pass  # duplicate column name
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_ltm ON messages (is_summarization, token_count)"
        )
        await conn.execute(
            "CREATE INDEX IF NOT EXISTS idx_messages_session ON messages (session_id)"
        )
        await conn.commit()

        await self._init_fts(conn)

    async def _init_fts(self, conn: aiosqlite.Connection) -> bool:
        if not self._config.enable_fts:
            self._fts_available = False
            self._logger.info("fts_disabled", db_path=self._db_path)
            return False
        try:
            await conn.executescript(_FTS_SCHEMA)
            await conn.commit()
        except aiosqlite.OperationalError as exc:
            self._fts_available = False
            self._logger.warning("fts_unavailable", error=str(exc))
            return False

        self._fts_available = True
        async with conn.execute("SELECT COUNT(*) FROM messages_fts") as cursor:
            fts_count = (await cursor.fetchone())[0]
        async with conn.execute("SELECT COUNT(*) FROM messages") as cursor:
            msg_count = (await cursor.fetchone())[0]
        if fts_count < msg_count:
            self._logger.info("fts_backfill", missing=msg_count - fts_count)
            await self._reindex(conn)
        return True

    async def _reindex(self, conn: aiosqlite.Connection) -> int:
        await conn.execute("DELETE FROM messages_fts")
        cursor = await conn.execute(
            "INSERT INTO messages_fts (rowid, content, role) SELECT id, content, role FROM messages"
        )
        await conn.commit()
        return cursor.rowcount

    def _write_lock(self) -> asyncio.Lock:
        if self._pool is not None:
            return self._pool.write_lock(self._db_path)
        return self._local_write_lock

    def _publish(self, event: ChatMemEvent, payload: dict[str, Any]) -> None:
        if self._event_bus is not None:
            self._event_bus.publish(event, payload)

    # ── Writes ─────────────────────────────────────────────────────────────────

    async def save_message(
        self,
        role: str,
        content: str,
        session_id: str | None = None,
        is_summarization: bool = False,
        token_count: int | None = None,
        timestamp: str | datetime | None = None,
    ) -> SaveResult:
        """
        Append one message to the log.

        Summarization messages are never persisted: the call returns
        ``success=False, skipped=True`` without touching the database.

        Args:
            role: ``"user"``, ``"assistant"`` or ``"system"``.
            content: Message text.
            session_id: Optional grouping key.
            is_summarization: Skip persistence when True.
            token_count: Token estimate. ``None`` keeps the row out of LTM paging.
            timestamp: Explicit insertion time (datetime or ISO 8601 string),
                stored as UTC; defaults to the database clock.

        Returns:
            ``SaveResult`` with the new row id on success.
        """
        if is_summarization:
            self._publish(
                ChatMemEvent.MESSAGE_SKIPPED,
                {"role": role, "reason": "summarization"},
            )
            return SaveResult(
                success=False,
                skipped=True,
                error="Summarization messages are not saved to LTM",
            )

        try:
            stamp = _format_timestamp(timestamp)
        except ValueError as exc:
            self._logger.error("save_message_failed", role=role, error=str(exc))
            return SaveResult(success=False, error=f"Invalid timestamp {timestamp!r}: {exc}")

        try:
            conn = await self.ensure_ready()
            async with self._write_lock():
                cursor = await conn.execute(
                    """
                    INSERT INTO messages
                        (role, content, timestamp, session_id, is_summarization, token_count)
                    VALUES (?, ?, COALESCE(?, CURRENT_TIMESTAMP), ?, 0, ?)
                    """,
                    (role, content, stamp, session_id, token_count),
                )
                await conn.commit()
                message_id = cursor.lastrowid
        except _STORE_ERRORS as exc:
            self._logger.error("save_message_failed", role=role, error=str(exc))
            return SaveResult(success=False, error=str(exc))

        self._logger.debug("message_saved", id=message_id, role=role, token_count=token_count)
        self._publish(
            ChatMemEvent.MESSAGE_SAVED,
            {"id": message_id, "role": role, "token_count": token_count},
        )
        return SaveResult(success=True, id=message_id)

    async def clear_messages(self) -> ClearResult:
        """Delete every message. Ids are never reused afterwards."""
        try:
            conn = await self.ensure_ready()
            async with self._write_lock():
                cursor = await conn.execute("DELETE FROM messages")
                await conn.commit()
                deleted = cursor.rowcount
        except _STORE_ERRORS as exc:
            self._logger.error("clear_messages_failed", error=str(exc))
            return ClearResult(success=False, error=str(exc))

        self._logger.info("messages_cleared", deleted_count=deleted)
        self._publish(ChatMemEvent.MESSAGES_CLEARED, {"deleted_count": deleted})
        return ClearResult(success=True, deleted_count=deleted)

    async def rebuild_fts(self) -> RebuildResult:
        """
        Re-index every message into the FTS5 table.

        Idempotent: the index is emptied and refilled from ``messages``.
        Creates the index first if it does not exist yet.
        """
        try:
            conn = await self.ensure_ready()
            async with self._write_lock():
                if not self._fts_available and not await self._init_fts(conn):
                    return RebuildResult(success=False, error="FTS table could not be created")
                indexed = await self._reindex(conn)
        except _STORE_ERRORS as exc:
            self._logger.error("rebuild_fts_failed", error=str(exc))
            return RebuildResult(success=False, error=str(exc))

        self._logger.info("fts_rebuilt", indexed_count=indexed)
        self._publish(ChatMemEvent.FTS_REBUILT, {"indexed_count": indexed})
        return RebuildResult(success=True, indexed_count=indexed)

    # ── Plain queries ──────────────────────────────────────────────────────────

    async def get_messages(
        self,
        limit: int = 100,
        offset: int = 0,
        session_id: str | None = None,
    ) -> MessagesResult:
        """Messages in chronological order, row-offset paginated."""
        where, params = self._session_filter(session_id)
        return await self._fetch_messages(
            "get_messages",
            f"SELECT * FROM messages{where} ORDER BY timestamp ASC, id ASC LIMIT ? OFFSET ?",
            [*params, limit, offset],
        )

    async def get_recent_messages(
        self,
        count: int = 10,
        session_id: str | None = None,
    ) -> MessagesResult:
        """The newest *count* messages, returned oldest first."""
        where, params = self._session_filter(session_id)
        result = await self._fetch_messages(
            "get_recent_messages",
            f"SELECT * FROM messages{where} ORDER BY timestamp DESC, id DESC LIMIT ?",
            [*params, count],
        )
        result.messages.reverse()
        return result

    async def get_messages_by_id_range(self, min_id: int, max_id: int) -> MessagesResult:
        """Messages with ``min_id <= id <= max_id``, ordered by id."""
        return await self._fetch_messages(
            "get_messages_by_id_range",
            "SELECT * FROM messages WHERE id >= ? AND id <= ? ORDER BY id ASC",
            [min_id, max_id],
        )

    async def search_messages(self, query: str, limit: int = 50) -> MessagesResult:
        """Substring search over content, newest first."""
        return await self._fetch_messages(
            "search_messages",
            "SELECT * FROM messages WHERE content LIKE ? ESCAPE '\\'"
            " ORDER BY timestamp DESC, id DESC LIMIT ?",
            [f"%{_escape_like(query)}%", limit],
        )

    async def search_relevant_messages(self, query: str, limit: int = 20) -> MessagesResult:
        """
        Full-text search ranked by bm25.

        Without the FTS5 index, or when the MATCH query fails, this degrades
        to ``search_messages()``.
        """
        if not query.split():
            return MessagesResult(success=True)

        try:
            conn = await self.ensure_ready()
        except _STORE_ERRORS as exc:
            self._logger.error("search_relevant_messages_failed", error=str(exc))
            return MessagesResult(success=False, error=str(exc))

        if not self._fts_available:
            return await self.search_messages(query, limit)

        try:
            async with conn.execute(
                """
                SELECT m.*, bm25(messages_fts) AS rank
                FROM messages_fts
                JOIN messages m ON messages_fts.rowid = m.id
                WHERE messages_fts MATCH ?
                ORDER BY rank
                LIMIT ?
                """,
                (_fts_match_expression(query), limit),
            ) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.Error as exc:
            self._logger.warning("fts_query_failed", query=query, error=str(exc))
            return await self.search_messages(query, limit)
        return MessagesResult(success=True, messages=[self._row_to_message(r) for r in rows])

    async def get_message_count(self, session_id: str | None = None) -> CountResult:
        where, params = self._session_filter(session_id)
        try:
            count = await self._scalar(f"SELECT COUNT(*) FROM messages{where}", params)
        except _STORE_ERRORS as exc:
            self._logger.error("get_message_count_failed", error=str(exc))
            return CountResult(success=False, error=str(exc))
        return CountResult(success=True, count=count or 0)

    async def get_message_id_range(self) -> IdRangeResult:
        try:
            conn = await self.ensure_ready()
            async with conn.execute("SELECT MIN(id), MAX(id) FROM messages") as cursor:
                row = await cursor.fetchone()
        except _STORE_ERRORS as exc:
            self._logger.error("get_message_id_range_failed", error=str(exc))
            return IdRangeResult(success=False, error=str(exc))
        return IdRangeResult(success=True, min_id=row[0], max_id=row[1])

    async def get_ltm_message_count(self) -> CountResult:
        """Number of non-summarization messages (token count not required)."""
        try:
            count = await self._scalar(
                "SELECT COUNT(*) FROM messages WHERE is_summarization = 0", []
            )
        except _STORE_ERRORS as exc:
            self._logger.error("get_ltm_message_count_failed", error=str(exc))
            return CountResult(success=False, error=str(exc))
        return CountResult(success=True, count=count or 0)

    async def get_ltm_total_tokens(self) -> TokenTotalResult:
        """Sum of token counts over the LTM view."""
        try:
            total = await self._scalar(
                "SELECT SUM(token_count) FROM messages"
                " WHERE is_summarization = 0 AND token_count IS NOT NULL",
                [],
            )
        except _STORE_ERRORS as exc:
            self._logger.error("get_ltm_total_tokens_failed", error=str(exc))
            return TokenTotalResult(success=False, error=str(exc))
        return TokenTotalResult(success=True, total=total or 0)

    # ── LTM paging ─────────────────────────────────────────────────────────────

    async def get_lt_messages_by_tokens(
        self,
        max_tokens: int,
        offset_tokens: int = 0,
    ) -> LTMPage:
        """
        Return the next slice of LTM history by cumulative token position.

        A row is included when ``offset_tokens < cumulative <= offset_tokens +
        max_tokens``: the row sitting exactly on the offset was consumed by the
        previous page, the row landing exactly on the upper bound belongs to
        this one.

        Offsets are only meaningful while no earlier message is added or
        removed; the coordinate space shifts otherwise.

        Args:
            max_tokens: Token budget of the page.
            offset_tokens: ``total_tokens`` of the previous page (0 to start).
        """
        return await self._ltm_page("get_lt_messages_by_tokens", [], max_tokens, offset_tokens)

    async def search_lt_messages_by_tokens(
        self,
        query: str,
        max_tokens: int,
        offset_tokens: int = 0,
    ) -> LTMPage:
        """
        Like ``get_lt_messages_by_tokens()`` over messages containing every word.

        *query* is split on whitespace; a row qualifies only if its content
        contains each word as a case-sensitive substring. Cumulative positions
        are computed over the filtered rows. A query with no words returns an
        empty page immediately.
        """
        words = query.split()
        if not words:
            return LTMPage(success=True, total_tokens=offset_tokens, has_more=False)
        self._logger.debug("ltm_search", query=query, words=words)
        return await self._ltm_page("search_lt_messages_by_tokens", words, max_tokens, offset_tokens)

    async def _ltm_page(
        self,
        op: str,
        words: list[str],
        max_tokens: int,
        offset_tokens: int,
    ) -> LTMPage:
        filters = "".join(" AND instr(content, ?) > 0" for _ in words)
        cumulative = _LTM_CUMULATIVE.format(filters=filters)
        page_sql = (
            f"WITH cumulative AS ({cumulative})"
            " SELECT * FROM cumulative"
            " WHERE cumulative_tokens > ? AND cumulative_tokens <= ?"
            " ORDER BY timestamp ASC, id ASC"
        )
        more_sql = (
            f"WITH cumulative AS ({cumulative})"
            " SELECT EXISTS (SELECT 1 FROM cumulative WHERE cumulative_tokens > ?)"
        )

        try:
            conn = await self.ensure_ready()
            async with conn.execute(
                page_sql, [*words, offset_tokens, offset_tokens + max_tokens]
            ) as cursor:
                rows = await cursor.fetchall()
            messages = [self._row_to_message(r) for r in rows]
            last_cumulative = messages[-1].cumulative_tokens if messages else offset_tokens
            async with conn.execute(more_sql, [*words, last_cumulative]) as cursor:
                has_more = bool((await cursor.fetchone())[0])
        except _STORE_ERRORS as exc:
            self._logger.error(f"{op}_failed", error=str(exc))
            return LTMPage(success=False, error=str(exc))

        self._logger.debug(
            "ltm_page_loaded",
            op=op,
            offset_tokens=offset_tokens,
            max_tokens=max_tokens,
            count=len(messages),
            total_tokens=last_cumulative,
            has_more=has_more,
        )
        return LTMPage(
            success=True,
            messages=messages,
            total_tokens=last_cumulative or 0,
            has_more=has_more,
        )

    # ── Private helpers ────────────────────────────────────────────────────────

    @staticmethod
    def _session_filter(session_id: str | None) -> tuple[str, list[Any]]:
        if session_id:
            return " WHERE session_id = ?", [session_id]
        return "", []

    async def _scalar(self, sql: str, params: list[Any]) -> Any:
        conn = await self.ensure_ready()
        async with conn.execute(sql, params) as cursor:
            row = await cursor.fetchone()
        return row[0] if row else None

    async def _fetch_messages(self, op: str, sql: str, params: list[Any]) -> MessagesResult:
        try:
            conn = await self.ensure_ready()
            async with conn.execute(sql, params) as cursor:
                rows = await cursor.fetchall()
        except _STORE_ERRORS as exc:
            self._logger.error(f"{op}_failed", error=str(exc))
            return MessagesResult(success=False, error=str(exc))
        return MessagesResult(success=True, messages=[self._row_to_message(r) for r in rows])

    @staticmethod
    def _row_to_message(row: aiosqlite.Row) -> Message:
        keys = row.keys()
        return Message(
            id=row["id"],
            role=row["role"],
            content=row["content"],
            timestamp=str(row["timestamp"]),
            session_id=row["session_id"],
            is_summarization=bool(row["is_summarization"]),
            token_count=row["token_count"],
            cumulative_tokens=row["cumulative_tokens"] if "cumulative_tokens" in keys else None,
        )
