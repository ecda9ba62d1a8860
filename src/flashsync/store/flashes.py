"""
Durable flash store.

One table keyed by ``id``. Writes are insert-or-ignore so replaying a batch is
always safe; lookups serve the dedup stage and delivery-confirmation
consumers. Methods are blocking and are called from worker threads by the
orchestrator, so all access to the backend is serialized with a lock.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator, Sequence

from flashsync.core.filtering import dedupe_by_id, normalize_allow_list
from flashsync.core.types import FlashRecord
from flashsync.exceptions import StoreError, StoreWriteFailure
from flashsync.store.connections import BaseConnection, connect_store
from flashsync.utils.logging import get_logger
from flashsync.utils.sql_escape import escape_identifier, sql_literal

logger = get_logger("flashsync.store.flashes")

COLUMNS: tuple[str, ...] = (
    "id",
    "actor",
    "location",
    "image_ref",
    "artifact_ref",
    "text",
    "observed_at",
    "feed_fingerprint",
)

# Rows per INSERT / IN (...) list
CHUNK_SIZE = 500


def _chunks(items: Sequence, size: int) -> Iterator[Sequence]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


class FlashStore:
    """
    Store adapter for flash records.

    Examples:
        >>> store = FlashStore.from_url("duckdb://:memory:")
        >>> store.ensure_schema()
        >>> written = store.write_many(records)
        >>> known = store.lookup_by_ids([r.id for r in records])
    """

    def __init__(self, connection: BaseConnection, table: str = "flashes"):
        self.connection = connection
        self.table = table
        self._table_sql = escape_identifier(table)
        self._columns_sql = ", ".join(escape_identifier(c) for c in COLUMNS)
        self._lock = threading.Lock()

    @classmethod
    def from_url(cls, url: str, table: str = "flashes") -> FlashStore:
        return cls(connect_store(url), table=table)

    def ensure_schema(self) -> None:
        """Create the flashes table (and its time index) when missing."""
        ddl = (
            f"CREATE TABLE IF NOT EXISTS {self._table_sql} ("
            f'"id" BIGINT PRIMARY KEY, '
            f'"actor" VARCHAR NOT NULL, '
            f'"location" VARCHAR, '
            f'"image_ref" VARCHAR, '
            f'"artifact_ref" VARCHAR, '
            f'"text" VARCHAR, '
            f'"observed_at" BIGINT NOT NULL, '
            f'"feed_fingerprint" VARCHAR'
            f")"
        )
        index = escape_identifier(f"idx_{self.table}_observed_at")
        with self._lock:
            try:
                self.connection.execute(ddl)
                self.connection.execute(
                    f'CREATE INDEX IF NOT EXISTS {index} ON {self._table_sql} ("observed_at")'
                )
            except Exception as e:
                raise StoreError(f"Cannot create table {self.table}: {e}") from e
        logger.debug(f"Schema ready for table {self.table}")

    def write_many(self, records: Iterable[FlashRecord]) -> list[FlashRecord]:
        """
        Insert records, ignoring ids that are already stored.

        Args:
            records: Records to persist; repeated ids within the call are collapsed

        Returns:
            The records that were actually inserted, in input order

        Raises:
            StoreWriteFailure: If the write fails for any reason other than an id conflict
        """
        batch = dedupe_by_id(records)
        if not batch:
            return []

        inserted: set[int] = set()
        with self._lock:
            try:
                for chunk in _chunks(batch, CHUNK_SIZE):
                    values = ", ".join(self._row_sql(record) for record in chunk)
                    query = (
                        f"INSERT INTO {self._table_sql} ({self._columns_sql}) VALUES {values} "
                        f'ON CONFLICT ("id") DO NOTHING RETURNING "id"'
                    )
                    inserted.update(int(row[0]) for row in self.connection.fetch_all(query))
            except Exception as e:
                raise StoreWriteFailure(
                    f"Bulk write of {len(batch)} records to {self.table} failed: {e}",
                    batch_size=len(batch),
                    cause=e,
                ) from e

        written = [record for record in batch if record.id in inserted]
        logger.debug(f"Wrote {len(written)}/{len(batch)} records to {self.table} ({len(batch) - len(written)} known)")
        return written

    def lookup_by_ids(self, ids: Iterable[int]) -> list[FlashRecord]:
        """
        Fetch stored rows for the given ids.

        Raises:
            StoreError: If the lookup fails
        """
        unique = sorted({int(i) for i in ids})
        if not unique:
            return []

        found: list[FlashRecord] = []
        with self._lock:
            try:
                for chunk in _chunks(unique, CHUNK_SIZE):
                    id_list = ", ".join(str(i) for i in chunk)
                    query = f'SELECT {self._columns_sql} FROM {self._table_sql} WHERE "id" IN ({id_list}) ORDER BY "id"'
                    found.extend(self._to_record(row) for row in self.connection.fetch_all(query))
            except Exception as e:
                raise StoreError(f"Lookup of {len(unique)} ids in {self.table} failed: {e}") from e
        return found

    def lookup_since(self, since: int, actors: Iterable[str] | None = None) -> list[FlashRecord]:
        """
        Fetch rows observed at or after ``since`` (unix seconds), oldest first.

        Args:
            since: Lower bound on observed_at
            actors: Restrict to these actors (case-insensitive); None means all actors.
                An empty collection matches nothing.

        Raises:
            StoreError: If the lookup fails
        """
        query = f'SELECT {self._columns_sql} FROM {self._table_sql} WHERE "observed_at" >= {int(since)}'
        if actors is not None:
            wanted = sorted(normalize_allow_list(actors))
            if not wanted:
                return []
            actor_list = ", ".join(sql_literal(a) for a in wanted)
            query += f' AND lower("actor") IN ({actor_list})'
        query += ' ORDER BY "observed_at", "id"'

        with self._lock:
            try:
                rows = self.connection.fetch_all(query)
            except Exception as e:
                raise StoreError(f"Time-range lookup on {self.table} failed: {e}") from e
        return [self._to_record(row) for row in rows]

    def set_artifact_ref(self, record_id: int, artifact_ref: str) -> bool:
        """
        Record the downstream artifact for a stored record.

        Returns:
            True if the record exists (and now carries the reference)
        """
        query = (
            f'UPDATE {self._table_sql} SET "artifact_ref" = {sql_literal(artifact_ref)} '
            f'WHERE "id" = {int(record_id)}'
        )
        with self._lock:
            try:
                self.connection.execute(query)
                rows = self.connection.fetch_all(f'SELECT "id" FROM {self._table_sql} WHERE "id" = {int(record_id)}')
            except Exception as e:
                raise StoreError(f"Cannot set artifact_ref on record {record_id}: {e}") from e
        return bool(rows)

    def load_allow_list(self, table: str, column: str = "username") -> list[str]:
        """
        Read actor names from a users table, lower-cased.

        Raises:
            StoreError: If the table cannot be read
        """
        query = f"SELECT DISTINCT lower({escape_identifier(column)}) FROM {escape_identifier(table)}"
        with self._lock:
            try:
                rows = self.connection.fetch_all(query)
            except Exception as e:
                raise StoreError(f"Cannot load allow-list from {table}.{column}: {e}") from e
        return sorted(str(row[0]) for row in rows if row[0])

    def close(self) -> None:
        with self._lock:
            self.connection.close()

    def _row_sql(self, record: FlashRecord) -> str:
        values = (
            record.id,
            record.actor,
            record.location,
            record.image_ref,
            record.artifact_ref,
            record.text,
            record.observed_at,
            record.feed_fingerprint,
        )
        return "(" + ", ".join(sql_literal(v) for v in values) + ")"

    @staticmethod
    def _to_record(row: tuple) -> FlashRecord:
        return FlashRecord.from_dict(dict(zip(COLUMNS, row)))
