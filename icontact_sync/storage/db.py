"""
SQLite contact store for reconciliation state.

Holds the reconciled contacts (unique per identity key) and the
append-only history of sync runs. Bulk writes are unordered: a
duplicate-key conflict on one row never aborts its siblings.
"""

import logging
import sqlite3
from collections.abc import Generator, Iterable, Mapping
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from icontact_sync.sync.contact import Contact
from icontact_sync.sync.planner import NameUpdate

logger = logging.getLogger(__name__)

# Maximum length of the free-text notes column
NOTES_MAX_LENGTH = 100

SCHEMA = f"""
CREATE TABLE IF NOT EXISTS contacts (
    id INTEGER PRIMARY KEY,
    identity_key TEXT,
    full_name TEXT NOT NULL,
    notes TEXT NOT NULL DEFAULT '' CHECK (length(notes) <= {NOTES_MAX_LENGTH}),
    is_hidden BOOLEAN NOT NULL DEFAULT 0,
    created_at TIMESTAMP NOT NULL,
    updated_at TIMESTAMP NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_contacts_identity_key
    ON contacts(identity_key) WHERE identity_key IS NOT NULL;

CREATE TABLE IF NOT EXISTS sync_runs (
    id INTEGER PRIMARY KEY,
    total_seen INTEGER NOT NULL DEFAULT 0,
    inserted INTEGER NOT NULL DEFAULT 0,
    updated INTEGER NOT NULL DEFAULT 0,
    skipped INTEGER NOT NULL DEFAULT 0,
    success BOOLEAN NOT NULL DEFAULT 1,
    error_message TEXT,
    created_at TIMESTAMP NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_sync_runs_created ON sync_runs(created_at);

CREATE TRIGGER IF NOT EXISTS sync_runs_no_update
BEFORE UPDATE ON sync_runs
BEGIN
    SELECT RAISE(ABORT, 'sync_runs is append-only');
END;

CREATE TRIGGER IF NOT EXISTS sync_runs_no_delete
BEFORE DELETE ON sync_runs
BEGIN
    SELECT RAISE(ABORT, 'sync_runs is append-only');
END;
"""

SYNC_RUN_FIELDS = (
    "total_seen",
    "inserted",
    "updated",
    "skipped",
    "success",
    "error_message",
)


class StoreError(Exception):
    """Raised when the contact store is unreachable or a write hard-fails."""

    pass


@dataclass
class BulkWriteResult:
    """
    Result of an unordered bulk insert.

    Attributes:
        inserted_count: Rows actually inserted
        duplicate_keys: Identity keys rejected by the unique index
    """

    inserted_count: int = 0
    duplicate_keys: list[str] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.duplicate_keys)


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class ContactDatabase:
    """
    SQLite store for contacts and the sync run audit trail.

    The connection has an explicit lifecycle: open() before use and
    close() when done, or use the instance as a context manager.

    Usage:
        with ContactDatabase("/path/to/contacts.db") as db:
            db.initialize()
            names = db.read_name_index()

        # In-memory for testing:
        db = ContactDatabase(":memory:")
        db.open()
        db.initialize()
    """

    def __init__(self, db_path: str):
        """
        Initialize the store.

        Args:
            db_path: Path to SQLite database file, or ':memory:'
        """
        self.db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    def open(self) -> None:
        """
        Open the database connection. Calling it twice is a no-op.

        Raises:
            StoreError: If the database cannot be opened
        """
        if self._conn is not None:
            return
        try:
            self._conn = sqlite3.connect(self.db_path)
        except sqlite3.Error as e:
            raise StoreError(f"Failed to open contact store {self.db_path}: {e}") from e
        self._conn.row_factory = sqlite3.Row
        logger.debug(f"Opened contact store: {self.db_path}")

    def close(self) -> None:
        """Close the database connection if it is open."""
        if self._conn is None:
            return
        self._conn.close()
        self._conn = None
        logger.debug(f"Closed contact store: {self.db_path}")

    @property
    def is_open(self) -> bool:
        return self._conn is not None

    def __enter__(self) -> "ContactDatabase":
        self.open()
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Transaction scope on the open connection.

        Commits on success and rolls back on any error. sqlite3 errors
        are re-raised as StoreError.

        Raises:
            StoreError: If the store is not open or a statement fails
        """
        if self._conn is None:
            raise StoreError("Contact store is not open")

        conn = self._conn
        try:
            yield conn
            conn.commit()
        except sqlite3.Error as e:
            conn.rollback()
            raise StoreError(f"Contact store operation failed: {e}") from e
        except Exception:
            conn.rollback()
            raise

    def initialize(self) -> None:
        """Create the contacts and sync_runs tables if they don't exist."""
        with self.connection() as conn:
            conn.executescript(SCHEMA)

    # =========================================================================
    # Contact Operations
    # =========================================================================

    def read_name_index(self) -> dict[str, str]:
        """
        Read identity_key -> full_name for every stored contact.

        One query for the whole store.
        """
        with self.connection() as conn:
            cursor = conn.execute(
                "SELECT identity_key, full_name FROM contacts "
                "WHERE identity_key IS NOT NULL"
            )
            return {row["identity_key"]: row["full_name"] for row in cursor}

    def insert_many_unordered(self, contacts: Iterable[Contact]) -> BulkWriteResult:
        """
        Insert contacts without stopping at duplicate-key conflicts.

        Each row is attempted independently. Rows whose identity key
        already exists are reported in duplicate_keys; every other row is
        still inserted.

        Args:
            contacts: Contacts to insert

        Returns:
            BulkWriteResult with the inserted count and conflicting keys

        Raises:
            StoreError: On any failure other than a duplicate key. The
                        whole batch is rolled back.
        """
        result = BulkWriteResult()
        now = _utcnow()

        with self.connection() as conn:
            for contact in contacts:
                cursor = conn.execute(
                    """
                    INSERT INTO contacts (
                        identity_key, full_name, created_at, updated_at
                    ) VALUES (?, ?, ?, ?)
                    ON CONFLICT(identity_key) WHERE identity_key IS NOT NULL
                    DO NOTHING
                    """,
                    (contact.identity_key, contact.full_name, now, now),
                )
                # Only the identity key conflict is absorbed; other
                # constraint failures still raise
                if cursor.rowcount == 0:
                    result.duplicate_keys.append(contact.identity_key)
                else:
                    result.inserted_count += 1

        return result

    def update_names_unordered(self, updates: Iterable[NameUpdate]) -> int:
        """
        Set full_name on the contact matching each identity key.

        Args:
            updates: Name update directives

        Returns:
            Number of rows actually modified. A directive whose row is
            missing or already holds the new name does not count.

        Raises:
            StoreError: If the update fails
        """
        modified = 0
        now = _utcnow()

        with self.connection() as conn:
            for update in updates:
                cursor = conn.execute(
                    """
                    UPDATE contacts SET full_name = ?, updated_at = ?
                    WHERE identity_key = ? AND full_name != ?
                    """,
                    (update.new_full_name, now, update.identity_key, update.new_full_name),
                )
                modified += cursor.rowcount

        return modified

    def list_contacts(self, include_hidden: bool = False) -> list[dict[str, Any]]:
        """
        List stored contacts ordered by name.

        Args:
            include_hidden: Also return contacts flagged as hidden
        """
        query = (
            "SELECT identity_key, full_name, notes, is_hidden, created_at, updated_at "
            "FROM contacts"
        )
        if not include_hidden:
            query += " WHERE is_hidden = 0"
        query += " ORDER BY full_name COLLATE NOCASE, identity_key"

        with self.connection() as conn:
            return [dict(row) for row in conn.execute(query)]

    def get_contact_count(self) -> int:
        with self.connection() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM contacts")
            result: int = cursor.fetchone()[0]
            return result

    # =========================================================================
    # Sync Run Operations
    # =========================================================================

    def append_sync_run(self, record: Mapping[str, Any]) -> None:
        """
        Append one sync run record to the audit trail.

        Args:
            record: Mapping with total_seen, inserted, updated, skipped,
                    success and error_message

        Raises:
            StoreError: If the record cannot be written
        """
        values = [record.get(name) for name in SYNC_RUN_FIELDS]
        with self.connection() as conn:
            conn.execute(
                """
                INSERT INTO sync_runs (
                    total_seen, inserted, updated, skipped, success,
                    error_message, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (*values, _utcnow()),
            )

    def get_recent_sync_runs(self, limit: int = 10) -> list[dict[str, Any]]:
        """Get the most recent sync runs, newest first."""
        with self.connection() as conn:
            cursor = conn.execute(
                """
                SELECT id, total_seen, inserted, updated, skipped, success,
                       error_message, created_at
                FROM sync_runs
                ORDER BY id DESC
                LIMIT ?
                """,
                (limit,),
            )
            return [dict(row) for row in cursor.fetchall()]

    def get_last_sync_run(self) -> Optional[dict[str, Any]]:
        runs = self.get_recent_sync_runs(limit=1)
        return runs[0] if runs else None

    def get_sync_run_count(self) -> int:
        with self.connection() as conn:
            cursor = conn.execute("SELECT COUNT(*) FROM sync_runs")
            result: int = cursor.fetchone()[0]
            return result

    # =========================================================================
    # Utility Operations
    # =========================================================================

    def vacuum(self) -> None:
        """Vacuum the database to reclaim space."""
        if self._conn is None:
            raise StoreError("Contact store is not open")
        # VACUUM cannot run inside a transaction
        self._conn.commit()
        self._conn.execute("VACUUM")

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"ContactDatabase(db_path={self.db_path!r}, {state})"
