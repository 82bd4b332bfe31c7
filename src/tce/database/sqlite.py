# Copyright 2026 Zsolt Kulcsar and Contributors. Licensed under the EUPL-1.2 or later
"""SQLite implementation of the identity store."""

import json
import logging
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, cast

from tce.extractor import AuthoringFamily
from tce.model import CanonicalIdentity, FailureRecord, IdentityConflict
from tce.normalizer import comparable_path, normalize_name
from tce.storage import StorageError

logger = logging.getLogger(__name__)

_IDENTITY_COLUMNS = (
    "identifier, file_path, title, group_label, description, tags, priority, "
    "owner, repository_id, test_kind, family, auto_created, branch, "
    "last_seen_at, updated_at"
)


class SQLiteIdentityStore:
    """Persist canonical identities and failures to a SQLite database."""

    def __init__(self, db_path: Path) -> None:
        """Initialize storage backend.

        Args:
            db_path: SQLite database file path.
        """
        self._db_path = db_path

    def find_by_title(self, title: str, limit: int = 10) -> list[CanonicalIdentity]:
        return self._select("title = ?", (title,), limit)

    def find_by_normalized_title(
        self, normalized_title: str, limit: int = 10
    ) -> list[CanonicalIdentity]:
        if not normalized_title:
            return []
        return self._select("normalized_title = ?", (normalized_title,), limit)

    def find_by_file_path_like(
        self, file_path: str, limit: int = 10
    ) -> list[CanonicalIdentity]:
        """Return identities whose path contains, or is contained in, ``file_path``.

        Args:
            file_path: Reported file path; compared case-insensitively.
            limit: Maximum number of rows.

        Returns:
            Matching identities, exact path matches first.
        """
        path = comparable_path(file_path)
        if not path:
            return []
        return self._select(
            "comparable_path != '' AND ("
            "instr(comparable_path, ?) > 0 OR instr(?, comparable_path) > 0)",
            (path, path),
            limit,
            order_by="comparable_path != ?, updated_at DESC",
            order_params=(path,),
        )

    def find_by_repository_and_family(
        self, repository_id: str, family: AuthoringFamily, limit: int = 5
    ) -> list[CanonicalIdentity]:
        return self._select(
            "repository_id = ? AND family = ?", (repository_id, family), limit
        )

    def find_by_title_tokens(
        self, tokens: list[str], limit: int = 10
    ) -> list[CanonicalIdentity]:
        """Return identities whose normalized title contains every token.

        Args:
            tokens: Lower-cased title tokens.
            limit: Maximum number of rows.

        Returns:
            Matching identities; empty when ``tokens`` is empty.
        """
        if not tokens:
            return []
        clause = " AND ".join("instr(normalized_title, ?) > 0" for _ in tokens)
        return self._select(clause, tuple(tokens), limit)

    def upsert_by_identifier(self, identity: CanonicalIdentity) -> CanonicalIdentity:
        """Insert ``identity`` or refresh the metadata of the stored record.

        The identifier, path, title and group label of a stored record never
        change. The auto-created flag is cleared as soon as any upsert carries
        a statically declared record.

        Args:
            identity: Identity to insert or refresh.

        Returns:
            Stored identity after the upsert.

        Raises:
            StorageError: If schema setup or write operations fail.
        """
        now = datetime.now(tz=timezone.utc)
        connection = sqlite3.connect(self._db_path)
        try:
            connection.execute("PRAGMA foreign_keys = ON")
            self._ensure_schema(connection=connection)
            connection.execute("BEGIN")
            connection.execute(
                f"INSERT INTO identities ({_IDENTITY_COLUMNS}, comparable_path, normalized_title) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?) "
                "ON CONFLICT(identifier) DO UPDATE SET "
                "description = excluded.description, "
                "tags = excluded.tags, "
                "owner = COALESCE(excluded.owner, identities.owner), "
                "repository_id = COALESCE(excluded.repository_id, identities.repository_id), "
                "test_kind = excluded.test_kind, "
                "family = COALESCE(excluded.family, identities.family), "
                "auto_created = identities.auto_created AND excluded.auto_created, "
                "branch = COALESCE(excluded.branch, identities.branch), "
                "last_seen_at = COALESCE(excluded.last_seen_at, identities.last_seen_at), "
                "updated_at = excluded.updated_at",
                (
                    *_identity_row(identity, updated_at=identity.updated_at or now),
                    comparable_path(identity.file_path),
                    normalize_name(identity.title),
                ),
            )
            row = connection.execute(
                f"SELECT {_IDENTITY_COLUMNS} FROM identities WHERE identifier = ?",
                (identity.identifier,),
            ).fetchone()
            connection.commit()
        except sqlite3.DatabaseError as exc:
            connection.rollback()
            logger.warning(
                f"SQLite identity upsert failed (db_path={self._db_path} "
                f"identifier={identity.identifier} error={exc})"
            )
            raise StorageError(str(exc)) from exc
        finally:
            connection.close()
        if row is None:
            raise StorageError(f"Upserted identity not found: {identity.identifier}")
        return _identity_from_row(row)

    def record_failure(self, failure: FailureRecord) -> None:
        self._write(
            "INSERT INTO failures (identifier, occurred_at, message, build_id) "
            "VALUES (?, ?, ?, ?)",
            [
                (
                    failure.identifier,
                    _utc_text(failure.occurred_at),
                    failure.message,
                    failure.build_id,
                )
            ],
        )

    def find_recent_failures(
        self, identifier: str, limit: int = 10
    ) -> list[FailureRecord]:
        rows = self._query(
            "SELECT identifier, occurred_at, message, build_id FROM failures "
            "WHERE identifier = ? ORDER BY occurred_at DESC, id DESC LIMIT ?",
            (identifier, limit),
        )
        return [
            FailureRecord(
                identifier=row[0],
                occurred_at=datetime.fromisoformat(row[1]),
                message=row[2],
                build_id=row[3],
            )
            for row in rows
        ]

    def list_failing_identifiers(self) -> list[str]:
        """Return identifiers with at least one recorded failure."""
        rows = self._query(
            "SELECT DISTINCT identifier FROM failures ORDER BY identifier", ()
        )
        return [row[0] for row in rows]

    def record_conflicts(self, conflicts: list[IdentityConflict]) -> None:
        if not conflicts:
            return
        recorded_at = datetime.now(tz=timezone.utc).isoformat()
        self._write(
            "INSERT INTO identity_conflicts ("
            "identifier, file_path, title, group_label, line_numbers, recorded_at"
            ") VALUES (?, ?, ?, ?, ?, ?)",
            [
                (
                    conflict.identifier,
                    conflict.file_path,
                    conflict.title,
                    conflict.group_label,
                    json.dumps(list(conflict.line_numbers)),
                    recorded_at,
                )
                for conflict in conflicts
            ],
        )

    def list_conflicts(self) -> list[IdentityConflict]:
        """Return recorded identifier collisions, oldest first."""
        rows = self._query(
            "SELECT identifier, file_path, title, group_label, line_numbers "
            "FROM identity_conflicts ORDER BY id",
            (),
        )
        return [
            IdentityConflict(
                identifier=row[0],
                file_path=row[1],
                title=row[2],
                group_label=row[3],
                line_numbers=tuple(json.loads(row[4])),
            )
            for row in rows
        ]

    def _select(
        self,
        where: str,
        params: tuple[Any, ...],
        limit: int,
        order_by: str = "updated_at DESC",
        order_params: tuple[Any, ...] = (),
    ) -> list[CanonicalIdentity]:
        rows = self._query(
            f"SELECT {_IDENTITY_COLUMNS} FROM identities WHERE {where} "
            f"ORDER BY {order_by}, identifier LIMIT ?",
            (*params, *order_params, limit),
        )
        return [_identity_from_row(row) for row in rows]

    def _query(self, sql: str, params: tuple[Any, ...]) -> list[tuple[Any, ...]]:
        """Run one read query on a fresh connection.

        Raises:
            StorageError: If schema setup or the query fails.
        """
        connection = sqlite3.connect(self._db_path)
        try:
            connection.execute("PRAGMA foreign_keys = ON")
            self._ensure_schema(connection=connection)
            return connection.execute(sql, params).fetchall()
        except sqlite3.DatabaseError as exc:
            logger.warning(
                f"SQLite query failed (db_path={self._db_path} error={exc})"
            )
            raise StorageError(str(exc)) from exc
        finally:
            connection.close()

    def _write(self, sql: str, rows: list[tuple[Any, ...]]) -> None:
        """Run one write statement for all rows atomically.

        Raises:
            StorageError: If schema setup or write operations fail.
        """
        connection = sqlite3.connect(self._db_path)
        try:
            connection.execute("PRAGMA foreign_keys = ON")
            self._ensure_schema(connection=connection)
            connection.execute("BEGIN")
            connection.executemany(sql, rows)
            connection.commit()
        except sqlite3.DatabaseError as exc:
            connection.rollback()
            logger.warning(
                f"SQLite write failed (db_path={self._db_path} error={exc})"
            )
            raise StorageError(str(exc)) from exc
        finally:
            connection.close()

    def _ensure_schema(self, connection: sqlite3.Connection) -> None:
        """Create required tables and indexes when missing.

        Args:
            connection: Open SQLite connection.
        """
        connection.execute(
            "CREATE TABLE IF NOT EXISTS identities ("
            "identifier TEXT PRIMARY KEY, "
            "file_path TEXT NOT NULL, "
            "comparable_path TEXT NOT NULL, "
            "title TEXT NOT NULL, "
            "normalized_title TEXT NOT NULL, "
            "group_label TEXT, "
            "description TEXT NOT NULL, "
            "tags TEXT NOT NULL, "
            "priority TEXT NOT NULL, "
            "owner TEXT, "
            "repository_id TEXT, "
            "test_kind TEXT NOT NULL, "
            "family TEXT, "
            "auto_created INTEGER NOT NULL, "
            "branch TEXT, "
            "last_seen_at TEXT, "
            "updated_at TEXT NOT NULL"
            ")"
        )
        connection.execute(
            "CREATE TABLE IF NOT EXISTS failures ("
            "id INTEGER PRIMARY KEY, "
            "identifier TEXT NOT NULL REFERENCES identities(identifier), "
            "occurred_at TEXT NOT NULL, "
            "message TEXT, "
            "build_id TEXT"
            ")"
        )
        connection.execute(
            "CREATE TABLE IF NOT EXISTS identity_conflicts ("
            "id INTEGER PRIMARY KEY, "
            "identifier TEXT NOT NULL, "
            "file_path TEXT NOT NULL, "
            "title TEXT NOT NULL, "
            "group_label TEXT, "
            "line_numbers TEXT NOT NULL, "
            "recorded_at TEXT NOT NULL"
            ")"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_identities_title ON identities(title)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_identities_normalized_title "
            "ON identities(normalized_title)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_identities_repository_family "
            "ON identities(repository_id, family)"
        )
        connection.execute(
            "CREATE INDEX IF NOT EXISTS idx_failures_identifier "
            "ON failures(identifier, occurred_at)"
        )


def _utc_text(moment: datetime) -> str:
    # Stored in UTC so text ordering is chronological; naive values are UTC.
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc).isoformat()
    return moment.astimezone(timezone.utc).isoformat()


def _identity_row(
    identity: CanonicalIdentity, updated_at: datetime
) -> tuple[Any, ...]:
    return (
        identity.identifier,
        identity.file_path,
        identity.title,
        identity.group_label,
        identity.description,
        json.dumps(list(identity.tags)),
        identity.priority,
        identity.owner,
        identity.repository_id,
        identity.test_kind,
        identity.family,
        int(identity.auto_created),
        identity.branch,
        identity.last_seen_at.isoformat() if identity.last_seen_at else None,
        updated_at.isoformat(),
    )


def _identity_from_row(row: tuple[Any, ...]) -> CanonicalIdentity:
    return CanonicalIdentity(
        identifier=row[0],
        file_path=row[1],
        title=row[2],
        group_label=row[3],
        description=row[4],
        tags=tuple(json.loads(row[5])),
        priority=row[6],
        owner=row[7],
        repository_id=row[8],
        test_kind=row[9],
        family=cast(AuthoringFamily | None, row[10]),
        auto_created=bool(row[11]),
        branch=row[12],
        last_seen_at=datetime.fromisoformat(row[13]) if row[13] else None,
        updated_at=datetime.fromisoformat(row[14]),
    )
