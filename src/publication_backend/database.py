"""
SQLite database for persistent publication records.

This module provides the record store: a single ``publications`` table keyed
by a hex UUID, with point lookup, equality-filtered listing, distinct-value
extraction, insert, partial update and delete.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Mapping, Optional, Set, Tuple, Union
from uuid import uuid4

from .errors import InvalidIdentifier, PersistenceFailed, ValidationError
from .models import PublicationResponse

logger = logging.getLogger(__name__)

# Default database path
DEFAULT_DB_PATH = Path("data/publications.db")

IDENTIFIER_PATTERN = re.compile(r"^[0-9a-f]{32}$")

# Record attributes that may appear in predicates, updates and distinct queries
FILTERABLE_FIELDS = ("year", "volume", "issue", "doi", "is_special_issue", "title", "author")
UPDATABLE_FIELDS = (
    "year",
    "volume",
    "issue",
    "is_special_issue",
    "title",
    "content",
    "author",
    "doi",
    "artifact_ref",
    "artifact_content_type",
)

ArtifactRef = Union[str, bytes]


def validate_identifier(record_id: str) -> str:
    if not isinstance(record_id, str) or not IDENTIFIER_PATTERN.match(record_id):
        raise InvalidIdentifier(f"Invalid publication ID: {record_id!r}")
    return record_id


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(dt: datetime) -> str:
    """Serialize datetime to ISO format string."""
    return dt.isoformat()


def _deserialize_datetime(s: str) -> datetime:
    """Deserialize ISO format string to datetime."""
    return datetime.fromisoformat(s)


@dataclass
class PublicationRecord:
    """
    One publication's metadata plus the reference to its PDF artifact.

    ``artifact_ref`` is a relative filename for the file backend, the PDF
    bytes themselves for the inline backend, or a peer's reference for the
    remote backend.
    """

    id: str
    year: int
    volume: str
    issue: int
    title: str
    content: str
    author: str
    created_at: datetime
    updated_at: datetime
    is_special_issue: bool = False
    doi: Optional[str] = None
    artifact_ref: Optional[ArtifactRef] = None
    artifact_content_type: Optional[str] = None

    @property
    def has_artifact(self) -> bool:
        return bool(self.artifact_ref)

    def to_response(self) -> PublicationResponse:
        return PublicationResponse(
            id=self.id,
            year=self.year,
            volume=self.volume,
            issue=self.issue,
            is_special_issue=self.is_special_issue,
            title=self.title,
            content=self.content,
            author=self.author,
            doi=self.doi,
            artifact_content_type=self.artifact_content_type,
            has_artifact=self.has_artifact,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


def _check_fields(names: Any, allowed: Tuple[str, ...]) -> None:
    unknown = sorted(set(names) - set(allowed))
    if unknown:
        raise ValidationError(f"Unsupported field(s): {', '.join(unknown)}")


def _where_clause(predicate: Optional[Mapping[str, Any]]) -> Tuple[str, List[Any]]:
    if not predicate:
        return "", []
    _check_fields(predicate.keys(), FILTERABLE_FIELDS)
    clauses = []
    values: List[Any] = []
    for name, value in predicate.items():
        if value is None:
            clauses.append(f"{name} IS NULL")
        else:
            clauses.append(f"{name} = ?")
            values.append(int(value) if isinstance(value, bool) else value)
    return " WHERE " + " AND ".join(clauses), values


class PublicationDatabase:
    """
    SQLite database for publication records.

    Thread-safe: each call opens its own connection; SQLite handles concurrent
    access with WAL mode, so individual insert/update/delete calls are atomic.
    """

    def __init__(self, db_path: Path = DEFAULT_DB_PATH):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    @contextmanager
    def _get_connection(self) -> Iterator[sqlite3.Connection]:
        """Get a database connection, translating driver errors to PersistenceFailed."""
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=30.0)
        except sqlite3.Error as exc:
            raise PersistenceFailed(f"Could not open publication database: {exc}") from exc
        conn.row_factory = sqlite3.Row
        try:
            conn.execute("PRAGMA journal_mode=WAL")
            yield conn
            conn.commit()
        except (sqlite3.Error, OverflowError, ValueError) as exc:
            # OverflowError: integer wider than SQLite INTEGER bound as a parameter
            conn.rollback()
            logger.error(f"Database operation failed: {exc}")
            raise PersistenceFailed(f"Database operation failed: {exc}") from exc
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()

    def _init_db(self) -> None:
        """Initialize database schema."""
        with self._get_connection() as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS publications (
                    id TEXT PRIMARY KEY,
                    year INTEGER NOT NULL,
                    volume TEXT NOT NULL,
                    issue INTEGER NOT NULL,
                    is_special_issue INTEGER NOT NULL DEFAULT 0,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    author TEXT NOT NULL,
                    doi TEXT,
                    artifact_ref BLOB,
                    artifact_content_type TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_publications_year_volume
                ON publications(year, volume)
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_publications_special
                ON publications(is_special_issue)
            """)

    def insert(self, fields: Mapping[str, Any]) -> PublicationRecord:
        """
        Insert a new publication record.

        Args:
            fields: Validated record attributes (snake_case), including
                ``artifact_ref`` and ``artifact_content_type``

        Returns:
            The stored record with its new id and timestamps
        """
        now = _now()
        record = PublicationRecord(
            id=uuid4().hex,
            year=fields["year"],
            volume=fields["volume"],
            issue=fields["issue"],
            title=fields["title"],
            content=fields["content"],
            author=fields["author"],
            created_at=now,
            updated_at=now,
            is_special_issue=bool(fields.get("is_special_issue", False)),
            doi=fields.get("doi"),
            artifact_ref=fields.get("artifact_ref"),
            artifact_content_type=fields.get("artifact_content_type"),
        )
        with self._get_connection() as conn:
            conn.execute("""
                INSERT INTO publications (
                    id, year, volume, issue, is_special_issue, title, content,
                    author, doi, artifact_ref, artifact_content_type,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (
                record.id,
                record.year,
                record.volume,
                record.issue,
                int(record.is_special_issue),
                record.title,
                record.content,
                record.author,
                record.doi,
                record.artifact_ref,
                record.artifact_content_type,
                _serialize_datetime(record.created_at),
                _serialize_datetime(record.updated_at),
            ))
        return record

    def get(self, record_id: str) -> Optional[PublicationRecord]:
        """
        Retrieve a record by ID.

        Returns:
            The record or None if not found

        Raises:
            InvalidIdentifier: If ``record_id`` is malformed
        """
        validate_identifier(record_id)
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM publications WHERE id = ?", (record_id,)
            ).fetchone()
            return self._row_to_record(row) if row else None

    def update(self, record_id: str, changes: Mapping[str, Any]) -> Optional[PublicationRecord]:
        """
        Apply a partial update; keys with a None value are left untouched.

        Args:
            record_id: The record ID
            changes: Attributes to overwrite (snake_case)

        Returns:
            The updated record or None if not found
        """
        validate_identifier(record_id)
        supplied = {name: value for name, value in changes.items() if value is not None}
        _check_fields(supplied.keys(), UPDATABLE_FIELDS)

        updates = ["updated_at = ?"]
        values: List[Any] = [_serialize_datetime(_now())]
        for name, value in supplied.items():
            updates.append(f"{name} = ?")
            values.append(int(value) if isinstance(value, bool) else value)
        values.append(record_id)

        with self._get_connection() as conn:
            cursor = conn.execute(
                f"UPDATE publications SET {', '.join(updates)} WHERE id = ?",
                values,
            )
            if cursor.rowcount == 0:
                return None
            row = conn.execute(
                "SELECT * FROM publications WHERE id = ?", (record_id,)
            ).fetchone()
            return self._row_to_record(row)

    def delete(self, record_id: str) -> Optional[PublicationRecord]:
        """
        Delete a record.

        Returns:
            The deleted record or None if not found
        """
        validate_identifier(record_id)
        with self._get_connection() as conn:
            row = conn.execute(
                "SELECT * FROM publications WHERE id = ?", (record_id,)
            ).fetchone()
            if not row:
                return None
            conn.execute("DELETE FROM publications WHERE id = ?", (record_id,))
            return self._row_to_record(row)

    def list(self, predicate: Optional[Mapping[str, Any]] = None) -> List[PublicationRecord]:
        """
        List records matching every equality constraint in ``predicate``.

        An empty or missing predicate returns all records. No order is implied.
        """
        where, values = _where_clause(predicate)
        with self._get_connection() as conn:
            rows = conn.execute(f"SELECT * FROM publications{where}", values).fetchall()
            return [self._row_to_record(row) for row in rows]

    def distinct(self, field: str, predicate: Optional[Mapping[str, Any]] = None) -> Set[Any]:
        """Distinct values of ``field`` over records matching ``predicate``."""
        _check_fields([field], FILTERABLE_FIELDS)
        where, values = _where_clause(predicate)
        with self._get_connection() as conn:
            rows = conn.execute(
                f"SELECT DISTINCT {field} FROM publications{where}", values
            ).fetchall()
        if field == "is_special_issue":
            return {bool(row[0]) for row in rows}
        return {row[0] for row in rows}

    def _row_to_record(self, row: sqlite3.Row) -> PublicationRecord:
        """Convert a database row to a publication record."""
        return PublicationRecord(
            id=row["id"],
            year=row["year"],
            volume=row["volume"],
            issue=row["issue"],
            title=row["title"],
            content=row["content"],
            author=row["author"],
            created_at=_deserialize_datetime(row["created_at"]),
            updated_at=_deserialize_datetime(row["updated_at"]),
            is_special_issue=bool(row["is_special_issue"]),
            doi=row["doi"],
            artifact_ref=row["artifact_ref"],
            artifact_content_type=row["artifact_content_type"],
        )
