"""Collaborator interfaces and the SQLite session/tag store."""

import logging
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional, Protocol

from .models import (
    SCAN_STATUSES,
    SUGGESTION_STATUSES,
    Session,
    SessionMessage,
    Tag,
    TagSuggestion,
    TagSuggestionResult,
)

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
AI_TAG_COLOR = "#9333ea"


class SessionSource(Protocol):
    """Read access to stored sessions."""

    def get_session(self, session_id: str) -> Optional[Session]: ...

    def get_session_messages(self, session_id: str) -> list[SessionMessage]: ...

    def get_session_tags(self, session_id: str) -> list[Tag]: ...


class TagStore(Protocol):
    """Persistence of suggestions and scan bookkeeping."""

    def get_tag_names(self) -> list[str]: ...

    def save_suggestions(
        self, session_id: str, results: list[TagSuggestionResult]
    ) -> list[TagSuggestion]: ...

    def accept_suggestion(self, suggestion_id: int) -> None: ...

    def get_pending_sessions(self, limit: Optional[int] = None) -> list[str]: ...

    def update_scan_status(self, session_id: str, status: str) -> None: ...


def _to_timestamp(value: Optional[datetime]) -> Optional[int]:
    return int(value.timestamp()) if value else None


def _from_timestamp(value: Optional[int]) -> Optional[datetime]:
    return datetime.fromtimestamp(value) if value else None


class SessionTagDatabase:
    """SQLite-backed SessionSource, TagStore and settings source."""

    def __init__(self, db_path: Optional[Path] = None):
        from .config import DEFAULT_DB_PATH

        self._db_path = Path(db_path) if db_path else DEFAULT_DB_PATH
        self._connection: Optional[sqlite3.Connection] = None
        self._initialized = False
        self._lock = threading.RLock()

    def _get_connection(self) -> sqlite3.Connection:
        if self._connection is None:
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(
                str(self._db_path),
                check_same_thread=False,
                isolation_level=None,
            )
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys = ON")
            self._connection.execute("PRAGMA journal_mode = WAL")
        return self._connection

    def _ensure_schema(self):
        if self._initialized:
            return
        with self._lock:
            conn = self._get_connection()
            if self._get_schema_version(conn) < SCHEMA_VERSION:
                conn.executescript(self._get_schema_sql())
                conn.execute(
                    "INSERT INTO schema_meta (version, description) VALUES (?, ?)",
                    (SCHEMA_VERSION, f"Schema version {SCHEMA_VERSION}"),
                )
            self._initialized = True

    def _get_schema_version(self, conn: sqlite3.Connection) -> int:
        try:
            row = conn.execute("SELECT MAX(version) as v FROM schema_meta").fetchone()
            return row["v"] if row and row["v"] else 0
        except sqlite3.OperationalError:
            return 0

    def _get_schema_sql(self) -> str:
        return """
            CREATE TABLE IF NOT EXISTS schema_meta (
                version INTEGER PRIMARY KEY,
                applied_at INTEGER DEFAULT (strftime('%s', 'now')),
                description TEXT
            );

            CREATE TABLE IF NOT EXISTS settings (
                key TEXT PRIMARY KEY,
                value TEXT
            );

            CREATE TABLE IF NOT EXISTS sessions (
                id TEXT PRIMARY KEY,
                file_path TEXT,
                summary TEXT,
                token_count INTEGER DEFAULT 0,
                start_time INTEGER,
                end_time INTEGER,
                outcome TEXT,
                scan_status TEXT,
                scanned_at INTEGER,
                updated_at INTEGER
            );

            CREATE INDEX IF NOT EXISTS idx_sessions_scan_status ON sessions(scan_status);

            CREATE TABLE IF NOT EXISTS messages (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                sequence INTEGER NOT NULL,
                role TEXT NOT NULL,
                content TEXT,
                tool_name TEXT,
                timestamp INTEGER,
                FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_messages_sequence ON messages(session_id, sequence);

            CREATE TABLE IF NOT EXISTS tags (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                name TEXT NOT NULL UNIQUE,
                color TEXT
            );

            CREATE TABLE IF NOT EXISTS session_tags (
                session_id TEXT NOT NULL,
                tag_id INTEGER NOT NULL,
                PRIMARY KEY (session_id, tag_id),
                FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE,
                FOREIGN KEY (tag_id) REFERENCES tags(id) ON DELETE CASCADE
            );

            CREATE TABLE IF NOT EXISTS tag_suggestions (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                session_id TEXT NOT NULL,
                tag_name TEXT NOT NULL,
                confidence REAL NOT NULL,
                category TEXT,
                reasoning TEXT,
                status TEXT DEFAULT 'pending',
                created_at INTEGER DEFAULT (strftime('%s', 'now')),
                reviewed_at INTEGER,
                FOREIGN KEY (session_id) REFERENCES sessions(id) ON DELETE CASCADE
            );

            CREATE INDEX IF NOT EXISTS idx_suggestions_session ON tag_suggestions(session_id);
        """

    @contextmanager
    def _transaction(self):
        with self._lock:
            conn = self._get_connection()
            conn.execute("BEGIN")
            try:
                yield conn
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def initialize(self):
        self._ensure_schema()

    def close(self):
        with self._lock:
            if self._connection:
                self._connection.close()
                self._connection = None
                self._initialized = False

    # Sessions

    def upsert_session(self, session: Session) -> None:
        self._ensure_schema()
        with self._lock:
            self._get_connection().execute(
                """
                INSERT INTO sessions (
                    id, file_path, summary, token_count, start_time, end_time, outcome, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, strftime('%s', 'now'))
                ON CONFLICT(id) DO UPDATE SET
                    file_path = excluded.file_path,
                    summary = excluded.summary,
                    token_count = excluded.token_count,
                    start_time = excluded.start_time,
                    end_time = excluded.end_time,
                    outcome = excluded.outcome,
                    updated_at = excluded.updated_at
                """,
                (
                    session.id,
                    session.file_path,
                    session.summary,
                    session.token_count,
                    _to_timestamp(session.start_time),
                    _to_timestamp(session.end_time),
                    session.outcome,
                ),
            )

    def replace_messages(self, session_id: str, messages: Iterable[SessionMessage]) -> None:
        self._ensure_schema()
        with self._transaction() as conn:
            conn.execute("DELETE FROM messages WHERE session_id = ?", (session_id,))
            conn.executemany(
                """
                INSERT INTO messages (session_id, sequence, role, content, tool_name, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                [
                    (session_id, i, m.role, m.content, m.tool_name, m.timestamp)
                    for i, m in enumerate(messages)
                ],
            )

    def get_session(self, session_id: str) -> Optional[Session]:
        self._ensure_schema()
        with self._lock:
            row = self._get_connection().execute(
                "SELECT * FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        if not row:
            return None
        return Session(
            id=row["id"],
            file_path=row["file_path"],
            summary=row["summary"],
            token_count=row["token_count"] or 0,
            start_time=_from_timestamp(row["start_time"]),
            end_time=_from_timestamp(row["end_time"]),
            outcome=row["outcome"],
        )

    def get_session_messages(self, session_id: str) -> list[SessionMessage]:
        self._ensure_schema()
        with self._lock:
            rows = self._get_connection().execute(
                "SELECT * FROM messages WHERE session_id = ? ORDER BY sequence",
                (session_id,),
            ).fetchall()
        return [
            SessionMessage(
                role=r["role"],
                content=r["content"] or "",
                tool_name=r["tool_name"],
                timestamp=r["timestamp"],
            )
            for r in rows
        ]

    # Tags

    def get_session_tags(self, session_id: str) -> list[Tag]:
        self._ensure_schema()
        with self._lock:
            rows = self._get_connection().execute(
                """
                SELECT t.id, t.name FROM tags t
                JOIN session_tags st ON st.tag_id = t.id
                WHERE st.session_id = ?
                ORDER BY t.name
                """,
                (session_id,),
            ).fetchall()
        return [Tag(id=r["id"], name=r["name"]) for r in rows]

    def get_tag_names(self) -> list[str]:
        self._ensure_schema()
        with self._lock:
            rows = self._get_connection().execute("SELECT name FROM tags ORDER BY name").fetchall()
        return [r["name"] for r in rows]

    def add_tag_to_session(self, session_id: str, tag_name: str, color: Optional[str] = None) -> bool:
        """Apply a tag to a session, creating the tag if needed.

        Returns False if the session already had the tag.
        """
        self._ensure_schema()
        with self._transaction() as conn:
            return self._add_tag_to_session(conn, session_id, tag_name, color)

    def _add_tag_to_session(
        self, conn: sqlite3.Connection, session_id: str, tag_name: str, color: Optional[str]
    ) -> bool:
        conn.execute(
            "INSERT INTO tags (name, color) VALUES (?, ?) ON CONFLICT(name) DO NOTHING",
            (tag_name, color),
        )
        tag_id = conn.execute("SELECT id FROM tags WHERE name = ?", (tag_name,)).fetchone()["id"]
        cursor = conn.execute(
            "INSERT OR IGNORE INTO session_tags (session_id, tag_id) VALUES (?, ?)",
            (session_id, tag_id),
        )
        return cursor.rowcount > 0

    # Suggestions

    def save_suggestions(
        self, session_id: str, results: list[TagSuggestionResult]
    ) -> list[TagSuggestion]:
        self._ensure_schema()
        saved = []
        with self._transaction() as conn:
            for result in results:
                cursor = conn.execute(
                    """
                    INSERT INTO tag_suggestions (session_id, tag_name, confidence, category, reasoning)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (session_id, result.name, result.confidence, result.category, result.reasoning),
                )
                saved.append(TagSuggestion(
                    id=cursor.lastrowid,
                    session_id=session_id,
                    tag_name=result.name,
                    confidence=result.confidence,
                    category=result.category,
                    reasoning=result.reasoning,
                ))
        return saved

    def get_suggestion(self, suggestion_id: int) -> Optional[TagSuggestion]:
        self._ensure_schema()
        with self._lock:
            row = self._get_connection().execute(
                "SELECT * FROM tag_suggestions WHERE id = ?", (suggestion_id,)
            ).fetchone()
        return self._row_to_suggestion(row) if row else None

    def get_session_suggestions(self, session_id: str) -> list[TagSuggestion]:
        self._ensure_schema()
        with self._lock:
            rows = self._get_connection().execute(
                """
                SELECT * FROM tag_suggestions
                WHERE session_id = ?
                ORDER BY confidence DESC, id
                """,
                (session_id,),
            ).fetchall()
        return [self._row_to_suggestion(r) for r in rows]

    def accept_suggestion(self, suggestion_id: int) -> None:
        """Apply the suggested tag to its session and mark it accepted."""
        self._ensure_schema()
        with self._transaction() as conn:
            row = conn.execute(
                "SELECT * FROM tag_suggestions WHERE id = ?", (suggestion_id,)
            ).fetchone()
            if not row:
                raise KeyError(f"Suggestion {suggestion_id} not found")

            added = self._add_tag_to_session(conn, row["session_id"], row["tag_name"], AI_TAG_COLOR)
            if not added:
                logger.debug(f"Tag {row['tag_name']} already applied to session {row['session_id']}")

            conn.execute(
                """
                UPDATE tag_suggestions
                SET status = 'accepted', reviewed_at = strftime('%s', 'now')
                WHERE id = ?
                """,
                (suggestion_id,),
            )

    def set_suggestion_status(self, suggestion_id: int, status: str) -> None:
        """Mark a suggestion rejected or dismissed without touching tags."""
        if status not in SUGGESTION_STATUSES or status == "accepted":
            raise ValueError(f"Invalid suggestion status: {status}")
        self._ensure_schema()
        with self._lock:
            cursor = self._get_connection().execute(
                """
                UPDATE tag_suggestions
                SET status = ?, reviewed_at = strftime('%s', 'now')
                WHERE id = ?
                """,
                (status, suggestion_id),
            )
        if cursor.rowcount == 0:
            raise KeyError(f"Suggestion {suggestion_id} not found")

    def get_pending_suggestions(self, limit: Optional[int] = None) -> list[TagSuggestion]:
        """Unreviewed suggestions across all sessions, most confident first."""
        self._ensure_schema()
        with self._lock:
            rows = self._get_connection().execute(
                """
                SELECT * FROM tag_suggestions
                WHERE status = 'pending'
                ORDER BY confidence DESC, id
                LIMIT ?
                """,
                (-1 if limit is None else limit,),
            ).fetchall()
        return [self._row_to_suggestion(r) for r in rows]

    def accept_all_suggestions(self, session_id: str) -> int:
        """Accept every pending suggestion for a session. Returns the count accepted."""
        pending = [s for s in self.get_session_suggestions(session_id) if s.status == "pending"]

        accepted = 0
        for suggestion in pending:
            try:
                self.accept_suggestion(suggestion.id)
                accepted += 1
            except (KeyError, sqlite3.Error) as e:
                logger.warning(f"Failed to accept suggestion {suggestion.id}: {e}")

        logger.debug(f"Accepted {accepted}/{len(pending)} suggestions for session {session_id}")
        return accepted

    def dismiss_all_suggestions(self, session_id: str) -> int:
        self._ensure_schema()
        with self._lock:
            cursor = self._get_connection().execute(
                """
                UPDATE tag_suggestions
                SET status = 'dismissed', reviewed_at = strftime('%s', 'now')
                WHERE session_id = ? AND status = 'pending'
                """,
                (session_id,),
            )
        logger.debug(f"Dismissed {cursor.rowcount} suggestions for session {session_id}")
        return cursor.rowcount

    def _row_to_suggestion(self, row: sqlite3.Row) -> TagSuggestion:
        return TagSuggestion(
            id=row["id"],
            session_id=row["session_id"],
            tag_name=row["tag_name"],
            confidence=row["confidence"],
            category=row["category"],
            reasoning=row["reasoning"],
            status=row["status"],
        )

    # Scan bookkeeping

    def update_scan_status(self, session_id: str, status: str) -> None:
        if status not in SCAN_STATUSES:
            raise ValueError(f"Unknown scan status: {status}")
        self._ensure_schema()
        with self._lock:
            self._get_connection().execute(
                """
                UPDATE sessions SET scan_status = ?, scanned_at = strftime('%s', 'now')
                WHERE id = ?
                """,
                (status, session_id),
            )

    def get_scan_status(self, session_id: str) -> Optional[str]:
        self._ensure_schema()
        with self._lock:
            row = self._get_connection().execute(
                "SELECT scan_status FROM sessions WHERE id = ?", (session_id,)
            ).fetchone()
        if not row:
            return None
        return row["scan_status"] or "pending"

    def get_pending_sessions(self, limit: Optional[int] = None) -> list[str]:
        """Never-scanned sessions, user sessions first, newest first."""
        self._ensure_schema()
        with self._lock:
            rows = self._get_connection().execute(
                """
                SELECT id FROM sessions
                WHERE scan_status IS NULL OR scan_status = 'pending'
                ORDER BY
                    CASE WHEN id LIKE 'agent-%' THEN 1 ELSE 0 END,
                    end_time DESC
                LIMIT ?
                """,
                (-1 if limit is None else limit,),
            ).fetchall()
        return [r["id"] for r in rows]

    def get_sessions_needing_rescan(self) -> list[str]:
        """Scanned sessions that changed after their scan, most recently changed first."""
        self._ensure_schema()
        with self._lock:
            rows = self._get_connection().execute(
                """
                SELECT id FROM sessions
                WHERE scan_status = 'completed'
                  AND scanned_at IS NOT NULL
                  AND updated_at > scanned_at
                ORDER BY updated_at DESC
                """
            ).fetchall()
        return [r["id"] for r in rows]

    def get_scan_counts(self) -> dict[str, int]:
        self._ensure_schema()
        with self._lock:
            row = self._get_connection().execute(
                """
                SELECT
                    COUNT(*) AS total,
                    SUM(CASE WHEN scan_status = 'completed' THEN 1 ELSE 0 END) AS scanned,
                    SUM(CASE WHEN scan_status IS NULL OR scan_status = 'pending' THEN 1 ELSE 0 END) AS pending
                FROM sessions
                """
            ).fetchone()
        return {
            "scanned": row["scanned"] or 0,
            "pending": row["pending"] or 0,
            "total": row["total"],
        }

    def skip_old_sessions(self, days: int) -> int:
        """Mark never-scanned sessions that ended more than ``days`` ago as skipped."""
        if days < 0:
            raise ValueError(f"days must be non-negative: {days}")
        self._ensure_schema()
        with self._lock:
            cursor = self._get_connection().execute(
                """
                UPDATE sessions SET scan_status = 'skipped'
                WHERE (scan_status IS NULL OR scan_status = 'pending')
                  AND end_time < CAST(strftime('%s', 'now') AS INTEGER) - ? * 86400
                """,
                (days,),
            )
        logger.debug(f"Skipped {cursor.rowcount} sessions older than {days} days")
        return cursor.rowcount

    # Settings

    def get_setting(self, key: str) -> Optional[str]:
        self._ensure_schema()
        with self._lock:
            row = self._get_connection().execute(
                "SELECT value FROM settings WHERE key = ?", (key,)
            ).fetchone()
        return row["value"] if row else None

    def set_setting(self, key: str, value) -> None:
        self._ensure_schema()
        with self._lock:
            self._get_connection().execute(
                """
                INSERT INTO settings (key, value) VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value
                """,
                (key, str(value)),
            )
