from __future__ import annotations

import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Iterator

from roam.models import (
    CalendarEvent,
    CalendarSource,
    CalendarSourceType,
    Priority,
    Task,
    TaskStatus,
    parse_iso_datetime,
    serialize_datetime,
)

EVENT_COLUMNS = (
    "id",
    "calendar_source_id",
    "operation_id",
    "task_id",
    "wiki_id",
    "title",
    "description",
    "location",
    "start_date_time",
    "end_date_time",
    "is_all_day",
    "color",
    "region",
    "recurrence_rule",
    "recurrence_end_date",
    "parent_event_id",
    "is_recurring_instance",
    "original_start_date_time",
    "created_at",
    "updated_at",
)
_EVENT_SELECT = f"SELECT {', '.join(EVENT_COLUMNS)} FROM calendar_events"


def _now() -> datetime:
    return datetime.now().replace(microsecond=0)


def _escape_like(text: str) -> str:
    return text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _event_from_row(row: sqlite3.Row) -> CalendarEvent:
    return CalendarEvent(
        id=int(row["id"]),
        calendar_source_id=row["calendar_source_id"],
        operation_id=row["operation_id"],
        task_id=row["task_id"],
        wiki_id=row["wiki_id"],
        title=str(row["title"]),
        description=str(row["description"] or ""),
        location=str(row["location"] or ""),
        start_date_time=parse_iso_datetime(row["start_date_time"]),
        end_date_time=parse_iso_datetime(row["end_date_time"]),
        is_all_day=bool(row["is_all_day"]),
        color=row["color"],
        region=row["region"],
        recurrence_rule=row["recurrence_rule"],
        recurrence_end_date=parse_iso_datetime(row["recurrence_end_date"]),
        parent_event_id=row["parent_event_id"],
        is_recurring_instance=bool(row["is_recurring_instance"]),
        original_start_date_time=parse_iso_datetime(row["original_start_date_time"]),
        created_at=parse_iso_datetime(row["created_at"]),
        updated_at=parse_iso_datetime(row["updated_at"]),
    )


def _source_from_row(row: sqlite3.Row) -> CalendarSource:
    return CalendarSource(
        id=int(row["id"]),
        name=str(row["name"]),
        color=str(row["color"]),
        type=CalendarSourceType(row["type"]),
        is_visible=bool(row["is_visible"]),
        is_default=bool(row["is_default"]),
        created_at=parse_iso_datetime(row["created_at"]),
        updated_at=parse_iso_datetime(row["updated_at"]),
    )


def _task_from_row(row: sqlite3.Row) -> Task:
    return Task(
        id=int(row["id"]),
        operation_id=row["operation_id"],
        title=str(row["title"]),
        description=str(row["description"] or ""),
        status=TaskStatus(row["status"]),
        priority=Priority(row["priority"]),
        due_date=parse_iso_datetime(row["due_date"]),
        created_at=parse_iso_datetime(row["created_at"]),
        updated_at=parse_iso_datetime(row["updated_at"]),
    )


class StateStore:
    def __init__(self, db_path: str) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._init_schema()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_schema(self) -> None:
        schema_sql = """
        CREATE TABLE IF NOT EXISTS calendar_sources (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            color TEXT NOT NULL,
            type TEXT NOT NULL,
            is_visible INTEGER NOT NULL,
            is_default INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS calendar_events (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            calendar_source_id INTEGER,
            operation_id INTEGER,
            task_id INTEGER,
            wiki_id INTEGER,
            title TEXT NOT NULL,
            description TEXT,
            location TEXT,
            start_date_time TEXT NOT NULL,
            end_date_time TEXT NOT NULL,
            is_all_day INTEGER NOT NULL,
            color TEXT,
            region TEXT,
            recurrence_rule TEXT,
            recurrence_end_date TEXT,
            parent_event_id INTEGER,
            is_recurring_instance INTEGER NOT NULL,
            original_start_date_time TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE INDEX IF NOT EXISTS idx_calendar_events_task ON calendar_events(task_id);
        CREATE INDEX IF NOT EXISTS idx_calendar_events_parent ON calendar_events(parent_event_id);
        CREATE INDEX IF NOT EXISTS idx_calendar_events_operation ON calendar_events(operation_id);

        CREATE TABLE IF NOT EXISTS tasks (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            operation_id INTEGER,
            title TEXT NOT NULL,
            description TEXT,
            status TEXT NOT NULL,
            priority TEXT NOT NULL,
            due_date TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        );

        CREATE TABLE IF NOT EXISTS search_documents (
            doc_id INTEGER PRIMARY KEY,
            title TEXT NOT NULL,
            description TEXT,
            location TEXT,
            start_date_time TEXT,
            end_date_time TEXT,
            indexed_at TEXT NOT NULL
        );
        """
        with self.transaction() as conn:
            conn.executescript(schema_sql)

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Open a unit of work that commits on success and rolls back on any exception."""
        with self._lock:
            conn = self._connect()
            try:
                with conn:
                    yield conn
            finally:
                conn.close()

    @contextmanager
    def _scope(self, conn: sqlite3.Connection | None) -> Iterator[sqlite3.Connection]:
        if conn is not None:
            yield conn
            return
        with self.transaction() as own_conn:
            yield own_conn

    # Calendar sources

    def save_source(self, source: CalendarSource, *, conn: sqlite3.Connection | None = None) -> CalendarSource:
        now = _now()
        with self._scope(conn) as active:
            if source.id is None:
                cursor = active.execute(
                    """
                    INSERT INTO calendar_sources(name, color, type, is_visible, is_default, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        source.name,
                        source.color,
                        source.type.value,
                        int(source.is_visible),
                        int(source.is_default),
                        serialize_datetime(now),
                        serialize_datetime(now),
                    ),
                )
                source.id = int(cursor.lastrowid)
                source.created_at = now
            else:
                active.execute(
                    """
                    UPDATE calendar_sources
                    SET name = ?, color = ?, type = ?, is_visible = ?, is_default = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        source.name,
                        source.color,
                        source.type.value,
                        int(source.is_visible),
                        int(source.is_default),
                        serialize_datetime(now),
                        int(source.id),
                    ),
                )
            source.updated_at = now
        return source

    def find_all_sources(self, *, conn: sqlite3.Connection | None = None) -> list[CalendarSource]:
        with self._scope(conn) as active:
            rows = active.execute("SELECT * FROM calendar_sources ORDER BY id ASC").fetchall()
        return [_source_from_row(row) for row in rows]

    def find_source_by_id(
        self, source_id: int, *, conn: sqlite3.Connection | None = None
    ) -> CalendarSource | None:
        with self._scope(conn) as active:
            row = active.execute("SELECT * FROM calendar_sources WHERE id = ?", (int(source_id),)).fetchone()
        return _source_from_row(row) if row else None

    # Calendar events

    def save_event(self, event: CalendarEvent, *, conn: sqlite3.Connection | None = None) -> CalendarEvent:
        now = _now()
        values: dict[str, Any] = {
            "calendar_source_id": event.calendar_source_id,
            "operation_id": event.operation_id,
            "task_id": event.task_id,
            "wiki_id": event.wiki_id,
            "title": event.title,
            "description": event.description,
            "location": event.location,
            "start_date_time": serialize_datetime(event.start_date_time),
            "end_date_time": serialize_datetime(event.end_date_time),
            "is_all_day": int(event.is_all_day),
            "color": event.color,
            "region": event.region,
            "recurrence_rule": (event.recurrence_rule or "").strip() or None,
            "recurrence_end_date": serialize_datetime(event.recurrence_end_date),
            "parent_event_id": event.parent_event_id,
            "is_recurring_instance": int(event.is_recurring_instance),
            "original_start_date_time": serialize_datetime(event.original_start_date_time),
            "updated_at": serialize_datetime(now),
        }
        with self._scope(conn) as active:
            if event.id is None:
                values["created_at"] = serialize_datetime(now)
                columns = ", ".join(values)
                placeholders = ", ".join("?" for _ in values)
                cursor = active.execute(
                    f"INSERT INTO calendar_events({columns}) VALUES ({placeholders})",
                    tuple(values.values()),
                )
                event.id = int(cursor.lastrowid)
                event.created_at = now
            else:
                assignments = ", ".join(f"{column} = ?" for column in values)
                cursor = active.execute(
                    f"UPDATE calendar_events SET {assignments} WHERE id = ?",
                    (*values.values(), int(event.id)),
                )
                if cursor.rowcount == 0:
                    raise LookupError(f"Calendar event not found: {event.id}")
            event.updated_at = now
        return event

    def find_event_by_id(self, event_id: int, *, conn: sqlite3.Connection | None = None) -> CalendarEvent | None:
        with self._scope(conn) as active:
            row = active.execute(f"{_EVENT_SELECT} WHERE id = ?", (int(event_id),)).fetchone()
        return _event_from_row(row) if row else None

    def _find_events(
        self, where: str, params: tuple[Any, ...], conn: sqlite3.Connection | None
    ) -> list[CalendarEvent]:
        with self._scope(conn) as active:
            rows = active.execute(
                f"{_EVENT_SELECT} {where} ORDER BY start_date_time ASC, id ASC",
                params,
            ).fetchall()
        return [_event_from_row(row) for row in rows]

    def find_all_events(self, *, conn: sqlite3.Connection | None = None) -> list[CalendarEvent]:
        return self._find_events("", (), conn)

    def find_events_by_source_id(
        self, source_id: int, *, conn: sqlite3.Connection | None = None
    ) -> list[CalendarEvent]:
        return self._find_events("WHERE calendar_source_id = ?", (int(source_id),), conn)

    def find_events_by_operation_id(
        self, operation_id: int, *, conn: sqlite3.Connection | None = None
    ) -> list[CalendarEvent]:
        return self._find_events("WHERE operation_id = ?", (int(operation_id),), conn)

    def find_events_by_task_id(self, task_id: int, *, conn: sqlite3.Connection | None = None) -> list[CalendarEvent]:
        return self._find_events("WHERE task_id = ?", (int(task_id),), conn)

    def find_event_by_task_id(self, task_id: int, *, conn: sqlite3.Connection | None = None) -> CalendarEvent | None:
        events = self.find_events_by_task_id(task_id, conn=conn)
        return events[0] if events else None

    def find_events_where_parent_event_id(
        self, parent_event_id: int, *, conn: sqlite3.Connection | None = None
    ) -> list[CalendarEvent]:
        return self._find_events("WHERE parent_event_id = ?", (int(parent_event_id),), conn)

    def find_recurring_events(self, *, conn: sqlite3.Connection | None = None) -> list[CalendarEvent]:
        return self._find_events(
            "WHERE TRIM(COALESCE(recurrence_rule, '')) != '' AND is_recurring_instance = 0",
            (),
            conn,
        )

    def find_single_events(self, *, conn: sqlite3.Connection | None = None) -> list[CalendarEvent]:
        # Complement of find_recurring_events: plain events plus persisted instance rows.
        return self._find_events(
            "WHERE TRIM(COALESCE(recurrence_rule, '')) = '' OR is_recurring_instance = 1",
            (),
            conn,
        )

    def delete_event(self, event_id: int, *, conn: sqlite3.Connection | None = None) -> bool:
        with self._scope(conn) as active:
            cursor = active.execute("DELETE FROM calendar_events WHERE id = ?", (int(event_id),))
            deleted = cursor.rowcount > 0
        return deleted

    def count_events(self, *, conn: sqlite3.Connection | None = None) -> int:
        with self._scope(conn) as active:
            row = active.execute("SELECT COUNT(*) AS total FROM calendar_events").fetchone()
        return int(row["total"])

    # Tasks

    def save_task(self, task: Task, *, conn: sqlite3.Connection | None = None) -> Task:
        now = _now()
        with self._scope(conn) as active:
            if task.id is None:
                cursor = active.execute(
                    """
                    INSERT INTO tasks(operation_id, title, description, status, priority, due_date, created_at, updated_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        task.operation_id,
                        task.title,
                        task.description,
                        task.status.value,
                        task.priority.value,
                        serialize_datetime(task.due_date),
                        serialize_datetime(now),
                        serialize_datetime(now),
                    ),
                )
                task.id = int(cursor.lastrowid)
                task.created_at = now
            else:
                active.execute(
                    """
                    UPDATE tasks
                    SET operation_id = ?, title = ?, description = ?, status = ?, priority = ?, due_date = ?, updated_at = ?
                    WHERE id = ?
                    """,
                    (
                        task.operation_id,
                        task.title,
                        task.description,
                        task.status.value,
                        task.priority.value,
                        serialize_datetime(task.due_date),
                        serialize_datetime(now),
                        int(task.id),
                    ),
                )
            task.updated_at = now
        return task

    def find_task_by_id(self, task_id: int, *, conn: sqlite3.Connection | None = None) -> Task | None:
        with self._scope(conn) as active:
            row = active.execute("SELECT * FROM tasks WHERE id = ?", (int(task_id),)).fetchone()
        return _task_from_row(row) if row else None

    # Search documents

    def upsert_search_document(
        self,
        *,
        doc_id: int,
        title: str,
        description: str,
        location: str,
        start: datetime | None,
        end: datetime | None,
    ) -> None:
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO search_documents(doc_id, title, description, location, start_date_time, end_date_time, indexed_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(doc_id) DO UPDATE SET
                    title = excluded.title,
                    description = excluded.description,
                    location = excluded.location,
                    start_date_time = excluded.start_date_time,
                    end_date_time = excluded.end_date_time,
                    indexed_at = excluded.indexed_at
                """,
                (
                    int(doc_id),
                    title,
                    description,
                    location,
                    serialize_datetime(start),
                    serialize_datetime(end),
                    serialize_datetime(_now()),
                ),
            )

    def delete_search_document(self, doc_id: int) -> None:
        with self.transaction() as conn:
            conn.execute("DELETE FROM search_documents WHERE doc_id = ?", (int(doc_id),))

    def search_documents(self, text: str, limit: int = 50) -> list[dict[str, Any]]:
        pattern = f"%{_escape_like(text.strip())}%"
        with self.transaction() as conn:
            rows = conn.execute(
                """
                SELECT doc_id, title, description, location, start_date_time, end_date_time, indexed_at
                FROM search_documents
                WHERE title LIKE ? ESCAPE '\\' OR description LIKE ? ESCAPE '\\' OR location LIKE ? ESCAPE '\\'
                ORDER BY start_date_time ASC
                LIMIT ?
                """,
                (pattern, pattern, pattern, max(1, int(limit))),
            ).fetchall()
        return [dict(row) for row in rows]
