from __future__ import annotations

import logging
import sqlite3
from contextlib import contextmanager
from datetime import date, datetime, timedelta
from typing import Iterator

from roam.config_manager import ConfigManager
from roam.errors import InvalidArgumentError, NotFoundError, OperationFailedError, RoamError
from roam.expander import OccurrenceExpander
from roam.models import (
    AppConfig,
    CalendarEvent,
    CalendarSource,
    Task,
    agenda_window,
    parse_iso_date,
)
from roam.search_index import SearchIndex
from roam.state_store import StateStore
from roam.visibility import filter_visible, index_sources

logger = logging.getLogger(__name__)


def _require(value: object, message: str) -> None:
    if value is None:
        raise InvalidArgumentError(message)


def _as_date(value: date | datetime | str, name: str) -> date:
    try:
        parsed = parse_iso_date(value)
    except ValueError as exc:
        raise InvalidArgumentError(f"{name} is not a valid date: {value!r}") from exc
    if parsed is None:
        raise InvalidArgumentError(f"{name} is required")
    return parsed


def _validate_schedule(event: CalendarEvent) -> None:
    if not (event.title or "").strip():
        raise InvalidArgumentError("Event title is required")
    if event.end_date_time < event.start_date_time:
        raise InvalidArgumentError("Event end must not be earlier than its start")


class CalendarService:
    def __init__(
        self,
        config_manager: ConfigManager,
        state_store: StateStore,
        search_index: SearchIndex | None = None,
    ) -> None:
        self.config_manager = config_manager
        self.state_store = state_store
        self.search_index = search_index or SearchIndex(state_store)

    @contextmanager
    def _unit_of_work(self, action: str) -> Iterator[sqlite3.Connection]:
        try:
            with self.state_store.transaction() as conn:
                yield conn
        except RoamError:
            raise
        except Exception as exc:
            logger.error("Failed to %s: %s", action, exc, exc_info=True)
            raise OperationFailedError(f"Failed to {action}") from exc

    def _config(self) -> AppConfig:
        return self.config_manager.load()

    # Search indexing

    def index_event(self, event: CalendarEvent) -> None:
        try:
            self.search_index.index_event(
                event.id,
                event.title,
                event.description,
                event.start_date_time,
                event.end_date_time,
                event.location,
            )
            logger.debug("Calendar event indexed: %s", event.title)
        except Exception as exc:
            logger.error("Failed to index calendar event %s: %s", event.id, exc, exc_info=True)

    def _unindex(self, event_id: int) -> None:
        try:
            self.search_index.delete_document(event_id)
        except Exception as exc:
            logger.error("Failed to remove calendar event %s from index: %s", event_id, exc, exc_info=True)

    # Calendar sources

    def list_sources(self) -> list[CalendarSource]:
        with self._unit_of_work("load calendar sources") as conn:
            return self.state_store.find_all_sources(conn=conn)

    def create_source(self, source: CalendarSource) -> CalendarSource:
        _require(source, "CalendarSource cannot be null")
        if not (source.name or "").strip():
            raise InvalidArgumentError("Calendar source name is required")
        with self._unit_of_work("create calendar source") as conn:
            if source.is_default:
                self._clear_default_flag(conn)
            created = self.state_store.save_source(source, conn=conn)
        logger.info("Calendar source created: %s", created.name)
        return created

    def _clear_default_flag(self, conn: sqlite3.Connection) -> None:
        for existing in self.state_store.find_all_sources(conn=conn):
            if existing.is_default:
                existing.is_default = False
                self.state_store.save_source(existing, conn=conn)

    def set_source_visibility(self, source_id: int, visible: bool) -> CalendarSource:
        _require(source_id, "Calendar source ID cannot be null")
        with self._unit_of_work("toggle calendar visibility") as conn:
            source = self.state_store.find_source_by_id(source_id, conn=conn)
            if source is None:
                raise NotFoundError(f"Calendar source not found: {source_id}")
            source.is_visible = bool(visible)
            self.state_store.save_source(source, conn=conn)
        logger.info("Calendar source %s visibility set to %s", source.name, source.is_visible)
        return source

    def default_source(self, conn: sqlite3.Connection | None = None) -> CalendarSource:
        if conn is None:
            with self._unit_of_work("resolve default calendar source") as own_conn:
                return self._resolve_default_source(own_conn)
        return self._resolve_default_source(conn)

    def _resolve_default_source(self, conn: sqlite3.Connection) -> CalendarSource:
        sources = self.state_store.find_all_sources(conn=conn)
        for source in sources:
            if source.is_default:
                return source
        if sources:
            return sources[0]
        calendar_config = self._config().calendar
        created = self.state_store.save_source(
            CalendarSource(
                name=calendar_config.default_source_name,
                color=calendar_config.default_source_color,
                is_default=True,
            ),
            conn=conn,
        )
        logger.info("Created default calendar source: %s", created.name)
        return created

    # Event CRUD

    def create_event(self, event: CalendarEvent) -> CalendarEvent:
        _require(event, "CalendarEvent cannot be null")
        _validate_schedule(event)
        with self._unit_of_work("create calendar event") as conn:
            if event.calendar_source_id is None:
                event.calendar_source_id = self._resolve_default_source(conn).id
            created = self.state_store.save_event(event, conn=conn)
        logger.info("Calendar event created: %s", created.title)
        self.index_event(created)
        return created

    def update_event(self, event: CalendarEvent) -> CalendarEvent:
        if event is None or event.id is None:
            raise InvalidArgumentError("CalendarEvent and ID cannot be null")
        _validate_schedule(event)
        with self._unit_of_work("update calendar event") as conn:
            existing = self.state_store.find_event_by_id(event.edit_target_id, conn=conn)
            if existing is None:
                raise NotFoundError(f"Calendar event not found: {event.edit_target_id}")
            target = self._resolve_edit(existing, event)
            updated = self.state_store.save_event(target, conn=conn)
        logger.info("Calendar event updated: %s", updated.title)
        self.index_event(updated)
        return updated

    def _resolve_edit(self, stored: CalendarEvent, edited: CalendarEvent) -> CalendarEvent:
        if not (edited.is_recurring_instance and edited.parent_event_id == stored.id and not stored.is_recurring_instance):
            return edited
        # An edited synthesized occurrence applies to its parent; the series
        # keeps its first date and takes the occurrence's time and duration.
        start = datetime.combine(stored.start_date_time.date(), edited.start_date_time.time())
        return edited.with_updates(
            id=stored.id,
            parent_event_id=None,
            is_recurring_instance=False,
            original_start_date_time=None,
            start_date_time=start,
            end_date_time=start + (edited.end_date_time - edited.start_date_time),
            created_at=stored.created_at,
        )

    def delete_event(self, event_id: int) -> bool:
        _require(event_id, "Event ID cannot be null")
        with self._unit_of_work("delete calendar event") as conn:
            existing = self.state_store.find_event_by_id(event_id, conn=conn)
            deleted = self.state_store.delete_event(event_id, conn=conn) if existing else False
        if existing is not None:
            logger.info("Calendar event deleted: %s", existing.title)
            self._unindex(event_id)
        return deleted

    def get_event(self, event_id: int) -> CalendarEvent | None:
        _require(event_id, "Event ID cannot be null")
        with self._unit_of_work("find calendar event") as conn:
            return self.state_store.find_event_by_id(event_id, conn=conn)

    def list_events(self) -> list[CalendarEvent]:
        with self._unit_of_work("retrieve calendar events") as conn:
            return self.state_store.find_all_events(conn=conn)

    def events_by_source(self, source_id: int) -> list[CalendarEvent]:
        _require(source_id, "Calendar source ID cannot be null")
        with self._unit_of_work("retrieve calendar events by source") as conn:
            return self.state_store.find_events_by_source_id(source_id, conn=conn)

    def events_by_task(self, task_id: int) -> list[CalendarEvent]:
        _require(task_id, "Task ID cannot be null")
        with self._unit_of_work("retrieve calendar events by task") as conn:
            event = self.state_store.find_event_by_task_id(task_id, conn=conn)
        return [event] if event else []

    def events_by_operation(self, operation_id: int) -> list[CalendarEvent]:
        _require(operation_id, "Operation ID cannot be null")
        with self._unit_of_work("retrieve calendar events by operation") as conn:
            return self.state_store.find_events_by_operation_id(operation_id, conn=conn)

    def count_events(self) -> int:
        with self._unit_of_work("count calendar events") as conn:
            return self.state_store.count_events(conn=conn)

    # Range queries

    def events_in_range(self, range_start: date | datetime | str, range_end: date | datetime | str) -> list[CalendarEvent]:
        start = _as_date(range_start, "range_start")
        end = _as_date(range_end, "range_end")
        if end < start:
            raise InvalidArgumentError("range_end must not be earlier than range_start")

        expander = OccurrenceExpander(self._config().calendar.open_series_horizon)
        with self._unit_of_work("load calendar events") as conn:
            sources = index_sources(self.state_store.find_all_sources(conn=conn))
            parents = filter_visible(self.state_store.find_recurring_events(conn=conn), sources)
            singles = filter_visible(self.state_store.find_single_events(conn=conn), sources)

        results = [event for event in singles if event.overlaps(start, end)]
        for parent in parents:
            results.extend(expander.expand(parent, start, end))
        results.sort(key=lambda item: (item.start_date_time, item.id or 0))
        return results

    def events_for_date(self, day: date | datetime | str) -> list[CalendarEvent]:
        target = _as_date(day, "day")
        return self.events_in_range(target, target)

    def agenda_window(self, today: date | None = None) -> tuple[date, date]:
        calendar_config = self._config().calendar
        return agenda_window(
            today or date.today(),
            calendar_config.agenda_months_before,
            calendar_config.agenda_months_after,
        )

    def agenda_events(self, today: date | None = None) -> list[CalendarEvent]:
        start, end = self.agenda_window(today)
        return self.events_in_range(start, end)

    # Recurring series

    def delete_series(self, parent_event_id: int) -> int:
        _require(parent_event_id, "Parent event ID cannot be null")
        with self._unit_of_work("delete recurring series") as conn:
            children = self.state_store.find_events_where_parent_event_id(parent_event_id, conn=conn)
            removed_ids: list[int] = []
            if self.state_store.delete_event(parent_event_id, conn=conn):
                removed_ids.append(parent_event_id)
            for child in children:
                if self.state_store.delete_event(child.id, conn=conn):
                    removed_ids.append(child.id)
        logger.info(
            "Recurring series %s deleted (parent and %d instances)",
            parent_event_id,
            len(children),
        )
        for event_id in removed_ids:
            self._unindex(event_id)
        return len(removed_ids)

    # Tasks

    def create_task(self, task: Task) -> Task:
        _require(task, "Task cannot be null")
        if not (task.title or "").strip():
            raise InvalidArgumentError("Task title is required")
        with self._unit_of_work("create task") as conn:
            created = self.state_store.save_task(task, conn=conn)
        logger.info("Task created: %s", created.title)
        if created.due_date is not None:
            self.sync_task_to_calendar(created.id)
        return created

    def get_task(self, task_id: int) -> Task | None:
        _require(task_id, "Task ID cannot be null")
        with self._unit_of_work("find task") as conn:
            return self.state_store.find_task_by_id(task_id, conn=conn)

    def update_task_due_date(self, task_id: int, due_date: datetime | None) -> Task:
        _require(task_id, "Task ID cannot be null")
        with self._unit_of_work("update task due date") as conn:
            task = self.state_store.find_task_by_id(task_id, conn=conn)
            if task is None:
                raise NotFoundError(f"Task not found: {task_id}")
            task.due_date = due_date
            self.state_store.save_task(task, conn=conn)
        self.sync_task_to_calendar(task_id)
        return task

    def sync_task_to_calendar(self, task_id: int) -> CalendarEvent | None:
        _require(task_id, "Task ID cannot be null")
        lead = timedelta(minutes=self._config().calendar.task_event_lead_minutes)

        with self._unit_of_work("sync task to calendar") as conn:
            task = self.state_store.find_task_by_id(task_id, conn=conn)
            if task is None:
                raise InvalidArgumentError(f"Task not found: {task_id}")
            if task.due_date is None:
                logger.debug("Task %s has no due date, skipping calendar sync", task_id)
                return None

            event = self.state_store.find_event_by_task_id(task_id, conn=conn)
            if event is not None:
                event.title = task.title
                event.description = task.description
                event.start_date_time = task.due_date - lead
                event.end_date_time = task.due_date
                self.state_store.save_event(event, conn=conn)
                logger.info("Updated calendar event for task: %s", task.title)
            else:
                source = self._resolve_default_source(conn)
                event = self.state_store.save_event(
                    CalendarEvent(
                        title=task.title,
                        description=task.description,
                        start_date_time=task.due_date - lead,
                        end_date_time=task.due_date,
                        is_all_day=False,
                        task_id=task_id,
                        operation_id=task.operation_id,
                        calendar_source_id=source.id,
                    ),
                    conn=conn,
                )
                logger.info("Created calendar event for task: %s", task.title)

        self.index_event(event)
        return event
