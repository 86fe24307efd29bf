from __future__ import annotations

import os
from contextlib import contextmanager
from datetime import date
from typing import Any, Iterator

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from roam.calendar_service import CalendarService
from roam.config_manager import ConfigManager
from roam.errors import InvalidArgumentError, NotFoundError, OperationFailedError
from roam.models import (
    CalendarEvent,
    CalendarSource,
    Priority,
    Task,
    TaskStatus,
    event_from_dict,
    parse_iso_datetime,
)
from roam.state_store import StateStore


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class SourceCreateRequest(BaseModel):
    name: str = Field(min_length=1, max_length=100)
    color: str = Field(default="#4285f4", max_length=7)
    is_visible: bool = True
    is_default: bool = False


class SourceVisibilityRequest(BaseModel):
    visible: bool


class TaskCreateRequest(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    operation_id: int | None = None
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    due_date: str | None = None


class TaskDueDateRequest(BaseModel):
    due_date: str | None = None


class AppContext:
    def __init__(self, config_path: str, state_path: str) -> None:
        self.config_manager = ConfigManager(config_path)
        self.state_store = StateStore(state_path)
        self.calendar_service = CalendarService(self.config_manager, self.state_store)


@contextmanager
def _api_errors() -> Iterator[None]:
    try:
        yield
    except HTTPException:
        raise
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except (InvalidArgumentError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except OperationFailedError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc


def _parse_optional_datetime(value: str | None, name: str) -> Any:
    try:
        return parse_iso_datetime(value)
    except ValueError as exc:
        raise InvalidArgumentError(f"{name} is not a valid datetime: {value!r}") from exc


def _events_payload(events: list[CalendarEvent]) -> dict[str, Any]:
    return {"count": len(events), "events": [event.to_dict() for event in events]}


def create_app() -> FastAPI:
    config_path = os.getenv("ROAM_CONFIG_PATH", "config.yaml")
    state_path = os.getenv("ROAM_STATE_PATH", "data/roam.db")
    context = AppContext(config_path=config_path, state_path=state_path)

    app = FastAPI(title="Roam Calendar", version="0.1.0")
    app.state.context = context

    def service() -> CalendarService:
        return app.state.context.calendar_service

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        with _api_errors():
            config = app.state.context.config_manager.load()
        return config.to_dict()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        with _api_errors():
            updated = app.state.context.config_manager.update(request.payload)
        return {"message": "config updated", "config": updated.to_dict()}

    @app.get("/api/sources")
    def list_sources() -> dict[str, Any]:
        with _api_errors():
            sources = service().list_sources()
        return {"sources": [source.to_dict() for source in sources]}

    @app.post("/api/sources")
    def create_source(request: SourceCreateRequest) -> dict[str, Any]:
        with _api_errors():
            created = service().create_source(
                CalendarSource(
                    name=request.name.strip(),
                    color=request.color,
                    is_visible=request.is_visible,
                    is_default=request.is_default,
                )
            )
        return created.to_dict()

    @app.put("/api/sources/{source_id}/visibility")
    def set_source_visibility(source_id: int, request: SourceVisibilityRequest) -> dict[str, Any]:
        with _api_errors():
            source = service().set_source_visibility(source_id, request.visible)
        return source.to_dict()

    @app.get("/api/events")
    def list_events(start: date | None = None, end: date | None = None) -> dict[str, Any]:
        with _api_errors():
            if start is None and end is None:
                start, end = service().agenda_window()
            elif start is None or end is None:
                raise InvalidArgumentError("start and end must both be provided")
            events = service().events_in_range(start, end)
        payload = _events_payload(events)
        payload.update({"start": start.isoformat(), "end": end.isoformat()})
        return payload

    @app.get("/api/events/day/{day}")
    def events_for_day(day: date) -> dict[str, Any]:
        with _api_errors():
            events = service().events_for_date(day)
        return _events_payload(events)

    @app.get("/api/events/{event_id}")
    def get_event(event_id: int) -> dict[str, Any]:
        with _api_errors():
            event = service().get_event(event_id)
        if event is None:
            raise HTTPException(status_code=404, detail=f"Calendar event not found: {event_id}")
        return event.to_dict()

    @app.post("/api/events")
    def create_event(payload: dict[str, Any]) -> dict[str, Any]:
        with _api_errors():
            event = event_from_dict({**payload, "id": None})
            created = service().create_event(event)
        return created.to_dict()

    @app.put("/api/events/{event_id}")
    def update_event(event_id: int, payload: dict[str, Any]) -> dict[str, Any]:
        with _api_errors():
            event = event_from_dict({**payload, "id": event_id})
            updated = service().update_event(event)
        return updated.to_dict()

    @app.delete("/api/events/{event_id}")
    def delete_event(event_id: int) -> dict[str, Any]:
        with _api_errors():
            deleted = service().delete_event(event_id)
        if not deleted:
            raise HTTPException(status_code=404, detail=f"Calendar event not found: {event_id}")
        return {"deleted": True, "id": event_id}

    @app.delete("/api/events/{event_id}/series")
    def delete_series(event_id: int) -> dict[str, Any]:
        with _api_errors():
            removed = service().delete_series(event_id)
        return {"deleted": removed, "parent_event_id": event_id}

    @app.get("/api/operations/{operation_id}/events")
    def events_by_operation(operation_id: int) -> dict[str, Any]:
        with _api_errors():
            events = service().events_by_operation(operation_id)
        return _events_payload(events)

    @app.post("/api/tasks")
    def create_task(request: TaskCreateRequest) -> dict[str, Any]:
        with _api_errors():
            task = service().create_task(
                Task(
                    title=request.title.strip(),
                    operation_id=request.operation_id,
                    description=request.description,
                    status=request.status,
                    priority=request.priority,
                    due_date=_parse_optional_datetime(request.due_date, "due_date"),
                )
            )
        return task.to_dict()

    @app.get("/api/tasks/{task_id}")
    def get_task(task_id: int) -> dict[str, Any]:
        with _api_errors():
            task = service().get_task(task_id)
        if task is None:
            raise HTTPException(status_code=404, detail=f"Task not found: {task_id}")
        return task.to_dict()

    @app.put("/api/tasks/{task_id}/due-date")
    def update_task_due_date(task_id: int, request: TaskDueDateRequest) -> dict[str, Any]:
        with _api_errors():
            task = service().update_task_due_date(
                task_id, _parse_optional_datetime(request.due_date, "due_date")
            )
            events = service().events_by_task(task_id)
        return {"task": task.to_dict(), "event": events[0].to_dict() if events else None}

    @app.post("/api/tasks/{task_id}/calendar-sync")
    def sync_task(task_id: int) -> dict[str, Any]:
        with _api_errors():
            event = service().sync_task_to_calendar(task_id)
        return {"synced": event is not None, "event": event.to_dict() if event else None}

    @app.get("/api/search")
    def search(q: str = "", limit: int = 50) -> dict[str, Any]:
        results = app.state.context.calendar_service.search_index.search(q, limit=limit)
        return {"query": q, "results": results}

    return app


app = create_app()
