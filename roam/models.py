from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Any

from dateutil.relativedelta import relativedelta


DEFAULT_SOURCE_NAME = "Personal"
DEFAULT_SOURCE_COLOR = "#4285f4"
DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _wall_clock(dt: datetime) -> datetime:
    # Event times are local wall-clock values; an explicit offset is dropped.
    if dt.tzinfo is not None:
        return dt.replace(tzinfo=None)
    return dt


def parse_iso_datetime(value: str | datetime | date | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _wall_clock(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    text = str(value).strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return _wall_clock(datetime.fromisoformat(text))


def parse_iso_date(value: str | date | None) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    return date.fromisoformat(text[:10])


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)


@dataclass
class CalendarConfig:
    open_series_horizon_years: int = 1
    agenda_months_before: int = 1
    agenda_months_after: int = 3
    task_event_lead_minutes: int = 60
    default_source_name: str = DEFAULT_SOURCE_NAME
    default_source_color: str = DEFAULT_SOURCE_COLOR

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalendarConfig":
        data = data or {}
        return cls(
            open_series_horizon_years=max(1, int(data.get("open_series_horizon_years", 1))),
            agenda_months_before=max(0, int(data.get("agenda_months_before", 1))),
            agenda_months_after=max(1, int(data.get("agenda_months_after", 3))),
            task_event_lead_minutes=max(1, int(data.get("task_event_lead_minutes", 60))),
            default_source_name=str(data.get("default_source_name", DEFAULT_SOURCE_NAME)).strip()
            or DEFAULT_SOURCE_NAME,
            default_source_color=str(data.get("default_source_color", DEFAULT_SOURCE_COLOR)).strip()
            or DEFAULT_SOURCE_COLOR,
        )

    @property
    def open_series_horizon(self) -> relativedelta:
        return relativedelta(years=self.open_series_horizon_years)


@dataclass
class LoggingConfig:
    level: str = "INFO"
    format: str = DEFAULT_LOG_FORMAT

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        data = data or {}
        level = str(data.get("level", "INFO")).strip().upper()
        if level not in LOG_LEVELS:
            level = "INFO"
        return cls(
            level=level,
            format=str(data.get("format", DEFAULT_LOG_FORMAT)) or DEFAULT_LOG_FORMAT,
        )


@dataclass
class AppConfig:
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            calendar=CalendarConfig.from_dict(data.get("calendar")),
            logging=LoggingConfig.from_dict(data.get("logging")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


class CalendarSourceType(str, Enum):
    REGION = "REGION"


class TaskStatus(str, Enum):
    TODO = "TODO"
    IN_PROGRESS = "IN_PROGRESS"
    DONE = "DONE"


class Priority(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


@dataclass
class CalendarSource:
    name: str
    color: str = DEFAULT_SOURCE_COLOR
    type: CalendarSourceType = CalendarSourceType.REGION
    is_visible: bool = True
    is_default: bool = False
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "color": self.color,
            "type": self.type.value,
            "is_visible": self.is_visible,
            "is_default": self.is_default,
            "created_at": serialize_datetime(self.created_at),
            "updated_at": serialize_datetime(self.updated_at),
        }


@dataclass
class Task:
    title: str
    operation_id: int | None = None
    description: str = ""
    status: TaskStatus = TaskStatus.TODO
    priority: Priority = Priority.MEDIUM
    due_date: datetime | None = None
    id: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "operation_id": self.operation_id,
            "title": self.title,
            "description": self.description,
            "status": self.status.value,
            "priority": self.priority.value,
            "due_date": serialize_datetime(self.due_date),
            "created_at": serialize_datetime(self.created_at),
            "updated_at": serialize_datetime(self.updated_at),
        }


@dataclass(frozen=True)
class OccurrenceRef:
    parent_id: int
    occurrence_date: date

    def to_dict(self) -> dict[str, Any]:
        return {"parent_id": self.parent_id, "occurrence_date": self.occurrence_date.isoformat()}


@dataclass
class CalendarEvent:
    title: str
    start_date_time: datetime
    end_date_time: datetime
    calendar_source_id: int | None = None
    id: int | None = None
    operation_id: int | None = None
    task_id: int | None = None
    wiki_id: int | None = None
    description: str = ""
    location: str = ""
    is_all_day: bool = False
    color: str | None = None
    region: str | None = None
    recurrence_rule: str | None = None
    recurrence_end_date: datetime | None = None
    parent_event_id: int | None = None
    is_recurring_instance: bool = False
    original_start_date_time: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def is_recurring(self) -> bool:
        return bool((self.recurrence_rule or "").strip())

    @property
    def occurrence_ref(self) -> OccurrenceRef | None:
        if not self.is_recurring_instance or self.parent_event_id is None:
            return None
        return OccurrenceRef(parent_id=self.parent_event_id, occurrence_date=self.start_date_time.date())

    @property
    def edit_target_id(self) -> int | None:
        # Synthesized occurrences carry the parent id; persisted overrides carry their own.
        if self.id is None and self.is_recurring_instance:
            return self.parent_event_id
        return self.id

    def overlaps(self, range_start: date, range_end: date) -> bool:
        window_start = datetime.combine(range_start, time.min)
        window_end = datetime.combine(range_end, time.max)
        return self.start_date_time <= window_end and self.end_date_time >= window_start

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in (
            "start_date_time",
            "end_date_time",
            "recurrence_end_date",
            "original_start_date_time",
            "created_at",
            "updated_at",
        ):
            payload[key] = serialize_datetime(getattr(self, key))
        ref = self.occurrence_ref
        payload["occurrence_ref"] = ref.to_dict() if ref else None
        payload["edit_target_id"] = self.edit_target_id
        return payload

    def clone(self) -> "CalendarEvent":
        return CalendarEvent(**{name: getattr(self, name) for name in self.__dataclass_fields__})

    def with_updates(self, **kwargs: Any) -> "CalendarEvent":
        copied = self.clone()
        for key, value in kwargs.items():
            setattr(copied, key, value)
        return copied


def event_from_dict(payload: dict[str, Any]) -> CalendarEvent:
    start = parse_iso_datetime(payload.get("start_date_time"))
    end = parse_iso_datetime(payload.get("end_date_time"))
    if start is None or end is None:
        raise ValueError("start_date_time and end_date_time are required")
    rule = payload.get("recurrence_rule")
    return CalendarEvent(
        id=_optional_int(payload.get("id")),
        title=str(payload.get("title", "")).strip(),
        description=str(payload.get("description", "") or ""),
        location=str(payload.get("location", "") or ""),
        start_date_time=start,
        end_date_time=end,
        is_all_day=bool(payload.get("is_all_day", False)),
        calendar_source_id=_optional_int(payload.get("calendar_source_id")),
        operation_id=_optional_int(payload.get("operation_id")),
        task_id=_optional_int(payload.get("task_id")),
        wiki_id=_optional_int(payload.get("wiki_id")),
        color=payload.get("color") or None,
        region=payload.get("region") or None,
        recurrence_rule=str(rule).strip() if rule and str(rule).strip() else None,
        recurrence_end_date=parse_iso_datetime(payload.get("recurrence_end_date")),
        parent_event_id=_optional_int(payload.get("parent_event_id")),
        is_recurring_instance=bool(payload.get("is_recurring_instance", False)),
        original_start_date_time=parse_iso_datetime(payload.get("original_start_date_time")),
    )


def agenda_window(today: date, months_before: int, months_after: int) -> tuple[date, date]:
    start = today - relativedelta(months=max(0, months_before))
    end = today + relativedelta(months=max(1, months_after))
    return start, end
