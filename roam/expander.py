from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from dateutil.relativedelta import relativedelta

from roam.errors import InvalidArgumentError
from roam.models import CalendarEvent
from roam.recurrence import RecurrenceFrequency, next_occurrence, parse_rule

logger = logging.getLogger(__name__)

DEFAULT_OPEN_SERIES_HORIZON = relativedelta(years=1)


def _as_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def _duration_minutes(event: CalendarEvent) -> int:
    delta = event.end_date_time - event.start_date_time
    return int(delta.total_seconds() // 60)


def build_instance(parent: CalendarEvent, occurrence_date: date, duration_minutes: int) -> CalendarEvent:
    start = datetime.combine(occurrence_date, parent.start_date_time.time())
    return parent.with_updates(
        # Instances keep the parent id so edit actions resolve to the parent.
        id=parent.id,
        parent_event_id=parent.id,
        is_recurring_instance=True,
        start_date_time=start,
        end_date_time=start + timedelta(minutes=duration_minutes),
        original_start_date_time=parent.start_date_time,
        created_at=None,
        updated_at=None,
    )


class OccurrenceExpander:
    def __init__(self, open_series_horizon: relativedelta = DEFAULT_OPEN_SERIES_HORIZON) -> None:
        self.open_series_horizon = open_series_horizon

    def series_end(self, event: CalendarEvent, range_end: date) -> date:
        if event.recurrence_end_date is not None:
            return event.recurrence_end_date.date()
        return range_end + self.open_series_horizon

    def expand(
        self,
        event: CalendarEvent,
        range_start: date | datetime,
        range_end: date | datetime,
    ) -> list[CalendarEvent]:
        frequency = parse_rule(event.recurrence_rule)
        if frequency is None:
            return []

        range_start = _as_date(range_start)
        range_end = _as_date(range_end)
        if range_end < range_start:
            raise InvalidArgumentError("range_end must not be earlier than range_start")

        series_end = self.series_end(event, range_end)
        duration = _duration_minutes(event)
        instances: list[CalendarEvent] = []

        current: date | None = event.start_date_time.date()
        while current is not None and current <= range_end and current <= series_end:
            if current >= range_start:
                instances.append(build_instance(event, current, duration))
            current = next_occurrence(current, frequency)

        if frequency is RecurrenceFrequency.UNKNOWN:
            logger.debug(
                "Event %s has unrecognized rule %r; expanded to %d occurrence(s)",
                event.id,
                event.recurrence_rule,
                len(instances),
            )
        return instances


_default_expander = OccurrenceExpander()


def expand_occurrences(
    event: CalendarEvent,
    range_start: date | datetime,
    range_end: date | datetime,
) -> list[CalendarEvent]:
    return _default_expander.expand(event, range_start, range_end)
