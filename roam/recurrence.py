from __future__ import annotations

import logging
from datetime import date, timedelta
from enum import Enum

from dateutil.relativedelta import relativedelta

logger = logging.getLogger(__name__)


class RecurrenceFrequency(str, Enum):
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    YEARLY = "yearly"
    WEEKDAYS = "weekdays"
    UNKNOWN = "unknown"


# Checked in order; a token matches on exact name or on the RRULE-style fragment.
_RULE_TOKENS: tuple[tuple[RecurrenceFrequency, str, str], ...] = (
    (RecurrenceFrequency.DAILY, "daily", "freq=daily"),
    (RecurrenceFrequency.WEEKLY, "weekly", "freq=weekly"),
    (RecurrenceFrequency.MONTHLY, "monthly", "freq=monthly"),
    (RecurrenceFrequency.YEARLY, "yearly", "freq=yearly"),
    (RecurrenceFrequency.WEEKDAYS, "weekdays", "byday=mo,tu,we,th,fr"),
)

_STEPS = {
    RecurrenceFrequency.DAILY: relativedelta(days=1),
    RecurrenceFrequency.WEEKLY: relativedelta(weeks=1),
    RecurrenceFrequency.MONTHLY: relativedelta(months=1),
    RecurrenceFrequency.YEARLY: relativedelta(years=1),
}


def parse_rule(rule: str | None) -> RecurrenceFrequency | None:
    """Map a stored recurrence token to a frequency.

    Returns ``None`` for an empty rule and ``RecurrenceFrequency.UNKNOWN`` for
    anything outside the supported vocabulary.
    """
    text = (rule or "").strip().lower()
    if not text:
        return None
    for frequency, token, fragment in _RULE_TOKENS:
        if text == token or fragment in text:
            return frequency
    logger.debug("Unrecognized recurrence rule: %r", rule)
    return RecurrenceFrequency.UNKNOWN


def _next_weekday(current: date) -> date:
    candidate = current + timedelta(days=1)
    while candidate.weekday() >= 5:
        candidate += timedelta(days=1)
    return candidate


def next_occurrence(current: date, rule: str | RecurrenceFrequency | None) -> date | None:
    frequency = rule if isinstance(rule, RecurrenceFrequency) else parse_rule(rule)
    if frequency is None or frequency is RecurrenceFrequency.UNKNOWN:
        return None
    if frequency is RecurrenceFrequency.WEEKDAYS:
        return _next_weekday(current)
    return current + _STEPS[frequency]
