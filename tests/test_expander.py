import unittest
from datetime import date, datetime, time

from dateutil.relativedelta import relativedelta

from roam.errors import InvalidArgumentError
from roam.expander import OccurrenceExpander, expand_occurrences
from roam.models import CalendarEvent, OccurrenceRef


def _event(**overrides) -> CalendarEvent:
    values = {
        "id": 42,
        "title": "Standup",
        "description": "Daily sync",
        "location": "Room 1",
        "start_date_time": datetime(2024, 1, 1, 9, 0),
        "end_date_time": datetime(2024, 1, 1, 10, 0),
        "calendar_source_id": 3,
        "operation_id": 7,
        "task_id": 11,
        "wiki_id": 13,
        "color": "#ff0000",
        "region": "Work",
        "recurrence_rule": "daily",
    }
    values.update(overrides)
    return CalendarEvent(**values)


class OccurrenceExpanderTests(unittest.TestCase):
    def test_non_recurring_event_is_not_expanded(self) -> None:
        event = _event(recurrence_rule=None)
        self.assertEqual(expand_occurrences(event, date(2024, 1, 1), date(2024, 1, 31)), [])
        self.assertEqual(expand_occurrences(event.with_updates(recurrence_rule="  "), date(2024, 1, 1), date(2024, 1, 31)), [])

    def test_daily_series_bounded_by_range(self) -> None:
        event = _event()
        instances = expand_occurrences(event, date(2024, 1, 1), date(2024, 1, 5))

        self.assertEqual(len(instances), 5)
        self.assertEqual(
            [item.start_date_time.date() for item in instances],
            [date(2024, 1, day) for day in range(1, 6)],
        )
        for item in instances:
            self.assertEqual(item.start_date_time.time(), time(9, 0))
            self.assertEqual(item.end_date_time.time(), time(10, 0))
            self.assertEqual(item.id, 42)
            self.assertEqual(item.parent_event_id, 42)
            self.assertTrue(item.is_recurring_instance)
            self.assertEqual(item.original_start_date_time, datetime(2024, 1, 1, 9, 0))

    def test_instances_copy_parent_attributes(self) -> None:
        instance = expand_occurrences(_event(), date(2024, 1, 3), date(2024, 1, 3))[0]
        self.assertEqual(instance.title, "Standup")
        self.assertEqual(instance.description, "Daily sync")
        self.assertEqual(instance.location, "Room 1")
        self.assertEqual(instance.calendar_source_id, 3)
        self.assertEqual(instance.operation_id, 7)
        self.assertEqual(instance.task_id, 11)
        self.assertEqual(instance.wiki_id, 13)
        self.assertEqual(instance.color, "#ff0000")
        self.assertEqual(instance.region, "Work")
        self.assertEqual(instance.recurrence_rule, "daily")
        self.assertEqual(instance.occurrence_ref, OccurrenceRef(parent_id=42, occurrence_date=date(2024, 1, 3)))
        self.assertEqual(instance.edit_target_id, 42)

    def test_parent_is_left_untouched(self) -> None:
        event = _event()
        expand_occurrences(event, date(2024, 1, 1), date(2024, 1, 5))
        self.assertFalse(event.is_recurring_instance)
        self.assertIsNone(event.parent_event_id)
        self.assertEqual(event.start_date_time, datetime(2024, 1, 1, 9, 0))

    def test_weekdays_skip_weekend(self) -> None:
        event = _event(
            start_date_time=datetime(2024, 1, 5, 8, 30),
            end_date_time=datetime(2024, 1, 5, 9, 0),
            recurrence_rule="weekdays",
        )
        instances = expand_occurrences(event, date(2024, 1, 5), date(2024, 1, 10))
        self.assertEqual(
            [item.start_date_time.date() for item in instances],
            [date(2024, 1, 5), date(2024, 1, 8), date(2024, 1, 9), date(2024, 1, 10)],
        )

    def test_unrecognized_rule_yields_only_start(self) -> None:
        event = _event(recurrence_rule="custom-xyz", start_date_time=datetime(2024, 1, 2, 9, 0), end_date_time=datetime(2024, 1, 2, 10, 0))
        instances = expand_occurrences(event, date(2024, 1, 1), date(2024, 1, 31))
        self.assertEqual(len(instances), 1)
        self.assertEqual(instances[0].start_date_time, datetime(2024, 1, 2, 9, 0))

    def test_recurrence_end_date_clamps_series(self) -> None:
        event = _event(
            recurrence_rule="weekly",
            recurrence_end_date=datetime(2024, 1, 15, 0, 0),
        )
        instances = expand_occurrences(event, date(2024, 1, 1), date(2024, 3, 10))
        self.assertEqual(
            [item.start_date_time.date() for item in instances],
            [date(2024, 1, 1), date(2024, 1, 8), date(2024, 1, 15)],
        )

    def test_start_before_range_is_skipped_but_iteration_continues(self) -> None:
        event = _event(start_date_time=datetime(2023, 12, 25, 9, 0), end_date_time=datetime(2023, 12, 25, 10, 0), recurrence_rule="weekly")
        instances = expand_occurrences(event, date(2024, 1, 1), date(2024, 1, 14))
        self.assertEqual(
            [item.start_date_time.date() for item in instances],
            [date(2024, 1, 1), date(2024, 1, 8)],
        )

    def test_series_starting_after_range_yields_nothing(self) -> None:
        event = _event(start_date_time=datetime(2024, 2, 1, 9, 0), end_date_time=datetime(2024, 2, 1, 10, 0))
        self.assertEqual(expand_occurrences(event, date(2024, 1, 1), date(2024, 1, 31)), [])

    def test_duration_is_preserved_across_midnight(self) -> None:
        event = _event(
            start_date_time=datetime(2024, 1, 1, 23, 0),
            end_date_time=datetime(2024, 1, 2, 1, 30),
        )
        instance = expand_occurrences(event, date(2024, 1, 3), date(2024, 1, 3))[0]
        self.assertEqual(instance.start_date_time, datetime(2024, 1, 3, 23, 0))
        self.assertEqual(instance.end_date_time, datetime(2024, 1, 4, 1, 30))

    def test_open_series_horizon_is_configurable(self) -> None:
        event = _event(start_date_time=datetime(2024, 1, 1, 9, 0), end_date_time=datetime(2024, 1, 1, 10, 0), recurrence_rule="yearly")
        expander = OccurrenceExpander(open_series_horizon=relativedelta(years=1))
        self.assertEqual(expander.series_end(event, date(2024, 6, 1)), date(2025, 6, 1))
        with_end = event.with_updates(recurrence_end_date=datetime(2026, 1, 1, 12, 0))
        self.assertEqual(expander.series_end(with_end, date(2024, 6, 1)), date(2026, 1, 1))

    def test_datetime_range_bounds_are_reduced_to_dates(self) -> None:
        instances = expand_occurrences(_event(), datetime(2024, 1, 2, 18, 0), datetime(2024, 1, 3, 6, 0))
        self.assertEqual([item.start_date_time.date() for item in instances], [date(2024, 1, 2), date(2024, 1, 3)])

    def test_inverted_range_is_rejected(self) -> None:
        with self.assertRaises(InvalidArgumentError):
            expand_occurrences(_event(), date(2024, 1, 5), date(2024, 1, 1))


if __name__ == "__main__":
    unittest.main()
