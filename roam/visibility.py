from __future__ import annotations

from typing import Iterable, Mapping, Union

from roam.models import CalendarEvent, CalendarSource

SourceLookup = Union[Mapping[int, CalendarSource], Iterable[CalendarSource]]


def index_sources(sources: SourceLookup) -> Mapping[int, CalendarSource]:
    if isinstance(sources, Mapping):
        return sources
    return {source.id: source for source in sources if source.id is not None}


def is_visible(event: CalendarEvent, sources: SourceLookup) -> bool:
    if event.calendar_source_id is None:
        return False
    source = index_sources(sources).get(event.calendar_source_id)
    return source is not None and bool(source.is_visible)


def filter_visible(events: Iterable[CalendarEvent], sources: SourceLookup) -> list[CalendarEvent]:
    lookup = index_sources(sources)
    return [event for event in events if is_visible(event, lookup)]
