from __future__ import annotations

from datetime import datetime
from typing import Any

from roam.state_store import StateStore


class SearchIndex:
    """Keyword index over calendar event text, kept in the state database.

    Callers treat it as fire-and-forget: a stale index is rebuilt by
    re-indexing, so errors raised here are logged by the caller and dropped.
    """

    def __init__(self, state_store: StateStore) -> None:
        self.state_store = state_store

    def index_event(
        self,
        event_id: int,
        title: str,
        description: str | None,
        start: datetime | None,
        end: datetime | None,
        location: str | None,
    ) -> None:
        if event_id is None:
            raise ValueError("event_id is required for indexing")
        self.state_store.upsert_search_document(
            doc_id=event_id,
            title=title or "",
            description=description or "",
            location=location or "",
            start=start,
            end=end,
        )

    def delete_document(self, event_id: int) -> None:
        self.state_store.delete_search_document(event_id)

    def search(self, text: str, limit: int = 50) -> list[dict[str, Any]]:
        if not text or not text.strip():
            return []
        return self.state_store.search_documents(text, limit=limit)
