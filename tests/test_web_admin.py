import os
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from fastapi.testclient import TestClient

from roam.web_admin import create_app


class WebAdminTests(unittest.TestCase):
    def setUp(self) -> None:
        self.temp_dir = tempfile.TemporaryDirectory()
        self.config_path = str(Path(self.temp_dir.name) / "config.yaml")
        self.state_path = str(Path(self.temp_dir.name) / "roam.db")
        os.environ["ROAM_CONFIG_PATH"] = self.config_path
        os.environ["ROAM_STATE_PATH"] = self.state_path
        self.client = TestClient(create_app())

        resp = self.client.post("/api/sources", json={"name": "Work", "color": "#00aa00", "is_default": True})
        self.assertEqual(resp.status_code, 200)
        self.source_id = resp.json()["id"]

    def tearDown(self) -> None:
        self.temp_dir.cleanup()

    def _create_event(self, **overrides) -> dict:
        payload = {
            "title": "Standup",
            "start_date_time": "2024-01-01T09:00:00",
            "end_date_time": "2024-01-01T09:15:00",
            "calendar_source_id": self.source_id,
        }
        payload.update(overrides)
        resp = self.client.post("/api/events", json=payload)
        self.assertEqual(resp.status_code, 200, resp.text)
        return resp.json()

    def test_healthz(self) -> None:
        resp = self.client.get("/healthz")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["status"], "ok")

    def test_put_config_merges_sections(self) -> None:
        resp = self.client.put("/api/config", json={"payload": {"calendar": {"task_event_lead_minutes": 45}}})
        self.assertEqual(resp.status_code, 200)
        config = resp.json()["config"]
        self.assertEqual(config["calendar"]["task_event_lead_minutes"], 45)
        self.assertEqual(config["calendar"]["agenda_months_after"], 3)

        resp = self.client.get("/api/config")
        self.assertEqual(resp.json()["calendar"]["task_event_lead_minutes"], 45)

    def test_put_config_rejects_malformed_payload(self) -> None:
        for payload in (
            {"calendar": "oops"},
            {"calendar": {"open_series_horizon_years": "x"}},
            {"weather": {"units": "metric"}},
        ):
            resp = self.client.put("/api/config", json={"payload": payload})
            self.assertEqual(resp.status_code, 400, payload)

        resp = self.client.get("/api/config")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["calendar"]["open_series_horizon_years"], 1)

    def test_range_query_expands_recurring_events(self) -> None:
        parent = self._create_event(recurrence_rule="daily")
        self._create_event(title="One-off", start_date_time="2024-01-03T12:00:00", end_date_time="2024-01-03T13:00:00")

        resp = self.client.get("/api/events", params={"start": "2024-01-01", "end": "2024-01-05"})

        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertEqual(data["count"], 6)
        instances = [e for e in data["events"] if e["is_recurring_instance"]]
        self.assertEqual(len(instances), 5)
        self.assertTrue(all(e["parent_event_id"] == parent["id"] for e in instances))
        self.assertTrue(all(e["edit_target_id"] == parent["id"] for e in instances))
        self.assertEqual(instances[2]["occurrence_ref"], {"parent_id": parent["id"], "occurrence_date": "2024-01-03"})

    def test_range_query_requires_both_bounds(self) -> None:
        resp = self.client.get("/api/events", params={"start": "2024-01-01"})
        self.assertEqual(resp.status_code, 400)

        resp = self.client.get("/api/events", params={"start": "2024-01-05", "end": "2024-01-01"})
        self.assertEqual(resp.status_code, 400)

    def test_range_query_defaults_to_agenda_window(self) -> None:
        resp = self.client.get("/api/events")
        self.assertEqual(resp.status_code, 200)
        data = resp.json()
        self.assertLess(data["start"], data["end"])

    def test_hidden_source_events_are_filtered(self) -> None:
        self._create_event(title="Private")
        resp = self.client.put(f"/api/sources/{self.source_id}/visibility", json={"visible": False})
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["is_visible"])

        resp = self.client.get("/api/events/day/2024-01-01")
        self.assertEqual(resp.json()["count"], 0)

        resp = self.client.put("/api/sources/999/visibility", json={"visible": True})
        self.assertEqual(resp.status_code, 404)

    def test_event_crud(self) -> None:
        created = self._create_event(location="Room 4")

        resp = self.client.put(
            f"/api/events/{created['id']}",
            json={**created, "title": "Standup (moved)", "start_date_time": "2024-01-01T10:00:00", "end_date_time": "2024-01-01T10:15:00"},
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        self.assertEqual(resp.json()["title"], "Standup (moved)")

        resp = self.client.get(f"/api/events/{created['id']}")
        self.assertEqual(resp.json()["start_date_time"], "2024-01-01T10:00:00")

        resp = self.client.delete(f"/api/events/{created['id']}")
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(self.client.get(f"/api/events/{created['id']}").status_code, 404)
        self.assertEqual(self.client.delete(f"/api/events/{created['id']}").status_code, 404)

    def test_create_event_validation(self) -> None:
        resp = self.client.post("/api/events", json={"title": "No times"})
        self.assertEqual(resp.status_code, 400)

        resp = self.client.post(
            "/api/events",
            json={"title": "Backwards", "start_date_time": "2024-01-01T10:00:00", "end_date_time": "2024-01-01T09:00:00"},
        )
        self.assertEqual(resp.status_code, 400)

    def test_update_missing_event(self) -> None:
        resp = self.client.put(
            "/api/events/404",
            json={"title": "Ghost", "start_date_time": "2024-01-01T10:00:00", "end_date_time": "2024-01-01T11:00:00"},
        )
        self.assertEqual(resp.status_code, 404)

    def test_delete_series(self) -> None:
        parent = self._create_event(recurrence_rule="weekly")
        self._create_event(title="Override", parent_event_id=parent["id"], is_recurring_instance=True)

        resp = self.client.delete(f"/api/events/{parent['id']}/series")

        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["deleted"], 2)
        resp = self.client.get("/api/events", params={"start": "2024-01-01", "end": "2024-02-01"})
        self.assertEqual(resp.json()["count"], 0)

    def test_delete_series_failure_maps_to_500(self) -> None:
        parent = self._create_event(recurrence_rule="weekly")
        store = self.client.app.state.context.state_store
        with mock.patch.object(store, "delete_event", side_effect=RuntimeError("disk full")):
            resp = self.client.delete(f"/api/events/{parent['id']}/series")
        self.assertEqual(resp.status_code, 500)
        self.assertEqual(self.client.get(f"/api/events/{parent['id']}").status_code, 200)

    def test_task_lifecycle_keeps_one_calendar_event(self) -> None:
        resp = self.client.post(
            "/api/tasks",
            json={"title": "Submit report", "operation_id": 3, "due_date": "2024-02-01T17:00:00"},
        )
        self.assertEqual(resp.status_code, 200, resp.text)
        task = resp.json()

        resp = self.client.put(f"/api/tasks/{task['id']}/due-date", json={"due_date": "2024-02-02T12:00:00"})
        self.assertEqual(resp.status_code, 200)
        event = resp.json()["event"]
        self.assertEqual(event["start_date_time"], "2024-02-02T11:00:00")
        self.assertEqual(event["end_date_time"], "2024-02-02T12:00:00")
        self.assertEqual(event["task_id"], task["id"])

        resp = self.client.post(f"/api/tasks/{task['id']}/calendar-sync")
        self.assertTrue(resp.json()["synced"])

        resp = self.client.get("/api/operations/3/events")
        self.assertEqual(resp.json()["count"], 1)

    def test_sync_missing_task_is_rejected(self) -> None:
        resp = self.client.post("/api/tasks/999/calendar-sync")
        self.assertEqual(resp.status_code, 400)
        self.assertEqual(self.client.get("/api/tasks/999").status_code, 404)

    def test_task_without_due_date_is_not_synced(self) -> None:
        task = self.client.post("/api/tasks", json={"title": "Someday"}).json()
        resp = self.client.post(f"/api/tasks/{task['id']}/calendar-sync")
        self.assertEqual(resp.status_code, 200)
        self.assertFalse(resp.json()["synced"])
        self.assertIsNone(resp.json()["event"])

    def test_search_finds_indexed_events(self) -> None:
        created = self._create_event(title="Quarterly planning", description="Budget review")

        resp = self.client.get("/api/search", params={"q": "budget"})

        self.assertEqual(resp.status_code, 200)
        self.assertEqual([r["doc_id"] for r in resp.json()["results"]], [created["id"]])
        self.assertEqual(self.client.get("/api/search", params={"q": ""}).json()["results"], [])


if __name__ == "__main__":
    unittest.main()
