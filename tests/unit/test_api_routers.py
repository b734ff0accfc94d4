"""
Unit tests for API Routers against an in-memory scheduling service.
"""

import pytest
from fastapi.testclient import TestClient
from tetrix.api.main import app
from tetrix.api.dependencies import get_scheduling_service


@pytest.fixture
def client(service):
    app.dependency_overrides[get_scheduling_service] = lambda: service
    yield TestClient(app)
    app.dependency_overrides.clear()


def task_payload(**overrides):
    payload = {
        "id": "task-1",
        "translator_id": "tr-alice",
        "total_hours": 10,
        "due_at": "2026-01-15T17:00:00",
        "project_number": "PRJ-100",
        "mode": "JUST_IN_TIME",
    }
    payload.update(overrides)
    return payload


class TestDistributionRouter:
    """Tests for /api/v1/distribution"""

    def test_preview(self, client, service):
        response = client.post("/api/v1/distribution/preview", json=task_payload())

        assert response.status_code == 200
        data = response.json()
        assert data["outcome"] == "OK"
        assert data["slices"] == [
            {"date": "2026-01-14", "hours": 3.0, "start": "14:00", "end": "17:00"},
            {"date": "2026-01-15", "hours": 7.0, "start": "09:00", "end": "17:00"},
        ]
        assert service.ledger.entries_for_task("task-1") == []

    def test_preview_infeasible_is_data(self, client):
        payload = task_payload(
            total_hours=20, mode="BALANCED", window_start="2026-01-12", window_end="2026-01-12",
        )
        response = client.post("/api/v1/distribution/preview", json=payload)
        assert response.status_code == 200
        assert response.json()["unallocated_hours"] == 13.0

    def test_preview_rejects_bad_times(self, client):
        payload = task_payload(
            mode="MANUAL",
            total_hours=2,
            manual_allocation=[{"date": "2026-01-12", "hours": 2, "start": "noon", "end": "14:00"}],
        )
        response = client.post("/api/v1/distribution/preview", json=payload)
        assert response.status_code == 422


class TestTaskRouter:
    """Tests for /api/v1/tasks"""

    def test_create_and_get(self, client):
        response = client.post("/api/v1/tasks/", json=task_payload())

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "OK"
        assert data["task"]["version"] == 1
        assert [e["date"] for e in data["entries"]] == ["2026-01-14", "2026-01-15"]

        response = client.get("/api/v1/tasks/task-1")
        assert response.status_code == 200
        assert response.json()["project_number"] == "PRJ-100"

    def test_get_missing(self, client):
        assert client.get("/api/v1/tasks/nope").status_code == 404

    def test_unknown_translator(self, client):
        response = client.post("/api/v1/tasks/", json=task_payload(translator_id="tr-nobody"))
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_INPUT"

    def test_manual_mode_needs_lines(self, client):
        response = client.post("/api/v1/tasks/", json=task_payload(auto_distribute=False))
        assert response.status_code == 400

    def test_infeasible(self, client):
        payload = task_payload(
            total_hours=20, mode="BALANCED", window_start="2026-01-12", window_end="2026-01-12",
        )
        response = client.post("/api/v1/tasks/", json=payload)
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "INFEASIBLE"

    def test_overbooking_conflict(self, client):
        client.post("/api/v1/tasks/", json=task_payload(total_hours=7, due_at="2026-01-14T17:00:00"))
        payload = task_payload(
            id="task-2",
            total_hours=2,
            auto_distribute=False,
            manual_allocation=[{"date": "2026-01-14", "hours": 2}],
        )

        response = client.post("/api/v1/tasks/", json=payload)

        assert response.status_code == 409
        detail = response.json()["detail"]
        assert detail["code"] == "CAPACITY_EXCEEDED"
        assert detail["error"] == "CONFLIT_DISPONIBILITE"

        response = client.post("/api/v1/tasks/", json={**payload, "force": True})
        assert response.status_code == 201
        assert response.json()["status"] == "CONFLICT_DETECTED"

    def test_past_dates_need_confirmation(self, client):
        payload = task_payload(total_hours=14, due_at="2026-01-12T17:00:00")

        response = client.post("/api/v1/tasks/", json=payload)
        assert response.status_code == 201
        data = response.json()
        assert data["requires_confirmation"] is True
        assert data["distribution"]["warning"] == "PAST_DATE_WARNING"
        assert data["entries"] == []

        response = client.post("/api/v1/tasks/", json={**payload, "confirm_past_dates": True})
        assert response.json()["status"] == "OK"

    def test_update_and_stale_version(self, client):
        client.post("/api/v1/tasks/", json=task_payload())
        update = {k: v for k, v in task_payload(total_hours=5).items() if k != "id"}

        response = client.put("/api/v1/tasks/task-1", json={**update, "expected_version": 1})
        assert response.status_code == 200
        assert response.json()["task"]["version"] == 2

        response = client.put("/api/v1/tasks/task-1", json={**update, "expected_version": 1})
        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "STALE_VERSION"

    def test_delete(self, client):
        client.post("/api/v1/tasks/", json=task_payload())
        response = client.delete("/api/v1/tasks/task-1")
        assert response.json() == {"deleted": "task-1", "released_entries": 2}
        assert client.delete("/api/v1/tasks/task-1").status_code == 404


class TestBlockAndConflictRouters:
    """Tests for /api/v1/blocks and /api/v1/conflicts"""

    @pytest.fixture
    def blocked(self, client):
        client.post("/api/v1/tasks/", json=task_payload(total_hours=7, due_at="2026-01-14T17:00:00"))
        response = client.post("/api/v1/blocks/", json={
            "translator_id": "tr-alice",
            "date": "2026-01-14",
            "start": "9h",
            "end": "11:00",
            "reason": "Medical",
        })
        assert response.status_code == 201
        return response.json()

    def test_block_reports_conflicts_and_suggestions(self, blocked):
        assert blocked["block"]["hours"] == 2.0
        assert blocked["block"]["start"] == "09:00"
        assert {c["conflict_type"] for c in blocked["conflicts"]} == {"OVER_ALLOCATION", "BLOCK_CONFLICT"}
        assert blocked["suggestions"][0]["suggestion_type"] == "LOCAL_REPAIR"

    def test_suggest_from_raw_conflicts(self, client, blocked):
        response = client.post("/api/v1/conflicts/suggest", json={
            "conflicts": blocked["conflicts"],
            "candidate_ids": ["tr-carol"],
        })

        assert response.status_code == 200
        suggestions = response.json()["suggestions"]
        assert [s["suggestion_type"] for s in suggestions] == ["LOCAL_REPAIR", "REASSIGNMENT"]
        assert suggestions[1]["target_translator_id"] == "tr-carol"

    def test_apply_suggestion(self, client, blocked):
        response = client.post("/api/v1/conflicts/apply", json={"suggestion": blocked["suggestions"][0]})

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "OK"
        assert data["task"]["version"] == 2

    def test_allocation_report(self, client, blocked):
        entry_id = blocked["conflicts"][0]["entry_id"]
        response = client.get(f"/api/v1/conflicts/allocation/{entry_id}/full")

        assert response.status_code == 200
        data = response.json()
        assert data["entry"]["id"] == entry_id
        assert data["suggestions"]

    def test_detect_for_block(self, client, blocked):
        block_id = blocked["block"]["id"]
        response = client.post(f"/api/v1/conflicts/detect/block/{block_id}")
        assert response.status_code == 200
        assert len(response.json()["conflicts"]) == 2

        entry_id = blocked["conflicts"][0]["entry_id"]
        assert client.post(f"/api/v1/conflicts/detect/block/{entry_id}").status_code == 404

    def test_detect_for_translator(self, client, blocked):
        response = client.get("/api/v1/conflicts/translator/tr-alice?start=2026-01-12&end=2026-01-16")
        assert response.status_code == 200
        assert len(response.json()["conflicts"]) == 2

    def test_delete_block(self, client, blocked):
        response = client.delete(f"/api/v1/blocks/{blocked['block']['id']}")
        assert response.status_code == 200
        assert client.delete(f"/api/v1/blocks/{blocked['block']['id']}").status_code == 404


class TestLedgerRouter:
    """Tests for /api/v1/ledger"""

    def test_ledger_view(self, client):
        client.post("/api/v1/tasks/", json=task_payload())
        response = client.get("/api/v1/ledger/tr-alice?start=2026-01-14&end=2026-01-15")

        assert response.status_code == 200
        days = response.json()["days"]
        assert [(d["booked"], d["available"]) for d in days] == [(3.0, 4.0), (7.0, 0.0)]

    def test_default_range_is_two_weeks(self, client):
        response = client.get("/api/v1/ledger/tr-alice")
        assert len(response.json()["days"]) == 14

    def test_unknown_translator(self, client):
        assert client.get("/api/v1/ledger/tr-nobody").status_code == 400


def test_health(client):
    assert client.get("/health/live").json() == {"status": "alive"}
    response = client.get("/health/ready")
    assert response.json()["status"] == "ready"
