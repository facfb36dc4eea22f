"""
Matter opening API tests via TestClient, with the workflow and directory
dependencies overridden by in-memory implementations.
"""
import asyncio
import sys
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

backend_root = Path(__file__).resolve().parent.parent
if str(backend_root) not in sys.path:
    sys.path.insert(0, str(backend_root))

from models import ClientRecord, SubmissionReceipt
from routes import matter_opening
from routes.matter_opening import (
    get_client_directory,
    get_draft_backend,
    get_error_reporter,
    get_submission_sink,
    get_workflow,
)
from services.client_directory import ClientDirectoryUnavailable, InMemoryClientDirectory
from services.draft_store import DraftStore, InMemoryDraftBackend
from services.matter_workflow import MatterOpeningWorkflow

BASE = "/api/matter-opening/HLX-777-1"

CLIENTS = [
    ClientRecord(client_id="C1", first_name="Alice", last_name="Hartley"),
    ClientRecord(client_id="C2", first_name="Ben", last_name="Okafor", company_name="Okafor Ltd"),
]

MATTER_BODY = {
    "selected_date": "2026-10-19",
    "supervising_partner": "Alex Partner",
    "originating_solicitor": "Sam Solicitor",
    "area_of_work": "Employment",
    "practice_area": "Settlement Agreement - Advising",
    "description": "Exit negotiation",
}


@pytest.fixture
def sink():
    return MagicMock(submit=AsyncMock(return_value=SubmissionReceipt(accepted=True, reference="MAT-20261019-0001")))


@pytest.fixture
def workflow(sink):
    reporter = MagicMock()
    return MatterOpeningWorkflow(
        store=DraftStore("HLX-777-1", InMemoryDraftBackend(), reporter),
        directory=InMemoryClientDirectory(CLIENTS),
        sink=sink,
        reporter=reporter,
        guidance_urls={},
        user="LZ",
    )


@pytest.fixture
def api(client, workflow):
    client.app.dependency_overrides[get_workflow] = lambda: workflow
    client.app.dependency_overrides[get_client_directory] = lambda: InMemoryClientDirectory(CLIENTS)
    return client


def _walk_to_review(api, base=BASE, headers=None):
    headers = headers or {}
    assert api.put(f"{base}/clients/type", json={"client_type": "Individual"}, headers=headers).status_code == 200
    assert api.post(f"{base}/clients/C1", headers=headers).status_code == 200
    assert api.post(f"{base}/advance", headers=headers).status_code == 200
    assert api.put(f"{base}/matter", json=MATTER_BODY, headers=headers).status_code == 200
    assert api.put(f"{base}/conflict", json={"no_conflict": True}, headers=headers).status_code == 200
    response = api.post(f"{base}/advance", headers=headers)
    assert response.status_code == 200
    assert response.json()["step"] == "REVIEW"


class TestDirectoryAndCatalogue:

    def test_search_clients(self, api):
        response = api.get("/api/matter-opening/clients", params={"q": "okafor"})
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 1
        assert data["clients"][0]["client_id"] == "C2"

    def test_search_directory_unavailable(self, client):
        directory = MagicMock()
        directory.search.side_effect = ClientDirectoryUnavailable("down")
        client.app.dependency_overrides[get_client_directory] = lambda: directory
        response = client.get("/api/matter-opening/clients", params={"q": "x"})
        assert response.status_code == 503

    def test_catalogue(self, client):
        data = client.get("/api/matter-opening/catalogue").json()
        assert "Multiple Individuals" in data["client_types"]
        assert "Employment" in data["areas_of_work"]
        assert len(data["risk_questions"]) == 7


class TestState:

    def test_initial_state(self, api):
        response = api.get(f"{BASE}/state")
        assert response.status_code == 200
        data = response.json()
        assert data["current_step"] == "CLIENTS"
        assert data["submitted"] is False
        assert data["steps"][0]["missing_fields"] == ["selected_client_ids", "client_type"]
        assert data["risk_profile"]["tier"] == "Low Risk"

    def test_risk_answers(self, api):
        body = {
            "answers": {"limitation": 3, "funds_type": 2},
            "sanctions_considered": False,
        }
        response = api.put(f"{BASE}/risk/answers", json=body)
        assert response.status_code == 200
        data = response.json()
        assert data["score"] == 5
        assert data["tier"] == "High Risk"
        assert data["limitation_override"] is True
        assert data["reference_material"][0]["attestation"] == "sanctions"

        assert api.get(f"{BASE}/risk").json()["score"] == 5

    def test_invalid_risk_weight(self, api):
        response = api.put(f"{BASE}/risk/answers", json={"answers": {"limitation": 7}})
        assert response.status_code == 422

    def test_rejected_risk_answers_change_nothing(self, api, workflow):
        version = workflow.store.version
        response = api.put(f"{BASE}/risk/answers", json={"answers": {"limitation": 3, "funds_type": 9}})
        assert response.status_code == 422

        data = api.get(f"{BASE}/risk").json()
        assert data["score"] == 0
        assert data["limitation_override"] is False
        assert workflow.store.version == version


class TestTransitions:

    def test_advance_without_clients_is_422(self, api):
        response = api.post(f"{BASE}/advance")
        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail["step"] == "CLIENTS"
        assert "selected_client_ids" in detail["missing_fields"]

    def test_jump_blocked(self, api):
        response = api.post(f"{BASE}/jump", json={"step": "REVIEW"})
        assert response.status_code == 422

    def test_walk_to_review_and_back(self, api):
        _walk_to_review(api)
        response = api.post(f"{BASE}/retreat")
        assert response.status_code == 200
        assert response.json()["step"] == "MATTER_DETAILS"

    def test_unknown_matter_field_is_422(self, api):
        response = api.put(f"{BASE}/matter", json={"colour": "blue"})
        assert response.status_code == 422

    def test_select_unknown_client(self, api):
        response = api.post(f"{BASE}/clients/NOPE")
        assert response.status_code == 422


class TestParties:

    def test_opponent_requires_conflict_check(self, api):
        response = api.put(f"{BASE}/opponent", json={"first_name": "Olly"})
        assert response.status_code == 422
        assert response.json()["detail"]["missing_fields"] == ["no_conflict"]

    def test_defer_party_details(self, api, workflow):
        api.put(f"{BASE}/conflict", json={"no_conflict": True})
        assert api.post(f"{BASE}/parties/defer").status_code == 200
        assert workflow.store.get("opponent").kind == "placeholder"

    def test_real_opponent(self, api, workflow):
        api.put(f"{BASE}/conflict", json={"no_conflict": True})
        response = api.put(f"{BASE}/solicitor", json={"company_name": "Opp & Co", "is_company": True})
        assert response.status_code == 200
        assert workflow.store.get("opponent_solicitor").kind == "real"


class TestSubmission:

    def test_snapshot_not_ready(self, api):
        assert api.get(f"{BASE}/snapshot").status_code == 409

    def test_submit_not_ready(self, api, sink):
        assert api.post(f"{BASE}/submit").status_code == 409
        sink.submit.assert_not_awaited()

    def test_snapshot_and_submit(self, api, sink):
        _walk_to_review(api)
        snapshot = api.get(f"{BASE}/snapshot")
        assert snapshot.status_code == 200
        assert snapshot.json()["matter"]["practice_area"] == "Settlement Agreement - Advising"

        with patch("routes.matter_opening.create_audit_log", new=AsyncMock(return_value="a1")) as audit:
            first = api.post(f"{BASE}/submit")
            second = api.post(f"{BASE}/submit")

        assert first.status_code == 200
        assert first.json()["reference"] == "MAT-20261019-0001"
        assert second.json()["duplicate"] is True
        sink.submit.assert_awaited_once()
        audit.assert_awaited_once()

    def test_rejected_submission_is_502(self, api, sink, workflow):
        sink.submit.return_value = SubmissionReceipt(accepted=False, message="duplicate matter")
        _walk_to_review(api)

        with patch("routes.matter_opening.create_audit_log", new=AsyncMock(return_value="a1")):
            response = api.post(f"{BASE}/submit")

        assert response.status_code == 502
        assert workflow.store.get("submitted") is False

    def test_clear_draft(self, api, workflow):
        api.put(f"{BASE}/clients/type", json={"client_type": "Company"})
        with patch("routes.matter_opening.create_audit_log", new=AsyncMock(return_value="a1")):
            response = api.delete(f"{BASE}/draft")
        assert response.status_code == 200
        assert workflow.store.get("client_type") is None


class LoopRecordingBackend(InMemoryDraftBackend):
    """In-memory backend that notes any call made on the event loop thread."""

    def __init__(self):
        super().__init__()
        self.calls = []
        self.calls_on_loop = []

    def _record(self, name):
        self.calls.append(name)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return
        self.calls_on_loop.append(name)

    def load(self, namespace):
        self._record("load")
        return super().load(namespace)

    def write(self, namespace, key, text, version):
        self._record("write")
        super().write(namespace, key, text, version)

    def clear(self, namespace):
        self._record("clear")
        super().clear(namespace)


LIVE = "/api/matter-opening/HLX-888-1"


@pytest.fixture(autouse=True)
def fresh_workflow_cache():
    matter_opening._workflows.clear()
    yield
    matter_opening._workflows.clear()


@pytest.fixture
def backend():
    return LoopRecordingBackend()


@pytest.fixture
def live_api(client, backend, sink):
    """Real workflow dependency over in-memory collaborators."""
    overrides = client.app.dependency_overrides
    overrides[get_draft_backend] = lambda: backend
    overrides[get_client_directory] = lambda: InMemoryClientDirectory(CLIENTS)
    overrides[get_submission_sink] = lambda: sink
    overrides[get_error_reporter] = lambda: MagicMock()
    return client


class TestLiveWorkflows:

    def test_user_header_not_carried_between_requests(self, live_api):
        _walk_to_review(live_api, base=LIVE, headers={"X-User-Initials": "AB"})

        anonymous = live_api.get(f"{LIVE}/snapshot").json()
        assert anonymous["metadata"]["created_by"] is None
        assert anonymous["team"]["requesting_user"] is None

        named = live_api.get(f"{LIVE}/snapshot", headers={"X-User-Initials": "CD"}).json()
        assert named["metadata"]["created_by"] == "CD"

        workflow, lock = matter_opening._workflows["HLX-888-1"]
        assert workflow.user is None
        assert lock.locked() is False

    def test_submit_audits_caller_and_releases_workflow(self, live_api, sink):
        _walk_to_review(live_api, base=LIVE)

        with patch("routes.matter_opening.create_audit_log", new=AsyncMock(return_value="a1")) as audit:
            first = live_api.post(f"{LIVE}/submit", headers={"X-User-Initials": "AB"})
            assert "HLX-888-1" not in matter_opening._workflows
            second = live_api.post(f"{LIVE}/submit")

        assert first.status_code == 200
        assert sink.submit.await_args[0][0].metadata.created_by == "AB"
        assert audit.await_args.kwargs["actor_id"] == "AB"
        audit.assert_awaited_once()
        assert second.json()["duplicate"] is True
        sink.submit.assert_awaited_once()

    def test_cache_is_bounded(self, live_api, monkeypatch):
        monkeypatch.setattr(matter_opening, "MAX_CACHED_WORKFLOWS", 2)
        for ref in ("HLX-1-1", "HLX-2-2", "HLX-3-3"):
            assert live_api.get(f"/api/matter-opening/{ref}/state").status_code == 200

        assert list(matter_opening._workflows) == ["HLX-2-2", "HLX-3-3"]

    def test_draft_io_runs_off_the_event_loop(self, live_api, backend):
        _walk_to_review(live_api, base=LIVE)
        with patch("routes.matter_opening.create_audit_log", new=AsyncMock(return_value="a1")):
            assert live_api.post(f"{LIVE}/submit").status_code == 200
            assert live_api.delete(f"{LIVE}/draft").status_code == 200

        assert {"load", "write", "clear"} <= set(backend.calls)
        assert backend.calls_on_loop == []
