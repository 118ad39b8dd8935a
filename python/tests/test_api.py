"""
API endpoint tests for the Duplicate Detection API.

The duplicate service is replaced by a MagicMock; startup is not run, so no
database connection is opened except where a test provides one.
"""

import uuid
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

import api.server as server
from database.models import (
    RequestType,
    PartnerCategory,
    PartnerStatus,
    DraftStatus,
    MatchMethod,
)
from duplicate_detector import (
    Address,
    TaxId,
    Draft,
    CorpusRecord,
    MatchCandidate,
    MergeCompatibilityAnalyzer,
    DuplicateCheckOutcome,
    consolidate_candidates,
    DraftNotFoundError,
    MatchResultNotFoundError,
    InvalidDecisionError,
    ConcurrencyConflictError,
    StoreUnavailableError,
)


@pytest.fixture
def mock_outcome():
    """A real outcome with one identifier match."""
    draft = Draft(
        id=uuid.uuid4(),
        partner_name="ACME Corporation Ltd",
        request_type=RequestType.CREATE,
        partner_category=PartnerCategory.SUPPLIER,
        source_system="SAP",
        status=DraftStatus.SUBMITTED,
        addresses=[Address("Main", "US")],
        tax_ids=[TaxId("US", "US987654321")],
    )
    record = CorpusRecord(
        id=uuid.uuid4(),
        partner_number="P-0001",
        partner_name="Acme Holdings",
        status=PartnerStatus.ACTIVE,
        partner_category=PartnerCategory.SUPPLIER,
        established_vat_id="US987654321",
        established_country="US",
        source_system="SAP",
    )
    results = consolidate_candidates(
        draft,
        [MatchCandidate(record, MatchMethod.ESTABLISHED_IDENTIFIER, 1.0,
                        "Exact established VAT ID match: US987654321 in US")],
        MergeCompatibilityAnalyzer()
    )
    return DuplicateCheckOutcome(
        draft_id=draft.id,
        results=results,
        previous_status=DraftStatus.SUBMITTED,
        new_status=DraftStatus.PENDING_DUPLICATE_REVIEW,
        review_triggered=True,
    )


@pytest.fixture
def mock_service(mock_outcome):
    service = MagicMock()
    service.run_duplicate_check.return_value = mock_outcome
    service.get_duplicate_statistics.return_value = {
        'total_duplicates': 1,
        'established_vat_matches': 1,
        'fuzzy_name_matches': 0,
        'high_confidence_matches': 1,
        'merge_candidates': 1,
        'pending_decisions': 1,
        'average_match_score': 1.0,
    }
    return service


@pytest.fixture
def client(mock_service, config, monkeypatch):
    monkeypatch.setattr(server, "_service", mock_service)
    monkeypatch.setattr(server, "_config", config)
    monkeypatch.setattr(server, "API_KEY", "")
    return TestClient(server.app)


class TestDuplicateCheckEndpoint:
    """Tests for POST /api/v1/drafts/{draft_id}/duplicate-check."""

    def test_success(self, client, mock_service, mock_outcome):
        response = client.post(f"/api/v1/drafts/{mock_outcome.draft_id}/duplicate-check")

        assert response.status_code == 200
        data = response.json()
        assert data['draft_id'] == str(mock_outcome.draft_id)
        assert data['match_count'] == 1
        assert data['previous_status'] == "Submitted"
        assert data['new_status'] == "PendingDuplicateReview"
        assert data['review_triggered'] is True
        assert data['processing_time_ms'] >= 0

        match = data['matches'][0]
        assert match['match_methods'] == ["EstablishedIdentifier"]
        assert match['match_score'] == 1.0
        assert match['confidence'] == "VeryHigh"
        assert match['merge_analysis']['compatibility_score'] == 80
        assert match['merge_decision'] == "Pending"
        mock_service.run_duplicate_check.assert_called_once_with(mock_outcome.draft_id)

    def test_invalid_draft_id(self, client):
        response = client.post("/api/v1/drafts/not-a-uuid/duplicate-check")
        assert response.status_code == 422

    @pytest.mark.parametrize("error,status,code", [
        (DraftNotFoundError("Draft not found"), 404, "NOT_FOUND"),
        (ConcurrencyConflictError("Duplicate check already in progress"), 409, "CONCURRENCY_CONFLICT"),
        (StoreUnavailableError("Record store unavailable: OperationalError"), 503, "STORE_UNAVAILABLE"),
    ])
    def test_error_mapping(self, client, mock_service, error, status, code):
        mock_service.run_duplicate_check.side_effect = error

        response = client.post(f"/api/v1/drafts/{uuid.uuid4()}/duplicate-check")

        assert response.status_code == status
        assert response.json()['error']['code'] == code

    def test_store_failure_details_hidden(self, client, mock_service):
        mock_service.run_duplicate_check.side_effect = StoreUnavailableError(
            "Record store unavailable: OperationalError at db.internal:5432"
        )
        response = client.post(f"/api/v1/drafts/{uuid.uuid4()}/duplicate-check")
        assert "db.internal" not in response.json()['error']['message']

    def test_conflict_suggests_retry(self, client, mock_service):
        mock_service.run_duplicate_check.side_effect = ConcurrencyConflictError("busy")
        response = client.post(f"/api/v1/drafts/{uuid.uuid4()}/duplicate-check")
        assert response.json()['error']['suggestion'] == "Retry after a short backoff"

    def test_unexpected_error(self, mock_service, config, monkeypatch):
        monkeypatch.setattr(server, "_service", mock_service)
        monkeypatch.setattr(server, "_config", config)
        mock_service.run_duplicate_check.side_effect = RuntimeError("secret internals")

        client = TestClient(server.app, raise_server_exceptions=False)
        response = client.post(f"/api/v1/drafts/{uuid.uuid4()}/duplicate-check")

        assert response.status_code == 500
        assert "secret" not in response.text

    def test_service_not_ready(self, client, monkeypatch):
        monkeypatch.setattr(server, "_service", None)
        response = client.post(f"/api/v1/drafts/{uuid.uuid4()}/duplicate-check")
        assert response.status_code == 503
        assert response.json()['error']['code'] == "HTTP_503"


class TestMergeDecisionEndpoint:
    """Tests for POST /api/v1/match-results/{match_id}/decision."""

    def test_success(self, client, mock_service):
        match_id = uuid.uuid4()

        response = client.post(
            f"/api/v1/match-results/{match_id}/decision",
            json={"decision": " Merge ", "comment": "Same VAT id"},
            headers={"X-User-ID": "reviewer-9"},
        )

        assert response.status_code == 200
        assert response.json() == {
            "match_id": str(match_id),
            "decision": "Merge",
            "decided_by": "reviewer-9",
        }
        mock_service.record_merge_decision.assert_called_once_with(
            match_id, "Merge", "reviewer-9", "Same VAT id"
        )

    def test_decider_defaults_to_system(self, client, mock_service):
        response = client.post(f"/api/v1/match-results/{uuid.uuid4()}/decision",
                               json={"decision": "CreateNew"})
        assert response.status_code == 200
        assert response.json()['decided_by'] == "system"

    def test_invalid_decision(self, client, mock_service):
        mock_service.record_merge_decision.side_effect = InvalidDecisionError(
            "Invalid merge decision: Maybe"
        )

        response = client.post(f"/api/v1/match-results/{uuid.uuid4()}/decision",
                               json={"decision": "Maybe"})

        assert response.status_code == 422
        error = response.json()['error']
        assert error['code'] == "INVALID_DECISION"
        assert error['field'] == "decision"
        assert error['suggestion'] == "Use 'Merge' or 'CreateNew'"

    def test_unknown_match(self, client, mock_service):
        mock_service.record_merge_decision.side_effect = MatchResultNotFoundError("Match result not found")
        response = client.post(f"/api/v1/match-results/{uuid.uuid4()}/decision",
                               json={"decision": "Merge"})
        assert response.status_code == 404

    def test_missing_decision(self, client):
        response = client.post(f"/api/v1/match-results/{uuid.uuid4()}/decision", json={})
        assert response.status_code == 422


class TestStatisticsEndpoint:
    """Tests for GET /api/v1/drafts/{draft_id}/duplicate-statistics."""

    def test_success(self, client):
        draft_id = uuid.uuid4()
        response = client.get(f"/api/v1/drafts/{draft_id}/duplicate-statistics")

        assert response.status_code == 200
        data = response.json()
        assert data['draft_id'] == str(draft_id)
        assert data['total_duplicates'] == 1
        assert data['average_match_score'] == 1.0

    def test_unknown_draft(self, client, mock_service):
        mock_service.get_duplicate_statistics.side_effect = DraftNotFoundError("Draft not found")
        response = client.get(f"/api/v1/drafts/{uuid.uuid4()}/duplicate-statistics")
        assert response.status_code == 404


class TestHealthEndpoint:
    """Tests for GET /api/v1/health."""

    def test_starting(self, client, monkeypatch):
        monkeypatch.setattr(server, "_service", None)
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        assert response.json()['status'] == "starting"
        assert response.json()['algorithm_version'] == "1.0.0-test"

    def test_healthy(self, client, mock_service, db_provider):
        mock_service.db_provider = db_provider
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data['status'] == "healthy"
        assert data['database']['healthy'] is True
        assert 'operations' in data['metrics']


class TestAuthentication:
    """Tests for X-API-Key handling."""

    def test_missing_key(self, client, monkeypatch):
        monkeypatch.setattr(server, "API_KEY", "s3cret")
        response = client.post(f"/api/v1/drafts/{uuid.uuid4()}/duplicate-check")
        assert response.status_code == 401

    def test_wrong_key(self, client, monkeypatch):
        monkeypatch.setattr(server, "API_KEY", "s3cret")
        response = client.post(f"/api/v1/drafts/{uuid.uuid4()}/duplicate-check",
                               headers={"X-API-Key": "nope"})
        assert response.status_code == 403

    def test_valid_key(self, client, monkeypatch):
        monkeypatch.setattr(server, "API_KEY", "s3cret")
        response = client.post(f"/api/v1/drafts/{uuid.uuid4()}/duplicate-check",
                               headers={"X-API-Key": "s3cret"})
        assert response.status_code == 200

    def test_health_is_public(self, client, monkeypatch):
        monkeypatch.setattr(server, "API_KEY", "s3cret")
        assert client.get("/api/v1/health").status_code == 200
