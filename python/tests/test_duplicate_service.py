"""
End-to-end tests for the database-backed duplicate service.

Covers the acceptance scenarios: identifier match, blocked partner, fuzzy
name match, Update drafts, no match and idempotent re-runs.
"""

import threading
import uuid
from datetime import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from database.duplicate_service import (
    DatabaseDuplicateService,
    configure_duplicate_service,
    get_duplicate_service,
)
from database.models import (
    PartnerDraft,
    DuplicateMatch,
    ApprovalHistory,
    RequestType,
    PartnerStatus,
    DraftStatus,
    MatchMethod,
    MergeDecision,
    MergeRisk,
    ConfidenceLevel,
)
from duplicate_detector import (
    DraftLockRegistry,
    DraftNotFoundError,
    MatchResultNotFoundError,
    InvalidDecisionError,
    ConcurrencyConflictError,
    StoreUnavailableError,
)
from name_matching import FUZZY_MATCH_THRESHOLD
import database.duplicate_service as duplicate_service_module


def draft_status(db_provider, draft_id):
    with db_provider.session_scope() as session:
        return session.get(PartnerDraft, draft_id).status


def history_for(db_provider, draft_id):
    with db_provider.session_scope() as session:
        return list(session.execute(
            select(ApprovalHistory).where(ApprovalHistory.draft_id == draft_id)
        ).scalars().all())


def persisted_rows(db_provider, draft_id):
    """Persisted match rows as plain dicts, updated_at excluded."""
    with db_provider.session_scope() as session:
        rows = session.execute(
            select(DuplicateMatch).where(DuplicateMatch.draft_id == draft_id)
            .order_by(DuplicateMatch.rank)
        ).scalars().all()
        return [
            {c.name: getattr(row, c.name) for c in DuplicateMatch.__table__.columns
             if c.name != 'updated_at'}
            for row in rows
        ]


class TestScenarios:
    """Acceptance scenarios for CheckDuplicates."""

    def test_identifier_match_fully_compatible(self, service, db_provider, seed_draft, seed_partner):
        draft_id = seed_draft()
        seed_partner()

        outcome = service.run_duplicate_check(draft_id)

        assert len(outcome.results) == 1
        result = outcome.results[0]
        assert result.methods == {MatchMethod.ESTABLISHED_IDENTIFIER}
        assert result.score == 1.0
        assert result.confidence == ConfidenceLevel.VERY_HIGH
        assert result.analysis.compatibility_score == 100
        assert result.analysis.can_merge is True
        assert result.analysis.risk == MergeRisk.LOW
        assert result.review_required is True
        assert result.decision == MergeDecision.PENDING

        assert outcome.review_triggered is True
        assert draft_status(db_provider, draft_id) == DraftStatus.PENDING_DUPLICATE_REVIEW
        history = history_for(db_provider, draft_id)
        assert len(history) == 1
        assert history[0].comments == "Found 1 potential duplicate(s) - manual review required"
        assert history[0].system_generated is True

    def test_blocked_partner_still_matched(self, service, db_provider, seed_draft, seed_partner):
        draft_id = seed_draft()
        seed_partner(status=PartnerStatus.BLOCKED)

        outcome = service.run_duplicate_check(draft_id)

        result = outcome.results[0]
        assert result.score == 1.0
        assert result.analysis.compatibility_score == 0
        assert result.analysis.can_merge is False
        assert result.analysis.risk == MergeRisk.HIGH
        assert "Blocked" in result.analysis.recommendation
        assert draft_status(db_provider, draft_id) == DraftStatus.PENDING_DUPLICATE_REVIEW

    def test_fuzzy_name_match(self, service, seed_draft, seed_partner):
        draft_id = seed_draft(partner_name="Northwind Trading Partners", tax_ids=[])
        seed_partner(partner_name="Northwind Trading Partnars", established_vat_id=None)

        results = service.check_duplicates(draft_id)

        assert len(results) == 1
        assert results[0].methods == {MatchMethod.FUZZY_NAME}
        assert round(results[0].score, 2) == 0.96
        assert results[0].confidence == ConfidenceLevel.HIGH

    def test_legal_suffix_variants_match(self, service, seed_draft, seed_partner):
        draft_id = seed_draft(partner_name="ACME Corp Limited", tax_ids=[])
        seed_partner(partner_name="ACME Corporation Ltd", established_vat_id=None)

        results = service.check_duplicates(draft_id)

        assert [r.methods for r in results] == [{MatchMethod.FUZZY_NAME}]
        assert results[0].score == 1.0

    def test_update_draft_has_no_identifier_matches(self, service, seed_draft, seed_partner):
        draft_id = seed_draft(request_type=RequestType.UPDATE,
                              partner_name="Northwind Trading Partners")
        seed_partner(partner_number="P-1")
        seed_partner(partner_number="P-2", partner_name="Northwind Trading Partners",
                     established_vat_id=None)

        results = service.check_duplicates(draft_id)

        assert [r.record.partner_number for r in results] == ["P-2"]
        assert all(MatchMethod.ESTABLISHED_IDENTIFIER not in r.methods for r in results)

    def test_no_match_leaves_status(self, service, db_provider, seed_draft, seed_partner):
        draft_id = seed_draft(partner_name="Unique Widgets", tax_ids=[])
        seed_partner(partner_name="Contoso Pharma", established_vat_id="GB111")

        outcome = service.run_duplicate_check(draft_id)

        assert outcome.results == []
        assert outcome.review_triggered is False
        assert draft_status(db_provider, draft_id) == DraftStatus.SUBMITTED
        assert history_for(db_provider, draft_id) == []

    def test_rerun_is_identical_apart_from_updated_at(self, service, db_provider, seed_draft, seed_partner):
        draft_id = seed_draft(partner_name="Northwind Trading Partners")
        seed_partner(partner_number="P-1")
        seed_partner(partner_number="P-2", partner_name="Northwind Trading Partnars",
                     established_vat_id=None)
        seed_partner(partner_number="P-3", partner_name="Northwind Tradng Partners",
                     established_vat_id=None, source_system="Oracle")

        first = service.run_duplicate_check(draft_id)
        rows_after_first = persisted_rows(db_provider, draft_id)
        second = service.run_duplicate_check(draft_id)
        rows_after_second = persisted_rows(db_provider, draft_id)

        assert len(rows_after_first) == 3
        assert rows_after_first == rows_after_second
        assert [r.to_dict() for r in first.results] == [r.to_dict() for r in second.results]
        # Second run starts from PendingDuplicateReview, so no new transition
        assert second.review_triggered is False
        assert len(history_for(db_provider, draft_id)) == 1


class TestInvariants:
    """Properties that hold for every persisted result set."""

    def test_persisted_results_respect_thresholds(self, service, db_provider, seed_draft, seed_partner):
        draft_id = seed_draft(partner_name="Northwind Trading Partners")
        names = ["Northwind Trading Partners", "Northwind Trading Partnars", "Northwind Trade",
                 "Northwind", "Southwind Trading Partners", "Acme Holdings"]
        for i, name in enumerate(names):
            seed_partner(partner_number=f"P-{i}", partner_name=name,
                         established_vat_id="US987654321" if i == 5 else None)

        results = service.check_duplicates(draft_id)
        stored = service.list_match_results(draft_id)

        assert [r.to_dict() for r in results] == [r.to_dict() for r in stored]
        assert len({r.record.id for r in stored}) == len(stored)
        for result in stored:
            if result.methods == {MatchMethod.FUZZY_NAME}:
                assert result.score >= FUZZY_MATCH_THRESHOLD
            if MatchMethod.ESTABLISHED_IDENTIFIER in result.methods:
                assert result.score == 1.0
                assert result.confidence in (ConfidenceLevel.HIGH, ConfidenceLevel.VERY_HIGH)
            assert 0 <= result.analysis.compatibility_score <= 100
            assert result.review_required == (result.score > 0.8)
        scores = [r.score for r in stored]
        assert scores == sorted(scores, reverse=True)

    def test_draft_not_submitted_is_not_transitioned(self, service, db_provider, seed_draft, seed_partner):
        draft_id = seed_draft(status=DraftStatus.DRAFT)
        seed_partner()

        outcome = service.run_duplicate_check(draft_id)

        assert len(outcome.results) == 1
        assert outcome.review_triggered is False
        assert draft_status(db_provider, draft_id) == DraftStatus.DRAFT

    def test_unknown_draft(self, service):
        with pytest.raises(DraftNotFoundError):
            service.run_duplicate_check(uuid.uuid4())


class TestMergeDecisions:
    """Tests for RecordMergeDecision through the service."""

    def test_record_decision(self, service, db_provider, seed_draft, seed_partner):
        draft_id = seed_draft()
        seed_partner()
        match_id = service.check_duplicates(draft_id)[0].id

        service.record_merge_decision(match_id, "CreateNew", "reviewer-1", "Different legal entity")

        stored = service.list_match_results(draft_id)[0]
        assert stored.decision == MergeDecision.CREATE_NEW
        assert stored.decided_by == "reviewer-1"
        assert stored.decision_comment == "Different legal entity"
        # Decisions never move the draft
        assert draft_status(db_provider, draft_id) == DraftStatus.PENDING_DUPLICATE_REVIEW

    def test_invalid_decision_writes_nothing(self, service, seed_draft, seed_partner):
        draft_id = seed_draft()
        seed_partner()
        match_id = service.check_duplicates(draft_id)[0].id

        with pytest.raises(InvalidDecisionError):
            service.record_merge_decision(match_id, "Pending", "reviewer-1")

        assert service.list_match_results(draft_id)[0].decision == MergeDecision.PENDING

    def test_unknown_match_result(self, service):
        with pytest.raises(MatchResultNotFoundError):
            service.record_merge_decision(uuid.uuid4(), "Merge", "reviewer-1")

    def test_rerun_resets_decisions(self, service, seed_draft, seed_partner):
        draft_id = seed_draft()
        seed_partner()
        match_id = service.check_duplicates(draft_id)[0].id
        service.record_merge_decision(match_id, "Merge", "reviewer-1")

        rerun = service.check_duplicates(draft_id)

        assert rerun[0].id == match_id
        assert rerun[0].decision == MergeDecision.PENDING

    def test_rerun_keeps_created_at(self, service, db_provider, seed_draft, seed_partner):
        draft_id = seed_draft()
        seed_partner()
        match_id = service.check_duplicates(draft_id)[0].id
        first_seen = datetime(2024, 1, 15, 9, 30)
        with db_provider.session_scope() as session:
            session.get(DuplicateMatch, match_id).created_at = first_seen

        service.check_duplicates(draft_id)

        with db_provider.session_scope() as session:
            assert session.get(DuplicateMatch, match_id).created_at.replace(tzinfo=None) == first_seen

    def test_statistics(self, service, seed_draft, seed_partner):
        draft_id = seed_draft()
        seed_partner()
        match_id = service.check_duplicates(draft_id)[0].id
        service.record_merge_decision(match_id, "Merge", "reviewer-1")

        stats = service.get_duplicate_statistics(draft_id)

        assert stats == {
            'total_duplicates': 1,
            'established_vat_matches': 1,
            'fuzzy_name_matches': 0,
            'high_confidence_matches': 1,
            'merge_candidates': 1,
            'pending_decisions': 0,
            'average_match_score': 1.0,
        }

    def test_statistics_unknown_draft(self, service):
        with pytest.raises(DraftNotFoundError):
            service.get_duplicate_statistics(uuid.uuid4())


class TestFailures:
    """Store failures and concurrency."""

    def test_store_failure_maps_to_store_unavailable(self, config):
        provider = MagicMock()
        provider.session_scope.side_effect = OperationalError("SELECT 1", {}, Exception("down"))
        service = DatabaseDuplicateService(provider, config)

        with pytest.raises(StoreUnavailableError) as exc_info:
            service.run_duplicate_check(uuid.uuid4())

        assert exc_info.value.code == "STORE_UNAVAILABLE"
        assert isinstance(exc_info.value.__cause__, OperationalError)

    def test_failed_write_leaves_previous_results(self, service, db_provider, seed_draft,
                                                  seed_partner, monkeypatch):
        draft_id = seed_draft()
        seed_partner()
        service.run_duplicate_check(draft_id)
        before = persisted_rows(db_provider, draft_id)

        def failing_append(self, entry):
            raise OperationalError("INSERT", {}, Exception("disk full"))

        # Back to Submitted so the next check writes an audit entry
        with db_provider.session_scope() as session:
            session.get(PartnerDraft, draft_id).status = DraftStatus.SUBMITTED
        monkeypatch.setattr("database.record_store.SqlRecordStore.append_audit_entry", failing_append)

        with pytest.raises(StoreUnavailableError):
            service.run_duplicate_check(draft_id)

        assert persisted_rows(db_provider, draft_id) == before
        assert draft_status(db_provider, draft_id) == DraftStatus.SUBMITTED

    def test_concurrent_check_of_same_draft(self, db_provider, config, seed_draft):
        registry = DraftLockRegistry()
        config.performance.lock_timeout_seconds = 0
        service = DatabaseDuplicateService(db_provider, config, registry)
        draft_id = seed_draft()
        held = threading.Event()
        release = threading.Event()

        def holder():
            with registry.hold(draft_id, 1.0):
                held.set()
                release.wait(5)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert held.wait(5)
            with pytest.raises(ConcurrencyConflictError):
                service.run_duplicate_check(draft_id)
        finally:
            release.set()
            thread.join()

        service.run_duplicate_check(draft_id)

    def test_services_sharing_registry_exclude_each_other(self, db_provider, config, seed_draft):
        registry = DraftLockRegistry()
        config.performance.lock_timeout_seconds = 0
        first = DatabaseDuplicateService(db_provider, config, registry)
        second = DatabaseDuplicateService(db_provider, config, registry)
        draft_id = seed_draft()

        assert first.locks is registry
        assert second.locks is registry

        errors = []

        def run_second():
            try:
                second.run_duplicate_check(draft_id)
            except ConcurrencyConflictError as e:
                errors.append(e)

        # Locks are re-entrant per thread, so the second check runs elsewhere
        with first.locks.hold(draft_id, 0):
            thread = threading.Thread(target=run_second)
            thread.start()
            thread.join()

        assert len(errors) == 1


class TestServiceRegistration:
    """Tests for the module-level service accessor."""

    def test_unconfigured(self, monkeypatch):
        monkeypatch.setattr(duplicate_service_module, "_duplicate_service", None)
        with pytest.raises(RuntimeError):
            get_duplicate_service()

    def test_configure(self, db_provider, config, monkeypatch):
        monkeypatch.setattr(duplicate_service_module, "_duplicate_service", None)
        service = configure_duplicate_service(db_provider, config)
        assert get_duplicate_service() is service
