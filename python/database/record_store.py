"""
SQLAlchemy implementation of the duplicate detector's RecordStore.

Maps ORM rows to the detector's dataclasses. All operations run on the
session passed in, so the caller owns the transaction boundary.
"""

import logging
from datetime import datetime
from typing import List, Optional
from uuid import UUID

from sqlalchemy.orm import Session

from database.models import (
    PartnerDraft,
    ExistingPartner,
    DuplicateMatch,
    DraftStatus,
    MatchMethod,
    MergeDecision,
)
from database.monitoring import timed_query
from database.repositories import (
    PartnerDraftRepository,
    ExistingPartnerRepository,
    DuplicateMatchRepository,
    ApprovalHistoryRepository,
)
from duplicate_detector import (
    Address,
    AuditEntry,
    CorpusRecord,
    Draft,
    MatchResult,
    MergeAnalysis,
    TaxId,
)

logger = logging.getLogger(__name__)


def draft_from_model(model: PartnerDraft) -> Draft:
    return Draft(
        id=model.id,
        partner_name=model.partner_name,
        request_type=model.request_type,
        partner_category=model.partner_category,
        source_system=model.source_system,
        status=model.status,
        addresses=[Address(address_type=a.address_type, country_code=a.country_code)
                   for a in model.addresses],
        tax_ids=[TaxId(country_code=t.country_code, vat_number=t.vat_number)
                 for t in model.tax_ids],
        business_channels=frozenset(model.business_channels or [])
    )


def corpus_record_from_model(model: ExistingPartner) -> CorpusRecord:
    return CorpusRecord(
        id=model.id,
        partner_number=model.partner_number,
        partner_name=model.partner_name,
        status=model.status,
        partner_category=model.partner_category,
        established_vat_id=model.established_vat_id,
        established_country=model.established_country,
        source_system=model.source_system,
        business_channels=frozenset(model.business_channels or []),
        last_updated=model.last_updated
    )


def match_result_to_model(result: MatchResult) -> DuplicateMatch:
    record = result.record
    return DuplicateMatch(
        id=result.id,
        draft_id=result.draft_id,
        existing_partner_id=record.id,
        rank=result.rank,
        match_methods=sorted(m.value for m in result.methods),
        match_score=result.score,
        confidence_level=result.confidence,
        match_details=result.explanation,
        review_required=result.review_required,
        can_merge=result.analysis.can_merge,
        merge_risk=result.analysis.risk,
        merge_recommendation=result.analysis.recommendation,
        compatibility_score=result.analysis.compatibility_score,
        compatibility_factors=list(result.analysis.factors),
        partner_number=record.partner_number,
        partner_name=record.partner_name,
        partner_status=record.status,
        partner_category=record.partner_category,
        established_vat_id=record.established_vat_id,
        established_country=record.established_country,
        source_system=record.source_system,
        business_channels=sorted(record.business_channels),
        merge_decision=result.decision,
        merge_decision_by=result.decided_by,
        merge_decision_at=result.decided_at,
        merge_comments=result.decision_comment
    )


def match_result_from_model(model: DuplicateMatch) -> MatchResult:
    # The record is rebuilt from the snapshot taken when the match was found
    record = CorpusRecord(
        id=model.existing_partner_id,
        partner_number=model.partner_number,
        partner_name=model.partner_name,
        status=model.partner_status,
        partner_category=model.partner_category,
        established_vat_id=model.established_vat_id,
        established_country=model.established_country,
        source_system=model.source_system,
        business_channels=frozenset(model.business_channels or [])
    )
    return MatchResult(
        id=model.id,
        draft_id=model.draft_id,
        record=record,
        methods=frozenset(MatchMethod(m) for m in model.match_methods),
        score=model.match_score,
        confidence=model.confidence_level,
        explanation=model.match_details or '',
        analysis=MergeAnalysis(
            can_merge=model.can_merge,
            risk=model.merge_risk,
            recommendation=model.merge_recommendation,
            compatibility_score=model.compatibility_score,
            factors=list(model.compatibility_factors or [])
        ),
        review_required=model.review_required,
        rank=model.rank,
        decision=model.merge_decision,
        decided_by=model.merge_decision_by,
        decided_at=model.merge_decision_at,
        decision_comment=model.merge_comments
    )


class SqlRecordStore:
    """RecordStore backed by one SQLAlchemy session."""

    def __init__(self, session: Session):
        self.session = session
        self.drafts = PartnerDraftRepository(session)
        self.partners = ExistingPartnerRepository(session)
        self.matches = DuplicateMatchRepository(session)
        self.history = ApprovalHistoryRepository(session)

    @timed_query("get_draft")
    def get_draft(self, draft_id: UUID) -> Optional[Draft]:
        model = self.drafts.get_by_id(draft_id)
        return draft_from_model(model) if model else None

    @timed_query("get_active_corpus_records")
    def get_active_corpus_records(self) -> List[CorpusRecord]:
        return [corpus_record_from_model(m) for m in self.partners.list_active()]

    @timed_query("find_corpus_by_established_identifier")
    def find_corpus_by_established_identifier(self, country_code: str, vat_id: str) -> List[CorpusRecord]:
        return [corpus_record_from_model(m)
                for m in self.partners.find_by_established_identifier(country_code, vat_id)]

    @timed_query("replace_match_results")
    def replace_match_results(self, draft_id: UUID, results: List[MatchResult]) -> None:
        self.matches.replace_for_draft(draft_id, [match_result_to_model(r) for r in results])

    @timed_query("update_draft_status")
    def update_draft_status(self, draft_id: UUID, status: DraftStatus) -> None:
        self.drafts.update_status(draft_id, status)

    @timed_query("append_audit_entry")
    def append_audit_entry(self, entry: AuditEntry) -> None:
        self.history.append(
            draft_id=entry.draft_id,
            action=entry.action,
            new_status=entry.new_status,
            previous_status=entry.previous_status,
            comments=entry.comment,
            system_generated=entry.system_generated,
            actor_id=entry.actor_id,
            actor_name=entry.actor_name,
            timestamp=entry.timestamp
        )

    @timed_query("get_match_result")
    def get_match_result(self, match_id: UUID) -> Optional[MatchResult]:
        model = self.matches.get_by_id(match_id)
        return match_result_from_model(model) if model else None

    @timed_query("update_match_decision")
    def update_match_decision(self, match_id: UUID, decision: MergeDecision, decided_by: str,
                              decided_at: datetime, comment: Optional[str]) -> None:
        self.matches.update_decision(match_id, decision, decided_by, decided_at, comment)

    @timed_query("list_match_results")
    def list_match_results(self, draft_id: UUID) -> List[MatchResult]:
        return [match_result_from_model(m) for m in self.matches.list_for_draft(draft_id)]
