"""
Repository Pattern for Partner Duplicate Detection Database Operations

Provides clean data access layer with proper typing and error handling.
Implements the Repository pattern for separation of concerns.
"""

import logging
from typing import List, Optional, Dict, Any
from uuid import UUID
from datetime import datetime, timezone

from sqlalchemy import select, func, and_
from sqlalchemy.orm import Session
from sqlalchemy.exc import IntegrityError

from database.models import (
    PartnerDraft,
    DraftAddress,
    DraftTaxId,
    ExistingPartner,
    DuplicateMatch,
    ApprovalHistory,
    DraftStatus,
    PartnerStatus,
    MergeDecision,
)
from name_matching import normalize_tax_id

logger = logging.getLogger(__name__)


class RepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class EntityNotFoundError(RepositoryError):
    """Raised when an entity is not found."""
    pass


class DuplicateEntityError(RepositoryError):
    """Raised when attempting to create a duplicate entity."""
    pass


# ============================================
# DRAFT REPOSITORY
# ============================================

class PartnerDraftRepository:
    """Repository for partner draft operations."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, draft_data: Dict[str, Any]) -> PartnerDraft:
        """
        Create a draft with its addresses and tax identifiers.

        Args:
            draft_data: Draft fields; 'addresses' and 'tax_ids' are lists of dicts

        Returns:
            Created PartnerDraft instance
        """
        data = dict(draft_data)
        addresses = data.pop('addresses', [])
        tax_ids = data.pop('tax_ids', [])

        draft = PartnerDraft(**data)
        draft.addresses = [DraftAddress(**a) for a in addresses]
        draft.tax_ids = [DraftTaxId(**t) for t in tax_ids]

        self.session.add(draft)
        self.session.flush()

        logger.debug(f"Created draft: {draft.id}")
        return draft

    def get_by_id(self, draft_id: UUID) -> Optional[PartnerDraft]:
        """Get draft by ID, with addresses and tax ids loaded."""
        query = select(PartnerDraft).where(PartnerDraft.id == draft_id)
        return self.session.execute(query).scalar_one_or_none()

    def update_status(self, draft_id: UUID, status: DraftStatus) -> PartnerDraft:
        """
        Set a draft's workflow status.

        Raises:
            EntityNotFoundError: If draft not found
        """
        draft = self.get_by_id(draft_id)
        if not draft:
            raise EntityNotFoundError(f"Draft not found: {draft_id}")

        draft.status = status
        self.session.flush()
        return draft


# ============================================
# EXISTING PARTNER REPOSITORY
# ============================================

class ExistingPartnerRepository:
    """Repository for the existing partner corpus."""

    def __init__(self, session: Session):
        self.session = session

    def create(self, partner_data: Dict[str, Any]) -> ExistingPartner:
        """
        Create an existing partner.

        The established VAT id and country are stored normalized.

        Raises:
            DuplicateEntityError: If the partner number already exists
        """
        data = dict(partner_data)
        if data.get('established_vat_id'):
            data['established_vat_id'] = normalize_tax_id(data['established_vat_id'])
        if data.get('established_country'):
            data['established_country'] = data['established_country'].upper()

        try:
            partner = ExistingPartner(**data)
            self.session.add(partner)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateEntityError(f"Partner already exists: {e}")

        logger.debug(f"Created partner: {partner.partner_number} ({partner.partner_name})")
        return partner

    def get_by_id(self, partner_id: UUID) -> Optional[ExistingPartner]:
        query = select(ExistingPartner).where(ExistingPartner.id == partner_id)
        return self.session.execute(query).scalar_one_or_none()

    def list_active(self) -> List[ExistingPartner]:
        """All Active partners, ordered by partner number."""
        query = select(ExistingPartner).where(
            ExistingPartner.status == PartnerStatus.ACTIVE
        ).order_by(ExistingPartner.partner_number)
        return list(self.session.execute(query).scalars().all())

    def find_by_established_identifier(self, country_code: str, vat_id: str) -> List[ExistingPartner]:
        """
        Partners of any status whose established VAT id and country match.

        Args:
            country_code: Issuing country of the VAT id
            vat_id: VAT id (normalized before lookup)
        """
        query = select(ExistingPartner).where(
            and_(
                ExistingPartner.established_country == country_code.upper(),
                ExistingPartner.established_vat_id == normalize_tax_id(vat_id)
            )
        ).order_by(ExistingPartner.partner_number)
        return list(self.session.execute(query).scalars().all())

    def count_by_status(self) -> Dict[str, int]:
        """Count partners per status."""
        query = select(ExistingPartner.status, func.count()).group_by(ExistingPartner.status)
        return {row[0].value: row[1] for row in self.session.execute(query)}


# ============================================
# DUPLICATE MATCH REPOSITORY
# ============================================

class DuplicateMatchRepository:
    """Repository for persisted duplicate matches."""

    def __init__(self, session: Session):
        self.session = session

    def list_for_draft(self, draft_id: UUID) -> List[DuplicateMatch]:
        """Matches of a draft in rank order."""
        query = select(DuplicateMatch).where(
            DuplicateMatch.draft_id == draft_id
        ).order_by(DuplicateMatch.rank)
        return list(self.session.execute(query).scalars().all())

    def get_by_id(self, match_id: UUID) -> Optional[DuplicateMatch]:
        query = select(DuplicateMatch).where(DuplicateMatch.id == match_id)
        return self.session.execute(query).scalar_one_or_none()

    def replace_for_draft(self, draft_id: UUID, matches: List[DuplicateMatch]) -> int:
        """
        Replace all matches of a draft.

        Deletes are flushed before the inserts so re-inserting a row with the
        same id inside one transaction does not collide. A match that survives
        a re-run keeps its original created_at.

        Returns:
            Number of rows removed
        """
        existing = self.list_for_draft(draft_id)
        first_seen = {match.id: match.created_at for match in existing}
        for match in existing:
            self.session.delete(match)
        self.session.flush()
        removed = len(existing)

        for match in matches:
            if match.id in first_seen:
                match.created_at = first_seen[match.id]
        self.session.add_all(matches)
        self.session.flush()

        logger.debug(f"Replaced {removed} match(es) with {len(matches)} for draft {draft_id}")
        return removed

    def update_decision(
        self,
        match_id: UUID,
        decision: MergeDecision,
        decided_by: str,
        decided_at: Optional[datetime] = None,
        comments: Optional[str] = None
    ) -> DuplicateMatch:
        """
        Record a merge decision.

        Raises:
            EntityNotFoundError: If match not found
        """
        match = self.get_by_id(match_id)
        if not match:
            raise EntityNotFoundError(f"Match not found: {match_id}")

        match.merge_decision = decision
        match.merge_decision_by = decided_by
        match.merge_decision_at = decided_at or datetime.now(timezone.utc)
        match.merge_comments = comments
        self.session.flush()
        return match


# ============================================
# APPROVAL HISTORY REPOSITORY
# ============================================

class ApprovalHistoryRepository:
    """Repository for the append-only approval history."""

    def __init__(self, session: Session):
        self.session = session

    def append(
        self,
        draft_id: UUID,
        action: str,
        new_status: DraftStatus,
        previous_status: Optional[DraftStatus] = None,
        comments: Optional[str] = None,
        system_generated: bool = False,
        actor_id: Optional[str] = None,
        actor_name: Optional[str] = None,
        timestamp: Optional[datetime] = None
    ) -> ApprovalHistory:
        """Insert a history entry."""
        entry = ApprovalHistory(
            draft_id=draft_id,
            action=action,
            previous_status=previous_status,
            new_status=new_status,
            comments=comments,
            system_generated=system_generated,
            actor_id=actor_id,
            actor_name=actor_name,
            timestamp=timestamp or datetime.now(timezone.utc)
        )
        self.session.add(entry)
        self.session.flush()
        return entry

    def list_for_draft(self, draft_id: UUID) -> List[ApprovalHistory]:
        query = select(ApprovalHistory).where(
            ApprovalHistory.draft_id == draft_id
        ).order_by(ApprovalHistory.timestamp)
        return list(self.session.execute(query).scalars().all())
