"""
SQLAlchemy ORM Models for the Partner Duplicate Detection System

Tables:
1. partner_drafts - Partner records under review (created by upstream intake)
2. draft_addresses - Addresses attached to a draft (one may be the established one)
3. draft_tax_ids - Tax identifiers attached to a draft
4. existing_partners - Corpus of accepted business partners
5. duplicate_matches - One row per (draft, existing partner) duplicate match
6. approval_history - Append-only audit trail of draft status transitions

Column types are the portable SQLAlchemy ones (Uuid, JSON) so the schema
runs on PostgreSQL in production and on SQLite in tests.
"""

import uuid
from datetime import datetime
from enum import Enum as PyEnum
from typing import List, Optional

from sqlalchemy import (
    String, Float, Integer, Boolean, DateTime, Text, Uuid, JSON,
    ForeignKey, Index, CheckConstraint, UniqueConstraint, Enum
)
from sqlalchemy.orm import relationship, declarative_base, Mapped, mapped_column
from sqlalchemy.sql import func

# Base class for all models
Base = declarative_base()


# ============================================
# ENUMS
# ============================================

class RequestType(str, PyEnum):
    """Kind of change a draft requests"""
    CREATE = "Create"
    UPDATE = "Update"


class PartnerCategory(str, PyEnum):
    """Declared business-partner category"""
    SUPPLIER = "Supplier"
    CUSTOMER = "Customer"
    BOTH = "Both"


class PartnerStatus(str, PyEnum):
    """Lifecycle status of an existing partner"""
    ACTIVE = "Active"
    BLOCKED = "Blocked"
    INACTIVE = "Inactive"
    ARCHIVED = "Archived"


class DraftStatus(str, PyEnum):
    """Workflow status of a draft"""
    DRAFT = "Draft"
    SUBMITTED = "Submitted"
    COMPLIANCE_CHECK = "ComplianceCheck"
    PENDING_DUPLICATE_REVIEW = "PendingDuplicateReview"
    APPROVED = "Approved"
    REJECTED = "Rejected"


class MatchMethod(str, PyEnum):
    """How a duplicate candidate was found"""
    ESTABLISHED_IDENTIFIER = "EstablishedIdentifier"
    FUZZY_NAME = "FuzzyName"


class MergeDecision(str, PyEnum):
    """Reviewer decision on a duplicate match"""
    PENDING = "Pending"
    MERGE = "Merge"
    CREATE_NEW = "CreateNew"


class MergeRisk(str, PyEnum):
    """Risk tier of merging a draft into an existing partner"""
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"


class ConfidenceLevel(str, PyEnum):
    """Discrete confidence tier derived from a match score"""
    VERY_HIGH = "VeryHigh"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    VERY_LOW = "VeryLow"


# ============================================
# MIXIN CLASSES
# ============================================

class TimestampMixin:
    """Mixin for created_at and updated_at timestamps"""
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False
    )


# ============================================
# DRAFT MODELS
# ============================================

class PartnerDraft(Base, TimestampMixin):
    """
    A business-partner record under review.

    Drafts are created by upstream intake; the duplicate detector only
    reads them and advances their status.
    """
    __tablename__ = "partner_drafts"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        primary_key=True,
        default=uuid.uuid4
    )
    partner_name: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    request_type: Mapped[RequestType] = mapped_column(
        Enum(RequestType),
        nullable=False,
        default=RequestType.CREATE
    )
    partner_category: Mapped[PartnerCategory] = mapped_column(
        Enum(PartnerCategory),
        nullable=False
    )
    source_system: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    status: Mapped[DraftStatus] = mapped_column(
        Enum(DraftStatus),
        nullable=False,
        default=DraftStatus.DRAFT,
        index=True
    )
    # Business classification tags, stored as a list of strings
    business_channels: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    addresses: Mapped[List["DraftAddress"]] = relationship(
        "DraftAddress",
        back_populates="draft",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    tax_ids: Mapped[List["DraftTaxId"]] = relationship(
        "DraftTaxId",
        back_populates="draft",
        cascade="all, delete-orphan",
        lazy="selectin"
    )
    history: Mapped[List["ApprovalHistory"]] = relationship(
        "ApprovalHistory",
        back_populates="draft",
        cascade="all, delete-orphan",
        order_by="ApprovalHistory.timestamp"
    )

    def __repr__(self) -> str:
        return f"<PartnerDraft(id={self.id}, name='{self.partner_name}', status={self.status})>"


class DraftAddress(Base, TimestampMixin):
    """Address attached to a draft"""
    __tablename__ = "draft_addresses"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    draft_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("partner_drafts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    # Address kind (Main, Billing, Shipping, ...)
    address_type: Mapped[str] = mapped_column(String(50), nullable=False)
    country_code: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    draft: Mapped["PartnerDraft"] = relationship("PartnerDraft", back_populates="addresses")

    def __repr__(self) -> str:
        return f"<DraftAddress(draft_id={self.draft_id}, type='{self.address_type}', country='{self.country_code}')>"


class DraftTaxId(Base, TimestampMixin):
    """Tax identifier attached to a draft"""
    __tablename__ = "draft_tax_ids"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    draft_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("partner_drafts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    country_code: Mapped[str] = mapped_column(String(3), nullable=False)
    vat_number: Mapped[str] = mapped_column(String(50), nullable=False)

    draft: Mapped["PartnerDraft"] = relationship("PartnerDraft", back_populates="tax_ids")

    def __repr__(self) -> str:
        return f"<DraftTaxId(draft_id={self.draft_id}, country='{self.country_code}', vat='{self.vat_number}')>"


# ============================================
# CORPUS MODEL
# ============================================

class ExistingPartner(Base, TimestampMixin):
    """
    An accepted business partner that new drafts are checked against.

    The established VAT id is stored normalized (separators removed,
    upper-case) so identifier lookups are exact index hits.
    """
    __tablename__ = "existing_partners"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    partner_number: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    partner_name: Mapped[str] = mapped_column(String(500), nullable=False, index=True)
    status: Mapped[PartnerStatus] = mapped_column(
        Enum(PartnerStatus),
        nullable=False,
        default=PartnerStatus.ACTIVE,
        index=True
    )
    partner_category: Mapped[PartnerCategory] = mapped_column(
        Enum(PartnerCategory),
        nullable=False
    )
    established_vat_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    established_country: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    source_system: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    business_channels: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)
    last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index('ix_partner_established_id', 'established_country', 'established_vat_id'),
    )

    def __repr__(self) -> str:
        return f"<ExistingPartner(number='{self.partner_number}', name='{self.partner_name}', status={self.status})>"


# ============================================
# MATCH AND AUDIT MODELS
# ============================================

class DuplicateMatch(Base, TimestampMixin):
    """
    A consolidated duplicate match between a draft and an existing partner.

    The id is derived from (draft_id, existing_partner_id), so re-running the
    check for a draft reproduces identical rows. Snapshot columns hold the
    partner data as it was when the match was found.
    """
    __tablename__ = "duplicate_matches"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    draft_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("partner_drafts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    existing_partner_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("existing_partners.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    rank: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Match details; match_methods is a sorted list of MatchMethod values
    match_methods: Mapped[list] = mapped_column(JSON, nullable=False)
    match_score: Mapped[float] = mapped_column(Float, nullable=False)
    confidence_level: Mapped[ConfidenceLevel] = mapped_column(Enum(ConfidenceLevel), nullable=False)
    match_details: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    review_required: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    # Merge compatibility verdict
    can_merge: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    merge_risk: Mapped[MergeRisk] = mapped_column(Enum(MergeRisk), nullable=False)
    merge_recommendation: Mapped[str] = mapped_column(String(500), nullable=False)
    compatibility_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    compatibility_factors: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # Snapshot of the existing partner at match time
    partner_number: Mapped[str] = mapped_column(String(50), nullable=False)
    partner_name: Mapped[str] = mapped_column(String(500), nullable=False)
    partner_status: Mapped[PartnerStatus] = mapped_column(Enum(PartnerStatus), nullable=False)
    partner_category: Mapped[PartnerCategory] = mapped_column(Enum(PartnerCategory), nullable=False)
    established_vat_id: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    established_country: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    source_system: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    business_channels: Mapped[Optional[list]] = mapped_column(JSON, nullable=True)

    # Reviewer decision
    merge_decision: Mapped[MergeDecision] = mapped_column(
        Enum(MergeDecision),
        nullable=False,
        default=MergeDecision.PENDING
    )
    merge_decision_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    merge_decision_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    merge_comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint('draft_id', 'existing_partner_id', name='uq_match_draft_partner'),
        Index('ix_match_draft_rank', 'draft_id', 'rank'),
        CheckConstraint('match_score >= 0 AND match_score <= 1', name='ck_match_score_range'),
        CheckConstraint('compatibility_score >= 0 AND compatibility_score <= 100',
                        name='ck_compatibility_score_range'),
    )

    def __repr__(self) -> str:
        return f"<DuplicateMatch(id={self.id}, partner='{self.partner_number}', score={self.match_score})>"


class ApprovalHistory(Base):
    """
    Audit trail of draft status transitions.

    Immutable - rows are only ever inserted.
    """
    __tablename__ = "approval_history"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    draft_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("partner_drafts.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    previous_status: Mapped[Optional[DraftStatus]] = mapped_column(Enum(DraftStatus), nullable=True)
    new_status: Mapped[DraftStatus] = mapped_column(Enum(DraftStatus), nullable=False)
    comments: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    system_generated: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    actor_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    actor_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    draft: Mapped["PartnerDraft"] = relationship("PartnerDraft", back_populates="history")

    def __repr__(self) -> str:
        return f"<ApprovalHistory(draft_id={self.draft_id}, action='{self.action}', new_status={self.new_status})>"
