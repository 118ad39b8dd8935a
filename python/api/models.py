"""
Pydantic request/response schemas for the Duplicate Detection API

Mirror the to_dict() output of duplicate_detector.MatchResult and
DuplicateCheckOutcome.
"""

from typing import List, Optional, Dict, Any

from pydantic import BaseModel, Field, field_validator


class MergeAnalysisResponse(BaseModel):
    """Merge compatibility verdict for one match."""
    can_merge: bool = Field(..., description="Whether a merge is allowed")
    risk: str = Field(..., description="Merge risk: Low, Medium or High")
    recommendation: str = Field(..., description="Human-readable recommendation")
    compatibility_score: int = Field(..., ge=0, le=100, description="Compatibility score (0-100)")
    factors: List[str] = Field(default_factory=list, description="Evaluated factors")


class MatchResultResponse(BaseModel):
    """Consolidated duplicate match."""
    id: str = Field(..., description="Match result identifier (UUID)")
    draft_id: str
    existing_partner_id: str
    partner_number: str
    partner_name: str
    partner_status: str
    partner_category: str
    established_vat_id: Optional[str] = None
    established_country: Optional[str] = None
    source_system: Optional[str] = None
    business_channels: List[str] = Field(default_factory=list)
    match_methods: List[str] = Field(
        ...,
        description="Contributing methods: EstablishedIdentifier, FuzzyName"
    )
    match_score: float = Field(..., ge=0.0, le=1.0, description="Best score across methods")
    confidence: str = Field(..., description="VeryHigh, High, Medium, Low or VeryLow")
    match_details: str = Field(..., description="Explanations joined with ' | '")
    review_required: bool
    rank: int = Field(..., ge=0)
    merge_analysis: MergeAnalysisResponse
    merge_decision: str = Field(..., description="Pending, Merge or CreateNew")
    merge_decision_by: Optional[str] = None
    merge_decision_at: Optional[str] = None
    merge_comments: Optional[str] = None


class DuplicateCheckResponse(BaseModel):
    """Response schema for a duplicate check."""
    draft_id: str = Field(..., description="Checked draft (UUID)")
    match_count: int = Field(..., ge=0, description="Number of consolidated matches")
    previous_status: str = Field(..., description="Draft status before the check")
    new_status: str = Field(..., description="Draft status after the check")
    review_triggered: bool = Field(..., description="Whether the draft moved to duplicate review")
    matches: List[MatchResultResponse] = Field(default_factory=list)
    processing_time_ms: int = Field(..., ge=0, description="Processing time in milliseconds")


class MergeDecisionRequest(BaseModel):
    """Request schema for recording a merge decision."""
    decision: str = Field(..., description="Merge or CreateNew")
    comment: Optional[str] = Field(default=None, max_length=2000, description="Decision rationale")

    @field_validator('decision')
    @classmethod
    def strip_decision(cls, v: str) -> str:
        return v.strip()


class MergeDecisionResponse(BaseModel):
    """Response schema for a recorded merge decision."""
    match_id: str
    decision: str
    decided_by: str


class DuplicateStatisticsResponse(BaseModel):
    """Summary of a draft's duplicate matches."""
    draft_id: str
    total_duplicates: int = Field(..., ge=0)
    established_vat_matches: int = Field(..., ge=0)
    fuzzy_name_matches: int = Field(..., ge=0)
    high_confidence_matches: int = Field(..., ge=0)
    merge_candidates: int = Field(..., ge=0)
    pending_decisions: int = Field(..., ge=0)
    average_match_score: float = Field(..., ge=0.0, le=1.0)


class HealthResponse(BaseModel):
    """Response schema for health check endpoint."""
    status: str = Field(default="healthy", description="Service status")
    database: Optional[Dict[str, Any]] = Field(default=None, description="Database health")
    algorithm_version: str = Field(..., description="Algorithm version")
    uptime_seconds: Optional[int] = Field(default=None, description="Server uptime in seconds")
    metrics: Optional[Dict[str, Any]] = Field(default=None, description="Store operation timings")
    error_message: Optional[str] = None


class ErrorDetail(BaseModel):
    """Detailed error information."""
    code: str = Field(..., description="Error code for programmatic handling")
    message: str = Field(..., description="Human-readable error message")
    field: Optional[str] = Field(default=None, description="Field that caused error")
    suggestion: Optional[str] = Field(default=None, description="How to fix the error")
    timestamp: str = Field(..., description="Error timestamp (ISO 8601)")


class ErrorResponse(BaseModel):
    """Standardized error response format."""
    error: ErrorDetail
