"""
Partner Duplicate Detector

Checks a partner draft against the corpus of existing partners:

1. Established identifier: for Create drafts, VAT ids issued in the country
   of the draft's established (Main) address are looked up exactly.
2. Fuzzy name: the normalized draft name is scored against every active
   partner and kept at >= 95% similarity.

Candidates found by both methods are consolidated into one match per
existing partner, each enriched with a merge compatibility analysis. The
match list is persisted and, for Submitted drafts with strong matches, the
draft is moved to PendingDuplicateReview.
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Dict, Optional, Any, FrozenSet, Iterator, Protocol

from config_manager import get_config, ConfigManager
from database.models import (
    RequestType,
    PartnerCategory,
    PartnerStatus,
    DraftStatus,
    MatchMethod,
    MergeDecision,
    MergeRisk,
    ConfidenceLevel,
)
from log_utils import sanitize_for_logging
from name_matching import (
    FUZZY_MATCH_THRESHOLD,
    normalize_name,
    name_similarity,
    normalize_tax_id,
)

logger = logging.getLogger(__name__)

# A Submitted draft goes to duplicate review at or above this score
REVIEW_TRIGGER_SCORE = 0.90
# Persisted matches above this score are flagged for review
REVIEW_REQUIRED_SCORE = 0.8
# Minimum compatibility score for a merge
MERGE_MIN_SCORE = 50

DUPLICATE_CHECK_ACTION = 'DuplicateCheck'
SYSTEM_ACTOR_ID = 'system'
SYSTEM_ACTOR_NAME = 'Duplicate Detector'

# Namespace for match result ids; uuid5(namespace, "<draft>:<partner>")
MATCH_RESULT_NAMESPACE = uuid.UUID('6f1c2b5e-3d4a-5c8e-9b7f-2a1d0e4c6b93')


# ============================================
# ERRORS
# ============================================

class DuplicateCheckError(Exception):
    """Base error for duplicate detection

    Attributes:
        code: Error code for programmatic handling
        message: Human-readable error message
    """
    code = "DUPLICATE_CHECK_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        if code:
            self.code = code
        self.message = message
        super().__init__(message)


class NotFoundError(DuplicateCheckError):
    """Unknown draft or match result id. Not retried."""
    code = "NOT_FOUND"


class DraftNotFoundError(NotFoundError):
    pass


class MatchResultNotFoundError(NotFoundError):
    pass


class InvalidDecisionError(DuplicateCheckError):
    """Merge decision outside {Merge, CreateNew}. Raised before any write."""
    code = "INVALID_DECISION"


class ConcurrencyConflictError(DuplicateCheckError):
    """Another check is in flight for the same draft; retry after backoff."""
    code = "CONCURRENCY_CONFLICT"


class StoreUnavailableError(DuplicateCheckError):
    """The record store failed; nothing was committed."""
    code = "STORE_UNAVAILABLE"


# ============================================
# DATA CLASSES
# ============================================

@dataclass
class Address:
    """Draft address"""
    address_type: str
    country_code: Optional[str] = None


@dataclass
class TaxId:
    """Draft tax identifier"""
    country_code: str
    vat_number: str


@dataclass
class Draft:
    """Partner record under review"""
    id: uuid.UUID
    partner_name: str
    request_type: RequestType
    partner_category: PartnerCategory
    source_system: Optional[str] = None
    status: DraftStatus = DraftStatus.DRAFT
    addresses: List[Address] = field(default_factory=list)
    tax_ids: List[TaxId] = field(default_factory=list)
    business_channels: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class CorpusRecord:
    """Existing partner as seen by the detector"""
    id: uuid.UUID
    partner_number: str
    partner_name: str
    status: PartnerStatus
    partner_category: PartnerCategory
    established_vat_id: Optional[str] = None
    established_country: Optional[str] = None
    source_system: Optional[str] = None
    business_channels: FrozenSet[str] = frozenset()
    last_updated: Optional[datetime] = None


@dataclass
class MatchCandidate:
    """One existing partner found by one match method"""
    record: CorpusRecord
    method: MatchMethod
    score: float
    explanation: str


@dataclass
class MergeAnalysis:
    """Verdict on merging a draft into an existing partner"""
    can_merge: bool
    risk: MergeRisk
    recommendation: str
    compatibility_score: int
    factors: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'can_merge': self.can_merge,
            'risk': self.risk.value,
            'recommendation': self.recommendation,
            'compatibility_score': self.compatibility_score,
            'factors': list(self.factors)
        }


@dataclass
class MatchResult:
    """Consolidated duplicate match between a draft and one existing partner"""
    id: uuid.UUID
    draft_id: uuid.UUID
    record: CorpusRecord
    methods: FrozenSet[MatchMethod]
    score: float
    confidence: ConfidenceLevel
    explanation: str
    analysis: MergeAnalysis
    review_required: bool = False
    rank: int = 0
    decision: MergeDecision = MergeDecision.PENDING
    decided_by: Optional[str] = None
    decided_at: Optional[datetime] = None
    decision_comment: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': str(self.id),
            'draft_id': str(self.draft_id),
            'existing_partner_id': str(self.record.id),
            'partner_number': self.record.partner_number,
            'partner_name': self.record.partner_name,
            'partner_status': self.record.status.value,
            'partner_category': self.record.partner_category.value,
            'established_vat_id': self.record.established_vat_id,
            'established_country': self.record.established_country,
            'source_system': self.record.source_system,
            'business_channels': sorted(self.record.business_channels),
            'match_methods': sorted(m.value for m in self.methods),
            'match_score': self.score,
            'confidence': self.confidence.value,
            'match_details': self.explanation,
            'review_required': self.review_required,
            'rank': self.rank,
            'merge_analysis': self.analysis.to_dict(),
            'merge_decision': self.decision.value,
            'merge_decision_by': self.decided_by,
            'merge_decision_at': self.decided_at.isoformat() if self.decided_at else None,
            'merge_comments': self.decision_comment
        }


@dataclass
class AuditEntry:
    """Record of a draft status transition"""
    draft_id: uuid.UUID
    action: str
    previous_status: Optional[DraftStatus]
    new_status: DraftStatus
    comment: str
    system_generated: bool = True
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    actor_id: Optional[str] = SYSTEM_ACTOR_ID
    actor_name: Optional[str] = SYSTEM_ACTOR_NAME


@dataclass
class DuplicateCheckOutcome:
    """Result of one duplicate check run"""
    draft_id: uuid.UUID
    results: List[MatchResult]
    previous_status: DraftStatus
    new_status: DraftStatus
    review_triggered: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            'draft_id': str(self.draft_id),
            'match_count': len(self.results),
            'previous_status': self.previous_status.value,
            'new_status': self.new_status.value,
            'review_triggered': self.review_triggered,
            'matches': [r.to_dict() for r in self.results]
        }


# ============================================
# RECORD STORE INTERFACE
# ============================================

class RecordStore(Protocol):
    """Storage operations the detector depends on.

    All writes issued during one duplicate check belong to one transaction.
    """

    def get_draft(self, draft_id: uuid.UUID) -> Optional[Draft]: ...

    def get_active_corpus_records(self) -> List[CorpusRecord]: ...

    def find_corpus_by_established_identifier(self, country_code: str,
                                              vat_id: str) -> List[CorpusRecord]: ...

    def replace_match_results(self, draft_id: uuid.UUID, results: List[MatchResult]) -> None: ...

    def update_draft_status(self, draft_id: uuid.UUID, status: DraftStatus) -> None: ...

    def append_audit_entry(self, entry: AuditEntry) -> None: ...

    def get_match_result(self, match_id: uuid.UUID) -> Optional[MatchResult]: ...

    def update_match_decision(self, match_id: uuid.UUID, decision: MergeDecision,
                              decided_by: str, decided_at: datetime,
                              comment: Optional[str]) -> None: ...

    def list_match_results(self, draft_id: uuid.UUID) -> List[MatchResult]: ...


# ============================================
# PER-DRAFT LOCKS
# ============================================

class DraftLockRegistry:
    """Per-draft mutual exclusion for duplicate checks

    Locks are re-entrant, so a caller holding a draft's lock can extend the
    critical section over its own transaction commit. Entries are dropped
    once no thread holds or waits for them.

    Exclusion covers one process only. Checks of the same draft racing in
    separate worker processes are stopped by the uq_match_draft_partner
    constraint instead, and surface as StoreUnavailableError.
    """

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Any, List[Any]] = {}

    @contextmanager
    def hold(self, draft_id: Any, timeout: float) -> Iterator[None]:
        """Hold the lock for draft_id, waiting at most timeout seconds

        Raises:
            ConcurrencyConflictError: If the lock was not obtained in time
        """
        with self._guard:
            entry = self._locks.setdefault(draft_id, [threading.RLock(), 0])
            entry[1] += 1
        lock = entry[0]
        try:
            if timeout > 0:
                acquired = lock.acquire(timeout=timeout)
            else:
                acquired = lock.acquire(blocking=False)
            if not acquired:
                raise ConcurrencyConflictError(
                    f"Duplicate check already in progress for draft {draft_id}"
                )
            try:
                yield
            finally:
                lock.release()
        finally:
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[draft_id]

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# ============================================
# MATCHERS
# ============================================

class EstablishedIdentifierMatcher:
    """Exact lookup of the draft's established VAT ids in the corpus"""

    def __init__(self, store: RecordStore, established_address_type: str = 'Main'):
        self.store = store
        self.established_address_type = established_address_type

    def find_candidates(self, draft: Draft) -> List[MatchCandidate]:
        if draft.request_type != RequestType.CREATE:
            return []

        address = next(
            (a for a in draft.addresses if a.address_type == self.established_address_type),
            None
        )
        if address is None or not address.country_code:
            logger.debug("Draft %s has no established address, skipping identifier check", draft.id)
            return []

        country = address.country_code.upper()
        candidates = []
        checked = set()

        for tax_id in draft.tax_ids:
            if (tax_id.country_code or '').upper() != country:
                continue
            vat_id = normalize_tax_id(tax_id.vat_number)
            if not vat_id or vat_id in checked:
                continue
            checked.add(vat_id)

            for record in self.store.find_corpus_by_established_identifier(country, vat_id):
                candidates.append(MatchCandidate(
                    record=record,
                    method=MatchMethod.ESTABLISHED_IDENTIFIER,
                    score=1.0,
                    explanation=f"Exact established VAT ID match: {vat_id} in {country}"
                ))

        if not checked:
            logger.debug("Draft %s has no VAT id for established country %s", draft.id, country)
        return candidates


class FuzzyNameMatcher:
    """Scans active corpus records for near-identical names

    Large corpora are scored in batches on a bounded thread pool.
    """

    def __init__(self, min_name_length: int = 3, max_threads: int = 4,
                 batch_size: int = 250, parallel_scan_threshold: int = 1000):
        self.min_name_length = min_name_length
        self.max_threads = max_threads
        self.batch_size = batch_size
        self.parallel_scan_threshold = parallel_scan_threshold

    def find_candidates(self, draft: Draft, records: List[CorpusRecord]) -> List[MatchCandidate]:
        name = (draft.partner_name or '').strip()
        if len(name) < self.min_name_length:
            logger.info("Partner name too short for fuzzy matching: %s", sanitize_for_logging(name))
            return []

        target = normalize_name(name)
        if not target:
            return []

        active = [r for r in records if r.status == PartnerStatus.ACTIVE]
        if not active:
            return []

        if self.max_threads > 1 and len(active) >= self.parallel_scan_threshold:
            batches = [active[i:i + self.batch_size]
                       for i in range(0, len(active), self.batch_size)]
            logger.debug("Scoring %d partners in %d batches", len(active), len(batches))
            candidates = []
            with ThreadPoolExecutor(max_workers=self.max_threads) as executor:
                futures = [executor.submit(self._score_batch, draft, target, batch)
                           for batch in batches]
                for future in futures:
                    candidates.extend(future.result())
        else:
            candidates = self._score_batch(draft, target, active)

        logger.info("Found %d fuzzy name matches at >= %.0f%%",
                    len(candidates), FUZZY_MATCH_THRESHOLD * 100)
        return candidates

    def _score_batch(self, draft: Draft, target: str,
                     records: List[CorpusRecord]) -> List[MatchCandidate]:
        candidates = []
        for record in records:
            try:
                score = name_similarity(target, normalize_name(record.partner_name))
            except Exception:
                # One bad record must not abort the scan
                logger.warning("Name scoring failed for partner %s, skipping",
                               record.partner_number, exc_info=True)
                continue

            if score >= FUZZY_MATCH_THRESHOLD:
                candidates.append(MatchCandidate(
                    record=record,
                    method=MatchMethod.FUZZY_NAME,
                    score=score,
                    explanation=(f'Fuzzy name match: "{draft.partner_name}" -> '
                                 f'"{record.partner_name}" ({round(score * 100)}%)')
                ))
        return candidates


# ============================================
# MERGE COMPATIBILITY
# ============================================

class MergeCompatibilityAnalyzer:
    """Scores how safely a draft could be merged into an existing partner

    Additive score out of 100: active status 25, compatible category 25,
    source system 30 (same) or 10 (different), business channels 20
    (identical) or 5 (different, only when both sides have channels).
    """

    def analyze(self, draft: Draft, record: CorpusRecord) -> MergeAnalysis:
        try:
            return self._analyze(draft, record)
        except Exception:
            logger.error("Merge compatibility analysis failed for partner %s",
                         record.partner_number, exc_info=True)
            return MergeAnalysis(
                can_merge=False,
                risk=MergeRisk.HIGH,
                recommendation="Analysis failed - manual review required",
                compatibility_score=0,
                factors=["Error in compatibility analysis"]
            )

    def _analyze(self, draft: Draft, record: CorpusRecord) -> MergeAnalysis:
        factors = []

        if record.status != PartnerStatus.ACTIVE:
            factors.append(f"Partner status: {record.status.value}")
            return MergeAnalysis(
                can_merge=False,
                risk=MergeRisk.HIGH,
                recommendation=f"Cannot merge - existing partner is {record.status.value}",
                compatibility_score=0,
                factors=factors
            )

        score = 25
        factors.append("Partner status: Active")

        if not categories_compatible(draft.partner_category, record.partner_category):
            factors.append(f"Partner category mismatch: {draft.partner_category.value} "
                           f"vs {record.partner_category.value}")
            return MergeAnalysis(
                can_merge=False,
                risk=MergeRisk.HIGH,
                recommendation="Cannot merge - incompatible partner categories",
                compatibility_score=score,
                factors=factors
            )

        score += 25
        factors.append(f"Partner categories compatible: {draft.partner_category.value} "
                       f"/ {record.partner_category.value}")

        recommendation = None
        if draft.source_system == record.source_system:
            score += 30
            recommendation = "Strong merge candidate - same source system"
            factors.append(f"Same source system: {draft.source_system}")
        else:
            score += 10
            factors.append(f"Different source systems: {draft.source_system} "
                           f"vs {record.source_system}")

        if draft.business_channels and record.business_channels:
            if set(draft.business_channels) == set(record.business_channels):
                score += 20
                factors.append("Same business channels: "
                               f"{', '.join(sorted(draft.business_channels))}")
            else:
                score += 5
                factors.append("Different business channels: "
                               f"{', '.join(sorted(draft.business_channels))} vs "
                               f"{', '.join(sorted(record.business_channels))}")

        if score >= 80:
            risk, banded = MergeRisk.LOW, "Excellent merge candidate - high compatibility"
        elif score >= 60:
            risk, banded = MergeRisk.LOW, "Good merge candidate - review business requirements"
        elif score >= MERGE_MIN_SCORE:
            risk, banded = MergeRisk.MEDIUM, "Merge possible - careful review required"
        else:
            risk, banded = MergeRisk.HIGH, "Merge not recommended - compatibility issues"

        return MergeAnalysis(
            can_merge=score >= MERGE_MIN_SCORE,
            risk=risk,
            recommendation=recommendation or banded,
            compatibility_score=min(score, 100),
            factors=factors
        )


def categories_compatible(left: PartnerCategory, right: PartnerCategory) -> bool:
    """Equal categories, or either side Both"""
    return left == right or PartnerCategory.BOTH in (left, right)


# ============================================
# CONSOLIDATION
# ============================================

def confidence_level(score: float) -> ConfidenceLevel:
    """Map a match score to its confidence tier"""
    if score >= 0.98:
        return ConfidenceLevel.VERY_HIGH
    if score >= 0.95:
        return ConfidenceLevel.HIGH
    if score >= 0.90:
        return ConfidenceLevel.MEDIUM
    if score >= 0.80:
        return ConfidenceLevel.LOW
    return ConfidenceLevel.VERY_LOW


def match_result_id(draft_id: uuid.UUID, partner_id: uuid.UUID) -> uuid.UUID:
    """Stable id of the match between a draft and an existing partner"""
    return uuid.uuid5(MATCH_RESULT_NAMESPACE, f"{draft_id}:{partner_id}")


def consolidate_candidates(draft: Draft, candidates: List[MatchCandidate],
                           analyzer: MergeCompatibilityAnalyzer) -> List[MatchResult]:
    """Merge candidates per existing partner and rank them

    Each partner keeps its best score, the union of methods and the joined
    explanations. Results are sorted by score, then compatibility score,
    then partner number.
    """
    grouped: Dict[uuid.UUID, List[MatchCandidate]] = {}
    for candidate in candidates:
        grouped.setdefault(candidate.record.id, []).append(candidate)

    results = []
    for partner_id, group in grouped.items():
        record = group[0].record
        score = max(0.0, min(1.0, max(c.score for c in group)))

        explanations = []
        for candidate in group:
            if candidate.explanation not in explanations:
                explanations.append(candidate.explanation)

        results.append(MatchResult(
            id=match_result_id(draft.id, partner_id),
            draft_id=draft.id,
            record=record,
            methods=frozenset(c.method for c in group),
            score=score,
            confidence=confidence_level(score),
            explanation=" | ".join(explanations),
            analysis=analyzer.analyze(draft, record),
            review_required=score > REVIEW_REQUIRED_SCORE
        ))

    results.sort(key=lambda r: (-r.score, -r.analysis.compatibility_score, r.record.partner_number))
    for rank, result in enumerate(results):
        result.rank = rank
    return results


# ============================================
# REVIEW TRIGGER
# ============================================

class ReviewTrigger:
    """Persists match results and moves Submitted drafts to duplicate review"""

    def __init__(self, store: RecordStore):
        self.store = store

    @staticmethod
    def requires_review(results: List[MatchResult]) -> bool:
        if not results:
            return False
        return (max(r.score for r in results) >= REVIEW_TRIGGER_SCORE
                or any(MatchMethod.ESTABLISHED_IDENTIFIER in r.methods for r in results))

    def apply(self, draft: Draft, results: List[MatchResult]) -> DuplicateCheckOutcome:
        self.store.replace_match_results(draft.id, results)

        previous = draft.status
        outcome = DuplicateCheckOutcome(
            draft_id=draft.id,
            results=results,
            previous_status=previous,
            new_status=previous
        )

        if not self.requires_review(results):
            return outcome

        if previous != DraftStatus.SUBMITTED:
            logger.info("Draft %s has duplicates but is %s, status left unchanged",
                        draft.id, previous.value)
            return outcome

        new_status = DraftStatus.PENDING_DUPLICATE_REVIEW
        self.store.update_draft_status(draft.id, new_status)
        self.store.append_audit_entry(AuditEntry(
            draft_id=draft.id,
            action=DUPLICATE_CHECK_ACTION,
            previous_status=previous,
            new_status=new_status,
            comment=f"Found {len(results)} potential duplicate(s) - manual review required"
        ))
        draft.status = new_status
        outcome.new_status = new_status
        outcome.review_triggered = True
        logger.info("Draft %s moved to %s", draft.id, new_status.value)
        return outcome


# ============================================
# DETECTOR
# ============================================

class DuplicateDetector:
    """Runs duplicate checks and records merge decisions against a RecordStore"""

    def __init__(self, store: RecordStore, config: Optional[ConfigManager] = None,
                 lock_registry: Optional[DraftLockRegistry] = None):
        self.store = store
        self.config = config or get_config()
        self.locks = lock_registry if lock_registry is not None else DraftLockRegistry()

        matching = self.config.matching
        performance = self.config.performance
        self.identifier_matcher = EstablishedIdentifierMatcher(
            store, matching.established_address_type
        )
        self.fuzzy_matcher = FuzzyNameMatcher(
            min_name_length=matching.min_name_length,
            max_threads=performance.max_threads,
            batch_size=performance.batch_size,
            parallel_scan_threshold=performance.parallel_scan_threshold
        )
        self.analyzer = MergeCompatibilityAnalyzer()
        self.review_trigger = ReviewTrigger(store)

    def check_duplicates(self, draft_id: uuid.UUID) -> List[MatchResult]:
        """Check a draft for duplicates; returns the persisted, ranked matches"""
        return self.run_duplicate_check(draft_id).results

    def run_duplicate_check(self, draft_id: uuid.UUID) -> DuplicateCheckOutcome:
        """Check a draft for duplicates and report the status transition

        Raises:
            DraftNotFoundError: If the draft does not exist
            ConcurrencyConflictError: If another check holds the draft
        """
        with self.locks.hold(draft_id, self.config.performance.lock_timeout_seconds):
            draft = self.store.get_draft(draft_id)
            if draft is None:
                raise DraftNotFoundError(f"Draft not found: {draft_id}")

            logger.info("Checking duplicates for draft %s: %s",
                        draft_id, sanitize_for_logging(draft.partner_name))

            candidates = self.identifier_matcher.find_candidates(draft)
            candidates.extend(
                self.fuzzy_matcher.find_candidates(draft, self.store.get_active_corpus_records())
            )
            results = consolidate_candidates(draft, candidates, self.analyzer)
            outcome = self.review_trigger.apply(draft, results)

            logger.info("Duplicate check for draft %s found %d potential duplicate(s)",
                        draft_id, len(results))
            return outcome

    def record_merge_decision(self, match_id: uuid.UUID, decision: Any,
                              decided_by: Optional[str], comment: Optional[str] = None) -> None:
        """Record a reviewer's merge decision on one match result

        Raises:
            InvalidDecisionError: If decision is not Merge or CreateNew
            MatchResultNotFoundError: If the match result does not exist
        """
        parsed = parse_merge_decision(decision)

        if self.store.get_match_result(match_id) is None:
            raise MatchResultNotFoundError(f"Match result not found: {match_id}")

        self.store.update_match_decision(
            match_id,
            parsed,
            decided_by or SYSTEM_ACTOR_ID,
            datetime.now(timezone.utc),
            comment
        )
        logger.info("Recorded %s decision on match %s", parsed.value, match_id)

    def get_duplicate_statistics(self, draft_id: uuid.UUID) -> Dict[str, Any]:
        """Summary counts over a draft's persisted match results"""
        if self.store.get_draft(draft_id) is None:
            raise DraftNotFoundError(f"Draft not found: {draft_id}")

        results = self.store.list_match_results(draft_id)
        total = len(results)
        return {
            'total_duplicates': total,
            'established_vat_matches': sum(
                1 for r in results if MatchMethod.ESTABLISHED_IDENTIFIER in r.methods),
            'fuzzy_name_matches': sum(1 for r in results if MatchMethod.FUZZY_NAME in r.methods),
            'high_confidence_matches': sum(1 for r in results if r.score >= 0.95),
            'merge_candidates': sum(1 for r in results if r.analysis.can_merge),
            'pending_decisions': sum(1 for r in results if r.decision == MergeDecision.PENDING),
            'average_match_score': round(sum(r.score for r in results) / total, 3) if total else 0.0
        }


def parse_merge_decision(decision: Any) -> MergeDecision:
    """Parse a reviewer decision; only Merge and CreateNew are accepted

    Raises:
        InvalidDecisionError: For any other value
    """
    try:
        parsed = MergeDecision(decision)
    except (ValueError, TypeError):
        raise InvalidDecisionError(
            f"Invalid merge decision: {sanitize_for_logging(str(decision), 50)}"
        ) from None
    if parsed == MergeDecision.PENDING:
        raise InvalidDecisionError("Merge decision must be Merge or CreateNew")
    return parsed
