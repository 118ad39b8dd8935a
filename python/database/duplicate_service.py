"""
Database-backed Duplicate Detection Service

Runs the duplicate detector against PostgreSQL (or SQLite in tests), one
transaction per operation. The per-draft lock is held across the whole
transaction, commit included, so two checks of the same draft never
interleave their replace-all writes.

Usage:
    # With FastAPI
    @app.post("/drafts/{draft_id}/duplicate-check")
    def check(
        draft_id: UUID,
        service: DatabaseDuplicateService = Depends(get_duplicate_service)
    ):
        return service.run_duplicate_check(draft_id).to_dict()

    # Standalone
    service = DatabaseDuplicateService(db_provider, config)
    matches = service.check_duplicates(draft_id)
"""

import logging
from contextlib import contextmanager
from typing import List, Dict, Any, Optional, Iterator
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError

from config_manager import ConfigManager, get_config
from database.connection import DatabaseSessionProvider
from database.monitoring import record_duplicate_check
from database.record_store import SqlRecordStore
from duplicate_detector import (
    DraftLockRegistry,
    DuplicateCheckOutcome,
    DuplicateDetector,
    MatchResult,
    StoreUnavailableError,
)

logger = logging.getLogger(__name__)


class DatabaseDuplicateService:
    """
    Duplicate detection over a DatabaseSessionProvider.

    Follows the dependency injection pattern for testability: the provider,
    config and lock registry are all injectable.
    """

    def __init__(self, db_provider: DatabaseSessionProvider,
                 config: Optional[ConfigManager] = None,
                 lock_registry: Optional[DraftLockRegistry] = None):
        self.db_provider = db_provider
        self.config = config or get_config()
        self.locks = lock_registry if lock_registry is not None else DraftLockRegistry()

    @contextmanager
    def _detector_scope(self) -> Iterator[DuplicateDetector]:
        """Detector bound to a fresh transaction; store failures become StoreUnavailableError"""
        try:
            with self.db_provider.session_scope() as session:
                yield DuplicateDetector(SqlRecordStore(session), self.config, self.locks)
        except SQLAlchemyError as e:
            logger.error("Record store unavailable: %s", e)
            raise StoreUnavailableError(f"Record store unavailable: {e.__class__.__name__}") from e

    def run_duplicate_check(self, draft_id: UUID) -> DuplicateCheckOutcome:
        """Check a draft for duplicates and commit the results atomically"""
        try:
            with self.locks.hold(draft_id, self.config.performance.lock_timeout_seconds):
                with self._detector_scope() as detector:
                    outcome = detector.run_duplicate_check(draft_id)
        except Exception:
            record_duplicate_check('failed', 0)
            raise

        record_duplicate_check(
            'review_triggered' if outcome.review_triggered else 'no_transition',
            len(outcome.results)
        )
        return outcome

    def check_duplicates(self, draft_id: UUID) -> List[MatchResult]:
        return self.run_duplicate_check(draft_id).results

    def record_merge_decision(self, match_id: UUID, decision: Any,
                              decided_by: Optional[str], comment: Optional[str] = None) -> None:
        with self._detector_scope() as detector:
            detector.record_merge_decision(match_id, decision, decided_by, comment)

    def get_duplicate_statistics(self, draft_id: UUID) -> Dict[str, Any]:
        with self._detector_scope() as detector:
            return detector.get_duplicate_statistics(draft_id)

    def list_match_results(self, draft_id: UUID) -> List[MatchResult]:
        with self._detector_scope() as detector:
            return detector.store.list_match_results(draft_id)


# FastAPI Dependency Injection Support
_duplicate_service: Optional[DatabaseDuplicateService] = None


def configure_duplicate_service(db_provider: DatabaseSessionProvider,
                                config: Optional[ConfigManager] = None) -> DatabaseDuplicateService:
    """
    Configure the duplicate service for dependency injection.

    Call this during application startup.

    Args:
        db_provider: DatabaseSessionProvider instance
        config: Optional ConfigManager instance
    """
    global _duplicate_service
    _duplicate_service = DatabaseDuplicateService(db_provider, config)
    return _duplicate_service


def get_duplicate_service() -> DatabaseDuplicateService:
    """
    FastAPI dependency for getting the DatabaseDuplicateService.

    Raises:
        RuntimeError: If duplicate service not configured
    """
    if _duplicate_service is None:
        raise RuntimeError(
            "Duplicate service not configured. Call configure_duplicate_service() first."
        )
    return _duplicate_service
