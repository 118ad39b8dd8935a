"""
Database Package for the Partner Duplicate Detection System

This package provides:
- SQLAlchemy ORM models for drafts, existing partners, matches and history
- Session provider with one-transaction session scopes
- Repository pattern for data access
- Operation timing and Prometheus metrics

The duplicate service and SQL record store live in database.duplicate_service
and database.record_store; they are not re-exported here because they depend
on the duplicate_detector module, which itself imports database.models.
"""

from database.models import (
    Base,
    PartnerDraft,
    DraftAddress,
    DraftTaxId,
    ExistingPartner,
    DuplicateMatch,
    ApprovalHistory,
)
from database.connection import (
    DatabaseSessionProvider,
    DatabaseSettings,
    init_db,
    close_db,
    create_test_provider,
)
from database.monitoring import (
    query_timer,
    timed_query,
    get_db_metrics,
    reset_metrics,
    check_health,
    HealthStatus,
)

__all__ = [
    # Models
    'Base',
    'PartnerDraft',
    'DraftAddress',
    'DraftTaxId',
    'ExistingPartner',
    'DuplicateMatch',
    'ApprovalHistory',
    # Sessions
    'DatabaseSessionProvider',
    'DatabaseSettings',
    'init_db',
    'close_db',
    'create_test_provider',
    # Monitoring
    'query_timer',
    'timed_query',
    'get_db_metrics',
    'reset_metrics',
    'check_health',
    'HealthStatus',
]
