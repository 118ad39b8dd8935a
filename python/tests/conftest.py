"""
Shared pytest fixtures for the duplicate detection tests.

Database tests run against an in-memory SQLite engine; the schema only uses
portable column types so the same models work there and on PostgreSQL.
"""

import sys
from pathlib import Path
from typing import Any, Dict

import pytest
import yaml
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

sys.path.insert(0, str(Path(__file__).parent.parent))

from config_manager import ConfigManager
from database.connection import create_test_provider
from database.models import (
    RequestType,
    PartnerCategory,
    PartnerStatus,
    DraftStatus,
)
from database.repositories import PartnerDraftRepository, ExistingPartnerRepository
from database.duplicate_service import DatabaseDuplicateService


@pytest.fixture(autouse=True)
def reset_config_singleton():
    """Keep the ConfigManager singleton from leaking between tests."""
    ConfigManager.reset_instance()
    yield
    ConfigManager.reset_instance()


@pytest.fixture
def config_file(tmp_path):
    """Write a small config.yaml and return its path."""
    data = {
        'matching': {'min_name_length': 3, 'established_address_type': 'Main'},
        'performance': {
            'max_threads': 2,
            'batch_size': 50,
            'parallel_scan_threshold': 1000,
            'lock_timeout_seconds': 0.2,
        },
        'logging': {'level': 'DEBUG', 'console': False},
        'algorithm': {'version': '1.0.0-test'},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding='utf-8')
    return path


@pytest.fixture
def config(config_file):
    return ConfigManager(str(config_file))


@pytest.fixture
def engine():
    """In-memory SQLite engine shared across threads."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


@pytest.fixture
def db_provider(engine):
    provider = create_test_provider(engine)
    provider.init()
    provider.create_tables()
    yield provider
    provider.drop_tables()


@pytest.fixture
def service(db_provider, config):
    return DatabaseDuplicateService(db_provider, config)


def draft_data(**overrides) -> Dict[str, Any]:
    """Default draft payload: a submitted US supplier with a Main address."""
    data = {
        'partner_name': "ACME Corporation Ltd",
        'request_type': RequestType.CREATE,
        'partner_category': PartnerCategory.SUPPLIER,
        'source_system': "SAP",
        'status': DraftStatus.SUBMITTED,
        'business_channels': ["Retail", "Wholesale"],
        'addresses': [{'address_type': 'Main', 'country_code': 'US', 'city': 'Springfield'}],
        'tax_ids': [{'country_code': 'US', 'vat_number': 'US987654321'}],
    }
    data.update(overrides)
    return data


def partner_data(**overrides) -> Dict[str, Any]:
    """Default corpus record compatible with draft_data()."""
    data = {
        'partner_number': "P-0001",
        'partner_name': "Acme Holdings",
        'status': PartnerStatus.ACTIVE,
        'partner_category': PartnerCategory.SUPPLIER,
        'established_vat_id': "US987654321",
        'established_country': "US",
        'source_system': "SAP",
        'business_channels': ["Wholesale", "Retail"],
    }
    data.update(overrides)
    return data


@pytest.fixture
def seed_draft(db_provider):
    """Factory inserting a draft; returns its id."""
    def _seed(**overrides):
        with db_provider.session_scope() as session:
            draft = PartnerDraftRepository(session).create(draft_data(**overrides))
            return draft.id
    return _seed


@pytest.fixture
def seed_partner(db_provider):
    """Factory inserting an existing partner; returns its id."""
    def _seed(**overrides):
        with db_provider.session_scope() as session:
            partner = ExistingPartnerRepository(session).create(partner_data(**overrides))
            return partner.id
    return _seed
