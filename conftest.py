"""Pytest configuration and shared fixtures."""

import pytest

# Load env vars
from dotenv import load_dotenv
load_dotenv()

from services.discovery.models import Contact, Entity, RawRecord


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "no_db: mark test as pure unit test (no external state)")
    config.addinivalue_line("markers", "integration: mark test as integration test (hits external services)")
    config.addinivalue_line("markers", "online: mark test as online test (hits external APIs)")


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def make_record():
    """Factory for RawRecord with sensible defaults."""

    def _make(name="Sunrise Bakery", **kwargs):
        defaults = dict(
            phone="",
            address="",
            locality="Phoenix",
            region="Arizona",
            website="",
            category="bakery",
            source="yellowpages",
        )
        defaults.update(kwargs)
        return RawRecord(name=name, **defaults)

    return _make


@pytest.fixture
def make_entity(make_record):
    """Factory for Entity built from a RawRecord."""

    def _make(name="Sunrise Bakery", region_key="AZ", contacts=None, **kwargs):
        entity = Entity.from_record(make_record(name, **kwargs), region_key=region_key)
        if contacts:
            entity.contacts = [Contact(**c) if isinstance(c, dict) else c for c in contacts]
        return entity

    return _make
