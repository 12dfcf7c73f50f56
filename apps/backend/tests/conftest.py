import pytest

from app.config import PipelineSettings
from core.cache import InMemoryCache
from fakes import FakeLogoChecker, FakeStore, make_source


@pytest.fixture
def settings():
    """Pipeline settings with every inter-item delay disabled."""
    return PipelineSettings(
        ingest_source_delay_seconds=0,
        verify_delay_seconds=0,
        enrich_delay_seconds=0,
        logo_delay_seconds=0,
    )


@pytest.fixture
def source():
    return make_source()


@pytest.fixture
def store(source):
    return FakeStore([source])


@pytest.fixture
def logo_cache():
    return InMemoryCache(max_entries=50, ttl_seconds=None)


@pytest.fixture
def logo_checker():
    return FakeLogoChecker()
