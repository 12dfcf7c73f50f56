"""
Process-wide service instances, built on first use.

Routers receive these through FastAPI Depends, so tests can swap any of
them with app.dependency_overrides.
"""
import logging
from typing import Optional

from app.ai_service import get_ai_service
from app.config import PipelineSettings, settings
from app.db_config import db_config
from app.enrichment import CLASSIFICATION_TASK, ENRICHMENT_TASK, ClassificationEngine
from app.errors import ConfigurationError
from app.source_registry import SourceRegistry
from connectors.firecrawl import FirecrawlClient
from connectors.registry import get_registry
from core.cache import Cache, StoreLogoCache, build_cache
from core.link_validator import LinkValidator
from core.net import HTTPClient
from core.store import JobStore, PostgresStore
from pipeline.freshness import FreshnessMonitor
from pipeline.ingestion import IngestionEngine
from pipeline.logo_resolver import LogoChecker, LogoResolver
from pipeline.verification import VerificationEngine

logger = logging.getLogger(__name__)

_store: Optional[JobStore] = None
_http_client: Optional[HTTPClient] = None
_scrape_cache: Optional[Cache] = None
_firecrawl: Optional[FirecrawlClient] = None


def get_settings() -> PipelineSettings:
    return settings


def get_store() -> JobStore:
    global _store
    if _store is None:
        if not db_config.is_db_enabled:
            raise ConfigurationError("Database not configured")
        _store = PostgresStore(db_config.db_url)
        logger.info("[services] PostgresStore initialized")
    return _store


def get_http_client() -> HTTPClient:
    global _http_client
    if _http_client is None:
        _http_client = HTTPClient()
    return _http_client


def get_scrape_cache() -> Cache:
    global _scrape_cache
    if _scrape_cache is None:
        _scrape_cache = build_cache(prefix="pipeline:scrape:", max_entries=100, ttl_seconds=3600)
    return _scrape_cache


def get_firecrawl_client() -> FirecrawlClient:
    global _firecrawl
    if _firecrawl is None:
        _firecrawl = FirecrawlClient(http_client=get_http_client())
    return _firecrawl


def get_source_registry() -> SourceRegistry:
    return SourceRegistry(get_store(), get_settings())


def get_logo_resolver() -> LogoResolver:
    store = get_store()
    return LogoResolver(
        cache=StoreLogoCache(store),
        checker=LogoChecker(get_http_client()),
        store=store,
        settings=get_settings(),
    )


def get_ingestion_engine() -> IngestionEngine:
    return IngestionEngine(
        store=get_store(),
        registry=get_source_registry(),
        connectors=get_registry(),
        logo_resolver=get_logo_resolver(),
        settings=get_settings(),
    )


def get_verification_engine() -> VerificationEngine:
    return VerificationEngine(get_store(), LinkValidator(get_http_client()), get_settings())


def get_enrichment_engine() -> ClassificationEngine:
    return ClassificationEngine(get_store(), get_ai_service(), ENRICHMENT_TASK, get_settings())


def get_classification_engine() -> ClassificationEngine:
    return ClassificationEngine(get_store(), get_ai_service(), CLASSIFICATION_TASK, get_settings())


def get_freshness_monitor() -> FreshnessMonitor:
    return FreshnessMonitor(get_store(), get_settings())
