import os
from typing import Optional

import psycopg2

from app.db_config import db_config


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    try:
        return float(value)
    except ValueError:
        return default


class PipelineSettings:
    """
    Tunables for the pipeline engines.

    Every value reads its environment variable at construction time.
    Keyword arguments override the environment (used by tests).
    """

    def __init__(self, **overrides):
        # Source registry
        self.source_failure_threshold = _env_int("SOURCE_FAILURE_THRESHOLD", 5)
        self.source_reliability_alpha = _env_float("SOURCE_RELIABILITY_ALPHA", 0.2)
        self.default_poll_interval_minutes = _env_int("DEFAULT_POLL_INTERVAL_MINUTES", 30)

        # Ingestion
        self.ingest_default_limit = _env_int("INGEST_DEFAULT_LIMIT", 10)
        self.ingest_source_delay_seconds = _env_float("INGEST_SOURCE_DELAY_SECONDS", 0.5)
        self.ingest_unseen_stale_hours = _env_float("INGEST_UNSEEN_STALE_HOURS", 24)
        self.ingest_unseen_expire_hours = _env_float("INGEST_UNSEEN_EXPIRE_HOURS", 72)
        self.ingest_samples_per_source = 10
        self.ingest_samples_per_run = 20

        # Verification
        self.verify_stale_window_hours = _env_float("VERIFY_STALE_WINDOW_HOURS", 2)
        self.verify_expire_after_failures = _env_int("VERIFY_EXPIRE_AFTER_FAILURES", 3)
        self.verify_delay_seconds = _env_float("VERIFY_DELAY_SECONDS", 1.0)
        self.verify_default_limit = _env_int("VERIFY_DEFAULT_LIMIT", 20)

        # AI enrichment / classification
        self.enrich_delay_seconds = _env_float("ENRICH_DELAY_SECONDS", 0.5)
        self.enrich_default_limit = _env_int("ENRICH_DEFAULT_LIMIT", 10)
        self.enrich_max_description_chars = _env_int("ENRICH_MAX_DESCRIPTION_CHARS", 8000)

        # Logo resolution
        self.logo_delay_seconds = _env_float("LOGO_DELAY_SECONDS", 0.05)
        self.logo_default_batch_size = _env_int("LOGO_DEFAULT_BATCH_SIZE", 100)

        # Freshness
        self.freshness_window_hours = _env_float("FRESHNESS_WINDOW_HOURS", 2)
        self.freshness_healthy_pct = _env_float("FRESHNESS_HEALTHY_PCT", 80)

        for key, value in overrides.items():
            if not hasattr(self, key):
                raise AttributeError(f"Unknown pipeline setting: {key}")
            setattr(self, key, value)


def get_cron_secret() -> Optional[str]:
    return os.getenv("CRON_SECRET")


def get_jwt_secret() -> Optional[str]:
    return os.getenv("SUPABASE_JWT_SECRET")


def is_dev_mode() -> bool:
    return os.getenv("PIPELINE_ENV", "production").lower() == "dev"


class Capabilities:
    @staticmethod
    def is_db_enabled() -> bool:
        """Check if a PostgreSQL connection string is configured"""
        return db_config.is_db_enabled

    @staticmethod
    def check_db_connection() -> bool:
        """Verify database connection with a trivial query"""
        if not Capabilities.is_db_enabled():
            return False

        conn_params = db_config.get_connection_params()
        if not conn_params:
            return False

        try:
            # Health checks must not hang the endpoint
            conn = psycopg2.connect(**conn_params, connect_timeout=1)
            cursor = conn.cursor()
            cursor.execute("SELECT 1")
            cursor.fetchone()
            cursor.close()
            conn.close()
            return True
        except psycopg2.Error:
            return False

    @staticmethod
    def is_ai_enabled() -> bool:
        return bool(os.getenv("OPENROUTER_API_KEY"))

    @staticmethod
    def is_search_scrape_enabled() -> bool:
        return bool(os.getenv("FIRECRAWL_API_KEY"))

    @staticmethod
    def is_cron_configured() -> bool:
        return bool(get_cron_secret())

    @staticmethod
    def is_user_auth_configured() -> bool:
        return bool(get_jwt_secret())

    @classmethod
    def get_status(cls) -> dict:
        db = cls.check_db_connection()
        ai = cls.is_ai_enabled()
        scrape = cls.is_search_scrape_enabled()
        cron = cls.is_cron_configured()

        if db and ai and scrape and cron:
            status = "green"
        else:
            status = "amber"

        return {
            "status": status,
            "components": {
                "db": db,
                "ai": ai,
                "search_scrape": scrape,
                "cron": cron,
                "user_auth": cls.is_user_auth_configured(),
            },
        }


def get_env_presence() -> dict:
    required_vars = [
        "PIPELINE_ENV",
        "SUPABASE_DB_URL",
        "DATABASE_URL",
        "SUPABASE_JWT_SECRET",
        "CRON_SECRET",
        "OPENROUTER_API_KEY",
        "OPENROUTER_MODEL",
        "FIRECRAWL_API_KEY",
        "CACHE_BACKEND",
        "REDIS_URL",
    ]

    return {var: bool(os.getenv(var)) for var in required_vars}


settings = PipelineSettings()
