#!/usr/bin/env python3
"""
Print job source health and the latest ingestion runs.
"""
import sys
import argparse

from dotenv import load_dotenv

from app.db_config import DBConfig
from app.errors import StorageError
from core.store import PostgresStore


def main():
    parser = argparse.ArgumentParser(description="Show job source health")
    parser.add_argument("--runs", type=int, default=5, help="Number of recent ingestion runs to show")
    args = parser.parse_args()

    load_dotenv()
    config = DBConfig()
    if not config.db_url:
        print("Error: SUPABASE_DB_URL or DATABASE_URL not set")
        sys.exit(1)

    store = PostgresStore(config.db_url)
    try:
        sources = store.list_sources()
        runs = store.list_ingestion_runs(limit=args.runs)
    except StorageError as e:
        print(f"✗ {e}")
        sys.exit(1)

    print(f"{len(sources)} source(s)")
    print("-" * 100)
    for source in sources:
        last_success = source.last_success_at.isoformat() if source.last_success_at else "never"
        print(
            f"  {source.name[:40]:40} {source.source_type.value:10} {source.status.value:9} "
            f"failures={source.consecutive_failures:<3} reliability={source.reliability_score:.2f} "
            f"last_success={last_success}"
        )
        if source.last_error_message:
            print(f"      last error: {source.last_error_message[:120]}")

    print(f"\nLast {len(runs)} ingestion run(s)")
    print("-" * 100)
    for run in runs:
        print(
            f"  {run['started_at']} {run['status']:8} sources={run['sources_processed']} "
            f"failed={run['sources_failed']} new={run['jobs_new']} updated={run['jobs_updated']} "
            f"deduplicated={run['jobs_deduplicated']}"
        )


if __name__ == "__main__":
    main()
