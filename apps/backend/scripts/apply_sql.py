#!/usr/bin/env python3
"""
Apply the pipeline schema (and optionally the example sources) to the database.
Idempotent - safe to run multiple times.
"""
import sys
import argparse
from pathlib import Path

import psycopg2
from dotenv import load_dotenv

from app.db_config import DBConfig

PIPELINE_TABLES = (
    "job_sources",
    "jobs",
    "job_verifications",
    "company_logo_cache",
    "ingestion_logs",
    "ingestion_runs",
)


def get_table_counts(cursor) -> dict:
    """Row counts for the pipeline tables that exist."""
    cursor.execute("""
        SELECT table_name
        FROM information_schema.tables
        WHERE table_schema = 'public'
    """)
    existing = {row[0] for row in cursor.fetchall()}

    counts = {}
    for table in PIPELINE_TABLES:
        if table in existing:
            cursor.execute(f"SELECT COUNT(*) FROM {table}")
            counts[table] = cursor.fetchone()[0]
    return counts


def apply_file(cursor, path: Path) -> None:
    with open(path, 'r') as f:
        cursor.execute(f.read())


def main():
    parser = argparse.ArgumentParser(
        description="Apply the job pipeline schema",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python apply_sql.py              # Apply schema only
  python apply_sql.py --seed       # Apply schema and example sources
        """
    )
    parser.add_argument(
        "--seed",
        action="store_true",
        help="Also insert the example job sources from infra/seed.sql",
    )
    args = parser.parse_args()

    load_dotenv()
    config = DBConfig()
    conn_params = config.get_connection_params()
    if not conn_params:
        print("Error: SUPABASE_DB_URL or DATABASE_URL environment variable is not set")
        sys.exit(1)

    project_root = Path(__file__).parent.parent.parent.parent
    schema_file = project_root / "infra" / "supabase.sql"
    seed_file = project_root / "infra" / "seed.sql"

    if not schema_file.exists():
        print(f"Error: Schema file not found: {schema_file}")
        sys.exit(1)

    print(f"Connecting to: {conn_params['host']}:{conn_params['port']}")
    try:
        conn = psycopg2.connect(**conn_params, connect_timeout=10)
    except psycopg2.Error as e:
        print(f"✗ Connection failed: {e}")
        print("  - Check SUPABASE_DB_URL")
        print("  - URL-encode special characters in the password")
        sys.exit(1)

    try:
        cursor = conn.cursor()
        before = get_table_counts(cursor)

        print("Applying schema (infra/supabase.sql)...")
        apply_file(cursor, schema_file)
        conn.commit()

        if args.seed:
            if seed_file.exists():
                print("Applying example sources (infra/seed.sql)...")
                apply_file(cursor, seed_file)
                conn.commit()
            else:
                print(f"⚠ Seed file not found: {seed_file}")

        after = get_table_counts(cursor)
        print("\nPipeline tables:")
        print("-" * 50)
        for table in PIPELINE_TABLES:
            count = after.get(table)
            if count is None:
                print(f"  {table:25} missing")
                continue
            status = f"{count} row(s)"
            if table not in before:
                status += " (created)"
            elif count > before[table]:
                status += f" (+{count - before[table]} new)"
            print(f"  {table:25} {status}")
        cursor.close()
    except psycopg2.Error as e:
        conn.rollback()
        print(f"✗ Failed to apply SQL: {e}")
        sys.exit(1)
    finally:
        conn.close()

    print("\n✓ Done")


if __name__ == "__main__":
    main()
