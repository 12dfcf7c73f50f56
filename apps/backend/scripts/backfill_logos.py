#!/usr/bin/env python3
"""
Resolve logos for jobs that have none, or re-check existing ones.

Usage:
  python backfill_logos.py                    # 100 jobs without a logo
  python backfill_logos.py --batch-size 500
  python backfill_logos.py --check-broken     # replace logos that no longer load
"""
import sys
import asyncio
import argparse
import logging

from dotenv import load_dotenv

from app.errors import PipelineError


async def run(batch_size: int, check_broken: bool) -> dict:
    from app.services import get_logo_resolver
    return await get_logo_resolver().backfill(batch_size=batch_size, check_broken=check_broken)


def main():
    parser = argparse.ArgumentParser(description="Backfill company logos")
    parser.add_argument("--batch-size", type=int, default=100)
    parser.add_argument("--check-broken", action="store_true")
    args = parser.parse_args()

    load_dotenv()
    logging.basicConfig(level=logging.INFO)

    try:
        result = asyncio.run(run(args.batch_size, args.check_broken))
    except PipelineError as e:
        print(f"✗ {e}")
        sys.exit(1)

    print(
        f"✓ processed={result['processed']} resolved={result['successCount']} "
        f"skipped={result['skippedCount']} errors={result['errorCount']}"
    )


if __name__ == "__main__":
    main()
