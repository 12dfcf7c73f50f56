"""
Job intelligence pipeline engines.

Ingestion, verification, logo resolution and freshness reporting. Each
engine reads and writes through core.store.JobStore and is safe to run
on a schedule: per-item failures are isolated and counted.
"""

__version__ = "1.0.0"
