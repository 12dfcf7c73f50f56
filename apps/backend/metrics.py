"""
Prometheus counters for the pipeline engines.
Exposed by main.py at /metrics.
"""
import logging

from prometheus_client import Counter

logger = logging.getLogger(__name__)

postings_processed = Counter(
    'pipeline_postings_total',
    'Postings handled by ingestion, by upsert outcome',
    ['action'],
)
source_fetches = Counter(
    'pipeline_source_fetches_total',
    'Source fetch attempts',
    ['source_type', 'result'],
)
verifications = Counter(
    'pipeline_verifications_total',
    'Verification outcomes by resulting status',
    ['status'],
)
ai_tasks = Counter(
    'pipeline_ai_tasks_total',
    'AI enrichment/classification outcomes',
    ['task', 'outcome'],
)
logo_resolutions = Counter(
    'pipeline_logo_resolutions_total',
    'Logo resolutions by winning source',
    ['source'],
)


def record_posting(action: str):
    postings_processed.labels(action=action).inc()


def record_source_fetch(source_type: str, result: str):
    source_fetches.labels(source_type=source_type, result=result).inc()


def record_verification(status: str):
    verifications.labels(status=status).inc()


def record_ai_task(task: str, outcome: str):
    ai_tasks.labels(task=task, outcome=outcome).inc()


def record_logo_resolution(source: str):
    logo_resolutions.labels(source=source).inc()
