"""
In-process scheduler for the pipeline engines.

Deployments that drive the /functions endpoints from an external cron set
PIPELINE_DISABLE_SCHEDULER=true. Otherwise this loop triggers each engine
on its own interval; every task failure is logged and the loop keeps going.
"""
import os
import time
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from app.config import Capabilities
from app.enrichment import AIFilter
from app.errors import PipelineError
from app.models import RunType
from pipeline.ingestion import IngestionFilter
from pipeline.verification import VerificationFilter

logger = logging.getLogger(__name__)

SCHEDULER_TICK_SECONDS = int(os.getenv("PIPELINE_SCHEDULER_TICK_SECONDS", "60"))
INGESTION_INTERVAL_SECONDS = int(os.getenv("PIPELINE_INGESTION_INTERVAL_SECONDS", "300"))
VERIFICATION_INTERVAL_SECONDS = int(os.getenv("PIPELINE_VERIFICATION_INTERVAL_SECONDS", "3600"))
AI_INTERVAL_SECONDS = int(os.getenv("PIPELINE_AI_INTERVAL_SECONDS", "900"))
LOGO_INTERVAL_SECONDS = int(os.getenv("PIPELINE_LOGO_INTERVAL_SECONDS", "3600"))


@dataclass
class ScheduledTask:
    name: str
    interval_seconds: int
    run: Callable[[], Awaitable[Dict[str, Any]]]
    enabled: Callable[[], bool] = lambda: True
    last_run_at: Optional[float] = None

    def is_due(self, now: float) -> bool:
        return self.last_run_at is None or now - self.last_run_at >= self.interval_seconds


def default_tasks() -> List[ScheduledTask]:
    from app import services

    async def ingest():
        return await services.get_ingestion_engine().run(IngestionFilter(run_type=RunType.SCHEDULED))

    async def verify():
        return await services.get_verification_engine().run(VerificationFilter())

    async def enrich():
        return await services.get_enrichment_engine().run(AIFilter())

    async def classify():
        return await services.get_classification_engine().run(AIFilter())

    async def logos():
        return await services.get_logo_resolver().backfill()

    return [
        ScheduledTask("ingestion", INGESTION_INTERVAL_SECONDS, ingest),
        ScheduledTask("verification", VERIFICATION_INTERVAL_SECONDS, verify),
        ScheduledTask("enrichment", AI_INTERVAL_SECONDS, enrich, Capabilities.is_ai_enabled),
        ScheduledTask("classification", AI_INTERVAL_SECONDS, classify, Capabilities.is_ai_enabled),
        ScheduledTask("logo_backfill", LOGO_INTERVAL_SECONDS, logos),
    ]


class PipelineScheduler:
    """Runs due pipeline tasks sequentially on a fixed tick."""

    def __init__(self, tasks: Optional[List[ScheduledTask]] = None, tick_seconds: int = SCHEDULER_TICK_SECONDS, clock=time.monotonic):
        self.tasks = tasks if tasks is not None else default_tasks()
        self.tick_seconds = tick_seconds
        self.clock = clock
        self.running = False
        self._task: Optional[asyncio.Task] = None

    async def run_due_tasks_once(self) -> Dict[str, Any]:
        """Run every due, enabled task once. Returns {task_name: result or error}."""
        results: Dict[str, Any] = {}
        for task in self.tasks:
            now = self.clock()
            if not task.is_due(now) or not task.enabled():
                continue
            task.last_run_at = now
            try:
                results[task.name] = await task.run()
                logger.info(f"[orchestrator] {task.name} finished")
            except PipelineError as e:
                results[task.name] = {'success': False, 'error': str(e)}
                logger.error(f"[orchestrator] {task.name} failed: {e}")
            except Exception as e:
                results[task.name] = {'success': False, 'error': str(e)}
                logger.error(f"[orchestrator] {task.name} crashed: {e}", exc_info=True)
        return results

    async def scheduler_loop(self):
        logger.info("[orchestrator] Scheduler started")
        while self.running:
            await self.run_due_tasks_once()
            await asyncio.sleep(self.tick_seconds)
        logger.info("[orchestrator] Scheduler stopped")

    async def start(self):
        if os.getenv("PIPELINE_DISABLE_SCHEDULER", "").lower() == "true":
            logger.info("[orchestrator] Scheduler disabled by PIPELINE_DISABLE_SCHEDULER")
            return
        self.running = True
        self._task = asyncio.create_task(self.scheduler_loop())
        logger.info("[orchestrator] Scheduler task created")

    async def stop(self):
        self.running = False
        if self._task:
            self._task.cancel()
            self._task = None
        logger.info("[orchestrator] Scheduler stopping...")


# Global instance
_scheduler: Optional[PipelineScheduler] = None


def get_scheduler() -> PipelineScheduler:
    global _scheduler
    if _scheduler is None:
        _scheduler = PipelineScheduler()
    return _scheduler


async def start_scheduler():
    """Start the pipeline scheduler (call from FastAPI startup)"""
    await get_scheduler().start()


async def stop_scheduler():
    """Stop the pipeline scheduler (call from FastAPI shutdown)"""
    if _scheduler:
        await _scheduler.stop()
