"""
AI enrichment and classification of job postings.

Two tasks share one engine:
- enrichment: summary, responsibilities, qualifications, tech stack,
  benefits, visa info (stamps ai_enriched_at)
- classification: role type, experience level, education, visa
  sponsorship and 0-100 scores (stamps ai_classified_at)

A job whose AI call fails keeps its AI fields and stamp untouched, so the
next run picks it up again.
"""
import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, Field, ValidationError, field_validator

import metrics
from app.ai_service import AIService
from app.config import PipelineSettings, settings as default_settings
from app.errors import AIRateLimitError, ConfigurationError, StorageError
from core.store import JobStore

logger = logging.getLogger(__name__)

MAX_ERRORS_REPORTED = 5

ROLE_TYPES = {"internship", "new_grad", "part_time", "full_time", "contract", "unknown"}
EXPERIENCE_LEVELS = {"entry", "mid", "senior", "lead", "executive", "unknown"}


def _clean_list(value: Any, limit: Optional[int] = None) -> List[str]:
    if not value:
        return []
    if isinstance(value, str):
        value = [value]
    items = [str(v).strip() for v in value if v is not None and str(v).strip()]
    return items[:limit] if limit else items


class EnrichmentOutput(BaseModel):
    summary: str = Field(min_length=1)
    responsibilities: List[str] = Field(default_factory=list)
    qualifications: List[str] = Field(default_factory=list)
    tech_stack: List[str] = Field(default_factory=list)
    benefits: List[str] = Field(default_factory=list)
    visa_info: Optional[str] = None

    @field_validator('responsibilities', 'qualifications', 'tech_stack', 'benefits', mode='before')
    @classmethod
    def _lists(cls, value):
        return _clean_list(value)

    @field_validator('visa_info', mode='before')
    @classmethod
    def _visa(cls, value):
        if value is None or (isinstance(value, str) and not value.strip()):
            return None
        return str(value)


class ClassificationOutput(BaseModel):
    role_type: str = "unknown"
    tech_stack: List[str] = Field(default_factory=list)
    experience_level: str = "unknown"
    education_requirements: Optional[str] = None
    visa_sponsorship: Optional[bool] = None
    hiring_urgency_score: int = 50
    student_relevance_score: int = 50
    competition_score: int = 50

    @field_validator('role_type', mode='before')
    @classmethod
    def _role_type(cls, value):
        value = str(value or "unknown").lower()
        return value if value in ROLE_TYPES else "unknown"

    @field_validator('experience_level', mode='before')
    @classmethod
    def _experience(cls, value):
        value = str(value or "unknown").lower()
        return value if value in EXPERIENCE_LEVELS else "unknown"

    @field_validator('tech_stack', mode='before')
    @classmethod
    def _tech(cls, value):
        return _clean_list(value, limit=10)

    @field_validator('education_requirements', mode='before')
    @classmethod
    def _education(cls, value):
        return str(value) if value else None

    @field_validator('hiring_urgency_score', 'student_relevance_score', 'competition_score', mode='before')
    @classmethod
    def _score(cls, value):
        if value is None or value == "":
            return 50
        return min(100, max(0, int(round(float(value)))))


ENRICHMENT_SYSTEM_PROMPT = """You are a job description analyzer. Extract structured information from job postings.
Return a JSON object with these exact fields:
- summary: A 2-3 sentence TL;DR of the role (what you'll do, team, impact)
- responsibilities: Array of 5-8 key responsibilities (action-oriented, concise)
- qualifications: Array of 5-8 required qualifications/skills
- tech_stack: Array of specific technologies, frameworks, languages mentioned
- benefits: Array of notable benefits/perks mentioned
- visa_info: String describing visa sponsorship status if mentioned, null otherwise

Be concise. Extract actual content, don't fabricate."""

CLASSIFICATION_SYSTEM_PROMPT = """You are a job classification AI. Analyze job postings and extract structured information.
Return a JSON object with these exact fields:
- role_type: one of internship, new_grad, part_time, full_time, contract, unknown
- tech_stack: Array of technologies/tools mentioned (max 10)
- experience_level: one of entry, mid, senior, lead, executive, unknown
- education_requirements: Education requirements if mentioned, null otherwise
- visa_sponsorship: true only if sponsorship is explicitly offered, false if explicitly not, null otherwise
- hiring_urgency_score: 0-100, higher when the posting says "immediately", "ASAP", "urgent"
- student_relevance_score: 0-100, higher for entry-level, internship and new grad signals
- competition_score: 0-100, higher for prestigious companies and desirable roles

Be precise and conservative."""


def _enrichment_fields(output: EnrichmentOutput) -> Dict[str, Any]:
    return {
        'ai_summary': output.summary,
        'ai_responsibilities': output.responsibilities,
        'ai_qualifications': output.qualifications,
        'ai_tech_stack': output.tech_stack,
        'ai_benefits': output.benefits,
        'ai_visa_info': output.visa_info,
    }


def _classification_fields(output: ClassificationOutput) -> Dict[str, Any]:
    fields = output.model_dump()
    if not fields['tech_stack']:
        # Keep the rule-based tags from ingestion
        del fields['tech_stack']
    return fields


@dataclass(frozen=True)
class AITask:
    name: str
    stamp_column: str
    system_prompt: str
    output_model: Type[BaseModel]
    to_fields: Callable[[Any], Dict[str, Any]]
    max_description_chars: Optional[int] = None


ENRICHMENT_TASK = AITask(
    name="enrichment",
    stamp_column="ai_enriched_at",
    system_prompt=ENRICHMENT_SYSTEM_PROMPT,
    output_model=EnrichmentOutput,
    to_fields=_enrichment_fields,
)

CLASSIFICATION_TASK = AITask(
    name="classification",
    stamp_column="ai_classified_at",
    system_prompt=CLASSIFICATION_SYSTEM_PROMPT,
    output_model=ClassificationOutput,
    to_fields=_classification_fields,
    max_description_chars=3000,
)


def build_user_prompt(job: Dict[str, Any], max_chars: int) -> str:
    description = (job.get('description') or '')[:max_chars]
    return (
        "Analyze this job posting:\n\n"
        f"Title: {job.get('title') or ''}\n"
        f"Company: {job.get('company') or ''}\n"
        f"Location: {job.get('location') or ''}\n\n"
        f"Description:\n{description}"
    )


@dataclass
class AIFilter:
    job_id: Optional[str] = None
    limit: Optional[int] = None


class ClassificationEngine:
    """Runs one AI task over a batch of jobs, isolating per-job failures."""

    def __init__(
        self,
        store: JobStore,
        ai_service: AIService,
        task: AITask = ENRICHMENT_TASK,
        settings: Optional[PipelineSettings] = None,
    ):
        self.store = store
        self.ai_service = ai_service
        self.task = task
        self.settings = settings or default_settings

    def _select_jobs(self, job_filter: AIFilter) -> List[Dict[str, Any]]:
        if job_filter.job_id:
            job = self.store.get_job(job_filter.job_id)
            return [job] if job else []
        limit = job_filter.limit or self.settings.enrich_default_limit
        return self.store.list_jobs_pending_ai(self.task.stamp_column, limit)

    async def process_job(self, job: Dict[str, Any]) -> Dict[str, Any]:
        """Call the AI service for one job and persist the validated fields."""
        max_chars = self.task.max_description_chars or self.settings.enrich_max_description_chars
        raw = await self.ai_service.complete_json(
            self.task.system_prompt,
            build_user_prompt(job, max_chars),
        )
        try:
            output = self.task.output_model.model_validate(raw)
        except ValidationError as e:
            raise ValueError(f"Invalid {self.task.name} output: {e.error_count()} validation errors") from e

        fields = self.task.to_fields(output)
        self.store.save_ai_fields(str(job['id']), fields, self.task.stamp_column, datetime.now(timezone.utc))
        return fields

    async def run(self, job_filter: Optional[AIFilter] = None) -> Dict[str, Any]:
        job_filter = job_filter or AIFilter()
        if not self.ai_service.enabled:
            raise ConfigurationError("AI service not configured")

        jobs = self._select_jobs(job_filter)
        if not jobs:
            logger.info(f"[{self.task.name}] No jobs pending")
            return {
                'success': True,
                'message': f"No jobs pending {self.task.name}",
                'processed': 0,
                'successCount': 0,
                'errorCount': 0,
                'errors': [],
            }

        logger.info(f"[{self.task.name}] Processing {len(jobs)} jobs")
        processed = success_count = error_count = 0
        errors: List[str] = []

        for index, job in enumerate(jobs):
            if index > 0 and self.settings.enrich_delay_seconds:
                await asyncio.sleep(self.settings.enrich_delay_seconds)
            processed += 1
            job_id = str(job.get('id'))
            try:
                await self.process_job(job)
                success_count += 1
                metrics.record_ai_task(self.task.name, 'success')
                logger.info(f"[{self.task.name}] Job {job_id} done")
            except AIRateLimitError as e:
                error_count += 1
                errors.append(f"{job_id}: {e}")
                metrics.record_ai_task(self.task.name, 'rate_limited')
                logger.warning(f"[{self.task.name}] Stopping batch: {e}")
                break
            except (ConfigurationError, StorageError):
                raise
            except Exception as e:
                error_count += 1
                errors.append(f"{job_id}: {e}")
                metrics.record_ai_task(self.task.name, 'error')
                logger.error(f"[{self.task.name}] Job {job_id} failed: {e}")

        logger.info(
            f"[{self.task.name}] Done: processed={processed} success={success_count} errors={error_count}"
        )
        return {
            'success': True,
            'processed': processed,
            'successCount': success_count,
            'errorCount': error_count,
            'errors': errors[:MAX_ERRORS_REPORTED],
        }
