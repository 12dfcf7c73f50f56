"""
Operator endpoints: source health, ingestion history and freshness.
"""
import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel

from app.models import SourceStatus, SourceType
from app.services import get_freshness_monitor, get_source_registry, get_store
from app.source_registry import SourceRegistry
from core.store import JobStore
from pipeline.freshness import FreshnessMonitor
from security.auth import user_session_required

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/admin", dependencies=[Depends(user_session_required)])


class SourceStatusUpdate(BaseModel):
    status: SourceStatus


@router.get("/sources")
def list_sources(
    status: Optional[SourceStatus] = None,
    source_type: Optional[SourceType] = None,
    store: JobStore = Depends(get_store),
):
    sources = store.list_sources(status=status, source_type=source_type)
    return {"sources": [s.to_dict() for s in sources], "total": len(sources)}


@router.get("/sources/{source_id}/logs")
def list_source_logs(
    source_id: str,
    limit: int = Query(50, ge=1, le=500),
    store: JobStore = Depends(get_store),
):
    if not store.get_source(source_id):
        raise HTTPException(status_code=404, detail="Source not found")
    return {"logs": store.list_ingestion_logs(source_id=source_id, limit=limit)}


@router.patch("/sources/{source_id}/status")
def update_source_status(
    source_id: str,
    update: SourceStatusUpdate,
    registry: SourceRegistry = Depends(get_source_registry),
):
    """Operator override; the only way a source becomes disabled or leaves it."""
    if not registry.set_status(source_id, update.status):
        raise HTTPException(status_code=404, detail="Source not found")
    logger.info(f"[sources] Operator set source {source_id} to {update.status.value}")
    return {"success": True, "id": source_id, "status": update.status.value}


@router.get("/ingestion-runs")
def list_ingestion_runs(
    limit: int = Query(20, ge=1, le=200),
    store: JobStore = Depends(get_store),
):
    return {"runs": store.list_ingestion_runs(limit=limit)}


@router.get("/freshness")
def freshness(monitor: FreshnessMonitor = Depends(get_freshness_monitor)):
    return monitor.compute()
