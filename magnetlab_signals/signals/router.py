"""Internal HTTP surface for signal leads and on-demand job runs."""

from __future__ import annotations

from dataclasses import asdict
import secrets
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from sqlalchemy import desc, select
from sqlalchemy.orm import Session

from magnetlab_signals.core.config import get_settings
from magnetlab_signals.integrations.harvest.client import get_harvest_client
from magnetlab_signals.orchestrator.locks import MonitorLockManager
from magnetlab_signals.orchestrator.scheduler import ScanScheduler
from magnetlab_signals.schemas.signals import (
    JobRunResponse,
    JobRunSummaryResponse,
    SignalLeadListResponse,
    SignalLeadResponse,
)
from magnetlab_signals.signals.engine import lead_summary
from magnetlab_signals.storage.db import get_session, get_session_factory
from magnetlab_signals.storage.models import SignalLead
from magnetlab_signals.storage.redis_client import get_client as get_redis_client
from magnetlab_signals.storage.tenant import set_workspace_context


JOBS = ("keyword-scan", "company-scan", "profile-scan", "enrich", "push")

router = APIRouter(prefix="/signals", tags=["signals"])


def require_internal_key(internal_key: Optional[str] = Header(default=None, alias="x-internal-key")) -> None:
    expected = get_settings().internal_api_key.strip()
    if not expected:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="internal_api_misconfigured",
        )
    received = (internal_key or "").strip()
    if not received or not secrets.compare_digest(received, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="invalid_internal_key",
        )


def get_scan_scheduler() -> ScanScheduler:
    settings = get_settings()
    return ScanScheduler(
        session_factory=get_session_factory(),
        lock_manager=MonitorLockManager(get_redis_client(), ttl_seconds=settings.scan_monitor_lock_ttl_seconds),
        harvest_client=get_harvest_client(),
        settings=settings,
    )


@router.get("/leads/{workspace_id}", response_model=SignalLeadListResponse, dependencies=[Depends(require_internal_key)])
def list_leads_endpoint(
    workspace_id: str,
    matched_only: bool = Query(default=False),
    limit: int = Query(default=50, ge=1, le=500),
    session: Session = Depends(get_session),
) -> SignalLeadListResponse:
    set_workspace_context(session, workspace_id)
    statement = select(SignalLead).where(SignalLead.workspace_id == workspace_id)
    if matched_only:
        statement = statement.where(SignalLead.icp_match.is_(True))
    statement = statement.order_by(desc(SignalLead.compound_score), desc(SignalLead.icp_score)).limit(limit)
    leads = list(session.scalars(statement).all())
    return SignalLeadListResponse(
        workspace_id=workspace_id,
        count=len(leads),
        leads=[SignalLeadResponse(**lead_summary(lead)) for lead in leads],
    )


@router.post("/jobs/{job}/run", response_model=JobRunResponse, dependencies=[Depends(require_internal_key)])
def run_job_endpoint(
    job: str,
    scheduler: ScanScheduler = Depends(get_scan_scheduler),
) -> JobRunResponse:
    if job not in JOBS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="unknown_job")

    if job.endswith("-scan"):
        result = scheduler.run_scan(job.removesuffix("-scan"))
        return JobRunResponse(
            job=job,
            status=result.status,
            executed=result.executed,
            skipped=result.skipped_locked + result.skipped_deadline,
            failed=result.failed,
            runs=[JobRunSummaryResponse(**asdict(run)) for run in result.runs],
        )

    outcome = scheduler.run_enrich() if job == "enrich" else scheduler.run_push()
    return JobRunResponse(
        job=job,
        status="completed",
        executed=outcome.executed,
        skipped=outcome.skipped,
        failed=outcome.failed,
        runs=[JobRunSummaryResponse(**asdict(run)) for run in outcome.runs],
    )
