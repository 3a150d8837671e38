"""Enrich freshly discovered leads with full profile data and re-qualify them."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from magnetlab_signals.core.logger import get_logger
from magnetlab_signals.core.metrics import record_leads_enriched
from magnetlab_signals.signals.config_source import get_signal_config
from magnetlab_signals.signals.contracts import HarvestProfile
from magnetlab_signals.signals.engine import SignalEngine
from magnetlab_signals.signals.errors import SignalPipelineError
from magnetlab_signals.storage.models import SignalLead


logger = get_logger("magnetlab.orchestrator.enrich")


class ProfileSource(Protocol):
    def get_profile(self, profile_url: str) -> HarvestProfile: ...


@dataclass(frozen=True)
class EnrichRunResult:
    workspace_id: str
    status: str
    selected: int = 0
    qualified: int = 0
    excluded: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def as_details(self) -> Dict[str, object]:
        return {
            "status": self.status,
            "selected": self.selected,
            "qualified": self.qualified,
            "excluded": self.excluded,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def enrich_new_leads(
    session: Session,
    workspace_id: str,
    harvest_client: ProfileSource,
    engine: SignalEngine,
    limit: int = 100,
) -> EnrichRunResult:
    config = get_signal_config(session, workspace_id)
    if config is not None and not config.enrichment_enabled:
        logger.info("signal_enrich_disabled", workspace_id=workspace_id)
        return EnrichRunResult(workspace_id=workspace_id, status="disabled")

    leads = list(
        session.scalars(
            select(SignalLead)
            .where(SignalLead.workspace_id == workspace_id, SignalLead.status == "new")
            .order_by(SignalLead.first_seen_at.asc())
            .limit(max(1, limit))
        ).all()
    )

    qualified = 0
    excluded = 0
    failed = 0
    errors: List[str] = []
    for lead in leads:
        linkedin_url = lead.linkedin_url
        try:
            profile = harvest_client.get_profile(linkedin_url)
            engine.apply_enrichment(lead, profile)
        except SignalPipelineError as exc:
            session.rollback()
            failed += 1
            errors.append(f"{linkedin_url}: {exc}")
            logger.warning("signal_enrich_failed", workspace_id=workspace_id, linkedin_url=linkedin_url, error=str(exc))
            now = datetime.now(timezone.utc)
            lead.status = "enriched"
            lead.enriched_at = now
            lead.updated_at = now
            session.commit()
            continue

        if lead.status == "qualified":
            qualified += 1
        else:
            excluded += 1

    for status, count in (("qualified", qualified), ("excluded", excluded), ("failed", failed)):
        if count:
            record_leads_enriched(workspace_id=workspace_id, status=status, count=count)

    logger.info(
        "signal_enrich_completed",
        workspace_id=workspace_id,
        selected=len(leads),
        qualified=qualified,
        excluded=excluded,
        failed=failed,
    )
    return EnrichRunResult(
        workspace_id=workspace_id,
        status="completed",
        selected=len(leads),
        qualified=qualified,
        excluded=excluded,
        failed=failed,
        errors=errors,
    )
