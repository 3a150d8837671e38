"""Push qualified, not-yet-pushed leads to the outbound campaign tool."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Protocol, Sequence

from sqlalchemy import case, desc, select
from sqlalchemy.orm import Session

from magnetlab_signals.core.logger import get_logger
from magnetlab_signals.core.metrics import record_leads_pushed
from magnetlab_signals.signals.contracts import OutboundLead, PushOutcome
from magnetlab_signals.signals.errors import TransientNetworkError
from magnetlab_signals.storage.models import SignalLead


logger = get_logger("magnetlab.orchestrator.push")


class OutreachClient(Protocol):
    def push_leads(self, campaign_id: str, leads: Sequence[OutboundLead]) -> List[PushOutcome]: ...


@dataclass(frozen=True)
class PushRunResult:
    workspace_id: str
    selected: int
    accepted: int
    rejected: int
    untouched: int
    error: Optional[str] = None
    errors: List[str] = field(default_factory=list)

    def as_details(self) -> Dict[str, object]:
        return {
            "selected": self.selected,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "untouched": self.untouched,
            "error": self.error,
            "errors": list(self.errors),
        }


def select_push_queue(session: Session, workspace_id: str, *, limit: int) -> List[SignalLead]:
    """Unpushed matches, never-attempted first by score, then oldest rejections.

    Leads the outreach tool rejected go to the back of the queue so they
    cannot starve the leads below them.
    """

    never_attempted_first = case((SignalLead.push_attempted_at.is_(None), 0), else_=1)
    statement = (
        select(SignalLead)
        .where(
            SignalLead.workspace_id == workspace_id,
            SignalLead.icp_match.is_(True),
            SignalLead.pushed_to_outbound.is_(False),
        )
        .order_by(
            never_attempted_first,
            SignalLead.push_attempted_at.asc(),
            desc(SignalLead.compound_score),
            desc(SignalLead.icp_score),
            SignalLead.first_seen_at.asc(),
        )
        .limit(max(1, limit))
    )
    return list(session.scalars(statement).all())


def _outbound_lead(lead: SignalLead) -> OutboundLead:
    return OutboundLead(
        lead_id=lead.id,
        linkedin_url=lead.linkedin_url,
        first_name=lead.first_name,
        last_name=lead.last_name,
        company=lead.company,
        job_title=lead.job_title,
        icp_score=lead.icp_score,
        compound_score=lead.compound_score,
    )


def _apply_outcomes(
    leads_by_id: Dict[str, SignalLead],
    outcomes: Sequence[PushOutcome],
    *,
    campaign_id: str,
    now: datetime,
) -> tuple[int, int, List[str]]:
    accepted = 0
    rejected = 0
    errors: List[str] = []
    for outcome in outcomes:
        lead = leads_by_id.get(outcome.lead_id)
        if lead is None:
            continue
        lead.push_attempted_at = now
        lead.updated_at = now
        if outcome.accepted:
            lead.pushed_to_outbound = True
            lead.push_error = None
            lead.status = "pushed"
            lead.outbound_campaign_id = campaign_id
            accepted += 1
        else:
            lead.push_error = (outcome.error or "rejected")[:255]
            rejected += 1
            errors.append(f"{lead.linkedin_url}: {lead.push_error}")
    return accepted, rejected, errors


def push_qualified_leads(
    session: Session,
    workspace_id: str,
    outreach_client: OutreachClient,
    campaign_id: str,
    batch_size: int = 100,
    *,
    clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
) -> PushRunResult:
    """Forward matching unpushed leads, best compound score first.

    Accepted leads are marked pushed; rejected leads keep ``pushed_to_outbound``
    false and record ``push_error``. A transport failure leaves every lead it
    did not reach untouched for the next run.
    """

    leads = select_push_queue(session, workspace_id, limit=batch_size)
    if not leads:
        return PushRunResult(workspace_id=workspace_id, selected=0, accepted=0, rejected=0, untouched=0)

    leads_by_id = {lead.id: lead for lead in leads}
    transport_error: Optional[str] = None
    try:
        outcomes = outreach_client.push_leads(campaign_id, [_outbound_lead(lead) for lead in leads])
    except TransientNetworkError as exc:
        outcomes = list(getattr(exc, "outcomes", []))
        transport_error = str(exc)
        logger.warning("signal_push_transport_failed", workspace_id=workspace_id, error=transport_error)

    accepted, rejected, errors = _apply_outcomes(leads_by_id, outcomes, campaign_id=campaign_id, now=clock())
    session.commit()

    untouched = len(leads) - accepted - rejected
    if accepted:
        record_leads_pushed(workspace_id=workspace_id, outcome="accepted", count=accepted)
    if rejected:
        record_leads_pushed(workspace_id=workspace_id, outcome="rejected", count=rejected)
    if untouched:
        record_leads_pushed(workspace_id=workspace_id, outcome="untouched", count=untouched)

    logger.info(
        "signal_push_completed",
        workspace_id=workspace_id,
        selected=len(leads),
        accepted=accepted,
        rejected=rejected,
        untouched=untouched,
    )
    return PushRunResult(
        workspace_id=workspace_id,
        selected=len(leads),
        accepted=accepted,
        rejected=rejected,
        untouched=untouched,
        error=transport_error,
        errors=errors,
    )
