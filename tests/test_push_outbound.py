from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from magnetlab_signals.integrations.heyreach import HeyReachClientError
from magnetlab_signals.orchestrator.push import push_qualified_leads, select_push_queue
from magnetlab_signals.signals.contracts import OutboundLead, PushOutcome
from magnetlab_signals.storage.db import Base, load_models
from magnetlab_signals.storage.models import SignalLead, Workspace


BASE_TIME = datetime(2026, 10, 1, 9, 0, tzinfo=timezone.utc)
PUSH_TIME = datetime(2026, 10, 19, 9, 0, tzinfo=timezone.utc)


class _FakeOutreachClient:
    def __init__(self, *, reject: Sequence[str] = (), fail_after: Optional[int] = None) -> None:
        self.reject = set(reject)
        self.fail_after = fail_after
        self.calls: List[tuple[str, List[OutboundLead]]] = []

    def push_leads(self, campaign_id: str, leads: Sequence[OutboundLead]) -> List[PushOutcome]:
        self.calls.append((campaign_id, list(leads)))
        outcomes: List[PushOutcome] = []
        for index, lead in enumerate(leads):
            if self.fail_after is not None and index >= self.fail_after:
                raise HeyReachClientError("heyreach push failed after 4 attempts: HTTP 503", outcomes=outcomes)
            if lead.linkedin_url in self.reject:
                outcomes.append(PushOutcome(lead_id=lead.lead_id, accepted=False, error="HTTP 400: invalid profile"))
            else:
                outcomes.append(PushOutcome(lead_id=lead.lead_id, accepted=True))
        return outcomes


def _build_sqlite_session_factory():
    load_models()
    engine = create_engine(
        "sqlite+pysqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, autocommit=False, expire_on_commit=False)


def _seed_leads(session) -> Workspace:
    workspace = Workspace(name="Acme Growth", subscription_status="active")
    session.add(workspace)
    session.flush()
    rows = [
        ("low", True, False, 20, 70, 0),
        ("top", True, False, 60, 80, 1),
        ("tie-older", True, False, 40, 90, 2),
        ("tie-newer", True, False, 40, 90, 3),
        ("unmatched", False, False, 90, 40, 4),
        ("already", True, True, 95, 100, 5),
    ]
    for slug, icp_match, pushed, compound, icp_score, offset in rows:
        seen_at = BASE_TIME + timedelta(hours=offset)
        session.add(
            SignalLead(
                workspace_id=workspace.id,
                linkedin_url=f"https://www.linkedin.com/in/{slug}",
                first_name=slug,
                icp_match=icp_match,
                icp_score=icp_score,
                compound_score=compound,
                pushed_to_outbound=pushed,
                status="pushed" if pushed else "qualified",
                first_seen_at=seen_at,
                last_seen_at=seen_at,
            )
        )
    session.commit()
    return workspace


def _slug(lead) -> str:
    return lead.linkedin_url.rsplit("/", 1)[-1]


def test_push_queue_orders_by_compound_then_icp_then_age() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        workspace = _seed_leads(session)
        queue = select_push_queue(session, workspace.id, limit=10)
        assert [_slug(lead) for lead in queue] == ["top", "tie-older", "tie-newer", "low"]
        assert [_slug(lead) for lead in select_push_queue(session, workspace.id, limit=2)] == ["top", "tie-older"]


def test_push_marks_accepted_leads_and_is_idempotent() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        workspace = _seed_leads(session)
        client = _FakeOutreachClient()

        result = push_qualified_leads(session, workspace.id, client, "camp-42", clock=lambda: PUSH_TIME)

        assert result.selected == 4
        assert result.accepted == 4
        assert result.rejected == 0
        assert result.untouched == 0
        assert result.error is None
        assert client.calls[0][0] == "camp-42"
        assert [_slug(lead) for lead in client.calls[0][1]] == ["top", "tie-older", "tie-newer", "low"]

        pushed = session.scalars(select(SignalLead).where(SignalLead.outbound_campaign_id == "camp-42")).all()
        assert len(pushed) == 4
        assert all(lead.pushed_to_outbound and lead.status == "pushed" for lead in pushed)

        again = push_qualified_leads(session, workspace.id, client, "camp-42", clock=lambda: PUSH_TIME)
        assert again.selected == 0
        assert len(client.calls) == 1


def test_rejected_leads_stay_unpushed_with_error() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        workspace = _seed_leads(session)
        client = _FakeOutreachClient(reject=["https://www.linkedin.com/in/low"])

        result = push_qualified_leads(session, workspace.id, client, "camp-42", clock=lambda: PUSH_TIME)

        assert result.accepted == 3
        assert result.rejected == 1
        assert "HTTP 400" in result.errors[0]
        low = session.scalar(select(SignalLead).where(SignalLead.linkedin_url == "https://www.linkedin.com/in/low"))
        assert low.pushed_to_outbound is False
        assert low.status == "qualified"
        assert low.push_error == "HTTP 400: invalid profile"
        assert low.push_attempted_at is not None


def test_transport_failure_leaves_unreached_leads_untouched() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        workspace = _seed_leads(session)
        client = _FakeOutreachClient(fail_after=1)

        result = push_qualified_leads(session, workspace.id, client, "camp-42", clock=lambda: PUSH_TIME)

        assert result.accepted == 1
        assert result.untouched == 3
        assert "HTTP 503" in result.error
        leads = {_slug(lead): lead for lead in session.scalars(select(SignalLead)).all()}
        assert leads["top"].pushed_to_outbound is True
        for slug in ("tie-older", "tie-newer", "low"):
            assert leads[slug].pushed_to_outbound is False
            assert leads[slug].push_attempted_at is None
            assert leads[slug].push_error is None

        retry = push_qualified_leads(session, workspace.id, _FakeOutreachClient(), "camp-42", clock=lambda: PUSH_TIME)
        assert retry.selected == 3
        assert retry.accepted == 3


def test_batch_size_caps_each_push() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        workspace = _seed_leads(session)
        client = _FakeOutreachClient()

        result = push_qualified_leads(session, workspace.id, client, "camp-42", batch_size=2, clock=lambda: PUSH_TIME)

        assert result.selected == 2
        assert [_slug(lead) for lead in client.calls[0][1]] == ["top", "tie-older"]


def test_rejected_leads_do_not_block_lower_scored_leads() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        workspace = Workspace(name="Acme Growth", subscription_status="active")
        session.add(workspace)
        session.flush()
        for slug, compound in (("bad", 90), ("good", 10)):
            session.add(
                SignalLead(
                    workspace_id=workspace.id,
                    linkedin_url=f"https://www.linkedin.com/in/{slug}",
                    icp_match=True,
                    icp_score=80,
                    compound_score=compound,
                    status="qualified",
                    first_seen_at=BASE_TIME,
                    last_seen_at=BASE_TIME,
                )
            )
        session.commit()

        client = _FakeOutreachClient(reject=["https://www.linkedin.com/in/bad"])
        sent = []
        for run in range(3):
            push_qualified_leads(
                session,
                workspace.id,
                client,
                "camp-42",
                batch_size=1,
                clock=lambda run=run: PUSH_TIME + timedelta(hours=run),
            )
            sent.append(_slug(client.calls[-1][1][0]))

        assert sent == ["bad", "good", "bad"]
        good = session.scalar(select(SignalLead).where(SignalLead.linkedin_url == "https://www.linkedin.com/in/good"))
        assert good.pushed_to_outbound is True
