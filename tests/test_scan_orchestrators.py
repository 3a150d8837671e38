from __future__ import annotations

from datetime import datetime, timezone
import json
from typing import Dict, List, Optional

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from magnetlab_signals.core.config import Settings
from magnetlab_signals.integrations.harvest import HarvestClientError
from magnetlab_signals.orchestrator.scans import run_monitor_scan
from magnetlab_signals.signals.contracts import HarvestEngagement, HarvestPost, HarvestProfile
from magnetlab_signals.signals.engine import SignalEngine
from magnetlab_signals.storage.db import Base, load_models
from magnetlab_signals.storage.models import SignalConfig, SignalEvent, SignalLead, SignalMonitor, Workspace


RUN_AT = datetime(2026, 10, 19, 8, 0, tzinfo=timezone.utc)
POST_ONE = "https://www.linkedin.com/posts/alpha-hiring-1"
POST_TWO = "https://www.linkedin.com/posts/gamma-hiring-2"


class _FakeHarvestClient:
    def __init__(
        self,
        posts: List[HarvestPost],
        *,
        comments: Optional[Dict[str, List[HarvestEngagement]]] = None,
        reactions: Optional[Dict[str, List[HarvestEngagement]]] = None,
        fail_search: bool = False,
        fail_comments: bool = False,
    ) -> None:
        self.posts = posts
        self.comments = comments or {}
        self.reactions = reactions or {}
        self.fail_search = fail_search
        self.fail_comments = fail_comments
        self.searches: List[tuple] = []

    def _search(self, kind: str, target: str, posted_limit: str, limit: int) -> List[HarvestPost]:
        self.searches.append((kind, target, posted_limit, limit))
        if self.fail_search:
            raise HarvestClientError("Harvest post search failed with status 503", status_code=503)
        return list(self.posts)[:limit]

    def search_posts_by_keyword(self, keyword: str, *, posted_limit: str = "24h", limit: int = 10):
        return self._search("keyword", keyword, posted_limit, limit)

    def search_posts_by_company(self, company_url: str, *, posted_limit: str = "24h", limit: int = 5):
        return self._search("company", company_url, posted_limit, limit)

    def search_posts_by_profile(self, profile_url: str, *, posted_limit: str = "week", limit: int = 10):
        return self._search("profile", profile_url, posted_limit, limit)

    def get_post_comments(self, post_url: str) -> List[HarvestEngagement]:
        if self.fail_comments:
            raise HarvestClientError("Harvest post comments request failed")
        return list(self.comments.get(post_url, []))

    def get_post_reactions(self, post_url: str) -> List[HarvestEngagement]:
        return list(self.reactions.get(post_url, []))


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


def _seed(session, *, kind: str = "keyword", target: str = "hiring") -> SignalMonitor:
    workspace = Workspace(name="Acme Growth", subscription_status="active")
    session.add(workspace)
    session.flush()
    session.add(SignalConfig(workspace_id=workspace.id, job_title_keywords_json=json.dumps(["founder"])))
    monitor = SignalMonitor(workspace_id=workspace.id, kind=kind, target_value=target)
    session.add(monitor)
    session.commit()
    return monitor


def _engagement(name: str, headline: str, slug: str, text: Optional[str] = None) -> HarvestEngagement:
    return HarvestEngagement(
        profile=HarvestProfile(full_name=name, headline=headline, linkedin_url=f"https://www.linkedin.com/in/{slug}"),
        text=text,
    )


def _hiring_client() -> _FakeHarvestClient:
    return _FakeHarvestClient(
        [
            HarvestPost(post_id="1", linkedin_url=POST_ONE, content="We are hiring"),
            HarvestPost(post_id="2", linkedin_url=POST_TWO, content="Hiring SDRs"),
        ],
        comments={
            POST_ONE: [_engagement("Ada Alpha", "Founder at Alpha", "ada-alpha", "Love this, count me in")],
            POST_TWO: [_engagement("Cy Gamma", "Co-Founder & CEO at Gamma", "cy-gamma", "Interesting")],
        },
        reactions={POST_ONE: [_engagement("Bo Beta", "Engineer at Beta", "bo-beta")]},
    )


def test_keyword_scan_end_to_end_qualifies_matching_engagers() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        monitor = _seed(session)
        client = _hiring_client()
        engine = SignalEngine(session)

        result = run_monitor_scan(session, monitor, harvest_client=client, engine=engine, settings=Settings(), now=RUN_AT)

        assert result.status == "completed"
        assert result.posts_found == 2
        assert result.engagers == 3
        assert result.processed == 3
        assert result.matched == 2
        assert result.failed == 0
        assert client.searches == [("keyword", "hiring", "24h", 10)]

        leads = {lead.linkedin_url: lead for lead in session.scalars(select(SignalLead)).all()}
        assert leads["https://www.linkedin.com/in/ada-alpha"].icp_match is True
        assert leads["https://www.linkedin.com/in/cy-gamma"].icp_match is True
        assert leads["https://www.linkedin.com/in/bo-beta"].icp_match is False

        events = session.scalars(select(SignalEvent)).all()
        assert {event.keyword_matched for event in events} == {"hiring"}
        assert {event.monitor_id for event in events} == {monitor.id}
        assert {event.monitor_kind for event in events} == {"keyword"}

        assert monitor.posts_found == 2
        assert monitor.leads_found == 3
        assert monitor.last_run_at is not None


def test_rescan_after_icp_change_flips_match_without_duplicates() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        monitor = _seed(session)
        client = _hiring_client()
        engine = SignalEngine(session)
        run_monitor_scan(session, monitor, harvest_client=client, engine=engine, settings=Settings(), now=RUN_AT)

        config = session.scalar(select(SignalConfig).where(SignalConfig.workspace_id == monitor.workspace_id))
        config.excluded_companies_json = json.dumps(["Alpha"])
        session.commit()

        result = run_monitor_scan(session, monitor, harvest_client=client, engine=engine, settings=Settings(), now=RUN_AT)

        assert result.processed == 3
        assert result.matched == 1
        leads = {lead.linkedin_url: lead for lead in session.scalars(select(SignalLead)).all()}
        assert len(leads) == 3
        assert leads["https://www.linkedin.com/in/ada-alpha"].icp_match is False
        assert leads["https://www.linkedin.com/in/ada-alpha"].signal_count == 1
        assert len(session.scalars(select(SignalEvent)).all()) == 3
        assert monitor.posts_found == 4


def test_search_failure_stamps_monitor_and_reports_status() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        monitor = _seed(session)
        client = _FakeHarvestClient([], fail_search=True)

        result = run_monitor_scan(
            session,
            monitor,
            harvest_client=client,
            engine=SignalEngine(session),
            settings=Settings(),
            now=RUN_AT,
        )

        assert result.status == "search_failed"
        assert "503" in result.errors[0]
        assert monitor.last_run_at is not None
        assert session.scalars(select(SignalLead)).all() == []


def test_comment_failure_keeps_reactions_for_the_post() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        monitor = _seed(session)
        client = _hiring_client()
        client.fail_comments = True

        result = run_monitor_scan(
            session,
            monitor,
            harvest_client=client,
            engine=SignalEngine(session),
            settings=Settings(),
            now=RUN_AT,
        )

        assert result.status == "completed"
        assert result.processed == 1
        assert len(result.errors) == 2
        assert result.errors[0].startswith("comments ")


def test_company_scan_fills_display_name_and_uses_company_caps() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        monitor = _seed(session, kind="company", target="https://www.linkedin.com/company/alpha")
        client = _FakeHarvestClient(
            [HarvestPost(post_id="1", linkedin_url=POST_ONE, author_name="Alpha Inc")],
            reactions={POST_ONE: [_engagement("Bo Beta", "Engineer at Beta", "bo-beta")]},
        )

        result = run_monitor_scan(
            session,
            monitor,
            harvest_client=client,
            engine=SignalEngine(session),
            settings=Settings(scan_company_max_posts=3, harvest_company_posted_limit="week"),
            now=RUN_AT,
        )

        assert result.processed == 1
        assert monitor.display_name == "Alpha Inc"
        assert client.searches == [("company", "https://www.linkedin.com/company/alpha", "week", 3)]
        event = session.scalar(select(SignalEvent))
        assert event.monitor_kind == "company"
        assert event.keyword_matched is None


def test_profile_scan_records_post_authorship_for_the_author() -> None:
    session_factory = _build_sqlite_session_factory()
    with session_factory() as session:
        target = "https://www.linkedin.com/in/thought-leader"
        monitor = _seed(session, kind="profile", target=target)
        client = _FakeHarvestClient(
            [
                HarvestPost(
                    post_id="1",
                    linkedin_url=POST_ONE,
                    content="Five lessons from scaling outbound",
                    author_name="Tess Leader",
                )
            ],
            comments={POST_ONE: [_engagement("Ada Alpha", "Founder at Alpha", "ada-alpha", "Great insight")]},
        )

        result = run_monitor_scan(
            session,
            monitor,
            harvest_client=client,
            engine=SignalEngine(session),
            settings=Settings(),
            now=RUN_AT,
        )

        assert result.engagers == 2
        assert result.processed == 2
        author = session.scalar(select(SignalLead).where(SignalLead.linkedin_url == target))
        assert author is not None
        assert author.first_name == "Tess"
        authored = session.scalar(select(SignalEvent).where(SignalEvent.lead_id == author.id))
        assert authored.signal_type == "post_authorship"
        assert authored.snippet == "Five lessons from scaling outbound"
        assert monitor.display_name == "Tess Leader"
