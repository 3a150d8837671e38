"""Keyword, company and profile monitor scans.

A scan searches recent posts for one monitor, expands each post into its
commenters and reactors, and hands the batch to the signal engine.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol

from sqlalchemy.orm import Session

from magnetlab_signals.core.config import Settings
from magnetlab_signals.core.logger import get_logger
from magnetlab_signals.core.metrics import record_scan_monitor_run
from magnetlab_signals.signals.contracts import Engager, HarvestEngagement, HarvestPost, HarvestProfile
from magnetlab_signals.signals.engine import SignalEngine
from magnetlab_signals.signals.errors import TransientNetworkError
from magnetlab_signals.storage.models import SignalMonitor


logger = get_logger("magnetlab.orchestrator.scans")


class PostSource(Protocol):
    def search_posts_by_keyword(self, keyword: str, *, posted_limit: str = ..., limit: int = ...) -> List[HarvestPost]: ...

    def search_posts_by_company(self, company_url: str, *, posted_limit: str = ..., limit: int = ...) -> List[HarvestPost]: ...

    def search_posts_by_profile(self, profile_url: str, *, posted_limit: str = ..., limit: int = ...) -> List[HarvestPost]: ...

    def get_post_comments(self, post_url: str) -> List[HarvestEngagement]: ...

    def get_post_reactions(self, post_url: str) -> List[HarvestEngagement]: ...


@dataclass(frozen=True)
class MonitorScanResult:
    monitor_id: str
    workspace_id: str
    kind: str
    status: str
    posts_found: int = 0
    engagers: int = 0
    processed: int = 0
    matched: int = 0
    failed: int = 0
    errors: List[str] = field(default_factory=list)

    def as_details(self) -> Dict[str, Any]:
        return {
            "monitor_id": self.monitor_id,
            "kind": self.kind,
            "status": self.status,
            "posts_found": self.posts_found,
            "engagers": self.engagers,
            "processed": self.processed,
            "matched": self.matched,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def _search_posts(client: PostSource, monitor: SignalMonitor, settings: Settings) -> List[HarvestPost]:
    if monitor.kind == "keyword":
        return client.search_posts_by_keyword(
            monitor.target_value,
            posted_limit=settings.harvest_keyword_posted_limit,
            limit=settings.scan_keyword_max_posts,
        )
    if monitor.kind == "company":
        return client.search_posts_by_company(
            monitor.target_value,
            posted_limit=settings.harvest_company_posted_limit,
            limit=settings.scan_company_max_posts,
        )
    if monitor.kind == "profile":
        return client.search_posts_by_profile(
            monitor.target_value,
            posted_limit=settings.harvest_profile_posted_limit,
            limit=settings.scan_profile_max_posts,
        )
    raise ValueError(f"unsupported monitor kind: {monitor.kind}")


def _post_engagers(
    client: PostSource,
    monitor: SignalMonitor,
    post: HarvestPost,
    errors: List[str],
) -> List[Engager]:
    post_url = post.linkedin_url
    if not post_url:
        return []
    keyword = monitor.target_value if monitor.kind == "keyword" else None
    engagers: List[Engager] = []

    if monitor.kind == "profile":
        author = post.author or HarvestProfile(full_name=post.author_name)
        if author.linkedin_url is None:
            author = author.model_copy(update={"linkedin_url": monitor.target_value})
        engagers.append(
            Engager(
                profile=author,
                signal_type="post_authorship",
                occurred_at=post.posted_at,
                snippet=(post.content or "")[:500] or None,
                source_url=post_url,
            )
        )

    try:
        for comment in client.get_post_comments(post_url):
            engagers.append(
                Engager(
                    profile=comment.profile,
                    signal_type="comment",
                    occurred_at=comment.occurred_at,
                    snippet=comment.text,
                    source_url=post_url,
                    keyword_matched=keyword,
                )
            )
    except TransientNetworkError as exc:
        errors.append(f"comments {post_url}: {exc}")
        logger.warning("signal_scan_comments_failed", monitor_id=monitor.id, post_url=post_url, error=str(exc))

    try:
        for reaction in client.get_post_reactions(post_url):
            engagers.append(
                Engager(
                    profile=reaction.profile,
                    signal_type="reaction",
                    occurred_at=reaction.occurred_at,
                    source_url=post_url,
                    keyword_matched=keyword,
                )
            )
    except TransientNetworkError as exc:
        errors.append(f"reactions {post_url}: {exc}")
        logger.warning("signal_scan_reactions_failed", monitor_id=monitor.id, post_url=post_url, error=str(exc))

    return engagers


def _finish_monitor(
    session: Session,
    monitor: SignalMonitor,
    *,
    posts_found: int,
    leads_found: int,
    now: datetime,
) -> None:
    monitor.last_run_at = now
    monitor.posts_found = (monitor.posts_found or 0) + posts_found
    monitor.leads_found = (monitor.leads_found or 0) + leads_found
    monitor.updated_at = now
    session.commit()


def run_monitor_scan(
    session: Session,
    monitor: SignalMonitor,
    *,
    harvest_client: PostSource,
    engine: SignalEngine,
    settings: Settings,
    now: Optional[datetime] = None,
) -> MonitorScanResult:
    """Scan one monitor end to end and stamp its run bookkeeping.

    A failed post search still stamps ``last_run_at`` so a broken target waits
    for its next cadence instead of being retried every tick.
    """

    run_at = now or datetime.now(timezone.utc)
    workspace_id = monitor.workspace_id
    monitor_id = monitor.id
    kind = monitor.kind

    try:
        posts = _search_posts(harvest_client, monitor, settings)
    except TransientNetworkError as exc:
        logger.warning("signal_scan_search_failed", workspace_id=workspace_id, monitor_id=monitor_id, kind=kind, error=str(exc))
        _finish_monitor(session, monitor, posts_found=0, leads_found=0, now=run_at)
        record_scan_monitor_run(kind=kind, status="search_failed")
        return MonitorScanResult(
            monitor_id=monitor_id,
            workspace_id=workspace_id,
            kind=kind,
            status="search_failed",
            errors=[str(exc)],
        )

    if kind in ("company", "profile") and not monitor.display_name and posts:
        display_name = posts[0].author_name
        if display_name:
            monitor.display_name = display_name[:255]
            session.commit()

    errors: List[str] = []
    engagers: List[Engager] = []
    for post in posts:
        engagers.extend(_post_engagers(harvest_client, monitor, post, errors))

    result = engine.process_engagers(workspace_id, monitor_id, engagers, monitor_kind=kind)
    errors.extend(result.errors)

    _finish_monitor(session, monitor, posts_found=len(posts), leads_found=result.processed, now=run_at)
    record_scan_monitor_run(kind=kind, status="completed")
    logger.info(
        "signal_scan_monitor_completed",
        workspace_id=workspace_id,
        monitor_id=monitor_id,
        kind=kind,
        posts_found=len(posts),
        engagers=len(engagers),
        processed=result.processed,
        matched=result.matched,
        failed=result.failed,
    )
    return MonitorScanResult(
        monitor_id=monitor_id,
        workspace_id=workspace_id,
        kind=kind,
        status="completed",
        posts_found=len(posts),
        engagers=len(engagers),
        processed=result.processed,
        matched=result.matched,
        failed=result.failed,
        errors=errors,
    )
