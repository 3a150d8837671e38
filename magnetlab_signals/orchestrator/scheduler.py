"""Batch jobs: per-kind monitor scans, lead enrichment and push-to-outbound.

Each job is a stateless run suited to cron. Scans take one Redis lock per
monitor; a held lock means the monitor is already running elsewhere.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
import json
import time
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from redis.exceptions import RedisError
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from magnetlab_signals.core.config import Settings, get_settings
from magnetlab_signals.core.logger import bind_workspace_context, get_logger
from magnetlab_signals.core.metrics import record_scan_monitor_run
from magnetlab_signals.core.observability import capture_exception, sentry_scope
from magnetlab_signals.core.runtime import SCAN_KINDS, load_runtime_config
from magnetlab_signals.integrations.heyreach.client import get_heyreach_client
from magnetlab_signals.orchestrator.enrich import ProfileSource, enrich_new_leads
from magnetlab_signals.orchestrator.locks import MonitorLockManager
from magnetlab_signals.orchestrator.push import OutreachClient, push_qualified_leads
from magnetlab_signals.orchestrator.scans import PostSource, run_monitor_scan
from magnetlab_signals.signals.config_source import get_signal_config, session_filters_provider
from magnetlab_signals.signals.engine import SignalEngine
from magnetlab_signals.signals.key_locks import KeyedLocks
from magnetlab_signals.signals.sentiment import KeywordSentimentClassifier, NullSentimentClassifier
from magnetlab_signals.storage.models import SignalMonitor, Workspace, WorkspaceEvent
from magnetlab_signals.storage.tenant import reset_workspace_context, set_workspace_context


ACTIVE_WORKSPACE_STATUSES = ("active", "trialing")
EngineFactory = Callable[[Session, str], SignalEngine]

logger = get_logger("magnetlab.orchestrator.scheduler")


def _json(payload: Dict[str, Any]) -> str:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=True, sort_keys=True, default=str)


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None:
        return None
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class RunSummary:
    workspace_id: str
    status: str
    monitor_id: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class ScanRunResult:
    kind: str
    status: str
    due: int
    executed: int
    skipped_locked: int
    skipped_deadline: int
    failed: int
    runs: List[RunSummary]


@dataclass(frozen=True)
class JobRunResult:
    job: str
    workspaces: int
    executed: int
    skipped: int
    failed: int
    runs: List[RunSummary]


@dataclass(frozen=True)
class _DueMonitor:
    monitor_id: str
    workspace_id: str
    last_run_at: Optional[datetime]


class ScanScheduler:
    """Run scans, enrichment and pushes across workspaces with lock and DB context isolation."""

    def __init__(
        self,
        *,
        session_factory: sessionmaker,
        lock_manager: MonitorLockManager,
        harvest_client: PostSource | ProfileSource,
        outreach_client: OutreachClient | None = None,
        settings: Settings | None = None,
        engine_factory: EngineFactory | None = None,
        key_locks: KeyedLocks | None = None,
        clock: Callable[[], datetime] | None = None,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self._session_factory = session_factory
        self._lock_manager = lock_manager
        self._harvest_client = harvest_client
        self._outreach_client = outreach_client
        self._settings = settings or get_settings()
        self._key_locks = key_locks or KeyedLocks()
        self._engine_factory = engine_factory or self._default_engine
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._monotonic = monotonic

    def _default_engine(self, session: Session, workspace_id: str) -> SignalEngine:
        config = get_signal_config(session, workspace_id)
        sentiment_enabled = config is None or config.sentiment_scoring_enabled
        return SignalEngine(
            session,
            filters_provider=session_filters_provider(session),
            sentiment_classifier=KeywordSentimentClassifier() if sentiment_enabled else NullSentimentClassifier(),
            key_locks=self._key_locks,
        )

    def list_active_workspace_ids(self) -> List[str]:
        runtime = load_runtime_config()
        if runtime.single_workspace_mode:
            if not runtime.primary_workspace_id:
                logger.error("single_workspace_mode_enabled_without_primary_workspace")
                return []
            return [runtime.primary_workspace_id]

        with self._session_factory() as session:
            statement = (
                select(Workspace.id)
                .where(Workspace.subscription_status.in_(ACTIVE_WORKSPACE_STATUSES))
                .order_by(Workspace.created_at.asc())
            )
            return [str(workspace_id) for workspace_id in session.scalars(statement).all()]

    def list_due_monitors(self, kind: str, *, workspace_ids: Iterable[str] | None = None) -> List[_DueMonitor]:
        """Active monitors of ``kind`` whose cadence has elapsed, least recently run first."""

        selected = list(workspace_ids) if workspace_ids is not None else self.list_active_workspace_ids()
        if not selected:
            return []
        now = _as_utc(self._clock())
        with self._session_factory() as session:
            monitors = session.scalars(
                select(SignalMonitor).where(
                    SignalMonitor.kind == kind,
                    SignalMonitor.is_active.is_(True),
                    SignalMonitor.workspace_id.in_(selected),
                )
            ).all()
            due: List[_DueMonitor] = []
            for monitor in monitors:
                last_run_at = _as_utc(monitor.last_run_at)
                cadence = timedelta(minutes=max(1, monitor.cadence_minutes or 1))
                if last_run_at is None or last_run_at + cadence <= now:
                    due.append(_DueMonitor(monitor.id, monitor.workspace_id, last_run_at))

        oldest = datetime.min.replace(tzinfo=timezone.utc)
        due.sort(key=lambda item: item.last_run_at or oldest)
        return due[: self._settings.scan_max_monitors_per_run]

    def run_scan(self, kind: str, *, workspace_ids: Iterable[str] | None = None) -> ScanRunResult:
        normalized_kind = kind.strip().lower()
        if normalized_kind not in SCAN_KINDS:
            raise ValueError(f"unsupported scan kind: {kind}")

        if not load_runtime_config().scan_enabled(normalized_kind):
            logger.info("signal_scan_disabled", kind=normalized_kind)
            return ScanRunResult(normalized_kind, "disabled", 0, 0, 0, 0, 0, [])

        due = self.list_due_monitors(normalized_kind, workspace_ids=workspace_ids)
        started = self._monotonic()

        def run_one(item: _DueMonitor) -> RunSummary:
            return self._run_due_monitor(normalized_kind, item, started)

        workers = max(1, self._settings.scan_max_workers)
        if workers > 1 and len(due) > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=f"scan-{normalized_kind}") as pool:
                runs = list(pool.map(run_one, due))
        else:
            runs = [run_one(item) for item in due]

        statuses = ("executed", "skipped_locked", "skipped_deadline", "failed")
        counts = {status: sum(1 for run in runs if run.status == status) for status in statuses}
        logger.info("signal_scan_run_completed", kind=normalized_kind, due=len(due), **counts)
        return ScanRunResult(
            kind=normalized_kind,
            status="completed",
            due=len(due),
            executed=counts["executed"],
            skipped_locked=counts["skipped_locked"],
            skipped_deadline=counts["skipped_deadline"],
            failed=counts["failed"],
            runs=runs,
        )

    def _deadline_exceeded(self, started: float) -> bool:
        return self._monotonic() - started >= self._settings.scan_max_run_seconds

    def _run_due_monitor(self, kind: str, item: _DueMonitor, started: float) -> RunSummary:
        workspace_id = item.workspace_id
        monitor_id = item.monitor_id

        if self._deadline_exceeded(started):
            details = {"reason": "run_deadline_exceeded", "kind": kind}
            record_scan_monitor_run(kind=kind, status="skipped_deadline")
            self._record_event(workspace_id, "signal_scan_monitor_run", monitor_id=monitor_id, status="skipped_deadline", details=details)
            logger.warning("signal_scan_skipped_deadline", workspace_id=workspace_id, monitor_id=monitor_id)
            return RunSummary(workspace_id, "skipped_deadline", monitor_id, details)

        try:
            lock = self._lock_manager.acquire(workspace_id, monitor_id)
        except RedisError as exc:
            details = {"error": f"monitor lock unavailable: {exc}", "kind": kind}
            record_scan_monitor_run(kind=kind, status="failed")
            self._record_event(workspace_id, "signal_scan_monitor_run", monitor_id=monitor_id, status="failed", details=details)
            capture_exception(exc)
            logger.error("signal_scan_lock_failed", workspace_id=workspace_id, monitor_id=monitor_id, error=str(exc))
            return RunSummary(workspace_id, "failed", monitor_id, details)

        if lock is None:
            details = {"reason": "monitor_lock_exists", "kind": kind}
            record_scan_monitor_run(kind=kind, status="skipped_locked")
            self._record_event(workspace_id, "signal_scan_monitor_run", monitor_id=monitor_id, status="skipped_locked", details=details)
            logger.info("signal_scan_skipped_locked", workspace_id=workspace_id, monitor_id=monitor_id)
            return RunSummary(workspace_id, "skipped_locked", monitor_id, details)

        try:
            with sentry_scope(workspace_id=workspace_id, monitor_id=monitor_id):
                bind_workspace_context(workspace_id)
                details = self._scan_monitor(workspace_id, monitor_id)
                status = "executed" if details.get("status") != "missing" else "skipped_missing"
                self._record_event(workspace_id, "signal_scan_monitor_run", monitor_id=monitor_id, status=status, details=details)
                return RunSummary(workspace_id, status, monitor_id, details)
        except Exception as exc:
            details = {"error": str(exc), "kind": kind}
            record_scan_monitor_run(kind=kind, status="failed")
            self._record_event(workspace_id, "signal_scan_monitor_run", monitor_id=monitor_id, status="failed", details=details)
            capture_exception(exc)
            logger.error("signal_scan_monitor_failed", workspace_id=workspace_id, monitor_id=monitor_id, error=str(exc))
            return RunSummary(workspace_id, "failed", monitor_id, details)
        finally:
            try:
                lock.release()
            except RedisError as exc:
                # The lock TTL still frees the monitor.
                logger.warning("signal_scan_lock_release_failed", workspace_id=workspace_id, monitor_id=monitor_id, error=str(exc))
            bind_workspace_context(None)

    def _scan_monitor(self, workspace_id: str, monitor_id: str) -> Dict[str, Any]:
        with self._session_factory() as session:
            set_workspace_context(session, workspace_id)
            try:
                monitor = session.get(SignalMonitor, monitor_id)
                if monitor is None or not monitor.is_active:
                    return {"status": "missing"}
                engine = self._engine_factory(session, workspace_id)
                result = run_monitor_scan(
                    session,
                    monitor,
                    harvest_client=self._harvest_client,
                    engine=engine,
                    settings=self._settings,
                    now=_as_utc(self._clock()),
                )
                return result.as_details()
            finally:
                reset_workspace_context(session)

    def run_push(self, *, workspace_ids: Iterable[str] | None = None) -> JobRunResult:
        return self._run_workspace_job("push", self._push_workspace, workspace_ids)

    def run_enrich(self, *, workspace_ids: Iterable[str] | None = None) -> JobRunResult:
        return self._run_workspace_job("enrich", self._enrich_workspace, workspace_ids)

    def _push_workspace(self, session: Session, workspace_id: str) -> Tuple[str, Dict[str, Any]]:
        config = get_signal_config(session, workspace_id)
        if config is None or not config.auto_push_enabled:
            return "skipped", {"reason": "auto_push_disabled"}
        if not config.outbound_campaign_id:
            return "skipped", {"reason": "campaign_not_configured"}
        if self._outreach_client is None:
            self._outreach_client = get_heyreach_client()
        result = push_qualified_leads(
            session,
            workspace_id,
            self._outreach_client,
            config.outbound_campaign_id,
            self._settings.push_batch_size,
        )
        status = "failed" if result.error and not result.accepted else "executed"
        return status, result.as_details()

    def _enrich_workspace(self, session: Session, workspace_id: str) -> Tuple[str, Dict[str, Any]]:
        engine = self._engine_factory(session, workspace_id)
        result = enrich_new_leads(
            session,
            workspace_id,
            self._harvest_client,
            engine,
            self._settings.enrich_batch_size,
        )
        status = "skipped" if result.status == "disabled" else "executed"
        return status, result.as_details()

    def _run_workspace_job(
        self,
        job: str,
        runner: Callable[[Session, str], Tuple[str, Dict[str, Any]]],
        workspace_ids: Iterable[str] | None,
    ) -> JobRunResult:
        selected = list(workspace_ids) if workspace_ids is not None else self.list_active_workspace_ids()
        runs: List[RunSummary] = []
        event_type = f"signal_{job}_run"

        for workspace_id in selected:
            try:
                with sentry_scope(workspace_id=workspace_id):
                    bind_workspace_context(workspace_id)
                    with self._session_factory() as session:
                        set_workspace_context(session, workspace_id)
                        try:
                            status, details = runner(session, workspace_id)
                        finally:
                            reset_workspace_context(session)
            except Exception as exc:
                status, details = "failed", {"error": str(exc)}
                capture_exception(exc)
                logger.error(f"signal_{job}_workspace_failed", workspace_id=workspace_id, error=str(exc))
            finally:
                bind_workspace_context(None)

            runs.append(RunSummary(workspace_id, status, None, details))
            self._record_event(workspace_id, event_type, status=status, details=details)

        executed = sum(1 for run in runs if run.status == "executed")
        skipped = sum(1 for run in runs if run.status == "skipped")
        failed = sum(1 for run in runs if run.status == "failed")
        logger.info(f"signal_{job}_run_completed", workspaces=len(selected), executed=executed, skipped=skipped, failed=failed)
        return JobRunResult(job=job, workspaces=len(selected), executed=executed, skipped=skipped, failed=failed, runs=runs)

    def _record_event(
        self,
        workspace_id: str,
        event_type: str,
        *,
        status: str,
        details: Mapping[str, Any],
        monitor_id: Optional[str] = None,
    ) -> None:
        payload: Dict[str, Any] = {"status": status, "details": dict(details)}
        if monitor_id is not None:
            payload["monitor_id"] = monitor_id
        try:
            with self._session_factory() as session:
                set_workspace_context(session, workspace_id)
                try:
                    session.add(
                        WorkspaceEvent(
                            workspace_id=workspace_id,
                            event_type=event_type,
                            payload_json=_json(payload),
                        )
                    )
                    session.commit()
                finally:
                    reset_workspace_context(session)
        except SQLAlchemyError as exc:
            capture_exception(exc)
            logger.error(
                "signal_run_event_record_failed",
                workspace_id=workspace_id,
                event_type=event_type,
                status=status,
                error=str(exc),
            )
