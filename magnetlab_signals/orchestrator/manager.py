"""CLI entrypoint to run one signal job (cron friendly)."""

from __future__ import annotations

from dataclasses import asdict
import argparse
import json
from typing import Any, Dict, List, Optional, Sequence

from magnetlab_signals.core.config import get_settings
from magnetlab_signals.core.logger import configure_logging
from magnetlab_signals.core.observability import init_sentry
from magnetlab_signals.integrations.harvest.client import get_harvest_client
from magnetlab_signals.integrations.heyreach.client import get_heyreach_client
from magnetlab_signals.orchestrator.locks import MonitorLockManager
from magnetlab_signals.orchestrator.scheduler import JobRunResult, ScanRunResult, ScanScheduler
from magnetlab_signals.storage.db import get_session_factory, load_models
from magnetlab_signals.storage.redis_client import get_client as get_redis_client


JOB_CHOICES = ("keyword-scan", "company-scan", "profile-scan", "enrich", "push")


def build_scheduler() -> ScanScheduler:
    settings = get_settings()
    load_models()
    return ScanScheduler(
        session_factory=get_session_factory(),
        lock_manager=MonitorLockManager(
            get_redis_client(),
            ttl_seconds=settings.scan_monitor_lock_ttl_seconds,
        ),
        harvest_client=get_harvest_client(),
        outreach_client=get_heyreach_client(),
        settings=settings,
    )


def run_job(
    job: str,
    *,
    scheduler: ScanScheduler | None = None,
    workspace_ids: Optional[List[str]] = None,
) -> ScanRunResult | JobRunResult:
    if job not in JOB_CHOICES:
        raise ValueError(f"unknown job: {job}")
    active = scheduler or build_scheduler()
    if job.endswith("-scan"):
        return active.run_scan(job.removesuffix("-scan"), workspace_ids=workspace_ids)
    if job == "enrich":
        return active.run_enrich(workspace_ids=workspace_ids)
    return active.run_push(workspace_ids=workspace_ids)


def _result_to_dict(result: ScanRunResult | JobRunResult) -> Dict[str, Any]:
    payload = asdict(result)
    payload["runs"] = [asdict(run) for run in result.runs]
    return payload


def main(argv: Sequence[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="magnetlab-signals", description="Run one MagnetLab signal job.")
    parser.add_argument("job", choices=JOB_CHOICES, help="Job to run once.")
    parser.add_argument(
        "--workspace",
        action="append",
        dest="workspace_ids",
        default=None,
        help="Restrict the run to this workspace id (repeatable).",
    )
    args = parser.parse_args(argv)

    configure_logging()
    init_sentry()
    result = run_job(args.job, workspace_ids=args.workspace_ids)
    print(json.dumps(_result_to_dict(result), ensure_ascii=True, separators=(",", ":"), sort_keys=True, default=str))
    return 1 if result.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
