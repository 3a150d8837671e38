from __future__ import annotations

import json

import pytest

import magnetlab_signals.orchestrator.manager as manager_module
from magnetlab_signals.orchestrator.scheduler import JobRunResult, RunSummary, ScanRunResult


class _FakeScheduler:
    def __init__(self, *, failed: int = 0) -> None:
        self.failed = failed
        self.calls: list[tuple[str, object]] = []

    def run_scan(self, kind: str, *, workspace_ids=None) -> ScanRunResult:
        self.calls.append((f"scan:{kind}", workspace_ids))
        return ScanRunResult(kind, "completed", 1, 1 - self.failed, 0, 0, self.failed, [RunSummary("ws-1", "executed", "mon-1")])

    def run_enrich(self, *, workspace_ids=None) -> JobRunResult:
        self.calls.append(("enrich", workspace_ids))
        return JobRunResult("enrich", 1, 1, 0, self.failed, [])

    def run_push(self, *, workspace_ids=None) -> JobRunResult:
        self.calls.append(("push", workspace_ids))
        return JobRunResult("push", 1, 1, 0, self.failed, [])


def test_run_job_dispatches_by_name() -> None:
    scheduler = _FakeScheduler()

    manager_module.run_job("company-scan", scheduler=scheduler)
    manager_module.run_job("enrich", scheduler=scheduler, workspace_ids=["ws-1"])
    manager_module.run_job("push", scheduler=scheduler)

    assert scheduler.calls == [("scan:company", None), ("enrich", ["ws-1"]), ("push", None)]
    with pytest.raises(ValueError):
        manager_module.run_job("hashtag-scan", scheduler=scheduler)


def test_main_prints_json_summary_and_exit_code(monkeypatch, capsys) -> None:
    scheduler = _FakeScheduler()
    monkeypatch.setattr(manager_module, "build_scheduler", lambda: scheduler)

    exit_code = manager_module.main(["keyword-scan", "--workspace", "ws-1", "--workspace", "ws-2"])

    assert exit_code == 0
    assert scheduler.calls == [("scan:keyword", ["ws-1", "ws-2"])]
    payload = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert payload["kind"] == "keyword"
    assert payload["runs"][0]["monitor_id"] == "mon-1"


def test_main_returns_non_zero_when_a_run_failed(monkeypatch, capsys) -> None:
    monkeypatch.setattr(manager_module, "build_scheduler", lambda: _FakeScheduler(failed=1))

    assert manager_module.main(["push"]) == 1
    capsys.readouterr()
