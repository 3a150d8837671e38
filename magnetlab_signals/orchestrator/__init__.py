"""Orchestration primitives: monitor locks, scans, push, enrichment and the job scheduler."""

from magnetlab_signals.orchestrator.locks import MonitorLockManager
from magnetlab_signals.orchestrator.scans import MonitorScanResult, run_monitor_scan
from magnetlab_signals.orchestrator.scheduler import JobRunResult, RunSummary, ScanRunResult, ScanScheduler

__all__ = [
    "JobRunResult",
    "MonitorLockManager",
    "MonitorScanResult",
    "RunSummary",
    "ScanRunResult",
    "ScanScheduler",
    "run_monitor_scan",
]
