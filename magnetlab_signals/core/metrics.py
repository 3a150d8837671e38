"""In-process metrics collector with Prometheus text exposition."""

from __future__ import annotations

from collections import defaultdict
from threading import Lock
import time
from typing import Dict, Iterable, List, Tuple


_PREFIX = "magnetlab_signals"

_lock = Lock()
_started_at = time.time()

_http_requests_total: Dict[Tuple[str, str, str], int] = defaultdict(int)
_http_request_duration_sum: Dict[Tuple[str, str], float] = defaultdict(float)
_http_request_duration_count: Dict[Tuple[str, str], int] = defaultdict(int)
_scan_monitor_runs_total: Dict[Tuple[str, str], int] = defaultdict(int)
_engagers_processed_total: Dict[Tuple[str, str], int] = defaultdict(int)
_engagers_matched_total: Dict[Tuple[str, str], int] = defaultdict(int)
_engagers_failed_total: Dict[Tuple[str, str], int] = defaultdict(int)
_leads_pushed_total: Dict[Tuple[str, str], int] = defaultdict(int)
_leads_enriched_total: Dict[Tuple[str, str], int] = defaultdict(int)


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def _normalize_label(value: str, *, fallback: str = "unknown") -> str:
    normalized = (value or "").strip()
    return normalized or fallback


def _increment(counter: Dict[Tuple[str, str], int], key: Tuple[str, str], count: int) -> None:
    if count <= 0:
        return
    with _lock:
        counter[key] += int(count)


def record_http_request(*, method: str, path: str, status_code: int, duration_seconds: float) -> None:
    status = str(status_code)
    method_label = method.upper()
    path_label = path or "unknown"
    duration = max(duration_seconds, 0.0)

    with _lock:
        _http_requests_total[(method_label, path_label, status)] += 1
        _http_request_duration_sum[(method_label, path_label)] += duration
        _http_request_duration_count[(method_label, path_label)] += 1


def record_scan_monitor_run(*, kind: str, status: str, count: int = 1) -> None:
    _increment(_scan_monitor_runs_total, (_normalize_label(kind), _normalize_label(status)), count)


def record_engagers(*, workspace_id: str, kind: str, processed: int, matched: int, failed: int) -> None:
    key = (_normalize_label(workspace_id), _normalize_label(kind))
    _increment(_engagers_processed_total, key, processed)
    _increment(_engagers_matched_total, key, matched)
    _increment(_engagers_failed_total, key, failed)


def record_leads_pushed(*, workspace_id: str, outcome: str, count: int = 1) -> None:
    _increment(_leads_pushed_total, (_normalize_label(workspace_id), _normalize_label(outcome)), count)


def record_leads_enriched(*, workspace_id: str, status: str, count: int = 1) -> None:
    _increment(_leads_enriched_total, (_normalize_label(workspace_id), _normalize_label(status)), count)


def _render_counter(
    lines: List[str],
    *,
    name: str,
    help_text: str,
    label_names: Tuple[str, str],
    values: Iterable[Tuple[Tuple[str, str], int]],
) -> None:
    metric = f"{_PREFIX}_{name}"
    lines.extend([f"# HELP {metric} {help_text}", f"# TYPE {metric} counter"])
    first_label, second_label = label_names
    for (first, second), value in sorted(values):
        lines.append(
            (
                f'{metric}{{{first_label}="{_escape_label(first)}",'
                f'{second_label}="{_escape_label(second)}"}} {value}'
            )
        )


def render_prometheus_metrics(*, app_name: str, app_version: str, env: str) -> str:
    uptime = max(time.time() - _started_at, 0.0)

    with _lock:
        http_total = dict(_http_requests_total)
        duration_sum = dict(_http_request_duration_sum)
        duration_count = dict(_http_request_duration_count)
        scan_runs = dict(_scan_monitor_runs_total)
        processed = dict(_engagers_processed_total)
        matched = dict(_engagers_matched_total)
        failed = dict(_engagers_failed_total)
        pushed = dict(_leads_pushed_total)
        enriched = dict(_leads_enriched_total)

    lines = [
        f"# HELP {_PREFIX}_build_info Build metadata.",
        f"# TYPE {_PREFIX}_build_info gauge",
        (
            f'{_PREFIX}_build_info{{app_name="{_escape_label(app_name)}",'
            f'version="{_escape_label(app_version)}",env="{_escape_label(env)}"}} 1'
        ),
        f"# HELP {_PREFIX}_process_uptime_seconds Process uptime in seconds.",
        f"# TYPE {_PREFIX}_process_uptime_seconds gauge",
        f"{_PREFIX}_process_uptime_seconds {uptime:.6f}",
        f"# HELP {_PREFIX}_http_requests_total Total HTTP requests.",
        f"# TYPE {_PREFIX}_http_requests_total counter",
    ]

    for (method, path, status), value in sorted(http_total.items()):
        lines.append(
            (
                f'{_PREFIX}_http_requests_total{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}",status="{_escape_label(status)}"}} {value}'
            )
        )

    lines.extend(
        [
            f"# HELP {_PREFIX}_http_request_duration_seconds Request duration summary.",
            f"# TYPE {_PREFIX}_http_request_duration_seconds summary",
        ]
    )
    for (method, path), value in sorted(duration_sum.items()):
        lines.append(
            (
                f'{_PREFIX}_http_request_duration_seconds_sum{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value:.6f}'
            )
        )
    for (method, path), value in sorted(duration_count.items()):
        lines.append(
            (
                f'{_PREFIX}_http_request_duration_seconds_count{{method="{_escape_label(method)}",'
                f'path="{_escape_label(path)}"}} {value}'
            )
        )

    _render_counter(
        lines,
        name="scan_monitor_runs_total",
        help_text="Monitor scan runs by kind and status.",
        label_names=("kind", "status"),
        values=scan_runs.items(),
    )
    _render_counter(
        lines,
        name="engagers_processed_total",
        help_text="Engagers upserted and recorded.",
        label_names=("workspace_id", "kind"),
        values=processed.items(),
    )
    _render_counter(
        lines,
        name="engagers_matched_total",
        help_text="Engagers matching the workspace ICP.",
        label_names=("workspace_id", "kind"),
        values=matched.items(),
    )
    _render_counter(
        lines,
        name="engagers_failed_total",
        help_text="Engagers skipped after a failure.",
        label_names=("workspace_id", "kind"),
        values=failed.items(),
    )
    _render_counter(
        lines,
        name="leads_pushed_total",
        help_text="Leads forwarded to outreach by outcome.",
        label_names=("workspace_id", "outcome"),
        values=pushed.items(),
    )
    _render_counter(
        lines,
        name="leads_enriched_total",
        help_text="Leads enriched by resulting status.",
        label_names=("workspace_id", "status"),
        values=enriched.items(),
    )

    lines.append("")
    return "\n".join(lines)


def reset_metrics_for_tests() -> None:
    global _started_at
    with _lock:
        _http_requests_total.clear()
        _http_request_duration_sum.clear()
        _http_request_duration_count.clear()
        _scan_monitor_runs_total.clear()
        _engagers_processed_total.clear()
        _engagers_matched_total.clear()
        _engagers_failed_total.clear()
        _leads_pushed_total.clear()
        _leads_enriched_total.clear()
    _started_at = time.time()
