"""Read-through accessors for per-workspace signal configuration."""

from __future__ import annotations

import json
from typing import Any, Callable, List, Optional

from pydantic import ValidationError
from sqlalchemy import select
from sqlalchemy.orm import Session

from magnetlab_signals.core.logger import get_logger
from magnetlab_signals.signals.contracts import ICPFilters
from magnetlab_signals.signals.errors import ConfigurationError
from magnetlab_signals.storage.models import SignalConfig


FiltersProvider = Callable[[str], ICPFilters]

logger = get_logger("magnetlab.signals.config")


def _json_list(raw: Optional[str], *, field: str) -> List[Any]:
    if not raw:
        return []
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        raise ConfigurationError(f"signal config field {field} is not valid JSON") from exc
    if not isinstance(parsed, list):
        raise ConfigurationError(f"signal config field {field} must be a JSON array")
    return parsed


def get_signal_config(session: Session, workspace_id: str) -> Optional[SignalConfig]:
    return session.scalar(select(SignalConfig).where(SignalConfig.workspace_id == workspace_id))


def filters_from_config(config: SignalConfig) -> ICPFilters:
    size_range = None
    if config.min_company_size is not None or config.max_company_size is not None:
        size_range = [config.min_company_size, config.max_company_size]
    try:
        return ICPFilters(
            job_title_keywords=_json_list(config.job_title_keywords_json, field="job_title_keywords"),
            excluded_job_titles=_json_list(config.excluded_job_titles_json, field="excluded_job_titles"),
            excluded_companies=_json_list(config.excluded_companies_json, field="excluded_companies"),
            industry_keywords=_json_list(config.industry_keywords_json, field="industry_keywords"),
            target_countries=_json_list(config.target_countries_json, field="target_countries"),
            company_size_range=size_range,
            required_seniority=config.required_seniority,
        )
    except ValidationError as exc:
        raise ConfigurationError(f"invalid ICP filters: {exc.error_count()} error(s)") from exc


def load_icp_filters(session: Session, workspace_id: str) -> ICPFilters:
    """Return the workspace's current ICP filters, read fresh on every call.

    A workspace without a config row matches everything.
    """

    config = get_signal_config(session, workspace_id)
    if config is None:
        logger.info("icp_config_missing", workspace_id=workspace_id)
        return ICPFilters()
    return filters_from_config(config)


def session_filters_provider(session: Session) -> FiltersProvider:
    def provider(workspace_id: str) -> ICPFilters:
        return load_icp_filters(session, workspace_id)

    return provider
