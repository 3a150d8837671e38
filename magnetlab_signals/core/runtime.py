"""Runtime configuration loader (workspace selection and disabled scans)."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from magnetlab_signals.core.config import get_settings


SCAN_KINDS = ("keyword", "company", "profile")


class RuntimeConfig(BaseModel):
    single_workspace_mode: bool = False
    primary_workspace_id: Optional[str] = Field(default=None)
    disabled_scan_kinds: List[str] = Field(default_factory=list)

    @field_validator("primary_workspace_id", mode="before")
    @classmethod
    def _normalize_primary_workspace_id(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        normalized = str(value).strip()
        return normalized or None

    @field_validator("primary_workspace_id")
    @classmethod
    def _validate_single_workspace_requirements(cls, value: Optional[str], info) -> Optional[str]:
        single_mode = bool(info.data.get("single_workspace_mode"))
        if single_mode and not value:
            raise ValueError("primary_workspace_id is required when single_workspace_mode=true")
        return value

    @field_validator("disabled_scan_kinds", mode="before")
    @classmethod
    def _normalize_disabled_scan_kinds(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        normalized = [str(item).strip().lower() for item in value if str(item).strip()]
        unknown = sorted(set(normalized) - set(SCAN_KINDS))
        if unknown:
            raise ValueError(f"unknown scan kinds: {', '.join(unknown)}")
        return normalized

    def scan_enabled(self, kind: str) -> bool:
        return kind.strip().lower() not in self.disabled_scan_kinds


def _resolve_runtime_path() -> Path:
    settings = get_settings()
    configured = Path(settings.runtime_file_path)
    if configured.is_absolute():
        return configured
    return Path.cwd() / configured


@lru_cache(maxsize=1)
def load_runtime_config() -> RuntimeConfig:
    path = _resolve_runtime_path()
    if not path.exists():
        return RuntimeConfig()

    content = path.read_text(encoding="utf-8")
    parsed = yaml.safe_load(content) or {}
    if not isinstance(parsed, dict):
        raise ValueError("Runtime config must be a YAML object")

    data: Dict[str, Any] = dict(parsed)
    return RuntimeConfig.model_validate(data)


def reset_runtime_config_cache() -> None:
    load_runtime_config.cache_clear()
