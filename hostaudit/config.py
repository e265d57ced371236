"""
Configuration for the audit engine.

Values come from (highest priority first): constructor arguments,
HOSTAUDIT_* environment variables, the .env file, defaults.
"""

import os
from pathlib import Path
from typing import Dict

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.models import Severity


def _default_concurrency() -> int:
    # Checks are I/O-bound: the pool is larger than the core count
    return max(8, 2 * (os.cpu_count() or 1))


class AuditConfig(BaseSettings):
    """Конфигурация системы аудита."""

    model_config = SettingsConfigDict(env_prefix="HOSTAUDIT_", env_file=".env", extra="ignore")

    # === Execution Settings ===
    concurrency_limit: int = Field(default_factory=_default_concurrency, ge=1)
    per_check_timeout_seconds: float = Field(default=10.0, gt=0)

    # Severity given to checks that could not be evaluated
    unevaluated_severity: Severity = Severity.LOW

    # === Check Settings ===
    # Oldest supported build per Windows release ("10", "11")
    windows_min_builds: Dict[str, int] = Field(default_factory=lambda: {"10": 19045, "11": 22631})

    # === Report Settings ===
    report_output_dir: Path = Path("audit_reports")
    generate_markdown: bool = True
    generate_json: bool = True

    @field_validator("unevaluated_severity", mode="before")
    @classmethod
    def _parse_severity(cls, value):
        return Severity.parse(value)


def get_default_config() -> AuditConfig:
    """Получить конфигурацию по умолчанию."""
    return AuditConfig()
