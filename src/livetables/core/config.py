"""
Pipeline settings.

Settings are read from a YAML file and can be overridden with environment
variables (LIVETABLES_DATA_SOURCE_PATH, LIVETABLES_STORAGE_PATH, LOG_LEVEL).
"""

import os
import re
from datetime import timedelta
from pathlib import Path
from typing import Any, Literal

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from livetables.core.errors import ConfigError

RETAIL_SCHEMA = (
    "InvoiceNo STRING, StockCode STRING, Description STRING, Quantity FLOAT, "
    "InvoiceDate STRING, UnitPrice FLOAT, CustomerID STRING, Country STRING"
)

_INTERVAL_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([a-zA-Z]+)\s*$")

_INTERVAL_UNITS = {
    "second": "seconds",
    "seconds": "seconds",
    "sec": "seconds",
    "secs": "seconds",
    "minute": "minutes",
    "minutes": "minutes",
    "min": "minutes",
    "mins": "minutes",
    "hour": "hours",
    "hours": "hours",
    "day": "days",
    "days": "days",
}


def parse_trigger_interval(interval: str | None) -> timedelta | None:
    """
    Parse a trigger interval such as "1 hour" or "30 minutes".

    Args:
        interval: Interval text, or None for continuous triggering

    Returns:
        timedelta, or None when the stage should run on every cycle

    Raises:
        ConfigError: If the interval cannot be parsed
    """
    if interval is None or str(interval).strip() == "":
        return None

    match = _INTERVAL_PATTERN.match(str(interval))
    if not match:
        raise ConfigError(f"Invalid trigger interval: '{interval}'")

    amount, unit = float(match.group(1)), match.group(2).lower()
    if unit not in _INTERVAL_UNITS:
        raise ConfigError(
            f"Invalid trigger interval unit '{unit}'. Supported: seconds, minutes, hours, days"
        )

    return timedelta(**{_INTERVAL_UNITS[unit]: amount})


class PipelineSettings(BaseModel):
    """
    Runtime configuration of the retail pipeline.

    Attributes:
        data_source_path: Directory the connector scans for raw files
        storage_path: Root directory for stage logs, state tables and manifests
        source_format: Raw file format (csv or json)
        source_schema: DDL field list applied by the connector
        read_options: Connector read options (header, delimiter)
        trigger_interval: Default cadence for every stage (None = continuous)
        trigger_intervals: Per-stage overrides of trigger_interval
        constraints_path: Optional YAML file overriding the built-in quality constraints
        max_workers: Thread pool size for concurrently runnable stages
        log_level: Logging level
        log_format: "json" or "text"
    """

    data_source_path: str = Field(..., min_length=1)
    storage_path: str = "storage"
    source_format: Literal["csv", "json"] = "csv"
    source_schema: str = RETAIL_SCHEMA
    read_options: dict[str, Any] = Field(default_factory=lambda: {"header": True})
    trigger_interval: str | None = None
    trigger_intervals: dict[str, str | None] = Field(default_factory=dict)
    constraints_path: str | None = None
    max_workers: int = Field(4, ge=1)
    log_level: str = "INFO"
    log_format: Literal["json", "text"] = "json"

    @field_validator("trigger_interval")
    @classmethod
    def check_trigger_interval(cls, v):
        parse_trigger_interval(v)
        return v

    @field_validator("trigger_intervals")
    @classmethod
    def check_trigger_intervals(cls, v):
        for interval in v.values():
            parse_trigger_interval(interval)
        return v

    def interval_for(self, stage_name: str) -> timedelta | None:
        """Return the trigger cadence of a stage."""
        if stage_name in self.trigger_intervals:
            return parse_trigger_interval(self.trigger_intervals[stage_name])
        return parse_trigger_interval(self.trigger_interval)

    class Config:
        json_schema_extra = {
            "example": {
                "data_source_path": "/databricks-datasets/online_retail/data-001/",
                "storage_path": "storage",
                "trigger_interval": "1 hour",
                "trigger_intervals": {"raw_retail": None},
            }
        }


def load_settings(config_path: str | Path | None = None, **overrides: Any) -> PipelineSettings:
    """
    Load pipeline settings from YAML, environment variables and explicit overrides.

    Precedence (highest first): overrides, environment, YAML file.

    Raises:
        ConfigError: If the file is unreadable or the settings are invalid
    """
    values: dict[str, Any] = {}

    if config_path is not None:
        path = Path(config_path)
        if not path.exists():
            raise ConfigError(f"Settings file not found: {config_path}")
        try:
            values.update(yaml.safe_load(path.read_text(encoding="utf-8")) or {})
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    env_mapping = {
        "LIVETABLES_DATA_SOURCE_PATH": "data_source_path",
        "LIVETABLES_STORAGE_PATH": "storage_path",
        "LOG_LEVEL": "log_level",
    }
    for env_name, key in env_mapping.items():
        if os.getenv(env_name):
            values[key] = os.environ[env_name]

    values.update({k: v for k, v in overrides.items() if v is not None})

    try:
        return PipelineSettings(**values)
    except ValidationError as e:
        raise ConfigError(f"Invalid pipeline settings: {e}") from e
