"""Configuration loading and validation.

Configuration is a YAML file; ``${VAR}`` references are expanded from the
environment before validation. Settings missing from the file fall back to
``BLOBTAIL_``-prefixed environment variables.

Example YAML (insights.yaml):
    container: insights-logs-appservicehttplogs
    sincedb: blobtailsincedb
    path_prefix:
      - "resourceId=/SUBSCRIPTIONS/$RANGE_0_TO_3$/y=$DATE$"
    ignore_older: 86400
    sleep_time: 10
    start_position: end

    store:
      type: azure
      connection_string: ${AZURE_STORAGE_CONNECTION_STRING}

    cursor_store:
      type: azure_table
      connection_string: ${AZURE_STATE_CONNECTION_STRING}

    codec:
      name: json_lines

Usage:
    from blobtail.lib.config import load_config
    config = load_config("./insights.yaml")
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from blobtail.lib.env import expand_options
from blobtail.lib.errors import ConfigurationError
from blobtail.lib.listing import DEFAULT_IGNORE_OLDER
from blobtail.lib.prefixes import PrefixTemplate, parse_templates
from blobtail.lib.reconcile import StartPosition

logger = logging.getLogger(__name__)

__all__ = [
    "CodecConfig",
    "CursorStoreConfig",
    "IngestConfig",
    "IngestSettings",
    "LoggingConfig",
    "StoreConfig",
    "load_config",
    "parse_config",
]

TABLE_NAME_PATTERN = re.compile(r"^[A-Za-z][A-Za-z0-9]{2,62}$")


class StoreConfig(BaseModel):
    """Object store section; extra keys are backend options."""

    model_config = ConfigDict(extra="allow")

    type: str = Field(default="azure", description="Backend: azure, s3 or local")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        valid = ["azure", "s3", "local"]
        if v.lower() not in valid:
            raise ValueError(f"store.type must be one of: {valid}")
        return v.lower()

    def options(self) -> Dict[str, Any]:
        return self.model_dump()


class CursorStoreConfig(BaseModel):
    """Cursor table section; extra keys are backend options."""

    model_config = ConfigDict(extra="allow")

    type: str = Field(default="azure_table", description="Backend: azure_table or local")

    @field_validator("type")
    @classmethod
    def validate_type(cls, v: str) -> str:
        valid = ["azure_table", "local"]
        if v.lower() not in valid:
            raise ValueError(f"cursor_store.type must be one of: {valid}")
        return v.lower()

    def options(self) -> Dict[str, Any]:
        return self.model_dump()


class CodecConfig(BaseModel):
    """Codec section."""

    name: str = Field(default="line", description="Codec name: line or json_lines")
    delimiter: str = Field(default="\n", min_length=1)
    charset: str = "utf-8"


class LoggingConfig(BaseModel):
    """Logging section.

    Example YAML:
        logging:
          level: INFO
          format: json          # 'json' for log aggregation, 'console' for humans
          file: ./logs/blobtail.log
    """

    level: str = Field(default="INFO", description="Log level (DEBUG, INFO, WARNING, ERROR)")
    format: str = Field(default="console", description="Output format: 'json' or 'console'")
    file: Optional[str] = Field(default=None, description="Optional log file path")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"level must be one of: {valid_levels}")
        return v.upper()

    @field_validator("format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        valid_formats = ["json", "console", "text"]
        if v.lower() not in valid_formats:
            raise ValueError(f"format must be one of: {valid_formats}")
        return v.lower()


class IngestConfig(BaseModel):
    """Validated ingester configuration."""

    container: str = Field(min_length=1, description="Container to watch")
    sincedb: str = Field(description="Cursor table name")
    path_prefix: List[str] = Field(default_factory=lambda: [""])
    ignore_older: int = Field(default=DEFAULT_IGNORE_OLDER, ge=0, description="Age cutoff in seconds")
    sleep_time: float = Field(default=10.0, ge=0, description="Seconds between poll cycles")
    start_position: StartPosition = StartPosition.END
    add_field: Dict[str, str] = Field(default_factory=dict)
    tags: List[str] = Field(default_factory=list)
    store: StoreConfig = Field(default_factory=StoreConfig)
    cursor_store: CursorStoreConfig = Field(default_factory=CursorStoreConfig)
    codec: CodecConfig = Field(default_factory=CodecConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @field_validator("sincedb")
    @classmethod
    def validate_sincedb(cls, v: str) -> str:
        if not TABLE_NAME_PATTERN.match(v):
            raise ValueError(
                "sincedb must be 3-63 alphanumeric characters starting with a letter"
            )
        return v

    @field_validator("path_prefix")
    @classmethod
    def validate_path_prefix(cls, v: List[str]) -> List[str]:
        prefixes = v or [""]
        try:
            parse_templates(prefixes)
        except ConfigurationError as exc:
            raise ValueError(str(exc)) from exc
        return prefixes

    @field_validator("start_position", mode="before")
    @classmethod
    def validate_start_position(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.lower()
        return v

    @property
    def templates(self) -> List[PrefixTemplate]:
        return parse_templates(self.path_prefix)


class IngestSettings(BaseSettings):
    """Environment-based defaults using pydantic-settings.

    Automatically loads from environment variables with BLOBTAIL_ prefix.

    Example:
        >>> # BLOBTAIL_CONTAINER=insights-logs
        >>> # BLOBTAIL_SINCEDB=blobtailsincedb
        >>> IngestSettings().container
        'insights-logs'
    """

    container: Optional[str] = None
    sincedb: Optional[str] = None
    sleep_time: Optional[float] = None
    ignore_older: Optional[int] = None
    start_position: Optional[str] = None

    model_config = SettingsConfigDict(
        env_prefix="BLOBTAIL_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )


def parse_config(raw: Dict[str, Any]) -> IngestConfig:
    """Validate a configuration dictionary.

    Environment variables are expanded first, then ``BLOBTAIL_`` settings
    fill in any top-level keys the dictionary does not set.

    Raises:
        ConfigurationError: Listing every validation problem found
    """
    defaults = IngestSettings().model_dump(exclude_none=True)
    merged = {**defaults, **expand_options(raw or {})}

    try:
        return IngestConfig.model_validate(merged)
    except ValidationError as exc:
        issues = [
            f"{'.'.join(str(part) for part in error['loc']) or '<root>'}: {error['msg']}"
            for error in exc.errors()
        ]
        issue_lines = "\n".join(f"  - {issue}" for issue in issues)
        raise ConfigurationError(
            f"Invalid configuration\n\nIssues found:\n{issue_lines}",
            details={"issue_count": len(issues)},
        ) from exc


def load_config(path: Union[str, Path]) -> IngestConfig:
    """Load and validate a YAML configuration file.

    Raises:
        ConfigurationError: If the file is missing, unreadable or invalid
    """
    path = Path(path)
    if not path.exists():
        raise ConfigurationError(f"Configuration file not found: {path}", field="config")

    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Invalid YAML in {path}: {exc}", field="config") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Configuration root must be a mapping, got {type(raw).__name__}",
            field="config",
        )

    logger.debug("Loaded configuration from %s", path)
    return parse_config(raw)
