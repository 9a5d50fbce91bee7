#!/usr/bin/env python3
################################################################################
# DOCKA-BACKUP
#
# @file:        config.py
# @module:      docka_backup.helpers.config
# @description: Environment-driven configuration validated with pydantic
# @repository:  https://github.com/docka-backup/docka-backup
# @version:     1.0.0
#
# ------------------------------------------------------------------------------
# MIT-Lizenz: siehe LICENSE oder https://opensource.org/licenses/MIT
################################################################################

"""
Configuration management for docka-backup.

The tool runs inside a container and is configured entirely through
environment variables (optionally loaded from a ``.env`` file). Values are
validated once at startup; the resulting :class:`AppConfig` is read-only for
the rest of the run.
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, Optional, Union

from dotenv import dotenv_values
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .constants import (
    ACTION_BACKUP,
    CONTAINER_RETRY_ATTEMPTS,
    CONTAINER_START_TIMEOUT,
    CONTAINER_STOP_TIMEOUT,
    DEFAULT_BACKUP_ROOT,
    DEFAULT_SSH_KEY_PATH,
    DEFAULT_TEMP_PATH,
    DOCKER_API_TIMEOUT,
    MAX_PARALLEL_WORKERS,
    SELECTOR_ALL,
    SELECTOR_LATEST,
    SSH_CONNECT_TIMEOUT,
    STOP_CONCURRENCY,
    TRANSPORT_RETRY_ATTEMPTS,
)
from .errors import ConfigError
from .logging import get_logger

logger = get_logger(__name__)

_FROZEN = ConfigDict(frozen=True)


class ServerConfig(BaseModel):
    """Remote SSH server holding the backups"""

    model_config = _FROZEN

    host: str = Field(..., description="Server address (SERVER_IP)")
    port: int = Field(default=22, ge=1, le=65535, description="SSH port")
    user: str = Field(..., description="SSH user")
    directory: str = Field(..., description="Remote backup directory")
    ssh_key_path: Path = Field(default=DEFAULT_SSH_KEY_PATH, description="Private key")
    known_hosts_path: Optional[Path] = Field(
        default=None, description="known_hosts file (SSH_KNOWN_HOSTS_PATH), next to the key if unset"
    )
    connect_timeout: int = Field(default=SSH_CONNECT_TIMEOUT, ge=1)

    @field_validator("host", "user", "directory")
    @classmethod
    def validate_not_empty(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()

    @field_validator("directory")
    @classmethod
    def validate_directory(cls, v: str) -> str:
        """Strip trailing slashes, keep a bare root"""
        return v.rstrip("/") or "/"


class RetentionPolicy(BaseModel):
    """Remote retention bounds; None disables the rule"""

    model_config = _FROZEN

    count: Optional[int] = Field(default=None, ge=1, description="BACKUP_RETENTION_COUNT")
    period_days: Optional[int] = Field(
        default=None, ge=1, description="BACKUP_RETENTION_PERIOD_IN_DAYS"
    )

    @property
    def enabled(self) -> bool:
        return self.count is not None or self.period_days is not None


class BackupConfig(BaseModel):
    """Local side of the backup run"""

    model_config = _FROZEN

    backup_root: Path = Field(default=DEFAULT_BACKUP_ROOT)
    temp_path: Path = Field(default=DEFAULT_TEMP_PATH)
    parallel_workers: Union[int, Literal["auto"]] = Field(default="auto")
    stop_timeout: int = Field(default=CONTAINER_STOP_TIMEOUT, ge=1)
    start_timeout: int = Field(default=CONTAINER_START_TIMEOUT, ge=1)
    stop_concurrency: int = Field(default=STOP_CONCURRENCY, ge=1)
    container_retry_attempts: int = Field(default=CONTAINER_RETRY_ATTEMPTS, ge=1)
    transport_retry_attempts: int = Field(default=TRANSPORT_RETRY_ATTEMPTS, ge=1)
    docker_host: Optional[str] = Field(default=None)
    docker_timeout: int = Field(default=DOCKER_API_TIMEOUT, ge=1)

    @field_validator("parallel_workers", mode="before")
    @classmethod
    def validate_workers(cls, v: Any) -> Union[int, str]:
        """Validate worker count"""
        if v is None or v == "" or v == "auto":
            return "auto"
        try:
            workers = int(v)
        except (TypeError, ValueError):
            raise ValueError("parallel_workers must be 'auto' or an integer")
        if workers < 1 or workers > MAX_PARALLEL_WORKERS:
            raise ValueError(f"parallel_workers must be between 1 and {MAX_PARALLEL_WORKERS}")
        return workers


class RestoreConfig(BaseModel):
    """What a restore run should bring back"""

    model_config = _FROZEN

    backup: str = Field(default=SELECTOR_LATEST, description="BACKUP_TO_BE_RESTORED")
    volumes: str = Field(default=SELECTOR_ALL, description="VOLUME_TO_BE_RESTORED")
    clean_destination: bool = Field(default=False)

    @field_validator("backup", "volumes")
    @classmethod
    def validate_selector(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("must not be empty")
        return v.strip()


class LoggingConfig(BaseModel):
    model_config = _FROZEN

    level: str = Field(default="INFO")
    file: Optional[Path] = Field(default=None)
    format: Literal["text", "json"] = Field(default="text")

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        level = v.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {v}")
        return level


class AppConfig(BaseModel):
    """Complete, validated configuration of one run"""

    model_config = _FROZEN

    action: Literal["backup", "restore"] = Field(default=ACTION_BACKUP)
    server: ServerConfig
    retention: RetentionPolicy = Field(default_factory=RetentionPolicy)
    backup: BackupConfig = Field(default_factory=BackupConfig)
    restore: RestoreConfig = Field(default_factory=RestoreConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    @classmethod
    def from_env(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[Path] = None,
    ) -> AppConfig:
        """
        Build the configuration from environment variables.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``)
            env_file: Optional ``.env`` file; real environment wins over it

        Returns:
            Validated configuration

        Raises:
            ConfigError: If required values are missing or invalid
        """
        values: Dict[str, Optional[str]] = {}
        if env_file is not None:
            if not Path(env_file).exists():
                raise ConfigError(f"Env file not found: {env_file}")
            values.update(dotenv_values(env_file))
        values.update(os.environ if environ is None else environ)

        def env(name: str) -> Optional[str]:
            value = values.get(name)
            if value is None or value.strip() == "":
                return None
            return value.strip()

        missing = [
            name
            for name in ("SERVER_IP", "SERVER_USER", "SERVER_DIRECTORY")
            if env(name) is None
        ]
        if missing:
            raise ConfigError(f"Missing required environment variable(s): {', '.join(missing)}")

        raw: Dict[str, Any] = {
            "server": _drop_none({
                "host": env("SERVER_IP"),
                "port": env("SERVER_PORT"),
                "user": env("SERVER_USER"),
                "directory": env("SERVER_DIRECTORY"),
                "ssh_key_path": env("SSH_KEY_PATH"),
                "known_hosts_path": env("SSH_KNOWN_HOSTS_PATH"),
                "connect_timeout": env("SSH_CONNECT_TIMEOUT"),
            }),
            "retention": {
                "count": env("BACKUP_RETENTION_COUNT"),
                "period_days": env("BACKUP_RETENTION_PERIOD_IN_DAYS"),
            },
            "backup": _drop_none({
                "backup_root": env("BACKUP_ROOT"),
                "temp_path": env("TEMP_PATH"),
                "parallel_workers": env("PARALLEL_WORKERS"),
                "stop_timeout": env("CONTAINER_STOP_TIMEOUT"),
                "start_timeout": env("CONTAINER_START_TIMEOUT"),
                "docker_host": env("DOCKER_HOST"),
            }),
            "restore": _drop_none({
                "backup": env("BACKUP_TO_BE_RESTORED"),
                "volumes": env("VOLUME_TO_BE_RESTORED"),
                "clean_destination": env("RESTORE_CLEAN_DESTINATION"),
            }),
            "logging": _drop_none({
                "level": env("LOG_LEVEL"),
                "file": env("LOG_FILE"),
                "format": env("LOG_FORMAT"),
            }),
        }
        action = env("ACTION")
        if action is not None:
            raw["action"] = action.lower()

        try:
            config = cls.model_validate(raw)
        except ValidationError as e:
            raise ConfigError(_format_validation_error(e)) from e

        logger.debug("Configuration loaded from environment",
                     extra={"action": config.action, "server": config.server.host})
        return config

    def masked(self) -> Dict[str, Any]:
        """Configuration as a flat dict with sensitive values masked."""
        sensitive = re.compile(r'(password|secret|key|token|credential)', re.IGNORECASE)
        flat: Dict[str, Any] = {}
        for section, values in self.model_dump(mode="json").items():
            if not isinstance(values, dict):
                flat[section] = values
                continue
            for option, value in values.items():
                if sensitive.search(option) and value and option != "ssh_key_path":
                    value = "***MASKED***"
                flat[f"{section}.{option}"] = value
        return flat

    def validate_paths(self) -> List[str]:
        """
        Check local paths before a run.

        Returns:
            List of error messages (empty when everything is OK)
        """
        errors = []
        root = self.backup.backup_root
        if not root.is_dir():
            errors.append(f"Backup root does not exist: {root}")
        elif not os.access(root, os.R_OK | os.X_OK):
            errors.append(f"Backup root not readable: {root}")
        if not self.server.ssh_key_path.exists():
            errors.append(f"SSH key not found: {self.server.ssh_key_path}")
        return errors


def _drop_none(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in values.items() if v is not None}


def _format_validation_error(error: ValidationError) -> str:
    parts = []
    for item in error.errors():
        location = ".".join(str(p) for p in item["loc"])
        parts.append(f"{location}: {item['msg']}")
    return "Invalid configuration: " + "; ".join(parts)
