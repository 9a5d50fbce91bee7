"""Helper modules and utilities for docka-backup."""

from .config import AppConfig, BackupConfig, RestoreConfig, RetentionPolicy, ServerConfig
from .constants import VERSION
from .logging import get_logger, log_manager
from .system_utils import SystemUtils

__all__ = [
    'AppConfig',
    'BackupConfig',
    'RestoreConfig',
    'RetentionPolicy',
    'ServerConfig',
    'VERSION',
    'get_logger',
    'log_manager',
    'SystemUtils',
]
