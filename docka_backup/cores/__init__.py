"""Core managers for docka-backup."""

from .archive_builder import ArchiveBuilder
from .backup_manager import BackupManager
from .container_lifecycle import ContainerLifecycleCoordinator
from .docker_discovery import DockerRuntime, VolumeResolver, discover_targets
from .remote_transport import RemoteTransport
from .restore_manager import RestoreManager
from .retention_manager import RetentionManager, decide
from .run_context import RunContext, build_context, build_transport
from .safe_exit_manager import SafeExitManager

__all__ = [
    'ArchiveBuilder',
    'BackupManager',
    'ContainerLifecycleCoordinator',
    'DockerRuntime',
    'VolumeResolver',
    'discover_targets',
    'RemoteTransport',
    'RestoreManager',
    'RetentionManager',
    'decide',
    'RunContext',
    'build_context',
    'build_transport',
    'SafeExitManager',
]
