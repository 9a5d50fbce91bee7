"""
Exception hierarchy for docka-backup.

Run-level errors (config, runtime unreachable, safety backup) abort the whole
run. Target-level errors are caught inside the target's bracket and end up in
its TargetResult.
"""

from __future__ import annotations

from typing import Iterable


class DockaBackupError(Exception):
    """Base class for all docka-backup errors."""


class ConfigError(DockaBackupError):
    """Configuration is missing or invalid."""


class RuntimeUnreachable(DockaBackupError):
    """The container runtime API cannot be reached."""


class ContainerNotFound(DockaBackupError):
    """A container vanished between listing and stop/start."""

    def __init__(self, container_id: str):
        super().__init__(f"Container not found: {container_id}")
        self.container_id = container_id


class ContainerOperationFailed(DockaBackupError):
    """Stop or start of a container failed after all retries."""

    def __init__(self, container_id: str, operation: str, reason: str = ""):
        message = f"Failed to {operation} container {container_id}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.container_id = container_id
        self.operation = operation


class TransientIOError(DockaBackupError):
    """Network or disk hiccup that is worth retrying."""


class RemoteOperationFailed(DockaBackupError):
    """A remote store operation failed after all retries."""

    def __init__(self, operation: str, reason: str = ""):
        message = f"Remote {operation} failed"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)
        self.operation = operation


class ArchiveError(DockaBackupError):
    """An archive could not be built or extracted."""


class PartialArchiveWarning(UserWarning):
    """An entry was skipped while archiving; the archive itself is usable."""


class BackupNameNotFound(DockaBackupError):
    """The requested backup file does not exist in the remote set."""

    def __init__(self, file_name: str):
        super().__init__(f"Backup not found on server: {file_name}")
        self.file_name = file_name


class ArchiveNotFound(DockaBackupError):
    """An archive or archive member is missing."""


class VolumeNotFound(DockaBackupError):
    """One or more requested targets do not exist."""

    def __init__(self, names: Iterable[str]):
        self.names = sorted(names)
        super().__init__(f"Volume(s) not found: {', '.join(self.names)}")


class SafetyBackupFailed(DockaBackupError):
    """The safety snapshot before a restore did not succeed."""


class InvalidStateTransition(DockaBackupError):
    """A restore state machine was driven through an illegal transition."""
