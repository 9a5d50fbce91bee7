################################################################################
# DOCKA-BACKUP
#
# @file:        types.py
# @module:      docka_backup.types
# @description: Shared data models for targets, bindings, archives and results.
# @repository:  https://github.com/docka-backup/docka-backup
# @version:     1.0.0
#
# ------------------------------------------------------------------------------
# MIT-Lizenz: siehe LICENSE oder https://opensource.org/licenses/MIT
# ==============================================================================
# Hinweise:
# - ContainerInfo and VolumeInfo capture Docker state once per run
# - VolumeBinding ties a backup folder to its volume and containers
# - Archive names are the only source of a remote backup's timestamp
################################################################################

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, FrozenSet, Iterator, List, Optional, Sequence, Tuple, Union

from .helpers.constants import (
    ARCHIVE_PREFIX,
    ARCHIVE_SUFFIX,
    ARCHIVE_TIMESTAMP_FORMAT,
    SELECTOR_ALL,
    SELECTOR_LATEST,
)


# ---- Runtime snapshots ----

@dataclass(frozen=True)
class ContainerInfo:
    id: str
    name: str
    is_running: bool = False
    volumes: Tuple[str, ...] = ()  # names of mounted volumes


@dataclass(frozen=True)
class VolumeInfo:
    name: str
    mountpoint: str = ""
    driver: str = "local"


# ---- Targets & bindings ----

@dataclass(frozen=True)
class BackupTarget:
    name: str
    local_path: Path


@dataclass(frozen=True)
class VolumeBinding:
    target: BackupTarget
    volume: Optional[VolumeInfo] = None
    containers: Tuple[ContainerInfo, ...] = ()

    @property
    def name(self) -> str:
        return self.target.name

    @property
    def is_plain_directory(self) -> bool:
        return self.volume is None

    @property
    def running_containers(self) -> List[ContainerInfo]:
        return [c for c in self.containers if c.is_running]


# ---- Archives ----

def format_timestamp(moment: datetime) -> str:
    """Render a UTC timestamp in the compact form used in archive names."""
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.strftime(ARCHIVE_TIMESTAMP_FORMAT)


def archive_file_name(created_at: datetime) -> str:
    return f"{ARCHIVE_PREFIX}{format_timestamp(created_at)}{ARCHIVE_SUFFIX}"


@dataclass(frozen=True)
class Archive:
    """One run-wide bundle stored on the remote server."""

    file_name: str
    created_at: datetime
    size_bytes: Optional[int] = None

    @classmethod
    def from_file_name(cls, file_name: str, size_bytes: Optional[int] = None) -> Optional[Archive]:
        """
        Reconstruct an Archive from its name.

        Returns None for names that do not follow the
        ``backup-YYYY-MM-DDTHH-MM-SS.tar.gz`` convention.
        """
        if not file_name.startswith(ARCHIVE_PREFIX) or not file_name.endswith(ARCHIVE_SUFFIX):
            return None
        stamp = file_name[len(ARCHIVE_PREFIX):-len(ARCHIVE_SUFFIX)]
        try:
            created = datetime.strptime(stamp, ARCHIVE_TIMESTAMP_FORMAT)
        except ValueError:
            return None
        return cls(file_name=file_name, created_at=created.replace(tzinfo=timezone.utc),
                   size_bytes=size_bytes)

    @classmethod
    def for_timestamp(cls, created_at: datetime, size_bytes: Optional[int] = None) -> Archive:
        if created_at.tzinfo is None:
            raise ValueError(f"Archive timestamp must be timezone-aware: {created_at!r}")
        moment = created_at.astimezone(timezone.utc).replace(microsecond=0)
        return cls(file_name=archive_file_name(moment), created_at=moment, size_bytes=size_bytes)

    @property
    def sort_key(self) -> Tuple[datetime, str]:
        return (self.created_at, self.file_name)


@dataclass
class TargetArchive:
    """Per-target member archive produced by the ArchiveBuilder."""

    target_name: str
    path: Path
    created_at: datetime
    size_bytes: int = 0
    warnings: List[str] = field(default_factory=list)
    quiesced: bool = True


class RemoteBackupSet:
    """Archives stored remotely, ordered by (created_at, file_name)."""

    def __init__(self, archives: Sequence[Archive] = ()):
        self._archives: Tuple[Archive, ...] = tuple(sorted(archives, key=lambda a: a.sort_key))

    def __iter__(self) -> Iterator[Archive]:
        return iter(self._archives)

    def __len__(self) -> int:
        return len(self._archives)

    def __contains__(self, file_name: object) -> bool:
        return any(a.file_name == file_name for a in self._archives)

    def __repr__(self) -> str:
        return f"RemoteBackupSet({[a.file_name for a in self._archives]})"

    @property
    def archives(self) -> Tuple[Archive, ...]:
        return self._archives

    @property
    def latest(self) -> Optional[Archive]:
        return self._archives[-1] if self._archives else None

    def get(self, file_name: str) -> Optional[Archive]:
        for archive in self._archives:
            if archive.file_name == file_name:
                return archive
        return None

    def without(self, file_names: Sequence[str]) -> RemoteBackupSet:
        drop = set(file_names)
        return RemoteBackupSet([a for a in self._archives if a.file_name not in drop])


@dataclass(frozen=True)
class RetentionDecision:
    keep: Tuple[Archive, ...] = ()
    delete: Tuple[Archive, ...] = ()

    def action_for(self, archive: Archive) -> str:
        if archive in self.delete:
            return "delete"
        return "keep"


# ---- Restore requests ----

@dataclass(frozen=True)
class RestoreRequest:
    backup_selector: str = SELECTOR_LATEST
    volume_selector: Union[str, FrozenSet[str]] = SELECTOR_ALL

    @classmethod
    def parse(cls, backup: str, volumes: str) -> RestoreRequest:
        """Build a request from the ``BACKUP_TO_BE_RESTORED``/``VOLUME_TO_BE_RESTORED`` forms."""
        backup = (backup or SELECTOR_LATEST).strip()
        volumes = (volumes or SELECTOR_ALL).strip()
        if volumes == SELECTOR_ALL:
            return cls(backup_selector=backup, volume_selector=SELECTOR_ALL)
        names = frozenset(v.strip() for v in volumes.split(",") if v.strip())
        if not names:
            raise ValueError("VOLUME_TO_BE_RESTORED must be 'all' or a list of names")
        return cls(backup_selector=backup, volume_selector=names)

    @property
    def wants_latest(self) -> bool:
        return self.backup_selector == SELECTOR_LATEST

    @property
    def wants_all_volumes(self) -> bool:
        return self.volume_selector == SELECTOR_ALL


# ---- Results ----

@dataclass
class TargetResult:
    target_name: str
    action: str
    success: bool = True
    quiesced: bool = True
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    containers_stopped: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def fail(self, message: str) -> None:
        self.success = False
        self.errors.append(message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "target": self.target_name,
            "action": self.action,
            "success": self.success,
            "quiesced": self.quiesced,
            "warnings": self.warnings,
            "errors": self.errors,
            "containers_stopped": self.containers_stopped,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class RunSummary:
    action: str
    started_at: datetime
    archive: Optional[Archive] = None
    results: List[TargetResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    deleted: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def success(self) -> bool:
        return not self.errors and all(r.success for r in self.results)

    @property
    def failed_targets(self) -> List[str]:
        return [r.target_name for r in self.results if not r.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "started_at": self.started_at.isoformat(),
            "archive": self.archive.file_name if self.archive else None,
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
            "errors": self.errors,
            "deleted": self.deleted,
            "duration_seconds": self.duration_seconds,
        }
