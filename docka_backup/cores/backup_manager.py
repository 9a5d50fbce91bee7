################################################################################
# DOCKA-BACKUP
#
# @file:        backup_manager.py
# @module:      docka_backup.cores.backup_manager
# @description: Cold backup of every target under the backup root
# @repository:  https://github.com/docka-backup/docka-backup
# @version:     1.0.0
#
# ------------------------------------------------------------------------------
# MIT-Lizenz: siehe LICENSE oder https://opensource.org/licenses/MIT
# ==============================================================================
# Hinweise:
# - One worker per target: stop containers, archive, restart containers
# - All target archives of a run are bundled into one upload
# - Retention only runs after a successful upload
################################################################################

"""
Backup management module for docka-backup.

Implements the run-wide "cold backup" flow:

1. Discover targets under the backup root
2. List volumes and containers once, resolve bindings
3. Per target (in parallel): stop containers, archive, restart containers
4. Bundle all target archives and upload the bundle
5. Apply the retention policy to the remote backups
"""

from __future__ import annotations

import tempfile
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from ..helpers.constants import ACTION_BACKUP
from ..helpers.errors import ConfigError, DockaBackupError
from ..helpers.logging import get_logger
from ..helpers.system_utils import SystemUtils
from ..types import Archive, RunSummary, TargetArchive, TargetResult, VolumeBinding, archive_file_name
from .archive_builder import ArchiveBuilder
from .container_lifecycle import ContainerLifecycleCoordinator
from .docker_discovery import discover_targets, resolve_bindings
from .retention_manager import RetentionManager
from .run_context import RunContext

logger = get_logger(__name__)


def resolve_workers(setting: Union[int, str]) -> int:
    """Turn ``parallel_workers`` ("auto" or an int) into a pool size."""
    if setting == "auto":
        workers = SystemUtils.get_optimal_workers()
        logger.debug(f"Auto-selected {workers} parallel worker(s)")
        return workers
    return max(1, int(setting))


class BackupManager:
    """
    Runs the backup flow for all targets.

    Each target is handled inside its own stop/restart bracket, so a failing
    target never keeps another target's containers down.
    """

    def __init__(self, context: RunContext, builder: Optional[ArchiveBuilder] = None):
        """
        Initialize backup manager.

        Args:
            context: Shared run context (config, runtime, transport, cancel event)
            builder: Archive builder (defaults to a new ArchiveBuilder)
        """
        self.context = context
        self.config = context.config
        self.builder = builder or ArchiveBuilder()

        backup = self.config.backup
        self.coordinator = ContainerLifecycleCoordinator(
            context.runtime,
            stop_timeout=backup.stop_timeout,
            start_timeout=backup.start_timeout,
            retry_attempts=backup.container_retry_attempts,
            stop_concurrency=backup.stop_concurrency,
        )
        self.retention = RetentionManager.from_policy(context.transport, self.config.retention)
        self.max_workers = resolve_workers(backup.parallel_workers)

    def run(self, protected: Iterable[str] = ()) -> RunSummary:
        """
        Back up every target and upload one bundle.

        Args:
            protected: Remote archive names retention must not delete

        Returns:
            RunSummary with one TargetResult per target

        Raises:
            ConfigError: If the backup root does not exist
            RuntimeUnreachable: If volumes or containers cannot be listed
        """
        protected = list(protected)
        start_time = time.time()
        created_at = self._archive_timestamp(protected)
        summary = RunSummary(action=ACTION_BACKUP, started_at=created_at)
        logger.info(f"Starting backup run {archive_file_name(created_at)}")

        try:
            targets = discover_targets(self.config.backup.backup_root)
        except FileNotFoundError as e:
            raise ConfigError(str(e)) from e

        if not targets:
            logger.warning(f"No targets found in {self.config.backup.backup_root}, nothing to back up")
            summary.duration_seconds = time.time() - start_time
            return summary

        bindings = resolve_bindings(self.context.runtime, targets, self.context.self_container_id)

        staging_root = Path(self.config.backup.temp_path)
        staging_root.mkdir(parents=True, exist_ok=True)
        with tempfile.TemporaryDirectory(prefix="backup-", dir=staging_root) as tmp:
            staging = Path(tmp)
            members = self._backup_targets(bindings, created_at, staging / "targets", summary)

            if members:
                summary.archive = self._upload(members, created_at, staging, summary)
            else:
                summary.errors.append("No target could be archived, nothing uploaded")
                logger.error("No target could be archived, nothing uploaded")

        if summary.archive is not None and self.retention.enabled:
            if self.context.cancelled:
                logger.warning("Run cancelled, skipping retention")
            elif summary.failed_targets:
                # the new bundle does not cover the failed targets; older ones may be their only copy
                logger.warning(
                    "Some targets failed, skipping retention",
                    extra={"failed": ",".join(summary.failed_targets)},
                )
            else:
                self._apply_retention(summary, protected + [summary.archive.file_name])

        summary.duration_seconds = time.time() - start_time
        if summary.success:
            logger.info(f"Backup completed successfully in {summary.duration_seconds:.2f}s",
                        extra={"archive": summary.archive.file_name if summary.archive else None})
        else:
            logger.warning(
                f"Backup completed with errors in {summary.duration_seconds:.2f}s",
                extra={"failed": ",".join(summary.failed_targets), "errors": len(summary.errors)},
            )
        return summary

    def _archive_timestamp(self, protected: List[str]) -> datetime:
        """Current UTC second, moved forward if it would overwrite a protected archive."""
        created_at = datetime.now(timezone.utc).replace(microsecond=0)
        while archive_file_name(created_at) in protected:
            created_at += timedelta(seconds=1)
        return created_at

    # ---- per target ----

    def _backup_targets(self, bindings: List[VolumeBinding], created_at: datetime,
                        staging: Path, summary: RunSummary) -> List[TargetArchive]:
        members: List[TargetArchive] = []
        workers = min(self.max_workers, len(bindings))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="backup") as executor:
            futures = [
                (binding, executor.submit(self._backup_target, binding, created_at, staging))
                for binding in bindings
            ]
            for binding, future in futures:
                try:
                    result, archive = future.result()
                except Exception as e:
                    logger.error(f"Exception during backup of {binding.name}: {e}",
                                 extra={"target": binding.name})
                    result = TargetResult(target_name=binding.name, action=ACTION_BACKUP)
                    result.fail(f"Unexpected error: {e}")
                    archive = None
                summary.results.append(result)
                if archive is not None:
                    members.append(archive)
        return members

    def _backup_target(self, binding: VolumeBinding, created_at: datetime,
                       staging: Path) -> Tuple[TargetResult, Optional[TargetArchive]]:
        """Stop, archive and restart one target."""
        result = TargetResult(target_name=binding.name, action=ACTION_BACKUP)
        if self.context.cancelled:
            logger.warning(f"Skipping {binding.name}: run cancelled", extra={"target": binding.name})
            result.fail("Cancelled before start")
            return result, None

        logger.info(f"Starting backup of target: {binding.name}", extra={"target": binding.name})
        start_time = time.time()
        archive = None
        handle = None
        try:
            with self.coordinator.bracket(binding.containers, target=binding.name) as handle:
                archive = self.builder.build(binding.target, created_at, staging)
                archive.quiesced = handle.quiesced
        except DockaBackupError as e:
            logger.error(f"Backup of {binding.name} failed: {e}", extra={"target": binding.name})
            result.fail(str(e))

        if handle is not None:
            result.containers_stopped = [c.name for c in handle.stopped]
            if not handle.quiesced:
                result.quiesced = False
                names = ", ".join(sorted(handle.stop_failures))
                result.fail(f"Not quiesced, could not stop: {names}")
            if not handle.restarted:
                names = ", ".join(sorted(handle.restart_failures))
                result.fail(f"Failed to restart: {names}")

        if archive is not None:
            result.warnings.extend(archive.warnings)
        result.duration_seconds = time.time() - start_time
        return result, archive

    # ---- upload & retention ----

    def _upload(self, members: List[TargetArchive], created_at: datetime, staging: Path,
                summary: RunSummary) -> Optional[Archive]:
        try:
            bundle_path = self.builder.bundle(members, created_at, staging)
            return self.context.transport.upload(bundle_path)
        except (DockaBackupError, OSError) as e:
            logger.error(f"Upload failed: {e}")
            summary.errors.append(f"Upload failed: {e}")
            uploaded = {m.target_name for m in members}
            for result in summary.results:
                if result.target_name in uploaded:
                    result.fail("Archive was not uploaded")
            return None

    def _apply_retention(self, summary: RunSummary, protected: List[str]) -> None:
        try:
            remote_set = self.context.transport.list()
            pruned = self.retention.prune(remote_set, protected=protected)
        except DockaBackupError as e:
            logger.error(f"Retention failed: {e}")
            summary.errors.append(f"Retention failed: {e}")
            return
        summary.deleted.extend(pruned.deleted)
        for name, reason in pruned.failed.items():
            summary.errors.append(f"Failed to delete {name}: {reason}")
