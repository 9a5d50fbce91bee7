################################################################################
# DOCKA-BACKUP
#
# @file:        restore_manager.py
# @module:      docka_backup.cores.restore_manager
# @description: Restore of targets from a remote backup bundle
# @repository:  https://github.com/docka-backup/docka-backup
# @version:     1.0.0
#
# ------------------------------------------------------------------------------
# MIT-Lizenz: siehe LICENSE oder https://opensource.org/licenses/MIT
# ==============================================================================
# Hinweise:
# - The requested backup is resolved before anything is stopped
# - A safety backup of the current state runs before every restore
# - Each target is restored inside its own stop/restart bracket
################################################################################

"""
Restore management module for docka-backup.

Non-interactive restore driven by ``BACKUP_TO_BE_RESTORED`` and
``VOLUME_TO_BE_RESTORED``. Progress is tracked by a small state machine:
one tracker for the run and one per restored target.
"""

from __future__ import annotations

import tempfile
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, List, Optional, Sequence

from ..helpers.constants import ACTION_RESTORE
from ..helpers.errors import (
    ArchiveNotFound,
    BackupNameNotFound,
    DockaBackupError,
    InvalidStateTransition,
    SafetyBackupFailed,
    VolumeNotFound,
)
from ..helpers.logging import get_logger
from ..types import (
    Archive,
    BackupTarget,
    RemoteBackupSet,
    RestoreRequest,
    RunSummary,
    TargetResult,
    VolumeBinding,
)
from .archive_builder import ArchiveBuilder
from .backup_manager import BackupManager, resolve_workers
from .container_lifecycle import ContainerLifecycleCoordinator
from .docker_discovery import resolve_bindings
from .run_context import RunContext

logger = get_logger(__name__)


class RestoreState(str, Enum):
    IDLE = "idle"
    SAFETY_BACKUP = "safety_backup"
    VALIDATING = "validating"
    STOPPING = "stopping"
    FETCHING = "fetching"
    EXTRACTING = "extracting"
    RESTARTING = "restarting"
    DONE = "done"
    FAILED = "failed"


_TRANSITIONS: Dict[RestoreState, FrozenSet[RestoreState]] = {
    RestoreState.IDLE: frozenset({RestoreState.SAFETY_BACKUP}),
    RestoreState.SAFETY_BACKUP: frozenset({RestoreState.VALIDATING}),
    RestoreState.VALIDATING: frozenset({RestoreState.STOPPING, RestoreState.DONE}),
    RestoreState.STOPPING: frozenset({RestoreState.FETCHING, RestoreState.RESTARTING}),
    RestoreState.FETCHING: frozenset({RestoreState.EXTRACTING, RestoreState.RESTARTING}),
    RestoreState.EXTRACTING: frozenset({RestoreState.RESTARTING}),
    RestoreState.RESTARTING: frozenset({RestoreState.DONE}),
    RestoreState.DONE: frozenset(),
    RestoreState.FAILED: frozenset(),
}

_TERMINAL = frozenset({RestoreState.DONE, RestoreState.FAILED})


class RestoreStateTracker:
    """
    Current state of a restore (whole run or one target).

    Every non-terminal state may move to FAILED; all other moves must follow
    the transition table.
    """

    def __init__(self, name: str, initial: RestoreState = RestoreState.IDLE):
        self.name = name
        self._state = initial
        self.history: List[RestoreState] = [initial]
        self._lock = threading.Lock()

    @property
    def state(self) -> RestoreState:
        return self._state

    @property
    def finished(self) -> bool:
        return self._state in _TERMINAL

    def advance(self, new_state: RestoreState) -> None:
        """
        Move to ``new_state``.

        Raises:
            InvalidStateTransition: If the move is not allowed
        """
        with self._lock:
            current = self._state
            allowed = new_state in _TRANSITIONS[current] or (
                new_state is RestoreState.FAILED and current not in _TERMINAL
            )
            if not allowed:
                raise InvalidStateTransition(
                    f"{self.name}: cannot go from {current.value} to {new_state.value}"
                )
            self._state = new_state
            self.history.append(new_state)
        logger.debug(f"{self.name}: {current.value} -> {new_state.value}",
                     extra={"target": self.name})

    def fail(self) -> None:
        """Move to FAILED unless already finished."""
        if not self.finished:
            self.advance(RestoreState.FAILED)


def resolve_backup(remote_set: RemoteBackupSet, selector: str) -> Archive:
    """
    Pick the archive a restore should use.

    ``latest`` is the newest archive by creation time; any other value must
    match a file name exactly.

    Raises:
        ArchiveNotFound: ``latest`` requested but the server holds no backups
        BackupNameNotFound: Named backup does not exist
    """
    if selector == "latest":
        if remote_set.latest is None:
            raise ArchiveNotFound("No backups found on server")
        return remote_set.latest
    archive = remote_set.get(selector)
    if archive is None:
        raise BackupNameNotFound(selector)
    return archive


def resolve_volumes(members: Sequence[str], request: RestoreRequest) -> List[str]:
    """
    Target names to restore from a bundle with ``members``.

    Raises:
        VolumeNotFound: If named targets are not part of the bundle
    """
    if request.wants_all_volumes:
        return sorted(members)
    missing = set(request.volume_selector) - set(members)
    if missing:
        raise VolumeNotFound(missing)
    return sorted(request.volume_selector)


class RestoreManager:
    """Restores targets from one remote backup."""

    def __init__(self, context: RunContext, builder: Optional[ArchiveBuilder] = None):
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
        self.max_workers = resolve_workers(backup.parallel_workers)
        self.tracker = RestoreStateTracker("restore")
        self.target_trackers: Dict[str, RestoreStateTracker] = {}
        self.safety_summary: Optional[RunSummary] = None

    def run(self, request: RestoreRequest) -> RunSummary:
        """
        Restore the targets selected by ``request``.

        Args:
            request: Which backup and which targets to restore

        Returns:
            RunSummary with one TargetResult per restored target

        Raises:
            BackupNameNotFound: Named backup does not exist (nothing was stopped)
            ArchiveNotFound: No backups on the server
            SafetyBackupFailed: The pre-restore backup did not succeed
            VolumeNotFound: Requested targets are not part of the backup
            RuntimeUnreachable: Runtime state cannot be listed
        """
        start_time = time.time()
        summary = RunSummary(action=ACTION_RESTORE, started_at=datetime.now(timezone.utc))
        try:
            archive = resolve_backup(self.context.transport.list(), request.backup_selector)
            summary.archive = archive
            logger.info(f"Restoring from {archive.file_name}", extra={"archive": archive.file_name})

            self.tracker.advance(RestoreState.SAFETY_BACKUP)
            self._safety_backup(archive)

            self.tracker.advance(RestoreState.VALIDATING)
            staging_root = Path(self.config.backup.temp_path)
            staging_root.mkdir(parents=True, exist_ok=True)
            with tempfile.TemporaryDirectory(prefix="restore-", dir=staging_root) as tmp:
                staging = Path(tmp)
                bundle = self.context.transport.download(archive.file_name, staging)
                names = resolve_volumes(self.builder.bundle_members(bundle), request)
                logger.info(f"Restoring {len(names)} target(s): {', '.join(names)}")

                root = Path(self.config.backup.backup_root)
                targets = [BackupTarget(name=name, local_path=root / name) for name in names]
                bindings = resolve_bindings(self.context.runtime, targets,
                                            self.context.self_container_id)
                self._restore_targets(bindings, bundle, staging / "targets", summary)
        except DockaBackupError:
            self.tracker.fail()
            raise

        self.tracker.advance(RestoreState.DONE if summary.success else RestoreState.FAILED)
        summary.duration_seconds = time.time() - start_time
        if summary.success:
            logger.info(f"Restore completed successfully in {summary.duration_seconds:.2f}s",
                        extra={"archive": archive.file_name})
        else:
            logger.warning(
                f"Restore completed with errors in {summary.duration_seconds:.2f}s",
                extra={"failed": ",".join(summary.failed_targets)},
            )
        return summary

    def _safety_backup(self, archive: Archive) -> None:
        """Back up the current state; the archive being restored is protected."""
        logger.info("Creating safety backup before restore")
        try:
            self.safety_summary = BackupManager(self.context, self.builder).run(
                protected=[archive.file_name]
            )
        except DockaBackupError as e:
            raise SafetyBackupFailed(f"Safety backup failed: {e}") from e
        if not self.safety_summary.success:
            details = self.safety_summary.errors + [
                f"{name} failed" for name in self.safety_summary.failed_targets
            ]
            raise SafetyBackupFailed(f"Safety backup failed: {'; '.join(details)}")

    # ---- per target ----

    def _restore_targets(self, bindings: List[VolumeBinding], bundle: Path, staging: Path,
                         summary: RunSummary) -> None:
        if not bindings:
            return
        workers = min(self.max_workers, len(bindings))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="restore") as executor:
            futures = [
                (binding, executor.submit(self._restore_target, binding, bundle, staging))
                for binding in bindings
            ]
            for binding, future in futures:
                try:
                    result = future.result()
                except Exception as e:
                    logger.error(f"Exception during restore of {binding.name}: {e}",
                                 extra={"target": binding.name})
                    result = TargetResult(target_name=binding.name, action=ACTION_RESTORE)
                    result.fail(f"Unexpected error: {e}")
                    tracker = self.target_trackers.get(binding.name)
                    if tracker is not None:
                        tracker.fail()
                summary.results.append(result)

    def _restore_target(self, binding: VolumeBinding, bundle: Path, staging: Path) -> TargetResult:
        """Stop, fetch, extract and restart one target."""
        name = binding.name
        result = TargetResult(target_name=name, action=ACTION_RESTORE)
        tracker = RestoreStateTracker(name, initial=RestoreState.VALIDATING)
        self.target_trackers[name] = tracker

        if self.context.cancelled:
            logger.warning(f"Skipping {name}: run cancelled", extra={"target": name})
            result.fail("Cancelled before start")
            tracker.fail()
            return result

        destination = Path(binding.target.local_path)
        if not destination.is_dir():
            error = VolumeNotFound([name])
            logger.error(f"{error} (no directory at {destination})", extra={"target": name})
            result.fail(str(error))
            tracker.fail()
            return result

        logger.info(f"Starting restore of target: {name}", extra={"target": name})
        start_time = time.time()
        handle = None
        tracker.advance(RestoreState.STOPPING)
        try:
            with self.coordinator.bracket(binding.containers, target=name) as handle:
                try:
                    if handle.quiesced:
                        tracker.advance(RestoreState.FETCHING)
                        member = self.builder.extract_member(bundle, name, staging)
                        tracker.advance(RestoreState.EXTRACTING)
                        self.builder.extract(member, destination,
                                             clean=self.config.restore.clean_destination)
                        member.unlink(missing_ok=True)
                finally:
                    tracker.advance(RestoreState.RESTARTING)
        except DockaBackupError as e:
            logger.error(f"Restore of {name} failed: {e}", extra={"target": name})
            result.fail(str(e))

        if handle is not None:
            result.containers_stopped = [c.name for c in handle.stopped]
            if not handle.quiesced:
                result.quiesced = False
                names = ", ".join(sorted(handle.stop_failures))
                result.fail(f"Not restored, could not stop: {names}")
            if not handle.restarted:
                names = ", ".join(sorted(handle.restart_failures))
                result.fail(f"Failed to restart: {names}")

        tracker.advance(RestoreState.DONE if result.success else RestoreState.FAILED)
        result.duration_seconds = time.time() - start_time
        if result.success:
            logger.info(f"Restored {name} in {result.duration_seconds:.2f}s", extra={"target": name})
        return result
