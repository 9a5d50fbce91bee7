"""
Container lifecycle coordination for docka-backup.

``bracket()`` stops the containers of a target, runs the caller's block and
restarts every container it stopped on every exit path of that block:
normal return, exception, KeyboardInterrupt or generator close.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Sequence

from ..helpers.constants import (
    CONTAINER_RETRY_ATTEMPTS,
    CONTAINER_START_TIMEOUT,
    CONTAINER_STOP_TIMEOUT,
    STOP_CONCURRENCY,
)
from ..helpers.errors import (
    DockaBackupError,
    ContainerNotFound,
    ContainerOperationFailed,
    TransientIOError,
)
from ..helpers.logging import get_logger
from ..helpers.retry import container_retrying
from ..types import ContainerInfo

logger = get_logger(__name__)

_RETRYABLE = (TransientIOError, ContainerOperationFailed)
_POLL_INTERVAL = 1.0


@dataclass
class BracketHandle:
    """What happened to the containers of one bracket."""

    target: str
    stopped: List[ContainerInfo] = field(default_factory=list)
    stop_failures: Dict[str, str] = field(default_factory=dict)
    restart_failures: Dict[str, str] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    @property
    def quiesced(self) -> bool:
        """True when every running container was stopped."""
        return not self.stop_failures

    @property
    def restarted(self) -> bool:
        return not self.restart_failures

    def _mark_stopped(self, container: ContainerInfo) -> None:
        with self._lock:
            self.stopped.append(container)

    def _mark_stop_failed(self, container: ContainerInfo, reason: str) -> None:
        with self._lock:
            self.stop_failures[container.name] = reason


class ContainerLifecycleCoordinator:
    """
    Stops and restarts containers around a block of work.

    Stops run in parallel (bounded), restarts run sequentially in stop order.
    Both are retried on transient failures before they count as failed.
    """

    def __init__(self, runtime, stop_timeout: int = CONTAINER_STOP_TIMEOUT,
                 start_timeout: int = CONTAINER_START_TIMEOUT,
                 retry_attempts: int = CONTAINER_RETRY_ATTEMPTS,
                 stop_concurrency: int = STOP_CONCURRENCY):
        """
        Args:
            runtime: Container runtime client (``stop``/``start``/``inspect_state``)
            stop_timeout: Grace period handed to the daemon per stop
            start_timeout: Max seconds to wait for a restarted container
            retry_attempts: Tries per stop/start
            stop_concurrency: Parallel stops per bracket
        """
        self.runtime = runtime
        self.stop_timeout = stop_timeout
        self.start_timeout = start_timeout
        self.retry_attempts = retry_attempts
        self.stop_concurrency = max(1, stop_concurrency)

    @contextmanager
    def bracket(self, containers: Sequence[ContainerInfo], target: str = "") -> Iterator[BracketHandle]:
        """
        Stop ``containers``, yield, then restart what was stopped.

        Only running containers are stopped. A container that cannot be
        stopped is recorded in ``handle.stop_failures`` and the block still
        runs; the caller decides what a non-quiesced target means.
        """
        handle = BracketHandle(target=target)
        running = [c for c in containers if c.is_running]
        try:
            if running:
                logger.info(f"Stopping {len(running)} container(s)...", extra={"target": target})
                self._stop_all(running, handle)
            yield handle
        finally:
            if handle.stopped:
                logger.info(f"Starting {len(handle.stopped)} container(s)...", extra={"target": target})
                self._start_all(handle)

    def _stop_all(self, containers: List[ContainerInfo], handle: BracketHandle) -> None:
        workers = min(self.stop_concurrency, len(containers))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="stop") as executor:
            futures = {executor.submit(self._stop_one, c, handle): c for c in containers}
            for future, container in futures.items():
                error = future.exception()
                if error is not None:
                    logger.error(f"Unexpected error stopping {container.name}: {error}",
                                 extra={"container": container.name, "target": handle.target})
                    handle._mark_stop_failed(container, str(error))

    def _stop_one(self, container: ContainerInfo, handle: BracketHandle) -> None:
        try:
            for attempt in container_retrying(self.retry_attempts, _RETRYABLE):
                with attempt:
                    self.runtime.stop(container.id, timeout=self.stop_timeout)
        except ContainerNotFound:
            logger.warning(f"Container {container.name} vanished before stop",
                           extra={"container": container.name, "target": handle.target})
            return
        except (TransientIOError, ContainerOperationFailed) as e:
            logger.error(f"Failed to stop container {container.name}: {e}",
                         extra={"container": container.name, "target": handle.target})
            handle._mark_stop_failed(container, str(e))
            return
        handle._mark_stopped(container)
        logger.debug(f"Stopped container: {container.name}",
                     extra={"container": container.name, "target": handle.target})

    def _start_all(self, handle: BracketHandle) -> None:
        # one failure must not keep the remaining containers down
        for container in list(handle.stopped):
            try:
                self._start_one(container, handle.target)
            except (ContainerNotFound, TransientIOError, ContainerOperationFailed) as e:
                logger.error(f"Failed to start container {container.name}: {e}",
                             extra={"container": container.name, "target": handle.target})
                handle.restart_failures[container.name] = str(e)
            except Exception as e:
                logger.error(f"Unexpected error starting {container.name}: {e}",
                             extra={"container": container.name, "target": handle.target})
                handle.restart_failures[container.name] = f"Unexpected error: {e}"

    def _start_one(self, container: ContainerInfo, target: str) -> None:
        for attempt in container_retrying(self.retry_attempts, _RETRYABLE):
            with attempt:
                self.runtime.start(container.id)
        logger.debug(f"Started container: {container.name}",
                     extra={"container": container.name, "target": target})
        self._wait_started(container, target)

    def _wait_started(self, container: ContainerInfo, target: str) -> None:
        """
        Wait until the container runs (and is healthy, if it has a healthcheck).

        A slow or unhealthy container only produces a warning.
        """
        inspect = getattr(self.runtime, "inspect_state", None)
        if inspect is None:
            return
        deadline = time.monotonic() + self.start_timeout
        while True:
            try:
                state = inspect(container.id) or {}
            except DockaBackupError as e:
                logger.debug(f"State check failed for {container.name}: {e}",
                             extra={"container": container.name, "target": target})
                return

            health = (state.get("Health") or {}).get("Status")
            if health == "healthy" or (health is None and state.get("Running")):
                return
            if health == "unhealthy":
                logger.warning(f"Container {container.name} is unhealthy",
                               extra={"container": container.name, "target": target})
                return
            if time.monotonic() >= deadline:
                logger.warning(f"Container {container.name} not ready after {self.start_timeout}s",
                               extra={"container": container.name, "target": target})
                return
            time.sleep(_POLL_INTERVAL)
