"""
Run context for docka-backup.

One RunContext is built per CLI invocation and handed to the managers
explicitly; it carries everything a run shares across worker threads.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

from ..backends.sftp import SftpStore
from ..helpers.config import AppConfig
from ..helpers.logging import get_logger
from .docker_discovery import DockerRuntime, own_container_id
from .remote_transport import RemoteTransport

logger = get_logger(__name__)


@dataclass(frozen=True)
class RunContext:
    config: AppConfig
    runtime: object
    transport: RemoteTransport
    cancel_event: threading.Event = field(default_factory=threading.Event)
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    self_container_id: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self.cancel_event.is_set()


def build_transport(config: AppConfig) -> RemoteTransport:
    """Remote transport for the server described by ``config``."""
    return RemoteTransport(
        SftpStore.from_config(config.server),
        config.server.directory,
        retry_attempts=config.backup.transport_retry_attempts,
    )


def build_context(config: AppConfig, cancel_event: Optional[threading.Event] = None) -> RunContext:
    """
    Connect the runtime and the remote store described by ``config``.

    Raises:
        RuntimeUnreachable: If the Docker daemon cannot be reached
    """
    runtime = DockerRuntime(base_url=config.backup.docker_host, timeout=config.backup.docker_timeout)
    runtime.ping()
    transport = build_transport(config)
    self_id = own_container_id()
    if self_id:
        logger.debug(f"Running inside container {self_id}")
    return RunContext(
        config=config,
        runtime=runtime,
        transport=transport,
        cancel_event=cancel_event or threading.Event(),
        self_container_id=self_id,
    )
