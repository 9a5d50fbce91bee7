"""
Docker discovery module for docka-backup.

Talks to the Docker daemon through the Docker SDK and maps the folders under
the backup root to runtime volumes and the containers that mount them.
"""

from __future__ import annotations

import re
import socket
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence

import docker
import requests
from docker.errors import APIError, DockerException, NotFound

from ..helpers.constants import DOCKER_API_TIMEOUT
from ..helpers.errors import (
    ContainerNotFound,
    ContainerOperationFailed,
    RuntimeUnreachable,
    TransientIOError,
)
from ..helpers.logging import get_logger
from ..types import BackupTarget, ContainerInfo, VolumeBinding, VolumeInfo

logger = get_logger(__name__)

_CONTAINER_ID = re.compile(r"^[0-9a-f]{12,64}$")


class DockerRuntime:
    """
    Container runtime client backed by the Docker SDK.

    Every call maps SDK errors onto the docka-backup taxonomy so callers can
    tell "daemon unreachable" from "container gone" from "operation failed".
    """

    def __init__(self, base_url: Optional[str] = None, timeout: int = DOCKER_API_TIMEOUT,
                 client: Optional[docker.DockerClient] = None):
        """
        Connect to the Docker daemon.

        Args:
            base_url: Daemon URL (``unix:///var/run/docker.sock``); None uses DOCKER_HOST
            timeout: HTTP timeout in seconds for every API call
            client: Pre-built client (tests)

        Raises:
            RuntimeUnreachable: If the daemon cannot be reached
        """
        if client is not None:
            self.client = client
            return
        try:
            if base_url:
                self.client = docker.DockerClient(base_url=base_url, timeout=timeout)
            else:
                self.client = docker.from_env(timeout=timeout)
        except DockerException as e:
            raise RuntimeUnreachable(f"Docker daemon not accessible: {e}") from e

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except (DockerException, requests.exceptions.RequestException) as e:
            raise RuntimeUnreachable(f"Docker daemon not accessible: {e}") from e

    # ---- listings ----

    def list_volumes(self) -> List[VolumeInfo]:
        """
        List all Docker volumes.

        Raises:
            RuntimeUnreachable: If the daemon cannot be queried
        """
        try:
            volumes = self.client.volumes.list()
        except (DockerException, requests.exceptions.RequestException) as e:
            raise RuntimeUnreachable(f"Failed to list volumes: {e}") from e

        result = []
        for volume in volumes:
            attrs = volume.attrs or {}
            result.append(VolumeInfo(
                name=volume.name,
                mountpoint=attrs.get("Mountpoint", ""),
                driver=attrs.get("Driver", "local"),
            ))
        return result

    def list_containers(self) -> List[ContainerInfo]:
        """
        List all containers (any state) with their volume mounts.

        Raises:
            RuntimeUnreachable: If the daemon cannot be queried
        """
        try:
            containers = self.client.containers.list(all=True, sparse=True)
        except (DockerException, requests.exceptions.RequestException) as e:
            raise RuntimeUnreachable(f"Failed to list containers: {e}") from e

        return [self._parse_container(c.attrs or {}) for c in containers]

    @staticmethod
    def _parse_container(attrs: Dict[str, Any]) -> ContainerInfo:
        """
        Build a ContainerInfo from list or inspect attributes.

        ``docker ps`` style summaries carry ``Names``/``State: "running"``,
        inspect data carries ``Name``/``State: {"Running": true}``.
        """
        container_id = attrs.get("Id", "")
        names = attrs.get("Names") or []
        name = (names[0] if names else attrs.get("Name", container_id[:12])).lstrip("/")

        state = attrs.get("State")
        if isinstance(state, dict):
            is_running = bool(state.get("Running"))
        else:
            is_running = state == "running"

        volumes = tuple(
            mount["Name"]
            for mount in attrs.get("Mounts") or []
            if mount.get("Type") == "volume" and mount.get("Name")
        )
        return ContainerInfo(id=container_id, name=name, is_running=is_running, volumes=volumes)

    # ---- lifecycle ----

    def stop(self, container_id: str, timeout: int) -> None:
        """
        Stop a container.

        Raises:
            ContainerNotFound: Container no longer exists
            TransientIOError: Daemon did not answer in time
            ContainerOperationFailed: Daemon refused the stop
        """
        self._call("stop", container_id, lambda: self.client.api.stop(container_id, timeout=timeout))

    def start(self, container_id: str) -> None:
        """Start a container; raises like :meth:`stop`."""
        self._call("start", container_id, lambda: self.client.api.start(container_id))

    def inspect_state(self, container_id: str) -> Dict[str, Any]:
        """Return the ``State`` block of ``docker inspect``."""
        result: Dict[str, Any] = {}

        def _inspect():
            result.update(self.client.api.inspect_container(container_id).get("State") or {})

        self._call("inspect", container_id, _inspect)
        return result

    @staticmethod
    def _call(operation: str, container_id: str, func) -> None:
        try:
            func()
        except NotFound as e:
            raise ContainerNotFound(container_id) from e
        except (requests.exceptions.ConnectionError, requests.exceptions.Timeout) as e:
            raise TransientIOError(f"{operation} {container_id}: {e}") from e
        except APIError as e:
            raise ContainerOperationFailed(container_id, operation, str(e.explanation or e)) from e


def own_container_id() -> Optional[str]:
    """
    Id prefix of the container this process runs in, if any.

    Docker sets the hostname to the short container id by default.
    """
    hostname = socket.gethostname()
    if _CONTAINER_ID.match(hostname):
        return hostname
    return None


def discover_targets(backup_root: Path) -> List[BackupTarget]:
    """
    Scan the backup root for targets.

    Every non-hidden directory directly below the root is one target.

    Raises:
        FileNotFoundError: If the backup root does not exist
    """
    root = Path(backup_root)
    if not root.is_dir():
        raise FileNotFoundError(f"Backup root does not exist: {root}")

    targets = [
        BackupTarget(name=entry.name, local_path=entry)
        for entry in sorted(root.iterdir(), key=lambda p: p.name)
        if entry.is_dir() and not entry.name.startswith(".")
    ]
    logger.info(f"Discovered {len(targets)} backup target(s) in {root}")
    return targets


class VolumeResolver:
    """Maps backup targets to runtime volumes and dependent containers."""

    def __init__(self, self_container_id: Optional[str] = None):
        self.self_container_id = self_container_id

    def resolve(
        self,
        targets: Sequence[BackupTarget],
        volumes: Iterable[VolumeInfo],
        containers: Iterable[ContainerInfo],
    ) -> List[VolumeBinding]:
        """
        Resolve bindings for the given targets.

        A target matches a volume iff the names are equal (case-sensitive).
        Every container mounting the matched volume is collected, running or
        not. Targets without a matching volume become plain-directory bindings
        with no containers.
        """
        volume_map = {v.name: v for v in volumes}
        candidates = [c for c in containers if not self._is_self(c)]

        bindings = []
        for target in targets:
            volume = volume_map.get(target.name)
            if volume is None:
                logger.info(f"  - {target.name}: plain directory (no matching volume)",
                            extra={"target": target.name})
                bindings.append(VolumeBinding(target=target))
                continue

            users = tuple(c for c in candidates if volume.name in c.volumes)
            logger.info(
                f"  - {target.name}: volume with {len(users)} container(s), "
                f"{sum(1 for c in users if c.is_running)} running",
                extra={"target": target.name},
            )
            bindings.append(VolumeBinding(target=target, volume=volume, containers=users))
        return bindings

    def _is_self(self, container: ContainerInfo) -> bool:
        if self.self_container_id and container.id.startswith(self.self_container_id):
            logger.debug(f"Skipping own container {container.name}",
                         extra={"container": container.name})
            return True
        return False


def resolve_bindings(runtime: DockerRuntime, targets: Sequence[BackupTarget],
                     self_container_id: Optional[str] = None) -> List[VolumeBinding]:
    """
    List runtime state once and resolve bindings for ``targets``.

    Raises:
        RuntimeUnreachable: If volumes or containers cannot be listed
    """
    volumes = runtime.list_volumes()
    containers = runtime.list_containers()
    return VolumeResolver(self_container_id).resolve(targets, volumes, containers)
