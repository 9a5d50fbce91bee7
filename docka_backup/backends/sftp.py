"""
SFTP remote store

Stores backup bundles in a directory on an SSH server using paramiko.
Every operation opens its own connection, so a dropped session never leaks
into the next retry.
"""

from __future__ import annotations

import errno
import posixpath
import stat
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Tuple

import paramiko

from ..helpers.constants import PARTIAL_UPLOAD_SUFFIX, SSH_CHANNEL_TIMEOUT, SSH_CONNECT_TIMEOUT
from ..helpers.logging import get_logger

logger = get_logger(__name__)


class SftpStore:
    """RemoteStoreClient implementation over SFTP with key authentication."""

    def __init__(self, host: str, user: str, key_path: Path, port: int = 22,
                 connect_timeout: int = SSH_CONNECT_TIMEOUT,
                 channel_timeout: int = SSH_CHANNEL_TIMEOUT,
                 known_hosts: Optional[Path] = None):
        self.host = host
        self.user = user
        self.key_path = Path(key_path)
        self.port = port
        self.connect_timeout = connect_timeout
        self.channel_timeout = channel_timeout
        self.known_hosts = Path(known_hosts) if known_hosts else self.key_path.parent / "known_hosts"
        self._warned_unknown_host = False

    @classmethod
    def from_config(cls, server) -> SftpStore:
        """Build a store from a ServerConfig."""
        return cls(
            host=server.host,
            user=server.user,
            key_path=server.ssh_key_path,
            port=server.port,
            connect_timeout=server.connect_timeout,
            known_hosts=server.known_hosts_path,
        )

    @contextmanager
    def session(self) -> Iterator[paramiko.SFTPClient]:
        """Open an SSH connection and yield its SFTP client."""
        client = paramiko.SSHClient()
        self._apply_host_key_policy(client)
        try:
            client.connect(
                self.host,
                port=self.port,
                username=self.user,
                key_filename=str(self.key_path),
                timeout=self.connect_timeout,
                banner_timeout=self.connect_timeout,
                auth_timeout=self.connect_timeout,
                allow_agent=False,
                look_for_keys=False,
            )
            logger.debug(f"SSH connected to {self.user}@{self.host}:{self.port}")
            sftp = client.open_sftp()
            sftp.get_channel().settimeout(self.channel_timeout)
            try:
                yield sftp
            finally:
                sftp.close()
        finally:
            client.close()

    def _apply_host_key_policy(self, client: paramiko.SSHClient) -> None:
        """Verify against known_hosts when present, otherwise accept the server key."""
        if self.known_hosts.is_file():
            client.load_host_keys(str(self.known_hosts))
            client.set_missing_host_key_policy(paramiko.RejectPolicy())
            return
        if not self._warned_unknown_host:
            logger.warning(f"No known_hosts file at {self.known_hosts}, "
                           f"accepting the host key of {self.host} unverified")
            self._warned_unknown_host = True
        client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    # ---- RemoteStoreClient ----

    def put(self, local_path: Path, remote_dir: str) -> int:
        """
        Upload ``local_path`` into ``remote_dir``.

        The file is written under a ``.partial`` name and renamed once
        complete, so listings never show a half-written bundle.
        """
        local_path = Path(local_path)
        final = posixpath.join(remote_dir, local_path.name)
        partial = final + PARTIAL_UPLOAD_SUFFIX
        with self.session() as sftp:
            self._makedirs(sftp, remote_dir)
            attrs = sftp.put(str(local_path), partial, confirm=True)
            if self._exists(sftp, final):
                sftp.remove(final)
            sftp.rename(partial, final)
        logger.debug(f"Stored {final} on {self.host}")
        return attrs.st_size if attrs.st_size is not None else local_path.stat().st_size

    def list(self, remote_dir: str) -> List[Tuple[str, int]]:
        """Regular files in ``remote_dir``; a missing directory is empty."""
        with self.session() as sftp:
            try:
                entries = sftp.listdir_attr(remote_dir)
            except FileNotFoundError:
                logger.info(f"Remote directory {remote_dir} does not exist yet")
                return []
        return [
            (entry.filename, entry.st_size or 0)
            for entry in entries
            if entry.st_mode is None or stat.S_ISREG(entry.st_mode)
        ]

    def get(self, name: str, remote_dir: str, local_dir: Path) -> Path:
        local_path = Path(local_dir) / name
        local_path.parent.mkdir(parents=True, exist_ok=True)
        with self.session() as sftp:
            sftp.get(posixpath.join(remote_dir, name), str(local_path))
        return local_path

    def remove(self, name: str, remote_dir: str) -> None:
        with self.session() as sftp:
            sftp.remove(posixpath.join(remote_dir, name))

    # ---- helpers ----

    @staticmethod
    def _exists(sftp: paramiko.SFTPClient, path: str) -> bool:
        try:
            sftp.stat(path)
        except FileNotFoundError:
            return False
        return True

    @staticmethod
    def _makedirs(sftp: paramiko.SFTPClient, remote_dir: str) -> None:
        """``mkdir -p`` over SFTP."""
        current = "/" if remote_dir.startswith("/") else ""
        for part in [p for p in remote_dir.split("/") if p]:
            current = posixpath.join(current, part) if current else part
            try:
                sftp.stat(current)
            except FileNotFoundError:
                try:
                    sftp.mkdir(current)
                except OSError as e:
                    # created concurrently
                    if e.errno != errno.EEXIST and not SftpStore._exists(sftp, current):
                        raise
