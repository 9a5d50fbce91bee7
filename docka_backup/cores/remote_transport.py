"""
Remote transport for docka-backup.

:class:`RemoteTransport` is what the managers talk to. It wraps a
:class:`RemoteStoreClient` (SFTP in production, in-memory fakes in tests),
retries transient failures and turns the raw directory listing into a
:class:`RemoteBackupSet`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Callable, List, Protocol, Tuple, TypeVar

import paramiko

from ..helpers.constants import TRANSPORT_RETRY_ATTEMPTS
from ..helpers.errors import ArchiveNotFound, RemoteOperationFailed
from ..helpers.logging import get_logger
from ..helpers.retry import transport_retrying
from ..types import Archive, RemoteBackupSet

logger = get_logger(__name__)

T = TypeVar("T")

# socket.timeout is an OSError subclass
_TRANSIENT = (OSError, EOFError, paramiko.SSHException)
_PERMANENT = (paramiko.AuthenticationException, paramiko.BadHostKeyException, PermissionError)


class RemoteStoreClient(Protocol):
    """Minimal file operations on a remote directory."""

    def put(self, local_path: Path, remote_dir: str) -> int:
        """Upload a file, return its size in bytes."""
        ...

    def list(self, remote_dir: str) -> List[Tuple[str, int]]:
        """Return ``(name, size)`` for every regular file in the directory."""
        ...

    def get(self, name: str, remote_dir: str, local_dir: Path) -> Path:
        """Download ``name`` into ``local_dir`` and return the local path."""
        ...

    def remove(self, name: str, remote_dir: str) -> None:
        ...


class RemoteTransport:
    """Archive-level operations on the remote backup directory."""

    def __init__(self, store: RemoteStoreClient, remote_dir: str,
                 retry_attempts: int = TRANSPORT_RETRY_ATTEMPTS):
        self.store = store
        self.remote_dir = remote_dir
        self.retry_attempts = retry_attempts

    def upload(self, local_file: Path) -> Archive:
        """
        Upload a finished bundle.

        Returns:
            Archive describing the uploaded file

        Raises:
            ValueError: If the file name is not a backup archive name
            RemoteOperationFailed: If the upload failed after all retries
        """
        local_file = Path(local_file)
        if Archive.from_file_name(local_file.name) is None:
            raise ValueError(f"Not a backup archive name: {local_file.name}")

        logger.info(f"Uploading {local_file.name} to {self.remote_dir}")
        size = self._run("upload", lambda: self.store.put(local_file, self.remote_dir))
        archive = Archive.from_file_name(local_file.name, size_bytes=size)
        logger.info(f"Uploaded {local_file.name} ({size} bytes)")
        return archive

    def list(self) -> RemoteBackupSet:
        """
        List archives on the server.

        Files that do not follow the archive naming convention are ignored.
        """
        entries = self._run("list", lambda: self.store.list(self.remote_dir))
        archives = []
        for name, size in entries:
            archive = Archive.from_file_name(name, size_bytes=size)
            if archive is None:
                logger.debug(f"Ignoring foreign file {name} in {self.remote_dir}")
                continue
            archives.append(archive)
        remote_set = RemoteBackupSet(archives)
        logger.info(f"Found {len(remote_set)} backup(s) on server")
        return remote_set

    def download(self, file_name: str, local_dir: Path) -> Path:
        """
        Download an archive.

        Raises:
            ArchiveNotFound: If the file does not exist on the server
            RemoteOperationFailed: If the download failed after all retries
        """
        logger.info(f"Downloading {file_name}")
        return self._run("download", lambda: self.store.get(file_name, self.remote_dir, Path(local_dir)))

    def delete(self, file_name: str) -> None:
        """Delete an archive; an archive that is already gone counts as deleted."""
        try:
            self._run("delete", lambda: self.store.remove(file_name, self.remote_dir))
        except ArchiveNotFound:
            logger.warning(f"{file_name} was already removed from the server")

    def _run(self, operation: str, func: Callable[[], T]) -> T:
        try:
            for attempt in transport_retrying(self.retry_attempts, _TRANSIENT):
                with attempt:
                    try:
                        return func()
                    except FileNotFoundError as e:
                        raise ArchiveNotFound(f"{operation}: {e}") from e
                    except _PERMANENT as e:
                        raise RemoteOperationFailed(operation, str(e)) from e
        except _TRANSIENT as e:
            raise RemoteOperationFailed(operation, str(e) or type(e).__name__) from e
        raise RemoteOperationFailed(operation, "no attempt was made")
