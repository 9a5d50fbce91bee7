"""
Archive building and extraction for docka-backup.

Each target becomes one ``<target>.tar.gz`` member; all members of a run are
packed into one ``backup-<timestamp>.tar.gz`` bundle that is uploaded as a
whole. Restores read the bundle, pull single members out and extract them
over the target directory.
"""

from __future__ import annotations

import os
import shutil
import stat
import tarfile
import tempfile
import warnings
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence

from ..helpers.constants import MEMBER_SUFFIX
from ..helpers.errors import ArchiveError, ArchiveNotFound, PartialArchiveWarning
from ..helpers.logging import get_logger
from ..types import BackupTarget, TargetArchive, archive_file_name

logger = get_logger(__name__)


def _restore_filter(member: tarfile.TarInfo, dest_path: str) -> tarfile.TarInfo:
    """
    ``tar`` extraction filter that keeps the archived permission bits.

    Path checks (absolute names, ``..``, links leaving the destination) come
    from :func:`tarfile.tar_filter`; only the mode it strips is put back.
    """
    checked = tarfile.tar_filter(member, dest_path)
    return checked.replace(mode=member.mode, deep=False)


class ArchiveBuilder:
    """Builds target archives and run bundles, and extracts them again."""

    def __init__(self, compresslevel: int = 6):
        self.compresslevel = compresslevel

    # ------------------------------------------------------------------
    # Backup side
    # ------------------------------------------------------------------

    def build(self, target: BackupTarget, created_at: datetime, dest_dir: Path) -> TargetArchive:
        """
        Archive the contents of one target directory.

        Args:
            target: Directory to archive
            created_at: Run timestamp recorded on the result
            dest_dir: Where ``<target>.tar.gz`` is written

        Returns:
            TargetArchive with size and per-entry warnings

        Raises:
            ArchiveError: If the target root itself is missing or unreadable
        """
        root = Path(target.local_path)
        try:
            with os.scandir(root):
                pass
        except OSError as e:
            raise ArchiveError(f"Cannot read target {target.name} at {root}: {e}") from e

        dest_dir.mkdir(parents=True, exist_ok=True)
        out_path = dest_dir / f"{target.name}{MEMBER_SUFFIX}"
        result = TargetArchive(target_name=target.name, path=out_path, created_at=created_at)

        logger.debug(f"Archiving {root} -> {out_path}", extra={"target": target.name})
        try:
            with tarfile.open(out_path, "w:gz", compresslevel=self.compresslevel) as tar:
                tar.add(str(root), arcname=".", recursive=False)
                self._add_tree(tar, root, result)
        except OSError as e:
            out_path.unlink(missing_ok=True)
            raise ArchiveError(f"Failed to write archive for {target.name}: {e}") from e

        result.size_bytes = out_path.stat().st_size
        logger.info(
            f"Archived {target.name} ({result.size_bytes} bytes, {len(result.warnings)} warning(s))",
            extra={"target": target.name},
        )
        return result

    def _add_tree(self, tar: tarfile.TarFile, root: Path, result: TargetArchive) -> None:
        def on_error(error: OSError) -> None:
            self._warn(result, f"unreadable directory {error.filename}: {error.strerror}")

        for dirpath, dirnames, filenames in os.walk(root, onerror=on_error):
            dirnames.sort()
            for name in dirnames + sorted(filenames):
                path = os.path.join(dirpath, name)
                self._add_entry(tar, root, path, result)

    def _add_entry(self, tar: tarfile.TarFile, root: Path, path: str, result: TargetArchive) -> None:
        arcname = os.path.relpath(path, root)
        try:
            st = os.lstat(path)
        except OSError as e:
            self._warn(result, f"cannot stat {arcname}: {e.strerror}")
            return

        mode = st.st_mode
        if stat.S_ISLNK(mode):
            link = os.readlink(path)
            resolved = os.path.normpath(os.path.join(os.path.dirname(arcname), link))
            if os.path.isabs(link) or resolved == ".." or resolved.startswith(".." + os.sep):
                self._warn(result, f"skipped symlink leaving the target: {arcname} -> {link}")
                return
            tar.add(path, arcname=arcname, recursive=False)
        elif stat.S_ISDIR(mode):
            tar.add(path, arcname=arcname, recursive=False)
        elif stat.S_ISREG(mode):
            try:
                handle = open(path, "rb")
            except OSError as e:
                self._warn(result, f"cannot read {arcname}: {e.strerror}")
                return
            with handle:
                info = tar.gettarinfo(arcname=arcname, fileobj=handle)
                tar.addfile(info, handle)
        else:
            self._warn(result, f"skipped special file {arcname}")

    @staticmethod
    def _warn(result: TargetArchive, message: str) -> None:
        result.warnings.append(message)
        logger.warning(message, extra={"target": result.target_name})
        warnings.warn(f"{result.target_name}: {message}", PartialArchiveWarning, stacklevel=3)

    def bundle(self, members: Sequence[TargetArchive], created_at: datetime, dest_dir: Path) -> Path:
        """
        Pack member archives into the run-wide bundle.

        Returns:
            Path of ``backup-<timestamp>.tar.gz``
        """
        dest_dir.mkdir(parents=True, exist_ok=True)
        bundle_path = dest_dir / archive_file_name(created_at)
        # members are gzip already, a light level keeps the original layout cheap
        with tarfile.open(bundle_path, "w:gz", compresslevel=1) as tar:
            for member in sorted(members, key=lambda m: m.target_name):
                tar.add(str(member.path), arcname=f"{member.target_name}{MEMBER_SUFFIX}")
        logger.info(f"Bundled {len(members)} target archive(s) into {bundle_path.name}")
        return bundle_path

    # ------------------------------------------------------------------
    # Restore side
    # ------------------------------------------------------------------

    def bundle_members(self, bundle_path: Path) -> List[str]:
        """Target names contained in a bundle, sorted."""
        names = []
        with self._open_for_read(bundle_path) as tar:
            for member in tar.getmembers():
                name = _member_name(member)
                if name is not None:
                    names.append(name)
        return sorted(names)

    def extract_member(self, bundle_path: Path, target_name: str, dest_dir: Path) -> Path:
        """
        Copy one target archive out of a bundle.

        Raises:
            ArchiveNotFound: If the bundle has no member for ``target_name``
        """
        dest_dir.mkdir(parents=True, exist_ok=True)
        with self._open_for_read(bundle_path) as tar:
            for member in tar.getmembers():
                if _member_name(member) != target_name:
                    continue
                source = tar.extractfile(member)
                if source is None:
                    break
                out_path = dest_dir / f"{target_name}{MEMBER_SUFFIX}"
                with source, open(out_path, "wb") as out:
                    shutil.copyfileobj(source, out)
                return out_path
        raise ArchiveNotFound(f"{target_name} is not part of {bundle_path.name}")

    def extract(self, archive_path: Path, destination: Path, clean: bool = False) -> None:
        """
        Extract a target archive over ``destination``.

        Existing files are overwritten, files missing from the archive are left
        alone unless ``clean`` is set, in which case the destination is emptied
        first.

        Raises:
            ArchiveError: If the archive is unreadable or contains unsafe paths
        """
        destination = Path(destination)
        if not destination.is_dir():
            raise ArchiveError(f"Restore destination is not a directory: {destination}")

        try:
            with self._open_for_read(archive_path) as tar:
                members = tar.getmembers()
                # nothing in destination changes before every entry passed the filter
                self._check_members(members)
                if clean:
                    self._empty_directory(destination)
                self._unlink_shadowing_links(members, destination)
                tar.extractall(destination, members=members, filter=_restore_filter)
        except tarfile.FilterError as e:
            raise ArchiveError(f"Refusing unsafe archive entry in {archive_path.name}: {e}") from e
        except (tarfile.TarError, OSError) as e:
            raise ArchiveError(f"Failed to extract {archive_path.name}: {e}") from e
        logger.info(f"Extracted {archive_path.name} into {destination}")

    @staticmethod
    def _open_for_read(path: Path) -> tarfile.TarFile:
        try:
            return tarfile.open(path, "r:*")
        except (tarfile.TarError, OSError) as e:
            raise ArchiveError(f"Cannot open archive {path}: {e}") from e

    @staticmethod
    def _empty_directory(destination: Path) -> None:
        for child in destination.iterdir():
            if child.is_dir() and not child.is_symlink():
                shutil.rmtree(child)
            else:
                child.unlink()

    @staticmethod
    def _check_members(members: Sequence[tarfile.TarInfo]) -> None:
        """
        Run the extraction filter against an empty scratch directory.

        Nothing exists there, so the checks are purely on names and link
        targets: absolute paths, ``..`` and special files are refused before
        the real destination is touched.
        """
        with tempfile.TemporaryDirectory(prefix="docka-check-") as scratch:
            for member in members:
                tarfile.tar_filter(member, scratch)

    @staticmethod
    def _unlink_shadowing_links(members: Sequence[tarfile.TarInfo], destination: Path) -> None:
        """Remove existing symlinks an entry would otherwise be written through."""
        root = destination.resolve()
        for member in members:
            name = member.name
            if name in ("", ".") or os.path.isabs(name) or ".." in Path(name).parts:
                continue
            path = destination / name
            parent = path.parent.resolve()
            if parent != root and root not in parent.parents:
                continue
            if path.is_symlink():
                path.unlink()


def _member_name(member: tarfile.TarInfo) -> Optional[str]:
    name = member.name
    if name.startswith("./"):
        name = name[2:]
    if not member.isfile() or "/" in name or not name.endswith(MEMBER_SUFFIX):
        return None
    target = name[:-len(MEMBER_SUFFIX)]
    return target or None
