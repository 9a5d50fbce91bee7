"""
Shared pytest fixtures for docka-backup tests.

Provides in-memory stand-ins for the Docker runtime and the remote store,
plus factories for configuration and run contexts.
"""

import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import pytest
from typer.testing import CliRunner

from docka_backup.cores.remote_transport import RemoteTransport
from docka_backup.cores.run_context import RunContext
from docka_backup.cores.safe_exit_manager import SafeExitManager
from docka_backup.helpers.config import AppConfig
from docka_backup.helpers.errors import ContainerNotFound, ContainerOperationFailed
from docka_backup.types import ContainerInfo, VolumeInfo


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: fast tests without external services")
    config.addinivalue_line("markers", "integration: tests touching real tar files and flows")


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """Retries happen instantly in tests."""
    monkeypatch.setattr("docka_backup.helpers.retry.CONTAINER_RETRY_WAIT_MIN", 0)
    monkeypatch.setattr("docka_backup.helpers.retry.CONTAINER_RETRY_WAIT_MAX", 0)
    monkeypatch.setattr("docka_backup.helpers.retry.TRANSPORT_RETRY_WAIT_MIN", 0)
    monkeypatch.setattr("docka_backup.helpers.retry.TRANSPORT_RETRY_WAIT_MAX", 0)


@pytest.fixture(autouse=True)
def reset_safe_exit():
    SafeExitManager.reset_instance()
    yield
    SafeExitManager.reset_instance()


# =============================================================================
# Fakes
# =============================================================================


class FakeRuntime:
    """
    In-memory container runtime.

    Containers are keyed by id; ``fail_stop``/``fail_start`` make the
    corresponding call raise ContainerOperationFailed every time.
    """

    def __init__(self):
        self.volumes: List[VolumeInfo] = []
        self.containers: Dict[str, ContainerInfo] = {}
        self.running: Dict[str, bool] = {}
        self.fail_stop: set = set()
        self.fail_start: set = set()
        self.events: List[Tuple[str, str]] = []
        self._lock = threading.Lock()

    def add_volume(self, name: str) -> VolumeInfo:
        volume = VolumeInfo(name=name, mountpoint=f"/var/lib/docker/volumes/{name}/_data")
        self.volumes.append(volume)
        return volume

    def add_container(self, cid: str, name: str, volumes=(), running: bool = True) -> ContainerInfo:
        info = ContainerInfo(id=cid, name=name, is_running=running, volumes=tuple(volumes))
        self.containers[cid] = info
        self.running[cid] = running
        return info

    def running_ids(self) -> set:
        return {cid for cid, up in self.running.items() if up}

    def stop_calls(self) -> List[str]:
        return [cid for op, cid in self.events if op == "stop"]

    # ---- runtime API ----

    def list_volumes(self) -> List[VolumeInfo]:
        return list(self.volumes)

    def list_containers(self) -> List[ContainerInfo]:
        return [
            ContainerInfo(id=c.id, name=c.name, is_running=self.running[c.id], volumes=c.volumes)
            for c in self.containers.values()
        ]

    def stop(self, container_id: str, timeout: int) -> None:
        with self._lock:
            self.events.append(("stop", container_id))
        if container_id not in self.containers:
            raise ContainerNotFound(container_id)
        if container_id in self.fail_stop:
            raise ContainerOperationFailed(container_id, "stop", "refused")
        self.running[container_id] = False

    def start(self, container_id: str) -> None:
        with self._lock:
            self.events.append(("start", container_id))
        if container_id not in self.containers:
            raise ContainerNotFound(container_id)
        if container_id in self.fail_start:
            raise ContainerOperationFailed(container_id, "start", "refused")
        self.running[container_id] = True

    def inspect_state(self, container_id: str) -> dict:
        return {"Running": self.running.get(container_id, False)}


class FakeStore:
    """In-memory RemoteStoreClient; ``failures`` maps an operation to a list of errors to raise first."""

    def __init__(self):
        self.files: Dict[str, bytes] = {}
        self.failures: Dict[str, List[BaseException]] = {}
        self.calls: List[Tuple[str, str]] = []

    def _maybe_fail(self, operation: str) -> None:
        pending = self.failures.get(operation)
        if pending:
            raise pending.pop(0)

    def put(self, local_path: Path, remote_dir: str) -> int:
        self.calls.append(("put", Path(local_path).name))
        self._maybe_fail("put")
        data = Path(local_path).read_bytes()
        self.files[Path(local_path).name] = data
        return len(data)

    def list(self, remote_dir: str) -> List[Tuple[str, int]]:
        self.calls.append(("list", remote_dir))
        self._maybe_fail("list")
        return [(name, len(data)) for name, data in self.files.items()]

    def get(self, name: str, remote_dir: str, local_dir: Path) -> Path:
        self.calls.append(("get", name))
        self._maybe_fail("get")
        if name not in self.files:
            raise FileNotFoundError(2, "No such file", name)
        target = Path(local_dir) / name
        target.write_bytes(self.files[name])
        return target

    def remove(self, name: str, remote_dir: str) -> None:
        self.calls.append(("remove", name))
        self._maybe_fail("remove")
        if name not in self.files:
            raise FileNotFoundError(2, "No such file", name)
        del self.files[name]


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Typer CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def fake_runtime():
    return FakeRuntime()


@pytest.fixture
def fake_store():
    return FakeStore()


@pytest.fixture
def backup_root(tmp_path):
    root = tmp_path / "backup"
    root.mkdir()
    return root


@pytest.fixture
def make_config(tmp_path, backup_root):
    """Factory for AppConfig with test paths; keyword sections override defaults."""

    def _make(action: str = "backup", retention: Optional[dict] = None,
              backup: Optional[dict] = None, restore: Optional[dict] = None) -> AppConfig:
        backup_section = {
            "backup_root": str(backup_root),
            "temp_path": str(tmp_path / "staging"),
            "parallel_workers": 2,
            "start_timeout": 1,
        }
        backup_section.update(backup or {})
        return AppConfig.model_validate({
            "action": action,
            "server": {"host": "backup.example.org", "user": "backup", "directory": "/srv/backups"},
            "retention": retention or {},
            "backup": backup_section,
            "restore": restore or {},
        })

    return _make


@pytest.fixture
def make_context(make_config, fake_runtime, fake_store):
    """Factory for a RunContext wired to the fakes."""

    def _make(config: Optional[AppConfig] = None, cancel_event: Optional[threading.Event] = None,
              self_container_id: Optional[str] = None) -> RunContext:
        cfg = config or make_config()
        return RunContext(
            config=cfg,
            runtime=fake_runtime,
            transport=RemoteTransport(fake_store, cfg.server.directory, retry_attempts=3),
            cancel_event=cancel_event or threading.Event(),
            self_container_id=self_container_id,
        )

    return _make


@pytest.fixture
def write_tree():
    """Create ``files`` (relative path -> text) below ``root``."""

    def _write(root: Path, files: Dict[str, str]) -> None:
        for rel, content in files.items():
            path = root / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)

    return _write


@pytest.fixture
def read_tree():
    """Relative path -> text for every regular file below ``root``."""

    def _read(root: Path) -> Dict[str, str]:
        return {
            str(p.relative_to(root)): p.read_text()
            for p in sorted(root.rglob("*"))
            if p.is_file() and not p.is_symlink()
        }

    return _read
