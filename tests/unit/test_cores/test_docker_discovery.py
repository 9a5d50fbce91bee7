"""
Unit tests for Docker discovery: target scanning, volume resolution and the
DockerRuntime error mapping.

The Docker SDK client is always a Mock; no daemon is needed.
"""

from unittest.mock import Mock, patch

import pytest
import requests
from docker.errors import APIError, DockerException, NotFound

from docka_backup.cores.docker_discovery import (
    DockerRuntime,
    VolumeResolver,
    discover_targets,
    own_container_id,
    resolve_bindings,
)
from docka_backup.helpers.errors import (
    ContainerNotFound,
    ContainerOperationFailed,
    RuntimeUnreachable,
    TransientIOError,
)
from docka_backup.types import BackupTarget, ContainerInfo, VolumeInfo


# =============================================================================
# discover_targets
# =============================================================================


@pytest.mark.unit
class TestDiscoverTargets:
    """Folders under the backup root become targets."""

    def test_directories_sorted_hidden_and_files_ignored(self, backup_root):
        for name in ["nextcloud", "app_data", ".snapshots"]:
            (backup_root / name).mkdir()
        (backup_root / "README.txt").write_text("not a target")

        targets = discover_targets(backup_root)

        assert [t.name for t in targets] == ["app_data", "nextcloud"]
        assert targets[0].local_path == backup_root / "app_data"

    def test_empty_root(self, backup_root):
        assert discover_targets(backup_root) == []

    def test_missing_root_raises(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            discover_targets(tmp_path / "missing")


# =============================================================================
# VolumeResolver
# =============================================================================


@pytest.mark.unit
class TestVolumeResolver:
    """Target name == volume name, containers collected by mount."""

    @pytest.fixture
    def volumes(self):
        return [VolumeInfo(name="webdata"), VolumeInfo(name="dbdata"), VolumeInfo(name="Media")]

    @pytest.fixture
    def containers(self):
        return [
            ContainerInfo(id="a" * 64, name="web", is_running=True, volumes=("webdata",)),
            ContainerInfo(id="b" * 64, name="db", is_running=True, volumes=("dbdata", "webdata")),
            ContainerInfo(id="c" * 64, name="cron", is_running=False, volumes=("webdata",)),
            ContainerInfo(id="d" * 64, name="docka", is_running=True, volumes=("webdata",)),
        ]

    def test_matching_volume_collects_all_users(self, tmp_path, volumes, containers):
        target = BackupTarget("webdata", tmp_path / "webdata")

        [binding] = VolumeResolver().resolve([target], volumes, containers)

        assert binding.volume.name == "webdata"
        assert [c.name for c in binding.containers] == ["web", "db", "cron", "docka"]
        assert [c.name for c in binding.running_containers] == ["web", "db", "docka"]
        assert not binding.is_plain_directory

    def test_self_container_is_excluded(self, tmp_path, volumes, containers):
        target = BackupTarget("webdata", tmp_path / "webdata")

        [binding] = VolumeResolver(self_container_id="d" * 12).resolve([target], volumes, containers)

        assert "docka" not in [c.name for c in binding.containers]

    def test_unmatched_target_is_plain_directory(self, tmp_path, volumes, containers):
        target = BackupTarget("photos", tmp_path / "photos")

        [binding] = VolumeResolver().resolve([target], volumes, containers)

        assert binding.is_plain_directory
        assert binding.containers == ()

    def test_match_is_case_sensitive(self, tmp_path, volumes, containers):
        target = BackupTarget("media", tmp_path / "media")

        [binding] = VolumeResolver().resolve([target], volumes, containers)

        assert binding.is_plain_directory

    def test_volume_without_containers(self, tmp_path, volumes, containers):
        target = BackupTarget("Media", tmp_path / "Media")

        [binding] = VolumeResolver().resolve([target], volumes, containers)

        assert binding.volume.name == "Media"
        assert binding.containers == ()

    def test_resolve_bindings_lists_runtime_once(self, tmp_path, fake_runtime):
        fake_runtime.add_volume("webdata")
        fake_runtime.add_container("aaa111", "web", volumes=["webdata"])
        targets = [BackupTarget("webdata", tmp_path / "webdata"), BackupTarget("x", tmp_path / "x")]

        bindings = resolve_bindings(fake_runtime, targets)

        assert [b.name for b in bindings] == ["webdata", "x"]
        assert [c.name for c in bindings[0].containers] == ["web"]


# =============================================================================
# DockerRuntime
# =============================================================================


@pytest.mark.unit
class TestDockerRuntimeConnect:
    """Connecting to the daemon."""

    def test_from_env_failure_is_unreachable(self):
        with patch("docka_backup.cores.docker_discovery.docker.from_env",
                   side_effect=DockerException("no socket")):
            with pytest.raises(RuntimeUnreachable):
                DockerRuntime()

    def test_base_url_uses_docker_client(self):
        with patch("docka_backup.cores.docker_discovery.docker.DockerClient") as client_cls:
            runtime = DockerRuntime(base_url="unix:///tmp/docker.sock", timeout=5)

        client_cls.assert_called_once_with(base_url="unix:///tmp/docker.sock", timeout=5)
        assert runtime.client is client_cls.return_value

    def test_ping_failure_is_unreachable(self):
        client = Mock()
        client.ping.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(RuntimeUnreachable):
            DockerRuntime(client=client).ping()


@pytest.mark.unit
class TestDockerRuntimeListings:
    """Volume and container listings."""

    def test_list_volumes(self):
        client = Mock()
        client.volumes.list.return_value = [
            Mock(attrs={"Mountpoint": "/var/lib/docker/volumes/webdata/_data", "Driver": "local"}),
            Mock(attrs=None),
        ]
        client.volumes.list.return_value[0].name = "webdata"
        client.volumes.list.return_value[1].name = "other"

        volumes = DockerRuntime(client=client).list_volumes()

        assert volumes[0] == VolumeInfo("webdata", "/var/lib/docker/volumes/webdata/_data", "local")
        assert volumes[1] == VolumeInfo("other", "", "local")

    def test_list_volumes_failure(self):
        client = Mock()
        client.volumes.list.side_effect = APIError("daemon error")
        with pytest.raises(RuntimeUnreachable):
            DockerRuntime(client=client).list_volumes()

    def test_list_containers_parses_summaries(self):
        client = Mock()
        client.containers.list.return_value = [Mock(attrs={
            "Id": "abc123def456" * 2,
            "Names": ["/web"],
            "State": "running",
            "Mounts": [
                {"Type": "volume", "Name": "webdata"},
                {"Type": "bind", "Source": "/etc/hosts"},
            ],
        })]

        [info] = DockerRuntime(client=client).list_containers()

        client.containers.list.assert_called_once_with(all=True, sparse=True)
        assert info.name == "web"
        assert info.is_running
        assert info.volumes == ("webdata",)

    def test_list_containers_failure(self):
        client = Mock()
        client.containers.list.side_effect = requests.exceptions.ConnectionError("refused")
        with pytest.raises(RuntimeUnreachable):
            DockerRuntime(client=client).list_containers()


@pytest.mark.unit
class TestParseContainer:
    """Both list and inspect attribute shapes are understood."""

    def test_inspect_shape(self):
        info = DockerRuntime._parse_container({
            "Id": "f" * 64,
            "Name": "/db",
            "State": {"Running": False, "Status": "exited"},
            "Mounts": [{"Type": "volume", "Name": "dbdata"}],
        })
        assert info == ContainerInfo(id="f" * 64, name="db", is_running=False, volumes=("dbdata",))

    def test_missing_name_falls_back_to_short_id(self):
        info = DockerRuntime._parse_container({"Id": "0123456789abcdef", "State": "exited"})
        assert info.name == "0123456789ab"
        assert info.volumes == ()


@pytest.mark.unit
class TestDockerRuntimeLifecycle:
    """SDK errors map onto the docka-backup taxonomy."""

    def test_stop_passes_timeout(self):
        client = Mock()
        DockerRuntime(client=client).stop("abc", timeout=30)
        client.api.stop.assert_called_once_with("abc", timeout=30)

    def test_not_found(self):
        client = Mock()
        client.api.stop.side_effect = NotFound("No such container")
        with pytest.raises(ContainerNotFound) as exc_info:
            DockerRuntime(client=client).stop("abc", timeout=10)
        assert exc_info.value.container_id == "abc"

    def test_timeout_is_transient(self):
        client = Mock()
        client.api.start.side_effect = requests.exceptions.ReadTimeout("slow")
        with pytest.raises(TransientIOError):
            DockerRuntime(client=client).start("abc")

    def test_api_error_is_operation_failed(self):
        client = Mock()
        client.api.start.side_effect = APIError("500 Server Error", explanation="port is already allocated")
        with pytest.raises(ContainerOperationFailed, match="port is already allocated"):
            DockerRuntime(client=client).start("abc")

    def test_inspect_state(self):
        client = Mock()
        client.api.inspect_container.return_value = {"State": {"Running": True, "Health": {"Status": "healthy"}}}

        state = DockerRuntime(client=client).inspect_state("abc")

        assert state["Running"] is True
        assert state["Health"]["Status"] == "healthy"


@pytest.mark.unit
class TestOwnContainerId:
    """Hostname based self detection."""

    def test_container_hostname(self):
        with patch("docka_backup.cores.docker_discovery.socket.gethostname", return_value="3f4e5d6c7b8a"):
            assert own_container_id() == "3f4e5d6c7b8a"

    def test_regular_hostname(self):
        with patch("docka_backup.cores.docker_discovery.socket.gethostname", return_value="backup-host"):
            assert own_container_id() is None
