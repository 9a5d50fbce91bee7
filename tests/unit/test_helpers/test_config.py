"""Unit tests for the environment-driven configuration."""

from pathlib import Path

import pytest

from docka_backup.helpers.config import AppConfig, BackupConfig
from docka_backup.helpers.errors import ConfigError

BASE_ENV = {
    "SERVER_IP": "192.168.1.20",
    "SERVER_USER": "backup",
    "SERVER_DIRECTORY": "/mnt/backups/",
}


def env(**overrides):
    values = dict(BASE_ENV)
    values.update(overrides)
    return values


@pytest.mark.unit
class TestFromEnv:
    """Reading AppConfig from environment variables."""

    def test_minimal_environment(self):
        config = AppConfig.from_env(environ=env())

        assert config.action == "backup"
        assert config.server.host == "192.168.1.20"
        assert config.server.directory == "/mnt/backups"
        assert config.server.port == 22
        assert config.backup.backup_root == Path("/backup")
        assert config.backup.parallel_workers == "auto"
        assert not config.retention.enabled
        assert config.restore.backup == "latest"
        assert config.restore.volumes == "all"

    def test_missing_required_values(self):
        with pytest.raises(ConfigError) as exc_info:
            AppConfig.from_env(environ={"SERVER_IP": "host", "SERVER_USER": "  "})
        message = str(exc_info.value)
        assert "SERVER_USER" in message
        assert "SERVER_DIRECTORY" in message

    def test_retention_and_restore_values(self):
        config = AppConfig.from_env(environ=env(
            ACTION="RESTORE",
            BACKUP_RETENTION_COUNT="5",
            BACKUP_RETENTION_PERIOD_IN_DAYS="14",
            BACKUP_TO_BE_RESTORED="backup-2024-01-01T00-00-00.tar.gz",
            VOLUME_TO_BE_RESTORED="webdata,dbdata",
        ))

        assert config.action == "restore"
        assert config.retention.count == 5
        assert config.retention.period_days == 14
        assert config.restore.backup == "backup-2024-01-01T00-00-00.tar.gz"
        assert config.restore.volumes == "webdata,dbdata"

    def test_empty_values_mean_unset(self):
        config = AppConfig.from_env(environ=env(BACKUP_RETENTION_COUNT="", LOG_LEVEL=" "))
        assert config.retention.count is None
        assert config.logging.level == "INFO"

    @pytest.mark.parametrize("name,value", [
        ("BACKUP_RETENTION_COUNT", "0"),
        ("BACKUP_RETENTION_COUNT", "many"),
        ("BACKUP_RETENTION_PERIOD_IN_DAYS", "-1"),
        ("ACTION", "sync"),
        ("SERVER_PORT", "70000"),
        ("PARALLEL_WORKERS", "0"),
        ("LOG_LEVEL", "LOUD"),
    ])
    def test_invalid_values(self, name, value):
        with pytest.raises(ConfigError):
            AppConfig.from_env(environ=env(**{name: value}))

    def test_env_file_is_overridden_by_environment(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text("SERVER_IP=from-file\nSERVER_USER=file-user\n"
                            "SERVER_DIRECTORY=/file\nBACKUP_RETENTION_COUNT=3\n")

        config = AppConfig.from_env(environ={"SERVER_IP": "from-env"}, env_file=env_file)

        assert config.server.host == "from-env"
        assert config.server.user == "file-user"
        assert config.retention.count == 3

    def test_missing_env_file(self, tmp_path):
        with pytest.raises(ConfigError):
            AppConfig.from_env(environ=env(), env_file=tmp_path / "nope.env")

    def test_config_is_frozen(self):
        config = AppConfig.from_env(environ=env())
        with pytest.raises(Exception):
            config.action = "restore"


@pytest.mark.unit
class TestBackupConfig:
    """Worker count validation."""

    @pytest.mark.parametrize("value,expected", [(None, "auto"), ("", "auto"), ("auto", "auto"),
                                                ("4", 4), (2, 2)])
    def test_parallel_workers(self, value, expected):
        assert BackupConfig(parallel_workers=value).parallel_workers == expected


@pytest.mark.unit
class TestHelpers:
    """masked() and validate_paths()."""

    def test_masked_is_flat(self):
        flat = AppConfig.from_env(environ=env()).masked()
        assert flat["server.host"] == "192.168.1.20"
        assert flat["action"] == "backup"
        assert flat["server.ssh_key_path"] == "/.ssh/id_rsa"

    def test_validate_paths(self, tmp_path):
        key = tmp_path / "id_rsa"
        key.write_text("key")
        root = tmp_path / "backup"
        root.mkdir()

        ok = AppConfig.from_env(environ=env(BACKUP_ROOT=str(root), SSH_KEY_PATH=str(key)))
        broken = AppConfig.from_env(environ=env(BACKUP_ROOT=str(tmp_path / "x"),
                                                SSH_KEY_PATH=str(tmp_path / "k")))

        assert ok.validate_paths() == []
        problems = broken.validate_paths()
        assert len(problems) == 2
        assert "Backup root" in problems[0]
        assert "SSH key" in problems[1]
