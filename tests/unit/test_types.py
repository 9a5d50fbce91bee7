"""Unit tests for the shared data models."""

from datetime import datetime, timedelta, timezone

import pytest

from docka_backup.types import (
    Archive,
    RemoteBackupSet,
    RestoreRequest,
    RunSummary,
    TargetResult,
    archive_file_name,
)


@pytest.mark.unit
class TestArchiveNames:
    """backup-YYYY-MM-DDTHH-MM-SS.tar.gz naming."""

    def test_file_name_is_utc(self):
        local = datetime(2024, 6, 1, 14, 5, 9, tzinfo=timezone(timedelta(hours=2)))
        assert archive_file_name(local) == "backup-2024-06-01T12-05-09.tar.gz"

    def test_parse(self):
        archive = Archive.from_file_name("backup-2024-06-01T12-05-09.tar.gz", size_bytes=10)
        assert archive.created_at == datetime(2024, 6, 1, 12, 5, 9, tzinfo=timezone.utc)
        assert archive.size_bytes == 10

    def test_for_timestamp(self):
        local = datetime(2024, 6, 1, 14, 5, 9, 750000, tzinfo=timezone(timedelta(hours=2)))

        archive = Archive.for_timestamp(local, size_bytes=3)

        assert archive.file_name == "backup-2024-06-01T12-05-09.tar.gz"
        assert archive.created_at == datetime(2024, 6, 1, 12, 5, 9, tzinfo=timezone.utc)
        assert archive.size_bytes == 3

    def test_for_timestamp_needs_timezone(self):
        with pytest.raises(ValueError):
            Archive.for_timestamp(datetime(2024, 6, 1, 12, 5, 9))

    @pytest.mark.parametrize("name", [
        "backup-2024-06-01.tar.gz",
        "backup-2024-13-01T00-00-00.tar.gz",
        "snapshot-2024-06-01T12-05-09.tar.gz",
        "backup-2024-06-01T12-05-09.tar.gz.partial",
        "backup-2024-06-01T12-05-09.zip",
    ])
    def test_foreign_names(self, name):
        assert Archive.from_file_name(name) is None


@pytest.mark.unit
class TestRemoteBackupSet:

    def test_ordering_and_lookup(self):
        newer = Archive.for_timestamp(datetime(2024, 1, 2, tzinfo=timezone.utc))
        older = Archive.for_timestamp(datetime(2024, 1, 1, tzinfo=timezone.utc))

        remote_set = RemoteBackupSet([newer, older])

        assert remote_set.archives == (older, newer)
        assert remote_set.latest == newer
        assert older.file_name in remote_set
        assert remote_set.get("missing") is None
        assert remote_set.without([newer.file_name]).archives == (older,)

    def test_empty(self):
        remote_set = RemoteBackupSet()
        assert remote_set.latest is None
        assert len(remote_set) == 0


@pytest.mark.unit
class TestRestoreRequest:

    def test_defaults(self):
        request = RestoreRequest.parse("latest", "all")
        assert request.wants_latest
        assert request.wants_all_volumes

    def test_volume_list(self):
        request = RestoreRequest.parse("backup-2024-01-01T00-00-00.tar.gz", " webdata , dbdata,")
        assert request.volume_selector == frozenset({"webdata", "dbdata"})
        assert not request.wants_latest

    def test_empty_values_fall_back(self):
        request = RestoreRequest.parse("", "")
        assert request.wants_latest
        assert request.wants_all_volumes

    def test_only_separators(self):
        with pytest.raises(ValueError):
            RestoreRequest.parse("latest", " , ,")


@pytest.mark.unit
class TestRunSummary:

    def test_success_requires_all_targets_and_no_errors(self):
        summary = RunSummary(action="backup", started_at=datetime.now(timezone.utc))
        assert summary.success

        failed = TargetResult("webdata", "backup")
        failed.fail("boom")
        summary.results = [TargetResult("photos", "backup"), failed]
        assert not summary.success
        assert summary.failed_targets == ["webdata"]

        summary.results = [TargetResult("photos", "backup")]
        summary.errors.append("Upload failed")
        assert not summary.success
