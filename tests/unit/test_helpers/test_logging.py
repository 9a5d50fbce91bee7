"""Unit tests for logging helpers."""

import json
import logging

import pytest

from docka_backup.helpers.logging import (
    LogManager,
    PACKAGE_LOGGER,
    StructuredFormatter,
    extract_extra,
    get_logger,
)


def make_record(message="hello", **extra):
    record = logging.LogRecord("docka_backup.test", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def manager():
    manager = LogManager()
    yield manager
    # detach handlers again so other tests log normally
    for handler in manager._handlers:
        logging.getLogger(PACKAGE_LOGGER).removeHandler(handler)
        handler.close()


@pytest.mark.unit
class TestStructuredFormatter:

    def test_extra_fields_are_extracted(self):
        assert extract_extra(make_record(target="webdata")) == {"target": "webdata"}

    def test_text_mode_appends_context(self):
        line = StructuredFormatter("text").format(make_record(target="webdata", container="web"))
        assert "hello" in line
        assert line.endswith("[container=web target=webdata]")

    def test_text_mode_without_extra(self):
        line = StructuredFormatter("text").format(make_record())
        assert "[" not in line.split("hello")[1]

    def test_json_mode(self):
        payload = json.loads(StructuredFormatter("json").format(make_record(target="webdata")))
        assert payload["message"] == "hello"
        assert payload["level"] == "INFO"
        assert payload["target"] == "webdata"


@pytest.mark.unit
class TestLogManager:

    def test_configure_level_and_file(self, manager, tmp_path):
        log_file = tmp_path / "logs" / "run.log"

        manager.configure(level="debug", log_file=log_file)
        get_logger("tests").debug("written to file", extra={"target": "x"})
        for handler in manager._handlers:
            handler.flush()

        assert logging.getLogger(PACKAGE_LOGGER).level == logging.DEBUG
        assert "written to file" in log_file.read_text()

    def test_reconfigure_replaces_handlers(self, manager):
        manager.configure()
        manager.configure()
        root = logging.getLogger(PACKAGE_LOGGER)
        assert sum(1 for h in root.handlers if h in manager._handlers) == 1

    def test_unknown_level(self, manager):
        with pytest.raises(ValueError):
            manager.configure(level="LOUD")


@pytest.mark.unit
def test_get_logger_is_namespaced():
    assert get_logger("docka_backup.cores.x").name == "docka_backup.cores.x"
    assert get_logger("other").name == "docka_backup.other"
