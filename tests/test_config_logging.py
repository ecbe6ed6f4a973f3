from __future__ import annotations

import json
import logging
import sys

import pytest

from threshold_compass.config import Config
from threshold_compass.errors import MalformedRecord, UnitMismatch
from threshold_compass.logging import JSONFormatter, setup_logging


class TestConfig:
    def test_defaults(self, monkeypatch):
        for name in (
            "COMPASS_LOG_FORMAT",
            "COMPASS_LOG_LEVEL",
            "COMPASS_SUBSTANCE",
            "COMPASS_HALF_LIFE_HOURS",
            "COMPASS_REPLAY_OUTPUT_DIR",
        ):
            monkeypatch.delenv(name, raising=False)
        assert Config.from_env() == Config()

    def test_reads_environment(self, monkeypatch):
        monkeypatch.setenv("COMPASS_LOG_FORMAT", "text")
        monkeypatch.setenv("COMPASS_LOG_LEVEL", "debug")
        monkeypatch.setenv("COMPASS_SUBSTANCE", " LSD ")
        monkeypatch.setenv("COMPASS_HALF_LIFE_HOURS", "96")
        monkeypatch.setenv("COMPASS_REPLAY_OUTPUT_DIR", "/tmp/replays")
        config = Config.from_env()
        assert config.log_format == "text"
        assert config.log_level == "DEBUG"
        assert config.substance == "lsd"
        assert config.half_life_hours == 96.0
        assert config.replay_output_dir == "/tmp/replays"

    def test_scenario_defaults(self):
        assert Config().scenario_defaults() == {"substance": "relative"}
        assert Config(substance="lsd", half_life_hours=96.0).scenario_defaults() == {
            "substance": "lsd",
            "half_life_hours": 96.0,
        }

    def test_rejects_non_positive_half_life(self, monkeypatch):
        monkeypatch.setenv("COMPASS_HALF_LIFE_HOURS", "0")
        with pytest.raises(RuntimeError):
            Config.from_env()


class TestJSONFormatter:
    def _record(self, **extra) -> logging.LogRecord:
        record = logging.LogRecord(
            name="threshold_compass.test",
            level=logging.WARNING,
            pathname=__file__,
            lineno=1,
            msg="Threshold range aborted: %s",
            args=("mixed units",),
            exc_info=None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_single_line_json_with_compass_context(self):
        line = JSONFormatter().format(self._record(compass_batch_id="b1", other_field="x"))
        assert "\n" not in line
        payload = json.loads(line)
        assert payload["level"] == "WARNING"
        assert payload["logger"] == "threshold_compass.test"
        assert payload["message"] == "Threshold range aborted: mixed units"
        assert payload["context"] == {"batch_id": "b1"}
        assert "other_field" not in payload

    def test_no_context_key_without_extras(self):
        payload = json.loads(JSONFormatter().format(self._record()))
        assert "context" not in payload
        assert "exception" not in payload

    def test_exception_is_included(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = self._record()
            record.exc_info = sys.exc_info()
        payload = json.loads(JSONFormatter().format(record))
        assert "ValueError: boom" in payload["exception"]
        assert payload["error_class"] == "ValueError"

    def test_engine_errors_carry_their_class(self):
        try:
            raise UnitMismatch(("g", "mg"))
        except UnitMismatch:
            record = self._record()
            record.exc_info = sys.exc_info()
        payload = json.loads(JSONFormatter().format(record))
        assert payload["error_class"] == "unit_mismatch"


def test_setup_logging_installs_one_handler():
    root = logging.getLogger()
    saved = root.handlers[:], root.level
    try:
        setup_logging("json", "DEBUG")
        setup_logging("text", "INFO")
        assert len(root.handlers) == 1
        assert not isinstance(root.handlers[0].formatter, JSONFormatter)
        assert root.level == logging.INFO
    finally:
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])


class TestErrors:
    def test_malformed_record_is_value_error(self):
        error = MalformedRecord(code="missing_id", message="dose row has no id", field="id")
        assert isinstance(error, ValueError)
        assert error.error_class == "malformed_record"
        assert str(error) == "dose row has no id"

    def test_unit_mismatch_lists_units(self):
        error = UnitMismatch(("g", "mg"))
        assert error.code == "unit_mismatch"
        assert error.units == ("g", "mg")
        assert "g, mg" in error.message
