import json
import logging
from types import SimpleNamespace

from gigbook.core.logging import REQUEST_LOGGER, JsonFormatter, build_logging_config
from gigbook.core.metrics import RequestMetric, RequestMetricsRecorder


def _settings(**overrides):
    values = {
        "log_level": "INFO",
        "request_log_level": "",
        "log_json": False,
        "log_file": "",
    }
    values.update(overrides)
    return SimpleNamespace(**values)


def test_request_logger_follows_root_level_by_default():
    config = build_logging_config(_settings(log_level="DEBUG"))

    assert config["root"]["level"] == "DEBUG"
    assert config["loggers"][REQUEST_LOGGER] == {"level": "DEBUG"}
    assert config["loggers"]["uvicorn.access"] == {"level": "WARNING"}
    assert list(config["handlers"]) == ["console"]
    assert config["handlers"]["console"]["formatter"] == "standard"


def test_request_log_level_and_json_file(tmp_path):
    log_file = str(tmp_path / "app.log")
    config = build_logging_config(
        _settings(request_log_level="WARNING", log_json=True, log_file=log_file)
    )

    assert config["loggers"][REQUEST_LOGGER] == {"level": "WARNING"}
    assert config["handlers"]["console"]["formatter"] == "json"
    assert config["handlers"]["file"]["filename"] == log_file
    assert config["handlers"]["file"]["formatter"] == "json"
    assert config["root"]["handlers"] == ["console", "file"]


def test_json_formatter_includes_request_fields(caplog):
    recorder = RequestMetricsRecorder(10)

    with caplog.at_level(logging.INFO, logger=REQUEST_LOGGER):
        recorder.record(RequestMetric("GET", "/artists", 200, 12.34, user_id=7))

    line = json.loads(JsonFormatter().format(caplog.records[-1]))
    assert line["name"] == REQUEST_LOGGER
    assert line["level"] == "INFO"
    assert line["message"] == "GET /artists - 200 (12.3ms)"
    assert line["request"] == {
        "method": "GET",
        "path": "/artists",
        "status_code": 200,
        "duration_ms": 12.3,
        "user_id": 7,
    }


def test_json_formatter_without_request_fields():
    record = logging.LogRecord("gigbook.core.cache", logging.WARNING, __file__, 1, "fallback to %s", ("memory",), None)

    line = json.loads(JsonFormatter().format(record))

    assert line["message"] == "fallback to memory"
    assert "request" not in line
