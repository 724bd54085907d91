import json
import logging

from timeline_engine.config import Config
from timeline_engine.logging_config import JSONFormatter, TextFormatter, setup_logging


def _record(**extra):
    record = logging.LogRecord("timeline_engine.pipeline", logging.INFO, __file__, 10, "Reconciled %s", ("2025-03-04",), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_formatter_groups_timeline_extras():
    payload = json.loads(JSONFormatter().format(_record(timeline_ymd="2025-03-04", timeline_events=7, other="x")))

    assert payload["message"] == "Reconciled 2025-03-04"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "timeline_engine.pipeline"
    assert payload["context"] == {"ymd": "2025-03-04", "events": 7}


def test_json_formatter_omits_empty_context():
    payload = json.loads(JSONFormatter().format(_record()))
    assert "context" not in payload


def test_text_formatter_appends_extras():
    line = TextFormatter().format(_record(timeline_user_id="u1", timeline_ymd="2025-03-04"))

    assert "INFO timeline_engine.pipeline: Reconciled 2025-03-04" in line
    assert line.endswith("[user_id=u1 ymd=2025-03-04]")


def test_setup_logging_follows_config():
    root = logging.getLogger()
    saved_handlers = root.handlers[:]
    saved_level = root.level
    try:
        setup_logging(Config())
        setup_logging(Config(log_format="text", log_level="DEBUG"))

        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, TextFormatter)
        assert root.level == logging.DEBUG
    finally:
        for handler in root.handlers[:]:
            root.removeHandler(handler)
        for handler in saved_handlers:
            root.addHandler(handler)
        root.setLevel(saved_level)
