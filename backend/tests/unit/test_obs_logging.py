import json
import logging

from app.obs import logging as obs_logging


def _record(msg: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("app.test", logging.INFO, __file__, 1, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_includes_bound_context_and_redacts_secrets():
    formatter = obs_logging.JSONLogFormatter()

    with obs_logging.bound(sid="sid-1", room_id="room-1", user_id=None):
        payload = json.loads(formatter.format(_record("kicked", access_token="abc", target_user_id="bob")))

    assert payload["msg"] == "kicked"
    assert payload["sid"] == "sid-1"
    assert payload["room_id"] == "room-1"
    assert "user_id" not in payload
    assert payload["access_token"] == "[redacted]"
    assert payload["target_user_id"] == "bob"


def test_context_is_restored_after_block():
    with obs_logging.bound(request_id="req-1"):
        assert obs_logging.current("request_id") == "req-1"
        with obs_logging.bound(room_id="room-1"):
            assert obs_logging.current("request_id") == "req-1"
        assert obs_logging.current("room_id") is None
    assert obs_logging.current("request_id") is None


def test_long_values_are_clipped():
    formatter = obs_logging.JSONLogFormatter()
    payload = json.loads(formatter.format(_record("x", note="a" * 300, ids=list(range(20)))))
    assert payload["note"].endswith("…")
    assert len(payload["ids"]) == 11
