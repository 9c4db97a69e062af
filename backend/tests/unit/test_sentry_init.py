from unittest.mock import patch

from app.core import sentry_init


def test_init_sentry_skips_without_dsn(monkeypatch):
    monkeypatch.delenv("SENTRY_DSN", raising=False)
    monkeypatch.delenv("SENTRY_ENABLED", raising=False)
    assert sentry_init.init_sentry() is False


def test_init_sentry_configures_sdk(monkeypatch):
    monkeypatch.setenv("SENTRY_DSN", "https://key@o0.ingest.sentry.io/1")
    monkeypatch.setenv("SENTRY_TRACES_SAMPLE_RATE", "5")
    with patch("sentry_sdk.init") as init, patch("sentry_sdk.set_tag") as set_tag:
        assert sentry_init.init_sentry() is True
    kwargs = init.call_args.kwargs
    assert kwargs["traces_sample_rate"] == 1.0
    assert kwargs["max_request_body_size"] == "never"
    assert kwargs["before_send"] is sentry_init._before_send
    set_tag.assert_called_once_with("service", "agricjournal-backend")


def test_before_send_scrubs_credentials_and_manuscripts():
    event = {
        "request": {
            "headers": {"Authorization": "Bearer x", "User-Agent": "pytest"},
            "data": {"abstract": "secret"},
            "cookies": {"sb": "1"},
        },
        "extra": {"form": {"abstract": "full text", "title": "ok", "token": "t"}, "blob": b"\x00"},
    }
    out = sentry_init._before_send(event, {})
    assert out["request"]["headers"] == {"User-Agent": "pytest"}
    assert out["request"]["data"] == "[Filtered]"
    assert out["request"]["cookies"] == "[Filtered]"
    assert out["extra"]["form"] == {"abstract": "[Filtered]", "title": "ok", "token": "[Filtered]"}
    assert out["extra"]["blob"] == "[Filtered]"
