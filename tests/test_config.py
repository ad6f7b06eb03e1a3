from __future__ import annotations

from datetime import timezone

import pytest

import wsgi
from receipt_desk.config import LOG_FORMAT, PrintConfig


def test_defaults(tmp_path, monkeypatch):
    monkeypatch.setenv("RECEIPT_DATA_DIR", str(tmp_path))
    for name in ("PRINT_MAX_ATTEMPTS", "PRINT_RETRY_DELAY_MS", "PRINT_SETTLE_DELAY_MS", "PRINT_SPOOL_PATH", "RECEIPT_TIMEZONE"):
        monkeypatch.delenv(name, raising=False)

    config = PrintConfig()

    assert config.max_attempts == 3
    assert config.retry_delay == 0.3
    assert config.settle_delay == 0.25
    assert config.spool_path == tmp_path / "spool" / "receipt.html"
    assert config.timezone is timezone.utc


def test_overrides(monkeypatch):
    monkeypatch.setenv("PRINT_MAX_ATTEMPTS", "5")
    monkeypatch.setenv("PRINT_RETRY_DELAY_MS", "1000")

    config = PrintConfig()

    assert config.max_attempts == 5
    assert config.retry_delay == 1.0


def test_rejects_zero_attempts(monkeypatch):
    monkeypatch.setenv("PRINT_MAX_ATTEMPTS", "0")
    with pytest.raises(ValueError):
        PrintConfig()


def test_log_format_lives_in_config():
    assert "%(levelname)s" in LOG_FORMAT
    assert wsgi.LOG_FORMAT is LOG_FORMAT


def test_wsgi_main_serves_and_stops_worker(tmp_path, monkeypatch):
    monkeypatch.setenv("RECEIPT_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("PORT", "8123")
    served = []

    def fake_serve(app, listen):
        served.append((app, listen))

    monkeypatch.setattr(wsgi, "serve", fake_serve)
    wsgi.main()

    app, listen = served[0]
    assert listen.endswith(":8123")
    assert (tmp_path / "spool").is_dir()
    assert not app.extensions["print_worker"].running
