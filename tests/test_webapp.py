from __future__ import annotations

import io
import json

import pytest

from receipt_desk.config import PrintConfig
from receipt_desk.dispatcher import PrintDispatcher
from receipt_desk.printer import ConsoleSurface
from receipt_desk.webapp import create_app

from samples import SALE_PAYLOAD


_apps = []


@pytest.fixture(autouse=True)
def _stop_print_workers():
    yield
    while _apps:
        _apps.pop().extensions["print_worker"].close()


def _client(tmp_path, monkeypatch, surface=None, fallback=None):
    monkeypatch.setenv("RECEIPT_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("RECEIPT_TIMEZONE", "UTC")
    dispatcher = PrintDispatcher(surface, fallback, retry_delay=0, settle_delay=0)
    app = create_app(PrintConfig(), dispatcher)
    app.config["TESTING"] = True
    _apps.append(app)
    return app.test_client()


def test_health(tmp_path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_preview_html(tmp_path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    resp = client.post("/receipts/preview", json=SALE_PAYLOAD)

    assert resp.status_code == 200
    assert resp.mimetype == "text/html"
    assert resp.headers["Cache-Control"].startswith("no-store")
    body = resp.get_data(as_text=True)
    assert "SIMPLIFIED INVOICE" in body
    assert "<span>10/08/2025 14:05</span>" in body
    assert "<span>PAYMENT METHOD:</span><span>CARD</span>" in body


def test_preview_text(tmp_path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    resp = client.post("/receipts/preview.txt", json={"receipt": SALE_PAYLOAD})

    assert resp.status_code == 200
    assert resp.mimetype == "text/plain"
    assert "TOTAL: 4,50" in resp.get_data(as_text=True)


def test_preview_rejects_invalid_payload(tmp_path, monkeypatch):
    client = _client(tmp_path, monkeypatch)

    resp = client.post("/receipts/preview", json={"receiptType": "sale"})
    assert resp.status_code == 400
    assert resp.get_json()["ok"] is False

    resp = client.post("/receipts/preview", data="not json", content_type="text/plain")
    assert resp.status_code == 400


@pytest.mark.parametrize(
    "overrides",
    [{"createdDate": str(10**30)}, {"total": "1e30"}, {"discount": "-1e25"}],
)
def test_unrenderable_values_are_rejected_not_crashed(tmp_path, monkeypatch, overrides):
    client = _client(tmp_path, monkeypatch)
    payload = dict(SALE_PAYLOAD, **overrides)

    for route in ("/receipts/preview", "/receipts/preview.txt", "/receipts/save", "/receipts/print"):
        resp = client.post(route, json=payload)
        assert resp.status_code == 400, route
        assert resp.get_json()["ok"] is False

    assert not (tmp_path / "receipts" / "SALE_ORD-1001.html").exists()


def test_print_success_records_history(tmp_path, monkeypatch):
    stream = io.StringIO()
    client = _client(tmp_path, monkeypatch, surface=ConsoleSurface(stream))

    resp = client.post("/receipts/print", json=SALE_PAYLOAD)
    data = resp.get_json()

    assert resp.status_code == 200
    assert data["ok"] is True
    assert data["statuses"] == ["printing", "success"]
    assert data["attempts"] == 1
    assert data["path"] == "primary"
    assert "SIMPLIFIED INVOICE" in stream.getvalue()

    history = client.get("/print-history").get_json()["data"]
    assert history[0]["receipt_id"] == "ORD-1001"
    assert history[0]["status"] == "success"


def test_print_worker_thread_stops_on_close(tmp_path, monkeypatch):
    monkeypatch.setenv("RECEIPT_DATA_DIR", str(tmp_path))
    stream = io.StringIO()
    dispatcher = PrintDispatcher(ConsoleSurface(stream), None, retry_delay=0, settle_delay=0)
    app = create_app(PrintConfig(), dispatcher)
    worker = app.extensions["print_worker"]
    client = app.test_client()

    # No thread until the first print
    assert not worker.running
    assert client.post("/receipts/print", json=SALE_PAYLOAD).get_json()["ok"] is True
    thread = worker._thread
    assert worker.running

    worker.close()
    assert not worker.running
    assert not thread.is_alive()

    # Printing again restarts the loop
    assert client.post("/receipts/print", json=SALE_PAYLOAD).get_json()["ok"] is True
    worker.close()
    assert stream.getvalue().count("SIMPLIFIED INVOICE") == 2


def test_print_failure_reports_attempts(tmp_path, monkeypatch):
    client = _client(tmp_path, monkeypatch, surface=None, fallback=None)

    data = client.post("/receipts/print", json=SALE_PAYLOAD).get_json()

    assert data["ok"] is False
    assert data["status"] == "error"
    assert data["statuses"] == ["printing", "error"]
    assert data["attempts"] == 3
    assert [f["kind"] for f in data["failures"]] == ["unavailable"] * 3


def test_print_rejects_incomplete_receipt(tmp_path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    resp = client.post("/receipts/print", json=dict(SALE_PAYLOAD, items=[]))
    assert resp.status_code == 422


def test_store_profile_roundtrip_drives_preview(tmp_path, monkeypatch):
    client = _client(tmp_path, monkeypatch)

    assert client.get("/store-profile").get_json() == {"ok": True, "data": None}

    resp = client.put("/store-profile", json={"storeName": "Mi Tienda", "email": "hola@tienda.es"})
    assert resp.status_code == 200
    assert client.get("/store-profile").get_json()["data"]["storeName"] == "Mi Tienda"

    body = client.post("/receipts/preview", json=SALE_PAYLOAD).get_data(as_text=True)
    assert "<h1>MI TIENDA</h1>" in body
    assert "HOLA@TIENDA.ES" in body

    # An explicit store in the request wins over the stored one
    body = client.post(
        "/receipts/preview", json={"receipt": SALE_PAYLOAD, "store": {"storeName": "Otra"}}
    ).get_data(as_text=True)
    assert "<h1>OTRA</h1>" in body


def test_store_profile_put_requires_object(tmp_path, monkeypatch):
    client = _client(tmp_path, monkeypatch)
    resp = client.put("/store-profile", data=json.dumps([1, 2]), content_type="application/json")
    assert resp.status_code == 400


def test_save_receipt_once(tmp_path, monkeypatch):
    client = _client(tmp_path, monkeypatch)

    first = client.post("/receipts/save", json=SALE_PAYLOAD).get_json()
    second = client.post("/receipts/save", json=SALE_PAYLOAD).get_json()

    assert first == {"ok": True, "filename": "SALE_ORD-1001.html"}
    assert second["ok"] is False
    assert (tmp_path / "receipts" / "SALE_ORD-1001.html").exists()
