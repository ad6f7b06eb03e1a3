from __future__ import annotations

import json

import pytest

from receipt_desk.cli import main

from samples import SALE_PAYLOAD


@pytest.fixture
def receipt_file(tmp_path, monkeypatch):
    monkeypatch.setenv("RECEIPT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("RECEIPT_TIMEZONE", "UTC")
    monkeypatch.setenv("PRINT_RETRY_DELAY_MS", "0")
    monkeypatch.setenv("PRINT_SETTLE_DELAY_MS", "0")
    path = tmp_path / "receipt.json"
    path.write_text(json.dumps(SALE_PAYLOAD), encoding="utf-8")
    return path


def test_text_slip(receipt_file, capsys):
    assert main([str(receipt_file), "--text"]) == 0
    out = capsys.readouterr().out
    assert "SIMPLIFIED INVOICE" in out
    assert "PAYMENT METHOD:" in out
    assert "TOTAL: 4,50" in out


def test_preview_with_store_file(receipt_file, tmp_path, capsys):
    store = tmp_path / "store.json"
    store.write_text(json.dumps({"storeName": "Mi Tienda"}), encoding="utf-8")

    assert main([str(receipt_file), "--preview", "--store", str(store)]) == 0
    out = capsys.readouterr().out
    assert out.startswith("<!DOCTYPE html>")
    assert "<h1>MI TIENDA</h1>" in out


def test_console_print_records_history(receipt_file, tmp_path, capsys):
    assert main([str(receipt_file), "--console"]) == 0

    captured = capsys.readouterr()
    assert "SIMPLIFIED INVOICE" in captured.out
    assert "Printing receipt..." in captured.err
    assert "Receipt printed" in captured.err
    history = (tmp_path / "data" / "print_history.csv").read_text(encoding="utf-8")
    assert "ORD-1001" in history


def test_save_twice(receipt_file, tmp_path, capsys):
    main([str(receipt_file), "--preview", "--save"])
    main([str(receipt_file), "--preview", "--save"])

    err = capsys.readouterr().err
    assert "Saved:" in err
    assert "Already saved:" in err
    assert (tmp_path / "data" / "receipts" / "SALE_ORD-1001.html").exists()


def test_unreadable_receipt_file_exits_with_usage_error(tmp_path, capsys):
    bad = tmp_path / "bad.json"
    bad.write_text("{nope", encoding="utf-8")

    with pytest.raises(SystemExit) as exc:
        main([str(bad), "--text"])
    assert exc.value.code == 2
    assert "not valid JSON" in capsys.readouterr().err


def test_incomplete_receipt_is_not_printed(receipt_file, capsys):
    receipt_file.write_text(json.dumps(dict(SALE_PAYLOAD, items=[])), encoding="utf-8")

    with pytest.raises(SystemExit) as exc:
        main([str(receipt_file), "--console"])
    assert exc.value.code == 2
