from __future__ import annotations

import asyncio
import json
import logging
import threading
from pathlib import Path
from typing import Any, List, Optional, Tuple

from flask import Flask, Response, request

from .config import PrintConfig
from .core import (
    PrintStatus,
    ReceiptInput,
    StoreProfile,
    parse_receipt,
    parse_store_profile,
    store_profile_to_dict,
    validate_receipt,
)
from .dispatcher import PrintDispatcher, PrintReport
from .formatter import format_receipt, render_slip
from .persistence import (
    append_print_history,
    load_store_profile,
    read_history_rows,
    save_receipt_document_if_new,
    save_store_profile,
)
from .printer import SpoolFileSurface, TempFileTargetFactory


logger = logging.getLogger(__name__)


class PrintWorker:
    """Runs print jobs on one background event loop.

    Request threads hand their jobs over to the loop, so the shared
    surface lock serializes them exactly as it would in a single-loop app.
    """

    def __init__(self, dispatcher: PrintDispatcher) -> None:
        self.dispatcher = dispatcher
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._start_lock = threading.Lock()

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _ensure_loop(self) -> asyncio.AbstractEventLoop:
        with self._start_lock:
            if self._loop is None:
                loop = asyncio.new_event_loop()
                thread = threading.Thread(target=loop.run_forever, name="print-worker", daemon=True)
                thread.start()
                self._loop, self._thread = loop, thread
        return self._loop

    def close(self) -> None:
        """Stop the loop thread. A later submit starts a fresh one."""
        with self._start_lock:
            loop, thread = self._loop, self._thread
            self._loop = self._thread = None
        if loop is None:
            return
        loop.call_soon_threadsafe(loop.stop)
        thread.join()
        loop.close()

    def submit(self, receipt: ReceiptInput, profile: Optional[StoreProfile]) -> Tuple[PrintReport, List[PrintStatus]]:
        statuses: List[PrintStatus] = []
        future = asyncio.run_coroutine_threadsafe(
            self.dispatcher.print_receipt(receipt, profile, statuses.append),
            self._ensure_loop(),
        )
        return future.result(), statuses


def _json(payload: Any, status: int = 200):
    return (json.dumps(payload), status, {"Content-Type": "application/json"})


def create_app(config: Optional[PrintConfig] = None, dispatcher: Optional[PrintDispatcher] = None) -> Flask:
    config = config or PrintConfig()
    if dispatcher is None:
        dispatcher = PrintDispatcher.from_config(
            config,
            surface=SpoolFileSurface(config.spool_path, config.print_command),
            fallback=TempFileTargetFactory(config.print_command),
        )
    data_dir: Path = config.data_dir
    worker = PrintWorker(dispatcher)

    app = Flask(__name__)
    # Owners of the app stop the worker thread through this handle
    app.extensions["print_worker"] = worker

    @app.after_request
    def _disable_html_cache(response):
        ct = (response.headers.get("Content-Type") or "").lower()
        if ct.startswith("text/html"):
            response.headers["Cache-Control"] = "no-store, no-cache, must-revalidate, max-age=0"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
        return response

    def receipt_from_request() -> Tuple[ReceiptInput, Optional[StoreProfile]]:
        payload = request.get_json(silent=True)
        if not isinstance(payload, dict):
            raise ValueError("Request body must be a JSON object")
        # Either a bare receipt or {"receipt": ..., "store": ...}
        if "receipt" in payload:
            receipt = parse_receipt(payload["receipt"])
            store = payload.get("store")
        else:
            receipt = parse_receipt(payload)
            store = None
        if store is not None:
            profile = parse_store_profile(store)
        else:
            profile = load_store_profile(data_dir)
        return receipt, profile

    @app.route("/health")
    def health():
        return _json({"status": "ok"})

    @app.route("/receipts/preview", methods=["POST"])
    def preview():
        try:
            receipt, profile = receipt_from_request()
        except ValueError as e:
            return _json({"ok": False, "message": str(e)}, 400)
        document = format_receipt(receipt, profile, config.timezone)
        return Response(str(document), mimetype="text/html")

    @app.route("/receipts/preview.txt", methods=["POST"])
    def preview_text():
        try:
            receipt, profile = receipt_from_request()
        except ValueError as e:
            return _json({"ok": False, "message": str(e)}, 400)
        return Response(render_slip(receipt, profile, config.timezone), mimetype="text/plain")

    @app.route("/receipts/print", methods=["POST"])
    def print_endpoint():
        try:
            receipt, profile = receipt_from_request()
        except ValueError as e:
            return _json({"ok": False, "message": str(e)}, 400)
        if not validate_receipt(receipt):
            return _json({"ok": False, "message": "Receipt is incomplete (missing id or items)"}, 422)

        report, statuses = worker.submit(receipt, profile)
        try:
            append_print_history(receipt, report, data_dir)
        except OSError as e:
            logger.error(f"Could not record print history for {receipt.receipt_id}: {e}")

        return _json(
            {
                "ok": report.ok,
                "status": report.status.value,
                "statuses": [s.value for s in statuses],
                "attempts": report.attempts,
                "path": report.path,
                "failures": [
                    {"attempt": f.attempt, "path": f.path, "kind": f.kind, "message": f.message}
                    for f in report.failures
                ],
            }
        )

    @app.route("/receipts/save", methods=["POST"])
    def save_endpoint():
        try:
            receipt, profile = receipt_from_request()
        except ValueError as e:
            return _json({"ok": False, "message": str(e)}, 400)
        document = format_receipt(receipt, profile, config.timezone)
        path, created = save_receipt_document_if_new(receipt, document, data_dir)
        if created:
            return _json({"ok": True, "filename": path.name})
        return _json({"ok": False, "message": f"Already saved: {path.name}"})

    @app.route("/store-profile", methods=["GET"])
    def get_store_profile():
        profile = load_store_profile(data_dir)
        return _json({"ok": True, "data": store_profile_to_dict(profile) if profile else None})

    @app.route("/store-profile", methods=["PUT"])
    def put_store_profile():
        payload = request.get_json(silent=True)
        try:
            profile = parse_store_profile(payload)
        except ValueError as e:
            return _json({"ok": False, "message": str(e)}, 400)
        if profile is None:
            return _json({"ok": False, "message": "Request body must be a JSON object"}, 400)
        save_store_profile(profile, data_dir)
        return _json({"ok": True, "data": store_profile_to_dict(profile)})

    @app.route("/print-history", methods=["GET"])
    def print_history():
        try:
            limit = int(request.args.get("limit") or 50)
        except ValueError:
            return _json({"ok": False, "message": "limit must be an integer"}, 400)
        rows = read_history_rows(data_dir)
        # Most recent first
        return _json({"ok": True, "data": list(reversed(rows))[: max(limit, 0)]})

    return app


if __name__ == "__main__":
    # For local development
    logging.basicConfig(level=logging.DEBUG)
    create_app().run(host="127.0.0.1", port=5000, debug=True)
