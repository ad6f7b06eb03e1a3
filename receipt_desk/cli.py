from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Optional

from .config import LOG_FORMAT, PrintConfig
from .core import PrintStatus, parse_receipt, parse_store_profile, validate_receipt
from .dispatcher import PrintDispatcher
from .formatter import format_receipt, render_slip
from .persistence import append_print_history, load_store_profile, save_receipt_document_if_new
from .printer import ConsoleSurface, SpoolFileSurface, TempFileTargetFactory


_STATUS_MESSAGES = {
    PrintStatus.PRINTING: "Printing receipt...",
    PrintStatus.SUCCESS: "Receipt printed",
    PrintStatus.ERROR: "Could not print receipt",
}


def read_json_file(value: str, what: str) -> Any:
    path = Path(value)
    try:
        return json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise argparse.ArgumentTypeError(f"Cannot read {what} file {path}: {exc.strerror}")
    except ValueError:
        raise argparse.ArgumentTypeError(f"{what.capitalize()} file {path} is not valid JSON")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(description="Render and print sale/return receipts")
    p.add_argument("receipt", type=lambda s: read_json_file(s, "receipt"), help="Receipt JSON file")
    p.add_argument(
        "--store",
        type=lambda s: read_json_file(s, "store profile"),
        default=None,
        help="Store profile JSON file (default: the saved store profile)",
    )
    p.add_argument(
        "--preview",
        action="store_true",
        help="Write the HTML document to stdout instead of printing",
    )
    p.add_argument(
        "--text",
        action="store_true",
        help="Write a plain-text slip to stdout instead of printing",
    )
    p.add_argument(
        "--console",
        action="store_true",
        help="Deliver to stdout through the print dispatcher (no printer needed)",
    )
    p.add_argument(
        "--save",
        action="store_true",
        help="Also save the rendered receipt under the data directory",
    )
    return p


def main(argv: Optional[list[str]] = None) -> int:
    config = PrintConfig()
    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)

    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        receipt = parse_receipt(args.receipt)
        profile = parse_store_profile(args.store) if args.store is not None else load_store_profile(config.data_dir)
    except ValueError as exc:
        parser.error(str(exc))

    if args.text:
        print(render_slip(receipt, profile, config.timezone))
        return 0

    document = format_receipt(receipt, profile, config.timezone)
    if args.save:
        path, created = save_receipt_document_if_new(receipt, document, config.data_dir)
        print(f"{'Saved' if created else 'Already saved'}: {path}", file=sys.stderr)
    if args.preview:
        print(document)
        return 0

    if not validate_receipt(receipt):
        parser.error("Receipt is incomplete (missing id or items)")

    if args.console:
        surface = ConsoleSurface(sys.stdout)
    else:
        surface = SpoolFileSurface(config.spool_path, config.print_command)
    dispatcher = PrintDispatcher.from_config(
        config, surface=surface, fallback=TempFileTargetFactory(config.print_command)
    )

    def on_status(status: PrintStatus) -> None:
        print(_STATUS_MESSAGES[status], file=sys.stderr)

    report = asyncio.run(dispatcher.print_receipt(receipt, profile, on_status))
    try:
        append_print_history(receipt, report, config.data_dir)
    except OSError as exc:
        logging.getLogger(__name__).warning(f"Could not record print history: {exc}")
    return 0 if report.ok else 1


if __name__ == "__main__":
    raise SystemExit(main())
