from __future__ import annotations

import csv
import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .core import (
    RECEIPT_RETURN,
    ReceiptInput,
    StoreProfile,
    parse_store_profile,
    store_profile_to_dict,
)
from .dispatcher import PrintReport


DATA_DIR = Path(__file__).resolve().parent

HISTORY_FIELDS = [
    "printed_at",
    "receipt_type",
    "receipt_id",
    "total",
    "status",
    "attempts",
    "path",
]


def store_profile_path(data_dir: Path = DATA_DIR) -> Path:
    return data_dir / "store_profile.json"


def history_path(data_dir: Path = DATA_DIR) -> Path:
    return data_dir / "print_history.csv"


def receipts_dir(data_dir: Path = DATA_DIR) -> Path:
    return data_dir / "receipts"


def ensure_files_exist(data_dir: Path = DATA_DIR) -> None:
    """Create the data directory layout and the history header if missing."""
    data_dir.mkdir(parents=True, exist_ok=True)
    receipts_dir(data_dir).mkdir(parents=True, exist_ok=True)

    history = history_path(data_dir)
    if not history.exists():
        with history.open("w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(HISTORY_FIELDS)


def load_store_profile(data_dir: Path = DATA_DIR) -> Optional[StoreProfile]:
    """Load the configured store profile.

    Returns None when nothing is stored yet or the file cannot be parsed;
    receipts then fall back to the built-in store identity.
    """
    path = store_profile_path(data_dir)
    if not path.exists():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
        return parse_store_profile(data)
    except (OSError, ValueError):
        return None


def save_store_profile(profile: StoreProfile, data_dir: Path = DATA_DIR) -> Path:
    ensure_files_exist(data_dir)
    path = store_profile_path(data_dir)
    path.write_text(json.dumps(store_profile_to_dict(profile), indent=2, ensure_ascii=False), encoding="utf-8")
    return path


def append_print_history(receipt: ReceiptInput, report: PrintReport, data_dir: Path = DATA_DIR) -> None:
    """Append one print request outcome to print_history.csv."""
    ensure_files_exist(data_dir)
    row = {
        "printed_at": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        "receipt_type": receipt.receipt_type,
        "receipt_id": receipt.receipt_id,
        "total": f"{receipt.total:.2f}",
        "status": report.status.value,
        "attempts": report.attempts,
        "path": report.path or "",
    }
    with history_path(data_dir).open("a", newline="", encoding="utf-8") as f:
        writer = csv.DictWriter(f, fieldnames=HISTORY_FIELDS, extrasaction="ignore")
        if f.tell() == 0:
            writer.writeheader()
        writer.writerow(row)


def read_history_rows(data_dir: Path = DATA_DIR) -> List[Dict[str, str]]:
    path = history_path(data_dir)
    if not path.exists():
        return []
    with path.open("r", newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        return list(reader)


def _sanitize_filename_component(text: str) -> str:
    safe = "".join(ch if ch.isalnum() or ch in ("-", "_") else "_" for ch in (text or "").strip())
    # collapse multiple underscores
    while "__" in safe:
        safe = safe.replace("__", "_")
    return safe.strip("._") or "NA"


def receipt_filename(receipt: ReceiptInput) -> str:
    prefix = "RET" if receipt.receipt_type == RECEIPT_RETURN else "SALE"
    return f"{prefix}_{_sanitize_filename_component(receipt.receipt_id)}.html"


def save_receipt_document_if_new(
    receipt: ReceiptInput, document: str, data_dir: Path = DATA_DIR
) -> Tuple[Path, bool]:
    """Save a rendered receipt only if a file does not already exist.

    Returns (path, was_created).
    """
    ensure_files_exist(data_dir)
    path = receipts_dir(data_dir) / receipt_filename(receipt)
    if path.exists():
        return path, False
    path.write_text(document, encoding="utf-8")
    return path, True
