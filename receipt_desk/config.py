"""Configuration for printing and the web service."""

from __future__ import annotations

import os
from datetime import timezone, tzinfo
from pathlib import Path
from zoneinfo import ZoneInfo


DATA_DIR = Path(__file__).resolve().parent

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


class PrintConfig:
    """Settings read from environment variables, with defaults."""

    def __init__(self):
        # Delivery policy
        self.max_attempts = int(os.getenv("PRINT_MAX_ATTEMPTS", "3"))
        self.retry_delay = int(os.getenv("PRINT_RETRY_DELAY_MS", "300")) / 1000.0
        self.settle_delay = int(os.getenv("PRINT_SETTLE_DELAY_MS", "250")) / 1000.0

        # Host print integration
        self.print_command = os.getenv("PRINT_COMMAND", "lp")
        self.data_dir = Path(os.getenv("RECEIPT_DATA_DIR", str(DATA_DIR)))
        self.spool_path = Path(
            os.getenv("PRINT_SPOOL_PATH", str(self.data_dir / "spool" / "receipt.html"))
        )

        self.timezone_name = os.getenv("RECEIPT_TIMEZONE", "UTC")

        # Server configuration
        self.host = os.getenv("HOST", "0.0.0.0")
        self.port = int(os.getenv("PORT", "8000"))

        # Logger configuration
        self.log_level = os.getenv("LOG_LEVEL", "INFO")

        if self.max_attempts < 1:
            raise ValueError("PRINT_MAX_ATTEMPTS must be >= 1")

    @property
    def timezone(self) -> tzinfo:
        if self.timezone_name.upper() == "UTC":
            return timezone.utc
        return ZoneInfo(self.timezone_name)
