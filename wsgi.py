"""Production WSGI entrypoint using Waitress.

Run with:
  - python wsgi.py
  - Or specify host/port: HOST=0.0.0.0 PORT=8000 python wsgi.py
"""

from __future__ import annotations

import logging

from waitress import serve

from receipt_desk.config import LOG_FORMAT, PrintConfig
from receipt_desk.webapp import create_app


def main() -> None:
    config = PrintConfig()
    logging.basicConfig(level=config.log_level, format=LOG_FORMAT)
    # The shared spool surface is only usable once its directory exists
    config.spool_path.parent.mkdir(parents=True, exist_ok=True)
    app = create_app(config)
    logging.getLogger(__name__).info(f"Serving receipts on {config.host}:{config.port}")
    try:
        serve(app, listen=f"{config.host}:{config.port}")
    finally:
        app.extensions["print_worker"].close()


if __name__ == "__main__":
    main()
