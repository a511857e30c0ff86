from __future__ import annotations

import logging
import os
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from uag.bootstrap import create_app

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _configure_logging() -> None:
    level_name = os.getenv("TLG_LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    log_path = Path(os.getenv("TLG_LOG_DIR", "runtime/logs")) / "tradeledger.log"
    log_path.parent.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)
    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    if not any(isinstance(handler, logging.StreamHandler) for handler in root_logger.handlers):
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(level)
        stream_handler.setFormatter(formatter)
        root_logger.addHandler(stream_handler)

    resolved = str(log_path.resolve())
    if not any(
        isinstance(handler, TimedRotatingFileHandler) and getattr(handler, "baseFilename", "") == resolved
        for handler in root_logger.handlers
    ):
        file_handler = TimedRotatingFileHandler(
            filename=log_path,
            when="midnight",
            interval=1,
            backupCount=30,
            encoding="utf-8",
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setLevel(level)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)


_configure_logging()

app = create_app(
    data_dir=os.getenv("TLG_DATA_DIR", "runtime/state/accounts"),
    default_account=os.getenv("TLG_DEFAULT_ACCOUNT", "default"),
)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "app:app",
        host=os.getenv("TLG_HOST", "127.0.0.1"),
        port=int(os.getenv("TLG_PORT", "8000")),
        reload=False,
    )
