"""Centralized logging configuration module"""

import logging
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# Whether already initialized
_initialized = False

LOG_FORMAT = '[%(asctime)s] [%(levelname)s] %(name)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
MAX_LOG_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 3


def _write_session_separator(log_file: Path) -> None:
    with open(log_file, 'a', encoding='utf-8') as f:
        f.write("\n" + "=" * 100 + "\n")
        f.write(f"Server started at: {datetime.now().strftime(LOG_DATE_FORMAT)}\n")
        f.write("=" * 100 + "\n\n")


def setup_logging(level: Optional[str] = None, logs_dir: Path = Path("logs")):
    """Configure console and size-rotated file logging for the server"""
    global _initialized

    if _initialized:
        return

    level_name = (level or "INFO").upper()
    log_level = getattr(logging, level_name, logging.INFO)

    logs_dir.mkdir(parents=True, exist_ok=True)
    log_file = logs_dir / "server.log"
    _write_session_separator(log_file)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(formatter)

    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=MAX_LOG_BYTES,
        backupCount=BACKUP_COUNT,
        encoding='utf-8',
    )
    file_handler.setLevel(log_level)
    file_handler.setFormatter(formatter)

    # Configure root logger
    logging.basicConfig(
        level=log_level,
        handlers=[console_handler, file_handler],
        force=True
    )

    # Set log levels for specific modules
    logging.getLogger('src').setLevel(log_level)
    logging.getLogger('llm_interactions').setLevel(logging.INFO)

    # Reduce log level for third-party libraries
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('httpcore').setLevel(logging.WARNING)
    logging.getLogger('openai').setLevel(logging.WARNING)

    _initialized = True

    logging.getLogger(__name__).info(
        "Logging initialized (level=%s, file=%s, max %sMB x %s backups)",
        level_name,
        log_file.absolute(),
        MAX_LOG_BYTES // (1024 * 1024),
        BACKUP_COUNT,
    )
