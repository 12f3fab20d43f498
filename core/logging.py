import logging
import sys
import json
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

# --- Constants ---
LOG_DIR = Path(__file__).resolve().parent.parent / 'logs'
LOG_FILE_NAME = 'intelligence.log'
LOGGER_NAME = 'mcpgen'
MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

class JsonFormatter(logging.Formatter):
    """
    Formats log records as a JSON string.
    """
    def format(self, record):
        log_object = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_object['exc_info'] = self.formatException(record.exc_info)

        return json.dumps(log_object)

def setup_logging(
    log_level: Union[int, str] = logging.INFO,
    log_dir: Optional[Path] = None,
    to_file: bool = True,
) -> logging.Logger:
    """
    Configures the package logger.
    - Console: Human-readable plain text.
    - File: Machine-readable JSON, with rotation.

    Called by entry points; importing this module only creates the logger.
    """
    if isinstance(log_level, str):
        log_level = logging.getLevelName(log_level.upper())
        if not isinstance(log_level, int):
            log_level = logging.INFO

    package_logger = logging.getLogger(LOGGER_NAME)
    package_logger.setLevel(log_level)

    # --- Formatters ---
    plain_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    # Clear existing handlers to avoid duplicates
    if package_logger.hasHandlers():
        package_logger.handlers.clear()

    # --- Console Handler ---
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(plain_formatter)
    package_logger.addHandler(console_handler)

    # --- Rotating File Handler (JSON) ---
    if to_file:
        target_dir = log_dir or LOG_DIR
        target_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            target_dir / LOG_FILE_NAME,
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(JsonFormatter())
        package_logger.addHandler(file_handler)

    return package_logger

# Module logger shared by the intelligence layer; handlers are attached by
# setup_logging().
logger = logging.getLogger(LOGGER_NAME)
