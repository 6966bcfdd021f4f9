# Plasa Stamps Logger Module

import logging
import json
import os
from datetime import datetime, timezone
from pathlib import Path

# Log directory (override with LOG_DIR)
LOG_DIR = Path(os.getenv("LOG_DIR", Path(__file__).parent / "logs"))
LOG_DIR.mkdir(parents=True, exist_ok=True)

MAIN_LOG_FILE = LOG_DIR / "stamps.log"
JSON_LOG_FILE = LOG_DIR / "stamps.json"
ERROR_LOG_FILE = LOG_DIR / "errors.log"
ACTIVITY_LOG_FILE = LOG_DIR / "activity.log"

CONSOLE_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

ROOT_NAME = "Stamps"


class JSONFormatter(logging.Formatter):
    """One JSON object per record; activity fields end up under "data" """
    def format(self, record):
        log_data = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        activity = getattr(record, "activity", None)
        if activity:
            log_data["category"] = activity["category"]
            log_data["data"] = {k: str(v) for k, v in activity["data"].items()}

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False)


def _file_handler(path, level, formatter):
    handler = logging.FileHandler(path, encoding='utf-8')
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _configure_root():
    root = logging.getLogger(ROOT_NAME)
    if root.handlers:
        return root
    root.setLevel(logging.DEBUG)

    # Everything, errors only, and structured JSON
    root.addHandler(_file_handler(MAIN_LOG_FILE, logging.DEBUG, logging.Formatter(
        '[%(asctime)s] [%(levelname)-8s] [%(name)s:%(funcName)s:%(lineno)d] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )))
    root.addHandler(_file_handler(ERROR_LOG_FILE, logging.ERROR, logging.Formatter(
        '[%(asctime)s] [ERROR] [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )))
    root.addHandler(_file_handler(JSON_LOG_FILE, logging.DEBUG, JSONFormatter()))

    console_handler = logging.StreamHandler()
    console_handler.setLevel(getattr(logging, CONSOLE_LEVEL, logging.INFO))
    console_handler.setFormatter(logging.Formatter(
        '[%(asctime)s] [%(levelname)-8s] %(message)s',
        datefmt='%H:%M:%S'
    ))
    root.addHandler(console_handler)
    return root


def setup_logger(name):
    """
    Logger below the "Stamps" namespace.

    Handlers live on the namespace root only, so every category logger
    writes to the same files without duplicate lines.
    """
    _configure_root()
    if name == ROOT_NAME or name.startswith(ROOT_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_NAME}.{name}")


# ===== STANDARD LOGGER =====
logger = setup_logger(ROOT_NAME)

# ===== CATEGORY LOGGERS =====
api_logger = setup_logger("API")          # HTTP requests
db_logger = setup_logger("Database")      # Firestore
codes_logger = setup_logger("Codes")      # Instagram verification codes
signer_logger = setup_logger("Signer")    # EIP-712 signing
script_logger = setup_logger("Scripts")   # Data scripts

ACTIVITY_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# Activity records also go to their own file
activity_logger = setup_logger("Activity")
if not activity_logger.handlers:
    activity_logger.addHandler(_file_handler(ACTIVITY_LOG_FILE, logging.INFO, logging.Formatter(
        '[%(asctime)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )))


def log_activity(level, category, message, **extra_data):
    """
    Log an activity line with a category.

    Example:
        log_activity("INFO", "CODES", "Code issued", instagram_id=123, status="first_code")
    """
    full_message = f"[{category}] {message}"
    if extra_data:
        full_message += " | " + " | ".join(f"{k}={v}" for k, v in extra_data.items())

    activity_logger.log(
        ACTIVITY_LEVELS.get(level.upper(), logging.INFO),
        full_message,
        extra={"activity": {"category": category, "data": extra_data}},
    )
