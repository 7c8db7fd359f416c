# file: voicerelay/utils/logger.py
# Structured JSON logging for the relay server
# Features:
#   - JSONL structured logging (Grafana/Loki/ELK compatible)
#   - Per-run log file with rotation of previous runs
#   - Optional human readable console output

import datetime
import json
import logging
import os
from typing import Any, Dict, Optional, Tuple

loggerNameOfVoiceRelay = 'voicerelay'

_app_id = "voicerelay"


# ---------------------------------------------------------------------------
# JSON Formatter
# ---------------------------------------------------------------------------

class JsonLogFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON (JSONL).
    Extra fields passed via ``extra=`` (conn_id, user_id, ...) are merged in.
    """

    _SKIP_FIELDS = frozenset({
        "name", "msg", "args", "created", "relativeCreated",
        "exc_info", "exc_text", "stack_info", "lineno", "funcName",
        "filename", "module", "levelno", "levelname", "pathname",
        "thread", "threadName", "process", "processName",
        "message", "msecs", "taskName",
    })

    def __init__(self, app_id: str = "", **kwargs):
        super().__init__()
        self.app_id = app_id

    def format(self, record: logging.LogRecord) -> str:
        record.message = record.getMessage()

        log_dict: Dict[str, Any] = {
            "timestamp": datetime.datetime.fromtimestamp(
                record.created, tz=datetime.timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "filename": record.filename,
            "lineno": record.lineno,
            "funcName": record.funcName,
            "message": record.message,
        }

        if self.app_id:
            log_dict["app_id"] = self.app_id

        for key, value in record.__dict__.items():
            if key not in self._SKIP_FIELDS and not key.startswith("_"):
                try:
                    json.dumps(value)
                    log_dict[key] = value
                except (TypeError, ValueError):
                    log_dict[key] = str(value)

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            log_dict["exception"] = record.exc_text
        if record.stack_info:
            log_dict["stack"] = record.stack_info

        return json.dumps(log_dict, ensure_ascii=False, default=str)


def _rotate(logs_directory: str, filename: str) -> str:
    """Move an existing log of the same name aside as ``name#N.log``."""
    log_filename = f"{logs_directory}/{filename}.log"
    if os.path.exists(log_filename):
        n = 1
        while os.path.exists(f"{logs_directory}/{filename}#{n}.log"):
            n += 1
        try:
            os.rename(log_filename, f"{logs_directory}/{filename}#{n}.log")
        except PermissionError:
            pass
    return log_filename


def setup_logging(
    level: int,
    name: str = loggerNameOfVoiceRelay,
    file_level: Optional[int] = None,
    interminal: bool = False,
    logs_directory: str = "../logs",
    app_name: str = "voicerelay",
) -> Tuple[logging.Logger, str]:
    """
    Configure the package logger.

    - File handler writes JSONL through JsonLogFormatter
    - Console handler (interminal=True) uses a plain text format

    Returns:
        (logger, log_filename)
    """
    global loggerNameOfVoiceRelay, _app_id

    if not file_level:
        file_level = level

    loggerNameOfVoiceRelay = name
    _app_id = app_name

    available_log_levels = [
        logging.CRITICAL, logging.ERROR, logging.WARNING,
        logging.INFO, logging.DEBUG, logging.NOTSET,
    ]
    for lbl, val in [("level", level), ("file_level", file_level)]:
        if val not in available_log_levels:
            raise ValueError(f"{lbl} must be one of {available_log_levels}, but is {val}")

    os.makedirs(logs_directory, exist_ok=True)

    log_date = datetime.datetime.today().strftime('%Y-%m-%d')
    filename = f"Logs-{name}-{log_date}-{logging.getLevelName(level)}"
    log_filename = _rotate(logs_directory, filename)

    logger = logging.getLogger(name)
    logger.setLevel(level)
    if logger.hasHandlers():
        logger.handlers.clear()
    logger.propagate = False

    file_handler = logging.FileHandler(log_filename, encoding="utf-8")
    file_handler.setFormatter(JsonLogFormatter(app_id=app_name))
    file_handler.setLevel(file_level)
    logger.addHandler(file_handler)

    if interminal:
        console_handler = logging.StreamHandler()
        log_format = '%(asctime)s - %(name)s - %(levelname)s - %(filename)s - %(funcName)s:%(lineno)d - %(message)s'
        console_handler.setFormatter(logging.Formatter(log_format))
        console_handler.setLevel(level)
        logger.addHandler(console_handler)

    return logger, filename


def get_logger() -> logging.Logger:
    """Return the active package logger."""
    return logging.getLogger(loggerNameOfVoiceRelay)


def preview(text: Optional[str], limit: int = 50) -> str:
    """Shorten user content for log lines."""
    if not text:
        return "N/A"
    return text if len(text) <= limit else text[:limit] + "..."
