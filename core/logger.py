"""CourierLogger — one JSON-lines logger for the whole engine.

Records go to stdout and to a size-rotated ``$LOG_DIR/courier.log``.
Child loggers such as ``courier.sdk`` propagate into the same handlers.
"""

import json
import logging
import os
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from typing import Optional

# Attributes every LogRecord carries; anything else on a record came from ``extra=``.
_RECORD_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


class _JsonFormatter(logging.Formatter):
    """Render a record as one JSON object per line.

    ``extra={"update_id": 7, "offset": 8}`` becomes top-level keys of the
    object; a traceback attached by ``logger.exception`` lands in ``exc_info``.
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "func_name": record.funcName,
        }
        entry.update(
            (key, value) for key, value in record.__dict__.items()
            if key not in _RECORD_ATTRS and key not in entry
        )
        if record.exc_info:
            entry["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class CourierLogger:
    """Process-wide owner of the ``courier`` logger and its two handlers."""

    _instance: Optional["CourierLogger"] = None
    _logger: Optional[logging.Logger] = None

    LOGGER_NAME: str = "courier"

    _LOG_DIR: str = os.environ.get("LOG_DIR", "logs")
    _LOG_FILE: str = "courier.log"
    _MAX_BYTES: int = 5 * 1024 * 1024
    _BACKUP_COUNT: int = 5

    def __new__(cls, level: int = logging.INFO) -> "CourierLogger":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._attach_handlers(level)
        return cls._instance

    def _attach_handlers(self, level: int) -> None:
        self._logger = logging.getLogger(self.LOGGER_NAME)
        self._logger.setLevel(level)
        if self._logger.handlers:
            return

        os.makedirs(self._LOG_DIR, exist_ok=True)
        formatter = _JsonFormatter()
        handlers = (
            logging.StreamHandler(),
            RotatingFileHandler(
                os.path.join(self._LOG_DIR, self._LOG_FILE),
                maxBytes=self._MAX_BYTES,
                backupCount=self._BACKUP_COUNT,
                encoding="utf-8",
            ),
        )
        for handler in handlers:
            handler.setLevel(level)
            handler.setFormatter(formatter)
            self._logger.addHandler(handler)

    @staticmethod
    def get_logger(level: int = logging.INFO) -> logging.Logger:
        """Return the shared logger; *level* only applies on first use."""
        instance = CourierLogger(level)
        assert instance._logger is not None
        return instance._logger

    @staticmethod
    def set_level(name: str) -> logging.Logger:
        """Apply a level name such as ``"DEBUG"`` to the logger and its handlers.

        Unknown names fall back to ``INFO``.
        """
        logger = CourierLogger.get_logger()
        level = getattr(logging, name.upper(), logging.INFO)
        if not isinstance(level, int):
            level = logging.INFO
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)
        return logger
