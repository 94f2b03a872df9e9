import json
import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from edge_api.core.config import get_settings
from edge_api.core.trace import get_request_id


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        log_record = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "category": record.name,
            "message": record.getMessage(),
            "request_id": get_request_id(),
        }
        if record.exc_info:
            log_record["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_record, ensure_ascii=False)


class SizeAndTimeRotatingFileHandler(TimedRotatingFileHandler):
    """Roll over at midnight or once the file would exceed ``max_bytes``."""

    def __init__(
        self,
        filename: str | Path,
        max_bytes: int = 0,
        backup_count: int = 0,
        when: str = "midnight",
        encoding: str | None = "utf-8",
        delay: bool = True,
    ) -> None:
        self.maxBytes = max_bytes
        super().__init__(
            str(filename),
            when=when,
            backupCount=backup_count,
            encoding=encoding,
            delay=delay,
        )

    def shouldRollover(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        if self.maxBytes > 0:
            if self.stream is None:
                self.stream = self._open()
            size = len(f"{self.format(record)}\n".encode(self.encoding or "utf-8"))
            if self.stream.tell() + size >= self.maxBytes:
                return True
        return bool(super().shouldRollover(record))


_LOGGERS: dict[str, logging.Logger] = {}


def _build_logger(name: str) -> logging.Logger:
    logger = logging.getLogger(f"edge_api.{name}")
    if logger.handlers:
        return logger
    settings = get_settings()
    log_dir = Path(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = SizeAndTimeRotatingFileHandler(
        log_dir / f"{name}.jsonl",
        max_bytes=settings.log_rotate_mb * 1024 * 1024,
        backup_count=settings.log_retention_days,
    )
    handler.setFormatter(JsonFormatter())
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    return logger


def get_logger(name: str) -> logging.Logger:
    """Return the JSON-lines logger for ``name``, creating it on first use."""
    if name not in _LOGGERS:
        _LOGGERS[name] = _build_logger(name)
    return _LOGGERS[name]
