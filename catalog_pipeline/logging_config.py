"""Structured logging: readable console output plus JSON files for log shipping."""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from pythonjsonlogger.json import JsonFormatter

from catalog_pipeline.config import settings

# Third-party loggers that flood DEBUG/INFO during fetches and scheduling
QUIET_LOGGERS = ("httpx", "httpcore", "apscheduler", "openai", "sentence_transformers")


class CustomJsonFormatter(JsonFormatter):
    """JSON formatter that stamps every record with service, source and time."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record["timestamp"] = datetime.utcnow().isoformat() + "Z"
        log_record["service"] = "catalog_pipeline"
        log_record["level"] = record.levelname
        log_record["logger"] = record.name
        log_record["source"] = f"{record.filename}:{record.lineno}"
        if record.funcName:
            log_record["function"] = record.funcName


def setup_logging(log_dir: Optional[str] = None) -> logging.Logger:
    """Configure the root logger for the API process, the worker and scripts.

    Args:
        log_dir: Directory for app.log and error.log (defaults to settings.log_dir)

    Returns:
        The configured root logger
    """
    logs_path = Path(log_dir or settings.log_dir)
    logs_path.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(
        logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    json_formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    for filename, level in (("app.log", logging.DEBUG), ("error.log", logging.ERROR)):
        handler = logging.FileHandler(logs_path / filename)
        handler.setLevel(level)
        handler.setFormatter(json_formatter)
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


class ContextLogger(logging.LoggerAdapter):
    """Adds fixed context (job_id, manufacturer_id, ...) to every record's extra."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


def get_logger(name: str, **context) -> ContextLogger:
    """
    Get a logger that carries context fields into the JSON output.

    Args:
        name: Logger name (usually __name__)
        **context: Fields such as job_id=12, manufacturer_id=3

    Returns:
        ContextLogger bound to the context
    """
    return ContextLogger(logging.getLogger(name), context)
