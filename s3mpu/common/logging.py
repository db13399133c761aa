import json
import logging
from logging.config import dictConfig

from s3mpu.common.config import get_settings

WIRE_LOGGERS = ("botocore", "urllib3")


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    trace_http: bool | None = None,
) -> None:
    settings = get_settings()
    level = (level or settings.LOG_LEVEL).upper()
    fmt = fmt or settings.LOG_FORMAT
    trace_http = settings.TRACE_HTTP if trace_http is None else trace_http
    wire_level = "DEBUG" if trace_http else "WARNING"
    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "json": {
                    "()": JsonFormatter,
                },
                "plain": {
                    "format": "%(levelname)s %(name)s: %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": fmt,
                    "stream": "ext://sys.stderr",
                },
            },
            "root": {
                "level": level,
                "handlers": ["console"],
            },
            "loggers": {
                name: {"level": wire_level, "propagate": True} for name in WIRE_LOGGERS
            },
        }
    )


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            payload.update(record.extra)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)
