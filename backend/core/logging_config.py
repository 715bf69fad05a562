# backend/core/logging_config.py
import json
import logging
from datetime import datetime, timezone

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

# Extras attached by the email logging service
STRUCTURED_EXTRAS = ("email_context", "email_event", "component")


class JsonFormatter(logging.Formatter):
    """One JSON object per line, carrying the structured email extras"""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for attr in STRUCTURED_EXTRAS:
            value = getattr(record, attr, None)
            if value is not None:
                payload[attr] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str)


def configure_logging(level: str = "INFO", structured: bool = False) -> None:
    """Configure root logging once at application startup"""
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    if structured:
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=log_level, handlers=[handler], force=True)
    else:
        logging.basicConfig(level=log_level, format=LOG_FORMAT)
