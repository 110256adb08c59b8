"""
Logging configuration.

Plain text by default. With ``JSON_LOGS=true`` each record becomes one JSON
object carrying the request id, tenant and actor bound by the request
context middleware, so issuance and handoff events can be filtered per
tenant in a log aggregator.
"""

import json
import logging
from datetime import datetime, timezone

from tokengate.middleware.request_context import get_actor_id, get_request_id, get_tenant_id

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

# Extra attributes copied verbatim when a log call passes them
_PASSTHROUGH_FIELDS = ("duration_ms", "status_code", "asset_id", "issuance_id")


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for key, value in (
            ("request_id", get_request_id()),
            ("tenant_id", get_tenant_id()),
            ("actor_id", get_actor_id()),
        ):
            if value:
                entry[key] = value
        for field in _PASSTHROUGH_FIELDS:
            if hasattr(record, field):
                entry[field] = getattr(record, field)

        if record.exc_info and record.exc_info[1]:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def configure_logging(log_level: str = "INFO", json_logs: bool = False):
    """Install a single stream handler on the root logger."""
    handler = logging.StreamHandler()
    handler.setFormatter(JSONFormatter() if json_logs else logging.Formatter(TEXT_FORMAT))

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    # SQL echo stays off unless explicitly turned up
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
