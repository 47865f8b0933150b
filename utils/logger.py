"""
Structured Logger - JSON event logging for sync runs and Planning Center calls
"""
import json
import logging
from typing import Dict, Any, Optional
from utils.timezone import get_central_time

SERVICE_NAME = "pco-sync"


class StructuredLogger:
    """Emits one JSON line per sync or API event"""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.name = name

    def _entry(self, event_type: str) -> Dict[str, Any]:
        return {
            "timestamp": get_central_time().isoformat(),
            "timezone": "America/Chicago",
            "event_type": event_type,
            "service": SERVICE_NAME,
            "logger": self.name,
        }

    def log_sync_event(self, event_type: str, details: Dict[str, Any]):
        """Log a sync-related event with structured data"""
        log_entry = {**self._entry(event_type), **details}

        # Choose log level based on event type
        if "error" in event_type.lower() or "failed" in event_type.lower():
            self.logger.error(json.dumps(log_entry, default=str))
        elif "warning" in event_type.lower() or "timeout" in event_type.lower():
            self.logger.warning(json.dumps(log_entry, default=str))
        else:
            self.logger.info(json.dumps(log_entry, default=str))

    def log_api_call(self, method: str, endpoint: str, status_code: Optional[int] = None,
                     duration_ms: Optional[float] = None, error: Optional[str] = None,
                     attempt: Optional[int] = None):
        """Log a Planning Center API call. Never pass query strings carrying secrets."""
        log_entry = self._entry("api_call")
        log_entry["method"] = method
        log_entry["endpoint"] = endpoint

        if status_code is not None:
            log_entry["status_code"] = status_code
        if duration_ms is not None:
            log_entry["duration_ms"] = round(duration_ms, 1)
        if attempt is not None:
            log_entry["attempt"] = attempt
        if error:
            log_entry["error"] = error

        if error or (status_code and status_code >= 500):
            self.logger.error(json.dumps(log_entry))
        elif status_code == 429:
            self.logger.warning(json.dumps(log_entry))
        else:
            self.logger.debug(json.dumps(log_entry))

    def log_performance(self, operation: str, duration_seconds: float,
                        item_count: Optional[int] = None, success: bool = True):
        """Log performance metrics"""
        log_entry = self._entry("performance")
        log_entry["operation"] = operation
        log_entry["duration_seconds"] = round(duration_seconds, 3)
        log_entry["success"] = success

        if item_count is not None:
            log_entry["item_count"] = item_count
            log_entry["items_per_second"] = item_count / duration_seconds if duration_seconds > 0 else 0

        self.logger.info(json.dumps(log_entry))


class JsonFormatter(logging.Formatter):
    """Custom formatter that outputs JSON"""

    def format(self, record):
        # If the message is already JSON, return it as-is
        try:
            json.loads(record.getMessage())
            return record.getMessage()
        except (json.JSONDecodeError, TypeError):
            log_entry = {
                "timestamp": get_central_time().isoformat(),
                "timezone": "America/Chicago",
                "level": record.levelname,
                "logger": record.name,
                "message": record.getMessage()
            }

            if record.exc_info:
                log_entry["exception"] = self.formatException(record.exc_info)

            return json.dumps(log_entry)


def configure_logging(level: str = 'INFO', structured: bool = True):
    """Install a single root handler, JSON formatted when structured"""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    handler = logging.StreamHandler()
    if structured:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(name)s: %(message)s'))
    root.addHandler(handler)
