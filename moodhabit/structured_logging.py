"""
Structured JSON logging for the MoodHabit analytics core.
Provides request tracing for the HTTP boundary and audit logging for store,
pattern and feedback writes.
"""

import os
import json
import logging
import uuid
from typing import Dict, Any, Optional
from datetime import datetime, timezone
from pythonjsonlogger import jsonlogger


class StructuredLogger:
    """Structured JSON logger with request context."""

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)
        self.request_context: Dict[str, Any] = {}

    def set_request_context(self, request_id: str, user_id: Optional[str] = None,
                            endpoint: Optional[str] = None, method: Optional[str] = None):
        """Set request context for tracing.

        Args:
            request_id: Unique request identifier
            user_id: User the analytics are computed for
            endpoint: API endpoint being called
            method: HTTP method
        """
        self.request_context = {
            "request_id": request_id,
            "user_id": user_id,
            "endpoint": endpoint,
            "method": method,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }

    def clear_context(self):
        """Clear request context."""
        self.request_context = {}

    def log(self, level: str, message: str, **kwargs):
        """Log message with structured context.

        Args:
            level: Log level ('debug', 'info', 'warning', 'error', 'critical')
            message: Log message
            **kwargs: Additional fields to include in JSON
        """
        log_data = {
            "message": message,
            **self.request_context,
            **kwargs,
        }

        getattr(self.logger, level)(json.dumps(log_data, default=str))

    def debug(self, message: str, **kwargs):
        self.log("debug", message, **kwargs)

    def info(self, message: str, **kwargs):
        self.log("info", message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.log("warning", message, **kwargs)

    def error(self, message: str, exc_info: Optional[str] = None, **kwargs):
        self.log("error", message, exc_info=exc_info, **kwargs)

    def critical(self, message: str, **kwargs):
        self.log("critical", message, **kwargs)

    def log_request(self, method: str, endpoint: str, user_id: Optional[str] = None,
                    request_id: Optional[str] = None):
        """Log incoming request and start its tracing context."""
        request_id = request_id or str(uuid.uuid4())
        self.set_request_context(request_id, user_id, endpoint, method)
        self.info(f"{method} {endpoint} received", request_id=request_id)
        return request_id

    def log_response(self, status_code: int, response_time_ms: float, error: Optional[str] = None):
        """Log outgoing response."""
        log_data = {
            "status_code": status_code,
            "response_time_ms": round(response_time_ms, 2),
        }

        if error:
            log_data["error"] = error
            self.error(f"Request failed with status {status_code}", **log_data)
        else:
            self.info(f"Request completed with status {status_code}", **log_data)

    def log_store_operation(self, key: str, operation: str, records: int,
                            elapsed_ms: float, error: Optional[str] = None):
        """Log a key-value store read or write."""
        log_data = {
            "key": key,
            "operation": operation,
            "records": records,
            "elapsed_ms": round(elapsed_ms, 2),
        }

        if error:
            log_data["error"] = error
            self.error(f"Store error: {operation} on {key}", **log_data)
        else:
            self.debug(f"Store {operation} on {key}", **log_data)

    def log_corrupt_blob(self, key: str, error: str, dropped: int = 0):
        """Log a persisted collection that could not be parsed (treated as missing)."""
        self.warning(
            f"Corrupt data under {key}; treating as missing",
            key=key,
            error=error,
            dropped_records=dropped,
        )

    def log_pattern_recorded(self, user_id: str, pattern_type: str, metric: str,
                             value: float, confidence: Optional[float]):
        """Log an adaptive-threshold observation."""
        self.info(
            f"Pattern recorded: {pattern_type}/{metric}",
            user_id=user_id,
            pattern_type=pattern_type,
            metric=metric,
            value=value,
            confidence=round(confidence, 3) if confidence is not None else None,
        )

    def log_feedback_recorded(self, suggestion_id: str, rating: int, implemented: bool):
        """Log recommendation feedback."""
        self.info(
            f"Feedback recorded for {suggestion_id}",
            suggestion_id=suggestion_id,
            rating=rating,
            implemented=implemented,
        )


def setup_json_logging(log_file: Optional[str] = None, level: str = "INFO"):
    """Setup JSON logging to file and console.

    Args:
        log_file: Optional file path for JSON logs
        level: Root log level name
    """
    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    json_formatter = jsonlogger.JsonFormatter()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(json_formatter)
    root_logger.addHandler(console_handler)

    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(json_formatter)
        root_logger.addHandler(file_handler)

        root_logger.info(f"JSON logging initialized to {log_file}")


# Global structured logger instance
logger = StructuredLogger("moodhabit")
