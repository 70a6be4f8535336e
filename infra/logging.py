# infra/logging.py
"""
Structured logging for recommendation engine events.
"""
import logging
import json
import uuid

logging.basicConfig(level=logging.INFO, format="%(message)s")

_logger = logging.getLogger("stylemuse.events")

# Never written to the event stream
_SCRUB_KEYS = {"api_key", "secret", "image_b64", "authorization"}


def _scrub(fields: dict) -> dict:
    return {k: ("[redacted]" if k in _SCRUB_KEYS else v) for k, v in fields.items()}


def log_event(event: str, **kwargs):
    """
    Log a structured event with request_id and custom fields.
    Automatically generates request_id if not provided.
    """
    rec = {"event": event, "request_id": kwargs.pop("request_id", str(uuid.uuid4())), **_scrub(kwargs)}
    _logger.info(json.dumps(rec, default=str))


def log_error(error: str, **kwargs):
    """
    Log an error event.
    """
    rec = {"event": "error", "error": error, "request_id": kwargs.pop("request_id", str(uuid.uuid4())), **_scrub(kwargs)}
    _logger.error(json.dumps(rec, default=str))
