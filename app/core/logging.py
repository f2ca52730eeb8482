"""
JSON logging for the tracker.

Every record is emitted as one JSON line. Credentials are redacted from
messages and audit details, and the tracker's context fields (user, vendor,
action, entity) are lifted out of `extra` into top-level keys.
"""
import json
import logging
import re
import sys
from datetime import datetime, timezone
from typing import Any, MutableMapping, Optional, Tuple

from app.core.config import settings

REDACTED = "***REDACTED***"

_SENSITIVE_KEYS = frozenset({
    "password", "new_password", "hashed_password",
    "secret", "secret_key", "token", "access_token",
    "authorization", "credential",
})

# key=value / "key": "value" pairs whose key looks like a credential
_SENSITIVE_PAIR = re.compile(
    r'(password|secret|token|authorization|credential)'
    r'["\']?\s*[:=]\s*["\']?[^\s,;"\'}{&]+',
    re.IGNORECASE,
)

CONTEXT_FIELDS: Tuple[str, ...] = ("user_id", "vendor_id", "action", "entity_type", "entity_id")


def scrub(value: Any) -> Any:
    """Redact credential-looking keys in nested dicts and lists."""
    if isinstance(value, dict):
        return {
            k: REDACTED if str(k).lower() in _SENSITIVE_KEYS else scrub(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [scrub(v) for v in value]
    return value


def scrub_text(text: str) -> str:
    return _SENSITIVE_PAIR.sub(rf'\1={REDACTED}', text)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": scrub_text(record.getMessage()),
        }
        entry.update(
            (field, getattr(record, field))
            for field in CONTEXT_FIELDS
            if getattr(record, field, None) is not None
        )
        if record.exc_info:
            entry["exception"] = scrub_text(self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class ContextLogger(logging.LoggerAdapter):
    """Logger that stamps fixed context (e.g. user_id, vendor_id) on every record."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]):
        kwargs["extra"] = {**self.extra, **(kwargs.get("extra") or {})}
        return msg, kwargs


def setup_logging():
    """Install the JSON handler on the root logger once."""
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(logging.DEBUG if settings.DEBUG else logging.INFO)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())
    root.addHandler(handler)

    for noisy in ("uvicorn.access", "httpx", "httpcore", "rq.worker"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str, **context: Any):
    if context:
        return ContextLogger(logging.getLogger(name), context)
    return logging.getLogger(name)


class AuditLogger:
    """Writes one `AUDIT:` line per state-changing action to the `audit` logger."""

    def __init__(self, name: str = "audit"):
        self.logger = get_logger(name)

    def log(
        self,
        action: str,
        user_id: Optional[int] = None,
        vendor_id: Optional[int] = None,
        entity_type: Optional[str] = None,
        entity_id: Optional[int] = None,
        details: Optional[dict] = None,
    ):
        target = f" on {entity_type}:{entity_id}" if entity_type and entity_id else ""
        suffix = f" - {json.dumps(scrub(details), default=str)}" if details else ""
        self.logger.info(
            f"AUDIT: {action}{target}{suffix}",
            extra={
                "user_id": user_id,
                "vendor_id": vendor_id,
                "action": action,
                "entity_type": entity_type,
                "entity_id": entity_id,
            },
        )


audit_logger = AuditLogger()
