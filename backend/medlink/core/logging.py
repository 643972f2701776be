"""
Medlink Triage - Structured Logging

Every record emitted while a call is handled carries the masked call id
and the utterance request id, taken from context variables set by
LogContext. Payloads passed as `extra={"data": {...}}` are redacted
before they are written: caller speech, addresses and medical history
never reach the log in clear.
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any, Dict, Optional

call_id_var: ContextVar[Optional[str]] = ContextVar("call_id", default=None)
request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Substring match on the lower-cased key
SENSITIVE_KEYS = frozenset({
    "address", "utterance", "text", "caller", "phone",
    "history", "transcript", "token", "secret", "key",
})

NOISY_LOGGERS = ("uvicorn.access", "httpx", "httpcore", "groq")


# =============================================================================
# Redaction
# =============================================================================

def mask_call_id(cid: Optional[str]) -> Optional[str]:
    """Keep the last 4 characters of a call id."""
    if not cid:
        return None
    return f"***{cid[-4:]}" if len(cid) > 4 else "***"


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(s in lowered for s in SENSITIVE_KEYS)


def _redact(value: Any) -> str:
    if isinstance(value, str):
        return f"[REDACTED, {len(value)} chars]"
    return "[REDACTED]"


def mask_sensitive_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of `data` with sensitive values redacted, recursing into dicts."""
    masked: Dict[str, Any] = {}
    for key, value in data.items():
        if _is_sensitive(key):
            masked[key] = _redact(value)
        elif isinstance(value, dict):
            masked[key] = mask_sensitive_data(value)
        else:
            masked[key] = value
    return masked


def _call_context() -> Dict[str, str]:
    fields: Dict[str, str] = {}
    request_id = request_id_var.get()
    if request_id:
        fields["request_id"] = request_id
    call_id = call_id_var.get()
    if call_id:
        fields["call_id"] = mask_call_id(call_id)
    return fields


# =============================================================================
# Formatters
# =============================================================================

class StructuredFormatter(logging.Formatter):
    """
    One JSON object per record:

        {"timestamp": ..., "level": "WARNING", "logger": "medlink.core.orchestrator",
         "request_id": "utt_...", "call_id": "***1234",
         "message": "IMMEDIATE tier: ...", "data": {"tier": "immediate", ...}}
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
        }
        entry.update(_call_context())
        entry["message"] = record.getMessage()

        data = getattr(record, "data", None)
        if data:
            entry["data"] = mask_sensitive_data(data)
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


class HumanReadableFormatter(logging.Formatter):
    """Single-line console format for development."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.now(timezone.utc).strftime("%H:%M:%S")
        call_id = call_id_var.get()
        call = f" [call={mask_call_id(call_id)}]" if call_id else ""

        line = f"{stamp} {record.levelname:<7} {record.name}{call} | {record.getMessage()}"
        if record.exc_info:
            line += "\n" + self.formatException(record.exc_info)
        return line


def setup_structured_logging(level: str = "INFO", json_format: bool = False) -> None:
    """Install a single stdout handler on the root logger."""
    numeric = getattr(logging, level.upper())
    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(numeric)
    handler.setFormatter(StructuredFormatter() if json_format else HumanReadableFormatter())

    root = logging.getLogger()
    root.setLevel(numeric)
    root.handlers.clear()
    root.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


# =============================================================================
# Call context
# =============================================================================

class LogContext:
    """
    Bind a call id (and optionally a request id) for the duration of a block.

        with LogContext(call_id="CA1234", request_id="utt_abc"):
            logger.info("Handling utterance")
    """

    def __init__(self, call_id: Optional[str] = None, request_id: Optional[str] = None):
        self._bindings = [
            (var, value)
            for var, value in ((call_id_var, call_id), (request_id_var, request_id))
            if value
        ]
        self._tokens = []

    def __enter__(self) -> "LogContext":
        self._tokens = [(var, var.set(value)) for var, value in self._bindings]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        for var, token in reversed(self._tokens):
            var.reset(token)
        self._tokens = []
        return False
