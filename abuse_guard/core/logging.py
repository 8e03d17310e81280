"""Logging utilities with JSON formatting, PII redaction, and request correlation.

This module centralizes logging configuration, including:
- Context-aware request_id propagation via contextvars
- Redaction of sensitive fields and of raw identifiers (emails, wallet
  addresses, IPs) that slip into structured extras
- JSON formatter for machine-friendly logs
- Configurable stdout/file handlers with rotation support

Limiter code logs hashed identifiers only; the redaction here is the net
underneath that rule.
"""

from __future__ import annotations

import json
import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from abuse_guard.core.config import LogSettings, settings

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

REDACTED = "[REDACTED]"

# Structured fields whose values are always replaced
SENSITIVE_KEYS_DEFAULT: set[str] = {
    "api_key",
    "x-api-key",
    "authorization",
    "token",
    "secret",
    "password",
    "cookie",
    "set-cookie",
    "app_admin_api_keys",
    "ip",
    "client_ip",
    "x-forwarded-for",
    "x-real-ip",
    "email",
    "x-user-email",
    "wallet_address",
    "x-wallet-address",
    "identifier",
    "mnemonic",
    "encrypted_mnemonic",
    "private_key",
    "webhook_url",
}

# Raw identifiers that must not appear inside any string value
_EMAIL_RE = re.compile(r"[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}")
_WALLET_RE = re.compile(r"\b0x[a-fA-F0-9]{40}\b")

# Standard LogRecord attributes; anything else on a record came from `extra`
_RESERVED_ATTRS = frozenset(
    logging.LogRecord("", logging.INFO, "", 0, "", (), None).__dict__
) | {"message", "asctime", "taskName"}


def set_request_id(request_id: str | None) -> None:
    """Store the current request id in a context variable."""

    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    """Fetch the current request id from context."""

    return _request_id_var.get()


def clear_request_id() -> None:
    """Clear any stored request id from context."""

    _request_id_var.set(None)


def scrub_identifiers(text: str) -> str:
    """Mask email addresses and wallet addresses inside free text."""

    text = _EMAIL_RE.sub("[REDACTED_EMAIL]", text)
    return _WALLET_RE.sub("[REDACTED_WALLET]", text)


def _redact(value: Any, sensitive_keys: frozenset[str]) -> Any:
    """Mask sensitive mapping keys and raw identifiers, recursing into containers."""

    if isinstance(value, str):
        return scrub_identifiers(value)
    if isinstance(value, Mapping):
        redacted = {}
        for key, item in value.items():
            if str(key).lower() in sensitive_keys:
                redacted[key] = REDACTED
            else:
                redacted[key] = _redact(item, sensitive_keys)
        return redacted
    if isinstance(value, (list, tuple)):
        return type(value)(_redact(item, sensitive_keys) for item in value)
    return value


def extract_extras(record: LogRecord, sensitive_keys: frozenset[str]) -> dict[str, Any]:
    """Return the record's ``extra`` fields with sensitive values redacted."""

    return _redact(
        {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS and not key.startswith("_")
        },
        sensitive_keys,
    )


class RequestIdFilter(logging.Filter):
    """Copy the context request id onto records that do not carry one."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None and get_request_id():
            record.request_id = get_request_id()
        return True


class SensitiveDataFilter(logging.Filter):
    """Rewrite sensitive extras in place so every formatter sees redacted values."""

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        for key, value in extract_extras(record, self.sensitive_keys).items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line: timestamp, level, logger, event, extras."""

    def __init__(self, *, sensitive_keys: Iterable[str] | None = None, ensure_ascii: bool = True) -> None:
        super().__init__()
        self.sensitive_keys = frozenset(k.lower() for k in (sensitive_keys or SENSITIVE_KEYS_DEFAULT))
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": scrub_identifiers(record.getMessage()),
        }
        payload.update(extract_extras(record, self.sensitive_keys))
        request_id = payload.pop("request_id", None) or get_request_id()
        if request_id:
            payload["request_id"] = request_id
        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_type"] = record.exc_info[0].__name__
        return json.dumps(payload, default=str, ensure_ascii=self.ensure_ascii)


PLAIN_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    """Stdout by default; a (rotating) file when LOG_OUTPUT=file."""

    if log_settings.output.lower() != "file":
        return logging.StreamHandler(sys.stdout)

    path = Path(log_settings.file_path or "logs/abuse_guard.log")
    path.parent.mkdir(parents=True, exist_ok=True)
    if not log_settings.max_bytes:
        return logging.FileHandler(path, encoding="utf-8")
    return RotatingFileHandler(
        path,
        maxBytes=log_settings.max_bytes,
        backupCount=log_settings.backup_count,
        encoding="utf-8",
    )


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Install a single redacting handler on the root logger.

    Args:
        log_settings: Log settings; the global ``settings.log`` when omitted.
    """

    cfg = log_settings or settings.log

    handler = _build_handler(cfg)
    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter())
    if cfg.format.lower() == "plain":
        handler.setFormatter(logging.Formatter(PLAIN_FORMAT))
    else:
        handler.setFormatter(JsonFormatter())

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(getattr(logging, cfg.level.upper(), logging.INFO))

    # uvicorn installs its own handlers
    for name in ("uvicorn", "uvicorn.access"):
        logging.getLogger(name).propagate = False
    # httpx logs every webhook request URL at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
