# chaos_operator/utils/logger.py
"""
Chaos Operator Logger Utilities
-------------------------------
Logging setup shared by the controller process and its tools.

Features:
 - JSONFormatter (log shipping) and human-friendly formatter (local runs)
 - OpenTelemetry trace/span ids attached when a span is active
 - Reconcile context (request namespace / name) pulled from contextvars
 - Contextual logger adapter for structured logging
 - configure_logging() driven by CHAOS_OPERATOR_LOG_* env vars

Usage:
    from chaos_operator.utils.logger import configure_logging, get_logger
    configure_logging(app_name="chaos-operator")
    log = get_logger("chaosoperator.controller")
    log.info("reconciling", extra={"engine": "nginx-chaos"})
"""

from __future__ import annotations

import os
import sys
import socket
import logging
import threading
from typing import Any, Dict, Optional

from opentelemetry.trace import get_current_span

from chaos_operator.utils.common import json_dumps, now_iso, get_context

# -------------------------
# Constants & Env defaults
# -------------------------
DEFAULT_LOG_LEVEL = os.getenv("CHAOS_OPERATOR_LOG_LEVEL", "INFO").upper()
DEFAULT_LOG_JSON = os.getenv("CHAOS_OPERATOR_LOG_JSON", "true").lower() in ("1", "true", "yes")
OPERATOR_VERSION = os.getenv("CHAOS_OPERATOR_VERSION", "0.1.0")

# LogRecord attributes that are not user-supplied extras
_RESERVED_ATTRS = frozenset((
    "args", "msg", "levelname", "levelno", "name", "pathname", "filename", "module",
    "lineno", "funcName", "exc_info", "exc_text", "stack_info", "created", "msecs",
    "relativeCreated", "thread", "threadName", "processName", "process", "message",
    "taskName",
))

# reconcile context keys copied onto every record
_CONTEXT_KEYS = ("request_namespace", "request_name")

def _get_hostname() -> str:
    try:
        return socket.gethostname()
    except OSError:
        return "unknown-host"

# -------------------------
# Formatters
# -------------------------
class JSONFormatter(logging.Formatter):
    """
    JSON formatter that attaches standard fields:
      - ts, level, logger, message, module, line
      - service, hostname, pid, version
      - optional: trace_id, span_id, extra
    """
    def __init__(self, service_name: str = "chaos-operator", extra_fields: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.service = service_name
        self.extra_fields = extra_fields or {}
        self.hostname = _get_hostname()
        self.pid = os.getpid()

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "ts": now_iso(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "line": record.lineno,
            "service": self.service,
            "hostname": self.hostname,
            "pid": self.pid,
            "version": OPERATOR_VERSION,
        }
        extra = {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS and v is not None}
        if extra:
            payload["extra"] = extra
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        ctx = get_current_span().get_span_context()
        if ctx.is_valid:
            payload["trace_id"] = format(ctx.trace_id, "032x")
            payload["span_id"] = format(ctx.span_id, "016x")
        payload.update(self.extra_fields)
        return json_dumps(payload)

class HumanFormatter(logging.Formatter):
    """Human-friendly formatter that appends the engine being reconciled."""
    def __init__(self, service_name: str = "chaos-operator"):
        self.service = service_name
        service = service_name.replace("%", "%%")
        super().__init__(fmt=f"%(asctime)s [%(levelname)s] {service} %(name)s: %(message)s",
                         datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        base = super().format(record)
        ns = getattr(record, "request_namespace", None)
        name = getattr(record, "request_name", None)
        if name:
            base = f"{base} | engine={ns}/{name}"
        return base

class ReconcileContextFilter(logging.Filter):
    """Copy the reconcile context (set via set_context) onto each record."""
    def filter(self, record: logging.LogRecord) -> bool:
        for key in _CONTEXT_KEYS:
            if getattr(record, key, None) is None:
                setattr(record, key, get_context(key, None))
        return True

# -------------------------
# Configure logging
# -------------------------
_DEFAULT_CONFIGURED = False
_LOCK = threading.Lock()

def configure_logging(
    app_name: str = "chaos-operator",
    level: Optional[str] = None,
    json: Optional[bool] = None,
    extra_fields: Optional[Dict[str, Any]] = None,
):
    """
    Configure root logging for the operator. Safe to call more than once;
    only the first call installs handlers.

    Parameters:
      - app_name: service name inserted into logs
      - level: logging level (e.g. "INFO"), defaults to CHAOS_OPERATOR_LOG_LEVEL
      - json: JSON output when True, defaults to CHAOS_OPERATOR_LOG_JSON
    """
    global _DEFAULT_CONFIGURED
    with _LOCK:
        if _DEFAULT_CONFIGURED:
            return
        level = (level or DEFAULT_LOG_LEVEL).upper()
        use_json = DEFAULT_LOG_JSON if json is None else json

        root = logging.getLogger()
        root.setLevel(getattr(logging, level, logging.INFO))

        ch = logging.StreamHandler(stream=sys.stdout)
        if use_json:
            ch.setFormatter(JSONFormatter(service_name=app_name, extra_fields=extra_fields))
        else:
            ch.setFormatter(HumanFormatter(service_name=app_name))
        ch.addFilter(ReconcileContextFilter())
        root.addHandler(ch)

        # the kubernetes client logs every request body at DEBUG
        logging.getLogger("kubernetes").setLevel(logging.WARNING)
        logging.getLogger("urllib3").setLevel(logging.WARNING)

        _DEFAULT_CONFIGURED = True

def get_logger(name: Optional[str] = None) -> logging.Logger:
    return logging.getLogger(name or "chaosoperator")

# -------------------------
# Structured Logger Adapter
# -------------------------
class StructuredLoggerAdapter(logging.LoggerAdapter):
    """
    Attach structured context to logs conveniently. Works well with JSONFormatter.
    Usage:
        log = StructuredLoggerAdapter(get_logger("chaosoperator.controller"),
                                      {"request_namespace": "default", "request_name": "engine"})
        log.info("runner created", extra={"pod": "engine-runner"})
    """
    def process(self, msg, kwargs):
        extra = dict(kwargs.get("extra") or {})
        if isinstance(self.extra, dict):
            for k, v in self.extra.items():
                extra.setdefault(k, v)
        kwargs["extra"] = extra
        return msg, kwargs

__all__ = [
    "configure_logging",
    "get_logger",
    "JSONFormatter",
    "HumanFormatter",
    "ReconcileContextFilter",
    "StructuredLoggerAdapter",
]
