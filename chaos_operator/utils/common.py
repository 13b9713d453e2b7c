# chaos_operator/utils/common.py
"""
Chaos Operator Common Utilities
-------------------------------
Small helpers shared by the controllers, the runtime and the logger.

Features:
 - JSON encoding with datetime / set / kubernetes-model support
 - RFC3339 timestamps in the format the Kubernetes API expects
 - Context propagation (contextvars) for per-reconcile log fields
 - OpenTelemetry span decorator
 - String-list helpers used for finalizer bookkeeping
"""

from __future__ import annotations

import json
import logging
import datetime
import functools
import contextvars
from typing import Any, Callable, Dict, Iterable, List, Optional

from opentelemetry import trace
from opentelemetry.trace import SpanKind

LOG = logging.getLogger("chaosoperator.utils.common")

# -------------------------
# JSON Helpers
# -------------------------
class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that understands datetimes, sets and kubernetes client models."""
    def default(self, obj):
        if isinstance(obj, (datetime.datetime, datetime.date)):
            return obj.isoformat()
        if isinstance(obj, (set, frozenset)):
            return sorted(obj)
        # kubernetes.client models expose to_dict()
        if hasattr(obj, "to_dict"):
            return obj.to_dict()
        return super().default(obj)

def json_dumps(obj: Any, indent: Optional[int] = None) -> str:
    try:
        return json.dumps(obj, cls=EnhancedJSONEncoder, indent=indent)
    except (TypeError, ValueError):
        return json.dumps(str(obj))

# -------------------------
# Time helpers
# -------------------------
def utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)

def now_iso() -> str:
    """RFC3339 timestamp with second precision, e.g. 2024-01-15T08:30:00Z."""
    return utc_now().strftime("%Y-%m-%dT%H:%M:%SZ")

# -------------------------
# List helpers
# -------------------------
def contains_string(items: Optional[Iterable[str]], value: str) -> bool:
    return value in (items or [])

def remove_string(items: Optional[Iterable[str]], value: str) -> List[str]:
    """Return a new list without any occurrence of value."""
    return [i for i in (items or []) if i != value]

# -------------------------
# Context propagation & tracing
# -------------------------
_current_context: contextvars.ContextVar[Dict[str, Any]] = contextvars.ContextVar("chaosoperator_ctx", default={})

def set_context(key: str, value: Any):
    ctx = dict(_current_context.get())
    ctx[key] = value
    _current_context.set(ctx)

def get_context(key: str, default: Any = None) -> Any:
    return _current_context.get().get(key, default)

def clear_context():
    _current_context.set({})

def trace_span(name: str):
    """
    Decorator that runs the wrapped function inside an OpenTelemetry span.
    Without a configured SDK the API hands out no-op spans.

    Usage:
        @trace_span("reconcile")
        def reconcile(...):
            ...
    """
    def _decor(fn: Callable):
        tracer = trace.get_tracer("chaosoperator")

        @functools.wraps(fn)
        def _wrapped(*args, **kwargs):
            with tracer.start_as_current_span(name, kind=SpanKind.INTERNAL):
                return fn(*args, **kwargs)
        return _wrapped
    return _decor

__all__ = [
    "EnhancedJSONEncoder",
    "json_dumps",
    "utc_now",
    "now_iso",
    "contains_string",
    "remove_string",
    "set_context",
    "get_context",
    "clear_context",
    "trace_span",
]
