"""Single-line JSON log formatter.

Enabled with ``API_STRUCTURED_LOGGING=true``; the application then swaps
the root handler for a ``StreamHandler`` using :class:`JSONFormatter`.

Output schema per line::

    {
        "timestamp": "2025-05-15T12:34:56.789012+00:00",
        "level": "INFO",
        "logger": "api.services.entitlement_service",
        "message": "Reconciled a@b.c: tier none -> platinum via recurring ...",
        "trace_id": "...",            // when TraceLoggingFilter is attached
        "request": { ... },           // access records only
        "exc_info": "Traceback ..."   // exceptions only
    }
"""

from __future__ import annotations

import json
import logging
import traceback
from datetime import UTC, datetime
from typing import Any

# Record attributes copied into the payload when present and non-empty.
_OPTIONAL_FIELDS: tuple[str, ...] = ("trace_id", "span_id", "request")


class JSONFormatter(logging.Formatter):
    """Format log records as single-line JSON."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        for field in _OPTIONAL_FIELDS:
            value = getattr(record, field, None)
            if value:
                payload[field] = value

        if record.exc_info and record.exc_info[0] is not None:
            payload["exc_info"] = "".join(traceback.format_exception(*record.exc_info))

        return json.dumps(payload, default=str, ensure_ascii=False)
