"""
Primary compute unit handlers and handler loading.
"""

import importlib
import re
from datetime import date
from typing import Any, Dict

from shared.errors import ValidationError
from shared.queues import InvocationEvent

_DATE_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def handle_date_request(event: InvocationEvent) -> Dict[str, Any]:
    """Default handler: accept an ISO calendar date and acknowledge it."""
    if not _DATE_PATTERN.match(event.date):
        raise ValidationError("bad date", details={"date": event.date})
    try:
        parsed = date.fromisoformat(event.date)
    except ValueError:
        raise ValidationError("bad date", details={"date": event.date})

    return {
        "status": "ok",
        "date": parsed.isoformat(),
        "weekday": parsed.strftime("%A"),
        "request_id": event.request_id,
    }


def load_handler(path: str):
    """Resolve ``"package.module:function"`` to a callable."""
    module_name, _, attribute = path.partition(":")
    if not module_name or not attribute:
        raise ValueError(f"Handler path must look like 'module:function', got {path!r}")

    module = importlib.import_module(module_name)
    handler = getattr(module, attribute, None)
    if not callable(handler):
        raise ValueError(f"Handler {path!r} is not callable")
    return handler
