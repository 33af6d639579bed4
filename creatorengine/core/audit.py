"""
Audit sink adapter.

Audit-trail storage lives outside the engine. AuditLogger writes every
event to the ``creatorengine.audit`` logger and forwards the
``{event, severity, data}`` record to an optional external sink.
"""

import logging
from typing import Any, Callable, Dict, Optional

logger = logging.getLogger("creatorengine.audit")

AuditSink = Callable[[Dict[str, Any]], None]

_LEVELS = {
    "success": logging.INFO,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "failure": logging.ERROR,
}


class AuditLogger:
    """Forwards audit events to logging and to an external sink."""

    def __init__(self, sink: Optional[AuditSink] = None):
        self.sink = sink

    def log(self, event: str, severity: str = "info", data: Optional[Dict[str, Any]] = None) -> None:
        record = {"event": event, "severity": severity, "data": data or {}}
        logger.log(_LEVELS.get(severity, logging.INFO), f"[{severity}] {event} {record['data']}")

        if self.sink is None:
            return
        try:
            self.sink(record)
        except Exception as e:
            # The audit collaborator must never break the request it is auditing.
            logger.error(f"Audit sink rejected event {event}: {e}")

    def success(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log(event, "success", data)

    def info(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log(event, "info", data)

    def warning(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log(event, "warning", data)

    def failure(self, event: str, data: Optional[Dict[str, Any]] = None) -> None:
        self.log(event, "failure", data)
