"""
Audit Sink
The engine appends one entry per membership mutation and never reads them
back. Durable storage of the trail belongs to the host application; the
logging sink emits structured lines that a log shipper can pick up.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol


class AuditSink(Protocol):
    def append(
        self,
        action: str,
        target_type: str,
        target_id: Any,
        details: Optional[Dict[str, Any]] = None,
    ) -> None: ...


class LoggingAuditSink:
    def __init__(self, logger_name: str = "tiergate.audit"):
        self.logger = logging.getLogger(logger_name)

    def append(
        self,
        action: str,
        target_type: str,
        target_id: Any,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "action": action,
            "target": f"{target_type}:{target_id}",
            "details": details or {},
        }
        self.logger.info(f"[AUDIT] {entry}")


class NullAuditSink:
    def append(
        self,
        action: str,
        target_type: str,
        target_id: Any,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        return None
