from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Optional, Protocol

from fleet_billing.core import utc_now
from fleet_billing.repositories import AuditLogRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AuditEvent:
    event: str
    entity_type: str
    entity_id: Optional[int]
    details: dict[str, Any] = field(default_factory=dict)
    recorded_at: str = field(default_factory=utc_now)


class AuditSink(Protocol):
    def record(self, event: AuditEvent) -> None:
        ...


class SqliteAuditSink:
    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn
        self.log = AuditLogRepository(conn)

    def record(self, event: AuditEvent) -> None:
        with self.conn:
            self.log.append(event.event, event.entity_type, event.entity_id, event.details)


class MemoryAuditSink:
    def __init__(self) -> None:
        self.events: list[AuditEvent] = []

    def record(self, event: AuditEvent) -> None:
        self.events.append(event)


def emit(sink: Optional[AuditSink], event: AuditEvent) -> None:
    """Hand an event to the sink; a failing sink never interrupts billing."""
    if sink is None:
        return
    try:
        sink.record(event)
    except Exception:
        logger.warning(
            "Audit sink rejected %s for %s %s", event.event, event.entity_type, event.entity_id, exc_info=True
        )
