"""Audit event sink used by the ledger services."""
from __future__ import annotations

from typing import List, Protocol

from .models import LedgerAuditEvent


class LedgerEventLogger(Protocol):
    """Captures structured ledger audit events."""

    def log(self, event: LedgerAuditEvent) -> None:
        ...


class RecordingLedgerEventLogger:
    """Keeps events in memory; used by tests and the local memory backend."""

    def __init__(self) -> None:
        self.events: List[LedgerAuditEvent] = []

    def log(self, event: LedgerAuditEvent) -> None:
        self.events.append(event)


__all__ = ["LedgerEventLogger", "RecordingLedgerEventLogger"]
