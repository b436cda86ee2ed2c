"""
Audit Logging.
Created: 2026-10-13

Append-only JSONL audit trail for API key lifecycle events (created,
updated, revoked, rotated, deleted). Entries carry key ids and display
prefixes, never plaintext keys or digests.
"""

import json
import logging
import uuid
from collections.abc import Callable
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from pathlib import Path
from typing import Any

logger = logging.getLogger("audit")


class AuditSeverity(str, Enum):
    INFO = "info"  # Normal operation (e.g. key created)
    WARNING = "warning"  # Access reduced (e.g. key revoked)
    CRITICAL = "critical"  # Irreversible (e.g. key deleted)


@dataclass
class AuditEvent:
    """A single audit log entry."""

    id: str
    timestamp: str
    severity: AuditSeverity
    actor: str  # owner_id or "system"
    action: str  # e.g. "api_key_created"
    target: str  # e.g. "key:3f2a9c..."
    status: str  # "success", "error"
    context: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def create(
        cls,
        severity: AuditSeverity,
        actor: str,
        action: str,
        target: str,
        status: str,
        **context: Any,
    ) -> "AuditEvent":
        return cls(
            id=str(uuid.uuid4()),
            timestamp=datetime.now(tz=UTC).isoformat(),
            severity=severity,
            actor=actor,
            action=action,
            target=target,
            status=status,
            context=context,
        )


class AuditLogger:
    """
    Append-only audit logger.
    Writes to <config_dir>/audit.jsonl unless a path is given.
    """

    def __init__(self, log_path: Path | None = None):
        if log_path is None:
            from gapminer.config import get_config_dir

            log_path = get_config_dir() / "audit.jsonl"
        self.log_path = log_path
        self._callbacks: list[Callable[[dict], None]] = []

    def on_log(self, callback: Callable[[dict], None]) -> None:
        """Register a callback to be called after each audit log write."""
        self._callbacks.append(callback)

    def log(self, event: AuditEvent) -> None:
        """Write an event to the audit log. Never raises."""
        try:
            event_dict = asdict(event)
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event_dict, default=str) + "\n")
        except Exception as e:
            # Fall back to the system logger; audit failure must not break key operations
            logger.critical("FAILED TO WRITE AUDIT LOG: %s | Event: %s", e, event)
            return
        for cb in self._callbacks:
            try:
                cb(event_dict)
            except Exception:
                logger.exception("Audit callback failed")

    def log_api_event(
        self,
        action: str,
        target: str,
        actor: str = "system",
        severity: AuditSeverity = AuditSeverity.INFO,
        status: str = "success",
        **context: Any,
    ) -> str:
        """Helper to log an API key event. Returns the event id."""
        event = AuditEvent.create(
            severity=severity,
            actor=actor,
            action=action,
            target=target,
            status=status,
            **context,
        )
        self.log(event)
        return event.id
