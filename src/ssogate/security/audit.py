"""
OAuth2 audit log.
Created: 2026-10-19

Append-only JSONL record of token issuance, denials and revocations. Written
by the HTTP layer; the grant engine itself never logs.
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

from ssogate.config import get_config_dir

logger = logging.getLogger("audit")


class AuditSeverity(str, Enum):
    INFO = "info"  # Token issued, code granted
    WARNING = "warning"  # Denied request (bad code, bad credentials)
    CRITICAL = "critical"  # Backend failure
    ALERT = "alert"  # Replay of an authorization code


@dataclass
class AuditEvent:
    """A single audit log entry."""

    id: str
    timestamp: str
    severity: AuditSeverity
    actor: str  # client_id, or "anonymous" before client authentication
    action: str  # e.g. "token_issued", "token_denied", "authorize_denied"
    target: str  # grant type or endpoint
    status: str  # "success", "denied", "error"
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
    Writes to <config dir>/audit.jsonl.
    """

    def __init__(self, log_path: Path | None = None):
        self.log_path = log_path or get_config_dir() / "audit.jsonl"
        self._callbacks: list[Callable[[dict], None]] = []

    def on_log(self, callback: Callable[[dict], None]) -> None:
        """Register a callback to be called after each audit log write."""
        self._callbacks.append(callback)

    def log(self, event: AuditEvent) -> None:
        """Write an event to the audit log."""
        event_dict = asdict(event)
        try:
            self.log_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(event_dict) + "\n")
        except OSError as e:
            logger.critical("FAILED TO WRITE AUDIT LOG: %s | Event: %s", e, event)
            return
        for cb in self._callbacks:
            try:
                cb(event_dict)
            except Exception:
                logger.exception("Audit callback failed")

    def log_oauth_event(
        self,
        action: str,
        client_id: str | None,
        target: str,
        status: str = "success",
        severity: AuditSeverity = AuditSeverity.INFO,
        **context: Any,
    ) -> str:
        """Helper to log an OAuth2 protocol event."""
        event = AuditEvent.create(
            severity=severity,
            actor=client_id or "anonymous",
            action=action,
            target=target,
            status=status,
            **context,
        )
        self.log(event)
        return event.id


# Singleton
_audit_logger: AuditLogger | None = None


def get_audit_logger() -> AuditLogger:
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def reset_audit_logger() -> None:
    global _audit_logger
    _audit_logger = None
