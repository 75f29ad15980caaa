# Core Module - vault audit trail
#
# Every security-relevant vault action lands here as one JSON line: vault
# creation, unlock attempts, locks, item mutations, import/export and sync.
# Records carry identifiers and counts only. Passwords, keys and decrypted
# payloads never reach this module.

import getpass
import logging
import platform
from datetime import date, datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional
from uuid import uuid4

import structlog

AUDIT_LOGGER_NAME = "strongbox.audit"

_structlog_ready = False


class EventType(str, Enum):
    """Audit event identifiers, dotted by area."""
    # Session
    VAULT_CREATED = "vault.created"
    VAULT_UNLOCKED = "vault.unlocked"
    VAULT_UNLOCK_FAILED = "vault.unlock.failed"
    VAULT_LOCKED = "vault.locked"
    VAULT_AUTO_LOCKED = "vault.auto_locked"
    VAULT_RESET = "vault.reset"

    # Items
    ITEM_ADDED = "vault.item.added"
    ITEM_UPDATED = "vault.item.updated"
    ITEM_DELETED = "vault.item.deleted"
    ITEM_DECRYPT_SKIPPED = "vault.item.decrypt_skipped"

    # Transfer
    VAULT_EXPORTED = "vault.exported"
    VAULT_IMPORTED = "vault.imported"

    # Mirror file
    SYNC_LINKED = "sync.linked"
    SYNC_UNLINKED = "sync.unlinked"
    SYNC_WRITTEN = "sync.written"
    SYNC_DISCONNECTED = "sync.disconnected"

    # Process
    SYSTEM_START = "system.start"
    SYSTEM_STOP = "system.stop"
    VAULT_ERROR = "vault.error"


class EventSeverity(str, Enum):
    """
    How much attention an audit record deserves.

    INFO records routine use. INVESTIGATE flags a skipped record or a lost
    mirror. ALERT covers failed unlocks and destructive actions. CRITICAL
    means the engine itself failed.
    """
    INFO = "info"
    INVESTIGATE = "investigate"
    ALERT = "alert"
    CRITICAL = "critical"


def _configure_structlog():
    """Route structlog through stdlib logging with a JSON renderer (once)."""
    global _structlog_ready
    if _structlog_ready:
        return
    structlog.configure(
        processors=[
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(sort_keys=True),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _structlog_ready = True


def _machine_context() -> Dict[str, Any]:
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = None
    return {"user": user, "node": platform.node(), "system": platform.system()}


class AuditLogger:
    """
    Writes vault audit records to ``<log_dir>/audit_YYYY-MM-DD.log``.

    Each record gets a fresh event id and a UTC timestamp. Reopening the
    logger for another directory moves the file handler there, so only one
    audit file is written per process at a time.
    """

    def __init__(self, log_dir: Optional[Path] = None):
        if log_dir is None:
            from .config import get_settings
            log_dir = get_settings().audit_dir
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.log_file = self.log_dir / f"audit_{date.today().isoformat()}.log"

        _configure_structlog()
        self._attach_handler()
        self._machine = _machine_context()
        self.logger = structlog.get_logger(AUDIT_LOGGER_NAME)

    def _attach_handler(self):
        target = logging.getLogger(AUDIT_LOGGER_NAME)
        for old in list(target.handlers):
            if isinstance(old, logging.FileHandler):
                target.removeHandler(old)
                old.close()

        handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
        handler.setLevel(logging.INFO)
        handler.setFormatter(logging.Formatter("%(message)s"))
        target.addHandler(handler)
        target.setLevel(logging.INFO)
        target.propagate = False

    def log_event(
        self,
        event_type: EventType,
        severity: EventSeverity,
        message: str,
        details: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Append one audit record and return its event id.

        ``details`` must hold only non-secret values such as item ids,
        counts or file labels.
        """
        event_id = uuid4().hex
        self.logger.info(
            "vault_event",
            event_id=event_id,
            event_type=EventType(event_type).value,
            severity=EventSeverity(severity).value,
            message=message,
            recorded_at=datetime.now(timezone.utc).isoformat(),
            details=dict(details or {}),
            machine=self._machine,
        )
        return event_id

    def log_vault_event(
        self,
        event_type: EventType,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> str:
        """Shorthand used by the engine: INFO by default, "Vault: " prefix."""
        return self.log_event(event_type, severity, f"Vault: {message}", details)


_audit_logger: Optional[AuditLogger] = None


def get_audit_logger() -> AuditLogger:
    """Return the process-wide audit logger, creating it on first use."""
    global _audit_logger
    if _audit_logger is None:
        _audit_logger = AuditLogger()
    return _audit_logger


def log_security_event(
    event_type: EventType,
    severity: EventSeverity,
    message: str,
    details: Optional[Dict[str, Any]] = None,
) -> str:
    """Module-level shortcut for ``get_audit_logger().log_event(...)``."""
    return get_audit_logger().log_event(event_type, severity, message, details)
