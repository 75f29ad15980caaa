# Core Module - Shared Utilities
#
# Core module provides shared functionality across Strongbox modules:
# - Audit logging
# - Configuration
# - SQLite connection helper

from .audit_log import (
    AuditLogger,
    EventSeverity,
    EventType,
    get_audit_logger,
    log_security_event,
)
from .config import Settings, get_settings, set_settings

__all__ = [
    # Audit Logging
    "AuditLogger",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "log_security_event",
    # Configuration
    "Settings",
    "get_settings",
    "set_settings",
]
