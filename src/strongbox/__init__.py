# Strongbox - Main Package
#
# Local, single-user secret vault: credentials and payment cards encrypted
# at rest under a master-password key, decrypted only while unlocked.
#
# "Lose the master password, lose the vault." There is no recovery path.

__version__ = "0.1.0"
__author__ = "Strongbox Team"
__description__ = "Local single-user encrypted secret vault"

from .core import (
    EventType,
    EventSeverity,
    get_audit_logger,
    Settings,
    get_settings,
)

__all__ = [
    "__version__",
    "EventType",
    "EventSeverity",
    "get_audit_logger",
    "Settings",
    "get_settings",
]
