# Vault Module - Encrypted Secret Vault
#
# Credentials and payment cards encrypted per record with AES-256-GCM
# under a PBKDF2-derived master key, plus an optional external mirror.

from .encryption import EncryptionService
from .exceptions import (
    AuthenticationFailed,
    ConfirmationDeclined,
    DecryptionFailed,
    InvalidFormat,
    NoVaultError,
    NotFound,
    PermissionDenied,
    RateLimitedError,
    UnlockInProgressError,
    VaultError,
    VaultExistsError,
    VaultLockedError,
    VaultStateError,
)
from .models import (
    CardPayload,
    DecryptedItem,
    EncryptedItem,
    Envelope,
    PasswordPayload,
    VaultMeta,
)
from .password_generator import generate_password
from .repository import ItemRepository
from .session import InactivityMonitor, VaultSession, VaultState
from .storage import MemoryStorage, SQLiteStorage, VaultStorage
from .sync import (
    FileCapability,
    LocalFileHandle,
    MemoryHandleRegistry,
    SQLiteHandleRegistry,
    SyncReconciler,
    SyncState,
)
from .transfer import TransferGateway, export_document, parse_document
from .vault_manager import VaultManager
from .view import HeadlessView, VaultView

__all__ = [
    "VaultManager",
    "VaultSession",
    "VaultState",
    "InactivityMonitor",
    "ItemRepository",
    "SyncReconciler",
    "SyncState",
    "TransferGateway",
    "EncryptionService",
    "generate_password",
    # Storage
    "VaultStorage",
    "MemoryStorage",
    "SQLiteStorage",
    "FileCapability",
    "LocalFileHandle",
    "MemoryHandleRegistry",
    "SQLiteHandleRegistry",
    # Models
    "Envelope",
    "VaultMeta",
    "EncryptedItem",
    "PasswordPayload",
    "CardPayload",
    "DecryptedItem",
    "export_document",
    "parse_document",
    # View
    "VaultView",
    "HeadlessView",
    # Errors
    "VaultError",
    "AuthenticationFailed",
    "DecryptionFailed",
    "InvalidFormat",
    "PermissionDenied",
    "NotFound",
    "VaultLockedError",
    "VaultExistsError",
    "NoVaultError",
    "VaultStateError",
    "UnlockInProgressError",
    "RateLimitedError",
    "ConfirmationDeclined",
]
