# Vault - Session State Machine
#
#   NO_VAULT --create(pw)--> UNLOCKED
#   LOCKED   --unlock(pw)--> UNLOCKED
#   UNLOCKED --lock()------> LOCKED      (manual or inactivity monitor)
#   UNLOCKED --reset()-----> NO_VAULT    (double confirmation)
#
# Security:
#   - The session key is assigned as the very last step of create/unlock;
#     a lock() racing an in-flight unlock either precedes it or clears it
#   - A failed unlock keeps no candidate key
#   - Failed unlock attempts back off exponentially (2s, 4s, 8s, 16s cap)
#   - The inactivity timer is armed only while a key is held and is
#     cancelled outright on lock

import asyncio
import logging
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional, Sequence

from ..core import EventSeverity, EventType, get_audit_logger, get_settings
from .encryption import EncryptionService, verify_master_password
from .exceptions import (
    AuthenticationFailed,
    ConfirmationDeclined,
    NoVaultError,
    RateLimitedError,
    UnlockInProgressError,
    VaultExistsError,
    VaultLockedError,
    VaultStateError,
)
from .models import DecryptedItem, VaultMeta
from .repository import decrypt_items_async
from .storage import VaultStorage
from .view import VIEW_AUTH, VIEW_DASHBOARD, ConfirmCallback, HeadlessView, VaultView

logger = logging.getLogger(__name__)

MAX_BACKOFF_SECONDS = 16

RESET_CONFIRM_MESSAGE = (
    "This will permanently erase the vault and every item in it. Continue?"
)
RESET_CONFIRM_AGAIN_MESSAGE = (
    "Are you absolutely sure? Erased vault data cannot be recovered."
)


class VaultState(str, Enum):
    NO_VAULT = "no_vault"
    LOCKED = "locked"
    UNLOCKED = "unlocked"


class InactivityMonitor:
    """Fires on_idle after `timeout` seconds without a touch().

    The timer only arms while is_active() is true. Must be used from
    inside a running event loop.
    """

    def __init__(
        self,
        timeout: float,
        on_idle: Callable[[], None],
        is_active: Callable[[], bool],
    ):
        self.timeout = timeout
        self._on_idle = on_idle
        self._is_active = is_active
        self._handle: Optional[asyncio.TimerHandle] = None

    @property
    def armed(self) -> bool:
        return self._handle is not None

    def touch(self) -> None:
        """Record user activity: restart the countdown."""
        self.disarm()
        if self._is_active():
            loop = asyncio.get_running_loop()
            self._handle = loop.call_later(self.timeout, self._fire)

    def disarm(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self) -> None:
        self._handle = None
        if self._is_active():
            logger.info("Auto-locking vault after %.0fs of inactivity", self.timeout)
            self._on_idle()


class VaultSession:
    """
    Owns the session key and the decrypted item set.

    Exactly one VaultSession holds a given key. Collaborators (repository,
    gateway) receive this object instead of reaching for module state.
    """

    def __init__(
        self,
        storage: VaultStorage,
        view: Optional[VaultView] = None,
        auto_lock_seconds: Optional[float] = None,
        kdf_iterations: Optional[int] = None,
    ):
        settings = get_settings()
        self.storage = storage
        self.view = view or HeadlessView()
        self.kdf_iterations = kdf_iterations or settings.kdf_iterations

        self._key: Optional[bytes] = None
        self._items: List[DecryptedItem] = []
        self._busy = False

        self.is_new_user = not storage.has_vault()

        # Rate limiting for unlock attempts (prevent brute force)
        self.failed_attempts = 0
        self.lockout_until: Optional[datetime] = None

        self.monitor = InactivityMonitor(
            timeout=auto_lock_seconds or settings.auto_lock_seconds,
            on_idle=self._auto_lock,
            is_active=lambda: self._key is not None,
        )
        self.logger = get_audit_logger()

    # ── Public surface ───────────────────────────────────────────────

    @property
    def state(self) -> VaultState:
        if self._key is not None:
            return VaultState.UNLOCKED
        if self.storage.has_vault():
            return VaultState.LOCKED
        return VaultState.NO_VAULT

    @property
    def is_unlocked(self) -> bool:
        return self._key is not None

    @property
    def busy(self) -> bool:
        """True while create/unlock is running (the trigger is disabled)."""
        return self._busy

    @property
    def items(self) -> List[DecryptedItem]:
        """Snapshot of the decrypted items (empty when locked)."""
        return list(self._items)

    def require_key(self) -> bytes:
        if self._key is None:
            raise VaultLockedError("Vault is locked. Unlock vault first.")
        return self._key

    def replace_items(self, items: Sequence[DecryptedItem]) -> None:
        """Swap the in-memory item set (repository use only)."""
        self.require_key()
        self._items = list(items)

    def touch(self) -> None:
        """User-interaction signal: restart the inactivity countdown."""
        self.monitor.touch()

    # ── Transitions ──────────────────────────────────────────────────

    async def create(self, master_password: str) -> None:
        """
        Create a new vault and enter the unlocked state.

        Raises:
            VaultExistsError: metadata already persisted
            UnlockInProgressError: another create/unlock is running
            ValueError: unusable master password
        """
        if self._busy:
            raise UnlockInProgressError("Another unlock is already in progress")
        if self.storage.has_vault():
            raise VaultExistsError("Vault already exists. Use unlock() instead.")

        is_valid, error_msg = verify_master_password(master_password)
        if not is_valid:
            raise ValueError(error_msg)

        self._busy = True
        try:
            salt = EncryptionService.generate_salt()
            key = await EncryptionService.derive_key_async(
                master_password, salt, self.kdf_iterations
            )
            validation = await EncryptionService.encrypt_async(
                EncryptionService.VALIDATION_SENTINEL, key
            )
            self.storage.replace_all(VaultMeta(salt=salt, validation=validation), [])
        finally:
            self._busy = False

        self._items = []
        self._key = key
        self.is_new_user = False

        self.logger.log_vault_event(EventType.VAULT_CREATED, "Vault created")
        self.monitor.touch()
        self.view.show_view(VIEW_DASHBOARD)

    async def unlock(self, master_password: str) -> None:
        """
        Unlock the vault and decrypt every item.

        Raises:
            AuthenticationFailed: wrong password (or corrupt token)
            RateLimitedError: inside a failed-attempt lockout window
            NoVaultError: nothing to unlock
            VaultStateError: already unlocked
            UnlockInProgressError: another create/unlock is running
        """
        if self._key is not None:
            raise VaultStateError("Vault is already unlocked")
        if self._busy:
            raise UnlockInProgressError("Another unlock is already in progress")
        self._check_lockout()

        meta = self.storage.get_meta()
        if meta is None:
            raise NoVaultError("Vault does not exist. Create a vault first.")

        self._busy = True
        try:
            candidate_key = await EncryptionService.derive_key_async(
                master_password, meta.salt, self.kdf_iterations
            )
            if not EncryptionService.verify(candidate_key, meta.validation):
                candidate_key = None
                self._record_failed_unlock()
                raise AuthenticationFailed("Incorrect master password")

            items = await decrypt_items_async(self.storage.get_items(), candidate_key)
        finally:
            self._busy = False

        self.failed_attempts = 0
        self.lockout_until = None

        self._items = items
        self._key = candidate_key
        self.is_new_user = False

        self.logger.log_vault_event(
            EventType.VAULT_UNLOCKED,
            "Vault unlocked",
            details={"item_count": len(items)},
        )
        self.monitor.touch()
        self.view.show_view(VIEW_DASHBOARD)

    def lock(self) -> None:
        """Clear the key and decrypted items. Safe to call when locked."""
        self._lock(EventType.VAULT_LOCKED, "Vault locked")

    def _auto_lock(self) -> None:
        self._lock(EventType.VAULT_AUTO_LOCKED, "Vault locked after inactivity")

    def _lock(self, event_type: EventType, message: str) -> None:
        was_unlocked = self._key is not None
        self.monitor.disarm()
        self._key = None
        self._items = []
        if was_unlocked:
            self.logger.log_vault_event(event_type, message)
        self.view.show_view(VIEW_AUTH)

    def reset_vault(self, confirm: Optional[ConfirmCallback] = None) -> None:
        """
        Irreversibly erase all persisted vault state.

        Asks twice. Declining either prompt raises ConfirmationDeclined and
        leaves everything untouched.
        """
        self.require_key()
        confirm = confirm or self.view.confirm
        if not confirm(RESET_CONFIRM_MESSAGE) or not confirm(RESET_CONFIRM_AGAIN_MESSAGE):
            raise ConfirmationDeclined("Vault reset cancelled")

        self.storage.clear()
        self._lock(EventType.VAULT_LOCKED, "Vault locked for reset")
        self.is_new_user = True

        self.logger.log_vault_event(
            EventType.VAULT_RESET,
            "Vault erased",
            severity=EventSeverity.ALERT,
        )

    # ── Rate limiting ────────────────────────────────────────────────

    def _check_lockout(self) -> None:
        if self.lockout_until and datetime.now() < self.lockout_until:
            remaining = max(1, int((self.lockout_until - datetime.now()).total_seconds()))
            self.logger.log_vault_event(
                EventType.VAULT_UNLOCK_FAILED,
                f"Unlock attempt during lockout period ({remaining}s remaining)",
                severity=EventSeverity.ALERT,
            )
            raise RateLimitedError(
                f"Too many failed attempts. Please wait {remaining} seconds.",
                retry_after=remaining,
            )

    def _record_failed_unlock(self) -> None:
        """Exponential backoff: first miss is free, then 2, 4, 8, 16s."""
        self.failed_attempts += 1
        if self.failed_attempts > 1:
            delay_seconds = min(2 ** (self.failed_attempts - 1), MAX_BACKOFF_SECONDS)
            self.lockout_until = datetime.now() + timedelta(seconds=delay_seconds)
        else:
            delay_seconds = 0

        self.logger.log_vault_event(
            EventType.VAULT_UNLOCK_FAILED,
            f"Unlock failed: incorrect password "
            f"(attempt {self.failed_attempts}, {delay_seconds}s lockout)",
            severity=EventSeverity.ALERT,
        )
