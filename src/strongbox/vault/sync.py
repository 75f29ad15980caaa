# Vault - Sync Reconciler
#
# Mirrors the full encrypted export to one external file after every
# successful mutation. Local storage is the source of truth; the mirror is a
# best-effort secondary copy:
#   - whole-file overwrite on each mutation (vaults are small)
#   - permission is verified (query, then request) before each write
#   - a denied permission or failed write marks the link DISCONNECTED and is
#     logged, but never fails the local write that triggered it
#   - a crash between the local write and the mirror write leaves the mirror
#     stale until the next mutation
#
# The file capability is lent by the platform. The engine only queries or
# requests permission on it and writes through it.

import asyncio
import logging
import os
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Union
from uuid import uuid4

from ..core import EventSeverity, EventType, get_audit_logger
from ..core.db import transaction
from .exceptions import PermissionDenied
from .storage import VaultStorage
from .transfer import export_json
from .view import ConfirmCallback

logger = logging.getLogger(__name__)

SYNC_HANDLE_KEY = "vault_handle"


class PermissionMode(str, Enum):
    READ = "read"
    READWRITE = "readwrite"


class PermissionState(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


class FileCapability(ABC):
    """A user-granted handle to one external file."""

    name: str = ""

    @abstractmethod
    async def query_permission(self, mode: PermissionMode) -> PermissionState:
        """Current permission, without prompting."""

    @abstractmethod
    async def request_permission(self, mode: PermissionMode) -> PermissionState:
        """Ask for permission; may prompt the user."""

    @abstractmethod
    async def write(self, data: bytes) -> None:
        """Atomically replace the whole file with data."""


class LocalFileHandle(FileCapability):
    """File capability over a local filesystem path.

    Permission is what the OS reports via os.access(). An optional
    on_request callback stands in for the platform prompt: returning False
    denies the request outright.
    """

    def __init__(
        self,
        path: Union[str, Path],
        on_request: Optional[Callable[[Path, PermissionMode], bool]] = None,
    ):
        self.path = Path(path)
        self.name = self.path.name
        self._on_request = on_request

    def __repr__(self) -> str:
        return f"LocalFileHandle({str(self.path)!r})"

    def _check(self, mode: PermissionMode) -> PermissionState:
        if self.path.exists():
            flags = os.R_OK | os.W_OK if mode == PermissionMode.READWRITE else os.R_OK
            granted = self.path.is_file() and os.access(self.path, flags)
        elif mode == PermissionMode.READWRITE:
            parent = self.path.parent
            granted = parent.is_dir() and os.access(parent, os.W_OK | os.X_OK)
        else:
            granted = False
        return PermissionState.GRANTED if granted else PermissionState.DENIED

    async def query_permission(self, mode: PermissionMode) -> PermissionState:
        return self._check(mode)

    async def request_permission(self, mode: PermissionMode) -> PermissionState:
        if self._on_request is not None and not self._on_request(self.path, mode):
            return PermissionState.DENIED
        return self._check(mode)

    async def write(self, data: bytes) -> None:
        loop = asyncio.get_running_loop()
        await loop.run_in_executor(None, self._write_atomic, data)

    def _write_atomic(self, data: bytes) -> None:
        tmp = self.path.with_name(f".{self.path.name}.{uuid4().hex}.tmp")
        try:
            tmp.write_bytes(data)
            os.replace(tmp, self.path)
        except PermissionError as e:
            raise PermissionDenied(f"Cannot write {self.path}: {e}") from e
        finally:
            if tmp.exists():
                tmp.unlink()


# ── Handle registry ──────────────────────────────────────────────────


class HandleRegistry(ABC):
    """Keeps file capabilities across restarts."""

    @abstractmethod
    def get(self, key: str) -> Optional[FileCapability]:
        ...

    @abstractmethod
    def set(self, key: str, handle: FileCapability) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...


class MemoryHandleRegistry(HandleRegistry):
    def __init__(self):
        self._handles: Dict[str, FileCapability] = {}

    def get(self, key: str) -> Optional[FileCapability]:
        return self._handles.get(key)

    def set(self, key: str, handle: FileCapability) -> None:
        self._handles[key] = handle

    def delete(self, key: str) -> None:
        self._handles.pop(key, None)


class SQLiteHandleRegistry(HandleRegistry):
    """Persists LocalFileHandle paths in SQLite.

    Args:
        db_path: Path to SQLite file. Defaults to data/vault.db.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path else Path("data/vault.db")
        self._lock = threading.Lock()
        with transaction(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS file_handles (
                    key TEXT PRIMARY KEY,
                    path TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)

    def get(self, key: str) -> Optional[FileCapability]:
        with transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT path FROM file_handles WHERE key = ?", (key,)
            ).fetchone()
        return None if row is None else LocalFileHandle(row[0])

    def set(self, key: str, handle: FileCapability) -> None:
        if not isinstance(handle, LocalFileHandle):
            raise TypeError("SQLiteHandleRegistry only persists LocalFileHandle")
        now = datetime.now(timezone.utc).isoformat()
        with transaction(self.db_path, self._lock) as conn:
            conn.execute(
                """INSERT INTO file_handles (key, path, updated_at)
                   VALUES (?, ?, ?)
                   ON CONFLICT(key) DO UPDATE SET
                       path = excluded.path,
                       updated_at = excluded.updated_at""",
                (key, str(handle.path), now),
            )

    def delete(self, key: str) -> None:
        with transaction(self.db_path, self._lock) as conn:
            conn.execute("DELETE FROM file_handles WHERE key = ?", (key,))


# ── Reconciler ───────────────────────────────────────────────────────


class SyncState(str, Enum):
    UNLINKED = "unlinked"
    CONNECTED = "connected"
    DISCONNECTED = "disconnected"


@dataclass
class SyncLink:
    handle: Optional[FileCapability] = None
    label: Optional[str] = None

    @property
    def active(self) -> bool:
        return self.handle is not None


@dataclass
class SyncStatus:
    state: SyncState = SyncState.UNLINKED
    label: Optional[str] = None
    last_synced_at: Optional[str] = None
    last_error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "label": self.label,
            "last_synced_at": self.last_synced_at,
            "last_error": self.last_error,
        }


Chooser = Callable[[], Awaitable[Optional[FileCapability]]]


class SyncReconciler:
    """
    Keeps at most one external mirror of the encrypted vault up to date.

    Usage::

        sync = SyncReconciler(storage, registry, chooser=pick_file)
        sync.restore()                 # reuse the handle from last run
        await sync.reconnect()         # re-verify permission, no new prompt
        await sync.on_mutation()       # after every add/update/delete
    """

    def __init__(
        self,
        storage: VaultStorage,
        registry: Optional[HandleRegistry] = None,
        chooser: Optional[Chooser] = None,
        confirm: Optional[ConfirmCallback] = None,
    ):
        self.storage = storage
        self.registry = registry or MemoryHandleRegistry()
        self._chooser = chooser
        self._confirm = confirm
        self._link = SyncLink()
        self._status = SyncStatus()
        self.logger = get_audit_logger()

    @property
    def link(self) -> SyncLink:
        return self._link

    @property
    def status(self) -> SyncStatus:
        return self._status

    def restore(self) -> bool:
        """Pick up a previously registered handle without writing."""
        handle = self.registry.get(SYNC_HANDLE_KEY)
        if handle is None:
            return False
        self._link = SyncLink(handle=handle, label=handle.name)
        self._status = SyncStatus(state=SyncState.DISCONNECTED, label=handle.name)
        return True

    async def link_new(self, chooser: Optional[Chooser] = None) -> Optional[SyncLink]:
        """
        Ask for a destination and write the current export to it.

        Returns None if the user cancelled the chooser.

        Raises:
            PermissionDenied: destination refused write access
            ValueError: no chooser configured
        """
        chooser = chooser or self._chooser
        if chooser is None:
            raise ValueError("No destination chooser configured")

        handle = await chooser()
        if handle is None:
            return None

        if not await self._verify_permission(handle):
            raise PermissionDenied(f"Write access to {handle.name} was denied")
        await handle.write(self._export_bytes())

        self.registry.set(SYNC_HANDLE_KEY, handle)
        self._link = SyncLink(handle=handle, label=handle.name)
        self._mark_connected()

        self.logger.log_vault_event(
            EventType.SYNC_LINKED,
            f"Sync linked to {handle.name}",
            details={"label": handle.name},
        )
        return self._link

    async def reconnect(
        self,
        confirm: Optional[ConfirmCallback] = None,
        chooser: Optional[Chooser] = None,
    ) -> bool:
        """
        Re-verify permission on the stored handle.

        On denial, optionally offers to link a new destination (picked with
        chooser, or the configured one).
        """
        handle = self._link.handle
        if handle is None:
            return False

        if await self._verify_permission(handle):
            await self.on_mutation()
            return self._status.state == SyncState.CONNECTED

        self._mark_disconnected(f"Permission to {handle.name} was denied")

        confirm = confirm or self._confirm
        if confirm is not None and confirm(
            f"Access to {handle.name} was lost. Link a new file instead?"
        ):
            try:
                return await self.link_new(chooser) is not None
            except Exception as e:
                self._mark_disconnected(str(e))
                logger.warning("Re-linking sync destination failed: %s", e)
        return False

    async def on_mutation(self) -> None:
        """Mirror the full export. Never raises."""
        handle = self._link.handle
        if handle is None:
            return

        try:
            if not await self._verify_permission(handle):
                raise PermissionDenied(f"Write access to {handle.name} was denied")
            await handle.write(self._export_bytes())
        except Exception as e:
            logger.warning("Sync to %s failed: %s", handle.name, e)
            self._mark_disconnected(str(e))
            return

        self._mark_connected()
        self.logger.log_vault_event(
            EventType.SYNC_WRITTEN,
            f"Vault mirrored to {handle.name}",
            details={"label": handle.name},
        )

    def unlink(self) -> None:
        """Forget the destination (the external file is left in place)."""
        label = self._link.label
        self.registry.delete(SYNC_HANDLE_KEY)
        self._link = SyncLink()
        self._status = SyncStatus()
        if label:
            self.logger.log_vault_event(
                EventType.SYNC_UNLINKED, f"Sync unlinked from {label}"
            )

    # ── Helpers ──────────────────────────────────────────────────────

    def _export_bytes(self) -> bytes:
        return export_json(self.storage).encode("utf-8")

    @staticmethod
    async def _verify_permission(handle: FileCapability) -> bool:
        if await handle.query_permission(PermissionMode.READWRITE) == PermissionState.GRANTED:
            return True
        return (
            await handle.request_permission(PermissionMode.READWRITE)
            == PermissionState.GRANTED
        )

    def _mark_connected(self) -> None:
        self._status = SyncStatus(
            state=SyncState.CONNECTED,
            label=self._link.label,
            last_synced_at=datetime.now(timezone.utc).isoformat(),
        )

    def _mark_disconnected(self, error: str) -> None:
        was_connected = self._status.state == SyncState.CONNECTED
        self._status = SyncStatus(
            state=SyncState.DISCONNECTED,
            label=self._link.label,
            last_synced_at=self._status.last_synced_at,
            last_error=error,
        )
        if was_connected:
            self.logger.log_vault_event(
                EventType.SYNC_DISCONNECTED,
                f"Sync disconnected: {error}",
                details={"label": self._link.label},
                severity=EventSeverity.INVESTIGATE,
            )
