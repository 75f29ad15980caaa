# Vault - Persistence Abstraction
#
# Stores vault metadata (salt + validation token) separately from the
# ordered list of encrypted item records. Records are opaque here: this
# layer never sees a key or a plaintext payload.
#
# Design:
#   - Whole-collection writes: save_items() replaces the full list
#   - SQLiteStorage keeps JSON blobs in a key/value table, in the same
#     shapes the portable export document uses
#   - MemoryStorage backs tests and throwaway sessions

import json
import logging
import sqlite3
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import List, Optional, Sequence, Union

from ..core.db import transaction
from .exceptions import InvalidFormat
from .models import EncryptedItem, VaultMeta

logger = logging.getLogger(__name__)

META_KEY = "vault_meta"
ITEMS_KEY = "vault_items"


def _is_well_formed(record) -> bool:
    try:
        EncryptedItem.from_dict(record)
    except InvalidFormat:
        return False
    return True


class VaultStorage(ABC):
    """Persistence contract consumed by the vault engine."""

    @abstractmethod
    def get_meta(self) -> Optional[VaultMeta]:
        """Return stored metadata, or None when no vault exists."""

    @abstractmethod
    def set_meta(self, meta: VaultMeta) -> None:
        """Store metadata (replaces any previous value)."""

    @abstractmethod
    def get_items(self) -> List[EncryptedItem]:
        """Return all encrypted records in persisted order."""

    @abstractmethod
    def save_items(self, items: Sequence[EncryptedItem]) -> None:
        """Replace the whole record collection."""

    @abstractmethod
    def clear(self) -> None:
        """Erase all vault state."""

    def replace_all(self, meta: VaultMeta, items: Sequence[EncryptedItem]) -> None:
        """Swap metadata and records together (import)."""
        self.set_meta(meta)
        self.save_items(items)

    def has_vault(self) -> bool:
        return self.get_meta() is not None


class MemoryStorage(VaultStorage):
    """Process-local storage; nothing touches disk."""

    def __init__(self):
        self._meta: Optional[VaultMeta] = None
        self._items: List[EncryptedItem] = []

    def get_meta(self) -> Optional[VaultMeta]:
        return self._meta

    def set_meta(self, meta: VaultMeta) -> None:
        self._meta = meta

    def get_items(self) -> List[EncryptedItem]:
        return list(self._items)

    def save_items(self, items: Sequence[EncryptedItem]) -> None:
        self._items = list(items)

    def clear(self) -> None:
        self._meta = None
        self._items = []


class SQLiteStorage(VaultStorage):
    """SQLite key/value blob store for vault metadata and records.

    Args:
        db_path: Path to SQLite file. Defaults to data/vault.db.
    """

    def __init__(self, db_path: Optional[Union[str, Path]] = None):
        self.db_path = Path(db_path) if db_path else Path("data/vault.db")
        self._lock = threading.Lock()
        self._init_database()

    def _init_database(self):
        with transaction(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS vault_store (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

    def _get(self, key: str) -> Optional[str]:
        with transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT value FROM vault_store WHERE key = ?", (key,)
            ).fetchone()
        return None if row is None else row[0]

    def _put(self, conn: sqlite3.Connection, key: str, value: str) -> None:
        conn.execute(
            """INSERT INTO vault_store (key, value) VALUES (?, ?)
               ON CONFLICT(key) DO UPDATE SET value = excluded.value""",
            (key, value),
        )

    def get_meta(self) -> Optional[VaultMeta]:
        raw = self._get(META_KEY)
        if raw is None:
            return None
        try:
            return VaultMeta.from_dict(json.loads(raw))
        except json.JSONDecodeError as e:
            raise InvalidFormat("Stored vault metadata is corrupted") from e

    def set_meta(self, meta: VaultMeta) -> None:
        with transaction(self.db_path, self._lock) as conn:
            self._put(conn, META_KEY, json.dumps(meta.to_dict()))

    @staticmethod
    def _decode_records(raw: Optional[str]) -> list:
        if raw is None:
            return []
        try:
            records = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidFormat("Stored vault items are corrupted") from e
        if not isinstance(records, list):
            raise InvalidFormat("Stored vault items are corrupted")
        return records

    def get_items(self) -> List[EncryptedItem]:
        items = []
        for index, record in enumerate(self._decode_records(self._get(ITEMS_KEY))):
            try:
                items.append(EncryptedItem.from_dict(record))
            except InvalidFormat as e:
                logger.warning("Skipping malformed stored record #%d: %s", index, e)
        return items

    def save_items(self, items: Sequence[EncryptedItem]) -> None:
        """Replace the well-formed records; malformed stored rows are kept as-is."""
        with transaction(self.db_path, self._lock) as conn:
            row = conn.execute(
                "SELECT value FROM vault_store WHERE key = ?", (ITEMS_KEY,)
            ).fetchone()
            kept = [
                record for record in self._decode_records(row[0] if row else None)
                if not _is_well_formed(record)
            ]
            payload = json.dumps([item.to_dict() for item in items] + kept)
            self._put(conn, ITEMS_KEY, payload)

    def replace_all(self, meta: VaultMeta, items: Sequence[EncryptedItem]) -> None:
        """Swap metadata and records in one transaction (import)."""
        payload = json.dumps([item.to_dict() for item in items])
        with transaction(self.db_path, self._lock) as conn:
            self._put(conn, META_KEY, json.dumps(meta.to_dict()))
            self._put(conn, ITEMS_KEY, payload)

    def clear(self) -> None:
        with transaction(self.db_path, self._lock) as conn:
            conn.execute(
                "DELETE FROM vault_store WHERE key IN (?, ?)", (META_KEY, ITEMS_KEY)
            )
