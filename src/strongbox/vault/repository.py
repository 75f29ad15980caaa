# Vault - Item Repository
#
# CRUD over the decrypted in-memory items and their encrypted persisted
# twins. Every mutation updates both views, then mirrors through sync.
#
# Partial-failure tolerance: a record that fails to decrypt during a bulk
# load is logged and skipped; the rest of the vault stays accessible.

import asyncio
import dataclasses
import json
import logging
from typing import TYPE_CHECKING, Callable, Iterable, List, Optional
from uuid import uuid4

from ..core import EventSeverity, EventType, get_audit_logger
from .encryption import EncryptionService
from .exceptions import DecryptionFailed, NotFound, VaultLockedError
from .models import (
    ITEM_TYPES,
    DecryptedItem,
    EncryptedItem,
    ItemPayload,
    now_ms,
    payload_from_dict,
)

if TYPE_CHECKING:
    from .session import VaultSession
    from .sync import SyncReconciler

logger = logging.getLogger(__name__)

CATEGORY_ALL = "all"


def decrypt_items(records: Iterable[EncryptedItem], key: bytes) -> List[DecryptedItem]:
    """Decrypt every record under key, skipping (and logging) failures."""
    items = []
    for record in records:
        try:
            plaintext = EncryptionService.decrypt(record.data, key)
            payload = payload_from_dict(json.loads(plaintext.decode("utf-8")))
        except (DecryptionFailed, UnicodeDecodeError, ValueError) as e:
            logger.warning("Failed to decrypt item %s, skipping: %s", record.id, e)
            get_audit_logger().log_vault_event(
                EventType.ITEM_DECRYPT_SKIPPED,
                "Item could not be decrypted and was skipped",
                details={"item_id": record.id},
                severity=EventSeverity.INVESTIGATE,
            )
            continue
        items.append(DecryptedItem(id=record.id, payload=payload))
    return items


async def decrypt_items_async(
    records: Iterable[EncryptedItem], key: bytes
) -> List[DecryptedItem]:
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, decrypt_items, list(records), key)


def serialize_payload(payload: ItemPayload) -> bytes:
    return json.dumps(payload.to_dict()).encode("utf-8")


def matches(item: DecryptedItem, category: str = CATEGORY_ALL, query: str = "") -> bool:
    """Category filter plus case-insensitive substring match on name."""
    if category != CATEGORY_ALL and item.type != category:
        return False
    if query and query.casefold() not in item.name.casefold():
        return False
    return True


class ItemRepository:
    """
    Item CRUD bound to one VaultSession.

    Usage::

        repo = ItemRepository(session, storage, sync=reconciler)
        item = await repo.add(PasswordPayload(name="Example", password="p"))
        await repo.update(item.id, dataclasses.replace(item.payload, url="https://e.com"))
        cards = repo.search(category="card")
    """

    def __init__(
        self,
        session: "VaultSession",
        storage=None,
        sync: Optional["SyncReconciler"] = None,
    ):
        self.session = session
        self.storage = storage or session.storage
        self.sync = sync
        self.logger = get_audit_logger()

    # ── Reads ────────────────────────────────────────────────────────

    async def load_all(self, key: Optional[bytes] = None) -> List[DecryptedItem]:
        """Re-read and decrypt every persisted record into the session."""
        key = key or self.session.require_key()
        items = await decrypt_items_async(self.storage.get_items(), key)
        self.session.replace_items(items)
        return items

    def get(self, item_id: str) -> DecryptedItem:
        for item in self.session.items:
            if item.id == item_id:
                return item
        raise NotFound(f"Item not found: {item_id}")

    def filter(self, predicate: Callable[[DecryptedItem], bool]) -> List[DecryptedItem]:
        """Read-only projection; returns a fresh list every call."""
        return [item for item in self.session.items if predicate(item)]

    def search(self, category: str = CATEGORY_ALL, query: str = "") -> List[DecryptedItem]:
        if category != CATEGORY_ALL and category not in ITEM_TYPES:
            raise ValueError(f"Unknown category: {category}")
        return self.filter(lambda item: matches(item, category, query))

    # ── Mutations ────────────────────────────────────────────────────

    async def add(self, payload: ItemPayload) -> DecryptedItem:
        """Encrypt and append a new item; returns its decrypted view."""
        payload = dataclasses.replace(payload, updated_at=now_ms())
        key = self.session.require_key()
        envelope = await EncryptionService.encrypt_async(serialize_payload(payload), key)
        self._require_same_key(key)

        records = self.storage.get_items()
        taken = {record.id for record in records}
        item_id = str(uuid4())
        while item_id in taken:
            item_id = str(uuid4())

        records.append(EncryptedItem(id=item_id, data=envelope))
        self.storage.save_items(records)

        item = DecryptedItem(id=item_id, payload=payload)
        self.session.replace_items(self.session.items + [item])

        self.logger.log_vault_event(
            EventType.ITEM_ADDED,
            f"Item added: {payload.name}",
            details={"item_id": item_id, "type": payload.type},
        )
        await self._after_mutation()
        return item

    async def update(self, item_id: str, payload: ItemPayload) -> DecryptedItem:
        """Re-encrypt an existing item in place (fresh nonce, same id)."""
        key = self.session.require_key()
        self.get(item_id)
        payload = dataclasses.replace(payload, updated_at=now_ms())
        envelope = await EncryptionService.encrypt_async(serialize_payload(payload), key)
        self._require_same_key(key)

        records = self.storage.get_items()
        index = self._index_of(records, item_id)
        records[index] = EncryptedItem(id=item_id, data=envelope)
        self.storage.save_items(records)

        item = DecryptedItem(id=item_id, payload=payload)
        self.session.replace_items(
            [item if existing.id == item_id else existing for existing in self.session.items]
        )

        self.logger.log_vault_event(
            EventType.ITEM_UPDATED,
            f"Item updated: {payload.name}",
            details={"item_id": item_id, "type": payload.type},
        )
        await self._after_mutation()
        return item

    async def delete(self, item_id: str) -> None:
        """Remove an item from both views."""
        self.session.require_key()
        self.get(item_id)

        records = self.storage.get_items()
        index = self._index_of(records, item_id)
        del records[index]
        self.storage.save_items(records)

        self.session.replace_items(
            [existing for existing in self.session.items if existing.id != item_id]
        )

        self.logger.log_vault_event(
            EventType.ITEM_DELETED,
            "Item deleted",
            details={"item_id": item_id},
        )
        await self._after_mutation()

    # ── Helpers ──────────────────────────────────────────────────────

    @staticmethod
    def _index_of(records: List[EncryptedItem], item_id: str) -> int:
        for index, record in enumerate(records):
            if record.id == item_id:
                return index
        raise NotFound(f"Item not found in storage: {item_id}")

    def _require_same_key(self, key: bytes) -> None:
        # The session may have locked while encryption ran in the executor.
        if not self.session.is_unlocked or self.session.require_key() != key:
            raise VaultLockedError("Vault was locked during the operation")

    async def _after_mutation(self) -> None:
        if self.sync is not None:
            await self.sync.on_mutation()
