# Vault Manager - Encrypted Vault Facade
#
# Wires one session to its storage, repository, sync reconciler and
# import/export gateway, and keeps the attached view in step.
#
# Security:
#   - Each item encrypted with AES-256-GCM (per-record envelopes)
#   - Master password verified via validation token ("VALID")
#   - Master password never stored (only salt for key derivation)
#   - Audit logging for all vault access

from typing import Any, Dict, List, Mapping, Optional, Union

from ..core import Settings, get_settings
from .models import DecryptedItem, ItemPayload
from .password_generator import generate_password
from .repository import CATEGORY_ALL, ItemRepository
from .session import VaultSession, VaultState
from .storage import SQLiteStorage, VaultStorage
from .sync import Chooser, HandleRegistry, SQLiteHandleRegistry, SyncLink, SyncReconciler
from .transfer import TransferGateway, VaultDocument
from .view import ConfirmCallback, EditCallback, HeadlessView, VaultView


class VaultManager:
    """
    Entry point for everything the vault does.

    Usage::

        manager = VaultManager()
        await manager.create("correct-horse")
        item = await manager.add_item(PasswordPayload(name="Example", password="p"))
        manager.lock()
        await manager.unlock("correct-horse")
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        storage: Optional[VaultStorage] = None,
        registry: Optional[HandleRegistry] = None,
        view: Optional[VaultView] = None,
        chooser: Optional[Chooser] = None,
        on_edit: Optional[EditCallback] = None,
    ):
        self.settings = settings or get_settings()
        self.storage = storage or SQLiteStorage(self.settings.vault_db_path)
        self.registry = registry or SQLiteHandleRegistry(self.settings.vault_db_path)
        self.view = view or HeadlessView()
        self.on_edit = on_edit

        self.session = VaultSession(
            self.storage,
            view=self.view,
            auto_lock_seconds=self.settings.auto_lock_seconds,
            kdf_iterations=self.settings.kdf_iterations,
        )
        self.sync = SyncReconciler(
            self.storage, self.registry, chooser=chooser, confirm=self.view.confirm
        )
        self.repository = ItemRepository(self.session, self.storage, sync=self.sync)
        self.transfer = TransferGateway(self.session, self.storage, sync=self.sync)

        self.sync.restore()

    # ── Status ───────────────────────────────────────────────────────

    @property
    def state(self) -> VaultState:
        return self.session.state

    @property
    def is_unlocked(self) -> bool:
        return self.session.is_unlocked

    def status(self) -> Dict[str, Any]:
        return {
            "state": self.session.state.value,
            "is_unlocked": self.session.is_unlocked,
            "vault_exists": self.storage.has_vault(),
            "is_new_user": self.session.is_new_user,
            "busy": self.session.busy,
            "item_count": len(self.session.items),
            "sync": self.sync.status.to_dict(),
        }

    # ── Session ──────────────────────────────────────────────────────

    async def create(self, master_password: str) -> None:
        await self.session.create(master_password)
        self.refresh_view()

    async def unlock(self, master_password: str) -> None:
        await self.session.unlock(master_password)
        self.refresh_view()

    def lock(self) -> None:
        self.session.lock()

    def touch(self) -> None:
        self.session.touch()

    def reset_vault(self, confirm: Optional[ConfirmCallback] = None) -> None:
        """Erase everything (double confirmation) and drop the sync link."""
        self.session.reset_vault(confirm)
        self.sync.unlink()

    # ── Items ────────────────────────────────────────────────────────

    async def add_item(self, payload: ItemPayload) -> DecryptedItem:
        item = await self.repository.add(payload)
        self.refresh_view()
        return item

    async def update_item(self, item_id: str, payload: ItemPayload) -> DecryptedItem:
        item = await self.repository.update(item_id, payload)
        self.refresh_view()
        return item

    async def delete_item(self, item_id: str) -> None:
        await self.repository.delete(item_id)
        self.refresh_view()

    def get_item(self, item_id: str) -> DecryptedItem:
        self.session.require_key()
        return self.repository.get(item_id)

    def list_items(self, category: str = CATEGORY_ALL, query: str = "") -> List[DecryptedItem]:
        self.session.require_key()
        return self.repository.search(category, query)

    def refresh_view(self, category: str = CATEGORY_ALL, query: str = "") -> None:
        if self.session.is_unlocked:
            self.view.render_items(self.repository.search(category, query), self.on_edit)

    # ── Import / Export ──────────────────────────────────────────────

    def export(self) -> Dict[str, Any]:
        return self.transfer.export()

    async def import_document(
        self,
        raw: Union[str, bytes, Mapping[str, Any]],
        confirm: Optional[ConfirmCallback] = None,
    ) -> VaultDocument:
        return await self.transfer.import_document(raw, confirm)

    # ── Sync ─────────────────────────────────────────────────────────

    async def link_sync(self, chooser: Optional[Chooser] = None) -> Optional[SyncLink]:
        return await self.sync.link_new(chooser)

    async def reconnect_sync(
        self,
        confirm: Optional[ConfirmCallback] = None,
        chooser: Optional[Chooser] = None,
    ) -> bool:
        return await self.sync.reconnect(confirm, chooser)

    def unlink_sync(self) -> None:
        self.sync.unlink()

    # ── Utilities ────────────────────────────────────────────────────

    @staticmethod
    def generate_password() -> str:
        return generate_password()
