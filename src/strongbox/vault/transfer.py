# Vault - Import/Export Gateway
#
# Export: the whole encrypted vault as a portable JSON document. Never
# decrypts anything.
#
# Import: REPLACE semantics. Records sealed under a foreign key cannot be
# merged with local records without decrypting them, so a valid document
# discards the current vault wholesale after explicit confirmation. The
# session is locked afterwards; the next unlock derives a key against the
# imported metadata.
#
# Document format (version 1):
#   { "version": 1, "exportedAt": <ISO-8601>,
#     "meta": { "salt": <b64>, "validation": { "ciphertext": <b64>, "iv": <b64> } },
#     "items": [ { "id": <uuid>, "data": { "ciphertext": <b64>, "iv": <b64> } } ] }

import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Union

from ..core import EventSeverity, EventType, get_audit_logger
from .exceptions import (
    ConfirmationDeclined,
    InvalidFormat,
    NoVaultError,
    UnlockInProgressError,
)
from .models import EncryptedItem, VaultMeta
from .storage import VaultStorage
from .view import ConfirmCallback

if TYPE_CHECKING:
    from .session import VaultSession
    from .sync import SyncReconciler

EXPORT_VERSION = 1

IMPORT_CONFIRM_MESSAGE = "This will replace your current vault. Are you sure?"
FOREIGN_VAULT_WARNING = (
    " This file comes from a different vault: your current master password "
    "may not unlock it. You will need the password it was created with."
)


def _iso_now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace(
        "+00:00", "Z"
    )


@dataclass(frozen=True)
class VaultDocument:
    """A parsed, validated export document."""
    version: int
    exported_at: Optional[str]
    meta: VaultMeta
    items: List[EncryptedItem]


def export_document(storage: VaultStorage, exported_at: Optional[str] = None) -> Dict[str, Any]:
    """Build the portable document from persisted state (read-only)."""
    meta = storage.get_meta()
    if meta is None:
        raise NoVaultError("Nothing to export: vault does not exist")
    return {
        "version": EXPORT_VERSION,
        "exportedAt": exported_at or _iso_now(),
        "meta": meta.to_dict(),
        "items": [item.to_dict() for item in storage.get_items()],
    }


def export_json(storage: VaultStorage) -> str:
    return json.dumps(export_document(storage), indent=2)


def export_filename(now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"vault-export-{now.strftime('%Y-%m-%d')}.json"


def parse_document(raw: Union[str, bytes, Mapping[str, Any]]) -> VaultDocument:
    """
    Validate an export document without touching any state.

    Raises:
        InvalidFormat: not JSON, missing meta/items, bad base64, wrong
            salt/IV lengths, duplicate ids, or an unsupported version
    """
    if isinstance(raw, bytes):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise InvalidFormat("Document is not UTF-8 text") from e
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InvalidFormat(f"Document is not valid JSON: {e.msg}") from e

    if not isinstance(raw, Mapping):
        raise InvalidFormat("Document must be a JSON object")
    if not raw.get("meta") or "items" not in raw or raw["items"] is None:
        raise InvalidFormat("Invalid Format: document needs both meta and items")

    version = raw.get("version", EXPORT_VERSION)
    if not isinstance(version, int) or isinstance(version, bool) or version != EXPORT_VERSION:
        raise InvalidFormat(f"Unsupported document version: {version!r}")

    if not isinstance(raw["items"], list):
        raise InvalidFormat("items must be a list")

    meta = VaultMeta.from_dict(raw["meta"])
    items = [EncryptedItem.from_dict(record) for record in raw["items"]]

    seen = set()
    for item in items:
        if item.id in seen:
            raise InvalidFormat(f"Duplicate item id: {item.id}")
        seen.add(item.id)

    exported_at = raw.get("exportedAt")
    return VaultDocument(
        version=EXPORT_VERSION,
        exported_at=exported_at if isinstance(exported_at, str) else None,
        meta=meta,
        items=items,
    )


class TransferGateway:
    """Export/import bound to one session and its storage."""

    def __init__(
        self,
        session: "VaultSession",
        storage: Optional[VaultStorage] = None,
        sync: Optional["SyncReconciler"] = None,
    ):
        self.session = session
        self.storage = storage or session.storage
        self.sync = sync
        self.logger = get_audit_logger()

    def export(self) -> Dict[str, Any]:
        document = export_document(self.storage)
        self.logger.log_vault_event(
            EventType.VAULT_EXPORTED,
            "Vault exported",
            details={"item_count": len(document["items"])},
        )
        return document

    def confirmation_message(self, document: VaultDocument) -> str:
        """Replace warning, plus a foreign-vault flag when salts differ."""
        current = self.storage.get_meta()
        if current is not None and current.salt != document.meta.salt:
            return IMPORT_CONFIRM_MESSAGE + FOREIGN_VAULT_WARNING
        return IMPORT_CONFIRM_MESSAGE

    async def import_document(
        self,
        raw: Union[str, bytes, Mapping[str, Any]],
        confirm: Optional[ConfirmCallback] = None,
    ) -> VaultDocument:
        """
        Replace the entire vault with the document's contents.

        Raises:
            InvalidFormat: document rejected (nothing was changed)
            ConfirmationDeclined: user said no (nothing was changed)
            UnlockInProgressError: an unlock is running
        """
        document = parse_document(raw)
        if self.session.busy:
            raise UnlockInProgressError("Cannot import while an unlock is in progress")

        confirm = confirm or self.session.view.confirm
        if not confirm(self.confirmation_message(document)):
            raise ConfirmationDeclined("Import cancelled")

        self.storage.replace_all(document.meta, document.items)
        self.session.lock()
        self.session.is_new_user = False

        self.logger.log_vault_event(
            EventType.VAULT_IMPORTED,
            "Vault replaced from import",
            details={"item_count": len(document.items)},
            severity=EventSeverity.ALERT,
        )

        if self.sync is not None:
            await self.sync.on_mutation()
        return document
