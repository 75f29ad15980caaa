# Vault API - RESTful endpoints for the vault
#
# API endpoints for vault operations:
# - Create/unlock/lock/reset the vault
# - CRUD operations for password and card items
# - Export/import of the encrypted vault
# - External sync link management
# - All item operations require the vault to be unlocked

from typing import Any, Dict, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..vault import (
    AuthenticationFailed,
    CardPayload,
    ConfirmationDeclined,
    InvalidFormat,
    LocalFileHandle,
    NoVaultError,
    NotFound,
    PasswordPayload,
    PermissionDenied,
    RateLimitedError,
    UnlockInProgressError,
    VaultError,
    VaultExistsError,
    VaultLockedError,
    VaultManager,
    VaultStateError,
    generate_password,
)
from ..vault.models import DecryptedItem
from ..vault.transfer import export_filename, parse_document
from .security import verify_session_token

router = APIRouter(prefix="/api/vault", tags=["vault"])

# Global vault instance (one session per backend process)
_vault_manager: Optional[VaultManager] = None


def get_vault_manager() -> VaultManager:
    """Get or create the singleton VaultManager."""
    global _vault_manager
    if _vault_manager is None:
        _vault_manager = VaultManager()
    return _vault_manager


def set_vault_manager(manager: Optional[VaultManager]) -> None:
    """Replace the singleton (for testing)."""
    global _vault_manager
    _vault_manager = manager


_ERROR_STATUS = [
    (AuthenticationFailed, status.HTTP_401_UNAUTHORIZED),
    (VaultLockedError, status.HTTP_403_FORBIDDEN),
    (NotFound, status.HTTP_404_NOT_FOUND),
    (NoVaultError, status.HTTP_409_CONFLICT),
    (VaultExistsError, status.HTTP_409_CONFLICT),
    (VaultStateError, status.HTTP_409_CONFLICT),
    (UnlockInProgressError, status.HTTP_409_CONFLICT),
    (PermissionDenied, status.HTTP_409_CONFLICT),
    (InvalidFormat, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (RateLimitedError, status.HTTP_429_TOO_MANY_REQUESTS),
    (ConfirmationDeclined, status.HTTP_400_BAD_REQUEST),
]


def _http_error(exc: VaultError) -> HTTPException:
    """Map a vault exception onto an HTTP status."""
    for exc_type, code in _ERROR_STATUS:
        if isinstance(exc, exc_type):
            headers = None
            if isinstance(exc, RateLimitedError):
                headers = {"Retry-After": str(exc.retry_after)}
            return HTTPException(status_code=code, detail=str(exc), headers=headers)
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# Request/Response Models

class MasterPasswordRequest(BaseModel):
    master_password: str = Field(..., min_length=1)


class ItemRequest(BaseModel):
    type: Literal["password", "card"] = "password"
    name: str = Field(..., min_length=1, max_length=200)
    username: str = ""
    password: str = ""
    url: str = ""
    card_holder: str = ""
    card_number: str = ""
    card_expiry: str = ""
    card_cvv: str = ""

    def to_payload(self):
        if self.type == "card":
            return CardPayload(
                name=self.name,
                card_holder=self.card_holder,
                card_number=self.card_number,
                card_expiry=self.card_expiry,
                card_cvv=self.card_cvv,
            )
        return PasswordPayload(
            name=self.name,
            username=self.username,
            password=self.password,
            url=self.url,
        )


class ImportRequest(BaseModel):
    document: Dict[str, Any]
    confirm: bool = False


class ResetRequest(BaseModel):
    confirm: bool = False
    confirm_again: bool = False


class SyncLinkRequest(BaseModel):
    path: str = Field(..., min_length=1)


class SyncReconnectRequest(BaseModel):
    relink_path: Optional[str] = None


def _summary(item: DecryptedItem) -> Dict[str, Any]:
    """List view of an item: no password, card number or CVV."""
    data = {"id": item.id, "type": item.type, "name": item.name,
            "updatedAt": item.payload.updated_at}
    if isinstance(item.payload, PasswordPayload):
        data.update(username=item.payload.username, url=item.payload.url)
    else:
        data.update(
            cardHolder=item.payload.card_holder,
            cardLast4=item.payload.card_number[-4:],
            cardExpiry=item.payload.card_expiry,
        )
    return data


def _file_chooser(path: str):
    async def choose():
        return LocalFileHandle(path)
    return choose


# Endpoints

@router.get("/status")
async def get_vault_status(token: str = Depends(verify_session_token)):
    """
    Get current vault status: state, item count and sync link.

    Security: Requires valid session token in X-Session-Token header.
    """
    return get_vault_manager().status()


@router.post("/initialize")
async def initialize_vault(
    request: MasterPasswordRequest,
    token: str = Depends(verify_session_token)
):
    """
    Create a new vault with a master password and unlock it.

    The password cannot be recovered. Losing it loses the vault.
    """
    try:
        await get_vault_manager().create(request.master_password)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except VaultError as e:
        raise _http_error(e)

    return {"success": True, "message": "Vault created successfully!"}


@router.post("/unlock")
async def unlock_vault(
    request: MasterPasswordRequest,
    token: str = Depends(verify_session_token)
):
    """
    Unlock vault with master password.

    All item operations require the vault to be unlocked first.
    """
    manager = get_vault_manager()
    try:
        await manager.unlock(request.master_password)
    except VaultError as e:
        raise _http_error(e)

    return {"success": True, "message": "Vault unlocked successfully!",
            "item_count": len(manager.session.items)}


@router.post("/lock")
async def lock_vault(token: str = Depends(verify_session_token)):
    """Lock vault (drop the key and decrypted items)."""
    get_vault_manager().lock()
    return {"success": True, "message": "Vault locked"}


@router.post("/activity")
async def record_activity(token: str = Depends(verify_session_token)):
    """User-interaction signal from the front end (resets auto-lock)."""
    manager = get_vault_manager()
    manager.touch()
    return {"success": True, "auto_lock_armed": manager.session.monitor.armed}


@router.post("/reset")
async def reset_vault(
    request: ResetRequest,
    token: str = Depends(verify_session_token)
):
    """
    Permanently erase the vault. Needs both confirm flags set.
    """
    answers = iter([request.confirm, request.confirm_again])
    try:
        get_vault_manager().reset_vault(confirm=lambda message: next(answers, False))
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "message": "Vault erased"}


# ── Items ────────────────────────────────────────────────────────────

@router.get("/items")
async def list_items(
    category: str = Query("all", pattern="^(all|password|card)$"),
    q: str = "",
    token: str = Depends(verify_session_token)
):
    """
    List items, optionally filtered by category and name search.

    Does not return passwords, card numbers or CVVs.
    Use GET /items/{id} to retrieve a specific item.
    """
    try:
        items = get_vault_manager().list_items(category=category, query=q)
    except VaultError as e:
        raise _http_error(e)
    return {"items": [_summary(item) for item in items]}


@router.get("/items/{item_id}")
async def get_item(item_id: str, token: str = Depends(verify_session_token)):
    """Get one item with all its decrypted fields."""
    try:
        return get_vault_manager().get_item(item_id).to_dict()
    except VaultError as e:
        raise _http_error(e)


@router.post("/items")
async def add_item(request: ItemRequest, token: str = Depends(verify_session_token)):
    """Add a password or card item."""
    try:
        item = await get_vault_manager().add_item(request.to_payload())
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "item_id": item.id}


@router.put("/items/{item_id}")
async def update_item(
    item_id: str,
    request: ItemRequest,
    token: str = Depends(verify_session_token)
):
    """Replace an item's fields (id is preserved)."""
    try:
        item = await get_vault_manager().update_item(item_id, request.to_payload())
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "item_id": item.id}


@router.delete("/items/{item_id}")
async def delete_item(item_id: str, token: str = Depends(verify_session_token)):
    """Delete an item."""
    try:
        await get_vault_manager().delete_item(item_id)
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "message": "Item deleted"}


@router.get("/generate-password")
async def generate_passwords(
    count: int = Query(1, ge=1, le=50),
    token: str = Depends(verify_session_token)
):
    """Generate passwords (8-15 chars, exactly 2 specials)."""
    return {"passwords": [generate_password() for _ in range(count)]}


# ── Import / Export ──────────────────────────────────────────────────

@router.get("/export")
async def export_vault(token: str = Depends(verify_session_token)):
    """Download the encrypted vault as a portable JSON document."""
    try:
        document = get_vault_manager().export()
    except VaultError as e:
        raise _http_error(e)
    return JSONResponse(
        content=document,
        headers={"Content-Disposition": f'attachment; filename="{export_filename()}"'},
    )


@router.post("/import/preview")
async def preview_import(
    document: Dict[str, Any],
    token: str = Depends(verify_session_token)
):
    """Validate a document and return the confirmation prompt. Changes nothing."""
    manager = get_vault_manager()
    try:
        parsed = parse_document(document)
    except VaultError as e:
        raise _http_error(e)
    return {
        "item_count": len(parsed.items),
        "confirmation_message": manager.transfer.confirmation_message(parsed),
    }


@router.post("/import")
async def import_vault(request: ImportRequest, token: str = Depends(verify_session_token)):
    """
    Replace the whole vault with an exported document.

    Requires confirm=true. The vault is locked afterwards; unlock with the
    master password the document was created with.
    """
    try:
        parsed = await get_vault_manager().import_document(
            request.document, confirm=lambda message: request.confirm
        )
    except VaultError as e:
        raise _http_error(e)
    return {"success": True, "item_count": len(parsed.items)}


# ── Sync ─────────────────────────────────────────────────────────────

@router.get("/sync/status")
async def sync_status(token: str = Depends(verify_session_token)):
    return get_vault_manager().sync.status.to_dict()


@router.post("/sync/link")
async def link_sync(request: SyncLinkRequest, token: str = Depends(verify_session_token)):
    """Mirror the encrypted vault to a file and keep it updated."""
    manager = get_vault_manager()
    try:
        await manager.link_sync(_file_chooser(request.path))
    except VaultError as e:
        raise _http_error(e)
    except OSError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    return manager.sync.status.to_dict()


@router.post("/sync/reconnect")
async def reconnect_sync(
    request: SyncReconnectRequest,
    token: str = Depends(verify_session_token)
):
    """
    Re-verify access to the linked file. If access is gone and relink_path
    is given, link that file instead.
    """
    manager = get_vault_manager()
    if request.relink_path:
        connected = await manager.reconnect_sync(
            confirm=lambda message: True, chooser=_file_chooser(request.relink_path)
        )
    else:
        connected = await manager.reconnect_sync(confirm=lambda message: False)
    return {"connected": connected, **manager.sync.status.to_dict()}


@router.post("/sync/unlink")
async def unlink_sync(token: str = Depends(verify_session_token)):
    get_vault_manager().unlink_sync()
    return {"success": True}
