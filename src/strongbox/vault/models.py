# Vault - Data Model
#
# Wire shapes match the portable export document:
#   Envelope      -> {"ciphertext": <b64>, "iv": <b64>}
#   VaultMeta     -> {"salt": <b64>, "validation": Envelope}
#   EncryptedItem -> {"id": <uuid>, "data": Envelope}
#
# Item payloads are the plaintext inside an EncryptedItem's envelope and are
# serialized as camelCase JSON with a "type" discriminator.

import base64
import binascii
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Union

from .exceptions import InvalidFormat

SALT_LENGTH = 16   # bytes
NONCE_LENGTH = 12  # 96-bit nonce for GCM

ITEM_TYPE_PASSWORD = "password"
ITEM_TYPE_CARD = "card"
ITEM_TYPES = (ITEM_TYPE_PASSWORD, ITEM_TYPE_CARD)


def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def b64decode(value: Any, field_name: str) -> bytes:
    """Strict base64 decode; malformed input is an InvalidFormat."""
    if not isinstance(value, str):
        raise InvalidFormat(f"{field_name} must be a base64 string")
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise InvalidFormat(f"{field_name} is not valid base64") from e


def now_ms() -> int:
    """Milliseconds since the Unix epoch (the payload timestamp unit)."""
    return int(time.time() * 1000)


@dataclass(frozen=True)
class Envelope:
    """Ciphertext (with GCM tag) + the nonce it was sealed under."""
    ciphertext: bytes
    nonce: bytes

    def to_dict(self) -> Dict[str, str]:
        return {"ciphertext": b64encode(self.ciphertext), "iv": b64encode(self.nonce)}

    @classmethod
    def from_dict(cls, data: Any, where: str = "envelope") -> "Envelope":
        if not isinstance(data, Mapping):
            raise InvalidFormat(f"{where} must be an object")
        ciphertext = b64decode(data.get("ciphertext"), f"{where}.ciphertext")
        nonce = b64decode(data.get("iv"), f"{where}.iv")
        if len(nonce) != NONCE_LENGTH:
            raise InvalidFormat(f"{where}.iv must be {NONCE_LENGTH} bytes")
        return cls(ciphertext=ciphertext, nonce=nonce)


@dataclass(frozen=True)
class VaultMeta:
    """Salt + validation token. Written once per vault."""
    salt: bytes
    validation: Envelope

    def to_dict(self) -> Dict[str, Any]:
        return {"salt": b64encode(self.salt), "validation": self.validation.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> "VaultMeta":
        if not isinstance(data, Mapping):
            raise InvalidFormat("meta must be an object")
        salt = b64decode(data.get("salt"), "meta.salt")
        if len(salt) != SALT_LENGTH:
            raise InvalidFormat(f"meta.salt must be {SALT_LENGTH} bytes")
        validation = Envelope.from_dict(data.get("validation"), "meta.validation")
        return cls(salt=salt, validation=validation)


@dataclass(frozen=True)
class EncryptedItem:
    """Persisted twin of a DecryptedItem; opaque to storage."""
    id: str
    data: Envelope

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "data": self.data.to_dict()}

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptedItem":
        if not isinstance(data, Mapping):
            raise InvalidFormat("item must be an object")
        item_id = data.get("id")
        if not isinstance(item_id, str) or not item_id:
            raise InvalidFormat("item.id must be a non-empty string")
        return cls(id=item_id, data=Envelope.from_dict(data.get("data"), f"item {item_id}"))


@dataclass(frozen=True)
class PasswordPayload:
    """Website/app login."""
    name: str
    username: str = ""
    password: str = field(default="", repr=False)
    url: str = ""
    updated_at: int = field(default_factory=now_ms)

    type = ITEM_TYPE_PASSWORD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "username": self.username,
            "password": self.password,
            "url": self.url,
            "updatedAt": self.updated_at,
        }


@dataclass(frozen=True)
class CardPayload:
    """Payment card."""
    name: str
    card_holder: str = ""
    card_number: str = field(default="", repr=False)
    card_expiry: str = ""
    card_cvv: str = field(default="", repr=False)
    updated_at: int = field(default_factory=now_ms)

    type = ITEM_TYPE_CARD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "cardHolder": self.card_holder,
            "cardNumber": self.card_number,
            "cardExpiry": self.card_expiry,
            "cardCvv": self.card_cvv,
            "updatedAt": self.updated_at,
        }


ItemPayload = Union[PasswordPayload, CardPayload]


def payload_from_dict(data: Mapping[str, Any]) -> ItemPayload:
    """Rebuild a payload from its decrypted JSON object.

    Raises:
        ValueError: unknown type or missing name
    """
    if not isinstance(data, Mapping):
        raise ValueError("payload must be an object")
    item_type = data.get("type")
    name = data.get("name")
    if not isinstance(name, str):
        raise ValueError("payload has no name")
    updated_at = data.get("updatedAt")
    if not isinstance(updated_at, int):
        updated_at = now_ms()

    if item_type == ITEM_TYPE_PASSWORD:
        return PasswordPayload(
            name=name,
            username=data.get("username") or "",
            password=data.get("password") or "",
            url=data.get("url") or "",
            updated_at=updated_at,
        )
    if item_type == ITEM_TYPE_CARD:
        return CardPayload(
            name=name,
            card_holder=data.get("cardHolder") or "",
            card_number=data.get("cardNumber") or "",
            card_expiry=data.get("cardExpiry") or "",
            card_cvv=data.get("cardCvv") or "",
            updated_at=updated_at,
        )
    raise ValueError(f"unknown item type: {item_type!r}")


@dataclass(frozen=True)
class DecryptedItem:
    """In-memory view of one item; lives only while the vault is unlocked."""
    id: str
    payload: ItemPayload

    @property
    def type(self) -> str:
        return self.payload.type

    @property
    def name(self) -> str:
        return self.payload.name

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, **self.payload.to_dict()}
