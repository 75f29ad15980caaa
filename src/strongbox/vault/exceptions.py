"""
Vault Exception Classes
"""


class VaultError(Exception):
    """Base exception for vault operations"""
    pass


class AuthenticationFailed(VaultError):
    """Raised when a master password does not validate.

    Covers both a wrong password and a corrupted validation token; callers
    are never told which check failed.
    """
    pass


class DecryptionFailed(VaultError):
    """Raised when an envelope fails authenticated decryption"""
    pass


class InvalidFormat(VaultError):
    """Raised when an import document is malformed"""
    pass


class PermissionDenied(VaultError):
    """Raised when a sync destination refuses read/write access"""
    pass


class NotFound(VaultError):
    """Raised when an item id does not exist in the vault"""
    pass


class VaultLockedError(VaultError):
    """Raised when an operation needs an unlocked vault"""
    pass


class VaultExistsError(VaultError):
    """Raised when creating a vault over existing metadata"""
    pass


class NoVaultError(VaultError):
    """Raised when unlocking before any vault was created"""
    pass


class VaultStateError(VaultError):
    """Raised when a transition is not valid from the current state"""
    pass


class UnlockInProgressError(VaultError):
    """Raised when create/unlock is called while another is in flight"""
    pass


class RateLimitedError(VaultError):
    """Raised when unlock is attempted during a failed-attempt lockout"""

    def __init__(self, message: str, retry_after: int):
        super().__init__(message)
        self.retry_after = retry_after


class ConfirmationDeclined(VaultError):
    """Raised when the user declines an irreversible operation"""
    pass
