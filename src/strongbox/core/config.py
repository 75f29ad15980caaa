"""
Centralized configuration for Strongbox.

All configuration is loaded from environment variables (optionally via a
``.env`` file) with sensible defaults.

Usage:
    from strongbox.core.config import get_settings
    settings = get_settings()
    print(settings.auto_lock_seconds)   # 120
    print(settings.vault_db_path)       # data/vault.db
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# PBKDF2 floor: never derive vault keys with fewer rounds than this.
MIN_KDF_ITERATIONS = 100_000
DEFAULT_AUTO_LOCK_SECONDS = 120


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from None


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the vault engine and API."""

    data_dir: Path = Path("data")
    audit_dir: Path = Path("data/audit_logs")
    auto_lock_seconds: float = DEFAULT_AUTO_LOCK_SECONDS
    kdf_iterations: int = MIN_KDF_ITERATIONS
    host: str = "127.0.0.1"
    port: int = 8000

    def __post_init__(self):
        if self.kdf_iterations < MIN_KDF_ITERATIONS:
            raise ValueError(
                f"STRONGBOX_KDF_ITERATIONS must be at least {MIN_KDF_ITERATIONS}"
            )
        if self.auto_lock_seconds <= 0:
            raise ValueError("STRONGBOX_AUTO_LOCK_SECONDS must be positive")
        if not 0 < self.port < 65536:
            raise ValueError("STRONGBOX_PORT must be between 1 and 65535")

    @property
    def vault_db_path(self) -> Path:
        return self.data_dir / "vault.db"

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from STRONGBOX_* environment variables."""
        data_dir = Path(os.getenv("STRONGBOX_DATA_DIR", "data"))
        audit_dir = os.getenv("STRONGBOX_AUDIT_DIR")
        return cls(
            data_dir=data_dir,
            audit_dir=Path(audit_dir) if audit_dir else data_dir / "audit_logs",
            auto_lock_seconds=_env_float(
                "STRONGBOX_AUTO_LOCK_SECONDS", DEFAULT_AUTO_LOCK_SECONDS
            ),
            kdf_iterations=_env_int("STRONGBOX_KDF_ITERATIONS", MIN_KDF_ITERATIONS),
            host=os.getenv("STRONGBOX_HOST", "127.0.0.1"),
            port=_env_int("STRONGBOX_PORT", 8000),
        )


# ── Singleton ────────────────────────────────────────────────────────

_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Load settings once (reads .env first)."""
    global _settings
    if _settings is None:
        load_dotenv()
        _settings = Settings.from_env()
    return _settings


def set_settings(settings: Optional[Settings]) -> None:
    """Replace the singleton (for testing)."""
    global _settings
    _settings = settings
