"""
Shared pytest fixtures for the Strongbox test suite.

Autouse fixtures below isolate tests from the live application data:
  - Settings      -> temp data directory (prevents writes to data/vault.db)
  - Audit logger  -> temp directory      (prevents fake events in audit logs)
  - Vault manager -> reset per test      (API singleton never leaks state)
"""

import pytest


@pytest.fixture(autouse=True)
def _isolate_settings(tmp_path):
    """Point the settings singleton at a temp data directory."""
    import strongbox.core.config as config_mod
    from strongbox.core.config import Settings

    old_settings = config_mod._settings
    config_mod._settings = Settings(
        data_dir=tmp_path / "data",
        audit_dir=tmp_path / "audit_logs",
    )

    yield

    config_mod._settings = old_settings


@pytest.fixture(autouse=True)
def _isolate_audit_logs(tmp_path, monkeypatch):
    """Redirect the global AuditLogger to a temp directory for every test.

    Without this, any test that (directly or indirectly) calls
    ``get_audit_logger().log_event(...)`` writes into the real
    ``data/audit_logs/`` directory.
    """
    import strongbox.core.audit_log as audit_mod

    # Reset the singleton so the next call to get_audit_logger() creates
    # a fresh instance pointing at the temp directory.
    old_logger = audit_mod._audit_logger
    audit_mod._audit_logger = None

    orig_init = audit_mod.AuditLogger.__init__

    def patched_init(self, log_dir=None):
        orig_init(self, log_dir=log_dir or tmp_path / "audit_logs")

    monkeypatch.setattr(audit_mod.AuditLogger, "__init__", patched_init)

    yield

    audit_mod._audit_logger = old_logger


@pytest.fixture(autouse=True)
def _isolate_vault_manager():
    """Reset the API's VaultManager singleton for every test."""
    import strongbox.api.vault_routes as vault_mod

    old_manager = vault_mod._vault_manager
    vault_mod._vault_manager = None

    yield

    vault_mod._vault_manager = old_manager
