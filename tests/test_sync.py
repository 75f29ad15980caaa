# Tests for the external sync mirror
# Covers: LocalFileHandle permission + atomic writes, handle registries,
#         link/reconnect/unlink, mirror after mutations, denied permission
#         never failing the local write

import json
import os
import stat
import sys

import pytest

from strongbox.vault.exceptions import PermissionDenied
from strongbox.vault.repository import ItemRepository
from strongbox.vault.models import PasswordPayload
from strongbox.vault.session import VaultSession
from strongbox.vault.storage import MemoryStorage
from strongbox.vault.sync import (
    SYNC_HANDLE_KEY,
    FileCapability,
    LocalFileHandle,
    MemoryHandleRegistry,
    PermissionMode,
    PermissionState,
    SQLiteHandleRegistry,
    SyncReconciler,
    SyncState,
)


class FakeHandle(FileCapability):
    """In-memory capability whose permission the test controls."""

    def __init__(self, name="mirror.json", granted=True, grant_on_request=False):
        self.name = name
        self.granted = granted
        self.grant_on_request = grant_on_request
        self.queries = 0
        self.requests = 0
        self.writes = []

    async def query_permission(self, mode):
        self.queries += 1
        return PermissionState.GRANTED if self.granted else PermissionState.DENIED

    async def request_permission(self, mode):
        self.requests += 1
        if self.grant_on_request:
            self.granted = True
        return PermissionState.GRANTED if self.granted else PermissionState.DENIED

    async def write(self, data):
        if not self.granted:
            raise PermissionDenied("denied")
        self.writes.append(data)


def _chooser(handle):
    async def choose():
        return handle
    return choose


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def session(storage):
    return VaultSession(storage)


@pytest.fixture
def registry():
    return MemoryHandleRegistry()


@pytest.fixture
def sync(storage, registry):
    return SyncReconciler(storage, registry)


@pytest.fixture
def repo(session, storage, sync):
    return ItemRepository(session, storage, sync=sync)


class TestLocalFileHandle:
    @pytest.mark.asyncio
    async def test_write_replaces_file(self, tmp_path):
        out_dir = tmp_path / "out"
        out_dir.mkdir()
        target = out_dir / "vault.json"
        handle = LocalFileHandle(target)
        await handle.write(b"one")
        await handle.write(b"two")
        assert target.read_bytes() == b"two"
        assert [p.name for p in out_dir.iterdir()] == ["vault.json"]

    @pytest.mark.asyncio
    async def test_new_file_in_writable_dir_granted(self, tmp_path):
        handle = LocalFileHandle(tmp_path / "new.json")
        assert await handle.query_permission(PermissionMode.READWRITE) == PermissionState.GRANTED
        assert await handle.query_permission(PermissionMode.READ) == PermissionState.DENIED

    @pytest.mark.asyncio
    async def test_missing_directory_denied(self, tmp_path):
        handle = LocalFileHandle(tmp_path / "nope" / "new.json")
        assert await handle.query_permission(PermissionMode.READWRITE) == PermissionState.DENIED

    @pytest.mark.asyncio
    async def test_on_request_can_deny(self, tmp_path):
        handle = LocalFileHandle(tmp_path / "new.json", on_request=lambda path, mode: False)
        assert await handle.request_permission(PermissionMode.READWRITE) == PermissionState.DENIED

    @pytest.mark.skipif(
        sys.platform == "win32" or (hasattr(os, "geteuid") and os.geteuid() == 0),
        reason="file modes are not enforced",
    )
    @pytest.mark.asyncio
    async def test_read_only_file_denied(self, tmp_path):
        target = tmp_path / "ro.json"
        target.write_text("{}")
        target.chmod(stat.S_IRUSR)
        handle = LocalFileHandle(target)
        assert await handle.query_permission(PermissionMode.READWRITE) == PermissionState.DENIED


class TestHandleRegistry:
    def test_sqlite_registry_persists_path(self, tmp_path):
        db = tmp_path / "vault.db"
        SQLiteHandleRegistry(db).set("k", LocalFileHandle(tmp_path / "m.json"))

        restored = SQLiteHandleRegistry(db).get("k")
        assert isinstance(restored, LocalFileHandle)
        assert restored.path == tmp_path / "m.json"

    def test_sqlite_registry_delete(self, tmp_path):
        registry = SQLiteHandleRegistry(tmp_path / "vault.db")
        registry.set("k", LocalFileHandle(tmp_path / "m.json"))
        registry.delete("k")
        assert registry.get("k") is None

    def test_sqlite_registry_rejects_foreign_handles(self, tmp_path):
        registry = SQLiteHandleRegistry(tmp_path / "vault.db")
        with pytest.raises(TypeError):
            registry.set("k", FakeHandle())


class TestLink:
    @pytest.mark.asyncio
    async def test_link_writes_export(self, session, sync, registry):
        await session.create("correct-horse")
        handle = FakeHandle()

        link = await sync.link_new(_chooser(handle))

        assert link.active
        assert registry.get(SYNC_HANDLE_KEY) is handle
        assert sync.status.state == SyncState.CONNECTED
        document = json.loads(handle.writes[-1])
        assert document["version"] == 1
        assert document["items"] == []

    @pytest.mark.asyncio
    async def test_cancelled_chooser(self, session, sync):
        await session.create("correct-horse")
        assert await sync.link_new(_chooser(None)) is None
        assert sync.status.state == SyncState.UNLINKED

    @pytest.mark.asyncio
    async def test_link_denied(self, session, sync, registry):
        await session.create("correct-horse")
        with pytest.raises(PermissionDenied):
            await sync.link_new(_chooser(FakeHandle(granted=False)))
        assert registry.get(SYNC_HANDLE_KEY) is None

    @pytest.mark.asyncio
    async def test_no_chooser(self, sync):
        with pytest.raises(ValueError):
            await sync.link_new()

    @pytest.mark.asyncio
    async def test_query_then_request(self, session, sync):
        await session.create("correct-horse")
        handle = FakeHandle(granted=False, grant_on_request=True)
        await sync.link_new(_chooser(handle))
        assert handle.queries == 1
        assert handle.requests == 1
        assert sync.status.state == SyncState.CONNECTED


class TestMirror:
    @pytest.mark.asyncio
    async def test_mutations_are_mirrored(self, session, sync, repo):
        await session.create("correct-horse")
        handle = FakeHandle()
        await sync.link_new(_chooser(handle))

        item = await repo.add(PasswordPayload(name="Example", password="p"))
        document = json.loads(handle.writes[-1])
        assert [record["id"] for record in document["items"]] == [item.id]

        await repo.delete(item.id)
        assert json.loads(handle.writes[-1])["items"] == []

    @pytest.mark.asyncio
    async def test_denied_permission_keeps_local_write(self, session, storage, sync, repo):
        await session.create("correct-horse")
        handle = FakeHandle()
        await sync.link_new(_chooser(handle))
        handle.granted = False

        item = await repo.add(PasswordPayload(name="Example", password="p"))

        assert [r.id for r in storage.get_items()] == [item.id]
        assert sync.status.state == SyncState.DISCONNECTED
        assert sync.status.last_error
        assert len(handle.writes) == 1

    @pytest.mark.asyncio
    async def test_write_error_is_contained(self, session, storage, sync, repo):
        class BrokenHandle(FakeHandle):
            async def write(self, data):
                raise OSError("disk full")

        await session.create("correct-horse")
        handle = FakeHandle()
        await sync.link_new(_chooser(handle))
        sync._link.handle = BrokenHandle()

        await repo.add(PasswordPayload(name="Example"))
        assert len(storage.get_items()) == 1
        assert sync.status.state == SyncState.DISCONNECTED
        assert "disk full" in sync.status.last_error

    @pytest.mark.asyncio
    async def test_no_link_no_writes(self, session, storage, repo):
        await session.create("correct-horse")
        await repo.add(PasswordPayload(name="Example"))
        assert len(storage.get_items()) == 1


class TestReconnect:
    @pytest.mark.asyncio
    async def test_restore_and_reconnect(self, session, storage, registry):
        await session.create("correct-horse")
        handle = FakeHandle()
        registry.set(SYNC_HANDLE_KEY, handle)

        sync = SyncReconciler(storage, registry)
        assert sync.restore() is True
        assert sync.status.state == SyncState.DISCONNECTED

        assert await sync.reconnect() is True
        assert sync.status.state == SyncState.CONNECTED
        assert len(handle.writes) == 1

    @pytest.mark.asyncio
    async def test_reconnect_denied_declined(self, session, storage, registry):
        await session.create("correct-horse")
        registry.set(SYNC_HANDLE_KEY, FakeHandle(granted=False))
        sync = SyncReconciler(storage, registry)
        sync.restore()

        assert await sync.reconnect(confirm=lambda message: False) is False
        assert sync.status.state == SyncState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_reconnect_denied_relinks(self, session, storage, registry):
        await session.create("correct-horse")
        registry.set(SYNC_HANDLE_KEY, FakeHandle(granted=False))
        sync = SyncReconciler(storage, registry)
        sync.restore()
        replacement = FakeHandle(name="new.json")

        connected = await sync.reconnect(
            confirm=lambda message: True, chooser=_chooser(replacement)
        )

        assert connected is True
        assert sync.link.handle is replacement
        assert registry.get(SYNC_HANDLE_KEY) is replacement

    @pytest.mark.asyncio
    async def test_reconnect_without_link(self, sync):
        assert await sync.reconnect() is False


class TestUnlink:
    @pytest.mark.asyncio
    async def test_unlink(self, session, sync, registry, repo):
        await session.create("correct-horse")
        handle = FakeHandle()
        await sync.link_new(_chooser(handle))

        sync.unlink()
        await repo.add(PasswordPayload(name="Example"))

        assert registry.get(SYNC_HANDLE_KEY) is None
        assert sync.status.state == SyncState.UNLINKED
        assert len(handle.writes) == 1
