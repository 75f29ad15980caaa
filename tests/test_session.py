# Tests for the vault session state machine
# Covers: create/unlock/lock transitions, wrong password, rate limiting,
#         concurrent unlock, inactivity auto-lock, reset confirmations,
#         view notifications

import asyncio
from datetime import datetime, timedelta

import pytest

from strongbox.vault.exceptions import (
    AuthenticationFailed,
    ConfirmationDeclined,
    NoVaultError,
    RateLimitedError,
    UnlockInProgressError,
    VaultExistsError,
    VaultLockedError,
    VaultStateError,
)
from strongbox.vault.session import (
    RESET_CONFIRM_AGAIN_MESSAGE,
    RESET_CONFIRM_MESSAGE,
    InactivityMonitor,
    VaultSession,
    VaultState,
)
from strongbox.vault.storage import MemoryStorage
from strongbox.vault.view import VaultView


class RecordingView(VaultView):
    def __init__(self, answers=None):
        self.views = []
        self.prompts = []
        self._answers = list(answers or [])

    def show_view(self, name):
        self.views.append(name)

    def confirm(self, message):
        self.prompts.append(message)
        return self._answers.pop(0) if self._answers else False


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def view():
    return RecordingView()


@pytest.fixture
def session(storage, view):
    return VaultSession(storage, view=view)


class TestCreate:
    @pytest.mark.asyncio
    async def test_create_unlocks(self, session, storage, view):
        assert session.state == VaultState.NO_VAULT
        assert session.is_new_user is True

        await session.create("correct-horse")

        assert session.state == VaultState.UNLOCKED
        assert session.items == []
        assert storage.get_meta() is not None
        assert storage.get_items() == []
        assert session.is_new_user is False
        assert view.views[-1] == "dashboard"

    @pytest.mark.asyncio
    async def test_create_twice_rejected(self, session):
        await session.create("correct-horse")
        session.lock()
        with pytest.raises(VaultExistsError):
            await session.create("another")

    @pytest.mark.asyncio
    async def test_create_rejects_empty_password(self, session, storage):
        with pytest.raises(ValueError):
            await session.create("   ")
        assert storage.get_meta() is None
        assert session.busy is False


class TestUnlock:
    @pytest.mark.asyncio
    async def test_lock_then_unlock(self, session):
        await session.create("correct-horse")
        session.lock()
        assert session.state == VaultState.LOCKED

        await session.unlock("correct-horse")
        assert session.state == VaultState.UNLOCKED
        assert session.items == []

    @pytest.mark.asyncio
    async def test_wrong_password_leaves_meta_untouched(self, session, storage):
        await session.create("correct-horse")
        session.lock()
        meta_before = storage.get_meta()

        with pytest.raises(AuthenticationFailed):
            await session.unlock("wrong")

        assert session.state == VaultState.LOCKED
        assert storage.get_meta() == meta_before
        assert session.busy is False

    @pytest.mark.asyncio
    async def test_unlock_without_vault(self, session):
        with pytest.raises(NoVaultError):
            await session.unlock("anything")

    @pytest.mark.asyncio
    async def test_unlock_while_unlocked(self, session):
        await session.create("correct-horse")
        with pytest.raises(VaultStateError):
            await session.unlock("correct-horse")

    @pytest.mark.asyncio
    async def test_concurrent_unlock_rejected(self, session):
        await session.create("correct-horse")
        session.lock()

        first = asyncio.create_task(session.unlock("correct-horse"))
        await asyncio.sleep(0)
        assert session.busy is True

        with pytest.raises(UnlockInProgressError):
            await session.unlock("correct-horse")

        await first
        assert session.is_unlocked

    @pytest.mark.asyncio
    async def test_lock_during_unlock_is_not_undone(self, session):
        await session.create("correct-horse")
        session.lock()

        task = asyncio.create_task(session.unlock("correct-horse"))
        await asyncio.sleep(0)
        session.lock()
        await task

        # The unlock finished after lock(); the key lands last and holds.
        assert session.is_unlocked


class TestRateLimiting:
    @pytest.mark.asyncio
    async def test_first_failure_no_lockout(self, session):
        await session.create("correct-horse")
        session.lock()
        with pytest.raises(AuthenticationFailed):
            await session.unlock("wrong")
        assert session.lockout_until is None

        await session.unlock("correct-horse")
        assert session.failed_attempts == 0

    @pytest.mark.asyncio
    async def test_second_failure_locks_out(self, session):
        await session.create("correct-horse")
        session.lock()
        for _ in range(2):
            with pytest.raises(AuthenticationFailed):
                await session.unlock("wrong")

        with pytest.raises(RateLimitedError) as exc_info:
            await session.unlock("correct-horse")
        assert 1 <= exc_info.value.retry_after <= 2

    @pytest.mark.asyncio
    async def test_lockout_expires(self, session):
        await session.create("correct-horse")
        session.lock()
        session.failed_attempts = 3
        session.lockout_until = datetime.now() - timedelta(seconds=1)

        await session.unlock("correct-horse")
        assert session.is_unlocked
        assert session.lockout_until is None

    def test_backoff_caps_at_16_seconds(self, session):
        session.failed_attempts = 10
        before = datetime.now()
        session._record_failed_unlock()
        assert session.lockout_until - before <= timedelta(seconds=16, milliseconds=500)


class TestLock:
    @pytest.mark.asyncio
    async def test_lock_clears_everything(self, session, view):
        await session.create("correct-horse")
        session.lock()

        assert session.items == []
        assert session.is_unlocked is False
        with pytest.raises(VaultLockedError):
            session.require_key()
        assert view.views[-1] == "auth"

    def test_lock_when_locked_is_harmless(self, session, view):
        session.lock()
        session.lock()
        assert session.state == VaultState.NO_VAULT
        assert view.views == ["auth", "auth"]

    def test_replace_items_requires_key(self, session):
        with pytest.raises(VaultLockedError):
            session.replace_items([])


class TestAutoLock:
    @pytest.mark.asyncio
    async def test_idle_session_locks(self, storage, view):
        session = VaultSession(storage, view=view, auto_lock_seconds=0.05)
        await session.create("correct-horse")
        assert session.monitor.armed

        await asyncio.sleep(0.2)

        assert session.state == VaultState.LOCKED
        assert session.monitor.armed is False
        assert view.views[-1] == "auth"

    @pytest.mark.asyncio
    async def test_touch_postpones_lock(self, storage):
        session = VaultSession(storage, auto_lock_seconds=0.15)
        await session.create("correct-horse")

        for _ in range(4):
            await asyncio.sleep(0.08)
            session.touch()
        assert session.is_unlocked

        await asyncio.sleep(0.3)
        assert not session.is_unlocked

    @pytest.mark.asyncio
    async def test_manual_lock_disarms(self, storage):
        session = VaultSession(storage, auto_lock_seconds=0.05)
        await session.create("correct-horse")
        session.lock()
        assert session.monitor.armed is False

    @pytest.mark.asyncio
    async def test_touch_while_locked_does_not_arm(self, session):
        session.touch()
        assert session.monitor.armed is False

    @pytest.mark.asyncio
    async def test_monitor_skips_idle_callback_when_inactive(self):
        fired = []
        active = {"value": True}
        monitor = InactivityMonitor(
            timeout=0.02,
            on_idle=lambda: fired.append(True),
            is_active=lambda: active["value"],
        )
        monitor.touch()
        active["value"] = False
        await asyncio.sleep(0.1)
        assert fired == []


class TestReset:
    @pytest.mark.asyncio
    async def test_reset_with_both_confirmations(self, storage):
        view = RecordingView(answers=[True, True])
        session = VaultSession(storage, view=view)
        await session.create("correct-horse")

        session.reset_vault()

        assert view.prompts == [RESET_CONFIRM_MESSAGE, RESET_CONFIRM_AGAIN_MESSAGE]
        assert session.state == VaultState.NO_VAULT
        assert session.is_new_user is True
        assert storage.get_meta() is None

    @pytest.mark.asyncio
    async def test_second_prompt_declined(self, storage):
        view = RecordingView(answers=[True, False])
        session = VaultSession(storage, view=view)
        await session.create("correct-horse")
        meta = storage.get_meta()

        with pytest.raises(ConfirmationDeclined):
            session.reset_vault()

        assert session.is_unlocked
        assert storage.get_meta() == meta

    @pytest.mark.asyncio
    async def test_explicit_confirm_callback(self, session, storage):
        await session.create("correct-horse")
        session.reset_vault(confirm=lambda message: True)
        assert storage.has_vault() is False

    def test_reset_requires_unlocked(self, session):
        with pytest.raises(VaultLockedError):
            session.reset_vault(confirm=lambda message: True)
