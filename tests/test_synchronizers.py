"""
Tests for the entity-specific synchronizers.

Tests cover:
- Users: optional invited_by on pull
- Preferences: adopting an existing server copy instead of duplicating
- Group archives: composite identity, archive/unarchive endpoints
- Requisitions: pull-only, immediate storage of new requisitions
- Bank accounts: ownership conflicts and the reauthentication flag
- Device tokens: register once, never pulled
- Currency conversions: deferred until their payment exists remotely
"""

import pytest

from splitsync.errors import ConversionError, RemoteError, SyncInProgressError
from splitsync.storage import (
    BankAccount,
    CurrencyConversion,
    DeviceToken,
    Group,
    Payment,
    Requisition,
    User,
    UserPreference,
)
from splitsync.sync.orchestrator import SyncRun
from splitsync.sync.results import OutcomeKind
from splitsync.sync.synchronizers import (
    BankAccountSynchronizer,
    CurrencyConversionSynchronizer,
    DeviceTokenSynchronizer,
    GroupArchiveSynchronizer,
    RequisitionSynchronizer,
    UserPreferenceSynchronizer,
    UserSynchronizer,
    build_synchronizers,
)
from splitsync.types import SYNC_ORDER, EntityType, SyncStatus

T0 = "2024-01-01T10:00:00+00:00"
T1 = "2024-01-01T11:00:00+00:00"


@pytest.fixture
def make(store, id_map, remote, session_user, clock):
    """Build a synchronizer bound to the session user."""

    def _make(cls):
        return cls(store, id_map, remote, user_id=session_user.local_id, now_fn=clock)

    return _make


class TestBuildSynchronizers:
    def test_one_per_type_in_dependency_order(self, store, id_map, remote):
        syncs = build_synchronizers(store, id_map, remote, user_id=1)
        assert [s.entity_type for s in syncs] == list(SYNC_ORDER)
        assert all(s.user_id == 1 for s in syncs)


class TestUsers:
    def test_unknown_inviter_left_unset(self, store, remote, make):
        users = make(UserSynchronizer)
        remote.changes[EntityType.USERS] = [
            {"id": 2, "username": "bob", "invited_by": 999, "updated_at": T1}
        ]

        result = users.pull_phase(SyncRun())

        assert result.failed == 0
        bob = store.get_by_remote_id(EntityType.USERS, 2)
        assert bob.username == "bob"
        assert bob.invited_by is None

    def test_known_inviter_translated(self, store, remote, make, session_user):
        users = make(UserSynchronizer)
        remote.changes[EntityType.USERS] = [
            {"id": 2, "username": "bob", "invited_by": 1, "updated_at": T1}
        ]

        users.pull_phase(SyncRun())

        assert store.get_by_remote_id(EntityType.USERS, 2).invited_by == session_user.local_id

    def test_new_user_pushed(self, store, remote, make, session_user):
        users = make(UserSynchronizer)
        store.insert(User(username="carol", is_provisional=True, invited_by=session_user.local_id))

        users.push_phase(SyncRun())

        payload = remote.calls_to("create")[0][2]
        assert payload["username"] == "carol"
        assert payload["invited_by"] == 1
        assert payload["is_provisional"] is True


class TestPreferences:
    def _pref(self, store, session_user, value="dark"):
        return store.insert(
            UserPreference(
                user_id=session_user.local_id, preference_key="theme", preference_value=value
            )
        )

    def test_adopts_existing_server_preference(self, store, remote, make, session_user):
        """An existing server preference is updated and adopted, never duplicated."""
        prefs = make(UserPreferenceSynchronizer)
        remote.preferences["theme"] = {"id": 77, "preference_key": "theme", "preference_value": "light"}
        pref = self._pref(store, session_user)

        result = prefs.push_phase(SyncRun())

        assert result.succeeded == 1
        assert remote.calls_to("create") == []
        assert remote.calls_to("update_preference") == [("update_preference", "theme", "dark")]
        loaded = store.get(EntityType.USER_PREFERENCES, pref.local_id)
        assert loaded.remote_id == 77
        assert loaded.sync_status == SyncStatus.SYNCED

    def test_creates_when_absent(self, store, remote, make, session_user):
        prefs = make(UserPreferenceSynchronizer)
        pref = self._pref(store, session_user)

        prefs.push_phase(SyncRun())

        assert len(remote.calls_to("create")) == 1
        assert store.get(EntityType.USER_PREFERENCES, pref.local_id).remote_id is not None

    def test_already_exists_race_adopts(self, store, remote, make, session_user):
        """A create that loses a race against another device adopts the winner."""
        prefs = make(UserPreferenceSynchronizer)
        pref = self._pref(store, session_user)

        def other_device_wins(method, *args):
            if method == "create":
                remote.preferences["theme"] = {"id": 88, "preference_key": "theme"}

        remote.on_call = other_device_wins
        remote.fail("create", RemoteError(400, "Preference already exists"))

        result = prefs.push_phase(SyncRun())

        assert result.succeeded == 1
        assert store.get(EntityType.USER_PREFERENCES, pref.local_id).remote_id == 88

    def test_other_bad_request_is_invalid(self, store, remote, make, session_user):
        prefs = make(UserPreferenceSynchronizer)
        pref = self._pref(store, session_user)
        remote.fail("create", RemoteError(400, "value too long"))

        outcome = prefs.push_single(store.get(EntityType.USER_PREFERENCES, pref.local_id))

        assert outcome.kind == OutcomeKind.INVALID

    def test_unsynced_user_defers(self, store, remote, make):
        prefs = make(UserPreferenceSynchronizer)
        stranger = store.insert(User(username="new"))
        pref = store.insert(UserPreference(user_id=stranger.local_id, preference_key="lang"))

        outcome = prefs.push_single(store.get(EntityType.USER_PREFERENCES, pref.local_id))

        assert outcome.kind == OutcomeKind.MISSING_DEPENDENCY
        assert remote.calls_to("get_preference") == []

    def test_pull_matches_by_key(self, store, remote, make, session_user):
        """A pulled preference for a key with a pending local edit leaves the edit alone."""
        prefs = make(UserPreferenceSynchronizer)
        pref = self._pref(store, session_user)
        remote.changes[EntityType.USER_PREFERENCES] = [
            {"id": 77, "user_id": 1, "preference_key": "theme", "preference_value": "light", "updated_at": T1}
        ]

        prefs.pull_phase(SyncRun())

        rows = store.list_where(EntityType.USER_PREFERENCES)
        assert len(rows) == 1
        assert rows[0].local_id == pref.local_id
        assert rows[0].preference_value == "dark"
        assert remote.calls_to("list_since")[0][3] == 1


class TestGroupArchives:
    def test_archive_is_idempotent_locally(self, make, synced):
        archives = make(GroupArchiveSynchronizer)
        group = synced(Group(name="old"), 50)

        first = archives.archive_group(group.local_id)
        second = archives.archive_group(group.local_id)

        assert first.local_id == second.local_id
        assert first.user_id == archives.user_id

    def test_push_archives_with_composite_identity(self, store, remote, make, synced):
        archives = make(GroupArchiveSynchronizer)
        group = synced(Group(name="old"), 50)
        record = archives.archive_group(group.local_id)

        archives.push_phase(SyncRun())

        assert remote.calls_to("archive_group") == [("archive_group", 50, 1)]
        loaded = store.get(EntityType.GROUP_ARCHIVES, record.local_id)
        assert loaded.remote_id == "50:1"
        assert loaded.sync_status == SyncStatus.SYNCED

    def test_unarchive_via_tombstone(self, store, remote, make, synced):
        archives = make(GroupArchiveSynchronizer)
        group = synced(Group(name="old"), 50)
        record = archives.archive_group(group.local_id)
        archives.push_phase(SyncRun())

        store.soft_delete(EntityType.GROUP_ARCHIVES, record.local_id)
        archives.push_phase(SyncRun())

        assert remote.calls_to("unarchive_group") == [("unarchive_group", 50, 1)]
        assert store.get(EntityType.GROUP_ARCHIVES, record.local_id).sync_status == (
            SyncStatus.LOCALLY_DELETED
        )

    def test_rearchive_revives_previous_record(self, store, remote, make, synced):
        """Archiving again after an unarchive reuses the pair's record and remote id."""
        archives = make(GroupArchiveSynchronizer)
        group = synced(Group(name="old"), 50)
        first = archives.archive_group(group.local_id)
        archives.push_phase(SyncRun())
        store.soft_delete(EntityType.GROUP_ARCHIVES, first.local_id)
        archives.push_phase(SyncRun())

        again = archives.archive_group(group.local_id)
        result = archives.push_phase(SyncRun())

        assert again.local_id == first.local_id
        assert result.failed == 0
        assert remote.calls_to("archive_group") == [
            ("archive_group", 50, 1),
            ("archive_group", 50, 1),
        ]
        loaded = store.get(EntityType.GROUP_ARCHIVES, first.local_id)
        assert loaded.remote_id == "50:1"
        assert loaded.deleted_at is None
        assert loaded.sync_status == SyncStatus.SYNCED
        assert len(store.list_where(EntityType.GROUP_ARCHIVES, group_id=group.local_id)) == 1

    def test_pull_fills_user_and_timestamp(self, store, remote, make, synced):
        archives = make(GroupArchiveSynchronizer)
        group = synced(Group(name="old"), 50)
        remote.changes[EntityType.GROUP_ARCHIVES] = [{"group_id": 50, "archived_at": T1}]

        result = archives.pull_phase(SyncRun())

        assert result.succeeded == 1
        archive = store.get_by_remote_id(EntityType.GROUP_ARCHIVES, "50:1")
        assert archive.group_id == group.local_id
        assert archive.user_id == archives.user_id
        assert archive.updated_at == T1


class TestRequisitions:
    def test_never_pushed(self, store, remote, make):
        requisitions = make(RequisitionSynchronizer)
        store.insert(Requisition(requisition_id="req-local"))

        result = requisitions.push_phase(SyncRun())

        assert result.succeeded == 0
        assert remote.calls == []

    def test_pulled_with_string_identity(self, store, remote, make):
        requisitions = make(RequisitionSynchronizer)
        remote.changes[EntityType.REQUISITIONS] = [
            {"requisition_id": "req-1", "user_id": 1, "institution_id": "BANK_GB", "updated_at": T1}
        ]

        requisitions.pull_phase(SyncRun())

        stored = store.get_by_remote_id(EntityType.REQUISITIONS, "req-1")
        assert stored.institution_id == "BANK_GB"
        assert stored.sync_status == SyncStatus.SYNCED

    def test_handle_new_requisition(self, store, make):
        requisitions = make(RequisitionSynchronizer)

        outcome = requisitions.handle_new_requisition({"requisition_id": "req-2", "updated_at": T1})

        assert outcome.applied
        assert store.get_by_remote_id(EntityType.REQUISITIONS, "req-2") is not None

    def test_handle_new_requisition_propagates_errors(self, make):
        requisitions = make(RequisitionSynchronizer)
        with pytest.raises(ConversionError):
            requisitions.handle_new_requisition({"institution_id": "BANK_GB"})


class TestBankAccounts:
    def test_identity_is_aggregator_account_id(self, store, remote, make, session_user):
        accounts = make(BankAccountSynchronizer)
        account = store.insert(BankAccount(account_id="acc-1", user_id=session_user.local_id))

        accounts.push_phase(SyncRun())

        assert store.get(EntityType.BANK_ACCOUNTS, account.local_id).remote_id == "acc-1"

    def test_claimed_account_parks_in_conflict(self, store, remote, make, session_user):
        accounts = make(BankAccountSynchronizer)
        account = store.insert(BankAccount(account_id="acc-1", user_id=session_user.local_id))
        remote.fail("create", RemoteError(403, "Account belongs to another user"))

        result = accounts.push_phase(SyncRun())

        assert result.conflicts == [account.local_id]
        assert [a.local_id for a in accounts.conflicted_accounts()] == [account.local_id]

    def test_sync_reauth_status(self, store, remote, make, session_user, synced):
        accounts = make(BankAccountSynchronizer)
        account = synced(BankAccount(account_id="acc-1", user_id=session_user.local_id), "acc-1")

        accounts.sync_reauth_status(account.local_id, True)

        assert remote.calls_to("update_needs_reauthentication") == [
            ("update_needs_reauthentication", "acc-1", True)
        ]
        loaded = store.get(EntityType.BANK_ACCOUNTS, account.local_id)
        assert loaded.needs_reauthentication is True
        assert loaded.sync_status == SyncStatus.SYNCED

    def test_sync_reauth_status_keeps_local_change_on_failure(
        self, store, remote, make, session_user, synced
    ):
        accounts = make(BankAccountSynchronizer)
        account = synced(BankAccount(account_id="acc-1", user_id=session_user.local_id), "acc-1")
        remote.fail("update_needs_reauthentication", RemoteError(503, "down"))

        with pytest.raises(RemoteError):
            accounts.sync_reauth_status(account.local_id, True)

        loaded = store.get(EntityType.BANK_ACCOUNTS, account.local_id)
        assert loaded.needs_reauthentication is True
        assert loaded.sync_status == SyncStatus.PENDING_SYNC

    def test_sync_reauth_status_waits_for_running_push(
        self, store, remote, make, session_user, synced
    ):
        accounts = make(BankAccountSynchronizer)
        account = synced(BankAccount(account_id="acc-1", user_id=session_user.local_id), "acc-1")
        accounts._lock.acquire()
        try:
            with pytest.raises(SyncInProgressError):
                accounts.sync_reauth_status(account.local_id, True)
        finally:
            accounts._lock.release()

        assert remote.calls_to("update_needs_reauthentication") == []
        loaded = store.get(EntityType.BANK_ACCOUNTS, account.local_id)
        assert loaded.needs_reauthentication is False
        assert loaded.sync_status == SyncStatus.SYNCED

    def test_sync_reauth_status_releases_lock_on_failure(self, make):
        accounts = make(BankAccountSynchronizer)
        with pytest.raises(ValueError):
            accounts.sync_reauth_status(999, True)
        assert not accounts._lock.locked()

    def test_sync_reauth_status_unknown_account(self, make):
        accounts = make(BankAccountSynchronizer)
        with pytest.raises(ValueError):
            accounts.sync_reauth_status(999, True)

    def test_flag_needs_reauthentication(self, store, make, session_user, synced):
        accounts = make(BankAccountSynchronizer)
        account = synced(BankAccount(account_id="acc-1", user_id=session_user.local_id), "acc-1")

        assert accounts.flag_needs_reauthentication(["acc-1", "acc-unknown", ""]) == 1
        assert accounts.flag_needs_reauthentication(["acc-1"]) == 0

        loaded = store.get(EntityType.BANK_ACCOUNTS, account.local_id)
        assert loaded.needs_reauthentication is True
        assert loaded.sync_status == SyncStatus.SYNCED


class TestDeviceTokens:
    def test_registers_new_token(self, store, remote, make, session_user):
        tokens = make(DeviceTokenSynchronizer)
        token = store.insert(DeviceToken(user_id=session_user.local_id, fcm_token="tok"))

        tokens.push_phase(SyncRun())

        assert len(remote.calls_to("create")) == 1
        assert store.get(EntityType.DEVICE_TOKENS, token.local_id).sync_status == SyncStatus.SYNCED

    def test_registered_token_not_sent_again(self, store, remote, make, session_user):
        tokens = make(DeviceTokenSynchronizer)
        token = store.insert(
            DeviceToken(user_id=session_user.local_id, fcm_token="tok", remote_id=12)
        )

        tokens.push_phase(SyncRun())

        assert remote.calls == []
        assert store.get(EntityType.DEVICE_TOKENS, token.local_id).sync_status == SyncStatus.SYNCED

    def test_unregister_via_tombstone(self, store, remote, make, session_user, synced):
        tokens = make(DeviceTokenSynchronizer)
        token = synced(DeviceToken(user_id=session_user.local_id, fcm_token="tok"), 12)
        store.soft_delete(EntityType.DEVICE_TOKENS, token.local_id)

        tokens.push_phase(SyncRun())

        assert [c[2] for c in remote.calls_to("delete")] == [12]

    def test_never_pulled(self, remote, make):
        tokens = make(DeviceTokenSynchronizer)
        result = tokens.pull_phase(SyncRun())
        assert result.failed == 0
        assert remote.calls_to("list_since") == []


class TestCurrencyConversions:
    def test_waits_for_payment(self, store, remote, make, session_user):
        conversions = make(CurrencyConversionSynchronizer)
        payment = store.insert(Payment(amount=10.0))
        conversion = store.insert(
            CurrencyConversion(
                payment_id=payment.local_id,
                original_currency="EUR",
                original_amount=10.0,
                final_currency="GBP",
                final_amount=8.5,
                exchange_rate=0.85,
                created_by=session_user.local_id,
            )
        )

        outcome = conversions.push_single(
            store.get(EntityType.CURRENCY_CONVERSIONS, conversion.local_id)
        )

        assert outcome.kind == OutcomeKind.MISSING_DEPENDENCY
        assert remote.calls == []

    def test_pushed_with_payment_remote_id(self, store, remote, make, session_user, synced):
        conversions = make(CurrencyConversionSynchronizer)
        payment = synced(Payment(amount=10.0), 300)
        store.insert(
            CurrencyConversion(
                payment_id=payment.local_id,
                original_currency="EUR",
                final_currency="GBP",
                created_by=session_user.local_id,
            )
        )

        conversions.push_phase(SyncRun())

        payload = remote.calls_to("create")[0][2]
        assert payload["payment_id"] == 300
        assert payload["created_by"] == 1
