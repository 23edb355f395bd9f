"""
Tests for SyncCoordinator.

Tests cover:
- Preconditions (session, reachability) and single-flight runs
- Push of every type before any pull, in dependency order
- Run status aggregation, including the live transaction refresh
- Cancellation
- Status queries and the conflict/push escape hatches
"""

import pytest

from splitsync.errors import RemoteError
from splitsync.storage import Group, GroupMember, Payment, PaymentSplit, User
from splitsync.sync.coordinator import SyncCoordinator
from splitsync.sync.results import OutcomeKind, RunStatus
from splitsync.sync.synchronizers import PaymentSplitSynchronizer
from splitsync.sync.transactions import TransactionCache
from splitsync.types import SYNC_ORDER, EntityType, SyncStatus


@pytest.fixture
def coordinator(store, id_map, remote, session_user, clock):
    return SyncCoordinator(
        store,
        remote,
        session_user.local_id,
        id_map=id_map,
        transaction_cache=TransactionCache(store, clock=clock),
        now_fn=clock,
    )


class TestPreconditions:
    def test_no_session_is_error(self, store, remote):
        coordinator = SyncCoordinator(store, remote, None)

        result = coordinator.trigger_sync()

        assert result.status == RunStatus.ERROR
        assert "session" in result.error
        assert remote.calls == []

    def test_unreachable_remote_is_error(self, coordinator, remote):
        remote.healthy = False

        result = coordinator.trigger_sync()

        assert result.status == RunStatus.ERROR
        assert [c[0] for c in remote.calls] == ["health"]

    def test_health_failure_is_error(self, coordinator, remote):
        remote.fail("health", RemoteError(None, "timeout"))
        assert coordinator.trigger_sync().status == RunStatus.ERROR

    def test_second_trigger_skipped_while_running(self, coordinator, remote):
        coordinator._run_lock.acquire()
        try:
            assert coordinator.is_running
            result = coordinator.trigger_sync()
        finally:
            coordinator._run_lock.release()

        assert result.status == RunStatus.SKIPPED
        assert remote.calls == []


class TestFullRun:
    def test_dependency_order(self, store, remote, coordinator):
        """Users and groups reach the server before the memberships that reference them."""
        user = store.insert(User(username="bob"))
        group = store.insert(Group(name="Flat"))
        store.insert(GroupMember(group_id=group.local_id, user_id=user.local_id))

        result = coordinator.trigger_sync()

        assert result.status == RunStatus.SUCCESS
        created = [c[1] for c in remote.calls_to("create")]
        assert created == [EntityType.USERS, EntityType.GROUPS, EntityType.GROUP_MEMBERS]

        member_payload = remote.calls_to("create")[2][2]
        assert member_payload["user_id"] == store.get(EntityType.USERS, user.local_id).remote_id
        assert member_payload["group_id"] == store.get(EntityType.GROUPS, group.local_id).remote_id

    def test_push_everything_before_pulling(self, store, remote, coordinator):
        store.insert(Group(name="Flat"))

        coordinator.trigger_sync()

        methods = [c[0] for c in remote.calls]
        assert methods.index("create") < methods.index("list_since")
        pulled = [c[1] for c in remote.calls_to("list_since")]
        assert pulled == [et for et in SYNC_ORDER if et != EntityType.DEVICE_TOKENS]

    def test_live_refresh_runs_last(self, remote, coordinator):
        result = coordinator.trigger_sync()

        assert remote.calls[-1][0] == "fetch_my_transactions"
        assert result.live_fetch.status == RunStatus.SUCCESS

    def test_entity_results_reported(self, store, coordinator):
        store.insert(Group(name="a"))
        store.insert(Group(name="b"))

        result = coordinator.trigger_sync()

        assert result.entities[EntityType.GROUPS].pushed == 2
        assert result.succeeded == 2
        data = result.to_dict()
        assert data["status"] == "success"
        assert data["entities"]["groups"]["pushed"] == 2

    def test_failed_record_makes_partial_success(self, store, remote, coordinator):
        store.insert(Group(name="ok"))
        store.insert(Group(name="bad"))
        remote.fail("create", RemoteError(422, "nope"), match=lambda et, p, parent: p["name"] == "bad")

        result = coordinator.trigger_sync()

        assert result.status == RunStatus.PARTIAL_SUCCESS
        assert result.failed == 1

    def test_conflicts_reported(self, store, remote, coordinator):
        group = store.insert(Group(name="theirs"))
        remote.fail("create", RemoteError(403, "not yours"))

        result = coordinator.trigger_sync()

        assert result.conflicts == {EntityType.GROUPS: [group.local_id]}

    def test_live_fetch_error_makes_partial_success(self, remote, coordinator):
        remote.fail("fetch_my_transactions", RemoteError(502, "aggregator down"))

        result = coordinator.trigger_sync()

        assert result.status == RunStatus.PARTIAL_SUCCESS
        assert result.live_fetch.status == RunStatus.ERROR
        assert result.failed == 1

    def test_skipped_live_fetch_is_still_success(self, remote, coordinator):
        coordinator.trigger_sync()

        result = coordinator.trigger_sync()

        assert result.live_fetch.status == RunStatus.SKIPPED
        assert result.status == RunStatus.SUCCESS
        assert len(remote.calls_to("fetch_my_transactions")) == 1


class TestCancellation:
    def test_cancel_during_push(self, store, remote, coordinator):
        store.insert(User(username="bob"))
        store.insert(Group(name="Flat"))

        def cancel_on_create(method, *args):
            if method == "create":
                coordinator.cancel()

        remote.on_call = cancel_on_create
        result = coordinator.trigger_sync()

        assert result.cancelled is True
        assert result.status == RunStatus.PARTIAL_SUCCESS
        assert [c[1] for c in remote.calls_to("create")] == [EntityType.USERS]
        assert remote.calls_to("list_since") == []
        assert result.live_fetch is None

    def test_next_run_after_cancel_proceeds(self, store, remote, coordinator):
        coordinator.cancel()
        store.insert(Group(name="Flat"))

        result = coordinator.trigger_sync()

        assert result.cancelled is False
        assert result.status == RunStatus.SUCCESS


class TestQueries:
    def test_get_sync_status(self, store, coordinator):
        group = store.insert(Group(name="g"))
        assert coordinator.get_sync_status(EntityType.GROUPS, group.local_id) == SyncStatus.PENDING_SYNC
        assert coordinator.get_sync_status(EntityType.GROUPS, 999) is None

    def test_pending_counts_include_splits(self, store, coordinator):
        payment = store.insert(Payment(amount=10.0))
        store.insert(PaymentSplit(payment_id=payment.local_id, amount=10.0))
        store.insert(Group(name="g", sync_status=SyncStatus.SYNC_FAILED))
        store.insert(Group(name="h", sync_status=SyncStatus.CONFLICT))

        counts = coordinator.pending_counts()

        assert counts[EntityType.PAYMENTS] == 1
        assert counts[EntityType.PAYMENT_SPLITS] == 1
        assert counts[EntityType.GROUPS] == 1
        assert counts[EntityType.USERS] == 0

    def test_entity_state_after_run(self, coordinator):
        coordinator.trigger_sync()
        state = coordinator.get_entity_state(EntityType.GROUPS)
        assert state.last_sync_timestamp > 0
        assert state.last_sync_result == "Success(0)"

    def test_split_synchronizer_lookup(self, coordinator):
        assert isinstance(coordinator.synchronizer("payment_splits"), PaymentSplitSynchronizer)


class TestEscapeHatches:
    def test_resolve_conflict_requeues(self, store, remote, coordinator):
        group = store.insert(Group(name="g", sync_status=SyncStatus.CONFLICT))

        assert coordinator.conflicts() == {EntityType.GROUPS: [store.get(EntityType.GROUPS, group.local_id)]}
        assert coordinator.resolve_conflict(EntityType.GROUPS, group.local_id) is True
        assert coordinator.get_sync_status(EntityType.GROUPS, group.local_id) == SyncStatus.PENDING_SYNC
        assert coordinator.conflicts() == {}

    def test_resolve_conflict_ignores_other_statuses(self, store, coordinator):
        group = store.insert(Group(name="g"))
        assert coordinator.resolve_conflict(EntityType.GROUPS, group.local_id) is False
        assert coordinator.resolve_conflict(EntityType.GROUPS, 999) is False

    def test_push_record(self, store, remote, coordinator):
        group = store.insert(Group(name="now"))

        outcome = coordinator.push_record(EntityType.GROUPS, group.local_id)

        assert outcome.kind == OutcomeKind.OK
        assert coordinator.get_sync_status(EntityType.GROUPS, group.local_id) == SyncStatus.SYNCED

    def test_push_record_missing(self, coordinator):
        with pytest.raises(ValueError):
            coordinator.push_record(EntityType.GROUPS, 999)
