"""Bank account synchronization.

Accounts are identified by the aggregator's ``account_id``. The same account
can only belong to one user; the server answers 403 when another user
already claimed it, which parks the local copy in CONFLICT.
"""

import logging
from typing import Iterable, Optional

from splitsync.remote.base import Wire
from splitsync.storage.base import BankAccount, SyncableRecord
from splitsync.types import EntityType, RemoteId, SyncStatus

from ..orchestrator import EntitySynchronizer

logger = logging.getLogger(__name__)


class BankAccountSynchronizer(EntitySynchronizer):
    entity_type = EntityType.BANK_ACCOUNTS
    batch_size = 20

    def created_remote_id(self, record: SyncableRecord, response: Wire) -> Optional[RemoteId]:
        return (response or {}).get("account_id") or record.account_id or None

    def sync_reauth_status(self, local_id: int, needs_reauthentication: bool) -> BankAccount:
        """Update the reauthentication flag locally, then remotely.

        Bypasses the batch loop. Remote errors propagate; the local change is
        already queued, so the next run pushes it anyway. Raises
        SyncInProgressError while a bank account push is running.
        """
        self._acquire("Reauthentication update")
        try:
            record = self.store.get(self.entity_type, local_id)
            if record is None:
                raise ValueError(f"No bank account with local id {local_id}")
            record.needs_reauthentication = needs_reauthentication
            self.store.mark_dirty(record)
            if record.remote_id is None:
                logger.debug(f"Account {local_id} not pushed yet; reauth flag rides with its create")
                return record

            self.remote.update_needs_reauthentication(record.remote_id, needs_reauthentication)
            self.store.mark_synced(record, record.remote_id)
            logger.info(
                f"Account {record.remote_id} needs_reauthentication={needs_reauthentication}"
            )
            return record
        finally:
            self._lock.release()

    def flag_needs_reauthentication(self, account_ids: Iterable[str]) -> int:
        """Mark accounts the aggregator reported as needing reauthentication.

        The server already knows, so sync status is left untouched.
        """
        flagged = 0
        with self.store.transaction() as conn:
            for account_id in account_ids:
                if not account_id:
                    continue
                for record in self.store.list_where(
                    self.entity_type, conn=conn, account_id=account_id
                ):
                    if record.needs_reauthentication:
                        continue
                    record.needs_reauthentication = True
                    self.store.update(record, conn=conn)
                    flagged += 1
        if flagged:
            logger.info(f"Flagged {flagged} bank accounts for reauthentication")
        return flagged

    def conflicted_accounts(self):
        return self.store.list_by_status(self.entity_type, [SyncStatus.CONFLICT])
