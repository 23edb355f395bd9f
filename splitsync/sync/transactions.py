"""Live bank-transaction refresh with a local cache and call budget.

The banking aggregator limits how often transactions may be fetched, so
every live call is counted against a daily budget and followed by a
cooldown. The last call of the day is reserved for user-initiated refreshes.
"""

import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional, Tuple

from splitsync.errors import RemoteError
from splitsync.remote.base import RemoteService, Wire
from splitsync.storage.sqlite import SQLiteStore
from splitsync.types import parse_datetime

from .results import LiveFetchResult, RunStatus

logger = logging.getLogger(__name__)

COOLDOWN_MINUTES = 30
MAX_API_CALLS_PER_DAY = 4

LAST_CALL_KEY = "transactions.last_api_call"
CALL_DAY_KEY = "transactions.api_call_day"
CALL_COUNT_KEY = "transactions.api_calls_today"


def _utc_datetime() -> datetime:
    return datetime.now(timezone.utc)


def _transaction_id(item: Wire) -> Optional[str]:
    value = item.get("transaction_id") or item.get("transactionId") or item.get("id")
    return str(value) if value is not None else None


class TransactionCache:
    """Cached transactions plus the aggregator call budget, in SQLite.

    Passed explicitly to whoever needs it; ``clock`` is injectable so tests
    can move time.
    """

    def __init__(
        self,
        store: SQLiteStore,
        cooldown_minutes: int = COOLDOWN_MINUTES,
        max_calls_per_day: int = MAX_API_CALLS_PER_DAY,
        clock: Callable[[], datetime] = _utc_datetime,
    ):
        self.store = store
        self.cooldown = timedelta(minutes=cooldown_minutes)
        self.max_calls_per_day = max_calls_per_day
        self._clock = clock

    # === Budget ===

    def calls_today(self) -> int:
        today = self._clock().date().isoformat()
        if self.store.get_meta(CALL_DAY_KEY) != today:
            return 0
        return int(self.store.get_meta(CALL_COUNT_KEY) or 0)

    def remaining_calls(self) -> int:
        return max(0, self.max_calls_per_day - self.calls_today())

    def last_call_at(self) -> Optional[datetime]:
        return parse_datetime(self.store.get_meta(LAST_CALL_KEY))

    def cooldown_remaining(self) -> timedelta:
        last = self.last_call_at()
        if last is None:
            return timedelta(0)
        remaining = last + self.cooldown - self._clock()
        return max(remaining, timedelta(0))

    def skip_reason(self, force: bool = False) -> Optional[str]:
        """Why a live fetch must not happen now, or None if it may."""
        calls = self.calls_today()
        if calls >= self.max_calls_per_day:
            return f"Daily budget of {self.max_calls_per_day} calls used"
        if force:
            return None
        if self.cooldown_remaining() > timedelta(0):
            minutes = int(self.cooldown_remaining().total_seconds() // 60) + 1
            return f"In cooldown ({minutes} min remaining)"
        if calls >= self.max_calls_per_day - 1:
            return "Last call of the day reserved for manual refresh"
        return None

    def record_api_call(self) -> None:
        now = self._clock()
        today = now.date().isoformat()
        calls = self.calls_today() + 1
        with self.store.transaction() as conn:
            self.store.set_meta(LAST_CALL_KEY, now.isoformat(), conn=conn)
            self.store.set_meta(CALL_DAY_KEY, today, conn=conn)
            self.store.set_meta(CALL_COUNT_KEY, str(calls), conn=conn)

    def rate_limit_info(self) -> Dict[str, Any]:
        return {
            "remaining_calls": self.remaining_calls(),
            "max_calls": self.max_calls_per_day,
            "cooldown_minutes_remaining": int(self.cooldown_remaining().total_seconds() // 60),
        }

    # === Cached transactions ===

    def save_transactions(self, user_id: str, transactions: List[Wire]) -> Tuple[int, int]:
        """Store transactions for a user. Returns (stored, rejected)."""
        stored = rejected = 0
        fetched_at = self._clock().isoformat()
        with self.store.transaction() as conn:
            for item in transactions:
                transaction_id = _transaction_id(item)
                if transaction_id is None:
                    rejected += 1
                    continue
                conn.execute(
                    """INSERT OR REPLACE INTO cached_transactions
                       (user_id, transaction_id, account_id, payload, fetched_at)
                       VALUES (?, ?, ?, ?, ?)""",
                    (
                        str(user_id),
                        transaction_id,
                        item.get("account_id") or item.get("accountId"),
                        json.dumps(item, default=str),
                        fetched_at,
                    ),
                )
                stored += 1
        return stored, rejected

    def get_cached(self, user_id: str) -> List[Wire]:
        with self.store.transaction() as conn:
            rows = conn.execute(
                "SELECT payload FROM cached_transactions WHERE user_id = ? ORDER BY transaction_id",
                (str(user_id),),
            ).fetchall()
        return [json.loads(row["payload"]) for row in rows]


class TransactionFetcher:
    """Refreshes cached transactions from the aggregator when the budget allows."""

    def __init__(self, remote: RemoteService, cache: TransactionCache, bank_accounts=None):
        self.remote = remote
        self.cache = cache
        # BankAccountSynchronizer, used to flag accounts needing reauthentication
        self.bank_accounts = bank_accounts

    def refresh(self, user_id, force: bool = False) -> LiveFetchResult:
        reason = self.cache.skip_reason(force)
        if reason:
            logger.debug(f"Skipping live transaction fetch: {reason}")
            return LiveFetchResult(RunStatus.SKIPPED, message=reason)

        self.cache.record_api_call()
        try:
            body = self.remote.fetch_my_transactions() or {}
        except RemoteError as e:
            logger.warning(f"Live transaction fetch failed: {e}")
            return LiveFetchResult(RunStatus.ERROR, failed=1, message=str(e))

        stored, rejected = self.cache.save_transactions(
            str(user_id), body.get("transactions") or []
        )

        reauth = [
            item.get("account_id")
            for item in body.get("accounts_needing_reauthentication") or []
            if item.get("account_id")
        ]
        if reauth and self.bank_accounts is not None:
            self.bank_accounts.flag_needs_reauthentication(reauth)

        logger.info(f"Fetched {stored} transactions ({rejected} rejected)")
        if rejected:
            return LiveFetchResult(
                RunStatus.PARTIAL_SUCCESS,
                fetched=stored,
                failed=rejected,
                message=f"{rejected} transactions without an id",
            )
        return LiveFetchResult(RunStatus.SUCCESS, fetched=stored)
