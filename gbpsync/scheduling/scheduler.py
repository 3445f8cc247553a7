"""
Selection of due accounts and fan-out of scheduled syncs.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger

from ..action_log import ActionLog
from ..data.base import AccountRepository
from ..exceptions import GBPSyncError
from ..models.account import Account, SyncSchedule
from ..models.base import format_datetime, to_utc, utcnow
from ..models.sync import SyncJob, SyncType
from .executor import SyncExecutor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScheduleAnchors:
    """UTC anchor times for each automatic schedule."""
    daily_hour: int = 0
    twice_daily_hours: Tuple[int, ...] = (9, 18)
    weekly_weekday: int = 0  # Monday
    weekly_hour: int = 0
    hourly_suppression: timedelta = timedelta(minutes=30)

    def describe(self, schedule: SyncSchedule) -> str:
        """Human readable description of when ``schedule`` runs."""
        if schedule == SyncSchedule.HOURLY:
            return "every hour"
        if schedule == SyncSchedule.DAILY:
            return f"daily at {self.daily_hour:02d}:00 UTC"
        if schedule == SyncSchedule.TWICE_DAILY:
            hours = " and ".join(f"{h:02d}:00" for h in self.twice_daily_hours)
            return f"daily at {hours} UTC"
        if schedule == SyncSchedule.WEEKLY:
            days = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]
            return f"{days[self.weekly_weekday]} at {self.weekly_hour:02d}:00 UTC"
        return "manual only"


DEFAULT_ANCHORS = ScheduleAnchors()


def is_due(now: datetime, account: Account, anchors: ScheduleAnchors = DEFAULT_ANCHORS) -> bool:
    """Whether one account should sync on the tick at ``now``."""
    if not account.is_active:
        return False

    now = to_utc(now)
    schedule = account.settings.sync_schedule

    if schedule == SyncSchedule.HOURLY:
        last_sync = to_utc(account.last_sync)
        if last_sync is None:
            return True
        # A last_sync in the future (clock skew) also suppresses the run
        return now - last_sync >= anchors.hourly_suppression
    if schedule == SyncSchedule.DAILY:
        return now.hour == anchors.daily_hour
    if schedule == SyncSchedule.TWICE_DAILY:
        return now.hour in anchors.twice_daily_hours
    if schedule == SyncSchedule.WEEKLY:
        return now.weekday() == anchors.weekly_weekday and now.hour == anchors.weekly_hour
    return False


def select_due_accounts(now: datetime,
                        accounts: Iterable[Account],
                        anchors: ScheduleAnchors = DEFAULT_ANCHORS) -> List[str]:
    """
    Pick the accounts a tick at ``now`` should sync.

    Anchors are matched on the hour, so the function expects to be called
    about once per hour. It has no side effects.

    Args:
        now: Tick time; naive values are treated as UTC
        accounts: Candidate accounts
        anchors: Anchor configuration

    Returns:
        IDs of due accounts, in input order
    """
    return [account.id for account in accounts if is_due(now, account, anchors)]


@dataclass
class TickSummary:
    """Outcome of one scheduler tick."""
    schedule: str
    results: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def synced(self) -> int:
        return sum(1 for r in self.results if r.get("success"))

    @property
    def errors(self) -> int:
        return sum(1 for r in self.results if not r.get("success"))

    @property
    def status(self) -> str:
        if self.errors == 0:
            return "success"
        return "failed" if self.synced == 0 else "partial"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "synced": self.synced,
            "errors": self.errors,
            "results": self.results,
            "schedule": self.schedule,
        }


class SyncScheduler:
    """Runs scheduled syncs for all due accounts.

    ``run_tick`` is the whole scheduling loop: an external cron calls it
    (through the HTTP trigger or the CLI), or the optional in-process
    APScheduler timer does. One account failing never stops the others.
    """

    def __init__(self,
                 accounts: AccountRepository,
                 executor: SyncExecutor,
                 action_log: ActionLog,
                 max_concurrent_syncs: int = 4,
                 anchors: ScheduleAnchors = DEFAULT_ANCHORS,
                 clock: Callable[[], datetime] = utcnow):
        self.accounts = accounts
        self.executor = executor
        self.action_log = action_log
        self.max_concurrent_syncs = max(1, max_concurrent_syncs)
        self.anchors = anchors
        self._clock = clock
        self._timer: Optional[AsyncIOScheduler] = None

    async def run_tick(self, now: Optional[datetime] = None) -> TickSummary:
        """Sync every due account once.

        Args:
            now: Tick time, defaults to the clock

        Returns:
            Counts of synced and failed accounts with per-account results
        """
        now = to_utc(now or self._clock())
        candidates = await self.accounts.list_active_accounts()
        due = select_due_accounts(now, candidates, self.anchors)
        summary = TickSummary(schedule=format_datetime(now))

        logger.info(f"Scheduler tick at {summary.schedule}: {len(due)} of {len(candidates)} accounts due")

        jobs = [SyncJob(account_id=account_id, sync_type=SyncType.FULL) for account_id in due]
        summary.results = await self._run_jobs(jobs)

        await self.action_log.record(
            action="scheduled_sync",
            status=summary.status,
            details=summary.to_dict(),
        )
        logger.info(f"Scheduler tick finished: {summary.synced} synced, {summary.errors} errors")
        return summary

    async def sync_user_accounts(self,
                                 user_id: str,
                                 sync_type: SyncType = SyncType.FULL) -> TickSummary:
        """Sync every active account of one user, ignoring schedules."""
        now = to_utc(self._clock())
        accounts = [a for a in await self.accounts.list_accounts_for_user(user_id) if a.is_active]
        summary = TickSummary(schedule=format_datetime(now))

        logger.info(f"Syncing all {len(accounts)} active accounts of user {user_id}")
        jobs = [SyncJob(account_id=account.id, sync_type=sync_type) for account in accounts]
        summary.results = await self._run_jobs(jobs)

        await self.action_log.record(
            action="sync_all",
            status=summary.status,
            details=summary.to_dict(),
            user_id=user_id,
        )
        return summary

    async def _run_jobs(self, jobs: List[SyncJob]) -> List[Dict[str, Any]]:
        semaphore = asyncio.Semaphore(self.max_concurrent_syncs)

        async def run_one(job: SyncJob) -> Dict[str, Any]:
            async with semaphore:
                return await self._sync_one(job)

        return list(await asyncio.gather(*[run_one(job) for job in jobs]))

    async def _sync_one(self, job: SyncJob) -> Dict[str, Any]:
        account_id = job.account_id
        try:
            result = await self.executor.sync_account(account_id, job.sync_type)
        except GBPSyncError as e:
            logger.warning(f"Scheduled sync failed for account {account_id}: {e}")
            return {
                "account_id": account_id,
                "success": False,
                "error": e.user_message,
                "error_code": e.error_code,
                "requires_reconnect": e.requires_reconnect,
            }
        except Exception as e:
            logger.exception(f"Unexpected error syncing account {account_id}")
            return {
                "account_id": account_id,
                "success": False,
                "error": str(e),
                "error_code": "INTERNAL_ERROR",
                "requires_reconnect": False,
            }

        data = result.to_dict()
        data["success"] = result.last_sync_updated
        return data

    def start_timer(self) -> None:
        """Run a tick at the top of every hour inside this process."""
        if self._timer is not None:
            logger.warning("Sync timer already running")
            return

        self._timer = AsyncIOScheduler(timezone="UTC")
        self._timer.add_job(
            self.run_tick,
            trigger=CronTrigger(minute=0, timezone="UTC"),
            id="gbp_sync_tick",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._timer.start()
        logger.info("Hourly sync timer started")

    def stop_timer(self) -> None:
        if self._timer is None:
            return
        self._timer.shutdown(wait=False)
        self._timer = None
        logger.info("Hourly sync timer stopped")
