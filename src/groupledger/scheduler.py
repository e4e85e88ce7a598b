from __future__ import annotations

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from groupledger.config import get_settings
from groupledger.db.repo import LedgerRepository
from groupledger.errors import StorageUnavailableError
from groupledger.logging import get_logger
from groupledger.services.groups import audit_ledgers


async def setup_scheduler(repo: LedgerRepository) -> AsyncIOScheduler:
    settings = get_settings()

    scheduler = AsyncIOScheduler(timezone=settings.tz)
    scheduler.add_job(
        _audit_job,
        IntervalTrigger(minutes=settings.audit_interval_minutes),
        kwargs={"repo": repo},
        max_instances=1,
    )
    scheduler.start()
    return scheduler


async def _audit_job(repo: LedgerRepository) -> None:
    log = get_logger(__name__)
    try:
        report = await audit_ledgers(repo)
    except StorageUnavailableError:
        log.warning("audit.skipped", reason="storage unavailable")
        return
    log.info("audit.done", groups_with_anomalies=len(report))
