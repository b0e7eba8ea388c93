"""Monthly archival of the ledger.

Once a month the whole ledger sheet is copied into a write-protected
``Archive_YYYY-MM`` sheet for the period that just closed, closing balances
are computed with the same rule as the live inventory, the ledger is
cleared, and one ``OpeningBalance`` row is appended per item that still has
stock. The job runs under the store lock, so no user write can land between
the snapshot and the reset.
"""

from __future__ import annotations

import asyncio
import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Awaitable, Callable, List, Mapping, Optional

from openpyxl.workbook import Workbook

from . import data_manager, log
from .constants import ARCHIVE_SHEET_PREFIX, RecordStatus, TransactionType
from .data_manager import ArchiveSchedule, LedgerRecord
from .ledger import InventoryItem, LedgerStore, build_inventory_view, format_timestamp


class ArchiveStatus(str, Enum):
    COMPLETED = "completed"
    SKIPPED_DUPLICATE = "skipped_duplicate"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass(frozen=True)
class ArchiveOutcome:
    status: ArchiveStatus
    period: str
    archived_rows: int = 0
    carried_items: int = 0
    error: Optional[str] = None


def previous_period_label(now: datetime) -> str:
    """``YYYY-MM`` of the month before ``now``."""

    last_day_of_previous = now.replace(day=1) - timedelta(days=1)
    return last_day_of_previous.strftime("%Y-%m")


def archive_sheet_title(period: str) -> str:
    return f"{ARCHIVE_SHEET_PREFIX}{period}"


def opening_balance_records(
    view: Mapping[str, InventoryItem], *, actor: str, timestamp: str
) -> List[LedgerRecord]:
    """One ``OpeningBalance`` row per item with a nonzero closing quantity."""

    records = []
    for item in sorted(view.values(), key=lambda item: (item.category, item.serial)):
        if item.quantity == 0:
            continue
        if item.quantity < 0:
            log.warning("Carrying forward a negative balance for '%s': %d", item.composite_key, item.quantity)
        records.append(
            LedgerRecord(
                category=item.category,
                serial=item.serial,
                name=item.name,
                model=item.model,
                spec=item.spec,
                unit=item.unit,
                quantity=item.quantity,
                transaction_type=TransactionType.OPENING_BALANCE.value,
                status=RecordStatus.VALID.value,
                source_actor=actor,
                timestamp=timestamp,
                photo_ref=item.photo_ref,
            )
        )
    return records


class ArchivalJob:
    """Snapshot the ledger and reset it to opening balances."""

    def __init__(self, store: LedgerStore, *, actor: Optional[str] = None) -> None:
        self.store = store
        self.actor = actor or store.settings.archive_actor

    async def run(self, now: Optional[datetime] = None) -> ArchiveOutcome:
        """Archive the period before ``now`` (defaults to the store clock).

        Running twice for the same period is harmless: the second run finds
        the snapshot sheet and returns ``skipped_duplicate`` without touching
        the ledger. On any failure the in-memory workbook is reloaded from
        disk so a half-finished reset is never saved later.
        """

        now = now or self.store.now()
        period = previous_period_label(now)
        timestamp = format_timestamp(now)
        log.info("Starting ledger archival for period %s", period)

        try:
            outcome = await self.store.run_exclusive(lambda workbook: self._archive(workbook, period, timestamp))
        except Exception as exc:
            log.exception("Ledger archival for period %s failed", period)
            try:
                await self.store.reload()
            except Exception:
                log.exception("Could not reload the workbook after the failed archival")
            return ArchiveOutcome(status=ArchiveStatus.FAILED, period=period, error=str(exc))

        if outcome.status is ArchiveStatus.COMPLETED:
            log.info(
                "Archived %d rows into '%s' and carried %d balances forward",
                outcome.archived_rows,
                archive_sheet_title(period),
                outcome.carried_items,
            )
        elif outcome.status is ArchiveStatus.SKIPPED_DUPLICATE:
            log.error("Archive sheet '%s' already exists; archival skipped", archive_sheet_title(period))
        else:
            log.info("Ledger is empty; nothing to archive for period %s", period)
        return outcome

    def _archive(self, workbook: Workbook, period: str, timestamp: str) -> ArchiveOutcome:
        settings = self.store.settings
        title = archive_sheet_title(period)
        if title in workbook.sheetnames:
            return ArchiveOutcome(status=ArchiveStatus.SKIPPED_DUPLICATE, period=period)

        entries = list(
            data_manager.iter_ledger_entries(workbook, settings.ledger_sheet, serial_width=settings.serial_width)
        )
        if not entries:
            return ArchiveOutcome(status=ArchiveStatus.EMPTY, period=period)

        snapshot = workbook.copy_worksheet(workbook[settings.ledger_sheet])
        snapshot.title = title
        snapshot.protection.sheet = True

        view = build_inventory_view(entry.record for entry in entries)
        data_manager.clear_ledger(workbook, settings.ledger_sheet)
        balances = opening_balance_records(view, actor=self.actor, timestamp=timestamp)
        for record in balances:
            data_manager.append_ledger_record(workbook, settings.ledger_sheet, record)

        self.store.invalidate_views()
        self.store.persist()
        return ArchiveOutcome(
            status=ArchiveStatus.COMPLETED,
            period=period,
            archived_rows=len(entries),
            carried_items=len(balances),
        )


def _scheduled_in(schedule: ArchiveSchedule, year: int, month: int, after: datetime) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(
        year,
        month,
        min(schedule.day_of_month, last_day),
        schedule.hour,
        schedule.minute,
        tzinfo=after.tzinfo,
    )


def compute_next_run(schedule: ArchiveSchedule, after: datetime) -> datetime:
    """First trigger time strictly after ``after``.

    A day of month beyond the length of a month fires on that month's last
    day. The result carries ``after``'s time zone.
    """

    candidate = _scheduled_in(schedule, after.year, after.month, after)
    if candidate > after:
        return candidate
    year, month = (after.year + 1, 1) if after.month == 12 else (after.year, after.month + 1)
    return _scheduled_in(schedule, year, month, after)


class ArchiveScheduler:
    """Run the archival job on its monthly schedule on the asyncio loop."""

    def __init__(
        self,
        job: ArchivalJob,
        schedule: ArchiveSchedule,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.job = job
        self.schedule = schedule
        self._clock = clock or job.store.now
        self._sleep = sleep

    async def run_once(self) -> ArchiveOutcome:
        """Wait for the next trigger time, then run the job once."""

        now = self._clock()
        next_run = compute_next_run(self.schedule, now)
        log.info("Next ledger archival scheduled for %s", next_run.isoformat())
        await self._sleep(max((next_run - now).total_seconds(), 0.0))
        return await self.job.run(next_run)

    async def run_forever(self) -> None:
        while True:
            await self.run_once()
