"""Ledger store for the stock bot.

The ledger is an append-only transaction table. Current inventory is never
stored; it is derived by summing the signed quantity of every ``Valid`` row
per composite key (category + serial). Corrections follow the void protocol:
the original row is marked ``Void`` (only its status, reason, actor and
timestamp cells change) and a corrected row is appended.

All public operations are coroutines. Workbook access runs in a worker thread
under a process-wide lock so the event loop keeps serving other users while
the spreadsheet is read or written. Every failure is caught at this boundary,
logged, and reported through :class:`LedgerResult` instead of propagating
into the conversation layer.
"""

from __future__ import annotations

import asyncio
import re
import threading
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable, Dict, Generic, Iterable, List, Mapping, Optional, TypeVar

from openpyxl.workbook import Workbook

from . import data_manager, log
from .cache import ViewCache
from .constants import ANNOTATION_COLUMNS, LedgerColumn, RecordStatus, TransactionType
from .data_manager import ConfigSettings, LedgerEntry, LedgerRecord, UserRow


T = TypeVar("T")


class LedgerError(Exception):
    """Raised inside the store when a requested mutation violates a ledger rule."""


@dataclass(frozen=True)
class LedgerResult(Generic[T]):
    """Outcome of a store operation: a value, or an error description."""

    value: Optional[T] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: T) -> "LedgerResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, error: str) -> "LedgerResult[T]":
        return cls(error=error)


@dataclass(frozen=True)
class InventoryItem:
    """Current state of one material, derived from its ``Valid`` ledger rows."""

    category: str
    serial: str
    name: str
    model: str
    spec: str
    unit: str
    quantity: int
    photo_ref: str = ""

    @property
    def composite_key(self) -> str:
        return f"{self.category}{self.serial}"


def normalize_key(key: str) -> str:
    """Canonical form of a composite key used for lookups."""

    return key.strip().upper()


def normalize_search_text(text: str) -> str:
    """Lower-case ``text`` and strip every whitespace character."""

    return re.sub(r"\s+", "", text).lower()


def format_timestamp(moment: datetime) -> str:
    return moment.strftime(data_manager.TIMESTAMP_FORMAT)


def build_inventory_view(records: Iterable[LedgerRecord]) -> Dict[str, InventoryItem]:
    """Materialize the inventory from ledger records.

    Only ``Valid`` rows contribute. Quantities are summed per composite key;
    descriptive fields come from the first valid row seen for that key.

    Args:
        records (Iterable[LedgerRecord]): Ledger rows in append order.

    Returns:
        dict[str, InventoryItem]: Items keyed by their normalized composite
            key.
    """

    view: Dict[str, InventoryItem] = {}
    for record in records:
        if not record.is_valid:
            continue
        key = normalize_key(record.composite_key)
        current = view.get(key)
        if current is None:
            view[key] = InventoryItem(
                category=record.category,
                serial=record.serial,
                name=record.name,
                model=record.model,
                spec=record.spec,
                unit=record.unit,
                quantity=record.quantity,
                photo_ref=record.photo_ref,
            )
        else:
            view[key] = replace(current, quantity=current.quantity + record.quantity)
    return view


def next_serial(records: Iterable[LedgerRecord], category: str, width: int) -> str:
    """Return ``max(serial in category) + 1`` zero-padded to ``width``.

    Void rows are scanned as well, so each allocation is strictly greater
    than every serial already on the ledger, and a serial freed by deleting
    the newest item of a category is never handed out again.
    """

    highest = 0
    for record in records:
        if record.category != category:
            continue
        try:
            highest = max(highest, int(record.serial))
        except ValueError:
            continue
    return str(highest + 1).zfill(width)


def holds_record(current: LedgerRecord, expected: LedgerRecord) -> bool:
    """Whether the valid row ``current`` is still the row ``expected`` was read from.

    Row indices are reused once the monthly reset clears the ledger, so the
    business cells and the append timestamp are compared.
    """

    return current.business_fields == expected.business_fields and current.timestamp == expected.timestamp


def validate_signed_quantity(record: LedgerRecord) -> None:
    """Ensure the quantity sign matches the transaction type."""

    try:
        kind = TransactionType(record.transaction_type)
    except ValueError as exc:
        raise LedgerError(f"Unknown transaction type: {record.transaction_type}") from exc
    if kind is TransactionType.OUTBOUND and record.quantity > 0:
        raise LedgerError("Outbound quantities must be negative")
    if kind is not TransactionType.OUTBOUND and record.quantity < 0:
        raise LedgerError(f"{kind.value} quantities must not be negative")


class LedgerStore:
    """Asynchronous facade over the ledger and user directory sheets."""

    def __init__(
        self,
        settings: ConfigSettings,
        workbook: Workbook,
        *,
        cache: Optional[ViewCache] = None,
        clock: Optional[Callable[[], datetime]] = None,
        autosave: bool = True,
    ) -> None:
        self.settings = settings
        self.cache = cache or ViewCache()
        self._workbook = workbook
        self._clock = clock or (lambda: datetime.now(settings.tzinfo))
        self._autosave = autosave
        self._lock = threading.Lock()

    # ------------------------------------------------------------------
    # plumbing
    # ------------------------------------------------------------------
    @property
    def workbook(self) -> Workbook:
        return self._workbook

    def now(self) -> datetime:
        return self._clock()

    def timestamp(self) -> str:
        return format_timestamp(self.now())

    async def _io(self, fn: Callable[..., T], *args: Any) -> T:
        return await asyncio.to_thread(self._locked, fn, *args)

    def _locked(self, fn: Callable[..., T], *args: Any) -> T:
        with self._lock:
            return fn(*args)

    def _persist(self) -> None:
        if self._autosave:
            data_manager.save_workbook(self._workbook, self.settings.data_file)

    def _entries(self) -> List[LedgerEntry]:
        return list(
            data_manager.iter_ledger_entries(
                self._workbook,
                self.settings.ledger_sheet,
                serial_width=self.settings.serial_width,
            )
        )

    def _read(self, row_index: int) -> Optional[LedgerEntry]:
        return data_manager.read_ledger_entry(
            self._workbook,
            self.settings.ledger_sheet,
            row_index,
            serial_width=self.settings.serial_width,
        )

    def invalidate_views(self) -> None:
        """Drop the cached inventory view; called after every ledger mutation."""

        self.cache.invalidate(self.settings.cache.inventory_key)

    # ------------------------------------------------------------------
    # reads
    # ------------------------------------------------------------------
    def _load_view(self) -> Dict[str, InventoryItem]:
        key = self.settings.cache.inventory_key
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        view = build_inventory_view(entry.record for entry in self._entries())
        # Stored while still holding the store lock so a concurrent mutation
        # cannot invalidate before this (older) view lands in the cache.
        self.cache.set(key, view, self.settings.cache.inventory_ttl)
        log.info("Inventory view rebuilt with %d items", len(view))
        return view

    async def inventory_view(self) -> LedgerResult[Dict[str, InventoryItem]]:
        """Return the materialized inventory keyed by normalized composite key."""

        cached = self.cache.get(self.settings.cache.inventory_key)
        if cached is not None:
            log.debug("Serving inventory view from cache")
            return LedgerResult.success(dict(cached))
        try:
            view = await self._io(self._load_view)
        except Exception:
            log.exception("Failed to read the ledger sheet '%s'", self.settings.ledger_sheet)
            return LedgerResult.failure("ledger unavailable")
        return LedgerResult.success(dict(view))

    async def search_by_name(self, query: str) -> LedgerResult[List[InventoryItem]]:
        """Case- and whitespace-insensitive substring search over item names.

        The order of the returned items is unspecified; callers sort.
        """

        needle = normalize_search_text(query)
        if not needle:
            return LedgerResult.success([])
        view = await self.inventory_view()
        if not view.ok:
            return LedgerResult.failure(view.error or "ledger unavailable")
        matches = [item for item in view.value.values() if needle in normalize_search_text(item.name)]
        return LedgerResult.success(matches)

    async def get_by_key(self, composite_key: str) -> LedgerResult[Optional[InventoryItem]]:
        """Exact, case-insensitive lookup by composite key."""

        view = await self.inventory_view()
        if not view.ok:
            return LedgerResult.failure(view.error or "ledger unavailable")
        return LedgerResult.success(view.value.get(normalize_key(composite_key)))

    async def exists(self, name: str, model: Optional[str], spec: Optional[str]) -> LedgerResult[bool]:
        """Whether an item with exactly this name, model and spec is in the inventory."""

        view = await self.inventory_view()
        if not view.ok:
            return LedgerResult.failure(view.error or "ledger unavailable")
        model = model or ""
        spec = spec or ""
        found = any(
            item.name == name and item.model == model and item.spec == spec
            for item in view.value.values()
        )
        return LedgerResult.success(found)

    async def allocate_serial(self, category: str) -> LedgerResult[str]:
        """Compute the next serial for ``category`` from the rows on disk.

        Allocation and the append that uses it are separate operations; two
        users adding to the same category at the same moment can receive the
        same serial.
        """

        def _allocate() -> str:
            records = (entry.record for entry in self._entries())
            return next_serial(records, category, self.settings.serial_width)

        try:
            serial = await self._io(_allocate)
        except Exception:
            log.exception("Failed to allocate a serial for category '%s'", category)
            return LedgerResult.failure("serial allocation failed")
        log.info("Allocated serial '%s%s'", category, serial)
        return LedgerResult.success(serial)

    async def read_row(self, row_index: int) -> LedgerResult[Optional[LedgerEntry]]:
        """Return the ledger entry stored at ``row_index``, if any."""

        try:
            entry = await self._io(self._read, row_index)
        except Exception:
            log.exception("Failed to read ledger row %s", row_index)
            return LedgerResult.failure("ledger unavailable")
        return LedgerResult.success(entry)

    async def entries(self) -> LedgerResult[List[LedgerEntry]]:
        """Return every ledger row in append order."""

        try:
            rows = await self._io(self._entries)
        except Exception:
            log.exception("Failed to read the ledger sheet '%s'", self.settings.ledger_sheet)
            return LedgerResult.failure("ledger unavailable")
        return LedgerResult.success(rows)

    async def user_records(self, actor: str, limit: int) -> LedgerResult[List[LedgerEntry]]:
        """Return the newest ``limit`` rows attributed to ``actor``, void rows included."""

        rows = await self.entries()
        if not rows.ok:
            return rows
        mine = [entry for entry in rows.value if entry.record.source_actor == actor]
        mine.sort(key=lambda entry: (entry.record.timestamp, entry.row_index), reverse=True)
        return LedgerResult.success(mine[: max(limit, 0)])

    # ------------------------------------------------------------------
    # writes
    # ------------------------------------------------------------------
    async def append(self, record: LedgerRecord, actor: str) -> LedgerResult[LedgerEntry]:
        """Append ``record`` as a ``Valid`` row attributed to ``actor``.

        The status, reason, actor and timestamp cells are owned by the store;
        whatever the caller put there is replaced.

        Args:
            record (LedgerRecord): Business fields of the new row.
            actor (str): Display name recorded as the row's source.

        Returns:
            LedgerResult[LedgerEntry]: The stored row and its index.
        """

        def _append() -> LedgerEntry:
            stored = replace(
                record,
                status=RecordStatus.VALID.value,
                void_reason="",
                source_actor=actor,
                timestamp=self.timestamp(),
            )
            validate_signed_quantity(stored)
            row_index = data_manager.append_ledger_record(self._workbook, self.settings.ledger_sheet, stored)
            self.invalidate_views()
            self._persist()
            return LedgerEntry(row_index=row_index, record=stored)

        try:
            entry = await self._io(_append)
        except LedgerError as exc:
            log.warning("Rejected ledger append for '%s': %s", record.composite_key, exc)
            return LedgerResult.failure(str(exc))
        except Exception:
            log.exception("Failed to append a ledger row for '%s'", record.composite_key)
            return LedgerResult.failure("ledger write failed")
        log.info(
            "Appended %s row %d for '%s' (quantity=%d, actor=%s)",
            entry.record.transaction_type,
            entry.row_index,
            entry.record.composite_key,
            entry.record.quantity,
            actor,
        )
        return LedgerResult.success(entry)

    async def void(
        self,
        row_index: int,
        reason: str,
        actor: str,
        *,
        expected: Optional[LedgerRecord] = None,
    ) -> LedgerResult[LedgerEntry]:
        """Mark a ``Valid`` row as ``Void``.

        Only the status, reason, actor and timestamp cells are written; the
        business cells of the row stay untouched. Voiding is irreversible and
        a row that is already void is refused.

        Args:
            row_index (int): Worksheet row of the record to void.
            reason (str): Text stored in the void reason column.
            actor (str): Display name of the user performing the void.
            expected (LedgerRecord | None): The record the caller read from
                ``row_index`` earlier. When given, the void is refused if the
                row now holds a different record.

        Returns:
            LedgerResult[LedgerEntry]: The row as it reads after the void.
        """

        def _void() -> LedgerEntry:
            entry = self._read(row_index)
            if entry is None:
                raise LedgerError(f"Ledger row not found: {row_index}")
            if not entry.record.is_valid:
                raise LedgerError(f"Ledger row {row_index} is already void")
            if expected is not None and not holds_record(entry.record, expected):
                raise LedgerError(f"Ledger row {row_index} no longer holds the expected record")
            timestamp = self.timestamp()
            data_manager.update_ledger_cells(
                self._workbook,
                self.settings.ledger_sheet,
                row_index,
                {
                    LedgerColumn.STATUS: RecordStatus.VOID.value,
                    LedgerColumn.VOID_REASON: reason,
                    LedgerColumn.SOURCE_ACTOR: actor,
                    LedgerColumn.TIMESTAMP: timestamp,
                },
            )
            self.invalidate_views()
            self._persist()
            return LedgerEntry(
                row_index=row_index,
                record=replace(
                    entry.record,
                    status=RecordStatus.VOID.value,
                    void_reason=reason,
                    source_actor=actor,
                    timestamp=timestamp,
                ),
            )

        try:
            entry = await self._io(_void)
        except LedgerError as exc:
            log.warning("Rejected void of row %s: %s", row_index, exc)
            return LedgerResult.failure(str(exc))
        except Exception:
            log.exception("Failed to void ledger row %s", row_index)
            return LedgerResult.failure("ledger write failed")
        log.info("Voided row %d ('%s') by %s: %s", row_index, entry.record.composite_key, actor, reason)
        return LedgerResult.success(entry)

    async def patch_cells(self, row_index: int, updates: Mapping[LedgerColumn, object]) -> LedgerResult[None]:
        """Rewrite annotation cells (reason, actor, timestamp) of an existing row.

        Business columns and the status column are refused, so a patch can
        never change what the row contributes to the inventory.
        """

        illegal = sorted(LedgerColumn(column).name for column in updates if column not in ANNOTATION_COLUMNS)
        if illegal:
            log.warning("Refused patch of protected columns %s on row %s", illegal, row_index)
            return LedgerResult.failure(f"protected columns: {', '.join(illegal)}")

        def _patch() -> None:
            data_manager.update_ledger_cells(self._workbook, self.settings.ledger_sheet, row_index, dict(updates))
            self._persist()

        try:
            await self._io(_patch)
        except KeyError as exc:
            log.warning("Rejected patch of row %s: %s", row_index, exc)
            return LedgerResult.failure(str(exc))
        except Exception:
            log.exception("Failed to patch ledger row %s", row_index)
            return LedgerResult.failure("ledger write failed")
        log.info("Patched row %d columns %s", row_index, [LedgerColumn(c).name for c in updates])
        return LedgerResult.success(None)

    # ------------------------------------------------------------------
    # user directory
    # ------------------------------------------------------------------
    def _load_users(self) -> Dict[str, str]:
        key = self.settings.cache.users_key
        cached = self.cache.get(key)
        if cached is not None:
            return cached
        users = {
            row.user_id: row.display_name
            for row in data_manager.iter_users(self._workbook, self.settings.users_sheet)
        }
        self.cache.set(key, users, self.settings.cache.users_ttl)
        return users

    async def users_map(self) -> LedgerResult[Dict[str, str]]:
        """Return the user directory as ``user id -> display name``."""

        cached = self.cache.get(self.settings.cache.users_key)
        if cached is not None:
            return LedgerResult.success(dict(cached))
        try:
            users = await self._io(self._load_users)
        except Exception:
            log.exception("Failed to read the user sheet '%s'", self.settings.users_sheet)
            return LedgerResult.failure("user directory unavailable")
        return LedgerResult.success(dict(users))

    async def register_user(self, user_id: str, display_name: str) -> LedgerResult[None]:
        """Add a user to the directory and invalidate the cached directory view."""

        def _register() -> None:
            data_manager.append_user(
                self._workbook,
                self.settings.users_sheet,
                UserRow(user_id=user_id, display_name=display_name),
            )
            self.cache.invalidate(self.settings.cache.users_key)
            self._persist()

        try:
            await self._io(_register)
        except Exception:
            log.exception("Failed to register user '%s'", user_id)
            return LedgerResult.failure("user directory write failed")
        log.info("Registered user '%s' as '%s'", user_id, display_name)
        return LedgerResult.success(None)

    # ------------------------------------------------------------------
    # whole-workbook jobs
    # ------------------------------------------------------------------
    async def run_exclusive(self, job: Callable[[Workbook], T]) -> T:
        """Run ``job`` against the workbook while holding the store lock.

        No other store operation can read or write between the job's first
        and last step. Exceptions raised by ``job`` propagate to the caller.
        """

        return await self._io(lambda: job(self._workbook))

    def persist(self) -> None:
        """Save the workbook now; intended for use from inside :meth:`run_exclusive`."""

        self._persist()

    async def reload(self) -> None:
        """Replace the in-memory workbook with the copy on disk."""

        def _reload() -> None:
            self._workbook = data_manager.refresh_workbook(self.settings.data_file)
            self.cache.clear()

        await self._io(_reload)
        log.info("Reloaded workbook '%s'", self.settings.data_file)
