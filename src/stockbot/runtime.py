"""Shared context and helpers for the conversation workflows."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from . import data_manager, log
from .constants import EXPECTED_SCHEMA_VERSION
from .data_manager import ConfigSettings, FlowSettings, LedgerEntry, LedgerRecord
from .directory import UserDirectory
from .formatters import format_user_records
from .ledger import LedgerStore, holds_record
from .messages import Button, Message, MessageCatalog, TextMessage
from .postback import MenuCommand
from .sessions import Session


@dataclass
class FlowContext:
    """Collaborators every workflow handler receives with each event."""

    settings: ConfigSettings
    store: LedgerStore
    catalog: MessageCatalog
    directory: UserDirectory

    @property
    def flows(self) -> FlowSettings:
        return self.settings.flows

    async def actor_name(self, user_id: str) -> str:
        return await self.directory.display_name(user_id)

    def text(self, key: str, **values: object) -> TextMessage:
        return self.catalog.text(key, **values)

    def cancel_button(self) -> Button:
        return Button(self.catalog.render("LABEL_CANCEL"), MenuCommand("cancel").to_data())

    def finish(self, session: Session, key: str = "ERROR_GENERIC", **values: object) -> List[Message]:
        """Clear the session and reply with a single text."""

        session.clear_all()
        return [self.text(key, **values)]


def parse_quantity(text: Optional[str], *, allow_zero: bool = False) -> Optional[int]:
    """Parse a whole, non-negative quantity typed by a user.

    Returns ``None`` for anything that is not a plain integer, for negative
    numbers, and for zero unless ``allow_zero`` is set.
    """

    raw = (text or "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        return None
    if value < 0 or (value == 0 and not allow_zero):
        return None
    return value


def message_text(text: Optional[str]) -> str:
    return (text or "").strip()


def stale_row_reason(entry: Optional[LedgerEntry], expected: LedgerRecord) -> Optional[str]:
    """Template key telling why ``entry`` is no longer the valid row the user opened.

    ``None`` means the row is unchanged. A row whose business cells differ was
    replaced by the monthly reset and is reported as gone.
    """

    if entry is None or entry.record.business_fields != expected.business_fields:
        return "ERROR_RECORD_NOT_FOUND"
    if not entry.record.is_valid:
        return "ERROR_RECORD_VOID"
    if not holds_record(entry.record, expected):
        return "ERROR_RECORD_NOT_FOUND"
    return None


async def finish_refused_void(
    ctx: FlowContext, session: Session, row_index: int, expected: LedgerRecord
) -> List[Message]:
    """Clear the session after a refused void, explaining a changed row when possible."""

    current = await ctx.store.read_row(row_index)
    reason = stale_row_reason(current.value, expected) if current.ok else None
    return ctx.finish(session, reason or "ERROR_GENERIC")


async def my_records(ctx: FlowContext, user_id: str) -> List[Message]:
    """The user's most recent ledger rows as a carousel."""

    actor = await ctx.actor_name(user_id)
    records = await ctx.store.user_records(actor, ctx.flows.records_fetch_limit)
    inventory = await ctx.store.inventory_view()
    if not records.ok or not inventory.ok:
        return [ctx.text("ERROR_GENERIC")]
    return [format_user_records(records.value, inventory.value, ctx.catalog, ctx.flows)]


def load_settings(config_path: Optional[Path] = None) -> ConfigSettings:
    """Locate and parse ``config.ini``.

    Raises:
        FileNotFoundError: If no configuration file can be found.
        KeyError: When mandatory configuration options are missing.
    """

    located = data_manager.find_config_file(config_path)
    resolved = Path(located).expanduser().resolve()
    parser = data_manager.read_config(resolved)
    settings = data_manager.parse_settings(parser, base_path=resolved.parent)
    log.info("Loaded configuration from '%s'", resolved)
    return settings


def ensure_schema_version(settings: ConfigSettings) -> None:
    """Refuse to run against a workbook layout this package does not know.

    Raises:
        RuntimeError: If ``[System] SchemaVersion`` differs from
            ``EXPECTED_SCHEMA_VERSION``.
    """

    if settings.schema_version != EXPECTED_SCHEMA_VERSION:
        log.error(
            "Workbook schema mismatch: expected %s, found %s",
            EXPECTED_SCHEMA_VERSION,
            settings.schema_version,
        )
        raise RuntimeError(
            "Workbook schema mismatch: expected %s, found %s"
            % (EXPECTED_SCHEMA_VERSION, settings.schema_version)
        )


def open_store(settings: ConfigSettings, *, autosave: bool = True) -> LedgerStore:
    """Open and validate the workbook named by ``settings`` and wrap it in a store.

    Raises:
        FileNotFoundError: If the workbook does not exist.
        RuntimeError: On a schema version mismatch or a malformed sheet layout.
    """

    ensure_schema_version(settings)
    workbook = data_manager.open_workbook(settings.data_file)
    data_manager.validate_layout(workbook, settings)
    log.info("Opened workbook '%s'", settings.data_file)
    return LedgerStore(settings, workbook, autosave=autosave)
