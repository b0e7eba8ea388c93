"""Data access layer for the stock bot.

This module provides low-level helpers that read from and write to the
inventory workbook. Business rules (inventory derivation, serial allocation,
the void protocol) belong to :mod:`stockbot.ledger`.

The public API is designed around three responsibilities:

1. Configuration handling: finding and parsing ``config.ini``.
2. Workbook lifecycle: opening, validating, and persisting the Excel file.
3. Sheet operations: loading structured ledger and user rows, appending new
   rows, and patching individual cells of existing rows.
"""


from __future__ import annotations

import configparser
import os
from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Iterator, Mapping, Optional, Sequence
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from openpyxl.workbook import Workbook
import openpyxl

from . import log
from .constants import (
    EXPECTED_SCHEMA_VERSION,
    LEDGER_HEADERS,
    LedgerColumn,
    RecordStatus,
    SheetName,
    TransactionType,
)


CONFIG_FILE_NAME = "config.ini"
TOKEN_ENV_VAR = "LINE_CHANNEL_ACCESS_TOKEN"
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(frozen=True)
class CacheSettings:
    """Cache keys and lifetimes for the materialized views."""

    inventory_key: str = "inventory_map"
    inventory_ttl: int = 300
    users_key: str = "users_map"
    users_ttl: int = 3600


@dataclass(frozen=True)
class FlowSettings:
    """Options that shape the conversation workflows."""

    categories: tuple[tuple[str, str], ...] = ()
    units: tuple[str, ...] = ("pcs", "box", "set")
    records_fetch_limit: int = 5
    delete_reason: str = "Data error"
    unknown_user: str = "Unknown user"
    default_image_url: str = "https://via.placeholder.com/500x300.png?text=No+Image"


@dataclass(frozen=True)
class LineSettings:
    """Messaging platform credentials used for profile lookups."""

    channel_access_token: Optional[str] = None
    api_base: str = "https://api.line.me"
    timeout: float = 10.0


@dataclass(frozen=True)
class ArchiveSchedule:
    """Monthly trigger of the archival job."""

    day_of_month: int
    hour: int
    minute: int


@dataclass(frozen=True)
class ConfigSettings:
    """Typed representation of the ``config.ini`` settings we care about."""

    data_file: Path
    schema_version: str = EXPECTED_SCHEMA_VERSION
    timezone: str = "Asia/Taipei"
    serial_width: int = 3
    ledger_sheet: str = SheetName.LEDGER.value
    users_sheet: str = SheetName.USERS.value
    archive_actor: str = "system"
    cache: CacheSettings = field(default_factory=CacheSettings)
    flows: FlowSettings = field(default_factory=FlowSettings)
    line: LineSettings = field(default_factory=LineSettings)
    archive_schedule: Optional[ArchiveSchedule] = None
    messages: Mapping[str, str] = field(default_factory=dict)

    @property
    def tzinfo(self) -> ZoneInfo:
        return ZoneInfo(self.timezone)


@dataclass(frozen=True)
class LedgerRecord:
    """In-memory view of a row from the ledger sheet.

    ``quantity`` is signed: positive for New, Inbound and OpeningBalance rows,
    negative for Outbound rows.
    """

    category: str
    serial: str
    name: str
    model: str
    spec: str
    unit: str
    quantity: int
    transaction_type: str
    status: str = RecordStatus.VALID.value
    void_reason: str = ""
    source_actor: str = ""
    timestamp: str = ""
    photo_ref: str = ""

    @property
    def composite_key(self) -> str:
        return f"{self.category}{self.serial}"

    @property
    def is_valid(self) -> bool:
        return self.status == RecordStatus.VALID.value

    @property
    def is_new(self) -> bool:
        return self.transaction_type == TransactionType.NEW.value

    @property
    def business_fields(self) -> tuple[object, ...]:
        """The cells a void never rewrites (columns 1-8)."""

        return (
            self.category,
            self.serial,
            self.name,
            self.model,
            self.spec,
            self.unit,
            self.quantity,
            self.transaction_type,
        )


@dataclass(frozen=True)
class LedgerEntry:
    """A ledger record together with its stable worksheet row index."""

    row_index: int
    record: LedgerRecord


@dataclass(frozen=True)
class UserRow:
    """In-memory view of a row from the user directory sheet."""

    user_id: str
    display_name: str


def find_config_file(explicit_path: Optional[Path] = None) -> Path:
    """Locate the configuration file that controls how the bot behaves.

    If the caller provides ``explicit_path`` the value is returned immediately
    without any verification. Otherwise the function walks up from the current
    working directory toward the filesystem root looking for a file named
    ``CONFIG_FILE_NAME``; the first match is considered authoritative.

    Args:
        explicit_path (Path | None): Optional path to use instead of performing
            the upward search.

    Returns:
        Path: The path provided by the caller or the discovered configuration
            file.

    Raises:
        FileNotFoundError: If the search exhausts all parent directories without
            finding ``CONFIG_FILE_NAME``.
    """

    if explicit_path:
        return explicit_path

    current = Path.cwd()
    for p in (current, *current.parents):
        candidate = p / CONFIG_FILE_NAME
        if candidate.exists():
            return candidate

    raise FileNotFoundError(
        f"Configuration file not found: {CONFIG_FILE_NAME}")


def read_config(config_path: Path) -> configparser.ConfigParser:
    """Load ``config.ini`` and return a populated ``ConfigParser`` instance.

    Args:
        config_path (Path): Path to the configuration file, relative or
            absolute. ``~`` is expanded.

    Returns:
        configparser.ConfigParser: Initialized parser containing the raw
            configuration data.

    Raises:
        FileNotFoundError: If ``config_path`` does not exist after expansion and
            resolution.
    """

    config_path = config_path.expanduser().resolve()
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")

    parser = configparser.ConfigParser(interpolation=None)
    parser.read(config_path, encoding="utf-8")
    return parser


def parse_settings(
    parser: configparser.ConfigParser,
    *,
    base_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ConfigSettings:
    """Convert a ``ConfigParser`` into strongly typed :class:`ConfigSettings`.

    Only ``[System] DataFile`` is mandatory; every other option falls back to
    the defaults declared on the settings dataclasses. Relative data file
    paths are anchored to ``base_path`` (or the working directory). The
    channel access token is taken from ``LINE_CHANNEL_ACCESS_TOKEN`` when that
    variable is set.

    Args:
        parser (configparser.ConfigParser): Parsed configuration data.
        base_path (Path | None): Directory used to resolve relative
            ``DataFile`` entries.
        environ (Mapping[str, str] | None): Environment to read overrides
            from. Defaults to :data:`os.environ`.

    Returns:
        ConfigSettings: Immutable settings container.

    Raises:
        KeyError: If ``[System] DataFile`` is missing.
        ValueError: If a numeric option or the time zone is malformed.
    """

    environ = os.environ if environ is None else environ
    try:
        data_file_raw = parser.get("System", "DataFile")
    except (configparser.NoSectionError, configparser.NoOptionError) as exc:
        raise KeyError(f"Missing required configuration entry: {exc}") from exc

    data_file_path = Path(data_file_raw).expanduser()
    if not data_file_path.is_absolute():
        if base_path is None:
            base_path = Path.cwd()
        data_file_path = (base_path / data_file_path).resolve()

    defaults = ConfigSettings(data_file=data_file_path)
    timezone = parser.get("System", "Timezone", fallback=defaults.timezone)
    try:
        ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ValueError(f"Unknown time zone in configuration: {timezone}") from exc

    cache_defaults = CacheSettings()
    cache = CacheSettings(
        inventory_key=parser.get("Cache", "InventoryKey", fallback=cache_defaults.inventory_key),
        inventory_ttl=_get_int(parser, "Cache", "InventoryTTL", cache_defaults.inventory_ttl),
        users_key=parser.get("Cache", "UsersKey", fallback=cache_defaults.users_key),
        users_ttl=_get_int(parser, "Cache", "UsersTTL", cache_defaults.users_ttl),
    )

    flow_defaults = FlowSettings()
    units_raw = parser.get("Flows", "Units", fallback=None)
    flows = FlowSettings(
        categories=parse_categories(parser.get("Flows", "Categories", fallback="")),
        units=_split_list(units_raw) if units_raw is not None else flow_defaults.units,
        records_fetch_limit=_get_int(parser, "Flows", "RecordsFetchLimit", flow_defaults.records_fetch_limit),
        delete_reason=parser.get("Flows", "DefaultDeleteReason", fallback=flow_defaults.delete_reason),
        unknown_user=parser.get("Flows", "DefaultUnknownUser", fallback=flow_defaults.unknown_user),
        default_image_url=parser.get("Flows", "DefaultImageUrl", fallback=flow_defaults.default_image_url),
    )

    line_defaults = LineSettings()
    token = environ.get(TOKEN_ENV_VAR) or parser.get("Line", "ChannelAccessToken", fallback=None)
    try:
        timeout = parser.getfloat("Line", "Timeout", fallback=line_defaults.timeout)
    except ValueError as exc:
        raise ValueError(f"Invalid [Line] Timeout: {exc}") from exc
    line = LineSettings(
        channel_access_token=token or None,
        api_base=parser.get("Line", "ApiBase", fallback=line_defaults.api_base),
        timeout=timeout,
    )

    messages = {key.upper(): value for key, value in parser.items("Messages")} if parser.has_section("Messages") else {}

    return ConfigSettings(
        data_file=data_file_path,
        schema_version=parser.get("System", "SchemaVersion", fallback=defaults.schema_version),
        timezone=timezone,
        serial_width=_get_int(parser, "System", "SerialWidth", defaults.serial_width),
        ledger_sheet=parser.get("Sheets", "Ledger", fallback=defaults.ledger_sheet),
        users_sheet=parser.get("Sheets", "Users", fallback=defaults.users_sheet),
        archive_actor=parser.get("Archive", "Actor", fallback=defaults.archive_actor),
        cache=cache,
        flows=flows,
        line=line,
        archive_schedule=parse_archive_schedule(parser),
        messages=messages,
    )


def parse_archive_schedule(parser: configparser.ConfigParser) -> Optional[ArchiveSchedule]:
    """Read the ``[Archive]`` trigger, or ``None`` when it is absent or invalid.

    A broken schedule must not stop the bot from starting, so problems are
    logged as warnings and the archival job is simply disabled.
    """

    if not parser.has_section("Archive"):
        log.warning("No [Archive] schedule configured; monthly archival is disabled")
        return None
    try:
        schedule = ArchiveSchedule(
            day_of_month=parser.getint("Archive", "DayOfMonth"),
            hour=parser.getint("Archive", "Hour"),
            minute=parser.getint("Archive", "Minute"),
        )
    except (configparser.NoOptionError, ValueError) as exc:
        log.warning("Invalid [Archive] schedule (%s); monthly archival is disabled", exc)
        return None

    if not (1 <= schedule.day_of_month <= 31 and 0 <= schedule.hour <= 23 and 0 <= schedule.minute <= 59):
        log.warning("Archive schedule out of range (%s); monthly archival is disabled", schedule)
        return None
    return schedule


def parse_categories(raw: str) -> tuple[tuple[str, str], ...]:
    """Parse ``KEY:Label,KEY:Label`` pairs; a bare key doubles as its label."""

    categories = []
    for item in _split_list(raw):
        key, _, label = item.partition(":")
        key = key.strip()
        if key:
            categories.append((key, label.strip() or key))
    return tuple(categories)


def _split_list(raw: str) -> tuple[str, ...]:
    return tuple(part.strip() for part in raw.split(",") if part.strip())


def _get_int(parser: configparser.ConfigParser, section: str, option: str, fallback: int) -> int:
    try:
        return parser.getint(section, option, fallback=fallback)
    except ValueError as exc:
        raise ValueError(f"Invalid [{section}] {option}: {exc}") from exc


def open_workbook(data_file: Path) -> Workbook:
    """Open the inventory workbook and return a live ``openpyxl`` workbook.

    Args:
        data_file (Path): Filesystem path to the workbook.

    Returns:
        Workbook: ``openpyxl`` workbook instance backed by the provided file.

    Raises:
        FileNotFoundError: If ``data_file`` does not exist after expansion and
            resolution.
    """

    data_file = Path(data_file).expanduser().resolve()
    if not data_file.exists():
        raise FileNotFoundError(f"Workbook not found: {data_file}")

    return openpyxl.load_workbook(data_file)


def save_workbook(workbook: Workbook, destination: Path) -> None:
    """Persist the workbook to disk, creating parent directories on demand.

    Args:
        workbook (Workbook): Workbook instance to persist.
        destination (Path): Filesystem path that should receive the serialized
            workbook.
    """

    dest = Path(destination).expanduser().resolve()
    dest.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(dest)


def refresh_workbook(data_file: Path) -> Workbook:
    """Reload the workbook from disk, discarding any unsaved in-memory changes."""

    return open_workbook(data_file)


def validate_layout(workbook: Workbook, settings: ConfigSettings) -> None:
    """Check that the ledger and user sheets exist with the expected headers.

    Raises:
        RuntimeError: If a sheet is missing or the ledger header row does not
            match :data:`~stockbot.constants.LEDGER_HEADERS`.
    """

    for sheet_name in (settings.ledger_sheet, settings.users_sheet):
        if sheet_name not in workbook.sheetnames:
            raise RuntimeError(f"Workbook is missing the '{sheet_name}' sheet")

    sheet = workbook[settings.ledger_sheet]
    header = tuple(
        cell.value for cell in next(sheet.iter_rows(min_row=1, max_row=1, max_col=len(LEDGER_HEADERS)))
    )
    if header != LEDGER_HEADERS:
        raise RuntimeError(
            f"Unexpected ledger header in '{settings.ledger_sheet}': {header!r}"
        )


def iter_ledger_entries(workbook: Workbook, sheet_name: str, *, serial_width: int) -> Iterator[LedgerEntry]:
    """Stream ledger rows together with their 1-based worksheet row index.

    The header row and fully empty rows are skipped. Row indices are never
    renumbered, so an index handed out to a user stays valid until the
    archival job resets the sheet.

    Args:
        workbook (Workbook): Workbook containing the ledger sheet.
        sheet_name (str): Title of the ledger sheet.
        serial_width (int): Width numeric serial cells are padded to.

    Yields:
        LedgerEntry: Normalized record for each populated row.
    """

    sheet = workbook[sheet_name]
    for row_index, raw in enumerate(sheet.iter_rows(min_row=2, values_only=True), start=2):
        if any(cell is not None for cell in raw):
            yield LedgerEntry(row_index=row_index, record=deserialize_record(raw, serial_width=serial_width))


def read_ledger_entry(
    workbook: Workbook, sheet_name: str, row_index: int, *, serial_width: int
) -> Optional[LedgerEntry]:
    """Return the ledger row at ``row_index`` or ``None`` when it is empty or out of range."""

    sheet = workbook[sheet_name]
    if row_index < 2 or row_index > sheet.max_row:
        return None
    raw = next(
        sheet.iter_rows(
            min_row=row_index,
            max_row=row_index,
            max_col=len(LEDGER_HEADERS),
            values_only=True,
        )
    )
    if not any(cell is not None for cell in raw):
        return None
    return LedgerEntry(row_index=row_index, record=deserialize_record(raw, serial_width=serial_width))


def append_ledger_record(workbook: Workbook, sheet_name: str, record: LedgerRecord) -> int:
    """Append a record to the ledger sheet and return its row index."""

    sheet = workbook[sheet_name]
    sheet.append(serialize_record(record))
    return sheet.max_row


def update_ledger_cells(
    workbook: Workbook, sheet_name: str, row_index: int, values: Mapping[int, object]
) -> None:
    """Overwrite selected cells of one ledger row.

    Args:
        workbook (Workbook): Workbook containing the ledger sheet.
        sheet_name (str): Title of the ledger sheet.
        row_index (int): 1-based row to patch; the header row is refused.
        values (Mapping[int, object]): Column position to new cell value.

    Raises:
        KeyError: If ``row_index`` points at the header or past the last row,
            or a column lies outside the ledger layout.
    """

    sheet = workbook[sheet_name]
    if row_index < 2 or row_index > sheet.max_row:
        raise KeyError(f"Ledger row not found: {row_index}")
    for column, value in values.items():
        if not 1 <= int(column) <= len(LEDGER_HEADERS):
            raise KeyError(f"Unknown ledger column: {column}")
        sheet.cell(row=row_index, column=int(column), value=value)


def clear_ledger(workbook: Workbook, sheet_name: str) -> int:
    """Delete every row below the header and return how many were removed."""

    sheet = workbook[sheet_name]
    removed = max(sheet.max_row - 1, 0)
    if removed:
        sheet.delete_rows(2, removed)
    return removed


def iter_users(workbook: Workbook, sheet_name: str) -> Iterator[UserRow]:
    """Iterate over the user directory sheet, skipping rows without an id."""

    sheet = workbook[sheet_name]
    for raw in sheet.iter_rows(min_row=2, max_col=2, values_only=True):
        user_id, display_name = (tuple(raw) + (None, None))[:2]
        if user_id is None or str(user_id).strip() == "":
            continue
        yield UserRow(user_id=str(user_id), display_name=_text(display_name))


def append_user(workbook: Workbook, sheet_name: str, record: UserRow) -> None:
    """Append a user to the directory sheet."""

    workbook[sheet_name].append([record.user_id, record.display_name])


def serialize_record(record: LedgerRecord) -> list[object]:
    """Convert a ledger record into the worksheet column ordering.

    The serial is kept as text so leading zeros survive a round trip through
    the spreadsheet.
    """

    return [
        record.category,
        str(record.serial),
        record.name,
        record.model,
        record.spec,
        record.unit,
        int(record.quantity),
        record.transaction_type,
        record.status,
        record.void_reason,
        record.source_actor,
        record.timestamp,
        record.photo_ref,
    ]


def deserialize_record(raw_row: Sequence[object], *, serial_width: int) -> LedgerRecord:
    """Convert a raw worksheet row into a strongly typed ledger record.

    Short rows are padded with blanks, text columns default to empty strings,
    numeric serials are re-padded to ``serial_width`` and the quantity is
    coerced to ``int``.

    Args:
        raw_row (Sequence[object]): Raw cell values in worksheet order.
        serial_width (int): Width numeric serials are zero-padded to.

    Returns:
        LedgerRecord: Dataclass reflecting the row contents.
    """

    values = list(raw_row[: len(LEDGER_HEADERS)])
    values += [None] * (len(LEDGER_HEADERS) - len(values))

    def at(column: LedgerColumn) -> object:
        return values[column - 1]

    return LedgerRecord(
        category=_text(at(LedgerColumn.CATEGORY)),
        serial=normalize_serial(at(LedgerColumn.SERIAL), serial_width),
        name=_text(at(LedgerColumn.NAME)),
        model=_text(at(LedgerColumn.MODEL)),
        spec=_text(at(LedgerColumn.SPEC)),
        unit=_text(at(LedgerColumn.UNIT)),
        quantity=_quantity(at(LedgerColumn.QUANTITY)),
        transaction_type=_text(at(LedgerColumn.TRANSACTION_TYPE)),
        status=_text(at(LedgerColumn.STATUS)),
        void_reason=_text(at(LedgerColumn.VOID_REASON)),
        source_actor=_text(at(LedgerColumn.SOURCE_ACTOR)),
        timestamp=_text(at(LedgerColumn.TIMESTAMP)),
        photo_ref=_text(at(LedgerColumn.PHOTO_REF)),
    )


def normalize_serial(value: object, width: int) -> str:
    """Render a serial cell as zero-padded text."""

    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(int(value)).zfill(width)
    text = str(value).strip().lstrip("'")
    if text.isdigit():
        return text.zfill(width)
    return text


def _text(value: object) -> str:
    return "" if value is None else str(value)


def _quantity(value: object) -> int:
    if value is None or value == "":
        return 0
    try:
        return int(Decimal(str(value)))
    except (InvalidOperation, ValueError):
        log.warning("Non-numeric quantity cell %r treated as 0", value)
        return 0
