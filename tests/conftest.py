"""Shared pytest fixtures and utilities for stock bot tests."""

from __future__ import annotations

import asyncio
import sys
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, Iterator, List
from zoneinfo import ZoneInfo

import pytest

# Ensure source packages are importable without installation.
PROJECT_ROOT = Path(__file__).resolve().parents[1]
SRC_DIR = PROJECT_ROOT / "src"

if str(SRC_DIR) not in sys.path:
    sys.path.insert(0, str(SRC_DIR))

from stockbot import constants, data_manager, setup_excel  # noqa: E402
from stockbot.bot import InventoryBot  # noqa: E402
from stockbot.directory import UserDirectory  # noqa: E402
from stockbot.events import InboundEvent  # noqa: E402
from stockbot.ledger import LedgerStore  # noqa: E402
from stockbot.messages import Message, MessageCatalog  # noqa: E402
from stockbot.runtime import FlowContext  # noqa: E402

TAIPEI = ZoneInfo("Asia/Taipei")
START_TIME = datetime(2026, 3, 15, 10, 0, 0, tzinfo=TAIPEI)
CATEGORIES = (("A", "Tools"), ("B", "Parts"))
KNOWN_USERS = (("U-alice", "Alice"), ("U-bob", "Bob"))

_CONFIG_TEMPLATE = (
    "[System]\n"
    "DataFile = {data_file}\n"
    "SchemaVersion = {schema_version}\n"
    "Timezone = Asia/Taipei\n"
    "SerialWidth = 3\n\n"
    "[Flows]\n"
    "Categories = A:Tools, B:Parts\n"
    "Units = pcs, box\n"
    "RecordsFetchLimit = 5\n\n"
    "[Archive]\n"
    "DayOfMonth = 1\n"
    "Hour = 0\n"
    "Minute = 5\n"
)


class SteppingClock:
    """Clock returning ``start`` and then one second later on every call."""

    def __init__(self, start: datetime = START_TIME, step: timedelta = timedelta(seconds=1)) -> None:
        self.current = start
        self.step = step

    def __call__(self) -> datetime:
        moment = self.current
        self.current += self.step
        return moment


@dataclass(frozen=True)
class ConfigBundle:
    """Container bundling together config metadata for tests."""

    directory: Path
    config_path: Path
    workbook_path: Path
    schema_version: str


@pytest.fixture(scope="session", autouse=True)
def _restore_sys_path() -> Iterator[None]:
    """Ensure sys.path modifications are undone after the test session."""

    original = sys.path.copy()
    try:
        yield
    finally:
        sys.path[:] = original


@pytest.fixture
def workbook_factory(tmp_path: Path) -> Callable[..., Path]:
    """Factory that creates an empty inventory workbook in a temp folder."""

    def _create_workbook(*, subdir: str | None = None, filename: str = "inventory.xlsx") -> Path:
        base_dir = tmp_path if subdir is None else tmp_path / subdir
        base_dir.mkdir(parents=True, exist_ok=True)
        return setup_excel.create_inventory_workbook(base_dir / filename, overwrite=True)

    return _create_workbook


@pytest.fixture
def workbook_path(workbook_factory: Callable[..., Path]) -> Path:
    """Return a fresh workbook with the known users already registered."""

    path = workbook_factory(subdir=f"workbook_{uuid.uuid4().hex}")
    workbook = data_manager.open_workbook(path)
    for user_id, name in KNOWN_USERS:
        data_manager.append_user(
            workbook,
            constants.SheetName.USERS.value,
            data_manager.UserRow(user_id=user_id, display_name=name),
        )
    data_manager.save_workbook(workbook, path)
    return path


@pytest.fixture
def config_factory(tmp_path: Path, workbook_factory: Callable[..., Path]) -> Callable[..., ConfigBundle]:
    """Provide a callable that creates config/workbook bundles on demand."""

    def _create_config(
        *,
        make_relative: bool = False,
        schema_version: str = constants.EXPECTED_SCHEMA_VERSION,
    ) -> ConfigBundle:
        bundle_dir_name = f"bundle_{uuid.uuid4().hex}"
        workbook_path = workbook_factory(subdir=bundle_dir_name)
        bundle_dir = workbook_path.parent
        data_file_entry = workbook_path.name if make_relative else str(workbook_path)
        config_path = bundle_dir / "config.ini"
        config_path.write_text(
            _CONFIG_TEMPLATE.format(data_file=data_file_entry, schema_version=schema_version),
            encoding="utf-8",
        )
        return ConfigBundle(
            directory=bundle_dir,
            config_path=config_path,
            workbook_path=workbook_path,
            schema_version=schema_version,
        )

    return _create_config


@pytest.fixture
def config_file(config_factory: Callable[..., ConfigBundle]) -> Path:
    """Convenience fixture returning only the config path."""

    return config_factory().config_path


@pytest.fixture
def settings(workbook_path: Path) -> data_manager.ConfigSettings:
    """Settings pointing at the fresh workbook, with two categories configured."""

    return data_manager.ConfigSettings(
        data_file=workbook_path,
        flows=data_manager.FlowSettings(categories=CATEGORIES, units=("pcs", "box")),
    )


@pytest.fixture
def clock() -> SteppingClock:
    return SteppingClock()


@pytest.fixture
def store(settings: data_manager.ConfigSettings, clock: SteppingClock) -> LedgerStore:
    """A ledger store over the fresh workbook that saves to disk after each write."""

    workbook = data_manager.open_workbook(settings.data_file)
    return LedgerStore(settings, workbook, clock=clock)


@pytest.fixture
def record_factory() -> Callable[..., data_manager.LedgerRecord]:
    """Build ledger records with sensible defaults for item ``A001``."""

    def _make(
        *,
        category: str = "A",
        serial: str = "001",
        name: str = "Widget",
        model: str = "W-1",
        spec: str = "10mm",
        unit: str = "pcs",
        quantity: int = 0,
        transaction_type: constants.TransactionType = constants.TransactionType.NEW,
        photo_ref: str = "",
    ) -> data_manager.LedgerRecord:
        return data_manager.LedgerRecord(
            category=category,
            serial=serial,
            name=name,
            model=model,
            spec=spec,
            unit=unit,
            quantity=quantity,
            transaction_type=transaction_type.value,
            photo_ref=photo_ref,
        )

    return _make


@pytest.fixture
def context(settings: data_manager.ConfigSettings, store: LedgerStore) -> FlowContext:
    """Flow context whose directory knows Alice and Bob and has no profile client."""

    return FlowContext(
        settings=settings,
        store=store,
        catalog=MessageCatalog(settings.messages),
        directory=UserDirectory(store, None, fallback_name=settings.flows.unknown_user),
    )


@pytest.fixture
def bot(context: FlowContext) -> InventoryBot:
    return InventoryBot(context)


class Conversation:
    """Drive the bot as one user, one event per call."""

    def __init__(self, bot: InventoryBot, user_id: str) -> None:
        self.bot = bot
        self.user_id = user_id

    def say(self, text: str) -> List[Message]:
        return asyncio.run(self.bot.handle_event(InboundEvent.message(self.user_id, text)))

    def press(self, data: str) -> List[Message]:
        return asyncio.run(self.bot.handle_event(InboundEvent.postback(self.user_id, data)))

    @property
    def session(self):
        return self.bot.sessions.get(self.user_id)


@pytest.fixture
def chat(bot: InventoryBot) -> Callable[[str], Conversation]:
    """Factory of conversations with the shared bot; defaults to Alice."""

    def _open(user_id: str = "U-alice") -> Conversation:
        return Conversation(bot, user_id)

    return _open
