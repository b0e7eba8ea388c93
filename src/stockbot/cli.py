"""Command-line entry points for the stock bot.

All orchestration in this module is limited to argparse wiring and
translating command-line arguments into calls on the ledger store, the bot
and the archival job. The same command table serves the tests and the
``stockbot`` console script.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, Iterable, Mapping, MutableMapping, Optional, Sequence, TextIO

from . import log, setup_excel
from .archive import ArchivalJob, ArchiveScheduler, ArchiveStatus
from .bot import InventoryBot, build_bot
from .events import InboundEvent
from .ledger import LedgerError, LedgerStore
from .messages import to_plain_text
from .runtime import load_settings, open_store


@dataclass(frozen=True)
class CommandSpec:
    """Describe how a CLI sub-command is configured and executed."""

    name: str
    help_text: str
    register: Callable[[argparse._SubParsersAction[argparse.ArgumentParser]], argparse.ArgumentParser]
    execute: Callable[[argparse.Namespace], int]


def build_parser() -> argparse.ArgumentParser:
    """Construct the top-level CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="stockbot",
        description="Chat-driven inventory ledger tools.",
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional path to config.ini (defaults to searching upward from the working directory).",
    )
    return parser


def configure_subcommands(
    parser: argparse.ArgumentParser,
) -> Mapping[str, CommandSpec]:
    """Wire all CLI sub-commands onto the supplied parser."""
    subparsers = parser.add_subparsers(dest="command", required=True, title="commands")
    specs = [
        register_init_command(subparsers),
        register_stock_command(subparsers),
        register_log_command(subparsers),
        register_archive_command(subparsers),
        register_chat_command(subparsers),
        register_schedule_command(subparsers),
    ]
    for spec in specs:
        spec.register(subparsers)
    return build_command_table(specs)


def register_init_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``init``."""
    name = "init"
    help_text = "Create an empty inventory workbook."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--force", action="store_true", help="Overwrite an existing workbook.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_init)


def register_stock_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``stock``."""
    name = "stock"
    help_text = "Display current stock levels."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_stock_report)


def register_log_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``log``."""
    name = "log"
    help_text = "Display the ledger rows."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_log_report)


def register_archive_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``archive``."""
    name = "archive"
    help_text = "Archive the previous month and reset the ledger to opening balances."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument(
            "--as-of",
            dest="as_of",
            default=None,
            help="Run as if it were this ISO date/time (local time zone); the month before is archived.",
        )
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_archive)


def register_chat_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``chat``."""
    name = "chat"
    help_text = "Talk to the bot from the terminal; lines starting with '!' are sent as button presses."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.add_argument("--user", required=True, help="User id to chat as.")
        parser.add_argument("--name", default=None, help="Display name to register for a new user id.")
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_chat)


def register_schedule_command(
    subparsers: argparse._SubParsersAction[argparse.ArgumentParser],
) -> CommandSpec:
    """Register the parser and executor for ``schedule``."""
    name = "schedule"
    help_text = "Run the monthly archival on its configured schedule until interrupted."

    def registrar(action: argparse._SubParsersAction[argparse.ArgumentParser]) -> argparse.ArgumentParser:
        parser = action.add_parser(name, help=help_text)
        parser.set_defaults(command=name)
        return parser

    return CommandSpec(name=name, help_text=help_text, register=registrar, execute=run_schedule)


def dispatch_command(
    args: argparse.Namespace,
    command_table: Mapping[str, CommandSpec],
) -> int:
    """Dispatch the parsed arguments to the configured executor."""
    if not hasattr(args, "command") or args.command is None:
        raise KeyError("No command specified")
    spec = command_table.get(args.command)
    if spec is None:
        raise KeyError(f"Unknown command: {args.command}")
    return spec.execute(args)


def build_command_table(
    specs: Iterable[CommandSpec],
) -> MutableMapping[str, CommandSpec]:
    """Build an index of command specifications keyed by command name."""
    table: Dict[str, CommandSpec] = {}
    for spec in specs:
        if spec.name in table:
            raise ValueError(f"Duplicate command name: {spec.name}")
        table[spec.name] = spec
    return table


def load_store(config_path: Optional[Path]) -> LedgerStore:
    """Resolve the configuration and open the ledger store."""
    return open_store(load_settings(config_path))


def run_init(args: argparse.Namespace) -> int:
    """Create the workbook named by the configuration."""
    settings = load_settings(args.config)
    destination = setup_excel.create_inventory_workbook(
        settings.data_file,
        sheet_columns=setup_excel.default_sheet_columns(settings.ledger_sheet, settings.users_sheet),
        overwrite=args.force,
    )
    print(f"Created inventory workbook at '{destination}'.")
    return 0


def run_stock_report(args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Print the current inventory to ``out`` (standard output by default)."""
    out = out or sys.stdout
    store = load_store(args.config)
    view = asyncio.run(store.inventory_view())
    if not view.ok:
        raise LedgerError(view.error or "ledger unavailable")
    items = sorted(view.value.values(), key=lambda item: (item.category, item.serial))
    if not items:
        print("Inventory is empty.", file=out)
    for item in items:
        print(
            f"{item.composite_key:<8} {item.name:<24} {item.model or '-':<12} {item.spec or '-':<12} "
            f"{item.quantity:>6} {item.unit}",
            file=out,
        )
    return 0


def run_log_report(args: argparse.Namespace, out: Optional[TextIO] = None) -> int:
    """Print every ledger row with its row index."""
    out = out or sys.stdout
    store = load_store(args.config)
    rows = asyncio.run(store.entries())
    if not rows.ok:
        raise LedgerError(rows.error or "ledger unavailable")
    for entry in rows.value:
        record = entry.record
        reason = f" ({record.void_reason})" if record.void_reason else ""
        print(
            f"{entry.row_index:>5} {record.composite_key:<8} {record.name:<24} {record.transaction_type:<15} "
            f"{record.quantity:>6} {record.status:<5} {record.source_actor} {record.timestamp}{reason}",
            file=out,
        )
    return 0


def run_archive(args: argparse.Namespace) -> int:
    """Run the archival job once."""
    store = load_store(args.config)
    now = None
    if args.as_of:
        now = datetime.fromisoformat(args.as_of)
        if now.tzinfo is None:
            now = now.replace(tzinfo=store.settings.tzinfo)
    outcome = asyncio.run(ArchivalJob(store).run(now))
    print(
        f"Archive {outcome.period}: {outcome.status.value} "
        f"({outcome.archived_rows} rows archived, {outcome.carried_items} balances carried forward)"
    )
    if outcome.status is ArchiveStatus.FAILED:
        return 1
    if outcome.status is ArchiveStatus.SKIPPED_DUPLICATE:
        return 2
    return 0


async def chat_session(
    bot: InventoryBot,
    user_id: str,
    lines: Iterable[str],
    write: Callable[[str], None],
) -> int:
    """Feed terminal lines to the bot as events of ``user_id`` and print the replies."""
    try:
        for line in lines:
            line = line.strip()
            if not line:
                continue
            if line in ("/quit", "/exit"):
                break
            if line.startswith("!"):
                event = InboundEvent.postback(user_id, line[1:].strip())
            else:
                event = InboundEvent.message(user_id, line)
            for message in await bot.handle_event(event):
                write(to_plain_text(message))
    finally:
        await bot.aclose()
    return 0


def run_chat(args: argparse.Namespace) -> int:
    """Drive a conversation from standard input."""
    settings = load_settings(args.config)
    store = open_store(settings)
    bot = build_bot(settings, store)

    async def _chat() -> int:
        if args.name:
            users = await store.users_map()
            if users.ok and args.user not in users.value:
                await store.register_user(args.user, args.name)
        print("Type messages; start a line with '!' to press a button, '/quit' to leave.")
        print("Try: !action=query  !action=add  !action=inbound  !action=edit")
        return await chat_session(bot, args.user, sys.stdin, print)

    return asyncio.run(_chat())


def run_schedule(args: argparse.Namespace) -> int:
    """Run the archive scheduler until interrupted."""
    store = load_store(args.config)
    schedule = store.settings.archive_schedule
    if schedule is None:
        log.error("No valid [Archive] schedule configured")
        return 1
    scheduler = ArchiveScheduler(ArchivalJob(store), schedule)
    try:
        asyncio.run(scheduler.run_forever())
    except KeyboardInterrupt:
        log.info("Archive scheduler stopped")
    return 0


def handle_cli_error(error: Exception) -> int:
    """Convert raised exceptions into user-friendly exit codes."""
    if isinstance(error, FileNotFoundError):
        log.error("%s", error)
        return 3
    if isinstance(error, (LedgerError, RuntimeError)):
        log.error("%s", error)
        return 2
    log.error("%s", error)
    return 1


def main(argv: Sequence[str] | None = None) -> int:
    """CLI entry point that orchestrates parsing and execution."""
    parser = build_parser()
    command_table = configure_subcommands(parser)
    args = parser.parse_args(argv)
    try:
        return dispatch_command(args, command_table)
    except Exception as error:  # pragma: no cover - centralised error handler tested separately
        return handle_cli_error(error)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
