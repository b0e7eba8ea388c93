"""Unit tests describing the CLI presentation layer contract."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import io

import pytest

from stockbot import cli
from stockbot.events import EventKind
from stockbot.ledger import LedgerError
from stockbot.messages import TextMessage
from stockbot.postback import AddOptionChosen


COMMANDS = {"init", "stock", "log", "archive", "chat", "schedule"}

ADD_WIDGET = [
    "!action=add",
    "!add_category=A",
    "Widget",
    "!" + AddOptionChosen("model").to_data(),
    "10mm",
    "!" + AddOptionChosen("unit", "pcs").to_data(),
    "5",
    "!add_confirm=yes",
    "/quit",
]


@pytest.fixture
def cli_parser() -> argparse.ArgumentParser:
    return cli.build_parser()


def _registered_choices(parser: argparse.ArgumentParser):
    for action in parser._actions:
        if isinstance(action, argparse._SubParsersAction):
            return action.choices
    return {}


def _chat_as(config_file, monkeypatch, lines, *, user="U-zed", name="Zed") -> int:
    monkeypatch.setattr("sys.stdin", io.StringIO("\n".join(lines) + "\n"))
    return cli.main(["--config", str(config_file), "chat", "--user", user, "--name", name])


# ---------------------------------------------------------------------------
# Parser construction
# ---------------------------------------------------------------------------


def test_build_parser_sets_program_metadata(cli_parser):
    assert cli_parser.prog == "stockbot"
    assert cli_parser.parse_args([]).config is None


def test_config_option_precedes_the_command(cli_parser):
    cli.configure_subcommands(cli_parser)

    namespace = cli_parser.parse_args(["--config", "x.ini", "stock"])

    assert (namespace.command, namespace.config.name) == ("stock", "x.ini")


def test_configure_subcommands_registers_every_command(cli_parser):
    command_table = cli.configure_subcommands(cli_parser)

    assert set(command_table) == COMMANDS
    assert set(_registered_choices(cli_parser)) == COMMANDS
    for spec in command_table.values():
        assert isinstance(spec, cli.CommandSpec)
        assert spec.help_text


def test_chat_requires_a_user(cli_parser):
    cli.configure_subcommands(cli_parser)

    with pytest.raises(SystemExit):
        cli_parser.parse_args(["chat"])
    namespace = cli_parser.parse_args(["chat", "--user", "U1", "--name", "Una"])
    assert (namespace.command, namespace.user, namespace.name) == ("chat", "U1", "Una")


def test_archive_accepts_as_of(cli_parser):
    cli.configure_subcommands(cli_parser)

    assert cli_parser.parse_args(["archive", "--as-of", "2026-03-01T00:05"]).as_of == "2026-03-01T00:05"
    assert cli_parser.parse_args(["archive"]).as_of is None


# ---------------------------------------------------------------------------
# Dispatch and error handling
# ---------------------------------------------------------------------------


def test_build_command_table_rejects_duplicates():
    spec = cli.CommandSpec(name="stock", help_text="x", register=lambda action: None, execute=lambda args: 0)

    with pytest.raises(ValueError):
        cli.build_command_table([spec, spec])


def test_dispatch_command_invokes_executor():
    seen = []
    spec = cli.CommandSpec(
        name="stock",
        help_text="x",
        register=lambda action: None,
        execute=lambda args: seen.append(args.command) or 7,
    )

    assert cli.dispatch_command(argparse.Namespace(command="stock"), {"stock": spec}) == 7
    assert seen == ["stock"]


def test_dispatch_command_unknown_raises():
    with pytest.raises(KeyError):
        cli.dispatch_command(argparse.Namespace(command="bogus"), {})
    with pytest.raises(KeyError):
        cli.dispatch_command(argparse.Namespace(), {})


@pytest.mark.parametrize(
    ("error", "code"),
    [
        (FileNotFoundError("missing"), 3),
        (LedgerError("broken"), 2),
        (RuntimeError("schema"), 2),
        (ValueError("bad"), 1),
    ],
)
def test_handle_cli_error_exit_codes(error, code):
    assert cli.handle_cli_error(error) == code


def test_missing_config_exits_with_three(tmp_path):
    assert cli.main(["--config", str(tmp_path / "absent.ini"), "stock"]) == 3


def test_schema_mismatch_exits_with_two(config_factory):
    bundle = config_factory(schema_version="9.9.9")

    assert cli.main(["--config", str(bundle.config_path), "stock"]) == 2


# ---------------------------------------------------------------------------
# Commands end to end
# ---------------------------------------------------------------------------


def test_init_refuses_to_overwrite_without_force(config_file, capsys):
    assert cli.main(["--config", str(config_file), "init"]) == 1
    assert cli.main(["--config", str(config_file), "init", "--force"]) == 0
    assert "Created inventory workbook" in capsys.readouterr().out


def test_stock_report_on_empty_ledger(config_file, capsys):
    assert cli.main(["--config", str(config_file), "stock"]) == 0
    assert capsys.readouterr().out.strip() == "Inventory is empty."


def test_reports_follow_redirected_stdout(config_file):
    buffer = io.StringIO()
    with contextlib.redirect_stdout(buffer):
        assert cli.main(["--config", str(config_file), "stock"]) == 0

    assert buffer.getvalue().strip() == "Inventory is empty."


def test_reports_write_to_explicit_stream(config_file):
    out = io.StringIO()
    args = argparse.Namespace(config=config_file)

    assert cli.run_stock_report(args, out=out) == 0
    assert cli.run_log_report(args, out=out) == 0
    assert out.getvalue() == "Inventory is empty.\n"


def test_chat_then_reports(config_file, monkeypatch, capsys):
    assert _chat_as(config_file, monkeypatch, ADD_WIDGET) == 0
    transcript = capsys.readouterr().out
    assert "Category A selected. Enter the item name:" in transcript
    assert "Item A001 has been added." in transcript

    assert cli.main(["--config", str(config_file), "stock"]) == 0
    [line] = capsys.readouterr().out.splitlines()
    assert line.split() == ["A001", "Widget", "-", "10mm", "5", "pcs"]

    assert cli.main(["--config", str(config_file), "log"]) == 0
    [row] = capsys.readouterr().out.splitlines()
    assert row.split()[:7] == ["2", "A001", "Widget", "New", "5", "Valid", "Zed"]


def test_archive_command_statuses(config_file, monkeypatch, capsys):
    as_of = ["archive", "--as-of", "2026-03-01T00:05"]

    assert cli.main(["--config", str(config_file), *as_of]) == 0
    assert capsys.readouterr().out.startswith("Archive 2026-02: empty")

    _chat_as(config_file, monkeypatch, ADD_WIDGET)
    capsys.readouterr()

    assert cli.main(["--config", str(config_file), *as_of]) == 0
    assert "Archive 2026-02: completed (1 rows archived, 1 balances carried forward)" in capsys.readouterr().out
    assert cli.main(["--config", str(config_file), *as_of]) == 2
    assert "skipped_duplicate" in capsys.readouterr().out


def test_schedule_without_archive_section_fails(config_file):
    text = config_file.read_text(encoding="utf-8")
    config_file.write_text(text.split("[Archive]")[0], encoding="utf-8")

    assert cli.main(["--config", str(config_file), "schedule"]) == 1


# ---------------------------------------------------------------------------
# chat_session
# ---------------------------------------------------------------------------


class _RecordingBot:
    def __init__(self) -> None:
        self.events = []
        self.closed = False

    async def handle_event(self, event):
        self.events.append(event)
        return [TextMessage(text=f"echo {len(self.events)}")]

    async def aclose(self):
        self.closed = True


def test_chat_session_routes_lines_and_stops_at_quit():
    bot = _RecordingBot()
    written = []

    lines = ["  hello ", "", "! action=help", "/quit", "never sent"]
    assert asyncio.run(cli.chat_session(bot, "U1", lines, written.append)) == 0

    assert [(event.kind, event.text, event.postback_data) for event in bot.events] == [
        (EventKind.MESSAGE, "hello", None),
        (EventKind.POSTBACK, None, "action=help"),
    ]
    assert written == ["echo 1", "echo 2"]
    assert bot.closed


def test_chat_session_closes_bot_on_error():
    class _Failing(_RecordingBot):
        async def handle_event(self, event):
            raise RuntimeError("down")

    bot = _Failing()
    with pytest.raises(RuntimeError):
        asyncio.run(cli.chat_session(bot, "U1", ["hi"], print))
    assert bot.closed
