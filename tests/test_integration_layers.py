"""Integration tests describing an end-to-end month of stock bot usage.

These scenarios drive the bot the way chat users do and check that the
workflows, the ledger store and the archival job agree on the inventory.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

from stockbot import data_manager
from stockbot.archive import ArchivalJob, ArchiveStatus
from stockbot.constants import EditStockOption, QueryType, RecordStatus, SearchMethod, StockAction, TransactionType
from stockbot.messages import Carousel
from stockbot.postback import (
    AddOptionChosen,
    DeleteConfirm,
    DeleteRequested,
    EditStart,
    EditStockChoice,
    QueryTypeChosen,
    StockSearchTypeChosen,
)


def _stock(store, key="A001"):
    return asyncio.run(store.get_by_key(key)).value.quantity


def _move(conversation, action: StockAction, quantity: str):
    conversation.press(f"action={action.value}")
    conversation.press(StockSearchTypeChosen(action, SearchMethod.BY_SERIAL).to_data())
    conversation.say("a001")
    conversation.say("A001")
    conversation.say(quantity)
    return conversation.press("stock_confirm=yes")


def test_month_of_activity_then_archive(chat, store, settings):
    alice, bob = chat(), chat("U-bob")

    # Alice registers the item with five pieces.
    alice.press("action=add")
    alice.press("add_category=A")
    alice.say("Widget")
    alice.press(AddOptionChosen("model").to_data())
    alice.say("10mm")
    alice.press(AddOptionChosen("unit", "pcs").to_data())
    alice.say("5")
    assert alice.press("add_confirm=yes")[0].text == "Item A001 has been added."

    assert _move(bob, StockAction.OUTBOUND, "2")[0].text.endswith("Stock is now 3 pcs.")
    assert _move(alice, StockAction.INBOUND, "4")[0].text.endswith("Stock is now 7 pcs.")

    # Bob took one piece, not two: the outbound row is corrected.
    [bobs] = bob.press("action=edit")
    assert isinstance(bobs, Carousel) and len(bobs.cards) == 1
    bob.press(EditStart(3, "stock").to_data())
    bob.press(EditStockChoice(EditStockOption.QUANTITY).to_data())
    bob.say("1")
    assert bob.press(EditStockChoice(EditStockOption.FINISH).to_data())[0].text == "Your correction has been saved."
    assert _stock(store) == 8

    # Alice's inbound was entered by mistake.
    alice.press(DeleteRequested(4).to_data())
    assert alice.press(DeleteConfirm(True).to_data())[0].text == "The record has been deleted."
    assert _stock(store) == 4

    [card] = alice.press(QueryTypeChosen(QueryType.ALL).to_data())
    assert card.title == "Widget"

    rows = [entry.record for entry in asyncio.run(store.entries()).value]
    assert [(r.transaction_type, r.quantity, r.status) for r in rows] == [
        (TransactionType.NEW.value, 5, RecordStatus.VALID.value),
        (TransactionType.OUTBOUND.value, -2, RecordStatus.VOID.value),
        (TransactionType.INBOUND.value, 4, RecordStatus.VOID.value),
        (TransactionType.OUTBOUND.value, -1, RecordStatus.VALID.value),
    ]
    assert sum(r.quantity for r in rows if r.is_valid) == 4

    outcome = asyncio.run(ArchivalJob(store).run(datetime(2026, 4, 1, 0, 5, tzinfo=ZoneInfo("Asia/Taipei"))))

    assert outcome.status is ArchiveStatus.COMPLETED
    assert (outcome.period, outcome.archived_rows, outcome.carried_items) == ("2026-03", 4, 1)
    assert _stock(store) == 4

    # The next month continues from the opening balance.
    assert _move(bob, StockAction.OUTBOUND, "4")[0].text.endswith("Stock is now 0 pcs.")
    reopened = data_manager.open_workbook(settings.data_file)
    assert "Archive_2026-03" in reopened.sheetnames
    ledger = list(data_manager.iter_ledger_entries(reopened, settings.ledger_sheet, serial_width=settings.serial_width))
    assert len(ledger) == 2
