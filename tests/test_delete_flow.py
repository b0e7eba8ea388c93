"""Conversation tests for deleting (voiding) a ledger row."""

from __future__ import annotations

import asyncio
from datetime import datetime
from zoneinfo import ZoneInfo

from stockbot.archive import ArchivalJob
from stockbot.constants import SessionState, TransactionType
from stockbot.postback import DeleteConfirm, DeleteRequested, parse_postback


def _seed(store, record_factory):
    asyncio.run(store.append(record_factory(quantity=5), "Alice"))
    entry = asyncio.run(
        store.append(record_factory(quantity=-2, transaction_type=TransactionType.OUTBOUND), "Alice")
    ).value
    return entry.row_index


def test_delete_voids_the_row(chat, store, record_factory):
    row = _seed(store, record_factory)
    alice = chat()

    [prompt] = alice.press(DeleteRequested(row).to_data())
    assert prompt.text == "Delete the Outbound record of Widget?"
    assert [parse_postback(b.data) for b in prompt.quick_replies] == [DeleteConfirm(True), DeleteConfirm(False)]
    assert alice.session.state is SessionState.DELETE_AWAITING_CONFIRMATION

    assert alice.press(DeleteConfirm(True).to_data())[0].text == "The record has been deleted."

    record = asyncio.run(store.read_row(row)).value.record
    assert not record.is_valid
    assert (record.void_reason, record.source_actor) == ("Data error", "Alice")
    assert asyncio.run(store.get_by_key("A001")).value.quantity == 5
    assert alice.session.state is None


def test_declining_keeps_the_row(chat, store, record_factory):
    row = _seed(store, record_factory)
    alice = chat()
    alice.press(DeleteRequested(row).to_data())

    assert alice.press(DeleteConfirm(False).to_data())[0].text == "Cancelled."
    assert asyncio.run(store.read_row(row)).value.record.is_valid


def test_request_for_void_row_is_rejected(chat, store, record_factory):
    row = _seed(store, record_factory)
    asyncio.run(store.void(row, "Data error", "Bob"))

    assert chat().press(DeleteRequested(row).to_data())[0].text == "That record has already been voided."


def test_row_voided_before_confirmation(chat, store, record_factory):
    """A concurrent delete of the same row is reported, not repeated."""

    row = _seed(store, record_factory)
    alice, bob = chat(), chat("U-bob")
    alice.press(DeleteRequested(row).to_data())
    bob.press(DeleteRequested(row).to_data())
    bob.press(DeleteConfirm(True).to_data())

    assert alice.press(DeleteConfirm(True).to_data())[0].text == "That record has already been voided."
    assert asyncio.run(store.read_row(row)).value.record.source_actor == "Bob"


def test_confirmation_without_request_is_ignored(chat, store, record_factory):
    _seed(store, record_factory)
    assert chat().press(DeleteConfirm(True).to_data()) == []


def test_delete_spanning_the_monthly_reset_is_abandoned(chat, store, record_factory):
    """A confirmation after the reset must not void the opening balance now stored at that row."""

    row = _seed(store, record_factory)
    asyncio.run(store.append(record_factory(serial="002", name="Nut", quantity=2), "Alice"))
    alice = chat()
    alice.press(DeleteRequested(row).to_data())

    asyncio.run(ArchivalJob(store).run(datetime(2026, 4, 1, 0, 5, tzinfo=ZoneInfo("Asia/Taipei"))))

    assert alice.press(DeleteConfirm(True).to_data())[0].text == "That record no longer exists."
    assert all(entry.record.is_valid for entry in asyncio.run(store.entries()).value)
    assert asyncio.run(store.get_by_key("A002")).value.quantity == 2
