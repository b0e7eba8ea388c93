"""Conversation tests for inbound and outbound stock movements."""

from __future__ import annotations

import asyncio

import pytest

from stockbot.constants import SearchMethod, SessionState, StockAction, TransactionType
from stockbot.messages import DetailCard, TextMessage
from stockbot.postback import StockItemSelected, StockSearchTypeChosen, parse_postback


@pytest.fixture
def widget(store, record_factory):
    """Widget A001 with five pieces in stock."""

    asyncio.run(store.append(record_factory(quantity=5), "Alice"))


def _stock(store, key="A001"):
    return asyncio.run(store.get_by_key(key)).value.quantity


def test_inbound_by_name_end_to_end(chat, store, widget):
    alice = chat()

    [prompt] = alice.press("action=inbound")
    assert prompt.text == "Inbound: how would you like to find the item?"
    assert [parse_postback(b.data) for b in prompt.quick_replies][:2] == [
        StockSearchTypeChosen(StockAction.INBOUND, SearchMethod.BY_NAME),
        StockSearchTypeChosen(StockAction.INBOUND, SearchMethod.BY_SERIAL),
    ]
    alice.press(StockSearchTypeChosen(StockAction.INBOUND, SearchMethod.BY_NAME).to_data())
    card, hint = alice.say("widg")
    assert isinstance(card, DetailCard)
    assert hint.text == "Pick an item below or type its serial."
    assert alice.session.state is SessionState.STOCK_AWAITING_SELECTION

    [ask] = alice.press(card.buttons[0].data)
    assert ask.text == "Inbound Widget (current stock 5 pcs). Enter the quantity:"
    assert alice.say("0")[0].text == "Please enter a valid whole number."
    assert alice.say("3")[0].text == "Confirm Inbound of 3 pcs Widget?"
    [done] = alice.press("stock_confirm=yes")

    assert done == TextMessage(text="Inbound recorded for Widget. Stock is now 8 pcs.")
    assert _stock(store) == 8
    last = asyncio.run(store.entries()).value[-1].record
    assert (last.transaction_type, last.quantity, last.source_actor) == (TransactionType.INBOUND.value, 3, "Alice")


def test_outbound_is_stored_negative(chat, store, widget):
    bob = chat("U-bob")
    bob.press("action=outbound")
    bob.press(StockSearchTypeChosen(StockAction.OUTBOUND, SearchMethod.BY_SERIAL).to_data())
    bob.say("a001")
    bob.say("A001")
    bob.say("2")

    assert bob.press("stock_confirm=yes")[0].text == "Outbound recorded for Widget. Stock is now 3 pcs."
    last = asyncio.run(store.entries()).value[-1].record
    assert (last.transaction_type, last.quantity, last.source_actor) == (TransactionType.OUTBOUND.value, -2, "Bob")


def test_outbound_beyond_stock_is_refused(chat, store, widget):
    alice = chat()
    alice.press(StockItemSelected(StockAction.OUTBOUND, "A001").to_data())

    [refusal] = alice.say("6")

    assert refusal.text == "Not enough stock for Widget: only 5 pcs available."
    assert alice.session.state is None
    assert len(asyncio.run(store.entries()).value) == 1


def test_stock_is_checked_again_at_confirmation(chat, store, widget):
    """Another user's outbound between quantity and confirmation is noticed."""

    alice, bob = chat(), chat("U-bob")
    alice.press(StockItemSelected(StockAction.OUTBOUND, "A001").to_data())
    alice.say("4")

    bob.press(StockItemSelected(StockAction.OUTBOUND, "A001").to_data())
    bob.say("3")
    bob.press("stock_confirm=yes")

    assert alice.press("stock_confirm=yes")[0].text == "Not enough stock for Widget: only 2 pcs available."
    assert _stock(store) == 2


def test_item_card_button_works_without_a_session(chat, widget):
    """Cards from a query carry their own action."""

    alice = chat()
    [ask] = alice.press("stock_select&action=outbound&key=a001")

    assert ask.text.startswith("Outbound Widget")
    assert alice.session.state is SessionState.STOCK_AWAITING_QUANTITY


def test_search_without_results_ends_the_flow(chat, widget):
    alice = chat()
    alice.press("action=inbound")
    alice.press(StockSearchTypeChosen(StockAction.INBOUND, SearchMethod.BY_NAME).to_data())

    assert alice.say("sprocket")[0].text == "No matching items found."
    assert alice.session.state is None


def test_unknown_key_at_selection(chat, widget):
    alice = chat()
    alice.press("action=inbound")
    alice.press(StockSearchTypeChosen(StockAction.INBOUND, SearchMethod.BY_NAME).to_data())
    alice.say("widget")

    assert alice.say("B999")[0].text == "No matching items found."
    assert alice.session.state is None


def test_cancel_at_confirmation_writes_nothing(chat, store, widget):
    alice = chat()
    alice.press(StockItemSelected(StockAction.INBOUND, "A001").to_data())
    alice.say("1")

    assert alice.press("stock_confirm=no")[0].text == "Cancelled."
    assert _stock(store) == 5
