"""Conversation tests for the add-item wizard."""

from __future__ import annotations

import asyncio
from dataclasses import replace

from stockbot.bot import InventoryBot
from stockbot.constants import SessionState, TransactionType
from stockbot.data_manager import FlowSettings
from stockbot.events import InboundEvent
from stockbot.messages import TextMessage
from stockbot.postback import AddCategoryChosen, AddOptionChosen, MenuCommand, parse_postback


def _walk_to_confirmation(conversation, *, name="Widget", quantity="5"):
    conversation.press("action=add")
    conversation.press("add_category=A")
    conversation.say(name)
    conversation.press(AddOptionChosen("model").to_data())
    conversation.say("10mm")
    conversation.press(AddOptionChosen("unit", "pcs").to_data())
    return conversation.say(quantity)


def test_add_happy_path_records_new_row(chat, store):
    alice = chat()

    [prompt] = alice.press("action=add")
    assert [parse_postback(b.data) for b in prompt.quick_replies] == [
        AddCategoryChosen("A"),
        AddCategoryChosen("B"),
        MenuCommand("cancel"),
    ]
    assert alice.press("add_category=A")[0].text == "Category A selected. Enter the item name:"
    assert alice.say("  Widget  ")[0].text.startswith("Name: Widget.")
    assert alice.press(AddOptionChosen("model").to_data())[0].text.startswith("Model: -.")
    [unit_prompt] = alice.say("10mm")
    assert [b.label for b in unit_prompt.quick_replies] == ["pcs", "box", "Type it"]
    alice.press(AddOptionChosen("unit", "pcs").to_data())
    [confirm] = alice.say("0")
    assert "Quantity: 0 pcs" in confirm.text

    [done] = alice.press("add_confirm=yes")

    assert done == TextMessage(text="Item A001 has been added.")
    assert alice.session.state is None
    [entry] = asyncio.run(store.entries()).value
    record = entry.record
    assert (record.composite_key, record.name, record.model, record.spec, record.unit) == (
        "A001", "Widget", "", "10mm", "pcs"
    )
    assert (record.quantity, record.transaction_type, record.source_actor) == (0, TransactionType.NEW.value, "Alice")


def test_serials_increase_per_category(chat, store):
    alice = chat()
    _walk_to_confirmation(alice, name="Widget")
    alice.press("add_confirm=yes")
    _walk_to_confirmation(alice, name="Gadget")

    assert alice.press("add_confirm=yes")[0].text == "Item A002 has been added."
    assert asyncio.run(store.inventory_view()).value["A002"].quantity == 5


def test_invalid_quantity_keeps_the_step(chat):
    alice = chat()
    _walk_to_confirmation(alice, quantity="lots")

    assert alice.session.state is SessionState.ADD_AWAITING_QUANTITY
    assert alice.say("-2")[0].text == "Please enter a valid whole number."
    assert "Quantity: 3 pcs" in alice.say("3")[0].text


def test_manual_unit_entry(chat):
    alice = chat()
    alice.press("action=add")
    alice.press("add_category=B")
    alice.say("Tape")
    alice.say("T-9")
    alice.press(AddOptionChosen("spec").to_data())

    assert alice.press(AddOptionChosen("unit", manual=True).to_data())[0].text == "Type the unit:"
    assert alice.session.state is SessionState.ADD_TYPING_UNIT
    assert alice.say("roll")[0].text == "Enter the initial quantity (in roll):"


def test_duplicate_item_returns_to_name_step(chat, store):
    alice = chat()
    _walk_to_confirmation(alice, name="Widget")
    alice.press("add_confirm=yes")
    _walk_to_confirmation(alice, name="Widget")

    [message] = alice.press("add_confirm=yes")

    assert message.text.startswith("An item named Widget (-/10mm) already exists.")
    assert alice.session.state is SessionState.ADD_AWAITING_NAME
    assert len(asyncio.run(store.entries()).value) == 1
    alice.say("Widget XL")
    alice.press(AddOptionChosen("model").to_data())
    alice.say("10mm")
    alice.press(AddOptionChosen("unit", "pcs").to_data())
    alice.say("1")
    assert alice.press("add_confirm=yes")[0].text == "Item A002 has been added."


def test_cancel_at_confirmation_writes_nothing(chat, store):
    alice = chat()
    _walk_to_confirmation(alice)

    assert alice.press("add_confirm=no")[0].text == "Cancelled."
    assert asyncio.run(store.entries()).value == []


def test_events_outside_the_step_are_ignored(chat):
    alice = chat()
    alice.press("action=add")

    assert alice.say("A") == []
    assert alice.press("add_category=Z") == []
    assert alice.session.state is SessionState.ADD_AWAITING_CATEGORY


def test_stale_confirmation_without_session(chat):
    """A button from an expired conversation is answered, not applied."""

    assert chat().press("add_confirm=yes")[0].text.startswith("That conversation has expired.")


def test_no_categories_configured(context):
    settings = replace(context.settings, flows=FlowSettings())
    bot = InventoryBot(replace(context, settings=settings))

    [message] = asyncio.run(bot.handle_event(InboundEvent.postback("U-alice", "action=add")))

    assert message.text.startswith("No categories are configured.")
    assert bot.sessions.get("U-alice").state is None


def test_unknown_user_is_recorded_with_fallback_name(chat, store):
    stranger = chat("U-stranger")
    _walk_to_confirmation(stranger)
    stranger.press("add_confirm=yes")

    [entry] = asyncio.run(store.entries()).value
    assert entry.record.source_actor == "Unknown user"
