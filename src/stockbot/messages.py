"""Outbound message descriptors and the text template catalog.

Descriptors are platform-neutral value objects. Buttons carry postback data
in the grammar of :mod:`stockbot.postback`; turning descriptors into the
platform's rich message JSON is the transport's business.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional, Sequence, Tuple, Union

from . import log
from .constants import MAX_CAROUSEL_CARDS


@dataclass(frozen=True)
class Button:
    label: str
    data: str


@dataclass(frozen=True)
class TextMessage:
    text: str
    quick_replies: Tuple[Button, ...] = ()


@dataclass(frozen=True)
class DetailCard:
    """A rich card: hero image, title, labeled fields and action buttons."""

    title: str
    image_url: str
    fields: Tuple[Tuple[str, str], ...] = ()
    buttons: Tuple[Button, ...] = ()
    notice: Optional[str] = None
    alt_text: str = ""


@dataclass(frozen=True)
class Carousel:
    cards: Tuple[DetailCard, ...]
    alt_text: str = ""

    def __post_init__(self) -> None:
        if not self.cards:
            raise ValueError("A carousel needs at least one card")
        if len(self.cards) > MAX_CAROUSEL_CARDS:
            raise ValueError(f"A carousel holds at most {MAX_CAROUSEL_CARDS} cards, got {len(self.cards)}")


Message = Union[TextMessage, DetailCard, Carousel]


DEFAULT_TEMPLATES: Dict[str, str] = {
    # general
    "MSG_HELP": (
        "Use the menu to get started:\n"
        "- Query: look up items and your own records\n"
        "- Add: register a new item\n"
        "- Inbound / Outbound: record stock movements\n"
        "- Edit: correct or delete your recent records"
    ),
    "MSG_CANCEL_CONFIRM": "Cancelled.",
    "INFO_WIP": "'{action}' is not available yet.",
    "ERROR_GENERIC": "Something went wrong. Please start again from the menu.",
    "ERROR_SESSION_EXPIRED": "That conversation has expired. Please start again from the menu.",
    "ERROR_INVALID_QUANTITY": "Please enter a valid whole number.",
    "ERROR_EMPTY_INPUT": "Please enter a value.",
    # query
    "PROMPT_QUERY_TYPE": "How would you like to search?",
    "PROMPT_QUERY_BY_NAME": "Enter (part of) the item name:",
    "PROMPT_QUERY_BY_SERIAL": "Enter the item serial (e.g. A001):",
    "MSG_QUERY_NOT_FOUND": "No matching items found.",
    "INFO_TOO_MANY_RESULTS_HEADER": "Found {count} items:\n",
    "TEMPLATE_ALL_INVENTORY_ITEM": "\n{id} {name} ({model}/{spec}): {stock} {unit}",
    "ALT_SINGLE_RESULT": "Result: {name}",
    "ALT_SEARCH_RESULTS": "Found {count} matching items",
    "INFO_NO_RECORDS": "You have no records yet.",
    "ALT_USER_RECORDS": "Your latest {count} records",
    "NOTICE_VOID_RECORD": "This record has been voided.",
    # add
    "ERROR_NO_CATEGORIES": "No categories are configured. Please contact an administrator.",
    "PROMPT_ADD_CATEGORY": "Choose a category for the new item:",
    "PROMPT_ADD_NAME": "Category {category} selected. Enter the item name:",
    "PROMPT_ADD_MODEL": "Name: {name}. Enter the model, or skip:",
    "PROMPT_ADD_SPEC": "Model: {model}. Enter the spec, or skip:",
    "PROMPT_ADD_UNIT": "Spec: {spec}. Choose a unit:",
    "PROMPT_MANUAL_UNIT": "Type the unit:",
    "PROMPT_ADD_QUANTITY": "Enter the initial quantity (in {unit}):",
    "PROMPT_ADD_CONFIRM": (
        "Please confirm the new item:\n"
        "Category: {category}\nName: {name}\nModel: {model}\nSpec: {spec}\n"
        "Quantity: {quantity} {unit}"
    ),
    "ERROR_DUPLICATE_ITEM": "An item named {name} ({model}/{spec}) already exists. Enter a different name:",
    "MSG_ADD_SUCCESS": "Item {id} has been added.",
    # stock movement
    "PROMPT_STOCK_SEARCH": "{action}: how would you like to find the item?",
    "PROMPT_STOCK_SELECT": "Pick an item below or type its serial.",
    "PROMPT_STOCK_QUANTITY": "{action} {name} (current stock {stock} {unit}). Enter the quantity:",
    "MSG_STOCK_INSUFFICIENT": "Not enough stock for {name}: only {current_stock} {unit} available.",
    "PROMPT_STOCK_CONFIRM": "Confirm {action} of {quantity} {unit} {name}?",
    "MSG_STOCK_SUCCESS": "{action} recorded for {name}. Stock is now {new_stock} {unit}.",
    # edit
    "PROMPT_NEW_ITEM_CHOICE": (
        "{leading}Editing item:\nName: {name}\nModel: {model}\nSpec: {spec}\n"
        "Quantity: {quantity} {unit}\nChoose a field to change, or save:"
    ),
    "PROMPT_EDIT_STOCK_CHOICE": (
        "{leading}Editing record of {name}:\nType: {type}\nQuantity: {quantity} {unit}\n"
        "Choose what to change, or save:"
    ),
    "PROMPT_EDIT_NEW_VALUE": "Enter the new {field}:",
    "PROMPT_EDIT_SELECT_UNIT": "Choose the new unit:",
    "PROMPT_EDIT_TYPE": "Choose the new record type:",
    "MSG_FIELD_UPDATED": "{field} updated.\n\n",
    "MSG_RECORD_UPDATED": "Record updated.\n\n",
    "MSG_EDIT_SUCCESS": "Your correction has been saved.",
    "ERROR_RECORD_NOT_FOUND": "That record no longer exists.",
    "ERROR_RECORD_VOID": "That record has already been voided.",
    "ERROR_NOT_EDITABLE": "Opening balance records cannot be edited.",
    "EDIT_VOID_REASON": "Edited by {actor}",
    "EDIT_REASON_CHANGED": "Corrected {fields}",
    "EDIT_REASON_UNCHANGED": "Edited without changes",
    # delete
    "PROMPT_DELETE_CONFIRM": "Delete the {type} record of {name}?",
    "MSG_DELETE_SUCCESS": "The record has been deleted.",
    # button labels
    "LABEL_QUERY_BY_NAME": "By name",
    "LABEL_QUERY_BY_SERIAL": "By serial",
    "LABEL_QUERY_ALL": "All inventory",
    "LABEL_QUERY_MY_RECORDS": "My records",
    "LABEL_CANCEL": "Cancel",
    "LABEL_SKIP_MODEL": "No model (skip)",
    "LABEL_SKIP_SPEC": "No spec (skip)",
    "LABEL_MANUAL_UNIT": "Type it",
    "LABEL_CONFIRM_ADD": "Confirm",
    "LABEL_CONFIRM_STOCK": "Confirm {action}",
    "LABEL_INBOUND": "Inbound",
    "LABEL_OUTBOUND": "Outbound",
    "LABEL_EDIT_FULL": "Edit record",
    "LABEL_EDIT_STOCK": "Edit quantity/type",
    "LABEL_EDIT_NAME": "Name",
    "LABEL_EDIT_MODEL": "Model",
    "LABEL_EDIT_SPEC": "Spec",
    "LABEL_EDIT_UNIT": "Unit",
    "LABEL_EDIT_QUANTITY": "Quantity",
    "LABEL_EDIT_TYPE": "Type",
    "LABEL_FINISH_EDIT": "Save",
    "LABEL_DELETE": "Delete",
    "LABEL_CONFIRM_DELETE": "Confirm delete",
    # card field labels
    "FIELD_NAME": "Name",
    "FIELD_MODEL": "Model",
    "FIELD_SPEC": "Spec",
    "FIELD_UNIT": "Unit",
    "FIELD_QUANTITY": "Quantity",
    "FIELD_STOCK": "Stock",
    "FIELD_SERIAL": "Serial",
    "FIELD_TYPE": "Type",
    "FIELD_TIME": "Time",
}


class _KeepMissing(dict):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


class MessageCatalog:
    """Named text templates with built-in defaults and config overrides."""

    def __init__(self, overrides: Optional[Mapping[str, str]] = None) -> None:
        self._templates: Dict[str, str] = dict(DEFAULT_TEMPLATES)
        for key, value in (overrides or {}).items():
            self._templates[key.upper()] = value.replace("\\n", "\n")

    def render(self, key: str, **values: object) -> str:
        """Fill ``key``'s template; unknown keys and placeholders stay visible."""

        template = self._templates.get(key)
        if template is None:
            log.warning("Missing message template '%s'", key)
            return f"[missing template {key}]"
        try:
            return template.format_map(_KeepMissing({name: str(value) for name, value in values.items()}))
        except (ValueError, IndexError, AttributeError) as exc:
            log.warning("Malformed message template '%s': %s", key, exc)
            return template

    def text(self, key: str, *, quick_replies: Sequence[Button] = (), **values: object) -> TextMessage:
        return TextMessage(text=self.render(key, **values), quick_replies=tuple(quick_replies))

    def __contains__(self, key: str) -> bool:
        return key in self._templates


def to_plain_text(message: Message) -> str:
    """Render a descriptor as terminal text (used by the CLI chat)."""

    if isinstance(message, TextMessage):
        lines = [message.text]
        lines.extend(f"  [{button.label}] !{button.data}" for button in message.quick_replies)
        return "\n".join(lines)
    if isinstance(message, DetailCard):
        lines = []
        if message.notice:
            lines.append(f"! {message.notice}")
        lines.append(f"== {message.title} ==")
        lines.extend(f"  {label}: {value}" for label, value in message.fields)
        lines.extend(f"  [{button.label}] !{button.data}" for button in message.buttons)
        return "\n".join(lines)
    return "\n\n".join(to_plain_text(card) for card in message.cards)
