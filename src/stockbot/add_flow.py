"""Add workflow: a wizard that collects a new item and records it as a ``New`` row.

Steps: category, name, model (skippable), spec (skippable), unit (button or
typed), initial quantity, confirmation. On confirmation the item is checked
for duplicates by name, model and spec, a serial is allocated in the chosen
category and the row is appended.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from . import log
from .constants import FlowType, SessionState, TransactionType
from .data_manager import LedgerRecord
from .events import InboundEvent
from .messages import Button, Message
from .postback import AddCategoryChosen, AddConfirm, AddOptionChosen, Postback
from .runtime import FlowContext, message_text, parse_quantity
from .sessions import Session


@dataclass
class AddDraft:
    category: str = ""
    name: str = ""
    model: str = ""
    spec: str = ""
    unit: str = ""
    quantity: int = 0


def start(session: Session, ctx: FlowContext) -> List[Message]:
    if not ctx.flows.categories:
        log.error("No categories configured in [Flows] Categories")
        return [ctx.text("ERROR_NO_CATEGORIES")]

    session.set_state(SessionState.ADD_AWAITING_CATEGORY)
    session.set_payload(FlowType.ADD, AddDraft())
    buttons = [Button(label, AddCategoryChosen(key).to_data()) for key, label in ctx.flows.categories]
    buttons.append(ctx.cancel_button())
    return [ctx.catalog.text("PROMPT_ADD_CATEGORY", quick_replies=buttons)]


async def handle(
    event: InboundEvent,
    postback: Optional[Postback],
    session: Session,
    ctx: FlowContext,
) -> List[Message]:
    draft: Optional[AddDraft] = session.get_payload(FlowType.ADD)
    if draft is None:
        log.warning("Add flow event for '%s' without a draft", event.user_id)
        return ctx.finish(session, "ERROR_SESSION_EXPIRED")

    state = session.state
    text = message_text(event.text) if event.is_message else None

    if state is SessionState.ADD_AWAITING_CATEGORY:
        if not isinstance(postback, AddCategoryChosen):
            return []
        if postback.category not in dict(ctx.flows.categories):
            log.warning("Unknown category '%s' chosen by '%s'", postback.category, event.user_id)
            return []
        draft.category = postback.category
        session.set_state(SessionState.ADD_AWAITING_NAME)
        return [ctx.text("PROMPT_ADD_NAME", category=draft.category)]

    if state is SessionState.ADD_AWAITING_NAME:
        if text is None:
            return []
        if not text:
            return [ctx.text("ERROR_EMPTY_INPUT")]
        draft.name = text
        session.set_state(SessionState.ADD_AWAITING_MODEL)
        skip = Button(ctx.catalog.render("LABEL_SKIP_MODEL"), AddOptionChosen("model").to_data())
        return [ctx.catalog.text("PROMPT_ADD_MODEL", quick_replies=[skip], name=draft.name)]

    if state is SessionState.ADD_AWAITING_MODEL:
        value = _option_or_text(postback, text, "model")
        if value is None:
            return []
        draft.model = value
        session.set_state(SessionState.ADD_AWAITING_SPEC)
        skip = Button(ctx.catalog.render("LABEL_SKIP_SPEC"), AddOptionChosen("spec").to_data())
        return [ctx.catalog.text("PROMPT_ADD_SPEC", quick_replies=[skip], model=draft.model or "-")]

    if state is SessionState.ADD_AWAITING_SPEC:
        value = _option_or_text(postback, text, "spec")
        if value is None:
            return []
        draft.spec = value
        session.set_state(SessionState.ADD_AWAITING_UNIT)
        return [ctx.catalog.text("PROMPT_ADD_UNIT", quick_replies=_unit_buttons(ctx), spec=draft.spec or "-")]

    if state is SessionState.ADD_AWAITING_UNIT:
        if isinstance(postback, AddOptionChosen) and postback.field == "unit" and postback.manual:
            session.set_state(SessionState.ADD_TYPING_UNIT)
            return [ctx.text("PROMPT_MANUAL_UNIT")]
        value = _option_or_text(postback, text, "unit")
        if not value:
            return []
        return _accept_unit(value, draft, session, ctx)

    if state is SessionState.ADD_TYPING_UNIT:
        if not text:
            return []
        return _accept_unit(text, draft, session, ctx)

    if state is SessionState.ADD_AWAITING_QUANTITY:
        quantity = parse_quantity(text, allow_zero=True)
        if quantity is None:
            return [ctx.text("ERROR_INVALID_QUANTITY")]
        draft.quantity = quantity
        session.set_state(SessionState.ADD_AWAITING_CONFIRMATION)
        buttons = [
            Button(ctx.catalog.render("LABEL_CONFIRM_ADD"), AddConfirm(True).to_data()),
            Button(ctx.catalog.render("LABEL_CANCEL"), AddConfirm(False).to_data()),
        ]
        return [
            ctx.catalog.text(
                "PROMPT_ADD_CONFIRM",
                quick_replies=buttons,
                category=draft.category,
                name=draft.name,
                model=draft.model or "-",
                spec=draft.spec or "-",
                unit=draft.unit,
                quantity=draft.quantity,
            )
        ]

    if state is SessionState.ADD_AWAITING_CONFIRMATION:
        if not isinstance(postback, AddConfirm):
            return []
        if not postback.confirmed:
            return ctx.finish(session, "MSG_CANCEL_CONFIRM")
        return await _commit(event, draft, session, ctx)

    log.warning("Add flow reached unexpected state %s", state)
    return ctx.finish(session)


def _option_or_text(postback: Optional[Postback], text: Optional[str], field: str) -> Optional[str]:
    """Value given by a matching quick-reply button or typed as text."""

    if isinstance(postback, AddOptionChosen) and postback.field == field and not postback.manual:
        return postback.value
    return text


def _unit_buttons(ctx: FlowContext) -> List[Button]:
    buttons = [Button(unit, AddOptionChosen("unit", unit).to_data()) for unit in ctx.flows.units]
    buttons.append(Button(ctx.catalog.render("LABEL_MANUAL_UNIT"), AddOptionChosen("unit", manual=True).to_data()))
    return buttons


def _accept_unit(unit: str, draft: AddDraft, session: Session, ctx: FlowContext) -> List[Message]:
    draft.unit = unit
    session.set_state(SessionState.ADD_AWAITING_QUANTITY)
    return [ctx.text("PROMPT_ADD_QUANTITY", unit=draft.unit)]


async def _commit(event: InboundEvent, draft: AddDraft, session: Session, ctx: FlowContext) -> List[Message]:
    duplicate = await ctx.store.exists(draft.name, draft.model, draft.spec)
    if not duplicate.ok:
        return ctx.finish(session)
    if duplicate.value:
        # Back to the name step; the category choice is kept.
        session.set_state(SessionState.ADD_AWAITING_NAME)
        message = ctx.text("ERROR_DUPLICATE_ITEM", name=draft.name, model=draft.model or "-", spec=draft.spec or "-")
        draft.name = ""
        return [message]

    serial = await ctx.store.allocate_serial(draft.category)
    if not serial.ok:
        return ctx.finish(session)

    actor = await ctx.actor_name(event.user_id)
    record = LedgerRecord(
        category=draft.category,
        serial=serial.value,
        name=draft.name,
        model=draft.model,
        spec=draft.spec,
        unit=draft.unit,
        quantity=draft.quantity,
        transaction_type=TransactionType.NEW.value,
    )
    appended = await ctx.store.append(record, actor)
    if not appended.ok:
        return ctx.finish(session)

    return ctx.finish(session, "MSG_ADD_SUCCESS", id=record.composite_key)
