"""Stock movement workflow: record inbound and outbound quantities.

Search method, search, item selection (button or typed serial), quantity,
confirmation. Outbound quantities are checked against current stock when
the quantity is entered and again right before the row is appended; a
shortfall ends the conversation without touching the ledger.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from . import log
from .constants import FlowType, SearchMethod, SessionState, StockAction
from .data_manager import LedgerRecord
from .events import InboundEvent
from .formatters import format_search_results
from .ledger import InventoryItem
from .messages import Button, Message
from .postback import Postback, StockConfirm, StockItemSelected, StockSearchTypeChosen
from .runtime import FlowContext, message_text, parse_quantity
from .sessions import Session


ACTION_LABELS = {
    StockAction.INBOUND: "LABEL_INBOUND",
    StockAction.OUTBOUND: "LABEL_OUTBOUND",
}

SEARCH_STATES = {
    SearchMethod.BY_NAME: (SessionState.STOCK_AWAITING_NAME_SEARCH, "PROMPT_QUERY_BY_NAME"),
    SearchMethod.BY_SERIAL: (SessionState.STOCK_AWAITING_SERIAL_SEARCH, "PROMPT_QUERY_BY_SERIAL"),
}


@dataclass
class StockDraft:
    action: StockAction
    item: Optional[InventoryItem] = None
    quantity: int = 0


def signed_quantity(action: StockAction, quantity: int) -> int:
    return quantity if action is StockAction.INBOUND else -quantity


def start(action: StockAction, session: Session, ctx: FlowContext) -> List[Message]:
    session.set_state(SessionState.STOCK_AWAITING_SEARCH_TYPE)
    session.set_payload(FlowType.STOCK, StockDraft(action=action))
    buttons = [
        Button(ctx.catalog.render("LABEL_QUERY_BY_NAME"), StockSearchTypeChosen(action, SearchMethod.BY_NAME).to_data()),
        Button(ctx.catalog.render("LABEL_QUERY_BY_SERIAL"), StockSearchTypeChosen(action, SearchMethod.BY_SERIAL).to_data()),
        ctx.cancel_button(),
    ]
    return [ctx.catalog.text("PROMPT_STOCK_SEARCH", quick_replies=buttons, action=_action_label(action, ctx))]


async def handle(
    event: InboundEvent,
    postback: Optional[Postback],
    session: Session,
    ctx: FlowContext,
) -> List[Message]:
    # Item cards carry their own action, so a selection works with or without a session.
    if isinstance(postback, StockItemSelected):
        return await _select(postback.action, postback.key, session, ctx)

    if session.state is None:
        log.debug("Stock flow ignored %r without a session", postback)
        return []

    draft: Optional[StockDraft] = session.get_payload(FlowType.STOCK)
    if draft is None:
        log.warning("Stock flow event for '%s' without a draft", event.user_id)
        return ctx.finish(session, "ERROR_SESSION_EXPIRED")

    state = session.state
    text = message_text(event.text) if event.is_message else None

    if state is SessionState.STOCK_AWAITING_SEARCH_TYPE:
        if not isinstance(postback, StockSearchTypeChosen):
            return []
        next_state, prompt = SEARCH_STATES[postback.method]
        session.set_state(next_state)
        return [ctx.text(prompt)]

    if state in (SessionState.STOCK_AWAITING_NAME_SEARCH, SessionState.STOCK_AWAITING_SERIAL_SEARCH):
        if text is None:
            return []
        return await _search(state, text, draft, session, ctx)

    if state is SessionState.STOCK_AWAITING_SELECTION:
        if not text:
            return []
        return await _select(draft.action, text, session, ctx)

    if state is SessionState.STOCK_AWAITING_QUANTITY:
        return await _enter_quantity(text, draft, session, ctx)

    if state is SessionState.STOCK_AWAITING_CONFIRMATION:
        if not isinstance(postback, StockConfirm):
            return []
        if not postback.confirmed:
            return ctx.finish(session, "MSG_CANCEL_CONFIRM")
        return await _commit(event, draft, session, ctx)

    log.warning("Stock flow reached unexpected state %s", state)
    return ctx.finish(session)


def _action_label(action: StockAction, ctx: FlowContext) -> str:
    return ctx.catalog.render(ACTION_LABELS[action])


async def _search(
    state: SessionState, text: str, draft: StockDraft, session: Session, ctx: FlowContext
) -> List[Message]:
    if state is SessionState.STOCK_AWAITING_NAME_SEARCH:
        found = await ctx.store.search_by_name(text)
        if not found.ok:
            return ctx.finish(session)
        results = found.value
    else:
        single = await ctx.store.get_by_key(text)
        if not single.ok:
            return ctx.finish(session)
        results = [single.value] if single.value is not None else []

    if not results:
        return ctx.finish(session, "MSG_QUERY_NOT_FOUND")

    session.set_state(SessionState.STOCK_AWAITING_SELECTION)
    return [format_search_results(results, ctx.catalog, ctx.flows), ctx.text("PROMPT_STOCK_SELECT")]


async def _select(action: StockAction, key: str, session: Session, ctx: FlowContext) -> List[Message]:
    found = await ctx.store.get_by_key(key)
    if not found.ok:
        return ctx.finish(session)
    if found.value is None:
        return ctx.finish(session, "MSG_QUERY_NOT_FOUND")

    item = found.value
    session.set_state(SessionState.STOCK_AWAITING_QUANTITY)
    session.set_payload(FlowType.STOCK, StockDraft(action=action, item=item))
    return [
        ctx.catalog.text(
            "PROMPT_STOCK_QUANTITY",
            quick_replies=[ctx.cancel_button()],
            action=_action_label(action, ctx),
            name=item.name,
            stock=item.quantity,
            unit=item.unit,
        )
    ]


async def _current_item(draft: StockDraft, ctx: FlowContext) -> Optional[InventoryItem]:
    """Fresh inventory state of the selected item; ``None`` on failure or when gone."""

    if draft.item is None:
        return None
    found = await ctx.store.get_by_key(draft.item.composite_key)
    return found.value if found.ok else None


def _insufficient(item: InventoryItem, session: Session, ctx: FlowContext) -> List[Message]:
    log.info("Rejected outbound of %s: only %d %s in stock", item.composite_key, item.quantity, item.unit)
    return ctx.finish(session, "MSG_STOCK_INSUFFICIENT", name=item.name, current_stock=item.quantity, unit=item.unit)


async def _enter_quantity(
    text: Optional[str], draft: StockDraft, session: Session, ctx: FlowContext
) -> List[Message]:
    quantity = parse_quantity(text)
    if quantity is None:
        return [ctx.text("ERROR_INVALID_QUANTITY")]

    item = await _current_item(draft, ctx)
    if item is None:
        return ctx.finish(session)
    if draft.action is StockAction.OUTBOUND and item.quantity < quantity:
        return _insufficient(item, session, ctx)

    draft.item = item
    draft.quantity = quantity
    session.set_state(SessionState.STOCK_AWAITING_CONFIRMATION)
    action = _action_label(draft.action, ctx)
    buttons = [
        Button(ctx.catalog.render("LABEL_CONFIRM_STOCK", action=action), StockConfirm(True).to_data()),
        Button(ctx.catalog.render("LABEL_CANCEL"), StockConfirm(False).to_data()),
    ]
    return [
        ctx.catalog.text(
            "PROMPT_STOCK_CONFIRM",
            quick_replies=buttons,
            action=action,
            name=item.name,
            quantity=quantity,
            unit=item.unit,
        )
    ]


async def _commit(event: InboundEvent, draft: StockDraft, session: Session, ctx: FlowContext) -> List[Message]:
    item = await _current_item(draft, ctx)
    if item is None:
        return ctx.finish(session)
    if draft.action is StockAction.OUTBOUND and item.quantity < draft.quantity:
        return _insufficient(item, session, ctx)

    actor = await ctx.actor_name(event.user_id)
    record = LedgerRecord(
        category=item.category,
        serial=item.serial,
        name=item.name,
        model=item.model,
        spec=item.spec,
        unit=item.unit,
        quantity=signed_quantity(draft.action, draft.quantity),
        transaction_type=draft.action.transaction_type.value,
        photo_ref=item.photo_ref,
    )
    appended = await ctx.store.append(record, actor)
    if not appended.ok:
        return ctx.finish(session)

    updated = await _current_item(draft, ctx)
    new_stock = updated.quantity if updated is not None else item.quantity + record.quantity
    return ctx.finish(
        session,
        "MSG_STOCK_SUCCESS",
        action=_action_label(draft.action, ctx),
        name=item.name,
        new_stock=new_stock,
        unit=item.unit,
    )
