"""Query workflow: look items up by name or serial, list everything, or show the user's records."""

from __future__ import annotations

from typing import List, Optional

from . import log
from .constants import QueryType, SessionState
from .events import InboundEvent
from .formatters import format_search_results, item_card
from .messages import Button, Message
from .postback import Postback, QueryTypeChosen
from .runtime import FlowContext, message_text, my_records
from .sessions import Session


QUERY_TYPE_LABELS = {
    QueryType.BY_NAME: "LABEL_QUERY_BY_NAME",
    QueryType.BY_SERIAL: "LABEL_QUERY_BY_SERIAL",
    QueryType.ALL: "LABEL_QUERY_ALL",
    QueryType.MY_RECORDS: "LABEL_QUERY_MY_RECORDS",
}


def start(ctx: FlowContext) -> List[Message]:
    # The session stays empty; the query_type button routes back here by its prefix.
    buttons = [
        Button(ctx.catalog.render(label), QueryTypeChosen(query_type).to_data())
        for query_type, label in QUERY_TYPE_LABELS.items()
    ]
    return [ctx.catalog.text("PROMPT_QUERY_TYPE", quick_replies=buttons)]


async def handle(
    event: InboundEvent,
    postback: Optional[Postback],
    session: Session,
    ctx: FlowContext,
) -> List[Message]:
    if session.state is None:
        if not isinstance(postback, QueryTypeChosen):
            log.debug("Query flow ignored %r without a session", postback)
            return []
        return await _choose(postback.query_type, event, session, ctx)

    if not event.is_message:
        return []

    state = session.state
    query = message_text(event.text)
    session.clear_all()

    if state is SessionState.QUERY_AWAITING_NAME:
        results = await ctx.store.search_by_name(query)
        if not results.ok:
            return [ctx.text("ERROR_GENERIC")]
        return [format_search_results(results.value, ctx.catalog, ctx.flows)]

    if state is SessionState.QUERY_AWAITING_SERIAL:
        found = await ctx.store.get_by_key(query)
        if not found.ok:
            return [ctx.text("ERROR_GENERIC")]
        if found.value is None:
            return [ctx.text("MSG_QUERY_NOT_FOUND")]
        return [item_card(found.value, ctx.catalog, ctx.flows)]

    log.warning("Query flow reached unexpected state %s", state)
    return [ctx.text("ERROR_GENERIC")]


async def _choose(query_type: QueryType, event: InboundEvent, session: Session, ctx: FlowContext) -> List[Message]:
    if query_type is QueryType.BY_NAME:
        session.set_state(SessionState.QUERY_AWAITING_NAME)
        return [ctx.text("PROMPT_QUERY_BY_NAME")]

    if query_type is QueryType.BY_SERIAL:
        session.set_state(SessionState.QUERY_AWAITING_SERIAL)
        return [ctx.text("PROMPT_QUERY_BY_SERIAL")]

    if query_type is QueryType.ALL:
        view = await ctx.store.inventory_view()
        if not view.ok:
            return [ctx.text("ERROR_GENERIC")]
        return [format_search_results(list(view.value.values()), ctx.catalog, ctx.flows)]

    return await my_records(ctx, event.user_id)
