"""Flow routing: decide which workflow owns an inbound event.

1. A top-level menu postback (``action=<command>``) clears the session and
   starts that command.
2. Otherwise the workflow is named by the session's current state or, when
   the user has no session, by the prefix of the postback verb.
3. Events that match no workflow are dropped without a reply.
"""

from __future__ import annotations

from typing import Awaitable, Callable, Dict, List, Optional

from . import add_flow, delete_flow, edit_flow, log, query_flow, stock_flow
from .constants import FlowType, MenuAction, StockAction
from .events import InboundEvent
from .messages import Message
from .postback import MenuCommand, Postback, parse_postback
from .runtime import FlowContext, my_records
from .sessions import Session


Handler = Callable[[InboundEvent, Optional[Postback], Session, FlowContext], Awaitable[List[Message]]]

HANDLERS: Dict[FlowType, Handler] = {
    FlowType.QUERY: query_flow.handle,
    FlowType.ADD: add_flow.handle,
    FlowType.STOCK: stock_flow.handle,
    FlowType.EDIT: edit_flow.handle,
    FlowType.DELETE: delete_flow.handle,
}


async def start_flow(command: str, event: InboundEvent, session: Session, ctx: FlowContext) -> List[Message]:
    """Reply to a menu command; the session has already been cleared."""

    try:
        action = MenuAction(command)
    except ValueError:
        if not command:
            return []
        log.info("Menu command '%s' from '%s' is not implemented", command, event.user_id)
        return [ctx.text("INFO_WIP", action=command)]

    if action is MenuAction.QUERY:
        return query_flow.start(ctx)
    if action is MenuAction.ADD:
        return add_flow.start(session, ctx)
    if action in (MenuAction.INBOUND, MenuAction.OUTBOUND):
        return stock_flow.start(StockAction(action.value), session, ctx)
    if action is MenuAction.EDIT:
        return await my_records(ctx, event.user_id)
    if action is MenuAction.HELP:
        return [ctx.text("MSG_HELP")]
    return [ctx.text("MSG_CANCEL_CONFIRM")]


def resolve_flow(session: Session, postback: Optional[Postback]) -> Optional[FlowType]:
    if session.flow is not None:
        return session.flow
    if postback is not None:
        return postback.flow
    return None


async def route_event(event: InboundEvent, session: Session, ctx: FlowContext) -> List[Message]:
    postback = parse_postback(event.postback_data or "") if event.is_postback else None

    if isinstance(postback, MenuCommand):
        session.clear_all()
        return await start_flow(postback.action, event, session, ctx)

    flow = resolve_flow(session, postback)
    log.debug("Routing event from '%s' to %s", event.user_id, flow)
    if flow is None:
        log.info("No workflow for %s event from '%s'; dropping it", event.kind.value, event.user_id)
        return []
    return await HANDLERS[flow](event, postback, session, ctx)
