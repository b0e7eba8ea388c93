"""Delete workflow: void one ledger row after a confirmation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional

from . import log
from .constants import FlowType, SessionState
from .data_manager import LedgerRecord
from .events import InboundEvent
from .messages import Button, Message
from .postback import DeleteConfirm, DeleteRequested, Postback
from .runtime import FlowContext, finish_refused_void
from .sessions import Session


@dataclass
class DeleteDraft:
    row_index: int
    record: LedgerRecord


async def handle(
    event: InboundEvent,
    postback: Optional[Postback],
    session: Session,
    ctx: FlowContext,
) -> List[Message]:
    if isinstance(postback, DeleteRequested):
        return await _request(postback.row, session, ctx)

    if session.state is not SessionState.DELETE_AWAITING_CONFIRMATION:
        return []
    if not isinstance(postback, DeleteConfirm):
        return []

    draft: Optional[DeleteDraft] = session.get_payload(FlowType.DELETE)
    if draft is None:
        log.warning("Delete confirmation from '%s' without a pending row", event.user_id)
        return ctx.finish(session, "ERROR_SESSION_EXPIRED")
    if not postback.confirmed:
        return ctx.finish(session, "MSG_CANCEL_CONFIRM")

    actor = await ctx.actor_name(event.user_id)
    voided = await ctx.store.void(draft.row_index, ctx.flows.delete_reason, actor, expected=draft.record)
    if not voided.ok:
        return await finish_refused_void(ctx, session, draft.row_index, draft.record)
    return ctx.finish(session, "MSG_DELETE_SUCCESS")


async def _request(row_index: int, session: Session, ctx: FlowContext) -> List[Message]:
    session.clear_all()
    found = await ctx.store.read_row(row_index)
    if not found.ok:
        return ctx.finish(session)
    if found.value is None:
        return ctx.finish(session, "ERROR_RECORD_NOT_FOUND")
    record = found.value.record
    if not record.is_valid:
        return ctx.finish(session, "ERROR_RECORD_VOID")

    session.set_state(SessionState.DELETE_AWAITING_CONFIRMATION)
    session.set_payload(FlowType.DELETE, DeleteDraft(row_index=row_index, record=record))
    buttons = [
        Button(ctx.catalog.render("LABEL_CONFIRM_DELETE"), DeleteConfirm(True).to_data()),
        Button(ctx.catalog.render("LABEL_CANCEL"), DeleteConfirm(False).to_data()),
    ]
    return [
        ctx.catalog.text(
            "PROMPT_DELETE_CONFIRM",
            quick_replies=buttons,
            name=record.name,
            type=record.transaction_type,
        )
    ]
