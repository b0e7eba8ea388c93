"""Edit workflow: correct one of the user's own ledger rows.

``New`` rows get a full editor (name, model, spec, unit, quantity); inbound
and outbound rows get a quantity/type editor. Saving never rewrites the row:
the original is voided, its void reason is replaced by a summary of the
changed fields, and the corrected row is appended.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Dict, List, Optional

from . import log
from .constants import (
    EditField,
    EditStockOption,
    FlowType,
    LedgerColumn,
    SessionState,
    TransactionType,
)
from .data_manager import LedgerRecord
from .events import InboundEvent
from .messages import Button, Message
from .postback import (
    EditFieldChosen,
    EditStart,
    EditStockChoice,
    EditTypeChosen,
    EditUnitChosen,
    Postback,
)
from .runtime import FlowContext, finish_refused_void, message_text, parse_quantity, stale_row_reason
from .sessions import Session


FIELD_LABELS: Dict[EditField, str] = {
    EditField.NAME: "LABEL_EDIT_NAME",
    EditField.MODEL: "LABEL_EDIT_MODEL",
    EditField.SPEC: "LABEL_EDIT_SPEC",
    EditField.UNIT: "LABEL_EDIT_UNIT",
    EditField.QUANTITY: "LABEL_EDIT_QUANTITY",
    EditField.FINISH: "LABEL_FINISH_EDIT",
}

STOCK_OPTION_LABELS: Dict[EditStockOption, str] = {
    EditStockOption.QUANTITY: "LABEL_EDIT_QUANTITY",
    EditStockOption.TYPE: "LABEL_EDIT_TYPE",
    EditStockOption.FINISH: "LABEL_FINISH_EDIT",
}

# Fields compared when summarizing a correction, with their display labels.
NEW_DIFF_FIELDS = (
    ("name", "FIELD_NAME"),
    ("model", "FIELD_MODEL"),
    ("spec", "FIELD_SPEC"),
    ("unit", "FIELD_UNIT"),
    ("quantity", "FIELD_QUANTITY"),
)
STOCK_DIFF_FIELDS = (
    ("quantity", "FIELD_QUANTITY"),
    ("transaction_type", "FIELD_TYPE"),
)


@dataclass
class EditDraft:
    """The row being edited and the corrected values collected so far.

    ``corrected.quantity`` holds the unsigned amount while editing; the sign
    is applied from the transaction type when saving.
    """

    row_index: int
    original: LedgerRecord
    corrected: LedgerRecord
    pending_field: Optional[EditField] = None

    @property
    def is_new(self) -> bool:
        return self.original.is_new


def signed_for(record: LedgerRecord) -> LedgerRecord:
    """Copy of ``record`` with the quantity signed by its transaction type."""

    amount = abs(record.quantity)
    if record.transaction_type == TransactionType.OUTBOUND.value:
        amount = -amount
    return replace(record, quantity=amount)


def describe_changes(original: LedgerRecord, corrected: LedgerRecord, ctx: FlowContext) -> str:
    """Void reason listing the fields a correction changed."""

    fields = NEW_DIFF_FIELDS if original.is_new else STOCK_DIFF_FIELDS
    before = replace(original, quantity=abs(original.quantity))
    after = replace(corrected, quantity=abs(corrected.quantity))
    changed = [
        ctx.catalog.render(label)
        for name, label in fields
        if str(getattr(before, name)) != str(getattr(after, name))
    ]
    if not changed:
        return ctx.catalog.render("EDIT_REASON_UNCHANGED")
    return ctx.catalog.render("EDIT_REASON_CHANGED", fields=", ".join(changed))


async def handle(
    event: InboundEvent,
    postback: Optional[Postback],
    session: Session,
    ctx: FlowContext,
) -> List[Message]:
    if isinstance(postback, EditStart):
        return await _open(postback.row, session, ctx)

    if session.state is None:
        log.debug("Edit flow ignored %r without a session", postback)
        return []

    draft: Optional[EditDraft] = session.get_payload(FlowType.EDIT)
    if draft is None:
        log.warning("Edit flow event for '%s' without a draft", event.user_id)
        return ctx.finish(session, "ERROR_SESSION_EXPIRED")

    state = session.state
    text = message_text(event.text) if event.is_message else None

    if state is SessionState.EDIT_NEW_AWAITING_CHOICE:
        if not isinstance(postback, EditFieldChosen):
            return []
        if postback.field is EditField.FINISH:
            return await _save(event, draft, session, ctx)
        if postback.field is EditField.UNIT:
            session.set_state(SessionState.EDIT_NEW_AWAITING_UNIT_CHOICE)
            return [ctx.catalog.text("PROMPT_EDIT_SELECT_UNIT", quick_replies=_unit_buttons(ctx))]
        draft.pending_field = postback.field
        session.set_state(SessionState.EDIT_NEW_AWAITING_VALUE)
        return [ctx.text("PROMPT_EDIT_NEW_VALUE", field=ctx.catalog.render(FIELD_LABELS[postback.field]))]

    if state is SessionState.EDIT_NEW_AWAITING_VALUE:
        if text is None or draft.pending_field is None:
            return []
        return _apply_value(draft.pending_field, text, draft, session, ctx)

    if state is SessionState.EDIT_NEW_AWAITING_UNIT_CHOICE:
        if isinstance(postback, EditUnitChosen):
            if postback.manual:
                session.set_state(SessionState.EDIT_NEW_AWAITING_MANUAL_UNIT)
                return [ctx.text("PROMPT_MANUAL_UNIT")]
            return _apply_value(EditField.UNIT, postback.unit, draft, session, ctx)
        if text:
            return _apply_value(EditField.UNIT, text, draft, session, ctx)
        return []

    if state is SessionState.EDIT_NEW_AWAITING_MANUAL_UNIT:
        if text is None:
            return []
        return _apply_value(EditField.UNIT, text, draft, session, ctx)

    if state is SessionState.EDIT_STOCK_AWAITING_CHOICE:
        if not isinstance(postback, EditStockChoice):
            return []
        if postback.choice is EditStockOption.FINISH:
            return await _save(event, draft, session, ctx)
        if postback.choice is EditStockOption.QUANTITY:
            session.set_state(SessionState.EDIT_STOCK_AWAITING_QUANTITY)
            return [ctx.text("PROMPT_EDIT_NEW_VALUE", field=ctx.catalog.render("FIELD_QUANTITY"))]
        session.set_state(SessionState.EDIT_STOCK_AWAITING_TYPE)
        buttons = [
            Button(ctx.catalog.render("LABEL_INBOUND"), EditTypeChosen(TransactionType.INBOUND).to_data()),
            Button(ctx.catalog.render("LABEL_OUTBOUND"), EditTypeChosen(TransactionType.OUTBOUND).to_data()),
        ]
        return [ctx.catalog.text("PROMPT_EDIT_TYPE", quick_replies=buttons)]

    if state is SessionState.EDIT_STOCK_AWAITING_QUANTITY:
        quantity = parse_quantity(text)
        if quantity is None:
            return [ctx.text("ERROR_INVALID_QUANTITY")]
        draft.corrected = replace(draft.corrected, quantity=quantity)
        session.set_state(SessionState.EDIT_STOCK_AWAITING_CHOICE)
        return [_stock_menu(draft, ctx, ctx.catalog.render("MSG_RECORD_UPDATED"))]

    if state is SessionState.EDIT_STOCK_AWAITING_TYPE:
        if not isinstance(postback, EditTypeChosen):
            return []
        draft.corrected = replace(draft.corrected, transaction_type=postback.transaction_type.value)
        session.set_state(SessionState.EDIT_STOCK_AWAITING_CHOICE)
        return [_stock_menu(draft, ctx, ctx.catalog.render("MSG_RECORD_UPDATED"))]

    log.warning("Edit flow reached unexpected state %s", state)
    return ctx.finish(session)


async def _open(row_index: int, session: Session, ctx: FlowContext) -> List[Message]:
    session.clear_all()
    found = await ctx.store.read_row(row_index)
    if not found.ok:
        return ctx.finish(session)
    entry = found.value
    if entry is None:
        return ctx.finish(session, "ERROR_RECORD_NOT_FOUND")
    if not entry.record.is_valid:
        return ctx.finish(session, "ERROR_RECORD_VOID")
    if entry.record.transaction_type == TransactionType.OPENING_BALANCE.value:
        return ctx.finish(session, "ERROR_NOT_EDITABLE")
    if entry.record.transaction_type not in {kind.value for kind in TransactionType}:
        log.warning("Row %d has unknown transaction type '%s'", row_index, entry.record.transaction_type)
        return ctx.finish(session, "ERROR_NOT_EDITABLE")

    original = entry.record
    draft = EditDraft(
        row_index=row_index,
        original=original,
        corrected=replace(original, quantity=abs(original.quantity)),
    )
    session.set_payload(FlowType.EDIT, draft)
    if draft.is_new:
        session.set_state(SessionState.EDIT_NEW_AWAITING_CHOICE)
        return [_new_item_menu(draft, ctx)]
    session.set_state(SessionState.EDIT_STOCK_AWAITING_CHOICE)
    return [_stock_menu(draft, ctx)]


def _apply_value(field: EditField, text: str, draft: EditDraft, session: Session, ctx: FlowContext) -> List[Message]:
    if field is EditField.QUANTITY:
        quantity = parse_quantity(text, allow_zero=True)
        if quantity is None:
            return [ctx.text("ERROR_INVALID_QUANTITY")]
        draft.corrected = replace(draft.corrected, quantity=quantity)
    else:
        # Model and spec may be blanked with "-"; name and unit must stay non-empty.
        value = "" if text == "-" and field in (EditField.MODEL, EditField.SPEC) else text
        if not value and field in (EditField.NAME, EditField.UNIT):
            return [ctx.text("ERROR_EMPTY_INPUT")]
        draft.corrected = replace(draft.corrected, **{field.value: value})

    draft.pending_field = None
    session.set_state(SessionState.EDIT_NEW_AWAITING_CHOICE)
    leading = ctx.catalog.render("MSG_FIELD_UPDATED", field=ctx.catalog.render(FIELD_LABELS[field]))
    return [_new_item_menu(draft, ctx, leading)]


def _unit_buttons(ctx: FlowContext) -> List[Button]:
    buttons = [Button(unit, EditUnitChosen(unit).to_data()) for unit in ctx.flows.units]
    buttons.append(Button(ctx.catalog.render("LABEL_MANUAL_UNIT"), EditUnitChosen(manual=True).to_data()))
    return buttons


def _new_item_menu(draft: EditDraft, ctx: FlowContext, leading: str = "") -> Message:
    record = draft.corrected
    buttons = [
        Button(ctx.catalog.render(label), EditFieldChosen(field).to_data())
        for field, label in FIELD_LABELS.items()
    ]
    buttons.append(ctx.cancel_button())
    return ctx.catalog.text(
        "PROMPT_NEW_ITEM_CHOICE",
        quick_replies=buttons,
        leading=leading,
        name=record.name,
        model=record.model or "-",
        spec=record.spec or "-",
        unit=record.unit,
        quantity=record.quantity,
    )


def _stock_menu(draft: EditDraft, ctx: FlowContext, leading: str = "") -> Message:
    record = draft.corrected
    buttons = [
        Button(ctx.catalog.render(label), EditStockChoice(option).to_data())
        for option, label in STOCK_OPTION_LABELS.items()
    ]
    buttons.append(ctx.cancel_button())
    return ctx.catalog.text(
        "PROMPT_EDIT_STOCK_CHOICE",
        quick_replies=buttons,
        leading=leading,
        name=record.name,
        type=record.transaction_type,
        quantity=record.quantity,
        unit=record.unit,
    )


def _menu(draft: EditDraft, ctx: FlowContext) -> Message:
    return _new_item_menu(draft, ctx) if draft.is_new else _stock_menu(draft, ctx)


async def _save(event: InboundEvent, draft: EditDraft, session: Session, ctx: FlowContext) -> List[Message]:
    """Validate the correction and apply it with the void protocol.

    The resulting stock (current stock without the original row's effect plus
    the corrected row's effect) must not go negative; otherwise the user is
    told how much is available and stays in the editor.
    """

    current = await ctx.store.read_row(draft.row_index)
    if not current.ok:
        return ctx.finish(session)
    stale = stale_row_reason(current.value, draft.original)
    if stale is not None:
        log.info("Edit of row %d abandoned: the row changed since it was opened", draft.row_index)
        return ctx.finish(session, stale)

    original = current.value.record
    corrected = signed_for(draft.corrected)
    found = await ctx.store.get_by_key(original.composite_key)
    if not found.ok:
        return ctx.finish(session)
    stock_without_original = (found.value.quantity if found.value is not None else 0) - original.quantity
    if stock_without_original + corrected.quantity < 0:
        log.info(
            "Rejected edit of row %d: stock of %s would become %d",
            draft.row_index,
            original.composite_key,
            stock_without_original + corrected.quantity,
        )
        insufficient = ctx.text(
            "MSG_STOCK_INSUFFICIENT",
            name=corrected.name,
            current_stock=stock_without_original,
            unit=corrected.unit,
        )
        return [insufficient, _menu(draft, ctx)]

    actor = await ctx.actor_name(event.user_id)
    voided = await ctx.store.void(
        draft.row_index,
        ctx.catalog.render("EDIT_VOID_REASON", actor=actor),
        actor,
        expected=original,
    )
    if not voided.ok:
        return await finish_refused_void(ctx, session, draft.row_index, original)

    reason = describe_changes(original, corrected, ctx)
    patched = await ctx.store.patch_cells(draft.row_index, {LedgerColumn.VOID_REASON: reason})
    if not patched.ok:
        log.warning("Could not annotate voided row %d with '%s': %s", draft.row_index, reason, patched.error)

    appended = await ctx.store.append(corrected, actor)
    if not appended.ok:
        log.error(
            "Row %d was voided but its correction could not be appended; re-enter it manually",
            draft.row_index,
        )
        return ctx.finish(session)

    log.info("Row %d corrected by %s as row %d (%s)", draft.row_index, actor, appended.value.row_index, reason)
    return ctx.finish(session, "MSG_EDIT_SUCCESS")
