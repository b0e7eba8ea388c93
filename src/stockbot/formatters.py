"""Turn inventory items and ledger rows into message descriptors."""

from __future__ import annotations

from typing import List, Mapping, Sequence
from urllib.parse import parse_qs, urlparse

from .constants import MAX_CAROUSEL_CARDS, StockAction, TransactionType
from .data_manager import FlowSettings, LedgerEntry
from .ledger import InventoryItem, normalize_key
from .messages import Button, Carousel, DetailCard, Message, MessageCatalog, TextMessage
from .postback import DeleteRequested, EditStart, StockItemSelected


DRIVE_VIEW_URL = "https://drive.google.com/uc?export=view&id={file_id}"

# Drive file ids are long opaque tokens; anything shorter is not treated as one.
MIN_DRIVE_ID_LENGTH = 20


def drive_image_url(reference: str, default_url: str) -> str:
    """Convert a photo reference into a URL a chat client can display.

    Drive share links (``/file/d/<id>/...`` or ``open?id=<id>``) and bare
    Drive file ids become direct view URLs, other ``http(s)`` URLs pass
    through unchanged, and anything else falls back to ``default_url``.

    Args:
        reference (str): Value of the ledger's photo column.
        default_url (str): Placeholder image for missing or unusable values.

    Returns:
        str: Displayable image URL.
    """

    reference = (reference or "").strip()
    if not reference:
        return default_url

    file_id = reference
    if "drive.google.com/file/d/" in reference:
        file_id = reference.split("/d/", 1)[1].split("/", 1)[0]
    elif "drive.google.com/open" in reference:
        file_id = parse_qs(urlparse(reference).query).get("id", [""])[0]

    if len(file_id) > MIN_DRIVE_ID_LENGTH and "http" not in file_id:
        return DRIVE_VIEW_URL.format(file_id=file_id)
    if reference.startswith("http"):
        return reference
    return default_url


def sort_items(items: Sequence[InventoryItem]) -> List[InventoryItem]:
    return sorted(items, key=lambda item: (item.category, item.serial))


def _or_dash(value: str) -> str:
    return value or "-"


def item_card(item: InventoryItem, catalog: MessageCatalog, flows: FlowSettings) -> DetailCard:
    """Detail card of one item with inbound and outbound buttons."""

    key = item.composite_key
    return DetailCard(
        title=item.name,
        image_url=drive_image_url(item.photo_ref, flows.default_image_url),
        fields=(
            (catalog.render("FIELD_STOCK"), f"{item.quantity} {item.unit}"),
            (catalog.render("FIELD_SERIAL"), key),
            (catalog.render("FIELD_MODEL"), _or_dash(item.model)),
            (catalog.render("FIELD_SPEC"), _or_dash(item.spec)),
        ),
        buttons=(
            Button(catalog.render("LABEL_INBOUND"), StockItemSelected(StockAction.INBOUND, key).to_data()),
            Button(catalog.render("LABEL_OUTBOUND"), StockItemSelected(StockAction.OUTBOUND, key).to_data()),
        ),
        alt_text=catalog.render("ALT_SINGLE_RESULT", name=item.name),
    )


def format_search_results(items: Sequence[InventoryItem], catalog: MessageCatalog, flows: FlowSettings) -> Message:
    """Pick the presentation by result count.

    No results give a not-found text, one result a detail card, up to
    :data:`MAX_CAROUSEL_CARDS` a carousel, and more than that a single text
    listing every item.
    """

    if not items:
        return catalog.text("MSG_QUERY_NOT_FOUND")

    ordered = sort_items(items)
    if len(ordered) == 1:
        return item_card(ordered[0], catalog, flows)
    if len(ordered) <= MAX_CAROUSEL_CARDS:
        return Carousel(
            cards=tuple(item_card(item, catalog, flows) for item in ordered),
            alt_text=catalog.render("ALT_SEARCH_RESULTS", count=len(ordered)),
        )

    text = catalog.render("INFO_TOO_MANY_RESULTS_HEADER", count=len(ordered))
    for item in ordered:
        text += catalog.render(
            "TEMPLATE_ALL_INVENTORY_ITEM",
            id=item.composite_key,
            name=item.name,
            model=_or_dash(item.model),
            spec=_or_dash(item.spec),
            stock=item.quantity,
            unit=item.unit,
        )
    return TextMessage(text=text.strip())


def record_card(
    entry: LedgerEntry,
    inventory: Mapping[str, InventoryItem],
    catalog: MessageCatalog,
    flows: FlowSettings,
) -> DetailCard:
    """Card of one of the user's own ledger rows.

    Void rows carry a notice and no buttons. ``New`` rows offer the full
    editor, movements the quantity/type editor, opening balances no editor;
    every valid row can be deleted.
    """

    record = entry.record
    item = inventory.get(normalize_key(record.composite_key))
    photo = item.photo_ref if item is not None else record.photo_ref

    buttons: List[Button] = []
    notice = None
    if record.is_valid:
        if record.is_new:
            buttons.append(Button(catalog.render("LABEL_EDIT_FULL"), EditStart(entry.row_index, "new").to_data()))
        elif record.transaction_type in (TransactionType.INBOUND.value, TransactionType.OUTBOUND.value):
            buttons.append(Button(catalog.render("LABEL_EDIT_STOCK"), EditStart(entry.row_index, "stock").to_data()))
        buttons.append(Button(catalog.render("LABEL_DELETE"), DeleteRequested(entry.row_index).to_data()))
    else:
        notice = catalog.render("NOTICE_VOID_RECORD")

    return DetailCard(
        title=record.name,
        image_url=drive_image_url(photo, flows.default_image_url),
        fields=(
            (catalog.render("FIELD_MODEL"), _or_dash(record.model)),
            (catalog.render("FIELD_SPEC"), _or_dash(record.spec)),
            (catalog.render("FIELD_TYPE"), record.transaction_type),
            (catalog.render("FIELD_QUANTITY"), f"{abs(record.quantity)} {record.unit}"),
            (catalog.render("FIELD_TIME"), record.timestamp),
        ),
        buttons=tuple(buttons),
        notice=notice,
    )


def format_user_records(
    entries: Sequence[LedgerEntry],
    inventory: Mapping[str, InventoryItem],
    catalog: MessageCatalog,
    flows: FlowSettings,
) -> Message:
    if not entries:
        return catalog.text("INFO_NO_RECORDS")
    shown = entries[:MAX_CAROUSEL_CARDS]
    return Carousel(
        cards=tuple(record_card(entry, inventory, catalog, flows) for entry in shown),
        alt_text=catalog.render("ALT_USER_RECORDS", count=len(shown)),
    )
