"""Enumerations shared across the stock bot modules.

Centralises the ledger layout, record vocabularies, and conversation state
labels so the store, the workflows, and the archival job agree on a single
source of truth for every identifier that ends up in the workbook or in a
user's session.
"""

from __future__ import annotations

from enum import Enum, IntEnum


# Central schema version expected by all layers when validating workbooks.
EXPECTED_SCHEMA_VERSION = "1.0.0"

# Rich message platforms reject carousels with more cards than this.
MAX_CAROUSEL_CARDS = 12

ARCHIVE_SHEET_PREFIX = "Archive_"


class TransactionType(str, Enum):
    """Enumerate the transaction types recorded in the ledger."""

    NEW = "New"
    INBOUND = "Inbound"
    OUTBOUND = "Outbound"
    OPENING_BALANCE = "OpeningBalance"


class RecordStatus(str, Enum):
    """Enumerate the lifecycle states of a ledger row."""

    VALID = "Valid"
    VOID = "Void"


class LedgerColumn(IntEnum):
    """1-based column positions of the ledger sheet."""

    CATEGORY = 1
    SERIAL = 2
    NAME = 3
    MODEL = 4
    SPEC = 5
    UNIT = 6
    QUANTITY = 7
    TRANSACTION_TYPE = 8
    STATUS = 9
    VOID_REASON = 10
    SOURCE_ACTOR = 11
    TIMESTAMP = 12
    PHOTO_REF = 13


LEDGER_HEADERS: tuple[str, ...] = (
    "Category",
    "Serial",
    "Name",
    "Model",
    "Spec",
    "Unit",
    "Quantity",
    "TransactionType",
    "Status",
    "VoidReason",
    "SourceActor",
    "Timestamp",
    "PhotoRef",
)

USER_HEADERS: tuple[str, ...] = ("UserID", "DisplayName")

# Columns that may be rewritten after a row has been appended.
ANNOTATION_COLUMNS = frozenset(
    {LedgerColumn.VOID_REASON, LedgerColumn.SOURCE_ACTOR, LedgerColumn.TIMESTAMP}
)


class SheetName(str, Enum):
    """Enumerate the default worksheet names managed by the store."""

    LEDGER = "Ledger"
    USERS = "Users"


class FlowType(str, Enum):
    """Enumerate the conversation workflows a session can belong to."""

    QUERY = "query"
    ADD = "add"
    STOCK = "stock"
    EDIT = "edit"
    DELETE = "delete"


class MenuAction(str, Enum):
    """Top-level commands sent by the platform's persistent menu."""

    QUERY = "query"
    ADD = "add"
    INBOUND = "inbound"
    OUTBOUND = "outbound"
    EDIT = "edit"
    HELP = "help"
    CANCEL = "cancel"


class StockAction(str, Enum):
    """Direction of a stock movement."""

    INBOUND = "inbound"
    OUTBOUND = "outbound"

    @property
    def transaction_type(self) -> TransactionType:
        if self is StockAction.INBOUND:
            return TransactionType.INBOUND
        return TransactionType.OUTBOUND


class QueryType(str, Enum):
    """Choices offered when a query workflow starts."""

    BY_NAME = "by_name"
    BY_SERIAL = "by_serial"
    ALL = "all"
    MY_RECORDS = "my_records"


class SearchMethod(str, Enum):
    """How a stock movement locates its item."""

    BY_NAME = "by_name"
    BY_SERIAL = "by_serial"


class EditField(str, Enum):
    """Menu entries of the full editor for a ``New`` record."""

    NAME = "name"
    MODEL = "model"
    SPEC = "spec"
    UNIT = "unit"
    QUANTITY = "quantity"
    FINISH = "finish"


class EditStockOption(str, Enum):
    """Menu entries of the editor for an inbound or outbound record."""

    QUANTITY = "quantity"
    TYPE = "type"
    FINISH = "finish"


class SessionState(str, Enum):
    """Every sub-state of every workflow.

    The first ``_``-separated segment of a value names the owning workflow.
    """

    QUERY_AWAITING_NAME = "query_awaiting_name"
    QUERY_AWAITING_SERIAL = "query_awaiting_serial"

    ADD_AWAITING_CATEGORY = "add_awaiting_category"
    ADD_AWAITING_NAME = "add_awaiting_name"
    ADD_AWAITING_MODEL = "add_awaiting_model"
    ADD_AWAITING_SPEC = "add_awaiting_spec"
    ADD_AWAITING_UNIT = "add_awaiting_unit"
    ADD_TYPING_UNIT = "add_typing_unit"
    ADD_AWAITING_QUANTITY = "add_awaiting_quantity"
    ADD_AWAITING_CONFIRMATION = "add_awaiting_confirmation"

    STOCK_AWAITING_SEARCH_TYPE = "stock_awaiting_search_type"
    STOCK_AWAITING_NAME_SEARCH = "stock_awaiting_name_search"
    STOCK_AWAITING_SERIAL_SEARCH = "stock_awaiting_serial_search"
    STOCK_AWAITING_SELECTION = "stock_awaiting_selection"
    STOCK_AWAITING_QUANTITY = "stock_awaiting_quantity"
    STOCK_AWAITING_CONFIRMATION = "stock_awaiting_confirmation"

    EDIT_NEW_AWAITING_CHOICE = "edit_new_awaiting_choice"
    EDIT_NEW_AWAITING_VALUE = "edit_new_awaiting_value"
    EDIT_NEW_AWAITING_UNIT_CHOICE = "edit_new_awaiting_unit_choice"
    EDIT_NEW_AWAITING_MANUAL_UNIT = "edit_new_awaiting_manual_unit"
    EDIT_STOCK_AWAITING_CHOICE = "edit_stock_awaiting_choice"
    EDIT_STOCK_AWAITING_QUANTITY = "edit_stock_awaiting_quantity"
    EDIT_STOCK_AWAITING_TYPE = "edit_stock_awaiting_type"

    DELETE_AWAITING_CONFIRMATION = "delete_awaiting_confirmation"

    @property
    def flow(self) -> FlowType:
        return FlowType(self.value.split("_", 1)[0])


__all__ = [
    "EXPECTED_SCHEMA_VERSION",
    "MAX_CAROUSEL_CARDS",
    "ARCHIVE_SHEET_PREFIX",
    "TransactionType",
    "RecordStatus",
    "LedgerColumn",
    "LEDGER_HEADERS",
    "USER_HEADERS",
    "ANNOTATION_COLUMNS",
    "SheetName",
    "FlowType",
    "MenuAction",
    "StockAction",
    "QueryType",
    "SearchMethod",
    "EditField",
    "EditStockOption",
    "SessionState",
]
