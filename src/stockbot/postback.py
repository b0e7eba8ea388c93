"""Postback grammar shared by every button the bot sends.

Postback data has the shape ``verb[=value][&key=value...]`` with
percent-encoded values, for example ``stock_select&action=inbound&key=A001``
or ``edit_start&type=stock&row=42``. :func:`parse_postback` turns such a
string into one of the variant dataclasses below and ``to_data()`` turns a
variant back into a string, so handlers never split strings themselves.

The first ``_``-separated segment of a verb names the workflow the button
belongs to; the router falls back to it when the user has no session.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Callable, ClassVar, Dict, Mapping, Optional, Tuple, Type
from urllib.parse import quote, unquote

from . import log
from .constants import (
    EditField,
    EditStockOption,
    FlowType,
    QueryType,
    SearchMethod,
    StockAction,
    TransactionType,
)


Params = Dict[str, str]

ADD_OPTION_FIELDS = ("model", "spec", "unit")
EDIT_KINDS = ("new", "stock")
MOVEMENT_TYPES = (TransactionType.INBOUND, TransactionType.OUTBOUND)


def flow_for_verb(verb: str) -> Optional[FlowType]:
    """Workflow named by the first segment of ``verb``, if any."""

    prefix = verb.split("_", 1)[0]
    try:
        return FlowType(prefix)
    except ValueError:
        return None


def encode_postback(verb: str, value: Optional[str] = None, params: Optional[Mapping[str, object]] = None) -> str:
    """Build postback data from a verb, an optional value and parameters."""

    head = verb if value is None else f"{verb}={quote(str(value), safe='')}"
    parts = [head]
    for key, item in (params or {}).items():
        parts.append(f"{key}={quote(str(item), safe='')}")
    return "&".join(parts)


def split_postback(data: str) -> Tuple[str, Optional[str], Params]:
    """Split raw postback data into ``(verb, value, params)``."""

    head, *pairs = data.split("&")
    verb, has_value, value = head.partition("=")
    params: Params = {}
    for pair in pairs:
        if not pair:
            continue
        key, _, item = pair.partition("=")
        params[unquote(key)] = unquote(item)
    return verb.strip(), unquote(value) if has_value else None, params


def _parse_bool(value: Optional[str]) -> bool:
    if value == "yes":
        return True
    if value == "no":
        return False
    raise ValueError(f"Expected yes/no, got {value!r}")


def _parse_row(raw: Optional[str]) -> int:
    row = int(raw or "")
    if row < 2:
        raise ValueError(f"Row {row} is not a ledger row")
    return row


def _bool_text(flag: bool) -> str:
    return "yes" if flag else "no"


class Postback:
    """Base class of every parsed postback."""

    verb: ClassVar[str] = ""

    @property
    def flow(self) -> Optional[FlowType]:
        return flow_for_verb(self.verb)

    def to_data(self) -> str:
        raise NotImplementedError

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "Postback":
        raise NotImplementedError


@dataclass(frozen=True)
class MenuCommand(Postback):
    """Top-level menu button: ``action=<command>``."""

    action: str
    verb: ClassVar[str] = "action"

    def to_data(self) -> str:
        return encode_postback(self.verb, self.action)

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "MenuCommand":
        return cls(action=(value or "").strip())


@dataclass(frozen=True)
class QueryTypeChosen(Postback):
    query_type: QueryType
    verb: ClassVar[str] = "query_type"

    def to_data(self) -> str:
        return encode_postback(self.verb, self.query_type.value)

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "QueryTypeChosen":
        return cls(query_type=QueryType(value))


@dataclass(frozen=True)
class AddCategoryChosen(Postback):
    category: str
    verb: ClassVar[str] = "add_category"

    def to_data(self) -> str:
        return encode_postback(self.verb, self.category)

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "AddCategoryChosen":
        if not value:
            raise ValueError("Empty category")
        return cls(category=value)


@dataclass(frozen=True)
class AddOptionChosen(Postback):
    """Quick-reply answer for model, spec or unit.

    An empty ``value`` skips the field; ``manual`` asks to type the unit.
    """

    field: str
    value: str = ""
    manual: bool = False
    verb: ClassVar[str] = "add_option"

    def to_data(self) -> str:
        params: Dict[str, object] = {"manual": 1} if self.manual else {"value": self.value}
        return encode_postback(self.verb, self.field, params)

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "AddOptionChosen":
        if value not in ADD_OPTION_FIELDS:
            raise ValueError(f"Unknown add option field {value!r}")
        return cls(field=value, value=params.get("value", ""), manual=params.get("manual") == "1")


@dataclass(frozen=True)
class AddConfirm(Postback):
    confirmed: bool
    verb: ClassVar[str] = "add_confirm"

    def to_data(self) -> str:
        return encode_postback(self.verb, _bool_text(self.confirmed))

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "AddConfirm":
        return cls(confirmed=_parse_bool(value))


@dataclass(frozen=True)
class StockSearchTypeChosen(Postback):
    action: StockAction
    method: SearchMethod
    verb: ClassVar[str] = "stock_search"

    def to_data(self) -> str:
        return encode_postback(self.verb, self.method.value, {"action": self.action.value})

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "StockSearchTypeChosen":
        return cls(action=StockAction(params["action"]), method=SearchMethod(value))


@dataclass(frozen=True)
class StockItemSelected(Postback):
    action: StockAction
    key: str
    verb: ClassVar[str] = "stock_select"

    def to_data(self) -> str:
        return encode_postback(self.verb, None, {"action": self.action.value, "key": self.key})

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "StockItemSelected":
        key = params["key"].strip()
        if not key:
            raise ValueError("Empty item key")
        return cls(action=StockAction(params["action"]), key=key)


@dataclass(frozen=True)
class StockConfirm(Postback):
    confirmed: bool
    verb: ClassVar[str] = "stock_confirm"

    def to_data(self) -> str:
        return encode_postback(self.verb, _bool_text(self.confirmed))

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "StockConfirm":
        return cls(confirmed=_parse_bool(value))


@dataclass(frozen=True)
class EditStart(Postback):
    """Open the editor for the ledger row ``row``; ``kind`` is ``new`` or ``stock``."""

    row: int
    kind: str
    verb: ClassVar[str] = "edit_start"

    def to_data(self) -> str:
        return encode_postback(self.verb, None, {"type": self.kind, "row": self.row})

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "EditStart":
        kind = params.get("type", "")
        if kind not in EDIT_KINDS:
            raise ValueError(f"Unknown edit type {kind!r}")
        return cls(row=_parse_row(params.get("row")), kind=kind)


@dataclass(frozen=True)
class EditFieldChosen(Postback):
    field: EditField
    verb: ClassVar[str] = "edit_field"

    def to_data(self) -> str:
        return encode_postback(self.verb, self.field.value)

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "EditFieldChosen":
        return cls(field=EditField(value))


@dataclass(frozen=True)
class EditStockChoice(Postback):
    choice: EditStockOption
    verb: ClassVar[str] = "edit_stock_choice"

    def to_data(self) -> str:
        return encode_postback(self.verb, self.choice.value)

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "EditStockChoice":
        return cls(choice=EditStockOption(value))


@dataclass(frozen=True)
class EditTypeChosen(Postback):
    transaction_type: TransactionType
    verb: ClassVar[str] = "edit_type"

    def to_data(self) -> str:
        return encode_postback(self.verb, self.transaction_type.value)

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "EditTypeChosen":
        kind = TransactionType(value)
        if kind not in MOVEMENT_TYPES:
            raise ValueError(f"{kind.value} is not a stock movement")
        return cls(transaction_type=kind)


@dataclass(frozen=True)
class EditUnitChosen(Postback):
    unit: str = ""
    manual: bool = False
    verb: ClassVar[str] = "edit_unit"

    def to_data(self) -> str:
        if self.manual:
            return encode_postback(self.verb, None, {"manual": 1})
        return encode_postback(self.verb, self.unit)

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "EditUnitChosen":
        manual = params.get("manual") == "1"
        if not manual and not value:
            raise ValueError("Empty unit")
        return cls(unit=value or "", manual=manual)


@dataclass(frozen=True)
class DeleteRequested(Postback):
    row: int
    verb: ClassVar[str] = "delete_record"

    def to_data(self) -> str:
        return encode_postback(self.verb, None, {"row": self.row})

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "DeleteRequested":
        return cls(row=_parse_row(params.get("row")))


@dataclass(frozen=True)
class DeleteConfirm(Postback):
    confirmed: bool
    verb: ClassVar[str] = "delete_confirm"

    def to_data(self) -> str:
        return encode_postback(self.verb, _bool_text(self.confirmed))

    @classmethod
    def from_parts(cls, value: Optional[str], params: Params) -> "DeleteConfirm":
        return cls(confirmed=_parse_bool(value))


@dataclass(frozen=True)
class UnknownPostback(Postback):
    """Data that matches no known verb or carries malformed parameters."""

    data: str
    raw_verb: str = ""

    @property
    def flow(self) -> Optional[FlowType]:
        return flow_for_verb(self.raw_verb)

    def to_data(self) -> str:
        return self.data


VARIANTS: Tuple[Type[Postback], ...] = (
    MenuCommand,
    QueryTypeChosen,
    AddCategoryChosen,
    AddOptionChosen,
    AddConfirm,
    StockSearchTypeChosen,
    StockItemSelected,
    StockConfirm,
    EditStart,
    EditFieldChosen,
    EditStockChoice,
    EditTypeChosen,
    EditUnitChosen,
    DeleteRequested,
    DeleteConfirm,
)

_BUILDERS: Dict[str, Callable[[Optional[str], Params], Postback]] = {
    variant.verb: variant.from_parts for variant in VARIANTS
}


def parse_postback(data: str) -> Postback:
    """Parse raw postback data into its variant.

    Unknown verbs and malformed parameters (missing keys, bad numbers,
    unknown enum values) produce :class:`UnknownPostback`.
    """

    verb, value, params = split_postback(data)
    builder = _BUILDERS.get(verb)
    if builder is None:
        return UnknownPostback(data=data, raw_verb=verb)
    try:
        return builder(value, params)
    except (KeyError, ValueError) as exc:
        log.warning("Malformed postback %r: %s", data, exc)
        return UnknownPostback(data=data, raw_verb=verb)
