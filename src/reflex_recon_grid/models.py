"""Typed models for columns, filters, sort state, rows and collections."""

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Literal

ValueType = Literal["string", "numberRange", "dateRange", "enumSet"]
SortDirection = Literal["asc", "desc"]
DateMode = Literal["this-month", "last-month", "this-year", "custom"]

DATE_MODES: tuple[DateMode, ...] = ("this-month", "last-month", "this-year", "custom")

INVALID_DATE = "Invalid Date"
PENDING_DATE = "Pending"


# ---------------------------------------------------------------------------
# Columns
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ColumnDescriptor:
    """Metadata for one filterable/sortable field.

    Attributes:
        name: Registry key (snake_case).
        label: Header shown in the dashboard.
        value_type: Decides which filter kind applies.
        remote_param: Base name of the remote query parameter.  Range
            types append ``_min``/``_max`` or ``_from``/``_to``.
        row_field: Attribute of :class:`TransactionRow` holding the value.
        sort_key: Server ``sort_by`` value; ``None`` means not sortable.
        server_supported: When ``False`` the column is evaluated locally
            only and never sent to the remote.
        identifier: The row identifier column, filtered through chips.
        primary_date: The column that carries the default date window.
    """

    name: str
    label: str
    value_type: ValueType
    remote_param: str
    row_field: str
    sort_key: str | None = None
    server_supported: bool = True
    identifier: bool = False
    primary_date: bool = False


# ---------------------------------------------------------------------------
# Filter values (tagged union)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TextFilter:
    """Free-text, case-insensitive contains."""

    text: str = ""
    kind: Literal["string"] = field(default="string", init=False)

    def is_empty(self) -> bool:
        return not self.text.strip()


@dataclass(frozen=True)
class NumberRangeFilter:
    """Inclusive numeric range; bounds stay raw strings until parsed."""

    min: str | None = None
    max: str | None = None
    kind: Literal["numberRange"] = field(default="numberRange", init=False)

    def is_empty(self) -> bool:
        return not (self.min or "").strip() and not (self.max or "").strip()


@dataclass(frozen=True)
class DateRangeFilter:
    """Inclusive ISO date range."""

    start: str | None = None
    end: str | None = None
    kind: Literal["dateRange"] = field(default="dateRange", init=False)

    def is_empty(self) -> bool:
        return not (self.start or "").strip() and not (self.end or "").strip()


@dataclass(frozen=True)
class EnumSetFilter:
    """Set membership (IN semantics); order is irrelevant."""

    values: frozenset[str] = frozenset()
    kind: Literal["enumSet"] = field(default="enumSet", init=False)

    def is_empty(self) -> bool:
        return not any(v.strip() for v in self.values)

    def sorted_values(self) -> list[str]:
        return sorted(v.strip() for v in self.values if v.strip())


FilterValue = TextFilter | NumberRangeFilter | DateRangeFilter | EnumSetFilter
FilterState = Mapping[str, FilterValue]

FILTER_KINDS: dict[ValueType, type] = {
    "string": TextFilter,
    "numberRange": NumberRangeFilter,
    "dateRange": DateRangeFilter,
    "enumSet": EnumSetFilter,
}


def filter_value_to_dict(value: FilterValue) -> dict[str, Any]:
    """Serialise a filter value to a JSON-safe dict tagged with ``kind``."""
    if isinstance(value, TextFilter):
        return {"kind": value.kind, "text": value.text}
    if isinstance(value, NumberRangeFilter):
        return {"kind": value.kind, "min": value.min, "max": value.max}
    if isinstance(value, DateRangeFilter):
        return {"kind": value.kind, "from": value.start, "to": value.end}
    return {"kind": value.kind, "values": value.sorted_values()}


def filter_value_from_dict(data: Mapping[str, Any]) -> FilterValue | None:
    """Inverse of :func:`filter_value_to_dict`; ``None`` for unknown kinds."""
    kind = data.get("kind")
    if kind == "string":
        return TextFilter(str(data.get("text") or ""))
    if kind == "numberRange":
        return NumberRangeFilter(_opt_str(data.get("min")), _opt_str(data.get("max")))
    if kind == "dateRange":
        return DateRangeFilter(_opt_str(data.get("from")), _opt_str(data.get("to")))
    if kind == "enumSet":
        values = data.get("values") or []
        if not isinstance(values, list):
            return None
        return EnumSetFilter(frozenset(str(v) for v in values))
    return None


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


# ---------------------------------------------------------------------------
# Sort and date window
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class SortState:
    """The single active sort column."""

    column: str
    direction: SortDirection = "asc"


@dataclass(frozen=True)
class DateWindow:
    """Header date-range selection; ``custom`` carries explicit bounds."""

    mode: DateMode = "this-month"
    start: str | None = None
    end: str | None = None


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

def _dig(payload: Any, *path: str) -> Any:
    current = payload
    for key in path:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _first_text(payload: Any, paths: tuple[tuple[str, ...], ...]) -> str | None:
    for path in paths:
        value = _dig(payload, *path)
        if value is None:
            continue
        text = str(value).strip()
        if text:
            return text
    return None


_REASON_PATHS: tuple[tuple[str, ...], ...] = (
    ("metadata", "mismatch_reason"),
    ("metadata", "breakups", "mismatch_reason"),
    ("breakups", "mismatch_reason"),
)
_STATUS_PATHS: tuple[tuple[str, ...], ...] = (
    ("breakups", "recon_status"),
    ("metadata", "breakups", "recon_status"),
    ("status",),
)


@dataclass(frozen=True)
class TransactionRow:
    """Canonical normalized record.

    ``original_payload`` is the raw remote record, kept verbatim so detail
    views can recover fields that normalization dropped.
    """

    identifier: str
    amount: float
    settlement_amount: float
    invoice_date: str
    settlement_date: str
    difference: float
    remark: str
    event_type: str
    original_payload: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @property
    def reason(self) -> str | None:
        """Mismatch reason recovered from the raw payload."""
        return _first_text(self.original_payload, _REASON_PATHS)

    @property
    def status(self) -> str | None:
        """Reconciliation status recovered from the raw payload."""
        return _first_text(self.original_payload, _STATUS_PATHS)

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe dict of the canonical fields (payload excluded)."""
        return {
            "identifier": self.identifier,
            "amount": self.amount,
            "settlement_amount": self.settlement_amount,
            "invoice_date": self.invoice_date,
            "settlement_date": self.settlement_date,
            "difference": self.difference,
            "remark": self.remark,
            "event_type": self.event_type,
            "reason": self.reason,
            "status": self.status,
        }


@dataclass(frozen=True)
class ResponseMeta:
    """Pagination and aggregate blocks of a query response."""

    total_count: int | None = None
    counts: Mapping[str, int] = field(default_factory=dict)
    totals: Mapping[str, float] = field(default_factory=dict)


@dataclass(frozen=True)
class ReasonGroup:
    """Rows sharing one mismatch reason."""

    reason: str
    label: str
    count: int
    amount: float
    row_ids: tuple[str, ...]


# ---------------------------------------------------------------------------
# Tabs and collections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class TabSpec:
    """One category of records.

    Attributes:
        id: Collection key.
        label: Tab caption.
        discriminant: Parameters merged last, overriding anything else.
        defaults: Parameters applied only when the compiled query lacks
            them (a user filter on the same parameter wins).
    """

    id: str
    label: str
    discriminant: Mapping[str, str] = field(default_factory=dict)
    defaults: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class Collection:
    """Rows and counts of one tab, replaced wholesale on every fetch."""

    id: str
    rows: tuple[TransactionRow, ...] = ()
    total_count: int = 0
    last_applied_filters: Mapping[str, FilterValue] = field(default_factory=dict)
    last_applied_sort: SortState | None = None
    error: str | None = None
    counts: Mapping[str, int] = field(default_factory=dict)
    totals: Mapping[str, float] = field(default_factory=dict)
    token: int = 0
    loaded: bool = False


# ---------------------------------------------------------------------------
# Mutations and events
# ---------------------------------------------------------------------------

class TargetCategory(str, Enum):
    """Manual override statuses accepted by the mutation endpoint."""

    MANUALLY_RECONCILED = "MANUALLY_RECONCILED"
    DISPUTED = "DISPUTED"


class MutationPhase(str, Enum):
    TENTATIVE = "tentative"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


@dataclass(frozen=True)
class ManualActionRequest:
    """Body of the category-change mutation."""

    order_ids: tuple[str, ...]
    note: str
    manual_override_status: TargetCategory

    def to_json(self) -> dict[str, Any]:
        return {
            "order_ids": list(self.order_ids),
            "note": self.note,
            "manual_override_status": self.manual_override_status.value,
        }


@dataclass
class PendingMutation:
    """An optimistic category change awaiting the next full refetch."""

    row_ids: tuple[str, ...]
    target: TargetCategory
    note: str = ""
    source_tab: str = "unreconciled"
    phase: MutationPhase = MutationPhase.TENTATIVE
    accepted: bool | None = None
    error: str | None = None
    issued_after_token: int = 0

    @property
    def is_tentative(self) -> bool:
        return self.phase is MutationPhase.TENTATIVE


EventKind = Literal[
    "collection_updated",
    "collection_failed",
    "refetch_settled",
    "rows_removed",
    "mutation_failed",
    "mutation_confirmed",
    "mutation_reverted",
]


@dataclass(frozen=True)
class GridEvent:
    """Notification published by the orchestrator to its subscribers."""

    kind: EventKind
    tab_id: str | None = None
    detail: Mapping[str, Any] = field(default_factory=dict)
