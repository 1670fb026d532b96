"""Column metadata registry for the reconciliation tables.

The registry is the single source of truth for how a column is filtered,
sorted and mapped to remote parameters.  Other modules must consult
:func:`describe` (and in particular ``server_supported``) instead of
special-casing column names.
"""

from collections.abc import Mapping
from types import MappingProxyType

from reflex_recon_grid.exceptions import UnknownColumnError
from reflex_recon_grid.models import ColumnDescriptor

_COLUMNS: tuple[ColumnDescriptor, ...] = (
    ColumnDescriptor(
        name="order_id",
        label="Order ID",
        value_type="string",
        remote_param="order_id",
        row_field="identifier",
        identifier=True,
    ),
    ColumnDescriptor(
        name="status",
        label="Status",
        value_type="enumSet",
        remote_param="status_in",
        row_field="status",
    ),
    ColumnDescriptor(
        name="invoice_date",
        label="Invoice Date",
        value_type="dateRange",
        remote_param="order_date",
        row_field="invoice_date",
        sort_key="invoice_date",
        primary_date=True,
    ),
    ColumnDescriptor(
        name="settlement_date",
        label="Settlement Date",
        value_type="dateRange",
        remote_param="settlement_date",
        row_field="settlement_date",
        sort_key="settlement_date",
    ),
    ColumnDescriptor(
        name="amount",
        label="Order Value",
        value_type="numberRange",
        remote_param="order_value",
        row_field="amount",
        sort_key="order_value",
    ),
    ColumnDescriptor(
        name="settlement_amount",
        label="Settlement Value",
        value_type="numberRange",
        remote_param="settlement_value",
        row_field="settlement_amount",
        sort_key="settlement_value",
    ),
    ColumnDescriptor(
        name="difference",
        label="Difference",
        value_type="numberRange",
        remote_param="diff",
        row_field="difference",
        sort_key="diff",
    ),
    ColumnDescriptor(
        name="remark",
        label="Remark",
        value_type="string",
        remote_param="remark",
        row_field="remark",
    ),
    # The query API does not filter on reason; evaluated locally only.
    ColumnDescriptor(
        name="reason",
        label="Reason",
        value_type="enumSet",
        remote_param="reason_in",
        row_field="reason",
        server_supported=False,
    ),
    ColumnDescriptor(
        name="event_type",
        label="Event Type",
        value_type="enumSet",
        remote_param="event_type",
        row_field="event_type",
    ),
)

COLUMN_REGISTRY: Mapping[str, ColumnDescriptor] = MappingProxyType(
    {col.name: col for col in _COLUMNS}
)


def describe(column: str) -> ColumnDescriptor:
    """Return the descriptor for *column*.

    Raises:
        UnknownColumnError: If *column* is not registered.
    """
    try:
        return COLUMN_REGISTRY[column]
    except KeyError:
        raise UnknownColumnError(column) from None


def is_known(column: str) -> bool:
    return column in COLUMN_REGISTRY


def column_names() -> list[str]:
    """Registered column names in display order."""
    return list(COLUMN_REGISTRY)


def sortable_columns() -> list[str]:
    """Columns that map to a server sort key (the sort allowlist)."""
    return [col.name for col in _COLUMNS if col.sort_key is not None]


def identifier_column() -> ColumnDescriptor:
    return next(col for col in _COLUMNS if col.identifier)


def primary_date_column() -> ColumnDescriptor:
    return next(col for col in _COLUMNS if col.primary_date)


def format_reason_label(reason: str | None) -> str:
    """Turn a backend reason key into a caption.

    Examples:
        ``"customer_add_ons"`` -> ``"Customer Add Ons"``
        ``""`` -> ``"Unknown"``
    """
    if not reason or not reason.strip():
        return "Unknown"
    normalized = reason.replace("_", " ").replace("-", " ")
    return " ".join(part[:1].upper() + part[1:] for part in normalized.split())
