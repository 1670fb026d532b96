"""Client-side filtering, sorting and grouping of already-fetched rows.

The predicates here mirror :mod:`reflex_recon_grid.query_compiler` so that
local results never visibly disagree with what the server returns.  Rows
are loaded into a small polars DataFrame (every value as a string), typed
per column with non-strict casts, filtered and sorted with polars
expressions, and mapped back to the original row objects by index.
"""

from collections.abc import Iterable, Sequence
from typing import Any

import polars as pl

from reflex_recon_grid.columns import COLUMN_REGISTRY, format_reason_label, identifier_column
from reflex_recon_grid.logging_setup import get_logger
from reflex_recon_grid.models import (
    ColumnDescriptor,
    DateRangeFilter,
    EnumSetFilter,
    FilterState,
    FilterValue,
    NumberRangeFilter,
    ReasonGroup,
    SortState,
    TextFilter,
    TransactionRow,
)
from reflex_recon_grid.normalize import parse_date
from reflex_recon_grid.query_compiler import parse_bound

logger = get_logger(__name__)

_ROW_INDEX = "__row_idx__"


# ---------------------------------------------------------------------------
# Frame construction
# ---------------------------------------------------------------------------

def _as_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, float):
        return repr(value)
    return str(value)


def _rows_frame(rows: Sequence[TransactionRow], columns: Iterable[ColumnDescriptor]) -> pl.DataFrame:
    """Build a String-typed frame with one column per descriptor."""
    data: dict[str, list[Any]] = {_ROW_INDEX: list(range(len(rows)))}
    schema: dict[str, pl.DataType] = {_ROW_INDEX: pl.Int64()}
    for col in columns:
        data[col.name] = [_as_text(getattr(row, col.row_field, None)) for row in rows]
        schema[col.name] = pl.String()
    return pl.DataFrame(data, schema=schema)


def _typed_expr(descriptor: ColumnDescriptor) -> pl.Expr:
    """Column expression coerced to the descriptor's type (null on failure)."""
    col = pl.col(descriptor.name)
    if descriptor.value_type == "numberRange":
        return col.str.strip_chars().cast(pl.Float64, strict=False)
    if descriptor.value_type == "dateRange":
        return col.str.strip_chars().str.slice(0, 10).str.to_date("%Y-%m-%d", strict=False)
    return col


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------

def _filter_expr(descriptor: ColumnDescriptor, value: FilterValue) -> pl.Expr | None:
    """Translate one filter value to a boolean expression (``None`` = pass-all)."""
    vtype = descriptor.value_type
    typed = _typed_expr(descriptor)

    if vtype == "string" and isinstance(value, TextFilter):
        needle = value.text.strip().lower()
        if not needle:
            return None
        return typed.str.to_lowercase().str.contains(needle, literal=True).fill_null(False)

    if vtype == "numberRange" and isinstance(value, NumberRangeFilter):
        low = parse_bound(value.min)
        high = parse_bound(value.max)
        conditions: list[pl.Expr] = []
        if low is not None:
            conditions.append(typed >= low)
        if high is not None:
            conditions.append(typed <= high)
        return _all_of(conditions)

    if vtype == "dateRange" and isinstance(value, DateRangeFilter):
        start = parse_date(value.start)
        end = parse_date(value.end)
        conditions = []
        if start is not None:
            conditions.append(typed >= pl.lit(start))
        if end is not None:
            conditions.append(typed <= pl.lit(end))
        return _all_of(conditions)

    if vtype == "enumSet" and isinstance(value, EnumSetFilter):
        members = value.sorted_values()
        if not members:
            return None
        return typed.str.strip_chars().is_in(members).fill_null(False)

    logger.debug(
        "[LocalFilter] skipping %s filter on %r (column is %s)",
        getattr(value, "kind", type(value).__name__),
        descriptor.name,
        vtype,
    )
    return None


def _all_of(conditions: list[pl.Expr]) -> pl.Expr | None:
    if not conditions:
        return None
    combined = conditions[0]
    for cond in conditions[1:]:
        combined = combined & cond
    return combined.fill_null(False)


def _sort_expr(descriptor: ColumnDescriptor) -> pl.Expr:
    typed = _typed_expr(descriptor)
    if descriptor.value_type in ("string", "enumSet"):
        # Case-insensitive ordering stands in for locale collation.
        return typed.str.to_lowercase()
    return typed


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def evaluate(
    rows: Sequence[TransactionRow],
    filters: FilterState,
    sort: SortState | None,
    *,
    identifiers: Iterable[str] = (),
) -> list[TransactionRow]:
    """Filter and sort *rows* locally.

    Args:
        rows: Normalized rows, in server order.
        filters: Filters keyed by column name.  Unknown columns and values
            whose kind does not match the column are ignored.
        sort: Active sort; ``None`` keeps the input order.
        identifiers: Identifier chips.  When non-empty only rows whose
            identifier is in the list pass; a generic filter on the
            identifier column is ignored, as in the compiled query.

    Returns:
        A new list; *rows* is not modified.
    """
    if not rows:
        return []

    id_col = identifier_column()
    exprs: list[pl.Expr] = []
    used: dict[str, ColumnDescriptor] = {}

    for column, value in filters.items():
        descriptor = COLUMN_REGISTRY.get(column)
        if descriptor is None or descriptor.identifier:
            continue
        expr = _filter_expr(descriptor, value)
        if expr is not None:
            exprs.append(expr)
            used[descriptor.name] = descriptor

    chips = sorted({str(i).strip() for i in identifiers if str(i).strip()})
    if chips:
        exprs.append(pl.col(id_col.name).is_in(chips).fill_null(False))
        used[id_col.name] = id_col

    sort_desc = COLUMN_REGISTRY.get(sort.column) if sort is not None else None
    if sort_desc is not None:
        used[sort_desc.name] = sort_desc

    if not exprs and sort_desc is None:
        return list(rows)

    df = _rows_frame(rows, used.values())
    if exprs:
        combined = exprs[0]
        for expr in exprs[1:]:
            combined = combined & expr
        df = df.filter(combined)

    if sort_desc is not None and sort is not None:
        df = df.sort(
            _sort_expr(sort_desc),
            descending=sort.direction == "desc",
            nulls_last=True,
            maintain_order=True,
        )

    return [rows[i] for i in df[_ROW_INDEX].to_list()]


def page_slice(rows: Sequence[TransactionRow], page: int, page_size: int) -> list[TransactionRow]:
    """Return the zero-based *page* of *rows*; out-of-range pages are empty."""
    if page < 0 or page_size <= 0:
        return []
    start = page * page_size
    return list(rows[start:start + page_size])


def group_by_reason(rows: Sequence[TransactionRow]) -> list[ReasonGroup]:
    """Group rows by mismatch reason, largest groups first.

    ``amount`` is the summed ``difference`` of the group.  Rows without a
    reason are grouped under ``""`` (labelled ``"Unknown"``).
    """
    if not rows:
        return []

    df = pl.DataFrame(
        {
            "reason": [row.reason or "" for row in rows],
            "difference": [row.difference for row in rows],
            "identifier": [row.identifier for row in rows],
        },
        schema={"reason": pl.String(), "difference": pl.Float64(), "identifier": pl.String()},
    )
    grouped = (
        df.group_by("reason", maintain_order=True)
        .agg(
            pl.len().alias("count"),
            pl.col("difference").sum().alias("amount"),
            pl.col("identifier").alias("row_ids"),
        )
        .sort(["count", "reason"], descending=[True, False])
    )

    return [
        ReasonGroup(
            reason=record["reason"],
            label=format_reason_label(record["reason"]),
            count=int(record["count"]),
            amount=float(record["amount"]),
            row_ids=tuple(record["row_ids"]),
        )
        for record in grouped.iter_rows(named=True)
    ]
