"""Compile filter, sort and date-window state into remote query parameters.

The compiler is a pure function of its inputs.  It never raises: a filter
that cannot be translated (unknown column, mismatched kind, unparseable
bound) is simply left out of the query.

Per-type rules:

* **string** -- trimmed text as ``{param}=text``.
* **numberRange** -- ``{param}_min`` / ``{param}_max``, each bound parsed
  independently as a float.
* **dateRange** -- ``{param}_from`` / ``{param}_to`` for non-empty bounds.
* **enumSet** -- one CSV parameter (IN semantics).

Columns flagged ``server_supported=False`` are never emitted.  The
identifier column is handled separately from the generic rules and is
sourced from the chip list (or an explicit override).
"""

import calendar
import math
from collections.abc import Iterable, Mapping
from datetime import date, datetime, timezone

from reflex_recon_grid.columns import COLUMN_REGISTRY, identifier_column, primary_date_column
from reflex_recon_grid.logging_setup import get_logger
from reflex_recon_grid.models import (
    ColumnDescriptor,
    DateRangeFilter,
    DateWindow,
    EnumSetFilter,
    FilterState,
    FilterValue,
    NumberRangeFilter,
    SortState,
    TabSpec,
    TextFilter,
)

logger = get_logger(__name__)

QueryParams = dict[str, str]

_FILTER_TYPES = (TextFilter, NumberRangeFilter, DateRangeFilter, EnumSetFilter)


# ---------------------------------------------------------------------------
# Scalar helpers (shared with the local evaluator)
# ---------------------------------------------------------------------------

def parse_bound(raw: str | float | int | None) -> float | None:
    """Parse a numeric range bound; ``None`` when empty or unparseable."""
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        value = float(raw)
    else:
        text = str(raw).strip()
        if not text:
            return None
        try:
            value = float(text)
        except ValueError:
            return None
    if not math.isfinite(value):
        return None
    return value


def format_number(value: float) -> str:
    """Render a bound without a trailing ``.0`` for integral values."""
    if value.is_integer():
        return str(int(value))
    return repr(value)


def _utc_today() -> date:
    return datetime.now(timezone.utc).date()


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def resolve_date_window(window: DateWindow | None, today: date | None = None) -> tuple[str, str]:
    """Return ISO ``(from, to)`` bounds for the header date selection.

    ``this-month``, ``last-month`` and ``this-year`` are UTC calendar
    boundaries.  ``custom`` uses its explicit bounds.  Anything that does
    not resolve falls back to the current UTC month.
    """
    today = today or _utc_today()
    mode = window.mode if window is not None else "this-month"

    if mode == "last-month":
        year, month = (today.year, today.month - 1) if today.month > 1 else (today.year - 1, 12)
        first, last = _month_bounds(year, month)
        return first.isoformat(), last.isoformat()
    if mode == "this-year":
        return date(today.year, 1, 1).isoformat(), date(today.year, 12, 31).isoformat()
    if mode == "custom" and window is not None:
        start = (window.start or "").strip()
        end = (window.end or "").strip()
        if start and end:
            return start, end

    first, last = _month_bounds(today.year, today.month)
    return first.isoformat(), last.isoformat()


# ---------------------------------------------------------------------------
# Per-column translation
# ---------------------------------------------------------------------------

def _filter_params(descriptor: ColumnDescriptor, value: FilterValue) -> QueryParams:
    """Translate one filter value to parameters (possibly none)."""
    param = descriptor.remote_param
    vtype = descriptor.value_type

    if vtype == "string" and isinstance(value, TextFilter):
        text = value.text.strip()
        return {param: text} if text else {}

    if vtype == "numberRange" and isinstance(value, NumberRangeFilter):
        out: QueryParams = {}
        low = parse_bound(value.min)
        high = parse_bound(value.max)
        if low is not None:
            out[f"{param}_min"] = format_number(low)
        if high is not None:
            out[f"{param}_max"] = format_number(high)
        return out

    if vtype == "dateRange" and isinstance(value, DateRangeFilter):
        out = {}
        start = (value.start or "").strip()
        end = (value.end or "").strip()
        if start:
            out[f"{param}_from"] = start
        if end:
            out[f"{param}_to"] = end
        return out

    if vtype == "enumSet" and isinstance(value, EnumSetFilter):
        values = value.sorted_values()
        return {param: ",".join(values)} if values else {}

    logger.debug(
        "[QueryCompiler] skipping %s filter on %r (column is %s)",
        getattr(value, "kind", type(value).__name__),
        descriptor.name,
        vtype,
    )
    return {}


def _identifier_csv(identifiers: Iterable[str], override: str | None) -> str:
    if override is not None:
        parts = override.split(",")
    else:
        parts = list(identifiers)
    seen: list[str] = []
    for part in parts:
        token = str(part).strip()
        if token and token not in seen:
            seen.append(token)
    return ",".join(seen)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def compile_query(
    applied: FilterState,
    sort: SortState | None,
    date_window: DateWindow | None,
    tab: TabSpec | None = None,
    identifier_override: str | None = None,
    *,
    identifiers: Iterable[str] = (),
    platform: str | None = None,
    today: date | None = None,
) -> QueryParams:
    """Compile the applied view state into flat remote query parameters.

    Args:
        applied: Committed filters keyed by column name.
        sort: Active sort, or ``None`` for server default ordering.
        date_window: Header date selection used when the primary date
            column has no explicit bound.
        tab: The collection being queried.  Its ``defaults`` fill absent
            parameters and its ``discriminant`` is merged last.
        identifier_override: Comma-separated identifiers that replace the
            chip list (used when the chips have not been committed yet).
        identifiers: The running identifier chip list.
        platform: Marketplace platform, emitted as ``platform``.
        today: Injected UTC date for the default window.

    Returns:
        A dict with only non-empty values.
    """
    params: QueryParams = {}
    id_col = identifier_column()
    date_col = primary_date_column()

    for column, value in applied.items():
        descriptor = COLUMN_REGISTRY.get(column)
        if descriptor is None:
            logger.debug("[QueryCompiler] ignoring unknown column %r", column)
            continue
        if not descriptor.server_supported or descriptor.identifier:
            continue
        if not isinstance(value, _FILTER_TYPES) or value.is_empty():
            continue
        params.update(_filter_params(descriptor, value))

    id_csv = _identifier_csv(identifiers, identifier_override)
    if id_csv:
        params[id_col.remote_param] = id_csv

    from_key = f"{date_col.remote_param}_from"
    to_key = f"{date_col.remote_param}_to"
    # A half-open primary date filter gives way to the header window.
    if from_key not in params or to_key not in params:
        params[from_key], params[to_key] = resolve_date_window(date_window, today)

    if sort is not None:
        sort_desc = COLUMN_REGISTRY.get(sort.column)
        if sort_desc is not None and sort_desc.sort_key and sort.direction in ("asc", "desc"):
            params["sort_by"] = sort_desc.sort_key
            params["sort_order"] = sort.direction

    if platform and platform.strip():
        params["platform"] = platform.strip()

    if tab is not None:
        for key, value in tab.defaults.items():
            if value != "" and key not in params:
                params[key] = value
        for key, value in tab.discriminant.items():
            if value != "":
                params[key] = value

    return params


def describe_query(params: Mapping[str, str]) -> str:
    """Return a compact one-line summary of compiled parameters.

    Example::

        order_date 2025-04-01..2025-04-30 | diff >= 10 | sort diff desc
    """
    parts: list[str] = []
    consumed: set[str] = set()

    for key in sorted(params):
        if key.endswith("_from"):
            base = key[: -len("_from")]
            consumed.update({key, f"{base}_to"})
            parts.append(f"{base} {params[key]}..{params.get(f'{base}_to', '')}")
        elif key.endswith("_to") and f"{key[:-3]}_from" not in params:
            consumed.add(key)
            parts.append(f"{key[:-3]} ..{params[key]}")

    for key in sorted(params):
        if key in consumed or key in ("sort_by", "sort_order"):
            continue
        if key.endswith("_min"):
            parts.append(f"{key[:-4]} >= {params[key]}")
        elif key.endswith("_max"):
            parts.append(f"{key[:-4]} <= {params[key]}")
        else:
            parts.append(f"{key}={params[key]}")

    if "sort_by" in params:
        parts.append(f"sort {params['sort_by']} {params.get('sort_order', 'asc')}")
    return " | ".join(parts) if parts else "No parameters."
