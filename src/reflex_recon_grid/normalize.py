"""Map raw remote records and responses onto canonical rows.

Remote payloads differ depending on which endpoint or mode produced them:
the same concept may live under several keys, inside a nested
``calculation_inputs`` / ``context`` wrapper, or be missing entirely.
Everything here is total -- malformed input degrades to defaults and
sentinels, never to an exception.
"""

import hashlib
import json
import math
import re
from collections.abc import Mapping
from datetime import date, datetime, timezone
from typing import Any

from reflex_recon_grid.models import (
    INVALID_DATE,
    PENDING_DATE,
    ResponseMeta,
    TransactionRow,
)

_NESTED_WRAPPERS: tuple[str, ...] = ("calculation_inputs", "context", "inputs")

_IDENTIFIER_KEYS = ("order_item_id", "order_id", "id", "item_id", "orderItemId", "orderId")
_AMOUNT_KEYS = ("order_value", "buyer_invoice_amount", "amount")
_SETTLEMENT_AMOUNT_KEYS = ("settlement_value", "settlement_amount")
_DIFFERENCE_KEYS = ("diff", "difference")
_INVOICE_DATE_KEYS = ("invoice_date", "order_date", "buyer_invoice_date")
_SETTLEMENT_DATE_KEYS = ("settlement_date", "payment_date")
_EVENT_TYPE_KEYS = ("event_type", "eventType")

_REMARK_PATHS: tuple[tuple[str, ...], ...] = (
    ("metadata", "manual_override_note"),
    ("metadata", "breakups", "mismatch_reason"),
    ("breakups", "mismatch_reason"),
    ("remark",),
)

_ROW_ARRAY_KEYS = ("transactions", "orders", "data")

_DEFAULT_EVENT_TYPE = "Sale"
_DEFAULT_REMARK = "Not Available"

_CURRENCY_NOISE_RE = re.compile(r"[₹$€£,\s]")
_NON_NUMERIC_RE = re.compile(r"[^\d.\-]")
_CURRENCY_PREFIX_RE = re.compile(r"^(?:rs\.?|inr)", re.IGNORECASE)

_DATE_FORMATS: tuple[str, ...] = ("%d-%m-%Y", "%d/%m/%Y", "%Y/%m/%d", "%d %b %Y", "%d %B %Y")


# ---------------------------------------------------------------------------
# Scalar parsing
# ---------------------------------------------------------------------------

def parse_amount(value: Any) -> float:
    """Parse a currency/numeric value; ``0.0`` when absent or unparseable.

    Currency symbols, ``Rs.``/``INR`` prefixes, thousands separators and
    whitespace are removed before parsing, e.g. ``"₹1,234.50"`` -> ``1234.5``
    and ``"Rs. 500"`` -> ``500.0``.
    """
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return number if math.isfinite(number) else 0.0
    stripped = _CURRENCY_NOISE_RE.sub("", _CURRENCY_PREFIX_RE.sub("", str(value).strip()))
    try:
        number = float(stripped)
    except ValueError:
        cleaned = _NON_NUMERIC_RE.sub("", stripped)
        if not cleaned:
            return 0.0
        try:
            number = float(cleaned)
        except ValueError:
            return 0.0
    return number if math.isfinite(number) else 0.0


def parse_date(value: Any) -> date | None:
    """Parse a date or datetime (converted to its UTC date); ``None`` on failure."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return _utc_date(value)
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    try:
        return _utc_date(datetime.fromisoformat(text))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def _utc_date(moment: datetime) -> date:
    if moment.tzinfo is not None:
        moment = moment.astimezone(timezone.utc)
    return moment.date()


def format_date(value: Any, *, missing: str = INVALID_DATE) -> str:
    """Return an ISO ``YYYY-MM-DD`` string or a sentinel.

    Args:
        value: Raw date value.
        missing: Sentinel used when *value* is absent.  Present but
            unparseable values always yield ``"Invalid Date"``.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return missing
    parsed = parse_date(value)
    return parsed.isoformat() if parsed is not None else INVALID_DATE


# ---------------------------------------------------------------------------
# Field lookup
# ---------------------------------------------------------------------------

def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _lookup(raw: Mapping[str, Any], keys: tuple[str, ...]) -> Any:
    """First non-blank value under *keys*, top level before nested wrappers."""
    sources: list[Mapping[str, Any]] = [raw]
    for wrapper in _NESTED_WRAPPERS:
        nested = raw.get(wrapper)
        if isinstance(nested, Mapping):
            sources.append(nested)
    for source in sources:
        for key in keys:
            value = source.get(key)
            if not _is_blank(value):
                return value
    return None


def _lookup_path(raw: Mapping[str, Any], paths: tuple[tuple[str, ...], ...]) -> str | None:
    for path in paths:
        current: Any = raw
        for key in path:
            if not isinstance(current, Mapping):
                current = None
                break
            current = current.get(key)
        if not _is_blank(current):
            return str(current).strip()
    return None


def _fallback_identifier(raw: Mapping[str, Any]) -> str:
    """Deterministic identifier for records that carry none."""
    blob = json.dumps(raw, sort_keys=True, default=str)
    return "ITEM_" + hashlib.sha1(blob.encode("utf-8")).hexdigest()[:12]


# ---------------------------------------------------------------------------
# Rows
# ---------------------------------------------------------------------------

def normalize_row(raw: Any) -> TransactionRow:
    """Map one raw remote record to a :class:`TransactionRow`.

    A row that is already normalized is returned unchanged, so
    normalization can be repeated safely.  Non-mapping input yields an
    empty row with a deterministic identifier.
    """
    if isinstance(raw, TransactionRow):
        return raw
    if not isinstance(raw, Mapping):
        raw = {"value": raw} if raw is not None else {}

    identifier = _lookup(raw, _IDENTIFIER_KEYS)
    event_type = _lookup(raw, _EVENT_TYPE_KEYS)
    return TransactionRow(
        identifier=str(identifier).strip() if identifier is not None else _fallback_identifier(raw),
        amount=parse_amount(_lookup(raw, _AMOUNT_KEYS)),
        settlement_amount=parse_amount(_lookup(raw, _SETTLEMENT_AMOUNT_KEYS)),
        invoice_date=format_date(_lookup(raw, _INVOICE_DATE_KEYS)),
        settlement_date=format_date(_lookup(raw, _SETTLEMENT_DATE_KEYS), missing=PENDING_DATE),
        difference=parse_amount(_lookup(raw, _DIFFERENCE_KEYS)),
        remark=_lookup_path(raw, _REMARK_PATHS) or _DEFAULT_REMARK,
        event_type=str(event_type).strip() if event_type is not None else _DEFAULT_EVENT_TYPE,
        original_payload=raw,
    )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------

def extract_rows(payload: Any) -> list[Any]:
    """Return the raw record list from a query response.

    The first of ``transactions``, ``orders`` and ``data`` that is present
    wins.  Order entries carrying an ``order_items`` list are flattened
    into their items.
    """
    if isinstance(payload, list):
        records = payload
    elif isinstance(payload, Mapping):
        records = []
        for key in _ROW_ARRAY_KEYS:
            if key in payload and payload[key] is not None:
                value = payload[key]
                records = value if isinstance(value, list) else []
                break
    else:
        return []

    flat: list[Any] = []
    for record in records:
        items = record.get("order_items") if isinstance(record, Mapping) else None
        if isinstance(items, list):
            flat.extend(items)
        else:
            flat.append(record)
    return flat


def _as_count(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        count = int(float(value))
    except (TypeError, ValueError):
        return None
    return count if count >= 0 else None


def extract_meta(payload: Any) -> ResponseMeta:
    """Read pagination totals, per-status counts and totals from a response."""
    if not isinstance(payload, Mapping):
        return ResponseMeta()

    meta = payload.get("meta")
    meta = meta if isinstance(meta, Mapping) else {}
    pagination = payload.get("pagination")
    if not isinstance(pagination, Mapping):
        pagination = meta.get("pagination")
    if not isinstance(pagination, Mapping):
        pagination = meta

    # A zero count falls through to the next key; it is only kept when no
    # key carries a positive count.
    total: int | None = None
    for key in ("current_count", "total_count", "total"):
        count = _as_count(pagination.get(key))
        if count:
            total = count
            break
        if count is not None and total is None:
            total = count

    raw_counts = meta.get("counts", payload.get("counts"))
    counts: dict[str, int] = {}
    if isinstance(raw_counts, Mapping):
        for status, value in raw_counts.items():
            count = _as_count(value)
            if count is not None:
                counts[str(status)] = count

    raw_totals = meta.get("totals", payload.get("totals"))
    totals: dict[str, float] = {}
    if isinstance(raw_totals, Mapping):
        totals = {str(k): parse_amount(v) for k, v in raw_totals.items()}

    return ResponseMeta(total_count=total, counts=counts, totals=totals)


def normalize_response(payload: Any) -> tuple[list[TransactionRow], ResponseMeta]:
    """Normalize every record of a response and read its metadata."""
    rows = [normalize_row(record) for record in extract_rows(payload)]
    return rows, extract_meta(payload)
