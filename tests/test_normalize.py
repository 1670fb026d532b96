import math

import pytest

from reflex_recon_grid.models import TransactionRow
from reflex_recon_grid.normalize import (
    extract_meta,
    extract_rows,
    format_date,
    normalize_response,
    normalize_row,
    parse_amount,
)

# ----------------------- parse_amount -----------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("₹1,234.50", 1234.5),
        ("$ 99", 99.0),
        ("-1,000", -1000.0),
        (12, 12.0),
        (3.25, 3.25),
        ("", 0.0),
        (None, 0.0),
        ("abc", 0.0),
        ("-", 0.0),
        ("1.2.3", 0.0),
        (float("nan"), 0.0),
        (True, 0.0),
        ("Rs. 500", 500.0),
        ("rs 75.5", 75.5),
        ("INR 1,200", 1200.0),
        ("1e3", 1000.0),
        ("inf", 0.0),
    ],
)
def test_parse_amount(raw, expected):
    value = parse_amount(raw)

    assert value == expected
    assert not math.isnan(value)


# ----------------------- dates -----------------------


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("2025-04-03", "2025-04-03"),
        ("2025-04-03T10:00:00Z", "2025-04-03"),
        ("2025-04-03T23:30:00-05:00", "2025-04-04"),
        ("03/04/2025", "2025-04-03"),
        ("03-04-2025", "2025-04-03"),
        ("not a date", "Invalid Date"),
        (None, "Invalid Date"),
    ],
)
def test_format_date(raw, expected):
    assert format_date(raw) == expected


def test_missing_settlement_date_is_pending_but_invalid_is_invalid():
    assert normalize_row({"order_id": "A"}).settlement_date == "Pending"
    assert normalize_row({"order_id": "A", "settlement_date": "soon"}).settlement_date == "Invalid Date"
    assert normalize_row({"order_id": "A"}).invoice_date == "Invalid Date"


# ----------------------- field priority -----------------------


def test_identifier_key_priority():
    assert normalize_row({"order_id": "O1", "order_item_id": "I1"}).identifier == "I1"
    assert normalize_row({"id": 5, "orderId": "X"}).identifier == "5"
    assert normalize_row({"orderItemId": " OI-9 "}).identifier == "OI-9"


def test_fallback_identifier_is_deterministic():
    first = normalize_row({"amount": 5})
    second = normalize_row({"amount": 5})
    other = normalize_row({"amount": 6})

    assert first.identifier.startswith("ITEM_")
    assert first.identifier == second.identifier
    assert first.identifier != other.identifier


def test_blank_values_fall_through_to_next_key():
    row = normalize_row({"order_id": "A", "order_value": "", "buyer_invoice_amount": "250"})

    assert row.amount == 250.0


def test_nested_wrappers_are_flattened_with_top_level_winning():
    row = normalize_row({
        "order_id": "A",
        "order_value": 1,
        "context": {"order_value": 2, "settlement_value": "₹40"},
        "calculation_inputs": {"diff": "-3.5", "settlement_value": "10"},
    })

    assert row.amount == 1.0
    assert row.settlement_amount == 10.0
    assert row.difference == -3.5


def test_remark_priority():
    raw = {
        "order_id": "A",
        "remark": "plain",
        "breakups": {"mismatch_reason": "from breakups"},
        "metadata": {
            "manual_override_note": "operator note",
            "breakups": {"mismatch_reason": "from metadata"},
        },
    }

    assert normalize_row(raw).remark == "operator note"
    del raw["metadata"]["manual_override_note"]
    assert normalize_row(raw).remark == "from metadata"
    del raw["metadata"]
    assert normalize_row(raw).remark == "from breakups"
    del raw["breakups"]
    assert normalize_row(raw).remark == "plain"
    del raw["remark"]
    assert normalize_row(raw).remark == "Not Available"


def test_event_type_defaults_to_sale():
    assert normalize_row({"order_id": "A"}).event_type == "Sale"
    assert normalize_row({"order_id": "A", "eventType": "Return"}).event_type == "Return"


def test_reason_and_status_are_derived_from_payload():
    row = normalize_row({
        "order_id": "A",
        "metadata": {"breakups": {"mismatch_reason": " short_payment "}},
        "breakups": {"recon_status": "less_payment_received"},
    })

    assert row.reason == "short_payment"
    assert row.status == "less_payment_received"


def test_payload_is_kept_verbatim():
    raw = {"order_id": "A", "extra": {"nested": [1, 2]}}

    assert normalize_row(raw).original_payload == raw


def test_normalize_is_idempotent():
    row = normalize_row({"order_id": "A", "order_value": "10"})

    assert normalize_row(row) is row


def test_non_mapping_input_does_not_raise():
    row = normalize_row("garbage")

    assert isinstance(row, TransactionRow)
    assert row.amount == 0.0
    assert row.identifier.startswith("ITEM_")


# ----------------------- responses -----------------------


def test_extract_rows_first_present_key_wins():
    payload = {"transactions": [], "data": [{"order_id": "X"}]}

    assert extract_rows(payload) == []


def test_extract_rows_flattens_order_items():
    payload = {
        "orders": [
            {"order_id": "O1", "order_items": [{"order_item_id": "I1"}, {"order_item_id": "I2"}]},
            {"order_id": "O2"},
        ]
    }

    assert extract_rows(payload) == [{"order_item_id": "I1"}, {"order_item_id": "I2"}, {"order_id": "O2"}]


@pytest.mark.parametrize("payload", [None, "oops", 42, {"unexpected": []}, {"data": "not a list"}])
def test_extract_rows_tolerates_bad_shapes(payload):
    assert extract_rows(payload) == []


def test_extract_rows_accepts_bare_list():
    assert extract_rows([{"order_id": "A"}]) == [{"order_id": "A"}]


def test_extract_meta_prefers_current_count():
    meta = extract_meta({
        "meta": {
            "pagination": {"current_count": 7, "total_count": 9},
            "counts": {"less_payment_received": "3", "bad": "x"},
            "totals": {"diff": "₹1,000"},
        }
    })

    assert meta.total_count == 7
    assert meta.counts == {"less_payment_received": 3}
    assert meta.totals == {"diff": 1000.0}


def test_extract_meta_top_level_pagination():
    assert extract_meta({"pagination": {"total_count": 4}}).total_count == 4
    assert extract_meta({"meta": {"total_count": "12"}}).total_count == 12


def test_extract_meta_zero_count_falls_through():
    assert extract_meta({"pagination": {"current_count": 0, "total_count": 5}}).total_count == 5
    assert extract_meta({"pagination": {"current_count": "0", "total_count": 0}}).total_count == 0


def test_extract_meta_missing():
    meta = extract_meta({"data": []})

    assert meta.total_count is None
    assert meta.counts == {}


def test_normalize_response():
    rows, meta = normalize_response({"data": [{"order_id": "A", "diff": "5"}], "pagination": {"total_count": 30}})

    assert [row.identifier for row in rows] == ["A"]
    assert rows[0].difference == 5.0
    assert meta.total_count == 30
