import asyncio
import json
from datetime import date

import pytest

from reflex_recon_grid.config import GridSettings
from reflex_recon_grid.exceptions import FilterTypeError
from reflex_recon_grid.models import DateWindow, NumberRangeFilter, SortState
from reflex_recon_grid.orchestrator import ViewContext
from reflex_recon_grid.session import ReconGridSession, apply_preset, context_to_preset

from conftest import FakeSink, FakeSource

TODAY = date(2025, 4, 15)


def _session(responses=None, sink=None, page_size=2):
    settings = GridSettings(platform="flipkart", page_size=page_size)
    return ReconGridSession(
        settings,
        source=FakeSource(responses or {}),
        sink=sink or FakeSink(),
        today=TODAY,
    )


def _unreconciled(*ids):
    return {"null": {"data": [{"order_id": i, "diff": "2"} for i in ids]}}


def test_starts_on_first_tab_with_settings_platform():
    session = _session()

    assert session.active_tab == "unreconciled"
    assert session.context.platform == "flipkart"
    assert session.page_size == 2


def test_page_rows_and_page_count():
    session = _session(_unreconciled("A", "B", "C"))
    asyncio.run(session.orchestrator.refetch_all())

    assert [row["identifier"] for row in session.page_rows()] == ["A", "B"]
    assert session.page_count() == 2

    session.set_page(1)
    rows = session.page_rows()
    assert [row["identifier"] for row in rows] == ["C"]
    assert rows[0]["tentative"] is False
    assert rows[0]["difference"] == 2.0


def test_failed_mutation_rows_stay_hidden_until_next_refetch():
    async def scenario():
        session = _session(_unreconciled("A", "B"), sink=FakeSink(error=RuntimeError("offline")))
        await session.orchestrator.refetch_all()
        await session.reconciler.mark_reconciled(["A"])
        return session

    session = asyncio.run(scenario())

    assert session.reconciler.tentative_row_ids("unreconciled") == {"A"}
    assert [row["identifier"] for row in session.page_rows()] == ["B"]

    asyncio.run(session.orchestrator.refetch_all())

    assert session.reconciler.tentative_row_ids("unreconciled") == set()
    assert [row["identifier"] for row in session.page_rows()] == ["A", "B"]


def test_switching_tab_resets_page():
    session = _session()
    session.set_page(4)

    session.set_active_tab("disputed")

    assert session.page == 0


def test_set_active_tab_rejects_unknown_tab():
    session = _session()

    with pytest.raises(KeyError):
        session.set_active_tab("archive")
    assert session.active_tab == "unreconciled"


def test_set_page_clamps_and_ignores_bad_size():
    session = _session()
    session.set_page(-3, page_size=0)

    assert session.page == 0
    assert session.page_size == 2


def test_filter_summary_describes_active_tab():
    session = _session()
    session.filters.set_number_bound("difference", "min", "10")
    session.filters.commit()

    summary = session.filter_summary()

    assert summary.startswith("order_date 2025-04-01..2025-04-30")
    assert "diff >= 10" in summary
    assert "manual_override_status=null" in summary


def test_preset_round_trip_through_json():
    session = _session()
    session.filters.set_number_bound("amount", "max", "500")
    session.filters.commit()
    session.filters.add_identifier("X1")
    session.context.sort = SortState("amount", "desc")
    session.context.date_window = DateWindow("custom", "2025-01-01", "2025-01-31")
    session.set_page(3)

    other = _session()
    other.apply_preset(json.loads(session.preset_json()))

    assert other.filters.applied == {"amount": NumberRangeFilter(None, "500")}
    assert other.filters.identifiers == ("X1",)
    assert other.context.sort == SortState("amount", "desc")
    assert other.context.date_window == DateWindow("custom", "2025-01-01", "2025-01-31")
    assert other.context.platform == "flipkart"
    assert other.to_preset()["version"] == 1


def test_apply_preset_keeps_absent_parts():
    ctx = ViewContext(sort=SortState("difference", "asc"), platform="amazon")

    apply_preset(ctx, {"filters": {}})

    assert ctx.sort == SortState("difference", "asc")
    assert ctx.platform == "amazon"
    assert context_to_preset(ctx)["sort"] == {"column": "difference", "direction": "asc"}


def test_apply_preset_clears_sort_and_platform_when_null():
    ctx = ViewContext(sort=SortState("difference", "asc"), platform="amazon")

    apply_preset(ctx, {"sort": None, "platform": None})

    assert ctx.sort is None
    assert ctx.platform is None


@pytest.mark.parametrize(
    "preset",
    [
        ["not", "an", "object"],
        {"sort": {"column": "amount", "direction": "sideways"}},
        {"filters": "nope"},
    ],
)
def test_malformed_presets_raise(preset):
    with pytest.raises(FilterTypeError):
        apply_preset(ViewContext(), preset)


def test_aclose_stops_reconciler_and_closes_client():
    session = _session()

    asyncio.run(session.aclose())

    assert session.client.is_closed
