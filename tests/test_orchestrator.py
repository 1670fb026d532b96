import asyncio
from datetime import date

from reflex_recon_grid.exceptions import ReconApiError
from reflex_recon_grid.models import DateWindow, SortState
from reflex_recon_grid.orchestrator import ReconOrchestrator, ViewContext

from conftest import FakeSource

TODAY = date(2025, 4, 15)


def _payload(*ids, total=None, reasons=None):
    reasons = reasons or {}
    rows = [
        {"order_id": i, "diff": "1", "metadata": {"mismatch_reason": reasons[i]}} if i in reasons
        else {"order_id": i, "diff": "1"}
        for i in ids
    ]
    body = {"data": rows}
    if total is not None:
        body["pagination"] = {"total_count": total}
    return body


def _responses(**overrides):
    base = {
        "null": _payload("U1", "U2", "U3", total=40),
        "MANUALLY_RECONCILED": _payload("M1"),
        "DISPUTED": _payload("D1", "D2"),
    }
    base.update(overrides)
    return base


def _orchestrator(source):
    return ReconOrchestrator(source, ViewContext(platform="flipkart"), today=TODAY)


def _ids(coll):
    return [row.identifier for row in coll.rows]


# ----------------------- refetch_all -----------------------


def test_refetch_all_fills_every_tab():
    source = FakeSource(_responses())
    orch = _orchestrator(source)

    collections = asyncio.run(orch.refetch_all())

    assert _ids(collections["unreconciled"]) == ["U1", "U2", "U3"]
    assert collections["unreconciled"].total_count == 40
    assert collections["manually_reconciled"].total_count == 1
    assert collections["disputed"].total_count == 2
    assert all(coll.loaded for coll in collections.values())
    assert orch.errors() == {}
    assert len(source.calls) == 3


def test_one_failing_tab_does_not_affect_siblings():
    source = FakeSource(_responses(DISPUTED=ReconApiError("boom", status_code=500)))
    orch = _orchestrator(source)

    collections = asyncio.run(orch.refetch_all())

    assert _ids(collections["unreconciled"]) == ["U1", "U2", "U3"]
    assert collections["manually_reconciled"].total_count == 1
    assert collections["disputed"].error == "API_ERROR (500): boom"
    assert orch.errors() == {"disputed": "API_ERROR (500): boom"}


def test_failure_keeps_previous_rows():
    responses = _responses()
    source = FakeSource(responses)
    orch = _orchestrator(source)
    asyncio.run(orch.refetch_all())

    responses["DISPUTED"] = RuntimeError("socket closed")
    asyncio.run(orch.refetch_all())

    disputed = orch.collection("disputed")
    assert _ids(disputed) == ["D1", "D2"]
    assert disputed.error == "socket closed"


def test_success_clears_previous_error():
    responses = _responses(DISPUTED=RuntimeError("down"))
    source = FakeSource(responses)
    orch = _orchestrator(source)
    asyncio.run(orch.refetch_all())

    responses["DISPUTED"] = _payload("D9")
    asyncio.run(orch.refetch_all())

    assert orch.collection("disputed").error is None
    assert _ids(orch.collection("disputed")) == ["D9"]


def test_all_requests_dispatched_before_any_completes():
    async def scenario():
        gate = asyncio.Event()
        source = FakeSource(_responses(), gate=gate)
        orch = _orchestrator(source)
        task = asyncio.ensure_future(orch.refetch_all())
        for _ in range(5):
            await asyncio.sleep(0)
        dispatched = len(source.calls)
        gate.set()
        await task
        return dispatched

    assert asyncio.run(scenario()) == 3


def test_each_tab_gets_its_discriminant_and_shared_filters():
    source = FakeSource(_responses())
    orch = _orchestrator(source)
    orch.context.sort = SortState("difference", "desc")

    asyncio.run(orch.refetch_all())

    by_tab = {call["manual_override_status"]: call for call in source.calls}
    assert set(by_tab) == {"null", "MANUALLY_RECONCILED", "DISPUTED"}
    for call in by_tab.values():
        assert call["sort_by"] == "diff"
        assert call["order_date_from"] == "2025-04-01"
        assert call["platform"] == "flipkart"
    assert by_tab["null"]["status_in"] == "less_payment_received,more_payment_received"
    assert "status_in" not in by_tab["DISPUTED"]


def test_stale_response_is_discarded():
    async def scenario():
        slow_gate = asyncio.Event()
        calls = {"n": 0}

        def unreconciled(params):
            calls["n"] += 1
            return _payload("OLD") if calls["n"] == 1 else _payload("NEW")

        class SlowFirstSource(FakeSource):
            async def fetch_transactions(self, params):
                self.calls.append(dict(params))
                answer = self.responses[params["manual_override_status"]]
                result = answer(params) if callable(answer) else answer
                if len(self.calls) <= 3:
                    await slow_gate.wait()
                return result

        orch = _orchestrator(SlowFirstSource(_responses(null=unreconciled)))
        first = asyncio.ensure_future(orch.refetch_all())
        for _ in range(5):
            await asyncio.sleep(0)
        await orch.refetch_all()
        slow_gate.set()
        await first
        return orch

    orch = asyncio.run(scenario())

    assert _ids(orch.collection("unreconciled")) == ["NEW"]


def test_total_count_falls_back_to_row_count():
    source = FakeSource(_responses(null=_payload("U1", "U2")))
    orch = _orchestrator(source)

    asyncio.run(orch.refetch_all())

    assert orch.counts()["unreconciled"] == 2


def test_refetch_single_tab():
    source = FakeSource(_responses())
    orch = _orchestrator(source)

    coll = asyncio.run(orch.refetch("disputed"))

    assert _ids(coll) == ["D1", "D2"]
    assert len(source.calls) == 1
    assert asyncio.run(orch.refetch("nope")) is None


# ----------------------- mutators -----------------------


def test_pending_edits_do_not_fetch_until_applied():
    source = FakeSource(_responses())
    orch = _orchestrator(source)
    orch.context.filters.set_number_bound("difference", "min", "10")

    assert source.calls == []

    asyncio.run(orch.apply_filters())

    assert len(source.calls) == 3
    assert all(call["diff_min"] == "10" for call in source.calls)


def test_apply_filters_scoped_to_one_tab():
    source = FakeSource(_responses())
    orch = _orchestrator(source)
    orch.context.filters.set_enum("status", ["settled"])

    asyncio.run(orch.apply_filters(tab_id="unreconciled"))

    assert len(source.calls) == 1
    assert source.calls[0]["status_in"] == "settled"


def test_click_sort_refetches_only_on_change():
    source = FakeSource(_responses())
    orch = _orchestrator(source)

    asyncio.run(orch.click_sort("amount"))
    assert orch.context.sort == SortState("amount", "asc")
    assert len(source.calls) == 3

    asyncio.run(orch.click_sort("remark"))
    assert len(source.calls) == 3


def test_set_date_window_and_platform():
    source = FakeSource(_responses())
    orch = _orchestrator(source)

    asyncio.run(orch.set_date_window(DateWindow("custom", "2025-01-01", "2025-01-31")))
    asyncio.run(orch.set_platform(" amazon "))

    last = source.calls[-1]
    assert last["order_date_from"] == "2025-01-01"
    assert last["order_date_to"] == "2025-01-31"
    assert last["platform"] == "amazon"


def test_apply_identifiers_and_clear_filters():
    source = FakeSource(_responses())
    orch = _orchestrator(source)

    asyncio.run(orch.apply_identifiers(["A1", "B2"]))
    assert source.calls[-1]["order_id"] == "A1,B2"

    asyncio.run(orch.clear_filters())
    assert "order_id" not in source.calls[-1]
    assert orch.context.filters.identifiers == ()


def test_identifier_override_is_passed_through():
    source = FakeSource(_responses())
    orch = _orchestrator(source)
    orch.context.filters.add_identifier("CHIP")

    asyncio.run(orch.refetch_all(identifier_override="TYPED"))

    assert {call["order_id"] for call in source.calls} == {"TYPED"}


# ----------------------- local reads -----------------------


def test_visible_rows_apply_local_only_filters():
    responses = _responses(null=_payload("U1", "U2", reasons={"U1": "short_payment", "U2": "tcs_mismatch"}))
    source = FakeSource(responses)
    orch = _orchestrator(source)
    orch.context.filters.set_enum("reason", ["short_payment"])

    asyncio.run(orch.apply_filters())

    assert all("reason_in" not in call for call in source.calls)
    assert [row.identifier for row in orch.visible_rows("unreconciled")] == ["U1"]
    groups = orch.reason_groups("unreconciled")
    assert [(g.reason, g.count) for g in groups] == [("short_payment", 1)]


def test_page_reads_visible_rows():
    source = FakeSource(_responses())
    orch = _orchestrator(source)
    asyncio.run(orch.refetch_all())

    assert [row.identifier for row in orch.page("unreconciled", 1, 2)] == ["U3"]


def test_remove_rows_replaces_collection():
    source = FakeSource(_responses())
    orch = _orchestrator(source)
    asyncio.run(orch.refetch_all())
    before = orch.collection("unreconciled")
    events = []
    orch.subscribe(events.append)

    removed = orch.remove_rows("unreconciled", ["U1", "missing"])

    after = orch.collection("unreconciled")
    assert removed == 1
    assert after is not before
    assert _ids(after) == ["U2", "U3"]
    assert after.total_count == 39
    assert _ids(before) == ["U1", "U2", "U3"]
    assert [e.kind for e in events] == ["rows_removed"]


# ----------------------- observers -----------------------


def test_events_and_unsubscribe():
    source = FakeSource(_responses(DISPUTED=ReconApiError("down")))
    orch = _orchestrator(source)
    events = []
    unsubscribe = orch.subscribe(events.append)

    asyncio.run(orch.refetch_all())

    kinds = [e.kind for e in events]
    assert kinds.count("collection_updated") == 2
    assert kinds.count("collection_failed") == 1
    assert kinds[-1] == "refetch_settled"
    assert events[-1].detail["outcome"] == {
        "unreconciled": True,
        "manually_reconciled": True,
        "disputed": False,
    }

    unsubscribe()
    asyncio.run(orch.refetch_all())
    assert len(events) == len(kinds)


def test_failing_listener_does_not_break_others():
    source = FakeSource(_responses())
    orch = _orchestrator(source)
    seen = []

    def broken(event):
        raise RuntimeError("listener bug")

    orch.subscribe(broken)
    orch.subscribe(seen.append)

    asyncio.run(orch.refetch_all())

    assert seen[-1].kind == "refetch_settled"
