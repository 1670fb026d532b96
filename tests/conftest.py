"""Shared fixtures: environment isolation, row builders and fake remotes.

The fakes stand in for :class:`reflex_recon_grid.client.ReconApiClient` on
the orchestrator/reconciler seams so those tests never touch the network.
HTTP behaviour itself is covered with ``httpx.MockTransport`` in
``test_client.py``.
"""

import asyncio
import os
from collections.abc import Callable
from typing import Any

import pytest

from reflex_recon_grid.models import ManualActionRequest, TransactionRow


@pytest.fixture(autouse=True)
def _isolate_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Drop any RECON_GRID_* variables from the developer's shell."""
    for name in list(os.environ):
        if name.startswith("RECON_GRID_"):
            monkeypatch.delenv(name, raising=False)


def make_row(identifier: str, **fields: Any) -> TransactionRow:
    payload = fields.pop("payload", {})
    defaults: dict[str, Any] = {
        "amount": 0.0,
        "settlement_amount": 0.0,
        "invoice_date": "2025-04-01",
        "settlement_date": "Pending",
        "difference": 0.0,
        "remark": "Not Available",
        "event_type": "Sale",
    }
    defaults.update(fields)
    return TransactionRow(identifier=identifier, original_payload=payload, **defaults)


@pytest.fixture
def row_factory() -> Callable[..., TransactionRow]:
    return make_row


class FakeSource:
    """Query source answering per tab from a ``{override_status: payload}`` map.

    A payload may be an exception instance (raised) or a callable taking the
    params.  When ``gate`` is set, every call waits on it first.
    """

    def __init__(self, responses: dict[str, Any], gate: asyncio.Event | None = None) -> None:
        self.responses = responses
        self.gate = gate
        self.calls: list[dict[str, str]] = []

    async def fetch_transactions(self, params: dict[str, str]) -> Any:
        self.calls.append(dict(params))
        if self.gate is not None:
            await self.gate.wait()
        answer = self.responses.get(params.get("manual_override_status", ""), {"data": []})
        if callable(answer):
            answer = answer(params)
        if isinstance(answer, Exception):
            raise answer
        return answer


class FakeSink:
    """Mutation sink that records requests and optionally fails or waits."""

    def __init__(
        self,
        on_request: Callable[[str, ManualActionRequest], Any] | None = None,
        error: Exception | None = None,
        gate: asyncio.Event | None = None,
    ) -> None:
        self.on_request = on_request
        self.error = error
        self.gate = gate
        self.requests: list[tuple[str, ManualActionRequest]] = []

    async def manual_action(self, platform: str, request: ManualActionRequest) -> Any:
        self.requests.append((platform, request))
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        if self.on_request is not None:
            self.on_request(platform, request)
        return {"success": True}


@pytest.fixture
def fake_source_cls() -> type[FakeSource]:
    return FakeSource


@pytest.fixture
def fake_sink_cls() -> type[FakeSink]:
    return FakeSink
