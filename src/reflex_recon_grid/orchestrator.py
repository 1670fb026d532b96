"""Concurrent fetching of every reconciliation tab from one shared view state.

The orchestrator is the only component that talks to the query source.
All filter, sort, date-window and platform changes go through it so that
every tab is always fetched with the same configuration.

Each dispatch carries a request token.  Tokens increase monotonically per
tab, and a response that arrives after a newer request was issued for the
same tab is dropped instead of overwriting fresher rows.
"""

import asyncio
import time
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from datetime import date
from typing import Any, Protocol

from reflex_recon_grid.filter_state import FilterSession
from reflex_recon_grid.local_filter import evaluate, group_by_reason, page_slice
from reflex_recon_grid.logging_setup import get_logger
from reflex_recon_grid.models import (
    Collection,
    DateWindow,
    EventKind,
    FilterValue,
    GridEvent,
    ReasonGroup,
    SortState,
    TabSpec,
    TransactionRow,
)
from reflex_recon_grid.normalize import normalize_response
from reflex_recon_grid.query_compiler import QueryParams, compile_query, describe_query
from reflex_recon_grid.sorting import next_sort

logger = get_logger(__name__)

Listener = Callable[[GridEvent], None]

DEFAULT_TABS: tuple[TabSpec, ...] = (
    TabSpec(
        id="unreconciled",
        label="Unreconciled",
        discriminant={"manual_override_status": "null"},
        defaults={
            "status_in": "less_payment_received,more_payment_received",
            "pagination": "false",
        },
    ),
    TabSpec(
        id="manually_reconciled",
        label="Manually Reconciled",
        discriminant={"manual_override_status": "MANUALLY_RECONCILED"},
    ),
    TabSpec(
        id="disputed",
        label="Disputed",
        discriminant={"manual_override_status": "DISPUTED"},
    ),
)

_DEFAULT_PAGE_SIZE = 25


class QuerySource(Protocol):
    """Anything that can run a list query (``ReconApiClient`` in practice)."""

    async def fetch_transactions(self, params: Mapping[str, str]) -> Any: ...


@dataclass
class ViewContext:
    """The shared configuration every tab is fetched with."""

    filters: FilterSession = field(default_factory=FilterSession)
    sort: SortState | None = None
    date_window: DateWindow = field(default_factory=DateWindow)
    platform: str | None = None


@dataclass(frozen=True)
class _Dispatch:
    tab: TabSpec
    params: QueryParams
    token: int
    filters: Mapping[str, FilterValue]
    sort: SortState | None


class ReconOrchestrator:
    """Owns the tab collections and every fetch that fills them.

    Args:
        source: Query source; its ``fetch_transactions`` coroutine receives
            the compiled parameters of one tab.
        context: Shared view configuration.  A fresh one is created when
            omitted.
        tabs: The collections to maintain.
        today: Fixed UTC date for the default window (tests).
    """

    def __init__(
        self,
        source: QuerySource,
        context: ViewContext | None = None,
        tabs: Sequence[TabSpec] = DEFAULT_TABS,
        *,
        today: date | None = None,
    ) -> None:
        if not tabs:
            raise ValueError("At least one tab is required")
        self.source = source
        self.context = context or ViewContext()
        self.tabs: tuple[TabSpec, ...] = tuple(tabs)
        self._tabs_by_id = {tab.id: tab for tab in self.tabs}
        self._today = today
        self._collections: dict[str, Collection] = {tab.id: Collection(id=tab.id) for tab in self.tabs}
        self._token_counter = 0
        self._latest_token: dict[str, int] = {tab.id: 0 for tab in self.tabs}
        self._full_refetch_seq = 0
        self._listeners: list[Listener] = []

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register *listener*; returns a callable that unregisters it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def publish(self, kind: EventKind, tab_id: str | None = None, **detail: Any) -> None:
        event = GridEvent(kind=kind, tab_id=tab_id, detail=detail)
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:
                logger.exception("[ReconOrchestrator] listener failed on %s event", kind)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    @property
    def full_refetch_seq(self) -> int:
        """Number of full refetches dispatched so far."""
        return self._full_refetch_seq

    def tab(self, tab_id: str) -> TabSpec:
        try:
            return self._tabs_by_id[tab_id]
        except KeyError:
            raise KeyError(f"Unknown tab: {tab_id!r}") from None

    def collection(self, tab_id: str) -> Collection:
        self.tab(tab_id)
        return self._collections[tab_id]

    def collections(self) -> dict[str, Collection]:
        return dict(self._collections)

    def counts(self) -> dict[str, int]:
        return {tab_id: coll.total_count for tab_id, coll in self._collections.items()}

    def errors(self) -> dict[str, str]:
        return {
            tab_id: coll.error
            for tab_id, coll in self._collections.items()
            if coll.error is not None
        }

    def visible_rows(self, tab_id: str) -> list[TransactionRow]:
        """Rows of *tab_id* after the applied filters and sort run locally."""
        coll = self.collection(tab_id)
        return evaluate(
            coll.rows,
            self.context.filters.applied,
            self.context.sort,
            identifiers=self.context.filters.identifiers,
        )

    def page(self, tab_id: str, page: int, page_size: int = _DEFAULT_PAGE_SIZE) -> list[TransactionRow]:
        return page_slice(self.visible_rows(tab_id), page, page_size)

    def reason_groups(self, tab_id: str) -> list[ReasonGroup]:
        return group_by_reason(self.visible_rows(tab_id))

    def compile(self, tab_id: str, identifier_override: str | None = None) -> QueryParams:
        """Compile the current shared state for one tab (no fetch)."""
        ctx = self.context
        return compile_query(
            ctx.filters.applied,
            ctx.sort,
            ctx.date_window,
            self.tab(tab_id),
            identifier_override,
            identifiers=ctx.filters.identifiers,
            platform=ctx.platform,
            today=self._today,
        )

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    async def refetch_all(self, identifier_override: str | None = None) -> dict[str, Collection]:
        """Fetch every tab concurrently and wait for all of them.

        Parameters for all tabs are compiled before the first request is
        sent.  A failing tab records its error and keeps its previous rows;
        the others are unaffected.  Never raises.

        Returns:
            A snapshot of every collection after the fetch settled.
        """
        self._full_refetch_seq += 1
        seq = self._full_refetch_seq
        dispatches = [self._prepare(tab, identifier_override) for tab in self.tabs]

        t0 = time.perf_counter()
        logger.info(
            "[ReconOrchestrator] refetch #%d: %d tabs | %s",
            seq, len(dispatches), describe_query(dispatches[0].params),
        )
        results = await asyncio.gather(*(self._run(d) for d in dispatches))
        elapsed_ms = (time.perf_counter() - t0) * 1000

        outcome = {d.tab.id: ok for d, ok in zip(dispatches, results)}
        failed = [tab_id for tab_id, ok in outcome.items() if ok is False]
        logger.info(
            "[ReconOrchestrator] refetch #%d settled: %d ok, %d failed (%.1fms)",
            seq, sum(1 for ok in outcome.values() if ok), len(failed), elapsed_ms,
        )
        self.publish("refetch_settled", full=True, sequence=seq, outcome=outcome)
        return self.collections()

    async def refetch(self, tab_id: str, identifier_override: str | None = None) -> Collection | None:
        """Fetch a single tab; ``None`` when *tab_id* is unknown."""
        tab = self._tabs_by_id.get(tab_id)
        if tab is None:
            logger.warning("[ReconOrchestrator] refetch of unknown tab %r ignored", tab_id)
            return None
        dispatch = self._prepare(tab, identifier_override)
        ok = await self._run(dispatch)
        self.publish("refetch_settled", tab_id, full=False, outcome={tab_id: ok})
        return self._collections[tab_id]

    def _prepare(self, tab: TabSpec, identifier_override: str | None) -> _Dispatch:
        self._token_counter += 1
        token = self._token_counter
        self._latest_token[tab.id] = token
        return _Dispatch(
            tab=tab,
            params=self.compile(tab.id, identifier_override),
            token=token,
            filters=self.context.filters.applied,
            sort=self.context.sort,
        )

    async def _run(self, dispatch: _Dispatch) -> bool | None:
        """Execute one dispatch.

        Returns:
            ``True`` on success, ``False`` on failure and ``None`` when the
            response was stale and dropped.
        """
        tab_id = dispatch.tab.id
        t0 = time.perf_counter()
        try:
            payload = await self.source.fetch_transactions(dispatch.params)
        except Exception as exc:
            if self._is_stale(dispatch):
                return None
            logger.warning("[ReconOrchestrator] tab %r failed: %s", tab_id, exc)
            previous = self._collections[tab_id]
            self._collections[tab_id] = replace(previous, error=str(exc) or type(exc).__name__, token=dispatch.token)
            self.publish("collection_failed", tab_id, error=str(exc), token=dispatch.token)
            return False

        if self._is_stale(dispatch):
            return None

        rows, meta = normalize_response(payload)
        total = meta.total_count if meta.total_count is not None else len(rows)
        self._collections[tab_id] = Collection(
            id=tab_id,
            rows=tuple(rows),
            total_count=total,
            last_applied_filters=dispatch.filters,
            last_applied_sort=dispatch.sort,
            error=None,
            counts=dict(meta.counts),
            totals=dict(meta.totals),
            token=dispatch.token,
            loaded=True,
        )
        logger.debug(
            "[ReconOrchestrator] tab %r: %d rows, total=%d (%.1fms)",
            tab_id, len(rows), total, (time.perf_counter() - t0) * 1000,
        )
        self.publish("collection_updated", tab_id, rows=len(rows), total_count=total, token=dispatch.token)
        return True

    def _is_stale(self, dispatch: _Dispatch) -> bool:
        latest = self._latest_token[dispatch.tab.id]
        if dispatch.token < latest:
            logger.debug(
                "[ReconOrchestrator] dropping stale response for %r (token %d < %d)",
                dispatch.tab.id, dispatch.token, latest,
            )
            return True
        return False

    # ------------------------------------------------------------------
    # Mutators (each ends in a fetch)
    # ------------------------------------------------------------------

    async def apply_filters(self, only: Iterable[str] | None = None, *, tab_id: str | None = None) -> dict[str, Collection]:
        """Commit pending filters and refetch.

        Args:
            only: Commit just these columns.
            tab_id: Refetch only this tab (a change that affects one tab's
                discriminant); otherwise every tab is refetched.
        """
        self.context.filters.commit(only)
        if tab_id is not None:
            await self.refetch(tab_id)
            return self.collections()
        return await self.refetch_all()

    async def clear_filters(self) -> dict[str, Collection]:
        self.context.filters.reset()
        self.context.filters.clear_identifiers()
        return await self.refetch_all()

    async def click_sort(self, column: str) -> dict[str, Collection]:
        """Advance the sort cycle for *column*; no fetch when nothing changed."""
        updated = next_sort(self.context.sort, column)
        if updated == self.context.sort:
            return self.collections()
        self.context.sort = updated
        return await self.refetch_all()

    async def set_date_window(self, window: DateWindow) -> dict[str, Collection]:
        self.context.date_window = window
        return await self.refetch_all()

    async def set_platform(self, platform: str | None) -> dict[str, Collection]:
        self.context.platform = platform.strip() if platform and platform.strip() else None
        return await self.refetch_all()

    async def apply_identifiers(self, identifiers: Iterable[str]) -> dict[str, Collection]:
        """Replace the identifier chips and refetch."""
        chips = self.context.filters
        chips.clear_identifiers()
        for identifier in identifiers:
            chips.add_identifier(identifier)
        return await self.refetch_all()

    # ------------------------------------------------------------------
    # Local edits (reconciler only)
    # ------------------------------------------------------------------

    def remove_rows(self, tab_id: str, row_ids: Iterable[str]) -> int:
        """Drop *row_ids* from a collection locally; returns how many went."""
        coll = self.collection(tab_id)
        doomed = set(row_ids)
        kept = tuple(row for row in coll.rows if row.identifier not in doomed)
        removed = len(coll.rows) - len(kept)
        if removed:
            self._collections[tab_id] = replace(
                coll,
                rows=kept,
                total_count=max(0, coll.total_count - removed),
            )
            self.publish("rows_removed", tab_id, row_ids=sorted(doomed), removed=removed)
        return removed
