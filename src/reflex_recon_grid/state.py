"""Reflex state mixin driving the reconciliation tabs.

:class:`ReconGridMixin` is a Reflex **state mixin** (``mixin=True``).
Each subclass gets its own set of ``recon_grid_*`` reactive variables.
The heavy objects (HTTP client, orchestrator, reconciler) are not
JSON-serialisable, so they live in a module-level registry keyed by the
state class and the browser's client token, and the mixin only mirrors
their results into plain vars.

Typical usage::

    from reflex_recon_grid import ReconGridMixin

    class ReconState(ReconGridMixin, rx.State):
        pass

    def index():
        return rx.vstack(
            rx.foreach(ReconState.recon_grid_rows, render_row),
            on_mount=ReconState.load_recon_grid,
            on_unmount=ReconState.unload_recon_grid,
        )
"""

import asyncio
import json
import time
from collections.abc import Callable
from typing import Any

import reflex as rx

from reflex_recon_grid.exceptions import ReconGridError
from reflex_recon_grid.logging_setup import get_logger
from reflex_recon_grid.models import DATE_MODES, DateWindow
from reflex_recon_grid.session import ReconGridSession

logger = get_logger(__name__)

_DEFAULT_PAGE_SIZE: int = 25


# ---------------------------------------------------------------------------
# Module-level session registry
# ---------------------------------------------------------------------------

SessionFactory = Callable[[], ReconGridSession]

_session_registry: dict[str, ReconGridSession] = {}
_session_factory: SessionFactory = ReconGridSession.from_env


def set_session_factory(factory: SessionFactory) -> None:
    """Change how new sessions are built (custom tabs, auth, tests)."""
    global _session_factory
    _session_factory = factory


def _get_session(session_id: str) -> ReconGridSession:
    """Return (or create) the session for *session_id*."""
    if session_id not in _session_registry:
        _session_registry[session_id] = _session_factory()
    return _session_registry[session_id]


async def drop_session(session_id: str) -> None:
    """Close and forget a session."""
    session = _session_registry.pop(session_id, None)
    if session is not None:
        await session.aclose()


# ---------------------------------------------------------------------------
# ReconGridMixin
# ---------------------------------------------------------------------------

class ReconGridMixin(rx.State, mixin=True):
    """Reflex State mixin for the reconciliation tabs.

    Inherit from this class **and** ``rx.State``::

        class ReconState(ReconGridMixin, rx.State):
            ...

    Filter edits only touch the pending snapshot.  Fetches happen on
    :meth:`load_recon_grid`, :meth:`apply_recon_grid_filters`, sort,
    date window, identifier chips and after a successful manual action.
    """

    # -- Frontend state vars --
    recon_grid_rows: list[dict[str, Any]] = []
    recon_grid_counts: dict[str, int] = {}
    recon_grid_errors: dict[str, str] = {}
    recon_grid_loading: bool = False
    recon_grid_loaded: bool = False
    recon_grid_message: str = ""
    recon_grid_filter_debug: str = "No parameters."
    recon_grid_active_filter_fields: list[str] = []
    recon_grid_pending_dirty: bool = False
    recon_grid_filter_preset_json: str = ""
    recon_grid_sort_column: str = ""
    recon_grid_sort_direction: str = ""
    recon_grid_window_mode: str = "this-month"
    recon_grid_active_tab: str = ""
    recon_grid_identifiers: list[str] = []
    recon_grid_reason_groups: list[dict[str, Any]] = []
    recon_grid_page_count: int = 1
    recon_grid_pagination_model: dict[str, int] = {
        "page": 0,
        "pageSize": _DEFAULT_PAGE_SIZE,
    }

    # ------------------------------------------------------------------
    # Session access
    # ------------------------------------------------------------------

    def _recon_grid_session_id(self) -> str:
        token = self.router.session.client_token or "default"
        return f"{type(self).__name__}:{token}"

    def _recon_grid_session(self) -> ReconGridSession:
        return _get_session(self._recon_grid_session_id())

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_recon_grid(self):
        """Fetch every tab with the current shared state."""
        self.recon_grid_loading = True  # type: ignore[assignment]
        yield

        session = self._recon_grid_session()
        t0 = time.perf_counter()
        await session.orchestrator.refetch_all()
        self._sync_recon_grid()
        self.recon_grid_loaded = True  # type: ignore[assignment]
        self.recon_grid_loading = False  # type: ignore[assignment]
        logger.info(
            "[ReconGrid] loaded %s (%.1fms)",
            session.orchestrator.counts(), (time.perf_counter() - t0) * 1000,
        )

    async def unload_recon_grid(self) -> None:
        """Close this client's session; wire to ``on_unmount``."""
        await drop_session(self._recon_grid_session_id())
        self.recon_grid_loaded = False  # type: ignore[assignment]

    # ------------------------------------------------------------------
    # Pending edits (no fetch)
    # ------------------------------------------------------------------

    def set_recon_grid_text_filter(self, column: str, text: str) -> None:
        self._edit_recon_grid(lambda f: f.set_text(column, text))

    def set_recon_grid_number_bound(self, column: str, side: str, value: str) -> None:
        self._edit_recon_grid(lambda f: f.set_number_bound(column, side, value))  # type: ignore[arg-type]

    def set_recon_grid_date_bound(self, column: str, side: str, value: str) -> None:
        self._edit_recon_grid(lambda f: f.set_date_bound(column, side, value))  # type: ignore[arg-type]

    def toggle_recon_grid_enum_value(self, column: str, value: str) -> None:
        self._edit_recon_grid(lambda f: f.toggle_enum_value(column, value))

    def clear_recon_grid_column(self, column: str) -> None:
        self._edit_recon_grid(lambda f: f.clear_column(column))

    def revert_recon_grid_filters(self) -> None:
        self._edit_recon_grid(lambda f: f.revert())

    # ------------------------------------------------------------------
    # Committed changes (fetch)
    # ------------------------------------------------------------------

    async def apply_recon_grid_filters(self):
        """Commit pending filters and refetch every tab."""
        self.recon_grid_loading = True  # type: ignore[assignment]
        self.recon_grid_message = "Applying filters..."  # type: ignore[assignment]
        yield

        session = self._recon_grid_session()
        await session.orchestrator.apply_filters()
        session.page = 0
        self._finish_recon_grid_fetch()

    async def clear_recon_grid_filters(self):
        """Drop every filter and identifier chip, then refetch."""
        self.recon_grid_loading = True  # type: ignore[assignment]
        self.recon_grid_message = "Clearing filters..."  # type: ignore[assignment]
        yield

        session = self._recon_grid_session()
        await session.orchestrator.clear_filters()
        session.page = 0
        self._finish_recon_grid_fetch()

    async def handle_recon_grid_sort(self, column: str):
        """Advance the asc -> desc -> unsorted cycle on *column*."""
        self.recon_grid_loading = True  # type: ignore[assignment]
        self.recon_grid_message = "Sorting..."  # type: ignore[assignment]
        yield

        session = self._recon_grid_session()
        await session.orchestrator.click_sort(column)
        session.page = 0
        self._finish_recon_grid_fetch()

    async def set_recon_grid_date_mode(self, mode: str):
        if mode not in DATE_MODES or mode == "custom":
            # Custom windows arrive through set_recon_grid_custom_range.
            self.recon_grid_window_mode = mode if mode in DATE_MODES else self.recon_grid_window_mode  # type: ignore[assignment]
            return

        self.recon_grid_loading = True  # type: ignore[assignment]
        self.recon_grid_window_mode = mode  # type: ignore[assignment]
        yield

        session = self._recon_grid_session()
        await session.orchestrator.set_date_window(DateWindow(mode))  # type: ignore[arg-type]
        session.page = 0
        self._finish_recon_grid_fetch()

    async def set_recon_grid_custom_range(self, start: str, end: str):
        if not start.strip() or not end.strip():
            self.recon_grid_message = "Pick both a start and an end date."  # type: ignore[assignment]
            return

        self.recon_grid_loading = True  # type: ignore[assignment]
        self.recon_grid_window_mode = "custom"  # type: ignore[assignment]
        yield

        session = self._recon_grid_session()
        await session.orchestrator.set_date_window(DateWindow("custom", start.strip(), end.strip()))
        session.page = 0
        self._finish_recon_grid_fetch()

    async def add_recon_grid_identifier(self, value: str):
        """Add one or more comma-separated identifier chips and refetch."""
        session = self._recon_grid_session()
        if not session.filters.add_identifier(value):
            return
        self.recon_grid_loading = True  # type: ignore[assignment]
        yield

        await session.orchestrator.apply_identifiers(list(session.filters.identifiers))
        session.page = 0
        self._finish_recon_grid_fetch()

    async def remove_recon_grid_identifier(self, value: str):
        session = self._recon_grid_session()
        if value not in session.filters.identifiers:
            return
        self.recon_grid_loading = True  # type: ignore[assignment]
        yield

        remaining = [c for c in session.filters.identifiers if c != value]
        await session.orchestrator.apply_identifiers(remaining)
        session.page = 0
        self._finish_recon_grid_fetch()

    # ------------------------------------------------------------------
    # Local view changes (no fetch)
    # ------------------------------------------------------------------

    def set_recon_grid_tab(self, tab_id: str) -> None:
        session = self._recon_grid_session()
        try:
            session.set_active_tab(tab_id)
        except KeyError as exc:
            self.recon_grid_message = str(exc)  # type: ignore[assignment]
            return
        self._sync_recon_grid()

    def set_recon_grid_page(self, pagination_model: dict[str, int]) -> None:
        session = self._recon_grid_session()
        session.set_page(
            int(pagination_model.get("page", 0)),
            int(pagination_model.get("pageSize", session.page_size)),
        )
        self._sync_recon_grid()

    # ------------------------------------------------------------------
    # Manual actions
    # ------------------------------------------------------------------

    async def mark_recon_grid_reconciled(self, row_ids: list[str], note: str = ""):
        async for _ in self._submit_recon_grid_action(row_ids, "MANUALLY_RECONCILED", note):
            yield

    async def raise_recon_grid_dispute(self, row_ids: list[str], note: str = ""):
        async for _ in self._submit_recon_grid_action(row_ids, "DISPUTED", note):
            yield

    async def _submit_recon_grid_action(self, row_ids: list[str], target: str, note: str):
        session = self._recon_grid_session()
        source_tab = session.active_tab
        task = asyncio.ensure_future(
            session.reconciler.submit(row_ids, target, note, source_tab)
        )
        # Let submit run up to its first await so the rows are already gone.
        await asyncio.sleep(0)
        self.recon_grid_loading = True  # type: ignore[assignment]
        self._sync_recon_grid()
        yield

        mutation = await task
        self._sync_recon_grid()
        self.recon_grid_loading = False  # type: ignore[assignment]
        if mutation is None:
            self.recon_grid_message = "No rows selected."  # type: ignore[assignment]
        elif mutation.error:
            self.recon_grid_message = f"Update failed: {mutation.error}"  # type: ignore[assignment]
        else:
            label = "reconciled" if target == "MANUALLY_RECONCILED" else "disputed"
            self.recon_grid_message = f"{len(mutation.row_ids)} order(s) marked {label}."  # type: ignore[assignment]

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    def download_recon_grid_preset(self) -> rx.event.EventSpec:
        """Download the applied filters/sort/date window as JSON."""
        session = self._recon_grid_session()
        return rx.download(  # type: ignore[return-value]
            data=session.preset_json(),
            filename="recon_filter_preset.json",
        )

    async def handle_recon_grid_preset_upload(self, files: list[rx.UploadFile]):
        """Apply an uploaded JSON preset and refetch."""
        if not files:
            return

        self.recon_grid_loading = True  # type: ignore[assignment]
        self.recon_grid_message = "Applying preset..."  # type: ignore[assignment]
        yield

        content = await files[0].read()
        text = content.decode("utf-8") if isinstance(content, bytes) else content
        session = self._recon_grid_session()
        try:
            session.apply_preset(json.loads(text))
        except (ValueError, ReconGridError) as exc:
            self.recon_grid_loading = False  # type: ignore[assignment]
            self.recon_grid_message = f"Invalid preset: {exc}"  # type: ignore[assignment]
            return

        await session.orchestrator.refetch_all()
        self._finish_recon_grid_fetch()
        n_filters = len(session.filters.active_columns())
        self.recon_grid_message = (  # type: ignore[assignment]
            f"Preset applied: {n_filters} filter(s), "
            f"{len(session.filters.identifiers)} identifier(s)."
        )

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    def _edit_recon_grid(self, edit: Callable[[Any], None]) -> None:
        session = self._recon_grid_session()
        try:
            edit(session.filters)
        except (KeyError, ValueError) as exc:
            self.recon_grid_message = str(exc)  # type: ignore[assignment]
            return
        self.recon_grid_pending_dirty = session.filters.is_dirty  # type: ignore[assignment]

    def _finish_recon_grid_fetch(self) -> None:
        self._sync_recon_grid()
        self.recon_grid_loading = False  # type: ignore[assignment]
        errors = self.recon_grid_errors
        if errors:
            self.recon_grid_message = "Failed to load: " + ", ".join(sorted(errors))  # type: ignore[assignment]
        else:
            self.recon_grid_message = ""  # type: ignore[assignment]

    def _sync_recon_grid(self) -> None:
        """Mirror the session into the reactive vars."""
        session = self._recon_grid_session()
        orch = session.orchestrator
        ctx = session.context

        self.recon_grid_active_tab = session.active_tab  # type: ignore[assignment]
        self.recon_grid_counts = orch.counts()  # type: ignore[assignment]
        self.recon_grid_errors = orch.errors()  # type: ignore[assignment]
        self.recon_grid_rows = session.page_rows()  # type: ignore[assignment]
        self.recon_grid_page_count = session.page_count()  # type: ignore[assignment]
        self.recon_grid_pagination_model = {  # type: ignore[assignment]
            "page": session.page,
            "pageSize": session.page_size,
        }
        self.recon_grid_reason_groups = [  # type: ignore[assignment]
            {
                "reason": g.reason,
                "label": g.label,
                "count": g.count,
                "amount": g.amount,
                "row_ids": list(g.row_ids),
            }
            for g in orch.reason_groups(session.active_tab)
        ]
        self.recon_grid_sort_column = ctx.sort.column if ctx.sort else ""  # type: ignore[assignment]
        self.recon_grid_sort_direction = ctx.sort.direction if ctx.sort else ""  # type: ignore[assignment]
        self.recon_grid_window_mode = ctx.date_window.mode  # type: ignore[assignment]
        self.recon_grid_identifiers = list(session.filters.identifiers)  # type: ignore[assignment]
        self.recon_grid_active_filter_fields = session.filters.active_columns()  # type: ignore[assignment]
        self.recon_grid_pending_dirty = session.filters.is_dirty  # type: ignore[assignment]
        self.recon_grid_filter_debug = session.filter_summary()  # type: ignore[assignment]
        has_content = bool(session.filters.applied or session.filters.identifiers or ctx.sort)
        self.recon_grid_filter_preset_json = session.preset_json() if has_content else ""  # type: ignore[assignment]
