"""One dashboard's worth of objects, usable with or without Reflex.

:class:`ReconGridSession` wires settings, the HTTP client, the
orchestrator and the mutation reconciler together, and keeps the bits of
view state that are not shared between tabs (active tab, page).
"""

import json
from collections.abc import Mapping, Sequence
from datetime import date
from typing import Any

import httpx

from reflex_recon_grid.client import ReconApiClient, TokenProvider
from reflex_recon_grid.config import GridSettings
from reflex_recon_grid.exceptions import FilterTypeError
from reflex_recon_grid.filter_state import FilterSession
from reflex_recon_grid.models import DATE_MODES, DateWindow, SortState, TabSpec
from reflex_recon_grid.mutations import MutationReconciler, MutationSink
from reflex_recon_grid.orchestrator import DEFAULT_TABS, QuerySource, ReconOrchestrator, ViewContext
from reflex_recon_grid.query_compiler import describe_query

PRESET_VERSION = 1


class ReconGridSession:
    """Settings + client + orchestrator + reconciler for one user session.

    Args:
        settings: Connection and paging settings.
        token_provider: Bearer token callback passed to the client.
        transport: httpx transport for the default client.
        source: Overrides the query source (defaults to the client).
        sink: Overrides the mutation sink (defaults to the client).
        tabs: Tab definitions.
        today: Fixed UTC date for the default window.
    """

    def __init__(
        self,
        settings: GridSettings | None = None,
        *,
        token_provider: TokenProvider | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        source: QuerySource | None = None,
        sink: MutationSink | None = None,
        tabs: Sequence[TabSpec] = DEFAULT_TABS,
        today: date | None = None,
    ) -> None:
        self.settings = settings or GridSettings()
        self.client = ReconApiClient(self.settings, token_provider, transport)
        context = ViewContext(platform=self.settings.platform)
        self.orchestrator = ReconOrchestrator(source or self.client, context, tabs, today=today)
        self.reconciler = MutationReconciler(self.orchestrator, sink or self.client)
        self.active_tab: str = self.orchestrator.tabs[0].id
        self.page: int = 0
        self.page_size: int = self.settings.page_size

    @classmethod
    def from_env(cls, **kwargs: Any) -> "ReconGridSession":
        return cls(GridSettings.from_env(), **kwargs)

    async def aclose(self) -> None:
        self.reconciler.close()
        await self.client.aclose()

    # ------------------------------------------------------------------
    # Shortcuts
    # ------------------------------------------------------------------

    @property
    def context(self) -> ViewContext:
        return self.orchestrator.context

    @property
    def filters(self) -> FilterSession:
        return self.orchestrator.context.filters

    def set_active_tab(self, tab_id: str) -> None:
        self.orchestrator.tab(tab_id)
        self.active_tab = tab_id
        self.page = 0

    def set_page(self, page: int, page_size: int | None = None) -> None:
        self.page = max(0, page)
        if page_size is not None and page_size > 0:
            self.page_size = page_size

    def page_count(self) -> int:
        total = len(self.orchestrator.visible_rows(self.active_tab))
        return max(1, -(-total // self.page_size)) if self.page_size > 0 else 1

    def page_rows(self) -> list[dict[str, Any]]:
        """JSON-safe rows of the active tab's current page."""
        rows = self.orchestrator.page(self.active_tab, self.page, self.page_size)
        tentative = self.reconciler.tentative_row_ids(self.active_tab)
        out = []
        for row in rows:
            record = row.to_dict()
            record["tentative"] = row.identifier in tentative
            out.append(record)
        return out

    def filter_summary(self) -> str:
        """One-line summary of what the active tab is queried with."""
        return describe_query(self.orchestrator.compile(self.active_tab))

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    def to_preset(self) -> dict[str, Any]:
        return context_to_preset(self.context)

    def preset_json(self) -> str:
        return json.dumps(self.to_preset(), indent=2, ensure_ascii=False)

    def apply_preset(self, preset: Mapping[str, Any]) -> None:
        """Replace the shared view state with *preset* (no fetch)."""
        apply_preset(self.context, preset)
        self.page = 0


# ---------------------------------------------------------------------------
# Preset helpers
# ---------------------------------------------------------------------------

def context_to_preset(ctx: ViewContext) -> dict[str, Any]:
    """Applied filters, chips, sort, date window and platform as a dict."""
    preset = ctx.filters.to_preset()
    preset["version"] = PRESET_VERSION
    preset["sort"] = (
        {"column": ctx.sort.column, "direction": ctx.sort.direction} if ctx.sort else None
    )
    preset["date_window"] = {
        "mode": ctx.date_window.mode,
        "start": ctx.date_window.start,
        "end": ctx.date_window.end,
    }
    preset["platform"] = ctx.platform
    return preset


def apply_preset(ctx: ViewContext, preset: Mapping[str, Any]) -> None:
    """Load a :func:`context_to_preset` dict into *ctx*.

    Keys missing from *preset* leave the matching part of *ctx* alone,
    except filters and chips which are always replaced.

    Raises:
        FilterTypeError: If the preset is malformed.
    """
    if not isinstance(preset, Mapping):
        raise FilterTypeError("Preset must be a JSON object")
    ctx.filters = FilterSession.from_preset(preset)

    if "sort" in preset:
        sort = preset.get("sort")
        if isinstance(sort, Mapping) and sort.get("column"):
            direction = sort.get("direction", "asc")
            if direction not in ("asc", "desc"):
                raise FilterTypeError(f"Invalid sort direction {direction!r}")
            ctx.sort = SortState(str(sort["column"]), direction)
        else:
            ctx.sort = None

    window = preset.get("date_window")
    if isinstance(window, Mapping) and window.get("mode") in DATE_MODES:
        ctx.date_window = DateWindow(window["mode"], window.get("start"), window.get("end"))

    if "platform" in preset:
        platform = preset.get("platform")
        ctx.platform = (str(platform).strip() or None) if platform else None
