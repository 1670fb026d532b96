"""Developer CLI for reflex-recon-grid -- inspect compiled queries and tab fetches.

Usage::

    # Show the parameters every tab would be queried with
    reflex-recon-grid compile preset.json --date-mode last-month --sort difference:desc

    # Run one concurrent fetch of every tab and print counts/errors
    reflex-recon-grid fetch preset.json --base-url https://recon.example.com --platform flipkart

Presets are the JSON files downloaded from the dashboard
(``ReconGridMixin.download_recon_grid_preset``).
"""

import asyncio
import json
from datetime import date
from pathlib import Path
from typing import Annotated, Any, Optional

import typer

from reflex_recon_grid.columns import is_known
from reflex_recon_grid.config import GridSettings
from reflex_recon_grid.exceptions import ConfigError, ReconGridError
from reflex_recon_grid.logging_setup import configure_logging
from reflex_recon_grid.models import DATE_MODES, DateWindow, SortState
from reflex_recon_grid.orchestrator import DEFAULT_TABS, ViewContext
from reflex_recon_grid.query_compiler import compile_query, describe_query
from reflex_recon_grid.session import ReconGridSession, apply_preset

app = typer.Typer(
    name="reflex-recon-grid",
    help="Inspect reconciliation queries: compile presets and run tab fetches.",
    no_args_is_help=True,
)

_TAB_IDS = [tab.id for tab in DEFAULT_TABS]


@app.callback()
def _root(
    log_level: Annotated[Optional[str], typer.Option("--log-level", help="Logging level (DEBUG, INFO, ...)")] = None,
) -> None:
    configure_logging(log_level)


# ---------------------------------------------------------------------------
# Option parsing
# ---------------------------------------------------------------------------

def _parse_sort(raw: str) -> SortState:
    column, _, direction = raw.partition(":")
    column = column.strip()
    direction = (direction or "asc").strip().lower()
    if not is_known(column):
        raise typer.BadParameter(f"unknown column {column!r}", param_hint="--sort")
    if direction not in ("asc", "desc"):
        raise typer.BadParameter(f"direction must be asc or desc, got {direction!r}", param_hint="--sort")
    return SortState(column, direction)  # type: ignore[arg-type]


def _parse_today(raw: str | None) -> date | None:
    if raw is None:
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise typer.BadParameter(f"expected YYYY-MM-DD, got {raw!r}", param_hint="--today") from None


def _build_context(
    preset: Path | None,
    date_mode: str | None,
    start: str | None,
    end: str | None,
    sort: str | None,
    platform: str | None,
) -> ViewContext:
    """Load the preset (if any), then apply command-line overrides."""
    ctx = ViewContext()
    if preset is not None:
        try:
            data = json.loads(preset.read_text(encoding="utf-8"))
            apply_preset(ctx, data)
        except (OSError, ValueError, ReconGridError) as exc:
            raise typer.BadParameter(str(exc), param_hint="PRESET") from exc

    if date_mode is not None:
        if date_mode not in DATE_MODES:
            raise typer.BadParameter(
                f"must be one of {', '.join(DATE_MODES)}", param_hint="--date-mode"
            )
        ctx.date_window = DateWindow(date_mode, start, end)  # type: ignore[arg-type]
    elif start or end:
        ctx.date_window = DateWindow("custom", start, end)

    if sort is not None:
        ctx.sort = _parse_sort(sort)
    if platform is not None:
        ctx.platform = platform.strip() or None
    return ctx


def _selected_tabs(tab: str | None) -> list[str]:
    if tab is None:
        return list(_TAB_IDS)
    if tab not in _TAB_IDS:
        raise typer.BadParameter(f"must be one of {', '.join(_TAB_IDS)}", param_hint="--tab")
    return [tab]


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

PresetArg = Annotated[Optional[Path], typer.Argument(help="Filter preset JSON downloaded from the dashboard")]
TabOpt = Annotated[Optional[str], typer.Option("--tab", help="Only this tab")]
DateModeOpt = Annotated[Optional[str], typer.Option("--date-mode", "-d", help="this-month, last-month, this-year or custom")]
StartOpt = Annotated[Optional[str], typer.Option("--start", help="Custom window start (YYYY-MM-DD)")]
EndOpt = Annotated[Optional[str], typer.Option("--end", help="Custom window end (YYYY-MM-DD)")]
SortOpt = Annotated[Optional[str], typer.Option("--sort", "-s", help="column[:asc|desc]")]
PlatformOpt = Annotated[Optional[str], typer.Option("--platform", "-p", help="Marketplace platform")]


@app.command(name="compile")
def compile_params(
    preset: PresetArg = None,
    tab: TabOpt = None,
    date_mode: DateModeOpt = None,
    start: StartOpt = None,
    end: EndOpt = None,
    sort: SortOpt = None,
    platform: PlatformOpt = None,
    today: Annotated[Optional[str], typer.Option("--today", help="Pretend today is this UTC date")] = None,
    summary: Annotated[bool, typer.Option("--summary", help="Print one-line summaries instead of JSON")] = False,
) -> None:
    """Print the query parameters each tab would be fetched with (no network)."""
    ctx = _build_context(preset, date_mode, start, end, sort, platform)
    fixed_today = _parse_today(today)
    tabs = {t.id: t for t in DEFAULT_TABS}

    compiled: dict[str, dict[str, str]] = {}
    for tab_id in _selected_tabs(tab):
        compiled[tab_id] = compile_query(
            ctx.filters.applied,
            ctx.sort,
            ctx.date_window,
            tabs[tab_id],
            identifiers=ctx.filters.identifiers,
            platform=ctx.platform,
            today=fixed_today,
        )

    if summary:
        for tab_id, params in compiled.items():
            typer.echo(f"{tab_id}: {describe_query(params)}")
    else:
        typer.echo(json.dumps(compiled, indent=2, sort_keys=True))


@app.command()
def fetch(
    preset: PresetArg = None,
    date_mode: DateModeOpt = None,
    start: StartOpt = None,
    end: EndOpt = None,
    sort: SortOpt = None,
    platform: PlatformOpt = None,
    base_url: Annotated[Optional[str], typer.Option("--base-url", help="Overrides RECON_GRID_API_BASE_URL")] = None,
    token: Annotated[Optional[str], typer.Option("--token", envvar="RECON_GRID_TOKEN", help="Bearer token")] = None,
) -> None:
    """Fetch every tab once, concurrently, and print counts and errors."""
    try:
        settings = GridSettings.from_env()
    except ConfigError as exc:
        typer.echo(f"Error: {exc}", err=True)
        raise typer.Exit(code=1)
    if base_url:
        settings = settings.model_copy(update={"api_base_url": base_url})

    ctx = _build_context(preset, date_mode, start, end, sort, platform)
    result = asyncio.run(_fetch_all(settings, ctx, token))
    typer.echo(json.dumps(result, indent=2, sort_keys=True))
    if any(entry["error"] for entry in result.values()):
        raise typer.Exit(code=1)


async def _fetch_all(settings: GridSettings, ctx: ViewContext, token: str | None) -> dict[str, Any]:
    session = ReconGridSession(settings, token_provider=lambda: token)
    try:
        if ctx.platform is None:
            ctx.platform = settings.platform
        session.orchestrator.context = ctx
        collections = await session.orchestrator.refetch_all()
    finally:
        await session.aclose()
    return {
        tab_id: {
            "rows": len(coll.rows),
            "total_count": coll.total_count,
            "error": coll.error,
        }
        for tab_id, coll in collections.items()
    }


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
