"""Single-column sort state machine.

Clicking a column header cycles ``unsorted -> asc -> desc -> unsorted``.
Clicking another column replaces the active one; sorts never stack.
"""

from collections.abc import Collection

from reflex_recon_grid.columns import sortable_columns
from reflex_recon_grid.models import SortState


def next_sort(
    current: SortState | None,
    column: str,
    allowlist: Collection[str] | None = None,
) -> SortState | None:
    """Return the sort state after a header click on *column*.

    Args:
        current: The active sort, or ``None`` when unsorted.
        column: The clicked column.
        allowlist: Sortable columns; defaults to registry columns with a
            server sort key.  Clicks on other columns leave *current*
            unchanged.
    """
    if allowlist is None:
        allowlist = sortable_columns()
    if column not in allowlist:
        return current
    if current is None or current.column != column:
        return SortState(column, "asc")
    if current.direction == "asc":
        return SortState(column, "desc")
    return None
