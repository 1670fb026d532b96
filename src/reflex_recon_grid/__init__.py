"""reflex-recon-grid – filter, sort and fetch engine for reconciliation list views.

The core (compiler, local evaluator, normalizer, orchestrator, reconciler)
is plain Python on top of polars and httpx.  :class:`ReconGridMixin` wires
it into a Reflex app::

    pip install reflex-recon-grid
"""

from reflex_recon_grid.client import ReconApiClient
from reflex_recon_grid.columns import COLUMN_REGISTRY, describe, format_reason_label, sortable_columns
from reflex_recon_grid.config import GridSettings
from reflex_recon_grid.exceptions import (
    ConfigError,
    FilterTypeError,
    ReconApiError,
    ReconGridError,
    UnknownColumnError,
)
from reflex_recon_grid.filter_state import FilterSession
from reflex_recon_grid.local_filter import evaluate, group_by_reason, page_slice
from reflex_recon_grid.logging_setup import configure_logging, get_logger
from reflex_recon_grid.models import (
    Collection,
    ColumnDescriptor,
    DateRangeFilter,
    DateWindow,
    EnumSetFilter,
    GridEvent,
    ManualActionRequest,
    MutationPhase,
    NumberRangeFilter,
    PendingMutation,
    ReasonGroup,
    SortState,
    TabSpec,
    TargetCategory,
    TextFilter,
    TransactionRow,
)
from reflex_recon_grid.mutations import MutationReconciler
from reflex_recon_grid.normalize import normalize_response, normalize_row, parse_amount
from reflex_recon_grid.orchestrator import DEFAULT_TABS, ReconOrchestrator, ViewContext
from reflex_recon_grid.query_compiler import compile_query, describe_query, resolve_date_window
from reflex_recon_grid.session import ReconGridSession
from reflex_recon_grid.sorting import next_sort
from reflex_recon_grid.state import ReconGridMixin, set_session_factory
