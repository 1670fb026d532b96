"""Optimistic category changes ("mark reconciled", "raise dispute").

A mutation goes through two phases:

``tentative``
    The rows are removed from the source tab right away, before any
    network call, and the change is posted to the mutation endpoint.
``confirmed`` / ``reverted``
    The first full refetch issued after the remote call settled resolves
    the mutation: ``confirmed`` when the server accepted it, ``reverted``
    when it did not.  Either way the refetched rows are the truth; the
    local removal is never rolled back by hand.
"""

from collections import deque
from collections.abc import Callable, Iterable
from typing import Any, Protocol

from reflex_recon_grid.logging_setup import get_logger
from reflex_recon_grid.models import (
    GridEvent,
    ManualActionRequest,
    MutationPhase,
    PendingMutation,
    TargetCategory,
)
from reflex_recon_grid.orchestrator import ReconOrchestrator

logger = get_logger(__name__)

PlatformResolver = Callable[[], str | None]

HISTORY_LIMIT = 100


class MutationSink(Protocol):
    """Anything that can post a manual action (``ReconApiClient``)."""

    async def manual_action(self, platform: str, request: ManualActionRequest) -> Any: ...


class MutationReconciler:
    """Runs optimistic mutations against an orchestrator.

    Args:
        orchestrator: Owner of the collections rows are removed from.
        sink: Receives the mutation request.
        platform_resolver: Returns the platform for the request path;
            defaults to the orchestrator's current platform.
        history_limit: Resolved mutations kept for :meth:`history`.
    """

    def __init__(
        self,
        orchestrator: ReconOrchestrator,
        sink: MutationSink,
        platform_resolver: PlatformResolver | None = None,
        history_limit: int = HISTORY_LIMIT,
    ) -> None:
        self._orchestrator = orchestrator
        self._sink = sink
        self._platform_resolver = platform_resolver or (lambda: orchestrator.context.platform)
        self._mutations: list[PendingMutation] = []
        self._resolved: deque[PendingMutation] = deque(maxlen=max(history_limit, 0))
        self._unsubscribe = orchestrator.subscribe(self._on_event)

    def close(self) -> None:
        """Stop listening to the orchestrator."""
        self._unsubscribe()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    async def submit(
        self,
        row_ids: Iterable[str],
        target: TargetCategory | str,
        note: str = "",
        source_tab: str = "unreconciled",
    ) -> PendingMutation | None:
        """Apply a category change optimistically.

        The rows leave *source_tab* before the first ``await``.  On success
        every tab is refetched.  On failure the error is recorded on the
        returned mutation and a ``mutation_failed`` event is published;
        nothing is raised.

        Returns:
            The mutation, or ``None`` when *row_ids* is empty.

        Raises:
            ValueError: If *target* is not a known category.
        """
        ids = tuple(dict.fromkeys(str(i).strip() for i in row_ids if str(i).strip()))
        if not ids:
            return None
        category = TargetCategory(target)

        mutation = PendingMutation(
            row_ids=ids,
            target=category,
            note=note.strip(),
            source_tab=source_tab,
        )
        self._mutations.append(mutation)
        removed = self._orchestrator.remove_rows(source_tab, ids)
        logger.info(
            "[MutationReconciler] %s: %d row(s) tentatively removed from %r",
            category.value, removed, source_tab,
        )

        platform = self._platform_resolver()
        try:
            if not platform:
                raise ValueError("No platform selected for the manual action")
            request = ManualActionRequest(order_ids=ids, note=mutation.note, manual_override_status=category)
            await self._sink.manual_action(platform, request)
        except Exception as exc:
            mutation.accepted = False
            mutation.error = str(exc) or type(exc).__name__
            mutation.issued_after_token = self._orchestrator.full_refetch_seq
            logger.warning("[MutationReconciler] %s failed: %s", category.value, mutation.error)
            self._orchestrator.publish(
                "mutation_failed",
                source_tab,
                row_ids=list(ids),
                target=category.value,
                error=mutation.error,
            )
            return mutation

        mutation.accepted = True
        mutation.issued_after_token = self._orchestrator.full_refetch_seq
        await self._orchestrator.refetch_all()
        return mutation

    async def mark_reconciled(
        self, row_ids: Iterable[str], note: str = "", source_tab: str = "unreconciled"
    ) -> PendingMutation | None:
        return await self.submit(row_ids, TargetCategory.MANUALLY_RECONCILED, note, source_tab)

    async def raise_dispute(
        self, row_ids: Iterable[str], note: str = "", source_tab: str = "unreconciled"
    ) -> PendingMutation | None:
        return await self.submit(row_ids, TargetCategory.DISPUTED, note, source_tab)

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def pending(self) -> list[PendingMutation]:
        """Mutations still in the tentative phase."""
        return [m for m in self._mutations if m.is_tentative]

    def history(self) -> list[PendingMutation]:
        """The most recent resolved mutations followed by the open ones."""
        return [*self._resolved, *self._mutations]

    def tentative_row_ids(self, tab_id: str) -> set[str]:
        """Rows of *tab_id* whose removal is not yet confirmed."""
        return {
            row_id
            for m in self._mutations
            if m.is_tentative and m.source_tab == tab_id
            for row_id in m.row_ids
        }

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def _on_event(self, event: GridEvent) -> None:
        if event.kind != "refetch_settled" or not event.detail.get("full"):
            return
        sequence = int(event.detail.get("sequence", 0))
        settled: list[PendingMutation] = []
        still_open: list[PendingMutation] = []
        for mutation in self._mutations:
            if mutation.accepted is None or sequence <= mutation.issued_after_token:
                still_open.append(mutation)
                continue
            mutation.phase = MutationPhase.CONFIRMED if mutation.accepted else MutationPhase.REVERTED
            settled.append(mutation)
        # Resolved mutations leave the open list; only the newest are kept.
        self._mutations = still_open
        self._resolved.extend(settled)

        for mutation in settled:
            logger.info(
                "[MutationReconciler] %s on %d row(s) %s by refetch #%d",
                mutation.target.value, len(mutation.row_ids), mutation.phase.value, sequence,
            )
            self._orchestrator.publish(
                "mutation_confirmed" if mutation.accepted else "mutation_reverted",
                mutation.source_tab,
                row_ids=list(mutation.row_ids),
                target=mutation.target.value,
            )
