"""Pending and applied filter snapshots plus the identifier chip list.

Users edit *pending* values freely; nothing is fetched until
:meth:`FilterSession.commit` copies them to *applied*.  Every edit is
validated against the column registry so that a value of the wrong kind
can never reach the compiler or the local evaluator.
"""

from collections.abc import Iterable, Mapping
from typing import Any, Literal

from reflex_recon_grid.columns import COLUMN_REGISTRY, describe
from reflex_recon_grid.exceptions import FilterTypeError
from reflex_recon_grid.models import (
    ColumnDescriptor,
    DateRangeFilter,
    EnumSetFilter,
    FilterValue,
    NumberRangeFilter,
    TextFilter,
    ValueType,
    filter_value_from_dict,
    filter_value_to_dict,
)


def _not_identifier(descriptor: ColumnDescriptor) -> None:
    if descriptor.identifier:
        raise FilterTypeError(
            f"Column {descriptor.name!r} is filtered through identifier chips; use add_identifier"
        )


def _require(column: str, value_type: ValueType) -> ColumnDescriptor:
    descriptor = describe(column)
    _not_identifier(descriptor)
    if descriptor.value_type != value_type:
        raise FilterTypeError(
            f"Column {column!r} is {descriptor.value_type}, not {value_type}"
        )
    return descriptor


def _clean_bound(raw: Any) -> str | None:
    if raw is None:
        return None
    text = str(raw).strip()
    return text or None


class FilterSession:
    """Holds the pending and applied filter states of one dashboard.

    Both snapshots are plain dicts of immutable filter values; an empty
    value is stored as an absent key.
    """

    def __init__(
        self,
        applied: Mapping[str, FilterValue] | None = None,
        identifiers: Iterable[str] = (),
    ) -> None:
        self._applied: dict[str, FilterValue] = {}
        for column, value in (applied or {}).items():
            self._validate(column, value)
            if not value.is_empty():
                self._applied[column] = value
        self._pending: dict[str, FilterValue] = dict(self._applied)
        self._identifiers: list[str] = []
        for identifier in identifiers:
            self.add_identifier(identifier)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    @property
    def pending(self) -> dict[str, FilterValue]:
        return dict(self._pending)

    @property
    def applied(self) -> dict[str, FilterValue]:
        return dict(self._applied)

    @property
    def identifiers(self) -> tuple[str, ...]:
        return tuple(self._identifiers)

    @property
    def is_dirty(self) -> bool:
        """``True`` when pending edits have not been committed."""
        return self._pending != self._applied

    def active_columns(self) -> list[str]:
        """Applied columns with a non-empty filter, in registry order."""
        return [name for name in COLUMN_REGISTRY if name in self._applied]

    # ------------------------------------------------------------------
    # Pending edits
    # ------------------------------------------------------------------

    def set_text(self, column: str, text: str | None) -> None:
        _require(column, "string")
        self._store(column, TextFilter((text or "").strip()))

    def set_number_bound(self, column: str, side: Literal["min", "max"], raw: Any) -> None:
        """Set one side of a numeric range.  The raw text is kept as typed."""
        _require(column, "numberRange")
        current = self._pending.get(column)
        if not isinstance(current, NumberRangeFilter):
            current = NumberRangeFilter()
        bound = _clean_bound(raw)
        if side == "min":
            updated = NumberRangeFilter(bound, current.max)
        elif side == "max":
            updated = NumberRangeFilter(current.min, bound)
        else:
            raise FilterTypeError(f"Unknown range side {side!r}; expected 'min' or 'max'")
        self._store(column, updated)

    def set_date_bound(self, column: str, side: Literal["from", "to"], raw: Any) -> None:
        _require(column, "dateRange")
        current = self._pending.get(column)
        if not isinstance(current, DateRangeFilter):
            current = DateRangeFilter()
        bound = _clean_bound(raw)
        if side == "from":
            updated = DateRangeFilter(bound, current.end)
        elif side == "to":
            updated = DateRangeFilter(current.start, bound)
        else:
            raise FilterTypeError(f"Unknown range side {side!r}; expected 'from' or 'to'")
        self._store(column, updated)

    def set_enum(self, column: str, values: Iterable[str]) -> None:
        _require(column, "enumSet")
        cleaned = frozenset(str(v).strip() for v in values if str(v).strip())
        self._store(column, EnumSetFilter(cleaned))

    def toggle_enum_value(self, column: str, value: str) -> None:
        """Add *value* to the pending set, or remove it when present."""
        _require(column, "enumSet")
        current = self._pending.get(column)
        members = set(current.values) if isinstance(current, EnumSetFilter) else set()
        token = value.strip()
        if not token:
            return
        if token in members:
            members.discard(token)
        else:
            members.add(token)
        self._store(column, EnumSetFilter(frozenset(members)))

    def set_value(self, column: str, value: FilterValue) -> None:
        """Store an already-built filter value after validating its kind."""
        self._validate(column, value)
        self._store(column, value)

    def clear_column(self, column: str) -> None:
        describe(column)
        self._pending.pop(column, None)

    def clear_all(self) -> None:
        """Drop every pending filter (commit to make it effective)."""
        self._pending.clear()

    # ------------------------------------------------------------------
    # Commit / revert
    # ------------------------------------------------------------------

    def commit(self, only: Iterable[str] | None = None) -> bool:
        """Copy pending values to applied.

        Args:
            only: Restrict the commit to these columns (a per-column
                "apply" button).  ``None`` commits everything.

        Returns:
            Whether the applied state changed.
        """
        before = dict(self._applied)
        if only is None:
            self._applied = dict(self._pending)
        else:
            for column in only:
                describe(column)
                if column in self._pending:
                    self._applied[column] = self._pending[column]
                else:
                    self._applied.pop(column, None)
        return self._applied != before

    def revert(self) -> None:
        """Discard pending edits."""
        self._pending = dict(self._applied)

    def reset(self) -> bool:
        """Clear both snapshots; returns whether anything was applied."""
        had_applied = bool(self._applied)
        self._pending.clear()
        self._applied.clear()
        return had_applied

    # ------------------------------------------------------------------
    # Identifier chips
    # ------------------------------------------------------------------

    def add_identifier(self, identifier: str) -> bool:
        """Append one chip, or several when *identifier* is comma-separated.

        Returns:
            Whether at least one new chip was added.
        """
        added = False
        for part in str(identifier).split(","):
            token = part.strip()
            if token and token not in self._identifiers:
                self._identifiers.append(token)
                added = True
        return added

    def remove_identifier(self, identifier: str) -> bool:
        token = identifier.strip()
        if token in self._identifiers:
            self._identifiers.remove(token)
            return True
        return False

    def clear_identifiers(self) -> None:
        self._identifiers.clear()

    def identifier_csv(self) -> str:
        return ",".join(self._identifiers)

    # ------------------------------------------------------------------
    # Presets
    # ------------------------------------------------------------------

    def to_preset(self) -> dict[str, Any]:
        """JSON-safe dict of the applied filters and chips."""
        return {
            "filters": {
                column: filter_value_to_dict(value)
                for column, value in self._applied.items()
            },
            "identifiers": list(self._identifiers),
        }

    @classmethod
    def from_preset(cls, preset: Mapping[str, Any]) -> "FilterSession":
        """Rebuild a session from :meth:`to_preset` output.

        Entries for unknown columns, for the identifier column (chips travel
        in ``identifiers``) or with an unknown ``kind`` are dropped; entries
        whose kind does not match the column raise.

        Raises:
            FilterTypeError: If an entry's kind does not match its column.
        """
        raw_filters = preset.get("filters") or {}
        if not isinstance(raw_filters, Mapping):
            raise FilterTypeError("Preset 'filters' must be an object")
        applied: dict[str, FilterValue] = {}
        for column, data in raw_filters.items():
            descriptor = COLUMN_REGISTRY.get(column)
            if descriptor is None or descriptor.identifier or not isinstance(data, Mapping):
                continue
            value = filter_value_from_dict(data)
            if value is not None:
                applied[column] = value
        identifiers = preset.get("identifiers") or []
        if not isinstance(identifiers, list):
            identifiers = []
        return cls(applied, [str(i) for i in identifiers])

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------

    @staticmethod
    def _validate(column: str, value: FilterValue) -> None:
        descriptor = describe(column)
        _not_identifier(descriptor)
        kind = getattr(value, "kind", None)
        if kind != descriptor.value_type:
            raise FilterTypeError(
                f"Column {column!r} is {descriptor.value_type}, got a {kind or type(value).__name__} filter"
            )

    def _store(self, column: str, value: FilterValue) -> None:
        if value.is_empty():
            self._pending.pop(column, None)
        else:
            self._pending[column] = value
