"""Join engine for loaded resource tables.

Two kinds of combination:
- inner join: tables of different resource types correlated on their
  joinable fields (same canonical role), e.g. platforms onto observations
- extend: tables of the same type and column headers appended row-wise

Every join records the resources involved, the fields used and the number
of matched rows.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from ..ingestion.schema import FieldDescriptor, ResourceKey, SchemaDescriptor
from ..tables.table import DataTable

logger = logging.getLogger(__name__)


@dataclass
class JoinMetadata:
    """Metadata for a complete join operation."""

    join_type: str
    left_resource: Optional[str]
    right_resource: Optional[str]
    total_matches: int
    fields_used: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "join_type": self.join_type,
            "left_resource": self.left_resource,
            "right_resource": self.right_resource,
            "total_matches": self.total_matches,
            "fields_used": self.fields_used,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class JoinResult:
    """Output table of a join plus its metadata."""

    table: DataTable
    metadata: JoinMetadata


def _is_trivial(table: Optional[DataTable]) -> bool:
    return table is None or table.schema is None or table.schema.id is None


def _resource_id(table: Optional[DataTable]) -> Optional[str]:
    return None if _is_trivial(table) else table.schema.id


def _pair_join_fields(
    left: DataTable,
    right: DataTable,
    fields: Optional[Iterable[FieldDescriptor]],
) -> list[tuple[FieldDescriptor, FieldDescriptor]]:
    """Pair each left join field with the right field of the same role."""
    if fields:
        candidates = [left.schema.field(f.field_id) or f for f in fields]
    else:
        candidates = sorted(left.schema.joinable_fields(right.schema), key=lambda f: f.index)
    pairs = []
    for left_field in candidates:
        right_field = None
        if left_field.role is not None:
            right_field = right.schema.field_for_role(left_field.role)
        if right_field is None:
            right_field = right.schema.field(left_field.field_id)
        if right_field is None:
            logger.debug("Join field '%s' has no counterpart in '%s'", left_field.field_id, right.schema.id)
            continue
        pairs.append((left_field, right_field))
    return pairs


def inner_join(
    left: DataTable,
    right: DataTable,
    fields: Optional[Iterable[FieldDescriptor]] = None,
) -> JoinResult:
    """Correlate the rows of two tables on their join fields.

    A left and a right row are joined when every join field holds equal
    values, compared type-aware by the left field. The joined row carries all
    left columns plus the right columns that are not join fields.

    Args:
        left: Table whose schema the output keeps
        right: Table to join onto it
        fields: Join fields of ``left``; defaults to the joinable fields

    Returns:
        JoinResult. A trivial left table yields ``right`` unchanged and
        non-joinable tables yield ``left`` unchanged.
    """
    started = time.perf_counter()
    if _is_trivial(left):
        return JoinResult(right, JoinMetadata("none", None, _resource_id(right), 0))
    if _is_trivial(right) or not left.schema.is_joinable(right.schema):
        return JoinResult(left, JoinMetadata("none", left.schema.id, _resource_id(right), 0))

    pairs = _pair_join_fields(left, right, fields)
    left_fields = left.fields
    right_join_fields = {r for _, r in pairs}
    extra_fields = [
        f for f in right.fields
        if f not in right_join_fields and f not in left_fields
    ]
    output = DataTable(left.schema)
    if not pairs:
        return JoinResult(output, JoinMetadata("inner", left.schema.id, right.schema.id, 0))

    # Create lookup from right table
    right_lookup: dict[tuple, list[ResourceKey]] = {}
    for right_key, right_row in right.items():
        lookup_key = tuple(l.normalize_value(right_row.get(r)) for l, r in pairs)
        if None in lookup_key:
            continue
        right_lookup.setdefault(lookup_key, []).append(right_key)

    # Find matches from left table
    matches = 0
    for left_key, left_row in left.items():
        lookup_key = tuple(l.normalize_value(left_row.get(l)) for l, _ in pairs)
        for right_key in right_lookup.get(lookup_key, []):
            right_row = right.row(right_key)
            if not all(l.equals_values(left_row.get(l), right_row.get(r)) for l, r in pairs):
                continue
            joined_key = ResourceKey(left.schema.id, matches)
            for f in left_fields:
                output.put(joined_key, f, left_row.get(f))
            for f in extra_fields:
                output.put(joined_key, f, right_row.get(f))
            matches += 1

    metadata = JoinMetadata(
        join_type="inner",
        left_resource=left.schema.id,
        right_resource=right.schema.id,
        total_matches=matches,
        fields_used=[l.field_id for l, _ in pairs],
        duration_seconds=time.perf_counter() - started,
    )
    logger.debug(
        "Joined %s (%d rows) with %s (%d rows) on %s: %d rows, %d columns",
        left.schema.id, left.row_count(), right.schema.id, right.row_count(),
        metadata.fields_used, output.row_count(), output.column_count(),
    )
    return JoinResult(output, metadata)


def extend(left: DataTable, right: DataTable) -> JoinResult:
    """Append the rows of a table with the same type and column headers.

    Returns:
        JoinResult. A trivial left table yields ``right`` unchanged and
        non-extensible tables yield ``left`` unchanged.
    """
    started = time.perf_counter()
    if _is_trivial(left):
        return JoinResult(right, JoinMetadata("none", None, _resource_id(right), 0))
    if _is_trivial(right) or not left.schema.is_extensible(right.schema):
        return JoinResult(left, JoinMetadata("none", left.schema.id, _resource_id(right), 0))

    output = DataTable(left.schema)
    for table in (left, right):
        for key, row in table.items():
            output.add_row(key, [row.get(f) for f in table.fields])

    return JoinResult(output, JoinMetadata(
        join_type="extend",
        left_resource=left.schema.id,
        right_resource=right.schema.id,
        total_matches=right.row_count(),
        duration_seconds=time.perf_counter() - started,
    ))


class JoinEngine:
    """Engine combining all tables of a dataset into one."""

    def __init__(self):
        self._join_history: list[JoinMetadata] = []

    def inner_join(self, left: DataTable, right: DataTable, fields=None) -> DataTable:
        result = inner_join(left, right, fields)
        self._join_history.append(result.metadata)
        return result.table

    def extend(self, left: DataTable, right: DataTable) -> DataTable:
        result = extend(left, right)
        self._join_history.append(result.metadata)
        return result.table

    def combine(
        self,
        descriptor: SchemaDescriptor,
        tables: dict[str, DataTable],
    ) -> DataTable:
        """Combine a dataset's loaded tables.

        Tables of one resource type are extended into one table first; the
        per-type tables are then inner joined in member order.

        Args:
            descriptor: Schema descriptor of the dataset
            tables: Loaded tables keyed by resource id

        Returns:
            The combined table; an empty table when nothing was loaded
        """
        full_table = DataTable()
        for members in descriptor.members_by_type().values():
            extended = DataTable()
            for member in members:
                table = tables.get(member.id)
                if table is not None:
                    extended = self.extend(extended, table)
            full_table = self.inner_join(full_table, extended)
        return full_table

    def get_join_history(self) -> list[dict]:
        """Get history of all joins performed."""
        return [m.to_dict() for m in self._join_history]

    def clear_history(self) -> None:
        """Clear join history."""
        self._join_history = []
