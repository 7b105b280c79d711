"""In-memory table of raw cell values.

Cells are addressed by (ResourceKey, FieldDescriptor). A row is only ever
stored complete: one value per field of the owning schema.
"""

from typing import Iterator, Optional, Sequence

import pandas as pd

from ..ingestion.schema import FieldDescriptor, ResourceKey, ResourceSchema


class DataTable:
    """Rows of one resource, keyed by ResourceKey."""

    def __init__(self, schema: Optional[ResourceSchema] = None):
        self.schema = schema
        self._rows: dict[ResourceKey, dict[FieldDescriptor, str]] = {}
        self._fields: list[FieldDescriptor] = list(schema.fields) if schema else []

    @property
    def fields(self) -> list[FieldDescriptor]:
        return list(self._fields)

    def add_row(self, key: ResourceKey, values: Sequence[str]) -> None:
        """Store one complete row.

        Raises:
            ValueError: If the number of values differs from the field count
        """
        if len(values) != len(self._fields):
            raise ValueError(
                f"row {key.key_id} has {len(values)} values, expected {len(self._fields)}"
            )
        self._rows[key] = dict(zip(self._fields, values))

    def put(self, key: ResourceKey, field: FieldDescriptor, value: str) -> None:
        """Set one cell of an existing row, adding the column if it is new."""
        if field not in self._fields:
            self._fields.append(field)
        self._rows.setdefault(key, {})[field] = value

    def get(self, key: ResourceKey, field: FieldDescriptor) -> Optional[str]:
        row = self._rows.get(key)
        if row is None:
            return None
        return row.get(field)

    def row(self, key: ResourceKey) -> dict[FieldDescriptor, str]:
        return dict(self._rows.get(key, {}))

    def column(self, field: FieldDescriptor) -> dict[ResourceKey, str]:
        return {key: row[field] for key, row in self._rows.items() if field in row}

    def keys(self) -> list[ResourceKey]:
        return list(self._rows)

    def contains_key(self, key: ResourceKey) -> bool:
        return key in self._rows

    def row_count(self) -> int:
        return len(self._rows)

    def column_count(self) -> int:
        return len(self._fields)

    def is_empty(self) -> bool:
        return not self._rows

    def clear(self) -> None:
        self._rows.clear()
        if self.schema is not None:
            self._fields = list(self.schema.fields)

    def items(self) -> Iterator[tuple[ResourceKey, dict[FieldDescriptor, str]]]:
        for key, row in self._rows.items():
            yield key, dict(row)

    def rows(self):
        """Yield each row as a normalised view (see normalization.engine)."""
        from ..normalization.engine import NormalizedRow

        for key, row in self._rows.items():
            yield NormalizedRow(key, row)

    def to_frame(self) -> pd.DataFrame:
        """Raw cells as a DataFrame of strings, one column per field id."""
        columns = [f.field_id for f in self._fields]
        records = [
            [row.get(f) for f in self._fields]
            for row in self._rows.values()
        ]
        frame = pd.DataFrame(
            records,
            columns=columns,
            index=pd.Index([k.key_id for k in self._rows], name="key"),
            dtype=str,
        )
        return frame

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, key: object) -> bool:
        return key in self._rows

    def __repr__(self) -> str:
        resource = self.schema.id if self.schema else None
        return f"DataTable(resource={resource!r}, rows={len(self._rows)}, columns={len(self._fields)})"
