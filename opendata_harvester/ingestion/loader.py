"""CSV loaders for schema-described resources.

Each loader:
- Skips the schema's header rows
- Keeps only rows whose column count matches the schema exactly
- Stores raw strings; conversion happens when rows are read
"""

import csv
import io
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, BinaryIO, Iterable, Mapping, Optional, TextIO

from ..tables.table import DataTable
from .dataset import DEFAULT_ENCODING, DataFile
from .schema import ResourceSchema, SchemaDescriptor

logger = logging.getLogger(__name__)

CSV_FORMATS = {"csv", "text/csv"}


class TableLoadError(Exception):
    """A resource file could not be read into its table."""

    def __init__(self, message: str, source: Optional[str] = None):
        super().__init__(message)
        self.source = source


class UnsupportedFormatError(TableLoadError):
    """No loader exists for the resource's format."""


@dataclass
class LoadReport:
    """Outcome of loading one resource file."""

    resource_id: Optional[str]
    source_file: str
    load_timestamp: datetime
    rows_loaded: int = 0
    rows_ignored: int = 0
    column_count: int = 0
    duration_seconds: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "resource_id": self.resource_id,
            "source_file": self.source_file,
            "load_timestamp": self.load_timestamp.isoformat(),
            "rows_loaded": self.rows_loaded,
            "rows_ignored": self.rows_ignored,
            "column_count": self.column_count,
            "duration_seconds": self.duration_seconds,
        }


class CsvTableLoader:
    """Load one CSV resource into a DataTable.

    A loader owns its table; every call to ``load`` or ``load_stream``
    replaces the previous contents.
    """

    def __init__(
        self,
        schema: ResourceSchema,
        data_file: Optional[DataFile] = None,
        table: Optional[DataTable] = None,
    ):
        self.schema = schema
        self.data_file = data_file
        self.table = table if table is not None else DataTable(schema)
        self.ignored_rows = 0
        self.report: Optional[LoadReport] = None

    @property
    def source_name(self) -> str:
        if self.data_file is not None:
            return self.data_file.source_name
        return f"<{self.schema.id}>"

    def load(self) -> DataTable:
        """Load the configured data file.

        Raises:
            UnsupportedFormatError: If the file is not CSV
            TableLoadError: If the file is missing or unreadable
        """
        if self.data_file is None or self.data_file.path is None:
            self.table.clear()
            raise TableLoadError(f"No data file for resource '{self.schema.id}'", self.source_name)
        if self.data_file.format.strip().lower() not in CSV_FORMATS:
            self.table.clear()
            raise UnsupportedFormatError(
                f"Unsupported format '{self.data_file.format}' of {self.source_name}",
                self.source_name,
            )
        try:
            with open(self.data_file.path, "rb") as stream:
                return self.load_stream(stream, self.data_file.encoding)
        except OSError as e:
            self.table.clear()
            raise TableLoadError(f"Could not read {self.source_name}: {e}", self.source_name) from e

    def load_stream(self, stream: BinaryIO | TextIO, encoding: Optional[str] = None) -> DataTable:
        """Load CSV content from a byte (or text) stream.

        Args:
            stream: Open stream positioned at the first header row
            encoding: Character encoding of a byte stream

        Returns:
            The loaded table

        Raises:
            TableLoadError: If the content cannot be decoded or read. The
                table is left empty.
        """
        self.table.clear()
        self.ignored_rows = 0
        started = time.perf_counter()
        encoding = encoding or DEFAULT_ENCODING

        wrapper = None
        if isinstance(stream, io.TextIOBase):
            text = stream
        else:
            try:
                wrapper = io.TextIOWrapper(stream, encoding=encoding, newline="")
            except LookupError as e:
                raise TableLoadError(f"Unknown encoding '{encoding}' for {self.source_name}", self.source_name) from e
            text = wrapper

        try:
            staged = self._read_rows(text)
        except (UnicodeDecodeError, OSError) as e:
            self.table.clear()
            raise TableLoadError(f"Could not decode {self.source_name} as {encoding}: {e}", self.source_name) from e
        finally:
            # leave the caller's stream open
            if wrapper is not None:
                wrapper.detach()

        for row_number, values in enumerate(staged):
            self.table.add_row(self.schema.create_key(row_number), values)

        if self.ignored_rows:
            logger.debug("Ignored %d inconsistent lines of %s", self.ignored_rows, self.source_name)

        self.report = LoadReport(
            resource_id=self.schema.id,
            source_file=self.source_name,
            load_timestamp=datetime.now(timezone.utc),
            rows_loaded=self.table.row_count(),
            rows_ignored=self.ignored_rows,
            column_count=len(self.schema),
            duration_seconds=time.perf_counter() - started,
        )
        return self.table

    def _read_rows(self, text: TextIO) -> list[list[str]]:
        expected = len(self.schema)
        reader = csv.reader(text)
        staged = []
        skipped_headers = 0
        line = 0
        while True:
            try:
                record = next(reader)
            except StopIteration:
                break
            except csv.Error as e:
                self.ignored_rows += 1
                logger.debug("Ignoring unparsable record near line %d of %s: %s", reader.line_num, self.source_name, e)
                continue
            line = reader.line_num
            if skipped_headers < self.schema.header_rows:
                skipped_headers += 1
                continue
            if not record:
                continue
            if len(record) != expected:
                self.ignored_rows += 1
                logger.debug(
                    "Ignoring line %d of %s: %d columns, expected %d",
                    line, self.source_name, len(record), expected,
                )
                continue
            staged.append(record)
        return staged


def load_table(schema: ResourceSchema, data_file: DataFile) -> tuple[DataTable, LoadReport]:
    """Load one resource file.

    Returns:
        Tuple of (loaded table, load report)

    Raises:
        TableLoadError: If the file cannot be loaded
    """
    loader = CsvTableLoader(schema, data_file)
    table = loader.load()
    return table, loader.report


@dataclass
class TableRegistry:
    """Tables loaded for one dataset, with their reports and failures."""

    dataset_id: Optional[str] = None
    tables: dict[str, DataTable] = field(default_factory=dict)
    reports: dict[str, LoadReport] = field(default_factory=dict)
    errors: dict[str, TableLoadError] = field(default_factory=dict)

    def register(self, schema: ResourceSchema, table: DataTable, report: LoadReport) -> None:
        self.tables[schema.id] = table
        self.reports[schema.id] = report

    def get_table(self, resource_id: str) -> Optional[DataTable]:
        return self.tables.get(resource_id)

    def list_tables(self) -> list[str]:
        return list(self.tables)

    def get_all_reports(self) -> dict[str, dict]:
        return {name: report.to_dict() for name, report in self.reports.items()}

    @property
    def failed(self) -> bool:
        return bool(self.errors)


def load_tables(
    descriptor: SchemaDescriptor,
    files: Mapping[str, DataFile] | Iterable[DataFile] | None,
    registry: Optional[TableRegistry] = None,
) -> TableRegistry:
    """Load every resource of a dataset that has a data file.

    A failing file is recorded in ``registry.errors`` and does not stop the
    other resources from loading.
    """
    if registry is None:
        registry = TableRegistry(dataset_id=descriptor.dataset_id)

    for schema, data_file in descriptor.relate_with_data_files(files).items():
        try:
            table, report = load_table(schema, data_file)
        except TableLoadError as e:
            logger.warning("Failed to load %s: %s", data_file.source_name, e)
            registry.errors[schema.id] = e
            continue
        registry.register(schema, table, report)

    return registry


if __name__ == "__main__":
    # Example usage
    import sys

    from ..mapping.aliases import load_default_mapping
    from .schema import FieldDescriptor

    mapping = load_default_mapping()
    path = Path(sys.argv[1]) if len(sys.argv) > 1 else Path("data.csv")
    with open(path, "r", encoding="utf-8", newline="") as f:
        header = next(csv.reader(f))

    schema = ResourceSchema(
        id=path.stem,
        resource_type="observations",
        fields=[FieldDescriptor.create(h, mapping) for h in header],
        mapping=mapping,
    )
    table, report = load_table(schema, DataFile(resource_id=path.stem, path=path))
    print(f"Loaded {path}: {report.rows_loaded} rows, {report.rows_ignored} ignored")
    for f in schema.fields:
        print(f"  {f.field_id}: role={f.role}, type={f.field_type.value}")
