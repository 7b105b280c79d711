"""Harvester reading portal datasets from a local directory tree.

Layout: any directory below the data directory may hold a ``dataset.json``
(the portal's dataset document). Resource files are named
``<resource id>.<format>`` and are searched next to the dataset document
first, then anywhere below the data directory.
"""

import json
import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from ..cache.metadata_store import MetadataStore
from ..ingestion.dataset import DEFAULT_ENCODING, DataFile, DatasetRecord, ResourceDescriptor
from ..ingestion.loader import TableRegistry, load_tables
from ..joins.engine import JoinEngine
from ..tables.table import DataTable

logger = logging.getLogger(__name__)

DATASET_FILE_NAME = "dataset.json"


@dataclass
class HarvestResult:
    """Tables and problems of one harvested dataset."""

    dataset_id: str
    registry: TableRegistry
    table: DataTable
    missing_files: list[str] = field(default_factory=list)
    joins: list[dict] = field(default_factory=list)

    @property
    def failed_resources(self) -> list[str]:
        return list(self.registry.errors)

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataset_id": self.dataset_id,
            "tables": self.registry.get_all_reports(),
            "failed_resources": {k: str(e) for k, e in self.registry.errors.items()},
            "missing_files": self.missing_files,
            "rows": self.table.row_count(),
            "columns": self.table.column_count(),
            "joins": self.joins,
        }


def read_dataset(path: Path) -> Optional[DatasetRecord]:
    """Parse a dataset document; the portal's ``{"result": {...}}`` envelope is unwrapped."""
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Could not read/parse dataset file '%s': %s", path, e)
        return None
    if isinstance(data, dict) and isinstance(data.get("result"), dict):
        data = data["result"]
    if not isinstance(data, dict) or not data.get("id"):
        logger.error("Dataset file '%s' has no dataset id", path)
        return None
    return DatasetRecord.from_dict(data)


class FileBasedHarvester:
    """Feed datasets found below a directory into a MetadataStore and load their tables."""

    def __init__(
        self,
        data_dir: Path | str,
        store: Optional[MetadataStore] = None,
        encoding: str = DEFAULT_ENCODING,
    ):
        self.data_dir = Path(data_dir)
        self.store = store if store is not None else MetadataStore()
        self.encoding = encoding
        self._dataset_dirs: dict[str, Path] = {}

    def find_dataset_files(self) -> list[Path]:
        """Find all dataset documents below the data directory.

        Raises:
            FileNotFoundError: If the data directory does not exist
        """
        if not self.data_dir.is_dir():
            raise FileNotFoundError(f"Data directory not found: {self.data_dir}")
        return sorted(self.data_dir.rglob(DATASET_FILE_NAME))

    def harvest_datasets(self) -> list[str]:
        """Store every dataset document found.

        Returns:
            Ids of the stored datasets; denylisted and unreadable ones are left out
        """
        stored = []
        for path in self.find_dataset_files():
            record = read_dataset(path)
            if record is None:
                continue
            if self.store.insert_or_update(record):
                self._dataset_dirs[record.id] = path.parent
                stored.append(record.id)
        return stored

    def find_data_file(self, dataset_id: str, resource: ResourceDescriptor) -> Optional[DataFile]:
        file_name = f"{resource.id}.{resource.format.lower()}"
        search_dirs = []
        if dataset_id in self._dataset_dirs:
            search_dirs.append(self._dataset_dirs[dataset_id])
        search_dirs.append(self.data_dir)
        for folder in search_dirs:
            candidate = folder / file_name
            if candidate.is_file():
                return DataFile.for_resource(resource, candidate, self.encoding)
        for candidate in sorted(self.data_dir.rglob(file_name)):
            if candidate.is_file():
                return DataFile.for_resource(resource, candidate, self.encoding)
        return None

    def data_files(self, dataset_id: str) -> tuple[dict[str, DataFile], list[str]]:
        """Locate the files of a stored dataset's resources.

        Returns:
            Tuple of (data files keyed by resource id, ids of resources without a file)
        """
        record = self.store.get_dataset(dataset_id)
        files = {}
        missing = []
        for resource in record.resources:
            data_file = self.find_data_file(dataset_id, resource)
            if data_file is None:
                logger.warning("No data file found for resource '%s' (%s)", resource.name, resource.id)
                missing.append(resource.id)
            else:
                files[resource.id] = data_file
        return files, missing

    def harvest_dataset(self, dataset_id: str) -> HarvestResult:
        """Load and combine all tables of one stored dataset.

        Raises:
            UnknownDatasetError: If the dataset was never stored
        """
        descriptor = self.store.get_schema_description(dataset_id)
        files, missing = self.data_files(dataset_id)
        registry = load_tables(descriptor, files)
        engine = JoinEngine()
        table = engine.combine(descriptor, registry.tables)
        return HarvestResult(
            dataset_id=dataset_id,
            registry=registry,
            table=table,
            missing_files=missing,
            joins=engine.get_join_history(),
        )

    def harvest_all(self, max_workers: int = 1) -> list[HarvestResult]:
        """Harvest every dataset, one dataset per worker thread.

        A dataset failing with an unexpected error is logged and left out of
        the results; the others continue.
        """
        dataset_ids = self.harvest_datasets()
        results = []
        with ThreadPoolExecutor(max_workers=max(1, max_workers)) as pool:
            futures = {pool.submit(self.harvest_dataset, i): i for i in dataset_ids}
            for future in as_completed(futures):
                dataset_id = futures[future]
                try:
                    results.append(future.result())
                except Exception as e:
                    logger.exception("Harvesting dataset %s failed: %s", dataset_id, e)
        results.sort(key=lambda r: r.dataset_id)
        return results
