"""Process-wide cache of parsed schema descriptors.

Harvesters for different datasets share one store. Reads never take a lock:
writers build a new dict and swap it in. Writes for the same dataset id are
serialized by a per-id lock; writes for different ids only contend for the
short swap.
"""

import json
import logging
import threading
from pathlib import Path
from typing import Any, Optional

from ..ingestion.dataset import DatasetRecord
from ..ingestion.schema import COLLECTION_RESOURCE_TYPE, SchemaDescriptor, SchemaDescriptorError
from ..mapping.aliases import AliasMapping, Section, load_default_mapping, load_mapping

logger = logging.getLogger(__name__)

SCHEMA_DESCRIPTOR_KEY = "schema_descriptor"
OVERRIDE_FILE_TEMPLATE = "alias-mapping-{dataset_id}.json"


class UnknownDatasetError(KeyError):
    """No dataset with the given id has been stored."""


def load_denylist(path: Optional[Path | str]) -> frozenset[str]:
    """Read dataset ids to skip, one per non-blank line.

    A missing or unreadable file gives an empty denylist.
    """
    if path is None:
        return frozenset()
    path = Path(path)
    if not path.exists():
        logger.info("No denylist at '%s'", path)
        return frozenset()
    try:
        with open(path, "r", encoding="utf-8") as f:
            ids = {line.strip() for line in f if line.strip()}
    except OSError as e:
        logger.warning("Could not read denylist '%s': %s", path, e)
        return frozenset()
    logger.info("Loaded %d denylisted dataset ids from '%s'", len(ids), path)
    return frozenset(ids)


class MetadataStore:
    """Dataset id -> SchemaDescriptor cache with an id denylist."""

    def __init__(
        self,
        mapping: Optional[AliasMapping] = None,
        denylist_file: Optional[Path | str] = None,
        mapping_dir: Optional[Path | str] = None,
    ):
        """Initialize the store.

        Args:
            mapping: Default alias mapping shared by all datasets
            denylist_file: Optional file of dataset ids to skip
            mapping_dir: Directory holding per-dataset override mappings
        """
        self.mapping = mapping if mapping is not None else load_default_mapping()
        self.mapping_dir = Path(mapping_dir) if mapping_dir is not None else None
        self._denylist = load_denylist(denylist_file)
        self._descriptors: dict[str, SchemaDescriptor] = {}
        self._datasets: dict[str, DatasetRecord] = {}
        self._mappings: dict[str, AliasMapping] = {}
        self._lock = threading.Lock()
        self._id_locks: dict[str, threading.Lock] = {}

    def _lock_for(self, dataset_id: str) -> threading.Lock:
        with self._lock:
            lock = self._id_locks.get(dataset_id)
            if lock is None:
                lock = self._id_locks[dataset_id] = threading.Lock()
            return lock

    def mapping_for(self, dataset_id: str) -> AliasMapping:
        """Alias mapping of a dataset: its override file merged onto the default."""
        cached = self._mappings.get(dataset_id)
        if cached is not None:
            return cached
        mapping = self.mapping
        if self.mapping_dir is not None:
            file_name = OVERRIDE_FILE_TEMPLATE.format(dataset_id=dataset_id)
            path = self.mapping_dir / file_name
            if path.exists():
                mapping = load_mapping(file_name, config_dir=self.mapping_dir, base=self.mapping)
                logger.debug("Using override mapping '%s' for dataset %s", path, dataset_id)
        with self._lock:
            self._mappings = {**self._mappings, dataset_id: mapping}
        return mapping

    def _extract_blob(self, record: DatasetRecord, mapping: AliasMapping) -> Optional[dict[str, Any]]:
        for key, value in record.extras:
            if not mapping.has_mapping(SCHEMA_DESCRIPTOR_KEY, key, Section.SCHEMA_DESCRIPTOR):
                continue
            node = value
            if isinstance(value, (str, bytes)):
                try:
                    node = json.loads(value)
                except json.JSONDecodeError as e:
                    logger.warning("Dataset %s: schema descriptor is not valid JSON: %s", record.id, e)
                    continue
            if not isinstance(node, dict):
                logger.warning("Dataset %s: schema descriptor is not a JSON object", record.id)
                continue
            resource_type = mapping.lookup(node, "resource_type", Section.SCHEMA_DESCRIPTOR)
            if not mapping.has_mapping(COLLECTION_RESOURCE_TYPE, resource_type, Section.RESOURCE_TYPE):
                logger.debug("Dataset %s: ignoring descriptor of type '%s'", record.id, resource_type)
                continue
            return node
        return None

    def _parse(self, record: DatasetRecord) -> SchemaDescriptor:
        mapping = self.mapping_for(record.id)
        node = self._extract_blob(record, mapping)
        if node is None:
            logger.info("Dataset %s has no schema descriptor", record.id)
            return SchemaDescriptor(dataset_id=record.id, mapping=mapping)
        try:
            return SchemaDescriptor.from_json(node, record.id, mapping, dataset_name=record.name)
        except SchemaDescriptorError as e:
            logger.warning("Dataset %s: unusable schema descriptor: %s", record.id, e)
            return SchemaDescriptor(dataset_id=record.id, mapping=mapping)

    def insert_or_update(self, record: DatasetRecord) -> bool:
        """Parse and store a dataset record's schema descriptor.

        The previous entry for the same id is replaced. Records without a
        usable descriptor are stored with an empty one.

        Returns:
            False if the dataset is denylisted and was not stored
        """
        if self.is_denylisted(record.id):
            logger.info("Skipping denylisted dataset %s", record.id)
            return False
        with self._lock_for(record.id):
            descriptor = self._parse(record)
            with self._lock:
                self._descriptors = {**self._descriptors, record.id: descriptor}
                self._datasets = {**self._datasets, record.id: record}
        return True

    def get_schema_description(self, dataset_id: str) -> SchemaDescriptor:
        """Return the stored descriptor.

        Raises:
            UnknownDatasetError: If no dataset with this id was stored
        """
        try:
            return self._descriptors[dataset_id]
        except KeyError:
            raise UnknownDatasetError(dataset_id) from None

    def get_dataset(self, dataset_id: str) -> DatasetRecord:
        try:
            return self._datasets[dataset_id]
        except KeyError:
            raise UnknownDatasetError(dataset_id) from None

    def has_schema_descriptor(self, dataset_id: str) -> bool:
        descriptor = self._descriptors.get(dataset_id)
        return descriptor is not None and bool(descriptor.members)

    def get_dataset_ids(self) -> set[str]:
        return set(self._descriptors)

    def get_denylisted_dataset_ids(self) -> set[str]:
        return set(self._denylist)

    def is_denylisted(self, dataset_id: str) -> bool:
        return dataset_id in self._denylist

    def delete(self, dataset_id: str) -> bool:
        with self._lock_for(dataset_id):
            with self._lock:
                removed = dataset_id in self._descriptors
                if removed:
                    self._descriptors = {k: v for k, v in self._descriptors.items() if k != dataset_id}
                    self._datasets = {k: v for k, v in self._datasets.items() if k != dataset_id}
                    self._mappings = {k: v for k, v in self._mappings.items() if k != dataset_id}
        with self._lock:
            self._id_locks.pop(dataset_id, None)
        return removed

    def clear(self) -> None:
        with self._lock:
            self._descriptors = {}
            self._datasets = {}
            self._mappings = {}
            self._id_locks = {}

    def __len__(self) -> int:
        return len(self._descriptors)

    def __contains__(self, dataset_id: object) -> bool:
        return dataset_id in self._descriptors
