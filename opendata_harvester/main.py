"""Main entry point for the open data harvester.

This module orchestrates the harvesting pipeline:
1. Load the alias mapping and the denylist
2. Read dataset documents into the metadata store
3. Load each dataset's resource files into tables
4. Combine tables per dataset (extend same-type tables, join across types)

Usage:
    python -m opendata_harvester.main [--data-dir DATA] [--mapping-dir DIR]
        [--denylist FILE] [--workers N] [--log-level LEVEL]
"""

import argparse
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Optional

from . import config
from .cache.metadata_store import MetadataStore
from .harvest.file_based import FileBasedHarvester
from .mapping.aliases import load_mapping


def run_pipeline(
    data_dir: Path,
    mapping_dir: Optional[Path] = None,
    denylist_file: Optional[Path] = None,
    workers: int = 1,
    mapping_name: Optional[str] = None,
) -> dict:
    """Run the harvesting pipeline.

    Args:
        data_dir: Directory containing dataset documents and resource files
        mapping_dir: Directory of alias configurations and per-dataset overrides
        denylist_file: File of dataset ids to skip
        workers: Number of datasets harvested in parallel
        mapping_name: Named alias configuration layered onto the default

    Returns:
        Dictionary with the store, per-dataset results and duration
    """
    start_time = time.time()

    print("=" * 60)
    print("OPEN DATA HARVESTER")
    print("=" * 60)
    print(f"\nData directory: {data_dir}")
    print(f"Mapping directory: {mapping_dir or '-'}")
    print(f"Start time: {datetime.now().isoformat()}")

    # Step 1: Configuration
    print("\n" + "-" * 40)
    print("STEP 1: Loading alias mapping and denylist")
    print("-" * 40)

    mapping = load_mapping(mapping_name, mapping_dir)
    store = MetadataStore(mapping, denylist_file=denylist_file, mapping_dir=mapping_dir)
    print(f"\n  Canonical field roles: {len(mapping.canonical_keys())}")
    print(f"  Denylisted datasets: {len(store.get_denylisted_dataset_ids())}")

    # Step 2: Harvest
    print("\n" + "-" * 40)
    print("STEP 2: Harvesting datasets")
    print("-" * 40)

    harvester = FileBasedHarvester(data_dir, store, encoding=config.DEFAULT_ENCODING)
    results = harvester.harvest_all(max_workers=workers)

    print(f"\nStored {len(store)} datasets, harvested {len(results)}:")
    for result in results:
        descriptor = store.get_schema_description(result.dataset_id)
        print(f"\n  {result.dataset_id}: {len(descriptor.members)} resources")
        for resource_id, report in result.registry.reports.items():
            print(
                f"    {resource_id}: {report.rows_loaded} rows, "
                f"{report.rows_ignored} ignored, {report.column_count} columns"
            )
        for resource_id, error in result.registry.errors.items():
            print(f"    {resource_id}: FAILED ({error})")
        for resource_id in result.missing_files:
            print(f"    {resource_id}: no data file")
        print(f"    combined table: {result.table.row_count()} rows, {result.table.column_count()} columns")

    duration = time.time() - start_time
    print(f"\nPipeline completed in {duration:.2f} seconds")

    return {
        "store": store,
        "results": results,
        "duration": duration,
    }


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Open data harvester"
    )
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=config.DATA_DIR,
        help="Directory containing dataset.json documents and resource files",
    )
    parser.add_argument(
        "--mapping-dir",
        type=Path,
        default=config.MAPPING_DIR,
        help="Directory of alias configurations and per-dataset overrides",
    )
    parser.add_argument(
        "--mapping",
        default=None,
        help="Named alias configuration layered onto the default",
    )
    parser.add_argument(
        "--denylist",
        type=Path,
        default=config.DENYLIST_FILE,
        help="File of dataset ids to skip, one per line",
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=config.MAX_WORKERS,
        help="Number of datasets harvested in parallel",
    )
    parser.add_argument(
        "--log-level",
        default=config.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )

    args = parser.parse_args()

    logging.basicConfig(level=args.log_level, format=config.LOG_FORMAT)

    run_pipeline(
        data_dir=args.data_dir,
        mapping_dir=args.mapping_dir,
        denylist_file=args.denylist,
        workers=args.workers,
        mapping_name=args.mapping,
    )


if __name__ == "__main__":
    main()
