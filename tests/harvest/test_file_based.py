"""Tests for the file-based harvester and the pipeline entry point."""

import json

import pytest

from opendata_harvester.cache.metadata_store import MetadataStore, UnknownDatasetError
from opendata_harvester.harvest.file_based import FileBasedHarvester, read_dataset
from opendata_harvester.main import run_pipeline

from conftest import DATASET_ID, dataset_document


class TestReadDataset:
    """Dataset documents on disk."""

    def test_plain_document(self, data_dir):
        record = read_dataset(data_dir / DATASET_ID / "dataset.json")
        assert record.id == DATASET_ID

    def test_result_envelope(self, tmp_path):
        path = tmp_path / "dataset.json"
        path.write_text(json.dumps({"success": True, "result": dataset_document("wrapped")}), encoding="utf-8")
        assert read_dataset(path).id == "wrapped"

    @pytest.mark.parametrize("content", ["{broken", "[]", '{"name": "no id"}'])
    def test_unusable_document(self, tmp_path, content):
        path = tmp_path / "dataset.json"
        path.write_text(content, encoding="utf-8")
        assert read_dataset(path) is None


class TestFileBasedHarvester:
    """Harvesting a data directory."""

    def test_missing_data_dir(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            FileBasedHarvester(tmp_path / "nope").harvest_datasets()

    def test_harvest_datasets(self, data_dir, mapping):
        harvester = FileBasedHarvester(data_dir, MetadataStore(mapping))
        assert harvester.harvest_datasets() == [DATASET_ID]
        assert harvester.store.has_schema_descriptor(DATASET_ID)

    def test_data_files_are_found_anywhere(self, data_dir, mapping):
        harvester = FileBasedHarvester(data_dir, MetadataStore(mapping))
        harvester.harvest_datasets()

        files, missing = harvester.data_files(DATASET_ID)

        assert sorted(files) == ["observations-1", "observations-2", "platforms-1"]
        assert files["observations-2"].path == data_dir / "downloads" / "observations-2.csv"
        assert missing == []

    def test_harvest_dataset(self, data_dir, mapping):
        harvester = FileBasedHarvester(data_dir, MetadataStore(mapping))
        harvester.harvest_datasets()

        result = harvester.harvest_dataset(DATASET_ID)

        assert result.table.row_count() == 4
        assert result.registry.reports["observations-1"].rows_ignored == 1
        assert result.failed_resources == []
        assert result.to_dict()["rows"] == 4

    def test_missing_resource_file(self, data_dir, mapping):
        (data_dir / "downloads" / "observations-2.csv").unlink()
        harvester = FileBasedHarvester(data_dir, MetadataStore(mapping))
        harvester.harvest_datasets()

        result = harvester.harvest_dataset(DATASET_ID)

        assert result.missing_files == ["observations-2"]
        assert result.table.row_count() == 3

    def test_unknown_dataset(self, data_dir, mapping):
        harvester = FileBasedHarvester(data_dir, MetadataStore(mapping))
        with pytest.raises(UnknownDatasetError):
            harvester.harvest_dataset("missing")

    def test_denylisted_dataset_is_skipped(self, data_dir, mapping, write_file):
        store = MetadataStore(mapping, denylist_file=write_file("denylist.txt", DATASET_ID))
        assert FileBasedHarvester(data_dir, store).harvest_all() == []

    def test_harvest_all_in_parallel(self, data_dir, mapping):
        second = data_dir / "second"
        second.mkdir()
        (second / "dataset.json").write_text(json.dumps(dataset_document("second")), encoding="utf-8")
        harvester = FileBasedHarvester(data_dir, MetadataStore(mapping))

        results = harvester.harvest_all(max_workers=2)

        assert [r.dataset_id for r in results] == [DATASET_ID, "second"]
        # resource files of the second dataset are found below the data directory
        assert all(r.table.row_count() == 4 for r in results)


class TestPipeline:
    """Command line pipeline."""

    def test_run_pipeline(self, data_dir, capsys):
        outcome = run_pipeline(data_dir, workers=1)

        assert len(outcome["results"]) == 1
        output = capsys.readouterr().out
        assert "OPEN DATA HARVESTER" in output
        assert "combined table: 4 rows, 10 columns" in output
