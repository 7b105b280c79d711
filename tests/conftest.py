"""Shared fixtures: a small weather-station dataset with platforms and observations."""

import json
from pathlib import Path

import pytest

from opendata_harvester.ingestion.dataset import DataFile, DatasetRecord
from opendata_harvester.ingestion.schema import SchemaDescriptor
from opendata_harvester.mapping.aliases import load_default_mapping

DATASET_ID = "dwd-temperature"

PLATFORMS_CSV = """Stations_id,von_datum,bis_datum,Stationshoehe,geoBreite,geoLaenge,Stationsname
00044,20070401,20160331,44,52.9336,8.2370,"Großenkneten"
00073,20070401,20160331,374,48.6183,13.0620,"Aldersbach-Kriestorf, Bayern"
"""

OBSERVATIONS_1_CSV = """STATIONS_ID,MESS_DATUM,QN,TT_TU
44,2015032902,3,5.2
44,2015032903,3,-999
73,2015032902,3,4.1
73,2015032903
"""

OBSERVATIONS_2_CSV = """STATIONS_ID,MESS_DATUM,QN,TT_TU
44,2015032904,3,5.9
"""


def schema_descriptor_node() -> dict:
    return {
        "resource_type": "csv-observations-collection",
        "schema_descriptor_version": "0.3",
        "schema_descriptor_description": "Hourly air temperature",
        "members": [
            {
                "resource_name": "platforms-1",
                "resource_type": "platforms",
                "headerrows": 1,
                "fields": [
                    {"field_id": "Stations_id", "short_name": "station id", "field_type": "Integer"},
                    {"field_id": "von_datum", "field_type": "Date", "date_format": "yyyyMMdd"},
                    {"field_id": "bis_datum", "field_type": "Date", "date_format": "yyyyMMdd"},
                    {"field_id": "Stationshoehe", "field_type": "Integer", "uom": "m"},
                    {"field_id": "geoBreite", "field_type": "Double", "crs": "EPSG:4326"},
                    {"field_id": "geoLaenge", "field_type": "Double", "crs": "EPSG:4326"},
                    {"field_id": "Stationsname", "field_type": "String"},
                ],
            },
            {
                "resource_name": ["observations-1", "observations-2"],
                "resource_type": "observations",
                "headerrows": 1,
                "fields": [
                    {"field_id": "STATIONS_ID", "short_name": "station id", "field_type": "Integer"},
                    {"field_id": "MESS_DATUM", "field_type": "Date", "date_format": "YYYYMMDDhh"},
                    {"field_id": "QN", "field_type": "Integer"},
                    {
                        "field_id": "TT_TU",
                        "field_type": "Double",
                        "phenomenon": "air temperature",
                        "uom": "°C",
                        "no_data": "-999",
                    },
                ],
            },
        ],
    }


def dataset_document(dataset_id: str = DATASET_ID) -> dict:
    return {
        "id": dataset_id,
        "name": "air-temperature-hourly",
        "metadata_modified": "2016-04-01T10:00:00",
        "extras": [
            {"key": "spatial", "value": "{}"},
            {"key": "schema_descriptor", "value": json.dumps(schema_descriptor_node())},
        ],
        "resources": [
            {"id": "platforms-1", "name": "Stations", "format": "CSV"},
            {"id": "observations-1", "name": "Observations 2015", "format": "CSV"},
            {"id": "observations-2", "name": "Observations 2016", "format": "CSV"},
        ],
    }


@pytest.fixture
def mapping():
    return load_default_mapping()


@pytest.fixture
def descriptor(mapping):
    return SchemaDescriptor.from_json(schema_descriptor_node(), DATASET_ID, mapping)


@pytest.fixture
def dataset_record():
    return DatasetRecord.from_dict(dataset_document())


@pytest.fixture
def write_file(tmp_path):
    """Write text to a file below tmp_path and return its path."""

    def write(name: str, content: str, encoding: str = "utf-8") -> Path:
        path = tmp_path / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding=encoding)
        return path

    return write


@pytest.fixture
def data_files(write_file):
    """Data files of all three resources keyed by resource id."""
    return {
        "platforms-1": DataFile("platforms-1", write_file("platforms-1.csv", PLATFORMS_CSV)),
        "observations-1": DataFile("observations-1", write_file("observations-1.csv", OBSERVATIONS_1_CSV)),
        "observations-2": DataFile("observations-2", write_file("observations-2.csv", OBSERVATIONS_2_CSV)),
    }


@pytest.fixture
def data_dir(tmp_path):
    """A data directory laid out as the file-based harvester expects."""
    root = tmp_path / "data"
    dataset_dir = root / DATASET_ID
    dataset_dir.mkdir(parents=True)
    (dataset_dir / "dataset.json").write_text(json.dumps(dataset_document()), encoding="utf-8")
    (dataset_dir / "platforms-1.csv").write_text(PLATFORMS_CSV, encoding="utf-8")
    (dataset_dir / "observations-1.csv").write_text(OBSERVATIONS_1_CSV, encoding="utf-8")
    # resource files may live anywhere below the data directory
    other = root / "downloads"
    other.mkdir()
    (other / "observations-2.csv").write_text(OBSERVATIONS_2_CSV, encoding="utf-8")
    return root
