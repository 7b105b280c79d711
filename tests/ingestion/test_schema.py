"""Tests for the schema model and join-field inference."""

import json

import pytest

from opendata_harvester.ingestion.dataset import DataFile
from opendata_harvester.ingestion.schema import (
    DescriptorVersion,
    FieldDescriptor,
    FieldType,
    ResourceSchema,
    SchemaDescriptor,
    SchemaDescriptorError,
)
from opendata_harvester.mapping.aliases import AliasMapping

from conftest import DATASET_ID, schema_descriptor_node


def make_schema(mapping, resource_id, resource_type, field_ids):
    return ResourceSchema(
        id=resource_id,
        resource_type=resource_type,
        fields=[FieldDescriptor.create(f, mapping) for f in field_ids],
        mapping=mapping,
    )


class TestFieldDescriptor:
    """Field identity, typing and value comparison."""

    def test_identity_ignores_case(self, mapping):
        a = FieldDescriptor.create("Stations_ID", mapping)
        b = FieldDescriptor.create("stations_id", mapping, field_type="Integer")
        assert a == b
        assert hash(a) == hash(b)
        assert len({a, b}) == 1

    def test_role_resolution(self, mapping):
        assert FieldDescriptor.create("geoBreite", mapping).role == "latitude"
        assert FieldDescriptor.create("MESS_DATUM", mapping).role == "observation_time"

    def test_unresolved_field_is_plain_text(self, mapping):
        field = FieldDescriptor.create("TT_TU", mapping)
        assert field.role is None
        assert field.field_type is FieldType.STRING

    def test_explicit_role_takes_precedence(self, mapping):
        field = FieldDescriptor.create("TT_TU", mapping, role="Geobreite")
        assert field.role == "latitude"

    def test_unbound_index(self, mapping):
        assert not FieldDescriptor.create("a", mapping).is_bound

    @pytest.mark.parametrize("tag, expected", [
        ("Integer", FieldType.INTEGER),
        ("Float", FieldType.DOUBLE),
        ("Date", FieldType.DATE),
        ("WKT", FieldType.GEOMETRY),
        ("bool", FieldType.BOOLEAN),
        ("whatever", FieldType.STRING),
        (None, FieldType.STRING),
    ])
    def test_type_tags(self, mapping, tag, expected):
        assert FieldType.from_tag(tag, mapping) is expected

    def test_numeric_values_compare_by_number(self, mapping):
        integer = FieldDescriptor.create("QN", mapping, field_type="Integer")
        double = FieldDescriptor.create("TT_TU", mapping, field_type="Double")
        assert integer.equals_values("100", "0100")
        assert not integer.equals_values("100", "101")
        assert double.equals_values("5.20", "5.2")

    def test_text_values_compare_as_strings(self, mapping):
        text = FieldDescriptor.create("name", mapping, field_type="String")
        assert not text.equals_values("100", "0100")
        assert text.equals_values(" Aldersbach", "Aldersbach ")

    def test_unparsable_or_missing_values_are_not_equal(self, mapping):
        integer = FieldDescriptor.create("QN", mapping, field_type="Integer")
        assert not integer.equals_values("abc", "abc")
        assert not integer.equals_values(None, "1")

    def test_normalize_value(self, mapping):
        integer = FieldDescriptor.create("QN", mapping, field_type="Integer")
        assert integer.normalize_value(" 0044 ") == "44"


class TestResourceSchema:
    """Binding, helpers and join inference."""

    def test_fields_are_bound_contiguously(self, mapping):
        schema = make_schema(mapping, "r1", "platforms", ["a", "b", "c"])
        assert [f.index for f in schema.fields] == [0, 1, 2]
        assert all(f.resource_id == "r1" for f in schema.fields)

    def test_field_helpers(self, mapping):
        schema = make_schema(mapping, "r1", "platforms", ["Stations_id", "geoBreite", "Name"])
        assert schema.field("STATIONS_ID").index == 0
        assert schema.field_at(1).field_id == "geoBreite"
        assert schema.field_at(5) is None
        assert schema.field_for_role("latitude").field_id == "geoBreite"
        assert schema.contains_field("latitude")
        assert not schema.contains_field("longitude")
        assert schema.is_of_type("Platform")

    def test_joinable_fields_by_role(self, mapping):
        platforms = make_schema(mapping, "p", "platforms", ["Stations_id", "geoBreite", "Stationsname"])
        observations = make_schema(mapping, "o", "observations", ["STATIONS_ID", "MESS_DATUM", "TT_TU"])

        joinable = platforms.joinable_fields(observations)

        assert {f.field_id for f in joinable} == {"Stations_id"}
        assert {f.field_id for f in observations.joinable_fields(platforms)} == {"STATIONS_ID"}

    def test_same_raw_id_without_role_is_not_joinable(self, mapping):
        a = make_schema(mapping, "a", "aType", ["A", "B"])
        b = make_schema(mapping, "b", "bType", ["A", "B"])
        assert a.joinable_fields(b) == set()
        assert not a.is_joinable(b)

    def test_different_raw_ids_with_same_role_are_joinable(self, mapping):
        a = make_schema(mapping, "a", "aType", ["platform_id"])
        b = make_schema(mapping, "b", "bType", ["Stations_ID"])
        assert len(a.joinable_fields(b)) == 1
        assert a.is_joinable(b)

    def test_joinable_fields_are_unique_by_role(self, mapping):
        a = make_schema(mapping, "a", "aType", ["lat", "geoBreite"])
        b = make_schema(mapping, "b", "bType", ["latitude"])
        assert len(a.joinable_fields(b)) == 1

    def test_same_type_is_extensible_not_joinable(self, mapping):
        a = make_schema(mapping, "o1", "observations", ["STATIONS_ID", "TT_TU"])
        b = make_schema(mapping, "o2", "observations", ["STATIONS_ID", "TT_TU"])
        c = make_schema(mapping, "o3", "observations", ["STATIONS_ID", "RF_TU"])
        assert not a.is_joinable(b)
        assert a.is_extensible(b)
        assert not a.is_extensible(c)
        assert not a.is_extensible(a)

    def test_aliased_type_tags_are_the_same_type(self, mapping):
        a = make_schema(mapping, "p1", "platforms", ["STATIONS_ID", "Stationsname"])
        b = make_schema(mapping, "p2", "Platform", ["STATIONS_ID", "Stationsname"])
        assert a.is_extensible(b)
        assert not a.is_joinable(b)

    def test_create_key(self, mapping):
        key = make_schema(mapping, "r1", "platforms", ["a"]).create_key(3)
        assert key.resource_id == "r1"
        assert key.row == 3
        assert key.key_id == "r1_3"


class TestSchemaDescriptor:
    """Parsing schema descriptor documents."""

    def test_parse_members(self, descriptor):
        assert descriptor.dataset_id == DATASET_ID
        assert descriptor.version == "0.3"
        assert descriptor.description == "Hourly air temperature"
        assert [m.id for m in descriptor.members] == ["platforms-1", "observations-1", "observations-2"]

    def test_member_details(self, descriptor):
        observations = descriptor.member("observations-1")
        assert observations.resource_type == "observations"
        assert observations.header_rows == 1
        assert observations.field_ids == ["STATIONS_ID", "MESS_DATUM", "QN", "TT_TU"]
        assert observations.column_headers == ["station id", "MESS_DATUM", "QN", "TT_TU"]

        temperature = observations.field("TT_TU")
        assert temperature.field_type is FieldType.DOUBLE
        assert temperature.no_data == "-999"
        assert temperature.properties["uom"] == "°C"
        assert observations.field("MESS_DATUM").date_format == "YYYYMMDDhh"

    def test_members_by_type(self, descriptor):
        grouped = descriptor.members_by_type()
        assert list(grouped) == ["platforms", "observations"]
        assert [m.id for m in grouped["observations"]] == ["observations-1", "observations-2"]

    def test_aliased_type_tags_share_a_group(self, mapping):
        node = {"members": [
            {"resource_name": "p1", "resource_type": "platforms", "fields": [{"field_id": "a"}]},
            {"resource_name": "p2", "resource_type": "Platform", "fields": [{"field_id": "a"}]},
        ]}
        grouped = SchemaDescriptor.from_json(node, "x", mapping).members_by_type()
        assert [m.id for m in grouped["platforms"]] == ["p1", "p2"]

    def test_parse_from_text(self, mapping):
        descriptor = SchemaDescriptor.from_json(json.dumps(schema_descriptor_node()), "x", mapping)
        assert len(descriptor.members) == 3

    def test_header_rows_default(self, mapping):
        node = {"members": [{"resource_name": "r", "resource_type": "t", "fields": [{"field_id": "a"}]}]}
        assert SchemaDescriptor.from_json(node, "x", mapping).members[0].header_rows == 1

    @pytest.mark.parametrize("node", [None, {}, {"members": []}])
    def test_absent_or_empty_members(self, mapping, node):
        assert SchemaDescriptor.from_json(node, "x", mapping).members == ()

    def test_member_without_fields_is_skipped(self, mapping):
        node = {"members": [{"resource_name": "r", "resource_type": "t"}]}
        assert SchemaDescriptor.from_json(node, "x", mapping).members == ()

    @pytest.mark.parametrize("node", [
        "[1, 2]",
        "{broken",
        {"members": "not an array"},
        {"members": ["not an object"]},
        {"members": [{"resource_name": "r", "fields": [{"short_name": "no id"}]}]},
    ])
    def test_structural_errors(self, mapping, node):
        with pytest.raises(SchemaDescriptorError):
            SchemaDescriptor.from_json(node, "x", mapping)

    def test_custom_property_aliases(self):
        mapping = AliasMapping.from_dict({"property": {"field_id": ["column"]}})
        node = {"members": [{"resource_name": "r", "resource_type": "t", "fields": [{"column": "a"}]}]}
        assert SchemaDescriptor.from_json(node, "x", mapping).members[0].field_ids == ["a"]


class TestRelateWithDataFiles:
    """Pairing resource schemas with data files."""

    def test_matching_files(self, descriptor, tmp_path):
        files = [DataFile("observations-1", tmp_path / "o1.csv"), DataFile("unknown", tmp_path / "u.csv")]

        relations = descriptor.relate_with_data_files(files)

        assert {schema.id: f.resource_id for schema, f in relations.items()} == {
            "observations-1": "observations-1",
        }

    def test_mapping_of_files(self, descriptor):
        relations = descriptor.relate_with_data_files({"platforms-1": DataFile("platforms-1")})
        assert [schema.id for schema in relations] == ["platforms-1"]

    @pytest.mark.parametrize("files", [None, [], {}])
    def test_no_files(self, descriptor, files):
        assert descriptor.relate_with_data_files(files) == {}


class TestDescriptorVersion:
    """Version parsing and ordering."""

    def test_parse(self):
        assert DescriptorVersion.parse("0.3") == DescriptorVersion(0, 3)
        assert DescriptorVersion.parse("2") == DescriptorVersion(2, 0)
        assert DescriptorVersion.parse(None) == DescriptorVersion(0, 0)

    def test_ordering(self):
        assert DescriptorVersion.parse("0.3").is_at_least("0.2")
        assert DescriptorVersion.parse("0.3").is_at_least("0.3")
        assert not DescriptorVersion.parse("0.3").is_at_least("1.0")

    @pytest.mark.parametrize("text", ["a.b", "-1.0"])
    def test_invalid(self, text):
        with pytest.raises(ValueError):
            DescriptorVersion.parse(text)

    def test_descriptor_version(self, descriptor):
        assert str(descriptor.descriptor_version) == "0.3"
