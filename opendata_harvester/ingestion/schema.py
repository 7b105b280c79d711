"""Schema model of a dataset's tables.

A schema descriptor JSON document is parsed once into typed structures:

- SchemaDescriptor: one per dataset, holding its resource schemas
- ResourceSchema: the shape of one table (ordered fields, header rows)
- FieldDescriptor: one column with its declared type and canonical role

Canonical roles are resolved through an AliasMapping, which is also what
makes two tables joinable.
"""

import json
import logging
from dataclasses import dataclass, field, replace
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

from ..mapping.aliases import AliasMapping, Section
from .dataset import DataFile

logger = logging.getLogger(__name__)

COLLECTION_RESOURCE_TYPE = "csv-observations-collection"
DEFAULT_HEADER_ROWS = 1
UNBOUND_INDEX = -1

# Descriptive field properties kept verbatim
DESCRIPTIVE_PROPERTIES = (
    "short_name",
    "long_name",
    "description",
    "uom",
    "phenomenon",
    "no_data",
    "crs",
)


class SchemaDescriptorError(ValueError):
    """Schema descriptor JSON lacks the required structure."""


class FieldType(str, Enum):
    """Closed set of field types."""
    STRING = "string"
    INTEGER = "integer"
    DOUBLE = "double"
    BOOLEAN = "boolean"
    DATE = "date"
    GEOMETRY = "geometry"

    @classmethod
    def from_tag(cls, tag: Optional[str], mapping: AliasMapping) -> "FieldType":
        """Resolve a declared type tag such as "Float" or "Integer".

        Missing or unknown tags are plain text.
        """
        if not tag:
            return cls.STRING
        resolved = mapping.resolve(str(tag), Section.DATATYPE)
        if resolved is None:
            logger.debug("Unknown field type '%s', treating as string", tag)
            return cls.STRING
        try:
            return cls(resolved)
        except ValueError:
            return cls.STRING

    @property
    def is_numeric(self) -> bool:
        return self in (FieldType.INTEGER, FieldType.DOUBLE)


@dataclass(frozen=True)
class DescriptorVersion:
    """Schema descriptor format version (major.minor)."""

    major: int = 0
    minor: int = 0

    @classmethod
    def parse(cls, text: Optional[str]) -> "DescriptorVersion":
        """Parse "0.3"-like version strings.

        Raises:
            ValueError: If major or minor is not a non-negative integer
        """
        if text is None or not str(text).strip():
            return cls()
        parts = str(text).strip().split(".")
        numbers = []
        for part in parts[:2]:
            part = part or "0"
            try:
                number = int(part)
            except ValueError:
                raise ValueError(f"unparsable version string: {text}") from None
            if number < 0:
                raise ValueError("negative versions not allowed")
            numbers.append(number)
        if len(numbers) == 1:
            numbers.append(0)
        return cls(numbers[0], numbers[1])

    def __lt__(self, other: "DescriptorVersion") -> bool:
        return (self.major, self.minor) < (other.major, other.minor)

    def __le__(self, other: "DescriptorVersion") -> bool:
        return (self.major, self.minor) <= (other.major, other.minor)

    def is_at_least(self, other: "DescriptorVersion | str") -> bool:
        if not isinstance(other, DescriptorVersion):
            other = DescriptorVersion.parse(other)
        return other <= self

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}"


def _to_int(value: Any) -> Optional[int]:
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def _to_float(value: Any) -> Optional[float]:
    try:
        return float(str(value).strip())
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True, eq=False)
class FieldDescriptor:
    """One column of a resource.

    Equality and hashing use the lower-cased field id only. ``resource_id``
    names the owning ResourceSchema; it is an identifier, not a reference.
    """

    field_id: str
    field_type: FieldType = FieldType.STRING
    index: int = UNBOUND_INDEX
    role: Optional[str] = None
    date_format: Optional[str] = None
    resource_id: Optional[str] = None
    properties: Mapping[str, str] = field(default_factory=lambda: MappingProxyType({}))

    @classmethod
    def create(
        cls,
        field_id: str,
        mapping: AliasMapping,
        field_type: Optional[str] = None,
        index: int = UNBOUND_INDEX,
        date_format: Optional[str] = None,
        role: Optional[str] = None,
        properties: Optional[Mapping[str, str]] = None,
        resource_id: Optional[str] = None,
    ) -> "FieldDescriptor":
        """Create a field, resolving its type tag and canonical role.

        An explicit ``role`` is resolved against the field aliases first; the
        raw field id is used otherwise.
        """
        resolved_role = None
        if role:
            resolved_role = mapping.resolve(role) or role.strip().lower()
        if resolved_role is None:
            resolved_role = mapping.resolve(field_id)
        return cls(
            field_id=field_id,
            field_type=FieldType.from_tag(field_type, mapping),
            index=index,
            role=resolved_role,
            date_format=date_format or None,
            resource_id=resource_id,
            properties=MappingProxyType(dict(properties or {})),
        )

    @classmethod
    def from_entry(
        cls,
        entry: Mapping[str, Any],
        index: int,
        mapping: AliasMapping,
        resource_id: Optional[str] = None,
    ) -> "FieldDescriptor":
        """Parse one ``fields`` entry of a schema descriptor member."""
        if not isinstance(entry, Mapping):
            raise SchemaDescriptorError(f"field entry #{index} is not an object")
        field_id = mapping.lookup(entry, "field_id")
        if field_id is None or not str(field_id).strip():
            raise SchemaDescriptorError(f"field entry #{index} has no field_id")
        properties = {}
        for name in DESCRIPTIVE_PROPERTIES:
            value = mapping.lookup(entry, name)
            if value is not None:
                properties[name] = str(value)
        date_format = mapping.lookup(entry, "date_format")
        role = mapping.lookup(entry, "field_role")
        return cls.create(
            str(field_id).strip(),
            mapping,
            field_type=mapping.lookup(entry, "field_type"),
            index=index,
            date_format=str(date_format) if date_format else None,
            role=str(role) if role else None,
            properties=properties,
            resource_id=resource_id,
        )

    @property
    def lower_id(self) -> str:
        return self.field_id.lower()

    @property
    def is_bound(self) -> bool:
        return self.index >= 0

    @property
    def short_name(self) -> Optional[str]:
        return self.properties.get("short_name") or None

    @property
    def column_header(self) -> str:
        return self.short_name or self.field_id

    @property
    def crs(self) -> Optional[str]:
        return self.properties.get("crs") or None

    @property
    def no_data(self) -> Optional[str]:
        return self.properties.get("no_data")

    def has_role(self, role: str) -> bool:
        return self.role is not None and self.role == role.strip().lower()

    def bound_to(self, resource_id: Optional[str], index: int) -> "FieldDescriptor":
        return replace(self, resource_id=resource_id, index=index)

    def normalize_value(self, value: Optional[str]) -> Optional[str]:
        """Canonical text of a raw value, used as join key.

        Numeric values are reformatted ("0100" -> "100"); unparsable numbers
        and other types are only stripped.
        """
        if value is None:
            return None
        text = str(value).strip()
        if self.field_type is FieldType.INTEGER:
            number = _to_int(text)
            return str(number) if number is not None else text
        if self.field_type is FieldType.DOUBLE:
            number = _to_float(text)
            return repr(number) if number is not None else text
        return text

    def equals_values(self, this_value: Optional[str], other_value: Optional[str]) -> bool:
        """Compare two raw values of this field type-aware.

        Integers and doubles compare by numeric value, everything else by the
        stripped text.
        """
        if this_value is None or other_value is None:
            return False
        if self.field_type is FieldType.INTEGER:
            this_number, other_number = _to_int(this_value), _to_int(other_value)
        elif self.field_type is FieldType.DOUBLE:
            this_number, other_number = _to_float(this_value), _to_float(other_value)
        else:
            return str(this_value).strip() == str(other_value).strip()
        if this_number is None or other_number is None:
            logger.warning(
                "could not compare %s values '%s' and '%s' of field '%s'",
                self.field_type.value, this_value, other_value, self.field_id,
            )
            return False
        return this_number == other_number

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FieldDescriptor):
            return NotImplemented
        return self.lower_id == other.lower_id

    def __hash__(self) -> int:
        return hash(self.lower_id)

    def to_dict(self) -> dict[str, Any]:
        return {
            "field_id": self.field_id,
            "field_type": self.field_type.value,
            "index": self.index,
            "role": self.role,
            "date_format": self.date_format,
            "resource_id": self.resource_id,
            "properties": dict(self.properties),
        }

    def __repr__(self) -> str:
        return (
            f"FieldDescriptor(field_id={self.field_id!r}, type={self.field_type.value}, "
            f"role={self.role!r}, resource={self.resource_id!r}, index={self.index})"
        )


@dataclass(frozen=True)
class ResourceKey:
    """Row address inside one loaded table."""

    resource_id: Optional[str]
    row: int

    @property
    def key_id(self) -> str:
        return f"{self.resource_id}_{self.row}"


class ResourceSchema:
    """Shape of one table: ordered fields plus header-row count.

    Fields are bound on construction: their indices become their positions
    (0..n-1) and their ``resource_id`` this schema's id.
    """

    def __init__(
        self,
        id: Optional[str] = None,
        resource_type: Optional[str] = None,
        fields: Optional[Iterable[FieldDescriptor]] = None,
        header_rows: int = DEFAULT_HEADER_ROWS,
        dataset_name: Optional[str] = None,
        mapping: Optional[AliasMapping] = None,
    ):
        self.id = id
        self.resource_type = resource_type
        self.header_rows = max(int(header_rows), 0)
        self.dataset_name = dataset_name
        self.mapping = mapping
        self._fields: tuple[FieldDescriptor, ...] = ()
        self.set_fields(fields or ())

    def set_fields(self, fields: Iterable[FieldDescriptor]) -> None:
        self._fields = tuple(f.bound_to(self.id, i) for i, f in enumerate(fields))

    @property
    def fields(self) -> tuple[FieldDescriptor, ...]:
        return self._fields

    @property
    def field_ids(self) -> list[str]:
        return [f.field_id for f in self._fields]

    @property
    def column_headers(self) -> list[str]:
        return [f.column_header for f in self._fields]

    def field(self, field_id: str) -> Optional[FieldDescriptor]:
        """Look up a field by raw id, ignoring case."""
        lowered = field_id.lower()
        for candidate in self._fields:
            if candidate.lower_id == lowered:
                return candidate
        return None

    def field_at(self, index: int) -> Optional[FieldDescriptor]:
        if 0 <= index < len(self._fields):
            return self._fields[index]
        return None

    def field_for_role(self, role: str) -> Optional[FieldDescriptor]:
        for candidate in self._fields:
            if candidate.has_role(role):
                return candidate
        return None

    def contains_field(self, role: str) -> bool:
        """True if a field resolves to ``role`` or is named after it."""
        if self.field_for_role(role) is not None:
            return True
        if self.mapping is None:
            return self.field(role) is not None
        return any(self.mapping.has_mapping(role, f.field_id) for f in self._fields)

    def is_of_type(self, resource_type: str) -> bool:
        if not self.resource_type or not resource_type:
            return False

        def canonical(tag: str) -> str:
            resolved = None
            if self.mapping is not None:
                resolved = self.mapping.resolve(tag, Section.RESOURCE_TYPE)
            return resolved or tag.strip().lower()

        return canonical(self.resource_type) == canonical(resource_type)

    def joinable_fields(self, other: "ResourceSchema") -> set[FieldDescriptor]:
        """Fields of this schema whose canonical role also appears in ``other``.

        Fields without a resolved role never take part. At most one field is
        returned per role.
        """
        if other is None:
            return set()
        other_roles = {f.role for f in other.fields if f.role is not None}
        by_role: dict[str, FieldDescriptor] = {}
        for candidate in self._fields:
            if candidate.role is not None and candidate.role in other_roles:
                by_role.setdefault(candidate.role, candidate)
        return set(by_role.values())

    def _is_valid(self) -> bool:
        return self.resource_type is not None

    def _is_same_type(self, other: "ResourceSchema") -> bool:
        return self.is_of_type(other.resource_type)

    def is_joinable(self, other: Optional["ResourceSchema"]) -> bool:
        """Two differently typed resources sharing at least one join field."""
        if other is None or not self._is_valid() or not other._is_valid():
            return False
        if self is other or self._is_same_type(other):
            return False
        return bool(self.joinable_fields(other))

    def is_extensible(self, other: Optional["ResourceSchema"]) -> bool:
        """Two resources of the same type with identical column headers."""
        if other is None or not self._is_valid() or not other._is_valid():
            return False
        if self is other or not self._is_same_type(other):
            return False
        return self.column_headers == other.column_headers

    def create_key(self, row: int) -> ResourceKey:
        return ResourceKey(self.id, row)

    def __len__(self) -> int:
        return len(self._fields)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ResourceSchema):
            return NotImplemented
        return (self.id, self.resource_type) == (other.id, other.resource_type)

    def __hash__(self) -> int:
        return hash((self.id, self.resource_type))

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "resource_type": self.resource_type,
            "header_rows": self.header_rows,
            "dataset_name": self.dataset_name,
            "fields": [f.to_dict() for f in self._fields],
        }

    def __repr__(self) -> str:
        return (
            f"ResourceSchema(id={self.id!r}, resource_type={self.resource_type!r}, "
            f"dataset={self.dataset_name!r}, fields={len(self._fields)})"
        )


class SchemaDescriptor:
    """All resource schemas of one dataset."""

    def __init__(
        self,
        dataset_id: Optional[str] = None,
        members: Iterable[ResourceSchema] = (),
        version: Optional[str] = None,
        resource_type: Optional[str] = None,
        description: Optional[str] = None,
        mapping: Optional[AliasMapping] = None,
    ):
        self.dataset_id = dataset_id
        self.members = tuple(members)
        self.version = version
        self.resource_type = resource_type
        self.description = description
        self.mapping = mapping

    @classmethod
    def from_json(
        cls,
        node: Mapping[str, Any] | str | None,
        dataset_id: Optional[str],
        mapping: AliasMapping,
        dataset_name: Optional[str] = None,
    ) -> "SchemaDescriptor":
        """Parse a schema descriptor document.

        Args:
            node: Decoded JSON object or its text
            dataset_id: Id of the owning dataset
            mapping: Alias mapping used for every lookup and role resolution
            dataset_name: Name recorded on each resource schema

        Returns:
            The descriptor. Missing or empty ``members`` gives no schemas.

        Raises:
            SchemaDescriptorError: If the document or a member is not an
                object, or ``members`` is not an array
        """
        if node is None:
            node = {}
        if isinstance(node, (str, bytes)):
            try:
                node = json.loads(node)
            except json.JSONDecodeError as e:
                raise SchemaDescriptorError(f"schema descriptor is not valid JSON: {e}") from e
        if not isinstance(node, Mapping):
            raise SchemaDescriptorError("schema descriptor must be a JSON object")

        def top(key: str) -> Any:
            return mapping.lookup(node, key, Section.SCHEMA_DESCRIPTOR)

        raw_members = top("members")
        if raw_members is None:
            raw_members = []
        if not isinstance(raw_members, list):
            raise SchemaDescriptorError("'members' must be an array")

        members: list[ResourceSchema] = []
        for position, member_node in enumerate(raw_members):
            members.extend(cls._parse_member(member_node, position, mapping, dataset_name))

        version = top("schema_descriptor_version")
        resource_type = top("resource_type")
        description = top("schema_descriptor_description")
        return cls(
            dataset_id=dataset_id,
            members=members,
            version=str(version) if version is not None else None,
            resource_type=str(resource_type) if resource_type is not None else None,
            description=str(description) if description is not None else None,
            mapping=mapping,
        )

    @staticmethod
    def _parse_member(
        member_node: Any,
        position: int,
        mapping: AliasMapping,
        dataset_name: Optional[str],
    ) -> list[ResourceSchema]:
        if not isinstance(member_node, Mapping):
            raise SchemaDescriptorError(f"member #{position} is not an object")

        raw_ids = mapping.lookup(member_node, "resource_name")
        if raw_ids is None:
            logger.warning("Skipping member #%d without resource id", position)
            return []
        resource_ids = [str(i) for i in raw_ids] if isinstance(raw_ids, list) else [str(raw_ids)]

        field_entries = mapping.lookup(member_node, "fields", Section.SCHEMA_DESCRIPTOR)
        if not isinstance(field_entries, list):
            logger.warning("Skipping member %s without fields array", resource_ids)
            return []

        header_rows = _to_int(mapping.lookup(member_node, "header_rows"))
        if header_rows is None or header_rows < 0:
            header_rows = DEFAULT_HEADER_ROWS
        resource_type = mapping.lookup(member_node, "resource_type")

        schemas = []
        for resource_id in resource_ids:
            fields = [
                FieldDescriptor.from_entry(entry, index, mapping, resource_id)
                for index, entry in enumerate(field_entries)
            ]
            schemas.append(ResourceSchema(
                id=resource_id,
                resource_type=str(resource_type) if resource_type is not None else None,
                fields=fields,
                header_rows=header_rows,
                dataset_name=dataset_name,
                mapping=mapping,
            ))
        return schemas

    @property
    def descriptor_version(self) -> DescriptorVersion:
        return DescriptorVersion.parse(self.version)

    def member(self, resource_id: str) -> Optional[ResourceSchema]:
        for candidate in self.members:
            if candidate.id == resource_id:
                return candidate
        return None

    def members_by_type(self) -> dict[str, list[ResourceSchema]]:
        """Members grouped by resource type; aliased type tags share a group."""
        grouped: dict[str, list[ResourceSchema]] = {}
        for candidate in self.members:
            for members in grouped.values():
                if members[0].is_of_type(candidate.resource_type):
                    members.append(candidate)
                    break
            else:
                grouped[candidate.resource_type] = [candidate]
        return grouped

    def relate_with_data_files(
        self,
        files: Mapping[str, DataFile] | Iterable[DataFile] | None,
    ) -> dict[ResourceSchema, DataFile]:
        """Pair each resource schema with the data file of the same resource id.

        Schemas without a file and files without a schema are left out.
        """
        if not files:
            return {}
        if isinstance(files, Mapping):
            by_id = dict(files)
        else:
            by_id = {f.resource_id: f for f in files if f is not None}

        relations = {}
        for candidate in self.members:
            data_file = by_id.get(candidate.id)
            if data_file is None:
                logger.info("Ignoring member '%s' as its data file is missing", candidate.id)
            else:
                relations[candidate] = data_file
        return relations

    def to_dict(self) -> dict[str, Any]:
        return {
            "dataset_id": self.dataset_id,
            "version": self.version,
            "resource_type": self.resource_type,
            "description": self.description,
            "members": [m.to_dict() for m in self.members],
        }

    def __repr__(self) -> str:
        return (
            f"SchemaDescriptor(dataset_id={self.dataset_id!r}, version={self.version!r}, "
            f"members={len(self.members)})"
        )
