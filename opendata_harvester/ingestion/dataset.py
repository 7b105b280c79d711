"""Dataset records and resource files handed over by the portal client.

The portal client fetches metadata and bytes; these classes are the shape in
which the engine receives them.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping, Optional

DEFAULT_ENCODING = "utf-8"


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


@dataclass
class ResourceDescriptor:
    """One downloadable resource listed in a dataset record."""

    id: str
    name: str = ""
    format: str = "csv"
    url: Optional[str] = None
    last_modified: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ResourceDescriptor":
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name") or ""),
            format=str(data.get("format") or "csv"),
            url=data.get("url"),
            last_modified=_parse_timestamp(data.get("last_modified")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "format": self.format,
            "url": self.url,
            "last_modified": self.last_modified.isoformat() if self.last_modified else None,
        }


@dataclass
class DatasetRecord:
    """Metadata of one portal dataset.

    ``extras`` are the free key/value pairs of the dataset; one of them
    carries the schema descriptor JSON.
    """

    id: str
    name: str = ""
    extras: list[tuple[str, Any]] = field(default_factory=list)
    resources: list[ResourceDescriptor] = field(default_factory=list)
    metadata_modified: Optional[datetime] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "DatasetRecord":
        """Parse a portal dataset document.

        ``extras`` may be a list of ``{"key": ..., "value": ...}`` objects or
        a plain mapping.
        """
        raw_extras = data.get("extras") or []
        if isinstance(raw_extras, Mapping):
            extras = [(str(k), v) for k, v in raw_extras.items()]
        else:
            extras = [
                (str(pair.get("key", "")), pair.get("value"))
                for pair in raw_extras
                if isinstance(pair, Mapping)
            ]
        resources = [
            ResourceDescriptor.from_dict(r)
            for r in data.get("resources") or []
            if isinstance(r, Mapping)
        ]
        return cls(
            id=str(data.get("id", "")),
            name=str(data.get("name") or ""),
            extras=extras,
            resources=resources,
            metadata_modified=_parse_timestamp(data.get("metadata_modified")),
        )

    def get_resource(self, resource_id: str) -> Optional[ResourceDescriptor]:
        for resource in self.resources:
            if resource.id == resource_id:
                return resource
        return None


@dataclass
class DataFile:
    """A fetched resource file waiting to be loaded into a table."""

    resource_id: str
    path: Optional[Path] = None
    format: str = "csv"
    encoding: str = DEFAULT_ENCODING
    name: str = ""
    last_modified: Optional[datetime] = None

    def __post_init__(self):
        if self.path is not None:
            self.path = Path(self.path)
        self.encoding = self.encoding or DEFAULT_ENCODING

    @classmethod
    def for_resource(
        cls,
        resource: ResourceDescriptor,
        path: Path | str,
        encoding: Optional[str] = None,
    ) -> "DataFile":
        return cls(
            resource_id=resource.id,
            path=Path(path),
            format=resource.format,
            encoding=encoding or DEFAULT_ENCODING,
            name=resource.name,
            last_modified=resource.last_modified,
        )

    @property
    def source_name(self) -> str:
        return str(self.path) if self.path is not None else f"<{self.resource_id}>"

    def is_newer_than(self, other: Optional["DataFile"]) -> bool:
        """True if both files describe the same resource and this one is newer."""
        if other is None or self.resource_id != other.resource_id:
            return False
        if self.last_modified is None or other.last_modified is None:
            return False
        return self.last_modified > other.last_modified

    def to_dict(self) -> dict[str, Any]:
        return {
            "resource_id": self.resource_id,
            "path": str(self.path) if self.path else None,
            "format": self.format,
            "encoding": self.encoding,
            "name": self.name,
        }
