"""Typed views over raw table rows.

Raw cells stay strings inside a DataTable. Reading a row through
NormalizedRow converts each cell according to its field type: numbers,
booleans, UTC instants and geometries. Every FieldType has exactly one
converter.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Iterator, Optional

import pandas as pd

from ..ingestion.schema import FieldDescriptor, FieldType, ResourceKey
from .geometry import GeometryBuilder
from .time import TimeNormalizer

logger = logging.getLogger(__name__)

# Canonical roles read by the row helpers
ROLE_OBSERVATION_TIME = "observation_time"
ROLE_VALID_TIME_START = "valid_time_start"
ROLE_VALID_TIME_END = "valid_time_end"
ROLE_LOCATION = "location"
ROLE_LONGITUDE = "longitude"
ROLE_LATITUDE = "latitude"
ROLE_ALTITUDE = "altitude"
ROLE_CRS = "crs"

TRUE_VALUES = {"true", "1", "yes", "y", "t"}
FALSE_VALUES = {"false", "0", "no", "n", "f"}

DEFAULT_TIME_NORMALIZER = TimeNormalizer()


def _to_string(field: FieldDescriptor, text: str, times: TimeNormalizer) -> Optional[str]:
    return text


def _to_integer(field: FieldDescriptor, text: str, times: TimeNormalizer) -> Optional[int]:
    try:
        return int(text)
    except ValueError:
        # "12.0" style integers
        try:
            number = float(text)
        except ValueError:
            number = None
        if number is not None and number.is_integer():
            return int(number)
    logger.warning("Could not parse integer value '%s' of field '%s'", text, field.field_id)
    return None


def _to_double(field: FieldDescriptor, text: str, times: TimeNormalizer) -> Optional[float]:
    try:
        return float(text)
    except ValueError:
        logger.warning("Could not parse double value '%s' of field '%s'", text, field.field_id)
        return None


def _to_boolean(field: FieldDescriptor, text: str, times: TimeNormalizer) -> Optional[bool]:
    lowered = text.lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    logger.warning("Could not parse boolean value '%s' of field '%s'", text, field.field_id)
    return None


def _to_date(field: FieldDescriptor, text: str, times: TimeNormalizer) -> Optional[datetime]:
    return times.parse(text, field.date_format)


def _to_geometry(field: FieldDescriptor, text: str, times: TimeNormalizer):
    builder = GeometryBuilder()
    if text.startswith("{"):
        builder.with_geojson(text)
    else:
        builder.with_wkt(text)
    return builder.with_crs(field.crs).build()


CONVERTERS: dict[FieldType, Callable[[FieldDescriptor, str, TimeNormalizer], Any]] = {
    FieldType.STRING: _to_string,
    FieldType.INTEGER: _to_integer,
    FieldType.DOUBLE: _to_double,
    FieldType.BOOLEAN: _to_boolean,
    FieldType.DATE: _to_date,
    FieldType.GEOMETRY: _to_geometry,
}


def normalize_value(
    field: FieldDescriptor,
    raw: Optional[str],
    times: Optional[TimeNormalizer] = None,
) -> Any:
    """Convert one raw cell according to its field.

    Missing cells, blank non-text cells and the field's no-data marker give
    None. Malformed geometry text raises GeometryParseError; every other
    unparsable value gives None.
    """
    if raw is None:
        return None
    text = str(raw).strip()
    if field.no_data is not None and text == field.no_data.strip():
        return None
    if not text and field.field_type is not FieldType.STRING:
        return None
    return CONVERTERS[field.field_type](field, text, times or DEFAULT_TIME_NORMALIZER)


@dataclass(frozen=True)
class CellValue:
    """One normalised cell as handed to downstream adapters."""

    field: FieldDescriptor
    role: Optional[str]
    field_type: FieldType
    raw: Optional[str]
    value: Any


class NormalizedRow:
    """Typed, role-addressable view of one table row.

    Values are converted on first access and cached.
    """

    def __init__(
        self,
        key: ResourceKey,
        cells: dict[FieldDescriptor, str],
        times: Optional[TimeNormalizer] = None,
    ):
        self.key = key
        self._raw = cells
        self._times = times or DEFAULT_TIME_NORMALIZER
        self._values: dict[FieldDescriptor, Any] = {}

    @property
    def fields(self) -> list[FieldDescriptor]:
        return sorted(self._raw, key=lambda f: f.index)

    def raw(self, field: FieldDescriptor) -> Optional[str]:
        return self._raw.get(field)

    def value(self, field: FieldDescriptor) -> Any:
        if field not in self._values:
            self._values[field] = normalize_value(field, self._raw.get(field), self._times)
        return self._values[field]

    def cell(self, field: FieldDescriptor) -> CellValue:
        return CellValue(
            field=field,
            role=field.role,
            field_type=field.field_type,
            raw=self._raw.get(field),
            value=self.value(field),
        )

    def cells(self) -> list[CellValue]:
        return [self.cell(f) for f in self.fields]

    def __iter__(self) -> Iterator[CellValue]:
        return iter(self.cells())

    def field_for_role(self, role: str) -> Optional[FieldDescriptor]:
        for candidate in self.fields:
            if candidate.has_role(role):
                return candidate
        return None

    def value_for_role(self, role: str) -> Any:
        field = self.field_for_role(role)
        return self.value(field) if field is not None else None

    def _time_for_role(self, role: str) -> Optional[datetime]:
        field = self.field_for_role(role)
        if field is None:
            return None
        value = self.value(field)
        if isinstance(value, datetime):
            return value
        # time roles declared with a non-date type
        return self._times.parse(self._raw.get(field), field.date_format)

    def observation_time(self) -> Optional[datetime]:
        return self._time_for_role(ROLE_OBSERVATION_TIME)

    def valid_time(self) -> tuple[Optional[datetime], Optional[datetime]]:
        """Validity interval; either end may be unknown."""
        return self._time_for_role(ROLE_VALID_TIME_START), self._time_for_role(ROLE_VALID_TIME_END)

    def geometry(self):
        """Geometry of the row.

        A location field is used when present, else longitude/latitude and
        optional altitude fields. The CRS comes from a crs column, else from
        the geometry field's declared crs.

        Raises:
            GeometryParseError: If the location text or coordinates are malformed
        """
        crs_field = self.field_for_role(ROLE_CRS)
        crs = self._raw.get(crs_field) if crs_field is not None else None
        if crs is not None and not crs.strip():
            crs = None

        location = self.field_for_role(ROLE_LOCATION)
        if location is not None:
            text = (self._raw.get(location) or "").strip()
            if not text or text == location.no_data:
                return None
            builder = GeometryBuilder()
            if text.startswith("{"):
                builder.with_geojson(text)
            else:
                builder.with_wkt(text)
            return builder.with_crs(crs or location.crs).build()

        lon_field = self.field_for_role(ROLE_LONGITUDE)
        lat_field = self.field_for_role(ROLE_LATITUDE)
        if lon_field is None or lat_field is None:
            return None
        lon, lat = self._raw.get(lon_field), self._raw.get(lat_field)
        if not (lon or "").strip() or not (lat or "").strip():
            return None
        alt_field = self.field_for_role(ROLE_ALTITUDE)
        alt = self._raw.get(alt_field) if alt_field is not None else None
        return (
            GeometryBuilder()
            .with_coordinates(lon, lat, alt)
            .with_crs(crs or lon_field.crs)
            .build()
        )

    def to_dict(self) -> dict[str, Any]:
        return {f.field_id: self.value(f) for f in self.fields}

    def __repr__(self) -> str:
        return f"NormalizedRow(key={self.key.key_id!r}, cells={len(self._raw)})"


# pandas dtypes of normalised columns
FRAME_DTYPES = {
    FieldType.STRING: "object",
    FieldType.INTEGER: "Int64",
    FieldType.DOUBLE: "float64",
    FieldType.BOOLEAN: "boolean",
    FieldType.DATE: None,
    FieldType.GEOMETRY: "object",
}


def normalized_frame(table, times: Optional[TimeNormalizer] = None) -> pd.DataFrame:
    """Build a typed DataFrame of a loaded table.

    Args:
        table: Loaded DataTable
        times: Time normalizer to use for date fields

    Returns:
        DataFrame indexed by row key id with one column per field id;
        date columns hold UTC timestamps.
    """
    fields = table.fields
    keys = table.keys()
    data = {}
    for field in fields:
        values = [normalize_value(field, table.get(key, field), times) for key in keys]
        if field.field_type is FieldType.DATE:
            data[field.field_id] = pd.to_datetime(pd.Series(values, dtype="object"), utc=True)
        else:
            data[field.field_id] = pd.Series(values, dtype=FRAME_DTYPES[field.field_type])
    frame = pd.DataFrame(data, columns=[f.field_id for f in fields])
    frame.index = pd.Index([k.key_id for k in keys], name="key")
    return frame
