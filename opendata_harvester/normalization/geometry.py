"""Geometry construction from WKT, GeoJSON or coordinate columns."""

import json
import re
from typing import Any, Optional

import shapely
from shapely import wkt
from shapely.errors import ShapelyError
from shapely.geometry import Point, shape
from shapely.geometry.base import BaseGeometry

DEFAULT_COORDINATE_SRID = 4326

# "4326", "EPSG:4326", "urn:ogc:def:crs:EPSG::4326", ".../EPSG/0/4326"
SRID_PATTERN = re.compile(r"(\d+)\s*$")


class GeometryParseError(ValueError):
    """Geometry text or CRS identifier could not be parsed."""


def parse_srid(crs: Any) -> int:
    """Extract the numeric SRID from a CRS identifier.

    Raises:
        GeometryParseError: If no trailing number is present
    """
    if isinstance(crs, int):
        return crs
    match = SRID_PATTERN.search(str(crs).strip())
    if match is None:
        raise GeometryParseError(f"unparsable CRS identifier: {crs!r}")
    return int(match.group(1))


class GeometryBuilder:
    """Staged geometry construction.

    Set one spatial source (the last one set wins), optionally a CRS, then
    call ``build()``:

        GeometryBuilder().with_wkt("POINT(52.52 13.41 30)").with_crs("999").build()
    """

    def __init__(self):
        self._wkt: Optional[str] = None
        self._geojson: Optional[str] = None
        self._coordinates: Optional[tuple] = None
        self._crs: Optional[str] = None

    def _reset_source(self) -> None:
        self._wkt = None
        self._geojson = None
        self._coordinates = None

    def with_wkt(self, text: Optional[str]) -> "GeometryBuilder":
        self._reset_source()
        self._wkt = text
        return self

    def with_geojson(self, text: Optional[str]) -> "GeometryBuilder":
        self._reset_source()
        self._geojson = text
        return self

    def with_coordinates(self, lon: Any, lat: Any, alt: Any = None) -> "GeometryBuilder":
        """Use a point built from longitude, latitude and optional altitude.

        Coordinate points default to EPSG:4326 when no CRS is set.
        """
        self._reset_source()
        self._coordinates = (lon, lat, alt)
        return self

    def with_crs(self, crs: Optional[str]) -> "GeometryBuilder":
        self._crs = crs if crs is not None and str(crs).strip() else None
        return self

    @property
    def has_source(self) -> bool:
        return any(s is not None for s in (self._wkt, self._geojson, self._coordinates))

    def build(self) -> Optional[BaseGeometry]:
        """Create the geometry.

        Returns:
            The geometry with its SRID set, or None if no source was set

        Raises:
            GeometryParseError: If the source text or the CRS is malformed
        """
        if not self.has_source:
            return None

        srid = parse_srid(self._crs) if self._crs is not None else None
        if self._wkt is not None:
            geometry = self._from_wkt(self._wkt)
        elif self._geojson is not None:
            geometry = self._from_geojson(self._geojson)
        else:
            geometry = self._from_coordinates(*self._coordinates)
            if srid is None:
                srid = DEFAULT_COORDINATE_SRID

        if srid is not None:
            geometry = shapely.set_srid(geometry, srid)
        return geometry

    @staticmethod
    def _from_wkt(text: str) -> BaseGeometry:
        try:
            return wkt.loads(str(text))
        except (ShapelyError, ValueError, TypeError) as e:
            raise GeometryParseError(f"malformed WKT {text!r}: {e}") from e

    @staticmethod
    def _from_geojson(text: str) -> BaseGeometry:
        try:
            data = json.loads(str(text).replace("'", '"'))
            return shape(data)
        except (json.JSONDecodeError, ShapelyError, ValueError, TypeError, KeyError, AttributeError) as e:
            raise GeometryParseError(f"malformed GeoJSON {text!r}: {e}") from e

    @staticmethod
    def _from_coordinates(lon: Any, lat: Any, alt: Any) -> BaseGeometry:
        try:
            coords = [float(lon), float(lat)]
            if alt is not None and str(alt).strip():
                coords.append(float(alt))
        except (TypeError, ValueError) as e:
            raise GeometryParseError(f"invalid coordinates ({lon!r}, {lat!r}, {alt!r})") from e
        return Point(coords)


def srid_of(geometry: Optional[BaseGeometry]) -> Optional[int]:
    """SRID of a built geometry; None for absent geometries or SRID 0."""
    if geometry is None:
        return None
    srid = int(shapely.get_srid(geometry))
    return srid or None
