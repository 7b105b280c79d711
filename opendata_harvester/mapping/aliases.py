"""Alias mapping from canonical keys to accepted raw names.

Portal resources name the same concept differently ("Geobreite", "lat",
"LATITUDE"). An AliasMapping normalizes those raw names onto canonical keys,
split into sections:

- field: canonical column roles (latitude, station_id, ...)
- property: JSON property names inside schema descriptors
- datatype: field type tags (Float -> double, ...)
- resource_type: member resource type tags
- schema_descriptor: top-level descriptor keys and the dataset extra key

The built-in default is always loaded first; named configurations are layered
on top and can only add keys or aliases.
"""

import json
import logging
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Iterable, Mapping, Optional

logger = logging.getLogger(__name__)

DEFAULT_MAPPING_FILE = Path(__file__).with_name("default_mapping.json")


class Section(str, Enum):
    """Namespaces of canonical keys."""
    FIELD = "field"
    PROPERTY = "property"
    DATATYPE = "datatype"
    RESOURCE_TYPE = "resource_type"
    SCHEMA_DESCRIPTOR = "schema_descriptor"


def _lower(value: str) -> str:
    return value.strip().lower()


def _parse_entries(data: Mapping[str, Any]) -> dict[Section, dict[str, frozenset[str]]]:
    """Split a raw configuration object into per-section alias sets.

    List values form the flat shape and land in the field section. Object
    values whose key names a section are read as that section's entries.

    Raises:
        ValueError: If an entry is neither a list of strings nor a section
    """
    entries: dict[Section, dict[str, frozenset[str]]] = {}
    section_names = {s.value: s for s in Section}

    def add(section: Section, key: str, aliases: Any) -> None:
        if isinstance(aliases, str) or not isinstance(aliases, Iterable):
            raise ValueError(f"aliases of '{key}' must be a list, got {type(aliases).__name__}")
        lowered = frozenset(_lower(str(a)) for a in aliases)
        target = entries.setdefault(section, {})
        target[_lower(key)] = target.get(_lower(key), frozenset()) | lowered

    for key, value in data.items():
        if isinstance(value, Mapping):
            section = section_names.get(_lower(key))
            if section is None:
                raise ValueError(f"unknown mapping section '{key}'")
            for canonical, aliases in value.items():
                add(section, canonical, aliases)
        else:
            add(Section.FIELD, key, value)
    return entries


class AliasMapping:
    """Immutable canonical key -> alias set lookup.

    A key is always its own alias, so ``mappings_for`` never returns an empty
    set. Canonical keys keep their configuration order, which decides role
    resolution when a raw name matches more than one key.
    """

    def __init__(
        self,
        entries: Optional[Mapping[Section, Mapping[str, Iterable[str]]]] = None,
        first_match_wins: bool = True,
    ):
        sections: dict[Section, Mapping[str, frozenset[str]]] = {}
        for section in Section:
            raw = (entries or {}).get(section, {})
            sections[section] = MappingProxyType({
                _lower(key): frozenset(_lower(a) for a in aliases) | {_lower(key)}
                for key, aliases in raw.items()
            })
        self._sections = MappingProxyType(sections)
        self._first_match_wins = first_match_wins

    @property
    def first_match_wins(self) -> bool:
        return self._first_match_wins

    @classmethod
    def from_dict(
        cls,
        data: Mapping[str, Any],
        base: Optional["AliasMapping"] = None,
        first_match_wins: Optional[bool] = None,
    ) -> "AliasMapping":
        """Build a mapping from a configuration object, layered onto ``base``.

        ``first_match_wins`` defaults to the base mapping's policy.
        """
        if first_match_wins is None:
            first_match_wins = base.first_match_wins if base is not None else True
        mapping = cls(_parse_entries(data), first_match_wins=first_match_wins)
        if base is not None:
            mapping = base.merged_with(mapping, first_match_wins=first_match_wins)
        return mapping

    def merged_with(self, other: "AliasMapping", first_match_wins: Optional[bool] = None) -> "AliasMapping":
        """Return a new mapping with ``other``'s keys and aliases added.

        Keys of this mapping come first; aliases are united, never removed.
        The ambiguity policy is this mapping's unless ``first_match_wins`` is given.
        """
        merged: dict[Section, dict[str, frozenset[str]]] = {}
        for section in Section:
            combined = dict(self._sections[section])
            for key, aliases in other._sections[section].items():
                combined[key] = combined.get(key, frozenset()) | aliases
            merged[section] = combined
        if first_match_wins is None:
            first_match_wins = self.first_match_wins
        return AliasMapping(merged, first_match_wins=first_match_wins)

    def canonical_keys(self, section: Section = Section.FIELD) -> tuple[str, ...]:
        return tuple(self._sections[section])

    def has_explicit_mappings(self, key: str, section: Section = Section.FIELD) -> bool:
        return key is not None and _lower(key) in self._sections[section]

    def mappings_for(self, key: str, section: Section = Section.FIELD) -> frozenset[str]:
        """Return all accepted names of ``key``, including the key itself."""
        lowered = _lower(key)
        return self._sections[section].get(lowered, frozenset({lowered}))

    def has_mapping(self, key: str, candidate: Optional[str], section: Section = Section.FIELD) -> bool:
        """Check whether ``candidate`` is an accepted name for ``key``.

        Matching ignores case and surrounding whitespace.
        """
        if key is None or candidate is None:
            return False
        return _lower(candidate) in self.mappings_for(key, section)

    def resolve(self, candidate: Optional[str], section: Section = Section.FIELD) -> Optional[str]:
        """Find the canonical key accepting ``candidate``.

        Args:
            candidate: Raw name as found in a resource
            section: Section to search

        Returns:
            The first matching canonical key in configuration order. When
            ``first_match_wins`` is off and several keys match, None.
        """
        if not candidate:
            return None
        lowered = _lower(candidate)
        matches = [
            key for key, aliases in self._sections[section].items()
            if lowered in aliases
        ]
        if not matches:
            return None
        if len(matches) > 1:
            if not self.first_match_wins:
                logger.warning(
                    "'%s' matches several %s keys %s, leaving it unresolved",
                    candidate, section.value, matches,
                )
                return None
            logger.debug("'%s' matches %s, using '%s'", candidate, matches, matches[0])
        return matches[0]

    def lookup(self, node: Mapping[str, Any], key: str, section: Section = Section.PROPERTY) -> Any:
        """Read the value stored under any accepted name of ``key`` in ``node``.

        The canonical key is tried first, then its aliases in sorted order.
        Property names are compared case-insensitively.
        """
        if not isinstance(node, Mapping):
            return None
        lowered_node = {_lower(str(k)): v for k, v in node.items()}
        lowered_key = _lower(key)
        candidates = [lowered_key] + sorted(self.mappings_for(key, section) - {lowered_key})
        for name in candidates:
            if name in lowered_node:
                return lowered_node[name]
        return None

    def to_dict(self) -> dict[str, dict[str, list[str]]]:
        """Convert to the sectioned configuration shape."""
        return {
            section.value: {key: sorted(aliases) for key, aliases in entries.items()}
            for section, entries in self._sections.items()
            if entries
        }

    def __repr__(self) -> str:
        sizes = ", ".join(f"{s.value}={len(e)}" for s, e in self._sections.items())
        return f"AliasMapping({sizes})"


def _read_config(path: Path) -> Optional[AliasMapping]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except FileNotFoundError:
        logger.warning("Missing alias mapping file '%s', using defaults only", path)
        return None
    except (OSError, json.JSONDecodeError) as e:
        logger.error("Could not read alias mapping '%s': %s. Using defaults only", path, e)
        return None
    if not isinstance(data, Mapping):
        logger.error("Alias mapping '%s' is not a JSON object. Using defaults only", path)
        return None
    try:
        return AliasMapping.from_dict(data)
    except ValueError as e:
        logger.error("Malformed alias mapping '%s': %s. Using defaults only", path, e)
        return None


def load_default_mapping() -> AliasMapping:
    """Load the built-in default configuration."""
    with open(DEFAULT_MAPPING_FILE, "r", encoding="utf-8") as f:
        return AliasMapping.from_dict(json.load(f))


def resolve_config_path(config_name: str | Path, config_dir: Optional[str | Path] = None) -> Path:
    """Locate a named configuration.

    Absolute paths are used as given; other names are looked up in
    ``config_dir`` and then next to the default configuration.
    """
    path = Path(config_name)
    if path.is_absolute():
        return path
    if config_dir is not None:
        return Path(config_dir) / path
    return DEFAULT_MAPPING_FILE.parent / path


def load_mapping(
    config_name: Optional[str | Path] = None,
    config_dir: Optional[str | Path] = None,
    base: Optional[AliasMapping] = None,
) -> AliasMapping:
    """Load a named alias configuration merged onto the default one.

    Args:
        config_name: File name or path of the configuration. None loads the
            default only.
        config_dir: Directory to resolve relative names against
        base: Already loaded default to layer onto instead of re-reading it

    Returns:
        The merged mapping. A missing or malformed file yields the default.
    """
    default = base if base is not None else load_default_mapping()
    if not config_name:
        return default
    path = resolve_config_path(config_name, config_dir)
    override = _read_config(path)
    if override is None:
        return default
    logger.debug("Loaded alias mapping from '%s'", path)
    return default.merged_with(override)
