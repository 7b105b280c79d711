"""Date/time normalization to UTC instants.

Schema descriptors declare date formats with Java-style pattern letters
("YYYY-MM-DD'T'hh:mm:ss", "yyyyMMddHH"). Patterns are translated to strptime
directives once and cached. Values without an offset are read as UTC, never
as the host's local time.
"""

import logging
import re
from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

import pandas as pd

logger = logging.getLogger(__name__)

DEFAULT_PATTERN = "YYYY-MM-dd'T'HH:mm:ssZ"

# Pattern letters carrying an offset or zone
ZONE_LETTERS = frozenset("ZXxz")

# Pattern letter -> directive; callables get the run length
PATTERN_DIRECTIVES = {
    "y": lambda n: "%y" if n == 2 else "%Y",
    "Y": lambda n: "%y" if n == 2 else "%Y",
    "u": lambda n: "%y" if n == 2 else "%Y",
    "M": lambda n: "%m" if n <= 2 else ("%b" if n == 3 else "%B"),
    "d": lambda n: "%d",
    "D": lambda n: "%d",
    "H": lambda n: "%H",
    "h": lambda n: "%H",
    "k": lambda n: "%H",
    "K": lambda n: "%H",
    "m": lambda n: "%M",
    "s": lambda n: "%S",
    "S": lambda n: "%f",
    "a": lambda n: "%p",
    "E": lambda n: "%A" if n >= 4 else "%a",
    "Z": lambda n: "%z",
    "X": lambda n: "%z",
    "x": lambda n: "%z",
    "z": lambda n: "%Z",
}

OFFSET_SUFFIX = re.compile(r"(?:[zZ]|[+-]\d{2}:?\d{2})$")
NUMERIC = re.compile(r"^-?\d+$")


@lru_cache(maxsize=256)
def translate_pattern(pattern: str) -> tuple[str, bool]:
    """Translate a Java-style date pattern into a strptime format.

    Args:
        pattern: Pattern such as "YYYY-MM-DD'T'hh:mm:ss"

    Returns:
        Tuple of (strptime format, whether the pattern carries a zone)

    Raises:
        ValueError: If the pattern uses an unsupported letter or an
            unterminated quote
    """
    parts = []
    has_zone = False
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if char == "'":
            end = pattern.find("'", i + 1)
            if end == -1:
                raise ValueError(f"unterminated quote in date pattern '{pattern}'")
            literal = pattern[i + 1:end] if end > i + 1 else "'"
            parts.append(literal.replace("%", "%%"))
            i = end + 1
            continue
        if char.isalpha():
            run = 1
            while i + run < len(pattern) and pattern[i + run] == char:
                run += 1
            directive = PATTERN_DIRECTIVES.get(char)
            if directive is None:
                raise ValueError(f"unsupported letter '{char}' in date pattern '{pattern}'")
            parts.append(directive(run))
            has_zone = has_zone or char in ZONE_LETTERS
            i += run
            continue
        parts.append("%%" if char == "%" else char)
        i += 1
    return "".join(parts), has_zone


def has_offset(value: str) -> bool:
    return OFFSET_SUFFIX.search(value) is not None


def to_instant(parsed) -> Optional[datetime]:
    """Convert a pandas parse result to an aware UTC datetime, None for NaT."""
    if pd.isna(parsed):
        return None
    return parsed.to_pydatetime().astimezone(timezone.utc)


def from_epoch_millis(value: str | int) -> Optional[datetime]:
    return to_instant(pd.to_datetime(int(value), unit="ms", utc=True, errors="coerce"))


def format_instant(instant: Optional[datetime]) -> Optional[str]:
    """ISO-8601 text of a UTC instant with a trailing ``Z``."""
    if instant is None:
        return None
    text = instant.astimezone(timezone.utc).isoformat()
    return text.replace("+00:00", "Z")


class TimeNormalizer:
    """Parse raw date/time text into aware UTC datetimes."""

    def __init__(self, default_pattern: str = DEFAULT_PATTERN):
        self.default_pattern = default_pattern

    def parse(self, value: Optional[str], pattern: Optional[str] = None) -> Optional[datetime]:
        """Normalize ``value`` to a UTC instant.

        The declared pattern is tried first. Values matching a zone-less
        pattern are read as UTC; a trailing offset such as ``+01:00`` or ``Z``
        is still honoured. Purely numeric values that do not match the pattern
        are read as epoch milliseconds.

        Args:
            value: Raw cell text
            pattern: Declared date format, or None for the default

        Returns:
            The instant in UTC, or None if the value cannot be parsed
        """
        if value is None:
            return None
        text = str(value).strip()
        if not text:
            return None

        instant = self._parse_with_pattern(text, pattern or self.default_pattern)
        if instant is not None:
            return instant

        if NUMERIC.match(text):
            try:
                return from_epoch_millis(text)
            except (OverflowError, ValueError):
                logger.debug("Epoch value '%s' out of range", text)
                return None

        if not pattern:
            instant = self._parse_iso(text)
            if instant is not None:
                return instant

        logger.debug("Could not parse time value '%s' with pattern '%s'", text, pattern)
        return None

    def _parse_with_pattern(self, text: str, pattern: str) -> Optional[datetime]:
        try:
            directives, has_zone = translate_pattern(pattern)
        except ValueError as e:
            logger.debug("Unusable date pattern: %s", e)
            return None
        if text.endswith("z"):
            text = text[:-1] + "Z"
        if has_zone:
            if not has_offset(text):
                text += "Z"
            return self._parse_format(text, directives)

        instant = self._parse_format(text, directives)
        if instant is None and has_offset(text):
            instant = self._parse_format(text, directives + "%z")
        return instant

    @staticmethod
    def _parse_format(text: str, directives: str) -> Optional[datetime]:
        try:
            return to_instant(pd.to_datetime(text, format=directives, utc=True, errors="coerce"))
        except ValueError:
            return None

    @staticmethod
    def _parse_iso(text: str) -> Optional[datetime]:
        try:
            return to_instant(pd.to_datetime(text, format="ISO8601", utc=True, errors="coerce"))
        except ValueError:
            return None


if __name__ == "__main__":
    # Example usage
    normalizer = TimeNormalizer()
    samples = [
        ("2015-03-29T02:00:00+01:00", "YYYY-MM-DD'T'hh:mm:ss"),
        ("2015-03-29T02:00:00", "YYYY-MM-DD'T'hh:mm:ss"),
        ("2015032902", "YYYYMMDDhh"),
        ("1427594400000", None),
    ]
    for raw, pattern in samples:
        print(f"{raw!r:32} {pattern!r:28} -> {format_instant(normalizer.parse(raw, pattern))}")
