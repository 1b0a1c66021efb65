"""Path prefix templates.

A template is a literal blob name prefix that may contain two placeholders:

- ``$RANGE_<low>_TO_<high>$`` expands to one prefix per integer in
  ``[low, high]``, e.g. ``logs/$RANGE_1_TO_3$/`` -> ``logs/1/``,
  ``logs/2/``, ``logs/3/``.
- ``$DATE$`` is replaced with the current UTC date as ``YYMMDD`` every time
  the template is expanded, so day rollovers are picked up by the next poll.

Templates are parsed once at start-up; malformed placeholders are a
configuration error there rather than at scan time.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from blobtail.lib.errors import ConfigurationError

__all__ = [
    "DATE_FORMAT",
    "DATE_PLACEHOLDER",
    "PrefixTemplate",
    "expand_prefixes",
    "parse_templates",
]

DATE_PLACEHOLDER = "$DATE$"
DATE_FORMAT = "%y%m%d"

RANGE_MARKER = "$RANGE"
RANGE_PATTERN = re.compile(r"\$RANGE_(\d+)_TO_(\d+)\$")


@dataclass(frozen=True)
class PrefixTemplate:
    """A validated prefix template."""

    text: str
    range_low: Optional[int] = None
    range_high: Optional[int] = None

    @property
    def has_range(self) -> bool:
        return self.range_low is not None

    @property
    def has_date(self) -> bool:
        return DATE_PLACEHOLDER in self.text

    @classmethod
    def parse(cls, text: str) -> "PrefixTemplate":
        """Validate a template.

        Raises:
            ConfigurationError: If a range placeholder is malformed, has
                ``low > high``, or appears more than once
        """
        if RANGE_MARKER not in text:
            return cls(text=text)

        matches = list(RANGE_PATTERN.finditer(text))
        if text.count(RANGE_MARKER) != len(matches) or not matches:
            raise ConfigurationError(
                "Malformed range placeholder in path prefix",
                field="path_prefix",
                value=text,
                suggestion="Use the form $RANGE_<low>_TO_<high>$, e.g. logs/$RANGE_0_TO_23$/",
            )
        if len(matches) > 1:
            raise ConfigurationError(
                "Only one range placeholder is allowed per path prefix",
                field="path_prefix",
                value=text,
                suggestion="Split the prefix into several path_prefix entries",
            )

        low, high = int(matches[0].group(1)), int(matches[0].group(2))
        if low > high:
            raise ConfigurationError(
                f"Range placeholder bounds are reversed ({low} > {high})",
                field="path_prefix",
                value=text,
            )
        return cls(text=text, range_low=low, range_high=high)

    def expand(self, now: datetime) -> List[str]:
        """Expand into literal prefixes for the cycle running at ``now``."""
        stamp = now.astimezone(timezone.utc).strftime(DATE_FORMAT)
        dated = self.text.replace(DATE_PLACEHOLDER, stamp)

        if not self.has_range:
            return [dated]

        assert self.range_low is not None and self.range_high is not None
        return [
            RANGE_PATTERN.sub(str(n), dated)
            for n in range(self.range_low, self.range_high + 1)
        ]


def parse_templates(texts: Sequence[str]) -> List[PrefixTemplate]:
    """Parse a configured prefix list; an empty list means scan everything."""
    return [PrefixTemplate.parse(text) for text in (texts or [""])]


def expand_prefixes(templates: Sequence[PrefixTemplate], now: datetime) -> List[str]:
    """Expand templates in order into the literal prefixes for one cycle.

    Duplicates are kept; overlapping prefixes are merged by the enumerator.

    Example:
        >>> templates = parse_templates(["logs/$RANGE_1_TO_3$/$DATE$"])
        >>> expand_prefixes(templates, datetime(2024, 5, 1, tzinfo=timezone.utc))
        ['logs/1/240501', 'logs/2/240501', 'logs/3/240501']
    """
    prefixes: List[str] = []
    for template in templates:
        prefixes.extend(template.expand(now))
    return prefixes
