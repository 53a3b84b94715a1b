"""Size token lookup."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping

import structlog

from ..common.errors import SizeError


LOGGER = structlog.get_logger("pixcache.resolver.sizes")


@dataclass(frozen=True)
class SizeSpec:
    width: int
    height: int


def _is_decimal(part: str) -> bool:
    # int() alone would also accept whitespace, underscores and non-ASCII digits.
    digits = part[1:] if part[:1] in ("+", "-") else part
    return digits.isascii() and digits.isdigit()


def parse_dimensions(value: str) -> SizeSpec:
    """Parse a ``"<width>x<height>"`` string into a :class:`SizeSpec`."""

    parts = value.split("x")
    if len(parts) != 2 or not all(_is_decimal(part) for part in parts):
        raise SizeError(f"Invalid size specification {value!r}", reason=SizeError.MALFORMED_SPEC)
    width, height = (int(part) for part in parts)
    if width <= 0 or height <= 0:
        raise SizeError(f"Invalid size specification {value!r}", reason=SizeError.MALFORMED_SPEC)
    return SizeSpec(width=width, height=height)


def resolve_size(token: str, table: Mapping[str, str]) -> SizeSpec:
    if token not in table:
        raise SizeError(f"Unknown size {token!r}", reason=SizeError.UNKNOWN_TOKEN)
    return parse_dimensions(table[token])


class SizeTable:
    """Read-only size table loaded from configuration."""

    def __init__(self, entries: Mapping[str, str]) -> None:
        self._entries = dict(entries)

    @classmethod
    def from_mapping(cls, entries: Mapping[str, str]) -> "SizeTable":
        for token, value in entries.items():
            try:
                parse_dimensions(value)
            except SizeError:
                LOGGER.warning("size_token_malformed", size_token=token, value=value)
        return cls(entries)

    def resolve(self, token: str) -> SizeSpec:
        return resolve_size(token, self._entries)

    def tokens(self) -> list[str]:
        return sorted(self._entries)
