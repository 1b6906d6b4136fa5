"""Base import result and line helper functions."""

from dataclasses import dataclass, field
from typing import Optional

from ..schema import MeteoRecord

ENCODINGS = ['utf-8', 'utf-8-sig', 'latin1']


@dataclass
class ImportResult:
    """Result of an import operation."""

    records: list[MeteoRecord]
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def success(cls, records: list[MeteoRecord], warnings: Optional[list[str]] = None) -> "ImportResult":
        """Create a successful import result."""
        return cls(records=records, warnings=warnings or [])


def decode_line(raw: bytes) -> str:
    """
    Decode one raw line with encoding fallback: utf-8 -> utf-8-sig -> latin1.

    The BOM and the end of line characters are removed.
    """
    for encoding in ENCODINGS:
        try:
            text = raw.decode(encoding)
            break
        except UnicodeDecodeError:
            continue
    if text.startswith('\ufeff'):
        text = text[1:]
    return text.rstrip('\r\n')


def split_line(line: str, delimiter: str) -> list[str]:
    """
    Split a line into trimmed fields.

    A blank delimiter means any run of whitespace separates two fields.
    """
    if delimiter == ' ':
        return line.split()
    return [item.strip() for item in line.split(delimiter)]


def strip_comments(line: str, comments_mk: Optional[str]) -> str:
    """Remove everything from the comments marker to the end of the line."""
    if comments_mk is None:
        return line
    pos = line.find(comments_mk)
    return line if pos == -1 else line[:pos]


def remove_quotes(value: str) -> str:
    """Remove all single and double quotes."""
    return value.replace('"', '').replace("'", '')
