"""Basic block table codec: the 'BB Table' header and its binary entries."""

import logging
import re
import struct
from typing import Iterable, List, Optional, Tuple

from .errors import MalformedHeaderError, TruncatedCoverageDataError
from .model import BasicBlock

LOGGER = logging.getLogger(__name__)

BB_TABLE_PREFIX = "BB Table: "
BB_ENTRY_SIZE = 8

# uint32 start, uint16 size, uint16 module id
_BB_ENTRY = struct.Struct("<IHH")
_BB_HEADER = re.compile(r"BB Table:( +)(0|[1-9][0-9]*) bbs")


def decode_table_header(
    line: str, line_number: Optional[int] = None
) -> Tuple[int, int]:
    """
    Parses 'BB Table: <n> bbs'.

    Returns the declared block count and the number of spaces between
    'BB Table:' and the count. Some writers put two spaces there. Any other
    deviation, such as a sign or leading zeros, is a MalformedHeaderError.
    """
    if line is None or not line.startswith(BB_TABLE_PREFIX):
        raise MalformedHeaderError(
            "Invalid or missing BB table header.", line=line_number
        )

    match = _BB_HEADER.fullmatch(line)
    if match is None:
        raise MalformedHeaderError(
            f"Malformed BB table count: '{line}'", line=line_number
        )
    spacing, count = match.groups()
    return int(count), len(spacing)


def encode_table_header(count: int, spacing: int = 1) -> str:
    return f"{BB_TABLE_PREFIX.rstrip()}{' ' * spacing}{count} bbs\n"


def decode_blocks(data: bytes, base_offset: int = 0) -> List[BasicBlock]:
    """
    Unpacks a run of 8-byte basic block entries.

    Args:
        data: The raw entries, a multiple of 8 bytes long.
        base_offset: Position of `data` within the whole file, used to locate
            errors.

    Raises:
        TruncatedCoverageDataError: If `data` ends mid-entry.
    """
    remainder = len(data) % BB_ENTRY_SIZE
    if remainder:
        raise TruncatedCoverageDataError(
            f"BB table binary data is {len(data)} bytes, which leaves a partial "
            f"{remainder}-byte entry",
            offset=base_offset + len(data) - remainder,
        )

    blocks = [
        BasicBlock(start, size, module_id)
        for start, size, module_id in _BB_ENTRY.iter_unpack(data)
    ]
    LOGGER.debug("decoded %d basic block(s)", len(blocks))
    return blocks


def encode_blocks(blocks: Iterable[BasicBlock]) -> bytes:
    """Packs basic blocks into their binary table representation."""
    return b"".join(_BB_ENTRY.pack(bb.start, bb.size, bb.module_id) for bb in blocks)
