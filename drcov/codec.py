"""
Reading and writing complete DrCov files.

`decode` and `encode` are pure functions between bytes and CoverageData.
`read` and `write` are thin wrappers that add file handling; any OSError from
the file layer propagates unchanged. Any input `decode` accepts is written
back byte for byte by `encode`; spellings it could not reproduce are rejected.

File layout (version 2):

    DRCOV VERSION: 2
    DRCOV FLAVOR: <tool>
    Module Table: version <v>, count <n>     (legacy tables: 'Module Table: <n>')
    Columns: <column list>                   (versions 2-4 only)
    <n module rows>
    BB Table: <m> bbs
    <m * 8 bytes: uint32 start, uint16 size, uint16 module id, little endian>
"""

import logging
import os
import re
from typing import BinaryIO, Iterator, Optional, Tuple, Union

from . import blocks as _blocks
from . import modules as _modules
from .builder import CoverageBuilder
from .errors import (
    MalformedHeaderError,
    MissingFlavorError,
    TrailingDataError,
    TruncatedCoverageDataError,
    UnsupportedVersionError,
    ValidationError,
    ValidationFailedError,
)
from .model import SUPPORTED_FILE_VERSION, CoverageData, FileHeader, ModuleTableVersion

LOGGER = logging.getLogger(__name__)

_VERSION_PREFIX = "DRCOV VERSION: "
_FLAVOR_PREFIX = "DRCOV FLAVOR: "
_VERSION_NUMBER = re.compile(r"0|[1-9][0-9]*")
_TEXT_ENCODING = "utf-8"
# keeps undecodable path bytes intact across decode/encode
_TEXT_ERRORS = "surrogateescape"

PathOrStream = Union[str, os.PathLike, BinaryIO]


class _LineReader:
    """Sequential line cursor over the text preamble of a byte buffer."""

    def __init__(self, data: bytes):
        self._data = data
        self.offset = 0
        self.line_number = 0
        self.terminated = True

    def readline(self) -> Optional[str]:
        """Returns the next line without its terminator, or None at EOF."""
        if self.offset >= len(self._data):
            return None
        end = self._data.find(b"\n", self.offset)
        self.terminated = end != -1
        if end == -1:
            end = len(self._data)
            next_offset = end
        else:
            next_offset = end + 1
        raw = self._data[self.offset : end]
        self.offset = next_offset
        self.line_number += 1
        return raw.decode(_TEXT_ENCODING, _TEXT_ERRORS)

    def lines(self) -> Iterator[Tuple[int, str]]:
        while True:
            line = self.readline()
            if line is None:
                return
            yield self.line_number, line


def _decode_file_header(reader: _LineReader) -> FileHeader:
    version_line = reader.readline()
    if version_line is None or not version_line.startswith(_VERSION_PREFIX):
        raise MalformedHeaderError("Invalid or missing version header.", line=1)
    version_text = version_line[len(_VERSION_PREFIX) :]
    if _VERSION_NUMBER.fullmatch(version_text) is None:
        raise MalformedHeaderError(
            f"Malformed version number: '{version_line}'", line=1
        )
    version = int(version_text)
    if version != SUPPORTED_FILE_VERSION:
        raise UnsupportedVersionError(
            f"Unsupported DrCov version: {version}. "
            f"Only version {SUPPORTED_FILE_VERSION} is supported.",
            version=version,
            line=1,
        )

    flavor_line = reader.readline()
    if flavor_line is None or not flavor_line.startswith(_FLAVOR_PREFIX):
        raise MissingFlavorError("Invalid or missing flavor header.", line=2)

    return FileHeader(version, flavor_line[len(_FLAVOR_PREFIX) :])


def decode(data: bytes) -> CoverageData:
    """
    Parses a complete DrCov file held in memory.

    Args:
        data: The file contents.

    Returns:
        A validated CoverageData object.

    Raises:
        FormatError: On the first malformed, truncated, trailing or
            inconsistent part of the input. No partial result is returned.
    """
    data = bytes(data)
    reader = _LineReader(data)

    header = _decode_file_header(reader)

    module_version, module_count = _modules.decode_table_header(
        reader.readline(), reader.line_number
    )
    if module_version is ModuleTableVersion.V1:
        layout = _modules.layout_for(module_version)
    else:
        layout = _modules.decode_columns(
            module_version, reader.readline(), reader.line_number
        )
        # checksum columns are only written when some module carries them
        if layout.windows and module_count == 0:
            raise MalformedHeaderError(
                "Checksum and timestamp columns declared for an empty module table",
                line=reader.line_number,
            )
    modules = _modules.decode_module_table(layout, module_count, reader.lines())

    bb_count, bb_spacing = _blocks.decode_table_header(
        reader.readline(), reader.line_number
    )
    if not reader.terminated:
        raise MalformedHeaderError(
            "BB table header is not terminated by a newline", line=reader.line_number
        )
    payload_offset = reader.offset
    expected = bb_count * _blocks.BB_ENTRY_SIZE
    available = len(data) - payload_offset
    if available < expected:
        raise TruncatedCoverageDataError(
            f"BB table declares {bb_count} entries ({expected} bytes) but only "
            f"{available} bytes remain",
            offset=len(data),
        )
    if available > expected:
        raise TrailingDataError(
            f"{available - expected} unexpected bytes after the BB table",
            offset=payload_offset + expected,
        )
    basic_blocks = _blocks.decode_blocks(data[payload_offset:], payload_offset)

    try:
        coverage = CoverageData(
            header, modules, basic_blocks, module_version, bb_header_spacing=bb_spacing
        )
    except ValidationError as e:
        raise ValidationFailedError(
            str(e), module_id=e.module_id, index=e.index
        ) from e

    LOGGER.debug(
        "decoded drcov data: flavor=%s, module table v%d, %d module(s), %d block(s)",
        header.flavor,
        module_version.value,
        len(modules),
        len(basic_blocks),
    )
    return coverage


def encode(data: CoverageData) -> bytes:
    """
    Serializes coverage data to the DrCov byte format.

    CoverageData is validated on construction, so this cannot fail on a
    well-formed object.
    """
    text = (
        data.header.to_string()
        + _modules.encode_module_table(
            data.module_version, data.modules, data.has_windows_fields()
        )
        + _blocks.encode_table_header(len(data.basic_blocks), data.bb_header_spacing)
    )
    return text.encode(_TEXT_ENCODING, _TEXT_ERRORS) + _blocks.encode_blocks(
        data.basic_blocks
    )


def read(filepath_or_stream: PathOrStream) -> CoverageData:
    """
    Reads and parses a DrCov file from a path or a binary stream.

    Args:
        filepath_or_stream: Path to the .drcov file or a stream opened in
            binary mode.

    Returns:
        A CoverageData object.

    Raises:
        FormatError: If parsing fails.
        OSError: If the file cannot be read.
    """
    if isinstance(filepath_or_stream, (str, os.PathLike)):
        with open(filepath_or_stream, "rb") as f:
            raw = f.read()
    else:
        raw = filepath_or_stream.read()
    return decode(raw)


def write(data: CoverageData, filepath_or_stream: PathOrStream) -> None:
    """
    Writes coverage data to a .drcov file.

    Args:
        data: The CoverageData object to write.
        filepath_or_stream: Path to the output file or a stream opened in
            binary mode.
    """
    payload = encode(data)
    if isinstance(filepath_or_stream, (str, os.PathLike)):
        with open(filepath_or_stream, "wb") as f:
            f.write(payload)
    else:
        filepath_or_stream.write(payload)


def builder() -> CoverageBuilder:
    """Returns a new CoverageBuilder instance for creating CoverageData."""
    return CoverageBuilder()
