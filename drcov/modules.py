"""
Module table codec.

Every module table version has a fixed, ordered set of columns. Versions 2-4
additionally have a "windows" layout that inserts checksum and timestamp
columns before the path. A `ModuleLayout` names one of these column sets and
drives both decoding and encoding of rows, so each layout is independently
testable and there is no column mapping done by name at runtime.

Fields are read with a strict grammar whose only freedom is padding: space
padded decimals and zero padded hex, as DynamoRIO writes them. The padding is
recorded in each module's `field_widths`, so every accepted row is written back
unchanged.
"""

import dataclasses
import logging
import re
from typing import Any, Iterator, List, Optional, Sequence, Tuple

from .errors import (
    MalformedHeaderError,
    MalformedModuleRowError,
    TruncatedModuleTableError,
    UnsupportedVersionError,
    ValidationFailedError,
)
from .model import MODULE_VARIANTS, ModuleEntry, ModuleTableVersion

LOGGER = logging.getLogger(__name__)

MODULE_TABLE_PREFIX = "Module Table: "
COLUMNS_PREFIX = "Columns: "
COLUMN_SEPARATOR = ", "
_BB_TABLE_PREFIX = "BB Table: "

_DEC = "dec"
_SIGNED_DEC = "signed_dec"
_HEX = "hex"
_STR = "str"

# every accepted field text is reproduced exactly by Column.format
_FIELD_PATTERNS = {
    _DEC: re.compile(r"( *)(0|[1-9][0-9]*)"),
    _SIGNED_DEC: re.compile(r"( *)(0|-?[1-9][0-9]*)"),
    _HEX: re.compile(r"0x([0-9a-f]+)"),
}
_COUNT = re.compile(r"0|[1-9][0-9]*")
_VERSIONED_HEADER = re.compile(r"version (0|[1-9][0-9]*), count (0|[1-9][0-9]*)")


@dataclasses.dataclass(frozen=True)
class Column:
    """One module table column: its header name, target attribute and type."""

    name: str
    attribute: str
    kind: str

    def parse(self, text: str) -> Tuple[Any, int]:
        """
        Parses one field and returns its value and text width.

        The width is 0 when the field is in its shortest form. Signs, digit
        separators, uppercase hex and any other spelling that `format` would
        not reproduce raise ValueError.
        """
        if self.kind == _STR:
            if text != text.strip():
                raise ValueError(f"surrounding whitespace in {text!r}")
            return text, 0

        match = _FIELD_PATTERNS[self.kind].fullmatch(text)
        if match is None:
            raise ValueError(text)
        if self.kind == _HEX:
            digits = match.group(1)
            value = int(digits, 16)
            return value, len(digits) if len(digits) > len(f"{value:x}") else 0
        padding, digits = match.groups()
        return int(digits, 10), len(text) if padding else 0

    def format(self, value, width: int = 0) -> str:
        if self.kind == _HEX:
            return "0x" + f"{value:x}".zfill(width)
        if self.kind in (_DEC, _SIGNED_DEC):
            return str(value).rjust(width)
        return value


_COLUMNS = {
    c.name: c
    for c in (
        Column("id", "id", _DEC),
        Column("containing_id", "containing_id", _SIGNED_DEC),
        Column("base", "base", _HEX),
        Column("start", "base", _HEX),
        Column("end", "end", _HEX),
        Column("entry", "entry", _HEX),
        Column("offset", "offset", _HEX),
        Column("checksum", "checksum", _HEX),
        Column("timestamp", "timestamp", _HEX),
        Column("path", "path", _STR),
    )
}


@dataclasses.dataclass(frozen=True)
class ModuleLayout:
    """The exact column set of one module table version."""

    version: ModuleTableVersion
    windows: bool
    columns: Tuple[Column, ...]

    @property
    def header(self) -> str:
        """The column list as written after the 'Columns: ' prefix."""
        return COLUMN_SEPARATOR.join(c.name for c in self.columns)


def _layout(version: ModuleTableVersion, windows: bool, names: str) -> ModuleLayout:
    columns = tuple(_COLUMNS[name.strip()] for name in names.split(","))
    return ModuleLayout(version, windows, columns)


_LAYOUTS = {
    (ModuleTableVersion.V1, False): _layout(
        ModuleTableVersion.V1, False, "id, base, end, entry, path"
    ),
    (ModuleTableVersion.V2, False): _layout(
        ModuleTableVersion.V2, False, "id, base, end, entry, path"
    ),
    (ModuleTableVersion.V2, True): _layout(
        ModuleTableVersion.V2, True, "id, base, end, entry, checksum, timestamp, path"
    ),
    (ModuleTableVersion.V3, False): _layout(
        ModuleTableVersion.V3, False, "id, containing_id, start, end, entry, path"
    ),
    (ModuleTableVersion.V3, True): _layout(
        ModuleTableVersion.V3,
        True,
        "id, containing_id, start, end, entry, checksum, timestamp, path",
    ),
    (ModuleTableVersion.V4, False): _layout(
        ModuleTableVersion.V4,
        False,
        "id, containing_id, start, end, entry, offset, path",
    ),
    (ModuleTableVersion.V4, True): _layout(
        ModuleTableVersion.V4,
        True,
        "id, containing_id, start, end, entry, offset, checksum, timestamp, path",
    ),
}


def layout_for(version: ModuleTableVersion, windows: bool = False) -> ModuleLayout:
    """Returns the column layout of a module table version."""
    try:
        return _LAYOUTS[(version, windows)]
    except KeyError:
        raise ValueError(
            f"Module table version {version.value} has no "
            f"{'windows' if windows else 'plain'} layout"
        ) from None


# --- Module Record Codec ---


def decode_module(
    layout: ModuleLayout, line: str, line_number: Optional[int] = None
) -> ModuleEntry:
    """
    Parses one module table row.

    The path is always the last column, so the row is split at most
    `len(columns) - 1` times and the path may itself contain commas. Fields
    are separated by ', '; decimal fields may be padded with leading spaces
    and hex fields with leading zeros. The padding is kept in the module's
    `field_widths` so `encode_module` reproduces the row exactly.

    Raises:
        MalformedModuleRowError: On a column count mismatch, a missing
            separator or a field spelled in a form that would not survive
            re-encoding.
    """
    columns = layout.columns
    texts = line.split(",", maxsplit=len(columns) - 1)
    if len(texts) != len(columns):
        raise MalformedModuleRowError(
            f"Module entry column count mismatch: expected {len(columns)}, "
            f"got {len(texts)} in '{line}'",
            line=line_number,
        )

    fields = {}
    widths = []
    for i, (column, text) in enumerate(zip(columns, texts)):
        if i:
            if not text.startswith(" "):
                raise MalformedModuleRowError(
                    f"Expected '{COLUMN_SEPARATOR}' before '{column.name}' in "
                    f"module entry '{line}'",
                    line=line_number,
                )
            text = text[1:]
        try:
            value, width = column.parse(text)
        except ValueError:
            raise MalformedModuleRowError(
                f"Malformed '{column.name}' value '{text}' in module entry '{line}'",
                line=line_number,
            ) from None
        fields[column.attribute] = value
        if width:
            widths.append((column.attribute, width))

    return MODULE_VARIANTS[layout.version](field_widths=tuple(widths), **fields)


def encode_module(layout: ModuleLayout, module: ModuleEntry) -> str:
    """Formats one module as a row of `layout`, without the line terminator."""
    widths = dict(module.field_widths)
    return COLUMN_SEPARATOR.join(
        column.format(getattr(module, column.attribute), widths.get(column.attribute, 0))
        for column in layout.columns
    )


# --- Module Table Codec ---


def decode_table_header(
    line: str, line_number: Optional[int] = None
) -> Tuple[ModuleTableVersion, int]:
    """
    Parses 'Module Table: version <v>, count <n>' or the legacy
    'Module Table: <n>' and returns the table version and row count.

    Numbers must be plain decimal without padding or sign.
    """
    if line is None or not line.startswith(MODULE_TABLE_PREFIX):
        raise MalformedHeaderError(
            "Invalid or missing module table header.", line=line_number
        )

    content = line[len(MODULE_TABLE_PREFIX) :]
    if content.startswith("version "):
        match = _VERSIONED_HEADER.fullmatch(content)
        if match is None:
            raise MalformedHeaderError(
                f"Invalid versioned module table header: '{line}'",
                line=line_number,
            )
        version_number, count = int(match.group(1)), int(match.group(2))
        if version_number not in (2, 3, 4):
            raise UnsupportedVersionError(
                f"Unsupported module table version: {version_number}",
                version=version_number,
                line=line_number,
            )
        return ModuleTableVersion(version_number), count

    if _COUNT.fullmatch(content) is None:
        raise MalformedHeaderError(
            f"Malformed module table header: '{line}'", line=line_number
        )
    return ModuleTableVersion.V1, int(content)


def encode_table_header(version: ModuleTableVersion, count: int) -> str:
    if version is ModuleTableVersion.V1:
        return f"{MODULE_TABLE_PREFIX}{count}"
    return f"{MODULE_TABLE_PREFIX}version {version.value}, count {count}"


def decode_columns(
    version: ModuleTableVersion, line: str, line_number: Optional[int] = None
) -> ModuleLayout:
    """
    Matches a 'Columns: ...' line against the known layouts of `version`.

    The line must be exactly the plain or the windows column list of the
    version. Readers that map columns by name also accept reordered columns,
    'base' in place of 'start' in version 3 and 4 tables, and unknown extra
    columns; such files are rejected here with MalformedHeaderError because
    their rows do not fit a fixed layout and could not be written back
    unchanged.
    """
    if line is None or not line.startswith(COLUMNS_PREFIX):
        raise MalformedHeaderError("Invalid or missing columns header.", line=line_number)

    names = line[len(COLUMNS_PREFIX) :]
    for windows in (False, True):
        layout = _LAYOUTS[(version, windows)]
        if names == layout.header:
            return layout

    raise MalformedHeaderError(
        f"Unknown column layout for module table version {version.value}: "
        f"'{names}'",
        line=line_number,
    )


def decode_module_table(
    layout: ModuleLayout,
    count: int,
    lines: Iterator[Tuple[int, str]],
) -> List[ModuleEntry]:
    """
    Reads exactly `count` rows from `lines`, an iterator of
    (line number, text) pairs.

    Module ids are positional: a row whose id column disagrees with its
    position is rejected.
    """
    modules: List[ModuleEntry] = []
    for index in range(count):
        line_number, line = next(lines, (None, None))
        if line is None or line.startswith(_BB_TABLE_PREFIX):
            raise TruncatedModuleTableError(
                f"Module table entry count mismatch. Expected {count}, got {index}.",
                line=line_number,
            )

        module = decode_module(layout, line, line_number)
        if module.id != index:
            raise ValidationFailedError(
                f"Non-sequential module ID. Expected {index}, got {module.id}",
                line=line_number,
                module_id=module.id,
                index=index,
            )
        modules.append(module)

    LOGGER.debug(
        "decoded %d module(s) with layout '%s'", len(modules), layout.header
    )
    return modules


def encode_module_table(
    version: ModuleTableVersion,
    modules: Sequence[ModuleEntry],
    windows: bool = False,
) -> str:
    """Serializes the module table header, column line and rows."""
    layout = layout_for(version, windows)
    lines = [encode_table_header(version, len(modules))]
    if version is not ModuleTableVersion.V1:
        lines.append(f"{COLUMNS_PREFIX}{layout.header}")
    lines.extend(encode_module(layout, module) for module in modules)
    return "".join(f"{line}\n" for line in lines)
