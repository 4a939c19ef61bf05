"""
In-memory representation of a DrCov coverage document.

A document is a file header, the module table (one variant per module table
version) and the executed basic blocks. `CoverageData` is immutable and checks
every invariant when it is constructed, so any instance that exists is
consistent and can be serialized without further checks.
"""

import dataclasses
from enum import Enum
from typing import Dict, Optional, Tuple, Union

from .errors import ValidationError

SUPPORTED_FILE_VERSION = 2
DEFAULT_FLAVOR = "drcov"

_U16_MAX = 0xFFFF
_U32_MAX = 0xFFFFFFFF
_U64_MAX = 0xFFFFFFFFFFFFFFFF

# inclusive bounds of every integer module attribute
_MODULE_FIELD_RANGES = {
    "id": (0, _U32_MAX),
    "base": (0, _U64_MAX),
    "end": (0, _U64_MAX),
    "entry": (0, _U64_MAX),
    "containing_id": (-(2**31), 2**31 - 1),
    "offset": (0, _U64_MAX),
    "checksum": (0, _U32_MAX),
    "timestamp": (0, _U32_MAX),
}

_BLOCK_FIELD_RANGES = {
    "start": (0, _U32_MAX),
    "size": (1, _U16_MAX),
    "module_id": (0, _U16_MAX),
}


class ModuleTableVersion(Enum):
    """Module table format versions."""

    V1 = 1
    LEGACY = 1
    V2 = 2
    V3 = 3
    V4 = 4


@dataclasses.dataclass(frozen=True)
class FileHeader:
    """DrCov file header containing version and tool information."""

    version: int = SUPPORTED_FILE_VERSION
    flavor: str = DEFAULT_FLAVOR

    def to_string(self) -> str:
        """Serializes the header to its string representation."""
        return f"DRCOV VERSION: {self.version}\nDRCOV FLAVOR: {self.flavor}\n"


class _AddressRange:
    """Address helpers shared by every module variant."""

    @property
    def size(self) -> int:
        """Returns the size of the module in memory."""
        return self.end - self.base

    def contains_address(self, addr: int) -> bool:
        """Checks if a given absolute address is within this module."""
        return self.base <= addr < self.end


def _field_widths():
    """
    Text widths of a module's numeric fields, as (attribute, width) pairs.

    Hex widths count the digits after '0x' and decimal widths count the whole
    field including leading spaces. Fields without an entry are written in
    their shortest form. Decoding records the widths a file used, so padded
    tables such as DynamoRIO's '%3u, 0x%016lx' rows are written back
    unchanged. Widths never take part in equality.
    """
    return dataclasses.field(default=(), compare=False, repr=False)


class _WindowsFields:
    @property
    def has_windows_fields(self) -> bool:
        return self.checksum is not None or self.timestamp is not None


@dataclasses.dataclass(frozen=True)
class ModuleEntryV1(_AddressRange):
    """Legacy module table row: id, base, end, entry, path."""

    id: int
    base: int
    end: int
    path: str
    entry: int = 0
    field_widths: Tuple[Tuple[str, int], ...] = _field_widths()


@dataclasses.dataclass(frozen=True)
class ModuleEntryV2(_AddressRange, _WindowsFields):
    """Version 2 row: id, base, end, entry, [checksum, timestamp,] path."""

    id: int
    base: int
    end: int
    path: str
    entry: int = 0
    checksum: Optional[int] = None
    timestamp: Optional[int] = None
    field_widths: Tuple[Tuple[str, int], ...] = _field_widths()


@dataclasses.dataclass(frozen=True)
class ModuleEntryV3(_AddressRange, _WindowsFields):
    """Version 3 row: id, containing_id, start, end, entry, [checksum, timestamp,] path."""

    id: int
    base: int
    end: int
    path: str
    entry: int = 0
    containing_id: int = -1
    checksum: Optional[int] = None
    timestamp: Optional[int] = None
    field_widths: Tuple[Tuple[str, int], ...] = _field_widths()


@dataclasses.dataclass(frozen=True)
class ModuleEntryV4(_AddressRange, _WindowsFields):
    """Version 4 row: id, containing_id, start, end, entry, offset, [checksum, timestamp,] path."""

    id: int
    base: int
    end: int
    path: str
    entry: int = 0
    containing_id: int = -1
    offset: int = 0
    checksum: Optional[int] = None
    timestamp: Optional[int] = None
    field_widths: Tuple[Tuple[str, int], ...] = _field_widths()


ModuleEntry = Union[ModuleEntryV1, ModuleEntryV2, ModuleEntryV3, ModuleEntryV4]

MODULE_VARIANTS = {
    ModuleTableVersion.V1: ModuleEntryV1,
    ModuleTableVersion.V2: ModuleEntryV2,
    ModuleTableVersion.V3: ModuleEntryV3,
    ModuleTableVersion.V4: ModuleEntryV4,
}


@dataclasses.dataclass(frozen=True)
class BasicBlock:
    """Represents an executed basic block."""

    start: int  # uint32: offset from module base
    size: int  # uint16: size of the basic block
    module_id: int  # uint16: ID of the module containing this block

    def absolute_address(self, module: ModuleEntry) -> int:
        """Calculates the absolute memory address of the basic block."""
        if self.module_id != module.id:
            raise ValueError("Mismatched module ID for basic block.")
        return module.base + self.start


def _has_line_break(text: str) -> bool:
    return "\n" in text or "\r" in text


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclasses.dataclass(frozen=True)
class CoverageData:
    """
    Complete, validated coverage document.

    `modules` and `basic_blocks` accept any iterable and are stored as tuples.
    `bb_header_spacing` is the number of spaces between 'BB Table:' and the
    block count; some writers emit two. Like module field widths it only
    affects encoding, not equality.
    Construction raises ValidationError on the first violated invariant.
    """

    header: FileHeader
    modules: Tuple[ModuleEntry, ...]
    basic_blocks: Tuple[BasicBlock, ...]
    module_version: ModuleTableVersion
    bb_header_spacing: int = dataclasses.field(default=1, compare=False, repr=False)

    def __post_init__(self):
        object.__setattr__(self, "modules", tuple(self.modules))
        object.__setattr__(self, "basic_blocks", tuple(self.basic_blocks))
        self._validate()

    def _validate(self) -> None:
        self._validate_header()
        self._validate_modules()
        self._validate_blocks()

    def _validate_header(self) -> None:
        if not isinstance(self.module_version, ModuleTableVersion):
            raise ValidationError(
                f"Unsupported module table version: {self.module_version!r}"
            )
        if self.header.version != SUPPORTED_FILE_VERSION:
            raise ValidationError(
                f"Unsupported DrCov version: {self.header.version}. "
                f"Only version {SUPPORTED_FILE_VERSION} is supported."
            )
        if not self.header.flavor:
            raise ValidationError("Flavor must not be empty.")
        if _has_line_break(self.header.flavor):
            raise ValidationError("Flavor must not contain line breaks.")
        if not _is_int(self.bb_header_spacing) or self.bb_header_spacing < 1:
            raise ValidationError(
                f"BB table header spacing must be a positive integer, "
                f"got {self.bb_header_spacing!r}"
            )

    def _validate_modules(self) -> None:
        variant = MODULE_VARIANTS[self.module_version]
        for i, module in enumerate(self.modules):
            if type(module) is not variant:
                raise ValidationError(
                    f"Module at index {i} is a {type(module).__name__}, "
                    f"expected {variant.__name__} for module table "
                    f"version {self.module_version.value}",
                    index=i,
                )

        # ids are positional and must be checked before anything refers to them
        for i, module in enumerate(self.modules):
            if module.id != i:
                raise ValidationError(
                    f"Non-sequential module ID {module.id} at index {i}",
                    module_id=module.id,
                    index=i,
                )

        for module in self.modules:
            _check_ranges(module, _MODULE_FIELD_RANGES, "module", module.id, module.id)
            if module.end <= module.base:
                raise ValidationError(
                    f"Module {module.id} end 0x{module.end:x} is not above "
                    f"base 0x{module.base:x}",
                    module_id=module.id,
                    index=module.id,
                )
            if not isinstance(module.path, str):
                raise ValidationError(
                    f"Module {module.id} path must be a string",
                    module_id=module.id,
                    index=module.id,
                )
            if _has_line_break(module.path) or module.path != module.path.strip():
                raise ValidationError(
                    f"Module {module.id} path {module.path!r} has line breaks "
                    f"or surrounding whitespace",
                    module_id=module.id,
                    index=module.id,
                )
            for name, width in module.field_widths:
                if name not in _MODULE_FIELD_RANGES or not hasattr(module, name):
                    raise ValidationError(
                        f"Module {module.id} has a width for unknown field '{name}'",
                        module_id=module.id,
                        index=module.id,
                    )
                if not _is_int(width) or width < 0:
                    raise ValidationError(
                        f"Module {module.id} field '{name}' width {width!r} "
                        f"is not a non-negative integer",
                        module_id=module.id,
                        index=module.id,
                    )

        if self.module_version is ModuleTableVersion.V1:
            return

        for module in self.modules:
            if (module.checksum is None) != (module.timestamp is None):
                raise ValidationError(
                    f"Module {module.id} must set both checksum and timestamp or neither",
                    module_id=module.id,
                    index=module.id,
                )
        with_windows = [m.has_windows_fields for m in self.modules]
        if any(with_windows) and not all(with_windows):
            missing = with_windows.index(False)
            raise ValidationError(
                f"Module {missing} lacks checksum/timestamp while other modules "
                f"in the table carry them",
                module_id=missing,
                index=missing,
            )

    def _validate_blocks(self) -> None:
        num_modules = len(self.modules)
        for i, bb in enumerate(self.basic_blocks):
            _check_ranges(bb, _BLOCK_FIELD_RANGES, "basic block", i, bb.module_id)
            if bb.module_id >= num_modules:
                raise ValidationError(
                    f"Basic block {i} references invalid module ID: {bb.module_id}",
                    module_id=bb.module_id,
                    index=i,
                )

    def find_module(self, module_id: int) -> Optional[ModuleEntry]:
        """Finds a module by its ID."""
        if 0 <= module_id < len(self.modules):
            return self.modules[module_id]
        return None

    def find_module_by_address(self, addr: int) -> Optional[ModuleEntry]:
        """Finds the module that contains a given absolute address."""
        return next((m for m in self.modules if m.contains_address(addr)), None)

    def get_coverage_stats(self) -> Dict[int, int]:
        """Calculates the number of basic blocks executed per module."""
        stats: Dict[int, int] = {m.id: 0 for m in self.modules}
        for bb in self.basic_blocks:
            stats[bb.module_id] += 1
        return stats

    def covered_bytes(self, module_id: Optional[int] = None) -> int:
        """Sums basic block sizes, optionally restricted to one module."""
        return sum(
            bb.size
            for bb in self.basic_blocks
            if module_id is None or bb.module_id == module_id
        )

    def has_windows_fields(self) -> bool:
        """Returns True if the module table carries checksum/timestamp columns."""
        if self.module_version is ModuleTableVersion.V1:
            return False
        return any(m.has_windows_fields for m in self.modules)


def _check_ranges(
    record: object,
    ranges: Dict[str, Tuple[int, int]],
    kind: str,
    index: int,
    module_id: int,
) -> None:
    for field in dataclasses.fields(record):
        bounds = ranges.get(field.name)
        if bounds is None:
            continue
        value = getattr(record, field.name)
        if value is None and field.default is None:
            continue
        low, high = bounds
        if not _is_int(value) or not low <= value <= high:
            raise ValidationError(
                f"{kind.capitalize()} {index} field '{field.name}' value {value!r} "
                f"is outside [{low}, {high}]",
                module_id=module_id,
                index=index,
            )

