"""
drcov - a pure-Python library for parsing and writing DrCov coverage files.

Supports DrCov file version 2 with legacy (version 1) and version 2-4 module
tables, decoding and encoding byte-identically.

References:
 - DrCov format analysis: https://www.ayrx.me/drcov-file-format/
 - Lighthouse plugin: https://github.com/gaasedelen/lighthouse

Example Usage:
    # Reading a file
    try:
        coverage = drcov.read("coverage.drcov")
        print(f"Read {len(coverage.basic_blocks)} basic blocks.")
    except drcov.DrCovError as e:
        print(f"Error reading file: {e}")

    # Creating coverage data
    coverage = (
        drcov.builder()
        .set_flavor("my_python_tool")
        .set_module_version(drcov.ModuleTableVersion.V2)
        .add_module(path="/bin/program", base=0x400000, end=0x450000)
        .add_coverage(module_id=0, offset=0x1000, size=32)
        .build()
    )

    # Writing to a file
    drcov.write(coverage, "output.drcov")
"""

from .builder import CoverageBuilder
from .codec import builder, decode, encode, read, write
from .errors import (
    DrCovError,
    FormatError,
    MalformedHeaderError,
    MalformedModuleRowError,
    MissingFlavorError,
    TrailingDataError,
    TruncatedCoverageDataError,
    TruncatedModuleTableError,
    UnsupportedVersionError,
    ValidationError,
    ValidationFailedError,
)
from .model import (
    BasicBlock,
    CoverageData,
    FileHeader,
    ModuleEntry,
    ModuleEntryV1,
    ModuleEntryV2,
    ModuleEntryV3,
    ModuleEntryV4,
    ModuleTableVersion,
)

__all__ = [
    "decode",
    "encode",
    "read",
    "write",
    "builder",
    "CoverageBuilder",
    "CoverageData",
    "BasicBlock",
    "FileHeader",
    "ModuleEntry",
    "ModuleEntryV1",
    "ModuleEntryV2",
    "ModuleEntryV3",
    "ModuleEntryV4",
    "ModuleTableVersion",
    "DrCovError",
    "FormatError",
    "MalformedHeaderError",
    "MalformedModuleRowError",
    "MissingFlavorError",
    "TrailingDataError",
    "TruncatedCoverageDataError",
    "TruncatedModuleTableError",
    "UnsupportedVersionError",
    "ValidationError",
    "ValidationFailedError",
]
