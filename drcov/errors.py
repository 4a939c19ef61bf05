"""Exception types raised while decoding, validating or encoding DrCov data."""

from typing import Optional


class DrCovError(Exception):
    """Base exception for all DrCov parsing, validation or writing errors."""

    pass


class ValidationError(DrCovError):
    """
    Coverage data violates a document invariant.

    `module_id` names the offending module (or the module a basic block points
    at) and `index` the position of the offending module or basic block.
    """

    def __init__(
        self,
        message: str,
        module_id: Optional[int] = None,
        index: Optional[int] = None,
    ):
        super().__init__(message)
        self.module_id = module_id
        self.index = index


class FormatError(DrCovError):
    """
    The byte stream is not a well-formed DrCov file.

    Exactly one locator is usually set: `line` (1-based) for the text
    preamble, `offset` (bytes from the start of the input) for the binary
    basic block table.
    """

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        offset: Optional[int] = None,
    ):
        self.reason = message
        self.line = line
        self.offset = offset
        if line is not None:
            message = f"line {line}: {message}"
        elif offset is not None:
            message = f"byte offset {offset}: {message}"
        super().__init__(message)


class MalformedHeaderError(FormatError):
    """A header line (version, module table, columns, bb table) is malformed."""


class UnsupportedVersionError(FormatError):
    """The file or module table declares a version this library cannot read."""

    def __init__(self, message: str, version: int, line: Optional[int] = None):
        super().__init__(message, line=line)
        self.version = version


class MissingFlavorError(FormatError):
    """The flavor line is absent."""


class MalformedModuleRowError(FormatError):
    """A module table row has the wrong arity or an unparseable field."""


class TruncatedModuleTableError(FormatError):
    """The input ends before the declared number of module rows."""


class TruncatedCoverageDataError(FormatError):
    """The binary basic block table is shorter than declared or misaligned."""


class TrailingDataError(FormatError):
    """Bytes remain after the declared basic block table."""


class ValidationFailedError(FormatError):
    """Parsed data is well-formed but violates a document invariant."""

    def __init__(
        self,
        message: str,
        line: Optional[int] = None,
        module_id: Optional[int] = None,
        index: Optional[int] = None,
    ):
        super().__init__(message, line=line)
        self.module_id = module_id
        self.index = index
