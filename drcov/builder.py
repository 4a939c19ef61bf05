"""Fluent construction of validated CoverageData objects."""

import dataclasses
from typing import Iterable, List, Optional, Union

from .errors import ValidationError
from .model import (
    DEFAULT_FLAVOR,
    MODULE_VARIANTS,
    BasicBlock,
    CoverageData,
    FileHeader,
    ModuleEntry,
    ModuleTableVersion,
)

# optional module attributes and the value meaning "not set"
_OPTIONAL_MODULE_FIELDS = {
    "entry": 0,
    "containing_id": -1,
    "offset": 0,
    "checksum": None,
    "timestamp": None,
}


@dataclasses.dataclass
class _PendingModule:
    """A module added by attributes, turned into a variant at build time."""

    id: int
    path: str
    base: int
    end: int
    optional: dict

    def materialize(self, version: ModuleTableVersion) -> ModuleEntry:
        variant = MODULE_VARIANTS[version]
        names = {f.name for f in dataclasses.fields(variant)}
        for name, value in self.optional.items():
            if name not in names and value != _OPTIONAL_MODULE_FIELDS[name]:
                raise ValidationError(
                    f"Module {self.id} sets '{name}', which module table "
                    f"version {version.value} does not have",
                    module_id=self.id,
                    index=self.id,
                )
        fields = {k: v for k, v in self.optional.items() if k in names}
        return variant(id=self.id, path=self.path, base=self.base, end=self.end, **fields)


class CoverageBuilder:
    """
    Builder pattern for fluently creating CoverageData objects.

    Nothing is validated until build(), which checks every document invariant
    once and raises ValidationError on the first violation. A builder is meant
    to be used by a single caller; build independent documents with
    independent builders.
    """

    def __init__(self):
        self._flavor = DEFAULT_FLAVOR
        self._module_version = ModuleTableVersion.V2
        self._modules: List[Union[_PendingModule, ModuleEntry]] = []
        self._basic_blocks: List[BasicBlock] = []

    def set_flavor(self, flavor: str) -> "CoverageBuilder":
        """Sets the 'flavor' (tool name) in the header."""
        self._flavor = flavor
        return self

    def set_module_version(self, version: ModuleTableVersion) -> "CoverageBuilder":
        """Sets the version of the module table format."""
        self._module_version = version
        return self

    def add_module(
        self,
        path: str,
        base: int,
        end: int,
        entry: int = 0,
        *,
        containing_id: int = -1,
        offset: int = 0,
        checksum: Optional[int] = None,
        timestamp: Optional[int] = None,
    ) -> "CoverageBuilder":
        """
        Adds a new module, assigning the next sequential ID.

        Fields the chosen module table version lacks must be left at their
        defaults; build() rejects them otherwise.
        """
        self._modules.append(
            _PendingModule(
                id=len(self._modules),
                path=path,
                base=base,
                end=end,
                optional=dict(
                    entry=entry,
                    containing_id=containing_id,
                    offset=offset,
                    checksum=checksum,
                    timestamp=timestamp,
                ),
            )
        )
        return self

    def add_full_module(self, module: ModuleEntry) -> "CoverageBuilder":
        """Adds a fully-specified module entry as-is, including its ID."""
        self._modules.append(module)
        return self

    def add_coverage(self, module_id: int, offset: int, size: int) -> "CoverageBuilder":
        """Adds a new basic block to the coverage data."""
        self._basic_blocks.append(
            BasicBlock(start=offset, size=size, module_id=module_id)
        )
        return self

    def add_basic_block(self, block: BasicBlock) -> "CoverageBuilder":
        self._basic_blocks.append(block)
        return self

    def add_basic_blocks(self, blocks: Iterable[BasicBlock]) -> "CoverageBuilder":
        """Adds a list of basic blocks."""
        self._basic_blocks.extend(blocks)
        return self

    def clear_coverage(self) -> "CoverageBuilder":
        """Removes all basic blocks."""
        self._basic_blocks.clear()
        return self

    def build(self) -> CoverageData:
        """Validates and returns the final CoverageData object."""
        if not isinstance(self._module_version, ModuleTableVersion):
            raise ValidationError(
                f"Unsupported module table version: {self._module_version!r}"
            )
        modules = [
            m.materialize(self._module_version) if isinstance(m, _PendingModule) else m
            for m in self._modules
        ]
        return CoverageData(
            header=FileHeader(flavor=self._flavor),
            modules=modules,
            basic_blocks=list(self._basic_blocks),
            module_version=self._module_version,
        )
