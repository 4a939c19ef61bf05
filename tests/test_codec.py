"""tests for whole-file decoding and encoding"""

import struct

import pytest

from drcov import (
    BasicBlock,
    FormatError,
    MalformedHeaderError,
    MalformedModuleRowError,
    MissingFlavorError,
    ModuleEntryV2,
    ModuleTableVersion,
    TrailingDataError,
    TruncatedCoverageDataError,
    TruncatedModuleTableError,
    UnsupportedVersionError,
    ValidationError,
    ValidationFailedError,
    builder,
    decode,
    encode,
)

PROGRAM_HEADER = (
    b"DRCOV VERSION: 2\n"
    b"DRCOV FLAVOR: drcov\n"
    b"Module Table: version 2, count 1\n"
    b"Columns: id, base, end, entry, path\n"
    b"0, 0x400000, 0x450000, 0x0, /bin/program\n"
)


def entry(start, size, module_id):
    return struct.pack("<IHH", start, size, module_id)


class TestEndToEnd:
    """test decoding complete files"""

    def test_single_module_single_block(self):
        """test the canonical one module, one block file"""
        raw = PROGRAM_HEADER + b"BB Table: 1 bbs\n" + entry(0x1000, 32, 0)

        coverage = decode(raw)

        assert coverage.header.flavor == "drcov"
        assert coverage.module_version is ModuleTableVersion.V2
        assert coverage.modules == (ModuleEntryV2(0, 0x400000, 0x450000, "/bin/program"),)
        assert coverage.basic_blocks == (BasicBlock(start=0x1000, size=32, module_id=0),)
        assert encode(coverage) == raw

    def test_builder_produces_same_bytes(self):
        """test a built document encodes to the canonical file"""
        coverage = (
            builder()
            .add_module("/bin/program", 0x400000, 0x450000)
            .add_coverage(module_id=0, offset=0x1000, size=32)
            .build()
        )

        assert encode(coverage) == PROGRAM_HEADER + b"BB Table: 1 bbs\n" + entry(0x1000, 32, 0)

    @pytest.mark.parametrize(
        "table",
        [
            b"Module Table: 2\n"
            b"0, 0x400000, 0x500000, 0x401000, /bin/test\n"
            b"1, 0x500000, 0x600000, 0x501000, /lib/test.so\n",
            b"Module Table: version 2, count 1\n"
            b"Columns: id, base, end, entry, checksum, timestamp, path\n"
            b"0, 0x400000, 0x500000, 0x401000, 0x12345678, 0x87654321, /bin/test\n",
            b"Module Table: version 3, count 2\n"
            b"Columns: id, containing_id, start, end, entry, path\n"
            b"0, -1, 0x400000, 0x500000, 0x401000, /bin/main\n"
            b"1, 0, 0x450000, 0x460000, 0x451000, /bin/main.dll\n",
            b"Module Table: version 4, count 1\n"
            b"Columns: id, containing_id, start, end, entry, offset, checksum, timestamp, path\n"
            b"0, -1, 0x400000, 0x500000, 0x401000, 0x1000, 0x12345678, 0x87654321, /usr/bin/test\n",
            b"Module Table: version 4, count 1\n"
            b"Columns: id, containing_id, start, end, entry, offset, path\n"
            b"0, -1, 0x400000, 0x500000, 0x401000, 0x0, /usr/bin/test\n",
            # DynamoRIO rows: %3u ids, 0x%016lx addresses, 0x%08x checksums
            b"Module Table: version 2, count 2\n"
            b"Columns: id, base, end, entry, checksum, timestamp, path\n"
            b"  0, 0x0000000140000000, 0x0000000140025000, 0x0000000140001000, "
            b"0x00030d2f, 0x5f3c1a20, C:\\app\\main.exe\n"
            b"  1, 0x00007ffe1c3e0000, 0x00007ffe1c5e8000, 0x0000000000000000, "
            b"0x001f8e35, 0x0a1b2c3d, C:\\Windows\\System32\\ntdll.dll\n",
            b"Module Table: version 3, count 2\n"
            b"Columns: id, containing_id, start, end, entry, path\n"
            b"  0,   0, 0x0000000000400000, 0x0000000000450000, 0x0000000000401000, /bin/main\n"
            b"  1,  -1, 0x00007f0000000000, 0x00007f0000100000, 0x0000000000000000, /lib/x.so\n",
            b"Module Table: 1\n"
            b"  0, 0x0000000000400000, 0x0000000000450000, 0x0000000000401000, /bin/test\n",
            b"Module Table: version 4, count 1\n"
            b"Columns: id, containing_id, start, end, entry, offset, path\n"
            b"0, -1, 0x0000000000400000, 0x0000000000450000, 0x0000000000401000, 0x0, /bin/test\n",
        ],
    )
    def test_byte_stability(self, table):
        """test encode(decode(bytes)) == bytes for padded and unpadded tables"""
        raw = (
            b"DRCOV VERSION: 2\nDRCOV FLAVOR: stable\n"
            + table
            + b"BB Table: 3 bbs\n"
            + entry(0x10, 4, 0)
            + entry(0x20, 8, 0)
            + entry(0x10, 4, 0)
        )

        assert encode(decode(raw)) == raw

    @pytest.mark.parametrize("count", [0, 2])
    def test_double_spaced_bb_header_is_kept(self, count):
        """test the two-space 'BB Table:  N bbs' form round-trips"""
        raw = PROGRAM_HEADER + b"BB Table:  %d bbs\n" % count + entry(0x1000, 32, 0) * count

        coverage = decode(raw)

        assert len(coverage.basic_blocks) == count
        assert encode(coverage) == raw

    def test_padded_document_equals_plain_document(self):
        """test text padding does not affect document equality"""
        padded = (
            b"DRCOV VERSION: 2\nDRCOV FLAVOR: drcov\n"
            b"Module Table: version 2, count 1\n"
            b"Columns: id, base, end, entry, path\n"
            b"  0, 0x0000000000400000, 0x0000000000450000, 0x0000000000000000, /bin/program\n"
            b"BB Table:  1 bbs\n" + entry(0x1000, 32, 0)
        )
        plain = PROGRAM_HEADER + b"BB Table: 1 bbs\n" + entry(0x1000, 32, 0)

        assert decode(padded) == decode(plain)
        assert encode(decode(plain)) == plain

    def test_binary_payload_may_contain_newlines(self):
        """test block entries are not split on text line breaks"""
        raw = PROGRAM_HEADER + b"BB Table: 2 bbs\n" + entry(0x0A0A, 0x0A, 0) + entry(0x0A, 10, 0)

        coverage = decode(raw)

        assert coverage.basic_blocks == (BasicBlock(0x0A0A, 10, 0), BasicBlock(0x0A, 10, 0))
        assert encode(coverage) == raw

    def test_accepts_bytearray_and_memoryview(self):
        """test any bytes-like input is accepted"""
        raw = PROGRAM_HEADER + b"BB Table: 0 bbs\n"

        assert decode(bytearray(raw)) == decode(memoryview(raw)) == decode(raw)


class TestHeaderErrors:
    """test errors in the file header"""

    def test_unsupported_version(self):
        """test a file version other than 2"""
        with pytest.raises(UnsupportedVersionError) as excinfo:
            decode(b"DRCOV VERSION: 99\nDRCOV FLAVOR: test\n")

        assert excinfo.value.version == 99
        assert excinfo.value.line == 1

    @pytest.mark.parametrize(
        "raw",
        [
            b"",
            b"INVALID HEADER\n",
            b"DRCOV VERSION: two\n",
            b"DRCOV VERSION:\n",
            b"DRCOV VERSION: 02\n",
            b"DRCOV VERSION: +2\n",
            b"DRCOV VERSION: 2 \n",
        ],
    )
    def test_malformed_version_line(self, raw):
        """test missing or unparseable version lines"""
        with pytest.raises(MalformedHeaderError):
            decode(raw)

    @pytest.mark.parametrize(
        "raw",
        [
            b"DRCOV VERSION: 2\n",
            b"DRCOV VERSION: 2\nModule Table: version 2, count 0\n",
        ],
    )
    def test_missing_flavor(self, raw):
        """test a file without a flavor line"""
        with pytest.raises(MissingFlavorError) as excinfo:
            decode(raw)

        assert excinfo.value.line == 2

    def test_empty_flavor(self):
        """test an empty flavor fails validation"""
        raw = (
            b"DRCOV VERSION: 2\nDRCOV FLAVOR: \n"
            b"Module Table: version 2, count 0\n"
            b"Columns: id, base, end, entry, path\n"
            b"BB Table: 0 bbs\n"
        )
        with pytest.raises(ValidationFailedError):
            decode(raw)

    def test_missing_module_table(self):
        """test a file that ends after the header"""
        with pytest.raises(MalformedHeaderError):
            decode(b"DRCOV VERSION: 2\nDRCOV FLAVOR: test\n")

    def test_missing_bb_table(self):
        """test a file that ends after the module table"""
        with pytest.raises(MalformedHeaderError) as excinfo:
            decode(PROGRAM_HEADER)

        assert "BB table" in str(excinfo.value)


class TestModuleTableErrors:
    """test errors in the module table"""

    def test_malformed_row(self):
        """test a module row with the wrong number of columns"""
        raw = (
            b"DRCOV VERSION: 2\nDRCOV FLAVOR: test\n"
            b"Module Table: version 2, count 1\n"
            b"Columns: id, base, end, entry, path\n"
            b"0, 0x400000, 0x450000, /bin/program\n"
            b"BB Table: 0 bbs\n"
        )
        with pytest.raises(MalformedModuleRowError) as excinfo:
            decode(raw)

        assert excinfo.value.line == 5

    def test_truncated_table(self):
        """test a module table with fewer rows than declared"""
        raw = (
            b"DRCOV VERSION: 2\nDRCOV FLAVOR: test\n"
            b"Module Table: version 2, count 3\n"
            b"Columns: id, base, end, entry, path\n"
            b"0, 0x400000, 0x450000, 0x0, /bin/program\n"
            b"BB Table: 0 bbs\n"
        )
        with pytest.raises(TruncatedModuleTableError):
            decode(raw)

    def test_unsupported_module_table_version(self):
        """test a module table version outside 2-4"""
        with pytest.raises(UnsupportedVersionError) as excinfo:
            decode(b"DRCOV VERSION: 2\nDRCOV FLAVOR: test\nModule Table: version 99, count 0\n")

        assert excinfo.value.line == 3

    def test_reordered_columns(self):
        """test column lines must match the version's layout exactly"""
        raw = (
            b"DRCOV VERSION: 2\nDRCOV FLAVOR: test\n"
            b"Module Table: version 4, count 1\n"
            b"Columns: path, id, offset, containing_id, start, end, entry\n"
            b"/bin/reordered, 0, 0x1000, -1, 0x400000, 0x500000, 0x401000\n"
            b"BB Table: 0 bbs\n"
        )
        with pytest.raises(MalformedHeaderError) as excinfo:
            decode(raw)

        assert excinfo.value.line == 4

    @pytest.mark.parametrize(
        "row",
        [
            b"+0, 0x400000, 0x450000, 0x0, /bin/program",
            b"0, 0x4_00000, 0x450000, 0x0, /bin/program",
            b"0, 0X400000, 0x450000, 0x0, /bin/program",
            b"0, 0x400000, 0x450000, 0x0,/bin/program",
            b"0, -0x400000, 0x450000, 0x0, /bin/program",
        ],
    )
    def test_unreproducible_row_spelling(self, row):
        """test rows that decode() could not write back unchanged"""
        raw = (
            b"DRCOV VERSION: 2\nDRCOV FLAVOR: test\n"
            b"Module Table: 1\n" + row + b"\n"
            b"BB Table: 0 bbs\n"
        )
        with pytest.raises(MalformedModuleRowError) as excinfo:
            decode(raw)

        assert excinfo.value.line == 4

    def test_windows_columns_on_empty_table(self):
        """test checksum columns cannot be kept without any module"""
        raw = (
            b"DRCOV VERSION: 2\nDRCOV FLAVOR: test\n"
            b"Module Table: version 2, count 0\n"
            b"Columns: id, base, end, entry, checksum, timestamp, path\n"
            b"BB Table: 0 bbs\n"
        )
        with pytest.raises(MalformedHeaderError) as excinfo:
            decode(raw)

        assert excinfo.value.line == 4

    def test_non_dense_module_ids(self):
        """test a module row whose id does not match its position"""
        raw = (
            b"DRCOV VERSION: 2\nDRCOV FLAVOR: test\n"
            b"Module Table: 1\n"
            b"1, 0x400000, 0x450000, 0x0, /bin/program\n"
            b"BB Table: 0 bbs\n"
        )
        with pytest.raises(ValidationFailedError) as excinfo:
            decode(raw)

        assert excinfo.value.module_id == 1
        assert excinfo.value.index == 0

    def test_end_not_above_base(self):
        """test a module whose end is not above its base"""
        raw = (
            b"DRCOV VERSION: 2\nDRCOV FLAVOR: test\n"
            b"Module Table: 1\n"
            b"0, 0x450000, 0x400000, 0x0, /bin/program\n"
            b"BB Table: 0 bbs\n"
        )
        with pytest.raises(ValidationFailedError) as excinfo:
            decode(raw)

        assert excinfo.value.module_id == 0


class TestCoverageErrors:
    """test errors in the basic block table"""

    def test_truncated_coverage(self):
        """test a table declaring two blocks but holding one"""
        raw = PROGRAM_HEADER + b"BB Table: 2 bbs\n" + entry(0x1000, 32, 0)

        with pytest.raises(TruncatedCoverageDataError) as excinfo:
            decode(raw)

        assert excinfo.value.offset == len(raw)

    def test_unterminated_bb_header(self):
        """test a file ending in a BB table header without a newline"""
        with pytest.raises(MalformedHeaderError) as excinfo:
            decode(PROGRAM_HEADER + b"BB Table: 0 bbs")

        assert excinfo.value.line == 6

    def test_partial_entry(self):
        """test a table ending mid-entry"""
        raw = PROGRAM_HEADER + b"BB Table: 1 bbs\n" + entry(0x1000, 32, 0)[:5]

        with pytest.raises(TruncatedCoverageDataError):
            decode(raw)

    def test_trailing_data(self):
        """test bytes after the declared blocks"""
        body = PROGRAM_HEADER + b"BB Table: 1 bbs\n"
        raw = body + entry(0x1000, 32, 0) + b"\x00"

        with pytest.raises(TrailingDataError) as excinfo:
            decode(raw)

        assert excinfo.value.offset == len(body) + 8

    def test_trailing_table_is_rejected(self):
        """test extension tables after the blocks count as trailing data"""
        raw = (
            PROGRAM_HEADER
            + b"BB Table: 1 bbs\n"
            + entry(0x1000, 32, 0)
            + b"Hit Count Table: version 1, count 1\n"
            + struct.pack("<I", 5)
        )
        with pytest.raises(TrailingDataError):
            decode(raw)

    def test_dangling_module_reference(self):
        """test a block referencing a module that does not exist"""
        raw = (
            PROGRAM_HEADER
            + b"BB Table: 2 bbs\n"
            + entry(0x1000, 32, 0)
            + entry(0x2000, 16, 3)
        )
        with pytest.raises(ValidationFailedError) as excinfo:
            decode(raw)

        assert excinfo.value.module_id == 3
        assert excinfo.value.index == 1
        assert isinstance(excinfo.value.__cause__, ValidationError)

    def test_zero_sized_block(self):
        """test a block with size zero"""
        raw = PROGRAM_HEADER + b"BB Table: 1 bbs\n" + entry(0x1000, 0, 0)

        with pytest.raises(ValidationFailedError):
            decode(raw)

    def test_all_format_errors_share_a_base(self):
        """test every decode failure is a FormatError"""
        for raw in (b"", PROGRAM_HEADER, PROGRAM_HEADER + b"BB Table: 1 bbs\n"):
            with pytest.raises(FormatError):
                decode(raw)
