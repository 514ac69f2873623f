"""
Tests for the Intel-HEX Record Layer
====================================

This module tests:
- Record checksum calculation and verification
- HexRecord construction, formatting and read-back
- RecordEncoder bank handling
- CommandSequence shape and reassembly
- The file chunk source
"""

import random

import pytest

from hexflash.errors import EncoderError, RecordError, SourceReadError
from hexflash.ihex import (
    BANK_SIZE,
    DEFAULT_CHUNK_SIZE,
    CommandSequence,
    HexRecord,
    RecordEncoder,
    RecordType,
    checksum,
    encode_bytes,
    encode_chunks,
    encode_file,
    read_chunks,
    verify_checksum,
)


# =============================================================================
# Helpers
# =============================================================================

def record_byte_sum(record: HexRecord) -> int:
    """Sum of every record byte including the checksum."""
    total = record.length + (record.address >> 8) + (record.address & 0xFF)
    total += int(record.record_type) + sum(record.payload) + record.checksum
    return total % 256


def assert_well_formed(sequence: CommandSequence, base: int, data: bytes) -> None:
    """Check shape, bank handling and reassembly of an encoded image."""
    records = list(sequence)
    assert records[0].record_type == RecordType.EXTENDED_ADDRESS
    assert records[0].bank == base >> 16
    assert records[-1].record_type == RecordType.END_OF_FILE
    assert sum(1 for r in records if r.record_type == RecordType.END_OF_FILE) == 1

    bank = None
    expected_address = base
    rebuilt = bytearray()
    for record in records:
        assert record_byte_sum(record) == 0
        if record.record_type == RecordType.EXTENDED_ADDRESS:
            bank = record.bank
        elif record.record_type == RecordType.DATA:
            # Never wraps past the end of its bank
            assert record.address + record.length <= BANK_SIZE
            # The bank in force must be the bank of the data's real address
            assert (bank << 16) | record.address == expected_address
            expected_address += record.length
            rebuilt.extend(record.payload)

    assert bytes(rebuilt) == data


# =============================================================================
# Checksum Tests
# =============================================================================

class TestChecksum:
    """Tests for the two's-complement record checksum."""

    def test_data_record_checksum(self):
        """Three data bytes at 0x0000 give checksum F7."""
        assert checksum(3, 0x0000, 0x00, bytes([0x01, 0x02, 0x03])) == 0xF7

    def test_extended_address_checksum(self):
        """Bank 0x1234 gives checksum B4."""
        assert checksum(2, 0x0000, 0x04, bytes([0x12, 0x34])) == 0xB4

    def test_end_of_file_checksum(self):
        assert checksum(0, 0x0000, 0x01, b"") == 0xFF

    def test_checksum_zero_sum(self):
        """A record whose bytes already sum to 0 has checksum 0."""
        assert checksum(1, 0x0000, 0x00, bytes([0xFF])) == 0x00

    def test_checksum_uses_both_address_bytes(self):
        assert checksum(1, 0x1234, 0x00, b"\x00") == (-(1 + 0x12 + 0x34)) & 0xFF

    def test_checksum_wraps_large_sums(self):
        """Sums far above 255 reduce modulo 256."""
        payload = bytes([0xFF] * 255)
        expected = (-(255 + 0xFF + 0xFF + 255 * 0xFF)) & 0xFF
        assert checksum(255, 0xFFFF, 0x00, payload) == expected

    def test_checksum_length_mismatch(self):
        with pytest.raises(RecordError, match="mismatch"):
            checksum(2, 0x0000, 0x00, b"\x01")

    def test_checksum_too_long(self):
        with pytest.raises(RecordError, match="too long"):
            checksum(256, 0x0000, 0x00, bytes(256))

    def test_verify_checksum(self):
        payload = bytes([0x01, 0x02, 0x03])
        assert verify_checksum(3, 0x0000, 0x00, payload, 0xF7)
        assert not verify_checksum(3, 0x0000, 0x00, payload, 0xF6)


# =============================================================================
# HexRecord Tests
# =============================================================================

class TestHexRecord:
    """Tests for HexRecord construction and formatting."""

    def test_record_type_values(self):
        assert RecordType.DATA == 0x00
        assert RecordType.END_OF_FILE == 0x01
        assert RecordType.EXTENDED_ADDRESS == 0x04

    def test_data_record_line(self):
        record = HexRecord.data(0x0000, bytes([0x01, 0x02, 0x03]))
        assert record.to_line() == ":03000000010203F7"
        assert record.length == 3
        assert record.checksum == 0xF7

    def test_extended_address_line(self):
        record = HexRecord.extended_address(0x1234)
        assert record.to_line() == ":020000041234B4"
        assert record.address == 0
        assert record.bank == 0x1234

    def test_end_of_file_line(self):
        assert HexRecord.end_of_file().to_line() == ":00000001FF"

    def test_line_is_upper_case(self):
        record = HexRecord.data(0xABCD, bytes([0xAB, 0xCD, 0xEF]))
        line = record.to_line()
        assert line == line.upper()
        assert line.startswith(":03ABCD00ABCDEF")

    def test_to_bytes_is_ascii_line(self):
        record = HexRecord.end_of_file()
        assert record.to_bytes() == b":00000001FF"

    def test_str_is_line(self):
        record = HexRecord.extended_address(1)
        assert str(record) == ":020000040001F9"

    def test_payload_normalised_to_bytes(self):
        record = HexRecord(RecordType.DATA, 0x0010, bytearray([1, 2]))
        assert isinstance(record.payload, bytes)

    def test_record_type_from_int(self):
        record = HexRecord(0x00, 0x0000, b"\x01")
        assert record.record_type is RecordType.DATA

    def test_record_is_immutable(self):
        record = HexRecord.data(0x0000, b"\x01")
        with pytest.raises(AttributeError):
            record.address = 5

    def test_payload_too_large(self):
        with pytest.raises(RecordError, match="too large"):
            HexRecord.data(0x0000, bytes(256))

    def test_max_payload_allowed(self):
        record = HexRecord.data(0x0000, bytes(255))
        assert record.to_line().startswith(":FF000000")

    def test_address_out_of_range(self):
        with pytest.raises(RecordError):
            HexRecord.data(0x10000, b"\x01")

    def test_data_record_cannot_cross_bank(self):
        with pytest.raises(RecordError, match="bank boundary"):
            HexRecord.data(0xFFFF, b"\x01\x02")

    def test_data_record_may_end_on_bank(self):
        record = HexRecord.data(0xFFFF, b"\x01")
        assert record.address + record.length == BANK_SIZE

    def test_unsupported_record_type(self):
        with pytest.raises(RecordError, match="Unsupported"):
            HexRecord(0x02, 0x0000, b"\x10\x00")

    def test_bad_extended_address_payload(self):
        with pytest.raises(RecordError):
            HexRecord(RecordType.EXTENDED_ADDRESS, 0, b"\x01")

    def test_bank_out_of_range(self):
        with pytest.raises(RecordError):
            HexRecord.extended_address(0x10000)

    def test_non_empty_end_of_file(self):
        with pytest.raises(RecordError):
            HexRecord(RecordType.END_OF_FILE, 0, b"\x00")

    def test_data_record_has_no_bank(self):
        with pytest.raises(RecordError):
            HexRecord.data(0, b"\x00").bank


class TestReadBack:
    """Tests for HexRecord.from_line on hexflash's own output."""

    def test_from_line_data(self):
        record = HexRecord.from_line(":03000000010203F7")
        assert record == HexRecord.data(0x0000, bytes([1, 2, 3]))

    def test_from_line_lower_case(self):
        record = HexRecord.from_line(":020000041234b4")
        assert record.bank == 0x1234

    def test_from_line_trailing_newline(self):
        assert HexRecord.from_line(":00000001FF\r\n") == HexRecord.end_of_file()

    def test_from_line_bad_checksum(self):
        with pytest.raises(RecordError, match="Checksum"):
            HexRecord.from_line(":03000000010203F6")

    def test_from_line_missing_start_code(self):
        with pytest.raises(RecordError, match="start"):
            HexRecord.from_line("03000000010203F7")

    def test_from_line_bad_digits(self):
        with pytest.raises(RecordError, match="Invalid hex"):
            HexRecord.from_line(":0300000001020ZF7")

    def test_from_line_length_mismatch(self):
        with pytest.raises(RecordError, match="length mismatch"):
            HexRecord.from_line(":04000000010203F6")

    def test_from_line_rejects_other_types(self):
        """Extended segment address (02) is not a supported record type."""
        with pytest.raises(RecordError, match="Unsupported"):
            HexRecord.from_line(":020000021000EC")


# =============================================================================
# RecordEncoder Tests
# =============================================================================

class TestRecordEncoder:
    """Tests for incremental encoding and bank handling."""

    def test_begin_emits_bank_record(self):
        sequence = RecordEncoder.begin(0x0003_1234).finish()
        assert sequence.lines() == [":020000040003F7", ":00000001FF"]

    def test_single_chunk(self):
        encoder = RecordEncoder.begin(0)
        encoder.push_chunk(bytes([0x01, 0x02, 0x03]))
        sequence = encoder.finish()
        assert sequence.lines() == [
            ":020000040000FA",
            ":03000000010203F7",
            ":00000001FF",
        ]

    def test_offset_advances(self):
        encoder = RecordEncoder.begin(0x100)
        encoder.push_chunk(bytes(10))
        encoder.push_chunk(bytes(20))
        assert encoder.current_offset == 0x100 + 30
        assert encoder.bytes_encoded == 30
        addresses = [r.address for r in encoder.finish().data_records()]
        assert addresses == [0x100, 0x10A]

    def test_straddling_chunk_is_split(self):
        """A chunk crossing 64 KiB becomes data, bank, data."""
        encoder = RecordEncoder.begin(0x0001_FFFE)
        encoder.push_chunk(bytes([0xA0, 0xA1, 0xA2, 0xA3]))
        records = list(encoder.finish())

        assert [r.record_type for r in records] == [
            RecordType.EXTENDED_ADDRESS,
            RecordType.DATA,
            RecordType.EXTENDED_ADDRESS,
            RecordType.DATA,
            RecordType.END_OF_FILE,
        ]
        assert records[0].bank == 0x0001
        assert (records[1].address, records[1].payload) == (0xFFFE, b"\xA0\xA1")
        assert records[2].bank == 0x0002
        assert (records[3].address, records[3].payload) == (0x0000, b"\xA2\xA3")

    def test_chunk_ending_on_boundary_defers_bank(self):
        """No bank record after a chunk that ends exactly at 0xFFFF."""
        encoder = RecordEncoder.begin(0xFF01)
        encoder.push_chunk(bytes(255))
        assert encoder.current_offset == 0x10000

        sequence = encoder.finish()
        assert [r.record_type for r in sequence] == [
            RecordType.EXTENDED_ADDRESS,
            RecordType.DATA,
            RecordType.END_OF_FILE,
        ]

    def test_deferred_bank_emitted_by_next_chunk(self):
        encoder = RecordEncoder.begin(0xFF01)
        encoder.push_chunk(bytes(255))
        encoder.push_chunk(b"\x42")
        records = list(encoder.finish())

        assert records[2].record_type == RecordType.EXTENDED_ADDRESS
        assert records[2].bank == 0x0001
        assert records[3] == HexRecord.data(0x0000, b"\x42")

    def test_image_crossing_first_bank(self):
        """0x10003 zero bytes from 0 switch to bank 1 before the next data."""
        data = bytes(0x10003)
        sequence = encode_bytes(data, base_address=0)
        records = list(sequence)

        bank_records = [
            (i, r) for i, r in enumerate(records)
            if r.record_type == RecordType.EXTENDED_ADDRESS
        ]
        assert [r.bank for _, r in bank_records] == [0x0000, 0x0001]

        index = bank_records[1][0]
        before, after = records[index - 1], records[index + 1]
        assert (before.address, before.length) == (0xFFFF, 1)
        assert (after.address, after.length) == (0x0000, 3)
        assert len(records) == 1 + 257 + 3 + 1
        assert_well_formed(sequence, 0, data)

    def test_empty_chunk_is_ignored(self):
        encoder = RecordEncoder.begin(0)
        encoder.push_chunk(b"")
        assert len(encoder.finish()) == 2

    def test_chunk_too_large(self):
        encoder = RecordEncoder.begin(0)
        with pytest.raises(RecordError, match="Chunk too large"):
            encoder.push_chunk(bytes(256))

    def test_base_address_out_of_range(self):
        with pytest.raises(RecordError):
            RecordEncoder.begin(0x1_0000_0000)
        with pytest.raises(RecordError):
            RecordEncoder.begin(-1)

    def test_image_fills_address_space(self):
        encoder = RecordEncoder.begin(0xFFFF_FF00)
        encoder.push_chunk(bytes(255))
        encoder.push_chunk(b"\x01")
        assert encoder.current_offset == 0x1_0000_0000
        encoder.finish()

    def test_image_past_address_space(self):
        encoder = RecordEncoder.begin(0xFFFF_FFFF)
        with pytest.raises(RecordError, match="past"):
            encoder.push_chunk(b"\x01\x02")

    def test_finish_consumes_encoder(self):
        encoder = RecordEncoder.begin(0)
        encoder.finish()
        with pytest.raises(EncoderError):
            encoder.push_chunk(b"\x01")
        with pytest.raises(EncoderError):
            encoder.finish()

    def test_progress_callback(self):
        seen = []
        encode_chunks([b"\x00" * 10, b"\x00" * 5], progress=seen.append)
        assert seen == [10, 15]


class TestRoundTrip:
    """Reassembling data records reproduces the image."""

    @pytest.mark.parametrize("base", [
        0x0000_0000,
        0x0000_FF00,
        0x0000_FFFF,
        0x0800_0000,
        0x1234_FFF0,
        0xFFFE_FF80,
    ])
    def test_random_images(self, base):
        rng = random.Random(base)
        for length in (0, 1, 254, 255, 256, 1000, 0x10001):
            data = rng.randbytes(length)
            sequence = encode_bytes(data, base_address=base)
            assert_well_formed(sequence, base, data)

    def test_odd_chunk_sizes(self):
        rng = random.Random(7)
        data = rng.randbytes(0x20100)
        sizes = [1, 17, 128, 200, 255]
        chunks = []
        pos = 0
        while pos < len(data):
            size = rng.choice(sizes)
            chunks.append(data[pos:pos + size])
            pos += size

        sequence = encode_chunks(chunks, base_address=0xFFF0)
        assert_well_formed(sequence, 0xFFF0, data)

    def test_segments_are_absolute(self):
        sequence = encode_bytes(bytes(300), base_address=0x0002_0000)
        segments = list(sequence.segments())
        assert segments[0][0] == 0x0002_0000
        assert segments[1][0] == 0x0002_0000 + DEFAULT_CHUNK_SIZE


# =============================================================================
# CommandSequence Tests
# =============================================================================

class TestCommandSequence:
    """Tests for sequence invariants and helpers."""

    def test_valid_sequence(self):
        sequence = CommandSequence([
            HexRecord.extended_address(0),
            HexRecord.data(0, b"\x01"),
            HexRecord.end_of_file(),
        ])
        assert len(sequence) == 3
        assert sequence.payload_size == 1
        assert sequence[1].record_type == RecordType.DATA

    def test_empty_sequence(self):
        with pytest.raises(RecordError, match="empty"):
            CommandSequence([])

    def test_must_start_with_bank(self):
        with pytest.raises(RecordError, match="start"):
            CommandSequence([HexRecord.data(0, b"\x01"), HexRecord.end_of_file()])

    def test_must_end_with_eof(self):
        with pytest.raises(RecordError, match="end"):
            CommandSequence([HexRecord.extended_address(0), HexRecord.data(0, b"\x01")])

    def test_single_eof(self):
        with pytest.raises(RecordError, match="2 end of file"):
            CommandSequence([
                HexRecord.extended_address(0),
                HexRecord.end_of_file(),
                HexRecord.end_of_file(),
            ])

    def test_records_are_a_tuple(self):
        sequence = encode_bytes(b"\x01\x02")
        assert isinstance(sequence.records, tuple)

    def test_to_text(self):
        text = encode_bytes(bytes([0x01, 0x02, 0x03])).to_text()
        assert text == ":020000040000FA\n:03000000010203F7\n:00000001FF\n"

    def test_text_reads_back(self):
        sequence = encode_bytes(bytes(range(256)) * 3, base_address=0xFF80)
        parsed = [HexRecord.from_line(line) for line in sequence.to_text().splitlines()]
        assert parsed == list(sequence)


# =============================================================================
# Chunk Source Tests
# =============================================================================

class TestChunkSource:
    """Tests for reading binary files as chunks."""

    def test_read_chunks(self, tmp_path):
        path = tmp_path / "image.bin"
        path.write_bytes(bytes(600))
        sizes = [len(c) for c in read_chunks(path)]
        assert sizes == [255, 255, 90]

    def test_read_chunks_custom_size(self, tmp_path):
        path = tmp_path / "image.bin"
        path.write_bytes(bytes(range(10)))
        assert list(read_chunks(path, chunk_size=4)) == [
            bytes([0, 1, 2, 3]),
            bytes([4, 5, 6, 7]),
            bytes([8, 9]),
        ]

    def test_read_chunks_empty_file(self, tmp_path):
        path = tmp_path / "empty.bin"
        path.write_bytes(b"")
        assert list(read_chunks(path)) == []

    def test_read_chunks_bad_size(self, tmp_path):
        path = tmp_path / "image.bin"
        path.write_bytes(b"\x00")
        with pytest.raises(ValueError):
            list(read_chunks(path, chunk_size=256))
        with pytest.raises(ValueError):
            list(read_chunks(path, chunk_size=0))

    def test_missing_file(self, tmp_path):
        with pytest.raises(SourceReadError) as exc_info:
            list(read_chunks(tmp_path / "missing.bin"))
        assert isinstance(exc_info.value.__cause__, OSError)

    def test_encode_file(self, tmp_path):
        data = bytes(range(256)) * 4
        path = tmp_path / "image.bin"
        path.write_bytes(data)

        sequence = encode_file(path, base_address=0x0800_0000)
        assert sequence.payload_size == len(data)
        assert_well_formed(sequence, 0x0800_0000, data)

    def test_encode_empty_file(self, tmp_path):
        path = tmp_path / "empty.bin"
        path.write_bytes(b"")
        assert encode_file(path).lines() == [":020000040000FA", ":00000001FF"]
