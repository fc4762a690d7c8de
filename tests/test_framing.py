"""
Tests for the Frame Codec
=========================

This module tests the Alti-2 framing components:
- Additive checksum
- Frame encoding in both wire layouts
- Incremental decoding (truncation, corruption, garbage)
- Stream reassembly and resynchronization

Test Categories
---------------
1. Checksum Tests: Verify the 8-bit sum against known values
2. Encode Tests: Verify wire output against captured traffic
3. Decode Tests: Verify partial and invalid input handling
4. Reader Tests: Verify reassembly across arbitrary chunking
"""

import random

import pytest

from alti2_sdk.comms.checksum import (
    CHECKSUM_INITIAL,
    checksum,
    verify_checksum,
    verify_trailing_checksum,
)
from alti2_sdk.comms.framing import (
    DEVICE_LAYOUT,
    HOST_LAYOUT,
    MAX_PAYLOAD_SIZE,
    Frame,
    FrameCodec,
    FrameLayout,
    FrameReader,
    Invalid,
    MessageKind,
    NeedMoreData,
)
from alti2_sdk.errors import PayloadTooLarge

from conftest import TYPE0_BINARY, TYPE0_WIRE

# Deterministic garbage: no hex digits, no separators
GARBAGE_ALPHABET = b"\x00\xff\x7e\x55\x13"


def garbage(count: int) -> bytes:
    return bytes(GARBAGE_ALPHABET[i % len(GARBAGE_ALPHABET)] for i in range(count))


# Garbage that looks like frame fragments
LOOKALIKE_ALPHABET = b"0123456789ABCDEF \r\n\x00\xff"


# =============================================================================
# Checksum Tests
# =============================================================================

class TestChecksum:
    """Tests for the additive checksum."""

    def test_initial_value(self):
        assert CHECKSUM_INITIAL == 0x00

    def test_get_info_checksum(self):
        """GET_INFO has no payload, so the checksum is the kind byte."""
        assert checksum(bytes([0x80])) == 0x80

    def test_wraps_modulo_256(self):
        assert checksum(bytes([0xFF, 0x02])) == 0x01

    def test_empty_data(self):
        assert checksum(b"") == 0x00

    def test_incremental(self):
        """Summing in two parts matches summing at once."""
        data = bytes(range(200))
        assert checksum(data[100:], checksum(data[:100])) == checksum(data)

    def test_type0_reference_frame(self):
        """The captured Type0 frame carries a valid checksum."""
        assert checksum(TYPE0_BINARY[1:-1]) == 0x38
        assert verify_checksum(TYPE0_BINARY[1:-1], TYPE0_BINARY[-1])

    def test_verify_trailing(self):
        assert verify_trailing_checksum(bytes([0x01, 0x02, 0x03]))
        assert not verify_trailing_checksum(bytes([0x01, 0x02, 0x04]))
        assert not verify_trailing_checksum(b"\x00")


# =============================================================================
# Encode Tests
# =============================================================================

class TestEncode:
    """Tests for FrameCodec.encode()."""

    def test_get_info_host_layout(self):
        """The handshake request is the captured '018080'."""
        assert FrameCodec(HOST_LAYOUT).encode(MessageKind.GET_INFO) == b"018080"

    def test_device_layout(self):
        wire = FrameCodec(DEVICE_LAYOUT).encode(MessageKind.GET_INFO)
        assert wire == b"01 80 80 \r\n"

    def test_payload_is_uppercase_hex(self):
        wire = FrameCodec(HOST_LAYOUT).encode(0x82, bytes([0xAB, 0x0C]))
        assert wire == b"0382AB0C39"

    def test_type0_render_matches_capture(self):
        assert TYPE0_WIRE.startswith(b"1E 00 05 10 03 59 ")
        assert TYPE0_WIRE.endswith(b"00 00 38 \r\n")
        assert len(TYPE0_WIRE) == DEVICE_LAYOUT.wire_length(0x1E)

    def test_maximum_payload(self):
        wire = FrameCodec(HOST_LAYOUT).encode(0x02, bytes(MAX_PAYLOAD_SIZE))
        assert wire[:2] == b"FF"

    def test_payload_too_large(self):
        with pytest.raises(PayloadTooLarge) as exc_info:
            FrameCodec(HOST_LAYOUT).encode(0x02, bytes(MAX_PAYLOAD_SIZE + 1))
        assert exc_info.value.size == MAX_PAYLOAD_SIZE + 1
        assert exc_info.value.maximum == MAX_PAYLOAD_SIZE

    def test_invalid_kind(self):
        with pytest.raises(ValueError):
            FrameCodec(HOST_LAYOUT).encode(0x100)

    def test_make_sets_tag_and_raw(self):
        frame = FrameCodec(HOST_LAYOUT).make(MessageKind.READ_LOGBOOK, bytes([0x05, 0x00]))
        assert frame.tag == bytes([0x05, 0x00])
        assert frame.raw == b"0382050087"
        assert frame.known


# =============================================================================
# Decode Tests
# =============================================================================

class TestDecode:
    """Tests for FrameCodec.decode()."""

    @pytest.mark.parametrize("layout", [HOST_LAYOUT, DEVICE_LAYOUT], ids=lambda l: l.name)
    @pytest.mark.parametrize("size", [0, 1, 2, 7, 64, 200, MAX_PAYLOAD_SIZE])
    def test_round_trip(self, layout, size):
        """decode(encode(kind, payload)) reproduces kind and payload."""
        codec = FrameCodec(layout)
        payload = bytes((i * 37 + 11) & 0xFF for i in range(size))
        result = codec.decode(codec.encode(0x02, payload))
        assert isinstance(result, Frame)
        assert result.kind == 0x02
        assert result.payload == payload

    def test_type0_reference(self):
        frame = FrameCodec(DEVICE_LAYOUT).decode(TYPE0_WIRE)
        assert isinstance(frame, Frame)
        assert frame.kind == MessageKind.TYPE0
        assert frame.binary == TYPE0_BINARY
        assert frame.checksum == 0x38
        assert frame.raw == TYPE0_WIRE

    def test_lowercase_hex_accepted(self):
        frame = FrameCodec(DEVICE_LAYOUT).decode(b"01 7f 7f \r\n")
        assert isinstance(frame, Frame)
        assert frame.kind == MessageKind.DEVICE_ERROR

    def test_decode_at_offset(self):
        data = b"xx" + b"01 80 80 \r\n"
        frame = FrameCodec(DEVICE_LAYOUT).decode(data, offset=2)
        assert isinstance(frame, Frame)
        assert frame.kind == MessageKind.GET_INFO

    def test_every_prefix_needs_more_data(self):
        """Each strict prefix of a valid frame is a valid partial frame."""
        codec = FrameCodec(DEVICE_LAYOUT)
        for cut in range(len(TYPE0_WIRE)):
            result = codec.decode(TYPE0_WIRE[:cut])
            assert isinstance(result, NeedMoreData), f"prefix of {cut} bytes"
            assert result.needed == len(TYPE0_WIRE) - cut or cut < 2

    def test_empty_buffer(self):
        assert isinstance(FrameCodec(HOST_LAYOUT).decode(b""), NeedMoreData)

    def test_zero_length_invalid(self):
        result = FrameCodec(HOST_LAYOUT).decode(b"000000")
        assert isinstance(result, Invalid)
        assert result.skip == 1

    def test_non_hex_start_invalid(self):
        result = FrameCodec(DEVICE_LAYOUT).decode(b"\xff01 80 80 \r\n")
        assert isinstance(result, Invalid)

    def test_missing_separator_invalid(self):
        result = FrameCodec(DEVICE_LAYOUT).decode(b"01-80 80 \r\n")
        assert isinstance(result, Invalid)
        assert "separator" in result.reason

    def test_missing_terminator_invalid(self):
        result = FrameCodec(DEVICE_LAYOUT).decode(b"01 80 80 \n\r")
        assert isinstance(result, Invalid)
        assert "terminator" in result.reason

    def test_structural_break_before_declared_length(self):
        """A long declared length does not hide garbage already received."""
        result = FrameCodec(DEVICE_LAYOUT).decode(b"FE 01 \xff")
        assert isinstance(result, Invalid)

    def test_checksum_mismatch_invalid(self):
        result = FrameCodec(DEVICE_LAYOUT).decode(b"01 80 81 \r\n")
        assert isinstance(result, Invalid)
        assert "checksum" in result.reason

    def test_single_bit_flips_rejected(self):
        """Flipping any bit of the payload never yields a valid frame."""
        codec = FrameCodec(DEVICE_LAYOUT)
        body = bytes(TYPE0_BINARY)
        for byte_index in range(2, len(body) - 1):
            for bit in range(8):
                damaged = bytearray(body)
                damaged[byte_index] ^= 1 << bit
                result = codec.decode(DEVICE_LAYOUT.render(bytes(damaged)))
                assert not isinstance(result, Frame), f"byte {byte_index} bit {bit}"

    def test_unknown_kind_is_marked(self):
        codec = FrameCodec(DEVICE_LAYOUT)
        frame = codec.decode(codec.encode(0x33, b"\x01"))
        assert isinstance(frame, Frame)
        assert not frame.known
        assert frame.kind_name == "UNKNOWN(0x33)"

    def test_tag_extracted_for_logbook_page(self):
        codec = FrameCodec(DEVICE_LAYOUT)
        frame = codec.decode(codec.encode(MessageKind.LOGBOOK_PAGE, b"\x07\x00\x01" + bytes(8)))
        assert frame.tag == b"\x07\x00"

    def test_custom_layout_table(self):
        """A new wire variant only needs a new layout table."""
        layout = FrameLayout(name="test", separator=b":", terminator=b";")
        codec = FrameCodec(layout)
        wire = codec.encode(0x80)
        assert wire == b"01:80:80:;"
        assert isinstance(codec.decode(wire), Frame)


# =============================================================================
# Reader Tests
# =============================================================================

class TestFrameReader:
    """Tests for stream reassembly."""

    def test_byte_by_byte(self):
        reader = FrameReader(FrameCodec(DEVICE_LAYOUT))
        frames = []
        for byte in TYPE0_WIRE:
            reader.feed(bytes([byte]))
            frames.extend(reader.frames())
        assert len(frames) == 1
        assert frames[0].binary == TYPE0_BINARY
        assert reader.pending == 0

    def test_two_frames_one_chunk(self):
        codec = FrameCodec(DEVICE_LAYOUT)
        reader = FrameReader(codec)
        reader.feed(codec.encode(0x00, b"\x01") + codec.encode(0x02, b"\x02\x00\x01"))
        kinds = [f.kind for f in reader.frames()]
        assert kinds == [0x00, 0x02]

    @pytest.mark.parametrize("gap", [0, 1, 2, 5, 11, 40, len(TYPE0_WIRE)])
    def test_garbage_between_frames(self, gap):
        """Both frames survive N garbage bytes between them."""
        codec = FrameCodec(DEVICE_LAYOUT)
        first = codec.encode(MessageKind.TYPE0, b"\x05\x10")
        second = codec.encode(MessageKind.LOGBOOK_PAGE, b"\x01\x00\x01")
        reader = FrameReader(codec)
        reader.feed(first + garbage(gap) + second)
        frames = list(reader.frames())
        assert [f.kind for f in frames] == [MessageKind.TYPE0, MessageKind.LOGBOOK_PAGE]
        assert reader.discarded == gap

    def test_corrupted_frame_then_valid(self):
        """A frame with a bad checksum is dropped, the next one is kept."""
        codec = FrameCodec(DEVICE_LAYOUT)
        reader = FrameReader(codec)
        reader.feed(b"01 80 81 \r\n" + TYPE0_WIRE)
        frames = list(reader.frames())
        assert len(frames) == 1
        assert frames[0].kind == MessageKind.TYPE0

    def test_partial_frame_kept(self):
        reader = FrameReader(FrameCodec(DEVICE_LAYOUT))
        reader.feed(TYPE0_WIRE[:10])
        assert list(reader.frames()) == []
        assert reader.pending == 10
        reader.feed(TYPE0_WIRE[10:])
        assert len(list(reader.frames())) == 1

    def test_clear(self):
        reader = FrameReader(FrameCodec(DEVICE_LAYOUT))
        reader.feed(b"01 80")
        assert reader.clear() == 5
        assert reader.pending == 0
        assert reader.discarded == 5

    def test_lookalike_garbage_between_frames(self):
        """Hex digits, spaces and line ends between frames never cost a frame."""
        codec = FrameCodec(DEVICE_LAYOUT)
        first = codec.encode(MessageKind.TYPE0, b"\x05\x10")
        second = codec.encode(MessageKind.LOGBOOK_PAGE, b"\x01\x00\x01")
        rng = random.Random(0xA172)
        for _ in range(500):
            gap = rng.randint(0, len(second))
            noise = bytes(rng.choice(LOOKALIKE_ALPHABET) for _ in range(gap))
            reader = FrameReader(codec)
            reader.feed(first + noise + second)
            kinds = [f.kind for f in reader.frames()]
            assert kinds == [MessageKind.TYPE0, MessageKind.LOGBOOK_PAGE], noise

    def test_host_layout_cannot_be_streamed(self):
        with pytest.raises(ValueError, match="terminator"):
            FrameReader(FrameCodec(HOST_LAYOUT))

    def test_host_layout_decodes_whole_buffer(self):
        codec = FrameCodec(HOST_LAYOUT)
        frame = codec.decode(codec.encode(MessageKind.READ_LOGBOOK, b"\x01\x00"))
        assert frame.kind == MessageKind.READ_LOGBOOK
        assert frame.tag == b"\x01\x00"
