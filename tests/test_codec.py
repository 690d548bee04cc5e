import pytest

from s7link.codec import ByteReader, ByteWriter
from s7link.error import S7FrameError
from s7link.isotcp import TPKT, COTPData


@pytest.mark.codec
class TestByteWriter:
    def test_big_endian(self) -> None:
        writer = ByteWriter().put_uint8(0x01).put_uint16(0x0203).put_uint24(0x040506).put_bytes(b"\x07")
        assert writer.to_bytes() == bytes(range(1, 8))
        assert len(writer) == 7

    def test_uint24_truncates_to_three_bytes(self) -> None:
        assert ByteWriter().put_uint24(0x000320).to_bytes() == b"\x00\x03\x20"


@pytest.mark.codec
class TestByteReader:
    def test_read_sequence(self) -> None:
        reader = ByteReader(bytes(range(1, 8)))
        assert reader.get_uint8() == 0x01
        assert reader.get_uint16() == 0x0203
        assert reader.get_uint24() == 0x040506
        assert reader.remaining == 1
        assert reader.get_bytes(1) == b"\x07"
        assert reader.remaining == 0

    def test_offset(self) -> None:
        reader = ByteReader(b"\xaa\xbb\xcc", offset=1)
        assert reader.get_uint16() == 0xBBCC

    def test_truncated(self) -> None:
        reader = ByteReader(b"\x01")
        with pytest.raises(S7FrameError):
            reader.get_uint16()

    def test_limit(self) -> None:
        reader = ByteReader(b"\x01\x02\x03\x04", limit=2)
        reader.skip(2)
        with pytest.raises(S7FrameError):
            reader.get_uint8()


@pytest.mark.codec
class TestWireObject:
    def test_equality_by_bytes(self) -> None:
        assert TPKT(7) == TPKT(7)
        assert TPKT(7) != TPKT(8)
        assert hash(COTPData()) == hash(COTPData())

    def test_different_types_differ(self) -> None:
        assert TPKT(7) != COTPData()

    def test_repr(self) -> None:
        assert "length=7" in repr(TPKT(7))
