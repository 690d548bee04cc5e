import pytest

from s7link.error import S7FrameError, S7SessionError
from s7link.isotcp import TPKT, COTP, COTPConnection, COTPData, COTPParameter, ISOFrame
from s7link.pdu import PDUBuilder, S7PDU
from s7link.type import COTPParameterCode, COTPType, TPDUSize

CONNECT_REQUEST = bytes.fromhex("11e00000000100c0010ac1020100c2020102")
SETUP_FRAME = bytes.fromhex("0300001902f080" "32010000000100080000" "f0000001000101e0")


@pytest.mark.isotcp
class TestTPKT:
    def test_encode(self) -> None:
        assert TPKT.for_payload(3).to_bytes() == b"\x03\x00\x00\x07"

    def test_decode(self) -> None:
        tpkt = TPKT.from_bytes(b"\x03\x00\x01\x00")
        assert tpkt.length == 256
        assert tpkt.payload_length == 252

    def test_short_header(self) -> None:
        with pytest.raises(S7FrameError):
            TPKT.from_bytes(b"\x03\x00\x00")

    def test_wrong_version(self) -> None:
        with pytest.raises(S7FrameError):
            TPKT.from_bytes(b"\x02\x00\x00\x07")

    def test_length_below_header(self) -> None:
        with pytest.raises(S7FrameError):
            TPKT.from_bytes(b"\x03\x00\x00\x03")


@pytest.mark.isotcp
class TestCOTPConnection:
    def test_connect_request_bytes(self) -> None:
        request = COTPConnection.connect_request(0x0100, 0x0102)
        assert request.to_bytes() == CONNECT_REQUEST
        assert request.byte_length() == len(CONNECT_REQUEST)

    def test_accessors(self) -> None:
        request = COTPConnection.connect_request(0x0100, 0x0102, TPDUSize.TPDU_1024)
        assert request.tpdu_size == TPDUSize.TPDU_1024
        assert request.local_tsap == 0x0100
        assert request.remote_tsap == 0x0102
        assert request.dst_ref == 0x0000
        assert request.src_ref == 0x0001

    def test_decode(self) -> None:
        cotp = COTP.from_bytes(CONNECT_REQUEST)
        assert isinstance(cotp, COTPConnection)
        assert cotp.pdu_type == COTPType.CONNECT_REQUEST
        assert cotp == COTPConnection.connect_request(0x0100, 0x0102)

    def test_connect_confirm_echoes_request(self) -> None:
        request = COTPConnection.connect_request(0x0100, 0x0102)
        confirm = COTPConnection.connect_confirm(request)
        assert confirm.pdu_type == COTPType.CONNECT_CONFIRM
        assert confirm.dst_ref == request.src_ref
        assert confirm.remote_tsap == 0x0102

    def test_without_parameters(self) -> None:
        confirm = COTPConnection(COTPType.CONNECT_CONFIRM)
        assert confirm.to_bytes() == bytes.fromhex("06d00000000100")
        assert confirm.tpdu_size is None

    def test_truncated_parameters(self) -> None:
        with pytest.raises(S7FrameError):
            COTP.from_bytes(CONNECT_REQUEST[:-1])

    def test_parameter(self) -> None:
        parameter = COTPParameter(COTPParameterCode.SRC_TSAP, b"\x01\x00")
        assert parameter.to_bytes() == b"\xc1\x02\x01\x00"
        assert parameter.int_value == 0x0100


@pytest.mark.isotcp
class TestCOTPData:
    def test_encode(self) -> None:
        assert COTPData().to_bytes() == b"\x02\xf0\x80"
        assert COTPData.BYTE_LENGTH == 3

    def test_decode_number_and_eot(self) -> None:
        cotp = COTP.from_bytes(b"\x02\xf0\x05")
        assert isinstance(cotp, COTPData)
        assert cotp.tpdu_number == 5
        assert not cotp.last_data_unit

    def test_unsupported_type(self) -> None:
        with pytest.raises(S7SessionError):
            COTP.from_bytes(b"\x02\x50\x00")


@pytest.mark.isotcp
class TestISOFrame:
    def test_wrap_setup(self) -> None:
        frame = ISOFrame.data(PDUBuilder().setup_communication(480))
        assert frame.to_bytes() == SETUP_FRAME
        assert frame.tpkt.length == len(SETUP_FRAME)

    def test_wrap_without_pdu(self) -> None:
        frame = ISOFrame.wrap(COTPConnection.connect_request(0x0100, 0x0102))
        assert frame.to_bytes() == b"\x03\x00\x00\x16" + CONNECT_REQUEST

    def test_parse(self) -> None:
        frame = ISOFrame.parse(SETUP_FRAME)
        assert isinstance(frame.cotp, COTPData)
        assert isinstance(frame.pdu, S7PDU)
        assert frame.pdu.pdu_reference == 1
        assert frame.to_bytes() == SETUP_FRAME

    def test_from_bytes_after_header(self) -> None:
        tpkt = TPKT.from_bytes(SETUP_FRAME)
        frame = ISOFrame.from_bytes(tpkt, SETUP_FRAME[4:])
        assert frame == ISOFrame.parse(SETUP_FRAME)

    def test_data_frame_without_pdu(self) -> None:
        frame = ISOFrame.parse(b"\x03\x00\x00\x07\x02\xf0\x80")
        assert frame.pdu is None

    def test_truncated(self) -> None:
        with pytest.raises(S7FrameError):
            ISOFrame.parse(SETUP_FRAME[:-2])
