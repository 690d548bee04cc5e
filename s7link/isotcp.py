"""
ISO on TCP framing (RFC 1006).

Implements the TPKT header and the COTP (Connection Oriented Transport
Protocol) PDUs used by S7 communication, plus :class:`ISOFrame`, the
complete on-wire message ``TPKT | COTP | S7 PDU``.
"""

import logging
from typing import List, Optional, Sequence

from .codec import ByteReader, ByteWriter, WireObject
from .error import S7FrameError, S7SessionError
from .pdu import S7PDU
from .type import COTPParameterCode, COTPType, TPDUSize, iso_tcp_version

logger = logging.getLogger(__name__)


class TPKT(WireObject):
    """
    TPKT header (4 bytes).

    - Version (1 byte): always 3
    - Reserved (1 byte): always 0
    - Length (2 bytes): total frame length including this header
    """

    BYTE_LENGTH = 4

    def __init__(self, length: int, version: int = iso_tcp_version, reserved: int = 0):
        self.version = version
        self.reserved = reserved
        self.length = length

    @classmethod
    def for_payload(cls, payload_length: int) -> "TPKT":
        return cls(cls.BYTE_LENGTH + payload_length)

    @property
    def payload_length(self) -> int:
        return self.length - self.BYTE_LENGTH

    def byte_length(self) -> int:
        return self.BYTE_LENGTH

    def encode(self, writer: ByteWriter) -> None:
        writer.put_uint8(self.version)
        writer.put_uint8(self.reserved)
        writer.put_uint16(self.length)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "TPKT":
        """
        Decode a TPKT header.

        Raises:
            S7FrameError: on fewer than 4 bytes, a wrong version or a length below 4.
        """
        if len(data) - offset < cls.BYTE_LENGTH:
            raise S7FrameError(f"TPKT header needs {cls.BYTE_LENGTH} bytes, got {max(len(data) - offset, 0)}")
        reader = ByteReader(data, offset)
        version = reader.get_uint8()
        reserved = reader.get_uint8()
        length = reader.get_uint16()
        if version != iso_tcp_version:
            raise S7FrameError(f"Invalid TPKT version: {version}")
        if length < cls.BYTE_LENGTH:
            raise S7FrameError(f"Invalid TPKT length: {length}")
        return cls(length, version, reserved)


class COTPParameter(WireObject):
    """COTP connection parameter in code/length/value form."""

    def __init__(self, code: int, value: bytes):
        self.code = code
        self.value = bytes(value)

    @property
    def int_value(self) -> int:
        return int.from_bytes(self.value, "big")

    def byte_length(self) -> int:
        return 2 + len(self.value)

    def encode(self, writer: ByteWriter) -> None:
        writer.put_uint8(self.code)
        writer.put_uint8(len(self.value))
        writer.put_bytes(self.value)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0, limit: int = -1) -> "COTPParameter":
        reader = ByteReader(data, offset, limit)
        code = reader.get_uint8()
        size = reader.get_uint8()
        return cls(code, reader.get_bytes(size))


class COTP(WireObject):
    """Base class of the COTP PDU variants."""

    pdu_type: int

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0, limit: int = -1) -> "COTP":
        """
        Decode a COTP PDU, dispatching on its type byte.

        Raises:
            S7SessionError: for PDU types this stack does not handle.
        """
        reader = ByteReader(data, offset, limit)
        reader.skip(1)
        pdu_type = reader.get_uint8()
        if pdu_type == COTPType.DT_DATA:
            return COTPData.from_bytes(data, offset, limit)
        elif pdu_type in (
            COTPType.CONNECT_REQUEST,
            COTPType.CONNECT_CONFIRM,
            COTPType.DISCONNECT_REQUEST,
            COTPType.DISCONNECT_CONFIRM,
        ):
            return COTPConnection.from_bytes(data, offset, limit)
        raise S7SessionError(f"Unsupported COTP PDU type: {pdu_type:#04x}")


class COTPConnection(COTP):
    """
    COTP connection management PDU (CR, CC, DR, DC).

    Layout: length, PDU type, destination reference (2), source reference (2),
    class/option, parameters. The length byte counts everything after itself.
    """

    FIXED_LENGTH = 7

    def __init__(
        self,
        pdu_type: int,
        dst_ref: int = 0x0000,
        src_ref: int = 0x0001,
        class_option: int = 0x00,
        parameters: Sequence[COTPParameter] = (),
    ):
        self.pdu_type = pdu_type
        self.dst_ref = dst_ref
        self.src_ref = src_ref
        self.class_option = class_option
        self.parameters: List[COTPParameter] = list(parameters)

    @classmethod
    def connect_request(
        cls, local_tsap: int, remote_tsap: int, tpdu_size: TPDUSize = TPDUSize.TPDU_1024
    ) -> "COTPConnection":
        """Build a connection request (CR) for the given TSAPs."""
        return cls(
            COTPType.CONNECT_REQUEST,
            parameters=[
                COTPParameter(COTPParameterCode.TPDU_SIZE, bytes([tpdu_size])),
                COTPParameter(COTPParameterCode.SRC_TSAP, local_tsap.to_bytes(2, "big")),
                COTPParameter(COTPParameterCode.DST_TSAP, remote_tsap.to_bytes(2, "big")),
            ],
        )

    @classmethod
    def connect_confirm(cls, request: "COTPConnection", src_ref: int = 0x0001) -> "COTPConnection":
        """Build the connection confirm (CC) answering ``request``, echoing its parameters."""
        return cls(COTPType.CONNECT_CONFIRM, request.src_ref, src_ref, request.class_option, request.parameters)

    def _parameter(self, code: int) -> Optional[COTPParameter]:
        for parameter in self.parameters:
            if parameter.code == code:
                return parameter
        return None

    @property
    def tpdu_size(self) -> Optional[int]:
        parameter = self._parameter(COTPParameterCode.TPDU_SIZE)
        return None if parameter is None else parameter.int_value

    @property
    def local_tsap(self) -> Optional[int]:
        parameter = self._parameter(COTPParameterCode.SRC_TSAP)
        return None if parameter is None else parameter.int_value

    @property
    def remote_tsap(self) -> Optional[int]:
        parameter = self._parameter(COTPParameterCode.DST_TSAP)
        return None if parameter is None else parameter.int_value

    def byte_length(self) -> int:
        return self.FIXED_LENGTH + sum(p.byte_length() for p in self.parameters)

    def encode(self, writer: ByteWriter) -> None:
        writer.put_uint8(self.byte_length() - 1)
        writer.put_uint8(self.pdu_type)
        writer.put_uint16(self.dst_ref)
        writer.put_uint16(self.src_ref)
        writer.put_uint8(self.class_option)
        for parameter in self.parameters:
            parameter.encode(writer)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0, limit: int = -1) -> "COTPConnection":
        reader = ByteReader(data, offset, limit)
        length = reader.get_uint8()
        if length < cls.FIXED_LENGTH - 1:
            raise S7FrameError(f"COTP connection PDU too short: {length}")
        end = offset + 1 + length
        if end > reader.limit:
            raise S7FrameError(f"COTP length {length} exceeds the {reader.limit - offset - 1} bytes available")
        pdu_type = reader.get_uint8()
        dst_ref = reader.get_uint16()
        src_ref = reader.get_uint16()
        class_option = reader.get_uint8()

        parameters = []
        while reader.offset < end:
            parameter = COTPParameter.from_bytes(data, reader.offset, end)
            reader.skip(parameter.byte_length())
            parameters.append(parameter)
        return cls(pdu_type, dst_ref, src_ref, class_option, parameters)


class COTPData(COTP):
    """
    COTP data transfer PDU (DT), 3 bytes.

    Bit 7 of the EOT/number byte flags the last data unit, bits 0-6 hold the
    TPDU number.
    """

    BYTE_LENGTH = 3
    EOT = 0x80

    def __init__(self, tpdu_number: int = 0, last_data_unit: bool = True):
        self.pdu_type = COTPType.DT_DATA
        self.tpdu_number = tpdu_number & 0x7F
        self.last_data_unit = last_data_unit

    def byte_length(self) -> int:
        return self.BYTE_LENGTH

    def encode(self, writer: ByteWriter) -> None:
        writer.put_uint8(self.BYTE_LENGTH - 1)
        writer.put_uint8(self.pdu_type)
        writer.put_uint8((self.EOT if self.last_data_unit else 0) | self.tpdu_number)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0, limit: int = -1) -> "COTPData":
        reader = ByteReader(data, offset, limit)
        length = reader.get_uint8()
        if length != cls.BYTE_LENGTH - 1:
            raise S7FrameError(f"Invalid COTP DT length: {length}")
        reader.skip(1)
        eot_num = reader.get_uint8()
        return cls(eot_num & 0x7F, bool(eot_num & cls.EOT))


class ISOFrame(WireObject):
    """A complete ISO on TCP message: TPKT header, COTP PDU and optional S7 PDU."""

    def __init__(self, tpkt: TPKT, cotp: COTP, pdu: Optional[S7PDU] = None):
        self.tpkt = tpkt
        self.cotp = cotp
        self.pdu = pdu

    @classmethod
    def wrap(cls, cotp: COTP, pdu: Optional[S7PDU] = None) -> "ISOFrame":
        """Build a frame whose TPKT length matches its content."""
        payload = cotp.byte_length() + (0 if pdu is None else pdu.byte_length())
        return cls(TPKT.for_payload(payload), cotp, pdu)

    @classmethod
    def data(cls, pdu: S7PDU) -> "ISOFrame":
        """Wrap an S7 PDU in a DT frame."""
        return cls.wrap(COTPData(), pdu)

    def byte_length(self) -> int:
        return self.tpkt.byte_length() + self.cotp.byte_length() + (0 if self.pdu is None else self.pdu.byte_length())

    def encode(self, writer: ByteWriter) -> None:
        TPKT.for_payload(self.byte_length() - TPKT.BYTE_LENGTH).encode(writer)
        self.cotp.encode(writer)
        if self.pdu is not None:
            self.pdu.encode(writer)

    @classmethod
    def from_bytes(cls, tpkt: TPKT, remain: bytes) -> "ISOFrame":
        """
        Decode the bytes following an already decoded TPKT header.

        The COTP PDU is decoded first. For DT frames the rest, if any, is
        decoded as an S7 PDU bounded by the remaining byte count.
        """
        cotp = COTP.from_bytes(remain)
        pdu = None
        if isinstance(cotp, COTPData) and len(remain) > cotp.byte_length():
            pdu = S7PDU.from_bytes(remain, cotp.byte_length(), len(remain))
        return cls(tpkt, cotp, pdu)

    @classmethod
    def parse(cls, data: bytes) -> "ISOFrame":
        """Decode a complete frame, TPKT header included."""
        tpkt = TPKT.from_bytes(data)
        if len(data) < tpkt.length:
            raise S7FrameError(f"TPKT declares {tpkt.length} bytes, only {len(data)} available")
        return cls.from_bytes(tpkt, data[TPKT.BYTE_LENGTH : tpkt.length])
