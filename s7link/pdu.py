"""
S7 application layer.

Handles S7 PDU encoding/decoding: the request and acknowledgement headers,
the parameter section (setup communication, read/write variable) and the
data section (data items and return items).

An :class:`S7PDU` is laid out as::

    header (10 bytes request / 12 bytes acknowledgement)
    parameter (header.parameter_length bytes, optional)
    datum (header.data_length bytes, optional)

Requests are only created through :class:`PDUBuilder`, which derives the
header length fields and item counts from the attached sections.
"""

import logging
from typing import List, Optional, Sequence

from .codec import ByteReader, ByteWriter, WireObject
from .error import S7ArgumentError, S7FrameError, S7ProtocolError
from .type import (
    Area,
    DataVariableType,
    ErrorClass,
    FunctionCode,
    MessageType,
    ParamVariableType,
    ReturnCode,
)

logger = logging.getLogger(__name__)

PROTOCOL_ID = 0x32
SPECIFICATION_TYPE = 0x12
SYNTAX_ID_S7ANY = 0x10


class Header(WireObject):
    """
    S7 request header (10 bytes).

    Layout: protocol id, message type, reserved (2), PDU reference (2),
    parameter length (2), data length (2).
    """

    BYTE_LENGTH = 10

    def __init__(
        self,
        message_type: MessageType,
        pdu_reference: int = 0,
        parameter_length: int = 0,
        data_length: int = 0,
        protocol_id: int = PROTOCOL_ID,
        reserved: int = 0,
    ):
        self.protocol_id = protocol_id
        self.message_type = message_type
        self.reserved = reserved
        self.pdu_reference = pdu_reference
        self.parameter_length = parameter_length
        self.data_length = data_length

    def byte_length(self) -> int:
        return self.BYTE_LENGTH

    def encode(self, writer: ByteWriter) -> None:
        writer.put_uint8(self.protocol_id)
        writer.put_uint8(self.message_type)
        writer.put_uint16(self.reserved)
        writer.put_uint16(self.pdu_reference)
        writer.put_uint16(self.parameter_length)
        writer.put_uint16(self.data_length)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "Header":
        """
        Decode a header, returning an :class:`AckHeader` for ACK and ACK_DATA messages.

        Raises:
            S7ProtocolError: on an unknown protocol id or message type.
        """
        reader = ByteReader(data, offset)
        protocol_id = reader.get_uint8()
        if protocol_id != PROTOCOL_ID:
            raise S7ProtocolError(f"Invalid protocol ID: {protocol_id:#04x}")
        raw_type = reader.get_uint8()
        try:
            message_type = MessageType(raw_type)
        except ValueError:
            raise S7ProtocolError(f"Unknown message type: {raw_type:#04x}") from None
        reserved = reader.get_uint16()
        pdu_reference = reader.get_uint16()
        parameter_length = reader.get_uint16()
        data_length = reader.get_uint16()

        if message_type.is_ack:
            return AckHeader(
                message_type,
                pdu_reference,
                parameter_length,
                data_length,
                error_class=reader.get_uint8(),
                error_code=reader.get_uint8(),
                protocol_id=protocol_id,
                reserved=reserved,
            )
        return Header(message_type, pdu_reference, parameter_length, data_length, protocol_id, reserved)


class AckHeader(Header):
    """Acknowledgement header: the request header plus error class and error code (12 bytes)."""

    BYTE_LENGTH = 12

    def __init__(
        self,
        message_type: MessageType = MessageType.ACK_DATA,
        pdu_reference: int = 0,
        parameter_length: int = 0,
        data_length: int = 0,
        error_class: int = ErrorClass.NO_ERROR,
        error_code: int = 0,
        protocol_id: int = PROTOCOL_ID,
        reserved: int = 0,
    ):
        super().__init__(message_type, pdu_reference, parameter_length, data_length, protocol_id, reserved)
        self.error_class = error_class
        self.error_code = error_code

    def encode(self, writer: ByteWriter) -> None:
        super().encode(writer)
        writer.put_uint8(self.error_class)
        writer.put_uint8(self.error_code)


class S7Parameter(WireObject):
    """Base class of the parameter section variants."""

    function_code: FunctionCode

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0, length: int = -1) -> "S7Parameter":
        """Decode a parameter section, dispatching on its function code."""
        if length == 0 or offset >= len(data):
            raise S7ProtocolError("Empty parameter section")
        function_code = data[offset]
        if function_code == FunctionCode.SETUP_COMMUNICATION:
            return SetupComParameter.from_bytes(data, offset)
        elif function_code in (FunctionCode.READ_VARIABLE, FunctionCode.WRITE_VARIABLE):
            return ReadWriteParameter.from_bytes(data, offset, length)
        raise S7ProtocolError(f"Unsupported function code: {function_code:#04x}")


class SetupComParameter(S7Parameter):
    """Setup communication parameter, carrying the (negotiated) PDU length."""

    BYTE_LENGTH = 8

    def __init__(self, pdu_length: int = 480, max_amq_caller: int = 1, max_amq_callee: int = 1, reserved: int = 0):
        self.function_code = FunctionCode.SETUP_COMMUNICATION
        self.reserved = reserved
        self.max_amq_caller = max_amq_caller
        self.max_amq_callee = max_amq_callee
        self.pdu_length = pdu_length

    def byte_length(self) -> int:
        return self.BYTE_LENGTH

    def encode(self, writer: ByteWriter) -> None:
        writer.put_uint8(self.function_code)
        writer.put_uint8(self.reserved)
        writer.put_uint16(self.max_amq_caller)
        writer.put_uint16(self.max_amq_callee)
        writer.put_uint16(self.pdu_length)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0, length: int = -1) -> "SetupComParameter":
        reader = ByteReader(data, offset)
        reader.skip(1)
        reserved = reader.get_uint8()
        max_amq_caller = reader.get_uint16()
        max_amq_callee = reader.get_uint16()
        pdu_length = reader.get_uint16()
        return cls(pdu_length, max_amq_caller, max_amq_callee, reserved)


class RequestItem(WireObject):
    """
    One addressable read/write target (S7ANY variable specification, 12 bytes).

    The 3-byte address is the byte address shifted left by 3, OR-ed with the
    bit address. Timers and counters are addressed by their plain number.
    """

    BYTE_LENGTH = 12

    def __init__(
        self,
        area: int,
        byte_address: int,
        count: int,
        db_number: int = 0,
        bit_address: int = 0,
        variable_type: int = ParamVariableType.BYTE,
        specification_type: int = SPECIFICATION_TYPE,
        syntax_id: int = SYNTAX_ID_S7ANY,
    ):
        self.specification_type = specification_type
        self.syntax_id = syntax_id
        self.variable_type = variable_type
        self.count = count
        self.db_number = db_number
        self.area = area
        self.byte_address = byte_address
        self.bit_address = bit_address

    @classmethod
    def create(
        cls,
        area: Area,
        byte_address: int,
        count: int,
        db_number: int = 0,
        bit_address: int = 0,
        variable_type: Optional[ParamVariableType] = None,
    ) -> "RequestItem":
        """
        Build a request item, choosing the word length from the area when not given.

        Args:
            area: memory area
            byte_address: start byte (or timer/counter number)
            count: number of elements
            db_number: DB number, only meaningful for DB and DI areas
            bit_address: bit offset 0..7 for bit access
            variable_type: word length, defaults to the area's natural one
        """
        if variable_type is None:
            variable_type = Area(area).variable_type()
        if not 0 <= bit_address <= 7:
            raise S7ArgumentError(f"bit_address must be in range 0..7, got {bit_address}")
        if area not in (Area.DB, Area.DI):
            db_number = 0
        return cls(area, byte_address, count, db_number, bit_address, variable_type)

    @property
    def address(self) -> int:
        if self.area in (Area.TM, Area.CT):
            return self.byte_address
        return (self.byte_address << 3) | (self.bit_address & 0x07)

    def byte_length(self) -> int:
        return self.BYTE_LENGTH

    def encode(self, writer: ByteWriter) -> None:
        writer.put_uint8(self.specification_type)
        writer.put_uint8(self.BYTE_LENGTH - 2)
        writer.put_uint8(self.syntax_id)
        writer.put_uint8(self.variable_type)
        writer.put_uint16(self.count)
        writer.put_uint16(self.db_number)
        writer.put_uint8(self.area)
        writer.put_uint24(self.address)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "RequestItem":
        reader = ByteReader(data, offset)
        specification_type = reader.get_uint8()
        length = reader.get_uint8()
        if length != cls.BYTE_LENGTH - 2:
            raise S7ProtocolError(f"Unsupported variable specification length: {length}")
        syntax_id = reader.get_uint8()
        variable_type = reader.get_uint8()
        count = reader.get_uint16()
        db_number = reader.get_uint16()
        area = reader.get_uint8()
        address = reader.get_uint24()
        if area in (Area.TM, Area.CT):
            return cls(area, address, count, db_number, 0, variable_type, specification_type, syntax_id)
        return cls(area, address >> 3, count, db_number, address & 0x07, variable_type, specification_type, syntax_id)


class ReadWriteParameter(S7Parameter):
    """
    Read/write variable parameter.

    Requests carry the request items; acknowledgements carry only the
    function code and item count.
    """

    def __init__(self, function_code: FunctionCode, request_items: Sequence[RequestItem] = (), item_count: Optional[int] = None):
        self.function_code = function_code
        self.request_items = list(request_items)
        self.item_count = len(self.request_items) if item_count is None else item_count

    def byte_length(self) -> int:
        return 2 + sum(item.byte_length() for item in self.request_items)

    def encode(self, writer: ByteWriter) -> None:
        writer.put_uint8(self.function_code)
        writer.put_uint8(self.item_count)
        for item in self.request_items:
            item.encode(writer)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0, length: int = -1) -> "ReadWriteParameter":
        reader = ByteReader(data, offset)
        function_code = FunctionCode(reader.get_uint8())
        item_count = reader.get_uint8()
        if length < 0:
            length = reader.remaining + 2
        items = []
        if length > 2:
            for _ in range(item_count):
                items.append(RequestItem.from_bytes(data, reader.offset))
                reader.skip(RequestItem.BYTE_LENGTH)
        return cls(function_code, items, item_count)


class ReturnItem(WireObject):
    """A single return code, as found in write acknowledgements."""

    BYTE_LENGTH = 1

    def __init__(self, return_code: int = ReturnCode.SUCCESS):
        self.return_code = return_code

    @property
    def success(self) -> bool:
        return self.return_code == ReturnCode.SUCCESS

    def byte_length(self) -> int:
        return self.BYTE_LENGTH

    def encode(self, writer: ByteWriter) -> None:
        writer.put_uint8(self.return_code)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "ReturnItem":
        return cls(ByteReader(data, offset).get_uint8())


class DataItem(ReturnItem):
    """
    Item payload with its transport syntax.

    Layout: return code, variable type, count (2), data. The count is a bit
    count for the BIT, BYTE_WORD_DWORD and INTEGER syntaxes and a byte count
    otherwise.
    """

    HEADER_LENGTH = 4

    def __init__(self, data: bytes, variable_type: int = DataVariableType.BYTE_WORD_DWORD, return_code: int = ReturnCode.RESERVED):
        super().__init__(return_code)
        self.variable_type = variable_type
        self.data = bytes(data)

    @classmethod
    def create(cls, data: bytes, variable_type: DataVariableType = DataVariableType.BYTE_WORD_DWORD) -> "DataItem":
        """Build a data item for a write request."""
        return cls(data, variable_type, ReturnCode.RESERVED)

    @property
    def count(self) -> int:
        if self.variable_type == DataVariableType.BIT:
            return len(self.data)
        if self.variable_type in (DataVariableType.BYTE_WORD_DWORD, DataVariableType.INTEGER):
            return len(self.data) * 8
        return len(self.data)

    def byte_length(self) -> int:
        return self.HEADER_LENGTH + len(self.data)

    def encode(self, writer: ByteWriter) -> None:
        writer.put_uint8(self.return_code)
        writer.put_uint8(self.variable_type)
        writer.put_uint16(self.count)
        writer.put_bytes(self.data)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0) -> "DataItem":
        reader = ByteReader(data, offset)
        return_code = reader.get_uint8()
        variable_type = reader.get_uint8()
        count = reader.get_uint16()
        if variable_type in (DataVariableType.BYTE_WORD_DWORD, DataVariableType.INTEGER):
            size = (count + 7) // 8
        else:
            size = count
        return cls(reader.get_bytes(size), variable_type, return_code)


class Datum(WireObject):
    """
    Data section: an ordered list of data items or return items.

    Data items are word aligned: an odd-length item that is followed by
    another item is padded with one fill byte.
    """

    def __init__(self, items: Sequence[ReturnItem] = ()):
        self.items = list(items)

    def _fill(self, index: int) -> int:
        item = self.items[index]
        if isinstance(item, DataItem) and index < len(self.items) - 1 and item.byte_length() % 2:
            return 1
        return 0

    def byte_length(self) -> int:
        return sum(item.byte_length() + self._fill(i) for i, item in enumerate(self.items))

    def encode(self, writer: ByteWriter) -> None:
        for i, item in enumerate(self.items):
            item.encode(writer)
            if self._fill(i):
                writer.put_uint8(0x00)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0, length: int = -1, return_codes_only: bool = False) -> "Datum":
        """
        Decode a data section of ``length`` bytes.

        Args:
            return_codes_only: the section holds bare return codes (write acknowledgements)
        """
        reader = ByteReader(data, offset, -1 if length < 0 else offset + length)
        items: List[ReturnItem] = []
        while reader.remaining > 0:
            if return_codes_only:
                items.append(ReturnItem(reader.get_uint8()))
                continue
            item = DataItem.from_bytes(data[: reader.limit], reader.offset)
            reader.skip(item.byte_length())
            if item.byte_length() % 2 and reader.remaining > 0:
                reader.skip(1)
            items.append(item)
        return cls(items)


class S7PDU(WireObject):
    """A complete S7 application PDU: header, optional parameter, optional datum."""

    def __init__(self, header: Header, parameter: Optional[S7Parameter] = None, datum: Optional[Datum] = None):
        self.header = header
        self.parameter = parameter
        self.datum = datum

    @property
    def pdu_reference(self) -> int:
        return self.header.pdu_reference

    @property
    def message_type(self) -> MessageType:
        return self.header.message_type

    @property
    def function_code(self) -> Optional[FunctionCode]:
        return None if self.parameter is None else self.parameter.function_code

    @property
    def request_items(self) -> List[RequestItem]:
        if isinstance(self.parameter, ReadWriteParameter):
            return self.parameter.request_items
        return []

    @property
    def return_items(self) -> List[ReturnItem]:
        return [] if self.datum is None else self.datum.items

    def byte_length(self) -> int:
        length = self.header.byte_length()
        if self.parameter is not None:
            length += self.parameter.byte_length()
        if self.datum is not None:
            length += self.datum.byte_length()
        return length

    def encode(self, writer: ByteWriter) -> None:
        self.header.encode(writer)
        if self.parameter is not None:
            self.parameter.encode(writer)
        if self.datum is not None:
            self.datum.encode(writer)

    @classmethod
    def from_bytes(cls, data: bytes, offset: int = 0, limit: int = -1) -> "S7PDU":
        """
        Decode a PDU starting at ``offset``, never reading past ``limit``.

        Raises:
            S7FrameError: when the buffer is shorter than the header declares.
            S7ProtocolError: when the parameter section disagrees with its declared length.
        """
        end = len(data) if limit < 0 else min(limit, len(data))
        view = data[:end]
        header = Header.from_bytes(view, offset)
        cursor = offset + header.byte_length()
        if cursor + header.parameter_length + header.data_length > end:
            raise S7FrameError(
                f"PDU declares {header.parameter_length + header.data_length} bytes after the header, "
                f"only {end - cursor} available"
            )

        parameter: Optional[S7Parameter] = None
        if header.parameter_length > 0:
            parameter = S7Parameter.from_bytes(view, cursor, header.parameter_length)
            if parameter.byte_length() != header.parameter_length:
                raise S7ProtocolError(
                    f"Parameter length mismatch: header says {header.parameter_length}, "
                    f"section is {parameter.byte_length()}"
                )
            cursor += header.parameter_length

        datum: Optional[Datum] = None
        if header.data_length > 0:
            return_codes_only = header.message_type.is_ack and (
                parameter is not None and parameter.function_code == FunctionCode.WRITE_VARIABLE
            )
            datum = Datum.from_bytes(view, cursor, header.data_length, return_codes_only)

        return cls(header, parameter, datum)


class PDUBuilder:
    """
    Builds consistent S7 PDUs.

    Header length fields and parameter item counts are computed from the
    attached sections, so a built PDU never carries stale lengths. The
    builder also hands out PDU references.
    """

    def __init__(self) -> None:
        self.sequence = 0

    def next_reference(self) -> int:
        """Get next PDU reference, wrapping at 16 bits and skipping 0."""
        self.sequence = (self.sequence % 0xFFFF) + 1
        return self.sequence

    @staticmethod
    def _assemble(
        header_type: type,
        message_type: MessageType,
        pdu_reference: int,
        parameter: Optional[S7Parameter],
        datum: Optional[Datum],
        **extra: int,
    ) -> S7PDU:
        header = header_type(
            message_type,
            pdu_reference,
            0 if parameter is None else parameter.byte_length(),
            0 if datum is None else datum.byte_length(),
            **extra,
        )
        return S7PDU(header, parameter, datum)

    def setup_communication(self, pdu_length: int = 480, max_amq_caller: int = 1, max_amq_callee: int = 1) -> S7PDU:
        """Build the setup communication (PDU negotiation) job."""
        parameter = SetupComParameter(pdu_length, max_amq_caller, max_amq_callee)
        return self._assemble(Header, MessageType.JOB, self.next_reference(), parameter, None)

    def read_request(self, request_items: Sequence[RequestItem]) -> S7PDU:
        """Build a read variable job for the given items."""
        parameter = ReadWriteParameter(FunctionCode.READ_VARIABLE, request_items)
        return self._assemble(Header, MessageType.JOB, self.next_reference(), parameter, None)

    def write_request(self, request_items: Sequence[RequestItem], data_items: Sequence[DataItem]) -> S7PDU:
        """Build a write variable job carrying one data item per request item."""
        parameter = ReadWriteParameter(FunctionCode.WRITE_VARIABLE, request_items)
        return self._assemble(Header, MessageType.JOB, self.next_reference(), parameter, Datum(data_items))

    @classmethod
    def acknowledge(
        cls,
        request: S7PDU,
        parameter: Optional[S7Parameter] = None,
        datum: Optional[Datum] = None,
        error_class: int = ErrorClass.NO_ERROR,
        error_code: int = 0,
    ) -> S7PDU:
        """Build the acknowledgement of ``request``, echoing its PDU reference."""
        message_type = MessageType.ACK_DATA if parameter is not None or datum is not None else MessageType.ACK
        return cls._assemble(
            AckHeader,
            message_type,
            request.pdu_reference,
            parameter,
            datum,
            error_class=error_class,
            error_code=error_code,
        )
