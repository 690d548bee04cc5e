"""
Protocol constants and enumerations for the ISO-on-TCP / S7 stack.
"""

from enum import IntEnum


iso_tcp_port = 102  # RFC 1006
iso_tcp_version = 3  # RFC 1006


class Parameter(IntEnum):
    """
    Client parameters, numbered as in snap7.

    Timeouts and intervals are in milliseconds. PingTimeout is the TCP connect
    timeout and WorkInterval the liveness probe interval (0 disables probing).
    """

    RemotePort = 2
    PingTimeout = 3
    RecvTimeout = 5
    WorkInterval = 6
    SrcTSap = 9
    PDURequest = 10
    RemoteTSap = 16


class COTPType(IntEnum):
    """COTP PDU type codes."""

    CONNECT_REQUEST = 0xE0
    CONNECT_CONFIRM = 0xD0
    DISCONNECT_REQUEST = 0x80
    DISCONNECT_CONFIRM = 0xC0
    DT_DATA = 0xF0
    EXPEDITED_DATA = 0x10
    DATA_ACK = 0x60
    EXPEDITED_ACK = 0x20
    REJECT = 0x50
    TPDU_ERROR = 0x70


class COTPParameterCode(IntEnum):
    """COTP connection parameter codes."""

    TPDU_SIZE = 0xC0
    SRC_TSAP = 0xC1
    DST_TSAP = 0xC2


class TPDUSize(IntEnum):
    """Encoded COTP TPDU size values."""

    TPDU_128 = 0x07
    TPDU_256 = 0x08
    TPDU_512 = 0x09
    TPDU_1024 = 0x0A
    TPDU_2048 = 0x0B
    TPDU_4096 = 0x0C
    TPDU_8192 = 0x0D

    @property
    def size(self) -> int:
        return 1 << self.value


class MessageType(IntEnum):
    """S7 header message (ROSCTR) types."""

    JOB = 0x01
    ACK = 0x02
    ACK_DATA = 0x03
    USERDATA = 0x07

    @property
    def is_ack(self) -> bool:
        return self in (MessageType.ACK, MessageType.ACK_DATA)


class FunctionCode(IntEnum):
    """S7 parameter function codes."""

    READ_VARIABLE = 0x04
    WRITE_VARIABLE = 0x05
    SETUP_COMMUNICATION = 0xF0


class ErrorClass(IntEnum):
    """Error class reported in acknowledgement headers."""

    NO_ERROR = 0x00
    APPLICATION_RELATIONSHIP = 0x81
    OBJECT_DEFINITION = 0x82
    NO_RESOURCES_AVAILABLE = 0x83
    ERROR_ON_SERVICE_PROCESSING = 0x84
    ERROR_ON_SUPPLIES = 0x85
    ACCESS_ERROR = 0x87


class ReturnCode(IntEnum):
    """Per-item return codes of read/write acknowledgements."""

    RESERVED = 0x00
    HARDWARE_ERROR = 0x01
    ACCESS_OBJECT_NOT_ALLOWED = 0x03
    INVALID_ADDRESS = 0x05
    DATA_TYPE_NOT_SUPPORTED = 0x06
    DATA_TYPE_INCONSISTENT = 0x07
    OBJECT_DOES_NOT_EXIST = 0x0A
    SUCCESS = 0xFF


class Area(IntEnum):
    """S7 memory area identifiers."""

    PE = 0x81  # Process inputs
    PA = 0x82  # Process outputs
    MK = 0x83  # Merkers (flags)
    DB = 0x84  # Data blocks
    DI = 0x85  # Instance data blocks
    V = 0x87  # Local data (S7-200)
    CT = 0x1C  # Counters
    TM = 0x1D  # Timers

    def variable_type(self) -> "ParamVariableType":
        if self == Area.TM:
            return ParamVariableType.TIMER
        elif self == Area.CT:
            return ParamVariableType.COUNTER
        return ParamVariableType.BYTE


class ParamVariableType(IntEnum):
    """Transport size of a request item (word length)."""

    BIT = 0x01
    BYTE = 0x02
    CHAR = 0x03
    WORD = 0x04
    INT = 0x05
    DWORD = 0x06
    DINT = 0x07
    REAL = 0x08
    COUNTER = 0x1C
    TIMER = 0x1D

    @property
    def size(self) -> int:
        return {
            ParamVariableType.WORD: 2,
            ParamVariableType.INT: 2,
            ParamVariableType.DWORD: 4,
            ParamVariableType.DINT: 4,
            ParamVariableType.REAL: 4,
            ParamVariableType.COUNTER: 2,
            ParamVariableType.TIMER: 2,
        }.get(self, 1)


class DataVariableType(IntEnum):
    """Transport syntax of a data item."""

    NULL = 0x00
    BIT = 0x03
    BYTE_WORD_DWORD = 0x04
    INTEGER = 0x05
    REAL = 0x07
    OCTET_STRING = 0x09

    @property
    def length_in_bits(self) -> bool:
        return self in (DataVariableType.BIT, DataVariableType.BYTE_WORD_DWORD, DataVariableType.INTEGER)

    @classmethod
    def from_param(cls, variable_type: ParamVariableType) -> "DataVariableType":
        """Data transport syntax matching a request item's word length."""
        if variable_type == ParamVariableType.BIT:
            return cls.BIT
        if variable_type in (ParamVariableType.INT, ParamVariableType.DINT):
            return cls.INTEGER
        if variable_type == ParamVariableType.REAL:
            return cls.REAL
        if variable_type in (ParamVariableType.COUNTER, ParamVariableType.TIMER):
            return cls.OCTET_STRING
        return cls.BYTE_WORD_DWORD
