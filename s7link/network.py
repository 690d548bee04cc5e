"""
S7 exchange engine.

Drives the connection handshake (TCP connect, COTP connect, PDU setup) and
runs every read/write exchange over a single connection: one request in
flight at a time, each response validated against its request.
"""

import logging
import threading
from typing import List, Optional, Sequence, Union

from .error import (
    S7ArgumentError,
    S7FrameError,
    S7ProtocolError,
    S7SessionError,
    S7SizeError,
    error_class_text,
    return_code_text,
)
from .isotcp import TPKT, COTPConnection, COTPData, ISOFrame
from .pdu import AckHeader, DataItem, PDUBuilder, ReadWriteParameter, RequestItem, S7PDU, SetupComParameter
from .transport import (
    DEFAULT_CONNECT_TIMEOUT,
    DEFAULT_HEARTBEAT_INTERVAL,
    DEFAULT_RECEIVE_TIMEOUT,
    TransportSocket,
)
from .type import COTPType, DataVariableType, ErrorClass, MessageType, ParamVariableType, iso_tcp_port

logger = logging.getLogger(__name__)

# Bytes of the negotiated PDU length not available to the application PDU.
PDU_OVERHEAD = 20
DEFAULT_PDU_REQUEST = 480
DEFAULT_LOCAL_TSAP = 0x0100
DEFAULT_REMOTE_TSAP = 0x0102


class SessionState:
    """Negotiated session values; both are 0 until the PDU setup succeeds."""

    def __init__(self) -> None:
        self.pdu_length = 0
        self.max_pdu_length = 0

    @property
    def negotiated(self) -> bool:
        return self.max_pdu_length > 0

    def update(self, pdu_length: int, overhead: int) -> None:
        self.pdu_length = pdu_length
        self.max_pdu_length = pdu_length - overhead

    def reset(self) -> None:
        self.pdu_length = 0
        self.max_pdu_length = 0


class S7Network:
    """
    Session manager for one S7 peer.

    Examples:
        >>> network = S7Network("192.168.0.1", remote_tsap=0x0102)
        >>> network.connect()
        >>> item = RequestItem.create(Area.DB, 0, 4, db_number=1)
        >>> network.read_item(item).data
        b'\\x00\\x00\\x00\\x00'
    """

    def __init__(
        self,
        host: str,
        port: int = iso_tcp_port,
        local_tsap: int = DEFAULT_LOCAL_TSAP,
        remote_tsap: int = DEFAULT_REMOTE_TSAP,
        pdu_request: int = DEFAULT_PDU_REQUEST,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT,
        heartbeat_interval: Optional[float] = DEFAULT_HEARTBEAT_INTERVAL,
        pdu_overhead: int = PDU_OVERHEAD,
    ):
        self.local_tsap = local_tsap
        self.remote_tsap = remote_tsap
        self.pdu_request = pdu_request
        self.pdu_overhead = pdu_overhead
        self.state = SessionState()
        self.builder = PDUBuilder()
        self.transport = TransportSocket(
            host,
            port,
            connect_timeout=connect_timeout,
            receive_timeout=receive_timeout,
            heartbeat_interval=heartbeat_interval,
            on_connected=self._handshake,
        )
        # re-entrant: a reconnect inside an exchange runs the handshake on the same thread
        self._lock = threading.RLock()

    def __enter__(self) -> "S7Network":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def host(self) -> str:
        return self.transport.host

    @property
    def port(self) -> int:
        return self.transport.port

    @property
    def max_pdu_length(self) -> int:
        return self.state.max_pdu_length

    @property
    def pdu_length(self) -> int:
        return self.state.pdu_length

    @property
    def connected(self) -> bool:
        return self.transport.connected and self.state.negotiated

    def connect(self) -> None:
        """Connect and negotiate unless a live session already exists."""
        with self._lock:
            self.transport.connect()

    def close(self) -> None:
        with self._lock:
            self.transport.close()
            self.state.reset()

    def _handshake(self) -> None:
        self.state.reset()
        self._connect_session()
        self._setup_communication()
        logger.info(
            f"Connected to {self.host}:{self.port}, PDU length {self.state.pdu_length} "
            f"(max application PDU {self.state.max_pdu_length})"
        )

    def _connect_session(self) -> None:
        request = COTPConnection.connect_request(self.local_tsap, self.remote_tsap)
        reply = self.read_from_server(ISOFrame.wrap(request))
        if not isinstance(reply.cotp, COTPConnection) or reply.cotp.pdu_type != COTPType.CONNECT_CONFIRM:
            raise S7SessionError("connection rejected")
        logger.debug("Received COTP Connection Confirm")

    def _setup_communication(self) -> None:
        request = self.builder.setup_communication(self.pdu_request)
        reply = self.read_from_server(ISOFrame.data(request))
        if not isinstance(reply.cotp, COTPData) or reply.pdu is None:
            raise S7SessionError("Expected a data transfer answering setup communication")

        header = reply.pdu.header
        if not isinstance(header, AckHeader) or header.byte_length() != AckHeader.BYTE_LENGTH:
            raise S7ProtocolError("Setup communication was not acknowledged")
        if header.error_class != ErrorClass.NO_ERROR:
            raise S7ProtocolError(
                f"Setup communication failed: {error_class_text(header.error_class)}",
                error_code=(header.error_class << 8) | header.error_code,
            )
        parameter = reply.pdu.parameter
        if not isinstance(parameter, SetupComParameter):
            raise S7ProtocolError("Setup communication answer carries no setup parameter")
        if parameter.pdu_length <= self.pdu_overhead:
            raise S7SizeError(f"Invalid negotiated PDU length: {parameter.pdu_length}")
        self.state.update(parameter.pdu_length, self.pdu_overhead)

    def read_from_server(self, frame: ISOFrame) -> ISOFrame:
        """
        Send a frame and receive the next frame from the peer.

        The send is chunked to the negotiated application PDU length (the whole
        buffer goes at once before negotiation), and so is the receive. A dead
        connection is replaced before the first byte goes out; once the frame
        is on its way, losing the connection aborts the exchange.

        Raises:
            S7FrameError: when the peer closes before a whole frame arrived.
            S7TransportError: when the connection is lost during the exchange.
        """
        data = frame.to_bytes()
        with self._lock:
            self.transport.connect()
            chunk = self.state.max_pdu_length or len(data)
            for offset in range(0, len(data), chunk):
                self.transport.write(data, offset, min(chunk, len(data) - offset), reconnect=False)

            tpkt = TPKT.from_bytes(self._receive(TPKT.BYTE_LENGTH))
            remain = self._receive(tpkt.payload_length)
        logger.debug(f"Exchanged {len(data)} bytes for {tpkt.length} bytes")
        return ISOFrame.from_bytes(tpkt, remain)

    def _receive(self, length: int) -> bytes:
        buffer = bytearray(length)
        chunk = self.state.max_pdu_length or length
        received = 0
        while received < length:
            count = self.transport.read(buffer, received, min(chunk, length - received), reconnect=False)
            if count == 0:
                raise S7FrameError(f"Expected {length} bytes, received {received}")
            received += count
        return bytes(buffer)

    def exchange(self, request: S7PDU) -> S7PDU:
        """
        Send an S7 PDU and return the peer's answer once it passed :meth:`check_response`.

        Raises:
            S7SizeError: when the request does not fit the negotiated length.
            S7SessionError: when the answer is not a data transfer frame.
            S7ProtocolError: when the answer reports an error or does not match the request.
        """
        with self._lock:
            self.connect()
            if self.state.negotiated and request.byte_length() > self.state.max_pdu_length:
                raise S7SizeError(
                    f"Request of {request.byte_length()} bytes exceeds the negotiated "
                    f"maximum of {self.state.max_pdu_length}"
                )
            reply = self.read_from_server(ISOFrame.data(request))
        if not isinstance(reply.cotp, COTPData):
            raise S7SessionError(f"Expected a data transfer, got COTP type {reply.cotp.pdu_type:#04x}")
        if reply.pdu is None:
            raise S7ProtocolError("Data transfer without S7 PDU")
        self.check_response(request, reply.pdu)
        return reply.pdu

    @staticmethod
    def check_response(request: S7PDU, response: S7PDU) -> None:
        """
        Validate an answer against its request.

        Checked in order: the error class, the PDU reference, the number of
        returned items, then every item's return code. The first failure
        raises :class:`S7ProtocolError`.
        """
        header = response.header
        if not isinstance(header, AckHeader):
            raise S7ProtocolError(f"Expected an acknowledgement, got {MessageType(header.message_type).name}")
        if header.error_class != ErrorClass.NO_ERROR:
            raise S7ProtocolError(
                f"{error_class_text(header.error_class)} (error code {header.error_code:#04x})",
                error_code=(header.error_class << 8) | header.error_code,
            )
        if response.pdu_reference != request.pdu_reference:
            raise S7ProtocolError(
                f"PDU reference mismatch: sent {request.pdu_reference}, received {response.pdu_reference}"
            )

        requested = request.parameter.item_count if isinstance(request.parameter, ReadWriteParameter) else 0
        returned = response.return_items
        if len(returned) != requested:
            raise S7ProtocolError(f"item count mismatch: requested {requested}, returned {len(returned)}")
        for index, item in enumerate(returned):
            if not item.success:
                raise S7ProtocolError(f"Item {index}: {return_code_text(item.return_code)}", error_code=item.return_code)

    def read_items(self, request_items: Sequence[RequestItem]) -> List[DataItem]:
        """Read several items in one exchange, returning one data item per request item."""
        request_items = list(request_items)
        if not request_items:
            raise S7ArgumentError("No request items given")
        with self._lock:
            self.connect()
            request = self.builder.read_request(request_items)
            response = self.exchange(request)
        return [item for item in response.return_items if isinstance(item, DataItem)]

    def write_items(self, request_items: Sequence[RequestItem], data_items: Sequence[Union[DataItem, bytes]]) -> None:
        """
        Write several items in one exchange.

        ``data_items`` holds one entry per request item; plain bytes are
        wrapped in a data item matching the request item's word length.
        """
        request_items = list(request_items)
        if not request_items:
            raise S7ArgumentError("No request items given")
        if len(request_items) != len(data_items):
            raise S7ArgumentError(f"Got {len(request_items)} request items but {len(data_items)} data items")
        items = [
            data if isinstance(data, DataItem) else DataItem.create(data, self._data_type(request))
            for request, data in zip(request_items, data_items)
        ]
        with self._lock:
            self.connect()
            request = self.builder.write_request(request_items, items)
            self.exchange(request)

    @staticmethod
    def _data_type(item: RequestItem) -> DataVariableType:
        try:
            return DataVariableType.from_param(ParamVariableType(item.variable_type))
        except ValueError:
            return DataVariableType.BYTE_WORD_DWORD

    def read_item(self, request_item: RequestItem) -> DataItem:
        return self.read_items([request_item])[0]

    def write_item(self, request_item: RequestItem, data: Union[DataItem, bytes]) -> None:
        self.write_items([request_item], [data])
