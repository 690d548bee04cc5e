"""
Simulated S7 server.

Emulates the PLC side of the protocol for tests and development: accepts the
COTP connection, answers PDU negotiation and serves read/write requests from
registered memory areas.
"""

import socket
import struct
import threading
import time
import logging
from typing import Dict, List, Optional, Tuple, Type
from types import TracebackType

from ..error import S7ArgumentError, S7ProtocolError, S7TransportError
from ..isotcp import TPKT, COTP, COTPConnection, COTPData, ISOFrame
from ..pdu import (
    DataItem,
    Datum,
    Header,
    PDUBuilder,
    ReadWriteParameter,
    RequestItem,
    ReturnItem,
    S7PDU,
    SetupComParameter,
)
from ..type import Area, COTPType, DataVariableType, ErrorClass, FunctionCode, MessageType, ParamVariableType, ReturnCode

logger = logging.getLogger(__name__)

DEFAULT_PDU_LENGTH = 480
# Answer to an unsupported function: "context not supported"
UNSUPPORTED_ERROR = (ErrorClass.APPLICATION_RELATIONSHIP, 0x04)


class Server:
    """
    Pure Python S7 server.

    Examples:
        >>> import s7link
        >>> server = s7link.Server()
        >>> server.register_area(s7link.Area.DB, 1, bytearray(100))
        >>> server.start(1102)
        >>> server.stop()
    """

    def __init__(self, pdu_length: int = DEFAULT_PDU_LENGTH, host: str = "0.0.0.0") -> None:
        """
        Args:
            pdu_length: largest PDU length the server accepts during negotiation
            host: address to listen on
        """
        self.pdu_length = pdu_length
        self.host = host
        self.port = 102
        self.server_socket: Optional[socket.socket] = None
        self.server_thread: Optional[threading.Thread] = None
        self.running = False

        self.memory_areas: Dict[Tuple[Area, int], bytearray] = {}
        self.area_locks: Dict[Tuple[Area, int], threading.Lock] = {}

        self.clients: List[threading.Thread] = []
        self.client_lock = threading.Lock()
        self.client_count = 0

    def __enter__(self) -> "Server":
        return self

    def __exit__(
        self,
        exc_type: Optional[Type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        self.stop()

    def start(self, tcp_port: int = 102) -> None:
        """
        Start listening.

        Args:
            tcp_port: TCP port to listen on, 0 picks a free one (see :attr:`port`)
        """
        if self.running:
            raise S7TransportError("Server is already running")

        self.server_socket = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.server_socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            self.server_socket.bind((self.host, tcp_port))
            self.server_socket.listen(5)
        except OSError as e:
            self.server_socket.close()
            self.server_socket = None
            raise S7TransportError(f"Failed to start server: {e}") from e

        self.port = self.server_socket.getsockname()[1]
        self.running = True
        self.server_thread = threading.Thread(target=self._server_loop, daemon=True)
        self.server_thread.start()
        logger.info(f"S7 Server started on {self.host}:{self.port}")

    def stop(self) -> None:
        """Stop listening and wait for the client handlers to finish."""
        if not self.running:
            return
        self.running = False

        if self.server_socket:
            self.server_socket.close()
            self.server_socket = None
        if self.server_thread and self.server_thread.is_alive():
            self.server_thread.join(timeout=5.0)

        with self.client_lock:
            clients = self.clients[:]
        for client_thread in clients:
            if client_thread.is_alive():
                client_thread.join(timeout=2.0)
        with self.client_lock:
            self.clients.clear()
            self.client_count = 0

        logger.info("S7 Server stopped")

    def register_area(self, area: Area, index: int, data: bytearray) -> None:
        """
        Serve ``data`` as memory area ``area`` number ``index``.

        The bytearray is shared: client writes show up in it and local changes
        are visible to clients. ``index`` is the DB number for DB and DI, 0 otherwise.
        """
        if not isinstance(data, bytearray):
            raise S7ArgumentError(f"Area data must be a bytearray, got {type(data).__name__}")
        area_key = (Area(area), index)
        self.memory_areas[area_key] = data
        self.area_locks[area_key] = threading.Lock()
        logger.info(f"Registered area {Area(area).name} index {index}, size {len(data)}")

    def unregister_area(self, area: Area, index: int) -> None:
        area_key = (Area(area), index)
        self.memory_areas.pop(area_key, None)
        self.area_locks.pop(area_key, None)

    def _server_loop(self) -> None:
        """Accept clients until stopped."""
        try:
            while self.running and self.server_socket:
                try:
                    self.server_socket.settimeout(1.0)
                    client_socket, address = self.server_socket.accept()
                except socket.timeout:
                    continue
                except OSError:
                    if self.running:
                        logger.warning("Server socket error in accept loop")
                    break

                logger.info(f"Client connected from {address}")
                client_thread = threading.Thread(target=self._handle_client, args=(client_socket, address), daemon=True)
                with self.client_lock:
                    self.clients.append(client_thread)
                    self.client_count += 1
                client_thread.start()
        finally:
            self.running = False

    def _handle_client(self, client_socket: socket.socket, address: Tuple[str, int]) -> None:
        """Serve one client connection until it closes or misbehaves."""
        client_socket.settimeout(1.0)
        try:
            while self.running:
                try:
                    header = self._recv_exact(client_socket, TPKT.BYTE_LENGTH)
                except socket.timeout:
                    continue
                tpkt = TPKT.from_bytes(header)
                payload = self._recv_exact(client_socket, tpkt.payload_length)

                reply = self._process_frame(payload)
                if reply is None:
                    break
                client_socket.sendall(reply.to_bytes())
        except (ConnectionResetError, ConnectionAbortedError):
            logger.info(f"Client {address} disconnected")
        except Exception as e:
            logger.error(f"Error handling client {address}: {e}")
        finally:
            client_socket.close()
            with self.client_lock:
                current_thread = threading.current_thread()
                if current_thread in self.clients:
                    self.clients.remove(current_thread)
                self.client_count = max(0, self.client_count - 1)
            logger.info(f"Client {address} handler finished")

    def _recv_exact(self, client_socket: socket.socket, size: int) -> bytes:
        data = bytearray()
        while len(data) < size:
            try:
                chunk = client_socket.recv(size - len(data))
            except socket.timeout:
                # only an idle connection may time out, not a half received frame
                if not data or not self.running:
                    raise
                continue
            if not chunk:
                raise ConnectionResetError("Connection closed by peer")
            data.extend(chunk)
        return bytes(data)

    def _process_frame(self, payload: bytes) -> Optional[ISOFrame]:
        """Answer one frame, ``None`` closes the connection."""
        cotp = COTP.from_bytes(payload)
        if isinstance(cotp, COTPConnection):
            if cotp.pdu_type == COTPType.CONNECT_REQUEST:
                logger.debug(f"Received COTP CR, TSAP {cotp.local_tsap}/{cotp.remote_tsap}")
                return ISOFrame.wrap(COTPConnection.connect_confirm(cotp))
            logger.debug(f"Received COTP type {cotp.pdu_type:#04x}, closing")
            return None

        assert isinstance(cotp, COTPData)
        return ISOFrame.data(self._process_request(payload[cotp.byte_length() :]))

    def _process_request(self, data: bytes) -> S7PDU:
        """Build the answer to one S7 PDU."""
        header = Header.from_bytes(data)
        try:
            request = S7PDU.from_bytes(data)
        except S7ProtocolError as e:
            logger.warning(f"Unsupported request: {e}")
            return PDUBuilder.acknowledge(S7PDU(header), error_class=UNSUPPORTED_ERROR[0], error_code=UNSUPPORTED_ERROR[1])

        if request.message_type != MessageType.JOB or request.parameter is None:
            logger.warning(f"Unsupported message type {request.message_type}")
            return PDUBuilder.acknowledge(request, error_class=UNSUPPORTED_ERROR[0], error_code=UNSUPPORTED_ERROR[1])

        if isinstance(request.parameter, SetupComParameter):
            return self._handle_setup_communication(request, request.parameter)
        elif request.function_code == FunctionCode.READ_VARIABLE:
            return self._handle_read(request)
        return self._handle_write(request)

    def _handle_setup_communication(self, request: S7PDU, parameter: SetupComParameter) -> S7PDU:
        pdu_length = min(parameter.pdu_length, self.pdu_length)
        logger.debug(f"Negotiated PDU length {pdu_length} (requested {parameter.pdu_length})")
        reply = SetupComParameter(pdu_length, parameter.max_amq_caller, parameter.max_amq_callee)
        return PDUBuilder.acknowledge(request, reply)

    def _locate(self, item: RequestItem) -> Optional[Tuple[Tuple[Area, int], int, int]]:
        """Memory key, start offset and byte size addressed by ``item``, ``None`` if not served."""
        try:
            area = Area(item.area)
            variable_type = ParamVariableType(item.variable_type)
        except ValueError:
            return None
        area_key = (area, item.db_number if area in (Area.DB, Area.DI) else 0)
        memory = self.memory_areas.get(area_key)
        if memory is None:
            return None

        if variable_type == ParamVariableType.BIT:
            start, size = item.byte_address, 1
        elif area in (Area.TM, Area.CT):
            start, size = item.byte_address * 2, item.count * 2
        else:
            start, size = item.byte_address, item.count * variable_type.size
        if start + size > len(memory):
            return None
        return area_key, start, size

    def _handle_read(self, request: S7PDU) -> S7PDU:
        items: List[ReturnItem] = []
        for item in request.request_items:
            location = self._locate(item)
            if location is None:
                logger.warning(f"Read of unknown address: area {item.area:#04x} DB{item.db_number} at {item.byte_address}")
                items.append(DataItem(b"", DataVariableType.NULL, ReturnCode.OBJECT_DOES_NOT_EXIST))
                continue

            area_key, start, size = location
            with self.area_locks[area_key]:
                data = bytes(self.memory_areas[area_key][start : start + size])
            if item.variable_type == ParamVariableType.BIT:
                data = bytes([(data[0] >> item.bit_address) & 0x01])
            variable_type = DataVariableType.from_param(ParamVariableType(item.variable_type))
            items.append(DataItem(data, variable_type, ReturnCode.SUCCESS))
            logger.debug(f"Read {len(data)} bytes from {area_key[0].name}#{area_key[1]} at offset {start}")

        parameter = ReadWriteParameter(FunctionCode.READ_VARIABLE, item_count=len(items))
        return PDUBuilder.acknowledge(request, parameter, Datum(items))

    def _handle_write(self, request: S7PDU) -> S7PDU:
        items: List[ReturnItem] = []
        data_items = request.return_items
        for index, item in enumerate(request.request_items):
            location = self._locate(item)
            data_item = data_items[index] if index < len(data_items) else None
            if location is None:
                logger.warning(f"Write to unknown address: area {item.area:#04x} DB{item.db_number} at {item.byte_address}")
                items.append(ReturnItem(ReturnCode.OBJECT_DOES_NOT_EXIST))
                continue
            if not isinstance(data_item, DataItem) or len(data_item.data) != location[2]:
                items.append(ReturnItem(ReturnCode.DATA_TYPE_INCONSISTENT))
                continue

            area_key, start, size = location
            with self.area_locks[area_key]:
                memory = self.memory_areas[area_key]
                if item.variable_type == ParamVariableType.BIT:
                    mask = 1 << item.bit_address
                    memory[start] = (memory[start] | mask) if data_item.data[0] & 0x01 else (memory[start] & ~mask)
                else:
                    memory[start : start + size] = data_item.data
            items.append(ReturnItem(ReturnCode.SUCCESS))
            logger.debug(f"Wrote {size} bytes to {area_key[0].name}#{area_key[1]} at offset {start}")

        parameter = ReadWriteParameter(FunctionCode.WRITE_VARIABLE, item_count=len(items))
        return PDUBuilder.acknowledge(request, parameter, Datum(items))


def mainloop(tcp_port: int = 1102, init_standard_values: bool = False) -> None:
    """
    Run a server with default areas until interrupted.

    Args:
        tcp_port: port that the server will listen on
        init_standard_values: if True, fill DB1 with some known values
    """
    server = Server()

    db_data = bytearray(600)
    server.register_area(Area.DB, 1, db_data)
    for area in (Area.PA, Area.PE, Area.MK, Area.TM, Area.CT):
        server.register_area(area, 0, bytearray(100))

    if init_standard_values:
        logger.info("Initializing with standard values")
        db_data[0] = 0xAA
        struct.pack_into(">h", db_data, 30, -1234)
        struct.pack_into(">i", db_data, 40, 2147483647)
        struct.pack_into(">f", db_data, 60, 3.14)
        text = "the brown fox jumps over the lazy dog"
        db_data[100] = 254
        db_data[101] = len(text)
        db_data[102 : 102 + len(text)] = text.encode("ascii")

    server.start(tcp_port)
    try:
        logger.info(f"S7 server running on port {tcp_port}")
        logger.info("Press Ctrl+C to stop")
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        logger.info("Stopping server...")
    finally:
        server.stop()
