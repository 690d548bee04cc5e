"""
TCP transport with liveness probing and lazy reconnect.

A :class:`TransportSocket` owns at most one live TCP connection. The
connection is opened on the first ``write``/``read`` and replaced whenever
the liveness probe or an I/O call finds it dead. Every new connection runs
the ``on_connected`` hook before it is handed out, which is where the ISO
and S7 handshake happens.
"""

import logging
import socket
import threading
from typing import Callable, Optional

from .error import S7ArgumentError, S7TimeoutError, S7TransportError
from .type import iso_tcp_port

logger = logging.getLogger(__name__)

DEFAULT_CONNECT_TIMEOUT = 10.0
DEFAULT_RECEIVE_TIMEOUT = 10.0
DEFAULT_HEARTBEAT_INTERVAL = 1.0

PROBE = b"\xff"


class TransportSocket:
    """
    One TCP connection to an ISO on TCP peer.

    Examples:
        >>> transport = TransportSocket("192.168.0.1")
        >>> transport.write(b"\\x03\\x00\\x00\\x07\\x02\\xf0\\x80")
        >>> header = transport.read_exact(4)
    """

    def __init__(
        self,
        host: str,
        port: int = iso_tcp_port,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
        receive_timeout: float = DEFAULT_RECEIVE_TIMEOUT,
        heartbeat_interval: Optional[float] = DEFAULT_HEARTBEAT_INTERVAL,
        on_connected: Optional[Callable[[], None]] = None,
    ):
        """
        Args:
            host: peer address
            port: peer TCP port
            connect_timeout: seconds to wait for the TCP connect
            receive_timeout: default seconds to wait in ``read``
            heartbeat_interval: seconds between liveness probes, ``None`` disables probing
            on_connected: called once after every new connection, before any caller I/O
        """
        self.host = host
        self.port = port
        self.connect_timeout = connect_timeout
        self.receive_timeout = receive_timeout
        self.heartbeat_interval = heartbeat_interval
        self.on_connected = on_connected

        self._socket: Optional[socket.socket] = None
        self._io_lock = threading.RLock()
        self._errored = threading.Event()
        self._heartbeat_thread: Optional[threading.Thread] = None
        self._heartbeat_stop: Optional[threading.Event] = None

    def __enter__(self) -> "TransportSocket":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    @property
    def connected(self) -> bool:
        """True while a connection exists and the liveness probe has not flagged it."""
        return self._socket is not None and not self._errored.is_set()

    @property
    def errored(self) -> bool:
        return self._errored.is_set()

    def connect(self) -> None:
        """Make sure a live connection exists, reconnecting if needed."""
        with self._io_lock:
            self._available_socket()

    def close(self) -> None:
        """Close the connection, if any. The next I/O call reconnects."""
        with self._io_lock:
            if self._socket is not None:
                logger.info(f"Disconnected from {self.host}:{self.port}")
            self._teardown()

    def write(self, data: bytes, offset: int = 0, length: Optional[int] = None, reconnect: bool = True) -> None:
        """
        Send ``length`` bytes of ``data`` starting at ``offset``.

        With ``reconnect=False`` a dead or missing connection is an error
        instead of being replaced.

        Raises:
            S7TransportError: when the connection cannot be established or the send fails.
        """
        if length is None:
            length = len(data) - offset
        if offset < 0 or length < 0 or offset + length > len(data):
            raise S7ArgumentError(f"Invalid slice offset={offset} length={length} of {len(data)} bytes")

        with self._io_lock:
            sock = self._available_socket() if reconnect else self._current_socket()
            try:
                sock.sendall(memoryview(data)[offset : offset + length])
            except socket.timeout as e:
                self._teardown()
                raise S7TimeoutError(f"Send to {self.host}:{self.port} timed out") from e
            except OSError as e:
                self._teardown()
                raise S7TransportError(f"Send to {self.host}:{self.port} failed: {e}") from e
        logger.debug(f"Sent {length} bytes")

    def read(
        self,
        buffer: bytearray,
        offset: int = 0,
        length: Optional[int] = None,
        timeout: Optional[float] = None,
        reconnect: bool = True,
    ) -> int:
        """
        Receive up to ``length`` bytes into ``buffer`` at ``offset``.

        Blocks until some data arrives. Returns the number of bytes read, or 0
        when the peer closed the connection. With ``reconnect=False`` a dead or
        missing connection raises instead of being replaced.

        Raises:
            S7TimeoutError: when nothing arrives within ``timeout`` (default: receive_timeout).
            S7TransportError: on any other socket failure.
        """
        if length is None:
            length = len(buffer) - offset
        if offset < 0 or length < 0 or offset + length > len(buffer):
            raise S7ArgumentError(f"Invalid slice offset={offset} length={length} of {len(buffer)} bytes")

        with self._io_lock:
            sock = self._available_socket() if reconnect else self._current_socket()
            try:
                sock.settimeout(self.receive_timeout if timeout is None else timeout)
                received = sock.recv_into(memoryview(buffer)[offset : offset + length], length)
            except socket.timeout as e:
                # the late answer would be taken for the next one
                self._teardown()
                raise S7TimeoutError(f"Receive from {self.host}:{self.port} timed out") from e
            except OSError as e:
                self._teardown()
                raise S7TransportError(f"Receive from {self.host}:{self.port} failed: {e}") from e
            if received == 0:
                logger.info(f"Connection closed by {self.host}:{self.port}")
                self._teardown()
        return received

    def read_exact(self, length: int, timeout: Optional[float] = None) -> bytes:
        """Receive exactly ``length`` bytes."""
        buffer = bytearray(length)
        received = 0
        while received < length:
            chunk = self.read(buffer, received, length - received, timeout)
            if chunk == 0:
                raise S7TransportError(f"Connection closed by peer after {received} of {length} bytes")
            received += chunk
        return bytes(buffer)

    def _available_socket(self) -> socket.socket:
        if self._socket is not None and not self._errored.is_set():
            return self._socket
        if self._socket is not None:
            logger.warning(f"Connection to {self.host}:{self.port} is dead, reconnecting")
            self._teardown()

        sock = self._open()
        self._socket = sock
        self._start_heartbeat(sock)
        if self.on_connected is not None:
            try:
                self.on_connected()
            except Exception:
                self._teardown()
                raise
        return sock

    def _current_socket(self) -> socket.socket:
        if self._socket is None or self._errored.is_set():
            raise S7TransportError(f"Connection to {self.host}:{self.port} was lost")
        return self._socket

    def _open(self) -> socket.socket:
        logger.info(f"Connecting to {self.host}:{self.port}")
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM, socket.IPPROTO_TCP)
        sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)
        sock.settimeout(self.connect_timeout)
        try:
            sock.connect((self.host, self.port))
        except socket.timeout as e:
            sock.close()
            raise S7TimeoutError(f"TCP connection to {self.host}:{self.port} timed out") from e
        except OSError as e:
            sock.close()
            raise S7TransportError(f"TCP connection to {self.host}:{self.port} failed: {e}") from e
        sock.settimeout(self.receive_timeout)
        self._errored.clear()
        logger.debug(f"TCP connected to {self.host}:{self.port}")
        return sock

    def _teardown(self) -> None:
        if self._heartbeat_stop is not None:
            self._heartbeat_stop.set()
        if self._heartbeat_thread is not None and self._heartbeat_thread is not threading.current_thread():
            self._heartbeat_thread.join(timeout=1.0)
        self._heartbeat_thread = None
        self._heartbeat_stop = None

        if self._socket is not None:
            try:
                self._socket.close()
            except OSError as e:
                logger.debug(f"Error closing socket: {e}")
            self._socket = None
        self._errored.clear()

    def _start_heartbeat(self, sock: socket.socket) -> None:
        if not self.heartbeat_interval:
            return
        stop = threading.Event()
        thread = threading.Thread(target=self._heartbeat, args=(sock, stop), name=f"s7link-heartbeat-{self.host}", daemon=True)
        self._heartbeat_stop = stop
        self._heartbeat_thread = thread
        thread.start()

    def _heartbeat(self, sock: socket.socket, stop: threading.Event) -> None:
        """Send a 1-byte urgent probe every interval until stopped or the send fails."""
        assert self.heartbeat_interval is not None
        while not stop.wait(self.heartbeat_interval):
            # foreground I/O owns the socket, try again next tick
            if not self._io_lock.acquire(blocking=False):
                continue
            try:
                if stop.is_set():
                    return
                sock.send(PROBE, socket.MSG_OOB)
            except OSError as e:
                logger.warning(f"Liveness probe to {self.host}:{self.port} failed: {e}")
                if self._socket is sock:
                    self._errored.set()
                return
            finally:
                self._io_lock.release()
