import queue
import socket
import threading
import time
from typing import List

import pytest

from s7link.error import S7ArgumentError, S7TimeoutError, S7TransportError
from s7link.transport import TransportSocket


class Listener:
    """Plain TCP listener handing accepted sockets to the test."""

    def __init__(self) -> None:
        self.sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        self.sock.bind(("127.0.0.1", 0))
        self.sock.listen(5)
        self.port = self.sock.getsockname()[1]
        self.connections: "queue.Queue[socket.socket]" = queue.Queue()
        self.accepted: List[socket.socket] = []
        self.thread = threading.Thread(target=self._accept, daemon=True)
        self.thread.start()

    def _accept(self) -> None:
        while True:
            try:
                conn, _ = self.sock.accept()
            except OSError:
                return
            self.accepted.append(conn)
            self.connections.put(conn)

    def accept(self, timeout: float = 5.0) -> socket.socket:
        return self.connections.get(timeout=timeout)

    def close(self) -> None:
        self.sock.close()
        for conn in self.accepted:
            conn.close()


@pytest.fixture
def listener():
    listener = Listener()
    yield listener
    listener.close()


@pytest.mark.transport
class TestTransportSocket:
    def test_lazy_connect(self, listener: Listener) -> None:
        transport = TransportSocket("127.0.0.1", listener.port, heartbeat_interval=None)
        assert not transport.connected
        transport.write(b"hello")
        assert transport.connected
        peer = listener.accept()
        assert peer.recv(5) == b"hello"
        transport.close()
        assert not transport.connected

    def test_read(self, listener: Listener) -> None:
        with TransportSocket("127.0.0.1", listener.port, heartbeat_interval=None) as transport:
            transport.connect()
            peer = listener.accept()
            peer.sendall(b"world")
            assert transport.read_exact(5) == b"world"

    def test_read_into_offset(self, listener: Listener) -> None:
        with TransportSocket("127.0.0.1", listener.port, heartbeat_interval=None) as transport:
            transport.connect()
            listener.accept().sendall(b"\x01")
            buffer = bytearray(3)
            assert transport.read(buffer, 2, 1) == 1
            assert buffer == bytearray(b"\x00\x00\x01")

    def test_write_slice(self, listener: Listener) -> None:
        with TransportSocket("127.0.0.1", listener.port, heartbeat_interval=None) as transport:
            transport.write(b"abcdef", 2, 3)
            assert listener.accept().recv(10) == b"cde"

    def test_invalid_slice(self) -> None:
        transport = TransportSocket("127.0.0.1", 1, heartbeat_interval=None)
        with pytest.raises(S7ArgumentError):
            transport.write(b"abc", 2, 5)

    def test_read_timeout(self, listener: Listener) -> None:
        with TransportSocket("127.0.0.1", listener.port, heartbeat_interval=None) as transport:
            transport.connect()
            with pytest.raises(S7TimeoutError):
                transport.read(bytearray(4), timeout=0.2)
            assert not transport.connected

    def test_peer_closed(self, listener: Listener) -> None:
        with TransportSocket("127.0.0.1", listener.port, heartbeat_interval=None) as transport:
            transport.connect()
            listener.accept().close()
            assert transport.read(bytearray(4)) == 0
            assert not transport.connected

    def test_read_exact_peer_closed(self, listener: Listener) -> None:
        with TransportSocket("127.0.0.1", listener.port, heartbeat_interval=None) as transport:
            transport.connect()
            peer = listener.accept()
            peer.sendall(b"\x01\x02")
            peer.close()
            with pytest.raises(S7TransportError):
                transport.read_exact(4)

    def test_connection_refused(self) -> None:
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.bind(("127.0.0.1", 0))
        port = sock.getsockname()[1]
        sock.close()

        transport = TransportSocket("127.0.0.1", port, connect_timeout=1.0, heartbeat_interval=None)
        with pytest.raises(S7TransportError):
            transport.connect()
        assert not transport.connected

    def test_on_connected_runs_once_per_connection(self, listener: Listener) -> None:
        calls = []
        transport = TransportSocket("127.0.0.1", listener.port, heartbeat_interval=None, on_connected=lambda: calls.append(1))
        transport.write(b"a")
        transport.write(b"b")
        assert len(calls) == 1
        transport.close()
        transport.write(b"c")
        assert len(calls) == 2
        transport.close()

    def test_on_connected_failure_closes(self, listener: Listener) -> None:
        def fail() -> None:
            raise S7TransportError("handshake failed")

        transport = TransportSocket("127.0.0.1", listener.port, heartbeat_interval=None, on_connected=fail)
        with pytest.raises(S7TransportError, match="handshake failed"):
            transport.connect()
        assert not transport.connected

    def test_heartbeat_disabled(self, listener: Listener) -> None:
        with TransportSocket("127.0.0.1", listener.port, heartbeat_interval=None) as transport:
            transport.connect()
            assert transport._heartbeat_thread is None

    def test_heartbeat_flags_dead_peer(self, listener: Listener) -> None:
        calls = []
        transport = TransportSocket(
            "127.0.0.1", listener.port, heartbeat_interval=0.05, on_connected=lambda: calls.append(1)
        )
        transport.connect()
        assert transport._heartbeat_thread is not None
        listener.accept().close()

        deadline = time.time() + 5.0
        while not transport.errored and time.time() < deadline:
            time.sleep(0.05)
        assert transport.errored
        assert not transport.connected

        # the next foreground call reconnects and re-runs the hook
        transport.write(b"x")
        assert transport.connected
        assert len(calls) == 2
        transport.close()

    def test_lost_connection_without_reconnect(self, listener: Listener) -> None:
        calls = []
        transport = TransportSocket("127.0.0.1", listener.port, heartbeat_interval=None, on_connected=lambda: calls.append(1))
        with pytest.raises(S7TransportError):
            transport.read(bytearray(1), reconnect=False)
        assert not calls

        transport.connect()
        transport._errored.set()
        with pytest.raises(S7TransportError, match="was lost"):
            transport.write(b"x", reconnect=False)
        with pytest.raises(S7TransportError, match="was lost"):
            transport.read(bytearray(4), reconnect=False)
        assert len(calls) == 1

        transport.write(b"y")
        assert len(calls) == 2
        transport.close()
