"""
Snap7-style client on top of the exchange engine.

Adds rack/slot addressing, chunked area reads and writes that fit the
negotiated PDU length, multi-variable access and the numbered client
parameters.
"""

import logging
from typing import Any, Dict, List, Optional

from .error import S7ArgumentError, S7TransportError
from .network import DEFAULT_LOCAL_TSAP, DEFAULT_PDU_REQUEST, DEFAULT_REMOTE_TSAP, S7Network
from .pdu import DataItem, RequestItem
from .transport import DEFAULT_CONNECT_TIMEOUT, DEFAULT_HEARTBEAT_INTERVAL, DEFAULT_RECEIVE_TIMEOUT
from .type import Area, DataVariableType, Parameter, iso_tcp_port

logger = logging.getLogger(__name__)

MAX_VARS = 20

# Per-request bytes around the payload: read answer 12 + 2 + 4, write job 10 + 14 + 4 plus margin.
READ_OVERHEAD = 18
WRITE_OVERHEAD = 35


class Client:
    """
    S7 client.

    Examples:
        >>> import s7link
        >>> client = s7link.Client()
        >>> client.connect("192.168.0.1", 0, 2)
        >>> data = client.db_read(1, 0, 4)
        >>> client.db_write(1, 0, data)
    """

    def __init__(self, **kwargs: Any):
        """
        Args:
            **kwargs: defaults for the underlying :class:`S7Network`
                (``connect_timeout``, ``receive_timeout``, ``heartbeat_interval``, ``pdu_overhead``).
        """
        self.address = ""
        self.local_tsap = DEFAULT_LOCAL_TSAP
        self.remote_tsap = DEFAULT_REMOTE_TSAP
        self.tcp_port = iso_tcp_port
        self.pdu_request = DEFAULT_PDU_REQUEST
        self.connect_timeout: float = kwargs.pop("connect_timeout", DEFAULT_CONNECT_TIMEOUT)
        self.receive_timeout: float = kwargs.pop("receive_timeout", DEFAULT_RECEIVE_TIMEOUT)
        self.heartbeat_interval: Optional[float] = kwargs.pop("heartbeat_interval", DEFAULT_HEARTBEAT_INTERVAL)
        self._network_options = kwargs
        self._network: Optional[S7Network] = None

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *args: object) -> None:
        self.disconnect()

    def connect(self, address: str, rack: int, slot: int, tcp_port: int = iso_tcp_port) -> "Client":
        """
        Connect to a PLC.

        Args:
            address: PLC IP address
            rack: rack number
            slot: slot number
            tcp_port: TCP port

        Returns:
            Self for method chaining
        """
        self.remote_tsap = 0x0100 | (rack << 5) | slot
        return self.connect_tsap(address, tcp_port)

    def connect_tsap(self, address: str, tcp_port: Optional[int] = None) -> "Client":
        """Connect using the TSAPs set with :meth:`set_connection_params`."""
        self.disconnect()
        self.address = address
        if tcp_port is not None:
            self.tcp_port = tcp_port
        network = S7Network(
            address,
            self.tcp_port,
            local_tsap=self.local_tsap,
            remote_tsap=self.remote_tsap,
            pdu_request=self.pdu_request,
            connect_timeout=self.connect_timeout,
            receive_timeout=self.receive_timeout,
            heartbeat_interval=self.heartbeat_interval,
            **self._network_options,
        )
        network.connect()
        self._network = network
        logger.info(f"Connected to {address}:{self.tcp_port} TSAP {self.local_tsap:04x}/{self.remote_tsap:04x}")
        return self

    def disconnect(self) -> None:
        if self._network is not None:
            self._network.close()
            self._network = None

    def get_connected(self) -> bool:
        return self._network is not None and self._network.connected

    @property
    def network(self) -> S7Network:
        if self._network is None:
            raise S7TransportError("Not connected")
        return self._network

    def get_pdu_length(self) -> int:
        """Negotiated PDU length, 0 when not connected."""
        return 0 if self._network is None else self._network.pdu_length

    def set_connection_params(self, address: str, local_tsap: int, remote_tsap: int) -> None:
        """
        Set the address and TSAPs used by :meth:`connect_tsap`.

        Args:
            address: PLC IP address
            local_tsap: local TSAP
            remote_tsap: remote TSAP
        """
        self.address = address
        self.local_tsap = local_tsap
        self.remote_tsap = remote_tsap
        logger.debug(f"Connection params set: {address}, TSAP {local_tsap:04x}/{remote_tsap:04x}")

    def get_param(self, param: Parameter) -> int:
        """Get a client parameter. Timeouts and intervals are in milliseconds."""
        if param == Parameter.RemotePort:
            return self.tcp_port
        elif param == Parameter.PingTimeout:
            return int(self.connect_timeout * 1000)
        elif param == Parameter.RecvTimeout:
            return int(self.receive_timeout * 1000)
        elif param == Parameter.WorkInterval:
            return int((self.heartbeat_interval or 0) * 1000)
        elif param == Parameter.SrcTSap:
            return self.local_tsap
        elif param == Parameter.RemoteTSap:
            return self.remote_tsap
        elif param == Parameter.PDURequest:
            return self.pdu_request
        raise S7ArgumentError(f"Parameter {param} not valid for client")

    def set_param(self, param: Parameter, value: int) -> None:
        """Set a client parameter. The value is used from the next connect on."""
        if param == Parameter.RemotePort:
            if self.get_connected():
                raise S7ArgumentError("Cannot change RemotePort while connected")
            self.tcp_port = value
        elif param == Parameter.PingTimeout:
            self.connect_timeout = value / 1000
        elif param == Parameter.RecvTimeout:
            self.receive_timeout = value / 1000
        elif param == Parameter.WorkInterval:
            self.heartbeat_interval = value / 1000 if value > 0 else None
        elif param == Parameter.SrcTSap:
            self.local_tsap = value
        elif param == Parameter.RemoteTSap:
            self.remote_tsap = value
        elif param == Parameter.PDURequest:
            self.pdu_request = value
        else:
            raise S7ArgumentError(f"Parameter {param} not valid for client")
        logger.debug(f"Set param {param}={value}")

    def _elements_per_request(self, area: Area, overhead: int) -> int:
        element_size = area.variable_type().size
        elements = (self.network.max_pdu_length - overhead) // element_size
        if elements < 1:
            raise S7ArgumentError(f"Negotiated PDU length {self.network.pdu_length} is too small for {area.name} access")
        return elements

    def read_area(self, area: Area, db_number: int, start: int, size: int) -> bytearray:
        """
        Read from a memory area, splitting the read to fit the negotiated PDU length.

        Args:
            area: memory area
            db_number: DB number, only used for DB and DI
            start: start byte, or first timer/counter
            size: number of bytes, or of timers/counters

        Returns:
            Data read from the area
        """
        area = Area(area)
        self.network.connect()
        per_request = self._elements_per_request(area, READ_OVERHEAD)
        result = bytearray()
        offset = 0
        while offset < size:
            count = min(per_request, size - offset)
            item = RequestItem.create(area, start + offset, count, db_number)
            result += self.network.read_item(item).data
            offset += count
        logger.debug(f"read_area: {area.name} DB{db_number} start={start} size={size}")
        return result

    def write_area(self, area: Area, db_number: int, start: int, data: bytearray) -> None:
        """
        Write to a memory area, splitting the write to fit the negotiated PDU length.

        Args:
            area: memory area
            db_number: DB number, only used for DB and DI
            start: start byte, or first timer/counter
            data: bytes to write
        """
        area = Area(area)
        element_size = area.variable_type().size
        if len(data) % element_size:
            raise S7ArgumentError(f"{area.name} data must be a multiple of {element_size} bytes")
        self.network.connect()
        per_request = self._elements_per_request(area, WRITE_OVERHEAD)
        data_type = DataVariableType.from_param(area.variable_type())
        amount = len(data) // element_size
        offset = 0
        while offset < amount:
            count = min(per_request, amount - offset)
            item = RequestItem.create(area, start + offset, count, db_number)
            chunk = data[offset * element_size : (offset + count) * element_size]
            self.network.write_item(item, DataItem.create(bytes(chunk), data_type))
            offset += count
        logger.debug(f"write_area: {area.name} DB{db_number} start={start} size={len(data)}")

    def db_read(self, db_number: int, start: int, size: int) -> bytearray:
        return self.read_area(Area.DB, db_number, start, size)

    def db_write(self, db_number: int, start: int, data: bytearray) -> None:
        self.write_area(Area.DB, db_number, start, data)

    def mb_read(self, start: int, size: int) -> bytearray:
        """Read from the merker (flag) area."""
        return self.read_area(Area.MK, 0, start, size)

    def mb_write(self, start: int, size: int, data: bytearray) -> None:
        """Write to the merker (flag) area."""
        self.write_area(Area.MK, 0, start, data[:size])

    def eb_read(self, start: int, size: int) -> bytearray:
        """Read from the process input area."""
        return self.read_area(Area.PE, 0, start, size)

    def eb_write(self, start: int, size: int, data: bytearray) -> None:
        """Write to the process input area."""
        self.write_area(Area.PE, 0, start, data[:size])

    def ab_read(self, start: int, size: int) -> bytearray:
        """Read from the process output area."""
        return self.read_area(Area.PA, 0, start, size)

    def ab_write(self, start: int, data: bytearray) -> None:
        """Write to the process output area."""
        self.write_area(Area.PA, 0, start, data)

    def tm_read(self, start: int, amount: int) -> bytearray:
        """Read timers, 2 bytes each."""
        return self.read_area(Area.TM, 0, start, amount)

    def ct_read(self, start: int, amount: int) -> bytearray:
        """Read counters, 2 bytes each."""
        return self.read_area(Area.CT, 0, start, amount)

    @staticmethod
    def _request_item(spec: Dict[str, Any], size: int) -> RequestItem:
        area = Area(spec["area"])
        return RequestItem.create(area, spec["start"], size, spec.get("db_number", 0))

    def read_multi_vars(self, items: List[Dict[str, Any]]) -> List[bytearray]:
        """
        Read several variables in a single exchange.

        Args:
            items: dicts with ``area``, ``start``, ``size`` and, for DBs, ``db_number``

        Returns:
            One bytearray per item, in order
        """
        if not items:
            return []
        if len(items) > MAX_VARS:
            raise S7ArgumentError(f"Too many items: {len(items)} > {MAX_VARS}")
        request_items = [self._request_item(item, item["size"]) for item in items]
        return [bytearray(data_item.data) for data_item in self.network.read_items(request_items)]

    def write_multi_vars(self, items: List[Dict[str, Any]]) -> None:
        """
        Write several variables in a single exchange.

        Args:
            items: dicts with ``area``, ``start``, ``data`` and, for DBs, ``db_number``
        """
        if not items:
            return
        if len(items) > MAX_VARS:
            raise S7ArgumentError(f"Too many items: {len(items)} > {MAX_VARS}")
        request_items = []
        data_items = []
        for item in items:
            request_item = self._request_item(item, len(item["data"]) // Area(item["area"]).variable_type().size)
            request_items.append(request_item)
            data_items.append(DataItem.create(bytes(item["data"]), DataVariableType.from_param(Area(item["area"]).variable_type())))
        self.network.write_items(request_items, data_items)
