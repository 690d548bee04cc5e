import logging

import pytest

from s7link.server import Server
from s7link.type import Area

logging.basicConfig(level=logging.WARNING)

db_number = 1


def pytest_configure(config: pytest.Config) -> None:
    for marker in ("codec", "isotcp", "pdu", "transport", "network", "client", "server", "error"):
        config.addinivalue_line("markers", f"{marker}: {marker} layer tests")


@pytest.fixture
def db_data() -> bytearray:
    data = bytearray(600)
    data[0:4] = b"\x01\x02\x03\x04"
    return data


@pytest.fixture
def testserver(db_data: bytearray):
    server = Server()
    server.register_area(Area.DB, db_number, db_data)
    for area in (Area.PE, Area.PA, Area.MK, Area.TM, Area.CT):
        server.register_area(area, 0, bytearray(100))
    server.start(tcp_port=0)
    yield server
    server.stop()
