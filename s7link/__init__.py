"""
The s7link library.

Pure Python ISO on TCP / S7 protocol stack for reading and writing the
memory of S7-class PLCs.
"""

from importlib.metadata import version, PackageNotFoundError

from .client import Client
from .network import S7Network
from .server import Server
from .transport import TransportSocket
from .type import Area, Parameter
from .error import (
    S7Error,
    S7TransportError,
    S7TimeoutError,
    S7FrameError,
    S7SessionError,
    S7ProtocolError,
    S7SizeError,
    S7ArgumentError,
)

__all__ = [
    "Client",
    "S7Network",
    "Server",
    "TransportSocket",
    "Area",
    "Parameter",
    "S7Error",
    "S7TransportError",
    "S7TimeoutError",
    "S7FrameError",
    "S7SessionError",
    "S7ProtocolError",
    "S7SizeError",
    "S7ArgumentError",
]

try:
    __version__ = version("python-s7link")
except PackageNotFoundError:
    __version__ = "0.0rc0"
