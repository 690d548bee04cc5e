"""
S7 error handling and exception classes.

Maps transport, framing, session and protocol failures to Python exceptions
with meaningful messages.
"""

from typing import Dict, Optional

from .type import ErrorClass, ReturnCode


class S7Error(Exception):
    """Base exception for all S7 protocol errors."""

    def __init__(self, message: str, error_code: Optional[int] = None):
        super().__init__(message)
        self.error_code = error_code


class S7TransportError(S7Error):
    """Raised when the TCP connection cannot be established, written or read."""

    pass


class S7TimeoutError(S7TransportError):
    """Raised when a connect or receive operation times out."""

    pass


class S7FrameError(S7Error):
    """Raised when a declared frame length does not match the bytes on the wire."""

    pass


class S7SessionError(S7Error):
    """Raised when an unexpected COTP PDU type is received."""

    pass


class S7ProtocolError(S7Error):
    """Raised when the peer reports an error or answers inconsistently."""

    pass


class S7SizeError(S7Error):
    """Raised when a request does not fit the negotiated PDU length."""

    pass


class S7ArgumentError(S7Error, ValueError):
    """Raised on local precondition violations."""

    pass


error_class_texts: Dict[int, str] = {
    ErrorClass.NO_ERROR: "No error",
    ErrorClass.APPLICATION_RELATIONSHIP: "Application relationship error",
    ErrorClass.OBJECT_DEFINITION: "Object definition error",
    ErrorClass.NO_RESOURCES_AVAILABLE: "No resources available",
    ErrorClass.ERROR_ON_SERVICE_PROCESSING: "Error on service processing",
    ErrorClass.ERROR_ON_SUPPLIES: "Error on supplies",
    ErrorClass.ACCESS_ERROR: "Access error",
}

return_code_texts: Dict[int, str] = {
    ReturnCode.RESERVED: "Reserved",
    ReturnCode.HARDWARE_ERROR: "Hardware error",
    ReturnCode.ACCESS_OBJECT_NOT_ALLOWED: "Accessing the object not allowed",
    ReturnCode.INVALID_ADDRESS: "Invalid address",
    ReturnCode.DATA_TYPE_NOT_SUPPORTED: "Data type not supported",
    ReturnCode.DATA_TYPE_INCONSISTENT: "Data type inconsistent",
    ReturnCode.OBJECT_DOES_NOT_EXIST: "Object does not exist",
    ReturnCode.SUCCESS: "Success",
}


def error_class_text(error_class: int) -> str:
    """Get human-readable text for an S7 acknowledgement error class."""
    return error_class_texts.get(error_class, f"Unknown error class: {error_class:#04x}")


def return_code_text(return_code: int) -> str:
    """Get human-readable text for a per-item return code."""
    return return_code_texts.get(return_code, f"Unknown return code: {return_code:#04x}")
