import pytest

from s7link.error import (
    S7ArgumentError,
    S7Error,
    S7FrameError,
    S7ProtocolError,
    S7SessionError,
    S7SizeError,
    S7TimeoutError,
    S7TransportError,
    error_class_text,
    return_code_text,
)
from s7link.type import ErrorClass, ReturnCode


@pytest.mark.error
class TestErrorTexts:
    def test_error_class_text(self) -> None:
        assert error_class_text(ErrorClass.NO_ERROR) == "No error"
        assert error_class_text(ErrorClass.ACCESS_ERROR) == "Access error"

    def test_unknown_error_class(self) -> None:
        assert error_class_text(0x99) == "Unknown error class: 0x99"

    def test_return_code_text(self) -> None:
        assert return_code_text(ReturnCode.SUCCESS) == "Success"
        assert return_code_text(ReturnCode.OBJECT_DOES_NOT_EXIST) == "Object does not exist"

    def test_unknown_return_code(self) -> None:
        assert return_code_text(0x02) == "Unknown return code: 0x02"


@pytest.mark.error
class TestErrorHierarchy:
    @pytest.mark.parametrize(
        "error",
        [S7TransportError, S7TimeoutError, S7FrameError, S7SessionError, S7ProtocolError, S7SizeError, S7ArgumentError],
    )
    def test_base_class(self, error: type) -> None:
        assert issubclass(error, S7Error)

    def test_timeout_is_transport_error(self) -> None:
        with pytest.raises(S7TransportError):
            raise S7TimeoutError("timed out")

    def test_argument_error_is_value_error(self) -> None:
        with pytest.raises(ValueError):
            raise S7ArgumentError("bad argument")

    def test_error_code(self) -> None:
        error = S7ProtocolError("Object does not exist", error_code=ReturnCode.OBJECT_DOES_NOT_EXIST)
        assert error.error_code == 0x0A
        assert str(error) == "Object does not exist"
        assert S7Error("plain").error_code is None
