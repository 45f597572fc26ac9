"""Tests for the Ok/Err result helpers."""
from formwork.errors import BooleanOperationError, GeometryError, GeometryExtractionError
from formwork.result import Err, Ok, capture, unwrap_or


def _boom():
    raise RuntimeError("kernel failure")


def test_capture_wraps_value():
    result = capture(lambda x: x * 2, 21)
    assert isinstance(result, Ok)
    assert result.ok
    assert result.value == 42


def test_capture_converts_library_errors():
    result = capture(_boom, error_cls=GeometryExtractionError, message="read")
    assert isinstance(result, Err)
    assert not result.ok
    assert isinstance(result.error, GeometryExtractionError)
    assert "read: RuntimeError: kernel failure" in str(result.error)


def test_capture_passes_formwork_errors_through():
    def raise_boolean():
        raise BooleanOperationError("union failed", operation="union")

    result = capture(raise_boolean)
    assert isinstance(result.error, BooleanOperationError)
    assert result.error.operation == "union"


def test_unwrap_or():
    ok = Ok(3)
    err = Err(GeometryError("bad"))
    assert unwrap_or(ok, 0) == 3
    assert unwrap_or(err, 0) == 0
