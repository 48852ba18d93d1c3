"""Tests for the error hierarchy and classification."""

import pytest
from pipemeter.errors import (
    PipemeterError, ConfigurationError, StageError, StreamStateError, classify_error
)


class TestPipemeterErrors:
    """Test error types."""

    def test_base_error(self):
        """Test base PipemeterError carries message and context."""
        error = PipemeterError("Test error", stage_index=2)

        assert str(error) == "Test error"
        assert error.message == "Test error"
        assert error.context == {"stage_index": 2}

    def test_inheritance(self):
        """Test specific errors derive from the base."""
        for error_class in (ConfigurationError, StageError, StreamStateError):
            error = error_class("failed", path="/tmp/x")
            assert isinstance(error, PipemeterError)
            assert error.context == {"path": "/tmp/x"}

    def test_raise_and_catch_as_base(self):
        """Test specific errors can be caught through the base class."""
        with pytest.raises(PipemeterError):
            raise StageError("read failed")


class TestClassifyError:
    """Test classify_error categories."""

    @pytest.mark.parametrize("error,category", [
        (ConfigurationError("x"), "configuration"),
        (StageError("x"), "stage"),
        (StreamStateError("x"), "state"),
        (PermissionError("x"), "permission"),
        (FileNotFoundError("x"), "not_found"),
        (ConnectionResetError("x"), "network"),
        (OSError("x"), "io"),
        (ValueError("x"), "unknown"),
    ])
    def test_categories(self, error, category):
        """Test each exception type maps to its category."""
        assert classify_error(error) == category
