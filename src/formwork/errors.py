"""Error taxonomy for formwork generation.

Geometry and parameter errors are recovered where they happen and recorded
in the analysis session. Only ``ModelUnavailableError`` aborts a run.
"""

from __future__ import annotations

from typing import Optional


class FormworkError(Exception):
    """Base class for all formwork errors."""

    def __init__(self, message: str, element_id: Optional[int] = None):
        super().__init__(message)
        self.element_id = element_id


class GeometryError(FormworkError):
    """Base class for recoverable geometry failures."""


class GeometryExtractionError(GeometryError):
    """No usable solids or faces could be read for an element."""


class BooleanOperationError(GeometryError):
    """A union, intersection or difference failed or came out degenerate."""

    def __init__(
        self,
        message: str,
        element_id: Optional[int] = None,
        operation: str = "",
    ):
        super().__init__(message, element_id=element_id)
        self.operation = operation


class ParameterWriteError(FormworkError):
    """A parameter is missing, has the wrong storage type, or is read-only."""

    def __init__(
        self,
        message: str,
        element_id: Optional[int] = None,
        parameter: str = "",
    ):
        super().__init__(message, element_id=element_id)
        self.parameter = parameter


class UserCancellationError(FormworkError):
    """The user ended an interactive pick loop."""


class ModelUnavailableError(FormworkError):
    """The host model cannot be used. Fatal for the whole run."""
