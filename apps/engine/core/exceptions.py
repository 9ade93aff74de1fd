"""
Custom exception classes.

The engine degrades to safe defaults on bad numbers; these are raised only
at the input boundary, where a caller handed over something structurally
unusable.
"""
from typing import Optional


class EngineError(Exception):
    """Base engine exception with consistent structure."""

    def __init__(self, detail: str, error_code: Optional[str] = None):
        super().__init__(detail)
        self.detail = detail
        self.error_code = error_code


class TelemetryFormatError(EngineError, ValueError):
    """Raw telemetry matches neither device wire format."""

    def __init__(self, detail: str):
        super().__init__(detail=detail, error_code="TELEMETRY_FORMAT")


class InvalidOverrideError(EngineError, ValueError):
    """Override names an unknown effect-size field or carries an unusable value."""

    def __init__(self, field: str, reason: Optional[str] = None):
        super().__init__(
            detail=f"Invalid effect-size override {field}: {reason}" if reason else f"Unknown effect-size override: {field}",
            error_code=f"INVALID_OVERRIDE_{field.upper()}"
        )
        self.field = field
