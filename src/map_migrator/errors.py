from __future__ import annotations


class MigrationError(ValueError):
    """Base class for all errors raised by the transformation engine."""


class ValidationError(MigrationError):
    def __init__(self, message: str, *, reason: str) -> None:
        super().__init__(message)
        self.reason = reason


class SingularMatrixError(MigrationError):
    def __init__(self, determinant: float) -> None:
        super().__init__(
            f"Cannot invert singular matrix (determinant={determinant:.3e})"
        )
        self.determinant = determinant


__all__ = ["MigrationError", "SingularMatrixError", "ValidationError"]
