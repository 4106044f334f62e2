# portico/common/exceptions/exceptions.py
# =============================================================================
# Custom exceptions for Portico
# =============================================================================

from typing import Optional


class PorticoException(Exception):
    """Base exception for Portico"""
    pass


class ServiceError(PorticoException):
    """
    Request-level error carrying an HTTP status.

    Route handlers raise it to answer with {"message": ...} and the given
    status instead of a generic 500.
    """

    def __init__(self, message: str = "Internal Server Error", status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class StartupError(PorticoException):
    """Raised when the server cannot be assembled"""

    def __init__(self, message: str, step: Optional[str] = None):
        super().__init__(message)
        self.step = step


class StaticAssetsError(StartupError):
    """Raised when the prebuilt client directory is missing"""
    pass


class TransformPipelineError(PorticoException):
    """Raised when the development transform pipeline is unavailable or fails"""
    pass


class DatabaseInitError(PorticoException):
    """Raised when database initialization fails"""
    pass
