from __future__ import annotations

from typing import Any, Dict, Optional


class ServiceError(RuntimeError):
    def __init__(self, message: str, *, code: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.code = code
        self.details = details or {}


class TransportError(ServiceError):
    def __init__(self, message: str, *, code: str = "TRANSPORT_ERROR", details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code=code, details=details)


class TransportTimeoutError(TransportError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="TRANSPORT_TIMEOUT", details=details)


class TransportUnavailableError(TransportError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="TRANSPORT_UNAVAILABLE", details=details)


class ValidationError(ServiceError):
    def __init__(self, message: str, *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="VALIDATION_ERROR", details=details)
