"""Error kinds raised by the ingestion and retrieval services.

The HTTP layer maps each kind to a status code; services never raise
HTTPException themselves.
"""

from typing import Any, Dict, List, Optional


class ServiceError(Exception):
    """Base class for every error the services surface to callers."""

    status_code: int = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict[str, Any]:
        return {"success": False, "error": type(self).__name__, "message": self.message}


class ValidationError(ServiceError):
    """Input failed schema or business-rule validation. Caller can fix and retry."""

    status_code = 400

    def __init__(self, message: str, details: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.details = details or []

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["details"] = self.details
        return payload


class NotFound(ServiceError):
    status_code = 404


class Conflict(ServiceError):
    """Expected revision did not match the stored one."""

    status_code = 409

    def __init__(self, message: str, current_version: Optional[int] = None):
        super().__init__(message)
        self.current_version = current_version

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["current_version"] = self.current_version
        return payload


class ExtractionFailed(ServiceError):
    """The vision model could not be asked (transport error, timeout)."""

    status_code = 502


class InvalidResponseFormat(ExtractionFailed):
    """The vision model answered, but not in a usable shape."""

    status_code = 422


class PersistenceError(ServiceError):
    """Storage unavailable or write rejected.

    orphan_id is set when a question was stored but its embedding was not.
    """

    status_code = 503

    def __init__(self, message: str, orphan_id: Optional[str] = None):
        super().__init__(message)
        self.orphan_id = orphan_id

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        if self.orphan_id:
            payload["orphan_id"] = self.orphan_id
        return payload
