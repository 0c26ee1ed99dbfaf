"""
Shared error handling for the OSM GeoJSON tooling.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)


class GeoJSONError(Exception):
    """Base exception for the OSM GeoJSON tooling."""

    status_code = 500

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None, *, public: bool = True) -> ErrorResponse:
        """Convert to error response; ``public`` strips details."""
        return ErrorResponse(
            request_id=request_id,
            code=self.code,
            message=self.message,
            details={} if public else self.details,
        )


class InvalidInputError(GeoJSONError):
    """Malformed or empty relation id, or invalid options."""

    status_code = 400

    def __init__(self, message: str = "Invalid input", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_INPUT", message, details)


class RelationNotFoundError(GeoJSONError):
    """The upstream service does not know the relation."""

    status_code = 404

    def __init__(self, relation_id: int, details: Optional[Dict[str, Any]] = None):
        self.relation_id = relation_id
        super().__init__("NOT_FOUND", f"relation {relation_id} not found", details)


class ArtifactNotFoundError(GeoJSONError):
    """No artifact is stored under the requested name."""

    status_code = 404

    def __init__(self, name: str):
        self.name = name
        super().__init__("NOT_FOUND", "artifact not found", {"artifact": name})


class UpstreamTransientError(GeoJSONError):
    """Network failure, timeout or 5xx from the upstream service. Retryable."""

    status_code = 502

    def __init__(self, message: str = "Upstream request failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("UPSTREAM_TRANSIENT", message, details)


class UpstreamRateLimitedError(UpstreamTransientError):
    """The upstream service throttled us. Retryable."""

    def __init__(self, message: str = "Upstream rate limit hit", details: Optional[Dict[str, Any]] = None,
                 retry_after: Optional[float] = None):
        super().__init__(message, details)
        self.code = "UPSTREAM_RATE_LIMITED"
        self.retry_after = retry_after


class UpstreamUnavailableError(GeoJSONError):
    """Fetch failed after all retries."""

    status_code = 502

    def __init__(self, relation_id: int, message: str = "Upstream unavailable", details: Optional[Dict[str, Any]] = None):
        self.relation_id = relation_id
        super().__init__("UPSTREAM_UNAVAILABLE", f"relation {relation_id}: {message}", details)


class CycleDetectedError(GeoJSONError):
    """A relation refers back to one of its ancestors. Informational only."""

    def __init__(self, relation_id: int, parent_id: int):
        self.relation_id = relation_id
        self.parent_id = parent_id
        super().__init__(
            "CYCLE_DETECTED",
            f"relation {parent_id} refers back to ancestor {relation_id}",
            {"relation_id": relation_id, "parent_id": parent_id},
        )


class MissingGeometryError(GeoJSONError):
    """A relation produced no polygon geometry and was skipped."""

    status_code = 422

    def __init__(self, relation_id: int, details: Optional[Dict[str, Any]] = None):
        self.relation_id = relation_id
        super().__init__("MISSING_GEOMETRY", f"relation {relation_id} has no area geometry", details)


class StorageUnavailableError(GeoJSONError):
    """Output directory missing or not writable."""

    status_code = 503

    def __init__(self, message: str = "Storage unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__("STORAGE_UNAVAILABLE", message, details)


class SerializationError(GeoJSONError):
    """Malformed geometry for one record; the write is aborted."""

    status_code = 500

    def __init__(self, message: str = "Serialization failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("SERIALIZATION_FAILURE", message, details)


class RateLimitError(GeoJSONError):
    """Rate limiting errors."""

    status_code = 429

    def __init__(self, message: str = "Rate limit exceeded", details: Optional[Dict[str, Any]] = None,
                 headers: Optional[Dict[str, str]] = None):
        self.headers = headers or {}
        super().__init__("RATE_LIMITED", message, details)
