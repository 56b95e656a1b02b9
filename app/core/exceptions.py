from typing import Any, List, Optional

from fastapi import status


class EventServiceError(Exception):
    """Base error of the ingestion and query engine; carries the HTTP mapping."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "Something went wrong"

    def __init__(self, message: Optional[str] = None, errors: Optional[List[Any]] = None):
        self.message = message or self.default_message
        self.errors = errors or []
        super().__init__(self.message)


class ValidationError(EventServiceError):
    """Malformed or missing input fields."""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid event data"


class AuthenticationError(EventServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Authentication required"


class NotFoundError(EventServiceError):
    """Identity absent or owned by another tenant; the two cases are indistinguishable."""
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Event not found"


class CapacityError(EventServiceError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Request exceeds the allowed size"


class StoreError(EventServiceError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "Event store failure"


class IngestionError(EventServiceError):
    """Batch rejected before any write. `reason` is "empty" or "too_large"."""
    reason: str = ""


class EmptyBatchError(IngestionError, ValidationError):
    reason = "empty"
    default_message = "Events array is required and cannot be empty"


class BatchTooLargeError(IngestionError, CapacityError):
    reason = "too_large"

    def __init__(self, max_size: int):
        super().__init__(f"Maximum {max_size} events allowed per request")
        self.max_size = max_size
