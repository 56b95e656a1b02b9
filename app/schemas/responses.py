from typing import Any, Generic, List, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

DataT = TypeVar("DataT")


class ApiResponse(BaseModel, Generic[DataT]):
    """Envelope for every successful response."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    status_code: int
    data: Optional[DataT] = None
    message: str = "Success"
    success: bool = True


class ErrorResponse(BaseModel):
    """Envelope for every error response."""
    success: bool = False
    message: str
    errors: List[Any] = Field(default_factory=list)
    data: None = None
