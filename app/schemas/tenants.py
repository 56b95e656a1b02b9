from typing import Optional

from pydantic import BaseModel, ConfigDict


class TenantContext(BaseModel):
    """The (organization, project) pair every core operation is scoped by."""
    model_config = ConfigDict(frozen=True)

    organization_id: str
    project_id: str


class RequestMetadata(BaseModel):
    """Transport details captured at ingestion time."""
    model_config = ConfigDict(frozen=True)

    user_agent: Optional[str] = None
    ip_address: Optional[str] = None
