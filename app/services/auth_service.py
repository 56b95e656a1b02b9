from abc import ABC, abstractmethod
from typing import Annotated, Optional

from fastapi import Depends, Request
from loguru import logger
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.core.config import settings
from app.core.exceptions import AuthenticationError, StoreError
from app.db.db_helper import DataBaseHelper, db_helper
from app.db.models.projects import Project as DBProject
from app.schemas.tenants import TenantContext


def require_tenant(tenant: Optional[TenantContext]) -> TenantContext:
    """Every core operation starts here; nothing reaches the store without a resolved tenant."""
    if tenant is None or not tenant.organization_id or not tenant.project_id:
        raise AuthenticationError("Authentication required - organizationId/projectId missing")
    return tenant


class TenantResolver(ABC):
    """Read-only lookup from a presented API key to its tenant."""

    @abstractmethod
    async def resolve(self, api_key: str) -> TenantContext:
        ...


class SqlTenantResolver(TenantResolver):

    def __init__(self, db: DataBaseHelper = db_helper):
        self.db = db

    async def resolve(self, api_key: str) -> TenantContext:
        stmt = select(DBProject).where(DBProject.api_key == api_key)
        try:
            async with self.db.session() as session:
                project = (await session.execute(stmt)).scalar_one_or_none()
        except SQLAlchemyError as e:
            logger.error(f"Error resolving API key: {e}")
            raise StoreError("Error resolving API key") from e

        if project is None:
            logger.warning(f"Authentication failed: unknown API key {api_key[:6]}...")
            raise AuthenticationError("Invalid or inactive API key")

        return TenantContext(
            organization_id=str(project.organization_id),
            project_id=str(project.id),
        )


def extract_api_key(request: Request) -> str:
    """Read the key from the API key header, falling back to `Authorization: Bearer`."""
    api_key = request.headers.get(settings.auth.api_key_header)
    if not api_key:
        authorization = request.headers.get("Authorization", "")
        if authorization.startswith("Bearer "):
            api_key = authorization[len("Bearer "):]
    api_key = (api_key or "").strip()

    if not api_key:
        raise AuthenticationError(f"API key is required in headers ({settings.auth.api_key_header})")
    if not api_key.startswith(settings.auth.api_key_prefix):
        raise AuthenticationError("Invalid API key format")
    return api_key


def get_tenant_resolver() -> TenantResolver:
    return SqlTenantResolver()


async def get_tenant_context(
    request: Request,
    resolver: Annotated[TenantResolver, Depends(get_tenant_resolver)],
) -> TenantContext:
    api_key = extract_api_key(request)
    tenant = await resolver.resolve(api_key)
    logger.debug(f"Resolved API key to project {tenant.project_id}")
    return tenant
