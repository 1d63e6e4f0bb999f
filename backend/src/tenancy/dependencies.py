"""FastAPI dependencies exposing the tenant context to handlers.

Example:
    @router.get("/horses")
    def list_horses(context: RequiredTenantContext, db: TenantDB):
        ...
"""

import logging
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from database import get_db
from .cache import TenantCache
from .context import TenantContext
from .directory import TenantDirectory
from .isolation import attach_tenant_context


logger = logging.getLogger(__name__)


def get_tenant_context(request: Request) -> TenantContext:
    """The context created by ``TenantResolutionMiddleware`` (empty when absent)."""
    context = getattr(request.state, "tenant_context", None)
    if context is None:
        context = TenantContext()
        request.state.tenant_context = context
    return context


def require_tenant_context(context: TenantContext = Depends(get_tenant_context)) -> TenantContext:
    """Like ``get_tenant_context`` but rejects requests that resolved no tenant.

    Raises:
        HTTPException 400: If no tenant was identified for the request
    """
    if not context.is_valid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Tenant identifier required",
        )
    return context


def get_tenant_cache(request: Request) -> TenantCache:
    return request.app.state.tenant_cache


def get_directory(
    request: Request,
    db: Session = Depends(get_db),
) -> TenantDirectory:
    return TenantDirectory(db, request.app.state.tenant_cache, request.app.state.settings)


def get_tenant_db(
    context: TenantContext = Depends(get_tenant_context),
    db: Session = Depends(get_db),
    directory: TenantDirectory = Depends(get_directory),
) -> Session:
    """The request's session, scoped to the request's tenant.

    The tenant is re-read from the directory first, so a tenant suspended
    after its request was resolved gets no session.

    Raises:
        HTTPException 403: If the resolved tenant is no longer accessible
    """
    if context.is_valid and not context.validate_access(directory):
        logger.warning(
            f"Tenant '{context.subdomain}' became inaccessible after resolution",
            extra={"tenant_id": context.tenant_id},
        )
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Tenant '{context.subdomain}' is no longer accessible",
        )
    return attach_tenant_context(db, context)


CurrentTenantContext = Annotated[TenantContext, Depends(get_tenant_context)]
RequiredTenantContext = Annotated[TenantContext, Depends(require_tenant_context)]
TenantDB = Annotated[Session, Depends(get_tenant_db)]
Directory = Annotated[TenantDirectory, Depends(get_directory)]
