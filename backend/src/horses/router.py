"""Horse endpoints.

Horses are tenant-owned: the session filters every query to the request's
tenant and stamps new rows with it. Reading requires membership of the
tenant; creating and deleting require the HorseManagement policy, and
creation is bounded by the tenant's ``max_horses`` limit.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy import select

from authz.dependencies import require_policy
from authz.policies import HORSE_MANAGEMENT, TENANT_USER
from models.horse import Horse
from tenancy.dependencies import RequiredTenantContext, TenantDB
from tenancy.errors import problem_response
from tenancy.isolation import TenantRepository, ensure_within_limit
from .schemas import HorseCreate, HorseListResponse, HorseResponse


router = APIRouter(prefix="/horses", tags=["Horses"])


@router.get(
    "",
    response_model=HorseListResponse,
    dependencies=[Depends(require_policy(TENANT_USER))],
)
def list_horses(
    db: TenantDB,
    status_filter: Optional[str] = Query(None, alias="status"),
) -> HorseListResponse:
    stmt = select(Horse).order_by(Horse.name)
    if status_filter:
        stmt = stmt.where(Horse.status == status_filter)
    horses = db.scalars(stmt).all()
    return HorseListResponse(horses=[HorseResponse.model_validate(h) for h in horses], total=len(horses))


@router.get(
    "/{horse_id}",
    response_model=HorseResponse,
    dependencies=[Depends(require_policy(TENANT_USER))],
)
def get_horse(horse_id: UUID, request: Request, db: TenantDB):
    found = TenantRepository(db, Horse).get_by_id(horse_id)
    if not found.is_ok:
        return problem_response(found.error, request)
    return HorseResponse.model_validate(found.value)


@router.post(
    "",
    response_model=HorseResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_policy(HORSE_MANAGEMENT))],
)
def create_horse(data: HorseCreate, request: Request, context: RequiredTenantContext, db: TenantDB):
    """Add a horse to the current tenant.

    Raises:
        403: Tenant horse limit reached
    """
    within_limit = ensure_within_limit(db, context, Horse, "max_horses")
    if not within_limit.is_ok:
        return problem_response(within_limit.error, request)

    result = TenantRepository(db, Horse).add(Horse(**data.model_dump()))
    if not result.is_ok:
        return problem_response(result.error, request)
    return HorseResponse.model_validate(result.value)


@router.delete(
    "/{horse_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_policy(HORSE_MANAGEMENT))],
)
def delete_horse(horse_id: UUID, request: Request, db: TenantDB):
    result = TenantRepository(db, Horse).delete(horse_id)
    if not result.is_ok:
        return problem_response(result.error, request)
    return None
