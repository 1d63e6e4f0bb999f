"""Tenant isolation for every tenant-owned model.

Isolation is enforced by two SQLAlchemy session listeners, so it applies to
every query and flush without the calling code having to remember a filter:

- ``do_orm_execute``: ORM SELECT, UPDATE and DELETE statements touching a
  tenant-owned table get ``tenant_id = <context tenant>`` added through
  ``with_loader_criteria``; Core statements on tenant-owned ``Table`` objects
  get the same condition in their WHERE clause, and INSERTs issued through
  ``Session.execute`` are refused. A statement touching tenant-owned data without a
  valid tenant context is refused with ``TenantContextRequiredError``, unless
  it carries an ``AllTenantsGrant`` in its ``all_tenants`` execution option.
- ``before_flush``: new tenant-owned rows are stamped with the context tenant;
  new, modified or deleted rows of another tenant are refused with
  ``CrossTenantWriteError`` unless a cross-tenant write grant is active. The
  refusal happens before any SQL is emitted.

Tenant-owned models are found generically: anything mixing in
``models.base.TenantOwnedMixin``.

The tenant context reaches the session through ``session.info``; see
``attach_tenant_context``. Grants are only issued by ``grant_all_tenants`` and
``cross_tenant_writes``, both of which write an audit log entry.
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Generic, Iterator, List, Optional, Set, Type, TypeVar
from uuid import UUID

from sqlalchemy import Table, and_, event, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import ORMExecuteState, Session, with_loader_criteria
from sqlalchemy.sql.expression import Join
from sqlalchemy.sql.util import find_tables

from audit.service import AuditAction, log_audit_event
from models.base import Base, TenantOwnedMixin, is_tenant_owned
from observability.metrics import all_tenants_queries_total, cross_tenant_attempts_total
from .context import TenantContext
from .errors import (
    CrossTenantAccessError,
    CrossTenantWriteError,
    Result,
    TenantContextRequiredError,
    TenantError,
    TenantErrorKind,
    TenantIsolationError,
)


logger = logging.getLogger(__name__)

CONTEXT_KEY = "tenant_context"
CROSS_TENANT_WRITE_KEY = "cross_tenant_write"
ALL_TENANTS_OPTION = "all_tenants"

M = TypeVar("M")


class AllTenantsGrant:
    """Permission for exactly one statement to skip tenant filtering.

    Obtain one from ``grant_all_tenants`` (which audits the grant) and pass it
    as the ``all_tenants`` execution option:

        grant = grant_all_tenants(db, "admin_horse_report", principal)
        horses = db.scalars(select(Horse).execution_options(all_tenants=grant)).all()
    """

    __slots__ = ("operation", "principal_id", "issued_at", "_used")

    def __init__(self, operation: str, principal_id: Optional[UUID]):
        self.operation = operation
        self.principal_id = principal_id
        self.issued_at = datetime.now(timezone.utc)
        self._used = False

    def consume(self) -> bool:
        if self._used:
            return False
        self._used = True
        return True


class CrossTenantWriteGrant:
    __slots__ = ("operation", "principal_id")

    def __init__(self, operation: str, principal_id: Optional[UUID]):
        self.operation = operation
        self.principal_id = principal_id


def attach_tenant_context(session: Session, context: Optional[TenantContext]) -> Session:
    """Bind ``context`` to ``session``; all later statements are scoped to it."""
    session.info[CONTEXT_KEY] = context
    return session


def session_context(session: Session) -> Optional[TenantContext]:
    return session.info.get(CONTEXT_KEY)


def _session_tenant_id(session: Session) -> Optional[UUID]:
    context = session_context(session)
    if context is None or not context.is_valid:
        return None
    return context.tenant_id


def tenant_owned_tables() -> Set[str]:
    """Names of the tables of every mapped class carrying the tenant-owned tag."""
    return {
        mapper.local_table.name
        for mapper in Base.registry.mappers
        if is_tenant_owned(mapper.class_)
    }


def _owned_tables_in(statement) -> List[Table]:
    owned = tenant_owned_tables()
    found: List[Table] = []
    for table in find_tables(statement, include_aliases=True, include_crud=True):
        if isinstance(table, Table) and table.name in owned and table not in found:
            found.append(table)
    return found


def _touches_tenant_owned(execute_state: ORMExecuteState) -> bool:
    if any(is_tenant_owned(mapper.class_) for mapper in execute_state.all_mappers):
        return True
    return bool(_owned_tables_in(execute_state.statement))


def _direct_froms(statement) -> List[Any]:
    """FROM elements of a Core statement with joins flattened; the target table for DML."""
    if statement.is_dml:
        return [statement.table]
    pending = list(statement.get_final_froms())
    froms = []
    while pending:
        from_ = pending.pop()
        if isinstance(from_, Join):
            pending.extend((from_.left, from_.right))
        else:
            froms.append(from_)
    return froms


def _scope_core_statement(statement, tenant_id: UUID):
    """Add ``tenant_id`` criteria to a Core statement on tenant-owned tables.

    Loader criteria only reach ORM entities, so plain ``Table`` statements are
    filtered here. Tenant-owned tables reached only through an alias or a
    subquery cannot be filtered reliably and are refused.
    """
    owned = _owned_tables_in(statement)
    direct = []
    if hasattr(statement, "where"):
        direct = [from_ for from_ in _direct_froms(statement) if isinstance(from_, Table) and from_ in owned]
    unscoped = [table.name for table in owned if table not in direct]
    if unscoped:
        names = ", ".join(sorted(unscoped))
        logger.error(f"Statement on tenant-owned tables refused: cannot scope {names}")
        raise TenantContextRequiredError(
            f"Statement on tenant-owned table(s) {names} cannot be scoped to the tenant"
        )
    return statement.where(and_(*(table.c.tenant_id == tenant_id for table in direct)))


@event.listens_for(Session, "do_orm_execute")
def _scope_tenant_owned_statements(execute_state: ORMExecuteState) -> None:
    # Inserts through session.execute skip stamping in before_flush
    if execute_state.is_insert:
        if _touches_tenant_owned(execute_state) and CROSS_TENANT_WRITE_KEY not in execute_state.session.info:
            cross_tenant_attempts_total.labels(blocked="true").inc()
            raise CrossTenantWriteError("Tenant-owned rows must be added through the session, not bulk inserts")
        return
    if not (execute_state.is_select or execute_state.is_update or execute_state.is_delete):
        return
    # Refreshes and lazy loads operate on rows that were already scoped
    if execute_state.is_select and (execute_state.is_column_load or execute_state.is_relationship_load):
        return
    if not _touches_tenant_owned(execute_state):
        return

    grant = execute_state.execution_options.get(ALL_TENANTS_OPTION)
    if isinstance(grant, AllTenantsGrant):
        if not grant.consume():
            raise TenantContextRequiredError(
                f"All-tenants grant for '{grant.operation}' has already been used"
            )
        return

    tenant_id = _session_tenant_id(execute_state.session)
    if tenant_id is None:
        logger.error("Query on tenant-owned data refused: no tenant context")
        raise TenantContextRequiredError("Tenant context is required to access tenant-owned data")

    if not execute_state.is_orm_statement:
        execute_state.statement = _scope_core_statement(execute_state.statement, tenant_id)
        return

    execute_state.statement = execute_state.statement.options(
        with_loader_criteria(
            TenantOwnedMixin,
            lambda cls: cls.tenant_id == tenant_id,
            include_aliases=True,
        )
    )


def _reject_cross_tenant_write(instance, operation: str, context_tenant_id: UUID) -> None:
    cross_tenant_attempts_total.labels(blocked="true").inc()
    logger.warning(
        f"Blocked cross-tenant {operation} of {type(instance).__name__} "
        f"owned by tenant {instance.tenant_id}",
        extra={"tenant_id": context_tenant_id},
    )
    raise CrossTenantWriteError(
        f"Cannot {operation} {type(instance).__name__} belonging to another tenant"
    )


@event.listens_for(Session, "before_flush")
def _stamp_and_check_tenant_writes(session: Session, flush_context, instances) -> None:
    tenant_id = _session_tenant_id(session)
    grant = session.info.get(CROSS_TENANT_WRITE_KEY)

    for operation, pending in (("create", session.new), ("update", session.dirty), ("delete", session.deleted)):
        for instance in list(pending):
            if not is_tenant_owned(instance):
                continue
            if operation == "update" and not session.is_modified(instance):
                continue
            if tenant_id is None:
                if grant is not None and instance.tenant_id is not None:
                    continue
                raise TenantContextRequiredError(
                    f"Tenant context is required to {operation} {type(instance).__name__}"
                )
            if operation == "create" and instance.tenant_id is None:
                instance.tenant_id = tenant_id
                continue
            if instance.tenant_id != tenant_id and grant is None:
                _reject_cross_tenant_write(instance, operation, tenant_id)


def _require_system_admin(principal, error_type, message: str) -> UUID:
    if principal is None or not getattr(principal, "is_system_admin", False):
        cross_tenant_attempts_total.labels(blocked="true").inc()
        logger.warning(message, extra={"user_id": getattr(principal, "user_id", None)})
        raise error_type(message)
    return principal.user_id


def grant_all_tenants(db: Session, operation: str, principal) -> AllTenantsGrant:
    """Issue an audited single-statement all-tenants grant.

    Args:
        db: Session the grant will be used with (the audit entry is added to it)
        operation: Short description of why tenant filtering is skipped
        principal: Caller, recorded as the actor; must be a system administrator

    Returns:
        AllTenantsGrant: Pass as ``execution_options(all_tenants=grant)``

    Raises:
        CrossTenantAccessError: If the principal is not a system administrator
    """
    principal_id = _require_system_admin(
        principal, CrossTenantAccessError, "Only system administrators may query across tenants"
    )
    log_audit_event(
        db,
        tenant_id=_session_tenant_id(db),
        action=AuditAction.ALL_TENANTS_QUERY,
        actor_id=principal_id,
        metadata={"operation": operation},
    )
    all_tenants_queries_total.labels(operation=operation).inc()
    logger.warning(
        f"All-tenants query granted for '{operation}'",
        extra={"user_id": principal_id},
    )
    return AllTenantsGrant(operation, principal_id)


@contextmanager
def cross_tenant_writes(db: Session, operation: str, principal) -> Iterator[CrossTenantWriteGrant]:
    """Allow writes to other tenants' rows inside the block.

    Only system administrators may open the block; the grant is audited and
    removed on exit.

    Raises:
        CrossTenantWriteError: If the principal is not a system administrator
    """
    principal_id = _require_system_admin(
        principal, CrossTenantWriteError, "Only system administrators may write across tenants"
    )

    log_audit_event(
        db,
        tenant_id=_session_tenant_id(db),
        action=AuditAction.CROSS_TENANT_WRITE,
        actor_id=principal_id,
        metadata={"operation": operation},
    )
    cross_tenant_attempts_total.labels(blocked="false").inc()
    logger.warning(f"Cross-tenant writes enabled for '{operation}'", extra={"user_id": principal_id})

    previous = db.info.get(CROSS_TENANT_WRITE_KEY)
    grant = CrossTenantWriteGrant(operation, principal_id)
    db.info[CROSS_TENANT_WRITE_KEY] = grant
    try:
        yield grant
    finally:
        if previous is None:
            db.info.pop(CROSS_TENANT_WRITE_KEY, None)
        else:
            db.info[CROSS_TENANT_WRITE_KEY] = previous


class TenantRepository(Generic[M]):
    """Tenant-scoped data access for one tenant-owned model.

    Every method runs against the session's tenant; the isolation listeners
    do the filtering, and failures come back as ``Result`` values.

    Example:
        horses = TenantRepository(db, Horse)
        result = horses.add(Horse(name="Dakota"))
        if not result.is_ok:
            return problem_response(result.error, request)
    """

    def __init__(self, db: Session, model: Type[M]):
        if not is_tenant_owned(model):
            raise TypeError(f"{model.__name__} is not a tenant-owned model")
        self.db = db
        self.model = model

    @property
    def tenant_id(self) -> Optional[UUID]:
        return _session_tenant_id(self.db)

    def list(self, **filters: Any) -> List[M]:
        stmt = select(self.model).filter_by(**filters)
        return list(self.db.scalars(stmt).all())

    def get_by_id(self, entity_id: UUID) -> Result[M]:
        try:
            entity = self.db.get(self.model, entity_id)
        except TenantIsolationError as e:
            return Result.fail(e.to_error())
        # Identity-map hits skip the query listener, so ownership is checked again
        if entity is None or not self.validate_ownership(entity):
            return Result.fail(TenantError(
                TenantErrorKind.NOT_FOUND, f"{self.model.__name__} {entity_id} not found", title="Not found"
            ))
        return Result.ok(entity)

    def add(self, entity: M) -> Result[M]:
        tenant_id = self.tenant_id
        if tenant_id is None:
            return Result.fail(TenantError.access_denied("Tenant context is required"))
        if entity.tenant_id is not None and entity.tenant_id != tenant_id:
            cross_tenant_attempts_total.labels(blocked="true").inc()
            logger.warning(
                f"Refused to add {self.model.__name__} for tenant {entity.tenant_id}",
                extra={"tenant_id": tenant_id},
            )
            return Result.fail(TenantError.cross_tenant(
                f"Cannot create {self.model.__name__} for another tenant"
            ))
        entity.tenant_id = tenant_id
        self.db.add(entity)
        return self._commit(entity)

    def update(self, entity: M) -> Result[M]:
        if not self.validate_ownership(entity):
            return Result.fail(TenantError.cross_tenant(
                f"Cannot update {self.model.__name__} belonging to another tenant"
            ))
        return self._commit(entity)

    def delete(self, entity_id: UUID) -> Result[M]:
        found = self.get_by_id(entity_id)
        if not found.is_ok:
            return found
        self.db.delete(found.value)
        return self._commit(None, refresh=False)

    def count(self, **filters: Any) -> int:
        stmt = select(func.count()).select_from(self.model).filter_by(**filters)
        return self.db.execute(stmt).scalar_one()

    def exists(self, **filters: Any) -> bool:
        return self.count(**filters) > 0

    def validate_ownership(self, entity: M) -> bool:
        tenant_id = self.tenant_id
        return tenant_id is not None and entity.tenant_id == tenant_id

    def _commit(self, entity: Optional[M], refresh: bool = True) -> Result[M]:
        try:
            self.db.commit()
        except TenantIsolationError as e:
            self.db.rollback()
            return Result.fail(e.to_error())
        except IntegrityError as e:
            self.db.rollback()
            logger.warning(f"{self.model.__name__} write rejected by constraint: {e.orig}")
            return Result.fail(TenantError.conflict(f"{self.model.__name__} conflicts with an existing record"))
        if entity is not None and refresh:
            self.db.refresh(entity)
        return Result.ok(entity)


def ensure_within_limit(db: Session, context: TenantContext, model: type, limit_key: str) -> Result[int]:
    """Check a per-tenant limit against a fresh database count.

    Args:
        db: Session scoped to ``context``
        context: Current tenant context (its configuration holds the limit)
        model: Tenant-owned model being created
        limit_key: Configuration field, e.g. ``"max_users"``

    Returns:
        Result[int]: The current count, or ACCESS_DENIED when the limit is reached
    """
    if not context.is_valid:
        return Result.fail(TenantError.access_denied("Tenant context is required"))
    limit = context.configuration.limit_for(limit_key)
    current = db.execute(select(func.count()).select_from(model)).scalar_one()
    if limit is not None and current >= limit:
        logger.info(
            f"Tenant {context.subdomain} reached {limit_key}={limit}",
            extra={"tenant_id": context.tenant_id, "subdomain": context.subdomain},
        )
        return Result.fail(TenantError(
            TenantErrorKind.ACCESS_DENIED, f"Tenant limit reached: {limit_key}={limit}", title="Tenant limit reached"
        ))
    return Result.ok(current)

