"""Tenant resolution from request metadata.

Sources are consulted in a strict priority order and the first one that
yields a candidate wins; later sources are never read:

1. Host subdomain (``acme.rescueranger.com`` -> ``acme``), unless the label is
   reserved (``www``, ``api``, ...), in which case resolution moves on.
2. ``X-Tenant-Id`` header (tenant ID), then ``X-Tenant-Subdomain`` header.
3. ``tenant`` query parameter.
4. Outside production only: the configured development tenant.

A candidate that is syntactically invalid or reserved is rejected before any
directory lookup. The resolver only reads the request; it never writes a
response. ``TenantResolutionMiddleware`` turns its results into responses.
"""

import ipaddress
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional
from uuid import UUID

from starlette.requests import HTTPConnection

from config import Settings, get_settings
from models.tenant import SUBDOMAIN_PATTERN
from .context import TenantInfo
from .directory import TenantDirectory
from .errors import Result, TenantError


logger = logging.getLogger(__name__)

TENANT_ID_HEADER = "X-Tenant-Id"
TENANT_SUBDOMAIN_HEADER = "X-Tenant-Subdomain"
TENANT_QUERY_PARAM = "tenant"

MIN_SUBDOMAIN_LENGTH = 3
MAX_SUBDOMAIN_LENGTH = 63


class ResolutionSource(str, Enum):
    HOST = "host"
    HEADER_ID = "header_id"
    HEADER_SUBDOMAIN = "header_subdomain"
    QUERY = "query"
    DEVELOPMENT_DEFAULT = "development_default"


@dataclass(frozen=True)
class TenantCandidate:
    """A tenant identifier found in the request, not yet looked up."""
    source: ResolutionSource
    subdomain: Optional[str] = None
    tenant_id: Optional[UUID] = None

    @property
    def label(self) -> str:
        return self.subdomain if self.subdomain else str(self.tenant_id)


def extract_host_subdomain(host: Optional[str], base_domain: str) -> Optional[str]:
    """Return the tenant label of ``host`` under ``base_domain``.

    The port is ignored. ``localhost``, IP literals, hosts outside the base
    domain and hosts with more than one extra label yield None.

    Examples:
        >>> extract_host_subdomain("acme.rescueranger.com:8443", "rescueranger.com")
        'acme'
        >>> extract_host_subdomain("rescueranger.com", "rescueranger.com") is None
        True
    """
    if not host:
        return None
    host = host.strip().lower()
    if host.startswith("["):
        # IPv6 literal
        return None
    host = host.split(":", 1)[0].rstrip(".")
    if not host or host == "localhost":
        return None
    try:
        ipaddress.ip_address(host)
        return None
    except ValueError:
        pass

    suffix = "." + base_domain.strip().strip(".").lower()
    if not host.endswith(suffix):
        return None
    label = host[: -len(suffix)]
    if not label or "." in label:
        return None
    return label


def validate_subdomain(value: str, reserved: Iterable[str] = ()) -> Result[str]:
    """Check that ``value`` is a usable tenant subdomain.

    Returns:
        Result[str]: The lowercased subdomain, or MALFORMED_INPUT
    """
    normalized = (value or "").strip().lower()
    if not (MIN_SUBDOMAIN_LENGTH <= len(normalized) <= MAX_SUBDOMAIN_LENGTH):
        return Result.fail(TenantError.malformed(
            f"Tenant subdomain must be between {MIN_SUBDOMAIN_LENGTH} and "
            f"{MAX_SUBDOMAIN_LENGTH} characters"
        ))
    if not SUBDOMAIN_PATTERN.match(normalized):
        return Result.fail(TenantError.malformed(
            "Tenant subdomain may only contain lowercase letters, digits and hyphens "
            "and must not start or end with a hyphen"
        ))
    if normalized in set(reserved):
        return Result.fail(TenantError.malformed(f"'{normalized}' is a reserved subdomain"))
    return Result.ok(normalized)


class TenantResolver:
    """Find and look up the tenant a request belongs to.

    Example:
        resolver = TenantResolver(settings)
        result = resolver.resolve(request, directory)
        if not result.is_ok:
            return problem_response(result.error, request)
        tenant = result.value  # TenantInfo, or None when the request names no tenant
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.reserved = frozenset(s.lower() for s in self.settings.RESERVED_SUBDOMAINS)

    def find_candidate(self, request: HTTPConnection) -> Result[Optional[TenantCandidate]]:
        """Read the request signals in priority order.

        Returns:
            Result: The first candidate found, None when no source names a
            tenant, or MALFORMED_INPUT for an invalid or reserved identifier
        """
        reserved_host_label = None

        host_label = extract_host_subdomain(request.headers.get("host"), self.settings.BASE_DOMAIN)
        if host_label is not None:
            if host_label in self.reserved:
                reserved_host_label = host_label
            else:
                checked = validate_subdomain(host_label, self.reserved)
                if not checked.is_ok:
                    return Result.fail(checked.error)
                return Result.ok(TenantCandidate(ResolutionSource.HOST, subdomain=checked.value))

        raw_id = (request.headers.get(TENANT_ID_HEADER) or "").strip()
        if raw_id:
            try:
                return Result.ok(TenantCandidate(ResolutionSource.HEADER_ID, tenant_id=UUID(raw_id)))
            except ValueError:
                return Result.fail(TenantError.malformed(f"{TENANT_ID_HEADER} must be a valid UUID"))

        raw_subdomain = (request.headers.get(TENANT_SUBDOMAIN_HEADER) or "").strip()
        if raw_subdomain:
            return self._subdomain_candidate(raw_subdomain, ResolutionSource.HEADER_SUBDOMAIN)

        raw_query = (request.query_params.get(TENANT_QUERY_PARAM) or "").strip()
        if raw_query:
            return self._subdomain_candidate(raw_query, ResolutionSource.QUERY)

        if reserved_host_label is not None:
            return Result.fail(TenantError.malformed(
                f"'{reserved_host_label}' is a reserved subdomain and does not identify a tenant"
            ))

        if self._development_fallback_enabled():
            return self._subdomain_candidate(
                self.settings.DEVELOPMENT_TENANT, ResolutionSource.DEVELOPMENT_DEFAULT
            )

        return Result.ok(None)

    def lookup(self, candidate: TenantCandidate, directory: TenantDirectory) -> Result[TenantInfo]:
        """Look a candidate up in the directory and check accessibility.

        Returns:
            Result[TenantInfo]: The tenant, NOT_FOUND, ACCESS_DENIED for a
            tenant that is not ACTIVE or PROVISIONING, or INTERNAL_FAILURE when
            the lookup itself fails
        """
        try:
            if candidate.tenant_id is not None:
                tenant = directory.get_by_id(candidate.tenant_id)
            else:
                tenant = directory.get_by_subdomain(candidate.subdomain)
        except Exception:
            logger.exception(f"Tenant lookup failed for '{candidate.label}'")
            return Result.fail(TenantError.internal())

        if tenant is None:
            return Result.fail(TenantError.not_found(f"Tenant '{candidate.label}' was not found"))
        if not tenant.can_access:
            logger.warning(
                f"Access to tenant '{tenant.subdomain}' denied: status {tenant.status.value}",
                extra={"tenant_id": tenant.id, "subdomain": tenant.subdomain},
            )
            return Result.fail(TenantError.access_denied(
                f"Tenant '{tenant.subdomain}' is not accessible (status: {tenant.status.value})"
            ))
        return Result.ok(tenant)

    def resolve(self, request: HTTPConnection, directory: TenantDirectory) -> Result[Optional[TenantInfo]]:
        """Find the candidate and look it up in one step."""
        found = self.find_candidate(request)
        if not found.is_ok or found.value is None:
            return found
        return self.lookup(found.value, directory)

    def _subdomain_candidate(self, raw: str, source: ResolutionSource) -> Result[Optional[TenantCandidate]]:
        checked = validate_subdomain(raw, self.reserved)
        if not checked.is_ok:
            return Result.fail(checked.error)
        return Result.ok(TenantCandidate(source, subdomain=checked.value))

    def _development_fallback_enabled(self) -> bool:
        return (
            not self.settings.is_production
            and self.settings.TENANT_DEV_FALLBACK_ENABLED
            and bool(self.settings.DEVELOPMENT_TENANT)
        )
