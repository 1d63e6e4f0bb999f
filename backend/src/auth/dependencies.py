"""FastAPI dependencies for authentication.

This module provides dependency injection functions for extracting and
validating JWT tokens and turning their claims into a ``Principal``.
Authorization (membership, roles, cross-tenant rules) lives in ``authz``.

Usage:
    @app.get("/me")
    def me(principal: CurrentPrincipal):
        return {"email": principal.email}
"""

from typing import Annotated, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .jwt import decode_token
from .principal import Principal


# HTTP Bearer token security scheme; a missing header is not an error here
security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_optional_principal(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> Optional[Principal]:
    """Validate the Bearer token if one is sent.

    Returns:
        Principal, or None when the request carries no Authorization header

    Raises:
        HTTPException 401: If a token is present but invalid or expired
    """
    if credentials is None:
        return None

    try:
        payload = decode_token(credentials.credentials)
        principal = Principal.from_claims(payload)
    except jwt.ExpiredSignatureError:
        raise _unauthorized("Token has expired")
    except jwt.InvalidTokenError as e:
        raise _unauthorized(str(e))
    except (KeyError, ValueError) as e:
        raise _unauthorized(f"Invalid token claims: {str(e)}")

    # Read back by the tenant middleware when it records the access event
    request.state.principal = principal
    return principal


def get_current_principal(
    principal: Optional[Principal] = Depends(get_optional_principal),
) -> Principal:
    """Require an authenticated caller.

    Raises:
        HTTPException 401: If no valid token was sent
    """
    if principal is None:
        raise _unauthorized("Not authenticated")
    return principal


# Type aliases for dependency injection
CurrentPrincipal = Annotated[Principal, Depends(get_current_principal)]
OptionalPrincipal = Annotated[Optional[Principal], Depends(get_optional_principal)]
