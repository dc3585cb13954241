# src/shared/auth.py
"""
Request-scoped caller identity.

Every route resolves a CallerIdentity once and hands it to the service
layer explicitly. Two ways in:
- ``Authorization: Bearer <token>`` verified by the user directory;
- ``X-Internal-Token`` + ``X-Service-Name`` from a sibling service, which
  resolves to a service principal with the admin role (the calling service
  has already authorised its own user).
"""

from __future__ import annotations

import secrets
from typing import Annotated

from fastapi import Depends, Header

from src.common.constants import INTERNAL_TOKEN_HEADER, SERVICE_NAME_HEADER
from src.common.logger import log_warning
from src.config import settings
from src.infra.http_client import UsersClient
from src.shared.errors import UnauthenticatedError
from src.shared.models.enums import UserRole
from src.shared.models.user_dto import CallerIdentity


_users_client: UsersClient | None = None


def configure_auth(users_client: UsersClient | None) -> None:
    """Sets the directory client used to verify bearer tokens."""
    global _users_client
    _users_client = users_client


def get_users_client() -> UsersClient:
    if _users_client is None:
        raise RuntimeError("UsersClient is not configured. Call configure_auth() first.")
    return _users_client


def service_principal(service_name: str) -> CallerIdentity:
    """Identity used by a service acting on its own behalf."""
    return CallerIdentity(id=f"service:{service_name}", role=UserRole.ADMIN, service_name=service_name)


def parse_bearer(authorization: str | None) -> str:
    if not authorization:
        raise UnauthenticatedError("Authorization header is missing")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise UnauthenticatedError("Authorization header must be 'Bearer <token>'")
    return token.strip()


async def get_current_caller(
    authorization: Annotated[str | None, Header()] = None,
    x_internal_token: Annotated[str | None, Header(alias=INTERNAL_TOKEN_HEADER)] = None,
    x_service_name: Annotated[str | None, Header(alias=SERVICE_NAME_HEADER)] = None,
    users: UsersClient = Depends(get_users_client),
) -> CallerIdentity:
    """Resolves the caller of the current request or raises UnauthenticatedError (401)."""
    if x_internal_token is not None:
        expected = settings.security.INTERNAL_SERVICE_TOKEN
        if not expected or not secrets.compare_digest(x_internal_token, expected):
            await log_warning(
                "Rejected internal call with a bad token",
                extra={"service_name": x_service_name},
            )
            raise UnauthenticatedError("Invalid internal service token")
        return service_principal(x_service_name or "unknown")

    token = parse_bearer(authorization)
    return await users.verify_token(token)


CurrentCaller = Annotated[CallerIdentity, Depends(get_current_caller)]
