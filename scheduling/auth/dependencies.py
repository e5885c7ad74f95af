from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from scheduling.auth import jwt_handler

ROLE_PROVIDER = "provider"
ROLE_CLIENT = "client"
ROLE_ADMIN = "admin"
ROLES = {ROLE_PROVIDER, ROLE_CLIENT, ROLE_ADMIN}

security = HTTPBearer()


@dataclass(frozen=True)
class Principal:
    """Authenticated caller as supplied by the identity provider."""

    user_id: int
    role: str


def get_current_principal(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Principal:
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    try:
        user_id = int(subject)
    except (TypeError, ValueError) as exc:
        raise HTTPException(status_code=401, detail="Invalid token subject") from exc

    role = payload.get("role")
    if role not in ROLES:
        raise HTTPException(status_code=403, detail="Unknown role")
    return Principal(user_id=user_id, role=role)


def require_provider(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != ROLE_PROVIDER:
        raise HTTPException(status_code=403, detail="Only providers can manage availability.")
    return principal


def require_client(principal: Principal = Depends(get_current_principal)) -> Principal:
    if principal.role != ROLE_CLIENT:
        raise HTTPException(status_code=403, detail="Only clients can book sessions.")
    return principal
