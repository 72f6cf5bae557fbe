from dataclasses import dataclass, field

from fastapi import Depends, HTTPException, status
from jose import JWTError, jwt
from starlette.requests import Request

from app.context import get_correlation_id, set_tenant_id
from app.core.config import get_settings


@dataclass
class AuthUser:
    sub: str
    roles: list[str]
    tenant_id: str | None = None


@dataclass
class ActorUser:
    user_id: str
    tenant_id: str | None = None
    roles: set[str] = field(default_factory=set)
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        normalized = {role.lower() for role in self.roles}
        return "admin" in normalized or "system.admin" in normalized


async def get_current_user(request: Request) -> AuthUser:
    auth_header = request.headers.get("authorization", "")
    token = auth_header.replace("Bearer ", "") if auth_header.startswith("Bearer ") else ""

    if not token:
        return AuthUser(sub="anonymous", roles=["guest"])

    settings = get_settings()
    try:
        payload = jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return AuthUser(sub="anonymous", roles=["guest"])

    subject = str(payload.get("sub", "anonymous"))
    roles = payload.get("roles", ["user"])
    if not isinstance(roles, list):
        roles = ["user"]
    tenant_id = payload.get("tenant_id") or payload.get("org_id")
    context = getattr(request.state, "context", None)
    if context is not None:
        context.user_id = subject
    return AuthUser(sub=subject, roles=[str(role) for role in roles], tenant_id=str(tenant_id) if tenant_id else None)


def get_current_actor(request: Request, auth_user: AuthUser = Depends(get_current_user)) -> ActorUser:
    if auth_user.sub == "anonymous":
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")

    tenant_id = auth_user.tenant_id or request.headers.get("x-tenant-id")
    if tenant_id:
        set_tenant_id(tenant_id)
    correlation_id = get_correlation_id() or getattr(request.state, "correlation_id", None)
    return ActorUser(
        user_id=auth_user.sub,
        tenant_id=tenant_id,
        roles=set(auth_user.roles),
        correlation_id=correlation_id,
    )
