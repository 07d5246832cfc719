"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_current_actor       → decode JWT, return the Actor it describes
  require_permission(...) → restrict to actors holding granular permissions

The Actor is passed explicitly into the wizard services (e.g. to pick
the status a finalize commits), never read from global state.
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from carebase.auth.jwt import decode_token
from carebase.auth.permissions import has_permission
from carebase.services.interfaces import Actor

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


async def get_current_actor(token: str = Depends(oauth2_scheme)) -> Actor:
    payload = decode_token(token)
    user_id: str | None = payload.get("sub")
    if not user_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return Actor(
        user_id=user_id,
        role=payload.get("role") or "",
        permissions=tuple(payload.get("permissions") or ()),
        tenant_schema=payload.get("tenant_schema"),
    )


def require_permission(*perms: str):
    """Dependency factory: restrict to actors who hold ALL listed permissions.

    Usage:
        @router.post("/finalize")
        async def finalize(actor: Actor = Depends(require_permission("care_plan.write"))):
            ...
    """
    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        missing = [p for p in perms if not has_permission(actor.permissions, p)]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing)}",
            )
        return actor

    return _check
