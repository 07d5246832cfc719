"""Access tokens.

CareBase does not log users in; the identity service issues the tokens
and this service only verifies them.  Claims read here:

    sub            user id
    role           administrator | branch_admin | carer
    permissions    effective permission strings
    tenant_schema  the agency schema (omitted for platform users)
    type           always "access"
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from carebase.config import settings


def create_access_token(
    user_id: str,
    role: str,
    permissions: list[str],
    tenant_schema: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Sign a token the way the identity service does; used by tooling and tests."""
    lifetime = expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    claims = {
        "sub": user_id,
        "role": role,
        "permissions": list(permissions),
        "type": "access",
        "exp": datetime.now(timezone.utc) + lifetime,
    }
    if tenant_schema:
        claims["tenant_schema"] = tenant_schema
    return jwt.encode(claims, settings.secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict:
    """Verified claims, or {} for an expired, tampered or malformed token."""
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return {}
    return claims if claims.get("type") == "access" else {}
