"""Resolve the agency schema from the bearer token for every request.

A valid token with a well-formed `tenant_schema` claim sets the tenant
context for the request; anything else leaves it empty, and routes that
need a tenant session fail in get_tenant_db.  An invalid token on a
non-public path is rejected here with 401.
"""

import logging

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from carebase.auth.jwt import decode_token
from carebase.middleware.exceptions import error_response
from carebase.tenancy import clear_tenant_context, set_current_tenant_schema, validate_schema_name

logger = logging.getLogger(__name__)

PUBLIC_PATHS = ("/health", "/docs", "/redoc", "/openapi.json")


def _bearer(request: Request) -> str | None:
    scheme, _, token = request.headers.get("authorization", "").partition(" ")
    return token if scheme.lower() == "bearer" and token else None


class TenantMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        clear_tenant_context()
        token = _bearer(request)

        if token is not None:
            claims = decode_token(token)
            if not claims and not request.url.path.startswith(PUBLIC_PATHS):
                return error_response(
                    401, "HTTP_401", "Token expired or invalid",
                    headers={"WWW-Authenticate": "Bearer"},
                )
            schema = claims.get("tenant_schema")
            if schema:
                try:
                    set_current_tenant_schema(validate_schema_name(schema))
                except ValueError:
                    logger.warning("Ignoring malformed tenant_schema claim for user %s", claims.get("sub"))

        try:
            return await call_next(request)
        finally:
            clear_tenant_context()
