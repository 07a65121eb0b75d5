"""
Request identity middleware — sets g.user_id and g.user_roles.

Priority order:
  1. JWT (Authorization: Bearer <token>)  →  "sub" and "roles" claims
  2. Trusted headers from the gateway      →  X-User and X-User-Roles
     (header name configurable via WORKFLOW_ROLE_HEADER)

Roles are kept as supplied; the workflow engine normalises case when it
compares them.
"""

import logging

import jwt as pyjwt
from flask import g, request

from issueflow.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)


# Paths that skip identity resolution entirely
SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def _header_roles(header_name: str) -> list[str]:
    raw = request.headers.get(header_name, "")
    return [r.strip() for r in raw.split(",") if r.strip()]


def init_jwt_middleware(app):
    """Register identity middleware as a before_request hook."""

    role_header = app.config.get("WORKFLOW_ROLE_HEADER", "X-User-Roles")

    @app.before_request
    def _resolve_identity():
        g.user_id = None
        g.user_roles = []
        g.tenant_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]
            try:
                payload = decode_access_token(token)
                g.user_id = payload.get("sub")
                g.tenant_id = payload.get("tenant_id")
                roles = payload.get("roles", [])
                g.user_roles = [roles] if isinstance(roles, str) else list(roles or [])
                return
            except pyjwt.ExpiredSignatureError:
                logger.info("Expired access token on %s", path)
            except pyjwt.InvalidTokenError:
                logger.info("Invalid access token on %s", path)

        g.user_id = request.headers.get("X-User") or None
        g.user_roles = _header_roles(role_header)
