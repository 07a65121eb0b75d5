"""
Issue Workflow Engine
Blueprint registry helpers.
"""

from flask import g, request


def request_identity() -> tuple[str | None, list[str]]:
    """Return (user_id, roles) resolved by the identity middleware.

    A JSON body may not override the roles; only the token or the trusted
    gateway headers can supply them.
    """
    return getattr(g, "user_id", None), list(getattr(g, "user_roles", []) or [])


def json_body() -> dict:
    """Parsed JSON object body, or an empty dict for anything else."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
