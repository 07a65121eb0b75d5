"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in issueflow/__init__.py with no default limits; this module
applies granular limits per route category.

Usage:
    from issueflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)


# Workflow administration is rare; transition checks run on every status edit.
ADMIN_LIMIT = "60/minute"
TRANSITION_LIMIT = "300/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Workflow definition CRUD:   60/minute
        - Issue transition endpoints: 300/minute

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    bp = app.blueprints.get("workflow")
    if bp:
        limiter.limit(ADMIN_LIMIT)(bp)

    bp = app.blueprints.get("issue_workflow")
    if bp:
        limiter.limit(TRANSITION_LIMIT)(bp)

    app.logger.info(
        "Rate limiter configured — workflow admin: %s, transitions: %s",
        ADMIN_LIMIT, TRANSITION_LIMIT,
    )
