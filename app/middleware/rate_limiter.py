"""
Rate limiting configuration.

Applies per-blueprint and per-route limits using Flask-Limiter.
The Limiter instance is created in app/__init__.py with no default limits;
this module applies granular limits per route category.

Usage:
    from app.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

# Credential endpoints are keyed per remote IP
AUTH_LIMITS = {
    "auth.login": "10/minute",
    "auth.signup": "5/minute",
    "auth.refresh": "30/minute",
}


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Login / signup / refresh:  see AUTH_LIMITS
        - Notices (reads + writes):  200/minute (list refreshes on every change)
        - Admin / audit:             60/minute
        - Health check:              exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for endpoint, limit in AUTH_LIMITS.items():
        view = app.view_functions.get(endpoint)
        if view is not None:
            app.view_functions[endpoint] = limiter.limit(limit)(view)

    bp = app.blueprints.get("notices")
    if bp:
        limiter.limit("200/minute")(bp)

    for bp_name in ("admin", "audit"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("60/minute")(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured — login: 10/min, signup: 5/min, notices: 200/min, admin: 60/min"
    )
