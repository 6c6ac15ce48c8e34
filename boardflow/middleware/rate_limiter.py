"""
Rate limiting configuration.

Applies per-blueprint and per-route limits using Flask-Limiter.
The Limiter instance is created in boardflow/__init__.py with no default
limits; this module applies granular limits per route category.

Usage:
    from boardflow.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
TRANSITION_LIMIT = "30/minute"
DRY_RUN_LIMIT = "20/minute"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Approval transitions:  30/minute
        - Automation dry-runs:   20/minute
        - Other API routes:      60/minute
        - Health check:          exempt

    Rate limiting is disabled in testing mode.
    """

    if app.config.get("TESTING") or not app.config.get("RATELIMIT_ENABLED", True):
        app.logger.info("Rate limiter disabled")
        return

    for bp_name in ("approvals", "automations", "items", "notifications"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT)(bp)

    transition_view = app.view_functions.get("approvals.transition_approval")
    if transition_view:
        limiter.limit(TRANSITION_LIMIT)(transition_view)

    dry_run_view = app.view_functions.get("automations.test_automation")
    if dry_run_view:
        limiter.limit(DRY_RUN_LIMIT)(dry_run_view)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info(
        "Rate limiter configured: api %s, transitions %s, dry-runs %s",
        WRITE_LIMIT, TRANSITION_LIMIT, DRY_RUN_LIMIT,
    )
