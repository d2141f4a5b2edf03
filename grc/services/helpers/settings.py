"""Engine tunables read from the Flask config, with fallbacks outside an app context."""

from flask import current_app, has_app_context

DEFAULTS = {
    "GRC_DEFAULT_WARNING_BUFFER": 0.05,
    "GRC_REVIEW_DUE_DAYS": 5,
    "GRC_SUBMISSION_PLAN_DUE_DAYS": 14,
    "GRC_REVIEW_PLAN_DUE_DAYS": 7,
    "GRC_RISK_PLAN_DUE_DAYS": 14,
}


def setting(key: str):
    if has_app_context():
        return current_app.config.get(key, DEFAULTS[key])
    return DEFAULTS[key]
