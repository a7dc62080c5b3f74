"""Celery beat schedule.

The stale-session sweep is the only periodic job: webhooks drive every other
order transition.
"""
from __future__ import annotations

from core.settings import get_payment_config


CELERY_BEAT_SCHEDULE = {
    "payments-expire-stale-sessions": {
        "task": "payments.expire_stale_sessions",
        "schedule": float(get_payment_config().sweep_interval_seconds),
        "options": {"queue": "low", "expires": get_payment_config().sweep_interval_seconds},
    },
}
