
# app/workers/eligibility_job.py
from __future__ import annotations

from typing import Any

from app.engine import Engine


def run_once(engine: Engine) -> dict[str, Any]:
    """
    Daily eligibility check. Revenue failures propagate so the scheduler
    records the run as failed; the next run retries.
    """
    snapshot = engine.eligibility.run_scheduled_check()
    return {
        "job": "eligibility_check",
        "is_eligible": snapshot.is_eligible,
        "potential_winners": snapshot.potential_winners,
        "eligible_unpaid_count": snapshot.eligible_unpaid_count,
        "revenue_source": snapshot.revenue_source,
        "reason": snapshot.reason,
    }
