
# app/workers/registry.py
from __future__ import annotations

from app.workers import eligibility_job, membership_removal_job

JOBS = {
    "eligibility_check": eligibility_job.run_once,
    "membership_removal": membership_removal_job.run_once,
}


def interval_seconds(job: str, settings) -> int:
    if job == "eligibility_check":
        return max(1, settings.ELIGIBILITY_CHECK_INTERVAL_SECONDS)
    if job == "membership_removal":
        return max(1, settings.REMOVAL_SWEEP_INTERVAL_SECONDS)
    raise KeyError(job)
