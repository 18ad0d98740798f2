
# app/workers/membership_removal_job.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional

from app.engine import Engine

logger = logging.getLogger("tenure.jobs.membership_removal")


def run_once(engine: Engine, *, now: Optional[datetime] = None) -> dict[str, Any]:
    result = engine.membership.run_removal_sweep(now)
    if result.failed:
        logger.warning("removal sweep finished with failures failed=%s", len(result.failed))
    return {"job": "membership_removal", **result.to_dict()}
