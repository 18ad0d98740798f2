# app/queue/projection.py
from __future__ import annotations

import logging
from typing import Optional

from app.queue.ranking import Candidate, build_queue, eligible_unpaid

logger = logging.getLogger("tenure.queue")


class QueueProjection:
    """Ranked candidate view. Recomputed from the store on every call."""

    def __init__(self, *, connect, repo, min_payments: int = 12):
        self._connect = connect
        self._repo = repo
        self._min_payments = min_payments

    def candidates(self) -> list[Candidate]:
        with self._connect(snapshot=True) as conn:
            facts = self._repo.load_member_facts(conn)
        queue = build_queue(facts, min_payments=self._min_payments)
        logger.debug("queue computed members=%s ranked=%s", len(facts), len(queue))
        return queue

    def eligible_unpaid(self, limit: Optional[int] = None) -> list[Candidate]:
        return eligible_unpaid(self.candidates(), limit)

    def position_of(self, user_id: str) -> Optional[Candidate]:
        for c in self.candidates():
            if c.user_id == str(user_id):
                return c
        return None
