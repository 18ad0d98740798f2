# scripts/jobs_daemon.py
from __future__ import annotations

import logging
import time

from settings import settings
from app.engine import build_engine
from app.workers.registry import JOBS, interval_seconds
from services.observability import configure_logging


logger = logging.getLogger("tenure.jobs_daemon")

TICK_SECONDS = 5


def main() -> None:
    configure_logging(settings.LOG_LEVEL)
    engine = build_engine(settings)
    next_run = {name: 0.0 for name in JOBS}
    logger.info("Jobs daemon starting; jobs=%s", sorted(JOBS))

    try:
        while True:
            now = time.monotonic()
            for name, job in JOBS.items():
                if now < next_run[name]:
                    continue
                next_run[name] = now + interval_seconds(name, settings)
                try:
                    result = job(engine)
                except KeyboardInterrupt:
                    raise
                except Exception:
                    # a failed run is retried on the next interval
                    logger.exception("Job %s failed", name)
                    continue
                logger.info("Job %s done %s", name, result)
            time.sleep(TICK_SECONDS)
    except KeyboardInterrupt:
        logger.info("Jobs daemon exiting")
    finally:
        engine.close()


if __name__ == "__main__":
    main()
