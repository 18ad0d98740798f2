from __future__ import annotations

import argparse
import json

from settings import settings
from app.engine import build_engine
from app.workers.registry import JOBS
from services.observability import configure_logging


def main() -> None:
    parser = argparse.ArgumentParser(description="Run one scheduled job once (for cron / orchestrators).")
    parser.add_argument("job", choices=sorted(JOBS))
    args = parser.parse_args()

    configure_logging(settings.LOG_LEVEL)
    engine = build_engine(settings)
    try:
        result = JOBS[args.job](engine)
    finally:
        engine.close()

    print(json.dumps(result, default=str, sort_keys=True))


if __name__ == "__main__":
    main()
