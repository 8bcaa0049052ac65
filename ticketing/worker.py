"""
Notification worker process entrypoint.

Drains the email outbox and, unless WORKER_RUN_SLA_SWEEP is off, reverts
assignments whose SLA deadline has passed. Run with:

    python -m ticketing.worker
"""

from __future__ import annotations

import logging
import os
import time

from .core.db import SessionLocal
from .services.notification_worker import _build_providers, process_outbox_batch
from .services.sla_monitor import sweep_expired_assignments

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("worker")


def run_once(providers) -> tuple[int, int]:
    reverted = 0
    with SessionLocal() as db:
        sent = process_outbox_batch(db, providers=providers)
        if os.getenv("WORKER_RUN_SLA_SWEEP", "true").lower() in {"1", "true", "yes"}:
            reverted = sweep_expired_assignments(db)
    return sent, reverted


def main() -> int:
    logger.info("Worker booted (pid=%s)", os.getpid())
    interval = int(os.getenv("WORKER_INTERVAL_SEC", "10"))

    providers = _build_providers()
    logger.info("Worker started interval=%ss", interval)

    while True:
        try:
            sent, reverted = run_once(providers)
            if sent or reverted:
                logger.info("Worker cycle processed=%s sla_reverted=%s", sent, reverted)
            time.sleep(interval)
        except KeyboardInterrupt:
            return 0
        except Exception:
            logger.exception("Worker loop error")
            time.sleep(interval)


if __name__ == "__main__":
    raise SystemExit(main())
