from __future__ import annotations

import logging
import os
import time
from collections.abc import Sequence

from market_sync.engine import SyncEngine
from market_sync.gateway import create_gateway
from market_sync.settings import Settings
from market_sync.source import PostgresSourceStore

LOGGER = logging.getLogger(__name__)


def configure_logging() -> None:
    level_name = os.getenv("LOG_LEVEL", "INFO").upper()
    level = getattr(logging, level_name, logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def run(
    *,
    entities: Sequence[str] = (),
    reconcile: bool = True,
    loop: bool = False,
) -> int:
    """Run one sync cycle, or repeat cycles forever when ``loop`` is set.

    Returns a non-zero exit status when any entity in the last cycle failed.
    """
    configure_logging()
    settings = Settings()

    LOGGER.info(
        "service_start",
        extra={
            "change_log_table": settings.change_log_table,
            "gateway_base_url": settings.gateway_base_url,
            "prune_mode": settings.prune_mode,
            "loop": loop,
        },
    )

    store = PostgresSourceStore.connect(
        conninfo=settings.postgres_conninfo,
        change_log_table=settings.change_log_table,
    )
    gateway = create_gateway(
        base_url=settings.gateway_base_url,
        timeout_s=settings.gateway_timeout_s,
    )

    try:
        engine = SyncEngine(settings=settings, store=store, gateway=gateway)
        while True:
            reports = engine.run_cycle(list(entities) or None, reconcile=reconcile)
            failed = [report for report in reports if report.error]
            if not loop:
                return 1 if failed else 0

            LOGGER.info("cycle_sleep", extra={"seconds": settings.cycle_interval_s})
            time.sleep(settings.cycle_interval_s)
    finally:
        gateway.close()
        store.close()
        LOGGER.info("service_stop")
