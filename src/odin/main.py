"""Application entry point: runs the sync scheduler and web API in a single process."""

from __future__ import annotations

import json
import logging
import sys
import threading
from contextlib import asynccontextmanager

import uvicorn

from odin.config import Config, load_config
from odin.jobs import build_runners
from odin.scheduler import SyncProgress, SyncScheduler
from odin.storage import init_db
from odin.web.app import create_app

logger = logging.getLogger("odin")


def _setup_logging(log_level: str, log_format: str) -> None:
    """Configure root logger based on config."""
    level = getattr(logging, log_level.upper(), logging.INFO)

    if log_format == "json":
        formatter = logging.Formatter(
            json.dumps(
                {
                    "time": "%(asctime)s",
                    "level": "%(levelname)s",
                    "logger": "%(name)s",
                    "message": "%(message)s",
                }
            )
        )
    else:
        formatter = logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s")

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.setLevel(level)
    root.addHandler(handler)

    # httpx logs every page request at INFO
    logging.getLogger("httpx").setLevel(max(level, logging.WARNING))


def _log_progress(event: SyncProgress) -> None:
    logger.info("Sync progress: %s", json.dumps(event.to_dict()))


def build_scheduler(config: Config) -> SyncScheduler:
    """Create the sync scheduler with runners rebuilt from settings on each run."""
    scheduler = SyncScheduler(
        config.database_path,
        lambda settings: build_runners(config, settings),
    )
    scheduler.add_listener(_log_progress)
    return scheduler


def main() -> None:
    """Load config, set up logging, and start scheduler + web server."""
    config = load_config()

    _setup_logging(config.log_level, config.log_format)

    logger.info(
        "Odin starting (env=%s, db=%s)",
        config.app_env,
        config.database_path,
    )

    init_db(config.database_path, config.sync_interval_minutes)

    scheduler = build_scheduler(config)

    def _initial_sync():
        """Run a full sync once at startup in a background thread."""
        logger.info("Running initial sync")
        try:
            scheduler.sync_all()
        except Exception:
            logger.exception("Initial sync failed; scheduler will continue")

    @asynccontextmanager
    async def lifespan(app):
        logger.info("Scheduler starting")
        scheduler.start()
        if config.sync_on_startup:
            # Initial sync runs off the event loop thread
            threading.Thread(target=_initial_sync, daemon=True).start()
        yield
        logger.info("Scheduler shutting down")
        scheduler.shutdown()

    app = create_app(config.database_path, scheduler, lifespan=lifespan)

    uvicorn.run(app, host=config.web_host, port=config.web_port)


if __name__ == "__main__":
    main()
