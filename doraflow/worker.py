"""
Ingestion worker process.

Runs pull request ingestion and then CI run ingestion (which ends with flaky
detection), repeating every ``INGESTION_INTERVAL_SECONDS``. An interval of 0
runs a single cycle and exits. SIGTERM and SIGINT finish the current cycle and
stop.
"""

import asyncio
import signal
import sys
from typing import Optional

from doraflow.config import Settings, load_settings
from doraflow.db.database import Database
from doraflow.exceptions import ConfigurationError, DiscoveryError
from doraflow.services.azure_devops import AzureDevOpsClient
from doraflow.services.ci_ingestion import CIRunIngestion
from doraflow.services.pr_ingestion import PullRequestIngestion
from doraflow.utils.logging import get_logger, setup_logging

logger = get_logger(__name__)


class IngestionWorker:
    """Runs ingestion cycles until stopped."""

    def __init__(
        self,
        settings: Settings,
        database: Database,
        pr_ingestion: Optional[PullRequestIngestion] = None,
        ci_ingestion: Optional[CIRunIngestion] = None,
    ):
        self.settings = settings
        self.database = database
        if pr_ingestion is None or ci_ingestion is None:
            # One client shared by both orchestrators
            client = AzureDevOpsClient.from_settings(settings)
            pr_ingestion = pr_ingestion or PullRequestIngestion.from_settings(settings, database, client)
            ci_ingestion = ci_ingestion or CIRunIngestion.from_settings(settings, database, client)
        self.pr_ingestion = pr_ingestion
        self.ci_ingestion = ci_ingestion
        self.cycles_completed = 0
        self._shutdown_event = asyncio.Event()

    @property
    def stopping(self) -> bool:
        return self._shutdown_event.is_set()

    def stop(self) -> None:
        """Request shutdown after the current cycle."""
        if not self._shutdown_event.is_set():
            logger.info("Shutdown requested, finishing current cycle...")
        self._shutdown_event.set()

    async def run_cycle(self) -> bool:
        """
        Run PR ingestion, then CI ingestion.

        Returns:
            True when both runs finished without recorded errors
        """
        ok = True
        for name, ingestion in (("pull requests", self.pr_ingestion), ("CI runs", self.ci_ingestion)):
            if self.stopping:
                break
            try:
                result = await ingestion.run()
            except DiscoveryError as e:
                logger.error(f"Ingestion of {name} aborted: {e}", exc_info=True)
                ok = False
                continue
            if not result.success:
                logger.warning(f"Ingestion of {name} finished with {len(result.errors)} errors")
                ok = False

        self.cycles_completed += 1
        return ok

    async def run(self) -> None:
        """Run cycles until stopped, or once when the interval is 0."""
        interval = self.settings.ingestion_interval_seconds
        logger.info(f"Ingestion worker started (interval: {interval or 'run once'}s)")

        while not self.stopping:
            await self.run_cycle()
            if interval <= 0:
                break
            try:
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=interval)
            except asyncio.TimeoutError:
                pass

        logger.info(f"Ingestion worker stopped after {self.cycles_completed} cycle(s)")

    def register_signal_handlers(self) -> None:
        """Register SIGTERM/SIGINT handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum, frame):
            signal_name = signal.Signals(signum).name
            logger.info(f"Received signal {signal_name}, initiating graceful shutdown...")
            loop.call_soon_threadsafe(self.stop)

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)


async def run_worker(settings: Settings) -> None:
    database = Database(settings.database_url)
    await database.initialize()
    try:
        worker = IngestionWorker(settings, database)
        worker.register_signal_handlers()
        await worker.run()
    finally:
        await database.close()


def main() -> None:
    """Console entry point for ``doraflow-worker``."""
    try:
        settings = load_settings()
    except ConfigurationError as e:
        setup_logging()
        logger.error(f"Invalid configuration: {e}")
        sys.exit(1)

    setup_logging(settings.log_level.upper())
    try:
        asyncio.run(run_worker(settings))
    except Exception as e:
        logger.error(f"Worker process failed: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
