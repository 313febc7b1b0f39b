"""Worker that releases confirmed escrow once its hold period is over."""

import asyncio
import logging
from typing import Optional

from asyncpg.exceptions import PostgresError

from database.exceptions import DatabaseError
from errors import MarketplaceError
from escrow import EscrowEngine

# Configure logging
logger = logging.getLogger(__name__)

class AutoReleaseWorker:
    """Periodically runs EscrowEngine.auto_release_due."""

    def __init__(self, engine: EscrowEngine, interval: int = 3600):
        """Initialize worker.

        Args:
            engine: Escrow engine to sweep with
            interval: Seconds between sweeps
        """
        self.engine = engine
        self.interval = interval
        self._stopped: Optional[asyncio.Event] = None

    async def run_once(self) -> int:
        """One sweep; errors are logged and reported as zero releases."""
        try:
            return await self.engine.auto_release_due()
        except (MarketplaceError, DatabaseError, PostgresError, OSError) as e:
            logger.error(f"Error in auto-release sweep: {e}")
            return 0

    async def run(self) -> None:
        """Sweep until stop() is called."""
        self._stopped = asyncio.Event()
        logger.info(f"Auto-release worker started (every {self.interval}s)")

        while not self._stopped.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Auto-release worker stopped")

    def stop(self) -> None:
        """Ask the loop to exit after the current sweep."""
        if self._stopped:
            self._stopped.set()
