"""Run the API server and the auto-release worker: ``python -m api``."""
import asyncio
import logging
import os
import signal
from typing import List, Optional

import uvicorn

from config import settings_conf
from database import init_db, close as db_close
from workers.auto_release import AutoReleaseWorker
from .deps import build_engine

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

class UvicornServer:
    """Uvicorn server that can be stopped from the outside."""

    def __init__(self, app_path: str = "api:app", host: str = "0.0.0.0", port: int = 8000):
        self.server = uvicorn.Server(uvicorn.Config(app_path, host=host, port=port, log_level="info"))
        # Signals are handled by Runtime
        self.server.install_signal_handlers = lambda: None

    async def run(self):
        await self.server.serve()

    def stop(self):
        self.server.should_exit = True

class Runtime:
    """Owns the long-running tasks and tears them down in order."""

    def __init__(self, host: str, port: int, shutdown_timeout: float = 10):
        self.host = host
        self.port = port
        self.shutdown_timeout = shutdown_timeout
        self.stopping = asyncio.Event()
        self.worker: Optional[AutoReleaseWorker] = None
        self.server: Optional[UvicornServer] = None
        self.tasks: List[asyncio.Task] = []

    def request_stop(self, signame: str) -> None:
        logger.info(f"Received {signame}, shutting down")
        self.stopping.set()

    async def start(self) -> None:
        logger.info("Initializing database...")
        pool = await init_db()

        interval = settings_conf['auto_release_interval']
        self.worker = AutoReleaseWorker(build_engine(pool), interval)
        self.server = UvicornServer(host=self.host, port=self.port)

        self.tasks = [
            asyncio.create_task(self.server.run(), name="api"),
            asyncio.create_task(self.worker.run(), name="auto-release")
        ]
        logger.info(f"API listening on {self.host}:{self.port}, auto-release every {interval}s")

    async def wait(self) -> None:
        """Block until a signal arrives or one of the services exits."""
        stop_waiter = asyncio.create_task(self.stopping.wait())
        done, _ = await asyncio.wait(
            self.tasks + [stop_waiter],
            return_when=asyncio.FIRST_COMPLETED
        )
        stop_waiter.cancel()

        for task in done:
            if task is stop_waiter or task.cancelled():
                continue
            if task.exception():
                logger.error(f"Service {task.get_name()} failed: {task.exception()}")
            else:
                logger.info(f"Service {task.get_name()} exited")

    async def shutdown(self) -> None:
        if self.worker:
            self.worker.stop()
        if self.server:
            self.server.stop()

        if self.tasks:
            _, pending = await asyncio.wait(self.tasks, timeout=self.shutdown_timeout)
            for task in pending:
                logger.warning(f"Service {task.get_name()} did not stop in time, cancelling")
                task.cancel()

        await db_close()
        logger.info("Shutdown complete")

async def main():
    runtime = Runtime(
        host=os.environ.get('HOST', '0.0.0.0'),
        port=int(os.environ.get('PORT', '8000'))
    )

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, runtime.request_stop, sig.name)

    try:
        await runtime.start()
        await runtime.wait()
    finally:
        await runtime.shutdown()

if __name__ == "__main__":
    asyncio.run(main())
