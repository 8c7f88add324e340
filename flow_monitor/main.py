"""
Main application entry point.
Initializes and starts the flow output monitor service.
"""
import asyncio
import logging
import signal
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

import uvicorn

from .api import create_app
from .broker import BrokerClient, KafkaBrokerClient
from .config import Config
from .gateway import BroadcastGateway
from .monitor import MonitorController

# Configure logging
logging.basicConfig(
    level=getattr(logging, Config.LOG_LEVEL),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout)
    ]
)

logger = logging.getLogger(__name__)


class Application:
    """Main application class that manages lifecycle of all components"""

    def __init__(self, broker: Optional[BrokerClient] = None):
        self.start_time = datetime.utcnow()
        self.broker = broker
        self.monitor: MonitorController = None
        self.gateway: BroadcastGateway = None
        self._recheck_task: Optional[asyncio.Task] = None

    async def startup(self):
        """Initialize all components and start monitoring"""
        logger.info(f"Starting {Config.APP_NAME}...")

        if self.broker is None:
            self.broker = KafkaBrokerClient(
                bootstrap_servers=Config.brokers(),
                client_id=Config.KAFKA_CLIENT_ID,
                group_id=Config.KAFKA_GROUP_ID,
                connection_timeout_ms=Config.KAFKA_CONNECTION_TIMEOUT_MS,
                request_timeout_ms=Config.KAFKA_REQUEST_TIMEOUT_MS,
                retry_backoff_ms=Config.KAFKA_RETRY_BACKOFF_MS
            )
            logger.info(f"Kafka client configured for brokers {Config.brokers()}")

        self.monitor = MonitorController(
            broker=self.broker,
            history_capacity=Config.HISTORY_CAPACITY
        )
        logger.info(f"Output monitor initialized (history capacity: {Config.HISTORY_CAPACITY})")

        self.gateway = BroadcastGateway(
            self.monitor,
            queue_size=Config.VIEWER_QUEUE_SIZE,
            recent_limit=Config.RECENT_OUTPUTS_LIMIT
        )

        try:
            await self.monitor.start(Config.MONITOR_SOURCE_FILTER or None)
        except Exception as e:
            # Stay idle; viewers can retry with a start command
            logger.error(f"Initial monitoring start failed: {e}")

        if Config.TOPIC_RECHECK_INTERVAL > 0:
            self._recheck_task = asyncio.create_task(
                self._recheck_loop(Config.TOPIC_RECHECK_INTERVAL)
            )

        logger.info(f"Application started successfully at {self.start_time.isoformat()}Z")

    async def _recheck_loop(self, interval: float):
        """Periodically pick up flow topics created after the last start"""
        while True:
            await asyncio.sleep(interval)
            status = self.monitor.get_status()
            logger.info(f"Status: {status.total_outputs} outputs from {status.topic_count} topics")
            try:
                if await self.monitor.rescan():
                    logger.info("Monitor restarted with newly discovered topics")
            except Exception as e:
                logger.error(f"Error checking for new topics: {e}")

    async def shutdown(self):
        """Cleanup all components"""
        logger.info(f"Shutting down {Config.APP_NAME}...")

        if self._recheck_task:
            self._recheck_task.cancel()
            try:
                await self._recheck_task
            except asyncio.CancelledError:
                pass
            self._recheck_task = None

        if self.gateway:
            self.gateway.close()

        if self.monitor:
            await self.monitor.disconnect()

        logger.info("Application shutdown complete")


# Global application instance
app_instance = Application()


@asynccontextmanager
async def lifespan(app):
    """FastAPI lifespan context manager"""
    # Startup
    await app_instance.startup()

    # attach initialized components so endpoints can access them
    app.state.monitor = app_instance.monitor
    app.state.gateway = app_instance.gateway
    app.state.start_time = app_instance.start_time

    try:
        yield
    finally:
        # Shutdown
        await app_instance.shutdown()


def create_fastapi_app():
    """Create FastAPI application with lifespan"""
    fastapi_app = create_app(
        monitor=app_instance.monitor,
        gateway=app_instance.gateway,
        start_time=app_instance.start_time
    )
    fastapi_app.router.lifespan_context = lifespan
    return fastapi_app


def main():
    """Main entry point"""
    logger.info("=" * 60)
    logger.info(f"{Config.APP_NAME} v{Config.APP_VERSION}")
    logger.info("Watching topics ending with -topic")
    logger.info("=" * 60)

    # Create FastAPI app
    app = create_fastapi_app()

    # Setup signal handlers for graceful shutdown
    def signal_handler(signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        sys.exit(0)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    # Run uvicorn server
    uvicorn.run(
        app,
        host=Config.HOST,
        port=Config.PORT,
        log_level=Config.LOG_LEVEL.lower(),
        access_log=True
    )


if __name__ == "__main__":
    main()
