"""
FastAPI application with REST and WebSocket endpoints.
Exposes monitor control, statistics and the live output stream.
"""
import asyncio
import logging
from datetime import datetime
from typing import Optional

from fastapi import Body, FastAPI, HTTPException, Query, Request, WebSocket, WebSocketDisconnect

from .broker import BrokerConnectionError
from .config import Config
from .gateway import BroadcastGateway
from .models import (
    HealthResponse, MonitoringStatus, OutputsResponse,
    StartRequest, TopicStats, TopicStatsResponse
)
from .monitor import MonitorController

logger = logging.getLogger(__name__)


def create_app(monitor: MonitorController, gateway: BroadcastGateway, start_time: datetime) -> FastAPI:
    """
    Create and configure FastAPI application.

    Args:
        monitor: Monitor controller to expose
        gateway: Broadcast gateway serving WebSocket viewers
        start_time: Application start timestamp

    Returns:
        Configured FastAPI application
    """
    app = FastAPI(
        title=Config.APP_NAME,
        description="Live monitor for broker flow topics with WebSocket fan-out",
        version=Config.APP_VERSION
    )
    app.state.monitor = monitor
    app.state.gateway = gateway
    app.state.start_time = start_time

    def get_monitor(request: Request) -> MonitorController:
        monitor = getattr(request.app.state, "monitor", None)
        if monitor is None:
            raise HTTPException(status_code=503, detail="Service not ready")
        return monitor

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint"""
        return {
            "service": Config.APP_NAME,
            "version": Config.APP_VERSION,
            "status": "running",
            "endpoints": {
                "status": "GET /status",
                "stats": "GET /stats",
                "outputs": "GET /outputs",
                "start": "POST /monitor/start",
                "stop": "POST /monitor/stop",
                "clear": "POST /monitor/clear",
                "stream": "WS /ws",
                "health": "GET /health"
            }
        }

    @app.get("/status", response_model=MonitoringStatus, tags=["Monitor"])
    async def get_status(request: Request):
        """Current monitoring state and history/statistics sizes"""
        status = get_monitor(request).get_status()
        return status

    @app.post("/monitor/start", response_model=MonitoringStatus, tags=["Monitor"])
    async def start_monitoring(request: Request, body: Optional[StartRequest] = Body(None)):
        """
        Discover flow topics and start monitoring them.

        Starting while already monitoring restarts with the new scope, which
        is also how topics created since the last start are picked up.
        """
        monitor = get_monitor(request)
        source_id = body.source_id if body else None
        try:
            await monitor.start(source_id)
        except BrokerConnectionError as e:
            raise HTTPException(status_code=502, detail=f"Broker unreachable: {e}")
        except Exception as e:
            logger.error("Error in start endpoint: %s", e, exc_info=True)
            raise HTTPException(status_code=500, detail=f"Failed to start monitoring: {e}")
        return monitor.get_status()

    @app.post("/monitor/stop", response_model=MonitoringStatus, tags=["Monitor"])
    async def stop_monitoring(request: Request):
        """Stop monitoring; always succeeds"""
        monitor = get_monitor(request)
        await monitor.stop()
        return monitor.get_status()

    @app.post("/monitor/clear", response_model=MonitoringStatus, tags=["Monitor"])
    async def clear_outputs(request: Request):
        """Drop stored outputs and statistics"""
        monitor = get_monitor(request)
        monitor.clear()
        return monitor.get_status()

    @app.get("/stats", response_model=TopicStatsResponse, tags=["Statistics"])
    async def get_stats(request: Request):
        """Per-topic statistics since the last clear"""
        stats = get_monitor(request).get_topic_statistics()
        return TopicStatsResponse(topics=stats, total=len(stats))

    @app.get("/stats/{topic}", response_model=TopicStats, tags=["Statistics"])
    async def get_topic_stats(request: Request, topic: str):
        """Statistics for one topic"""
        stats = get_monitor(request).get_topic_stats(topic)
        if stats is None:
            raise HTTPException(status_code=404, detail=f"No outputs seen for topic '{topic}'")
        return stats

    @app.get("/outputs", response_model=OutputsResponse, tags=["Outputs"])
    async def get_outputs(
        request: Request,
        source_id: Optional[str] = Query(None, description="Filter by source id"),
        topic: Optional[str] = Query(None, description="Filter by topic"),
        limit: int = Query(Config.RECENT_OUTPUTS_LIMIT, ge=1, le=1000, description="Maximum outputs to return")
    ):
        """
        Retrieve recent flow outputs, newest first.

        Query parameters:
            - source_id: Optional filter by source id
            - topic: Optional filter by topic name
            - limit: Maximum number of outputs to return (1-1000)
        """
        monitor = get_monitor(request)
        if source_id is not None:
            outputs = monitor.get_outputs_for_source(source_id)[::-1][:limit]
        elif topic is not None:
            outputs = monitor.get_outputs_for_topic(topic)[::-1][:limit]
        else:
            outputs = monitor.get_latest_outputs(limit)

        return OutputsResponse(
            outputs=outputs,
            total=len(outputs),
            filtered_by_source=source_id,
            filtered_by_topic=topic
        )

    @app.get("/health", response_model=HealthResponse, tags=["Monitoring"])
    async def health_check(request: Request):
        """
        Health check endpoint.

        Returns:
            HealthResponse with status, current timestamp and viewer count
        """
        monitor = getattr(request.app.state, "monitor", None)
        gateway = getattr(request.app.state, "gateway", None)
        return HealthResponse(
            status="healthy",
            timestamp=datetime.utcnow().isoformat() + 'Z',
            monitoring=bool(monitor and monitor.monitoring),
            viewers=gateway.viewer_count if gateway else 0
        )

    @app.websocket("/ws")
    async def viewer_stream(websocket: WebSocket):
        """
        Push monitor events to the viewer and run its commands.

        Frames the gateway cannot parse are ignored. A viewer the gateway
        drops for falling behind is closed with 1013 (try again later).
        """
        gateway = getattr(websocket.app.state, "gateway", None)
        if gateway is None:
            await websocket.close(code=1013)
            return

        await websocket.accept()
        queue = gateway.register()

        async def pump():
            while True:
                await websocket.send_text(await queue.get())

        async def receive():
            while True:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))

                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")
                if raw is None:
                    continue

                reply = await gateway.handle_command(raw)
                if reply is not None:
                    try:
                        queue.put_nowait(reply.model_dump_json())
                    except asyncio.QueueFull:
                        logger.warning(f"Viewer queue full, dropped '{reply.type}' reply")

        tasks = [
            asyncio.create_task(pump()),
            asyncio.create_task(receive()),
            asyncio.create_task(queue.dropped.wait()),
        ]
        try:
            await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        finally:
            gateway.unregister(queue)
            for task in tasks:
                task.cancel()
            results = await asyncio.gather(*tasks, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception) and not isinstance(result, WebSocketDisconnect):
                    logger.warning(f"Viewer connection ended with error: {result}")

        if queue.dropped.is_set():
            try:
                await websocket.close(code=1013)
            except Exception as e:
                logger.warning(f"Could not close dropped viewer: {e}")

    return app
