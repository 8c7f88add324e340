"""
Configuration module for the flow output monitor.
Handles environment variables and application settings.
"""
import os
from typing import List


class Config:
    """Application configuration"""

    APP_NAME = "Flow Output Monitor"
    APP_VERSION = "1.0.0"
    HOST = os.getenv("HOST", "0.0.0.0")
    PORT = int(os.getenv("PORT", "8080"))

    # Broker connection
    KAFKA_BROKERS = os.getenv("KAFKA_BROKERS", "localhost:9092")
    KAFKA_CLIENT_ID = os.getenv("KAFKA_CLIENT_ID", "flow-output-monitor")
    KAFKA_GROUP_ID = os.getenv("KAFKA_GROUP_ID", "flow-output-monitor-group")
    KAFKA_CONNECTION_TIMEOUT_MS = int(os.getenv("KAFKA_CONNECTION_TIMEOUT_MS", "3000"))
    KAFKA_REQUEST_TIMEOUT_MS = int(os.getenv("KAFKA_REQUEST_TIMEOUT_MS", "30000"))
    KAFKA_RETRY_BACKOFF_MS = int(os.getenv("KAFKA_RETRY_BACKOFF_MS", "100"))

    # Monitoring
    HISTORY_CAPACITY = int(os.getenv("HISTORY_CAPACITY", "1000"))
    RECENT_OUTPUTS_LIMIT = int(os.getenv("RECENT_OUTPUTS_LIMIT", "20"))
    TOPIC_RECHECK_INTERVAL = float(os.getenv("TOPIC_RECHECK_INTERVAL", "30.0"))
    MONITOR_SOURCE_FILTER = os.getenv("MONITOR_SOURCE_FILTER", "")

    # Viewers
    VIEWER_QUEUE_SIZE = int(os.getenv("VIEWER_QUEUE_SIZE", "256"))

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    @classmethod
    def brokers(cls) -> List[str]:
        """Broker addresses as a list"""
        return [b.strip() for b in cls.KAFKA_BROKERS.split(",") if b.strip()]
