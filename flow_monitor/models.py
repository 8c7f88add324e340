"""
Data models for broker records, flow outputs and API responses.
Implements record and envelope validation with Pydantic.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BrokerRecord(BaseModel):
    """
    Raw record as delivered by the broker client.

    Attributes:
        topic: Broker topic name
        partition: Partition the record was read from
        offset: Broker offset, kept as an opaque string
        key: Optional message key
        value: Raw message value, None when the record carries no payload
        timestamp: Broker-assigned time in milliseconds since the epoch
    """
    topic: str
    partition: int = 0
    offset: str = "0"
    key: Optional[str] = None
    value: Optional[str] = None
    timestamp: Union[int, str] = 0

    @field_validator('offset', mode='before')
    @classmethod
    def coerce_offset(cls, v: Any) -> str:
        """Offsets may arrive as integers; never narrow them, just stringify"""
        return str(v)


class FlowOutput(BaseModel):
    """
    One observed message.

    Fields cannot be reassigned after creation. The parsed payload is shared
    by reference with every subscriber and must be treated as read-only.

    Attributes:
        topic: Broker topic name
        source_id: Logical source identity (topic minus its "-topic" suffix)
        timestamp: Broker record time as an absolute point in time
        payload: Parsed JSON value, or the raw string when not JSON
        key: Optional message key
        partition: Broker partition
        offset: Opaque broker offset
    """
    model_config = ConfigDict(frozen=True)

    topic: str
    source_id: str
    timestamp: datetime
    payload: Any = None
    key: Optional[str] = None
    partition: int
    offset: str


class TopicStats(BaseModel):
    """Running statistics for one topic"""
    topic: str
    message_count: int = Field(0, ge=0)
    first_seen_at: Optional[datetime] = None
    last_seen_at: Optional[datetime] = None
    last_output: Optional[FlowOutput] = None


class MonitoringStatus(BaseModel):
    """Snapshot of the monitor state"""
    monitoring: bool
    total_outputs: int = Field(..., description="Outputs currently held in history")
    topic_count: int = Field(..., description="Distinct topics seen since last clear")
    topics: List[str] = Field(..., description="Topics seen since last clear")
    monitored_topics: List[str] = Field(default_factory=list, description="Topics currently subscribed")
    source_filter: Optional[str] = None


class ViewerCommand(BaseModel):
    """Inbound command envelope sent by a viewer"""
    type: str
    data: Optional[Dict[str, Any]] = None


class ViewerMessage(BaseModel):
    """Outbound envelope pushed to viewers"""
    type: str
    data: Optional[Any] = None


class StartRequest(BaseModel):
    """Body for the start endpoint"""
    source_id: Optional[str] = Field(None, description="Restrict monitoring to <source_id>-topic")


class OutputsResponse(BaseModel):
    """Response for outputs query endpoint"""
    outputs: List[FlowOutput]
    total: int
    filtered_by_source: Optional[str] = None
    filtered_by_topic: Optional[str] = None


class TopicStatsResponse(BaseModel):
    """Response for statistics endpoint"""
    topics: List[TopicStats]
    total: int


class HealthResponse(BaseModel):
    """Response for health check endpoint"""
    status: str
    timestamp: str
    monitoring: bool
    viewers: int
