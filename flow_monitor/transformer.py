"""
Conversion of raw broker records into FlowOutput values.
"""
import json
from datetime import datetime, timezone
from typing import Any

from .catalog import FLOW_TOPIC_SUFFIX
from .models import BrokerRecord, FlowOutput

DELIMITER = FLOW_TOPIC_SUFFIX[0]


class MalformedRecord(Exception):
    """Raised when a broker record cannot become a FlowOutput"""


def source_id_for_topic(topic: str) -> str:
    """
    Derive the source identity from a topic name.

    Splits on "-" and drops the last segment, so "acme-etl-topic" yields
    "acme-etl". A topic without any "-" yields "".
    """
    return DELIMITER.join(topic.split(DELIMITER)[:-1])


def _reject_constant(token: str):
    raise ValueError(f"Non-standard JSON constant: {token}")


def parse_payload(value: str) -> Any:
    """Parsed JSON when possible, the raw string otherwise"""
    try:
        return json.loads(value, parse_constant=_reject_constant)
    except ValueError:
        return value



def parse_timestamp(raw) -> datetime:
    try:
        millis = int(raw)
    except (TypeError, ValueError) as e:
        raise MalformedRecord(f"Invalid record timestamp: {raw!r}") from e
    try:
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedRecord(f"Record timestamp out of range: {raw!r}") from e


def transform(record: BrokerRecord) -> FlowOutput:
    """
    Build a FlowOutput from a broker record.

    Raises:
        MalformedRecord: record has no payload or an unusable timestamp
    """
    if not record.value:
        raise MalformedRecord(
            f"Record {record.topic}[{record.partition}]@{record.offset} has no payload"
        )

    return FlowOutput(
        topic=record.topic,
        source_id=source_id_for_topic(record.topic),
        timestamp=parse_timestamp(record.timestamp),
        payload=parse_payload(record.value),
        key=record.key,
        partition=record.partition,
        offset=record.offset
    )
