"""Kafka-specific context variables for structured logging."""

from contextvars import ContextVar
from typing import Any, Dict, Optional


_kafka_topic: ContextVar[str] = ContextVar("kafka_topic", default="")
_kafka_partition: ContextVar[int] = ContextVar("kafka_partition", default=-1)
_kafka_offset: ContextVar[int] = ContextVar("kafka_offset", default=-1)
_kafka_consumer_group: ContextVar[str] = ContextVar("kafka_consumer_group", default="")


def set_kafka_context(
    topic: Optional[str] = None,
    partition: Optional[int] = None,
    offset: Optional[int] = None,
    consumer_group: Optional[str] = None,
) -> None:
    """
    Set Kafka-specific context variables for structured logging.

    Args:
        topic: Kafka topic name
        partition: Kafka partition number
        offset: Message offset within partition
        consumer_group: Consumer group ID
    """
    if topic is not None:
        _kafka_topic.set(topic)
    if partition is not None:
        _kafka_partition.set(partition)
    if offset is not None:
        _kafka_offset.set(offset)
    if consumer_group is not None:
        _kafka_consumer_group.set(consumer_group)


def get_kafka_context() -> Dict[str, Any]:
    """Get current Kafka logging context (unset fields are omitted)."""
    context: Dict[str, Any] = {}

    topic = _kafka_topic.get()
    if topic:
        context["kafka_topic"] = topic
    if _kafka_partition.get() >= 0:
        context["kafka_partition"] = _kafka_partition.get()
    if _kafka_offset.get() >= 0:
        context["kafka_offset"] = _kafka_offset.get()

    consumer_group = _kafka_consumer_group.get()
    if consumer_group:
        context["kafka_consumer_group"] = consumer_group

    return context


def clear_kafka_context() -> None:
    """Clear all Kafka logging context variables."""
    _kafka_topic.set("")
    _kafka_partition.set(-1)
    _kafka_offset.set(-1)
    _kafka_consumer_group.set("")


class KafkaLogContext:
    """
    Context manager that scopes Kafka record coordinates to a block.

    Usage:
        with KafkaLogContext(topic="acme.device", partition=0, offset=12345):
            # All logs in this block will include Kafka context
            handle(record)
    """

    def __init__(
        self,
        topic: Optional[str] = None,
        partition: Optional[int] = None,
        offset: Optional[int] = None,
        consumer_group: Optional[str] = None,
    ):
        self.new_context = {
            "topic": topic,
            "partition": partition,
            "offset": offset,
            "consumer_group": consumer_group,
        }
        self.old_context: Dict[str, Any] = {}

    def __enter__(self) -> "KafkaLogContext":
        self.old_context = {
            "topic": _kafka_topic.get(),
            "partition": _kafka_partition.get(),
            "offset": _kafka_offset.get(),
            "consumer_group": _kafka_consumer_group.get(),
        }
        set_kafka_context(**{k: v for k, v in self.new_context.items() if v is not None})
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        set_kafka_context(**self.old_context)
        return False
