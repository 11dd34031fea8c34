"""In-memory fakes for the directory services and Kafka clients."""

import asyncio
import json
from types import SimpleNamespace

from aiokafka.errors import KafkaConnectionError, KafkaError
from aiokafka.structs import TopicPartition

from core.errors import ResolutionError, UnknownDeviceError

DEVICE_SUBJECT = "dojot.device-manager.device"
TENANCY_SUBJECT = "dojot.tenancy"
IOTA_SUBJECT = "device-data"


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll ``predicate`` until it returns truthy or fail after ``timeout``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(0.005)


class FakeDirectory:
    """In-memory stand-in for DirectoryClient."""

    def __init__(self, topics=None, tenants=None, devices=None):
        self.topics = dict(topics or {})
        self.tenants = list(tenants or [])
        self.devices = dict(devices or {})
        self.topic_calls = []
        self.device_calls = []
        self.tenant_calls = 0
        self.tenant_failures = 0
        self.closed = False

    async def get_topic(self, tenant, subject, is_global=False):
        self.topic_calls.append((tenant, subject, is_global))
        await asyncio.sleep(0)
        topic = self.topics.get((tenant, subject))
        if topic is None:
            raise ResolutionError("Data broker returned no topic", tenant=tenant, subject=subject)
        return topic

    async def list_tenants(self):
        self.tenant_calls += 1
        await asyncio.sleep(0)
        if self.tenant_failures:
            self.tenant_failures -= 1
            raise ResolutionError("Failed to list tenants: HTTP error (503)")
        return list(self.tenants)

    async def get_device(self, tenant, device_id):
        self.device_calls.append((tenant, device_id))
        await asyncio.sleep(0)
        descriptor = self.devices.get((tenant, device_id))
        if descriptor is None:
            raise UnknownDeviceError(device_id, tenant)
        return descriptor

    async def list_devices(self, tenant):
        return sorted(device_id for t, device_id in self.devices if t == tenant)

    async def close(self):
        self.closed = True


class FakeConsumer:
    """Queue-backed stand-in for AIOKafkaConsumer.

    The first getmany() after start() reports a partition assignment to the
    rebalance listener, the way aiokafka does after joining the group.
    """

    def __init__(self, fail_start=False, **kwargs):
        self.kwargs = kwargs
        self.fail_start = fail_start
        self.topics = []
        self.listener = None
        self.started = False
        self.stopped = False
        self.assignments = 0
        self._pending_assignment = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._offset = 0

    def subscribe(self, topics, listener=None):
        self.topics = list(topics)
        self.listener = listener

    async def start(self):
        if self.fail_start:
            raise KafkaConnectionError("broker unavailable")
        self.started = True
        self._pending_assignment = True

    async def rebalance(self):
        """Simulate another consumer group rebalance."""
        await self.listener.on_partitions_revoked([TopicPartition(self.topics[0], 0)])
        self._pending_assignment = True

    def push(self, value):
        if isinstance(value, dict):
            value = json.dumps(value).encode("utf-8")
        record = SimpleNamespace(topic=self.topics[0], partition=0, offset=self._offset, value=value)
        self._offset += 1
        self._queue.put_nowait(record)

    async def getmany(self, timeout_ms=0):
        if self._pending_assignment:
            self._pending_assignment = False
            self.assignments += 1
            await self.listener.on_partitions_assigned([TopicPartition(self.topics[0], 0)])
        try:
            record = await asyncio.wait_for(self._queue.get(), timeout_ms / 1000)
        except asyncio.TimeoutError:
            return {}
        records = [record]
        while not self._queue.empty():
            records.append(self._queue.get_nowait())
        return {TopicPartition(record.topic, 0): records}

    async def stop(self):
        self.stopped = True

    def drained(self):
        return self._queue.empty()


class ConsumerFactory:
    """Builds FakeConsumers and remembers them by subscribed topic."""

    def __init__(self):
        self.consumers = []
        self.fail_start = False

    def __call__(self, **kwargs):
        consumer = FakeConsumer(fail_start=self.fail_start, **kwargs)
        self.consumers.append(consumer)
        return consumer

    def for_topic(self, topic):
        matches = [c for c in self.consumers if topic in c.topics]
        return matches[-1] if matches else None


class FakeProducer:
    def __init__(self, factory, fail_start=False, **kwargs):
        self.kwargs = kwargs
        self.factory = factory
        self.fail_start = fail_start
        self.started = False
        self.stopped = False
        self.flushed = False

    async def start(self):
        if self.fail_start:
            raise KafkaConnectionError("broker unavailable")
        self.started = True

    async def send_and_wait(self, topic, value=None):
        await asyncio.sleep(0)
        if self.factory.send_failures:
            self.factory.send_failures -= 1
            raise KafkaError("send failed")
        self.factory.sent.append((topic, json.loads(value)))

    async def flush(self):
        self.flushed = True

    async def stop(self):
        self.stopped = True


class ProducerFactory:
    """Builds FakeProducers; every successful send lands in ``sent``."""

    def __init__(self):
        self.producers = []
        self.sent = []
        self.start_failures = 0
        self.send_failures = 0

    def __call__(self, **kwargs):
        fail_start = self.start_failures > 0
        if fail_start:
            self.start_failures -= 1
        producer = FakeProducer(self, fail_start=fail_start, **kwargs)
        self.producers.append(producer)
        return producer

    @property
    def payloads(self):
        return [payload for _topic, payload in self.sent]


