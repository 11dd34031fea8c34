"""Fixtures for the agent runtime tests."""

import pytest

from config.config import AgentConfig
from fakes import (
    DEVICE_SUBJECT,
    IOTA_SUBJECT,
    TENANCY_SUBJECT,
    ConsumerFactory,
    FakeDirectory,
    ProducerFactory,
)


@pytest.fixture
def agent_config():
    return AgentConfig(
        group_id="iotagent-test",
        bootstrap_retry_delay_seconds=0.01,
        reconnect_delay_seconds=0.01,
    )


@pytest.fixture
def directory():
    return FakeDirectory(
        topics={
            ("internal", TENANCY_SUBJECT): "internal.dojot.tenancy",
            ("acme", DEVICE_SUBJECT): "acme.dojot.device-manager.device",
            ("globex", DEVICE_SUBJECT): "globex.dojot.device-manager.device",
            ("acme", IOTA_SUBJECT): "acme.device-data",
            ("globex", IOTA_SUBJECT): "globex.device-data",
        },
        tenants=["acme"],
        devices={("acme", "d1"): {"id": "d1", "label": "sensor", "attrs": {}}},
    )


@pytest.fixture
def consumer_factory():
    return ConsumerFactory()


@pytest.fixture
def producer_factory():
    return ProducerFactory()
