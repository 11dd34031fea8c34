"""Tests for ConsumerRegistry."""

import threading

from iotagent.registry import TENANCY_KEY, ConsumerRegistry, device_key


def test_device_key():
    assert device_key("acme") == "acme.device"


def test_claim_is_add_if_absent():
    registry = ConsumerRegistry()

    assert registry.claim(TENANCY_KEY) is True
    assert registry.claim(TENANCY_KEY) is False
    assert TENANCY_KEY in registry
    assert len(registry) == 1


def test_release_allows_reclaim():
    registry = ConsumerRegistry()
    registry.claim(device_key("acme"))
    registry.release(device_key("acme"))

    assert device_key("acme") not in registry
    assert registry.claim(device_key("acme")) is True


def test_release_unknown_key_is_noop():
    registry = ConsumerRegistry()
    registry.release("missing")
    assert len(registry) == 0


def test_keys_snapshot():
    registry = ConsumerRegistry()
    registry.claim(TENANCY_KEY)
    registry.claim(device_key("acme"))
    assert registry.keys() == frozenset({"tenancy", "acme.device"})


def test_exactly_one_thread_wins():
    registry = ConsumerRegistry()
    results = []
    barrier = threading.Barrier(8)

    def contender():
        barrier.wait()
        results.append(registry.claim(device_key("acme")))

    threads = [threading.Thread(target=contender) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1
