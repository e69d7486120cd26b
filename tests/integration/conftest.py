"""Integration fixtures: stores wired to a real Redis protocol implementation.

By default every test gets a fresh in-process fakeredis server (with Lua
support). Set ``LIPSYNC_TEST_REDIS=container`` to run the same tests against
a Redis started with testcontainers instead.
"""

import os
from typing import Generator

import fakeredis
import pytest
import redis.asyncio as aioredis

from lipsync_dispatch.queue.task_store import TaskStore
from lipsync_dispatch.queue.waiting_store import WaitingStore
from lipsync_dispatch.redis.advisory_lock import AdvisoryLock
from lipsync_dispatch.redis.connection import CoordinationStore

# Disable Ryuk (testcontainers cleanup container) in nested Docker setups
os.environ.setdefault("TESTCONTAINERS_RYUK_DISABLED", "true")

_USE_CONTAINER = os.getenv("LIPSYNC_TEST_REDIS", "fake").lower() == "container"


@pytest.fixture(scope="session")
def redis_container() -> Generator:
    """Start a Redis container for the test session when requested."""
    if not _USE_CONTAINER:
        yield None
        return

    from testcontainers.redis import RedisContainer

    redis = RedisContainer(image="redis:7-alpine")
    with redis:
        yield redis


@pytest.fixture
def client_factory(redis_container):
    """Build clients that all talk to the same server."""
    if redis_container is None:
        server = fakeredis.FakeServer()
        return lambda: fakeredis.FakeAsyncRedis(server=server)

    host = redis_container.get_container_host_ip()
    port = int(redis_container.get_exposed_port(6379))
    return lambda: aioredis.Redis(host=host, port=port, db=1)


@pytest.fixture
async def coordination_store(test_settings, client_factory):
    store = CoordinationStore(test_settings, client_factory=client_factory)
    await store.connect()
    await store.client.flushdb()
    yield store
    await store.client.flushdb()
    await store.close()


@pytest.fixture
async def second_store(test_settings, client_factory, coordination_store):
    """Independent handle on the same server, standing in for another instance."""
    store = CoordinationStore(test_settings, client_factory=client_factory)
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def task_store(coordination_store, test_settings):
    return TaskStore(coordination_store, collection=test_settings.task_collection_key)


@pytest.fixture
def waiting_store(coordination_store, test_settings):
    return WaitingStore(coordination_store, key=test_settings.waiting_collection_key)


@pytest.fixture
def advisory_lock(coordination_store, test_settings):
    return AdvisoryLock(coordination_store, prefix=test_settings.lock_prefix)
