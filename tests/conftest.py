"""
Root-level conftest for all tests.

Provides explicit settings so tests never depend on a .env file or the
environment, and resets the settings singleton between tests.
"""

import pytest

from lipsync_dispatch.main.config import Settings, reset_settings, set_settings


@pytest.fixture(scope="session")
def test_settings() -> Settings:
    """Create test settings with explicit values.

    Sweep intervals and lock timings are short so loop tests finish quickly.
    """
    return Settings(
        redis_host="localhost",
        redis_port=6379,
        redis_db=None,
        task_collection_key="test_queue",
        waiting_collection_key="test_waiting_queue",
        lock_prefix="test_lock:",
        machine_list="http://worker-a:8188,http://worker-b:8188",
        worker_probe_timeout_seconds=1.0,
        sweep_enabled=False,
        sweep_mode="locked",
        sweep_interval_seconds=0.05,
        sweep_lock_key="waiting_queue:sweep",
        sweep_lock_ttl_ms=5000,
        lock_retry_delay_ms=10,
        lock_max_attempts=1,
        webhook_url="http://dispatcher.test/webhook",
        dispatch_queue_max_size=10,
        blob_storage_dir="./test-blobs",
        blob_public_base_url="http://dispatcher.test/blobs",
        testing=True,
        dev=True,
    )


@pytest.fixture(autouse=True)
def use_test_settings(test_settings):
    set_settings(test_settings)
    yield
    reset_settings()
