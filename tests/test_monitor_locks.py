from __future__ import annotations

import pytest

from magnetlab_signals.orchestrator.locks import MonitorLockManager, monitor_lock_key


class _FakeRedis:
    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    def set(self, key: str, value: str, *, nx: bool = False, ex: int | None = None):
        if nx and key in self._store:
            return False
        self._store[key] = value
        self.ttls[key] = ex
        return True

    def get(self, key: str) -> str | None:
        return self._store.get(key)

    def eval(self, script: str, keys_count: int, key: str, token: str):  # noqa: ARG002
        if keys_count != 1:
            raise ValueError("Expected one key")
        if self._store.get(key) == token:
            del self._store[key]
            return 1
        return 0


def test_lock_is_exclusive_per_monitor_and_expires() -> None:
    fake_redis = _FakeRedis()
    manager = MonitorLockManager(fake_redis, ttl_seconds=120)

    first = manager.acquire("ws-1", "mon-1")
    assert first is not None
    assert first.key == monitor_lock_key("ws-1", "mon-1") == "magnetlab:ws-1:signal-monitor:mon-1:lock"
    assert fake_redis.ttls[first.key] == 120
    assert manager.is_locked("ws-1", "mon-1") is True

    assert manager.acquire("ws-1", "mon-1") is None
    assert manager.acquire("ws-1", "mon-2") is not None
    assert manager.acquire("ws-2", "mon-1") is not None


def test_release_requires_matching_token() -> None:
    fake_redis = _FakeRedis()
    manager = MonitorLockManager(fake_redis, ttl_seconds=60)
    handle = manager.acquire("ws-1", "mon-1")

    assert manager.release("ws-1", "mon-1", "someone-else") is False
    assert manager.is_locked("ws-1", "mon-1") is True
    assert handle.release() is True
    assert manager.is_locked("ws-1", "mon-1") is False
    assert handle.release() is False


def test_rejects_non_positive_ttl() -> None:
    with pytest.raises(ValueError):
        MonitorLockManager(_FakeRedis(), ttl_seconds=0)
