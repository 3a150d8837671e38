"""Redis per-monitor scan locks."""

from __future__ import annotations

from dataclasses import dataclass
import uuid

from redis import Redis


LOCK_KEY_TEMPLATE = "magnetlab:{workspace_id}:signal-monitor:{monitor_id}:lock"
RELEASE_LOCK_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
  return redis.call("del", KEYS[1])
end
return 0
"""


def monitor_lock_key(workspace_id: str, monitor_id: str) -> str:
    return LOCK_KEY_TEMPLATE.format(workspace_id=workspace_id, monitor_id=monitor_id)


@dataclass(frozen=True)
class MonitorLockHandle:
    manager: "MonitorLockManager"
    workspace_id: str
    monitor_id: str
    token: str
    key: str

    def release(self) -> bool:
        return self.manager.release(self.workspace_id, self.monitor_id, self.token)


class MonitorLockManager:
    """Acquire and release one scan lock per monitor using Redis SET NX EX.

    A held lock is the monitor's ``running`` state; the TTL bounds how long a
    crashed worker can keep a monitor out of rotation.
    """

    def __init__(self, redis_client: Redis, *, ttl_seconds: int = 900) -> None:
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._redis = redis_client
        self._ttl_seconds = ttl_seconds

    @property
    def ttl_seconds(self) -> int:
        return self._ttl_seconds

    def lock_key(self, workspace_id: str, monitor_id: str) -> str:
        return monitor_lock_key(workspace_id, monitor_id)

    def is_locked(self, workspace_id: str, monitor_id: str) -> bool:
        return self._redis.get(self.lock_key(workspace_id, monitor_id)) is not None

    def acquire(self, workspace_id: str, monitor_id: str) -> MonitorLockHandle | None:
        key = self.lock_key(workspace_id, monitor_id)
        token = str(uuid.uuid4())
        acquired = self._redis.set(key, token, nx=True, ex=self._ttl_seconds)
        if not acquired:
            return None
        return MonitorLockHandle(
            manager=self,
            workspace_id=workspace_id,
            monitor_id=monitor_id,
            token=token,
            key=key,
        )

    def release(self, workspace_id: str, monitor_id: str, token: str) -> bool:
        key = self.lock_key(workspace_id, monitor_id)
        released = self._redis.eval(RELEASE_LOCK_SCRIPT, 1, key, token)
        return int(released) == 1

