import json
import time
from collections.abc import Callable
from dataclasses import asdict, dataclass, field

import redis

from registry_worker.logging.logger import Log

REGISTRY_KEY = "workers:registry"


@dataclass
class WorkerRecord:
    """Liveness entry for one worker process."""

    worker_id: str
    kind: str
    environments: list[str] = field(default_factory=list)
    hostname: str = ""
    pid: int = 0
    started_at: float = 0.0
    last_heartbeat: float = 0.0

    def to_json(self) -> str:
        return json.dumps(asdict(self))

    @classmethod
    def from_json(cls, raw: str) -> "WorkerRecord":
        data = json.loads(raw)
        return cls(
            worker_id=data["worker_id"],
            kind=data.get("kind", ""),
            environments=list(data.get("environments") or []),
            hostname=data.get("hostname", ""),
            pid=int(data.get("pid") or 0),
            started_at=float(data.get("started_at") or 0),
            last_heartbeat=float(data.get("last_heartbeat") or 0),
        )


class WorkerRegistry:
    """Heartbeat-based liveness tracking in a Redis hash keyed by worker id."""

    def __init__(
        self,
        client: redis.Redis,
        liveness_threshold_seconds: float,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._liveness_threshold_seconds = liveness_threshold_seconds
        self._clock = clock

    def register(self, record: WorkerRecord) -> None:
        now = self._clock()
        if not record.started_at:
            record.started_at = now
        record.last_heartbeat = now
        self._client.hset(REGISTRY_KEY, record.worker_id, record.to_json())
        Log.info(f"Registered worker {record.worker_id} ({record.kind}, {record.environments})")

    def heartbeat(self, record: WorkerRecord) -> None:
        """Refresh the whole record, re-creating it if another worker reaped it."""
        record.last_heartbeat = self._clock()
        self._client.hset(REGISTRY_KEY, record.worker_id, record.to_json())

    def unregister(self, worker_id: str) -> None:
        self._client.hdel(REGISTRY_KEY, worker_id)
        Log.info(f"Unregistered worker {worker_id}")

    def list_workers(self) -> list[WorkerRecord]:
        records = []
        for worker_id, raw in self._client.hgetall(REGISTRY_KEY).items():
            try:
                records.append(WorkerRecord.from_json(raw))
            except (ValueError, KeyError, TypeError) as exc:
                Log.warning(f"Ignoring unreadable registry entry {worker_id}: {exc}")
        return records

    def is_stale(self, record: WorkerRecord) -> bool:
        return self._clock() - record.last_heartbeat > self._liveness_threshold_seconds

    def live_workers(self) -> list[WorkerRecord]:
        """Return live workers, reaping entries whose heartbeat is too old."""
        live = []
        for record in self.list_workers():
            if self.is_stale(record):
                age = self._clock() - record.last_heartbeat
                Log.warning(
                    f"Reaping stale worker {record.worker_id} (last heartbeat {age:.0f}s ago)"
                )
                self._client.hdel(REGISTRY_KEY, record.worker_id)
            else:
                live.append(record)
        return live

    def live_worker_ids(self) -> set[str]:
        return {record.worker_id for record in self.live_workers()}
