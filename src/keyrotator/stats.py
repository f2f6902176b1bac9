import threading
import time
from collections import deque
from dataclasses import asdict, dataclass, field

DEFAULT_HISTORY = 1000


@dataclass(frozen=True)
class UsageRecord:
    key_id: str
    status: int | None   # None for transport failures
    latency_ms: float
    error: str | None = None
    at: float = field(default_factory=time.time)


@dataclass
class KeyUsage:
    requests: int = 0
    errors: int = 0
    total_latency_ms: float = 0.0
    last_status: int | None = None

    @property
    def avg_latency_ms(self) -> float:
        return self.total_latency_ms / self.requests if self.requests else 0.0


class UsageRecorder:
    """In-memory sink for per-attempt usage; keeps a bounded history plus running totals."""

    def __init__(self, history: int = DEFAULT_HISTORY):
        self._records: deque[UsageRecord] = deque(maxlen=history)
        self._totals: dict[str, KeyUsage] = {}
        self._lock = threading.Lock()

    def record(
        self,
        key_id: str,
        status: int | None,
        latency_ms: float,
        error: str | None = None,
    ) -> UsageRecord:
        rec = UsageRecord(key_id=key_id, status=status, latency_ms=latency_ms, error=error)
        with self._lock:
            self._records.append(rec)
            usage = self._totals.setdefault(key_id, KeyUsage())
            usage.requests += 1
            usage.total_latency_ms += latency_ms
            usage.last_status = status
            if error is not None:
                usage.errors += 1
        return rec

    def recent(self, limit: int = 50, key_id: str | None = None) -> list[UsageRecord]:
        with self._lock:
            records = [r for r in self._records if key_id is None or r.key_id == key_id]
        return records[-limit:] if limit > 0 else []

    def summary(self) -> dict[str, dict]:
        with self._lock:
            return {
                key_id: {
                    "requests": u.requests,
                    "errors": u.errors,
                    "avg_latency_ms": round(u.avg_latency_ms, 1),
                    "last_status": u.last_status,
                }
                for key_id, u in self._totals.items()
            }

    def query(self, limit: int = 50, key_id: str | None = None) -> dict:
        return {
            "summary": self.summary(),
            "recent": [asdict(r) for r in self.recent(limit, key_id)],
        }
