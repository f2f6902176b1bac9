import contextlib
import logging
import threading
import time
from collections.abc import Callable, Iterable
from datetime import datetime, timezone

from .env import load_credentials_from_env
from .errors import NoKeysConfiguredError, UnknownKeyError
from .state import KeyRecord, mask_key

DEFAULT_COOLDOWN_SECONDS = 60.0
INSUFFICIENT_BALANCE_REASON = "insufficient balance, auto-disabled"
ADMIN_DISABLE_REASON = "disabled by administrator"


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class KeyPool:
    """Round-robin pool of upstream credentials with cooldown and disable states.

    All methods are safe to call from the event loop and from worker threads;
    each one holds the pool lock only for its own in-memory bookkeeping.
    """

    def __init__(
        self,
        credentials: Iterable[str],
        cooldown_seconds: float = DEFAULT_COOLDOWN_SECONDS,
        log_level: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize a KeyPool.

        Args:
            credentials (Iterable[str]): credentials in priority order; duplicates are dropped
            cooldown_seconds (float): cooldown applied on a temporary failure
            log_level (int | None, optional): level for the "keyrotator" logger
            clock (Callable[[], float], optional): monotonic time source

        Raises:
            NoKeysConfiguredError: if no credential remains after deduplication
        """
        unique = list(dict.fromkeys(c for c in credentials if c))
        if not unique:
            raise NoKeysConfiguredError()
        self._keys: list[KeyRecord] = [
            KeyRecord(id=f"{idx + 1:03d}", credential=cred) for idx, cred in enumerate(unique)
        ]
        self._by_id = {k.id: k for k in self._keys}
        self.cooldown_seconds = float(cooldown_seconds)
        self._ptr = 0
        self._clock = clock
        self._lock = threading.Lock()
        self._logger = logging.getLogger("keyrotator")
        if log_level is not None:
            with contextlib.suppress(Exception):
                self._logger.setLevel(log_level)

    @classmethod
    def from_env(cls, env_path: str | None = None, **kwargs):
        """Build a pool from SILICONFLOW_KEYS / KEY_FILE (see env.load_credentials)."""
        return cls(load_credentials_from_env(env_path=env_path), **kwargs)

    def __len__(self) -> int:
        return len(self._keys)

    def __iter__(self):
        return iter(list(self._keys))

    def _now(self) -> float:
        return self._clock()

    # ---------- selection ----------

    def select_usable(self) -> KeyRecord | None:
        """Return the next usable key in rotation, or None when every key is disabled or cooling.

        The cursor moves one step per record inspected, eligible or not.
        """
        with self._lock:
            now = self._now()
            count = len(self._keys)
            for _ in range(count):
                record = self._keys[self._ptr]
                self._ptr = (self._ptr + 1) % count
                if record.is_usable(now):
                    return record
            return None

    def get(self, key_id: str) -> KeyRecord:
        try:
            return self._by_id[key_id]
        except KeyError:
            raise UnknownKeyError(key_id) from None

    # ---------- outcome reporting ----------

    def report_success(self, record: KeyRecord) -> None:
        with self._lock:
            record.stats.ok += 1
            record.last_error = None

    def report_failure(self, record: KeyRecord, reason: str, permanent: bool = False) -> None:
        with self._lock:
            record.stats.fail += 1
            record.last_error = reason
            if permanent:
                self._disable(record, reason)
            else:
                record.cooldown_until = self._now() + self.cooldown_seconds
                self._logger.info(
                    f"key={record.id} ({record.masked}) cooling down for "
                    f"{self.cooldown_seconds:g}s: {reason}"
                )

    def _disable(self, record: KeyRecord, reason: str) -> bool:
        # caller holds the lock; the first transition wins
        if record.disabled:
            return False
        record.disabled = True
        record.disabled_reason = reason
        record.disabled_at = _utcnow_iso()
        self._logger.warning(f"key={record.id} ({record.masked}) disabled: {reason}")
        return True

    def update_balance(
        self,
        record: KeyRecord,
        balance: float,
        charge_balance: float,
        total_balance: float,
    ) -> bool:
        """Store observed balances; disable the key when the total is used up.

        Returns True if this call disabled the key.
        """
        with self._lock:
            record.balance = balance
            record.charge_balance = charge_balance
            record.total_balance = total_balance
            record.last_balance_check = _utcnow_iso()
            if total_balance > 0 or not self._disable(record, INSUFFICIENT_BALANCE_REASON):
                return False
            record.stats.fail += 1
            record.last_error = INSUFFICIENT_BALANCE_REASON
            return True

    # ---------- administrative mutations ----------

    def enable(self, key_id: str) -> KeyRecord:
        record = self.get(key_id)
        with self._lock:
            record.disabled = False
            record.cooldown_until = 0.0
            record.disabled_reason = None
            record.disabled_at = None
        self._logger.info(f"key={record.id} ({record.masked}) enabled")
        return record

    def disable(self, key_id: str, reason: str = ADMIN_DISABLE_REASON) -> KeyRecord:
        record = self.get(key_id)
        with self._lock:
            self._disable(record, reason)
        return record

    # ---------- observability ----------

    def usable_count(self) -> int:
        with self._lock:
            now = self._now()
            return sum(1 for k in self._keys if k.is_usable(now))

    def soonest_available_in(self) -> float | None:
        """Seconds until the first cooling (not disabled) key becomes usable again."""
        with self._lock:
            now = self._now()
            waits = [
                k.cooldown_remaining(now)
                for k in self._keys
                if not k.disabled and k.cooldown_until > now
            ]
        return min(waits) if waits else None

    def snapshot(self) -> dict:
        """Read-only health view; credentials appear masked only."""
        with self._lock:
            now = self._now()
            keys = [
                {
                    "id": k.id,
                    "key_masked": mask_key(k.credential),
                    "disabled": k.disabled,
                    "cooldown_remaining_ms": int(k.cooldown_remaining(now) * 1000),
                    "stats": {"ok": k.stats.ok, "fail": k.stats.fail},
                    "last_error": k.last_error,
                    "balance": k.balance,
                    "charge_balance": k.charge_balance,
                    "total_balance": k.total_balance,
                    "last_balance_check": k.last_balance_check,
                    "disabled_reason": k.disabled_reason,
                    "disabled_at": k.disabled_at,
                }
                for k in self._keys
            ]
            usable = sum(1 for k in self._keys if k.is_usable(now))
        return {"total_keys": len(keys), "usable_keys": usable, "keys": keys}
