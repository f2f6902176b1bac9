import contextlib
import logging
import threading

import requests

from .pool import KeyPool
from .policies import PERMANENT_STATUSES, describe_status
from .state import KeyRecord

DEFAULT_INTERVAL = 300.0
# Pause between per-key lookups so a sweep does not burst the account API
DEFAULT_PAUSE = 0.1
DEFAULT_TIMEOUT = 15.0


class BalanceChecker:
    """Polls the upstream account-info endpoint and feeds balances back into the pool.

    Runs in a daemon thread; every state change goes through KeyPool methods so
    it shares the pool's lock with the request path.
    """

    def __init__(
        self,
        pool: KeyPool,
        url: str,
        interval: float = DEFAULT_INTERVAL,
        session: requests.Session | None = None,
        pause: float = DEFAULT_PAUSE,
        timeout: float = DEFAULT_TIMEOUT,
        auth_scheme: str = "Bearer",
    ):
        self.pool = pool
        self.url = url
        self.interval = interval
        self.pause = pause
        self.timeout = timeout
        self.auth_scheme = auth_scheme
        self._session = session or requests.Session()
        self._own_session = session is None
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._logger = logging.getLogger("keyrotator")

    def check_key(self, record: KeyRecord) -> bool:
        """Refresh one key's balance. Returns False if the lookup failed or disabled the key."""
        try:
            resp = self._session.get(
                self.url,
                headers={
                    "Authorization": f"{self.auth_scheme} {record.credential}",
                    "Content-Type": "application/json",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            self._logger.error(f"balance check failed for key={record.id} ({record.masked}): {e}")
            return False

        if resp.status_code in PERMANENT_STATUSES:
            self.pool.report_failure(
                record,
                f"balance check failed: {describe_status(resp.status_code, resp.reason)}",
                permanent=True,
            )
            return False
        if not resp.ok:
            self._logger.error(
                f"balance check failed for key={record.id} ({record.masked}): HTTP {resp.status_code}"
            )
            return False

        try:
            data = resp.json()["data"]
            balance = float(data.get("balance") or 0)
            charge_balance = float(data.get("chargeBalance") or 0)
            total_balance = float(data.get("totalBalance") or 0)
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            self._logger.error(
                f"unexpected balance payload for key={record.id} ({record.masked}): {e!r}"
            )
            return False

        return not self.pool.update_balance(record, balance, charge_balance, total_balance)

    def check_all(self) -> int:
        """One sweep over every enabled key; returns how many keys it disabled."""
        records = [r for r in self.pool if not r.disabled]
        self._logger.info(f"checking balances for {len(records)} keys")
        disabled = 0
        for record in records:
            if self._stop.is_set():
                break
            if not self.check_key(record) and record.disabled:
                disabled += 1
            self._stop.wait(self.pause)
        if disabled:
            self._logger.warning(f"auto-disabled {disabled} keys during balance check")
        return disabled

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.check_all()
            except Exception:
                # keep the poller alive; the next sweep retries
                self._logger.exception("balance sweep crashed")
            self._stop.wait(self.interval)

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="keyrotator-balance", daemon=True)
        self._thread.start()
        self._logger.info(f"balance checker started, interval={self.interval:g}s")

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None
        if self._own_session:
            with contextlib.suppress(Exception):
                self._session.close()
