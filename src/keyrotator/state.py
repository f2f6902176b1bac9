from dataclasses import dataclass, field

MASK = "***"


def mask_key(credential: str | None) -> str:
    """Render a credential for logs and snapshots: first 4 and last 4 characters only."""
    if not credential or len(credential) <= 8:  # noqa: PLR2004
        return MASK
    return f"{credential[:4]}...{credential[-4:]}"


@dataclass
class KeyStats:
    ok: int = 0
    fail: int = 0


@dataclass
class KeyRecord:
    id: str
    credential: str = field(repr=False)
    disabled: bool = False
    cooldown_until: float = 0.0   # monotonic seconds; 0.0 means not cooling
    stats: KeyStats = field(default_factory=KeyStats)
    last_error: str | None = None
    balance: float | None = None
    charge_balance: float | None = None
    total_balance: float | None = None
    last_balance_check: str | None = None
    disabled_reason: str | None = None
    disabled_at: str | None = None

    @property
    def masked(self) -> str:
        return mask_key(self.credential)

    def is_usable(self, now: float) -> bool:
        return not self.disabled and self.cooldown_until <= now

    def cooldown_remaining(self, now: float) -> float:
        return max(0.0, self.cooldown_until - now)
