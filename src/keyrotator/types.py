from dataclasses import dataclass, field


@dataclass(frozen=True)
class AuthConfig:
    header: str = "Authorization"
    scheme: str = "Bearer"


@dataclass(frozen=True)
class RetryConfig:
    # Attempt rounds per inbound request (key selections that reached upstream)
    max_attempts: int = 6
    # Fixed pause before retrying after a transport error, 429 or 5xx (seconds)
    backoff: float = 0.15
    # Cooldown applied to a key on a temporary failure (seconds)
    cooldown_seconds: float = 60.0


@dataclass(frozen=True)
class ProxyConfig:
    upstream_base_url: str = "https://api.siliconflow.cn/v1/"
    path_prefix: str = "/v1"
    host: str = "localhost"
    port: int = 11435
    enable_streaming: bool = True
    key_id_header: str = "X-Rotator-Key-Id"
    # Seconds between balance sweeps; 0 disables the checker
    balance_check_interval: float = 300.0
    connect_timeout: float | None = 10.0
    read_timeout: float | None = None
    retry: RetryConfig = field(default_factory=RetryConfig)
    auth: AuthConfig = field(default_factory=AuthConfig)

    @property
    def balance_url(self) -> str:
        return f"{self.upstream_base_url.rstrip('/')}/user/info"
