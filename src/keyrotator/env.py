import logging
import os
from collections.abc import Iterable, Mapping

from .types import AuthConfig, ProxyConfig, RetryConfig

logger = logging.getLogger("keyrotator")

KEYS_VAR = "SILICONFLOW_KEYS"
KEY_FILE_VAR = "KEY_FILE"


def _parse_env_file(env_path: str) -> dict[str, str]:
    """Parse a simple .env file into a dict without modifying os.environ.

    Supports basic KEY=VALUE pairs, ignoring comments and blank lines.
    Surrounding single/double quotes are stripped if present.
    """
    values: dict[str, str] = {}
    try:
        with open(env_path) as f:
            for raw_line in f:
                line = raw_line.strip()
                if not line or line.startswith("#"):
                    continue
                if "=" not in line:
                    continue
                key, val = line.split("=", 1)
                key = key.strip()
                val = val.strip().strip('"').strip("'")
                if key:
                    values[key] = val
    except FileNotFoundError:
        # A missing .env is the common case outside development
        pass
    return values


def _env_map(env: Mapping[str, str] | None, env_path: str | None) -> dict[str, str]:
    # Actual environment takes precedence over the .env file
    file_env = _parse_env_file(env_path) if env_path else {}
    return {**file_env, **(os.environ if env is None else env)}


def _read_key_file(path: str) -> list[str]:
    try:
        with open(path, encoding="utf-8") as f:
            lines = f.read().splitlines()
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.warning(f"could not read key file {path}: {e}")
        return []
    return [line.strip() for line in lines if line.strip() and not line.strip().startswith("#")]


def _dedupe(tokens: Iterable[str]) -> list[str]:
    # dict keeps first-appearance order
    return list(dict.fromkeys(tokens))


def load_credentials(keys_value: str | None = None, key_file: str | None = None) -> list[str]:
    """Build the ordered, deduplicated credential list.

    - 'keys_value' is a comma-separated list; blanks are dropped.
    - 'key_file' holds one credential per line; blank lines and lines starting
        with '#' are ignored. A missing file contributes nothing.
    - The union keeps the order of first appearance, env list first.
    """
    tokens: list[str] = []
    if keys_value:
        tokens.extend(t.strip() for t in keys_value.split(",") if t.strip())
    if key_file:
        tokens.extend(_read_key_file(key_file))
    return _dedupe(tokens)


def load_credentials_from_env(
    env_path: str | None = None, env: Mapping[str, str] | None = None
) -> list[str]:
    env_map = _env_map(env, env_path)
    return load_credentials(env_map.get(KEYS_VAR), env_map.get(KEY_FILE_VAR))


def _int(env_map: dict[str, str], name: str, default: int) -> int:
    raw = env_map.get(name)
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning(f"ignoring invalid {name}={raw!r}; using {default}")
        return default
    return value or default


def _float(env_map: dict[str, str], name: str, default: float | None) -> float | None:
    raw = env_map.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning(f"ignoring invalid {name}={raw!r}; using {default}")
        return default


def load_config_from_env(
    env_path: str | None = None, env: Mapping[str, str] | None = None
) -> ProxyConfig:
    """Create a ProxyConfig from environment variables (and an optional .env file).

    Unset or invalid values fall back to the ProxyConfig defaults.
    """
    env_map = _env_map(env, env_path)
    defaults = ProxyConfig()
    retry_defaults = RetryConfig()

    base_url = env_map.get("SILICONFLOW_BASE_URL") or defaults.upstream_base_url
    if not base_url.endswith("/"):
        base_url += "/"
    prefix = "/" + (env_map.get("PROXY_PREFIX") or defaults.path_prefix).strip("/")

    backoff_ms = _int(env_map, "RETRY_BACKOFF_MS", round(retry_defaults.backoff * 1000))
    balance_minutes = _float(
        env_map, "BALANCE_CHECK_MINUTES", defaults.balance_check_interval / 60
    )

    return ProxyConfig(
        upstream_base_url=base_url,
        path_prefix=prefix,
        host=env_map.get("HOST") or defaults.host,
        port=_int(env_map, "PORT", defaults.port),
        enable_streaming=env_map.get("ENABLE_STREAMING", "").lower() != "false",
        balance_check_interval=max(0.0, (balance_minutes or 0.0) * 60),
        connect_timeout=_float(env_map, "UPSTREAM_CONNECT_TIMEOUT", defaults.connect_timeout),
        read_timeout=_float(env_map, "UPSTREAM_READ_TIMEOUT", defaults.read_timeout),
        retry=RetryConfig(
            max_attempts=max(1, _int(env_map, "MAX_TRIES_PER_REQUEST", retry_defaults.max_attempts)),
            backoff=backoff_ms / 1000,
            cooldown_seconds=float(
                _int(env_map, "COOLDOWN_SECONDS", int(retry_defaults.cooldown_seconds))
            ),
        ),
        auth=AuthConfig(),
    )
