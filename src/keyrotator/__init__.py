from .app import create_app
from .balance import BalanceChecker
from .dispatcher import Dispatcher, build_client
from .env import load_config_from_env, load_credentials, load_credentials_from_env
from .errors import KeyRotatorError, NoKeysConfiguredError, UnknownKeyError
from .policies import FailureRule, Outcome, classify_status
from .pool import KeyPool
from .state import KeyRecord, KeyStats, mask_key
from .stats import UsageRecorder
from .types import AuthConfig, ProxyConfig, RetryConfig

__all__ = [
    "AuthConfig",
    "RetryConfig",
    "ProxyConfig",
    "KeyPool",
    "KeyRecord",
    "KeyStats",
    "mask_key",
    "Dispatcher",
    "build_client",
    "create_app",
    "BalanceChecker",
    "UsageRecorder",
    "FailureRule",
    "Outcome",
    "classify_status",
    "KeyRotatorError",
    "NoKeysConfiguredError",
    "UnknownKeyError",
    "load_credentials",
    "load_credentials_from_env",
    "load_config_from_env",
]
