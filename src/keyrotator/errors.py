class KeyRotatorError(Exception):
    """Base class for keyrotator errors."""


class NoKeysConfiguredError(KeyRotatorError):
    """Raised when a pool is built without a single credential."""

    def __init__(self, message: str | None = None):
        super().__init__(
            message
            or "no API keys found; set SILICONFLOW_KEYS (comma-separated) "
            "or KEY_FILE (one key per line)"
        )


class UnknownKeyError(KeyRotatorError, KeyError):
    def __init__(self, key_id: str):
        self.key_id = key_id
        super().__init__(f"no key with id {key_id!r}")

    def __str__(self) -> str:
        return self.args[0]
