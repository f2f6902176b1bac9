import enum
from dataclasses import dataclass

# HTTP statuses with a fixed meaning for the key that produced them
PERMANENT_STATUSES = frozenset({401, 402})  # invalid or exhausted credential
RATE_LIMIT_STATUS = 429
SERVER_ERROR_MIN = 500
CLIENT_ERROR_MIN = 400
SUCCESS_RANGE = range(200, 300)


class Outcome(enum.Enum):
    SUCCESS = "success"
    TEMPORARY = "temporary"
    PERMANENT = "permanent"


@dataclass(frozen=True)
class FailureRule:
    """What one upstream condition means for the key, the caller and the attempt loop."""

    name: str
    outcome: Outcome
    forward: bool   # hand the upstream response to the caller
    retry: bool     # run another attempt round
    backoff: bool   # sleep the fixed backoff before that round


SUCCESS = FailureRule("success", Outcome.SUCCESS, forward=True, retry=False, backoff=False)
TRANSPORT_FAILURE = FailureRule(
    "transport_failure", Outcome.TEMPORARY, forward=False, retry=True, backoff=True
)
PERMANENT_REJECTION = FailureRule(
    "permanent_rejection", Outcome.PERMANENT, forward=False, retry=True, backoff=False
)
TEMPORARY_REJECTION = FailureRule(
    "temporary_rejection", Outcome.TEMPORARY, forward=False, retry=True, backoff=True
)
# The key is still put on cooldown for a client-side fault; kept as the proxy
# has always behaved (see DESIGN.md).
CLIENT_ERROR = FailureRule("client_error", Outcome.TEMPORARY, forward=True, retry=False, backoff=False)
# 1xx/3xx: not the key's fault and nothing another key could change
PASSTHROUGH = FailureRule("passthrough", Outcome.SUCCESS, forward=True, retry=False, backoff=False)

STATUS_RULES: dict[int, FailureRule] = {
    **{status: PERMANENT_REJECTION for status in PERMANENT_STATUSES},
    RATE_LIMIT_STATUS: TEMPORARY_REJECTION,
}


def classify_status(status_code: int) -> FailureRule:
    """Map an upstream status code to its FailureRule."""
    rule = STATUS_RULES.get(status_code)
    if rule is not None:
        return rule
    if status_code in SUCCESS_RANGE:
        return SUCCESS
    if status_code >= SERVER_ERROR_MIN:
        return TEMPORARY_REJECTION
    if status_code >= CLIENT_ERROR_MIN:
        return CLIENT_ERROR
    return PASSTHROUGH


def describe_status(status_code: int, reason_phrase: str | None = None) -> str:
    return f"{status_code} {reason_phrase}".strip() if reason_phrase else str(status_code)
