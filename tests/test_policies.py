import pytest

from keyrotator import Outcome, classify_status
from keyrotator.policies import (
    CLIENT_ERROR,
    PASSTHROUGH,
    PERMANENT_REJECTION,
    SUCCESS,
    TEMPORARY_REJECTION,
    TRANSPORT_FAILURE,
    describe_status,
)


@pytest.mark.parametrize("status", [401, 402])
def test_credential_rejection_is_permanent_and_retried(status):
    rule = classify_status(status)
    assert rule is PERMANENT_REJECTION
    assert rule.outcome is Outcome.PERMANENT
    assert rule.retry and not rule.forward and not rule.backoff


@pytest.mark.parametrize("status", [429, 500, 502, 503, 529])
def test_rate_limit_and_server_errors_cool_down(status):
    rule = classify_status(status)
    assert rule is TEMPORARY_REJECTION
    assert rule.retry and rule.backoff and not rule.forward


@pytest.mark.parametrize("status", [400, 403, 404, 413, 422])
def test_other_client_errors_are_forwarded_once(status):
    rule = classify_status(status)
    assert rule is CLIENT_ERROR
    assert rule.outcome is Outcome.TEMPORARY
    assert rule.forward and not rule.retry


@pytest.mark.parametrize("status", [200, 201, 204])
def test_success(status):
    assert classify_status(status) is SUCCESS


def test_redirects_pass_through_without_blame():
    rule = classify_status(302)
    assert rule is PASSTHROUGH
    assert rule.outcome is Outcome.SUCCESS


def test_transport_failure_rule():
    assert TRANSPORT_FAILURE.outcome is Outcome.TEMPORARY
    assert TRANSPORT_FAILURE.retry and TRANSPORT_FAILURE.backoff


def test_describe_status():
    assert describe_status(401, "Unauthorized") == "401 Unauthorized"
    assert describe_status(599, "") == "599"
