import pytest

from tubewatch.exceptions import (
    CircuitBreakerError,
    CredentialsExhaustedError,
    NoActiveCredentialError,
    RemoteError,
    is_quota_error,
)
from tubewatch.utils.circuit_breaker import CircuitBreaker


def test_breaker_opens_once():
    breaker = CircuitBreaker("test")
    assert not breaker.is_open
    breaker.check()

    assert breaker.trip("quota exceeded") is True
    assert breaker.trip("second failure") is False
    assert breaker.is_open
    assert breaker.reason == "quota exceeded"
    with pytest.raises(CircuitBreakerError, match="quota exceeded"):
        breaker.check()


@pytest.mark.parametrize(
    "error, expected",
    [
        (RemoteError(403, "forbidden"), True),
        (RemoteError(400, "quotaExceeded"), True),
        (RemoteError(500, "backend error"), False),
        (RemoteError(0, "ClientConnectorError: refused"), False),
        (CredentialsExhaustedError("all keys tried"), True),
        (NoActiveCredentialError("none configured"), True),
        (ValueError("quota"), False),
    ],
)
def test_quota_classification(error, expected):
    assert is_quota_error(error) is expected
