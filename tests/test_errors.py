import pytest

from cratesync.domain.common.errors import (
    AuthorityError,
    AuthorizationError,
    ConflictError,
    ConnectionTimeout,
    NetworkError,
    QuotaExhaustedError,
    RateLimitError,
    Resolution,
    resolve,
)


@pytest.mark.parametrize(
    "error,expected",
    [
        (ConflictError("gone"), Resolution.RESYNC),
        (AuthorizationError("banned"), Resolution.ROLLBACK),
        (RateLimitError("slow", retry_after_ms=1000), Resolution.ROLLBACK),
        (NetworkError("down"), Resolution.BOTH),
        (ConnectionTimeout("t/o"), Resolution.BOTH),
        (QuotaExhaustedError("none left"), Resolution.BOTH),
        (AuthorityError("boom"), Resolution.ROLLBACK),
    ],
)
def test_every_error_resolves_to_exactly_one_resolution(error, expected):
    assert resolve(error) is expected


def test_resolution_flags():
    assert Resolution.BOTH.rolls_back and Resolution.BOTH.resyncs
    assert Resolution.ROLLBACK.rolls_back and not Resolution.ROLLBACK.resyncs
    assert Resolution.RESYNC.resyncs and not Resolution.RESYNC.rolls_back


def test_codes_default_per_class_and_can_be_overridden():
    assert ConnectionTimeout("x").code == "TIMEOUT"
    assert isinstance(ConnectionTimeout("x"), NetworkError)
    assert ConflictError("x", code="LOCKED").code == "LOCKED"
    assert RateLimitError("x", retry_after_ms=250).retry_after_ms == 250
