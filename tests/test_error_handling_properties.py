"""
Property-based tests for error handling.

These tests verify the retry policy used by reconciliation and the error
taxonomy surfaced to API callers.
"""

import pytest
import asyncio
from unittest.mock import patch
from hypothesis import given, settings, strategies as st

from shopsphere.error_handling.error_handler import ErrorHandler, RetryConfig
from shopsphere.errors import (
    Forbidden,
    GatewayUnavailable,
    InvalidTransition,
    MarketplaceError,
    NotFound,
    OfferExpired,
    SelfNegotiationError,
    StorageError,
    Unauthorized,
    ValidationError,
)


# Strategy for generating retry configuration values
retry_counts = st.integers(min_value=1, max_value=10)
base_delays = st.floats(min_value=0.1, max_value=10.0)
attempt_numbers = st.integers(min_value=0, max_value=9)
order_ids = st.text(alphabet="ABCDEFGHJKLMNPQRSTUVWXYZ0123456789", min_size=8, max_size=17)


@given(
    max_retries=retry_counts
)
@settings(max_examples=100, deadline=None)
def test_retry_exhaustion_termination(max_retries):
    """
    For any transient failure that repeats max_retries times, the handler
    stops and raises the last failure.
    """
    handler = ErrorHandler(max_retries=max_retries)

    call_count = 0

    async def always_fails():
        nonlocal call_count
        call_count += 1
        raise StorageError(f"Simulated failure #{call_count}")

    # Mock asyncio.sleep to avoid delays during testing
    with patch('asyncio.sleep', return_value=None):
        with pytest.raises(StorageError) as exc_info:
            asyncio.run(handler.retry_with_backoff(always_fails))

    assert call_count == max_retries, \
        f"Operation should be attempted exactly {max_retries} times, was attempted {call_count} times"

    # Verify it's the last failure that's raised
    assert f"#{max_retries}" in str(exc_info.value), \
        f"Should raise the last failure (#{max_retries})"


@given(
    max_retries=retry_counts,
    success_on_attempt=st.integers(min_value=1, max_value=10)
)
@settings(max_examples=100, deadline=None)
def test_retry_succeeds_before_exhaustion(max_retries, success_on_attempt):
    """
    For any operation that succeeds on attempt N where N <= max_retries,
    the retry logic returns the result without further attempts.
    """
    if success_on_attempt > max_retries:
        return

    handler = ErrorHandler(max_retries=max_retries)

    call_count = 0

    async def fails_then_succeeds():
        nonlocal call_count
        call_count += 1
        if call_count < success_on_attempt:
            raise GatewayUnavailable(f"Failure #{call_count}")
        return f"Success on attempt {call_count}"

    with patch('asyncio.sleep', return_value=None):
        result = asyncio.run(handler.retry_with_backoff(fails_then_succeeds))

    assert call_count == success_on_attempt
    assert result == f"Success on attempt {success_on_attempt}"


@given(
    max_retries=retry_counts
)
@settings(max_examples=50, deadline=None)
def test_non_transient_errors_are_not_retried(max_retries):
    """
    Validation failures and programming errors surface on the first attempt.
    """
    handler = ErrorHandler(max_retries=max_retries)

    call_count = 0

    async def bad_input():
        nonlocal call_count
        call_count += 1
        raise ValidationError("Invalid amount")

    with patch('asyncio.sleep', return_value=None) as sleep:
        with pytest.raises(ValidationError):
            asyncio.run(handler.retry_with_backoff(bad_input))

    assert call_count == 1
    sleep.assert_not_called()


@given(
    base_delay=base_delays,
    attempt=attempt_numbers
)
@settings(max_examples=100)
def test_backoff_delay_exponential_growth(base_delay, attempt):
    """
    Backoff delays follow delay = base_delay_seconds * (2 ^ attempt).
    """
    config = RetryConfig(base_delay_seconds=base_delay)

    delay = config.get_backoff_delay(attempt)
    assert delay == pytest.approx(base_delay * (2 ** attempt))

    next_delay = config.get_backoff_delay(attempt + 1)
    assert next_delay == pytest.approx(delay * 2), \
        f"Backoff delay should double between attempt {attempt} and {attempt + 1}"


@given(
    max_retries=retry_counts
)
@settings(max_examples=100, deadline=None)
def test_backoff_sleeps_between_attempts_only(max_retries):
    """
    The handler sleeps once between consecutive attempts and never after the
    final one, with growing delays.
    """
    handler = ErrorHandler(max_retries=max_retries, base_delay_seconds=1.0)

    async def always_fails():
        raise StorageError("database is down")

    with patch('asyncio.sleep', return_value=None) as sleep:
        with pytest.raises(StorageError):
            asyncio.run(handler.retry_with_backoff(always_fails))

    delays = [call.args[0] for call in sleep.call_args_list]
    assert len(delays) == max_retries - 1
    assert delays == sorted(delays)
    assert all(later > earlier for earlier, later in zip(delays, delays[1:]))


@given(
    order_id=order_ids,
    reason=st.sampled_from(["offer_expired", "unknown_negotiation", "negotiation_closed", "commit_failed"])
)
@settings(max_examples=50)
def test_orphan_description_has_suggestions(order_id, reason):
    """
    Every orphaned capture gets a non-empty list of recovery suggestions.
    """
    handler = ErrorHandler()
    description = handler.describe_orphan(reason, order_id)

    assert description["order_id"] == order_id
    assert description["reason"] == reason
    assert description["recovery_suggestions"]
    assert all(isinstance(line, str) and line for line in description["recovery_suggestions"])


@pytest.mark.parametrize("error_class,status", [
    (ValidationError, 400),
    (InvalidTransition, 400),
    (SelfNegotiationError, 400),
    (OfferExpired, 400),
    (Unauthorized, 401),
    (Forbidden, 403),
    (NotFound, 404),
    (GatewayUnavailable, 500),
    (StorageError, 500),
])
def test_error_taxonomy_status_codes(error_class, status):
    error = error_class()
    assert isinstance(error, MarketplaceError)
    assert error.status_code == status
    assert error.message


def test_error_messages_are_user_facing():
    assert SelfNegotiationError().message == "You cannot negotiate on your own product!"
    assert OfferExpired().message == "Final offer expired"
    assert ValidationError("Invalid amount").message == "Invalid amount"


def test_gateway_error_status_override():
    assert GatewayUnavailable("PayPal said no", status_code=502).status_code == 502
