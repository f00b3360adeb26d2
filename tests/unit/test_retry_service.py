"""Unit tests for the processing retry policy."""

from datetime import datetime, timedelta, timezone

import pytest

from credit_portfolio import db
from credit_portfolio.models import AuditLog
from credit_portfolio.services.retry_service import (
    RETRY_AUDIT_ACTION,
    RETRY_CANCEL_AUDIT_ACTION,
    RetryConfig,
    RetryNotAllowed,
    build_retry_history,
    build_retry_state,
    cancel_retry,
    error_type,
    estimate_success_rate,
    is_retryable,
    manual_retry,
    next_retry_at,
)


class TestRetryConfig:
    """Test retry configuration validation."""

    def test_defaults_are_valid(self) -> None:
        config = RetryConfig()

        assert config.validate() == {}
        assert 'TIMEOUT_ERROR' in config.retry_conditions

    def test_from_dict_keeps_unspecified_defaults(self) -> None:
        config = RetryConfig.from_dict({'max_retries': 5})

        assert config.max_retries == 5
        assert config.retry_delay == 30
        assert config.backoff_multiplier == 2

    @pytest.mark.parametrize("payload,field", [
        ({'max_retries': 0}, 'max_retries'),
        ({'max_retries': 11}, 'max_retries'),
        ({'max_retries': True}, 'max_retries'),
        ({'retry_delay': 5}, 'retry_delay'),
        ({'retry_delay': 7200}, 'retry_delay'),
        ({'backoff_multiplier': 0.5}, 'backoff_multiplier'),
        ({'retry_conditions': 'TIMEOUT_ERROR'}, 'retry_conditions'),
        ({'retry_conditions': 5}, 'retry_conditions'),
        ({'retry_conditions': ['TIMEOUT_ERROR', 3]}, 'retry_conditions'),
    ])
    def test_out_of_range_values(self, payload, field) -> None:
        errors = RetryConfig.from_dict(payload).validate()

        assert list(errors) == [field]

    def test_string_conditions_are_not_split(self) -> None:
        config = RetryConfig.from_dict({'retry_conditions': 'TIMEOUT_ERROR'})

        assert config.retry_conditions == 'TIMEOUT_ERROR'

    def test_empty_conditions_fall_back_to_defaults(self) -> None:
        assert 'NETWORK_ERROR' in RetryConfig.from_dict({'retry_conditions': []}).retry_conditions


class TestRetryability:
    """Test error classification."""

    @pytest.mark.parametrize("message", [
        'Network error: connection reset by peer',
        'TIMEOUT_ERROR: analysis exceeded time budget',
        'extraction failed for page 4',
    ])
    def test_retryable_messages(self, message) -> None:
        assert is_retryable(message) is True

    def test_non_retryable_messages(self) -> None:
        assert is_retryable('Validation error: balance sheet missing') is False
        assert is_retryable(None) is False
        assert is_retryable('') is False

    def test_custom_conditions(self) -> None:
        config = RetryConfig(retry_conditions=['VALIDATION_ERROR'])

        assert is_retryable('Validation error: balance sheet missing', config) is True
        assert is_retryable('Network error', config) is False

    def test_error_type_from_prefix(self) -> None:
        assert error_type('Timeout error: upstream') == 'TIMEOUT_ERROR'
        assert error_type('NETWORK_ERROR') == 'NETWORK_ERROR'
        assert error_type(None) == 'UNKNOWN_ERROR'


class TestSuccessEstimate:
    """Test the retry success estimate."""

    def test_base_rate_without_history(self) -> None:
        assert estimate_success_rate('NETWORK_ERROR', []) == 85
        assert estimate_success_rate('SOMETHING_ELSE', []) == 30

    def test_failed_history_lowers_estimate(self) -> None:
        """One failed attempt blends in 20% history weight and subtracts 15 points."""
        assert estimate_success_rate('NETWORK_ERROR', [{'status': 'failed'}]) == 53

    def test_floor_of_five(self) -> None:
        history = [{'status': 'failed'}] * 4

        assert estimate_success_rate('INSUFFICIENT_DATA', history) == 5

    def test_exponential_backoff(self) -> None:
        now = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

        assert next_retry_at(0, RetryConfig(), now) == now + timedelta(seconds=30)
        assert next_retry_at(2, RetryConfig(), now) == now + timedelta(seconds=120)


class TestRetryState:
    """Test retry state of stored requests."""

    def test_failed_request_can_be_retried(self, companies) -> None:
        state = build_retry_state(companies['failed'], RetryConfig())

        assert state['is_retryable'] is True
        assert state['current_attempt'] == 1
        assert state['max_attempts'] == 4
        assert state['can_manual_retry'] is True
        assert state['next_retry_at'] is not None
        assert len(state['retry_history']) == 1
        assert state['estimated_success_rate'] == 41

    def test_completed_request_cannot_be_retried(self, companies) -> None:
        state = build_retry_state(companies['strong'])

        assert state['can_manual_retry'] is False
        assert state['next_retry_at'] is None
        assert state['retry_history'][0]['status'] == 'completed'


class TestManualRetry:
    """Test manual retry and cancellation."""

    def test_manual_retry_queues_request(self, companies, user) -> None:
        failed = companies['failed']

        result = manual_retry(failed, user.id, ip_address='10.0.0.5')
        db.session.commit()

        assert result['status'] == 'processing'
        assert result['retry_count'] == 1
        assert failed.error_message is None
        assert failed.completed_at is None

        entries = AuditLog.for_resource(failed.id, RETRY_AUDIT_ACTION)
        assert len(entries) == 1
        assert entries[0].details['previous_error'].startswith('TIMEOUT_ERROR')
        assert len(build_retry_history(failed)) == 2

    def test_only_failed_requests_can_be_retried(self, companies, user) -> None:
        with pytest.raises(RetryNotAllowed):
            manual_retry(companies['strong'], user.id)

    def test_retry_limit(self, companies, user) -> None:
        failed = companies['failed']
        failed.retry_count = 3

        with pytest.raises(RetryNotAllowed, match='Maximum retry limit'):
            manual_retry(failed, user.id)

    def test_cancel_marks_request_failed(self, companies, user) -> None:
        failed = companies['failed']
        manual_retry(failed, user.id)

        cancel_retry(failed, user.id)
        db.session.commit()

        assert failed.status == 'failed'
        assert failed.error_message == 'Processing cancelled by user'
        assert len(AuditLog.for_resource(failed.id, RETRY_CANCEL_AUDIT_ACTION)) == 1

    def test_cancel_requires_running_request(self, companies, user) -> None:
        with pytest.raises(RetryNotAllowed):
            cancel_retry(companies['failed'], user.id)
