"""
Retry policy for failed document processing requests
"""

import logging
from datetime import timedelta
from typing import Dict, List, Optional

from flask import current_app

from credit_portfolio.models import AuditLog, DocumentProcessingRequest
from credit_portfolio.utils.dates import utcnow, isoformat

logger = logging.getLogger(__name__)

RETRY_AUDIT_ACTION = 'portfolio_document_retry'
RETRY_CANCEL_AUDIT_ACTION = 'portfolio_document_retry_cancelled'
RETRY_CONFIG_AUDIT_ACTION = 'portfolio_retry_config_updated'

DEFAULT_RETRY_CONDITIONS = [
    'TEMPORARY_ERROR',
    'TIMEOUT_ERROR',
    'RATE_LIMIT_ERROR',
    'NETWORK_ERROR',
    'EXTRACTION_FAILED',
    'ANALYSIS_TIMEOUT'
]

# Base likelihood (percent) that a retry succeeds, by error type
BASE_SUCCESS_RATES = {
    'NETWORK_ERROR': 85,
    'TIMEOUT_ERROR': 70,
    'RATE_LIMIT_ERROR': 90,
    'EXTRACTION_FAILED': 60,
    'ANALYSIS_TIMEOUT': 55,
    'SYSTEM_ERROR': 40,
    'VALIDATION_ERROR': 10,
    'INSUFFICIENT_DATA': 5
}
DEFAULT_SUCCESS_RATE = 30

MANUAL_RETRY_LIMIT = 3

class RetryConfig:
    """Retry limits and backoff for a processing request."""

    def __init__(self, max_retries=3, retry_delay=30, backoff_multiplier=2, retry_conditions=None):
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self.backoff_multiplier = backoff_multiplier
        # Non-list values are left for validate() to report
        if retry_conditions is None or retry_conditions == []:
            self.retry_conditions = list(DEFAULT_RETRY_CONDITIONS)
        elif isinstance(retry_conditions, list):
            self.retry_conditions = list(retry_conditions)
        else:
            self.retry_conditions = retry_conditions

    @classmethod
    def from_app_config(cls):
        return cls(
            max_retries=current_app.config.get('RETRY_MAX_RETRIES', 3),
            retry_delay=current_app.config.get('RETRY_DELAY_SECONDS', 30),
            backoff_multiplier=current_app.config.get('RETRY_BACKOFF_MULTIPLIER', 2)
        )

    @classmethod
    def for_request(cls, request: DocumentProcessingRequest) -> 'RetryConfig':
        """Most recently saved configuration for the request, else the application settings."""
        saved = AuditLog.for_resource(request.id, RETRY_CONFIG_AUDIT_ACTION)
        if saved:
            return cls.from_dict((saved[-1].details or {}).get('retry_config') or {})
        return cls.from_app_config()

    @classmethod
    def from_dict(cls, data: Dict) -> 'RetryConfig':
        defaults = cls()
        return cls(
            max_retries=data.get('max_retries', defaults.max_retries),
            retry_delay=data.get('retry_delay', defaults.retry_delay),
            backoff_multiplier=data.get('backoff_multiplier', defaults.backoff_multiplier),
            retry_conditions=data.get('retry_conditions')
        )

    def validate(self) -> Dict[str, List[str]]:
        """Return a field -> messages map; empty when the config is acceptable."""
        errors = {}

        if not isinstance(self.max_retries, int) or isinstance(self.max_retries, bool) \
                or not 1 <= self.max_retries <= 10:
            errors.setdefault('max_retries', []).append('Max retries must be between 1 and 10')

        if not isinstance(self.retry_delay, (int, float)) or isinstance(self.retry_delay, bool) \
                or not 10 <= self.retry_delay <= 3600:
            errors.setdefault('retry_delay', []).append('Retry delay must be between 10 and 3600 seconds')

        if not isinstance(self.backoff_multiplier, (int, float)) or self.backoff_multiplier < 1:
            errors.setdefault('backoff_multiplier', []).append('Backoff multiplier must be at least 1')

        if not isinstance(self.retry_conditions, list) or \
                not all(isinstance(c, str) for c in self.retry_conditions):
            errors.setdefault('retry_conditions', []).append('Retry conditions must be a list of strings')

        return errors

    def to_dict(self):
        return {
            'max_retries': self.max_retries,
            'retry_delay': self.retry_delay,
            'backoff_multiplier': self.backoff_multiplier,
            'retry_conditions': self.retry_conditions
        }

def is_retryable(error_message: Optional[str], config: Optional[RetryConfig] = None) -> bool:
    """
    Whether an error message matches one of the configured retry conditions.

    Conditions are matched case-insensitively with underscores read as
    spaces on both sides, so 'NETWORK_ERROR' matches 'Network error: connection reset'
    and 'NETWORK_ERROR: connection reset' alike.
    """
    if not error_message:
        return False
    config = config or RetryConfig()
    message = error_message.upper().replace('_', ' ')
    return any(condition.upper().replace('_', ' ') in message for condition in config.retry_conditions)

def error_type(error_message: Optional[str]) -> str:
    """Error category from the prefix before the first colon, e.g. 'Timeout error: x' -> 'TIMEOUT_ERROR'."""
    if not error_message:
        return 'UNKNOWN_ERROR'
    return error_message.split(':')[0].strip().upper().replace(' ', '_')

def estimate_success_rate(error_kind: str, history: List[Dict]) -> int:
    """
    Estimated percentage chance that another retry succeeds.

    The base rate for the error type is blended with the historical success
    rate (history weight grows with attempts, capped at 0.7), then reduced by
    15 points per failed attempt with a floor of 5.
    """
    rate = float(BASE_SUCCESS_RATES.get(error_kind, DEFAULT_SUCCESS_RATE))

    failed_attempts = sum(1 for attempt in history if attempt.get('status') == 'failed')
    successful_attempts = sum(1 for attempt in history if attempt.get('status') == 'completed')

    if history:
        historical_rate = successful_attempts / len(history) * 100
        weight = min(len(history) / 5, 0.7)
        rate = rate * (1 - weight) + historical_rate * weight

    rate = max(5.0, rate - failed_attempts * 15)
    return int(round(rate))

def next_retry_at(retry_count: int, config: Optional[RetryConfig] = None, now=None):
    """Exponential backoff: retry_delay * backoff_multiplier ** retry_count seconds from now."""
    config = config or RetryConfig()
    delay = config.retry_delay * (config.backoff_multiplier ** retry_count)
    return (now or utcnow()) + timedelta(seconds=delay)

def _attempt_status(request: DocumentProcessingRequest) -> str:
    if request.status == 'completed':
        return 'completed'
    if request.status == 'failed':
        return 'failed'
    return 'running'

def build_retry_history(request: DocumentProcessingRequest) -> List[Dict]:
    """Original attempt plus one entry per recorded manual retry."""
    status = _attempt_status(request)
    history = [{
        'attempt_number': 1,
        'started_at': isoformat(request.submitted_at),
        'completed_at': isoformat(request.completed_at),
        'status': status,
        'error_message': request.error_message
    }]

    for index, entry in enumerate(AuditLog.for_resource(request.id, RETRY_AUDIT_ACTION)):
        history.append({
            'attempt_number': index + 2,
            'started_at': isoformat(entry.created_at),
            'completed_at': isoformat(request.completed_at),
            'status': status,
            'error_message': request.error_message
        })

    return history

def build_retry_state(request: DocumentProcessingRequest, config: Optional[RetryConfig] = None,
                      history: Optional[List[Dict]] = None) -> Dict:
    """
    Retry state for a processing request.

    Args:
        request: Processing request row
        config: Retry configuration, defaults to the last one saved for the request
        history: Pre-built attempt history, loaded from audit logs when omitted

    Returns:
        Dictionary with retryability, attempt counters, history and estimates
    """
    config = config or RetryConfig.for_request(request)
    if history is None:
        history = build_retry_history(request)

    current_attempt = (request.retry_count or 0) + 1
    max_attempts = config.max_retries + 1

    retryable = is_retryable(request.error_message, config)
    can_retry = retryable and current_attempt <= max_attempts and request.status == 'failed'
    is_retrying = request.status in ('processing', 'submitted')

    return {
        'is_retryable': retryable,
        'current_attempt': current_attempt,
        'max_attempts': max_attempts,
        'retry_config': config.to_dict(),
        'retry_history': history,
        'next_retry_at': isoformat(next_retry_at(current_attempt - 1, config)) if can_retry else None,
        'is_retrying': is_retrying,
        'can_manual_retry': can_retry and not is_retrying,
        'estimated_success_rate': estimate_success_rate(error_type(request.error_message), history)
    }

class RetryNotAllowed(Exception):
    """Raised when a request is in a state that does not permit the retry action."""

def manual_retry(request: DocumentProcessingRequest, user_id: str, ip_address=None, user_agent=None) -> Dict:
    """
    Queue a failed request for reprocessing.

    Raises:
        RetryNotAllowed: request is not failed or already retried three times
    """
    if request.status != 'failed':
        raise RetryNotAllowed('Can only retry failed processing requests')

    if (request.retry_count or 0) >= MANUAL_RETRY_LIMIT:
        raise RetryNotAllowed(f'Maximum retry limit reached ({MANUAL_RETRY_LIMIT} attempts)')

    previous_error = request.error_message
    now = utcnow()

    request.status = 'processing'
    request.retry_count = (request.retry_count or 0) + 1
    request.error_message = None
    request.processing_started_at = now
    request.completed_at = None

    AuditLog.record(
        action=RETRY_AUDIT_ACTION,
        resource_type='document_processing_request',
        resource_id=request.id,
        user_id=user_id,
        details={
            'request_id': request.request_id,
            'company_name': request.company_name,
            'retry_count': request.retry_count,
            'previous_error': previous_error
        },
        ip_address=ip_address,
        user_agent=user_agent
    )

    logger.info(f"Retry {request.retry_count} queued for {request.request_id}")

    return {
        'id': request.id,
        'request_id': request.request_id,
        'status': request.status,
        'retry_count': request.retry_count,
        'processing_started_at': isoformat(now),
        'estimated_completion': isoformat(now + timedelta(minutes=10))
    }

def cancel_retry(request: DocumentProcessingRequest, user_id: str, ip_address=None, user_agent=None) -> None:
    """
    Stop an in-flight request by marking it failed.

    Raises:
        RetryNotAllowed: request is not processing or queued
    """
    if request.status not in ('processing', 'submitted'):
        raise RetryNotAllowed('Cannot cancel retry - request is not currently processing')

    now = utcnow()
    request.status = 'failed'
    request.error_message = 'Processing cancelled by user'
    request.completed_at = now

    AuditLog.record(
        action=RETRY_CANCEL_AUDIT_ACTION,
        resource_type='document_processing_request',
        resource_id=request.id,
        user_id=user_id,
        details={
            'request_id': request.request_id,
            'company_name': request.company_name,
            'cancelled_at': isoformat(now)
        },
        ip_address=ip_address,
        user_agent=user_agent
    )

    logger.info(f"Processing cancelled for {request.request_id}")
