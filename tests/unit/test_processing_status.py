"""Unit tests for processing stage and progress reporting."""

from datetime import datetime, timedelta, timezone

import pytest

from credit_portfolio import db
from credit_portfolio.models import ProcessingLog
from credit_portfolio.services.processing_status import (
    build_stages,
    calculate_progress,
    current_stage_for,
    estimate_completion,
    get_processing_status,
)

from conftest import make_company

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


class TestStageEstimation:
    """Test elapsed-time stage estimation."""

    @pytest.mark.parametrize("minutes,stage", [
        (0.5, 'validation'),
        (1.5, 'extraction'),
        (3, 'analysis'),
        (5, 'benchmarking'),
        (6, 'reporting'),
        (45, 'reporting'),
    ])
    def test_stage_for_elapsed_minutes(self, minutes, stage) -> None:
        assert current_stage_for(minutes) == stage


class TestStages:
    """Test per-stage status."""

    def test_completed_request(self) -> None:
        stages = build_stages('completed')

        assert [s['status'] for s in stages] == ['completed'] * 5

    def test_processing_request(self) -> None:
        stages = build_stages('processing', 'analysis')

        assert [s['status'] for s in stages] == ['completed', 'completed', 'active', 'pending', 'pending']
        assert calculate_progress('processing', stages) == 50

    def test_failed_request_marks_error(self) -> None:
        stages = build_stages('failed', 'extraction')

        assert [s['status'] for s in stages] == ['completed', 'error', 'pending', 'pending', 'pending']
        assert calculate_progress('failed', stages) == 0

    def test_unknown_stage_leaves_everything_pending(self) -> None:
        assert {s['status'] for s in build_stages('processing', 'archiving')} == {'pending'}
        assert {s['status'] for s in build_stages('submitted')} == {'pending'}

    def test_completed_progress(self) -> None:
        assert calculate_progress('completed', build_stages('completed')) == 100


class TestCompletionEstimate:
    """Test the seven minute completion estimate."""

    def test_remaining_time(self) -> None:
        started = NOW - timedelta(minutes=3)

        assert estimate_completion('processing', started, NOW) == NOW + timedelta(minutes=4)

    def test_overrun_estimates_now(self) -> None:
        started = NOW - timedelta(minutes=12)

        assert estimate_completion('processing', started, NOW) == NOW

    def test_only_processing_requests(self) -> None:
        assert estimate_completion('completed', NOW, NOW) is None
        assert estimate_completion('processing', None, NOW) is None


class TestProcessingStatusPayload:
    """Test the status payload for stored requests."""

    def test_processing_request_payload(self, user) -> None:
        company = make_company(
            user,
            status='processing',
            completed_at=None,
            submitted_at=NOW - timedelta(minutes=3),
            processing_started_at=NOW - timedelta(minutes=3),
        )
        ProcessingLog.log(company.request_id, 'validation', 'Document validated', user_id=user.id)
        ProcessingLog.log(company.request_id, 'extraction', 'Balance sheet extracted', user_id=user.id)
        db.session.commit()

        status = get_processing_status(company, now=NOW)

        assert status['current_stage'] == 'analysis'
        assert status['progress'] == 50
        assert status['estimated_completion'] == (NOW + timedelta(minutes=4)).isoformat()
        assert len(status['processing_logs']) == 2
        assert any(line.endswith('] Document validated') for line in status['processing_logs'])

    def test_completed_request_payload(self, companies) -> None:
        status = get_processing_status(companies['strong'], now=NOW)

        assert status['current_stage'] is None
        assert status['progress'] == 100
        assert status['estimated_completion'] is None
        assert status['processing_logs'] == []

    def test_failed_request_payload(self, companies) -> None:
        status = get_processing_status(companies['failed'], now=NOW)

        assert status['progress'] == 0
        assert status['error_message'].startswith('TIMEOUT_ERROR')
        assert status['retry_count'] == 0
