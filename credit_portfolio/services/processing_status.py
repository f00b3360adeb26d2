"""
Processing status reporting for document processing requests
Stage model, progress estimation and log rendering
"""

from datetime import timedelta
from typing import Dict, List, Optional

from credit_portfolio.models import DocumentProcessingRequest, ProcessingLog
from credit_portfolio.utils.dates import utcnow, as_utc, isoformat

PROCESSING_STAGES = [
    {
        'id': 'validation',
        'name': 'Document Validation',
        'description': 'Validating uploaded document format and content'
    },
    {
        'id': 'extraction',
        'name': 'Data Extraction',
        'description': 'Extracting financial data and company information'
    },
    {
        'id': 'analysis',
        'name': 'Risk Analysis',
        'description': 'Calculating risk scores and parameter analysis'
    },
    {
        'id': 'benchmarking',
        'name': 'Peer Benchmarking',
        'description': 'Comparing against industry peers and standards'
    },
    {
        'id': 'reporting',
        'name': 'Report Generation',
        'description': 'Generating comprehensive analysis report'
    }
]

# (upper bound in minutes, stage) for elapsed-time stage estimation
STAGE_THRESHOLDS = [
    (1, 'validation'),
    (2, 'extraction'),
    (4, 'analysis'),
    (6, 'benchmarking')
]

ESTIMATED_TOTAL_MINUTES = 7
MAX_LOG_LINES = 50

def current_stage_for(elapsed_minutes: float) -> str:
    for upper_bound, stage in STAGE_THRESHOLDS:
        if elapsed_minutes < upper_bound:
            return stage
    return 'reporting'

def build_stages(status: str, current_stage: Optional[str] = None) -> List[Dict]:
    """
    Stage list with per-stage status for a request status.

    Completed requests mark every stage completed. Failed and processing
    requests mark stages before the current one completed and the current
    one 'error' or 'active'; without a known current stage every stage
    stays pending.
    """
    stages = [dict(stage, status='pending') for stage in PROCESSING_STAGES]

    if status == 'completed':
        for stage in stages:
            stage['status'] = 'completed'
        return stages

    if status not in ('failed', 'processing') or not current_stage:
        return stages

    stage_ids = [stage['id'] for stage in stages]
    if current_stage not in stage_ids:
        return stages

    marker = 'error' if status == 'failed' else 'active'
    current_index = stage_ids.index(current_stage)
    for index, stage in enumerate(stages):
        if index < current_index:
            stage['status'] = 'completed'
        elif index == current_index:
            stage['status'] = marker

    return stages

def calculate_progress(status: str, stages: List[Dict]) -> int:
    """Percent complete; active stages count as half done."""
    if status == 'completed':
        return 100
    if status in ('failed', 'submitted') or not stages:
        return 0

    completed = sum(1 for stage in stages if stage['status'] == 'completed')
    active = sum(1 for stage in stages if stage['status'] == 'active')
    return int(round((completed + active * 0.5) / len(stages) * 100))

def estimate_completion(status: str, started_at, now=None):
    """Expected finish time for processing requests, assuming a seven minute run."""
    if status != 'processing' or started_at is None:
        return None

    now = now or utcnow()
    elapsed = now - as_utc(started_at)
    remaining = max(timedelta(0), timedelta(minutes=ESTIMATED_TOTAL_MINUTES) - elapsed)
    return now + remaining

def format_log_lines(logs: List[ProcessingLog]) -> List[str]:
    return [f"[{as_utc(log.created_at).strftime('%H:%M:%S')}] {log.message}" for log in logs]

def get_processing_status(request: DocumentProcessingRequest, now=None) -> Dict:
    """
    Status payload for the processing monitor.

    Args:
        request: Processing request row
        now: Reference time, defaults to the current UTC time

    Returns:
        Dictionary with stage list, progress, estimate and recent log lines
    """
    now = now or utcnow()

    current_stage = None
    if request.status == 'processing':
        started = as_utc(request.processing_started_at or request.submitted_at)
        elapsed_minutes = (now - started).total_seconds() / 60
        current_stage = current_stage_for(elapsed_minutes)

    stages = build_stages(request.status, current_stage)

    logs = request.processing_logs.order_by(ProcessingLog.created_at.asc()).limit(MAX_LOG_LINES).all()

    return {
        'request_id': request.request_id,
        'company_name': request.company_name or 'Unknown Company',
        'status': request.status,
        'current_stage': current_stage,
        'progress': calculate_progress(request.status, stages),
        'stages': stages,
        'estimated_completion': isoformat(estimate_completion(request.status, request.submitted_at, now)),
        'error_message': request.error_message,
        'processing_logs': format_log_lines(logs),
        'submitted_at': isoformat(request.submitted_at),
        'processing_started_at': isoformat(request.processing_started_at),
        'completed_at': isoformat(request.completed_at),
        'retry_count': request.retry_count or 0
    }
