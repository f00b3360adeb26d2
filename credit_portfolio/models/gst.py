"""
GST filing data cache, API request ledger, refresh jobs and refresh quotas
"""

import uuid

from credit_portfolio import db
from credit_portfolio.utils.dates import utcnow, isoformat

class GstFilingData(db.Model):
    """One return filing row fetched from the GST provider."""

    __tablename__ = 'gst_filing_data'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    gstin = db.Column(db.String(15), nullable=False, index=True)
    financial_year = db.Column(db.String(7), nullable=False)

    return_type = db.Column(db.String(20))  # GSTR1, GSTR3B, ...
    return_period = db.Column(db.String(10))  # MMYYYY
    date_of_filing = db.Column(db.Date)
    filing_mode = db.Column(db.String(20))
    arn = db.Column(db.String(50))
    status = db.Column(db.String(50))
    is_valid = db.Column(db.Boolean, default=False, nullable=False)
    data_source = db.Column(db.String(50), default='whitebooks_api', nullable=False)

    fetched_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        db.Index('idx_gst_filing_gstin_fy', 'gstin', 'financial_year'),
        db.Index('idx_gst_filing_fetched', 'gstin', 'financial_year', 'fetched_at'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'gstin': self.gstin,
            'financial_year': self.financial_year,
            'return_type': self.return_type,
            'return_period': self.return_period,
            'date_of_filing': isoformat(self.date_of_filing),
            'filing_mode': self.filing_mode,
            'arn': self.arn,
            'status': self.status,
            'is_valid': self.is_valid,
            'data_source': self.data_source,
            'fetched_at': isoformat(self.fetched_at)
        }

    def __repr__(self):
        return f'<GstFilingData {self.gstin} {self.return_type} {self.return_period}>'

class GstApiRequest(db.Model):
    """Ledger of calls to the GST provider, with cost."""

    __tablename__ = 'gst_api_requests'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = db.Column(db.String(64), index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), index=True)
    gstin = db.Column(db.String(15), nullable=False)
    financial_year = db.Column(db.String(7), nullable=False)

    api_provider = db.Column(db.String(50), default='whitebooks', nullable=False)
    api_endpoint = db.Column(db.String(100), default='/rettrack', nullable=False)
    response_data = db.Column(db.JSON)
    response_status = db.Column(db.Integer)
    cost_inr = db.Column(db.Float, default=0.0, nullable=False)
    status = db.Column(db.String(20), nullable=False)  # success, cached, failed
    error_message = db.Column(db.Text)

    requested_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    completed_at = db.Column(db.DateTime(timezone=True))

    def to_dict(self):
        return {
            'id': self.id,
            'request_id': self.request_id,
            'user_id': self.user_id,
            'gstin': self.gstin,
            'financial_year': self.financial_year,
            'api_provider': self.api_provider,
            'api_endpoint': self.api_endpoint,
            'response_status': self.response_status,
            'cost_inr': self.cost_inr,
            'status': self.status,
            'error_message': self.error_message,
            'requested_at': isoformat(self.requested_at),
            'completed_at': isoformat(self.completed_at)
        }

class GstRefreshJob(db.Model):
    """A batch refresh of several GSTINs for one portfolio company."""

    __tablename__ = 'gst_refresh_jobs'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = db.Column(db.String(64), nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), index=True)
    gstins = db.Column(db.JSON, nullable=False)
    financial_year = db.Column(db.String(7), nullable=False)

    total_gstins = db.Column(db.Integer, default=0, nullable=False)
    processed_gstins = db.Column(db.Integer, default=0, nullable=False)
    failed_gstins = db.Column(db.Integer, default=0, nullable=False)
    progress = db.Column(db.Integer, default=0, nullable=False)
    status = db.Column(db.String(20), default='queued', nullable=False)  # queued, processing, completed, failed

    results = db.Column(db.JSON)
    error_details = db.Column(db.JSON)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    started_at = db.Column(db.DateTime(timezone=True))
    completed_at = db.Column(db.DateTime(timezone=True))

    def to_dict(self):
        return {
            'id': self.id,
            'request_id': self.request_id,
            'gstins': self.gstins or [],
            'financial_year': self.financial_year,
            'total_gstins': self.total_gstins,
            'processed_gstins': self.processed_gstins,
            'failed_gstins': self.failed_gstins,
            'progress': self.progress,
            'status': self.status,
            'results': self.results or [],
            'error_details': self.error_details or [],
            'created_at': isoformat(self.created_at),
            'started_at': isoformat(self.started_at),
            'completed_at': isoformat(self.completed_at)
        }

class GstRefreshQuota(db.Model):
    """Refresh counter per user and company within a rolling window."""

    __tablename__ = 'gst_refresh_quotas'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False)
    request_id = db.Column(db.String(64), nullable=False)
    refresh_count = db.Column(db.Integer, default=0, nullable=False)
    period_start = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    last_refresh_at = db.Column(db.DateTime(timezone=True))

    __table_args__ = (
        db.UniqueConstraint('user_id', 'request_id', name='uq_gst_quota_user_request'),
    )
