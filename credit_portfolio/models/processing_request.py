"""
Portfolio company model backed by document processing requests
"""

from datetime import datetime
import json
import secrets
import uuid

from credit_portfolio import db
from credit_portfolio.utils.dates import utcnow, isoformat

FINANCIAL_DATA_KEY = 'Standalone Financial Data'

class DocumentProcessingRequest(db.Model):
    """
    One analysed company in a user's portfolio.

    Rows are created when a document is submitted and filled in by the
    document-processing pipeline with extracted data and the risk analysis.
    """

    __tablename__ = 'document_processing_requests'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = db.Column(db.String(64), unique=True, nullable=False, index=True,
                           default=lambda: DocumentProcessingRequest.generate_request_id())

    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)

    # Source document
    original_filename = db.Column(db.String(255))
    file_size = db.Column(db.Integer)
    file_extension = db.Column(db.String(10))

    # Company and risk summary
    company_name = db.Column(db.String(255), index=True)
    industry = db.Column(db.String(255), index=True)
    risk_score = db.Column(db.Float)
    risk_grade = db.Column(db.String(10))
    recommended_limit = db.Column(db.Float)
    currency = db.Column(db.String(3), default='INR', nullable=False)

    # Processing state: submitted, processing, completed, failed
    status = db.Column(db.String(20), default='submitted', nullable=False)
    model_type = db.Column(db.String(30))  # with_banking, without_banking
    error_message = db.Column(db.Text)
    retry_count = db.Column(db.Integer, default=0, nullable=False)

    # Parameter availability counters
    total_parameters = db.Column(db.Integer, default=0)
    available_parameters = db.Column(db.Integer, default=0)
    financial_parameters = db.Column(db.Integer, default=0)
    business_parameters = db.Column(db.Integer, default=0)
    hygiene_parameters = db.Column(db.Integer, default=0)
    banking_parameters = db.Column(db.Integer, default=0)

    # Pipeline output
    extracted_data = db.Column(db.JSON)
    risk_analysis = db.Column(db.JSON)

    submitted_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    processing_started_at = db.Column(db.DateTime(timezone=True))
    completed_at = db.Column(db.DateTime(timezone=True))
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    processing_logs = db.relationship('ProcessingLog', backref='processing_request', lazy='dynamic',
                                      cascade='all, delete-orphan')

    __table_args__ = (
        db.Index('idx_dpr_user_status', 'user_id', 'status'),
        db.Index('idx_dpr_risk_grade', 'risk_grade'),
        db.Index('idx_dpr_risk_score', 'risk_score'),
        db.Index('idx_dpr_completed_at', 'completed_at'),
        db.Index('idx_dpr_recommended_limit', 'recommended_limit'),
    )

    @staticmethod
    def generate_request_id():
        return f"req_{int(datetime.now().timestamp() * 1000)}_{secrets.token_hex(4)}"

    @property
    def financial_data(self):
        """Year-keyed standalone financial statements, when extracted."""
        return (self.extracted_data or {}).get(FINANCIAL_DATA_KEY)

    def to_dict(self, include_data=True):
        """Convert company record to dictionary for API responses and analytics."""
        data = {
            'id': self.id,
            'request_id': self.request_id,
            'user_id': self.user_id,
            'original_filename': self.original_filename,
            'company_name': self.company_name,
            'industry': self.industry,
            'risk_score': self.risk_score,
            'risk_grade': self.risk_grade,
            'recommended_limit': self.recommended_limit,
            'currency': self.currency,
            'status': self.status,
            'model_type': self.model_type,
            'error_message': self.error_message,
            'retry_count': self.retry_count,
            'total_parameters': self.total_parameters,
            'available_parameters': self.available_parameters,
            'financial_parameters': self.financial_parameters,
            'business_parameters': self.business_parameters,
            'hygiene_parameters': self.hygiene_parameters,
            'banking_parameters': self.banking_parameters,
            'file_size': self.file_size,
            'file_extension': self.file_extension,
            'submitted_at': isoformat(self.submitted_at),
            'processing_started_at': isoformat(self.processing_started_at),
            'completed_at': isoformat(self.completed_at),
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at)
        }

        if include_data:
            data.update({
                'extracted_data': self.extracted_data,
                'risk_analysis': self.risk_analysis,
                'financial_data': self.financial_data
            })

        return data

    def __repr__(self):
        return f'<DocumentProcessingRequest {self.request_id} {self.company_name}>'

class ProcessingLog(db.Model):
    """Stage-by-stage log lines for a processing request."""

    __tablename__ = 'processing_logs'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    request_id = db.Column(db.String(64), db.ForeignKey('document_processing_requests.request_id'),
                           nullable=False, index=True)
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), index=True)

    log_level = db.Column(db.String(20), default='INFO', nullable=False)  # DEBUG, INFO, WARNING, ERROR
    process_stage = db.Column(db.String(50), nullable=False, index=True)  # validation, extraction, analysis, ...
    message = db.Column(db.Text, nullable=False)

    processing_time_ms = db.Column(db.Integer)
    error_code = db.Column(db.String(50))
    details = db.Column(db.Text)  # JSON details for this stage

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    __table_args__ = (
        db.Index('idx_log_request_stage', 'request_id', 'process_stage'),
        db.Index('idx_log_level_created', 'log_level', 'created_at'),
    )

    @classmethod
    def log(cls, request_id, process_stage, message, log_level='INFO', user_id=None,
            processing_time_ms=None, error_code=None, details=None):
        """Create a new processing log entry."""

        log_entry = cls(
            request_id=request_id,
            user_id=user_id,
            log_level=log_level,
            process_stage=process_stage,
            message=message,
            processing_time_ms=processing_time_ms,
            error_code=error_code
        )

        if details:
            log_entry.set_details(details)

        db.session.add(log_entry)
        return log_entry

    def set_details(self, details_dict):
        self.details = json.dumps(details_dict) if details_dict else None

    def get_details(self):
        if not self.details:
            return {}
        try:
            return json.loads(self.details)
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self):
        return {
            'id': self.id,
            'request_id': self.request_id,
            'user_id': self.user_id,
            'log_level': self.log_level,
            'process_stage': self.process_stage,
            'message': self.message,
            'processing_time_ms': self.processing_time_ms,
            'error_code': self.error_code,
            'details': self.get_details(),
            'created_at': isoformat(self.created_at)
        }

    def __repr__(self):
        return f'<ProcessingLog {self.request_id} {self.process_stage}>'
