"""
Report templates, generation jobs and schedules
"""

import secrets
from datetime import datetime

from credit_portfolio import db
from credit_portfolio.utils.dates import utcnow, isoformat

def _prefixed_id(prefix):
    return f"{prefix}_{int(datetime.now().timestamp() * 1000)}_{secrets.token_hex(5)[:9]}"

class ReportTemplate(db.Model):
    """User-defined report template (built-in templates live in code)."""

    __tablename__ = 'report_templates'

    id = db.Column(db.String(64), primary_key=True, default=lambda: _prefixed_id('template'))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    category = db.Column(db.String(50), default='custom', nullable=False)
    sections = db.Column(db.JSON, nullable=False)
    default_format = db.Column(db.String(10), default='pdf', nullable=False)
    is_default = db.Column(db.Boolean, default=False, nullable=False)
    usage_count = db.Column(db.Integer, default=0, nullable=False)
    created_by = db.Column(db.String(255))

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'category': self.category,
            'sections': self.sections or [],
            'defaultFormat': self.default_format,
            'isBuiltIn': False,
            'isDefault': self.is_default,
            'usageCount': self.usage_count,
            'createdBy': self.created_by,
            'createdAt': isoformat(self.created_at),
            'lastModified': isoformat(self.updated_at)
        }

class ReportGenerationJob(db.Model):
    """A single report build: pending, processing, completed or failed."""

    __tablename__ = 'report_generation_jobs'

    id = db.Column(db.String(64), primary_key=True, default=lambda: _prefixed_id('report'))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    template_id = db.Column(db.String(64), nullable=False)
    scheduled_report_id = db.Column(db.String(64), index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    format = db.Column(db.String(10), default='pdf', nullable=False)
    sections = db.Column(db.JSON, nullable=False)
    filters = db.Column(db.JSON)

    status = db.Column(db.String(20), default='pending', nullable=False)
    content = db.Column(db.JSON)
    file_url = db.Column(db.String(500))
    error_message = db.Column(db.Text)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)
    completed_at = db.Column(db.DateTime(timezone=True))

    def to_dict(self, include_content=False):
        data = {
            'id': self.id,
            'templateId': self.template_id,
            'scheduledReportId': self.scheduled_report_id,
            'name': self.name,
            'description': self.description,
            'format': self.format,
            'sections': self.sections or [],
            'filters': self.filters or {},
            'status': self.status,
            'fileUrl': self.file_url,
            'errorMessage': self.error_message,
            'createdAt': isoformat(self.created_at),
            'completedAt': isoformat(self.completed_at)
        }
        if include_content:
            data['content'] = self.content
        return data

class ScheduledReport(db.Model):
    """Recurring report definition."""

    __tablename__ = 'scheduled_reports'

    id = db.Column(db.String(64), primary_key=True, default=lambda: _prefixed_id('scheduled'))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text)
    template_id = db.Column(db.String(64), nullable=False)

    # daily, weekly, monthly, quarterly; day_of_week uses 0 = Sunday
    frequency = db.Column(db.String(20), nullable=False)
    day_of_week = db.Column(db.Integer)
    day_of_month = db.Column(db.Integer)
    time = db.Column(db.String(5), default='09:00', nullable=False)

    recipients = db.Column(db.JSON, nullable=False)
    format = db.Column(db.String(10), default='pdf', nullable=False)
    filters = db.Column(db.JSON)
    is_active = db.Column(db.Boolean, default=True, nullable=False)

    next_run_at = db.Column(db.DateTime(timezone=True))
    last_run_at = db.Column(db.DateTime(timezone=True))
    created_by = db.Column(db.String(255))

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    @property
    def schedule(self):
        return {
            'frequency': self.frequency,
            'dayOfWeek': self.day_of_week,
            'dayOfMonth': self.day_of_month,
            'time': self.time
        }

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'description': self.description,
            'templateId': self.template_id,
            'schedule': self.schedule,
            'recipients': self.recipients or [],
            'format': self.format,
            'filters': self.filters or {},
            'isActive': self.is_active,
            'nextRun': isoformat(self.next_run_at),
            'lastRun': isoformat(self.last_run_at),
            'createdBy': self.created_by,
            'createdAt': isoformat(self.created_at)
        }
