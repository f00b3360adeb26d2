"""
Audit trail of user actions on portfolio resources
"""

import uuid

from credit_portfolio import db
from credit_portfolio.utils.dates import utcnow, isoformat

class AuditLog(db.Model):
    """Records who did what to which resource."""

    __tablename__ = 'audit_logs'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), index=True)

    action = db.Column(db.String(100), nullable=False, index=True)
    resource_type = db.Column(db.String(50), nullable=False)
    resource_id = db.Column(db.String(64), index=True)
    details = db.Column(db.JSON)

    ip_address = db.Column(db.String(45))
    user_agent = db.Column(db.String(500))

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    __table_args__ = (
        db.Index('idx_audit_resource_action', 'resource_id', 'action'),
    )

    @classmethod
    def record(cls, action, resource_type, resource_id=None, user_id=None, details=None,
               ip_address=None, user_agent=None):
        """Create an audit entry in the current session."""
        entry = cls(
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            user_id=user_id,
            details=details or {},
            ip_address=ip_address,
            user_agent=user_agent
        )
        db.session.add(entry)
        return entry

    @classmethod
    def for_resource(cls, resource_id, action):
        return cls.query.filter_by(resource_id=resource_id, action=action) \
            .order_by(cls.created_at.asc()).all()

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'action': self.action,
            'resource_type': self.resource_type,
            'resource_id': self.resource_id,
            'details': self.details or {},
            'ip_address': self.ip_address,
            'created_at': isoformat(self.created_at)
        }

    def __repr__(self):
        return f'<AuditLog {self.action} {self.resource_id}>'
