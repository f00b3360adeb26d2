"""
Analyst accounts: credentials, lockout state and API key quota
"""

from datetime import timedelta
import secrets
import uuid

from werkzeug.security import generate_password_hash, check_password_hash

from credit_portfolio import db
from credit_portfolio.utils.dates import utcnow, as_utc, isoformat

ROLES = ('user', 'admin', 'super_admin')

class User(db.Model):
    """A portfolio owner. Every company, report and conversation belongs to one user."""

    __tablename__ = 'users'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))

    email = db.Column(db.String(255), unique=True, nullable=False, index=True)
    password_hash = db.Column(db.String(255), nullable=False)

    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    phone = db.Column(db.String(20))
    organization = db.Column(db.String(255))

    role = db.Column(db.String(50), nullable=False, default='user')
    is_active = db.Column(db.Boolean, default=True, nullable=False)
    is_verified = db.Column(db.Boolean, default=False, nullable=False)

    # Lockout
    last_login_at = db.Column(db.DateTime(timezone=True))
    last_login_ip = db.Column(db.String(45))
    failed_login_attempts = db.Column(db.Integer, default=0, nullable=False)
    locked_until = db.Column(db.DateTime(timezone=True))

    # Integration access via X-API-Key
    api_key = db.Column(db.String(64), unique=True, index=True)
    api_requests_count = db.Column(db.Integer, default=0, nullable=False)
    api_rate_limit = db.Column(db.Integer, default=1000, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    processing_requests = db.relationship('DocumentProcessingRequest', backref='user', lazy='dynamic')

    __table_args__ = (
        db.Index('idx_user_active', 'is_active'),
    )

    def __init__(self, **kwargs):
        if kwargs.get('email'):
            kwargs['email'] = self.normalize_email(kwargs['email'])
        super(User, self).__init__(**kwargs)
        if not self.api_key:
            self.api_key = secrets.token_urlsafe(32)

    @staticmethod
    def normalize_email(email: str) -> str:
        return email.strip().lower()

    @classmethod
    def find_by_email(cls, email: str):
        return cls.query.filter_by(email=cls.normalize_email(email)).first()

    def set_password(self, password):
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        return check_password_hash(self.password_hash, password)

    def rotate_api_key(self):
        """Issue a new API key; the old one stops working and the quota restarts."""
        self.api_key = secrets.token_urlsafe(32)
        self.api_requests_count = 0
        return self.api_key

    def consume_api_request(self) -> bool:
        """Count one API key request. False when the quota is already spent."""
        used = self.api_requests_count or 0
        if used >= self.api_rate_limit:
            return False
        self.api_requests_count = used + 1
        return True

    @property
    def remaining_api_requests(self):
        return max(0, self.api_rate_limit - (self.api_requests_count or 0))

    def is_account_locked(self):
        """True while a lockout is running. An expired lockout is cleared here."""
        if not self.locked_until:
            return False
        if utcnow() < as_utc(self.locked_until):
            return True
        self.locked_until = None
        self.failed_login_attempts = 0
        return False

    def record_failed_login(self, max_attempts=5, lockout=timedelta(hours=1)):
        self.failed_login_attempts = (self.failed_login_attempts or 0) + 1
        if self.failed_login_attempts >= max_attempts:
            self.locked_until = utcnow() + lockout

    def record_successful_login(self, ip_address=None):
        self.last_login_at = utcnow()
        self.last_login_ip = ip_address
        self.failed_login_attempts = 0
        self.locked_until = None

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def is_admin(self):
        return self.role in ROLES[1:]

    def to_dict(self, include_sensitive=False):
        data = {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'phone': self.phone,
            'organization': self.organization,
            'role': self.role,
            'is_admin': self.is_admin,
            'is_active': self.is_active,
            'is_verified': self.is_verified,
            'last_login_at': isoformat(self.last_login_at),
            'created_at': isoformat(self.created_at)
        }

        if include_sensitive:
            data['api_key'] = self.api_key
            data['api_usage'] = {
                'used': self.api_requests_count,
                'limit': self.api_rate_limit,
                'remaining': self.remaining_api_requests
            }
            data['security'] = {
                'failed_login_attempts': self.failed_login_attempts,
                'is_locked': self.is_account_locked(),
                'locked_until': isoformat(self.locked_until),
                'last_login_ip': self.last_login_ip
            }

        return data

    def __repr__(self):
        return f'<User {self.email}>'
