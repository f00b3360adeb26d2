"""
Authentication API endpoints
JWT sessions for analysts, X-API-Key access for integrations. Every
credential event lands in the audit trail.
"""

from functools import wraps
from typing import Optional
import logging
import re

from flask import Blueprint, request, jsonify, current_app, g
from flask_jwt_extended import create_access_token, create_refresh_token, jwt_required, get_jwt_identity

from credit_portfolio import db, limiter
from credit_portfolio.models import AuditLog, User
from credit_portfolio.utils.dates import isoformat
from credit_portfolio.utils.validators import DataValidator

auth_bp = Blueprint('auth', __name__)
logger = logging.getLogger(__name__)

REGISTRATION_FIELDS = ('email', 'password', 'first_name', 'last_name')

# Editable profile fields and their maximum lengths
PROFILE_FIELDS = {'first_name': 100, 'last_name': 100, 'phone': 20, 'organization': 255}

def client_info():
    """(ip_address, user_agent) of the current request for audit records."""
    return (
        request.environ.get('HTTP_X_FORWARDED_FOR', request.remote_addr),
        request.headers.get('User-Agent')
    )

def _error(error, message, status, **extra):
    body = {'error': error, 'message': message}
    body.update(extra)
    return jsonify(body), status

def _audit(user, action, **details):
    ip_address, user_agent = client_info()
    AuditLog.record(
        action=action,
        resource_type='user',
        resource_id=user.id,
        user_id=user.id,
        details=details,
        ip_address=ip_address,
        user_agent=user_agent
    )

def _token_expiry_seconds():
    return int(current_app.config['JWT_ACCESS_TOKEN_EXPIRES'].total_seconds())

def password_problem(password: str) -> Optional[str]:
    """First reason a password is rejected, or None when it is acceptable."""
    min_length = current_app.config.get('PASSWORD_MIN_LENGTH', 8)
    if len(password) < min_length:
        return f'Password must be at least {min_length} characters long'
    if not re.search(r'[A-Za-z]', password) or not re.search(r'\d', password):
        return 'Password must contain both letters and digits'
    return None

def authenticate_api_key(f):
    """Allow access with an X-API-Key header; the user is available as g.api_user."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        api_key = request.headers.get('X-API-Key')
        if not api_key:
            return _error('Missing API key', 'API key required in X-API-Key header', 401)

        user = User.query.filter_by(api_key=api_key, is_active=True).first()
        if not user:
            return _error('Invalid API key', 'API key not found or inactive', 401)

        if user.is_account_locked():
            return _error('Account locked', 'Account is temporarily locked due to security reasons', 423)

        if not user.consume_api_request():
            return _error('Rate limit exceeded',
                          f'API rate limit of {user.api_rate_limit} requests per hour exceeded', 429)
        db.session.commit()

        g.api_user = user
        return f(*args, **kwargs)

    return decorated_function

def current_user_required(f):
    """JWT-protected view that receives the authenticated User as its first argument."""
    @wraps(f)
    @jwt_required()
    def decorated_function(*args, **kwargs):
        user = db.session.get(User, get_jwt_identity())
        if user is None:
            return _error('User not found', 'No account matches this token', 404)
        return f(user, *args, **kwargs)

    return decorated_function

@auth_bp.route('/register', methods=['POST'])
@limiter.limit("5 per minute")
def register():
    data = request.get_json() or {}

    for field in REGISTRATION_FIELDS:
        if not data.get(field):
            return _error('Missing required field', f'{field} is required', 400)

    if not DataValidator.validate_email(data['email']):
        return _error('Invalid email', 'A valid email address is required', 400)

    problem = password_problem(data['password'])
    if problem:
        return _error('Weak password', problem, 400)

    if User.find_by_email(data['email']):
        return _error('User already exists', 'A user with this email already exists', 409)

    try:
        profile = {
            field: DataValidator.sanitize_string(data[field], max_length) or None
            for field, max_length in PROFILE_FIELDS.items() if data.get(field)
        }
        user = User(email=data['email'], role='user', **profile)
        user.set_password(data['password'])
        db.session.add(user)
        db.session.flush()

        _audit(user, 'user_registered', organization=user.organization)
        db.session.commit()

        logger.info(f"New analyst registered: {user.email}")

        return jsonify({
            'message': 'User registered successfully',
            'user': user.to_dict(),
            'api_key': user.api_key
        }), 201

    except Exception as e:
        logger.error(f"User registration failed: {str(e)}")
        db.session.rollback()
        return _error('Registration failed', 'An error occurred during registration', 500)

@auth_bp.route('/login', methods=['POST'])
@limiter.limit("10 per minute")
def login():
    """Exchange email and password for access and refresh tokens."""
    data = request.get_json() or {}
    email = data.get('email')
    password = data.get('password')

    if not email or not password:
        return _error('Missing credentials', 'Email and password are required', 400)

    try:
        user = User.find_by_email(email)
        if not user:
            return _error('Invalid credentials', 'Invalid email or password', 401)

        if user.is_account_locked():
            return _error('Account locked', 'Account is temporarily locked due to failed login attempts', 423,
                          locked_until=isoformat(user.locked_until))

        if not user.is_active:
            return _error('Account inactive', 'Your account has been deactivated', 403)

        if not user.check_password(password):
            user.record_failed_login(
                max_attempts=current_app.config.get('LOGIN_MAX_FAILED_ATTEMPTS', 5),
                lockout=current_app.config['ACCOUNT_LOCKOUT']
            )
            _audit(user, 'login_failed', attempts=user.failed_login_attempts,
                   locked=user.locked_until is not None)
            db.session.commit()
            return _error('Invalid credentials', 'Invalid email or password', 401)

        client_ip, _ = client_info()
        user.record_successful_login(client_ip)
        _audit(user, 'login')
        db.session.commit()

        logger.info(f"Analyst logged in: {user.email} from {client_ip}")

        return jsonify({
            'message': 'Login successful',
            'access_token': create_access_token(identity=user.id),
            'refresh_token': create_refresh_token(identity=user.id),
            'user': user.to_dict(),
            'expires_in': _token_expiry_seconds()
        }), 200

    except Exception as e:
        logger.error(f"Login failed: {str(e)}")
        db.session.rollback()
        return _error('Login failed', 'An error occurred during login', 500)

@auth_bp.route('/refresh', methods=['POST'])
@jwt_required(refresh=True)
def refresh():
    user = db.session.get(User, get_jwt_identity())

    if not user or not user.is_active:
        return _error('Invalid user', 'User not found or inactive', 401)

    return jsonify({
        'access_token': create_access_token(identity=user.id),
        'expires_in': _token_expiry_seconds()
    }), 200

@auth_bp.route('/profile', methods=['GET'])
@current_user_required
def get_profile(user):
    return jsonify({'user': user.to_dict(include_sensitive=True)}), 200

@auth_bp.route('/profile', methods=['PUT'])
@current_user_required
def update_profile(user):
    """Update name, phone and organization. Role and email are not editable here."""
    data = request.get_json() or {}

    updates = {
        field: DataValidator.sanitize_string(data[field] or '', max_length) or None
        for field, max_length in PROFILE_FIELDS.items() if field in data
    }
    for field in ('first_name', 'last_name'):
        if field in updates and not updates[field]:
            return _error('Invalid profile', f'{field} cannot be empty', 400)

    try:
        changed = [field for field, value in updates.items() if getattr(user, field) != value]
        for field in changed:
            setattr(user, field, updates[field])

        if changed:
            _audit(user, 'profile_updated', fields=changed)
        db.session.commit()

        return jsonify({
            'message': 'Profile updated successfully',
            'user': user.to_dict(),
            'updated_fields': changed
        }), 200

    except Exception as e:
        logger.error(f"Profile update failed for {user.email}: {str(e)}")
        db.session.rollback()
        return _error('Profile update failed', 'An error occurred while updating profile', 500)

@auth_bp.route('/change-password', methods=['POST'])
@current_user_required
def change_password(user):
    data = request.get_json() or {}
    current_password = data.get('current_password')
    new_password = data.get('new_password')

    if not current_password or not new_password:
        return _error('Missing passwords', 'Current password and new password are required', 400)

    if not user.check_password(current_password):
        return _error('Invalid current password', 'Current password is incorrect', 401)

    problem = password_problem(new_password)
    if problem:
        return _error('Weak password', problem, 400)

    if user.check_password(new_password):
        return _error('Password unchanged', 'New password must differ from the current password', 400)

    try:
        user.set_password(new_password)
        _audit(user, 'password_changed')
        db.session.commit()

        logger.info(f"Password changed for {user.email}")
        return jsonify({'message': 'Password changed successfully'}), 200

    except Exception as e:
        logger.error(f"Password change failed for {user.email}: {str(e)}")
        db.session.rollback()
        return _error('Password change failed', 'An error occurred while changing password', 500)

@auth_bp.route('/reset-api-key', methods=['POST'])
@current_user_required
def reset_api_key(user):
    """Revoke the current API key and issue a new one."""
    try:
        api_key = user.rotate_api_key()
        _audit(user, 'api_key_reset')
        db.session.commit()

        logger.info(f"API key rotated for {user.email}")
        return jsonify({
            'message': 'API key reset successfully',
            'api_key': api_key
        }), 200

    except Exception as e:
        logger.error(f"API key reset failed for {user.email}: {str(e)}")
        db.session.rollback()
        return _error('API key reset failed', 'An error occurred while resetting API key', 500)

@auth_bp.route('/logout', methods=['POST'])
@current_user_required
def logout(user):
    # Tokens are stateless; the client discards them
    _audit(user, 'logout')
    db.session.commit()
    return jsonify({'message': 'Logged out successfully'}), 200

@auth_bp.route('/verify-token', methods=['GET'])
@authenticate_api_key
def verify_api_key():
    user = g.api_user
    return jsonify({
        'message': 'API key is valid',
        'user': user.to_dict(),
        'remaining_requests': user.remaining_api_requests
    }), 200
