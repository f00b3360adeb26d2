"""
Portfolio API endpoints
Listing, search, company detail, processing status and retry management
"""

from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required, get_jwt_identity
import logging
from typing import Dict, List, Optional

from credit_portfolio import db, limiter
from credit_portfolio.api.auth import client_info
from credit_portfolio.models import AuditLog
from credit_portfolio.repositories import PortfolioRepository
from credit_portfolio.services.compliance_service import (
    validate_compliance_submission, validate_financial_business_rules, calculate_financial_ratios
)
from credit_portfolio.services.processing_status import get_processing_status
from credit_portfolio.services.query_optimization import generate_optimization_report
from credit_portfolio.services.retry_service import (
    RetryConfig, RetryNotAllowed, RETRY_CONFIG_AUDIT_ACTION, build_retry_state, manual_retry, cancel_retry
)
from credit_portfolio.utils.dates import parse_iso_datetime
from credit_portfolio.utils.validators import DataValidator

portfolio_bp = Blueprint('portfolio', __name__)
logger = logging.getLogger(__name__)

COMPANY_RESOURCE = 'document_processing_request'
ENTITY_TYPES = ['private_limited', 'public_limited', 'llp', 'partnership', 'proprietorship']

class InvalidQueryParameters(ValueError):
    """Raised when listing query parameters cannot be parsed."""

def invalid_query_response(error):
    return jsonify({
        'error': 'Invalid query parameters',
        'message': str(error)
    }), 400

def _list_arg(name: str) -> Optional[List[str]]:
    raw = request.args.get(name)
    if not raw:
        return None
    values = [value.strip() for value in raw.split(',') if value.strip()]
    return values or None

def _range_arg(min_name: str, max_name: str, default_min: float, default_max: Optional[float]):
    """Inclusive range from a pair of query parameters; None when neither is given."""
    low = request.args.get(min_name, type=float)
    high = request.args.get(max_name, type=float)
    if low is None and high is None:
        return None
    return (default_min if low is None else low, default_max if high is None else high)

def parse_portfolio_filters() -> Dict:
    """Build repository filter criteria from the listing query string."""
    filters = {
        'risk_grades': _list_arg('risk_grades'),
        'risk_score_range': _range_arg('risk_score_min', 'risk_score_max', 0, 100),
        'industries': _list_arg('industries'),
        'regions': _list_arg('regions'),
        'cities': _list_arg('cities'),
        'recommended_limit_range': _range_arg('limit_min', 'limit_max', 0, None),
        'processing_status': _list_arg('processing_status'),
        'gst_compliance_status': _list_arg('gst_compliance'),
        'epfo_compliance_status': _list_arg('epfo_compliance'),
        'audit_qualification_status': _list_arg('audit_status'),
        'ebitda_margin_range': _range_arg('ebitda_min', 'ebitda_max', -50, 100),
        'debt_equity_range': _range_arg('debt_equity_min', 'debt_equity_max', 0, 10),
        'current_ratio_range': _range_arg('current_ratio_min', 'current_ratio_max', 0, 10),
        'search_query': (request.args.get('search') or '').strip() or None
    }

    try:
        date_from = parse_iso_datetime(request.args.get('date_from'))
        date_to = parse_iso_datetime(request.args.get('date_to'))
    except ValueError as e:
        raise InvalidQueryParameters(f'date_from and date_to must be ISO dates (YYYY-MM-DD): {str(e)}') from e
    if date_from or date_to:
        filters['date_range'] = (date_from, date_to)

    return {key: value for key, value in filters.items() if value is not None}

def _pagination() -> Dict:
    return {
        'page': request.args.get('page', 1, type=int),
        'limit': request.args.get('limit', type=int)
    }

def _company_not_found():
    return jsonify({
        'error': 'Company not found',
        'message': 'No portfolio company with this request ID'
    }), 404

@portfolio_bp.route('', methods=['GET'])
@jwt_required()
def list_portfolio():
    """Filtered, sorted and paginated portfolio listing."""
    try:
        repository = PortfolioRepository(get_jwt_identity())
        filters = parse_portfolio_filters()
        sort = {
            'field': request.args.get('sort_field', 'completed_at'),
            'direction': request.args.get('sort_direction', 'desc')
        }

        result = repository.get_portfolio_overview(filters, sort, _pagination())

        return jsonify({
            'success': True,
            'data': result
        }), 200

    except InvalidQueryParameters as e:
        return invalid_query_response(e)
    except Exception as e:
        logger.error(f"Portfolio listing failed: {str(e)}")
        return jsonify({
            'error': 'Portfolio retrieval failed',
            'message': 'An error occurred while retrieving the portfolio'
        }), 500

@portfolio_bp.route('/search', methods=['GET'])
@jwt_required()
@limiter.limit("60 per minute")
def search_portfolio():
    """Free-text search over completed portfolio companies."""
    term = (request.args.get('q') or request.args.get('search') or '').strip()
    if len(term) < 2:
        return jsonify({
            'error': 'Invalid search term',
            'message': 'Search term must be at least 2 characters'
        }), 400

    try:
        repository = PortfolioRepository(get_jwt_identity())
        filters = parse_portfolio_filters()
        filters.pop('search_query', None)

        result = repository.search_companies(term, filters, _pagination())

        return jsonify({
            'success': True,
            'data': result
        }), 200

    except InvalidQueryParameters as e:
        return invalid_query_response(e)
    except Exception as e:
        logger.error(f"Portfolio search failed: {str(e)}")
        return jsonify({
            'error': 'Search failed',
            'message': 'An error occurred while searching the portfolio'
        }), 500

@portfolio_bp.route('/<request_id>', methods=['GET'])
@jwt_required()
def get_company(request_id):
    """Company detail with related companies and industry benchmarks."""
    try:
        repository = PortfolioRepository(get_jwt_identity())
        company = repository.get_company_by_request_id(request_id)

        if not company:
            return _company_not_found()

        return jsonify({
            'success': True,
            'data': {
                'company': company.to_dict(),
                'related_companies': repository.get_related_companies(company.industry, request_id),
                'industry_benchmarks': repository.get_industry_benchmarks(company.industry)
            }
        }), 200

    except Exception as e:
        logger.error(f"Company retrieval failed for {request_id}: {str(e)}")
        return jsonify({
            'error': 'Company retrieval failed',
            'message': 'An error occurred while retrieving the company'
        }), 500

@portfolio_bp.route('/<request_id>', methods=['PUT'])
@jwt_required()
def update_company(request_id):
    """Update editable company fields and record the change set."""
    try:
        user_id = get_jwt_identity()
        repository = PortfolioRepository(user_id)
        company = repository.get_company_by_request_id(request_id)

        if not company:
            return _company_not_found()

        data = request.get_json() or {}
        errors = DataValidator.validate_company_update(data)
        if errors:
            return jsonify({
                'error': 'Validation failed',
                'errors': errors
            }), 400

        if 'company_name' in data:
            data['company_name'] = DataValidator.sanitize_string(data['company_name'], 255)

        changes = repository.update_company_data(company, data)

        if changes:
            ip_address, user_agent = client_info()
            AuditLog.record(
                action='portfolio_company_updated',
                resource_type=COMPANY_RESOURCE,
                resource_id=company.id,
                user_id=user_id,
                details={'request_id': request_id, 'changes': changes},
                ip_address=ip_address,
                user_agent=user_agent
            )

        db.session.commit()

        logger.info(f"Company {request_id} updated: {', '.join(changes) or 'no changes'}")

        return jsonify({
            'success': True,
            'company': company.to_dict()
        }), 200

    except Exception as e:
        logger.error(f"Company update failed for {request_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Company update failed',
            'message': 'An error occurred while updating the company'
        }), 500

@portfolio_bp.route('/<request_id>', methods=['DELETE'])
@jwt_required()
def delete_company(request_id):
    """Delete a portfolio company."""
    try:
        user_id = get_jwt_identity()
        repository = PortfolioRepository(user_id)
        company = repository.get_company_by_request_id(request_id)

        if not company:
            return _company_not_found()

        ip_address, user_agent = client_info()
        AuditLog.record(
            action='portfolio_company_deleted',
            resource_type=COMPANY_RESOURCE,
            resource_id=company.id,
            user_id=user_id,
            details={'request_id': request_id, 'company_name': company.company_name},
            ip_address=ip_address,
            user_agent=user_agent
        )
        repository.delete_company(company)
        db.session.commit()

        logger.info(f"Company {request_id} deleted by {user_id}")

        return jsonify({
            'success': True,
            'message': 'Company deleted successfully'
        }), 200

    except Exception as e:
        logger.error(f"Company deletion failed for {request_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Company deletion failed',
            'message': 'An error occurred while deleting the company'
        }), 500

@portfolio_bp.route('/<request_id>/status', methods=['GET'])
@jwt_required()
def processing_status(request_id):
    """Stage-by-stage processing status."""
    try:
        company = PortfolioRepository(get_jwt_identity()).get_company_by_request_id(request_id)

        if not company:
            return _company_not_found()

        return jsonify({
            'success': True,
            'data': get_processing_status(company)
        }), 200

    except Exception as e:
        logger.error(f"Status retrieval failed for {request_id}: {str(e)}")
        return jsonify({
            'error': 'Status retrieval failed',
            'message': 'An error occurred while retrieving processing status'
        }), 500

@portfolio_bp.route('/<request_id>/retry', methods=['GET'])
@jwt_required()
def get_retry_state(request_id):
    """Retry eligibility, attempt counters and history."""
    try:
        company = PortfolioRepository(get_jwt_identity()).get_company_by_request_id(request_id)

        if not company:
            return _company_not_found()

        return jsonify({
            'success': True,
            'data': build_retry_state(company)
        }), 200

    except Exception as e:
        logger.error(f"Retry state retrieval failed for {request_id}: {str(e)}")
        return jsonify({
            'error': 'Retry state retrieval failed',
            'message': 'An error occurred while retrieving retry state'
        }), 500

@portfolio_bp.route('/<request_id>/retry', methods=['PUT'])
@jwt_required()
def update_retry_config(request_id):
    """Validate and record a retry configuration for a request."""
    try:
        user_id = get_jwt_identity()
        company = PortfolioRepository(user_id).get_company_by_request_id(request_id)

        if not company:
            return _company_not_found()

        config = RetryConfig.from_dict(request.get_json() or {})
        errors = config.validate()
        if errors:
            return jsonify({
                'error': 'Invalid retry configuration',
                'errors': errors
            }), 400

        ip_address, user_agent = client_info()
        AuditLog.record(
            action=RETRY_CONFIG_AUDIT_ACTION,
            resource_type=COMPANY_RESOURCE,
            resource_id=company.id,
            user_id=user_id,
            details={'request_id': request_id, 'retry_config': config.to_dict()},
            ip_address=ip_address,
            user_agent=user_agent
        )
        db.session.commit()

        return jsonify({
            'success': True,
            'message': 'Retry configuration updated successfully',
            'data': config.to_dict()
        }), 200

    except Exception as e:
        logger.error(f"Retry config update failed for {request_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Retry configuration update failed',
            'message': 'An error occurred while updating retry configuration'
        }), 500

@portfolio_bp.route('/<request_id>/retry', methods=['POST'])
@jwt_required()
@limiter.limit("10 per minute")
def retry_processing(request_id):
    """Manually re-queue a failed processing request."""
    try:
        user_id = get_jwt_identity()
        company = PortfolioRepository(user_id).get_company_by_request_id(request_id)

        if not company:
            return _company_not_found()

        ip_address, user_agent = client_info()
        result = manual_retry(company, user_id, ip_address=ip_address, user_agent=user_agent)
        db.session.commit()

        return jsonify({
            'success': True,
            'message': 'Processing retry initiated',
            'data': result
        }), 200

    except RetryNotAllowed as e:
        db.session.rollback()
        return jsonify({
            'error': 'Retry not allowed',
            'message': str(e)
        }), 400
    except Exception as e:
        logger.error(f"Manual retry failed for {request_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Retry failed',
            'message': 'An error occurred while retrying processing'
        }), 500

@portfolio_bp.route('/<request_id>/retry', methods=['DELETE'])
@jwt_required()
def cancel_processing(request_id):
    """Cancel an in-flight processing request."""
    try:
        user_id = get_jwt_identity()
        company = PortfolioRepository(user_id).get_company_by_request_id(request_id)

        if not company:
            return _company_not_found()

        ip_address, user_agent = client_info()
        cancel_retry(company, user_id, ip_address=ip_address, user_agent=user_agent)
        db.session.commit()

        return jsonify({
            'success': True,
            'message': 'Processing cancelled successfully'
        }), 200

    except RetryNotAllowed as e:
        db.session.rollback()
        return jsonify({
            'error': 'Cancel not allowed',
            'message': str(e)
        }), 400
    except Exception as e:
        logger.error(f"Cancel failed for {request_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Cancel failed',
            'message': 'An error occurred while cancelling processing'
        }), 500

@portfolio_bp.route('/query-analysis', methods=['POST'])
@jwt_required()
def query_analysis():
    """Complexity score, index hints and action items for a filter set."""
    try:
        data = request.get_json() or {}
        filters = data.get('filters') or {}

        if not isinstance(filters, dict):
            return jsonify({
                'error': 'Invalid filters',
                'message': 'filters must be an object'
            }), 400

        report = generate_optimization_report(filters, data.get('performance_metrics'))

        return jsonify({
            'success': True,
            'data': report
        }), 200

    except Exception as e:
        logger.error(f"Query analysis failed: {str(e)}")
        return jsonify({
            'error': 'Query analysis failed',
            'message': 'An error occurred while analysing the query'
        }), 500

@portfolio_bp.route('/validate-compliance', methods=['POST'])
@jwt_required()
def validate_compliance():
    """Validate manually entered compliance data and score it."""
    try:
        data = request.get_json() or {}
        entity_type = data.get('entity_type', 'private_limited')

        if entity_type not in ENTITY_TYPES:
            return jsonify({
                'error': 'Invalid entity type',
                'message': f"Entity type must be one of: {', '.join(ENTITY_TYPES)}"
            }), 400

        result = validate_compliance_submission(data.get('compliance_data') or {}, entity_type)

        return jsonify({
            'success': True,
            'data': result
        }), 200 if result['is_valid'] else 422

    except Exception as e:
        logger.error(f"Compliance validation failed: {str(e)}")
        return jsonify({
            'error': 'Compliance validation failed',
            'message': 'An error occurred while validating compliance data'
        }), 500

@portfolio_bp.route('/validate-financials', methods=['POST'])
@jwt_required()
def validate_financials():
    """Reconcile manually entered financial statements and derive ratios."""
    try:
        data = request.get_json() or {}
        years = data.get('financial_years') or []

        if not isinstance(years, list) or not years:
            return jsonify({
                'error': 'Missing financial years',
                'message': 'financial_years must be a non-empty list'
            }), 400

        errors = validate_financial_business_rules(data)
        ratios = calculate_financial_ratios(data.get('balance_sheet') or {}, data.get('profit_loss') or {}, years)

        return jsonify({
            'success': True,
            'data': {
                'is_valid': not errors,
                'errors': errors,
                'ratios': ratios
            }
        }), 200

    except Exception as e:
        logger.error(f"Financial validation failed: {str(e)}")
        return jsonify({
            'error': 'Financial validation failed',
            'message': 'An error occurred while validating financial data'
        }), 500
