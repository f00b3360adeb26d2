"""
GST filing data API endpoints
Cached filing lookups, quota-limited refreshes and provider usage
"""

from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required, get_jwt_identity
import logging

from credit_portfolio import db, limiter
from credit_portfolio.api.auth import client_info
from credit_portfolio.models import AuditLog
from credit_portfolio.repositories import PortfolioRepository
from credit_portfolio.services.gst_api_service import GstApiService, RefreshLimitExceeded
from credit_portfolio.utils.dates import current_financial_year
from credit_portfolio.utils.validators import DataValidator

gst_bp = Blueprint('gst', __name__)
logger = logging.getLogger(__name__)

def _request_not_found():
    return jsonify({
        'error': 'Request not found',
        'message': 'No portfolio company with this request ID'
    }), 404

def _validate_refresh_payload(data):
    """Return an error response tuple for an invalid refresh payload, else None."""
    gstins = data.get('gstins')
    financial_year = data.get('financial_year')

    if not gstins or not isinstance(gstins, list):
        return jsonify({
            'error': 'Missing GSTINs',
            'message': 'GSTINs array is required'
        }), 400

    if not financial_year:
        return jsonify({
            'error': 'Missing financial year',
            'message': 'Financial year is required'
        }), 400

    if not DataValidator.validate_financial_year(financial_year):
        return jsonify({
            'error': 'Invalid financial year',
            'message': 'Invalid financial year format. Use YYYY-YY format (e.g., 2025-26)'
        }), 400

    invalid = DataValidator.invalid_gstins(gstins)
    if invalid:
        return jsonify({
            'error': 'Invalid GSTIN',
            'message': f"Invalid GSTIN format: {', '.join(str(g) for g in invalid)}"
        }), 400

    return None

@gst_bp.route('/portfolio/<request_id>/gst-refresh', methods=['GET'])
@jwt_required()
def refresh_status(request_id):
    """Remaining refresh quota for a company."""
    try:
        status = GstApiService().get_refresh_status(get_jwt_identity(), request_id)
        return jsonify({
            'success': True,
            'data': status
        }), 200

    except Exception as e:
        logger.error(f"GST refresh status failed for {request_id}: {str(e)}")
        return jsonify({
            'error': 'Refresh status failed',
            'message': 'Failed to check refresh status'
        }), 500

@gst_bp.route('/portfolio/<request_id>/gst-refresh', methods=['POST'])
@jwt_required()
@limiter.limit("5 per minute")
def refresh_gst_data(request_id):
    """Fetch fresh filings for the given GSTINs, serving fresh cache entries as-is."""
    try:
        user_id = get_jwt_identity()
        data = request.get_json() or {}

        invalid = _validate_refresh_payload(data)
        if invalid:
            return invalid

        company = PortfolioRepository(user_id).get_company_by_request_id(request_id)
        if not company:
            return _request_not_found()

        gstins = data['gstins']
        result = GstApiService().process_gst_refresh(request_id, user_id, gstins, data['financial_year'])
        results = result['results']

        ip_address, user_agent = client_info()
        AuditLog.record(
            action='gst_data_refreshed',
            resource_type='document_processing_request',
            resource_id=company.id,
            user_id=user_id,
            details={'request_id': request_id, 'job_id': result['job_id'], 'gstins': gstins},
            ip_address=ip_address,
            user_agent=user_agent
        )
        db.session.commit()

        return jsonify({
            'success': True,
            'message': 'GST refresh completed',
            'data': {
                'jobId': result['job_id'],
                'processedGstins': len(gstins),
                'results': results,
                'summary': {
                    'successful': sum(1 for r in results if r['status'] == 'success'),
                    'cached': sum(1 for r in results if r['status'] == 'cached'),
                    'failed': sum(1 for r in results if r['status'] == 'failed')
                }
            }
        }), 200

    except RefreshLimitExceeded as e:
        return jsonify({
            'error': 'Refresh limit exceeded',
            'message': str(e)
        }), 429
    except Exception as e:
        logger.error(f"GST refresh failed for {request_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'GST refresh failed',
            'message': 'Failed to refresh GST data'
        }), 500

@gst_bp.route('/portfolio/<request_id>/gst-data', methods=['GET'])
@jwt_required()
def get_gst_data(request_id):
    """Cached filings for one GSTIN with freshness and quota information."""
    gstin = request.args.get('gstin')
    financial_year = request.args.get('financial_year') or current_financial_year()

    if not gstin:
        return jsonify({
            'error': 'Missing GSTIN',
            'message': 'GSTIN parameter is required'
        }), 400

    if not DataValidator.validate_gstin(gstin):
        return jsonify({
            'error': 'Invalid GSTIN',
            'message': 'Invalid GSTIN format'
        }), 400

    try:
        user_id = get_jwt_identity()
        if not PortfolioRepository(user_id).get_company_by_request_id(request_id):
            return _request_not_found()

        service = GstApiService()
        filing_data = service.get_filing_data(gstin, financial_year)

        return jsonify({
            'success': True,
            'data': {
                'gstin': gstin,
                'financial_year': financial_year,
                'filing_data': filing_data,
                'data_freshness': {
                    'is_fresh': service.is_data_fresh(gstin, financial_year),
                    'max_age_days': service.freshness_days,
                    'last_updated': filing_data[0]['fetched_at'] if filing_data else None
                },
                'refresh_status': service.get_refresh_status(user_id, request_id)
            }
        }), 200

    except Exception as e:
        logger.error(f"GST data retrieval failed for {request_id}: {str(e)}")
        return jsonify({
            'error': 'GST data retrieval failed',
            'message': 'Failed to fetch GST data'
        }), 500

@gst_bp.route('/portfolio/<request_id>/gst-data', methods=['POST'])
@jwt_required()
def check_gst_cache(request_id):
    """Report cache freshness for several GSTINs without calling the provider."""
    try:
        data = request.get_json() or {}
        gstins = data.get('gstins')
        financial_year = data.get('financial_year')

        if not gstins or not isinstance(gstins, list):
            return jsonify({
                'error': 'Missing GSTINs',
                'message': 'GSTINs array is required'
            }), 400

        if not financial_year:
            return jsonify({
                'error': 'Missing financial year',
                'message': 'Financial year is required'
            }), 400

        if not PortfolioRepository(get_jwt_identity()).get_company_by_request_id(request_id):
            return _request_not_found()

        result = GstApiService().check_cached_data(gstins, financial_year, bool(data.get('force_refresh')))

        return jsonify({
            'success': True,
            'data': result
        }), 200

    except Exception as e:
        logger.error(f"GST cache check failed for {request_id}: {str(e)}")
        return jsonify({
            'error': 'GST data check failed',
            'message': 'Failed to check GST data'
        }), 500

@gst_bp.route('/gst/usage', methods=['GET'])
@jwt_required()
def gst_usage():
    """Provider call counts and cost for the current user."""
    try:
        stats = GstApiService().get_usage_stats(
            get_jwt_identity(),
            start_date=request.args.get('start_date'),
            end_date=request.args.get('end_date')
        )
        return jsonify({
            'success': True,
            'data': stats
        }), 200

    except ValueError as e:
        return jsonify({
            'error': 'Invalid date range',
            'message': str(e)
        }), 400
    except Exception as e:
        logger.error(f"GST usage retrieval failed: {str(e)}")
        return jsonify({
            'error': 'Usage retrieval failed',
            'message': 'Failed to fetch GST API usage'
        }), 500
