"""
Portfolio analytics API endpoints
"""

from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required, get_jwt_identity
import logging

from credit_portfolio.api.portfolio_routes import (
    InvalidQueryParameters,
    invalid_query_response,
    parse_portfolio_filters,
)
from credit_portfolio.repositories import PortfolioRepository
from credit_portfolio.services.portfolio_analytics import PortfolioAnalyticsService, MODEL_TYPES
from credit_portfolio.utils.dates import utcnow, isoformat

analytics_bp = Blueprint('analytics', __name__)
logger = logging.getLogger(__name__)

def _completed_companies():
    filters = parse_portfolio_filters()
    return PortfolioRepository(get_jwt_identity()).get_completed_companies(filters), filters

def _metadata(companies, filters, **extra):
    metadata = {
        'total_companies_analyzed': len(companies),
        'filters_applied': len(filters) > 0,
        'generated_at': isoformat(utcnow())
    }
    metadata.update(extra)
    return metadata

def _analytics_error(name, error):
    if isinstance(error, InvalidQueryParameters):
        return invalid_query_response(error)
    logger.error(f"{name} analytics failed: {str(error)}")
    return jsonify({
        'error': 'Analytics calculation failed',
        'message': f'An error occurred while calculating {name} analytics'
    }), 500

@analytics_bp.route('/overview', methods=['GET'])
@jwt_required()
def overview():
    """Portfolio totals, risk distribution and summaries."""
    try:
        companies, filters = _completed_companies()
        return jsonify({
            'success': True,
            'data': {
                'metrics': PortfolioAnalyticsService.calculate_overview_metrics(companies),
                'metadata': _metadata(companies, filters)
            }
        }), 200
    except Exception as e:
        return _analytics_error('overview', e)

@analytics_bp.route('/risk-parameters', methods=['GET'])
@jwt_required()
def risk_parameters():
    """Category performance and parameter benchmarks."""
    try:
        companies, filters = _completed_companies()
        return jsonify({
            'success': True,
            'data': {
                'analysis': PortfolioAnalyticsService.calculate_risk_parameter_analysis(companies),
                'metadata': _metadata(companies, filters)
            }
        }), 200
    except Exception as e:
        return _analytics_error('risk parameter', e)

@analytics_bp.route('/industry-breakdown', methods=['GET'])
@jwt_required()
def industry_breakdown():
    try:
        companies, filters = _completed_companies()
        breakdown = PortfolioAnalyticsService.calculate_industry_breakdown(companies)
        breakdown['industries'].sort(key=lambda entry: entry['count'], reverse=True)
        return jsonify({
            'success': True,
            'data': {
                'breakdown': breakdown,
                'metadata': _metadata(companies, filters)
            }
        }), 200
    except Exception as e:
        return _analytics_error('industry breakdown', e)

@analytics_bp.route('/compliance', methods=['GET'])
@jwt_required()
def compliance():
    try:
        companies, filters = _completed_companies()
        return jsonify({
            'success': True,
            'data': {
                'compliance': PortfolioAnalyticsService.calculate_compliance_status(companies),
                'metadata': _metadata(companies, filters)
            }
        }), 200
    except Exception as e:
        return _analytics_error('compliance', e)

@analytics_bp.route('/eligibility', methods=['GET'])
@jwt_required()
def eligibility():
    try:
        companies, filters = _completed_companies()
        return jsonify({
            'success': True,
            'data': {
                'eligibility': PortfolioAnalyticsService.calculate_eligibility_analysis(companies),
                'metadata': _metadata(companies, filters)
            }
        }), 200
    except Exception as e:
        return _analytics_error('eligibility', e)

@analytics_bp.route('/correlations', methods=['GET'])
@jwt_required()
def correlations():
    """Pearson correlation of risk score against parameter scores."""
    try:
        filters = parse_portfolio_filters()
        analysis = PortfolioRepository(get_jwt_identity()).get_parameter_correlation_analysis(filters)
        return jsonify({
            'success': True,
            'data': {
                'correlations': analysis,
                'metadata': {
                    'sample_size': analysis.get('sample_size', 0),
                    'filters_applied': len(filters) > 0,
                    'generated_at': isoformat(utcnow())
                }
            }
        }), 200
    except Exception as e:
        return _analytics_error('correlation', e)

@analytics_bp.route('/model-performance', methods=['GET'])
@jwt_required()
def model_performance():
    """
    Scoring model accuracy, availability and consistency.

    Query parameters:
        model_type: restrict to 'with_banking' or 'without_banking'
        include_validation: add data quality and confidence analysis
        include_parameter_analysis: add per-parameter performance
    """
    model_type = request.args.get('model_type')
    include_validation = request.args.get('include_validation') == 'true'
    include_parameter_analysis = request.args.get('include_parameter_analysis') == 'true'

    if model_type and model_type not in MODEL_TYPES:
        return jsonify({
            'error': 'Invalid model type',
            'message': f"model_type must be one of: {', '.join(MODEL_TYPES)}"
        }), 400

    try:
        companies, filters = _completed_companies()

        if not companies:
            return jsonify({
                'success': True,
                'data': {
                    'model_performance': PortfolioAnalyticsService.calculate_model_performance([]),
                    'metadata': _metadata(companies, filters)
                }
            }), 200

        filtered = [c for c in companies if c.get('model_type') == model_type] if model_type else companies
        analysed = [c for c in filtered if c.get('risk_analysis')]

        if not analysed:
            return jsonify({
                'error': 'No analysis data',
                'message': 'No companies found with risk analysis data'
            }), 404

        result = {
            'model_performance': PortfolioAnalyticsService.calculate_model_performance(analysed)
        }

        if include_validation:
            result['validation_analysis'] = PortfolioAnalyticsService.calculate_validation_analysis(analysed)

        if include_parameter_analysis:
            result['parameter_analysis'] = PortfolioAnalyticsService.calculate_parameter_performance(analysed)

        comparison = PortfolioAnalyticsService.calculate_model_type_comparison(companies)
        if len(comparison) > 1:
            result['model_comparison'] = comparison

        result['metadata'] = _metadata(
            analysed, filters,
            total_companies_in_portfolio=len(companies),
            companies_without_analysis=len(filtered) - len(analysed),
            model_type_filter=model_type,
            include_validation=include_validation,
            include_parameter_analysis=include_parameter_analysis
        )

        return jsonify({
            'success': True,
            'data': result
        }), 200

    except Exception as e:
        return _analytics_error('model performance', e)
