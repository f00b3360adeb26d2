"""
Portfolio Repository
Query layer over document processing requests for the portfolio dashboard
"""

import logging
import time
from typing import Any, Callable, Dict, List, Optional

from flask import current_app

from credit_portfolio import db
from credit_portfolio.models import DocumentProcessingRequest
from credit_portfolio.services.portfolio_analytics import (
    PortfolioAnalyticsService,
    audit_qualification_status,
    epfo_compliance_status,
    extract_financial_summary,
    gst_compliance_status,
)
from credit_portfolio.utils import statistics

logger = logging.getLogger(__name__)

# Sortable table columns
SORT_COLUMNS = (
    'risk_score',
    'risk_grade',
    'recommended_limit',
    'company_name',
    'industry',
    'completed_at',
    'submitted_at',
    'total_parameters',
    'available_parameters',
)

def _json_path(*keys) -> Callable[[Dict], Any]:
    def extract(company: Dict):
        current = company.get('risk_analysis')
        for key in keys:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        return current
    return extract

# Sort fields read out of the risk_analysis JSON
JSON_SORT_FIELDS = {
    'financial_score': _json_path('financialResult', 'percentage'),
    'business_score': _json_path('businessResult', 'percentage'),
    'hygiene_score': _json_path('hygieneResult', 'percentage'),
    'banking_score': _json_path('bankingResult', 'percentage'),
    'final_eligibility': _json_path('eligibility', 'finalEligibility'),
    'risk_multiplier': _json_path('eligibility', 'riskMultiplier'),
    'overall_grade_category': _json_path('overallGrade', 'category'),
}

DEFAULT_SORT = {'field': 'completed_at', 'direction': 'desc'}

def company_addresses(company: Dict) -> List[Dict]:
    """Registered and business addresses from extracted data and the risk analysis."""
    about = (company.get('extracted_data') or {}).get('about_company') or {}
    analysis_addresses = (((company.get('risk_analysis') or {}).get('companyData') or {})
                          .get('addresses') or {})
    candidates = [
        about.get('registered_address'),
        about.get('business_address'),
        analysis_addresses.get('business_address'),
    ]
    return [address for address in candidates if isinstance(address, dict)]

def _address_values(company: Dict, key: str) -> List[str]:
    return [str(address[key]).strip().lower() for address in company_addresses(company) if address.get(key)]

def _in_range(value: Optional[float], bounds) -> bool:
    """Missing values pass; present values must fall inside [min, max]."""
    if value is None:
        return True
    low, high = bounds
    return low <= value <= high

def _sort_key(value):
    # None last in either direction is handled by the caller
    if isinstance(value, str):
        return value.lower()
    return value

class PortfolioRepository:
    """Portfolio queries scoped to a single user."""

    def __init__(self, user_id: str):
        self.user_id = user_id

    def _base_query(self):
        return DocumentProcessingRequest.query.filter_by(user_id=self.user_id)

    def _apply_database_filters(self, query, filters: Dict):
        model = DocumentProcessingRequest

        if filters.get('risk_grades'):
            grades = [str(grade).lower() for grade in filters['risk_grades']]
            query = query.filter(db.func.lower(model.risk_grade).in_(grades))

        if filters.get('risk_score_range'):
            low, high = filters['risk_score_range']
            query = query.filter(model.risk_score >= low, model.risk_score <= high)

        if filters.get('industries'):
            query = query.filter(model.industry.in_(filters['industries']))

        if filters.get('recommended_limit_range'):
            low, high = filters['recommended_limit_range']
            if low is not None:
                query = query.filter(model.recommended_limit >= low)
            if high is not None:
                query = query.filter(model.recommended_limit <= high)

        if filters.get('processing_status'):
            query = query.filter(model.status.in_(filters['processing_status']))

        if filters.get('date_range'):
            start, end = filters['date_range']
            if start:
                query = query.filter(model.completed_at >= start)
            if end:
                query = query.filter(model.completed_at <= end)

        return query

    @staticmethod
    def apply_client_side_filters(companies: List[Dict], filters: Optional[Dict]) -> List[Dict]:
        """
        Filters over JSON columns.

        Compliance filters match the computed company status exactly
        ('Regular', 'Irregular', 'Unknown'; audit: 'Qualified', 'Unqualified',
        'Unknown'). Financial ranges use the latest reported year; a company
        without financial statements is excluded, a missing ratio passes.
        """
        if not filters:
            return companies

        if filters.get('gst_compliance_status'):
            wanted = set(filters['gst_compliance_status'])
            companies = [c for c in companies if gst_compliance_status(c.get('extracted_data')) in wanted]

        if filters.get('epfo_compliance_status'):
            wanted = set(filters['epfo_compliance_status'])
            companies = [c for c in companies if epfo_compliance_status(c.get('extracted_data')) in wanted]

        if filters.get('audit_qualification_status'):
            wanted = set(filters['audit_qualification_status'])
            companies = [c for c in companies if audit_qualification_status(c.get('extracted_data')) in wanted]

        ratio_filters = [
            ('ebitda_margin_range', 'ebitda_margin'),
            ('debt_equity_range', 'debt_equity'),
            ('current_ratio_range', 'current_ratio'),
        ]
        if any(filters.get(name) for name, _ in ratio_filters):
            filtered = []
            for company in companies:
                summary = extract_financial_summary(company.get('extracted_data'))
                if summary is None:
                    continue
                if all(_in_range(summary[field], filters[name])
                       for name, field in ratio_filters if filters.get(name)):
                    filtered.append(company)
            companies = filtered

        if filters.get('regions'):
            regions = {str(region).strip().lower() for region in filters['regions']}
            companies = [c for c in companies if regions.intersection(_address_values(c, 'state'))]

        if filters.get('cities'):
            cities = {str(city).strip().lower() for city in filters['cities']}
            companies = [c for c in companies if cities.intersection(_address_values(c, 'city'))]

        return companies

    @staticmethod
    def _sort_companies(companies: List[Dict], sort: Dict) -> List[Dict]:
        field = sort.get('field')
        reverse = sort.get('direction', 'desc') == 'desc'
        extract = JSON_SORT_FIELDS.get(field) or (lambda company: company.get(field))

        present = [c for c in companies if extract(c) is not None]
        missing = [c for c in companies if extract(c) is None]

        # id ascending as the tiebreaker within equal values
        present.sort(key=lambda c: c['id'])
        present.sort(key=lambda c: _sort_key(extract(c)), reverse=reverse)
        missing.sort(key=lambda c: c['id'])
        return present + missing

    @staticmethod
    def normalize_sort(sort: Optional[Dict]) -> Dict:
        if not sort or (sort.get('field') not in SORT_COLUMNS and sort.get('field') not in JSON_SORT_FIELDS):
            return dict(DEFAULT_SORT)
        direction = 'asc' if sort.get('direction') == 'asc' else 'desc'
        return {'field': sort['field'], 'direction': direction}

    @staticmethod
    def normalize_pagination(pagination: Optional[Dict]) -> Dict:
        pagination = pagination or {}
        default_limit = current_app.config.get('PORTFOLIO_DEFAULT_PAGE_SIZE', 20)
        max_limit = current_app.config.get('PORTFOLIO_MAX_PAGE_SIZE', 200)
        page = max(int(pagination.get('page') or 1), 1)
        limit = min(max(int(pagination.get('limit') or default_limit), 1), max_limit)
        return {'page': page, 'limit': limit}

    def get_portfolio_overview(self, filters: Optional[Dict] = None, sort: Optional[Dict] = None,
                               pagination: Optional[Dict] = None) -> Dict[str, Any]:
        """
        Filtered, sorted and paginated portfolio listing.

        Args:
            filters: Filter criteria (database and JSON-derived)
            sort: {'field', 'direction'}; defaults to completed_at desc
            pagination: {'page', 'limit'}; limit capped by configuration

        Returns:
            Dictionary with companies, paging flags and metrics of the filtered set
        """
        filters = filters or {}
        sort = self.normalize_sort(sort)
        paging = self.normalize_pagination(pagination)

        query = self._apply_database_filters(self._base_query(), filters)
        companies = [row.to_dict() for row in query.all()]
        companies = self.apply_client_side_filters(companies, filters)

        if filters.get('search_query'):
            companies = [c for c in companies if self.matches_search(c, filters['search_query'])]

        companies = self._sort_companies(companies, sort)

        total_count = len(companies)
        offset = (paging['page'] - 1) * paging['limit']
        page_items = companies[offset:offset + paging['limit']]

        return {
            'companies': page_items,
            'total_count': total_count,
            'page': paging['page'],
            'limit': paging['limit'],
            'has_next': total_count > offset + paging['limit'],
            'has_previous': paging['page'] > 1,
            'metrics': PortfolioAnalyticsService.calculate_overview_metrics(companies)
        }

    @staticmethod
    def matches_search(company: Dict, term: str) -> bool:
        """Case-insensitive match on name, industry, request id, GSTINs, directors and address."""
        needle = term.strip().lower()
        if not needle:
            return True

        extracted = company.get('extracted_data') or {}
        haystack = [company.get('company_name'), company.get('industry'), company.get('request_id')]

        for gstin in ((extracted.get('gst_records') or {}).get('active_gstins') or []):
            haystack.append(gstin.get('gstin') if isinstance(gstin, dict) else gstin)

        for director in extracted.get('directors') or []:
            haystack.append(director.get('name') if isinstance(director, dict) else director)

        for address in company_addresses(company):
            haystack.extend([address.get('city'), address.get('state')])

        return any(needle in str(value).lower() for value in haystack if value)

    def search_companies(self, term: str, filters: Optional[Dict] = None,
                         pagination: Optional[Dict] = None) -> Dict[str, Any]:
        started = time.perf_counter()
        paging = self.normalize_pagination(pagination)

        query = self._apply_database_filters(self._base_query().filter_by(status='completed'), filters or {})
        query = query.order_by(DocumentProcessingRequest.completed_at.desc(), DocumentProcessingRequest.id.asc())

        companies = [row.to_dict() for row in query.all()]
        companies = self.apply_client_side_filters(companies, filters)
        matches = [c for c in companies if self.matches_search(c, term)]

        offset = (paging['page'] - 1) * paging['limit']

        return {
            'companies': matches[offset:offset + paging['limit']],
            'total_matches': len(matches),
            'search_time_ms': int((time.perf_counter() - started) * 1000)
        }

    def get_company_by_request_id(self, request_id: str) -> Optional[DocumentProcessingRequest]:
        return self._base_query().filter_by(request_id=request_id).first()

    def get_related_companies(self, industry: Optional[str], exclude_request_id: str, limit: int = 5) -> List[Dict]:
        if not industry:
            return []
        rows = self._base_query().filter(
            DocumentProcessingRequest.industry == industry,
            DocumentProcessingRequest.request_id != exclude_request_id,
            DocumentProcessingRequest.status == 'completed'
        ).order_by(DocumentProcessingRequest.risk_score.asc()).limit(limit).all()
        return [row.to_dict(include_data=False) for row in rows]

    def get_industry_benchmarks(self, industry: Optional[str]) -> Optional[Dict[str, Any]]:
        """Median risk score and limit across the user's companies in an industry."""
        if not industry:
            return None

        rows = self._base_query().filter(
            DocumentProcessingRequest.industry == industry,
            DocumentProcessingRequest.status == 'completed'
        ).all()
        if not rows:
            return None

        risk_scores = [row.risk_score for row in rows if row.risk_score]
        limits = [row.recommended_limit for row in rows if row.recommended_limit]

        return {
            'industry': industry,
            'median_risk_score': statistics.median(risk_scores),
            'median_revenue': statistics.median(limits),
            'median_ratios': {},
            'peer_count': len(rows)
        }

    UPDATABLE_FIELDS = ('company_name', 'industry', 'risk_score', 'risk_grade', 'recommended_limit', 'currency',
                        'extracted_data', 'risk_analysis')

    def update_company_data(self, company: DocumentProcessingRequest, updates: Dict) -> Dict[str, Any]:
        """Apply permitted field updates and return {field: [old, new]} for changed fields."""
        changes = {}
        for field in self.UPDATABLE_FIELDS:
            if field not in updates:
                continue
            value = updates[field]
            if field == 'risk_grade' and value is not None:
                value = str(value).lower()
            old_value = getattr(company, field)
            if old_value != value:
                setattr(company, field, value)
                if field in ('extracted_data', 'risk_analysis'):
                    changes[field] = 'updated'
                else:
                    changes[field] = [old_value, value]
        return changes

    def delete_company(self, company: DocumentProcessingRequest) -> None:
        db.session.delete(company)

    def get_completed_companies(self, filters: Optional[Dict] = None) -> List[Dict]:
        query = self._apply_database_filters(self._base_query().filter_by(status='completed'), filters or {})
        companies = [row.to_dict() for row in query.all()]
        return self.apply_client_side_filters(companies, filters)

    def get_parameter_correlation_analysis(self, filters: Optional[Dict] = None) -> Dict[str, Any]:
        companies = self.get_completed_companies(filters)
        logger.debug(f"Correlation analysis over {len(companies)} companies")
        return PortfolioAnalyticsService.calculate_parameter_correlations(companies)
