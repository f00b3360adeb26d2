"""
Query optimization heuristics for portfolio filtering
Index recommendations, caching strategy and query performance review
"""

import re
from typing import Any, Dict, List, Optional

# Index DDL keyed by the hint names returned from analyze_filter_complexity
RECOMMENDED_INDEXES = {
    # Basic filtering indexes
    'risk_grade_idx': "CREATE INDEX IF NOT EXISTS idx_portfolio_risk_grade ON document_processing_requests(risk_grade) WHERE status = 'completed'",
    'risk_score_idx': "CREATE INDEX IF NOT EXISTS idx_portfolio_risk_score ON document_processing_requests(risk_score) WHERE status = 'completed'",
    'industry_idx': "CREATE INDEX IF NOT EXISTS idx_portfolio_industry ON document_processing_requests(industry) WHERE status = 'completed'",
    'completed_at_idx': "CREATE INDEX IF NOT EXISTS idx_portfolio_completed_at ON document_processing_requests(completed_at DESC) WHERE status = 'completed'",

    # Composite indexes for common filter combinations
    'risk_industry_idx': "CREATE INDEX IF NOT EXISTS idx_portfolio_risk_industry ON document_processing_requests(risk_grade, industry) WHERE status = 'completed'",
    'score_date_idx': "CREATE INDEX IF NOT EXISTS idx_portfolio_score_date ON document_processing_requests(risk_score, completed_at DESC) WHERE status = 'completed'",

    # GIN indexes for text search (Postgres only)
    'company_name_gin_idx': "CREATE INDEX IF NOT EXISTS idx_portfolio_company_name_gin ON document_processing_requests USING gin(to_tsvector('english', company_name)) WHERE status = 'completed'",
    'industry_gin_idx': "CREATE INDEX IF NOT EXISTS idx_portfolio_industry_gin ON document_processing_requests USING gin(to_tsvector('english', industry)) WHERE status = 'completed'",

    # JSONB indexes for complex filtering
    'risk_analysis_gin_idx': "CREATE INDEX IF NOT EXISTS idx_portfolio_risk_analysis_gin ON document_processing_requests USING gin(risk_analysis) WHERE status = 'completed'",
    'extracted_data_gin_idx': "CREATE INDEX IF NOT EXISTS idx_portfolio_extracted_data_gin ON document_processing_requests USING gin(extracted_data) WHERE status = 'completed'",

    # Analytics table indexes
    'analytics_risk_grade_idx': 'CREATE INDEX IF NOT EXISTS idx_analytics_risk_grade ON portfolio_analytics(risk_grade)',
    'analytics_industry_idx': 'CREATE INDEX IF NOT EXISTS idx_analytics_industry ON portfolio_analytics(industry)',
    'analytics_region_idx': 'CREATE INDEX IF NOT EXISTS idx_analytics_region ON portfolio_analytics(business_state, registered_state)',
    'analytics_compliance_idx': 'CREATE INDEX IF NOT EXISTS idx_analytics_compliance ON portfolio_analytics(gst_compliance_status, epfo_compliance_status, audit_qualification_status)',
    'analytics_financial_idx': 'CREATE INDEX IF NOT EXISTS idx_analytics_financial ON portfolio_analytics(ebitda_margin_value, debt_equity_value, current_ratio_value)',
    'analytics_composite_idx': "CREATE INDEX IF NOT EXISTS idx_analytics_composite ON portfolio_analytics(risk_grade, industry, business_state) WHERE processing_status = 'completed'",
}

# (filter key, weight, applied name, index hints, recommendation)
_FILTER_WEIGHTS = [
    ('risk_grades', 1, 'risk_grades', ['risk_grade_idx'], None),
    ('risk_score_range', 1, 'risk_score_range', ['risk_score_idx'], None),
    ('sectors', 1, 'sectors', ['sector_idx'], None),
    ('gst_compliance_status', 1, 'gst_compliance_status', ['gst_compliance_status_idx'], None),
    ('epfo_compliance_status', 1, 'epfo_compliance_status', ['epfo_compliance_status_idx'], None),
    ('regions', 3, 'regions', [], 'Consider using analytics table for region filtering'),
    ('cities', 3, 'cities', [], 'Consider using analytics table for city filtering'),
    ('gst_compliance_status', 4, 'gst_compliance', [],
     'GST compliance filtering requires analytics table for optimal performance'),
    ('epfo_compliance_status', 4, 'epfo_compliance', [],
     'EPFO compliance filtering requires analytics table for optimal performance'),
    ('audit_qualification_status', 4, 'audit_qualification', [],
     'Audit qualification filtering requires analytics table for optimal performance'),
    ('ebitda_margin_range', 5, 'ebitda_margin', [], 'Financial metrics filtering requires analytics table'),
    ('debt_equity_range', 5, 'debt_equity', [], 'Financial metrics filtering requires analytics table'),
    ('current_ratio_range', 5, 'current_ratio', [], 'Financial metrics filtering requires analytics table'),
    ('revenue_range', 4, 'revenue', [], 'Revenue filtering benefits from analytics table'),
    ('net_worth_range', 4, 'net_worth', [], 'Net worth filtering benefits from analytics table'),
    ('date_range', 2, 'date_range', ['completed_at_idx'], None),
    ('search_query', 2, 'search', ['company_name_gin_idx', 'industry_gin_idx'], None),
]

def _is_applied(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, (list, tuple, set, str, dict)):
        return len(value) > 0
    return True

def analyze_filter_complexity(filters: Dict[str, Any]) -> Dict[str, Any]:
    """
    Score filter criteria and recommend an optimization strategy.

    List filters count only when non-empty; range filters count when present.
    ``industries`` is accepted as an alias for ``sectors``.

    Returns:
        use_analytics_table, enable_caching, batch_size, index_hints,
        estimated_performance ('fast', 'medium' or 'slow') and recommendations
    """
    filters = dict(filters or {})
    if 'sectors' not in filters and 'industries' in filters:
        filters['sectors'] = filters['industries']

    strategy = {
        'use_analytics_table': False,
        'enable_caching': False,
        'batch_size': 100,
        'index_hints': [],
        'estimated_performance': 'fast',
        'recommendations': []
    }

    complexity_score = 0
    applied_filters: List[str] = []

    for key, weight, applied_name, hints, recommendation in _FILTER_WEIGHTS:
        if not _is_applied(filters.get(key)):
            continue
        complexity_score += weight
        applied_filters.append(applied_name)
        strategy['index_hints'].extend(hints)
        if recommendation:
            strategy['recommendations'].append(recommendation)

    if complexity_score >= 15:
        strategy.update(use_analytics_table=True, enable_caching=True, batch_size=50, estimated_performance='slow')
        strategy['recommendations'].append('High complexity query - strongly recommend analytics table')
    elif complexity_score >= 8:
        strategy.update(use_analytics_table=True, enable_caching=True, batch_size=75, estimated_performance='medium')
        strategy['recommendations'].append('Medium complexity query - analytics table recommended')
    elif complexity_score >= 4:
        strategy.update(enable_caching=True, batch_size=100, estimated_performance='medium')
        strategy['recommendations'].append('Consider analytics table for better performance')

    if len(applied_filters) > 6:
        strategy['recommendations'].append('Many filters applied - consider using saved filter presets')

    if 'search' in applied_filters and len(applied_filters) > 3:
        strategy['recommendations'].append(
            'Search combined with many filters may be slow - consider refining search terms'
        )

    strategy['complexity_score'] = complexity_score
    strategy['applied_filters'] = applied_filters
    return strategy

def _cache_value(value: Any) -> str:
    if isinstance(value, (list, tuple)):
        return ','.join(sorted(str(v) for v in value))
    return str(value)

def build_cache_key(filters: Dict[str, Any], sort: Optional[Dict[str, str]] = None,
                    pagination: Optional[Dict[str, int]] = None) -> str:
    filter_keys = sorted((filters or {}).keys())
    filter_values = [_cache_value(filters[key]) for key in filter_keys]
    sort_key = f"{sort['field']}_{sort['direction']}" if sort else 'default'
    page_key = f"{pagination['page']}_{pagination['limit']}" if pagination else 'default'

    raw = f"portfolio_{'_'.join(filter_keys)}_{'_'.join(filter_values)}_{sort_key}_{page_key}"
    return re.sub(r'[^a-zA-Z0-9_]', '_', raw)[:200]

def generate_optimized_query_config(filters: Dict[str, Any], sort: Optional[Dict[str, str]] = None,
                                    pagination: Optional[Dict[str, int]] = None) -> Dict[str, Any]:
    """Derive cache, timeout and parallelism settings for a filtered portfolio query."""
    filters = filters or {}
    strategy = analyze_filter_complexity(filters)
    performance = strategy['estimated_performance']

    if strategy['enable_caching']:
        cache_ttl = 300 if performance == 'fast' else 600
    else:
        cache_ttl = 0

    query_config = {
        'use_analytics_table': strategy['use_analytics_table'],
        'enable_parallel_processing': performance == 'slow',
        'cache_key': build_cache_key(filters, sort, pagination),
        'cache_ttl': cache_ttl,
        'query_timeout': 30000 if performance == 'slow' else 15000
    }

    warnings = []
    if performance == 'slow':
        warnings.append('Query may take longer than 5 seconds to complete')
    if not strategy['use_analytics_table'] and len(filters) > 5:
        warnings.append('Consider using analytics table for better performance with multiple filters')

    return {
        'query_config': query_config,
        'index_recommendations': strategy['index_hints'],
        'performance_warnings': warnings
    }

def analyze_query_performance(metrics: Dict[str, Any]) -> Dict[str, Any]:
    """
    Review measured query metrics.

    Args:
        metrics: execution_time (ms), rows_scanned, rows_returned, cache_hit,
            indexes_used and performance_grade ('A'..'F')

    Returns:
        is_optimal flag, suggestions and critical issues
    """
    suggestions = []
    critical_issues = []

    execution_time = metrics.get('execution_time', 0) or 0
    rows_scanned = metrics.get('rows_scanned', 0) or 0
    rows_returned = metrics.get('rows_returned', 0) or 0
    grade = str(metrics.get('performance_grade') or 'F').upper()

    if execution_time > 5000:
        critical_issues.append('Query execution time exceeds 5 seconds')
        suggestions.append('Consider using analytics table or adding appropriate indexes')
    elif execution_time > 2000:
        suggestions.append('Query execution time could be improved with better indexing')

    scan_efficiency = rows_returned / max(rows_scanned, 1)
    if scan_efficiency < 0.1:
        critical_issues.append('Low scan efficiency - scanning too many rows')
        suggestions.append('Add more selective indexes or refine filter criteria')
    elif scan_efficiency < 0.3:
        suggestions.append('Scan efficiency could be improved with better indexing')

    if not metrics.get('cache_hit') and execution_time > 1000:
        suggestions.append('Enable query caching for frequently used filter combinations')

    if not metrics.get('indexes_used') and rows_scanned > 100:
        critical_issues.append('No indexes used for query with significant row scan')
        suggestions.append('Add appropriate indexes for filter criteria')

    if grade in ('D', 'F'):
        critical_issues.append('Poor query performance grade')
        suggestions.append('Immediate optimization required')

    return {
        'is_optimal': not critical_issues and grade in ('A', 'B'),
        'suggestions': suggestions,
        'critical_issues': critical_issues
    }

def generate_optimization_report(filters: Dict[str, Any],
                                 performance_metrics: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Summarise strategy, index recommendations and prioritised action items."""
    filters = filters or {}
    strategy = analyze_filter_complexity(filters)
    config = generate_optimized_query_config(filters)
    performance_analysis = analyze_query_performance(performance_metrics) if performance_metrics else None

    action_items = []

    if strategy['estimated_performance'] == 'slow' and not strategy['use_analytics_table']:
        action_items.append({
            'priority': 'high',
            'action': 'Implement analytics table for complex filtering',
            'impact': 'Reduce query time from 10+ seconds to under 2 seconds'
        })

    if performance_analysis and performance_analysis['critical_issues']:
        action_items.append({
            'priority': 'high',
            'action': 'Address critical performance issues',
            'impact': 'Prevent query timeouts and improve user experience'
        })

    if strategy['index_hints']:
        action_items.append({
            'priority': 'medium',
            'action': 'Add recommended database indexes',
            'impact': 'Improve query performance by 30-50%'
        })

    if not strategy['enable_caching'] and len(filters) > 3:
        action_items.append({
            'priority': 'medium',
            'action': 'Enable query result caching',
            'impact': 'Reduce repeated query execution time by 80%'
        })

    if strategy['recommendations']:
        action_items.append({
            'priority': 'low',
            'action': 'Consider optimization recommendations',
            'impact': 'Further improve query performance and maintainability'
        })

    summary = (
        f"Query complexity: {strategy['estimated_performance'].upper()} | "
        f"Filters applied: {len(filters)} | "
        f"Analytics table recommended: {'YES' if strategy['use_analytics_table'] else 'NO'} | "
        f"Caching recommended: {'YES' if strategy['enable_caching'] else 'NO'}"
    )

    return {
        'summary': summary,
        'strategy': strategy,
        'index_recommendations': config['index_recommendations'],
        'performance_analysis': performance_analysis,
        'action_items': action_items
    }
