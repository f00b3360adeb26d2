"""Unit tests for portfolio query optimization heuristics."""

import re

from credit_portfolio.services.query_optimization import (
    RECOMMENDED_INDEXES,
    analyze_filter_complexity,
    analyze_query_performance,
    build_cache_key,
    generate_optimization_report,
    generate_optimized_query_config,
)


class TestFilterComplexity:
    """Test complexity scoring of filter criteria."""

    def test_simple_filter_is_fast(self) -> None:
        strategy = analyze_filter_complexity({'risk_grades': ['cm1']})

        assert strategy['complexity_score'] == 1
        assert strategy['estimated_performance'] == 'fast'
        assert strategy['enable_caching'] is False
        assert strategy['index_hints'] == ['risk_grade_idx']

    def test_empty_lists_are_not_counted(self) -> None:
        """An empty list filter means no restriction."""
        strategy = analyze_filter_complexity({'risk_grades': [], 'regions': ['Maharashtra']})

        assert strategy['complexity_score'] == 3
        assert strategy['applied_filters'] == ['regions']
        assert 'Consider using analytics table for region filtering' in strategy['recommendations']

    def test_compliance_filter_counts_twice(self) -> None:
        """Compliance status adds both its indexed weight and its analytics weight."""
        strategy = analyze_filter_complexity({'gst_compliance_status': ['Regular']})

        assert strategy['complexity_score'] == 5
        assert strategy['applied_filters'] == ['gst_compliance_status', 'gst_compliance']
        assert strategy['estimated_performance'] == 'medium'
        assert strategy['enable_caching'] is True
        assert strategy['use_analytics_table'] is False

    def test_medium_threshold_recommends_analytics_table(self) -> None:
        strategy = analyze_filter_complexity({
            'ebitda_margin_range': {'min': 10, 'max': 30},
            'regions': ['Karnataka'],
        })

        assert strategy['complexity_score'] == 8
        assert strategy['use_analytics_table'] is True
        assert strategy['batch_size'] == 75

    def test_financial_ranges_are_slow(self) -> None:
        strategy = analyze_filter_complexity({
            'ebitda_margin_range': {'min': 10, 'max': 30},
            'debt_equity_range': {'min': 0, 'max': 2},
            'current_ratio_range': {'min': 1, 'max': 3},
        })

        assert strategy['complexity_score'] == 15
        assert strategy['estimated_performance'] == 'slow'
        assert strategy['batch_size'] == 50
        assert 'High complexity query - strongly recommend analytics table' in strategy['recommendations']

    def test_industries_alias_for_sectors(self) -> None:
        strategy = analyze_filter_complexity({'industries': ['Steel']})

        assert 'sectors' in strategy['applied_filters']
        assert 'sector_idx' in strategy['index_hints']

    def test_search_with_many_filters_warns(self) -> None:
        strategy = analyze_filter_complexity({
            'search_query': 'textiles',
            'risk_grades': ['cm1'],
            'regions': ['Gujarat'],
            'cities': ['Surat'],
        })

        assert any('Search combined with many filters' in r for r in strategy['recommendations'])


class TestCacheKey:
    """Test cache key derivation."""

    def test_list_order_does_not_change_key(self) -> None:
        first = build_cache_key({'risk_grades': ['cm2', 'cm1'], 'industries': ['Steel']})
        second = build_cache_key({'industries': ['Steel'], 'risk_grades': ['cm1', 'cm2']})

        assert first == second

    def test_key_is_sanitised_and_bounded(self) -> None:
        key = build_cache_key(
            {'search_query': 'Reliance & Sons / Mumbai ' * 20},
            sort={'field': 'risk_score', 'direction': 'desc'},
            pagination={'page': 2, 'limit': 20},
        )

        assert re.fullmatch(r'[A-Za-z0-9_]+', key)
        assert len(key) <= 200

    def test_defaults_for_missing_sort_and_page(self) -> None:
        assert build_cache_key({}).endswith('default_default')


class TestOptimizedQueryConfig:
    """Test derived query settings."""

    def test_slow_query_settings(self) -> None:
        result = generate_optimized_query_config({
            'ebitda_margin_range': {'min': 10},
            'debt_equity_range': {'max': 2},
            'current_ratio_range': {'min': 1},
        })

        config = result['query_config']
        assert config['enable_parallel_processing'] is True
        assert config['cache_ttl'] == 600
        assert config['query_timeout'] == 30000
        assert 'Query may take longer than 5 seconds to complete' in result['performance_warnings']

    def test_fast_query_settings(self) -> None:
        config = generate_optimized_query_config({'risk_grades': ['cm1']})['query_config']

        assert config['cache_ttl'] == 0
        assert config['query_timeout'] == 15000


class TestQueryPerformance:
    """Test review of measured query metrics."""

    def test_poor_metrics_raise_critical_issues(self) -> None:
        analysis = analyze_query_performance({
            'execution_time': 6000,
            'rows_scanned': 1000,
            'rows_returned': 50,
            'cache_hit': False,
            'indexes_used': [],
            'performance_grade': 'F',
        })

        assert analysis['is_optimal'] is False
        assert len(analysis['critical_issues']) == 4
        assert 'Enable query caching for frequently used filter combinations' in analysis['suggestions']

    def test_good_metrics_are_optimal(self) -> None:
        analysis = analyze_query_performance({
            'execution_time': 120,
            'rows_scanned': 100,
            'rows_returned': 80,
            'cache_hit': True,
            'indexes_used': ['idx_portfolio_risk_grade'],
            'performance_grade': 'a',
        })

        assert analysis['is_optimal'] is True
        assert analysis['critical_issues'] == []


class TestOptimizationReport:
    """Test the combined optimization report."""

    def test_report_summary_and_actions(self) -> None:
        report = generate_optimization_report({'risk_grades': ['cm1'], 'industries': ['Textiles']})

        assert report['summary'].startswith('Query complexity: FAST | Filters applied: 2')
        assert report['performance_analysis'] is None
        assert {'priority': 'medium', 'action': 'Add recommended database indexes',
                'impact': 'Improve query performance by 30-50%'} in report['action_items']

    def test_critical_metrics_add_high_priority_action(self) -> None:
        report = generate_optimization_report(
            {'risk_grades': ['cm1']},
            {'execution_time': 9000, 'rows_scanned': 10, 'rows_returned': 10,
             'indexes_used': ['idx'], 'performance_grade': 'C'},
        )

        assert report['action_items'][0]['priority'] == 'high'
        assert report['performance_analysis']['critical_issues'] == ['Query execution time exceeds 5 seconds']

    def test_index_hints_have_ddl(self) -> None:
        """Every hint for an indexed column filter maps to index DDL."""
        strategy = analyze_filter_complexity({
            'risk_grades': ['cm1'], 'risk_score_range': {'min': 40}, 'date_range': {'start': '2025-01-01'},
        })

        assert all(hint in RECOMMENDED_INDEXES for hint in strategy['index_hints'])
