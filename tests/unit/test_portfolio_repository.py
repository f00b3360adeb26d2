"""Unit tests for portfolio listing, filtering, search and updates."""

from datetime import datetime, timezone

import pytest

from credit_portfolio.repositories.portfolio_repository import PortfolioRepository

from conftest import make_company


def names(result):
    return [company['company_name'] for company in result['companies']]


@pytest.fixture
def repository(user):
    return PortfolioRepository(user.id)


class TestOverview:
    """Test the default listing."""

    def test_default_sort_is_latest_completed(self, repository, companies) -> None:
        result = repository.get_portfolio_overview()

        assert result['total_count'] == 4
        assert names(result) == ['Pending Exports', 'Reliance Textiles Pvt Ltd', 'Kaveri Steel Industries',
                                 'Ganga Agro Foods']

    def test_scoped_to_user(self, repository, companies, other_user) -> None:
        make_company(other_user, company_name='Someone Else Ltd')

        result = repository.get_portfolio_overview()

        assert 'Someone Else Ltd' not in names(result)

    def test_pagination(self, repository, companies) -> None:
        first = repository.get_portfolio_overview(pagination={'page': 1, 'limit': 3})
        second = repository.get_portfolio_overview(pagination={'page': 2, 'limit': 3})

        assert first['has_next'] is True
        assert first['has_previous'] is False
        assert names(second) == ['Ganga Agro Foods']
        assert second['has_next'] is False
        assert second['has_previous'] is True

    def test_page_size_is_capped(self, app) -> None:
        paging = PortfolioRepository.normalize_pagination({'page': 0, 'limit': 10000})

        assert paging == {'page': 1, 'limit': app.config['PORTFOLIO_MAX_PAGE_SIZE']}

    def test_unknown_sort_field_falls_back(self) -> None:
        assert PortfolioRepository.normalize_sort({'field': 'password_hash'}) == {
            'field': 'completed_at', 'direction': 'desc'
        }

    def test_sort_by_analysis_score_puts_missing_last(self, repository, companies) -> None:
        result = repository.get_portfolio_overview(sort={'field': 'financial_score', 'direction': 'asc'})

        assert names(result) == ['Ganga Agro Foods', 'Kaveri Steel Industries', 'Reliance Textiles Pvt Ltd',
                                 'Pending Exports']

    def test_sort_by_name(self, repository, companies) -> None:
        result = repository.get_portfolio_overview(sort={'field': 'company_name', 'direction': 'asc'})

        assert names(result)[0] == 'Ganga Agro Foods'


class TestDatabaseFilters:
    """Test filters applied in SQL."""

    def test_risk_grades_are_case_insensitive(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({'risk_grades': ['CM1', 'cm3']})

        assert set(names(result)) == {'Reliance Textiles Pvt Ltd', 'Kaveri Steel Industries'}

    def test_risk_score_range(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({'risk_score_range': [50, 100]})

        assert set(names(result)) == {'Reliance Textiles Pvt Ltd', 'Kaveri Steel Industries'}

    def test_industries_and_status(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({'industries': ['Textiles', 'Exports'],
                                                    'processing_status': ['completed']})

        assert set(names(result)) == {'Reliance Textiles Pvt Ltd', 'Ganga Agro Foods'}

    def test_open_ended_limit_range(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({'recommended_limit_range': [20000000, None]})

        assert set(names(result)) == {'Reliance Textiles Pvt Ltd', 'Kaveri Steel Industries'}

    def test_date_range(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({'date_range': [
            datetime(2025, 6, 2, 0, 0, tzinfo=timezone.utc),
            datetime(2025, 6, 3, 23, 59, tzinfo=timezone.utc),
        ]})

        assert set(names(result)) == {'Reliance Textiles Pvt Ltd', 'Kaveri Steel Industries'}


class TestClientSideFilters:
    """Test filters over extracted JSON."""

    def test_gst_status(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({'gst_compliance_status': ['Irregular']})

        assert names(result) == ['Kaveri Steel Industries']

    def test_unknown_status_matches_missing_data(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({'epfo_compliance_status': ['Unknown']})

        assert names(result) == ['Pending Exports']

    def test_audit_status(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({'audit_qualification_status': ['Qualified']})

        assert names(result) == ['Kaveri Steel Industries']

    def test_ratio_range_excludes_companies_without_financials(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({'debt_equity_range': [0, 1]})

        assert names(result) == ['Reliance Textiles Pvt Ltd']

    def test_combined_ratio_ranges(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({
            'ebitda_margin_range': [5, 30],
            'current_ratio_range': [1.0, 1.5],
        })

        assert names(result) == ['Kaveri Steel Industries']

    def test_regions_and_cities(self, repository, companies) -> None:
        by_region = repository.get_portfolio_overview({'regions': ['karnataka']})
        by_city = repository.get_portfolio_overview({'cities': [' Kanpur ']})

        assert names(by_region) == ['Kaveri Steel Industries']
        assert names(by_city) == ['Ganga Agro Foods']

    def test_filtered_metrics(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({'industries': ['Textiles']})

        assert result['metrics']['total_companies'] == 2


class TestSearch:
    """Test free text search."""

    @pytest.mark.parametrize("term,expected", [
        ('suresh', ['Kaveri Steel Industries']),
        ('09AAGCG', ['Ganga Agro Foods']),
        ('bengaluru', ['Kaveri Steel Industries']),
        ('TEXTILES', ['Reliance Textiles Pvt Ltd', 'Ganga Agro Foods']),
    ])
    def test_search_terms(self, repository, companies, term, expected) -> None:
        result = repository.search_companies(term)

        assert names(result) == expected
        assert result['total_matches'] == len(expected)

    def test_search_skips_unfinished_requests(self, repository, companies) -> None:
        assert repository.search_companies('Pending')['total_matches'] == 0

    def test_search_query_in_overview(self, repository, companies) -> None:
        result = repository.get_portfolio_overview({'search_query': 'Pending'})

        assert names(result) == ['Pending Exports']


class TestRelatedData:
    """Test peers and benchmarks."""

    def test_related_companies(self, repository, companies) -> None:
        related = repository.get_related_companies('Textiles', companies['strong'].request_id)

        assert [c['company_name'] for c in related] == ['Ganga Agro Foods']
        assert 'extracted_data' not in related[0]

    def test_industry_benchmarks(self, repository, companies) -> None:
        benchmarks = repository.get_industry_benchmarks('Textiles')

        assert benchmarks['median_risk_score'] == pytest.approx(55.0)
        assert benchmarks['median_revenue'] == pytest.approx(45000000)
        assert benchmarks['peer_count'] == 2

    def test_no_benchmarks_without_peers(self, repository, companies) -> None:
        assert repository.get_industry_benchmarks('Shipping') is None
        assert repository.get_industry_benchmarks(None) is None


class TestUpdate:
    """Test field updates."""

    def test_update_reports_changes(self, repository, companies) -> None:
        company = companies['strong']

        changes = repository.update_company_data(company, {
            'risk_grade': 'CM2',
            'industry': 'Textiles',
            'risk_analysis': {'overallPercentage': 70},
            'status': 'failed',
        })

        assert changes == {'risk_grade': ['cm1', 'cm2'], 'risk_analysis': 'updated'}
        assert company.status == 'completed'
