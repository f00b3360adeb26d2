"""Integration tests for analytics endpoints."""

import pytest

from conftest import make_company


class TestPortfolioAnalytics:
    """Test aggregate analytics over completed companies."""

    def test_overview_excludes_unfinished_requests(self, client, auth_headers, companies) -> None:
        response = client.get('/api/analytics/overview', headers=auth_headers)

        data = response.get_json()['data']
        assert response.status_code == 200
        assert data['metrics']['total_companies'] == 3
        assert data['metrics']['total_exposure'] == 120000000
        assert data['metrics']['average_risk_score'] == pytest.approx(57.0)
        assert data['metadata']['filters_applied'] is False

    def test_overview_with_filters(self, client, auth_headers, companies) -> None:
        response = client.get('/api/analytics/overview?industries=Textiles', headers=auth_headers)

        data = response.get_json()['data']
        assert data['metrics']['total_companies'] == 2
        assert data['metadata']['filters_applied'] is True

    def test_risk_parameters(self, client, auth_headers, companies) -> None:
        response = client.get('/api/analytics/risk-parameters', headers=auth_headers)

        analysis = response.get_json()['data']['analysis']
        assert 'Financial' in analysis['category_performance']
        assert analysis['parameter_benchmarks']

    def test_industry_breakdown_sorted_by_count(self, client, auth_headers, companies) -> None:
        response = client.get('/api/analytics/industry-breakdown', headers=auth_headers)

        industries = response.get_json()['data']['breakdown']['industries']
        assert industries[0]['name'] == 'Textiles'
        assert industries[0]['count'] == 2

    def test_eligibility(self, client, auth_headers, companies) -> None:
        response = client.get('/api/analytics/eligibility', headers=auth_headers)

        assert response.get_json()['data']['eligibility']['total_eligible_amount'] == 110000000

    def test_compliance(self, client, auth_headers, companies) -> None:
        response = client.get('/api/analytics/compliance', headers=auth_headers)

        compliance = response.get_json()['data']['compliance']
        assert compliance['audit_status']['qualified'] == 1

    def test_correlations(self, client, auth_headers, companies) -> None:
        response = client.get('/api/analytics/correlations', headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()['data']['metadata']['sample_size'] == 3

    @pytest.mark.parametrize("endpoint", ['overview', 'risk-parameters', 'correlations'])
    def test_malformed_date_filter(self, client, auth_headers, companies, endpoint) -> None:
        response = client.get(f'/api/analytics/{endpoint}?date_from=not-a-date', headers=auth_headers)

        assert response.status_code == 400
        assert response.get_json()['error'] == 'Invalid query parameters'


class TestModelPerformance:
    """Test the scoring model performance endpoint."""

    def test_invalid_model_type(self, client, auth_headers) -> None:
        response = client.get('/api/analytics/model-performance?model_type=hybrid', headers=auth_headers)

        assert response.status_code == 400

    def test_empty_portfolio(self, client, auth_headers) -> None:
        response = client.get('/api/analytics/model-performance', headers=auth_headers)

        assert response.status_code == 200
        assert response.get_json()['data']['model_performance']['overall_accuracy'] == 0

    def test_no_analysis_data(self, client, auth_headers, user) -> None:
        make_company(user, risk_analysis={})

        response = client.get('/api/analytics/model-performance', headers=auth_headers)

        assert response.status_code == 404

    def test_filtered_by_model_type(self, client, auth_headers, companies) -> None:
        response = client.get('/api/analytics/model-performance?model_type=with_banking'
                              '&include_validation=true&include_parameter_analysis=true',
                              headers=auth_headers)

        data = response.get_json()['data']
        assert response.status_code == 200
        assert data['metadata']['total_companies_analyzed'] == 1
        assert data['metadata']['total_companies_in_portfolio'] == 3
        assert 'validation_analysis' in data
        assert 'parameter_analysis' in data
        assert set(data['model_comparison']) == {'with_banking', 'without_banking'}
