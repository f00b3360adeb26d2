"""Integration tests for GST filing endpoints."""

import pytest

from credit_portfolio.models import AuditLog
from credit_portfolio.services.gst_api_service import GSTAPIError, WhitebooksClient

GSTIN = '27AAACR5055K1Z7'
OTHER_GSTIN = '29AABCK1234M1Z5'

FILINGS = [
    {'rtntype': 'GSTR3B', 'ret_prd': '042024', 'dof': '20-05-2024', 'mof': 'ONLINE',
     'arn': 'AA270424123456A', 'status': 'Filed', 'valid': 'Y'},
]


@pytest.fixture
def provider(monkeypatch):
    """Provider stub: filings for GSTIN, an error for every other GSTIN."""
    calls = []

    def fetch_filings(self, gstin, financial_year):
        calls.append(gstin)
        if gstin != GSTIN:
            raise GSTAPIError('Whitebooks API error: Invalid GSTIN')
        return {'status_cd': '1', 'data': {'EFiledlist': FILINGS}}

    monkeypatch.setattr(WhitebooksClient, 'fetch_filings', fetch_filings)
    return calls


def refresh_url(company):
    return f'/api/portfolio/{company.request_id}/gst-refresh'


class TestRefresh:
    """Test quota-limited refreshes."""

    def test_refresh(self, client, auth_headers, companies, provider) -> None:
        company = companies['strong']

        response = client.post(refresh_url(company), headers=auth_headers,
                               json={'gstins': [GSTIN, OTHER_GSTIN], 'financial_year': '2024-25'})

        data = response.get_json()['data']
        assert response.status_code == 200
        assert data['summary'] == {'successful': 1, 'cached': 0, 'failed': 1}
        assert len(AuditLog.for_resource(company.id, 'gst_data_refreshed')) == 1

        status = client.get(refresh_url(company), headers=auth_headers).get_json()['data']
        assert status['refresh_count'] == 1
        assert status['can_refresh'] is True

    def test_second_refresh_uses_cache_and_third_is_rejected(self, client, auth_headers, companies,
                                                            provider) -> None:
        url = refresh_url(companies['strong'])
        payload = {'gstins': [GSTIN], 'financial_year': '2024-25'}

        client.post(url, headers=auth_headers, json=payload)
        second = client.post(url, headers=auth_headers, json=payload)
        third = client.post(url, headers=auth_headers, json=payload)

        assert second.get_json()['data']['summary']['cached'] == 1
        assert provider == [GSTIN]
        assert third.status_code == 429
        assert third.get_json()['error'] == 'Refresh limit exceeded'

    def test_unconfigured_provider_fails_per_gstin(self, client, auth_headers, companies) -> None:
        response = client.post(refresh_url(companies['strong']), headers=auth_headers,
                               json={'gstins': [GSTIN], 'financial_year': '2024-25'})

        result = response.get_json()['data']['results'][0]
        assert result['status'] == 'failed'
        assert 'credentials' in result['error']

    @pytest.mark.parametrize("payload,error", [
        ({'financial_year': '2024-25'}, 'Missing GSTINs'),
        ({'gstins': [GSTIN]}, 'Missing financial year'),
        ({'gstins': [GSTIN], 'financial_year': '2024'}, 'Invalid financial year'),
        ({'gstins': ['NOT-A-GSTIN'], 'financial_year': '2024-25'}, 'Invalid GSTIN'),
    ])
    def test_invalid_payload(self, client, auth_headers, companies, payload, error) -> None:
        response = client.post(refresh_url(companies['strong']), headers=auth_headers, json=payload)

        assert response.status_code == 400
        assert response.get_json()['error'] == error

    def test_unknown_company(self, client, auth_headers) -> None:
        response = client.post('/api/portfolio/req_missing/gst-refresh', headers=auth_headers,
                               json={'gstins': [GSTIN], 'financial_year': '2024-25'})

        assert response.status_code == 404


class TestCachedData:
    """Test cached filing lookups and usage."""

    def test_gst_data_after_refresh(self, client, auth_headers, companies, provider) -> None:
        company = companies['strong']
        client.post(refresh_url(company), headers=auth_headers,
                    json={'gstins': [GSTIN], 'financial_year': '2024-25'})

        response = client.get(f'/api/portfolio/{company.request_id}/gst-data?gstin={GSTIN}'
                              '&financial_year=2024-25', headers=auth_headers)

        data = response.get_json()['data']
        assert len(data['filing_data']) == 1
        assert data['data_freshness']['is_fresh'] is True
        assert data['data_freshness']['last_updated'] is not None
        assert data['refresh_status']['refresh_count'] == 1

    def test_gst_data_requires_valid_gstin(self, client, auth_headers, companies) -> None:
        url = f"/api/portfolio/{companies['strong'].request_id}/gst-data"

        assert client.get(url, headers=auth_headers).status_code == 400
        assert client.get(f'{url}?gstin=123', headers=auth_headers).status_code == 400

    def test_cache_check(self, client, auth_headers, companies) -> None:
        response = client.post(f"/api/portfolio/{companies['strong'].request_id}/gst-data", headers=auth_headers,
                               json={'gstins': [GSTIN], 'financial_year': '2024-25'})

        assert response.get_json()['data']['summary'] == {'total': 1, 'cached': 0, 'stale': 1, 'errors': 0}

    def test_usage(self, client, auth_headers, companies, provider) -> None:
        client.post(refresh_url(companies['strong']), headers=auth_headers,
                    json={'gstins': [GSTIN, OTHER_GSTIN], 'financial_year': '2024-25'})

        response = client.get('/api/gst/usage', headers=auth_headers)

        data = response.get_json()['data']
        assert data['total_requests'] == 2
        assert data['total_cost'] == pytest.approx(0.1)
