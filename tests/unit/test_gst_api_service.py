"""Unit tests for the GST filing client and cache-first refresh service."""

from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from credit_portfolio import db
from credit_portfolio.models import GstApiRequest, GstFilingData, GstRefreshJob
from credit_portfolio.services.gst_api_service import (
    GSTAPIError,
    GstApiService,
    RefreshLimitExceeded,
    WhitebooksClient,
)

GOOD_GSTIN = '27AAACR5055K1Z7'
BAD_GSTIN = '29AABCK1234M1Z5'

FILINGS = [
    {'rtntype': 'GSTR3B', 'ret_prd': '042024', 'dof': '20-05-2024', 'mof': 'ONLINE',
     'arn': 'AA270424123456A', 'status': 'Filed', 'valid': 'Y'},
    {'rtntype': 'GSTR1', 'ret_prd': '042024', 'dof': '11-05-2024', 'mof': 'ONLINE',
     'arn': 'AA270424654321B', 'status': 'Filed', 'valid': 'Y'},
    {'rtntype': 'GSTR1', 'ret_prd': '052024', 'dof': '-', 'mof': '', 'arn': '', 'status': 'Not Filed',
     'valid': 'N'},
]


def whitebooks_handler(calls):
    """Mock provider: filings for GOOD_GSTIN, an error payload for anything else."""
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if request.url.params.get('gstin') == GOOD_GSTIN:
            return httpx.Response(200, json={'status_cd': '1', 'data': {'EFiledlist': FILINGS}})
        return httpx.Response(200, json={'status_cd': '0', 'status_desc': 'Invalid GSTIN'})
    return handler


def make_client(handler, **overrides):
    options = dict(
        base_url='https://api.whitebooks.in/public',
        client_id='client-123',
        client_secret='secret-456',
        email='gst@lender.in',
        transport=httpx.MockTransport(handler),
    )
    options.update(overrides)
    return WhitebooksClient(**options)


@pytest.fixture
def calls():
    return []


@pytest.fixture
def service(app, calls):
    return GstApiService(client=make_client(whitebooks_handler(calls)))


class TestWhitebooksClient:
    """Test the provider client."""

    def test_fetch_filings(self, calls) -> None:
        client = make_client(whitebooks_handler(calls))

        payload = client.fetch_filings(GOOD_GSTIN, '2024-25')

        assert payload['data']['EFiledlist'] == FILINGS
        request = calls[0]
        assert request.url.path == '/public/rettrack'
        assert request.url.params['fy'] == '2024-25'
        assert request.url.params['email'] == 'gst@lender.in'
        assert request.headers['client_id'] == 'client-123'

    def test_error_status_code_in_payload(self, calls) -> None:
        client = make_client(whitebooks_handler(calls))

        with pytest.raises(GSTAPIError, match='Invalid GSTIN'):
            client.fetch_filings(BAD_GSTIN, '2024-25')

    def test_http_error(self) -> None:
        client = make_client(lambda request: httpx.Response(503))

        with pytest.raises(GSTAPIError, match='503'):
            client.fetch_filings(GOOD_GSTIN, '2024-25')

    def test_missing_credentials(self, calls) -> None:
        client = make_client(whitebooks_handler(calls), client_secret=None)

        with pytest.raises(GSTAPIError, match='credentials'):
            client.fetch_filings(GOOD_GSTIN, '2024-25')
        assert calls == []


class TestGstRefresh:
    """Test multi-GSTIN refresh with caching and quotas."""

    def test_refresh_stores_filings_and_records_failures(self, service, user) -> None:
        result = service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN, BAD_GSTIN], '2024-25')

        statuses = {r['gstin']: r['status'] for r in result['results']}
        assert statuses == {GOOD_GSTIN: 'success', BAD_GSTIN: 'failed'}

        stored = GstFilingData.query.filter_by(gstin=GOOD_GSTIN).all()
        assert len(stored) == 3
        assert {row.date_of_filing for row in stored} == {date(2024, 5, 20), date(2024, 5, 11), None}

        job = db.session.get(GstRefreshJob, result['job_id'])
        assert job.status == 'completed'
        assert job.processed_gstins == 1
        assert job.failed_gstins == 1
        assert job.progress == 100

        logged = {r.gstin: r for r in GstApiRequest.query.all()}
        assert logged[GOOD_GSTIN].cost_inr == pytest.approx(0.10)
        assert logged[BAD_GSTIN].cost_inr == 0.0
        assert logged[BAD_GSTIN].response_status == 400

    def test_provider_connection_closed_after_refresh(self, service, user) -> None:
        service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN], '2024-25')

        assert service.client._client is None

    def test_fresh_data_served_from_cache(self, service, user, calls) -> None:
        service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN], '2024-25')
        result = service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN], '2024-25')

        assert result['results'][0]['status'] == 'cached'
        assert len(result['results'][0]['data']) == 3
        assert len(calls) == 1

    def test_refresh_replaces_stale_cache(self, service, user) -> None:
        service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN], '2024-25')
        for row in GstFilingData.query.all():
            row.fetched_at = datetime.now(timezone.utc) - timedelta(days=10)
        db.session.commit()

        assert service.is_data_fresh(GOOD_GSTIN, '2024-25') is False

        result = service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN], '2024-25')

        assert result['results'][0]['status'] == 'success'
        assert GstFilingData.query.filter_by(gstin=GOOD_GSTIN).count() == 3

    def test_quota_is_enforced(self, service, user) -> None:
        service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN], '2024-25')
        service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN], '2024-25')

        with pytest.raises(RefreshLimitExceeded, match='2 times per month'):
            service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN], '2024-25')

        # Quotas are per company
        assert service.get_refresh_status(user.id, 'req_2')['can_refresh'] is True


class TestRefreshQuota:
    """Test the rolling refresh window."""

    def test_days_until_reset(self, service, user) -> None:
        start = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
        service.increment_refresh_count(user.id, 'req_1', now=start)
        db.session.commit()

        status = service.get_refresh_status(user.id, 'req_1', now=start + timedelta(days=10))

        assert status['refresh_count'] == 1
        assert status['can_refresh'] is True
        assert status['days_until_reset'] == 20

    def test_window_resets(self, service, user) -> None:
        start = datetime(2025, 6, 1, 9, 0, tzinfo=timezone.utc)
        service.increment_refresh_count(user.id, 'req_1', now=start)
        service.increment_refresh_count(user.id, 'req_1', now=start + timedelta(days=1))
        db.session.commit()

        assert service.get_refresh_status(user.id, 'req_1', now=start + timedelta(days=2))['can_refresh'] is False

        later = start + timedelta(days=31)
        assert service.get_refresh_status(user.id, 'req_1', now=later)['refresh_count'] == 0

        quota = service.increment_refresh_count(user.id, 'req_1', now=later)
        assert quota.refresh_count == 1


class TestCachedDataAndUsage:
    """Test cache inspection and usage statistics."""

    def test_check_cached_data(self, service, user) -> None:
        service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN], '2024-25')

        result = service.check_cached_data([GOOD_GSTIN, BAD_GSTIN], '2024-25')
        assert result['summary'] == {'total': 2, 'cached': 1, 'stale': 1, 'errors': 0}

        forced = service.check_cached_data([GOOD_GSTIN], '2024-25', force_refresh=True)
        assert forced['results'][0]['status'] == 'stale'
        assert forced['results'][0]['needs_refresh'] is True

    def test_usage_stats(self, service, user) -> None:
        service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN, BAD_GSTIN], '2024-25')
        service.process_gst_refresh('req_1', user.id, [GOOD_GSTIN], '2024-25')

        stats = service.get_usage_stats(user.id)

        assert stats['total_requests'] == 3
        assert stats['successful_requests'] == 1
        assert stats['cached_requests'] == 1
        assert stats['failed_requests'] == 1
        assert stats['total_cost'] == pytest.approx(0.10)
