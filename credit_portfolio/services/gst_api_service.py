"""
GST filing status service
Fetches return filing history from the Whitebooks GST API, caches it in
gst_filing_data and enforces per-company refresh quotas
"""

import logging
import math
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx
from flask import current_app

from credit_portfolio import db
from credit_portfolio.models import GstFilingData, GstApiRequest, GstRefreshJob, GstRefreshQuota
from credit_portfolio.utils.api_client import BaseAPIClient
from credit_portfolio.utils.dates import utcnow, as_utc, isoformat, parse_filing_date, parse_iso_datetime

logger = logging.getLogger(__name__)

RESPONSE_STATUS_BY_RESULT = {'success': 200, 'cached': 304, 'failed': 400}

class GSTAPIError(Exception):
    """Raised when the GST provider rejects a request or returns an error payload."""

class RefreshLimitExceeded(Exception):
    """Raised when a user has used up their refresh quota for a company."""

class WhitebooksClient(BaseAPIClient):
    """Client for the Whitebooks return tracking endpoint."""

    def __init__(self, base_url: str, client_id: Optional[str], client_secret: Optional[str],
                 email: Optional[str], timeout: float = 30.0,
                 transport: Optional[httpx.BaseTransport] = None):
        super().__init__(timeout=timeout, transport=transport)
        self._base_url = base_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.email = email

    @classmethod
    def from_app_config(cls, transport: Optional[httpx.BaseTransport] = None) -> 'WhitebooksClient':
        config = current_app.config
        return cls(
            base_url=config['WHITEBOOKS_BASE_URL'],
            client_id=config.get('WHITEBOOKS_CLIENT_ID'),
            client_secret=config.get('WHITEBOOKS_CLIENT_SECRET'),
            email=config.get('WHITEBOOKS_EMAIL'),
            timeout=config.get('WHITEBOOKS_TIMEOUT', 30.0),
            transport=transport
        )

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def default_headers(self) -> Dict[str, str]:
        return {
            'accept': '*/*',
            'client_id': self.client_id or '',
            'client_secret': self.client_secret or ''
        }

    @property
    def has_credentials(self) -> bool:
        return bool(self.email and self.client_id and self.client_secret)

    def fetch_filings(self, gstin: str, financial_year: str) -> Dict[str, Any]:
        """
        Fetch e-filed return list for a GSTIN and financial year.

        Returns:
            Provider payload with data.EFiledlist

        Raises:
            GSTAPIError: missing credentials, HTTP error or non-success status code
        """
        if not self.has_credentials:
            raise GSTAPIError('Incorrect Whitebooks credentials')

        response = self._make_request(
            'GET', '/rettrack',
            params={'gstin': gstin, 'fy': financial_year, 'email': self.email}
        )

        if response.is_error:
            raise GSTAPIError(f'Whitebooks API error: {response.status_code} {response.reason_phrase}')

        payload = response.json()
        if str(payload.get('status_cd')) != '1':
            raise GSTAPIError(f"Whitebooks API error: {payload.get('status_desc')}")

        return payload

class GstApiService:
    """Cache-first access to GST filing data with quota and cost tracking."""

    def __init__(self, client: Optional[WhitebooksClient] = None):
        config = current_app.config
        self.client = client or WhitebooksClient.from_app_config()
        self.max_refreshes = config.get('GST_MAX_REFRESHES', 2)
        self.window_days = config.get('GST_REFRESH_WINDOW_DAYS', 30)
        self.freshness_days = config.get('GST_FRESHNESS_DAYS', 7)
        self.api_cost = config.get('GST_API_COST_INR', 0.10)

    def _quota(self, user_id: str, request_id: str) -> Optional[GstRefreshQuota]:
        return GstRefreshQuota.query.filter_by(user_id=user_id, request_id=request_id).first()

    def get_refresh_status(self, user_id: str, request_id: str, now=None) -> Dict[str, Any]:
        """
        Refresh quota for a user and company.

        The window starts at the first refresh and resets after
        GST_REFRESH_WINDOW_DAYS.
        """
        now = now or utcnow()
        quota = self._quota(user_id, request_id)
        window = timedelta(days=self.window_days)

        if quota is None or now - as_utc(quota.period_start) >= window:
            return {
                'can_refresh': True,
                'refresh_count': 0,
                'max_refreshes': self.max_refreshes,
                'last_refresh_at': isoformat(quota.last_refresh_at) if quota else None,
                'days_until_reset': self.window_days
            }

        remaining = window - (now - as_utc(quota.period_start))
        return {
            'can_refresh': quota.refresh_count < self.max_refreshes,
            'refresh_count': quota.refresh_count,
            'max_refreshes': self.max_refreshes,
            'last_refresh_at': isoformat(quota.last_refresh_at),
            'days_until_reset': max(0, math.ceil(remaining.total_seconds() / 86400))
        }

    def increment_refresh_count(self, user_id: str, request_id: str, now=None) -> GstRefreshQuota:
        now = now or utcnow()
        quota = self._quota(user_id, request_id)

        if quota is None:
            quota = GstRefreshQuota(user_id=user_id, request_id=request_id, refresh_count=0, period_start=now)
            db.session.add(quota)
        elif now - as_utc(quota.period_start) >= timedelta(days=self.window_days):
            quota.refresh_count = 0
            quota.period_start = now

        quota.refresh_count += 1
        quota.last_refresh_at = now
        return quota

    def is_data_fresh(self, gstin: str, financial_year: str, max_age_days: Optional[int] = None) -> bool:
        """Whether cached filings for the GSTIN and year were fetched within max_age_days."""
        max_age_days = self.freshness_days if max_age_days is None else max_age_days
        cutoff = utcnow() - timedelta(days=max_age_days)
        return db.session.query(GstFilingData.id).filter(
            GstFilingData.gstin == gstin,
            GstFilingData.financial_year == financial_year,
            GstFilingData.fetched_at >= cutoff
        ).first() is not None

    def get_filing_data(self, gstin: str, financial_year: Optional[str] = None) -> List[Dict[str, Any]]:
        query = GstFilingData.query.filter_by(gstin=gstin)
        if financial_year:
            query = query.filter_by(financial_year=financial_year)
        rows = query.order_by(GstFilingData.fetched_at.desc(), GstFilingData.date_of_filing.desc()).all()
        return [row.to_dict() for row in rows]

    def store_filing_data(self, gstin: str, financial_year: str, filings: List[Dict[str, Any]]) -> int:
        """Replace cached filings for a GSTIN and year with a fresh provider result."""
        GstFilingData.query.filter_by(gstin=gstin, financial_year=financial_year).delete()

        fetched_at = utcnow()
        for filing in filings:
            db.session.add(GstFilingData(
                gstin=gstin,
                financial_year=financial_year,
                return_type=filing.get('rtntype'),
                return_period=filing.get('ret_prd'),
                date_of_filing=parse_filing_date(filing.get('dof')),
                filing_mode=filing.get('mof'),
                arn=filing.get('arn'),
                status=filing.get('status'),
                is_valid=filing.get('valid') == 'Y',
                data_source='whitebooks_api',
                fetched_at=fetched_at
            ))

        return len(filings)

    def log_api_request(self, request_id: str, user_id: str, gstin: str, financial_year: str,
                        status: str, response_data=None, error_message: Optional[str] = None) -> GstApiRequest:
        """Record a provider call; only successful calls are billed."""
        entry = GstApiRequest(
            request_id=request_id,
            user_id=user_id,
            gstin=gstin,
            financial_year=financial_year,
            api_provider='whitebooks',
            api_endpoint='/rettrack',
            response_data=response_data,
            response_status=RESPONSE_STATUS_BY_RESULT.get(status, 400),
            cost_inr=self.api_cost if status == 'success' else 0.0,
            status=status,
            error_message=error_message,
            completed_at=utcnow()
        )
        db.session.add(entry)
        return entry

    def _update_job(self, job: GstRefreshJob, processed: int, failed: int, status: Optional[str] = None,
                    results=None, error_details=None) -> None:
        if job.total_gstins:
            job.progress = round((processed + failed) / job.total_gstins * 100)
        job.processed_gstins = processed
        job.failed_gstins = failed

        if status:
            job.status = status
            if status == 'processing' and job.started_at is None:
                job.started_at = utcnow()
            if status in ('completed', 'failed'):
                job.completed_at = utcnow()

        if results is not None:
            job.results = results
        if error_details is not None:
            job.error_details = error_details

    def process_gst_refresh(self, request_id: str, user_id: str, gstins: List[str],
                            financial_year: str) -> Dict[str, Any]:
        """
        Refresh GST filings for several GSTINs of one company.

        Each GSTIN is served from cache when fresh, otherwise fetched from the
        provider; a failure for one GSTIN is recorded and processing continues.

        Returns:
            job_id and per-GSTIN results

        Raises:
            RefreshLimitExceeded: quota for this company is used up
        """
        refresh_status = self.get_refresh_status(user_id, request_id)
        if not refresh_status['can_refresh']:
            raise RefreshLimitExceeded(
                f"Refresh limit exceeded. You can refresh {refresh_status['max_refreshes']} times per month. "
                f"Next reset in {refresh_status['days_until_reset']} days."
            )

        job = GstRefreshJob(
            request_id=request_id,
            user_id=user_id,
            gstins=list(gstins),
            financial_year=financial_year,
            total_gstins=len(gstins),
            status='queued'
        )
        db.session.add(job)
        db.session.flush()

        results = []
        processed = 0
        failed = 0

        try:
            self._update_job(job, 0, 0, status='processing')

            for gstin in gstins:
                try:
                    if self.is_data_fresh(gstin, financial_year):
                        cached = self.get_filing_data(gstin, financial_year)
                        self.log_api_request(request_id, user_id, gstin, financial_year, 'cached', cached)
                        results.append({
                            'gstin': gstin,
                            'status': 'cached',
                            'data': cached,
                            'message': f'Using cached data (less than {self.freshness_days} days old)'
                        })
                    else:
                        payload = self.client.fetch_filings(gstin, financial_year)
                        filings = (payload.get('data') or {}).get('EFiledlist') or []
                        self.store_filing_data(gstin, financial_year, filings)
                        self.log_api_request(request_id, user_id, gstin, financial_year, 'success', payload)
                        results.append({
                            'gstin': gstin,
                            'status': 'success',
                            'data': filings,
                            'message': 'Fresh data fetched from API'
                        })
                    processed += 1
                except (GSTAPIError, httpx.HTTPError, ValueError) as e:
                    logger.error(f"GST refresh failed for {gstin}: {str(e)}")
                    self.log_api_request(request_id, user_id, gstin, financial_year, 'failed',
                                         error_message=str(e))
                    results.append({'gstin': gstin, 'status': 'failed', 'error': str(e)})
                    failed += 1

                self._update_job(job, processed, failed)

            self._update_job(job, processed, failed, status='completed', results=results)
            self.increment_refresh_count(user_id, request_id)
            db.session.commit()

        except Exception as e:
            db.session.rollback()
            logger.error(f"GST refresh job failed for {request_id}: {str(e)}")
            job = self._record_failed_job(request_id, user_id, gstins, financial_year,
                                          processed, failed, results, str(e))
            raise
        finally:
            self.client.close()

        logger.info(f"GST refresh {job.id} completed: {processed} processed, {failed} failed")
        return {'job_id': job.id, 'results': results}

    def _record_failed_job(self, request_id, user_id, gstins, financial_year, processed, failed,
                           results, error_message) -> GstRefreshJob:
        job = GstRefreshJob(
            request_id=request_id,
            user_id=user_id,
            gstins=list(gstins),
            financial_year=financial_year,
            total_gstins=len(gstins)
        )
        db.session.add(job)
        self._update_job(job, processed, failed, status='failed', results=results,
                         error_details={'error': error_message})
        job.progress = 0
        db.session.commit()
        return job

    def check_cached_data(self, gstins: List[str], financial_year: str,
                          force_refresh: bool = False) -> Dict[str, Any]:
        """Report which GSTINs have fresh cached data without calling the provider."""
        results = []
        for gstin in gstins:
            cached = self.get_filing_data(gstin, financial_year)
            if not force_refresh and self.is_data_fresh(gstin, financial_year):
                results.append({
                    'gstin': gstin,
                    'status': 'cached',
                    'data': cached,
                    'message': f'Using cached data (less than {self.freshness_days} days old)'
                })
            else:
                results.append({
                    'gstin': gstin,
                    'status': 'stale',
                    'data': cached,
                    'message': 'Data is stale, consider refreshing',
                    'needs_refresh': True
                })

        return {
            'financial_year': financial_year,
            'results': results,
            'summary': {
                'total': len(gstins),
                'cached': sum(1 for r in results if r['status'] == 'cached'),
                'stale': sum(1 for r in results if r['status'] == 'stale'),
                'errors': sum(1 for r in results if r['status'] == 'error')
            }
        }

    def get_usage_stats(self, user_id: str, start_date: Optional[str] = None,
                        end_date: Optional[str] = None) -> Dict[str, Any]:
        """Request counts by outcome and total cost for a user's provider calls."""
        query = GstApiRequest.query.filter_by(user_id=user_id)

        start = parse_iso_datetime(start_date)
        end = parse_iso_datetime(end_date)
        if start:
            query = query.filter(GstApiRequest.requested_at >= start)
        if end:
            query = query.filter(GstApiRequest.requested_at <= end)

        requests = query.order_by(GstApiRequest.requested_at.desc()).all()
        total_cost = sum(r.cost_inr or 0 for r in requests)

        return {
            'total_requests': len(requests),
            'successful_requests': sum(1 for r in requests if r.status == 'success'),
            'cached_requests': sum(1 for r in requests if r.status == 'cached'),
            'failed_requests': sum(1 for r in requests if r.status == 'failed'),
            'total_cost': round(float(total_cost), 2),
            'requests': [r.to_dict() for r in requests]
        }
