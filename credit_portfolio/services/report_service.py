"""
Report Service
Report templates, generation jobs, section content, schedules and data export
"""

import calendar
import io
import json
import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import pandas as pd

from credit_portfolio import db
from credit_portfolio.models import DocumentProcessingRequest, ReportGenerationJob, ReportTemplate, ScheduledReport
from credit_portfolio.services.portfolio_analytics import (
    PortfolioAnalyticsService,
    audit_qualification_status,
    epfo_compliance_status,
    extract_financial_summary,
    gst_compliance_status,
)
from credit_portfolio.utils import statistics
from credit_portfolio.utils.dates import utcnow, isoformat, parse_iso_datetime
from credit_portfolio.utils.validators import DataValidator

logger = logging.getLogger(__name__)

REPORT_FORMATS = ['pdf', 'excel', 'csv']
EXPORT_FORMATS = ['csv', 'excel', 'pdf', 'json']
EXPORT_DATA_TYPES = ['portfolio', 'companies', 'analytics', 'compliance']
TEMPLATE_CATEGORIES = ['portfolio', 'risk', 'compliance', 'financial', 'custom']
SCHEDULE_FREQUENCIES = ['daily', 'weekly', 'monthly', 'quarterly']

FILE_EXTENSIONS = {'csv': 'csv', 'excel': 'xlsx', 'json': 'json', 'pdf': 'pdf'}
MIME_TYPES = {
    'csv': 'text/csv',
    'excel': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
    'json': 'application/json',
    'pdf': 'application/pdf'
}

HIGH_RISK_GRADES = ('cm4', 'cm5')
TOP_PERFORMER_MIN_SCORE = 70
CRORE = 10000000

BUILT_IN_TEMPLATES = [
    {
        'id': 'portfolio-overview',
        'name': 'Portfolio Overview Report',
        'description': 'Comprehensive portfolio analysis with risk distribution and key metrics',
        'category': 'portfolio',
        'sections': ['executive-summary', 'portfolio-overview', 'risk-distribution', 'industry-breakdown',
                     'top-performers'],
        'defaultFormat': 'pdf'
    },
    {
        'id': 'risk-assessment',
        'name': 'Risk Assessment Report',
        'description': 'Detailed risk analysis with parameter scoring and compliance status',
        'category': 'risk',
        'sections': ['risk-distribution', 'parameter-analysis', 'high-risk-companies', 'compliance-status',
                     'recommendations'],
        'defaultFormat': 'pdf'
    },
    {
        'id': 'compliance-report',
        'name': 'Compliance Status Report',
        'description': 'GST and EPFO compliance analysis with regulatory insights',
        'category': 'compliance',
        'sections': ['compliance-status', 'gst-analysis', 'epfo-analysis', 'recommendations'],
        'defaultFormat': 'excel'
    },
    {
        'id': 'financial-analysis',
        'name': 'Financial Performance Report',
        'description': 'Multi-year financial analysis with peer benchmarking',
        'category': 'financial',
        'sections': ['financial-summary', 'trend-analysis', 'peer-comparison', 'recommendations'],
        'defaultFormat': 'pdf'
    },
    {
        'id': 'executive-summary',
        'name': 'Executive Summary Report',
        'description': 'High-level portfolio overview for executive stakeholders',
        'category': 'portfolio',
        'sections': ['executive-summary', 'top-performers', 'high-risk-companies', 'recommendations'],
        'defaultFormat': 'pdf'
    },
    {
        'id': 'regulatory-compliance',
        'name': 'Regulatory Compliance Report',
        'description': 'Comprehensive compliance analysis for regulatory submissions',
        'category': 'compliance',
        'sections': ['compliance-status', 'gst-analysis', 'epfo-analysis', 'audit-qualifications',
                     'directors-analysis'],
        'defaultFormat': 'excel'
    }
]

BUILT_IN_TEMPLATE_IDS = {template['id'] for template in BUILT_IN_TEMPLATES}
DEFAULT_SECTIONS = ['executive-summary']

class ReportGenerationError(Exception):
    """Raised when report content or a file cannot be produced."""

class UnsupportedFormatError(ReportGenerationError):
    """Raised for formats that are accepted but not rendered on the server (PDF)."""

    def __init__(self, file_format):
        self.format = file_format
        super().__init__(f'{file_format.upper()} rendering is not available; use csv, excel or json')

# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------

def built_in_templates() -> List[Dict]:
    return [dict(template, isBuiltIn=True, createdBy='System', usageCount=0) for template in BUILT_IN_TEMPLATES]

def get_template_sections(template_id: str, user_id: Optional[str] = None) -> List[str]:
    """Sections of a built-in or custom template, executive summary when unknown."""
    for template in BUILT_IN_TEMPLATES:
        if template['id'] == template_id:
            return list(template['sections'])

    if user_id:
        custom = ReportTemplate.query.filter_by(id=template_id, user_id=user_id).first()
        if custom and custom.sections:
            return list(custom.sections)

    return list(DEFAULT_SECTIONS)

def validate_template(data: Dict) -> Optional[str]:
    if not data.get('name') or not data.get('sections'):
        return 'Missing required fields: name and sections'
    if not isinstance(data['sections'], list):
        return 'Sections must be a list'
    if data.get('category') and data['category'] not in TEMPLATE_CATEGORIES:
        return f"Category must be one of: {', '.join(TEMPLATE_CATEGORIES)}"
    if data.get('defaultFormat') and data['defaultFormat'] not in REPORT_FORMATS:
        return f"Format must be one of: {', '.join(REPORT_FORMATS)}"
    return None

# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

def validate_report_config(data: Dict) -> Optional[str]:
    """First problem with a report generation request, or None."""
    if not data.get('templateId') or not data.get('name') or not data.get('sections'):
        return 'Missing required fields: templateId, name, and sections'
    if not isinstance(data['sections'], list):
        return 'Sections must be a list'
    file_format = data.get('format', 'pdf')
    if file_format not in REPORT_FORMATS:
        return f"Format must be one of: {', '.join(REPORT_FORMATS)}"
    return None

def validate_schedule(schedule: Optional[Dict]) -> Optional[str]:
    if not isinstance(schedule, dict):
        return 'Schedule is required'
    if schedule.get('frequency') not in SCHEDULE_FREQUENCIES:
        return f"Frequency must be one of: {', '.join(SCHEDULE_FREQUENCIES)}"
    try:
        _parse_time(schedule.get('time') or '')
    except ValueError as e:
        return str(e)
    day_of_week = schedule.get('dayOfWeek')
    if day_of_week is not None and (not isinstance(day_of_week, int) or not 0 <= day_of_week <= 6):
        return 'Day of week must be between 0 (Sunday) and 6 (Saturday)'
    day_of_month = schedule.get('dayOfMonth')
    if day_of_month is not None and (not isinstance(day_of_month, int) or not 1 <= day_of_month <= 31):
        return 'Day of month must be between 1 and 31'
    return None

def validate_scheduled_report(data: Dict) -> Optional[str]:
    """First problem with a scheduled report payload, or None."""
    recipients = data.get('recipients') or []
    if not data.get('name') or not data.get('templateId') or not recipients:
        return 'Missing required fields: name, templateId, and recipients'

    invalid_emails = [email for email in recipients if not DataValidator.validate_email(email)]
    if invalid_emails:
        return f"Invalid email addresses: {', '.join(str(e) for e in invalid_emails)}"

    if data.get('format', 'pdf') not in REPORT_FORMATS:
        return f"Format must be one of: {', '.join(REPORT_FORMATS)}"

    return validate_schedule(data.get('schedule'))

def validate_export_config(data: Dict) -> Optional[str]:
    if not data.get('format') or not data.get('dataType') or not data.get('fields'):
        return 'Missing required fields: format, dataType, and fields'
    if data['dataType'] not in EXPORT_DATA_TYPES:
        return f"Unsupported data type: {data['dataType']}"
    if data['format'] not in EXPORT_FORMATS:
        return f"Unsupported format: {data['format']}"
    return None

# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------

def _parse_time(value: str) -> Tuple[int, int]:
    try:
        hours, minutes = (int(part) for part in value.split(':'))
    except (TypeError, ValueError):
        raise ValueError('Time must be in HH:MM format')
    if not 0 <= hours <= 23 or not 0 <= minutes <= 59:
        raise ValueError('Time must be in HH:MM format')
    return hours, minutes

def _with_day(value, year, month, day):
    """Move to year/month, clamping the day to the month length."""
    last_day = calendar.monthrange(year, month)[1]
    return value.replace(year=year, month=month, day=min(day, last_day))

def calculate_next_run(schedule: Dict, now=None):
    """
    Next UTC run time for a schedule.

    Daily runs move to tomorrow once today's time has passed. Weekly runs use
    dayOfWeek with 0 = Sunday (Monday when unset). Monthly runs use
    dayOfMonth (1 when unset), clamped to short months. Quarterly runs fall on
    the first day of the next calendar quarter.

    Raises:
        ValueError: unknown frequency or malformed time
    """
    now = now or utcnow()
    hours, minutes = _parse_time(schedule.get('time') or '')
    next_run = now.replace(hour=hours, minute=minutes, second=0, microsecond=0)
    frequency = schedule.get('frequency')

    if frequency == 'daily':
        if next_run <= now:
            next_run += timedelta(days=1)

    elif frequency == 'weekly':
        target = schedule.get('dayOfWeek')
        target = 1 if target is None else target
        current = (next_run.weekday() + 1) % 7
        days_until = target - current
        if days_until < 0 or (days_until == 0 and next_run <= now):
            days_until += 7
        next_run += timedelta(days=days_until)

    elif frequency == 'monthly':
        target_day = schedule.get('dayOfMonth') or 1
        next_run = _with_day(next_run, next_run.year, next_run.month, target_day)
        if next_run <= now:
            year, month = (next_run.year + 1, 1) if next_run.month == 12 else (next_run.year, next_run.month + 1)
            next_run = _with_day(next_run, year, month, target_day)

    elif frequency == 'quarterly':
        next_quarter_month = (next_run.month - 1) // 3 * 3 + 4
        if next_quarter_month > 12:
            next_run = next_run.replace(year=next_run.year + 1, month=1, day=1)
        else:
            next_run = next_run.replace(month=next_quarter_month, day=1)

    else:
        raise ValueError(f'Unsupported frequency: {frequency}')

    return next_run

def apply_scheduled_report(report: ScheduledReport, data: Dict, now=None) -> ScheduledReport:
    """Copy a validated payload onto a scheduled report row and refresh next_run_at."""
    schedule = data['schedule']
    report.name = data['name']
    report.description = data.get('description')
    report.template_id = data['templateId']
    report.frequency = schedule['frequency']
    report.day_of_week = schedule.get('dayOfWeek')
    report.day_of_month = schedule.get('dayOfMonth')
    report.time = schedule['time']
    report.recipients = data['recipients']
    report.format = data.get('format', 'pdf')
    report.filters = data.get('filters') or {}
    report.is_active = bool(data.get('isActive', True))
    report.next_run_at = calculate_next_run(report.schedule, now)
    return report

# ---------------------------------------------------------------------------
# Portfolio data
# ---------------------------------------------------------------------------

def fetch_report_data(filters: Optional[Dict], user_id: str) -> List[Dict]:
    """
    Completed companies for a user, narrowed by report filters.

    Supported filters: industries, riskGrades (case-insensitive), regions
    (registered-address state), companyIds (request ids) and dateRange
    {start, end} on completion time.
    """
    filters = filters or {}
    query = DocumentProcessingRequest.query.filter_by(user_id=user_id, status='completed')

    if filters.get('industries'):
        query = query.filter(DocumentProcessingRequest.industry.in_(filters['industries']))

    if filters.get('riskGrades'):
        grades = [str(grade).lower() for grade in filters['riskGrades']]
        query = query.filter(db.func.lower(DocumentProcessingRequest.risk_grade).in_(grades))

    if filters.get('companyIds'):
        query = query.filter(DocumentProcessingRequest.request_id.in_(filters['companyIds']))

    date_range = filters.get('dateRange') or {}
    start = parse_iso_datetime(date_range.get('start'))
    end = parse_iso_datetime(date_range.get('end'))
    if start:
        query = query.filter(DocumentProcessingRequest.completed_at >= start)
    if end:
        query = query.filter(DocumentProcessingRequest.completed_at <= end)

    companies = [row.to_dict() for row in query.order_by(DocumentProcessingRequest.completed_at.desc()).all()]

    regions = {str(region).lower() for region in filters.get('regions') or []}
    if regions:
        companies = [c for c in companies if _company_state(c).lower() in regions]

    return companies

def _company_state(company: Dict) -> str:
    address = ((company.get('extracted_data') or {}).get('about_company') or {}).get('registered_address') or {}
    return str(address.get('state') or '')

def _score(company: Dict) -> float:
    score = company.get('risk_score')
    return float(score) if isinstance(score, (int, float)) else 0.0

def _limit(company: Dict) -> float:
    limit = company.get('recommended_limit')
    return float(limit) if isinstance(limit, (int, float)) else 0.0

def _average(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0

# ---------------------------------------------------------------------------
# Section generators
# ---------------------------------------------------------------------------

def count_risk_grades(companies: List[Dict]) -> Dict[str, int]:
    """Companies per risk grade as stored, 'Ungraded' for missing grades."""
    counts = {}
    for company in companies:
        grade = company.get('risk_grade') or 'Ungraded'
        counts[grade] = counts.get(grade, 0) + 1
    return counts

def generate_executive_summary(companies: List[Dict]) -> Dict[str, Any]:
    total = len(companies)
    exposure = sum(_limit(c) for c in companies)
    avg_score = _average([_score(c) for c in companies])
    high_risk = sum(1 for c in companies if str(c.get('risk_grade') or '').lower() == 'cm4')

    return {
        'totalCompanies': total,
        'totalExposure': exposure,
        'avgRiskScore': avg_score,
        'riskDistribution': count_risk_grades(companies),
        'keyInsights': [
            f"Portfolio contains {total} companies with total exposure of ₹{exposure / CRORE:.1f}Cr",
            f"Average risk score is {avg_score:.1f}%",
            f"{high_risk} companies are in high-risk category (CM4)"
        ]
    }

def generate_portfolio_overview(companies: List[Dict]) -> Dict[str, Any]:
    industries = {}
    statuses = {}
    for company in companies:
        industry = company.get('industry') or 'Unknown'
        industries[industry] = industries.get(industry, 0) + 1
        status = company.get('status') or 'unknown'
        statuses[status] = statuses.get(status, 0) + 1

    return {
        'totalCompanies': len(companies),
        'totalExposure': sum(_limit(c) for c in companies),
        'industryDistribution': industries,
        'processingStatus': statuses
    }

def _score_range(score: float) -> str:
    if score >= 80:
        return 'Excellent'
    if score >= 60:
        return 'Good'
    if score >= 40:
        return 'Average'
    if score >= 20:
        return 'Poor'
    return 'Critical'

def generate_risk_distribution(companies: List[Dict]) -> Dict[str, Any]:
    ranges = {'Excellent': 0, 'Good': 0, 'Average': 0, 'Poor': 0, 'Critical': 0}
    for company in companies:
        ranges[_score_range(_score(company))] += 1

    return {
        'riskGrades': count_risk_grades(companies),
        'riskScoreRanges': ranges
    }

def generate_industry_breakdown(companies: List[Dict]) -> Dict[str, Any]:
    breakdown = {}
    for company in companies:
        industry = company.get('industry') or 'Unknown'
        entry = breakdown.setdefault(industry, {'count': 0, 'totalExposure': 0, 'avgRiskScore': 0, 'companies': []})
        entry['count'] += 1
        entry['totalExposure'] += _limit(company)
        entry['companies'].append({
            'name': company.get('company_name'),
            'riskScore': company.get('risk_score'),
            'riskGrade': company.get('risk_grade')
        })

    for entry in breakdown.values():
        entry['avgRiskScore'] = _average([c['riskScore'] for c in entry['companies']
                                          if isinstance(c['riskScore'], (int, float))])

    return breakdown

def generate_parameter_analysis(companies: List[Dict]) -> Dict[str, Any]:
    """Per-parameter score statistics over each company's allScores."""
    parameters = {}
    for company in companies:
        for score in (company.get('risk_analysis') or {}).get('allScores') or []:
            if not isinstance(score, dict) or not isinstance(score.get('score'), (int, float)):
                continue
            entry = parameters.setdefault(score.get('parameter') or 'Unknown', {
                'scores': [],
                'category': score.get('category') or 'Unknown'
            })
            entry['scores'].append(score['score'])

    for entry in parameters.values():
        entry['avg'] = _average(entry['scores'])
        entry['min'] = min(entry['scores'])
        entry['max'] = max(entry['scores'])

    return parameters

def generate_compliance_status(companies: List[Dict]) -> Dict[str, Any]:
    total = len(companies)
    gst_compliant = sum(
        1 for c in companies
        if ((c.get('extracted_data') or {}).get('gst_records') or {}).get('active_gstins')
    )
    epfo_compliant = sum(
        1 for c in companies
        if ((c.get('extracted_data') or {}).get('epfo_records') or {}).get('establishments')
    )

    return {
        'gstCompliance': {'compliant': gst_compliant, 'nonCompliant': total - gst_compliant, 'total': total},
        'epfoCompliance': {'compliant': epfo_compliant, 'nonCompliant': total - epfo_compliant, 'total': total}
    }

def generate_financial_summary(companies: List[Dict]) -> Dict[str, Any]:
    revenues, margins, leverage = [], [], []
    with_financials = 0

    for company in companies:
        summary = extract_financial_summary(company.get('extracted_data'))
        if summary is None:
            continue
        with_financials += 1
        if summary['revenue'] is not None:
            revenues.append(summary['revenue'])
        if summary['ebitda_margin'] is not None:
            margins.append(summary['ebitda_margin'])
        if summary['debt_equity'] is not None:
            leverage.append(summary['debt_equity'])

    return {
        'totalRevenue': sum(revenues),
        'avgEbitdaMargin': round(_average(margins), 2),
        'avgDebtEquity': round(_average(leverage), 2),
        'companiesWithFinancials': with_financials
    }

def generate_top_performers(companies: List[Dict]) -> List[Dict]:
    performers = [c for c in companies if _score(c) >= TOP_PERFORMER_MIN_SCORE]
    performers.sort(key=_score, reverse=True)

    return [{
        'name': c.get('company_name'),
        'industry': c.get('industry'),
        'riskScore': c.get('risk_score'),
        'riskGrade': c.get('risk_grade'),
        'recommendedLimit': c.get('recommended_limit')
    } for c in performers[:10]]

def _risk_factors(company: Dict) -> List[str]:
    factors = []
    if _score(company) < 30:
        factors.append('Very low risk score')
    extracted = company.get('extracted_data') or {}
    if (extracted.get('charges') or {}).get('open_charges'):
        factors.append('Outstanding charges')
    if extracted.get('legal_cases'):
        factors.append('Legal cases')
    return factors

def generate_high_risk_companies(companies: List[Dict]) -> List[Dict]:
    high_risk = [c for c in companies if str(c.get('risk_grade') or '').lower() in HIGH_RISK_GRADES]
    high_risk.sort(key=_score)

    return [{
        'name': c.get('company_name'),
        'industry': c.get('industry'),
        'riskScore': c.get('risk_score'),
        'riskGrade': c.get('risk_grade'),
        'riskFactors': _risk_factors(c)
    } for c in high_risk]

def generate_recommendations(companies: List[Dict]) -> List[Dict]:
    recommendations = []
    if not companies:
        return recommendations

    high_risk = sum(1 for c in companies if str(c.get('risk_grade') or '').lower() in HIGH_RISK_GRADES)
    high_risk_share = high_risk / len(companies) * 100
    if high_risk_share > 20:
        recommendations.append({
            'type': 'risk',
            'title': 'High Risk Concentration',
            'description': f'{high_risk_share:.1f}% of portfolio is in high-risk categories. '
                           'Consider portfolio rebalancing.',
            'priority': 'high'
        })

    avg_score = _average([_score(c) for c in companies])
    if avg_score < 50:
        recommendations.append({
            'type': 'performance',
            'title': 'Portfolio Performance',
            'description': 'Average risk score is below 50%. Focus on improving portfolio quality.',
            'priority': 'medium'
        })

    return recommendations

SECTION_GENERATORS = {
    'executive-summary': ('executiveSummary', generate_executive_summary),
    'portfolio-overview': ('portfolioOverview', generate_portfolio_overview),
    'risk-distribution': ('riskDistribution', generate_risk_distribution),
    'industry-breakdown': ('industryBreakdown', generate_industry_breakdown),
    'parameter-analysis': ('parameterAnalysis', generate_parameter_analysis),
    'compliance-status': ('complianceStatus', generate_compliance_status),
    'financial-summary': ('financialSummary', generate_financial_summary),
    'top-performers': ('topPerformers', generate_top_performers),
    'high-risk-companies': ('highRiskCompanies', generate_high_risk_companies),
    'recommendations': ('recommendations', generate_recommendations),
}

def generate_report_content(sections: List[str], companies: List[Dict]) -> Dict[str, Any]:
    """Content keyed by section; sections without a generator are skipped."""
    content = {}
    for section_id in sections:
        generator = SECTION_GENERATORS.get(section_id)
        if generator is None:
            logger.debug(f"No generator for report section {section_id}")
            continue
        key, func = generator
        content[key] = func(companies)
    return content

# ---------------------------------------------------------------------------
# Jobs
# ---------------------------------------------------------------------------

def report_file_url(job: ReportGenerationJob) -> str:
    return f"/api/reports/download/{job.id}.{job.format}"

def create_report_job(user_id: str, data: Dict, scheduled_report_id: Optional[str] = None) -> ReportGenerationJob:
    job = ReportGenerationJob(
        user_id=user_id,
        template_id=data['templateId'],
        scheduled_report_id=scheduled_report_id,
        name=data['name'],
        description=data.get('description'),
        format=data.get('format', 'pdf'),
        sections=list(data['sections']),
        filters=data.get('filters') or {},
        status='pending'
    )
    db.session.add(job)
    db.session.flush()
    return job

def run_report_job(job: ReportGenerationJob) -> ReportGenerationJob:
    """
    Build a report job's content: pending -> processing -> completed or failed.

    Failures are recorded on the job rather than raised; the caller commits.
    """
    job.status = 'processing'
    db.session.flush()

    try:
        companies = fetch_report_data(job.filters, job.user_id)
        job.content = generate_report_content(job.sections or [], companies)
        job.file_url = report_file_url(job)
        job.status = 'completed'
        job.completed_at = utcnow()
        logger.info(f"Report {job.id} generated with {len(companies)} companies")
    except (ReportGenerationError, ValueError, KeyError, TypeError) as e:
        logger.error(f"Report {job.id} generation failed: {str(e)}")
        job.status = 'failed'
        job.error_message = str(e)

    return job

def record_template_usage(template_id: str, user_id: str) -> None:
    template = ReportTemplate.query.filter_by(id=template_id, user_id=user_id).first()
    if template:
        template.usage_count = (template.usage_count or 0) + 1

def run_scheduled_report(report: ScheduledReport, now=None) -> ReportGenerationJob:
    """Manual run of a schedule: new job with the template's sections, last run updated."""
    now = now or utcnow()
    job = create_report_job(report.user_id, {
        'templateId': report.template_id,
        'name': f"{report.name} - Manual Run",
        'description': f"Manual execution of scheduled report: {report.description or ''}",
        'format': report.format,
        'sections': get_template_sections(report.template_id, report.user_id),
        'filters': report.filters or {}
    }, scheduled_report_id=report.id)

    report.last_run_at = now
    return run_report_job(job)

# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

def generate_csv(rows: List[Dict], include_headers: bool = True, metadata: Optional[Dict] = None) -> str:
    """
    Render rows as CSV text.

    Metadata, when given, is written first as '# Key: value' comment lines
    followed by a blank line. Values containing commas are quoted.
    """
    content = ''
    if metadata:
        content += '# Export Metadata\n'
        for key, value in metadata.items():
            rendered = json.dumps(value) if isinstance(value, (dict, list)) else value
            content += f"# {key}: {rendered}\n"
        content += '\n'

    if rows:
        frame = pd.DataFrame(rows)
        content += frame.to_csv(index=False, header=include_headers, lineterminator='\n')

    return content

def _sheet_name(name: str) -> str:
    return str(name)[:31] or 'Sheet1'

def generate_excel(sheets: Dict[str, List[Dict]]) -> io.BytesIO:
    """Workbook with one sheet per entry, written through pandas and xlsxwriter."""
    output = io.BytesIO()
    with pd.ExcelWriter(output, engine='xlsxwriter') as writer:
        for name, rows in sheets.items():
            frame = pd.DataFrame(rows) if rows else pd.DataFrame({'info': ['No data']})
            frame.to_excel(writer, index=False, sheet_name=_sheet_name(name))
    output.seek(0)
    return output

def flatten_report_content(content: Optional[Dict]) -> Dict[str, List[Dict]]:
    """Tabular rows per report section for CSV and Excel output."""
    tables = {}
    for section, value in (content or {}).items():
        if isinstance(value, list):
            tables[section] = [_flatten_row(item) if isinstance(item, dict) else {'value': item} for item in value]
        elif isinstance(value, dict):
            tables[section] = [{'metric': key, 'value': _cell(item)} for key, item in value.items()]
        else:
            tables[section] = [{'metric': section, 'value': value}]
    return tables

def _cell(value):
    return json.dumps(value) if isinstance(value, (dict, list)) else value

def _flatten_row(row: Dict) -> Dict:
    return {key: _cell(value) for key, value in row.items()}

def render_report(job: ReportGenerationJob, file_format: Optional[str] = None) -> Tuple[Any, str, str]:
    """
    Render a completed job's content.

    Returns:
        (body, mimetype, filename)

    Raises:
        UnsupportedFormatError: PDF requested
    """
    file_format = file_format or job.format
    filename = f"{job.id}.{FILE_EXTENSIONS.get(file_format, file_format)}"

    if file_format == 'pdf':
        raise UnsupportedFormatError(file_format)

    if file_format == 'json':
        body = json.dumps({'report': job.to_dict(), 'content': job.content or {}}, default=str)
    elif file_format == 'csv':
        rows = []
        for section, section_rows in flatten_report_content(job.content).items():
            rows.extend(dict(row, section=section) for row in section_rows)
        body = generate_csv(rows, metadata={'Report': job.name, 'Generated': isoformat(job.completed_at)})
    elif file_format == 'excel':
        body = generate_excel(flatten_report_content(job.content))
    else:
        raise ReportGenerationError(f'Unsupported format: {file_format}')

    return body, MIME_TYPES[file_format], filename

# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def _portfolio_rows(companies: List[Dict], fields: List[str]) -> List[Dict]:
    total_exposure = sum(_limit(c) for c in companies)
    row = {}
    for field in fields:
        if field == 'total_companies':
            row[field] = len(companies)
        elif field == 'total_exposure':
            row[field] = total_exposure
        elif field == 'risk_distribution':
            row[field] = json.dumps(count_risk_grades(companies))
        elif field == 'industry_breakdown':
            row[field] = json.dumps({k: v['count'] for k, v in generate_industry_breakdown(companies).items()})
        elif field == 'performance_metrics':
            row[field] = json.dumps({
                'totalCompanies': len(companies),
                'avgRiskScore': _average([_score(c) for c in companies]),
                'totalExposure': total_exposure
            })
    return [row] if row else []

def _company_rows(companies: List[Dict], fields: List[str]) -> List[Dict]:
    plain_fields = ('request_id', 'company_name', 'industry', 'risk_score', 'risk_grade', 'recommended_limit',
                    'completed_at')
    rows = []
    for company in companies:
        extracted = company.get('extracted_data') or {}
        row = {}
        for field in fields:
            if field in plain_fields:
                row[field] = company.get(field)
            elif field == 'financial_data':
                row[field] = json.dumps(extract_financial_summary(extracted) or {})
            elif field == 'compliance_status':
                row[field] = json.dumps({
                    'gst': gst_compliance_status(extracted),
                    'epfo': epfo_compliance_status(extracted),
                    'audit': audit_qualification_status(extracted)
                })
            elif field == 'directors':
                row[field] = json.dumps(extracted.get('directors') or [])
            elif field == 'charges':
                row[field] = json.dumps(extracted.get('charges') or {})
        rows.append(row)
    return rows

def _analytics_rows(companies: List[Dict], fields: List[str]) -> List[Dict]:
    industry_scores = {}
    for company in companies:
        if isinstance(company.get('risk_score'), (int, float)):
            industry_scores.setdefault(company.get('industry') or 'Unknown', []).append(company['risk_score'])

    rows = []
    for company in companies:
        risk_analysis = company.get('risk_analysis') or {}
        peers = industry_scores.get(company.get('industry') or 'Unknown', [])
        row = {'request_id': company.get('request_id'), 'company_name': company.get('company_name')}
        for field in fields:
            if field == 'parameter_scores':
                row[field] = json.dumps(risk_analysis.get('allScores') or [])
            elif field == 'benchmark_comparison':
                row[field] = json.dumps({
                    'companyScore': company.get('risk_score'),
                    'industryMedian': statistics.median(peers) if peers else None,
                    'industryBest': max(peers) if peers else None
                })
            elif field == 'model_performance':
                row[field] = json.dumps({
                    'availableParameters': company.get('available_parameters'),
                    'totalParameters': company.get('total_parameters'),
                    'grade': (risk_analysis.get('overallGrade') or {}).get('grade')
                })
            elif field == 'category_results':
                row[field] = json.dumps({
                    category: (risk_analysis.get(f'{category.lower()}Result') or {}).get('percentage')
                    for category in ('Financial', 'Business', 'Hygiene', 'Banking')
                })
        rows.append(row)
    return rows

def _compliance_rows(companies: List[Dict], fields: List[str]) -> List[Dict]:
    rows = []
    for company in companies:
        extracted = company.get('extracted_data') or {}
        row = {'request_id': company.get('request_id'), 'company_name': company.get('company_name')}
        for field in fields:
            if field == 'gst_records':
                row[field] = json.dumps(extracted.get('gst_records') or {})
            elif field == 'epfo_records':
                row[field] = json.dumps(extracted.get('epfo_records') or {})
            elif field == 'filing_status':
                row[field] = json.dumps({
                    'gstFiling': gst_compliance_status(extracted),
                    'epfoFiling': epfo_compliance_status(extracted)
                })
            elif field == 'compliance_scores':
                summary = PortfolioAnalyticsService.calculate_compliance_status([company])
                row[field] = json.dumps(summary)
            elif field == 'audit_qualifications':
                row[field] = json.dumps(extracted.get('audit_qualifications') or [])
        rows.append(row)
    return rows

EXPORT_TRANSFORMS = {
    'portfolio': _portfolio_rows,
    'companies': _company_rows,
    'analytics': _analytics_rows,
    'compliance': _compliance_rows,
}

def build_export_rows(data_type: str, companies: List[Dict], fields: List[str]) -> List[Dict]:
    transform = EXPORT_TRANSFORMS.get(data_type)
    if transform is None:
        raise ReportGenerationError(f'Unsupported data type: {data_type}')
    return transform(companies, fields)

def export_filename(data_type: str, file_format: str, now=None) -> str:
    timestamp = isoformat(now or utcnow()).replace(':', '-').replace('.', '-')
    return f"{data_type}_export_{timestamp}.{FILE_EXTENSIONS.get(file_format, file_format)}"

def export_data(config: Dict, user_id: str, now=None) -> Dict[str, Any]:
    """
    Export filtered portfolio data.

    Returns:
        Dictionary with body, mimetype, filename and record_count

    Raises:
        UnsupportedFormatError: PDF requested
        ReportGenerationError: unknown data type or format
    """
    now = now or utcnow()
    data_type = config['dataType']
    file_format = config['format']

    if file_format == 'pdf':
        raise UnsupportedFormatError(file_format)

    companies = fetch_report_data(config.get('filters'), user_id)
    rows = build_export_rows(data_type, companies, config['fields'])
    filename = export_filename(data_type, file_format, now)

    metadata = None
    if config.get('includeMetadata'):
        metadata = {
            'Generated': isoformat(now),
            'Data Type': data_type,
            'Record Count': len(rows),
            'Filters': config.get('filters') or {}
        }

    if file_format == 'csv':
        body = generate_csv(rows, include_headers=config.get('includeHeaders', True), metadata=metadata)
    elif file_format == 'excel':
        body = generate_excel({data_type: rows})
    elif file_format == 'json':
        payload = {'data': rows}
        if metadata:
            payload['metadata'] = {
                'generated': metadata['Generated'],
                'dataType': data_type,
                'recordCount': len(rows),
                'filters': metadata['Filters']
            }
        body = json.dumps(payload, default=str)
    else:
        raise ReportGenerationError(f'Unsupported format: {file_format}')

    logger.info(f"Exported {len(rows)} {data_type} records as {file_format}")

    return {
        'body': body,
        'mimetype': MIME_TYPES[file_format],
        'filename': filename,
        'record_count': len(rows)
    }
