"""
Compliance and financial statement validation
Pydantic schemas for manually entered compliance data, business rules,
compliance scoring and financial ratio calculation
"""

import logging
from typing import Any, Dict, List, Literal, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator

from credit_portfolio.utils.dates import utcnow, parse_iso_datetime
from credit_portfolio.utils.validators import GSTIN_PATTERN, PINCODE_PATTERN

logger = logging.getLogger(__name__)

YearlyData = Dict[str, Optional[float]]

AUDIT_REQUIRED_ENTITIES = ['private_limited', 'public_limited', 'llp']
CLOSED_CASE_STATUSES = ['disposed', 'settled', 'withdrawn']

# Tolerance (INR) for totals that should reconcile
RECONCILIATION_TOLERANCE = 1

class Address(BaseModel):
    address_line_1: str = Field(..., min_length=1)
    address_line_2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., pattern=PINCODE_PATTERN.pattern)
    country: str = 'India'
    landmark: Optional[str] = None

class GSTRegistration(BaseModel):
    gstin: Optional[str] = None
    registration_date: Optional[str] = None
    registration_status: Literal['active', 'cancelled', 'suspended'] = 'active'
    business_nature: Optional[str] = None
    state_code: Optional[str] = None
    legal_name: Optional[str] = None
    trade_name: Optional[str] = None
    address: Optional[Address] = None

    @field_validator('gstin')
    @classmethod
    def check_gstin(cls, value):
        if value and not GSTIN_PATTERN.match(value):
            raise ValueError('Invalid GSTIN format')
        return value

class FilingHistory(BaseModel):
    return_period: str
    return_type: str
    due_date: str
    filing_date: Optional[str] = None
    status: Literal['filed', 'pending', 'late']
    delay_days: Optional[float] = Field(default=None, ge=0)

class FilingComplianceDetails(BaseModel):
    total_returns_due: float = Field(default=0, ge=0)
    returns_filed: float = Field(default=0, ge=0)
    returns_pending: float = Field(default=0, ge=0)
    compliance_percentage: float = Field(default=0, ge=0, le=100)
    last_filing_date: Optional[str] = None
    filing_history: List[FilingHistory] = Field(default_factory=list)

class GSTFilingCompliance(BaseModel):
    gstr1_compliance: FilingComplianceDetails
    gstr3b_compliance: FilingComplianceDetails
    annual_return_compliance: Optional[FilingComplianceDetails] = None

class GSTTurnoverDetails(BaseModel):
    annual_turnover: YearlyData = Field(default_factory=dict)
    taxable_turnover: YearlyData = Field(default_factory=dict)
    exempt_turnover: YearlyData = Field(default_factory=dict)
    export_turnover: YearlyData = Field(default_factory=dict)

class InputTaxCreditDetails(BaseModel):
    itc_availed: YearlyData = Field(default_factory=dict)
    itc_reversed: YearlyData = Field(default_factory=dict)
    itc_utilized: YearlyData = Field(default_factory=dict)

class GSTComplianceData(BaseModel):
    registrations: List[GSTRegistration] = Field(default_factory=list)
    filing_compliance: Optional[GSTFilingCompliance] = None
    turnover_details: Optional[GSTTurnoverDetails] = None
    input_tax_credit: Optional[InputTaxCreditDetails] = None

class EPFOEstablishment(BaseModel):
    establishment_code: Optional[str] = None
    establishment_name: Optional[str] = None
    registration_date: Optional[str] = None
    registration_status: Literal['active', 'inactive'] = 'active'
    address: Optional[Address] = None
    employee_count: float = Field(default=0, ge=0)
    active_members: float = Field(default=0, ge=0)
    monthly_contribution: float = Field(default=0, ge=0)

class ContributionHistory(BaseModel):
    month_year: str
    employees_covered: float = Field(..., ge=0)
    contribution_amount: float = Field(..., ge=0)
    contribution_status: Literal['paid', 'pending', 'defaulted']
    due_date: str
    payment_date: Optional[str] = None

class EPFOComplianceSummary(BaseModel):
    total_establishments: float = Field(default=0, ge=0)
    active_establishments: float = Field(default=0, ge=0)
    total_employees: float = Field(default=0, ge=0)
    compliance_percentage: float = Field(default=0, ge=0, le=100)
    contribution_history: List[ContributionHistory] = Field(default_factory=list)

class EPFOComplianceData(BaseModel):
    establishments: List[EPFOEstablishment] = Field(default_factory=list)
    compliance_summary: Optional[EPFOComplianceSummary] = None

class LegalCase(BaseModel):
    case_number: Optional[str] = None
    case_type: Literal['civil', 'criminal', 'tax', 'labor', 'regulatory', 'other'] = 'civil'
    court_name: Optional[str] = None
    filing_date: Optional[str] = None
    case_status: Literal['pending', 'disposed', 'settled', 'withdrawn'] = 'pending'
    case_description: Optional[str] = None
    amount_involved: Optional[float] = Field(default=None, ge=0)
    outcome: Optional[str] = None
    impact_assessment: Literal['low', 'medium', 'high'] = 'low'

class RegulatoryAction(BaseModel):
    action_type: str
    regulatory_body: str
    action_date: str
    description: str
    penalty_amount: Optional[float] = Field(default=None, ge=0)
    compliance_status: Literal['complied', 'pending', 'disputed']

class LicensePermit(BaseModel):
    license_type: str
    license_number: str
    issuing_authority: str
    issue_date: str
    expiry_date: Optional[str] = None
    renewal_status: Literal['current', 'expired', 'renewal_pending']
    compliance_status: Literal['compliant', 'non_compliant']

class LegalComplianceData(BaseModel):
    legal_cases: List[LegalCase] = Field(default_factory=list)
    regulatory_actions: List[RegulatoryAction] = Field(default_factory=list)
    licenses_permits: List[LicensePermit] = Field(default_factory=list)

class StatutoryAuditDetails(BaseModel):
    auditor_name: Optional[str] = None
    auditor_firm: Optional[str] = None
    audit_period: Optional[str] = None
    audit_opinion: Literal['unqualified', 'qualified', 'adverse', 'disclaimer'] = 'unqualified'
    key_audit_matters: List[str] = Field(default_factory=list)
    management_letter_points: List[str] = Field(default_factory=list)
    compliance_certificate: bool = False

class InternalAuditDetails(BaseModel):
    internal_auditor: str
    audit_frequency: str
    last_audit_date: str
    audit_scope: List[str]
    key_findings: Optional[List[str]] = None

class TaxAuditDetails(BaseModel):
    tax_auditor: str
    audit_period: str
    audit_report_date: str
    key_observations: Optional[List[str]] = None
    tax_compliance_certificate: bool = False

class OtherAuditDetails(BaseModel):
    audit_type: str
    auditor_name: str
    audit_date: str
    audit_findings: Optional[List[str]] = None

class AuditComplianceData(BaseModel):
    statutory_audit: Optional[StatutoryAuditDetails] = None
    internal_audit: Optional[InternalAuditDetails] = None
    tax_audit: Optional[TaxAuditDetails] = None
    other_audits: List[OtherAuditDetails] = Field(default_factory=list)

class ROCComplianceDetails(BaseModel):
    annual_filing_status: Literal['current', 'delayed', 'defaulted']
    last_filing_date: Optional[str] = None
    pending_filings: List[str] = Field(default_factory=list)
    compliance_score: float = Field(..., ge=0, le=100)

class FEMAComplianceDetails(BaseModel):
    fema_registrations: List[str] = Field(default_factory=list)
    compliance_status: Literal['compliant', 'non_compliant']
    pending_approvals: List[str] = Field(default_factory=list)

class LaborComplianceDetails(BaseModel):
    labor_licenses: List[LicensePermit] = Field(default_factory=list)
    compliance_certificates: List[str] = Field(default_factory=list)
    pending_renewals: List[str] = Field(default_factory=list)

class EnvironmentalComplianceDetails(BaseModel):
    environmental_clearances: List[str] = Field(default_factory=list)
    pollution_certificates: List[str] = Field(default_factory=list)
    compliance_status: Literal['compliant', 'non_compliant']

class RegulatoryComplianceData(BaseModel):
    roc_compliance: Optional[ROCComplianceDetails] = None
    fema_compliance: Optional[FEMAComplianceDetails] = None
    labor_compliance: Optional[LaborComplianceDetails] = None
    environmental_compliance: Optional[EnvironmentalComplianceDetails] = None

class ComplianceData(BaseModel):
    """Manually entered compliance data for one company."""
    gst_data: Optional[GSTComplianceData] = None
    epfo_data: Optional[EPFOComplianceData] = None
    legal_data: Optional[LegalComplianceData] = None
    audit_data: Optional[AuditComplianceData] = None
    regulatory_data: Optional[RegulatoryComplianceData] = None

def validation_error_map(error: ValidationError) -> Dict[str, List[str]]:
    """Flatten a pydantic ValidationError into a dotted field path -> messages map."""
    errors = {}
    for item in error.errors():
        field = '.'.join(str(part) for part in item['loc']) or '__root__'
        errors.setdefault(field, []).append(item['msg'])
    return errors

def parse_compliance_data(data: Dict) -> Tuple[Optional[ComplianceData], Dict[str, List[str]]]:
    """
    Validate raw compliance form data.

    Returns:
        (model, {}) when valid, (None, field errors) otherwise
    """
    try:
        return ComplianceData.model_validate(data or {}), {}
    except ValidationError as e:
        return None, validation_error_map(e)

def _is_future(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        return False
    return parsed is not None and parsed > utcnow()

def _location(address: Optional[Dict]) -> Optional[str]:
    if not address:
        return None
    return f"{address.get('city')}, {address.get('state')}"

def validate_compliance_business_rules(data: Dict, entity_type: str) -> List[str]:
    """
    Cross-field compliance rules that the schema cannot express.

    Args:
        data: Raw compliance data dictionary
        entity_type: Legal entity type, e.g. 'private_limited'

    Returns:
        List of human-readable rule violations
    """
    errors = []
    data = data or {}

    registrations = (data.get('gst_data') or {}).get('registrations') or []
    for index, registration in enumerate(registrations, start=1):
        gstin = registration.get('gstin')
        if gstin:
            if not GSTIN_PATTERN.match(gstin):
                errors.append(f'Invalid GSTIN format for registration {index}')
            state_code = registration.get('state_code')
            if state_code and gstin[:2] != state_code:
                errors.append(f"GSTIN state code doesn't match provided state code for registration {index}")

        if _is_future(registration.get('registration_date')):
            errors.append(f'Registration date cannot be in the future for GST registration {index}')

    establishments = (data.get('epfo_data') or {}).get('establishments') or []
    for index, establishment in enumerate(establishments, start=1):
        employee_count = establishment.get('employee_count')
        active_members = establishment.get('active_members')
        if employee_count and active_members and active_members > employee_count:
            errors.append(f'Active members cannot exceed total employees for establishment {index}')

        code = establishment.get('establishment_code')
        if code and len(code) < 10:
            errors.append(f'Establishment code appears to be invalid for establishment {index}')

    legal_cases = (data.get('legal_data') or {}).get('legal_cases') or []
    for index, legal_case in enumerate(legal_cases, start=1):
        if _is_future(legal_case.get('filing_date')):
            errors.append(f'Case filing date cannot be in the future for case {index}')

        amount = legal_case.get('amount_involved')
        if amount is not None and amount < 0:
            errors.append(f'Amount involved cannot be negative for case {index}')

        if legal_case.get('case_status') in CLOSED_CASE_STATUSES and not legal_case.get('outcome'):
            errors.append(f'Outcome is required for closed case {index}')

    if entity_type in AUDIT_REQUIRED_ENTITIES:
        statutory_audit = (data.get('audit_data') or {}).get('statutory_audit') or {}
        if not statutory_audit.get('auditor_name'):
            errors.append('Statutory audit details are required for this entity type')

    if registrations and establishments:
        gst_locations = {_location(r.get('address')) for r in registrations if r.get('address')}
        epfo_locations = {_location(e.get('address')) for e in establishments if e.get('address')}
        if gst_locations and epfo_locations and not gst_locations & epfo_locations:
            errors.append('GST and EPFO registrations should have at least one common business location')

    return errors

def calculate_compliance_score(data: Dict) -> int:
    """
    Compliance score (0-100) over up to four 25-point blocks.

    GST and EPFO blocks count only when registrations/establishments exist;
    the legal block starts full and loses points per case; the audit block
    is always counted.
    """
    data = data or {}
    total_score = 0.0
    max_score = 0

    gst_data = data.get('gst_data') or {}
    registrations = gst_data.get('registrations') or []
    if registrations:
        max_score += 25
        gst_score = 0.0
        for registration in registrations:
            if registration.get('gstin'):
                gst_score += 5
            if registration.get('registration_status') == 'active':
                gst_score += 5
            if registration.get('legal_name'):
                gst_score += 3
            if registration.get('address'):
                gst_score += 2

        filing_compliance = gst_data.get('filing_compliance')
        if filing_compliance:
            gstr3b = (filing_compliance.get('gstr3b_compliance') or {}).get('compliance_percentage') or 0
            gst_score += min(10, gstr3b / 10)

        total_score += min(25, gst_score)

    epfo_data = data.get('epfo_data') or {}
    establishments = epfo_data.get('establishments') or []
    if establishments:
        max_score += 25
        epfo_score = 0.0
        for establishment in establishments:
            if establishment.get('establishment_code'):
                epfo_score += 5
            if establishment.get('registration_status') == 'active':
                epfo_score += 5
            if (establishment.get('employee_count') or 0) > 0:
                epfo_score += 3
            if establishment.get('address'):
                epfo_score += 2

        summary_percentage = (epfo_data.get('compliance_summary') or {}).get('compliance_percentage')
        if summary_percentage:
            epfo_score += min(10, summary_percentage / 10)

        total_score += min(25, epfo_score)

    max_score += 25
    legal_score = 25
    impact_penalty = {'high': 10, 'medium': 5, 'low': 2}
    for legal_case in (data.get('legal_data') or {}).get('legal_cases') or []:
        legal_score -= impact_penalty.get(legal_case.get('impact_assessment'), 0)
        if legal_case.get('case_status') == 'pending':
            legal_score -= 3
    total_score += max(0, legal_score)

    max_score += 25
    audit_score = 0
    audit = (data.get('audit_data') or {}).get('statutory_audit')
    if audit:
        if audit.get('auditor_name'):
            audit_score += 5
        if audit.get('audit_opinion') == 'unqualified':
            audit_score += 10
        elif audit.get('audit_opinion') == 'qualified':
            audit_score += 5
        if audit.get('compliance_certificate'):
            audit_score += 5
        if audit.get('key_audit_matters') == []:
            audit_score += 5
    total_score += audit_score

    return int(round(total_score / max_score * 100)) if max_score > 0 else 0

def _year_value(series: Optional[Dict], year: str) -> Optional[float]:
    if not series:
        return None
    return series.get(year)

def _sum_group(group: Optional[Dict], year: str) -> float:
    """Sum one year across every line item of a statement group, treating gaps as zero."""
    return sum((item or {}).get(year) or 0 for item in (group or {}).values())

def calculate_total_assets(balance_sheet: Dict, year: str) -> Optional[float]:
    assets = (balance_sheet or {}).get('assets')
    if not assets:
        return None
    return _sum_group(assets.get('non_current_assets'), year) + _sum_group(assets.get('current_assets'), year)

def calculate_total_liabilities(balance_sheet: Dict, year: str) -> Optional[float]:
    liabilities = (balance_sheet or {}).get('owners_funds_and_liabilities')
    if not liabilities:
        return None
    return (_sum_group(liabilities.get('owners_fund'), year) +
            _sum_group(liabilities.get('non_current_liabilities'), year) +
            _sum_group(liabilities.get('current_liabilities'), year))

def validate_financial_business_rules(data: Dict) -> List[str]:
    """
    Reconciliation checks for non-corporate financial statements.

    Checks the balance sheet balances, income and expense totals, profit
    after tax, required line items per year and revenue growth between
    consecutive years (flagged beyond 500%).
    """
    data = data or {}
    balance_sheet = data.get('balance_sheet')
    profit_loss = data.get('profit_loss')
    financial_years = data.get('financial_years')

    if not balance_sheet or not profit_loss or not financial_years:
        return ['Balance Sheet, Profit & Loss, and Financial Years are required']

    errors = []
    revenue_series = profit_loss.get('revenue_from_operations') or {}
    expenses = profit_loss.get('expenses') or {}
    tax_expense = profit_loss.get('tax_expense') or {}
    cash_series = ((balance_sheet.get('assets') or {}).get('current_assets') or {}).get('cash_and_bank_balances') or {}

    for year in financial_years:
        total_assets = calculate_total_assets(balance_sheet, year)
        total_liabilities = calculate_total_liabilities(balance_sheet, year)
        if total_assets is not None and total_liabilities is not None and \
                abs(total_assets - total_liabilities) > RECONCILIATION_TOLERANCE:
            errors.append(
                f'Balance Sheet does not balance for {year}: '
                f'Assets ({total_assets}) != Liabilities ({total_liabilities})'
            )

        revenue = revenue_series.get(year)
        other_income = _year_value(profit_loss.get('other_income'), year) or 0
        total_income = _year_value(profit_loss.get('total_income'), year)
        if revenue is not None and total_income is not None and \
                abs(revenue + other_income - total_income) > RECONCILIATION_TOLERANCE:
            errors.append(f'Total Income calculation error for {year}')

        total_expenses = _year_value(expenses.get('total_expenses'), year)
        calculated_expenses = sum(
            (series or {}).get(year) or 0 for key, series in expenses.items() if key != 'total_expenses'
        )
        if total_expenses is not None and abs(calculated_expenses - total_expenses) > RECONCILIATION_TOLERANCE:
            errors.append(f'Total Expenses calculation error for {year}')

        profit_before_tax = _year_value(profit_loss.get('profit_before_tax'), year)
        profit_for_period = _year_value(profit_loss.get('profit_for_period'), year)
        if profit_before_tax is not None and profit_for_period is not None:
            current_tax = _year_value(tax_expense.get('current_tax'), year) or 0
            deferred_tax = _year_value(tax_expense.get('deferred_tax'), year) or 0
            if abs(profit_before_tax - current_tax - deferred_tax - profit_for_period) > RECONCILIATION_TOLERANCE:
                errors.append(f'Profit calculation error for {year}')

        if revenue is None:
            errors.append(f'Revenue from Operations is required for {year}')

        if cash_series.get(year) is None:
            errors.append(f'Cash and Bank Balances is required for {year}')

    sorted_years = sorted(financial_years)
    for previous_year, current_year in zip(sorted_years, sorted_years[1:]):
        current_revenue = revenue_series.get(current_year)
        previous_revenue = revenue_series.get(previous_year)
        if current_revenue is None or not previous_revenue:
            continue
        growth_rate = (current_revenue - previous_revenue) / previous_revenue * 100
        if abs(growth_rate) > 500:
            errors.append(
                f'Unusual revenue growth rate ({growth_rate:.1f}%) between {previous_year} and {current_year}'
            )

    return errors

def calculate_financial_ratios(balance_sheet: Dict, profit_loss: Dict,
                               financial_years: List[str]) -> Dict[str, Dict[str, Dict[str, float]]]:
    """
    Liquidity, leverage, efficiency and profitability ratios per year.

    A ratio is omitted for a year when its denominator is not positive.
    """
    ratios = {
        'liquidity_ratios': {'current_ratio': {}, 'quick_ratio': {}, 'cash_ratio': {}},
        'leverage_ratios': {'debt_equity_ratio': {}, 'debt_ratio': {}, 'interest_coverage_ratio': {}},
        'efficiency_ratios': {
            'inventory_turnover': {}, 'receivables_turnover': {},
            'payables_turnover': {}, 'asset_turnover': {}
        },
        'profitability_ratios': {
            'gross_profit_margin': {}, 'net_profit_margin': {},
            'return_on_assets': {}, 'return_on_equity': {}
        }
    }

    assets = balance_sheet.get('assets') or {}
    current_assets_group = assets.get('current_assets') or {}
    liabilities = balance_sheet.get('owners_funds_and_liabilities') or {}
    current_liabilities_group = liabilities.get('current_liabilities') or {}
    non_current_liabilities_group = liabilities.get('non_current_liabilities') or {}
    expenses = profit_loss.get('expenses') or {}

    liquidity = ratios['liquidity_ratios']
    leverage = ratios['leverage_ratios']
    efficiency = ratios['efficiency_ratios']
    profitability = ratios['profitability_ratios']

    for year in financial_years:
        current_assets = _sum_group(current_assets_group, year)
        current_liabilities = _sum_group(current_liabilities_group, year)
        inventory = _year_value(current_assets_group.get('inventories'), year) or 0
        cash = _year_value(current_assets_group.get('cash_and_bank_balances'), year) or 0

        if current_liabilities > 0:
            liquidity['current_ratio'][year] = current_assets / current_liabilities
            liquidity['quick_ratio'][year] = (current_assets - inventory) / current_liabilities
            liquidity['cash_ratio'][year] = cash / current_liabilities

        revenue = _year_value(profit_loss.get('revenue_from_operations'), year) or 0
        net_profit = _year_value(profit_loss.get('profit_for_period'), year) or 0
        cost_of_materials = _year_value(expenses.get('cost_of_materials_consumed'), year) or 0

        if revenue > 0:
            profitability['gross_profit_margin'][year] = (revenue - cost_of_materials) / revenue * 100
            profitability['net_profit_margin'][year] = net_profit / revenue * 100

        total_assets = calculate_total_assets(balance_sheet, year) or 0
        if total_assets > 0:
            profitability['return_on_assets'][year] = net_profit / total_assets * 100
            efficiency['asset_turnover'][year] = revenue / total_assets

        receivables = _year_value(current_assets_group.get('trade_receivables'), year) or 0
        payables = _year_value(current_liabilities_group.get('trade_payables'), year) or 0

        if inventory > 0:
            efficiency['inventory_turnover'][year] = cost_of_materials / inventory
        if receivables > 0:
            efficiency['receivables_turnover'][year] = revenue / receivables
        if payables > 0:
            efficiency['payables_turnover'][year] = cost_of_materials / payables

        total_debt = ((_year_value(non_current_liabilities_group.get('long_term_borrowings'), year) or 0) +
                      (_year_value(current_liabilities_group.get('short_term_borrowings'), year) or 0))
        total_equity = _sum_group(liabilities.get('owners_fund'), year)

        if total_equity > 0:
            leverage['debt_equity_ratio'][year] = total_debt / total_equity
            profitability['return_on_equity'][year] = net_profit / total_equity * 100
        if total_assets > 0:
            leverage['debt_ratio'][year] = total_debt / total_assets

        interest_expense = _year_value(expenses.get('finance_cost'), year) or 0
        if interest_expense > 0:
            ebit = (_year_value(profit_loss.get('profit_before_tax'), year) or 0) + interest_expense
            leverage['interest_coverage_ratio'][year] = ebit / interest_expense

    return ratios

def validate_compliance_submission(data: Dict, entity_type: str) -> Dict[str, Any]:
    """
    Schema validation, business rules and score in one result.

    Returns:
        is_valid, field_errors, business_rule_errors and compliance_score
    """
    model, field_errors = parse_compliance_data(data)
    rule_errors = validate_compliance_business_rules(data, entity_type) if model else []

    result = {
        'is_valid': not field_errors and not rule_errors,
        'field_errors': field_errors,
        'business_rule_errors': rule_errors,
        'compliance_score': calculate_compliance_score(model.model_dump()) if model else 0
    }

    if not result['is_valid']:
        logger.info(f"Compliance data rejected: {len(field_errors)} field errors, {len(rule_errors)} rule errors")

    return result
