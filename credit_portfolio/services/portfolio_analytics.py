"""
Portfolio Analytics Service
Overview metrics, risk distribution, parameter analysis, industry breakdown,
eligibility, compliance and model performance for the credit portfolio dashboard
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

from credit_portfolio.utils import statistics

logger = logging.getLogger(__name__)

RISK_GRADE_KEYS = ['cm1', 'cm2', 'cm3', 'cm4', 'cm5']
CATEGORIES = ['Financial', 'Business', 'Hygiene', 'Banking']
MODEL_TYPES = ['with_banking', 'without_banking']

# Flattened score column -> parameter names as they appear in risk_analysis.allScores
PARAMETER_SCORE_FIELDS = {
    'current_ratio_score': ['current ratio'],
    'debt_equity_score': ['debt to equity ratio', 'd/e ratio', 'debt equity ratio'],
    'ebitda_margin_score': ['ebitda margin'],
    'sales_trend_score': ['sales trend'],
    'finance_cost_score': ['finance cost as % of revenue', 'finance cost'],
    'tol_tnw_score': ['tol/tnw'],
    'interest_coverage_score': ['interest coverage ratio', 'interest coverage'],
    'roce_score': ['roce'],
    'inventory_days_score': ['inventory holding days', 'inventory days'],
    'debtors_days_score': ['debtors holding days', 'debtors days'],
    'creditors_days_score': ['creditors holding days', 'creditors days'],
    'quick_ratio_score': ['quick ratio'],
    'pat_score': ['pat'],
    'ncatd_score': ['ncatd'],
    'diversion_funds_score': ['diversion of funds'],
    'constitution_entity_score': ['constitution of entity'],
    'rating_type_score': ['rating type'],
    'vintage_score': ['managerial / promoter vintage', 'promoter vintage', 'vintage'],
    'gst_compliance_score': ['statutory payments (gst)', 'gst compliance'],
    'pf_compliance_score': ['statutory payments (pf)', 'pf compliance'],
    'recent_charges_score': ['recent charges by bankers'],
    'primary_banker_score': ['primary banker - limit funded', 'primary banker'],
}

CATEGORY_SCORE_FIELDS = {
    'financial_score': 'financialResult',
    'business_score': 'businessResult',
    'hygiene_score': 'hygieneResult',
    'banking_score': 'bankingResult',
}

CORRELATION_FIELDS = list(CATEGORY_SCORE_FIELDS) + list(PARAMETER_SCORE_FIELDS)

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and value == value

def _mean(values: List[float]) -> float:
    return sum(values) / len(values) if values else 0

def _nested(data: Optional[Dict], *keys, default=None):
    current = data
    for key in keys:
        if not isinstance(current, dict):
            return default
        current = current.get(key)
        if current is None:
            return default
    return current

def _empty_risk_distribution() -> Dict[str, Any]:
    return {
        'cm1_count': 0,
        'cm2_count': 0,
        'cm3_count': 0,
        'cm4_count': 0,
        'cm5_count': 0,
        'ungraded_count': 0,
        'total_count': 0,
        'distribution_percentages': {}
    }

def _empty_compliance() -> Dict[str, Any]:
    return {
        'gst_compliance': {'compliant': 0, 'non_compliant': 0, 'unknown': 0},
        'epfo_compliance': {'compliant': 0, 'non_compliant': 0, 'unknown': 0},
        'audit_status': {'qualified': 0, 'unqualified': 0, 'unknown': 0}
    }

def flatten_parameter_scores(risk_analysis: Optional[Dict]) -> Dict[str, Optional[float]]:
    """
    Project a risk analysis payload onto flat score fields.

    Category fields take the category percentage; parameter fields take the
    score of the first available entry in allScores whose parameter name
    matches one of the known labels.
    """
    flat = {field: None for field in CORRELATION_FIELDS}
    if not risk_analysis:
        return flat

    for field, result_key in CATEGORY_SCORE_FIELDS.items():
        percentage = _nested(risk_analysis, result_key, 'percentage')
        if _is_number(percentage):
            flat[field] = float(percentage)

    for score in risk_analysis.get('allScores') or []:
        if not isinstance(score, dict) or not score.get('available'):
            continue
        name = str(score.get('parameter') or '').strip().lower()
        if not name or not _is_number(score.get('score')):
            continue
        for field, labels in PARAMETER_SCORE_FIELDS.items():
            if flat[field] is None and any(name == label or name.startswith(label) for label in labels):
                flat[field] = float(score['score'])
                break

    return flat

def gst_compliance_status(extracted_data: Optional[Dict]) -> str:
    """'Regular', 'Irregular' or 'Unknown' across a company's active GSTINs."""
    gst_records = _nested(extracted_data, 'gst_records')
    if not gst_records:
        return 'Unknown'
    return _combined_status(gst_records.get('active_gstins') or [])

def epfo_compliance_status(extracted_data: Optional[Dict]) -> str:
    epfo_records = _nested(extracted_data, 'epfo_records')
    if not epfo_records:
        return 'Unknown'
    return _combined_status(epfo_records.get('establishments') or [])

def audit_qualification_status(extracted_data: Optional[Dict]) -> str:
    """'Unqualified' (clean), 'Qualified' or 'Unknown'."""
    qualifications = _nested(extracted_data, 'audit_qualifications') or []
    if not qualifications:
        return 'Unknown'
    types = {q.get('qualification_type') for q in qualifications if isinstance(q, dict)}
    if 'Qualified' in types:
        return 'Qualified'
    if 'Unqualified' in types:
        return 'Unqualified'
    return 'Unknown'

def extract_financial_summary(extracted_data: Optional[Dict]) -> Optional[Dict[str, Any]]:
    """
    Latest-year headline figures from the standalone financial statements.

    Returns None when no financial years were extracted. Missing figures are
    None so callers can tell "not reported" apart from zero.
    """
    financial_data = _nested(extracted_data, 'Standalone Financial Data')
    if not isinstance(financial_data, dict):
        return None

    years = financial_data.get('years') or []
    if not years:
        return None
    latest_year = years[-1]

    def value(*path):
        result = _nested(financial_data, *path, latest_year)
        return float(result) if _is_number(result) else None

    return {
        'year': latest_year,
        'revenue': value('profit_loss', 'revenue'),
        'ebitda': value('profit_loss', 'ebitda'),
        'pat': value('profit_loss', 'pat'),
        'total_assets': value('balance_sheet', 'assets', 'total_assets'),
        'ebitda_margin': value('ratios', 'profitability', 'ebitda_margin'),
        'current_ratio': value('ratios', 'liquidity', 'current_ratio'),
        'debt_equity': value('ratios', 'leverage', 'debt_equity')
    }

def _combined_status(entries: List[Dict]) -> str:
    statuses = {e.get('compliance_status') for e in entries if isinstance(e, dict)}
    if 'Irregular' in statuses:
        return 'Irregular'
    if 'Regular' in statuses:
        return 'Regular'
    return 'Unknown'

class PortfolioAnalyticsService:
    """Stateless aggregations over lists of portfolio company dictionaries."""

    @staticmethod
    def calculate_overview_metrics(companies: List[Dict]) -> Dict[str, Any]:
        """
        Calculate portfolio overview metrics over completed companies.

        Args:
            companies: Company dictionaries as produced by DocumentProcessingRequest.to_dict()

        Returns:
            Totals, average risk score and the nested summaries shown on the dashboard
        """
        try:
            if not isinstance(companies, list):
                raise TypeError('Invalid companies data: expected list')

            completed = [c for c in companies if c and c.get('status') == 'completed']
            total_companies = len(completed)

            total_exposure = sum(
                c['recommended_limit'] for c in completed if _is_number(c.get('recommended_limit'))
            )
            score_sum = sum(c['risk_score'] for c in completed if _is_number(c.get('risk_score')))
            average_risk_score = score_sum / total_companies if total_companies else 0

            return {
                'total_companies': total_companies,
                'total_exposure': total_exposure,
                'average_risk_score': round(average_risk_score, 2),
                'risk_distribution': PortfolioAnalyticsService.calculate_risk_distribution(completed),
                'industry_summary': PortfolioAnalyticsService._industry_summary(completed),
                'regional_summary': PortfolioAnalyticsService._regional_summary(completed),
                'eligibility_overview': PortfolioAnalyticsService._eligibility_overview(completed),
                'compliance_overview': PortfolioAnalyticsService.calculate_compliance_status(completed)
            }

        except Exception as e:
            logger.error(f"Error calculating overview metrics: {str(e)}")
            return {
                'total_companies': 0,
                'total_exposure': 0,
                'average_risk_score': 0,
                'risk_distribution': _empty_risk_distribution(),
                'industry_summary': {'total_industries': 0, 'top_industries': []},
                'regional_summary': {'total_regions': 0, 'top_regions': []},
                'eligibility_overview': {
                    'total_eligible_amount': 0,
                    'average_eligibility': 0,
                    'risk_adjusted_exposure': 0
                },
                'compliance_overview': _empty_compliance()
            }

    @staticmethod
    def calculate_risk_distribution(companies: List[Dict]) -> Dict[str, Any]:
        """Count companies per CM grade; unrecognised grades are ungraded."""
        distribution = _empty_risk_distribution()
        distribution['total_count'] = len(companies)

        for company in companies:
            grade = str(company.get('risk_grade') or '').lower()
            if grade in RISK_GRADE_KEYS:
                distribution[f'{grade}_count'] += 1
            else:
                distribution['ungraded_count'] += 1

        total = distribution['total_count']
        if total > 0:
            distribution['distribution_percentages'] = {
                key: distribution[f'{key}_count'] / total * 100
                for key in RISK_GRADE_KEYS + ['ungraded']
            }

        return distribution

    @staticmethod
    def _grouped_summary(companies: List[Dict], key_func) -> Tuple[int, List[Dict]]:
        groups: Dict[str, Dict[str, Any]] = {}
        for company in companies:
            name = key_func(company) or 'Unknown'
            group = groups.setdefault(name, {'count': 0, 'scores': []})
            group['count'] += 1
            if company.get('risk_score'):
                group['scores'].append(company['risk_score'])

        entries = [
            {
                'name': name,
                'count': data['count'],
                'percentage': data['count'] / len(companies) * 100,
                'avg_risk_score': _mean(data['scores'])
            }
            for name, data in groups.items()
        ]
        entries.sort(key=lambda e: e['count'], reverse=True)
        return len(groups), entries[:10]

    @staticmethod
    def _industry_summary(companies: List[Dict]) -> Dict[str, Any]:
        total, top = PortfolioAnalyticsService._grouped_summary(
            companies, lambda c: c.get('industry')
        )
        return {'total_industries': total, 'top_industries': top}

    @staticmethod
    def _regional_summary(companies: List[Dict]) -> Dict[str, Any]:
        total, top = PortfolioAnalyticsService._grouped_summary(
            companies,
            lambda c: _nested(c.get('extracted_data'), 'about_company', 'registered_address', 'state')
        )
        return {'total_regions': total, 'top_regions': top}

    @staticmethod
    def _eligibility_overview(companies: List[Dict]) -> Dict[str, Any]:
        eligible = [
            _nested(c.get('risk_analysis'), 'eligibility') for c in companies
            if _nested(c.get('risk_analysis'), 'eligibility')
        ]
        if not eligible:
            return {'total_eligible_amount': 0, 'average_eligibility': 0, 'risk_adjusted_exposure': 0}

        total = sum(e.get('finalEligibility') or 0 for e in eligible)
        risk_adjusted = sum((e.get('finalEligibility') or 0) * (e.get('riskMultiplier') or 0) for e in eligible)
        return {
            'total_eligible_amount': total,
            'average_eligibility': total / len(eligible),
            'risk_adjusted_exposure': risk_adjusted
        }

    @staticmethod
    def calculate_eligibility_analysis(companies: List[Dict]) -> Dict[str, Any]:
        """Eligibility totals plus the eligible amount per eligibility risk grade."""
        eligible = [
            c for c in companies
            if _nested(c.get('risk_analysis'), 'eligibility') and c.get('recommended_limit')
        ]
        if not eligible:
            return {
                'total_eligible_amount': 0,
                'average_eligibility': 0,
                'eligibility_distribution': {},
                'risk_adjusted_exposure': 0
            }

        overview = PortfolioAnalyticsService._eligibility_overview(eligible)
        distribution: Dict[str, float] = {}
        for company in eligible:
            eligibility = company['risk_analysis']['eligibility']
            grade = eligibility.get('riskGrade') or 'Unknown'
            distribution[grade] = distribution.get(grade, 0) + (eligibility.get('finalEligibility') or 0)

        overview['eligibility_distribution'] = distribution
        return overview

    @staticmethod
    def calculate_compliance_status(companies: List[Dict]) -> Dict[str, Any]:
        """Tally GST, EPFO and audit status across companies."""
        summary = _empty_compliance()
        compliance_buckets = {'Regular': 'compliant', 'Irregular': 'non_compliant', 'Unknown': 'unknown'}
        audit_buckets = {'Qualified': 'qualified', 'Unqualified': 'unqualified', 'Unknown': 'unknown'}

        for company in companies:
            extracted = company.get('extracted_data')
            summary['gst_compliance'][compliance_buckets[gst_compliance_status(extracted)]] += 1
            summary['epfo_compliance'][compliance_buckets[epfo_compliance_status(extracted)]] += 1
            summary['audit_status'][audit_buckets[audit_qualification_status(extracted)]] += 1

        return summary

    @staticmethod
    def get_benchmark_category(score: float) -> str:
        if score >= 90:
            return 'Excellent'
        if score >= 75:
            return 'Good'
        if score >= 60:
            return 'Average'
        if score >= 40:
            return 'Poor'
        return 'Critical Risk'

    @staticmethod
    def calculate_risk_parameter_analysis(companies: List[Dict]) -> Dict[str, Any]:
        """Category performance and per-parameter benchmarks over analysed companies."""
        analysed = [c for c in companies if c.get('risk_analysis')]
        if not analysed:
            return {'category_performance': {}, 'parameter_benchmarks': []}

        return {
            'category_performance': PortfolioAnalyticsService._category_performance(analysed),
            'parameter_benchmarks': PortfolioAnalyticsService._parameter_benchmarks(analysed)
        }

    @staticmethod
    def _category_performance(companies: List[Dict]) -> Dict[str, Any]:
        performance = {}

        for category in CATEGORIES:
            prefix = category.lower()
            scores, max_scores = [], []
            parameter_scores: Dict[str, List[float]] = {}

            for company in companies:
                analysis = company['risk_analysis']
                result = analysis.get(f'{prefix}Result')
                if result:
                    scores.append(result.get('score') or 0)
                    max_scores.append(result.get('maxScore') or 0)

                for item in analysis.get(f'{prefix}Scores') or []:
                    if item.get('available'):
                        parameter_scores.setdefault(item['parameter'], []).append(item.get('score') or 0)

            if not scores:
                continue

            average_score = _mean(scores)
            max_possible = _mean(max_scores)

            averages = [
                {
                    'parameter': parameter,
                    'average_score': _mean(values),
                    'benchmark_category': PortfolioAnalyticsService.get_benchmark_category(_mean(values))
                }
                for parameter, values in parameter_scores.items()
            ]
            averages.sort(key=lambda p: p['average_score'], reverse=True)

            performance[category] = {
                'average_score': average_score,
                'max_possible_score': max_possible,
                'percentage': average_score / max_possible * 100 if max_possible > 0 else 0,
                'parameter_count': len(parameter_scores),
                'available_parameters': len(parameter_scores),
                'top_parameters': averages[:5],
                'bottom_parameters': list(reversed(averages[-5:]))
            }

        return performance

    @staticmethod
    def _parameter_category(parameter: str, risk_analysis: Optional[Dict]) -> str:
        if not risk_analysis:
            return 'Unknown'
        for category in CATEGORIES:
            items = risk_analysis.get(f'{category.lower()}Scores') or []
            if any(item.get('parameter') == parameter for item in items):
                return category
        return 'Unknown'

    @staticmethod
    def _parameter_benchmarks(companies: List[Dict]) -> List[Dict[str, Any]]:
        stats: Dict[str, Dict[str, Any]] = {}

        for company in companies:
            analysis = company['risk_analysis']
            for item in analysis.get('allScores') or []:
                if not item.get('available'):
                    continue
                parameter = item['parameter']
                if parameter not in stats:
                    stats[parameter] = {
                        'category': PortfolioAnalyticsService._parameter_category(parameter, analysis),
                        'scores': [],
                        'max_scores': []
                    }
                stats[parameter]['scores'].append(item.get('score') or 0)
                stats[parameter]['max_scores'].append(item.get('maxScore') or 0)

        benchmarks = []
        for parameter, data in stats.items():
            portfolio_average = _mean(data['scores'])
            max_average = _mean(data['max_scores'])
            thresholds = [
                ('excellent', 'Excellent', max_average * 0.9),
                ('good', 'Good', max_average * 0.75),
                ('average', 'Average', max_average * 0.6),
                ('poor', 'Poor', max_average * 0.4),
            ]

            counts = {'excellent': 0, 'good': 0, 'average': 0, 'poor': 0, 'critical': 0}
            for score in data['scores']:
                band = next((key for key, _, limit in thresholds if score >= limit), 'critical')
                counts[band] += 1

            rating = next(
                (label for _, label, limit in thresholds if portfolio_average >= limit), 'Critical Risk'
            )

            benchmarks.append({
                'parameter': parameter,
                'category': data['category'],
                'portfolio_average': portfolio_average,
                'excellent_threshold': thresholds[0][2],
                'good_threshold': thresholds[1][2],
                'average_threshold': thresholds[2][2],
                'poor_threshold': thresholds[3][2],
                'performance_rating': rating,
                'companies_excellent': counts['excellent'],
                'companies_good': counts['good'],
                'companies_average': counts['average'],
                'companies_poor': counts['poor'],
                'companies_critical': counts['critical']
            })

        return benchmarks

    @staticmethod
    def calculate_industry_breakdown(companies: List[Dict]) -> Dict[str, Any]:
        """Exposure, average score and grade mix per industry."""
        industries: Dict[str, Dict[str, Any]] = {}

        for company in companies:
            industry = _nested(
                company.get('risk_analysis'), 'companyData', 'addresses', 'business_address', 'industry'
            ) or company.get('industry') or 'Unknown'

            entry = industries.setdefault(industry, {'count': 0, 'total_exposure': 0, 'scores': [], 'grades': {}})
            entry['count'] += 1
            entry['total_exposure'] += company.get('recommended_limit') or 0
            if company.get('risk_score'):
                entry['scores'].append(company['risk_score'])
            if company.get('risk_grade'):
                grade = company['risk_grade'].lower()
                entry['grades'][grade] = entry['grades'].get(grade, 0) + 1

        return {
            'industries': [
                {
                    'name': name,
                    'count': data['count'],
                    'total_exposure': data['total_exposure'],
                    'average_risk_score': _mean(data['scores']),
                    'risk_distribution': data['grades']
                }
                for name, data in industries.items()
            ]
        }

    @staticmethod
    def calculate_model_performance(companies: List[Dict]) -> Dict[str, Any]:
        """Parameter availability, grade mix and consistency of the scoring model."""
        analysed = [c for c in companies if c.get('risk_analysis')]
        if not analysed:
            return {
                'overall_accuracy': 0,
                'parameter_availability': {
                    'financial': 0, 'business': 0, 'hygiene': 0, 'banking': 0, 'overall': 0
                },
                'grade_distribution': {},
                'model_consistency': {
                    'score_variance': 0, 'grade_stability': 0, 'prediction_confidence': 0
                },
                'validation_metrics': {
                    'companies_with_complete_data': 0,
                    'data_completeness_percentage': 0,
                    'model_coverage': {}
                }
            }

        total_params = sum(c.get('total_parameters') or 0 for c in analysed)
        available_params = sum(c.get('available_parameters') or 0 for c in analysed)

        return {
            'overall_accuracy': available_params / total_params * 100 if total_params > 0 else 0,
            'parameter_availability': PortfolioAnalyticsService.calculate_parameter_availability(analysed),
            'grade_distribution': PortfolioAnalyticsService._grade_distribution(analysed),
            'model_consistency': PortfolioAnalyticsService._model_consistency(analysed),
            'validation_metrics': PortfolioAnalyticsService._validation_metrics(analysed)
        }

    @staticmethod
    def calculate_parameter_availability(companies: List[Dict]) -> Dict[str, float]:
        totals = {'financial': 0, 'business': 0, 'hygiene': 0, 'banking': 0, 'overall': 0}
        available = dict(totals)

        for company in companies:
            analysis = company.get('risk_analysis') or {}
            for key in ('financial', 'business', 'hygiene', 'banking'):
                totals[key] += company.get(f'{key}_parameters') or 0
                available[key] += len([s for s in analysis.get(f'{key}Scores') or [] if s.get('available')])
            totals['overall'] += company.get('total_parameters') or 0
            available['overall'] += company.get('available_parameters') or 0

        return {
            key: available[key] / totals[key] * 100 if totals[key] > 0 else 0
            for key in totals
        }

    @staticmethod
    def _grade_distribution(companies: List[Dict]) -> Dict[str, Any]:
        grades: Dict[str, List[float]] = {}
        for company in companies:
            grade = _nested(company.get('risk_analysis'), 'overallGrade', 'grade') or 'Unknown'
            grades.setdefault(grade, []).append(company.get('risk_score') or 0)

        return {
            grade: {
                'count': len(scores),
                'percentage': len(scores) / len(companies) * 100,
                'avg_score': _mean(scores),
                'score_range': [min(scores), max(scores)]
            }
            for grade, scores in grades.items()
        }

    @staticmethod
    def _model_consistency(companies: List[Dict]) -> Dict[str, float]:
        scores = [c['risk_score'] for c in companies if c.get('risk_score') is not None]
        if not scores:
            return {'score_variance': 0, 'grade_stability': 0, 'prediction_confidence': 0}

        percentages = list(
            PortfolioAnalyticsService.calculate_risk_distribution(companies)['distribution_percentages'].values()
        )
        grade_stability = 100 - (max(percentages) - min(percentages)) if percentages else 0

        availability = []
        for company in companies:
            total = company.get('total_parameters') or 0
            available = company.get('available_parameters') or 0
            availability.append(available / total * 100 if total > 0 else 0)

        return {
            'score_variance': statistics.variance(scores),
            'grade_stability': max(0, grade_stability),
            'prediction_confidence': _mean(availability)
        }

    @staticmethod
    def _validation_metrics(companies: List[Dict]) -> Dict[str, Any]:
        complete = len([
            c for c in companies
            if c.get('financial_data') is not None and c.get('risk_analysis')
            and c.get('company_name') and c.get('industry')
        ])
        return {
            'companies_with_complete_data': complete,
            'data_completeness_percentage': complete / len(companies) * 100,
            'model_coverage': {
                model_type: len([c for c in companies if c.get('model_type') == model_type]) / len(companies) * 100
                for model_type in MODEL_TYPES
            }
        }

    @staticmethod
    def calculate_parameter_correlations(companies: List[Dict]) -> Dict[str, Any]:
        """
        Correlate the overall risk score with each flattened category and parameter score.

        Returns:
            correlations per field, sample size and the five strongest positive and
            negative drivers as [field, coefficient] pairs
        """
        if not companies:
            return {}

        risk_scores = [c.get('risk_score') if _is_number(c.get('risk_score')) else None for c in companies]
        flattened = [flatten_parameter_scores(c.get('risk_analysis')) for c in companies]

        correlations = {}
        for field in CORRELATION_FIELDS:
            xs, ys = statistics.paired_values(risk_scores, [row[field] for row in flattened])
            correlations[field] = statistics.pearson_correlation(xs, ys)

        ranked = sorted(correlations.items(), key=lambda item: item[1], reverse=True)
        strongest_positive = [[field, value] for field, value in ranked if value > 0][:5]
        strongest_negative = [
            [field, value] for field, value in sorted(correlations.items(), key=lambda item: item[1]) if value < 0
        ][:5]

        return {
            'correlations': correlations,
            'sample_size': len(companies),
            'strongest_positive': strongest_positive,
            'strongest_negative': strongest_negative
        }

    @staticmethod
    def calculate_validation_analysis(companies: List[Dict]) -> Dict[str, Any]:
        """Data quality, category coverage and confidence bands for analysed companies."""
        total = len(companies)
        if total == 0:
            return {}

        quality = {key: 0 for key in ('financial', 'business', 'hygiene', 'banking', 'overall')}
        missing = {key: 0 for key in ('financial', 'business', 'hygiene', 'banking')}
        full_coverage = 0
        confidence = {'high': 0, 'medium': 0, 'low': 0}

        for company in companies:
            analysis = company.get('risk_analysis') or {}
            total_params = company.get('total_parameters') or 0
            completeness = (company.get('available_parameters') or 0) / total_params * 100 if total_params > 0 else 0

            available_by_category = {}
            for key in missing:
                params = company.get(f'{key}_parameters') or 0
                available = len([s for s in analysis.get(f'{key}Scores') or [] if s.get('available')])
                available_by_category[key] = available
                if params > 0 and available / params >= 0.8:
                    quality[key] += 1
                if available == 0:
                    missing[key] += 1

            if completeness >= 80:
                quality['overall'] += 1
            if all(available_by_category.values()):
                full_coverage += 1

            if completeness >= 80:
                confidence['high'] += 1
            elif completeness >= 60:
                confidence['medium'] += 1
            else:
                confidence['low'] += 1

        return {
            'data_quality_rates': {
                'complete_financial_rate': quality['financial'] / total * 100,
                'complete_business_rate': quality['business'] / total * 100,
                'complete_hygiene_rate': quality['hygiene'] / total * 100,
                'complete_banking_rate': quality['banking'] / total * 100,
                'overall_completeness_rate': quality['overall'] / total * 100
            },
            'model_coverage_analysis': {
                'full_coverage_rate': full_coverage / total * 100,
                'missing_financial_rate': missing['financial'] / total * 100,
                'missing_business_rate': missing['business'] / total * 100,
                'missing_hygiene_rate': missing['hygiene'] / total * 100,
                'missing_banking_rate': missing['banking'] / total * 100
            },
            'prediction_confidence': {
                'high_confidence_rate': confidence['high'] / total * 100,
                'medium_confidence_rate': confidence['medium'] / total * 100,
                'low_confidence_rate': confidence['low'] / total * 100
            },
            'validation_summary': {
                'total_companies': total,
                'companies_ready_for_production': confidence['high'],
                'companies_needing_improvement': confidence['low']
            }
        }

    @staticmethod
    def calculate_parameter_performance(companies: List[Dict]) -> Dict[str, Any]:
        """Availability and score rate per parameter, ranked by combined impact."""
        stats: Dict[str, Dict[str, Any]] = {}

        for company in companies:
            analysis = company.get('risk_analysis') or {}
            for item in analysis.get('allScores') or []:
                parameter = item.get('parameter')
                if parameter not in stats:
                    stats[parameter] = {
                        'category': PortfolioAnalyticsService._parameter_category(parameter, analysis),
                        'available': 0, 'total': 0, 'score_sum': 0, 'max_score_sum': 0
                    }
                entry = stats[parameter]
                entry['total'] += 1
                entry['max_score_sum'] += item.get('maxScore') or 0
                if item.get('available'):
                    entry['available'] += 1
                    entry['score_sum'] += item.get('score') or 0

        performance = []
        for parameter, entry in stats.items():
            availability_rate = entry['available'] / entry['total'] * 100 if entry['total'] else 0
            average_score = entry['score_sum'] / entry['available'] if entry['available'] else 0
            average_max = entry['max_score_sum'] / entry['total'] if entry['total'] else 0
            performance_rate = average_score / average_max * 100 if average_max > 0 else 0
            performance.append({
                'parameter': parameter,
                'category': entry['category'],
                'availability_rate': availability_rate,
                'performance_rate': performance_rate,
                'average_score': average_score,
                'average_max_score': average_max,
                'companies_with_data': entry['available'],
                'total_companies': entry['total'],
                'impact_score': availability_rate * performance_rate / 100
            })

        performance.sort(key=lambda p: p['impact_score'], reverse=True)

        by_category: Dict[str, List[Dict]] = {}
        for item in performance:
            by_category.setdefault(item['category'], []).append(item)

        return {
            'parameter_performance': performance,
            'category_performance': by_category,
            'top_performing_parameters': performance[:20],
            'underperforming_parameters': [
                p for p in performance if p['availability_rate'] < 50 or p['performance_rate'] < 60
            ][:20],
            'performance_summary': {
                'total_parameters': len(performance),
                'high_impact_parameters': len([p for p in performance if p['impact_score'] >= 70]),
                'low_availability_parameters': len([p for p in performance if p['availability_rate'] < 50]),
                'low_performance_parameters': len([p for p in performance if p['performance_rate'] < 60])
            }
        }

    @staticmethod
    def calculate_model_type_comparison(companies: List[Dict]) -> Dict[str, Any]:
        """Side-by-side statistics for each scoring model type."""
        groups: Dict[str, Dict[str, Any]] = {}
        for company in companies:
            model_type = company.get('model_type') or 'unknown'
            group = groups.setdefault(model_type, {
                'count': 0, 'total_params': 0, 'available_params': 0, 'scores': [], 'grades': {}
            })
            group['count'] += 1
            group['total_params'] += company.get('total_parameters') or 0
            group['available_params'] += company.get('available_parameters') or 0
            if company.get('risk_score'):
                group['scores'].append(company['risk_score'])
            if company.get('risk_grade'):
                group['grades'][company['risk_grade']] = group['grades'].get(company['risk_grade'], 0) + 1

        comparison = {}
        for model_type, group in groups.items():
            scores = group['scores']
            average = _mean(scores)
            availability = (
                group['available_params'] / group['total_params'] * 100 if group['total_params'] > 0 else 0
            )
            comparison[model_type] = {
                'company_count': group['count'],
                'parameter_availability': availability,
                'average_risk_score': average,
                'risk_score_statistics': {
                    'min': min(scores) if scores else 0,
                    'max': max(scores) if scores else 0,
                    'median': statistics.median(scores),
                    'std_dev': statistics.standard_deviation(scores)
                },
                'grade_distribution': group['grades'],
                'model_performance_score': (availability + average) / 2
            }

        return comparison
