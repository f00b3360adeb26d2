"""
Data validation utilities for Credit Portfolio Management System
"""

import re
from typing import Any, Dict, List, Optional, Union
from decimal import Decimal, InvalidOperation
import email_validator


GSTIN_PATTERN = re.compile(r'^[0-9]{2}[A-Z]{5}[0-9]{4}[A-Z]{1}[1-9A-Z]{1}Z[0-9A-Z]{1}$')
FINANCIAL_YEAR_PATTERN = re.compile(r'^\d{4}-\d{2}$')
PINCODE_PATTERN = re.compile(r'^\d{6}$')

RISK_GRADES = ['cm1', 'cm2', 'cm3', 'cm4', 'cm5']


class DataValidator:
    """Utility class for data validation and sanitization."""

    @staticmethod
    def validate_email(email: str) -> bool:
        """Validate email address format."""
        if not email:
            return False
        try:
            email_validator.validate_email(email, check_deliverability=False)
            return True
        except email_validator.EmailNotValidError:
            return False

    @staticmethod
    def validate_gstin(gstin: str) -> bool:
        """Validate a 15-character GSTIN."""
        if not gstin or not isinstance(gstin, str):
            return False
        return bool(GSTIN_PATTERN.match(gstin))

    @staticmethod
    def validate_financial_year(financial_year: str) -> bool:
        """Validate financial year in YYYY-YY form."""
        if not financial_year or not isinstance(financial_year, str):
            return False
        return bool(FINANCIAL_YEAR_PATTERN.match(financial_year))

    @staticmethod
    def validate_currency_amount(amount: Union[str, float, int, Decimal]) -> bool:
        """Validate currency amount."""
        try:
            decimal_amount = Decimal(str(amount))
            return decimal_amount >= 0
        except (InvalidOperation, TypeError, ValueError):
            return False

    @staticmethod
    def sanitize_string(text: str, max_length: Optional[int] = None) -> str:
        """Sanitize string input."""
        if not isinstance(text, str):
            return ""

        sanitized = text.strip()

        # Remove null bytes and other control characters
        sanitized = re.sub(r'[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]', '', sanitized)

        if max_length and len(sanitized) > max_length:
            sanitized = sanitized[:max_length]

        return sanitized

    @staticmethod
    def invalid_gstins(gstins: List[str]) -> List[str]:
        """Return the entries of a GSTIN list that fail format validation."""
        return [g for g in gstins if not DataValidator.validate_gstin(g)]

    @classmethod
    def validate_company_update(cls, data: Dict[str, Any]) -> Dict[str, List[str]]:
        """Validate an update payload for a portfolio company."""
        errors = {}

        if 'company_name' in data:
            name = cls.sanitize_string(data.get('company_name') or '')
            if len(name) < 2:
                errors.setdefault('company_name', []).append('Company name must be at least 2 characters')

        if 'risk_score' in data and data['risk_score'] is not None:
            try:
                score = float(data['risk_score'])
                if score < 0 or score > 100:
                    errors.setdefault('risk_score', []).append('Risk score must be between 0 and 100')
            except (TypeError, ValueError):
                errors.setdefault('risk_score', []).append('Risk score must be a number')

        if 'risk_grade' in data and data['risk_grade'] is not None:
            if str(data['risk_grade']).lower() not in RISK_GRADES:
                errors.setdefault('risk_grade', []).append(
                    f"Risk grade must be one of: {', '.join(RISK_GRADES)}"
                )

        if 'recommended_limit' in data and data['recommended_limit'] is not None:
            if not cls.validate_currency_amount(data['recommended_limit']):
                errors.setdefault('recommended_limit', []).append('Recommended limit must be a non-negative amount')

        for field in ('extracted_data', 'risk_analysis'):
            if field in data and data[field] is not None and not isinstance(data[field], dict):
                errors.setdefault(field, []).append(f'{field} must be an object')

        return errors
