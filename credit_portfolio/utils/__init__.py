"""
Utility modules for Credit Portfolio Management System
Contains validation, statistics, date handling and outbound HTTP helpers
"""

from credit_portfolio.utils.validators import DataValidator
from credit_portfolio.utils.api_client import BaseAPIClient

__all__ = [
    'DataValidator',
    'BaseAPIClient'
]
