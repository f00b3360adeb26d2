"""
Data access layer for Credit Portfolio Management System
"""

from credit_portfolio.repositories.portfolio_repository import PortfolioRepository

__all__ = [
    'PortfolioRepository'
]
