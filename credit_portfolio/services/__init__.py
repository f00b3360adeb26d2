"""
Business logic services for Credit Portfolio Management System
"""

from credit_portfolio.services.portfolio_analytics import PortfolioAnalyticsService
from credit_portfolio.services.gst_api_service import GstApiService
from credit_portfolio.services.ai_chat_service import AIChatService

__all__ = [
    'PortfolioAnalyticsService',
    'GstApiService',
    'AIChatService'
]
