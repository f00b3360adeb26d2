"""
Database models for Credit Portfolio Management System
Portfolio companies, GST cache, chat history, reports and audit trail
"""

from credit_portfolio.models.user import User
from credit_portfolio.models.processing_request import DocumentProcessingRequest, ProcessingLog
from credit_portfolio.models.audit_log import AuditLog
from credit_portfolio.models.gst import GstFilingData, GstApiRequest, GstRefreshJob, GstRefreshQuota
from credit_portfolio.models.chat import ChatConversation, ChatMessage, ChatUsage
from credit_portfolio.models.report import ReportTemplate, ReportGenerationJob, ScheduledReport

__all__ = [
    'User',
    'DocumentProcessingRequest',
    'ProcessingLog',
    'AuditLog',
    'GstFilingData',
    'GstApiRequest',
    'GstRefreshJob',
    'GstRefreshQuota',
    'ChatConversation',
    'ChatMessage',
    'ChatUsage',
    'ReportTemplate',
    'ReportGenerationJob',
    'ScheduledReport'
]
