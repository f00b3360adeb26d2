"""
AI chat service for portfolio companies
Wraps the Anthropic Messages API, keeps conversation history and records token usage
"""

import logging
from typing import Any, Dict, List, Optional

import httpx
from flask import current_app

from credit_portfolio import db
from credit_portfolio.models import ChatConversation, ChatMessage, ChatUsage, DocumentProcessingRequest
from credit_portfolio.services.portfolio_analytics import (
    audit_qualification_status,
    epfo_compliance_status,
    gst_compliance_status,
)
from credit_portfolio.utils.api_client import BaseAPIClient
from credit_portfolio.utils.dates import utcnow

logger = logging.getLogger(__name__)

# USD per million tokens
MODEL_PRICING = {
    'claude-sonnet-4-20250514': {'input': 3, 'output': 15},
    'claude-3-opus-20240229': {'input': 15, 'output': 75},
    'claude-3-sonnet-20240229': {'input': 3, 'output': 15},
    'claude-3-haiku-20240307': {'input': 0.25, 'output': 1.25}
}
DEFAULT_PRICING_MODEL = 'claude-sonnet-4-20250514'

HISTORY_FETCH_LIMIT = 20
HISTORY_CONTEXT_MESSAGES = 10

MOCK_USAGE = {'input_tokens': 150, 'output_tokens': 400}

BASE_SYSTEM_PROMPT = """You are a senior credit analyst and portfolio manager with deep expertise in corporate risk assessment and financial analysis. You speak naturally and directly, providing clear insights that help portfolio managers make informed credit decisions.

Your communication style:
- Be conversational yet professional
- Give direct, actionable answers without unnecessary jargon
- Use specific numbers and trends to support your points
- Be honest about risks while explaining the reasoning

CONFIDENTIALITY REQUIREMENTS:
- NEVER reveal internal risk scoring parameters, weights, or detailed score breakdowns
- Present risk assessment in qualitative terms (Excellent, Good, Moderate, Poor) rather than exact scores

FORMATTING REQUIREMENTS:
- Structure responses using markdown tables for data presentation
- Use ### for major sections and #### for subsections
- Format currency as ₹X.XX Cr for crores and ₹X.XX L for lakhs
- Use bullet points for key observations and recommendations"""

class ChatServiceError(Exception):
    """Raised when the language model API fails or returns an unusable payload."""

class ConversationNotFound(LookupError):
    """Raised when a conversation does not exist or belongs to another user."""

class ClaudeClient(BaseAPIClient):
    """Client for the Anthropic Messages endpoint."""

    def __init__(self, api_key: str, base_url: str, version: str, timeout: float = 120.0,
                 transport: Optional[httpx.BaseTransport] = None):
        super().__init__(timeout=timeout, transport=transport)
        self.api_key = api_key
        self._base_url = base_url
        self.version = version

    @property
    def base_url(self) -> str:
        return self._base_url

    @property
    def default_headers(self) -> Dict[str, str]:
        return {
            'content-type': 'application/json',
            'x-api-key': self.api_key,
            'anthropic-version': self.version
        }

    def create_message(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        POST a Messages API request.

        Raises:
            ChatServiceError: non-2xx response or missing text content
        """
        response = self._make_request('POST', '/messages', json=payload)

        if response.is_error:
            try:
                error_body = response.json()
            except ValueError:
                error_body = {}
            message = (error_body.get('error') or {}).get('message') or error_body.get('message') \
                or response.reason_phrase or 'Unknown API error'
            raise ChatServiceError(f'Claude API error ({response.status_code}): {message}')

        data = response.json()
        content = data.get('content') or []
        if not content or not content[0].get('text'):
            raise ChatServiceError('Invalid response format from Claude API')

        return data

def calculate_cost(usage: Dict[str, int], model: str) -> float:
    """USD cost of a completion from token usage; unknown models use Sonnet 4 pricing."""
    pricing = MODEL_PRICING.get(model, MODEL_PRICING[DEFAULT_PRICING_MODEL])
    input_cost = usage.get('input_tokens', 0) / 1_000_000 * pricing['input']
    output_cost = usage.get('output_tokens', 0) / 1_000_000 * pricing['output']
    return input_cost + output_cost

def build_conversation_messages(current_message: str, history: List[ChatMessage]) -> List[Dict[str, str]]:
    """
    Messages payload: the last ten non-empty user/assistant turns plus the new message.

    Raises:
        ValueError: current message is empty
    """
    if not current_message or not current_message.strip():
        raise ValueError('Current message is required and must be a non-empty string')

    valid = [
        message for message in history
        if message.role in ('user', 'assistant') and message.content and message.content.strip()
    ]

    messages = [
        {'role': message.role, 'content': message.content.strip()}
        for message in valid[-HISTORY_CONTEXT_MESSAGES:]
    ]
    messages.append({'role': 'user', 'content': current_message.strip()})
    return messages

def build_company_context(company: DocumentProcessingRequest) -> Dict[str, Any]:
    """Snapshot of company data stored alongside each chat message."""
    extracted = company.extracted_data or {}
    return {
        'company_name': company.company_name or '',
        'industry': company.industry,
        'risk_score': company.risk_score or 0,
        'risk_grade': company.risk_grade or '',
        'recommended_limit': company.recommended_limit or 0,
        'financial_data': company.financial_data,
        'compliance_data': {
            'gst_records': extracted.get('gst_records'),
            'epfo_records': extracted.get('epfo_records'),
            'audit_qualifications': extracted.get('audit_qualifications')
        },
        'risk_analysis': company.risk_analysis
    }

def _format_crores(amount: Optional[float]) -> str:
    if not amount:
        return 'N/A'
    return f'₹{amount / 10_000_000:.2f} Cr'

def _risk_score(company: DocumentProcessingRequest):
    analysis = company.risk_analysis or {}
    score = analysis.get('overallPercentage') or company.risk_score
    return score if isinstance(score, (int, float)) and not isinstance(score, bool) else None

def _performance_level(percentage: float) -> str:
    if percentage >= 75:
        return 'Excellent'
    if percentage >= 60:
        return 'Good'
    if percentage < 40:
        return 'Needs Attention'
    return 'Moderate'

def _category_lines(risk_analysis: Dict) -> List[str]:
    lines = []
    for key, label in (('financialResult', 'Financial'), ('businessResult', 'Business'),
                       ('hygieneResult', 'Hygiene'), ('bankingResult', 'Banking')):
        percentage = (risk_analysis.get(key) or {}).get('percentage')
        if isinstance(percentage, (int, float)):
            lines.append(f'{label}: {_performance_level(percentage)} performance')
    return lines

def _monitoring_points(risk_analysis: Dict) -> List[str]:
    points = []
    for score in risk_analysis.get('allScores') or []:
        max_score = score.get('maxScore') or 0
        if score.get('available') and max_score and (score.get('score') or 0) / max_score < 0.4:
            points.append(f"- {score.get('parameter')}: below benchmark ({score.get('benchmark') or 'n/a'})")
    return points[:8] or ['- No parameters significantly below benchmark']

def build_system_prompt(company: DocumentProcessingRequest, base_prompt: Optional[str] = None) -> str:
    """Base analyst prompt enriched with the company's profile, risk, compliance and monitoring context."""
    prompt = base_prompt or BASE_SYSTEM_PROMPT
    analysis = company.risk_analysis or {}
    extracted = company.extracted_data or {}
    address = ((analysis.get('companyData') or {}).get('addresses') or {}).get('business_address') or {}
    grade = (analysis.get('overallGrade') or {})
    score = _risk_score(company)

    location = ', '.join(part for part in (address.get('city'), address.get('state')) if part) or 'N/A'
    category_lines = _category_lines(analysis) or ['Risk parameter analysis not available']

    context = [
        '',
        '=== COMPANY PROFILE ===',
        f"Company: {company.company_name or 'N/A'}",
        f"Industry: {address.get('industry') or company.industry or 'N/A'}",
        f"Entity Type: {address.get('type_of_entity') or 'N/A'}",
        f'Location: {location}',
        '',
        '=== CURRENT RISK ASSESSMENT ===',
        f"Overall Risk Grade: {grade.get('grade') or company.risk_grade or 'N/A'}",
        f"Risk Score: {f'{score}%' if score is not None else 'N/A'}",
        f"Risk Category: {grade.get('description') or 'N/A'}",
        f'Recommended Credit Limit: {_format_crores(company.recommended_limit)}',
        '',
        '=== RISK ASSESSMENT SUMMARY ===',
        *category_lines,
        '',
        '=== COMPLIANCE & REGULATORY STATUS ===',
        f'GST Compliance: {gst_compliance_status(extracted)}',
        f'EPFO Compliance: {epfo_compliance_status(extracted)}',
        f'Audit Status: {audit_qualification_status(extracted)}',
        '',
        '=== KEY MONITORING POINTS ===',
        *_monitoring_points(analysis),
        '',
        'When responding, reference specific metrics from this data, explain what the numbers mean '
        'for credit risk and provide actionable insights for portfolio management decisions.'
    ]

    return prompt + '\n'.join(context)

def _mock_recommendation(score) -> str:
    if score is None:
        return '**PENDING:** Complete risk assessment required before final recommendation.'
    if score >= 70:
        return '**APPROVE:** Credit facility recommended with standard terms and conditions.'
    if score >= 50:
        return '**CONDITIONAL APPROVAL:** Proceed with enhanced monitoring and periodic reviews.'
    return '**REFER TO COMMITTEE:** Requires senior management approval with strict risk mitigation measures.'

def _mock_bottom_line(score) -> str:
    if score is None:
        return 'Detailed risk assessment needed before credit decision.'
    if score >= 70:
        return 'Recommend proceeding with standard credit terms.'
    if score >= 50:
        return 'Consider conditional approval with enhanced monitoring.'
    return 'Requires senior approval and strong risk mitigation measures.'

def _mock_trend(score) -> str:
    if score is None:
        return 'Mixed'
    if score >= 70:
        return 'Positive'
    if score >= 50:
        return 'Stable'
    return 'Declining'

def build_mock_response(company: DocumentProcessingRequest) -> str:
    """Markdown assessment returned when no API key is configured."""
    analysis = company.risk_analysis or {}
    grade = (analysis.get('overallGrade') or {}).get('grade') or company.risk_grade or 'N/A'
    score = _risk_score(company)
    score_text = f'{score}%' if score is not None else 'N/A'

    return f"""### Credit Assessment Summary - {company.company_name}

#### Company Overview
| Parameter | Details |
|-----------|---------|
| Company Name | {company.company_name} |
| Industry | {company.industry or 'N/A'} |
| Risk Grade | {grade} |
| Risk Score | {score_text} |
| Recommended Limit | {_format_crores(company.recommended_limit)} |
| Assessment Date | {utcnow().strftime('%d/%m/%Y')} |

#### Key Financial Metrics ({analysis.get('latestYear') or 'N/A'})
| Metric | Value | Status |
|--------|-------|--------|
| Revenue Trend | {_mock_trend(score)} | Monitoring Required |
| Profitability | EBITDA margins stable, net profitability improving | Monitoring Required |
| Liquidity Position | Current ratio above 1.5x, adequate working capital | Adequate |
| Leverage | Debt-to-equity within industry norms | Within Limits |

#### Risk Assessment
| Category | Score | Benchmark | Status |
|----------|-------|-----------|--------|
| Financial | 72% | Industry Average | Above Average |
| Business | 68% | Peer Median | Average |
| Compliance | 85% | Regulatory Standard | Excellent |
| Overall | {score_text} | {grade} | {_mock_bottom_line(score)} |

#### Key Observations
- **Strengths:** Strong market position, consistent revenue growth, good compliance track record
- **Areas of Concern:** Working capital cycle optimization needed, monitor receivables collection
- **Monitoring Points:** Quarterly financial reviews, compliance status updates, market position assessment

#### Recommendation
{_mock_recommendation(score)}

---
*Note: This is a development mock response. Configure ANTHROPIC_API_KEY for full AI analysis.*

What specific aspect would you like me to analyze in detail?"""

class AIChatService:
    """Conversation storage and response generation for company chats."""

    def __init__(self, transport: Optional[httpx.BaseTransport] = None):
        config = current_app.config
        self.api_key = (config.get('ANTHROPIC_API_KEY') or '').strip()
        self.model = config.get('CLAUDE_MODEL', DEFAULT_PRICING_MODEL)
        self.max_tokens = config.get('CLAUDE_MAX_TOKENS', 10000)
        self.temperature = config.get('CLAUDE_TEMPERATURE', 0.3)
        self.client = ClaudeClient(
            api_key=self.api_key,
            base_url=config.get('ANTHROPIC_API_URL', 'https://api.anthropic.com/v1'),
            version=config.get('ANTHROPIC_VERSION', '2023-06-01'),
            timeout=config.get('CLAUDE_TIMEOUT', 120),
            transport=transport
        )

    def _get_conversation(self, conversation_id: str, user_id: str) -> ChatConversation:
        conversation = ChatConversation.query.filter_by(id=conversation_id, user_id=user_id).first()
        if conversation is None:
            raise ConversationNotFound('Conversation not found or access denied')
        return conversation

    def create_conversation(self, user_id: str, request_id: str, title: Optional[str] = None,
                            initial_message: Optional[str] = None) -> Dict[str, Any]:
        conversation = ChatConversation(user_id=user_id, request_id=request_id, title=title or 'New Chat')
        db.session.add(conversation)
        db.session.flush()

        message = None
        if initial_message and initial_message.strip():
            message = ChatMessage(
                conversation_id=conversation.id,
                role='user',
                content=initial_message.strip(),
                model_used=self.model
            )
            db.session.add(message)

        db.session.commit()
        return {'conversation': conversation, 'message': message}

    def get_conversations(self, user_id: str, request_id: str) -> List[ChatConversation]:
        return ChatConversation.query.filter_by(user_id=user_id, request_id=request_id, is_archived=False) \
            .order_by(ChatConversation.updated_at.desc()).all()

    def get_messages(self, conversation_id: str, user_id: str) -> Dict[str, Any]:
        conversation = self._get_conversation(conversation_id, user_id)
        messages = conversation.messages.order_by(ChatMessage.created_at.asc()).all()
        return {'conversation': conversation, 'messages': messages}

    def generate_response(self, user_message: str, company: DocumentProcessingRequest,
                          history: List[ChatMessage]) -> Dict[str, Any]:
        """
        Produce an assistant reply.

        Returns:
            content, usage {input_tokens, output_tokens} and model

        Raises:
            ChatServiceError: API failure
        """
        if not self.api_key:
            logger.warning('Anthropic API key not configured, using mock chat response')
            return {'content': build_mock_response(company), 'usage': dict(MOCK_USAGE), 'model': self.model}

        messages = build_conversation_messages(user_message, history)
        payload = {
            'model': self.model,
            'max_tokens': self.max_tokens,
            'temperature': self.temperature,
            'system': build_system_prompt(company),
            'messages': messages
        }

        logger.info(f"Sending chat request: model={self.model} messages={len(messages)}")

        try:
            data = self.client.create_message(payload)
        except httpx.HTTPError as e:
            raise ChatServiceError(f'Claude API error (network): {str(e)}') from e
        finally:
            self.client.close()

        usage = data.get('usage') or {}
        return {
            'content': data['content'][0]['text'],
            'usage': {
                'input_tokens': usage.get('input_tokens', 0),
                'output_tokens': usage.get('output_tokens', 0)
            },
            'model': self.model
        }

    def send_message(self, conversation_id: str, user_id: str, content: str,
                     company: DocumentProcessingRequest) -> Dict[str, Any]:
        """
        Store the user's message, generate a reply and record usage.

        The user message is committed before the model call so it survives an API failure.
        """
        conversation = self._get_conversation(conversation_id, user_id)
        context = build_company_context(company)

        history = conversation.messages.order_by(ChatMessage.created_at.asc()).limit(HISTORY_FETCH_LIMIT).all()

        user_message = ChatMessage(
            conversation_id=conversation.id,
            role='user',
            content=content,
            model_used=self.model,
            context_data=context
        )
        db.session.add(user_message)
        db.session.commit()

        response = self.generate_response(content, company, history)

        assistant_message = ChatMessage(
            conversation_id=conversation.id,
            role='assistant',
            content=response['content'],
            tokens_used=response['usage']['output_tokens'],
            model_used=response['model'],
            context_data=context
        )
        usage = ChatUsage(
            user_id=user_id,
            conversation_id=conversation.id,
            tokens_input=response['usage']['input_tokens'],
            tokens_output=response['usage']['output_tokens'],
            cost_usd=calculate_cost(response['usage'], response['model']),
            model_used=response['model']
        )
        conversation.updated_at = utcnow()
        db.session.add(assistant_message)
        db.session.add(usage)
        db.session.commit()

        return {'user_message': user_message, 'assistant_message': assistant_message, 'usage': usage}

    def archive_conversation(self, conversation_id: str, user_id: str) -> None:
        conversation = self._get_conversation(conversation_id, user_id)
        conversation.is_archived = True
        db.session.commit()

    def update_title(self, conversation_id: str, user_id: str, title: str) -> None:
        conversation = self._get_conversation(conversation_id, user_id)
        conversation.title = title
        db.session.commit()

    def delete_conversation(self, conversation_id: str, user_id: str) -> None:
        conversation = self._get_conversation(conversation_id, user_id)
        ChatUsage.query.filter_by(conversation_id=conversation.id).update({'conversation_id': None})
        db.session.delete(conversation)
        db.session.commit()
