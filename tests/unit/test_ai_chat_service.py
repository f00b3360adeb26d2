"""Unit tests for the company chat service."""

import json

import httpx
import pytest

from credit_portfolio import db
from credit_portfolio.models import ChatConversation, ChatMessage, ChatUsage
from credit_portfolio.services.ai_chat_service import (
    AIChatService,
    ChatServiceError,
    ConversationNotFound,
    build_conversation_messages,
    build_mock_response,
    build_system_prompt,
    calculate_cost,
)


def claude_handler(calls, status_code=200, body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if body is not None:
            return httpx.Response(status_code, json=body)
        return httpx.Response(200, json={
            'content': [{'type': 'text', 'text': '### Summary\nStable credit profile.'}],
            'usage': {'input_tokens': 1200, 'output_tokens': 300},
        })
    return handler


@pytest.fixture
def calls():
    return []


@pytest.fixture
def live_service(app, calls):
    app.config['ANTHROPIC_API_KEY'] = 'test-key'
    return AIChatService(transport=httpx.MockTransport(claude_handler(calls)))


class TestCost:
    """Test token cost calculation."""

    def test_sonnet_pricing(self) -> None:
        usage = {'input_tokens': 150, 'output_tokens': 400}

        assert calculate_cost(usage, 'claude-sonnet-4-20250514') == pytest.approx(0.00645)

    def test_unknown_model_uses_default_pricing(self) -> None:
        usage = {'input_tokens': 1_000_000, 'output_tokens': 0}

        assert calculate_cost(usage, 'some-future-model') == pytest.approx(3.0)
        assert calculate_cost(usage, 'claude-3-haiku-20240307') == pytest.approx(0.25)


class TestConversationMessages:
    """Test history trimming for the model payload."""

    def test_keeps_last_ten_valid_turns(self) -> None:
        history = [ChatMessage(role='user' if i % 2 == 0 else 'assistant', content=f'turn {i}') for i in range(14)]
        history.insert(5, ChatMessage(role='system', content='ignored'))
        history.insert(6, ChatMessage(role='user', content='   '))

        messages = build_conversation_messages('  What is the DSCR?  ', history)

        assert len(messages) == 11
        assert messages[0] == {'role': 'user', 'content': 'turn 4'}
        assert messages[-1] == {'role': 'user', 'content': 'What is the DSCR?'}

    def test_empty_message_rejected(self) -> None:
        with pytest.raises(ValueError):
            build_conversation_messages('   ', [])


class TestPrompts:
    """Test company context in prompts and mock replies."""

    def test_system_prompt_includes_company_context(self, companies) -> None:
        prompt = build_system_prompt(companies['strong'])

        assert 'Company: Reliance Textiles Pvt Ltd' in prompt
        assert 'Overall Risk Grade: CM1' in prompt
        assert 'Recommended Credit Limit: ₹8.00 Cr' in prompt
        assert 'Financial: Excellent performance' in prompt
        assert 'Hygiene: Moderate performance' in prompt
        assert 'GST Compliance: Regular' in prompt
        assert 'Audit Status: Unqualified' in prompt
        assert '- No parameters significantly below benchmark' in prompt

    def test_mock_recommendation_follows_score(self, companies) -> None:
        assert '**APPROVE:**' in build_mock_response(companies['strong'])
        assert '**CONDITIONAL APPROVAL:**' in build_mock_response(companies['average'])
        assert '**REFER TO COMMITTEE:**' in build_mock_response(companies['weak'])
        assert '**PENDING:**' in build_mock_response(companies['failed'])


class TestConversations:
    """Test conversation storage."""

    def test_create_with_initial_message(self, app, user, companies) -> None:
        service = AIChatService()

        result = service.create_conversation(user.id, companies['strong'].request_id, 'Liquidity review',
                                             '  How is working capital?  ')

        assert result['conversation'].title == 'Liquidity review'
        assert result['message'].content == 'How is working capital?'
        assert service.get_conversations(user.id, companies['strong'].request_id) == [result['conversation']]

    def test_other_users_cannot_read(self, app, user, other_user, companies) -> None:
        service = AIChatService()
        conversation = service.create_conversation(user.id, companies['strong'].request_id)['conversation']

        with pytest.raises(ConversationNotFound):
            service.get_messages(conversation.id, other_user.id)

    def test_archive_hides_conversation(self, app, user, companies) -> None:
        service = AIChatService()
        request_id = companies['strong'].request_id
        conversation = service.create_conversation(user.id, request_id)['conversation']

        service.archive_conversation(conversation.id, user.id)

        assert service.get_conversations(user.id, request_id) == []

    def test_update_title(self, app, user, companies) -> None:
        service = AIChatService()
        conversation = service.create_conversation(user.id, companies['strong'].request_id)['conversation']

        service.update_title(conversation.id, user.id, 'Renamed')

        assert db.session.get(ChatConversation, conversation.id).title == 'Renamed'

    def test_delete_keeps_usage_ledger(self, app, user, companies) -> None:
        service = AIChatService()
        conversation = service.create_conversation(user.id, companies['strong'].request_id)['conversation']
        service.send_message(conversation.id, user.id, 'Summarise risks', companies['strong'])

        service.delete_conversation(conversation.id, user.id)

        assert ChatConversation.query.count() == 0
        assert ChatMessage.query.count() == 0
        usage = ChatUsage.query.one()
        assert usage.conversation_id is None


class TestSendMessage:
    """Test reply generation and usage recording."""

    def test_mock_reply_without_api_key(self, app, user, companies) -> None:
        service = AIChatService()
        conversation = service.create_conversation(user.id, companies['strong'].request_id)['conversation']

        result = service.send_message(conversation.id, user.id, 'Give me a summary', companies['strong'])

        assert result['assistant_message'].content.startswith(
            '### Credit Assessment Summary - Reliance Textiles Pvt Ltd')
        assert result['assistant_message'].tokens_used == 400
        assert result['usage'].cost_usd == pytest.approx(0.00645)
        assert result['user_message'].context_data['company_name'] == 'Reliance Textiles Pvt Ltd'

    def test_live_reply(self, live_service, calls, user, companies) -> None:
        conversation = live_service.create_conversation(user.id, companies['strong'].request_id,
                                                        initial_message='Hello')['conversation']

        result = live_service.send_message(conversation.id, user.id, 'What about leverage?',
                                           companies['strong'])

        assert result['assistant_message'].content == '### Summary\nStable credit profile.'
        assert result['usage'].tokens_input == 1200
        assert result['usage'].tokens_output == 300

        request = calls[0]
        assert request.url.path == '/v1/messages'
        assert request.headers['x-api-key'] == 'test-key'
        payload = json.loads(request.content)
        assert payload['messages'] == [
            {'role': 'user', 'content': 'Hello'},
            {'role': 'user', 'content': 'What about leverage?'},
        ]
        assert 'Company: Reliance Textiles Pvt Ltd' in payload['system']
        assert live_service.client._client is None

    def test_api_error_keeps_user_message(self, app, user, companies) -> None:
        app.config['ANTHROPIC_API_KEY'] = 'test-key'
        handler = claude_handler([], status_code=529, body={'error': {'message': 'Overloaded'}})
        service = AIChatService(transport=httpx.MockTransport(handler))
        conversation = service.create_conversation(user.id, companies['strong'].request_id)['conversation']

        with pytest.raises(ChatServiceError, match='Overloaded'):
            service.send_message(conversation.id, user.id, 'Any red flags?', companies['strong'])

        messages = service.get_messages(conversation.id, user.id)['messages']
        assert [m.role for m in messages] == ['user']
        assert ChatUsage.query.count() == 0

    def test_empty_content_is_an_error(self, app, user, companies) -> None:
        app.config['ANTHROPIC_API_KEY'] = 'test-key'
        handler = claude_handler([], body={'content': [], 'usage': {}})
        service = AIChatService(transport=httpx.MockTransport(handler))
        conversation = service.create_conversation(user.id, companies['strong'].request_id)['conversation']

        with pytest.raises(ChatServiceError, match='Invalid response format'):
            service.send_message(conversation.id, user.id, 'Any red flags?', companies['strong'])
