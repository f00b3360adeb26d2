"""Integration tests for company chat endpoints."""

import pytest

from credit_portfolio.services.ai_chat_service import ChatServiceError, ClaudeClient

from conftest import make_company


@pytest.fixture
def conversation_id(client, auth_headers, companies):
    response = client.post('/api/chat/conversations', headers=auth_headers, json={
        'request_id': companies['strong'].request_id,
        'title': 'Liquidity review',
    })
    return response.get_json()['conversation']['id']


class TestConversations:
    """Test conversation management."""

    def test_create_with_initial_message(self, client, auth_headers, companies) -> None:
        response = client.post('/api/chat/conversations', headers=auth_headers, json={
            'request_id': companies['strong'].request_id,
            'initial_message': 'How is working capital trending?',
        })

        body = response.get_json()
        assert response.status_code == 201
        assert body['conversation']['title'] == 'New Chat'
        assert body['message']['role'] == 'user'

    def test_create_requires_owned_company(self, client, auth_headers, other_user) -> None:
        foreign = make_company(other_user)

        response = client.post('/api/chat/conversations', headers=auth_headers,
                               json={'request_id': foreign.request_id})

        assert response.status_code == 404

    def test_list_requires_request_id(self, client, auth_headers) -> None:
        assert client.get('/api/chat/conversations', headers=auth_headers).status_code == 400

    def test_list_and_archive(self, client, auth_headers, companies, conversation_id) -> None:
        url = f"/api/chat/conversations?request_id={companies['strong'].request_id}"

        before = client.get(url, headers=auth_headers).get_json()['conversations']
        client.patch(f'/api/chat/conversations/{conversation_id}', headers=auth_headers,
                     json={'action': 'archive'})
        after = client.get(url, headers=auth_headers).get_json()['conversations']

        assert [c['id'] for c in before] == [conversation_id]
        assert after == []

    def test_rename(self, client, auth_headers, conversation_id) -> None:
        response = client.patch(f'/api/chat/conversations/{conversation_id}', headers=auth_headers,
                                json={'action': 'update_title', 'title': '  Leverage questions  '})

        assert response.status_code == 200
        messages = client.get(f'/api/chat/conversations/{conversation_id}/messages', headers=auth_headers)
        assert messages.get_json()['conversation']['title'] == 'Leverage questions'

    def test_invalid_action(self, client, auth_headers, conversation_id) -> None:
        response = client.patch(f'/api/chat/conversations/{conversation_id}', headers=auth_headers,
                                json={'action': 'pin'})

        assert response.status_code == 400

    def test_delete(self, client, auth_headers, conversation_id) -> None:
        assert client.delete(f'/api/chat/conversations/{conversation_id}', headers=auth_headers).status_code == 200
        assert client.get(f'/api/chat/conversations/{conversation_id}/messages',
                          headers=auth_headers).status_code == 404

    def test_unknown_conversation(self, client, auth_headers) -> None:
        assert client.patch('/api/chat/conversations/missing', headers=auth_headers,
                            json={'action': 'archive'}).status_code == 404


class TestMessages:
    """Test sending messages."""

    def test_send_returns_mock_reply(self, client, auth_headers, conversation_id) -> None:
        response = client.post(f'/api/chat/conversations/{conversation_id}/messages', headers=auth_headers,
                               json={'content': 'Summarise the key risks'})

        body = response.get_json()
        assert response.status_code == 200
        assert body['message']['content'] == 'Summarise the key risks'
        assert body['assistant_message']['role'] == 'assistant'
        assert body['usage']['tokens_output'] == 400

        history = client.get(f'/api/chat/conversations/{conversation_id}/messages', headers=auth_headers)
        assert [m['role'] for m in history.get_json()['messages']] == ['user', 'assistant']

    def test_empty_content(self, client, auth_headers, conversation_id) -> None:
        response = client.post(f'/api/chat/conversations/{conversation_id}/messages', headers=auth_headers,
                               json={'content': '   '})

        assert response.status_code == 400

    def test_service_failure_returns_503(self, app, client, auth_headers, conversation_id, monkeypatch) -> None:
        def unavailable(self, payload):
            raise ChatServiceError('Claude API error (529): Overloaded')

        app.config['ANTHROPIC_API_KEY'] = 'test-key'
        monkeypatch.setattr(ClaudeClient, 'create_message', unavailable)

        response = client.post(f'/api/chat/conversations/{conversation_id}/messages', headers=auth_headers,
                               json={'content': 'Any red flags?'})

        assert response.status_code == 503
        history = client.get(f'/api/chat/conversations/{conversation_id}/messages', headers=auth_headers)
        assert [m['role'] for m in history.get_json()['messages']] == ['user']
