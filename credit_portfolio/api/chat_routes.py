"""
AI chat API endpoints
Company-scoped conversations with the credit analyst assistant
"""

from flask import Blueprint, request, jsonify
from flask_jwt_extended import jwt_required, get_jwt_identity
import logging

from credit_portfolio import db, limiter
from credit_portfolio.models import ChatConversation
from credit_portfolio.repositories import PortfolioRepository
from credit_portfolio.services.ai_chat_service import AIChatService, ChatServiceError, ConversationNotFound
from credit_portfolio.utils.validators import DataValidator

chat_bp = Blueprint('chat', __name__)
logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 255

def _conversation_not_found():
    return jsonify({
        'error': 'Conversation not found',
        'message': 'Conversation not found or access denied'
    }), 404

@chat_bp.route('/conversations', methods=['GET'])
@jwt_required()
def list_conversations():
    """Active conversations for one company."""
    request_id = request.args.get('request_id')
    if not request_id:
        return jsonify({
            'error': 'Missing request_id',
            'message': 'request_id is required'
        }), 400

    try:
        conversations = AIChatService().get_conversations(get_jwt_identity(), request_id)
        return jsonify({
            'conversations': [conversation.to_dict() for conversation in conversations]
        }), 200

    except Exception as e:
        logger.error(f"Conversation listing failed: {str(e)}")
        return jsonify({
            'error': 'Conversation retrieval failed',
            'message': 'Failed to fetch conversations'
        }), 500

@chat_bp.route('/conversations', methods=['POST'])
@jwt_required()
def create_conversation():
    try:
        user_id = get_jwt_identity()
        data = request.get_json() or {}
        request_id = data.get('request_id')

        if not request_id:
            return jsonify({
                'error': 'Missing request_id',
                'message': 'request_id is required'
            }), 400

        if not PortfolioRepository(user_id).get_company_by_request_id(request_id):
            return jsonify({
                'error': 'Request not found',
                'message': 'Request not found or access denied'
            }), 404

        title = DataValidator.sanitize_string(data['title'], MAX_TITLE_LENGTH) if data.get('title') else None
        result = AIChatService().create_conversation(user_id, request_id, title, data.get('initial_message'))

        return jsonify({
            'conversation': result['conversation'].to_dict(),
            'message': result['message'].to_dict() if result['message'] else None
        }), 201

    except Exception as e:
        logger.error(f"Conversation creation failed: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Conversation creation failed',
            'message': 'Failed to create conversation'
        }), 500

@chat_bp.route('/conversations/<conversation_id>/messages', methods=['GET'])
@jwt_required()
def get_messages(conversation_id):
    try:
        result = AIChatService().get_messages(conversation_id, get_jwt_identity())
        return jsonify({
            'conversation': result['conversation'].to_dict(),
            'messages': [message.to_dict() for message in result['messages']]
        }), 200

    except ConversationNotFound:
        return _conversation_not_found()
    except Exception as e:
        logger.error(f"Message retrieval failed for {conversation_id}: {str(e)}")
        return jsonify({
            'error': 'Message retrieval failed',
            'message': 'Failed to fetch messages'
        }), 500

@chat_bp.route('/conversations/<conversation_id>/messages', methods=['POST'])
@jwt_required()
@limiter.limit("30 per minute")
def send_message(conversation_id):
    """Store a user message and return the assistant's reply."""
    data = request.get_json() or {}
    content = (data.get('content') or '').strip()

    if not content:
        return jsonify({
            'error': 'Missing content',
            'message': 'Message content is required'
        }), 400

    try:
        user_id = get_jwt_identity()
        conversation = ChatConversation.query.filter_by(id=conversation_id, user_id=user_id).first()
        if not conversation:
            return _conversation_not_found()

        company = PortfolioRepository(user_id).get_company_by_request_id(conversation.request_id)
        if not company:
            return jsonify({
                'error': 'Company not found',
                'message': 'Company data not found'
            }), 404

        result = AIChatService().send_message(conversation_id, user_id, content, company)

        return jsonify({
            'message': result['user_message'].to_dict(),
            'assistant_message': result['assistant_message'].to_dict(),
            'usage': result['usage'].to_dict()
        }), 200

    except ConversationNotFound:
        return _conversation_not_found()
    except ChatServiceError as e:
        logger.error(f"Chat service error for {conversation_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'AI service unavailable',
            'message': 'AI service temporarily unavailable. Please try again.'
        }), 503
    except Exception as e:
        logger.error(f"Message send failed for {conversation_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Message send failed',
            'message': 'Failed to send message'
        }), 500

@chat_bp.route('/conversations/<conversation_id>', methods=['PATCH'])
@jwt_required()
def update_conversation(conversation_id):
    """Archive a conversation or rename it."""
    try:
        user_id = get_jwt_identity()
        data = request.get_json() or {}
        action = data.get('action')
        service = AIChatService()

        if action == 'archive':
            service.archive_conversation(conversation_id, user_id)
            return jsonify({'success': True}), 200

        if action == 'update_title' and data.get('title'):
            service.update_title(conversation_id, user_id,
                                 DataValidator.sanitize_string(data['title'], MAX_TITLE_LENGTH))
            return jsonify({'success': True}), 200

        return jsonify({
            'error': 'Invalid action',
            'message': "action must be 'archive' or 'update_title' with a title"
        }), 400

    except ConversationNotFound:
        return _conversation_not_found()
    except Exception as e:
        logger.error(f"Conversation update failed for {conversation_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Conversation update failed',
            'message': 'Failed to update conversation'
        }), 500

@chat_bp.route('/conversations/<conversation_id>', methods=['DELETE'])
@jwt_required()
def delete_conversation(conversation_id):
    try:
        AIChatService().delete_conversation(conversation_id, get_jwt_identity())
        return jsonify({'success': True}), 200

    except ConversationNotFound:
        return _conversation_not_found()
    except Exception as e:
        logger.error(f"Conversation deletion failed for {conversation_id}: {str(e)}")
        db.session.rollback()
        return jsonify({
            'error': 'Conversation deletion failed',
            'message': 'Failed to delete conversation'
        }), 500
