"""
AI chat conversations, messages and token usage
"""

import uuid

from credit_portfolio import db
from credit_portfolio.utils.dates import utcnow, isoformat

class ChatConversation(db.Model):
    """A chat thread about one portfolio company."""

    __tablename__ = 'ai_chat_conversations'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    request_id = db.Column(db.String(64), nullable=False, index=True)
    title = db.Column(db.String(255), default='New Chat', nullable=False)
    is_archived = db.Column(db.Boolean, default=False, nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    messages = db.relationship('ChatMessage', backref='conversation', lazy='dynamic',
                               cascade='all, delete-orphan', order_by='ChatMessage.created_at')

    __table_args__ = (
        db.Index('idx_chat_conv_user_request', 'user_id', 'request_id', 'is_archived'),
    )

    def to_dict(self):
        return {
            'id': self.id,
            'user_id': self.user_id,
            'request_id': self.request_id,
            'title': self.title,
            'is_archived': self.is_archived,
            'created_at': isoformat(self.created_at),
            'updated_at': isoformat(self.updated_at)
        }

class ChatMessage(db.Model):

    __tablename__ = 'ai_chat_messages'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    conversation_id = db.Column(db.String(36), db.ForeignKey('ai_chat_conversations.id'),
                                nullable=False, index=True)
    role = db.Column(db.String(20), nullable=False)  # user, assistant
    content = db.Column(db.Text, nullable=False)
    tokens_used = db.Column(db.Integer, default=0, nullable=False)
    model_used = db.Column(db.String(100))
    context_data = db.Column(db.JSON)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False, index=True)

    def to_dict(self):
        return {
            'id': self.id,
            'conversation_id': self.conversation_id,
            'role': self.role,
            'content': self.content,
            'tokens_used': self.tokens_used,
            'model_used': self.model_used,
            'created_at': isoformat(self.created_at)
        }

class ChatUsage(db.Model):
    """Token and cost ledger for chat completions."""

    __tablename__ = 'ai_chat_usage'

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = db.Column(db.String(36), db.ForeignKey('users.id'), nullable=False, index=True)
    conversation_id = db.Column(db.String(36), db.ForeignKey('ai_chat_conversations.id', ondelete='SET NULL'),
                                index=True)
    tokens_input = db.Column(db.Integer, default=0, nullable=False)
    tokens_output = db.Column(db.Integer, default=0, nullable=False)
    cost_usd = db.Column(db.Float, default=0.0, nullable=False)
    model_used = db.Column(db.String(100))

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, nullable=False)

    def to_dict(self):
        return {
            'id': self.id,
            'conversation_id': self.conversation_id,
            'tokens_input': self.tokens_input,
            'tokens_output': self.tokens_output,
            'cost_usd': self.cost_usd,
            'model_used': self.model_used,
            'created_at': isoformat(self.created_at)
        }
