from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from . import Base


class Message(Base):
    __tablename__ = 'messages'
    id = Column(Integer, primary_key=True)
    chat_id = Column(Integer, ForeignKey('chats.id', ondelete='CASCADE'), index=True, nullable=False)
    sender_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    content = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    read_at = Column(DateTime(timezone=True), nullable=True)

    attachments = relationship(
        'MessageAttachment',
        lazy='selectin',
        cascade='all, delete-orphan',
        passive_deletes=True,
        order_by='MessageAttachment.id',
    )


class MessageAttachment(Base):
    __tablename__ = 'message_attachments'
    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey('messages.id', ondelete='CASCADE'), index=True, nullable=False)
    file_url = Column(String, nullable=False)
    file_type = Column(String(255), nullable=False)


class MessageDeletion(Base):
    """A user who soft-deleted a message (the message's deletedFor set)."""
    __tablename__ = 'message_deletions'
    id = Column(Integer, primary_key=True)
    message_id = Column(Integer, ForeignKey('messages.id', ondelete='CASCADE'), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (
        UniqueConstraint('message_id', 'user_id', name='uix_message_deletion'),
    )
