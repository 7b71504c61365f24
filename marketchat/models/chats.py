from sqlalchemy import Column, Integer, DateTime, ForeignKey, UniqueConstraint, func
from sqlalchemy.orm import relationship
from . import Base


class Chat(Base):
    __tablename__ = 'chats'
    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey('products.id', ondelete='CASCADE'), index=True, nullable=False)
    customer_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    seller_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), index=True)

    product = relationship('Product', lazy='joined')
    customer = relationship('User', foreign_keys=[customer_id], lazy='joined')
    seller = relationship('User', foreign_keys=[seller_id], lazy='joined')

    __table_args__ = (
        # one conversation per customer per product
        UniqueConstraint('product_id', 'customer_id', name='uix_chat_product_customer'),
    )

    def is_participant(self, user_id: int) -> bool:
        return user_id in (self.customer_id, self.seller_id)


class ChatDeletion(Base):
    """A user who soft-deleted a chat (the chat's deletedFor set)."""
    __tablename__ = 'chat_deletions'
    id = Column(Integer, primary_key=True)
    chat_id = Column(Integer, ForeignKey('chats.id', ondelete='CASCADE'), index=True, nullable=False)
    user_id = Column(Integer, ForeignKey('users.id', ondelete='CASCADE'), index=True, nullable=False)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    __table_args__ = (
        UniqueConstraint('chat_id', 'user_id', name='uix_chat_deletion'),
    )
