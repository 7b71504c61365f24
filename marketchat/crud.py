from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional, Dict, Tuple

from sqlalchemy import select, update, delete, func, or_, exists
from sqlalchemy.exc import IntegrityError

from .models import AsyncSessionLocal
from .models.products import Product
from .models.chats import Chat, ChatDeletion
from .models.messages import Message, MessageAttachment, MessageDeletion
from .errors import AccessDenied


# query filters

@dataclass
class ChatLookup:
    product_id: int
    customer_id: int
    seller_id: Optional[int] = None


@dataclass
class NewChat:
    product_id: int
    customer_id: int
    seller_id: int


@dataclass
class NewMessage:
    chat_id: int
    sender_id: int
    content: str = ''


@dataclass
class NewAttachment:
    url: str
    type: str


@dataclass
class ChatView:
    """A chat as seen by one user: visible messages newest first plus unread count."""
    chat: Chat
    messages: List[Message] = field(default_factory=list)
    unread_count: int = 0


@dataclass
class DeletedMessage:
    id: int
    chat_id: int
    sender_id: int


def _deleted_for(user_id: int):
    return exists().where(MessageDeletion.message_id == Message.id, MessageDeletion.user_id == user_id)


def _visible_messages(chat_id: int, user_id: int):
    return (
        select(Message)
        .where(Message.chat_id == chat_id, ~_deleted_for(user_id))
        .order_by(Message.created_at.desc(), Message.id.desc())
    )


async def _unread_counts(session, chat_ids: List[int], user_id: int) -> Dict[int, int]:
    if not chat_ids:
        return {}
    q = (
        select(Message.chat_id, func.count(Message.id))
        .where(
            Message.chat_id.in_(chat_ids),
            Message.sender_id != user_id,
            Message.read_at.is_(None),
            ~_deleted_for(user_id),
        )
        .group_by(Message.chat_id)
    )
    res = await session.execute(q)
    return {chat_id: count for chat_id, count in res.all()}


class ChatRepository:
    """Data access for chats, messages and attachments.

    Every call opens and closes its own session.
    """

    def __init__(self, session_factory=AsyncSessionLocal):
        self.session_factory = session_factory

    async def _view(self, session, chat: Optional[Chat], user_id: int) -> Optional[ChatView]:
        if not chat:
            return None
        res = await session.execute(_visible_messages(chat.id, user_id))
        counts = await _unread_counts(session, [chat.id], user_id)
        return ChatView(chat=chat, messages=list(res.scalars().all()), unread_count=counts.get(chat.id, 0))

    async def find_chat(self, lookup: ChatLookup) -> Optional[Chat]:
        async with self.session_factory() as session:
            q = select(Chat).where(Chat.product_id == lookup.product_id, Chat.customer_id == lookup.customer_id)
            if lookup.seller_id is not None:
                q = q.where(Chat.seller_id == lookup.seller_id)
            res = await session.execute(q)
            return res.scalars().first()

    async def create_chat(self, data: NewChat) -> Tuple[Chat, bool]:
        """Insert the chat; returns (chat, created). created is False when a concurrent first message won."""
        async with self.session_factory() as session:
            try:
                chat = Chat(product_id=data.product_id, customer_id=data.customer_id, seller_id=data.seller_id)
                session.add(chat)
                await session.commit()
            except IntegrityError:
                await session.rollback()
                res = await session.execute(
                    select(Chat).where(Chat.product_id == data.product_id, Chat.customer_id == data.customer_id)
                )
                existing = res.scalars().first()
                if existing is None:
                    raise
                return existing, False
            res = await session.execute(select(Chat).where(Chat.id == chat.id))
            return res.scalars().first(), True

    async def find_by_id(self, chat_id: int, user_id: int) -> Optional[ChatView]:
        async with self.session_factory() as session:
            res = await session.execute(select(Chat).where(Chat.id == chat_id))
            return await self._view(session, res.scalars().first(), user_id)

    async def find_by_product_and_user(self, product_id: int, user_id: int) -> Optional[ChatView]:
        async with self.session_factory() as session:
            res = await session.execute(
                select(Chat)
                .where(Chat.product_id == product_id, or_(Chat.customer_id == user_id, Chat.seller_id == user_id))
                .order_by(Chat.updated_at.desc(), Chat.id.desc())
            )
            return await self._view(session, res.scalars().first(), user_id)

    async def get_user_chats(self, user_id: int) -> List[ChatView]:
        """Chats of a user (minus the ones they soft-deleted), newest activity first, latest message only."""
        async with self.session_factory() as session:
            hidden = exists().where(ChatDeletion.chat_id == Chat.id, ChatDeletion.user_id == user_id)
            res = await session.execute(
                select(Chat)
                .where(or_(Chat.customer_id == user_id, Chat.seller_id == user_id), ~hidden)
                .order_by(Chat.updated_at.desc(), Chat.id.desc())
            )
            chats = list(res.scalars().unique().all())
            counts = await _unread_counts(session, [c.id for c in chats], user_id)
            views = []
            for chat in chats:
                latest = await session.execute(_visible_messages(chat.id, user_id).limit(1))
                views.append(ChatView(chat=chat, messages=list(latest.scalars().all()), unread_count=counts.get(chat.id, 0)))
            return views

    async def create_message(self, data: NewMessage) -> Message:
        async with self.session_factory() as session:
            m = Message(chat_id=data.chat_id, sender_id=data.sender_id, content=data.content)
            session.add(m)
            await session.execute(update(Chat).where(Chat.id == data.chat_id).values(updated_at=datetime.now(timezone.utc)))
            # writing into a chat you hid brings it back for you; the other side's hide stays
            await session.execute(
                delete(ChatDeletion).where(ChatDeletion.chat_id == data.chat_id, ChatDeletion.user_id == data.sender_id)
            )
            await session.commit()
            await session.refresh(m)
            return m

    async def add_attachments(self, message_id: int, files: List[NewAttachment]) -> int:
        if not files:
            return 0
        async with self.session_factory() as session:
            session.add_all([
                MessageAttachment(message_id=message_id, file_url=f.url, file_type=f.type)
                for f in files
            ])
            await session.commit()
            return len(files)

    async def get_messages(self, chat_id: int, user_id: int) -> List[Message]:
        async with self.session_factory() as session:
            res = await session.execute(_visible_messages(chat_id, user_id))
            return list(res.scalars().all())

    async def get_attachments_by_message_id(self, message_id: int) -> List[MessageAttachment]:
        async with self.session_factory() as session:
            res = await session.execute(
                select(MessageAttachment)
                .where(MessageAttachment.message_id == message_id)
                .order_by(MessageAttachment.id)
            )
            return list(res.scalars().all())

    async def mark_messages_as_read(self, chat_id: int, user_id: int) -> int:
        async with self.session_factory() as session:
            res = await session.execute(
                update(Message)
                .where(Message.chat_id == chat_id, Message.sender_id != user_id, Message.read_at.is_(None))
                .values(read_at=func.now())
                .execution_options(synchronize_session=False)
            )
            await session.commit()
            return res.rowcount or 0

    async def get_product_by_id(self, product_id: int) -> Optional[Product]:
        async with self.session_factory() as session:
            res = await session.execute(select(Product).where(Product.id == product_id))
            return res.scalars().first()

    async def delete_message(self, message_id: int, user_id: int, delete_for_all: bool) -> Optional[DeletedMessage]:
        async with self.session_factory() as session:
            res = await session.execute(select(Message).where(Message.id == message_id))
            m = res.scalars().first()
            if not m:
                return None
            chat = (await session.execute(select(Chat).where(Chat.id == m.chat_id))).scalars().first()
            if not chat or not chat.is_participant(user_id):
                raise AccessDenied('Access denied. You are not a participant of this chat.')
            deleted = DeletedMessage(id=m.id, chat_id=m.chat_id, sender_id=m.sender_id)

            if delete_for_all:
                if m.sender_id != user_id:
                    raise AccessDenied('Only sender can delete message for everyone')
                await session.execute(delete(MessageDeletion).where(MessageDeletion.message_id == message_id))
                await session.execute(delete(MessageAttachment).where(MessageAttachment.message_id == message_id))
                await session.execute(delete(Message).where(Message.id == message_id))
                await session.commit()
                return deleted

            already = await session.execute(
                select(MessageDeletion.id).where(MessageDeletion.message_id == message_id, MessageDeletion.user_id == user_id)
            )
            if already.scalar() is None:
                session.add(MessageDeletion(message_id=message_id, user_id=user_id))
                await session.commit()
            return deleted

    async def soft_delete_chat(self, chat_id: int, user_id: int) -> Dict:
        async with self.session_factory() as session:
            try:
                session.add(ChatDeletion(chat_id=chat_id, user_id=user_id))
                await session.commit()
            except IntegrityError:
                # already hidden for this user
                await session.rollback()
            res = await session.execute(select(ChatDeletion.user_id).where(ChatDeletion.chat_id == chat_id))
            return {'id': chat_id, 'deletedFor': sorted(res.scalars().all())}
