"""
Chat service
Conversation and message lifecycle, read receipts and websocket fan-out
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from . import core
from .crud import ChatRepository, ChatView, NewAttachment, NewChat, NewMessage
from .errors import AccessDenied, InternalError, InvalidRequest, NotFound, OperationNotAllowed
from .file_storage import AttachmentStorage, attachment_storage
from .models.chats import Chat
from .ws_manager import Notifier

logger = logging.getLogger(__name__)

# websocket events
NEW_MESSAGE = 'new_message'
CHAT_LIST_UPDATE = 'chat_list_update'
NEW_CHAT = 'new_chat'
MESSAGES_READ = 'messages_read'
MESSAGE_DELETED_FOR_ALL = 'message_deleted_for_all'
MESSAGE_DELETED_FOR_ME = 'message_deleted_for_me'
CHAT_DELETED = 'chat_deleted'

EMPTY_CHAT_PREVIEW = 'Start a conversation'


@dataclass
class Counterpart:
    id: int
    role: str  # role of the counterpart: 'seller' or 'buyer'


def counterpart(chat: Chat, caller_id: int) -> Counterpart:
    """The participant of `chat` who is not `caller_id`."""
    if chat.customer_id == caller_id:
        return Counterpart(id=chat.seller_id, role='seller')
    return Counterpart(id=chat.customer_id, role='buyer')


def _format_attachments(attachments, message_id: int) -> List[Dict[str, Any]]:
    return [
        {'id': att.id, 'messageId': message_id, 'fileUrl': att.file_url, 'fileType': att.file_type}
        for att in attachments
    ]


def _summary(view: ChatView, user_id: int) -> Dict[str, Any]:
    chat = view.chat
    other = counterpart(chat, user_id)
    participant = chat.seller if other.role == 'seller' else chat.customer
    latest = view.messages[0] if view.messages else None
    product = chat.product
    return {
        'id': chat.id,
        'participantId': participant.id,
        'participantName': participant.full_name,
        'participantRole': other.role,
        'participantAvatar': participant.avatar_url,
        'lastMessage': latest.content if latest and latest.content else None,
        'lastMessageTime': latest.created_at if latest else chat.created_at,
        'unreadCount': view.unread_count,
        'productId': product.id,
        'productName': product.name,
        'productImage': product.cover_image,
        'productPrice': product.price,
        'productSlug': product.slug,
    }


class ChatService:

    def __init__(self, repo: ChatRepository, notifier: Notifier, storage: AttachmentStorage = attachment_storage):
        self.repo = repo
        self.notifier = notifier
        self.storage = storage

    async def _emit(self, user_id: int, event: str, payload: Dict[str, Any]):
        # at-most-once: a failed push never fails the request, clients re-sync by pulling
        try:
            await self.notifier.emit_to_user(user_id, event, payload)
        except Exception as e:
            core.EMIT_FAILURES.labels(event=event).inc()
            logger.warning({'msg': 'ws_emit_failed', 'event': event, 'user_id': user_id, 'error': str(e)})

    async def _participant_chat(self, chat_id: int, user_id: int) -> ChatView:
        view = await self.repo.find_by_id(chat_id, user_id)
        if not view:
            raise NotFound('Chat not found')
        if not view.chat.is_participant(user_id):
            raise AccessDenied('Access denied. You are not a participant of this chat.')
        return view

    async def get_user_chats(self, user_id: int) -> List[Dict[str, Any]]:
        views = await self.repo.get_user_chats(user_id)
        return [_summary(view, user_id) for view in views]

    async def get_chat_by_id(self, user_id: int, chat_id: Optional[int] = None, product_id: Optional[int] = None) -> Dict[str, Any]:
        if (chat_id is None) == (product_id is None):
            raise InvalidRequest('Either chatId or productId is required')

        if chat_id is not None:
            view = await self.repo.find_by_id(chat_id, user_id)
        else:
            view = await self.repo.find_by_product_and_user(product_id, user_id)

        if not view:
            raise NotFound('Chat not found')
        chat = view.chat
        if not chat.is_participant(user_id):
            raise AccessDenied('Access denied. You are not a participant of this chat.')

        await self.mark_messages_as_read(chat.id, user_id)

        messages = []
        for m in view.messages:
            sender = chat.customer if m.sender_id == chat.customer_id else chat.seller
            messages.append({
                'id': m.id,
                'senderId': m.sender_id,
                'senderName': 'You' if m.sender_id == user_id else sender.full_name,
                'message': m.content,
                'timestamp': m.created_at,
                # marking happened after the load, so the caller's incoming messages are read now
                'isRead': m.read_at is not None or m.sender_id != user_id,
                'productId': chat.product_id,
                'attachments': _format_attachments(m.attachments, m.id),
            })

        result = _summary(view, user_id)
        result.update({
            'lastMessage': result['lastMessage'] or EMPTY_CHAT_PREVIEW,
            'unreadCount': 0,
            'messages': messages,
            'createdAt': chat.created_at,
            'updatedAt': chat.updated_at,
        })
        return result

    async def send_message(
        self,
        sender_id: int,
        chat_id: Optional[int] = None,
        product_id: Optional[int] = None,
        content: Optional[str] = None,
        attachments: Optional[List[NewAttachment]] = None,
    ) -> Dict[str, Any]:
        is_new_chat = False

        if chat_id is not None:
            view = await self.repo.find_by_id(chat_id, sender_id)
            if not view:
                raise NotFound('Chat not found')
            chat = view.chat
            if not chat.is_participant(sender_id):
                raise AccessDenied('Access denied. You are not a participant of this chat.')
        elif product_id is not None:
            existing = await self.repo.find_by_product_and_user(product_id, sender_id)
            if existing:
                chat = existing.chat
            else:
                product = await self.repo.get_product_by_id(product_id)
                if not product:
                    raise NotFound('Product not found')
                if sender_id == product.seller_id:
                    raise OperationNotAllowed('Seller cannot initiate chat. Customer must message first.')
                chat, is_new_chat = await self.repo.create_chat(NewChat(
                    product_id=product_id,
                    customer_id=sender_id,
                    seller_id=product.seller_id,
                ))
                if is_new_chat:
                    core.CHATS_CREATED.inc()
                    logger.info({'msg': 'chat_created', 'chat_id': chat.id, 'product_id': product_id})
        else:
            raise InvalidRequest('Either chatId or productId is required')

        message = await self.repo.create_message(NewMessage(chat_id=chat.id, sender_id=sender_id, content=content or ''))
        if not message or not message.id:
            raise InternalError('Failed to create message')
        core.MESSAGES_SENT.inc()

        if attachments:
            await self.repo.add_attachments(message.id, attachments)
        stored = await self.repo.get_attachments_by_message_id(message.id)

        result = {
            'id': message.id,
            'chatId': chat.id,
            'senderId': sender_id,
            'content': message.content,
            'createdAt': message.created_at,
            'readAt': message.read_at,
            'attachments': _format_attachments(stored, message.id),
        }

        receiver = counterpart(chat, sender_id)
        receiver_view = await self.repo.find_by_id(chat.id, receiver.id)
        receiver_unread = receiver_view.unread_count if receiver_view else 1
        sender = chat.customer if sender_id == chat.customer_id else chat.seller

        await self._emit(receiver.id, NEW_MESSAGE, {
            'chatId': chat.id,
            'message': {
                'id': message.id,
                'senderId': sender_id,
                'senderName': sender.full_name if sender else '',
                'message': message.content,
                'timestamp': message.created_at,
                'isRead': False,
                'attachments': result['attachments'],
            },
            'chatSummary': {
                'chatId': chat.id,
                'lastMessage': message.content,
                'lastMessageTime': message.created_at,
                'unreadCount': receiver_unread,
                'productId': chat.product_id,
            },
        })
        await self._emit(sender_id, CHAT_LIST_UPDATE, {
            'chatId': chat.id,
            'lastMessage': message.content,
            'lastMessageTime': message.created_at,
            'unreadCount': 0,
        })
        if is_new_chat:
            await self._emit(receiver.id, NEW_CHAT, {
                'chatId': chat.id,
                'productId': chat.product_id,
                'customerId': chat.customer_id,
                'sellerId': chat.seller_id,
            })

        return result

    async def get_messages(self, chat_id: int, user_id: int) -> List[Dict[str, Any]]:
        view = await self._participant_chat(chat_id, user_id)
        chat = view.chat

        await self.mark_messages_as_read(chat_id, user_id)
        messages = await self.repo.get_messages(chat_id, user_id)

        out = []
        for m in messages:
            if m.sender_id == user_id:
                name, avatar = 'You', None
            else:
                sender = chat.seller if m.sender_id == chat.seller_id else chat.customer
                name, avatar = sender.full_name, sender.avatar_url
            out.append({
                'id': m.id,
                'senderId': m.sender_id,
                'senderName': name,
                'senderAvatar': avatar,
                'message': m.content,
                'timestamp': m.created_at,
                'isRead': m.read_at is not None,
                'attachments': _format_attachments(m.attachments, m.id),
            })
        return out

    async def mark_messages_as_read(self, chat_id: int, user_id: int) -> Dict[str, Any]:
        view = await self._participant_chat(chat_id, user_id)
        updated = await self.repo.mark_messages_as_read(chat_id, user_id)

        other = counterpart(view.chat, user_id)
        await self._emit(other.id, MESSAGES_READ, {'chatId': chat_id, 'readerId': user_id})
        await self._emit(other.id, CHAT_LIST_UPDATE, {'chatId': chat_id, 'unreadCount': 0})
        await self._emit(user_id, CHAT_LIST_UPDATE, {'chatId': chat_id, 'unreadCount': 0})

        return {'success': True, 'updated': updated}

    async def delete_message(self, message_id: int, user_id: int, delete_for_all: bool = False) -> Dict[str, Any]:
        # fetched up front, the rows are gone after a hard delete
        attachments = await self.repo.get_attachments_by_message_id(message_id)

        deleted = await self.repo.delete_message(message_id, user_id, delete_for_all)
        if not deleted:
            raise NotFound('Message not found')

        if delete_for_all:
            for att in attachments:
                self.storage.delete(att.file_url)

            view = await self.repo.find_by_id(deleted.chat_id, user_id)
            if view:
                payload = {'messageId': message_id, 'chatId': deleted.chat_id}
                await self._emit(view.chat.customer_id, MESSAGE_DELETED_FOR_ALL, payload)
                await self._emit(view.chat.seller_id, MESSAGE_DELETED_FOR_ALL, payload)
        else:
            await self._emit(user_id, MESSAGE_DELETED_FOR_ME, {'messageId': message_id, 'chatId': deleted.chat_id})

        logger.info({'msg': 'message_deleted', 'message_id': message_id, 'delete_for_all': delete_for_all})
        return {'success': True, 'messageId': message_id, 'deleteForAll': delete_for_all}

    async def soft_delete_chat(self, chat_id: int, user_id: int) -> Dict[str, Any]:
        await self._participant_chat(chat_id, user_id)
        result = await self.repo.soft_delete_chat(chat_id, user_id)
        await self._emit(user_id, CHAT_DELETED, {'chatId': chat_id})
        return result
