from fastapi import APIRouter, Depends, HTTPException, Query, Request
from starlette.datastructures import UploadFile
from typing import List, Optional

from ..schemas.chats import (
    SendMessageIn,
    MarkReadIn,
    ChatSummaryOut,
    ChatDetailOut,
    MessageListItemOut,
    SentMessageOut,
    MarkReadOut,
    DeleteMessageOut,
    DeleteChatOut,
)
from ..auth import get_current_user
from ..cache import check_rate_limit, SEND_RATE_LIMIT
from ..chat_service import ChatService
from ..crud import NewAttachment
from ..errors import ChatError

router = APIRouter()


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def _optional_int(value, field: str) -> Optional[int]:
    if value in (None, ''):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(400, f'{field} must be an integer')


async def _parse_send_request(request: Request, service: ChatService):
    """JSON body or multipart form with file parts; returns (payload, attachments, files written here)"""
    content_type = request.headers.get('content-type', '')
    if content_type.startswith('multipart/form-data'):
        form = await request.form()
        payload = SendMessageIn(
            chatId=_optional_int(form.get('chatId'), 'chatId'),
            product_id=_optional_int(form.get('product_id'), 'product_id'),
            content=form.get('content'),
        )
        saved: List[NewAttachment] = []
        try:
            for _, value in form.multi_items():
                if isinstance(value, UploadFile):
                    saved.append(await service.storage.save(value))
        except Exception:
            for att in saved:
                service.storage.delete(att.url)
            raise
        return payload, saved, saved

    try:
        payload = SendMessageIn.model_validate(await request.json())
    except ValueError as e:
        # also covers pydantic's ValidationError
        raise HTTPException(400, f'Invalid message payload: {e}')
    return payload, [NewAttachment(url=a.url, type=a.type) for a in payload.attachments], []


@router.get('', response_model=List[ChatSummaryOut])
async def my_chats(
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    return await service.get_user_chats(current_user['id'])


@router.get('/messages', response_model=ChatDetailOut)
async def chat_detail(
    chatId: Optional[int] = Query(None),
    product_id: Optional[int] = Query(None),
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    return await service.get_chat_by_id(current_user['id'], chat_id=chatId, product_id=product_id)


@router.post('/messages', response_model=SentMessageOut)
async def send(
    request: Request,
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    if not await check_rate_limit(current_user['id'], 'send_message', limit=SEND_RATE_LIMIT, window=3600):
        raise HTTPException(429, 'Rate limit exceeded. Too many messages.')

    payload, attachments, written = await _parse_send_request(request, service)
    try:
        if payload.chatId is None and payload.product_id is None:
            raise HTTPException(400, 'Either chatId or product_id is required')
        return await service.send_message(
            current_user['id'],
            chat_id=payload.chatId,
            product_id=payload.product_id,
            content=payload.content,
            attachments=attachments,
        )
    except (ChatError, HTTPException):
        # files of a rejected upload would never be referenced
        for att in written:
            service.storage.delete(att.url)
        raise


@router.post('/messages/read', response_model=MarkReadOut)
async def mark_read(
    payload: MarkReadIn,
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    return await service.mark_messages_as_read(payload.chatId, current_user['id'])


@router.delete('/messages/{message_id}', response_model=DeleteMessageOut)
async def delete_message(
    message_id: int,
    deleteForAll: bool = Query(False),
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    return await service.delete_message(message_id, current_user['id'], deleteForAll)


@router.get('/{chat_id}/messages', response_model=List[MessageListItemOut])
async def chat_messages(
    chat_id: int,
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    return await service.get_messages(chat_id, current_user['id'])


@router.delete('/{chat_id}', response_model=DeleteChatOut)
async def delete_chat(
    chat_id: int,
    current_user: dict = Depends(get_current_user),
    service: ChatService = Depends(get_chat_service),
):
    return await service.soft_delete_chat(chat_id, current_user['id'])
