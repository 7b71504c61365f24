from datetime import datetime
from pydantic import BaseModel
from typing import Optional, List


class AttachmentIn(BaseModel):
    url: str
    type: str


class SendMessageIn(BaseModel):
    chatId: Optional[int] = None
    product_id: Optional[int] = None
    content: Optional[str] = None
    attachments: List[AttachmentIn] = []


class MarkReadIn(BaseModel):
    chatId: int


class AttachmentOut(BaseModel):
    id: int
    messageId: int
    fileUrl: str
    fileType: str


class ChatSummaryOut(BaseModel):
    id: int
    participantId: int
    participantName: str
    participantRole: str
    participantAvatar: Optional[str]
    lastMessage: Optional[str]
    lastMessageTime: datetime
    unreadCount: int
    productId: int
    productName: str
    productImage: Optional[str]
    productPrice: float
    productSlug: str


class ChatMessageOut(BaseModel):
    id: int
    senderId: int
    senderName: str
    message: Optional[str]
    timestamp: datetime
    isRead: bool
    productId: int
    attachments: List[AttachmentOut] = []


class ChatDetailOut(ChatSummaryOut):
    messages: List[ChatMessageOut] = []
    createdAt: datetime
    updatedAt: Optional[datetime]


class MessageListItemOut(BaseModel):
    id: int
    senderId: int
    senderName: str
    senderAvatar: Optional[str]
    message: Optional[str]
    timestamp: datetime
    isRead: bool
    attachments: List[AttachmentOut] = []


class SentMessageOut(BaseModel):
    id: int
    chatId: int
    senderId: int
    content: Optional[str]
    createdAt: datetime
    readAt: Optional[datetime]
    attachments: List[AttachmentOut] = []


class MarkReadOut(BaseModel):
    success: bool = True
    updated: int = 0


class DeleteMessageOut(BaseModel):
    success: bool = True
    messageId: int
    deleteForAll: bool


class DeleteChatOut(BaseModel):
    id: int
    deletedFor: List[int] = []
