"""
Domain errors raised by the chat service and repository.
Mapped to HTTP responses by the handler registered in main.py
"""
from fastapi import Request
from fastapi.responses import JSONResponse


class ChatError(Exception):
    status_code = 400
    code = 'CHAT_ERROR'

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidRequest(ChatError):
    status_code = 400
    code = 'INVALID_REQUEST'


class NotFound(ChatError):
    status_code = 404
    code = 'NOT_FOUND'


class AccessDenied(ChatError):
    status_code = 403
    code = 'ACCESS_DENIED'


class OperationNotAllowed(ChatError):
    status_code = 409
    code = 'OPERATION_NOT_ALLOWED'


class InternalError(ChatError):
    status_code = 500
    code = 'INTERNAL_ERROR'


async def chat_error_handler(request: Request, exc: ChatError):
    return JSONResponse(status_code=exc.status_code, content={'detail': exc.message, 'code': exc.code})
