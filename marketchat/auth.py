import os
import logging
from jose import jwt, JWTError
from datetime import datetime, timedelta, timezone
from fastapi import Header, HTTPException

logger = logging.getLogger(__name__)

# Prefer JWT_SECRET but support legacy JWT_SECRET_KEY for compatibility
SECRET = os.getenv('JWT_SECRET') or os.getenv('JWT_SECRET_KEY', 'devsecret')
ALGORITHM = os.getenv('JWT_ALGORITHM', 'HS256')
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv('ACCESS_TOKEN_EXPIRE_MINUTES', str(60 * 24 * 7)))


def create_access_token(data: dict, expires_delta: timedelta = None):
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.now(timezone.utc) + expires_delta
    else:
        expire = datetime.now(timezone.utc) + timedelta(minutes=ACCESS_TOKEN_EXPIRE_MINUTES)
    to_encode.update({'exp': expire})
    encoded = jwt.encode(to_encode, SECRET, algorithm=ALGORITHM)
    return encoded


def decode_token(token: str):
    """Claims of a valid token, normalised so that 'id' holds the user id; None otherwise"""
    try:
        payload = jwt.decode(token, SECRET, algorithms=[ALGORITHM])
    except JWTError:
        return None
    # tokens minted by the marketplace auth service carry 'userId'
    user_id = payload.get('id', payload.get('userId'))
    if user_id is None:
        return None
    try:
        payload['id'] = int(user_id)
    except (TypeError, ValueError):
        return None
    return payload


async def get_current_user(authorization: str = Header(None)) -> dict:
    if not authorization:
        raise HTTPException(status_code=401, detail='Authorization header is required')
    # accept a bare token as well as 'Bearer <token>'
    token = authorization[7:] if authorization.startswith('Bearer ') else authorization
    if not token:
        raise HTTPException(status_code=401, detail='Bearer token is required')
    user = decode_token(token)
    if not user:
        logger.warning({'msg': 'invalid_token'})
        raise HTTPException(status_code=401, detail='Invalid or expired token')
    return user
