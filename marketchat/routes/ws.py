from fastapi import APIRouter, WebSocket, WebSocketDisconnect, Query
from ..auth import decode_token
from ..ws_manager import manager

router = APIRouter()


@router.websocket('/chat')
async def chat_ws(websocket: WebSocket, token: str = Query(None)):
    user = None
    if token:
        user = decode_token(token)
    if not user:
        await websocket.close(code=1008)
        return
    user_id = user['id']
    await manager.connect(user_id, websocket)
    try:
        while True:
            # the socket only receives; keepalives refresh presence
            try:
                data = await websocket.receive_json()
            except ValueError:
                # not JSON, ignore the frame
                continue
            if isinstance(data, dict) and data.get('type') == 'ping':
                await manager.refresh_presence(user_id)
                await websocket.send_json({'event': 'pong'})
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(user_id, websocket)
