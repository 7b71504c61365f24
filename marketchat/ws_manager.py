import asyncio
import json
import logging
from typing import Dict, Set, Protocol, Any

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder

from . import core

logger = logging.getLogger(__name__)

WS_CHANNEL = 'ws_events'
PRESENCE_TTL = 60
LISTENER_RETRY_DELAY = 2.0


class Notifier(Protocol):
    async def emit_to_user(self, user_id: int, event: str, payload: Dict[str, Any]) -> None:
        ...


class ConnectionManager:
    """Per-user rooms over websockets.

    Every socket a user opens joins the room keyed by their id. With Redis up,
    events go through the pub/sub channel so the instance holding the socket
    delivers them; without it delivery is local only. At-most-once.
    """

    def __init__(self):
        self.connections: Dict[int, Set[WebSocket]] = {}
        self.pubsub_task = None
        self.subscribed = False

    async def connect(self, user_id: int, websocket: WebSocket):
        await websocket.accept()
        self.connections.setdefault(user_id, set()).add(websocket)
        core.CONNECTED_SOCKETS.inc()
        if core.REDIS:
            await core.REDIS.set(f'presence:{user_id}', 'online', ex=PRESENCE_TTL)
        logger.info({'msg': 'ws_connected', 'user_id': user_id})

    async def disconnect(self, user_id: int, websocket: WebSocket):
        room = self.connections.get(user_id, set())
        if websocket in room:
            room.discard(websocket)
            core.CONNECTED_SOCKETS.dec()
        if not room:
            self.connections.pop(user_id, None)
            if core.REDIS:
                await core.REDIS.delete(f'presence:{user_id}')
        logger.info({'msg': 'ws_disconnected', 'user_id': user_id})

    async def refresh_presence(self, user_id: int):
        if core.REDIS:
            await core.REDIS.set(f'presence:{user_id}', 'online', ex=PRESENCE_TTL)

    def is_online(self, user_id: int) -> bool:
        return bool(self.connections.get(user_id))

    async def send_personal(self, user_id: int, message: dict):
        ws_set = self.connections.get(user_id, set())
        for ws in list(ws_set):
            try:
                await ws.send_json(message)
            except Exception:
                await self.disconnect(user_id, ws)

    def listening(self) -> bool:
        """True while this instance is subscribed to the events channel."""
        return self.subscribed and self.pubsub_task is not None and not self.pubsub_task.done()

    async def emit_to_user(self, user_id: int, event: str, payload: Dict[str, Any]) -> None:
        message = {'event': event, 'data': jsonable_encoder(payload)}
        if core.REDIS and self.listening():
            await core.REDIS.publish(WS_CHANNEL, json.dumps({'user_id': user_id, 'message': message}))
        else:
            await self.send_personal(user_id, message)
        core.EVENTS_EMITTED.labels(event=event).inc()

    def start_listener(self, retry_delay: float = LISTENER_RETRY_DELAY) -> asyncio.Task:
        self.pubsub_task = asyncio.create_task(self.run_redis_listener(retry_delay))
        return self.pubsub_task

    async def stop_listener(self):
        task, self.pubsub_task = self.pubsub_task, None
        if task:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # Redis pub/sub listener to route events between app instances
    async def run_redis_listener(self, retry_delay: float = LISTENER_RETRY_DELAY):
        while True:
            try:
                await self._listen()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error({'msg': 'ws_listener_failed', 'error': str(e)})
            self.subscribed = False
            await asyncio.sleep(retry_delay)

    async def _listen(self):
        pubsub = core.REDIS.pubsub()
        await pubsub.subscribe(WS_CHANNEL)
        self.subscribed = True
        try:
            async for item in pubsub.listen():
                if not item or item.get('type') != 'message':
                    continue
                try:
                    data = json.loads(item.get('data'))
                    await self.send_personal(int(data['user_id']), data['message'])
                except (ValueError, KeyError, TypeError) as e:
                    logger.warning({'msg': 'ws_event_malformed', 'error': str(e)})
        finally:
            # local delivery until the listener is back
            self.subscribed = False
            await pubsub.unsubscribe(WS_CHANNEL)
            await pubsub.aclose()


manager = ConnectionManager()
