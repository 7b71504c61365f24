import asyncio
import json
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from marketchat import core
from marketchat.auth import create_access_token
from marketchat.cache import check_rate_limit
from marketchat.main import app
from marketchat.ws_manager import ConnectionManager, WS_CHANNEL


class FakeWebSocket:
    def __init__(self, fail=False):
        self.accepted = False
        self.sent = []
        self.fail = fail

    async def accept(self):
        self.accepted = True

    async def send_json(self, message):
        if self.fail:
            raise RuntimeError('connection reset')
        self.sent.append(message)


class IdlePubSub:
    def __init__(self):
        self.channels = set()
        self.closed = False

    async def subscribe(self, channel):
        self.channels.add(channel)

    async def unsubscribe(self, channel):
        self.channels.discard(channel)

    async def aclose(self):
        self.closed = True

    async def listen(self):
        await asyncio.Event().wait()
        yield


class BrokenPubSub(IdlePubSub):
    async def listen(self):
        raise ConnectionError('redis went away')
        yield


class FakeRedis:
    def __init__(self):
        self.values = {}
        self.published = []
        self.pubsub_instance = IdlePubSub()

    def pubsub(self):
        return self.pubsub_instance

    async def set(self, key, value, ex=None):
        self.values[key] = value

    async def delete(self, key):
        self.values.pop(key, None)

    async def publish(self, channel, data):
        self.published.append((channel, data))

    async def incr(self, key):
        self.values[key] = self.values.get(key, 0) + 1
        return self.values[key]

    async def expire(self, key, ttl):
        return True


@pytest.fixture
def fake_redis(monkeypatch):
    redis = FakeRedis()
    monkeypatch.setattr(core, 'REDIS', redis)
    return redis


@pytest.mark.asyncio
async def test_emit_reaches_every_socket_of_the_user():
    manager = ConnectionManager()
    phone, laptop, other = FakeWebSocket(), FakeWebSocket(), FakeWebSocket()
    await manager.connect(1, phone)
    await manager.connect(1, laptop)
    await manager.connect(2, other)

    sent_at = datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    await manager.emit_to_user(1, 'chat_list_update', {'chatId': 7, 'lastMessageTime': sent_at})

    expected = {'event': 'chat_list_update', 'data': {'chatId': 7, 'lastMessageTime': sent_at.isoformat()}}
    assert phone.sent == [expected]
    assert laptop.sent == [expected]
    assert other.sent == []


@pytest.mark.asyncio
async def test_emit_to_offline_user_is_a_no_op():
    manager = ConnectionManager()
    await manager.emit_to_user(42, 'new_message', {'chatId': 1})
    assert not manager.is_online(42)


@pytest.mark.asyncio
async def test_broken_socket_is_dropped():
    manager = ConnectionManager()
    good, broken = FakeWebSocket(), FakeWebSocket(fail=True)
    await manager.connect(1, good)
    await manager.connect(1, broken)

    await manager.emit_to_user(1, 'chat_deleted', {'chatId': 3})

    assert manager.connections[1] == {good}
    assert good.sent[0]['event'] == 'chat_deleted'


@pytest.mark.asyncio
async def test_presence_tracked_in_redis(fake_redis):
    manager = ConnectionManager()
    ws = FakeWebSocket()
    await manager.connect(5, ws)
    assert fake_redis.values['presence:5'] == 'online'

    await manager.disconnect(5, ws)
    assert 'presence:5' not in fake_redis.values
    assert not manager.is_online(5)


@pytest.mark.asyncio
async def test_emit_goes_through_pubsub_when_listening(fake_redis):
    manager = ConnectionManager()
    fake_redis.pubsub_instance = IdlePubSub()
    task = manager.start_listener()
    await asyncio.sleep(0)
    ws = FakeWebSocket()
    await manager.connect(9, ws)

    await manager.emit_to_user(9, 'messages_read', {'chatId': 1, 'readerId': 2})

    assert ws.sent == []
    channel, data = fake_redis.published[0]
    assert channel == WS_CHANNEL
    assert json.loads(data) == {'user_id': 9, 'message': {'event': 'messages_read', 'data': {'chatId': 1, 'readerId': 2}}}
    await manager.stop_listener()
    assert task.cancelled()


@pytest.mark.asyncio
async def test_emit_delivers_locally_while_listener_is_down(fake_redis):
    manager = ConnectionManager()
    fake_redis.pubsub_instance = BrokenPubSub()
    task = manager.start_listener(retry_delay=3600)
    for _ in range(5):
        await asyncio.sleep(0)
    ws = FakeWebSocket()
    await manager.connect(9, ws)

    assert not task.done()
    assert not manager.listening()
    await manager.emit_to_user(9, 'new_message', {'chatId': 1})

    assert ws.sent == [{'event': 'new_message', 'data': {'chatId': 1}}]
    assert fake_redis.published == []
    await manager.stop_listener()


@pytest.mark.asyncio
async def test_listener_resubscribes_after_failure(fake_redis):
    manager = ConnectionManager()
    fake_redis.pubsub_instance = BrokenPubSub()
    manager.start_listener(retry_delay=0)
    await asyncio.sleep(0)
    assert not manager.listening()

    fake_redis.pubsub_instance = IdlePubSub()
    for _ in range(5):
        await asyncio.sleep(0)

    assert manager.listening()
    assert fake_redis.pubsub_instance.channels == {WS_CHANNEL}
    await manager.stop_listener()


@pytest.mark.asyncio
async def test_emit_delivers_locally_when_listener_task_died(fake_redis):
    manager = ConnectionManager()
    loop = asyncio.get_running_loop()
    manager.pubsub_task = loop.create_future()
    manager.pubsub_task.set_exception(ConnectionError('redis went away'))
    manager.subscribed = True
    ws = FakeWebSocket()
    await manager.connect(9, ws)

    await manager.emit_to_user(9, 'chat_deleted', {'chatId': 4})

    assert ws.sent == [{'event': 'chat_deleted', 'data': {'chatId': 4}}]
    assert fake_redis.published == []
    assert isinstance(manager.pubsub_task.exception(), ConnectionError)


@pytest.mark.asyncio
async def test_rate_limit(fake_redis):
    assert await check_rate_limit(1, 'send_message', limit=2, window=60)
    assert await check_rate_limit(1, 'send_message', limit=2, window=60)
    assert not await check_rate_limit(1, 'send_message', limit=2, window=60)
    assert await check_rate_limit(2, 'send_message', limit=2, window=60)


@pytest.mark.asyncio
async def test_rate_limit_open_without_redis():
    assert core.REDIS is None
    assert await check_rate_limit(1, 'send_message', limit=0)


def test_ws_rejects_missing_or_bad_token():
    client = TestClient(app)
    with pytest.raises(WebSocketDisconnect) as exc:
        with client.websocket_connect('/api/ws/chat?token=garbage'):
            pass
    assert exc.value.code == 1008


def test_ws_ping_pong():
    client = TestClient(app)
    token = create_access_token({'id': 1})
    with client.websocket_connect(f'/api/ws/chat?token={token}') as ws:
        ws.send_json({'type': 'ping'})
        assert ws.receive_json() == {'event': 'pong'}


def test_ws_ignores_malformed_frames():
    client = TestClient(app)
    token = create_access_token({'id': 1})
    with client.websocket_connect(f'/api/ws/chat?token={token}') as ws:
        ws.send_text('not json')
        ws.send_json({'type': 'ping'})
        assert ws.receive_json() == {'event': 'pong'}
