import os
import sys
import tempfile
from decimal import Decimal
from pathlib import Path

import pytest
import pytest_asyncio

# Configure test environment before the package creates its engine
TEST_ROOT = tempfile.mkdtemp(prefix='marketchat-tests-')
os.environ['DATABASE_URL'] = f"sqlite+aiosqlite:///{os.path.join(TEST_ROOT, 'chat.db')}"
os.environ['UPLOAD_ROOT'] = TEST_ROOT
os.environ.setdefault('JWT_SECRET', 'test-secret')

# Ensure the package root is on sys.path when pytest changes CWD to this tests dir
HERE = Path(__file__).resolve()
PKG_ROOT = HERE.parents[2]
if str(PKG_ROOT) not in sys.path:
    sys.path.insert(0, str(PKG_ROOT))

from marketchat.models import Base, engine, AsyncSessionLocal  # noqa: E402
from marketchat.models.users import User  # noqa: E402
from marketchat.models.products import Product  # noqa: E402
from marketchat.crud import ChatRepository  # noqa: E402
from marketchat.chat_service import ChatService  # noqa: E402
from marketchat.file_storage import AttachmentStorage  # noqa: E402

CUSTOMER_ID = 1
SELLER_ID = 2
STRANGER_ID = 3
PRODUCT_ID = 10


class RecordingNotifier:
    """Stands in for the websocket manager and keeps every emitted event"""

    def __init__(self):
        self.events = []

    async def emit_to_user(self, user_id, event, payload):
        self.events.append((user_id, event, payload))

    def for_user(self, user_id):
        return [(event, payload) for uid, event, payload in self.events if uid == user_id]

    def names(self, user_id):
        return [event for event, _ in self.for_user(user_id)]

    def clear(self):
        self.events.clear()


@pytest_asyncio.fixture
async def db():
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as session:
        session.add_all([
            User(id=CUSTOMER_ID, first_name='Ada', last_name='Lovelace', email='ada@example.com'),
            User(id=SELLER_ID, first_name='Grace', last_name='Hopper', email='grace@example.com'),
            User(id=STRANGER_ID, first_name='Alan', last_name='Turing', email='alan@example.com'),
        ])
        await session.flush()
        session.add(Product(
            id=PRODUCT_ID,
            seller_id=SELLER_ID,
            name='Mechanical Keyboard',
            slug='mechanical-keyboard',
            price=Decimal('89.90'),
            images=['/uploads/products/keyboard.jpg'],
        ))
        await session.commit()
    yield
    await engine.dispose()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def storage(tmp_path):
    return AttachmentStorage(root=str(tmp_path))


@pytest.fixture
def repo():
    return ChatRepository()


@pytest.fixture
def service(db, repo, notifier, storage):
    return ChatService(repo, notifier, storage)
