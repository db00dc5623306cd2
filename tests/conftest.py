import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from slotbook.api import create_app
from slotbook.database import InMemoryKeyValueDatabase, SlotStore
from slotbook.directory import user_key
from slotbook.models import EventData, Role, User
from slotbook.slots import generate_month_slots

WORKERS = [
    User(id="alice-id", name="Alice Ongwele", role=Role.WORKER),
    User(id="wei-id", name="Wei Yan", role=Role.WORKER),
    User(id="barry-id", name="Barry Kozumikov", role=Role.WORKER),
]

CLIENTS = [
    User(id="carol-id", name="Carol Mendes", role=Role.USER),
    User(id="dan-id", name="Dan Okafor", role=Role.USER),
    User(id="erin-id", name="Erin Walsh", role=Role.USER),
    User(id="frank-id", name="Frank Ito", role=Role.USER),
]

ADMIN = User(id="admin-id", name="Ada Admin", role=Role.ADMIN)

ADMIN_HEADERS = {"X-User-Id": "admin-id", "X-User-Role": "admin"}
USER_HEADERS = {"X-User-Id": "carol-id", "X-User-Role": "user"}


def seed_users(db: SlotStore) -> None:
    for user in [*WORKERS, *CLIENTS, ADMIN]:
        db.put(user_key(user.id), user.model_copy())


def event(start: str, end: str, **kwargs) -> EventData:
    return EventData(start=start, end=end, **kwargs)


@pytest.fixture
def db() -> SlotStore:
    store: SlotStore = InMemoryKeyValueDatabase()
    seed_users(store)
    return store


@pytest.fixture
def october(db: SlotStore) -> SlotStore:
    # October 2025: starts on a Wednesday, Sundays are the 5th/12th/19th/26th
    generate_month_slots(db, 2025, 10)
    return db


@pytest_asyncio.fixture
async def client():
    app = create_app()
    seed_users(app.state.database)
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as async_client:
        yield async_client


@pytest.fixture
def app(client: AsyncClient):
    return client._transport.app
