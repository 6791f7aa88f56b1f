import os

# app.main builds the module-level app from the environment on import
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

import pytest
import pytest_asyncio
from sqlalchemy import select, func

from app.database import Database
from app.models.user import User
from app.services.follow_graph import FollowGraph
from app.services.messaging import MessagingService


@pytest_asyncio.fixture
async def database(tmp_path):
    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'messaging.db'}")
    await db.create_all()
    yield db
    await db.dispose()


@pytest_asyncio.fixture
async def session(database):
    async with database.session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def users(session):
    alice = User(username="alice")
    bob = User(username="bob")
    carol = User(username="carol")
    session.add_all([alice, bob, carol])
    await session.commit()
    return alice, bob, carol


@pytest.fixture
def messaging(session):
    return MessagingService(session)


@pytest.fixture
def follows(session):
    return FollowGraph(session)


@pytest.fixture
def count_rows(session):
    async def _count(model) -> int:
        result = await session.execute(select(func.count()).select_from(model))
        return result.scalar_one()

    return _count
