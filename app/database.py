from fastapi import Request
from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


def normalize_database_url(database_url: str) -> str:
    """Point MySQL URLs at the aiomysql driver; other async URLs pass through."""
    if database_url.startswith("mysql://"):
        return "mysql+aiomysql://" + database_url[8:]
    database_url = database_url.replace("mysql+mysqldb://", "mysql+aiomysql://")
    database_url = database_url.replace("mysql+pymysql://", "mysql+aiomysql://")
    return database_url


def _configure_sqlite(engine) -> None:
    """Let SQLAlchemy emit BEGIN itself so SAVEPOINTs nest properly, and enforce foreign keys."""

    @event.listens_for(engine.sync_engine, "connect")
    def on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def on_begin(conn):
        conn.exec_driver_sql("BEGIN")


class Database:
    """Store handle opened at startup and disposed at shutdown."""

    def __init__(self, database_url: str):
        self.url = normalize_database_url(database_url)
        self.engine = create_async_engine(
            self.url,
            pool_pre_ping=True,  # Reconnect on stale connections
        )
        if self.url.startswith("sqlite"):
            _configure_sqlite(self.engine)
        self.session_factory = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)

    async def create_all(self) -> None:
        # Register every mapped table before creating them
        import app.models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def ping(self) -> bool:
        async with self.engine.connect() as conn:
            result = await conn.execute(text("SELECT 1"))
            return result.scalar() == 1

    async def dispose(self) -> None:
        await self.engine.dispose()


async def get_db(request: Request):
    async with request.app.state.db.session_factory() as session:
        try:
            yield session
        finally:
            await session.close()
