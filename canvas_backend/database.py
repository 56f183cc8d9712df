import logging

from sqlalchemy import URL, text
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from canvas_backend.models import Base


logger = logging.getLogger(__name__)


def create_db_engine(database_url: str, logging: bool = False) -> AsyncEngine:
    """
    Создаёт асинхронный движок SQLAlchemy.
    In-memory SQLite держит одно соединение на весь процесс,
    иначе каждая сессия увидит пустую базу.
    """

    url: URL = make_url(database_url)
    if url.drivername == 'postgresql':
        url = url.set(drivername='postgresql+asyncpg')

    if url.get_backend_name() == 'sqlite' and url.database in (None, '', ':memory:'):
        return create_async_engine(
            url,
            echo=logging,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )

    return create_async_engine(url, echo=logging)


class Database:
    def __init__(self, database_url: str, logging: bool = False):
        self.engine = create_db_engine(database_url, logging=logging)
        self.session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False)

    async def init_db(self) -> None:
        """
        Создаёт таблицы, если их ещё нет.
        """

        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        logger.info("Database tables are ready")

    async def ping(self) -> bool:
        """
        Проверяет, что база отвечает.
        """

        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
        except Exception as e:
            logger.warning("Database ping failed: %s", e)
            return False

        return True

    async def close(self) -> None:
        """
        Закрывает соединения с БД.
        """

        await self.engine.dispose()
