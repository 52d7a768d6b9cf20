"""
Engine e sessioni SQLAlchemy async.

Il DB contiene solo la tabella suppliers, letta dal SupplierRegistry tramite
DatabaseSupplierSource; le offerte non vengono mai persistite.
"""
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from faremesh.config import settings


class Base(DeclarativeBase):
    pass


# pool_pre_ping: una connessione caduta non deve far fallire la lettura dei supplier
engine = create_async_engine(
    settings.database_url,
    echo=settings.db_echo,
    pool_pre_ping=True,
)

async_session_maker = async_sessionmaker(engine, expire_on_commit=False)


async def get_session() -> AsyncSession:
    async with async_session_maker() as session:
        yield session
