"""
=============================================================================
ADIVINA - Conexión a Base de Datos
=============================================================================
Motor async de SQLAlchemy y fábrica de sesiones. SQLite en memoria usa un
pool estático para que todas las sesiones vean la misma base.
=============================================================================
"""

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from .config import DATABASE_URL
from .models import Base, LedgerHead


class Database:
    """Motor + fábrica de sesiones asociados a una URL."""

    def __init__(self, url: str = DATABASE_URL, echo: bool = False):
        self.url = url
        self.is_sqlite = url.startswith("sqlite")

        engine_kwargs = {"echo": echo}
        if self.is_sqlite and (url.endswith("://") or ":memory:" in url):
            engine_kwargs["poolclass"] = StaticPool
            engine_kwargs["connect_args"] = {"check_same_thread": False}

        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self.session_factory = async_sessionmaker(self.engine, expire_on_commit=False)

    async def create_all(self):
        """Crea las tablas si no existen y siembra la cabeza del ledger."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

        async with self.session_factory() as session:
            async with session.begin():
                if await session.get(LedgerHead, LedgerHead.ROW_ID) is None:
                    session.add(LedgerHead(id=LedgerHead.ROW_ID, entries=0))

    async def dispose(self):
        await self.engine.dispose()
