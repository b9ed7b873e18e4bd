from typing import Optional

from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine, async_sessionmaker, AsyncSession

from app.core.config import settings


def make_engine(url: Optional[str] = None, echo: bool = False) -> AsyncEngine:
    url = url or settings.database_url
    kwargs = {}
    if url.startswith("postgresql"):
        # hosszú életű worker mellett a halott kapcsolatokat kiszűrjük
        kwargs.update(pool_pre_ping=True, pool_size=10, max_overflow=20)
    return create_async_engine(url, echo=echo, **kwargs)


def make_session_factory(bind: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    # expire_on_commit=False: commit után is olvasható marad a Booking a válaszhoz
    return async_sessionmaker(bind=bind, expire_on_commit=False, class_=AsyncSession)


engine = make_engine()

AsyncSessionLocal = make_session_factory(engine)
