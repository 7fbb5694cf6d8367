from sqlalchemy.ext.asyncio import AsyncAttrs, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base

from assessment_api.config import DATABASE_URL, SQL_ECHO


class _Base(AsyncAttrs):
    pass


Base = declarative_base(cls=_Base)

engine = create_async_engine(DATABASE_URL, echo=SQL_ECHO)

# Objects stay readable after commit; lazy reloads are not available under asyncio
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    async with async_session() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
