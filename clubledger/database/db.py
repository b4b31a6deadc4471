"""
Подключение к базе данных
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from clubledger.config import settings
from clubledger.database.models import Base, FinanceCategory
import logging

logger = logging.getLogger(__name__)

# Создание движка БД
engine = create_async_engine(
    settings.database_url,
    echo=False,
    pool_pre_ping=True,
)

# Фабрика сессий
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False
)


async def get_session() -> AsyncSession:
    """
    Получить сессию базы данных
    """
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """
    Инициализация базы данных - создание таблиц
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database initialized successfully")

        async with async_session_maker() as session:
            await create_initial_data(session)

    except Exception as e:
        logger.error(f"Error initializing database: {e}")
        raise


async def create_initial_data(session: AsyncSession):
    """
    Создание общей категории выручки клуба
    """
    result = await session.execute(
        select(FinanceCategory).where(
            FinanceCategory.name == settings.REVENUE_CATEGORY_NAME,
            FinanceCategory.type == 'income',
            FinanceCategory.club_id.is_(None)
        )
    )
    if result.scalars().first():
        logger.info("Revenue category already exists, skipping initial data creation")
        return

    session.add(FinanceCategory(
        club_id=None,
        name=settings.REVENUE_CATEGORY_NAME,
        type='income',
        is_active=True
    ))
    await session.commit()
    logger.info("Initial revenue category created successfully")


async def close_db():
    """
    Закрытие соединения с БД
    """
    await engine.dispose()
    logger.info("Database connection closed")
