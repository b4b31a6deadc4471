"""
Общие фикстуры: БД SQLite в памяти и начальные данные клуба
"""
import asyncio
import os

# до импорта clubledger: движок приложения не должен требовать PostgreSQL
os.environ.setdefault('DATABASE_URL', 'sqlite+aiosqlite://')

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool, StaticPool

from clubledger.config import settings
from clubledger.database.models import (
    Base, Club, User, FinanceCategory, SalaryScheme, SalarySchemeVersion,
    EmployeeSalaryAssignment
)

HOURLY_FORMULA = [
    {"kind": "HOURLY", "rate": 200},
    {"kind": "PERCENT_OF_METRIC", "metric_key": "total_revenue", "percent": 3},
]

REVENUE_KPI = {
    "id": "kpi-revenue",
    "name": "KPI выручка",
    "metric_key": "total_revenue",
    "bonus_mode": "MONTH",
    "type": "PROGRESSIVE",
    "thresholds": [
        {"from": 10000, "percent": 1},
        {"from": 20000, "percent": 2},
    ],
}


async def seed_club(session: AsyncSession) -> dict:
    """Клуб, владелец, два сотрудника, категория выручки и назначенная схема"""
    club = Club(name="Клуб на Ленина", timezone="Europe/Moscow", day_start_hour=8, night_start_hour=20)
    owner = User(full_name="Петров Петр Петрович", role="owner")
    employee = User(full_name="Иванов Иван Иванович", role="employee")
    second = User(full_name="Сидорова Анна", role="employee")
    session.add_all([club, owner, employee, second])
    await session.flush()

    category = FinanceCategory(club_id=None, name=settings.REVENUE_CATEGORY_NAME, type='income')
    scheme = SalaryScheme(
        club_id=club.id,
        name="Администратор",
        standard_monthly_shifts=15,
        period_bonuses=[REVENUE_KPI],
        is_active=True
    )
    session.add_all([category, scheme])
    await session.flush()

    version = SalarySchemeVersion(scheme_id=scheme.id, version=1, formula=HOURLY_FORMULA)
    session.add(version)
    session.add_all([
        EmployeeSalaryAssignment(user_id=employee.id, club_id=club.id, scheme_id=scheme.id),
        EmployeeSalaryAssignment(user_id=second.id, club_id=club.id, scheme_id=scheme.id),
    ])
    await session.commit()

    return {
        'club_id': club.id,
        'owner_id': owner.id,
        'employee_id': employee.id,
        'second_id': second.id,
        'category_id': category.id,
        'scheme_id': scheme.id,
        'version_id': version.id,
    }


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        'sqlite+aiosqlite://',
        poolclass=StaticPool,
        connect_args={'check_same_thread': False}
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session(engine):
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as session:
        yield session


@pytest_asyncio.fixture
async def club(session):
    return await seed_club(session)


@pytest.fixture
def api_headers():
    return {"X-API-Key": settings.API_KEY}


@pytest.fixture
def api_client(tmp_path):
    """
    TestClient с отдельной БД.

    TestClient работает в своем event loop, поэтому БД файловая и без пула
    соединений: каждое соединение открывается в том loop, где используется.
    """
    from fastapi.testclient import TestClient
    from clubledger.api.main import app
    from clubledger.database.db import get_session

    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}", poolclass=NullPool)
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async def prepare():
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        async with maker() as session:
            return await seed_club(session)

    seeded = asyncio.run(prepare())

    async def override_session():
        async with maker() as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    yield TestClient(app), seeded
    app.dependency_overrides.clear()
    asyncio.run(engine.dispose())
