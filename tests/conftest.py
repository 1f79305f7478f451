import os
import tempfile

# Настройки должны быть заданы до импорта gymbook
_TEST_DB_DIR = tempfile.mkdtemp(prefix="gymbook-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_TEST_DB_DIR}/app.db"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_FORMAT"] = "text"
os.environ.pop("STAFF_API_TOKEN", None)

from datetime import date, time, timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from gymbook.core.database import Base, get_session
from gymbook.staff.models import (
    Activity,
    ClassSession,
    Club,
    Membership,
    MembershipPlan,
    MembershipStatus,
    PlanType,
    Schedule,
    SessionStatus,
    Trainer,
)
import gymbook.students.models  # noqa: F401  регистрация таблиц броней и посещений


@pytest_asyncio.fixture
async def engine(tmp_path):
    """
    Файловая SQLite база на каждый тест.

    Файл, а не :memory:, чтобы параллельные бронирования шли через
    разные соединения и реально конкурировали за блокировку.
    """
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'gymbook.db'}",
        connect_args={"timeout": 30},
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def club_setup(db):
    """Клуб с активностью, тренером и двумя тарифами"""
    club = Club(name="Downtown Gym", timezone="UTC")
    db.add(club)
    await db.flush()

    activity = Activity(club_id=club.id, name="Yoga", default_capacity=12)
    trainer = Trainer(club_id=club.id, full_name="Anna Coach")
    monthly = MembershipPlan(
        club_id=club.id, name="Monthly", plan_type=PlanType.time_based, duration_days=30
    )
    ten_visits = MembershipPlan(
        club_id=club.id,
        name="10 visits",
        plan_type=PlanType.session_based,
        duration_days=90,
        session_count=10,
    )
    db.add_all([activity, trainer, monthly, ten_visits])
    await db.commit()

    return {
        "club": club,
        "activity": activity,
        "trainer": trainer,
        "monthly_plan": monthly,
        "session_plan": ten_visits,
    }


async def make_schedule(db, setup, **overrides) -> Schedule:
    values = {
        "club_id": setup["club"].id,
        "activity_id": setup["activity"].id,
        "trainer_id": setup["trainer"].id,
        "start_time": time(8, 0),
        "end_time": time(9, 0),
        "days_of_week": ["monday", "wednesday"],
        "valid_from": date(2024, 1, 1),
        "capacity": 10,
    }
    values.update(overrides)
    schedule = Schedule(**values)
    db.add(schedule)
    await db.commit()
    return schedule


async def make_session(db, setup, **overrides) -> ClassSession:
    """Разовое занятие; по умолчанию через неделю, чтобы его можно было бронировать"""
    values = {
        "club_id": setup["club"].id,
        "activity_id": setup["activity"].id,
        "trainer_id": setup["trainer"].id,
        "session_date": date.today() + timedelta(days=7),
        "start_time": time(18, 0),
        "end_time": time(19, 0),
        "capacity": 5,
        "booked_count": 0,
        "status": SessionStatus.scheduled,
    }
    values.update(overrides)
    class_session = ClassSession(**values)
    db.add(class_session)
    await db.commit()
    return class_session


async def make_membership(db, setup, user_id: int, **overrides) -> Membership:
    values = {
        "user_id": user_id,
        "club_id": setup["club"].id,
        "plan_id": setup["monthly_plan"].id,
        "start_date": date.today() - timedelta(days=1),
        "end_date": date.today() + timedelta(days=29),
        "status": MembershipStatus.active,
    }
    values.update(overrides)
    membership = Membership(**values)
    db.add(membership)
    await db.commit()
    return membership


async def reload(db, model, object_id):
    """Свежая копия строки из базы, мимо identity map"""
    return await db.get(model, object_id, populate_existing=True)


STAFF_HEADERS = {"X-User-Id": "900", "X-User-Role": "staff"}
MEMBER_HEADERS = {"X-User-Id": "101", "X-User-Role": "member"}


@pytest_asyncio.fixture
async def client(session_factory):
    """HTTP клиент поверх ASGI приложения; lifespan не запускается"""
    from gymbook.main import app

    async def override_get_session():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()
