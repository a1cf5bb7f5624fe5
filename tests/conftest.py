from decimal import Decimal
from typing import AsyncGenerator

import pytest
from fastapi import FastAPI
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from rateio.infrastructure.db.database import Base, get_db
from rateio.infrastructure.db.models import GeneratorModel, GeneratorSubscriberModel, SubscriberModel
from rateio.api.routes import health, rateio


@pytest.fixture()
async def db_engine(tmp_path):
    db_path = tmp_path / "test.db"
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{db_path}",
        echo=False
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture()
async def db_session(db_engine) -> AsyncGenerator[AsyncSession, None]:
    session_maker = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_maker() as session:
        yield session


@pytest.fixture()
async def seeded_generator(db_session) -> GeneratorModel:
    """Generator GEN-1 (1000 kWh) linked to SUB-A, SUB-B, SUB-C; SUB-X exists but is not linked"""
    generator = GeneratorModel(
        id="GEN-1",
        nickname="Usina Sol Nascente",
        grid_unit_id="UC-9001",
        grid_operator="CEMIG",
        expected_generation_kwh=Decimal("1000.00"),
    )
    db_session.add(generator)
    for sub_id, name, consumption in (
        ("SUB-A", "Ana Souza", Decimal("300")),
        ("SUB-B", "Bruno Lima", Decimal("450")),
        ("SUB-C", "Carla Dias", Decimal("250")),
        ("SUB-X", "Xavier Rocha", Decimal("100")),
    ):
        db_session.add(SubscriberModel(
            id=sub_id,
            display_name=name,
            grid_unit_id=f"UC-{sub_id}",
            contracted_consumption_kwh=consumption,
        ))
    await db_session.flush()

    for sub_id in ("SUB-A", "SUB-B", "SUB-C"):
        db_session.add(GeneratorSubscriberModel(generator_id="GEN-1", subscriber_id=sub_id))
    await db_session.commit()
    return generator


@pytest.fixture()
async def app(db_session) -> FastAPI:
    app = FastAPI()
    app.include_router(health.router, tags=["Health"])
    app.include_router(rateio.router, prefix="/api/v1/rateio", tags=["Rateio"])

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    return app


@pytest.fixture()
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
