"""Pytest fixtures for payroll run engine tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from payrun_engine.api.app import create_app
from payrun_engine.api.dependencies import get_db_session
from payrun_engine.config import Settings
from payrun_engine.database import create_schema, make_session_factory
from payrun_engine.models import (
    CompensationProfile,
    JurisdictionTaxRule,
    PayPeriod,
    PayrollRun,
    Person,
)
from payrun_engine.services.locking_service import RunLockRegistry
from payrun_engine.services.payroll_run_service import PayrollRunService

SCHEDULE_ID = UUID("00000000-0000-0000-0000-0000000000a1")
JURISDICTION = "CA"


@dataclass(frozen=True)
class SeedData:
    """Ids of the rows every service test starts from."""

    period_id: UUID
    ada_id: UUID
    grace_id: UUID


@pytest.fixture
def settings() -> Settings:
    """Explicit settings so tests never read the environment."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        engine_version="test",
        host="127.0.0.1",
        port=8000,
        debug=False,
        rule_lookup_timeout_seconds=2.0,
        anomaly_history_enabled=True,
    )


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so several sessions can share one database."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payrun.db'}", echo=False)
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def locks() -> RunLockRegistry:
    return RunLockRegistry()


@pytest.fixture
def make_service(settings, locks):
    """Build a service on a given session with the test settings."""

    def _make(session: AsyncSession, **overrides) -> PayrollRunService:
        return PayrollRunService(
            session,
            settings=overrides.get("settings", settings),
            locks=overrides.get("locks", locks),
        )

    return _make


async def add_period(
    session: AsyncSession,
    start: date,
    end: date,
    pay_date: date,
    period_number: int = 1,
) -> PayPeriod:
    period = PayPeriod(
        schedule_id=SCHEDULE_ID,
        period_number=period_number,
        year=start.year,
        start_date=start,
        end_date=end,
        pay_date=pay_date,
    )
    session.add(period)
    await session.flush()
    return period


async def add_person(
    session: AsyncSession,
    full_name: str,
    pay_type: str | None = "salary",
    pay_rate: Decimal | None = None,
    person_type: str = "employee",
    jurisdiction: str | None = JURISDICTION,
    **profile_fields,
) -> Person:
    """Add a person and, when ``pay_type`` is given, an open-ended profile."""
    person = Person(
        full_name=full_name,
        person_type=person_type,
        jurisdiction=jurisdiction,
        schedule_id=SCHEDULE_ID,
    )
    session.add(person)
    await session.flush()
    if pay_type is not None:
        session.add(
            CompensationProfile(
                person_id=person.id,
                pay_type=pay_type,
                pay_rate=pay_rate,
                pay_frequency=profile_fields.pop("pay_frequency", "semimonthly"),
                effective_from=profile_fields.pop("effective_from", date(2023, 1, 1)),
                **profile_fields,
            )
        )
        await session.flush()
    return person


@pytest.fixture
async def seeded(session_factory) -> SeedData:
    """Period Jan 1-15 (paid Jan 20) with two salaried employees.

    Ada earns 48000/yr and Grace 36000/yr, semimonthly, so gross is
    2000.00 and 1500.00. A flat 20% withholding gives 400.00 and 300.00;
    a 1% employer tax gives 20.00 and 15.00.
    """
    async with session_factory() as session:
        period = await add_period(
            session, date(2024, 1, 1), date(2024, 1, 15), date(2024, 1, 20)
        )
        ada = await add_person(session, "Ada Lovelace", "salary", Decimal("48000"))
        grace = await add_person(session, "Grace Hopper", "salary", Decimal("36000"))
        session.add_all(
            [
                JurisdictionTaxRule(
                    jurisdiction=JURISDICTION,
                    name="state_withholding",
                    side="employee",
                    method="flat",
                    rate=Decimal("0.20"),
                    effective_from=date(2024, 1, 1),
                ),
                JurisdictionTaxRule(
                    jurisdiction=JURISDICTION,
                    name="state_unemployment",
                    side="employer",
                    method="flat",
                    rate=Decimal("0.01"),
                    effective_from=date(2024, 1, 1),
                ),
            ]
        )
        await session.commit()
        return SeedData(period_id=period.id, ada_id=ada.id, grace_id=grace.id)


async def fetch_run(session_factory, run_id: UUID) -> PayrollRun:
    """Read a run through a fresh session, bypassing any identity map."""
    async with session_factory() as session:
        result = await session.execute(select(PayrollRun).where(PayrollRun.id == run_id))
        return result.scalar_one()


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client bound to the app with the test database."""
    app = create_app()

    async def _session_override() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db_session] = _session_override
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture
def period_factory():
    return add_period


@pytest.fixture
def person_factory():
    return add_person


@pytest.fixture
def read_run(session_factory):
    """Return a coroutine function reading a run through a fresh session."""

    async def _read(run_id: UUID) -> PayrollRun:
        return await fetch_run(session_factory, run_id)

    return _read
