from datetime import date
from pathlib import Path
from typing import AsyncIterator

from databases import Database
import pytest
import pytest_asyncio

import db
from domain.accounting import Accounting
from domain.attendance import AttendanceService
from domain.preferences import PreferenceService
from domain.projection import ProjectionJob
from domain.reconciliation import ReconciliationEngine
from domain.repository import (
    DinnerDayRepository,
    LedgerRepository,
    PreferenceRepository,
    SettingsRepository,
)


# A Monday.
MONDAY = date(2024, 6, 10)


@pytest_asyncio.fixture
async def database(tmp_path: Path) -> AsyncIterator[Database]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'dinners.db'}")
    await database.connect()
    await db.create_db(database)
    yield database
    await database.disconnect()


@pytest.fixture
def days(database: Database) -> DinnerDayRepository:
    return DinnerDayRepository(database)


@pytest.fixture
def ledger(database: Database) -> LedgerRepository:
    return LedgerRepository(database)


@pytest.fixture
def preferences(database: Database) -> PreferenceRepository:
    return PreferenceRepository(database)


@pytest.fixture
def settings(database: Database) -> SettingsRepository:
    return SettingsRepository(database)


@pytest.fixture
def reconciliation(
    days: DinnerDayRepository, ledger: LedgerRepository
) -> ReconciliationEngine:
    return ReconciliationEngine(days=days, ledger=ledger)


@pytest.fixture
def attendance(
    days: DinnerDayRepository,
    settings: SettingsRepository,
    preferences: PreferenceRepository,
    reconciliation: ReconciliationEngine,
) -> AttendanceService:
    return AttendanceService(
        days=days,
        settings=settings,
        preferences=preferences,
        reconciliation=reconciliation,
    )


@pytest.fixture
def projection(
    days: DinnerDayRepository, preferences: PreferenceRepository
) -> ProjectionJob:
    return ProjectionJob(days=days, preferences=preferences, today=lambda: MONDAY)


@pytest.fixture
def preference_service(
    preferences: PreferenceRepository, projection: ProjectionJob
) -> PreferenceService:
    return PreferenceService(preferences=preferences, projection=projection)


@pytest.fixture
def accounting(ledger: LedgerRepository, days: DinnerDayRepository) -> Accounting:
    return Accounting(ledger=ledger, days=days)
