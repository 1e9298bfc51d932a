from datetime import date, timedelta

import pytest

from databases import Database
from domain.errors import InvalidRequest, StoreError
from domain.models import (
    AttendanceStatus,
    Attendant,
    MemberPreference,
    WeekdayPreference,
)
from domain.projection import ProjectionJob
from domain.reconciliation import ReconciliationEngine
from domain.repository import DinnerDayRepository, LedgerRepository, PreferenceRepository

from conftest import MONDAY


WEDNESDAY = MONDAY + timedelta(days=2)


def mondays_and_wednesdays(member_id: str, join_dinners: bool = True) -> MemberPreference:
    return MemberPreference(
        member_id=member_id,
        join_dinners=join_dinners,
        weekdays={
            0: WeekdayPreference(status=AttendanceStatus.always, portions=2),
            2: WeekdayPreference(status=AttendanceStatus.takeaway),
            4: WeekdayPreference(status=AttendanceStatus.never),
        },
    )


@pytest.mark.asyncio
async def test_run_applies_weekly_preferences(
    projection: ProjectionJob,
    preferences: PreferenceRepository,
    days: DinnerDayRepository,
) -> None:
    await preferences.save(mondays_and_wednesdays("A"))
    await preferences.save(MemberPreference(member_id="C", join_dinners=False))

    report = await projection.run(MONDAY, 7)

    assert report.dates == [MONDAY + timedelta(days=i) for i in range(7)]
    assert report.upserted == 2
    assert report.failed == {}
    week = await days.list_days(MONDAY, MONDAY + timedelta(days=6))
    assert [d.date for d in week if d.attendants] == [MONDAY, WEDNESDAY]
    assert week[0].attendants == [
        Attendant(id="A", portions=2, is_take_away=False, is_automatically_set=True)
    ]
    assert week[2].attendants == [
        Attendant(id="A", portions=1, is_take_away=True, is_automatically_set=True)
    ]


@pytest.mark.asyncio
async def test_run_is_idempotent(
    projection: ProjectionJob,
    preferences: PreferenceRepository,
    days: DinnerDayRepository,
) -> None:
    await preferences.save(mondays_and_wednesdays("A"))
    await projection.run(MONDAY, 1)
    await projection.run(MONDAY, 1)

    assert len((await days.get(MONDAY)).attendants) == 1


@pytest.mark.asyncio
async def test_manual_entry_wins_over_projection(
    projection: ProjectionJob,
    preferences: PreferenceRepository,
    days: DinnerDayRepository,
) -> None:
    await days.add_attendant(MONDAY, Attendant(id="B", portions=3))
    await preferences.save(mondays_and_wednesdays("B"))

    await projection.run(MONDAY, 1)
    assert (await days.get(MONDAY)).attendants == [Attendant(id="B", portions=3)]

    await preferences.save(mondays_and_wednesdays("B", join_dinners=False))
    report = await projection.recompute_for_member("B")

    assert report.retracted == 0
    assert (await days.get(MONDAY)).attendants == [Attendant(id="B", portions=3)]


@pytest.mark.asyncio
async def test_recompute_covers_window_and_retracts(
    projection: ProjectionJob,
    preferences: PreferenceRepository,
    days: DinnerDayRepository,
) -> None:
    assert len(projection.window()) == 29
    await preferences.save(mondays_and_wednesdays("A"))

    report = await projection.recompute_for_member("A")
    # Five Mondays and four Wednesdays from 2024-06-10 through 2024-07-08.
    assert report.upserted == 9
    assert len(report.dates) == 29

    await preferences.save(mondays_and_wednesdays("A", join_dinners=False))
    report = await projection.recompute_for_member("A")

    assert report.retracted == 9
    window = await days.list_days(MONDAY, MONDAY + timedelta(days=28))
    assert all(not d.attendants for d in window)


@pytest.mark.asyncio
async def test_extend_projects_the_newest_day_only(
    projection: ProjectionJob,
    preferences: PreferenceRepository,
    days: DinnerDayRepository,
) -> None:
    await preferences.save(mondays_and_wednesdays("A"))

    report = await projection.extend()

    assert report.dates == [date(2024, 7, 8)]
    assert report.upserted == 1
    assert (await days.get(date(2024, 7, 8))).attendant("A") is not None
    assert (await days.get(MONDAY)).attendants == []


@pytest.mark.asyncio
async def test_window_must_cover_a_day(projection: ProjectionJob) -> None:
    with pytest.raises(InvalidRequest):
        await projection.run(MONDAY, 0)


@pytest.mark.asyncio
async def test_projection_never_touches_the_ledger(
    projection: ProjectionJob,
    preferences: PreferenceRepository,
    days: DinnerDayRepository,
    ledger: LedgerRepository,
    reconciliation: ReconciliationEngine,
) -> None:
    await days.add_attendant(MONDAY, Attendant(id="B"))
    await reconciliation.set_used_budget(MONDAY, 30)
    await preferences.save(mondays_and_wednesdays("A"))

    await projection.run(MONDAY, 1)

    assert (await days.get(MONDAY)).attendant("A") is not None
    assert [e.member_id for e in await ledger.member_entries_for_date(MONDAY)] == ["B"]
    assert await ledger.member_balance("B") == pytest.approx(-30)


class FlakyDays(DinnerDayRepository):
    async def upsert_automatic_attendant(self, on: date, attendant: Attendant) -> None:
        if on == MONDAY and attendant.id == "A":
            raise StoreError("store unavailable")
        await super().upsert_automatic_attendant(on, attendant)


@pytest.mark.asyncio
async def test_failed_date_does_not_stop_the_run(
    database: Database, preferences: PreferenceRepository
) -> None:
    days = FlakyDays(database)
    projection = ProjectionJob(days=days, preferences=preferences, today=lambda: MONDAY)
    await preferences.save(mondays_and_wednesdays("A"))

    report = await projection.run(MONDAY, 8)

    assert list(report.failed) == [(MONDAY, "A")]
    assert report.to_dict()["failed"][0]["memberId"] == "A"
    assert len(report.dates) == 7
    assert (await days.get(MONDAY + timedelta(days=7))).attendant("A") is not None


@pytest.mark.asyncio
async def test_failed_member_does_not_skip_others_on_that_date(
    database: Database, preferences: PreferenceRepository
) -> None:
    days = FlakyDays(database)
    projection = ProjectionJob(days=days, preferences=preferences, today=lambda: MONDAY)
    await preferences.save(mondays_and_wednesdays("A"))
    await preferences.save(mondays_and_wednesdays("B"))

    report = await projection.run(MONDAY, 1)

    assert list(report.failed) == [(MONDAY, "A")]
    assert report.dates == []
    assert report.upserted == 1
    monday = await days.get(MONDAY)
    assert monday.attendant("A") is None
    assert monday.attendant("B") is not None
