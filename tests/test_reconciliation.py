from datetime import date

import pytest

from databases import Database
from domain.errors import InvalidRequest, StoreError
from domain.models import Attendant
from domain.reconciliation import GUEST_FUND, STALE_ENTRIES, ReconciliationEngine
from domain.repository import DinnerDayRepository, LedgerRepository

from conftest import MONDAY


async def seed_scenario(days: DinnerDayRepository) -> None:
    await days.add_attendant(MONDAY, Attendant(id="A", portions=2))
    await days.add_attendant(MONDAY, Attendant(id="B", portions=1))
    await days.replace_guests(MONDAY, 2)


async def amounts(ledger: LedgerRepository, on: date) -> dict[str, float]:
    return {e.member_id: e.amount for e in await ledger.member_entries_for_date(on)}


@pytest.mark.asyncio
async def test_scenario_splits_spend_by_portions(
    days: DinnerDayRepository,
    ledger: LedgerRepository,
    reconciliation: ReconciliationEngine,
) -> None:
    await seed_scenario(days)

    report = await reconciliation.set_used_budget(MONDAY, 50)

    assert report.ok
    assert sorted(report.written) == sorted(["A", "B", STALE_ENTRIES, GUEST_FUND])
    assert await amounts(ledger, MONDAY) == {
        "A": pytest.approx(-20),
        "B": pytest.approx(-10),
    }
    guest_entry = await ledger.guest_fund_entry_for_date(MONDAY)
    assert guest_entry is not None
    assert guest_entry.amount == pytest.approx(-20)
    assert guest_entry.description == "Dinner 2024-06-10 (2 guests)"
    entries = await ledger.member_entries("A")
    assert entries[0].description == "Dinner 2024-06-10 (2 portions)"
    assert (await days.get(MONDAY)).used_budget == 50


@pytest.mark.asyncio
async def test_reporting_again_updates_in_place(
    days: DinnerDayRepository,
    ledger: LedgerRepository,
    reconciliation: ReconciliationEngine,
) -> None:
    await seed_scenario(days)
    await reconciliation.set_used_budget(MONDAY, 50)
    await reconciliation.set_used_budget(MONDAY, 50)

    assert len(await ledger.member_entries_for_date(MONDAY)) == 2
    assert len(await ledger.guest_fund_entries()) == 1
    assert await ledger.member_balance("A") == pytest.approx(-20)

    await reconciliation.set_used_budget(MONDAY, 100)

    assert await amounts(ledger, MONDAY) == {
        "A": pytest.approx(-40),
        "B": pytest.approx(-20),
    }
    assert await ledger.guest_fund_balance() == pytest.approx(-40)


@pytest.mark.parametrize("cleared", (0, None))
@pytest.mark.asyncio
async def test_clearing_removes_dinner_entries_only(
    cleared: float | None,
    days: DinnerDayRepository,
    ledger: LedgerRepository,
    reconciliation: ReconciliationEngine,
) -> None:
    await seed_scenario(days)
    await ledger.add_member_entry("A", 100, "100.00 added to budget")
    await reconciliation.set_used_budget(MONDAY, 50)

    report = await reconciliation.set_used_budget(MONDAY, cleared)

    assert report.ok
    assert report.amount is None
    assert await ledger.member_entries_for_date(MONDAY) == []
    assert await ledger.guest_fund_entry_for_date(MONDAY) is None
    assert await ledger.member_balance("A") == pytest.approx(100)
    assert (await days.get(MONDAY)).used_budget is None


@pytest.mark.asyncio
async def test_negative_budget_is_rejected(
    days: DinnerDayRepository, reconciliation: ReconciliationEngine
) -> None:
    with pytest.raises(InvalidRequest):
        await reconciliation.set_used_budget(MONDAY, -5)
    assert (await days.get(MONDAY)).used_budget is None


@pytest.mark.asyncio
async def test_reconcile_drops_entries_of_departed_attendants(
    days: DinnerDayRepository,
    ledger: LedgerRepository,
    reconciliation: ReconciliationEngine,
) -> None:
    await seed_scenario(days)
    await reconciliation.set_used_budget(MONDAY, 50)

    await days.remove_attendant(MONDAY, "B")
    await days.replace_guests(MONDAY, 0)
    report = await reconciliation.reconcile(MONDAY)

    assert report.ok
    assert await amounts(ledger, MONDAY) == {"A": pytest.approx(-50)}
    assert await ledger.guest_fund_entry_for_date(MONDAY) is None


@pytest.mark.asyncio
async def test_budget_without_attendants_writes_nothing(
    days: DinnerDayRepository,
    ledger: LedgerRepository,
    reconciliation: ReconciliationEngine,
) -> None:
    report = await reconciliation.set_used_budget(MONDAY, 50)

    assert report.ok
    assert await ledger.member_entries_for_date(MONDAY) == []
    assert await ledger.guest_fund_entries() == []
    assert (await days.get(MONDAY)).used_budget == 50


class FlakyLedger(LedgerRepository):
    async def upsert_member_entry(
        self, member_id: str, on: date, amount: float, description: str
    ) -> None:
        if member_id == "B":
            raise StoreError("ledger unavailable")
        await super().upsert_member_entry(member_id, on, amount, description)


@pytest.mark.asyncio
async def test_failed_write_is_reported_and_others_still_land(
    database: Database, days: DinnerDayRepository
) -> None:
    ledger = FlakyLedger(database)
    reconciliation = ReconciliationEngine(days=days, ledger=ledger)
    await seed_scenario(days)

    report = await reconciliation.set_used_budget(MONDAY, 50)

    assert not report.ok
    assert list(report.failed) == ["B"]
    assert "A" in report.written
    assert GUEST_FUND in report.written
    assert report.attempted == 4
    assert report.to_dict()["failed"] == 1
    assert await amounts(ledger, MONDAY) == {"A": pytest.approx(-20)}


@pytest.mark.asyncio
async def test_late_reconcile_keeps_attendant_who_joined_meanwhile(
    days: DinnerDayRepository,
    ledger: LedgerRepository,
    reconciliation: ReconciliationEngine,
) -> None:
    await days.add_attendant(MONDAY, Attendant(id="A"))
    await days.add_attendant(MONDAY, Attendant(id="B"))
    await reconciliation.set_used_budget(MONDAY, 30)

    # A leaves; before A's reconcile runs, C joins and is reconciled.
    await days.remove_attendant(MONDAY, "A")
    await days.add_attendant(MONDAY, Attendant(id="C"))
    await reconciliation.reconcile(MONDAY)
    report = await reconciliation.reconcile(MONDAY)

    assert report.ok
    assert await amounts(ledger, MONDAY) == {
        "B": pytest.approx(-15),
        "C": pytest.approx(-15),
    }


@pytest.mark.asyncio
async def test_stale_entries_are_judged_against_stored_attendants(
    days: DinnerDayRepository, ledger: LedgerRepository
) -> None:
    await days.add_attendant(MONDAY, Attendant(id="B"))
    for member_id in ("A", "B"):
        await ledger.upsert_member_entry(member_id, MONDAY, -10, "Dinner")
    await ledger.add_member_entry("A", 50, "50.00 added to budget")

    assert await ledger.delete_stale_member_entries(MONDAY) == ["A"]
    assert await amounts(ledger, MONDAY) == {"B": -10}
    assert await ledger.member_balance("A") == 50
