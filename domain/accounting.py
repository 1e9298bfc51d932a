"""Budgets outside a single dinner: deposits, balances, the guest fund and the
month-by-month report of reconciled dinners."""
from datetime import date
import logging
import math
from typing import Any

from domain.errors import InvalidRequest
from domain.models import BudgetEntry, DinnerDay, GuestFundEntry, format_portions
from domain.repository import DinnerDayRepository, LedgerRepository


logger = logging.getLogger(__name__)


DEFICIT_COVERAGE = "Guest Hospitality Fund (Deficit Coverage)"
DEFICIT_BALANCED = "Balanced Guest Hospitality Fund"


def portions_summary(day: DinnerDay) -> str:
    plural = "" if day.total_portions == 1 else "s"
    summary = f"{format_portions(day.total_portions)} portion{plural}"
    if day.guest_count:
        plural = "s" if day.guest_count > 1 else ""
        summary += f" ({day.guest_count} guest{plural})"
    return summary


def _positive(amount: float) -> float:
    if not math.isfinite(amount) or amount <= 0:
        raise InvalidRequest(f"Amount must be positive, got {amount}")
    return amount


class Accounting:
    def __init__(self, *, ledger: LedgerRepository, days: DinnerDayRepository) -> None:
        self.ledger = ledger
        self.days = days

    async def deposit(self, member_id: str, amount: float) -> BudgetEntry:
        entry = await self.ledger.add_member_entry(
            member_id, _positive(amount), f"{amount:.2f} added to budget"
        )
        logger.info("Deposited %s for %s", amount, member_id)
        return entry

    async def member_statement(self, member_id: str) -> dict[str, Any]:
        entries = await self.ledger.member_entries(member_id)
        balance = await self.ledger.member_balance(member_id)
        return {
            "memberId": member_id,
            "balance": balance,
            "entries": [e.to_dict() for e in entries],
        }

    async def guest_fund_deposit(self, amount: float) -> GuestFundEntry:
        return await self.ledger.add_guest_fund_entry(
            _positive(amount), "Added to Guest Hospitality Fund"
        )

    async def guest_fund_statement(self) -> dict[str, Any]:
        entries = await self.ledger.guest_fund_entries()
        balance = await self.ledger.guest_fund_balance()
        return {"balance": balance, "entries": [e.to_dict() for e in entries]}

    async def distribute_guest_fund_deficit(self, member_ids: list[str]) -> float:
        """Split a negative guest fund evenly over ``member_ids``.

        Each member gets a withdrawal; the fund gets one deposit that brings it
        back to zero. Returns the amount charged per member.
        """
        balance = await self.ledger.guest_fund_balance()
        members = list(dict.fromkeys(member_ids))
        if balance >= 0 or not members:
            raise InvalidRequest(
                "The Guest Hospitality Fund is not negative or there are no assigned users."
            )
        per_member = abs(balance) / len(members)
        async with self.ledger.transaction():
            for member_id in members:
                await self.ledger.add_member_entry(member_id, -per_member, DEFICIT_COVERAGE)
            await self.ledger.add_guest_fund_entry(abs(balance), DEFICIT_BALANCED)
        logger.info("Distributed guest fund deficit %s over %s members", balance, len(members))
        return per_member

    async def reconciled_days(
        self,
        *,
        year: int | None = None,
        month: int | None = None,
        cook: str | None = None,
    ) -> list[dict[str, Any]]:
        if month is not None and year is None:
            raise InvalidRequest("A month filter needs a year")
        if month is not None and not 1 <= month <= 12:
            raise InvalidRequest(f"Month out of range: {month}")
        if year is None:
            start, end = date.min, date.max
        elif month is None:
            start, end = date(year, 1, 1), date(year, 12, 31)
        else:
            start = date(year, month, 1)
            next_month = date(year + month // 12, month % 12 + 1, 1)
            end = date.fromordinal(next_month.toordinal() - 1)

        days = await self.days.list_reconciled(start, end)
        if cook is not None:
            days = [d for d in days if cook in d.cooks]
        return [
            {
                **day.to_dict(),
                "totalPortions": day.total_portions,
                "guestCount": day.guest_count,
                "summary": portions_summary(day),
            }
            for day in days
        ]
