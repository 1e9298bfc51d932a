"""Turn a day's reported spend into ledger withdrawals proportional to portions.

Guests are one single-portion attendant each, so their share comes out of the
same division as everyone else's and is billed to the guest fund as one entry.
"""
import asyncio
from collections import defaultdict
from datetime import date
import logging
import math
from typing import Any, Awaitable, Callable

from domain.errors import InvalidRequest
from domain.models import DinnerDay, format_portions
from domain.repository import DinnerDayRepository, LedgerRepository


logger = logging.getLogger(__name__)


GUEST_FUND = "guest-fund"
STALE_ENTRIES = "stale-entries"


def dinner_description(on: date, portions: float) -> str:
    plural = "" if portions == 1 else "s"
    return f"Dinner {on.isoformat()} ({format_portions(portions)} portion{plural})"


def guest_description(on: date, guest_count: int) -> str:
    plural = "" if guest_count == 1 else "s"
    return f"Dinner {on.isoformat()} ({guest_count} guest{plural})"


def compute_shares(day: DinnerDay, amount: float) -> tuple[dict[str, float], float]:
    """Per-member shares and the guest-fund share of ``amount``.

    Plain floating point, no remainder distribution: the shares add up to
    ``amount`` only within float tolerance.
    """
    total = day.total_portions
    if total <= 0:
        return {}, 0.0
    shares = {a.id: amount * (a.portions / total) for a in day.members}
    guest_share = amount * (day.guest_count / total)
    return shares, guest_share


class ReconciliationReport:
    def __init__(self, *, date: date, amount: float | None) -> None:
        self.date = date
        self.amount = amount
        self.written: list[str] = []
        self.failed: dict[str, str] = {}

    @property
    def attempted(self) -> int:
        return len(self.written) + len(self.failed)

    @property
    def ok(self) -> bool:
        return not self.failed

    def __repr__(self) -> str:
        return (
            f"<ReconciliationReport(date={self.date}, written={len(self.written)}, "
            f"failed={len(self.failed)})>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "amount": self.amount,
            "attempted": self.attempted,
            "written": self.written,
            "failed": len(self.failed),
            "errors": self.failed,
        }


class ReconciliationEngine:
    """Keeps each day's ledger entries in step with its used budget.

    Runs for the same date are serialised and always start from a fresh read
    of the day, so the last run to finish has seen every attendance change
    committed before it started.
    """

    def __init__(self, *, days: DinnerDayRepository, ledger: LedgerRepository) -> None:
        self.days = days
        self.ledger = ledger
        self._locks: defaultdict[date, asyncio.Lock] = defaultdict(asyncio.Lock)

    async def set_used_budget(self, on: date, amount: float | None) -> ReconciliationReport:
        if amount is not None and (not math.isfinite(amount) or amount < 0):
            raise InvalidRequest(f"Used budget must be a non-negative amount, got {amount}")

        async with self._locks[on]:
            if not amount:
                await self.days.set_used_budget(on, None)
                await self.ledger.delete_entries_for_date(on)
                logger.info("Cleared used budget and ledger entries for %s", on)
                return ReconciliationReport(date=on, amount=None)

            await self.days.set_used_budget(on, amount)
            return await self._reconcile(await self.days.get(on))

    async def reconcile(self, on: date) -> ReconciliationReport:
        """Bring the ledger for ``on`` in line with its used budget and attendants.

        Every write is attempted independently; failures are collected on the
        report rather than aborting the rest.
        """
        async with self._locks[on]:
            return await self._reconcile(await self.days.get(on))

    async def _reconcile(self, day: DinnerDay) -> ReconciliationReport:
        amount = day.used_budget
        report = ReconciliationReport(date=day.date, amount=amount)
        if not amount:
            await self._attempt(
                report, "clear", self.ledger.delete_entries_for_date, day.date
            )
            return report

        if day.total_portions <= 0:
            logger.warning("Used budget %s on %s has no attendants to split over", amount, day.date)

        shares, guest_share = compute_shares(day, amount)
        for attendant in day.members:
            await self._attempt(
                report,
                attendant.id,
                self.ledger.upsert_member_entry,
                attendant.id,
                day.date,
                -shares[attendant.id],
                dinner_description(day.date, attendant.portions),
            )

        await self._attempt(
            report, STALE_ENTRIES, self.ledger.delete_stale_member_entries, day.date
        )

        if day.guest_count:
            await self._attempt(
                report,
                GUEST_FUND,
                self.ledger.upsert_guest_fund_entry,
                day.date,
                -guest_share,
                guest_description(day.date, day.guest_count),
            )
        else:
            await self._attempt(
                report, GUEST_FUND, self.ledger.delete_guest_fund_entry, day.date
            )

        if report.ok:
            logger.info("Reconciled %s: %s over %s portions", day.date, amount, day.total_portions)
        else:
            logger.warning(
                "Reconciled %s with %s of %s writes failed",
                day.date,
                len(report.failed),
                report.attempted,
            )
        return report

    async def _attempt(
        self,
        report: ReconciliationReport,
        target: str,
        write: Callable[..., Awaitable[Any]],
        *args: Any,
    ) -> None:
        try:
            await write(*args)
        except Exception as e:
            logger.exception("Ledger write for %s on %s failed", target, report.date)
            report.failed[target] = str(e)
        else:
            report.written.append(target)
