"""Member-initiated changes to a dinner day.

Each mutation is a delta on one row (one cook, one attendant, one ingredient)
so members editing the same day at the same time do not overwrite each other.
Days are created on first touch.
"""
from datetime import date
import logging
from typing import Any, Awaitable, Callable, Iterable, TypeAlias

from domain.errors import ConfirmationRequired, InvalidRequest, NotAuthorized
from domain.models import Attendant, DinnerDay, Ingredient, valid_portions, validate_member_id
from domain.reconciliation import ReconciliationEngine, ReconciliationReport
from domain.repository import DinnerDayRepository, PreferenceRepository, SettingsRepository


logger = logging.getLogger(__name__)


Confirm: TypeAlias = Callable[[date], Awaitable[bool]]


INGREDIENTS = frozenset(i.value for i in Ingredient)


class Mutation:
    def __init__(
        self,
        *,
        day: DinnerDay,
        reconciliation: ReconciliationReport | None = None,
        cancelled: bool = False,
    ) -> None:
        self.day = day
        self.reconciliation = reconciliation
        self.cancelled = cancelled

    def to_dict(self) -> dict[str, Any]:
        return {
            "day": self.day.to_dict(),
            "cancelled": self.cancelled,
            "reconciliation": (
                None if self.reconciliation is None else self.reconciliation.to_dict()
            ),
        }


class AttendanceService:
    def __init__(
        self,
        *,
        days: DinnerDayRepository,
        settings: SettingsRepository,
        preferences: PreferenceRepository,
        reconciliation: ReconciliationEngine,
        restrict_to_opted_in: bool = False,
    ) -> None:
        self.days = days
        self.settings = settings
        self.preferences = preferences
        self.reconciliation = reconciliation
        self.restrict_to_opted_in = restrict_to_opted_in

    async def toggle_attendance(
        self,
        on: date,
        member_id: str,
        *,
        actor_id: str,
        take_away: bool = False,
        portions: float | None = None,
        confirm: Confirm | None = None,
    ) -> Mutation:
        """Join if absent, leave if attending.

        Joining without ``portions`` takes the member's default portions.
        Leaving ignores ``take_away`` and ``portions``; changing portions means
        leaving and joining again.
        """
        self._authorize(member_id, actor_id)
        if portions is not None and not valid_portions(portions):
            raise InvalidRequest(f"Portions must be a positive number, got {portions!r}")

        day = await self.days.get(on)
        joining = day.attendant(member_id) is None
        if joining:
            await self._require_opted_in(member_id)
        if portions is None:
            portions = (await self.preferences.get(member_id)).default_portions
        if not await self._confirm_suspended(day, confirm):
            return Mutation(day=day, cancelled=True)

        if not await self.days.remove_attendant(on, member_id):
            await self.days.add_attendant(
                on,
                Attendant(
                    id=member_id,
                    portions=portions,
                    is_take_away=take_away,
                    is_automatically_set=False,
                ),
            )
            logger.info("%s joined dinner on %s (%s portions)", member_id, on, portions)
        else:
            logger.info("%s left dinner on %s", member_id, on)
        return await self._settle(on)

    async def toggle_cook(
        self,
        on: date,
        member_id: str,
        *,
        actor_id: str,
        confirm: Confirm | None = None,
    ) -> Mutation:
        self._authorize(member_id, actor_id)
        day = await self.days.get(on)
        if member_id not in day.cooks:
            await self._require_opted_in(member_id)
        if not await self._confirm_suspended(day, confirm):
            return Mutation(day=day, cancelled=True)

        if await self.days.remove_cook(on, member_id):
            # Cooking called off entirely: the shopping list goes with it.
            await self.days.clear_ingredients_without_cooks(on)
            logger.info("%s no longer cooks on %s", member_id, on)
        else:
            await self._become_cook(on, member_id)
            logger.info("%s cooks on %s", member_id, on)
        return await self._settle(on)

    async def update_guest_attendance(
        self,
        on: date,
        guest_count: int,
        *,
        confirm: Confirm | None = None,
    ) -> Mutation:
        if isinstance(guest_count, bool) or not isinstance(guest_count, int) or guest_count < 0:
            raise InvalidRequest(f"Guest count must be a non-negative integer, got {guest_count!r}")

        day = await self.days.get(on)
        if not await self._confirm_suspended(day, confirm):
            return Mutation(day=day, cancelled=True)

        await self.days.replace_guests(on, guest_count)
        logger.info("%s guests on %s", guest_count, on)
        return await self._settle(on)

    async def set_ingredients(
        self,
        on: date,
        ingredients: Iterable[str],
        *,
        actor_id: str,
        confirm: Confirm | None = None,
    ) -> Mutation:
        """Replace the shopping list. Whoever fills it in becomes a cook."""
        validate_member_id(actor_id)
        wanted = list(dict.fromkeys(ingredients))
        self._validate_ingredients(wanted)

        day = await self.days.get(on)
        if wanted and actor_id not in day.cooks:
            await self._require_opted_in(actor_id)
        if not await self._confirm_suspended(day, confirm):
            return Mutation(day=day, cancelled=True)

        await self.days.replace_ingredients(on, wanted)
        if wanted and actor_id not in day.cooks:
            await self._become_cook(on, actor_id)
        return await self._settle(on)

    async def toggle_ingredient(
        self,
        on: date,
        ingredient: str,
        checked: bool,
        *,
        actor_id: str,
        confirm: Confirm | None = None,
    ) -> Mutation:
        validate_member_id(actor_id)
        self._validate_ingredients([ingredient])
        day = await self.days.get(on)
        wanted = [i for i in day.ingredients if i != ingredient]
        if checked:
            wanted.append(ingredient)
        if wanted and actor_id not in day.cooks:
            await self._require_opted_in(actor_id)
        if not await self._confirm_suspended(day, confirm):
            return Mutation(day=day, cancelled=True)

        if checked:
            await self.days.add_ingredient(on, ingredient)
        else:
            await self.days.remove_ingredient(on, ingredient)
        if wanted and actor_id not in day.cooks:
            await self._become_cook(on, actor_id)
        return await self._settle(on)

    async def _become_cook(self, on: date, member_id: str) -> None:
        await self.days.add_cook(on, member_id)
        # No-op when the member already attends.
        await self.days.add_attendant(
            on,
            Attendant(id=member_id, portions=1, is_take_away=False, is_automatically_set=False),
        )

    async def _settle(self, on: date) -> Mutation:
        day = await self.days.get(on)
        if not day.is_reconciled:
            return Mutation(day=day)
        report = await self.reconciliation.reconcile(on)
        return Mutation(day=await self.days.get(on), reconciliation=report)

    async def _confirm_suspended(self, day: DinnerDay, confirm: Confirm | None) -> bool:
        if not day.is_unscheduled:
            return True
        settings = await self.settings.get()
        if not settings.is_suspended(day.date):
            return True
        if confirm is None:
            raise ConfirmationRequired(day.date)
        if await confirm(day.date):
            return True
        logger.info("Change to suspended %s on %s cancelled", f"{day.date:%A}", day.date)
        return False

    async def _require_opted_in(self, member_id: str) -> None:
        if not self.restrict_to_opted_in:
            return
        preference = await self.preferences.get(member_id)
        if not preference.join_dinners:
            raise NotAuthorized(
                "You cannot make changes as you have not joined dinners in settings."
            )

    @staticmethod
    def _authorize(member_id: str, actor_id: str) -> None:
        validate_member_id(member_id)
        if member_id != actor_id:
            raise NotAuthorized(f"{actor_id} may not change entries of {member_id}")

    @staticmethod
    def _validate_ingredients(ingredients: list[str]) -> None:
        unknown = [i for i in ingredients if i not in INGREDIENTS]
        if unknown:
            raise InvalidRequest(f"Unknown ingredients: {', '.join(unknown)}")
