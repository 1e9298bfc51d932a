"""Store access for dinner days, preferences, the ledgers and admin settings.

Collections on a day (cooks, ingredients, attendants) live in their own
tables keyed by (date, id), so every change is a single-row delta rather than
a rewrite of the whole collection.
"""
from collections import defaultdict
from datetime import date, datetime, timezone
import functools
import json
from typing import Any, Awaitable, Callable, Iterable, ParamSpec, TypeVar
from uuid import uuid4

from databases import Database
from databases.interfaces import Record

from domain.errors import DinnerError, StoreError
from domain.models import (
    GUEST_PREFIX,
    AdminSettings,
    Attendant,
    BudgetEntry,
    DinnerDay,
    EntryType,
    GuestFundEntry,
    MemberPreference,
)


P = ParamSpec("P")
T = TypeVar("T")


def store_call(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
    """Surface failures of the underlying store as ``StoreError``."""

    @functools.wraps(fn)
    async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return await fn(*args, **kwargs)
        except DinnerError:
            raise
        except Exception as e:
            raise StoreError(f"{fn.__qualname__} failed: {e}") from e

    return wrapper


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _date(value: str | None) -> date | None:
    return date.fromisoformat(value) if value else None


ENSURE_DAY = "INSERT INTO dinner_days (date) VALUES (:date) ON CONFLICT (date) DO NOTHING"


LIST_DAYS = "SELECT * FROM dinner_days WHERE date >= :start AND date <= :end"


LIST_RECONCILED_DAYS = """
SELECT * FROM dinner_days
WHERE used_budget IS NOT NULL AND date >= :start AND date <= :end
ORDER BY date DESC
"""


SET_USED_BUDGET = "UPDATE dinner_days SET used_budget = :amount WHERE date = :date"


LIST_COOKS = """
SELECT * FROM cooks WHERE date >= :start AND date <= :end ORDER BY date, seq
"""


ADD_COOK = """
INSERT INTO cooks (date, member_id, seq)
VALUES (:date, :member_id, (SELECT COALESCE(MAX(seq), 0) + 1 FROM cooks WHERE date = :date))
ON CONFLICT (date, member_id) DO NOTHING
"""


REMOVE_COOK = """
DELETE FROM cooks WHERE date = :date AND member_id = :member_id RETURNING member_id
"""


LIST_INGREDIENTS = """
SELECT * FROM day_ingredients WHERE date >= :start AND date <= :end ORDER BY date, seq
"""


ADD_INGREDIENT = """
INSERT INTO day_ingredients (date, ingredient, seq)
VALUES (:date, :ingredient, (SELECT COALESCE(MAX(seq), 0) + 1 FROM day_ingredients WHERE date = :date))
ON CONFLICT (date, ingredient) DO NOTHING
"""


REMOVE_INGREDIENT = "DELETE FROM day_ingredients WHERE date = :date AND ingredient = :ingredient"


CLEAR_INGREDIENTS = "DELETE FROM day_ingredients WHERE date = :date"


CLEAR_INGREDIENTS_WITHOUT_COOKS = """
DELETE FROM day_ingredients
WHERE date = :date AND NOT EXISTS (SELECT 1 FROM cooks WHERE cooks.date = :date)
"""


LIST_ATTENDANTS = """
SELECT * FROM attendants WHERE date >= :start AND date <= :end ORDER BY date, seq
"""


ADD_ATTENDANT = """
INSERT INTO attendants (date, id, portions, is_take_away, is_automatically_set, seq)
VALUES (
    :date, :id, :portions, :is_take_away, :is_automatically_set,
    (SELECT COALESCE(MAX(seq), 0) + 1 FROM attendants WHERE date = :date)
)
ON CONFLICT (date, id) DO NOTHING
"""


# A manual entry wins: the update only applies to rows the job wrote itself.
UPSERT_AUTOMATIC_ATTENDANT = """
INSERT INTO attendants (date, id, portions, is_take_away, is_automatically_set, seq)
VALUES (
    :date, :id, :portions, :is_take_away, 1,
    (SELECT COALESCE(MAX(seq), 0) + 1 FROM attendants WHERE date = :date)
)
ON CONFLICT (date, id) DO UPDATE SET
    portions = excluded.portions,
    is_take_away = excluded.is_take_away
WHERE attendants.is_automatically_set = 1
"""


REMOVE_ATTENDANT = """
DELETE FROM attendants WHERE date = :date AND id = :id RETURNING id
"""


REMOVE_AUTOMATIC_ATTENDANT = """
DELETE FROM attendants
WHERE date = :date AND id = :id AND is_automatically_set = 1
RETURNING id
"""


REMOVE_GUESTS = "DELETE FROM attendants WHERE date = :date AND id LIKE :pattern"


class DinnerDayRepository:
    """Dinner-day records keyed by date."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def transaction(self):
        return self.db.transaction()

    @store_call
    async def get(self, on: date) -> DinnerDay:
        days = await self.list_days(on, on)
        return days[0]

    @store_call
    async def list_days(self, start: date, end: date) -> list[DinnerDay]:
        """Every date in ``start..end`` inclusive, empty defaults filling gaps."""
        values = {"start": start.isoformat(), "end": end.isoformat()}
        rows = await self.db.fetch_all(LIST_DAYS, values=values)  # pyright: ignore[reportUnknownMemberType]
        return self._assemble(
            [date.fromordinal(o) for o in range(start.toordinal(), end.toordinal() + 1)],
            rows,
            await self._collections(values),
        )

    @store_call
    async def list_reconciled(self, start: date, end: date) -> list[DinnerDay]:
        values = {"start": start.isoformat(), "end": end.isoformat()}
        rows = await self.db.fetch_all(LIST_RECONCILED_DAYS, values=values)  # pyright: ignore[reportUnknownMemberType]
        return self._assemble(
            [date.fromisoformat(r["date"]) for r in rows],
            rows,
            await self._collections(values),
        )

    async def _collections(
        self, values: dict[str, str]
    ) -> tuple[list[Record], list[Record], list[Record]]:
        cooks = await self.db.fetch_all(LIST_COOKS, values=values)  # pyright: ignore[reportUnknownMemberType]
        ingredients = await self.db.fetch_all(LIST_INGREDIENTS, values=values)  # pyright: ignore[reportUnknownMemberType]
        attendants = await self.db.fetch_all(LIST_ATTENDANTS, values=values)  # pyright: ignore[reportUnknownMemberType]
        return cooks, ingredients, attendants

    @staticmethod
    def _assemble(
        dates: list[date],
        rows: list[Record],
        collections: tuple[list[Record], list[Record], list[Record]],
    ) -> list[DinnerDay]:
        cook_rows, ingredient_rows, attendant_rows = collections
        budgets = {r["date"]: r["used_budget"] for r in rows}
        cooks: dict[str, list[str]] = defaultdict(list)
        for r in cook_rows:
            cooks[r["date"]].append(r["member_id"])
        ingredients: dict[str, list[str]] = defaultdict(list)
        for r in ingredient_rows:
            ingredients[r["date"]].append(r["ingredient"])
        attendants: dict[str, list[Attendant]] = defaultdict(list)
        for r in attendant_rows:
            attendants[r["date"]].append(
                Attendant(
                    id=r["id"],
                    portions=r["portions"],
                    is_take_away=bool(r["is_take_away"]),
                    is_automatically_set=bool(r["is_automatically_set"]),
                )
            )
        days: list[DinnerDay] = []
        for on in dates:
            key = on.isoformat()
            days.append(
                DinnerDay(
                    date=on,
                    cooks=cooks[key],
                    ingredients=ingredients[key],
                    attendants=attendants[key],
                    used_budget=budgets.get(key),
                )
            )
        return days

    @store_call
    async def ensure(self, on: date) -> None:
        await self.db.execute(ENSURE_DAY, values={"date": on.isoformat()})  # pyright: ignore[reportUnknownMemberType]

    @store_call
    async def set_used_budget(self, on: date, amount: float | None) -> None:
        await self.ensure(on)
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            SET_USED_BUDGET, values={"date": on.isoformat(), "amount": amount}
        )

    @store_call
    async def add_cook(self, on: date, member_id: str) -> None:
        await self.ensure(on)
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            ADD_COOK, values={"date": on.isoformat(), "member_id": member_id}
        )

    @store_call
    async def remove_cook(self, on: date, member_id: str) -> bool:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            REMOVE_COOK, values={"date": on.isoformat(), "member_id": member_id}
        )
        return row is not None

    @store_call
    async def clear_ingredients_without_cooks(self, on: date) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            CLEAR_INGREDIENTS_WITHOUT_COOKS, values={"date": on.isoformat()}
        )

    @store_call
    async def add_ingredient(self, on: date, ingredient: str) -> None:
        await self.ensure(on)
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            ADD_INGREDIENT, values={"date": on.isoformat(), "ingredient": ingredient}
        )

    @store_call
    async def remove_ingredient(self, on: date, ingredient: str) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            REMOVE_INGREDIENT, values={"date": on.isoformat(), "ingredient": ingredient}
        )

    @store_call
    async def replace_ingredients(self, on: date, ingredients: Iterable[str]) -> None:
        async with self.transaction():
            await self.ensure(on)
            await self.db.execute(CLEAR_INGREDIENTS, values={"date": on.isoformat()})  # pyright: ignore[reportUnknownMemberType]
            for ingredient in ingredients:
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    ADD_INGREDIENT,
                    values={"date": on.isoformat(), "ingredient": ingredient},
                )

    @store_call
    async def add_attendant(self, on: date, attendant: Attendant) -> None:
        """Insert unless the id already attends; an existing entry is kept."""
        await self.ensure(on)
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            ADD_ATTENDANT, values=self._attendant_values(on, attendant)
        )

    @store_call
    async def remove_attendant(self, on: date, id: str) -> bool:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            REMOVE_ATTENDANT, values={"date": on.isoformat(), "id": id}
        )
        return row is not None

    @store_call
    async def upsert_automatic_attendant(self, on: date, attendant: Attendant) -> None:
        await self.ensure(on)
        values = self._attendant_values(on, attendant)
        del values["is_automatically_set"]
        await self.db.execute(UPSERT_AUTOMATIC_ATTENDANT, values=values)  # pyright: ignore[reportUnknownMemberType]

    @store_call
    async def remove_automatic_attendant(self, on: date, id: str) -> bool:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            REMOVE_AUTOMATIC_ATTENDANT, values={"date": on.isoformat(), "id": id}
        )
        return row is not None

    @store_call
    async def replace_guests(self, on: date, guest_count: int) -> None:
        async with self.transaction():
            await self.ensure(on)
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                REMOVE_GUESTS,
                values={"date": on.isoformat(), "pattern": f"{GUEST_PREFIX}%"},
            )
            for n in range(1, guest_count + 1):
                await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                    ADD_ATTENDANT, values=self._attendant_values(on, Attendant.guest(n))
                )

    @staticmethod
    def _attendant_values(on: date, attendant: Attendant) -> dict[str, Any]:
        return {
            "date": on.isoformat(),
            "id": attendant.id,
            "portions": float(attendant.portions),
            "is_take_away": int(attendant.is_take_away),
            "is_automatically_set": int(attendant.is_automatically_set),
        }


GET_PREFERENCE = "SELECT * FROM member_preferences WHERE member_id = :member_id"


SAVE_PREFERENCE = """
INSERT INTO member_preferences (member_id, join_dinners, default_portions, weekdays)
VALUES (:member_id, :join_dinners, :default_portions, :weekdays)
ON CONFLICT (member_id) DO UPDATE SET
    join_dinners = excluded.join_dinners,
    default_portions = excluded.default_portions,
    weekdays = excluded.weekdays
"""


LIST_OPTED_IN = """
SELECT member_id FROM member_preferences WHERE join_dinners = 1 ORDER BY member_id
"""


class PreferenceRepository:
    """Standing weekly preferences, one row per member."""

    def __init__(self, db: Database) -> None:
        self.db = db

    @store_call
    async def get(self, member_id: str) -> MemberPreference:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_PREFERENCE, values={"member_id": member_id}
        )
        if row is None:
            return MemberPreference(member_id=member_id)
        return MemberPreference(
            member_id=row["member_id"],
            join_dinners=bool(row["join_dinners"]),
            default_portions=row["default_portions"],
            weekdays=MemberPreference.weekdays_from_dict(json.loads(row["weekdays"])),
        )

    @store_call
    async def save(self, preference: MemberPreference) -> None:
        weekdays = {
            str(i): p.to_dict() for i, p in preference.weekdays.items()
        }
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            SAVE_PREFERENCE,
            values={
                "member_id": preference.member_id,
                "join_dinners": int(preference.join_dinners),
                "default_portions": float(preference.default_portions),
                "weekdays": json.dumps(weekdays),
            },
        )

    @store_call
    async def list_opted_in(self) -> list[str]:
        rows = await self.db.fetch_all(LIST_OPTED_IN)  # pyright: ignore[reportUnknownMemberType]
        return [r["member_id"] for r in rows]


UPSERT_MEMBER_DINNER_ENTRY = """
INSERT INTO budget_entries (id, member_id, dinner_date, amount, type, description, created_at)
VALUES (:id, :member_id, :dinner_date, :amount, :type, :description, :created_at)
ON CONFLICT (member_id, dinner_date) DO UPDATE SET
    amount = excluded.amount,
    type = excluded.type,
    description = excluded.description
"""


ADD_MEMBER_ENTRY = """
INSERT INTO budget_entries (id, member_id, dinner_date, amount, type, description, created_at)
VALUES (:id, :member_id, NULL, :amount, :type, :description, :created_at)
"""


LIST_MEMBER_ENTRIES = """
SELECT * FROM budget_entries WHERE member_id = :member_id ORDER BY created_at DESC
"""


LIST_MEMBER_ENTRIES_FOR_DATE = """
SELECT * FROM budget_entries WHERE dinner_date = :dinner_date ORDER BY member_id
"""


MEMBER_BALANCE = """
SELECT COALESCE(SUM(amount), 0) AS balance FROM budget_entries WHERE member_id = :member_id
"""


DELETE_MEMBER_ENTRY_FOR_DATE = """
DELETE FROM budget_entries WHERE dinner_date = :dinner_date AND member_id = :member_id
"""


DELETE_MEMBER_ENTRIES_FOR_DATE = "DELETE FROM budget_entries WHERE dinner_date = :dinner_date"


# Judged against the attendants as stored now, not as some caller last saw them.
DELETE_STALE_MEMBER_ENTRIES = """
DELETE FROM budget_entries
WHERE dinner_date = :dinner_date
    AND member_id NOT IN (SELECT id FROM attendants WHERE date = :dinner_date)
RETURNING member_id
"""


UPSERT_GUEST_DINNER_ENTRY = """
INSERT INTO guest_entries (id, dinner_date, amount, type, description, created_at)
VALUES (:id, :dinner_date, :amount, :type, :description, :created_at)
ON CONFLICT (dinner_date) DO UPDATE SET
    amount = excluded.amount,
    type = excluded.type,
    description = excluded.description
"""


ADD_GUEST_ENTRY = """
INSERT INTO guest_entries (id, dinner_date, amount, type, description, created_at)
VALUES (:id, NULL, :amount, :type, :description, :created_at)
"""


LIST_GUEST_ENTRIES = "SELECT * FROM guest_entries ORDER BY created_at DESC"


GET_GUEST_ENTRY_FOR_DATE = "SELECT * FROM guest_entries WHERE dinner_date = :dinner_date"


GUEST_FUND_BALANCE = "SELECT COALESCE(SUM(amount), 0) AS balance FROM guest_entries"


DELETE_GUEST_ENTRY_FOR_DATE = "DELETE FROM guest_entries WHERE dinner_date = :dinner_date"


class LedgerRepository:
    """Member budget entries and the communal guest fund."""

    def __init__(self, db: Database) -> None:
        self.db = db

    def transaction(self):
        return self.db.transaction()

    @staticmethod
    def _budget_entry(row: Record) -> BudgetEntry:
        return BudgetEntry(
            id=row["id"],
            member_id=row["member_id"],
            amount=row["amount"],
            type=EntryType(row["type"]),
            description=row["description"],
            created_at=row["created_at"],
            dinner_date=_date(row["dinner_date"]),
        )

    @staticmethod
    def _guest_entry(row: Record) -> GuestFundEntry:
        return GuestFundEntry(
            id=row["id"],
            amount=row["amount"],
            type=EntryType(row["type"]),
            description=row["description"],
            created_at=row["created_at"],
            dinner_date=_date(row["dinner_date"]),
        )

    @store_call
    async def upsert_member_entry(
        self, member_id: str, on: date, amount: float, description: str
    ) -> None:
        """Insert the member's entry for a dinner, or update it in place."""
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            UPSERT_MEMBER_DINNER_ENTRY,
            values={
                "id": uuid4().hex,
                "member_id": member_id,
                "dinner_date": on.isoformat(),
                "amount": amount,
                "type": EntryType.for_amount(amount).value,
                "description": description,
                "created_at": _now(),
            },
        )

    @store_call
    async def add_member_entry(
        self, member_id: str, amount: float, description: str
    ) -> BudgetEntry:
        entry = BudgetEntry(
            id=uuid4().hex,
            member_id=member_id,
            amount=amount,
            description=description,
            created_at=_now(),
        )
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            ADD_MEMBER_ENTRY,
            values={
                "id": entry.id,
                "member_id": member_id,
                "amount": amount,
                "type": entry.type.value,
                "description": description,
                "created_at": entry.created_at,
            },
        )
        return entry

    @store_call
    async def member_entries(self, member_id: str) -> list[BudgetEntry]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_MEMBER_ENTRIES, values={"member_id": member_id}
        )
        return [self._budget_entry(r) for r in rows]

    @store_call
    async def member_balance(self, member_id: str) -> float:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            MEMBER_BALANCE, values={"member_id": member_id}
        )
        return float(row["balance"]) if row is not None else 0.0

    @store_call
    async def member_entries_for_date(self, on: date) -> list[BudgetEntry]:
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            LIST_MEMBER_ENTRIES_FOR_DATE, values={"dinner_date": on.isoformat()}
        )
        return [self._budget_entry(r) for r in rows]

    @store_call
    async def delete_member_entry(self, member_id: str, on: date) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            DELETE_MEMBER_ENTRY_FOR_DATE,
            values={"dinner_date": on.isoformat(), "member_id": member_id},
        )

    @store_call
    async def delete_stale_member_entries(self, on: date) -> list[str]:
        """Drop dinner entries of members who no longer attend ``on``."""
        rows = await self.db.fetch_all(  # pyright: ignore[reportUnknownMemberType]
            DELETE_STALE_MEMBER_ENTRIES, values={"dinner_date": on.isoformat()}
        )
        return [r["member_id"] for r in rows]

    @store_call
    async def delete_entries_for_date(self, on: date) -> None:
        async with self.transaction():
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                DELETE_MEMBER_ENTRIES_FOR_DATE, values={"dinner_date": on.isoformat()}
            )
            await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
                DELETE_GUEST_ENTRY_FOR_DATE, values={"dinner_date": on.isoformat()}
            )

    @store_call
    async def upsert_guest_fund_entry(
        self, on: date, amount: float, description: str
    ) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            UPSERT_GUEST_DINNER_ENTRY,
            values={
                "id": uuid4().hex,
                "dinner_date": on.isoformat(),
                "amount": amount,
                "type": EntryType.for_amount(amount).value,
                "description": description,
                "created_at": _now(),
            },
        )

    @store_call
    async def add_guest_fund_entry(self, amount: float, description: str) -> GuestFundEntry:
        entry = GuestFundEntry(
            id=uuid4().hex, amount=amount, description=description, created_at=_now()
        )
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            ADD_GUEST_ENTRY,
            values={
                "id": entry.id,
                "amount": amount,
                "type": entry.type.value,
                "description": description,
                "created_at": entry.created_at,
            },
        )
        return entry

    @store_call
    async def guest_fund_entry_for_date(self, on: date) -> GuestFundEntry | None:
        row = await self.db.fetch_one(  # pyright: ignore[reportUnknownMemberType]
            GET_GUEST_ENTRY_FOR_DATE, values={"dinner_date": on.isoformat()}
        )
        return None if row is None else self._guest_entry(row)

    @store_call
    async def delete_guest_fund_entry(self, on: date) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            DELETE_GUEST_ENTRY_FOR_DATE, values={"dinner_date": on.isoformat()}
        )

    @store_call
    async def guest_fund_entries(self) -> list[GuestFundEntry]:
        rows = await self.db.fetch_all(LIST_GUEST_ENTRIES)  # pyright: ignore[reportUnknownMemberType]
        return [self._guest_entry(r) for r in rows]

    @store_call
    async def guest_fund_balance(self) -> float:
        row = await self.db.fetch_one(GUEST_FUND_BALANCE)  # pyright: ignore[reportUnknownMemberType]
        return float(row["balance"]) if row is not None else 0.0


GET_SETTINGS = "SELECT * FROM admin_settings WHERE id = 1"


SAVE_SETTINGS = """
INSERT INTO admin_settings (id, budget_per_meal, currency_type, suspended_weekdays)
VALUES (1, :budget_per_meal, :currency_type, :suspended_weekdays)
ON CONFLICT (id) DO UPDATE SET
    budget_per_meal = excluded.budget_per_meal,
    currency_type = excluded.currency_type,
    suspended_weekdays = excluded.suspended_weekdays
"""


class SettingsRepository:
    def __init__(self, db: Database) -> None:
        self.db = db

    @store_call
    async def get(self) -> AdminSettings:
        row = await self.db.fetch_one(GET_SETTINGS)  # pyright: ignore[reportUnknownMemberType]
        if row is None:
            return AdminSettings()
        return AdminSettings(
            budget_per_meal=row["budget_per_meal"],
            currency_type=row["currency_type"],
            suspended_weekdays=json.loads(row["suspended_weekdays"]),
        )

    @store_call
    async def save(self, settings: AdminSettings) -> None:
        await self.db.execute(  # pyright: ignore[reportUnknownMemberType]
            SAVE_SETTINGS,
            values={
                "budget_per_meal": float(settings.budget_per_meal),
                "currency_type": settings.currency_type,
                "suspended_weekdays": json.dumps(sorted(settings.suspended_weekdays)),
            },
        )
