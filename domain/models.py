from datetime import date, timedelta
from enum import Enum
import math
from typing import Any, Iterable

from domain.errors import InvalidRequest


GUEST_PREFIX = "guest-"


WEEKDAYS = (
    "Monday",
    "Tuesday",
    "Wednesday",
    "Thursday",
    "Friday",
    "Saturday",
    "Sunday",
)


class Ingredient(Enum):
    beef = "Beef"
    pork = "Pork"
    chicken = "Chicken"
    fish = "Fish"
    minced_meat = "Minced Meat"
    rice = "Rice"
    potatoes = "Potatoes"
    pasta = "Pasta"
    bread = "Bread"
    salad = "Salad"
    cheese = "Cheese"


class AttendanceStatus(Enum):
    always = "always"
    never = "never"
    takeaway = "takeaway"
    default = "default"


class EntryType(Enum):
    deposit = "deposit"
    withdrawal = "withdrawal"

    @classmethod
    def for_amount(cls, amount: float) -> "EntryType":
        return cls.deposit if amount >= 0 else cls.withdrawal


def parse_date(value: str | date) -> date:
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(value)
    except (TypeError, ValueError):
        raise InvalidRequest(f"Not a YYYY-MM-DD date: {value!r}") from None


def date_range(start: date, days: int) -> list[date]:
    return [start + timedelta(days=i) for i in range(days)]


def weekday_index(value: int | str) -> int:
    """Weekday as 0 (Monday) .. 6 (Sunday), from an int or an English name."""
    if isinstance(value, str) and not value.isdigit():
        try:
            return WEEKDAYS.index(value.capitalize())
        except ValueError:
            raise ValueError(f"Unknown weekday: {value}") from None
    index = int(value)
    if not 0 <= index <= 6:
        raise ValueError(f"Weekday out of range: {value}")
    return index


def format_portions(portions: float) -> str:
    if float(portions).is_integer():
        return str(int(portions))
    return f"{portions:.1f}"


def valid_portions(portions: Any) -> bool:
    return (
        isinstance(portions, (int, float))
        and not isinstance(portions, bool)
        and math.isfinite(portions)
        and portions > 0
    )


def validate_member_id(member_id: str) -> str:
    """Member ids must not be mistakable for guest ids."""
    if not member_id or member_id.startswith(GUEST_PREFIX):
        raise InvalidRequest(f"Not a usable member id: {member_id!r}")
    return member_id


class Attendant:
    def __init__(
        self,
        *,
        id: str,
        portions: float = 1,
        is_take_away: bool = False,
        is_automatically_set: bool = False,
    ) -> None:
        self.id = id
        self.portions = portions
        self.is_take_away = is_take_away
        self.is_automatically_set = is_automatically_set

    @classmethod
    def guest(cls, n: int) -> "Attendant":
        return cls(id=f"{GUEST_PREFIX}{n}", portions=1)

    @property
    def is_guest(self) -> bool:
        return self.id.startswith(GUEST_PREFIX)

    def __repr__(self) -> str:
        return (
            f"<Attendant(id={self.id}, portions={self.portions}, "
            f"take_away={self.is_take_away}, auto={self.is_automatically_set})>"
        )

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Attendant):
            return NotImplemented
        return self.to_dict() == other.to_dict()

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "portions": self.portions,
            "isTakeAway": self.is_take_away,
            "isAutomaticallySet": self.is_automatically_set,
        }


class DinnerDay:
    """One calendar day's meal. A missing record is the empty day."""

    def __init__(
        self,
        *,
        date: date,
        cooks: Iterable[str] = (),
        ingredients: Iterable[str] = (),
        attendants: Iterable[Attendant] = (),
        used_budget: float | None = None,
    ) -> None:
        self.date = date
        self.cooks = list(cooks)
        self.ingredients = list(ingredients)
        self.attendants = list(attendants)
        self.used_budget = used_budget

    def __repr__(self) -> str:
        return (
            f"<DinnerDay(date={self.date}, cooks={self.cooks}, "
            f"attendants={len(self.attendants)}, used_budget={self.used_budget})>"
        )

    def attendant(self, id: str) -> Attendant | None:
        for attendant in self.attendants:
            if attendant.id == id:
                return attendant
        return None

    @property
    def members(self) -> list[Attendant]:
        return [a for a in self.attendants if not a.is_guest]

    @property
    def guests(self) -> list[Attendant]:
        return [a for a in self.attendants if a.is_guest]

    @property
    def guest_count(self) -> int:
        return len(self.guests)

    @property
    def total_portions(self) -> float:
        return sum(a.portions for a in self.attendants)

    @property
    def is_unscheduled(self) -> bool:
        return not self.cooks and not self.attendants

    @property
    def is_reconciled(self) -> bool:
        return bool(self.used_budget)

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "cooks": self.cooks,
            "ingredients": self.ingredients,
            "attendants": [a.to_dict() for a in self.attendants],
            "usedBudget": self.used_budget,
        }


class WeekdayPreference:
    def __init__(
        self,
        *,
        status: AttendanceStatus = AttendanceStatus.never,
        portions: float = 1,
    ) -> None:
        self.status = status
        self.portions = portions

    @property
    def joins(self) -> bool:
        return self.status in (AttendanceStatus.always, AttendanceStatus.takeaway)

    def to_dict(self) -> dict[str, Any]:
        return {"status": self.status.value, "portions": self.portions}


class MemberPreference:
    """A member's standing weekly answer. Days not listed count as ``never``."""

    def __init__(
        self,
        *,
        member_id: str,
        join_dinners: bool = False,
        default_portions: float = 1,
        weekdays: dict[int, WeekdayPreference] | None = None,
    ) -> None:
        self.member_id = member_id
        self.join_dinners = join_dinners
        self.default_portions = default_portions
        self.weekdays = {} if weekdays is None else weekdays

    def for_date(self, on: date) -> WeekdayPreference:
        return self.weekdays.get(on.weekday(), WeekdayPreference())

    def to_dict(self) -> dict[str, Any]:
        return {
            "memberId": self.member_id,
            "joinDinners": self.join_dinners,
            "defaultPortions": self.default_portions,
            "weekdays": {
                WEEKDAYS[i]: self.weekdays[i].to_dict() for i in sorted(self.weekdays)
            },
        }

    @staticmethod
    def weekdays_from_dict(raw: dict[str, Any]) -> dict[int, WeekdayPreference]:
        weekdays: dict[int, WeekdayPreference] = {}
        for key, value in raw.items():
            if isinstance(value, str):
                value = {"status": value}
            weekdays[weekday_index(key)] = WeekdayPreference(
                status=AttendanceStatus(value.get("status", "never")),
                portions=float(value.get("portions", 1)),
            )
        return weekdays


class BudgetEntry:
    def __init__(
        self,
        *,
        id: str,
        member_id: str,
        amount: float,
        description: str,
        created_at: str,
        dinner_date: date | None = None,
        type: EntryType | None = None,
    ) -> None:
        self.id = id
        self.member_id = member_id
        self.amount = amount
        self.description = description
        self.created_at = created_at
        self.dinner_date = dinner_date
        self.type = EntryType.for_amount(amount) if type is None else type

    def __repr__(self) -> str:
        return f"<BudgetEntry(member={self.member_id}, amount={self.amount})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "memberId": self.member_id,
            "amount": self.amount,
            "type": self.type.value,
            "description": self.description,
            "createdAt": self.created_at,
            "dinnerDate": self.dinner_date.isoformat() if self.dinner_date else None,
        }


class GuestFundEntry:
    def __init__(
        self,
        *,
        id: str,
        amount: float,
        description: str,
        created_at: str,
        dinner_date: date | None = None,
        type: EntryType | None = None,
    ) -> None:
        self.id = id
        self.amount = amount
        self.description = description
        self.created_at = created_at
        self.dinner_date = dinner_date
        self.type = EntryType.for_amount(amount) if type is None else type

    def __repr__(self) -> str:
        return f"<GuestFundEntry(date={self.dinner_date}, amount={self.amount})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "amount": self.amount,
            "type": self.type.value,
            "description": self.description,
            "createdAt": self.created_at,
            "dinnerDate": self.dinner_date.isoformat() if self.dinner_date else None,
        }


class AdminSettings:
    def __init__(
        self,
        *,
        budget_per_meal: float = 0,
        currency_type: str = ":-",
        suspended_weekdays: Iterable[int] = (),
    ) -> None:
        self.budget_per_meal = budget_per_meal
        self.currency_type = currency_type
        self.suspended_weekdays = frozenset(suspended_weekdays)

    def is_suspended(self, on: date) -> bool:
        return on.weekday() in self.suspended_weekdays

    def to_dict(self) -> dict[str, Any]:
        return {
            "budgetPerMeal": self.budget_per_meal,
            "currencyType": self.currency_type,
            "suspendedWeekdays": sorted(self.suspended_weekdays),
        }
