import asyncio
import contextlib
from datetime import date, timedelta
import functools
import json
import logging
from typing import Any, Awaitable, Callable, TypeVar, cast

from databases import Database
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from rich.logging import RichHandler
from starlette.applications import Starlette
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.routing import Route
import uvicorn

import config
import db
from domain.accounting import Accounting
from domain.attendance import AttendanceService, Confirm
from domain.errors import ConfirmationRequired, DinnerError, InvalidRequest, NotAuthorized
from domain.models import (
    AdminSettings,
    AttendanceStatus,
    MemberPreference,
    WeekdayPreference,
    parse_date,
    weekday_index,
)
from domain.preferences import PreferenceService
from domain.projection import ProjectionJob
from domain.reconciliation import ReconciliationEngine
from domain.repository import (
    DinnerDayRepository,
    LedgerRepository,
    PreferenceRepository,
    SettingsRepository,
)
from scheduler import run_daily


logger = logging.getLogger(__name__)


MEMBER_HEADER = "X-Member-Id"


class Services:
    """Everything the routes need, wired around one database."""

    def __init__(self, database: Database, cfg: config.Config) -> None:
        self.days = DinnerDayRepository(database)
        self.ledger = LedgerRepository(database)
        self.preference_store = PreferenceRepository(database)
        self.settings = SettingsRepository(database)
        self.reconciliation = ReconciliationEngine(days=self.days, ledger=self.ledger)
        self.attendance = AttendanceService(
            days=self.days,
            settings=self.settings,
            preferences=self.preference_store,
            reconciliation=self.reconciliation,
            restrict_to_opted_in=cfg.restrict_to_opted_in,
        )
        self.projection = ProjectionJob(
            days=self.days,
            preferences=self.preference_store,
            horizon_days=cfg.projection_horizon_days,
        )
        self.preferences = PreferenceService(
            preferences=self.preference_store, projection=self.projection
        )
        self.accounting = Accounting(ledger=self.ledger, days=self.days)


class Payload(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CookInput(Payload):
    member_id: str | None = None
    confirmed: bool = False


class AttendanceInput(Payload):
    member_id: str | None = None
    take_away: bool = False
    portions: float | None = Field(None, gt=0)
    confirmed: bool = False


class GuestsInput(Payload):
    guest_count: int = Field(..., ge=0)
    confirmed: bool = False


class IngredientsInput(Payload):
    ingredients: list[str] = Field(default_factory=list)
    confirmed: bool = False


class IngredientToggleInput(Payload):
    ingredient: str
    checked: bool
    confirmed: bool = False


class UsedBudgetInput(Payload):
    amount: float | None = Field(None, ge=0)


class ProjectionInput(Payload):
    window_start: date
    window_days: int = Field(..., ge=1)


class WeekdayInput(Payload):
    status: AttendanceStatus = AttendanceStatus.never
    portions: float = Field(1, gt=0)


class PreferenceInput(Payload):
    join_dinners: bool = False
    default_portions: float = Field(1, gt=0)
    weekdays: dict[str, WeekdayInput] = Field(default_factory=dict)


class AmountInput(Payload):
    amount: float = Field(..., gt=0)


class DistributeInput(Payload):
    member_ids: list[str]


class SettingsInput(Payload):
    """Suspended weekdays count from 0 = Monday to 6 = Sunday, as
    ``date.weekday()`` does, or are given by English name. Data counted from
    Sunday = 0 must be shifted by one day before it is sent here.
    """

    budget_per_meal: float = Field(0, ge=0)
    currency_type: str = ":-"
    suspended_weekdays: list[int | str] = Field(default_factory=list)


def aJSONResponse(route: Callable[..., Awaitable[Any]]):
    @functools.wraps(route)
    async def wrapper(*args: Any, **kwargs: Any) -> JSONResponse:
        resp = await route(*args, **kwargs)
        if not isinstance(resp, tuple):
            body, code = resp, 200
        else:
            body, code = resp
        return JSONResponse(body, status_code=code)

    return wrapper


M = TypeVar("M", bound=BaseModel)


async def _body(request: Request, model: type[M]) -> M:
    raw = await request.body()
    try:
        data = json.loads(raw) if raw else {}
    except json.JSONDecodeError as e:
        raise InvalidRequest(f"Body is not JSON: {e}") from None
    return model.model_validate(data)


def _actor(request: Request) -> str:
    actor = request.headers.get(MEMBER_HEADER)
    if not actor:
        raise NotAuthorized(f"Missing {MEMBER_HEADER} header")
    return actor


def _services(request: Request) -> Services:
    return request.app.state.services


def _day(request: Request) -> date:
    return parse_date(request.path_params["day"])


def _confirmation(confirmed: bool) -> Confirm | None:
    if not confirmed:
        return None

    async def yes(on: date) -> bool:
        return True

    return yes


@aJSONResponse
async def list_days(request: Request) -> Any:
    services = _services(request)
    start = parse_date(request.query_params.get("start") or date.today())
    if "end" in request.query_params:
        end = parse_date(request.query_params["end"])
    else:
        end = start + timedelta(days=services.projection.horizon_days)
    if end < start:
        raise InvalidRequest("end is before start")
    days = await services.days.list_days(start, end)
    return [d.to_dict() for d in days]


@aJSONResponse
async def get_day(request: Request) -> Any:
    day = await _services(request).days.get(_day(request))
    return day.to_dict()


@aJSONResponse
async def toggle_cook(request: Request) -> Any:
    actor = _actor(request)
    payload = await _body(request, CookInput)
    mutation = await _services(request).attendance.toggle_cook(
        _day(request),
        payload.member_id or actor,
        actor_id=actor,
        confirm=_confirmation(payload.confirmed),
    )
    return mutation.to_dict()


@aJSONResponse
async def toggle_attendance(request: Request) -> Any:
    actor = _actor(request)
    payload = await _body(request, AttendanceInput)
    mutation = await _services(request).attendance.toggle_attendance(
        _day(request),
        payload.member_id or actor,
        actor_id=actor,
        take_away=payload.take_away,
        portions=payload.portions,
        confirm=_confirmation(payload.confirmed),
    )
    return mutation.to_dict()


@aJSONResponse
async def update_guests(request: Request) -> Any:
    _actor(request)
    payload = await _body(request, GuestsInput)
    mutation = await _services(request).attendance.update_guest_attendance(
        _day(request), payload.guest_count, confirm=_confirmation(payload.confirmed)
    )
    return mutation.to_dict()


@aJSONResponse
async def ingredients(request: Request) -> Any:
    actor = _actor(request)
    attendance = _services(request).attendance
    match request.method:
        case "PUT":
            payload = await _body(request, IngredientsInput)
            mutation = await attendance.set_ingredients(
                _day(request),
                payload.ingredients,
                actor_id=actor,
                confirm=_confirmation(payload.confirmed),
            )
        case "POST":
            toggle = await _body(request, IngredientToggleInput)
            mutation = await attendance.toggle_ingredient(
                _day(request),
                toggle.ingredient,
                toggle.checked,
                actor_id=actor,
                confirm=_confirmation(toggle.confirmed),
            )
        case _:
            raise ValueError("Unsupported method.")
    return mutation.to_dict()


@aJSONResponse
async def used_budget(request: Request) -> Any:
    _actor(request)
    payload = await _body(request, UsedBudgetInput)
    report = await _services(request).reconciliation.set_used_budget(
        _day(request), payload.amount
    )
    return report.to_dict(), 200 if report.ok else 207


@aJSONResponse
async def run_projection(request: Request) -> Any:
    payload = await _body(request, ProjectionInput)
    report = await _services(request).projection.run(payload.window_start, payload.window_days)
    return report.to_dict()


@aJSONResponse
async def recompute_projection(request: Request) -> Any:
    report = await _services(request).projection.recompute_for_member(
        request.path_params["member_id"]
    )
    return report.to_dict()


@aJSONResponse
async def preference(request: Request) -> Any:
    services = _services(request)
    member_id = request.path_params["member_id"]
    if request.method == "GET":
        return (await services.preferences.get(member_id)).to_dict()

    payload = await _body(request, PreferenceInput)
    try:
        weekdays = {
            weekday_index(key): WeekdayPreference(status=value.status, portions=value.portions)
            for key, value in payload.weekdays.items()
        }
    except ValueError as e:
        raise InvalidRequest(str(e)) from None
    report = await services.preferences.update(
        MemberPreference(
            member_id=member_id,
            join_dinners=payload.join_dinners,
            default_portions=payload.default_portions,
            weekdays=weekdays,
        ),
        actor_id=_actor(request),
    )
    return {
        "preference": (await services.preferences.get(member_id)).to_dict(),
        "projection": report.to_dict(),
    }


@aJSONResponse
async def remove_from_roster(request: Request) -> Any:
    report = await _services(request).preferences.remove_from_roster(
        request.path_params["member_id"]
    )
    return report.to_dict()


@aJSONResponse
async def member_budget(request: Request) -> Any:
    accounting = _services(request).accounting
    member_id = request.path_params["member_id"]
    if request.method == "POST":
        payload = await _body(request, AmountInput)
        return (await accounting.deposit(member_id, payload.amount)).to_dict(), 201
    return await accounting.member_statement(member_id)


@aJSONResponse
async def guest_fund(request: Request) -> Any:
    accounting = _services(request).accounting
    if request.method == "POST":
        payload = await _body(request, AmountInput)
        return (await accounting.guest_fund_deposit(payload.amount)).to_dict(), 201
    return await accounting.guest_fund_statement()


@aJSONResponse
async def distribute_guest_fund(request: Request) -> Any:
    payload = await _body(request, DistributeInput)
    per_member = await _services(request).accounting.distribute_guest_fund_deficit(
        payload.member_ids
    )
    return {"perMember": per_member}


@aJSONResponse
async def settings(request: Request) -> Any:
    store = _services(request).settings
    if request.method == "PUT":
        payload = await _body(request, SettingsInput)
        try:
            suspended = [weekday_index(w) for w in payload.suspended_weekdays]
        except ValueError as e:
            raise InvalidRequest(str(e)) from None
        await store.save(
            AdminSettings(
                budget_per_meal=payload.budget_per_meal,
                currency_type=payload.currency_type,
                suspended_weekdays=suspended,
            )
        )
    return (await store.get()).to_dict()


@aJSONResponse
async def accounting(request: Request) -> Any:
    params = request.query_params
    try:
        year = int(params["year"]) if params.get("year") else None
        month = int(params["month"]) if params.get("month") else None
    except ValueError:
        raise InvalidRequest("year and month must be integers") from None
    return await _services(request).accounting.reconciled_days(
        year=year, month=month, cook=params.get("cook") or None
    )


async def dinner_error(request: Request, exc: Exception) -> JSONResponse:
    exc = cast(DinnerError, exc)
    body: dict[str, Any] = {"error": str(exc)}
    if isinstance(exc, ConfirmationRequired):
        body["date"] = exc.date.isoformat()
    return JSONResponse(body, status_code=exc.status_code)


async def validation_error(request: Request, exc: Exception) -> JSONResponse:
    return JSONResponse({"error": json.loads(cast(ValidationError, exc).json())}, status_code=422)


def configure_logging(cfg: config.Config) -> None:
    logging.basicConfig(
        level=cfg.log_level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True)],
    )


def create_app(cfg: config.Config | None = None) -> Starlette:
    cfg = config.Config() if cfg is None else cfg
    database = Database(cfg.db_url)
    services = Services(database, cfg)

    @contextlib.asynccontextmanager
    async def lifespan(app: Starlette):
        configure_logging(cfg)
        await database.connect()
        await db.create_db(database)
        logger.info("Connected to %s (%s)", cfg.db_url, cfg.env.value)
        task = asyncio.create_task(run_daily(services.projection)) if cfg.run_scheduler else None
        yield
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
        await database.disconnect()

    app = Starlette(
        debug=True if cfg.env == config.Env.local else False,
        routes=[
            Route("/days", list_days),
            Route("/days/{day}", get_day),
            Route("/days/{day}/cook", toggle_cook, methods=["POST"]),
            Route("/days/{day}/attendance", toggle_attendance, methods=["POST"]),
            Route("/days/{day}/guests", update_guests, methods=["PUT"]),
            Route("/days/{day}/ingredients", ingredients, methods=["PUT", "POST"]),
            Route("/days/{day}/used-budget", used_budget, methods=["PUT"]),
            Route("/projection", run_projection, methods=["POST"]),
            Route("/members/{member_id}/projection", recompute_projection, methods=["POST"]),
            Route("/members/{member_id}/preference", preference, methods=["GET", "PUT"]),
            Route("/members/{member_id}/budget", member_budget, methods=["GET", "POST"]),
            Route("/roster/{member_id}", remove_from_roster, methods=["DELETE"]),
            Route("/guest-fund", guest_fund, methods=["GET", "POST"]),
            Route("/guest-fund/distribute", distribute_guest_fund, methods=["POST"]),
            Route("/settings", settings, methods=["GET", "PUT"]),
            Route("/accounting", accounting),
        ],
        exception_handlers={
            DinnerError: dinner_error,
            ValidationError: validation_error,
        },
        lifespan=lifespan,
    )
    app.state.services = services
    return app


app = create_app()


if __name__ == "__main__":
    CONFIG = config.Config()
    uvicorn.run(app, host=CONFIG.host, port=CONFIG.port)
