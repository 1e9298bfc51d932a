"""Pre-populate upcoming dinner days from standing weekly preferences.

The job only ever touches entries it wrote itself (``is_automatically_set``);
whatever a member set by hand stays as it is. It never writes ledger entries.
"""
from datetime import date, timedelta
import logging
from typing import Any, Callable

from domain.errors import InvalidRequest
from domain.models import AttendanceStatus, Attendant, MemberPreference, date_range
from domain.repository import DinnerDayRepository, PreferenceRepository


logger = logging.getLogger(__name__)


class ProjectionReport:
    def __init__(self) -> None:
        self.dates: list[date] = []
        self.upserted = 0
        self.retracted = 0
        self.failed: dict[tuple[date, str], str] = {}

    def __repr__(self) -> str:
        return (
            f"<ProjectionReport(dates={len(self.dates)}, upserted={self.upserted}, "
            f"retracted={self.retracted}, failed={len(self.failed)})>"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "dates": [d.isoformat() for d in self.dates],
            "upserted": self.upserted,
            "retracted": self.retracted,
            "failed": [
                {"date": d.isoformat(), "memberId": m, "error": e}
                for (d, m), e in self.failed.items()
            ],
        }


class ProjectionJob:
    def __init__(
        self,
        *,
        days: DinnerDayRepository,
        preferences: PreferenceRepository,
        horizon_days: int = 28,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.days = days
        self.preferences = preferences
        self.horizon_days = horizon_days
        self.today = today

    def window(self) -> list[date]:
        """Today through today + horizon, inclusive."""
        return date_range(self.today(), self.horizon_days + 1)

    async def run(self, window_start: date, window_days: int) -> ProjectionReport:
        """Apply every opted-in member's preference to ``window_days`` dates."""
        if window_days < 1:
            raise InvalidRequest(f"Window must cover at least one day, got {window_days}")
        members = await self.preferences.list_opted_in()
        preferences = [await self.preferences.get(m) for m in members]
        return await self._walk(date_range(window_start, window_days), preferences)

    async def extend(self) -> ProjectionReport:
        """The daily trigger: project the one day that just entered the window."""
        newest = self.today() + timedelta(days=self.horizon_days)
        logger.info("Extending projection window to %s", newest)
        return await self.run(newest, 1)

    async def recompute_for_member(self, member_id: str) -> ProjectionReport:
        """Re-apply one member's preference across the whole open window."""
        preference = await self.preferences.get(member_id)
        logger.info(
            "Recomputing projection for %s (joined=%s)", member_id, preference.join_dinners
        )
        return await self._walk(self.window(), [preference])

    async def _walk(
        self, dates: list[date], preferences: list[MemberPreference]
    ) -> ProjectionReport:
        report = ProjectionReport()
        for on in dates:
            complete = True
            for preference in preferences:
                try:
                    await self._apply(on, preference, report)
                except Exception as e:
                    logger.warning(
                        "Projection of %s on %s failed", preference.member_id, on, exc_info=True
                    )
                    report.failed[on, preference.member_id] = str(e)
                    complete = False
            if complete:
                report.dates.append(on)
        return report

    async def _apply(self, on: date, preference: MemberPreference, report: ProjectionReport) -> None:
        weekday = preference.for_date(on)
        if preference.join_dinners and weekday.joins:
            await self.days.upsert_automatic_attendant(
                on,
                Attendant(
                    id=preference.member_id,
                    portions=weekday.portions,
                    is_take_away=weekday.status is AttendanceStatus.takeaway,
                    is_automatically_set=True,
                ),
            )
            report.upserted += 1
        elif await self.days.remove_automatic_attendant(on, preference.member_id):
            report.retracted += 1
