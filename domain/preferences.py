import logging

from domain.errors import InvalidRequest, NotAuthorized
from domain.models import MemberPreference, valid_portions, validate_member_id
from domain.projection import ProjectionJob, ProjectionReport
from domain.repository import PreferenceRepository


logger = logging.getLogger(__name__)


class PreferenceService:
    def __init__(
        self, *, preferences: PreferenceRepository, projection: ProjectionJob
    ) -> None:
        self.preferences = preferences
        self.projection = projection

    async def get(self, member_id: str) -> MemberPreference:
        return await self.preferences.get(member_id)

    async def update(
        self, preference: MemberPreference, *, actor_id: str
    ) -> ProjectionReport:
        """Save a member's preference and re-project the open window for them.

        With ``join_dinners`` off the re-projection retracts every automatic
        entry of the member; hand-made entries stay.
        """
        validate_member_id(preference.member_id)
        if preference.member_id != actor_id:
            raise NotAuthorized(f"{actor_id} may not change preferences of {preference.member_id}")
        if not valid_portions(preference.default_portions):
            raise InvalidRequest("Default portions must be a positive number")
        for weekday in preference.weekdays.values():
            if not valid_portions(weekday.portions):
                raise InvalidRequest("Weekday portions must be a positive number")

        await self.preferences.save(preference)
        logger.info(
            "Saved preference of %s (joined=%s)", preference.member_id, preference.join_dinners
        )
        return await self.projection.recompute_for_member(preference.member_id)

    async def remove_from_roster(self, member_id: str) -> ProjectionReport:
        preference = await self.preferences.get(member_id)
        preference.join_dinners = False
        await self.preferences.save(preference)
        logger.info("Removed %s from the dinner roster", member_id)
        return await self.projection.recompute_for_member(member_id)
