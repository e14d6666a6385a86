import logging
import uuid

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ...auth.permission_contract import MIN_HIERARCHY_LEVEL, has_higher_hierarchy
from ...crud.role import RoleRepository
from ...crud.team_member import TeamMemberRepository
from ...errors import InfrastructureError, ValidationError
from ...models.team_member import TeamMember
from ..cache.permission_cache import PermissionCache

logger = logging.getLogger(__name__)


class MembershipService:
    """Role assignment write path for team members.

    Member CRUD lives elsewhere; this only covers the changes that alter a
    user's effective permissions and therefore must drop cached sets.
    """

    def __init__(self, session: AsyncSession, cache: PermissionCache):
        self.session = session
        self.cache = cache
        self.role_repo = RoleRepository(session)
        self.member_repo = TeamMemberRepository(session)

    async def assign_member_role(
        self,
        team_id: uuid.UUID,
        user_id: uuid.UUID,
        role_id: uuid.UUID,
        assigned_by: uuid.UUID | None = None,
    ) -> TeamMember:
        """Set the single active role of a member, creating the membership if needed.

        Raises:
            ValidationError: If the role does not exist or is inactive
            CacheInvalidationError: If the member's cache entries could not be dropped
        """
        role = await self.role_repo.get_by_id(role_id)
        if role is None:
            raise ValidationError(f"Unknown role id '{role_id}'", details={"role_id": str(role_id)})
        if not role.is_active:
            raise ValidationError(f"Role '{role.slug}' is inactive and cannot be assigned")

        try:
            member, previous_role_id = await self.member_repo.upsert_role(
                team_id, user_id, role_id, assigned_by
            )
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            raise InfrastructureError(details=str(exc)) from exc

        logger.info(
            "Assigned role %s to user %s in team %s (previous role %s)",
            role.slug,
            user_id,
            team_id,
            previous_role_id,
        )
        await self.cache.invalidate_user(user_id, [team_id])
        return member

    async def switch_team_context(
        self,
        user_id: uuid.UUID,
        from_team_id: uuid.UUID | None,
        to_team_id: uuid.UUID | None,
    ) -> None:
        await self.cache.invalidate_user(user_id, [from_team_id, to_team_id])
        logger.info("User %s switched team context %s -> %s", user_id, from_team_id, to_team_id)

    async def _level(self, user_id: uuid.UUID, team_id: uuid.UUID) -> int | None:
        assignment = await self.member_repo.get_active_assignment(user_id, team_id)
        if assignment is None:
            return None
        _, role = assignment
        return role.hierarchy_level if role.is_active else None

    async def can_manage_member(
        self,
        actor_user_id: uuid.UUID,
        team_id: uuid.UUID,
        target_user_id: uuid.UUID,
    ) -> bool:
        """Rank gate: the actor's level must be at least the target's. Ties are granted."""
        actor_level = await self._level(actor_user_id, team_id)
        if actor_level is None:
            return False
        target_level = await self._level(target_user_id, team_id)
        if target_level is None:
            target_level = MIN_HIERARCHY_LEVEL
        return has_higher_hierarchy(actor_level, target_level)
