import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models.role import Role
from ..models.team_member import TeamMember


class TeamMemberRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, team_id: uuid.UUID, user_id: uuid.UUID) -> TeamMember | None:
        result = await self.session.execute(
            select(TeamMember).where(
                TeamMember.team_id == team_id,
                TeamMember.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def get_active_assignment(
        self, user_id: uuid.UUID, team_id: uuid.UUID
    ) -> tuple[TeamMember, Role] | None:
        """Active membership in one team and its role (active or not)."""
        result = await self.session.execute(
            select(TeamMember, Role)
            .join(Role, Role.id == TeamMember.role_id)
            .where(
                TeamMember.user_id == user_id,
                TeamMember.team_id == team_id,
                TeamMember.is_active,
                TeamMember.status == "active",
            )
        )
        row = result.first()
        if row is None:
            return None
        return row[0], row[1]

    async def list_active_assignments(
        self, user_id: uuid.UUID
    ) -> list[tuple[TeamMember, Role]]:
        result = await self.session.execute(
            select(TeamMember, Role)
            .join(Role, Role.id == TeamMember.role_id)
            .where(
                TeamMember.user_id == user_id,
                TeamMember.is_active,
                TeamMember.status == "active",
            )
        )
        return [(member, role) for member, role in result.all()]

    async def upsert_role(
        self,
        team_id: uuid.UUID,
        user_id: uuid.UUID,
        role_id: uuid.UUID,
        assigned_by: uuid.UUID | None = None,
    ) -> tuple[TeamMember, uuid.UUID | None]:
        """Set the member's single role. Returns the member and the previous role id."""
        member = await self.get(team_id, user_id)
        if member is None:
            member = TeamMember(
                team_id=team_id,
                user_id=user_id,
                role_id=role_id,
                assigned_by=assigned_by,
            )
            self.session.add(member)
            await self.session.flush()
            return member, None

        previous_role_id = member.role_id
        member.role_id = role_id
        member.assigned_by = assigned_by
        member.is_active = True
        member.status = "active"
        await self.session.flush()
        return member, previous_role_id

    async def list_holders(self, role_id: uuid.UUID) -> list[tuple[uuid.UUID, uuid.UUID]]:
        """(user_id, team_id) for every membership currently pointing at the role."""
        result = await self.session.execute(
            select(TeamMember.user_id, TeamMember.team_id).where(
                TeamMember.role_id == role_id
            )
        )
        return [(user_id, team_id) for user_id, team_id in result.all()]
