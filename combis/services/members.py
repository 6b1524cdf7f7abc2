"""Read access to the member directory.

Members and roles are owned by the membership back office. This module only
reads them: the vote engine snapshots active members at vote creation and the
notification gateway resolves phone numbers.
"""

from dataclasses import dataclass
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Membre, MembreRole, MemberStatus, Role
from .exceptions import MemberNotFoundError


@dataclass
class MemberInfo:
    """Eligible member as seen by the vote engine and notifier."""
    id: UUID
    nom_complet: str
    telephone: str | None = None

    def as_variables(self) -> dict[str, str]:
        """Template variables contributed by this member."""
        return {
            "nom_complet": self.nom_complet,
            "telephone": self.telephone or "",
        }


class MemberDirectory:
    """Queries over the member directory."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active_members(
        self, id_filter: Sequence[UUID] | None = None
    ) -> list[MemberInfo]:
        """Active members, optionally intersected with ``id_filter``.

        An empty filter means no filter, not "nobody".
        """
        query = select(Membre).where(Membre.statut == MemberStatus.ACTIF)
        if id_filter:
            query = query.where(Membre.id.in_(list(id_filter)))
        query = query.order_by(Membre.nom_complet)

        result = await self.session.execute(query)
        return [
            MemberInfo(id=m.id, nom_complet=m.nom_complet, telephone=m.telephone_1)
            for m in result.scalars().all()
        ]

    async def get_member(self, member_id: UUID) -> Membre:
        result = await self.session.execute(select(Membre).where(Membre.id == member_id))
        member = result.scalar_one_or_none()
        if not member:
            raise MemberNotFoundError(f"Member {member_id} not found")
        return member

    async def has_role(self, member_id: UUID, roles: Sequence[str]) -> bool:
        result = await self.session.execute(
            select(MembreRole.id)
            .join(Role, MembreRole.role_id == Role.id)
            .where(MembreRole.membre_id == member_id, Role.nom.in_(list(roles)))
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def member_ids_with_roles(self, roles: Sequence[str]) -> list[UUID]:
        """Active members holding at least one of ``roles``."""
        result = await self.session.execute(
            select(Membre.id)
            .join(MembreRole, MembreRole.membre_id == Membre.id)
            .join(Role, MembreRole.role_id == Role.id)
            .where(Membre.statut == MemberStatus.ACTIF, Role.nom.in_(list(roles)))
            .distinct()
        )
        return list(result.scalars().all())
