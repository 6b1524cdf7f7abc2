"""FastAPI dependencies for authentication and authorization."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Membre, MembreRole, MemberStatus, Role
from .database import get_session
from .security import decode_token

logger = logging.getLogger(__name__)

# Security scheme
bearer_scheme = HTTPBearer(auto_error=False)


async def load_member_roles(session: AsyncSession, member_id: UUID) -> set[str]:
    """Role names currently assigned to a member."""
    result = await session.execute(
        select(Role.nom)
        .join(MembreRole, MembreRole.role_id == Role.id)
        .where(MembreRole.membre_id == member_id)
    )
    return set(result.scalars().all())


class CurrentMember:
    """Represents the authenticated member context."""

    def __init__(self, member: Membre, roles: set[str] | None = None):
        self.member = member
        self.roles = roles or set()

    @property
    def id(self) -> UUID:
        return self.member.id

    def has_any_role(self, *roles: str) -> bool:
        return bool(self.roles.intersection(roles))


async def authenticate_token(session: AsyncSession, token: str) -> CurrentMember | None:
    """Resolve a bearer token to an active member. Returns None when rejected.

    Shared by the HTTP dependency and the WebSocket handshake.
    """
    payload = decode_token(token)
    if not payload or payload.type != "access":
        return None

    try:
        member_id = UUID(payload.sub)
    except ValueError:
        logger.warning(f"Token subject is not a member id: {payload.sub!r}")
        return None

    result = await session.execute(
        select(Membre).where(
            Membre.id == member_id,
            Membre.statut == MemberStatus.ACTIF,
        )
    )
    member = result.scalar_one_or_none()
    if not member:
        return None

    roles = await load_member_roles(session, member.id)
    return CurrentMember(member=member, roles=roles)


async def get_current_member(
    credentials: Annotated[
        HTTPAuthorizationCredentials | None, Depends(bearer_scheme)
    ],
    session: Annotated[AsyncSession, Depends(get_session)],
) -> CurrentMember:
    """Dependency to get the current authenticated member.

    Inactive or suspended members are rejected like unknown ones.
    """
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Non authentifié",
            headers={"WWW-Authenticate": "Bearer"},
        )

    current = await authenticate_token(session, credentials.credentials)
    if current is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Jeton invalide ou expiré",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return current


def require_roles(*roles: str):
    """Build a dependency that requires at least one of the given roles."""

    def dependency(
        current_member: Annotated[CurrentMember, Depends(get_current_member)],
    ) -> CurrentMember:
        if not current_member.has_any_role(*roles):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Permissions insuffisantes",
            )
        return current_member

    return dependency


require_admin = require_roles("admin")
require_admin_or_treasurer = require_roles("admin", "tresorier")


# Type aliases for cleaner dependency injection
CurrentMemberDep = Annotated[CurrentMember, Depends(get_current_member)]
AdminDep = Annotated[CurrentMember, Depends(require_admin)]
AdminOrTreasurerDep = Annotated[CurrentMember, Depends(require_admin_or_treasurer)]
SessionDep = Annotated[AsyncSession, Depends(get_session)]
