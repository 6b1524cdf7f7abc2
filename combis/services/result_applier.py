"""Result Applier: side effects of an approved vote on its bound object.

Runs inside the closing unit of the vote engine. If it raises, the closing is
rolled back and the vote stays open.
"""

import logging
from datetime import date
from typing import Awaitable, Callable
from uuid import UUID

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import ClaimStatus, ObjectType, Sinistre, Vote, VoteStatus
from .exceptions import ResultApplicationError

logger = logging.getLogger(__name__)

APPROVAL_REMARK = " [Approuvé par vote]"


class ResultApplier:
    """Applies approval effects, keyed by the vote's object type."""

    def __init__(self, session: AsyncSession):
        self.session = session
        self._handlers: dict[str, Callable[[UUID, UUID], Awaitable[bool]]] = {
            ObjectType.SINISTRE.value: self._approve_claim,
            ObjectType.MEMBRE.value: self._approve_member,
            ObjectType.DECISION.value: self._approve_decision,
        }

    async def apply(self, vote: Vote, outcome: VoteStatus) -> bool:
        """Apply the effect of ``outcome``. Rejections have no effect."""
        if outcome != VoteStatus.APPROUVE:
            return False
        return await self.apply_approval(vote.objet_type, vote.objet_id, vote.id)

    async def apply_approval(self, objet_type: str, objet_id: UUID, vote_id: UUID) -> bool:
        """Run the approval handler for ``objet_type``.

        Returns True when an object was actually modified. Unknown types are
        logged and ignored.
        """
        handler = self._handlers.get(objet_type)
        if handler is None:
            logger.warning(
                f"Vote {vote_id} approved for unknown object type '{objet_type}', no effect"
            )
            return False

        try:
            return await handler(objet_id, vote_id)
        except SQLAlchemyError as e:
            logger.error(f"Failed to apply approval of vote {vote_id} to {objet_type} {objet_id}: {e}")
            raise ResultApplicationError(
                f"Could not apply approval to {objet_type} {objet_id}"
            ) from e

    async def _approve_claim(self, claim_id: UUID, vote_id: UUID) -> bool:
        result = await self.session.execute(
            update(Sinistre)
            .where(Sinistre.id == claim_id)
            .values(
                statut=ClaimStatus.APPROUVE,
                date_approbation=date.today(),
                remarques=func.coalesce(Sinistre.remarques, "") + APPROVAL_REMARK,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            logger.warning(f"Vote {vote_id} approved claim {claim_id} but the claim does not exist")
            return False

        logger.info(f"Claim {claim_id} approved by vote {vote_id}")
        return True

    async def _approve_member(self, member_id: UUID, vote_id: UUID) -> bool:
        # Membership approval by vote has no automated effect yet
        logger.info(f"Vote {vote_id} approved member {member_id}, no automated effect")
        return False

    async def _approve_decision(self, decision_id: UUID, vote_id: UUID) -> bool:
        logger.info(f"Decision {decision_id} approved by vote {vote_id}")
        return False
