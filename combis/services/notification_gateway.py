"""
Notification Gateway: vote and claim events delivered to members.

Every event goes out on two channels, each in its own session:
1. A persisted push notification (delivered live if the member is connected)
2. A templated SMS through the configured provider

Dispatch is spawned once the business transaction that triggered it commits.
Any failure is logged here and never reaches the caller.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Sequence
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.config import Settings, get_settings
from ..core.database import get_session_context
from ..models import Membre, ModeleSMS, Sinistre, Vote, VoteStatus
from .members import MemberInfo
from .realtime import ConnectionRegistry, NotificationPayload, RealtimeNotificationService
from .sms_service import SmsProvider, SmsRecipient, SmsService

logger = logging.getLogger(__name__)

NEW_VOTE_TEMPLATE = "Nouveau vote"
CLAIM_APPROVED_TEMPLATE = "Sinistre approuvé"

DEFAULT_SMS_TEMPLATES: dict[str, str] = {
    NEW_VOTE_TEMPLATE: (
        "COMBIS: Nouveau vote \"{{titre_vote}}\". "
        "Votez avant le {{date_fin}} sur {{lien}}"
    ),
    CLAIM_APPROVED_TEMPLATE: (
        "COMBIS: Bonjour {{nom_complet}}, votre sinistre \"{{type_sinistre}}\" "
        "a été approuvé par vote."
    ),
}


# =============================================================================
# GATEWAY
# =============================================================================


@dataclass(frozen=True)
class VoteRef:
    """Detached snapshot of a vote, safe to use outside its session."""
    id: UUID
    titre: str
    objet_type: str
    objet_id: UUID
    date_fin: datetime
    statut: VoteStatus
    cree_par: UUID

    @classmethod
    def from_vote(cls, vote: Vote) -> "VoteRef":
        return cls(
            id=vote.id,
            titre=vote.titre,
            objet_type=vote.objet_type,
            objet_id=vote.objet_id,
            date_fin=vote.date_fin,
            statut=vote.statut,
            cree_par=vote.cree_par,
        )


class NotificationGateway:
    """Fans vote and claim events out to push and SMS."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession] | None = None,
        connections: ConnectionRegistry | None = None,
        provider: SmsProvider | None = None,
        settings: Settings | None = None,
    ):
        self.session_factory = session_factory
        self.connections = connections
        self.provider = provider
        self.settings = settings or get_settings()

    def vote_link(self, vote_id: UUID) -> str:
        return f"{self.settings.frontend_url.rstrip('/')}/votes/{vote_id}"

    async def notify_new_vote(self, vote: VoteRef, members: Sequence[MemberInfo]) -> None:
        """Tell every eligible member a vote is open."""
        date_fin = vote.date_fin.strftime("%d/%m/%Y %H:%M")
        payload = NotificationPayload(
            titre="Nouveau vote",
            message=f"Un nouveau vote est ouvert: {vote.titre}. Fin le {date_fin}.",
            type_notification="vote",
            donnees_extra={"vote_id": str(vote.id), "objet_type": vote.objet_type},
            lien_action=f"/votes/{vote.id}",
        )
        await self._push([m.id for m in members], payload)

        recipients = [
            SmsRecipient(id=m.id, telephone=m.telephone, nom_complet=m.nom_complet)
            for m in members
            if m.telephone
        ]
        await self._sms(
            recipients,
            NEW_VOTE_TEMPLATE,
            {"titre_vote": vote.titre, "date_fin": date_fin, "lien": self.vote_link(vote.id)},
        )

    async def notify_vote_closed(self, vote: VoteRef, recipient_ids: Sequence[UUID]) -> None:
        """Push the outcome of a closed vote."""
        outcome = "approuvé" if vote.statut == VoteStatus.APPROUVE else "rejeté"
        payload = NotificationPayload(
            titre="Vote clôturé",
            message=f"Le vote \"{vote.titre}\" est clôturé: {outcome}.",
            type_notification="vote",
            donnees_extra={"vote_id": str(vote.id), "statut": vote.statut.value},
            lien_action=f"/votes/{vote.id}",
        )
        await self._push(list(recipient_ids), payload)

    async def notify_claim_approved(self, claim_id: UUID) -> None:
        """Tell a claimant their claim was approved."""
        try:
            async with get_session_context(self.session_factory) as session:
                result = await session.execute(
                    select(Sinistre, Membre)
                    .join(Membre, Membre.id == Sinistre.membre_id)
                    .where(Sinistre.id == claim_id)
                )
                row = result.first()
        except Exception:
            logger.exception(f"Could not load claim {claim_id} for notification")
            return

        if not row:
            logger.warning(f"Claim {claim_id} approved but not found, nobody notified")
            return
        claim, member = row

        payload = NotificationPayload(
            titre="Sinistre approuvé",
            message=f"Votre sinistre \"{claim.type_sinistre}\" a été approuvé.",
            type_notification="sinistre",
            donnees_extra={"sinistre_id": str(claim.id)},
            lien_action=f"/sinistres/{claim.id}",
        )
        await self._push([member.id], payload)

        if member.telephone_1:
            await self._sms(
                [SmsRecipient(id=member.id, telephone=member.telephone_1, nom_complet=member.nom_complet)],
                CLAIM_APPROVED_TEMPLATE,
                {"type_sinistre": claim.type_sinistre},
            )

    async def _push(self, member_ids: list[UUID], payload: NotificationPayload) -> None:
        if not member_ids:
            return
        try:
            async with get_session_context(self.session_factory) as session:
                service = RealtimeNotificationService(session, self.connections, self.settings)
                await service.send_bulk(member_ids, payload)
        except Exception:
            logger.exception(f"Push notification '{payload.titre}' failed")

    async def _sms(self, recipients: list[SmsRecipient], template_name: str, variables: dict) -> None:
        if not recipients or not self.settings.sms_enabled:
            return
        try:
            async with get_session_context(self.session_factory) as session:
                service = SmsService(session, self.provider, self.settings)
                results = await service.send_bulk_sms(recipients, template_name, variables)
        except Exception:
            logger.exception(f"SMS dispatch '{template_name}' failed")
            return

        failed = [r for r in results if not r.success]
        if failed:
            logger.warning(f"SMS '{template_name}': {len(failed)}/{len(results)} failed")


async def seed_default_templates(session: AsyncSession) -> int:
    """Create the built-in SMS templates that do not exist yet."""
    result = await session.execute(select(ModeleSMS.nom))
    existing = set(result.scalars().all())

    created = 0
    for name, body in DEFAULT_SMS_TEMPLATES.items():
        if name in existing:
            continue
        session.add(
            ModeleSMS(
                nom=name,
                template=body,
                type_notification=name.lower().replace(" ", "_"),
                actif=True,
            )
        )
        created += 1

    if created:
        await session.flush()
        logger.info(f"Seeded {created} default SMS templates")
    return created
