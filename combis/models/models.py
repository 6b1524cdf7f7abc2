"""SQLAlchemy ORM Models for Combis.

Member, role and claim tables belong to the membership back office and are
mapped here read-mostly: the vote engine reads members and the result applier
updates claims. Votes, responses and notification records are owned by this
package.
"""

from datetime import date, datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow


# =============================================================================
# ENUMS
# =============================================================================


class MemberStatus(str, PyEnum):
    ACTIF = "actif"
    SUSPENDU = "suspendu"
    INACTIF = "inactif"


class ClaimStatus(str, PyEnum):
    DECLARE = "declare"
    EN_COURS = "en_cours"
    APPROUVE = "approuve"
    REJETE = "rejete"
    PAYE = "paye"


class ObjectType(str, PyEnum):
    """Known kinds of objects a vote can be bound to.

    The column itself is a free string: other values are accepted and simply
    have no effect on approval.
    """
    SINISTRE = "sinistre"
    MEMBRE = "membre"
    DECISION = "decision"


class VoteType(str, PyEnum):
    SIMPLE_MAJORITE = "simple_majorite"
    MAJORITE_QUALIFIEE = "majorite_qualifiee"
    UNANIMITE = "unanimite"
    QUORUM = "quorum"  # Custom quorum


class VoteStatus(str, PyEnum):
    OUVERT = "ouvert"
    APPROUVE = "approuve"
    REJETE = "rejete"


class ResponseChoice(str, PyEnum):
    POUR = "pour"
    CONTRE = "contre"
    ABSTENTION = "abstention"


class SmsStatus(str, PyEnum):
    """Delivery status of an SMS. Only moves forward."""
    EN_ATTENTE = "en_attente"
    ENVOYE = "envoye"
    LIVRE = "livre"  # Provider delivery receipt
    ECHEC = "echec"


# =============================================================================
# MEMBER DIRECTORY
# =============================================================================


class Membre(Base, UUIDMixin):
    """Association member."""

    __tablename__ = "membres"

    nom_complet: Mapped[str] = mapped_column(String(255), nullable=False)
    telephone_1: Mapped[str | None] = mapped_column(String(30))
    email: Mapped[str | None] = mapped_column(String(255))
    statut: Mapped[MemberStatus] = mapped_column(
        Enum(MemberStatus, name="membre_statut", values_callable=lambda x: [e.value for e in x]),
        default=MemberStatus.ACTIF,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    role_links: Mapped[list["MembreRole"]] = relationship(back_populates="membre")

    __table_args__ = (
        Index("idx_membres_statut", "statut"),
    )


class Role(Base, UUIDMixin):
    """Named role (admin, tresorier, membre...)."""

    __tablename__ = "roles"

    nom: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)


class MembreRole(Base, UUIDMixin):
    """Role assignment linking members to roles."""

    __tablename__ = "membre_roles"

    membre_id: Mapped[UUID] = mapped_column(
        ForeignKey("membres.id", ondelete="CASCADE"), nullable=False
    )
    role_id: Mapped[UUID] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), nullable=False
    )

    # Relationships
    membre: Mapped["Membre"] = relationship(back_populates="role_links")
    role: Mapped["Role"] = relationship()

    __table_args__ = (
        UniqueConstraint("membre_id", "role_id"),
        Index("idx_membre_roles_membre", "membre_id"),
    )


# =============================================================================
# CLAIMS
# =============================================================================


class Sinistre(Base, UUIDMixin):
    """Claim declared by a member."""

    __tablename__ = "sinistres"

    membre_id: Mapped[UUID] = mapped_column(ForeignKey("membres.id"), nullable=False)
    type_sinistre: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    montant_demande: Mapped[int | None] = mapped_column(Integer)
    montant_approuve: Mapped[int | None] = mapped_column(Integer)
    statut: Mapped[ClaimStatus] = mapped_column(
        Enum(ClaimStatus, name="sinistre_statut", values_callable=lambda x: [e.value for e in x]),
        default=ClaimStatus.DECLARE,
        nullable=False,
    )
    date_approbation: Mapped[date | None] = mapped_column(Date)
    remarques: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    membre: Mapped["Membre"] = relationship()

    __table_args__ = (
        Index("idx_sinistres_membre", "membre_id"),
        Index("idx_sinistres_statut", "statut"),
    )


# =============================================================================
# VOTES
# =============================================================================


class Vote(Base, UUIDMixin, TimestampMixin):
    """Governance vote bound to an external object.

    ``quorum_requis`` and ``date_fin`` are fixed at creation. ``statut`` leaves
    ``ouvert`` exactly once. Votes are never deleted.
    """

    __tablename__ = "votes"

    objet_type: Mapped[str] = mapped_column(String(50), nullable=False)
    objet_id: Mapped[UUID] = mapped_column(nullable=False)  # Not owned, no FK
    titre: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    type_vote: Mapped[VoteType] = mapped_column(
        Enum(VoteType, name="type_vote", values_callable=lambda x: [e.value for e in x]),
        default=VoteType.SIMPLE_MAJORITE,
        nullable=False,
    )
    quorum_requis: Mapped[int] = mapped_column(Integer, nullable=False)
    nombre_eligibles: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    date_debut: Mapped[datetime] = mapped_column(default=utcnow, nullable=False)
    date_fin: Mapped[datetime] = mapped_column(nullable=False)
    statut: Mapped[VoteStatus] = mapped_column(
        Enum(VoteStatus, name="vote_statut", values_callable=lambda x: [e.value for e in x]),
        default=VoteStatus.OUVERT,
        nullable=False,
    )
    cree_par: Mapped[UUID] = mapped_column(ForeignKey("membres.id"), nullable=False)

    # Relationships
    createur: Mapped["Membre"] = relationship(foreign_keys=[cree_par])
    reponses: Mapped[list["ReponseVote"]] = relationship(
        back_populates="vote",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("quorum_requis >= 0", name="quorum_positive"),
        CheckConstraint("date_fin > date_debut", name="date_fin_after_debut"),
        Index("idx_votes_statut_fin", "statut", "date_fin"),
        Index("idx_votes_objet", "objet_type", "objet_id"),
        Index("idx_votes_date_debut", "date_debut"),
    )


class ReponseVote(Base, UUIDMixin):
    """A member's response to a vote. Immutable once recorded."""

    __tablename__ = "reponses_votes"

    vote_id: Mapped[UUID] = mapped_column(
        ForeignKey("votes.id", ondelete="CASCADE"), nullable=False
    )
    membre_id: Mapped[UUID] = mapped_column(ForeignKey("membres.id"), nullable=False)
    reponse: Mapped[ResponseChoice] = mapped_column(
        Enum(ResponseChoice, name="reponse_vote", values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    commentaire: Mapped[str | None] = mapped_column(String(500))
    date_reponse: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )

    # Relationships
    vote: Mapped["Vote"] = relationship(back_populates="reponses")
    membre: Mapped["Membre"] = relationship()

    __table_args__ = (
        UniqueConstraint("vote_id", "membre_id"),
        Index("idx_reponses_votes_vote", "vote_id"),
        Index("idx_reponses_votes_membre", "membre_id", "date_reponse"),
    )


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class NotificationRealtime(Base, UUIDMixin):
    """Push notification, persisted before any delivery attempt."""

    __tablename__ = "notifications_realtime"

    destinataire_id: Mapped[UUID] = mapped_column(
        ForeignKey("membres.id", ondelete="CASCADE"), nullable=False
    )
    titre: Mapped[str] = mapped_column(String(255), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type_notification: Mapped[str] = mapped_column(String(50), default="info", nullable=False)
    donnees_extra: Mapped[dict] = mapped_column(JSONType, default=dict)
    lien_action: Mapped[str | None] = mapped_column(String(500))
    lu: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    date_lecture: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        Index("idx_notifications_realtime_dest", "destinataire_id", "lu", "created_at"),
        Index("idx_notifications_realtime_created", "created_at"),
    )


class NotificationSMS(Base, UUIDMixin):
    """SMS delivery record. One row per dispatched message."""

    __tablename__ = "notifications_sms"

    destinataire_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("membres.id", ondelete="SET NULL")
    )
    telephone: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    type_notification: Mapped[str] = mapped_column(String(50), nullable=False)
    expediteur_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("membres.id", ondelete="SET NULL")
    )
    statut: Mapped[SmsStatus] = mapped_column(
        Enum(SmsStatus, name="sms_statut", values_callable=lambda x: [e.value for e in x]),
        default=SmsStatus.EN_ATTENTE,
        nullable=False,
    )
    reference_externe: Mapped[str | None] = mapped_column(String(255))
    cout_fcfa: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    erreur: Mapped[str | None] = mapped_column(Text)
    tentatives: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        default=utcnow, server_default=func.now(), nullable=False
    )
    date_envoi: Mapped[datetime | None] = mapped_column()
    date_livraison: Mapped[datetime | None] = mapped_column()

    __table_args__ = (
        Index("idx_notifications_sms_dest", "destinataire_id", "created_at"),
        Index("idx_notifications_sms_statut", "statut"),
        Index("idx_notifications_sms_reference", "reference_externe"),
    )


class ModeleSMS(Base, UUIDMixin):
    """Named SMS template with ``{{variable}}`` placeholders."""

    __tablename__ = "modeles_sms"

    nom: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    type_notification: Mapped[str] = mapped_column(String(50), nullable=False)
    template: Mapped[str] = mapped_column(Text, nullable=False)
    actif: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
