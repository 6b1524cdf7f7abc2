"""Pydantic schemas for votes and responses."""

from datetime import datetime
from typing import Literal
from uuid import UUID

from pydantic import Field, field_validator

from ..models import ResponseChoice, VoteStatus, VoteType
from .base import CombisBaseModel


# =============================================================================
# REQUESTS
# =============================================================================


class VoteCreate(CombisBaseModel):
    """Request to open a vote on an object."""

    objet_type: Literal["sinistre", "membre", "decision"]
    objet_id: UUID
    titre: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(default=None, max_length=5000)
    type_vote: VoteType = VoteType.SIMPLE_MAJORITE
    duree_heures: int = Field(default=72, ge=1, le=168)
    quorum_requis: int | None = Field(
        default=None,
        ge=1,
        description="Only used by custom quorum votes",
    )
    membres_eligibles: list[UUID] | None = Field(
        default=None,
        description="Restrict eligibility to these active members",
    )

    @field_validator("titre")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title cannot be blank")
        return v


class VoteCast(CombisBaseModel):
    """A member's response."""

    reponse: ResponseChoice
    commentaire: str | None = Field(default=None, max_length=500)


# =============================================================================
# RESPONSES
# =============================================================================


class VoteResponse(CombisBaseModel):
    """Stored vote."""

    id: UUID
    objet_type: str
    objet_id: UUID
    titre: str
    description: str | None = None
    type_vote: VoteType
    statut: VoteStatus
    quorum_requis: int
    nombre_eligibles: int
    date_debut: datetime
    date_fin: datetime
    cree_par: UUID


class VoteCreatedResponse(CombisBaseModel):
    message: str
    vote: VoteResponse
    nombre_eligibles: int


class VoteSummaryResponse(CombisBaseModel):
    """Vote with tallies, as listed."""

    id: UUID
    titre: str
    description: str | None = None
    objet_type: str
    objet_id: UUID
    type_vote: VoteType
    statut: VoteStatus
    quorum_requis: int
    nombre_eligibles: int
    date_debut: datetime
    date_fin: datetime
    cree_par: UUID
    cree_par_nom: str | None = None
    total_votes: int = 0
    votes_pour: int = 0
    votes_contre: int = 0
    votes_abstention: int = 0
    a_vote: bool = False
    mon_vote: ResponseChoice | None = None
    est_expire: bool = False
    peut_voter: bool = False


class VoteDetailsResponse(VoteSummaryResponse):
    """Full view of one vote."""

    pourcentages: dict[str, int] = Field(default_factory=dict)
    quorum_atteint: bool = False
    pourcentage_quorum: int = 0
    mon_commentaire: str | None = None
    date_mon_vote: datetime | None = None


class VoteCastResponse(CombisBaseModel):
    message: str
    statut: VoteStatus


class VoteCloseResponse(CombisBaseModel):
    message: str
    statut: VoteStatus


class ResponseViewSchema(CombisBaseModel):
    """A response with its author, for administrators."""

    membre_id: UUID
    nom_complet: str | None = None
    reponse: ResponseChoice
    commentaire: str | None = None
    date_reponse: datetime


class ClosedVoteSchema(CombisBaseModel):
    vote_id: UUID
    titre: str
    objet_type: str
    objet_id: UUID
    statut: VoteStatus
    total_votes: int
    votes_pour: int
    votes_contre: int


class ExpiredVotesResponse(CombisBaseModel):
    message: str
    details: list[ClosedVoteSchema]


class VoteStatisticsResponse(CombisBaseModel):
    total_votes: int
    votes_ouverts: int
    votes_approuves: int
    votes_rejetes: int
    participation_moyenne: float
    par_type: list[dict]
    top_participants: list[dict]


class VoteOption(CombisBaseModel):
    value: str
    label: str
    description: str


class VoteConfigResponse(CombisBaseModel):
    types_vote: list[VoteOption]
    objets_vote: list[VoteOption]
