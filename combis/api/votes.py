"""
Vote API Routes: governance votes.

Creating and closing votes is reserved to administrators (and treasurers for
creation); any active member can read votes and cast a response.
"""

import logging
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core import AdminDep, AdminOrTreasurerDep, CurrentMemberDep, SessionDep
from ..models import VoteStatus
from ..schemas import (
    ClosedVoteSchema,
    ExpiredVotesResponse,
    PaginatedResponse,
    ResponseViewSchema,
    VoteCast,
    VoteCastResponse,
    VoteCloseResponse,
    VoteConfigResponse,
    VoteCreate,
    VoteCreatedResponse,
    VoteDetailsResponse,
    VoteOption,
    VoteResponse,
    VoteStatisticsResponse,
    VoteSummaryResponse,
)
from ..services.exceptions import (
    DuplicateVoteError,
    InvalidObjectReferenceError,
    ResultApplicationError,
    TransientStorageError,
    ValidationError,
    VoteClosedError,
    VoteNotFoundError,
)
from ..services.notification_gateway import NotificationGateway
from ..services.realtime import registry
from ..services.vote_engine import CreateVoteInput, VoteEngine

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/votes", tags=["votes"])


VOTE_TYPES = [
    VoteOption(value="simple_majorite", label="Majorité simple (>50%)", description="Plus de la moitié des votes"),
    VoteOption(value="majorite_qualifiee", label="Majorité qualifiée (≥2/3)", description="Au moins 2/3 des votes"),
    VoteOption(value="unanimite", label="Unanimité (100%)", description="Tous les votes doivent être pour"),
    VoteOption(value="quorum", label="Quorum personnalisé", description="Nombre de votes minimum défini"),
]

VOTE_OBJECTS = [
    VoteOption(value="sinistre", label="Sinistre", description="Validation d'un sinistre"),
    VoteOption(value="membre", label="Membre", description="Décision concernant un membre"),
    VoteOption(value="decision", label="Décision générale", description="Décision d'assemblée ou de groupe"),
]


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_notifier() -> NotificationGateway | None:
    return NotificationGateway(connections=registry)


def get_vote_engine(
    session: SessionDep,
    notifier: Annotated[NotificationGateway | None, Depends(get_notifier)],
) -> VoteEngine:
    return VoteEngine(session, notifier=notifier)


VoteEngineDep = Annotated[VoteEngine, Depends(get_vote_engine)]


def closing_failed() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail="Erreur lors de la fermeture du vote",
    )


# =============================================================================
# ENDPOINTS
# =============================================================================


@router.post(
    "",
    response_model=VoteCreatedResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a vote",
)
async def create_vote(
    request: VoteCreate,
    current_member: AdminOrTreasurerDep,
    engine: VoteEngineDep,
):
    """Open a vote; eligible members are notified in the background."""
    try:
        created = await engine.create_vote(
            CreateVoteInput(
                objet_type=request.objet_type,
                objet_id=request.objet_id,
                titre=request.titre,
                description=request.description,
                type_vote=request.type_vote,
                duree_heures=request.duree_heures,
                quorum_requis=request.quorum_requis,
                membres_eligibles=request.membres_eligibles,
            ),
            creator_id=current_member.id,
        )
    except InvalidObjectReferenceError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Objet du vote invalide")
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Données du vote invalides")

    return VoteCreatedResponse(
        message="Vote créé avec succès",
        vote=VoteResponse.model_validate(created.vote),
        nombre_eligibles=created.nombre_eligibles,
    )


@router.get("", response_model=PaginatedResponse, summary="List votes")
async def list_votes(
    current_member: CurrentMemberDep,
    engine: VoteEngineDep,
    page: int = Query(default=1, ge=1, description="Page number"),
    page_size: int = Query(default=20, ge=1, le=100, description="Items per page"),
    statut: VoteStatus | None = Query(default=None, description="Filter by status"),
    objet_type: str | None = Query(default=None, description="Filter by object type"),
):
    summaries, total = await engine.list_votes(
        statut=statut,
        objet_type=objet_type,
        page=page,
        page_size=page_size,
        member_id=current_member.id,
    )
    return PaginatedResponse.create(
        items=[VoteSummaryResponse.model_validate(s) for s in summaries],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/config/types", response_model=VoteConfigResponse, summary="Vote types and object types")
async def get_vote_config(current_member: CurrentMemberDep):
    return VoteConfigResponse(types_vote=VOTE_TYPES, objets_vote=VOTE_OBJECTS)


@router.get("/stats/general", response_model=VoteStatisticsResponse, summary="Vote statistics")
async def get_vote_statistics(
    current_member: AdminOrTreasurerDep,
    engine: VoteEngineDep,
    date_debut: datetime | None = Query(default=None),
    date_fin: datetime | None = Query(default=None),
):
    stats = await engine.get_statistics(date_from=date_debut, date_to=date_fin)
    return VoteStatisticsResponse.model_validate(stats)


@router.get(
    "/mes-votes/participation",
    response_model=PaginatedResponse,
    summary="Votes the current member responded to",
)
async def list_my_participation(
    current_member: CurrentMemberDep,
    engine: VoteEngineDep,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    statut: VoteStatus | None = Query(default=None),
):
    summaries, total = await engine.list_member_participation(
        current_member.id, statut=statut, page=page, page_size=page_size
    )
    return PaginatedResponse.create(
        items=[VoteSummaryResponse.model_validate(s) for s in summaries],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get(
    "/objet/{objet_type}/{objet_id}",
    response_model=list[VoteSummaryResponse],
    summary="Votes about one object",
)
async def list_votes_for_object(
    objet_type: str,
    objet_id: UUID,
    current_member: CurrentMemberDep,
    engine: VoteEngineDep,
):
    summaries = await engine.list_votes_for_object(objet_type, objet_id, member_id=current_member.id)
    return [VoteSummaryResponse.model_validate(s) for s in summaries]


@router.post(
    "/maintenance/fermer-expires",
    response_model=ExpiredVotesResponse,
    summary="Close every expired vote",
)
async def close_expired_votes(current_member: AdminDep, engine: VoteEngineDep):
    closed = await engine.close_expired_votes()
    return ExpiredVotesResponse(
        message=f"{len(closed)} vote(s) fermé(s)",
        details=[ClosedVoteSchema.model_validate(c) for c in closed],
    )


@router.get("/{vote_id}", response_model=VoteDetailsResponse, summary="Vote details")
async def get_vote(vote_id: UUID, current_member: CurrentMemberDep, engine: VoteEngineDep):
    try:
        details = await engine.get_vote_details(vote_id, requesting_member_id=current_member.id)
    except VoteNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vote non trouvé")
    return VoteDetailsResponse.model_validate(details)


@router.post("/{vote_id}/voter", response_model=VoteCastResponse, summary="Cast a response")
async def cast_vote(
    vote_id: UUID,
    request: VoteCast,
    current_member: CurrentMemberDep,
    engine: VoteEngineDep,
):
    """Record the member's response; the vote may close as a result."""
    try:
        outcome = await engine.cast_response(
            vote_id,
            current_member.id,
            request.reponse,
            request.commentaire,
        )
    except VoteNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vote non trouvé")
    except VoteClosedError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Ce vote est fermé")
    except DuplicateVoteError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Vous avez déjà voté")
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Commentaire trop long")
    except (TransientStorageError, ResultApplicationError):
        logger.exception(f"Vote {vote_id} could not be evaluated")
        raise closing_failed()

    return VoteCastResponse(message="Vote enregistré avec succès", statut=outcome)


@router.get(
    "/{vote_id}/reponses",
    response_model=list[ResponseViewSchema],
    summary="All responses of a vote",
)
async def list_vote_responses(
    vote_id: UUID,
    current_member: AdminOrTreasurerDep,
    engine: VoteEngineDep,
):
    try:
        responses = await engine.list_responses(vote_id)
    except VoteNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vote non trouvé")
    return [ResponseViewSchema.model_validate(r) for r in responses]


@router.patch("/{vote_id}/fermer", response_model=VoteCloseResponse, summary="Close a vote")
async def close_vote(vote_id: UUID, current_member: AdminDep, engine: VoteEngineDep):
    try:
        statut = await engine.close_vote(vote_id)
    except VoteNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Vote non trouvé")
    except (TransientStorageError, ResultApplicationError):
        logger.exception(f"Vote {vote_id} could not be closed")
        raise closing_failed()

    message = "Vote fermé" if statut != VoteStatus.OUVERT else "Conditions de fermeture non atteintes"
    return VoteCloseResponse(message=message, statut=statut)
