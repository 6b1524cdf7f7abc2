"""
Vote Engine: governance vote lifecycle.

This module owns the vote state machine:
- Votes are created with a frozen eligibility snapshot, quorum and end date
- Every cast response synchronously re-evaluates the closing conditions
- A vote leaves ``ouvert`` exactly once, through a conditional status write
- Approval side effects run in the same savepoint as the status write
- Expired votes are closed by an explicit sweep using the plurality rule

The storage transaction is the only concurrency control: two evaluators racing
on the same vote both re-read the tally, and only the one whose conditional
UPDATE still matches ``statut = 'ouvert'`` closes it.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Callable, Sequence
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..core.tasks import dispatch_after_commit
from ..models import (
    Membre,
    ObjectType,
    ReponseVote,
    ResponseChoice,
    Vote,
    VoteStatus,
    VoteType,
    utcnow,
)
from .exceptions import (
    DuplicateVoteError,
    InvalidObjectReferenceError,
    ResultApplicationError,
    TransientStorageError,
    ValidationError,
    VoteClosedError,
    VoteNotFoundError,
)
from .members import MemberDirectory, MemberInfo
from .notification_gateway import VoteRef
from .result_applier import ResultApplier

logger = logging.getLogger(__name__)

MAX_COMMENT_LENGTH = 500


# =============================================================================
# POLICY
# =============================================================================


def _ceil_div(numerator: int, denominator: int) -> int:
    return -(-numerator // denominator)


def compute_quorum(type_vote: VoteType, eligible_count: int, explicit: int | None = None) -> int:
    """Number of responses required before a vote can close.

    Integer arithmetic only: ceil(10 * 2 / 3) must be 7, not 7.000000001.
    """
    if type_vote == VoteType.SIMPLE_MAJORITE:
        return _ceil_div(eligible_count, 2)
    if type_vote == VoteType.MAJORITE_QUALIFIEE:
        return _ceil_div(eligible_count * 2, 3)
    if type_vote == VoteType.UNANIMITE:
        return eligible_count
    # Custom quorum, 60% fallback
    if explicit is not None and explicit > 0:
        return explicit
    return _ceil_div(eligible_count * 3, 5)


def percentage(part: int, whole: int) -> int:
    """Integer percentage rounded half-up. 0 when ``whole`` is 0."""
    if whole <= 0:
        return 0
    return (part * 200 + whole) // (2 * whole)


@dataclass(frozen=True)
class Tally:
    """Response counts of a vote. Abstentions count in ``total`` only."""
    total: int = 0
    pour: int = 0
    contre: int = 0
    abstention: int = 0


def decide_outcome(type_vote: VoteType, quorum: int, tally: Tally) -> VoteStatus | None:
    """Terminal status for an open vote, or None if it stays open."""
    if tally.total == 0 or tally.total < quorum:
        return None

    if type_vote == VoteType.MAJORITE_QUALIFIEE:
        # Threshold against actual turnout, not the eligible count
        approved = tally.pour >= _ceil_div(tally.total * 2, 3)
    elif type_vote == VoteType.UNANIMITE:
        approved = tally.contre == 0 and tally.pour == tally.total
    else:
        # Ties are rejected
        approved = tally.pour > tally.contre

    return VoteStatus.APPROUVE if approved else VoteStatus.REJETE


def decide_expired_outcome(tally: Tally) -> VoteStatus:
    """Plurality of whoever responded, whatever the vote type. Ties are rejected."""
    return VoteStatus.APPROUVE if tally.pour > tally.contre else VoteStatus.REJETE


def _as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes; everything is stored in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class CreateVoteInput:
    """Input for creating a new vote."""
    objet_type: str
    objet_id: UUID | None
    titre: str
    description: str | None = None
    type_vote: VoteType = VoteType.SIMPLE_MAJORITE
    duree_heures: int | None = None  # Defaults to settings
    quorum_requis: int | None = None  # Only used by custom quorum votes
    membres_eligibles: list[UUID] | None = None  # Defaults to all active members


@dataclass
class CreatedVote:
    vote: Vote
    nombre_eligibles: int
    eligible_members: list[MemberInfo] = field(default_factory=list)


@dataclass
class ClosedVoteResult:
    """Outcome of closing a single vote."""
    vote_id: UUID
    titre: str
    objet_type: str
    objet_id: UUID
    statut: VoteStatus
    total_votes: int
    votes_pour: int
    votes_contre: int


@dataclass
class VoteSummary:
    """Vote with its current tally, as listed to members."""
    id: UUID
    titre: str
    description: str | None
    objet_type: str
    objet_id: UUID
    type_vote: VoteType
    statut: VoteStatus
    quorum_requis: int
    nombre_eligibles: int
    date_debut: datetime
    date_fin: datetime
    cree_par: UUID
    cree_par_nom: str | None
    total_votes: int = 0
    votes_pour: int = 0
    votes_contre: int = 0
    votes_abstention: int = 0
    a_vote: bool = False
    mon_vote: ResponseChoice | None = None
    est_expire: bool = False
    peut_voter: bool = False


@dataclass
class VoteDetails(VoteSummary):
    """Full view of a single vote."""
    pourcentages: dict[str, int] = field(default_factory=dict)
    quorum_atteint: bool = False
    pourcentage_quorum: int = 0
    mon_commentaire: str | None = None
    date_mon_vote: datetime | None = None


@dataclass
class ResponseView:
    membre_id: UUID
    nom_complet: str | None
    reponse: ResponseChoice
    commentaire: str | None
    date_reponse: datetime


@dataclass
class VoteStatistics:
    total_votes: int
    votes_ouverts: int
    votes_approuves: int
    votes_rejetes: int
    participation_moyenne: float
    par_type: list[dict] = field(default_factory=list)
    top_participants: list[dict] = field(default_factory=list)


# =============================================================================
# VOTE ENGINE
# =============================================================================


class VoteEngine:
    """
    Core engine for governance votes.

    The engine never commits: it flushes and uses savepoints, the caller owns
    the outer transaction.
    """

    def __init__(
        self,
        session: AsyncSession,
        notifier=None,
        applier: ResultApplier | None = None,
        directory: MemberDirectory | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.notifier = notifier
        self.applier = applier or ResultApplier(session)
        self.directory = directory or MemberDirectory(session)
        self.settings = settings or get_settings()

    # -------------------------------------------------------------------------
    # CREATE
    # -------------------------------------------------------------------------

    async def create_vote(self, data: CreateVoteInput, creator_id: UUID) -> CreatedVote:
        """
        Create a vote, snapshot its eligible members and compute its quorum.

        Eligible members are notified in the background once the caller
        commits. A notification failure never affects the created vote.
        """
        if not data.objet_type or data.objet_id is None:
            raise InvalidObjectReferenceError("A vote must reference an object type and id")

        if not data.titre or not data.titre.strip():
            raise ValidationError("Vote title is required")

        duree = (
            data.duree_heures
            if data.duree_heures is not None
            else self.settings.vote_default_duration_hours
        )
        if not (self.settings.vote_min_duration_hours <= duree <= self.settings.vote_max_duration_hours):
            raise ValidationError(
                f"Vote duration must be between {self.settings.vote_min_duration_hours} "
                f"and {self.settings.vote_max_duration_hours} hours"
            )

        if data.quorum_requis is not None and data.quorum_requis < 0:
            raise ValidationError("Quorum cannot be negative")

        type_vote = VoteType(data.type_vote)
        eligible = await self.directory.list_active_members(data.membres_eligibles)
        quorum = compute_quorum(type_vote, len(eligible), data.quorum_requis)

        now = utcnow()
        vote = Vote(
            objet_type=data.objet_type,
            objet_id=data.objet_id,
            titre=data.titre.strip(),
            description=data.description,
            type_vote=type_vote,
            quorum_requis=quorum,
            nombre_eligibles=len(eligible),
            date_debut=now,
            date_fin=now + timedelta(hours=duree),
            statut=VoteStatus.OUVERT,
            cree_par=creator_id,
        )
        self.session.add(vote)
        await self.session.flush()

        logger.info(
            f"Vote {vote.id} created on {vote.objet_type} {vote.objet_id} "
            f"({type_vote.value}, quorum {quorum}/{len(eligible)})"
        )

        if self.notifier is not None and eligible:
            ref = VoteRef.from_vote(vote)
            dispatch_after_commit(
                self.session,
                lambda: self.notifier.notify_new_vote(ref, eligible),
                name=f"notify-new-vote-{vote.id}",
            )

        return CreatedVote(vote=vote, nombre_eligibles=len(eligible), eligible_members=eligible)

    # -------------------------------------------------------------------------
    # CAST
    # -------------------------------------------------------------------------

    async def cast_response(
        self,
        vote_id: UUID,
        member_id: UUID,
        reponse: ResponseChoice,
        commentaire: str | None = None,
    ) -> VoteStatus:
        """
        Record a member's response, then evaluate closing before returning.

        Returns the vote status after evaluation.

        Raises:
            VoteNotFoundError: If the vote does not exist
            VoteClosedError: If the vote is closed or past its end date
            DuplicateVoteError: If the member already responded
        """
        if commentaire is not None and len(commentaire) > MAX_COMMENT_LENGTH:
            raise ValidationError(f"Comment exceeds {MAX_COMMENT_LENGTH} characters")
        reponse = ResponseChoice(reponse)

        vote = await self._get_vote(vote_id)
        if vote.statut != VoteStatus.OUVERT or utcnow() > _as_utc(vote.date_fin):
            raise VoteClosedError(f"Vote {vote_id} is closed")

        existing = await self.session.execute(
            select(ReponseVote.id).where(
                ReponseVote.vote_id == vote_id,
                ReponseVote.membre_id == member_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateVoteError(f"Member {member_id} already voted on {vote_id}")

        response = ReponseVote(
            vote_id=vote_id,
            membre_id=member_id,
            reponse=reponse,
            commentaire=commentaire,
            date_reponse=utcnow(),
        )
        try:
            async with self.session.begin_nested():
                self.session.add(response)
        except IntegrityError as e:
            # Concurrent cast by the same member won the unique constraint
            raise DuplicateVoteError(f"Member {member_id} already voted on {vote_id}") from e

        logger.debug(f"Member {member_id} voted {reponse.value} on {vote_id}")

        outcome = await self.evaluate_closing(vote_id)
        return outcome or VoteStatus.OUVERT

    # -------------------------------------------------------------------------
    # CLOSE
    # -------------------------------------------------------------------------

    async def evaluate_closing(self, vote_id: UUID) -> VoteStatus | None:
        """
        Close the vote if its type-specific condition is met.

        Returns the terminal status, or None when the vote stays open, was
        already closed, or another evaluator closed it first.
        """
        closed = await self._close(
            vote_id,
            lambda vote, tally: decide_outcome(vote.type_vote, vote.quorum_requis, tally),
        )
        return closed.statut if closed else None

    async def close_expired_votes(self) -> list[ClosedVoteResult]:
        """
        Close every open vote past its end date by plurality.

        Each vote is closed in its own savepoint. A vote whose closing fails
        is logged and left open for the next sweep.
        """
        now = utcnow()
        result = await self.session.execute(
            select(Vote.id)
            .where(Vote.statut == VoteStatus.OUVERT, Vote.date_fin <= now)
            .order_by(Vote.date_fin)
        )
        expired_ids = list(result.scalars().all())

        closed: list[ClosedVoteResult] = []
        for vote_id in expired_ids:
            try:
                outcome = await self._close(vote_id, lambda vote, tally: decide_expired_outcome(tally))
            except (TransientStorageError, ResultApplicationError) as e:
                logger.error(f"Failed to close expired vote {vote_id}, left open: {e}")
                continue
            if outcome is not None:
                closed.append(outcome)

        if expired_ids:
            logger.info(f"Expiry sweep closed {len(closed)} of {len(expired_ids)} expired votes")
        return closed

    async def close_vote(self, vote_id: UUID) -> VoteStatus:
        """
        Administrative close of a single vote.

        Past its end date the plurality rule applies; before that the normal
        evaluation runs and the vote may stay open. Returns the resulting
        status. Closing an already closed vote is a no-op.
        """
        vote = await self._get_vote(vote_id)
        if vote.statut != VoteStatus.OUVERT:
            return vote.statut

        if utcnow() >= _as_utc(vote.date_fin):
            closed = await self._close(vote_id, lambda v, tally: decide_expired_outcome(tally))
            outcome = closed.statut if closed else None
        else:
            outcome = await self.evaluate_closing(vote_id)

        if outcome is None:
            vote = await self._get_vote(vote_id)
            return vote.statut
        return outcome

    async def _close(
        self,
        vote_id: UUID,
        decide: Callable[[Vote, Tally], VoteStatus | None],
    ) -> ClosedVoteResult | None:
        """Read, decide, write and apply inside one savepoint."""
        try:
            async with self.session.begin_nested():
                result = await self.session.execute(
                    select(Vote)
                    .where(Vote.id == vote_id, Vote.statut == VoteStatus.OUVERT)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                vote = result.scalar_one_or_none()
                if vote is None:
                    return None

                tally = await self._load_tally(vote_id)
                outcome = decide(vote, tally)
                if outcome is None:
                    return None

                written = await self.session.execute(
                    update(Vote)
                    .where(Vote.id == vote_id, Vote.statut == VoteStatus.OUVERT)
                    .values(statut=outcome, updated_at=utcnow())
                )
                if written.rowcount != 1:
                    logger.debug(f"Vote {vote_id} was closed by a concurrent evaluation")
                    return None

                await self.applier.apply(vote, outcome)
        except SQLAlchemyError as e:
            logger.error(f"Storage failure while closing vote {vote_id}: {e}")
            raise TransientStorageError(f"Could not close vote {vote_id}") from e

        logger.info(
            f"Vote {vote_id} closed {outcome.value} "
            f"({tally.pour} pour, {tally.contre} contre, {tally.abstention} abstention)"
        )

        if self.notifier is not None:
            notifier = self.notifier
            ref = VoteRef.from_vote(vote)
            dispatch_after_commit(
                self.session,
                lambda: notifier.notify_vote_closed(ref, [ref.cree_par]),
                name=f"notify-vote-closed-{vote_id}",
            )
            if outcome == VoteStatus.APPROUVE and vote.objet_type == ObjectType.SINISTRE.value:
                dispatch_after_commit(
                    self.session,
                    lambda: notifier.notify_claim_approved(ref.objet_id),
                    name=f"notify-claim-approved-{ref.objet_id}",
                )

        return ClosedVoteResult(
            vote_id=vote.id,
            titre=vote.titre,
            objet_type=vote.objet_type,
            objet_id=vote.objet_id,
            statut=outcome,
            total_votes=tally.total,
            votes_pour=tally.pour,
            votes_contre=tally.contre,
        )

    # -------------------------------------------------------------------------
    # READ
    # -------------------------------------------------------------------------

    async def get_vote_details(
        self,
        vote_id: UUID,
        requesting_member_id: UUID | None = None,
    ) -> VoteDetails:
        """Vote with tallies, percentages, quorum progress and the requester's own response."""
        result = await self.session.execute(
            select(Vote, Membre.nom_complet)
            .outerjoin(Membre, Membre.id == Vote.cree_par)
            .where(Vote.id == vote_id)
        )
        row = result.first()
        if not row:
            raise VoteNotFoundError(f"Vote {vote_id} not found")
        vote, creator_name = row

        tally = await self._load_tally(vote_id)

        own: ReponseVote | None = None
        if requesting_member_id is not None:
            own_result = await self.session.execute(
                select(ReponseVote).where(
                    ReponseVote.vote_id == vote_id,
                    ReponseVote.membre_id == requesting_member_id,
                )
            )
            own = own_result.scalar_one_or_none()

        summary = self._summary(vote, creator_name, tally, own.reponse if own else None)
        return VoteDetails(
            **summary.__dict__,
            pourcentages={
                "pour": percentage(tally.pour, tally.total),
                "contre": percentage(tally.contre, tally.total),
                "abstention": percentage(tally.abstention, tally.total),
            },
            quorum_atteint=tally.total >= vote.quorum_requis,
            pourcentage_quorum=(
                percentage(tally.total, vote.quorum_requis) if vote.quorum_requis > 0 else 100
            ),
            mon_commentaire=own.commentaire if own else None,
            date_mon_vote=own.date_reponse if own else None,
        )

    async def list_votes(
        self,
        statut: VoteStatus | None = None,
        objet_type: str | None = None,
        page: int = 1,
        page_size: int = 20,
        member_id: UUID | None = None,
    ) -> tuple[list[VoteSummary], int]:
        """Paginated votes, newest first, with the member's own response when given."""
        conditions = []
        if statut is not None:
            conditions.append(Vote.statut == statut)
        if objet_type:
            conditions.append(Vote.objet_type == objet_type)

        count_result = await self.session.execute(
            select(func.count()).select_from(Vote).where(*conditions)
        )
        total = count_result.scalar() or 0

        summaries = await self._list_summaries(
            conditions,
            member_id=member_id,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return summaries, total

    async def list_votes_for_object(
        self,
        objet_type: str,
        objet_id: UUID,
        member_id: UUID | None = None,
    ) -> list[VoteSummary]:
        return await self._list_summaries(
            [Vote.objet_type == objet_type, Vote.objet_id == objet_id],
            member_id=member_id,
        )

    async def list_member_participation(
        self,
        member_id: UUID,
        statut: VoteStatus | None = None,
        page: int = 1,
        page_size: int = 20,
    ) -> tuple[list[VoteSummary], int]:
        """Votes the member responded to, newest first."""
        responded = select(ReponseVote.vote_id).where(ReponseVote.membre_id == member_id)
        conditions = [Vote.id.in_(responded)]
        if statut is not None:
            conditions.append(Vote.statut == statut)

        count_result = await self.session.execute(
            select(func.count()).select_from(Vote).where(*conditions)
        )
        total = count_result.scalar() or 0

        summaries = await self._list_summaries(
            conditions,
            member_id=member_id,
            offset=(page - 1) * page_size,
            limit=page_size,
        )
        return summaries, total

    async def list_responses(self, vote_id: UUID) -> list[ResponseView]:
        """All responses of a vote with the respondents' names."""
        await self._get_vote(vote_id)

        result = await self.session.execute(
            select(ReponseVote, Membre.nom_complet)
            .outerjoin(Membre, Membre.id == ReponseVote.membre_id)
            .where(ReponseVote.vote_id == vote_id)
            .order_by(ReponseVote.date_reponse)
        )
        return [
            ResponseView(
                membre_id=response.membre_id,
                nom_complet=name,
                reponse=response.reponse,
                commentaire=response.commentaire,
                date_reponse=response.date_reponse,
            )
            for response, name in result.all()
        ]

    async def get_statistics(
        self,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> VoteStatistics:
        """Vote counts by status and object type, participation, top participants."""
        conditions = []
        if date_from is not None:
            conditions.append(Vote.date_debut >= date_from)
        if date_to is not None:
            conditions.append(Vote.date_debut <= date_to)

        general = await self.session.execute(
            select(
                func.count(Vote.id),
                func.count(case((Vote.statut == VoteStatus.OUVERT, 1))),
                func.count(case((Vote.statut == VoteStatus.APPROUVE, 1))),
                func.count(case((Vote.statut == VoteStatus.REJETE, 1))),
            ).where(*conditions)
        )
        total, ouverts, approuves, rejetes = general.one()

        closed_responses = await self.session.execute(
            select(func.count(ReponseVote.id))
            .join(Vote, Vote.id == ReponseVote.vote_id)
            .where(Vote.statut != VoteStatus.OUVERT, *conditions)
        )
        closed_count = approuves + rejetes
        participation = (
            round((closed_responses.scalar() or 0) / closed_count, 2) if closed_count else 0.0
        )

        by_type = await self.session.execute(
            select(
                Vote.objet_type,
                func.count(Vote.id).label("nombre"),
                func.count(case((Vote.statut == VoteStatus.APPROUVE, 1))).label("approuves"),
            )
            .where(*conditions)
            .group_by(Vote.objet_type)
            .order_by(func.count(Vote.id).desc())
        )

        top = await self.session.execute(
            select(
                Membre.id,
                Membre.nom_complet,
                func.count(ReponseVote.id).label("nombre_votes"),
            )
            .join(ReponseVote, ReponseVote.membre_id == Membre.id)
            .join(Vote, Vote.id == ReponseVote.vote_id)
            .where(*conditions)
            .group_by(Membre.id, Membre.nom_complet)
            .order_by(func.count(ReponseVote.id).desc(), Membre.nom_complet)
            .limit(5)
        )

        return VoteStatistics(
            total_votes=total,
            votes_ouverts=ouverts,
            votes_approuves=approuves,
            votes_rejetes=rejetes,
            participation_moyenne=participation,
            par_type=[
                {"objet_type": objet_type, "nombre": nombre, "approuves": approved}
                for objet_type, nombre, approved in by_type.all()
            ],
            top_participants=[
                {"membre_id": member_id, "nom_complet": name, "nombre_votes": count}
                for member_id, name, count in top.all()
            ],
        )

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    async def _get_vote(self, vote_id: UUID) -> Vote:
        result = await self.session.execute(
            select(Vote)
            .where(Vote.id == vote_id)
            .execution_options(populate_existing=True)
        )
        vote = result.scalar_one_or_none()
        if not vote:
            raise VoteNotFoundError(f"Vote {vote_id} not found")
        return vote

    async def _load_tally(self, vote_id: UUID) -> Tally:
        result = await self.session.execute(
            select(
                func.count(ReponseVote.id),
                func.count(case((ReponseVote.reponse == ResponseChoice.POUR, 1))),
                func.count(case((ReponseVote.reponse == ResponseChoice.CONTRE, 1))),
                func.count(case((ReponseVote.reponse == ResponseChoice.ABSTENTION, 1))),
            ).where(ReponseVote.vote_id == vote_id)
        )
        total, pour, contre, abstention = result.one()
        return Tally(total=total, pour=pour, contre=contre, abstention=abstention)

    async def _list_summaries(
        self,
        conditions: Sequence,
        member_id: UUID | None = None,
        offset: int = 0,
        limit: int | None = None,
    ) -> list[VoteSummary]:
        counts = (
            select(
                ReponseVote.vote_id.label("vote_id"),
                func.count(ReponseVote.id).label("total"),
                func.count(case((ReponseVote.reponse == ResponseChoice.POUR, 1))).label("pour"),
                func.count(case((ReponseVote.reponse == ResponseChoice.CONTRE, 1))).label("contre"),
                func.count(
                    case((ReponseVote.reponse == ResponseChoice.ABSTENTION, 1))
                ).label("abstention"),
            )
            .group_by(ReponseVote.vote_id)
            .subquery()
        )

        query = (
            select(
                Vote,
                Membre.nom_complet,
                counts.c.total,
                counts.c.pour,
                counts.c.contre,
                counts.c.abstention,
            )
            .outerjoin(Membre, Membre.id == Vote.cree_par)
            .outerjoin(counts, counts.c.vote_id == Vote.id)
            .where(*conditions)
            .order_by(Vote.date_debut.desc(), Vote.id)
            .offset(offset)
        )
        if limit is not None:
            query = query.limit(limit)

        result = await self.session.execute(query)
        rows = result.all()

        own_responses: dict[UUID, ResponseChoice] = {}
        if member_id is not None and rows:
            own_result = await self.session.execute(
                select(ReponseVote.vote_id, ReponseVote.reponse).where(
                    ReponseVote.membre_id == member_id,
                    ReponseVote.vote_id.in_([row[0].id for row in rows]),
                )
            )
            own_responses = dict(own_result.all())

        return [
            self._summary(
                vote,
                creator_name,
                Tally(
                    total=total or 0,
                    pour=pour or 0,
                    contre=contre or 0,
                    abstention=abstention or 0,
                ),
                own_responses.get(vote.id),
            )
            for vote, creator_name, total, pour, contre, abstention in rows
        ]

    def _summary(
        self,
        vote: Vote,
        creator_name: str | None,
        tally: Tally,
        own_response: ResponseChoice | None,
    ) -> VoteSummary:
        expired = utcnow() > _as_utc(vote.date_fin)
        has_voted = own_response is not None
        return VoteSummary(
            id=vote.id,
            titre=vote.titre,
            description=vote.description,
            objet_type=vote.objet_type,
            objet_id=vote.objet_id,
            type_vote=vote.type_vote,
            statut=vote.statut,
            quorum_requis=vote.quorum_requis,
            nombre_eligibles=vote.nombre_eligibles,
            date_debut=vote.date_debut,
            date_fin=vote.date_fin,
            cree_par=vote.cree_par,
            cree_par_nom=creator_name,
            total_votes=tally.total,
            votes_pour=tally.pour,
            votes_contre=tally.contre,
            votes_abstention=tally.abstention,
            a_vote=has_voted,
            mon_vote=own_response,
            est_expire=expired,
            peut_voter=not has_voted and vote.statut == VoteStatus.OUVERT and not expired,
        )
