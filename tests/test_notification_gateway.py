"""
Tests for the Notification Gateway and the maintenance job.

These tests verify:
1. FAN-OUT: Vote and claim events reach members by push and SMS
2. ISOLATION: A failing channel never raises to the caller
3. JOB: The maintenance job closes expired votes and purges old notifications
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import async_sessionmaker

from combis.core.config import Settings, async_database_url
from combis.core.tasks import drain_background_tasks
from combis.jobs.maintenance import run_maintenance_job
from combis.models import (
    ClaimStatus,
    ModeleSMS,
    NotificationRealtime,
    NotificationSMS,
    ResponseChoice,
    Sinistre,
    Vote,
    VoteStatus,
    utcnow,
)
from combis.services import (
    CreateVoteInput,
    MemberInfo,
    NotificationGateway,
    VoteEngine,
    VoteRef,
    seed_default_templates,
)

from conftest import FakeSmsProvider, FakeWebSocket, add_member


def vote_ref(vote_id=None, statut=VoteStatus.OUVERT, cree_par=None) -> VoteRef:
    return VoteRef(
        id=vote_id or uuid4(),
        titre="Aide au décès",
        objet_type="sinistre",
        objet_id=uuid4(),
        date_fin=datetime(2025, 3, 14, 18, 30, tzinfo=timezone.utc),
        statut=statut,
        cree_par=cree_par or uuid4(),
    )


async def all_rows(session, model):
    result = await session.execute(select(model))
    return list(result.scalars().all())


# =============================================================================
# TEST: GATEWAY
# =============================================================================


class TestNotificationGateway:
    """Gateway dispatch runs in its own sessions, so fixtures are committed first."""

    async def test_new_vote_push_and_sms(
        self, session, session_factory, connections, settings, sms_provider, members
    ):
        await seed_default_templates(session)
        await session.commit()
        websocket = FakeWebSocket()
        await connections.register(members[0].id, websocket)
        gateway = NotificationGateway(session_factory, connections, sms_provider, settings)
        ref = vote_ref()

        await gateway.notify_new_vote(
            ref,
            [MemberInfo(m.id, m.nom_complet, m.telephone_1) for m in members[:2]]
            + [MemberInfo(members[2].id, members[2].nom_complet, None)],
        )

        pushes = await all_rows(session, NotificationRealtime)
        assert {n.destinataire_id for n in pushes} == {m.id for m in members[:3]}
        await drain_background_tasks()
        assert websocket.events("nouvelle_notification")[0]["data"]["lien_action"] == f"/votes/{ref.id}"

        # Member without phone gets no SMS
        assert [phone for phone, _ in sms_provider.sent] == ["699123400", "699123401"]
        message = sms_provider.sent[0][1]
        assert "Aide au décès" in message
        assert "14/03/2025 18:30" in message
        assert f"/votes/{ref.id}" in message
        records = await all_rows(session, NotificationSMS)
        assert {r.type_notification for r in records} == {"nouveau_vote"}

    async def test_missing_template_does_not_block_push(
        self, session, session_factory, connections, settings, sms_provider, members
    ):
        await session.commit()
        gateway = NotificationGateway(session_factory, connections, sms_provider, settings)

        await gateway.notify_new_vote(vote_ref(), [MemberInfo(members[0].id, "A", members[0].telephone_1)])

        assert len(await all_rows(session, NotificationRealtime)) == 1
        assert sms_provider.sent == []

    async def test_provider_crash_is_contained(
        self, session, session_factory, connections, settings, members
    ):
        await seed_default_templates(session)
        await session.commit()
        gateway = NotificationGateway(
            session_factory, connections, FakeSmsProvider(crash=True), settings
        )

        await gateway.notify_new_vote(vote_ref(), [MemberInfo(members[0].id, "A", members[0].telephone_1)])

        [record] = await all_rows(session, NotificationSMS)
        assert record.erreur == "provider exploded"

    async def test_sms_disabled(self, session, session_factory, connections, sms_provider, members):
        await seed_default_templates(session)
        await session.commit()
        gateway = NotificationGateway(
            session_factory, connections, sms_provider, Settings(sms_enabled=False)
        )

        await gateway.notify_new_vote(vote_ref(), [MemberInfo(members[0].id, "A", members[0].telephone_1)])

        assert sms_provider.sent == []
        assert len(await all_rows(session, NotificationRealtime)) == 1

    async def test_vote_closed_push_only(
        self, session, session_factory, connections, settings, sms_provider, admin
    ):
        await session.commit()
        gateway = NotificationGateway(session_factory, connections, sms_provider, settings)

        await gateway.notify_vote_closed(vote_ref(statut=VoteStatus.REJETE), [admin.id])

        [notification] = await all_rows(session, NotificationRealtime)
        assert notification.destinataire_id == admin.id
        assert "rejeté" in notification.message
        assert notification.donnees_extra["statut"] == "rejete"
        assert sms_provider.sent == []

    async def test_claim_approved(
        self, session, session_factory, connections, settings, sms_provider, claim, members
    ):
        await seed_default_templates(session)
        await session.commit()
        gateway = NotificationGateway(session_factory, connections, sms_provider, settings)

        await gateway.notify_claim_approved(claim.id)

        [notification] = await all_rows(session, NotificationRealtime)
        assert notification.destinataire_id == members[0].id
        assert notification.type_notification == "sinistre"
        assert sms_provider.sent == [
            ("699123400", "COMBIS: Bonjour Membre 00, votre sinistre \"Décès\" a été approuvé par vote.")
        ]

    async def test_unknown_claim(self, session, session_factory, connections, settings, sms_provider):
        await session.commit()
        gateway = NotificationGateway(session_factory, connections, sms_provider, settings)

        await gateway.notify_claim_approved(uuid4())

        assert await all_rows(session, NotificationRealtime) == []

    async def test_seeding_keeps_existing_templates(self, session):
        session.add(ModeleSMS(nom="Nouveau vote", type_notification="nouveau_vote", template="Perso"))
        await session.flush()

        assert await seed_default_templates(session) == 1
        assert await seed_default_templates(session) == 0

        templates = {t.nom: t.template for t in await all_rows(session, ModeleSMS)}
        assert templates["Nouveau vote"] == "Perso"
        assert "Sinistre approuvé" in templates


# =============================================================================
# TEST: MAINTENANCE JOB
# =============================================================================


class TestMaintenanceJob:
    """Runs against an on-disk database: the job and its notifications use separate sessions."""

    async def test_closes_expired_votes_and_purges(self, file_engine, settings):
        factory = async_sessionmaker(file_engine, expire_on_commit=False, autoflush=False)

        async with factory() as session:
            admin = await add_member(session, "Admin", "699000000")
            voters = [await add_member(session, f"Votant {i}", f"69900001{i}") for i in range(3)]
            claim = Sinistre(membre_id=voters[0].id, type_sinistre="Incendie", statut=ClaimStatus.EN_COURS)
            session.add(claim)
            await session.flush()

            engine = VoteEngine(session, settings=settings)
            created = await engine.create_vote(
                CreateVoteInput(
                    objet_type="sinistre",
                    objet_id=claim.id,
                    titre="Incendie atelier",
                    membres_eligibles=[v.id for v in voters],
                ),
                creator_id=admin.id,
            )
            vote_id = created.vote.id
            await engine.cast_response(vote_id, voters[0].id, ResponseChoice.POUR)

            now = utcnow()
            await session.execute(
                update(Vote)
                .where(Vote.id == vote_id)
                .values(date_debut=now - timedelta(days=4), date_fin=now - timedelta(days=1))
            )
            session.add(NotificationRealtime(
                destinataire_id=admin.id,
                titre="Ancienne",
                message="...",
                created_at=now - timedelta(days=90),
            ))
            await session.commit()

        results = await run_maintenance_job(retention_days=30, session_factory=factory)

        assert results["votes_closed"] == 1
        assert results["votes_approved"] == 1
        assert results["notifications_purged"] == 1
        assert results["completed_at"] is not None

        async with factory() as session:
            vote = await session.get(Vote, vote_id)
            assert vote.statut == VoteStatus.APPROUVE
            refreshed = await session.get(Sinistre, claim.id)
            assert refreshed.statut == ClaimStatus.APPROUVE

            # Vote-closed push to the creator, claim-approved push to the claimant
            notifications = await all_rows(session, NotificationRealtime)
            assert {(n.destinataire_id, n.titre) for n in notifications} == {
                (admin.id, "Vote clôturé"),
                (voters[0].id, "Sinistre approuvé"),
            }

    async def test_nothing_to_do(self, file_engine):
        factory = async_sessionmaker(file_engine, expire_on_commit=False)

        results = await run_maintenance_job(session_factory=factory)

        assert (results["votes_closed"], results["notifications_purged"]) == (0, 0)

    async def test_plain_postgres_url_gets_async_driver(self, file_engine, monkeypatch):
        urls = []

        def fake_create_async_engine(url, **kwargs):
            urls.append(url)
            return file_engine

        monkeypatch.setattr("combis.jobs.maintenance.create_async_engine", fake_create_async_engine)

        results = await run_maintenance_job(database_url="postgresql://combis:secret@db:5432/combis")

        assert urls == ["postgresql+asyncpg://combis:secret@db:5432/combis"]
        assert results["votes_closed"] == 0


@pytest.mark.parametrize(
    "url, expected",
    [
        ("postgresql://u:p@db/combis", "postgresql+asyncpg://u:p@db/combis"),
        ("postgres://u:p@db/combis", "postgresql+asyncpg://u:p@db/combis"),
        ("postgresql+asyncpg://u:p@db/combis", "postgresql+asyncpg://u:p@db/combis"),
        ("sqlite+aiosqlite:///combis.db", "sqlite+aiosqlite:///combis.db"),
    ],
)
def test_async_database_url(url, expected):
    assert async_database_url(url) == expected
