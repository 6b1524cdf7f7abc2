"""Pytest configuration and fixtures for the Combis test suite."""

import os

# Test environment BEFORE any application import: the module-level engine
# and cached settings are built from these.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key")

from typing import Any
from uuid import UUID

import pytest
from fastapi import WebSocketDisconnect
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from combis.core.config import Settings
from combis.models import (
    Base,
    ClaimStatus,
    Membre,
    MembreRole,
    MemberStatus,
    Role,
    Sinistre,
    VoteType,
)
from combis.core.tasks import drain_background_tasks
from combis.services.realtime import ConnectionRegistry
from combis.services.sms_service import ProviderResult, SmsProvider
from combis.services.vote_engine import CreateVoteInput, VoteEngine


def _enable_savepoints(engine) -> None:
    """pysqlite/aiosqlite transaction handling that supports SAVEPOINT."""

    @event.listens_for(engine.sync_engine, "connect")
    def do_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def do_begin(conn):
        conn.exec_driver_sql("BEGIN")


# =============================================================================
# DATABASE
# =============================================================================


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    _enable_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
async def file_engine(tmp_path):
    """On-disk database, for code paths that open concurrent sessions."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'combis.db'}")
    _enable_savepoints(engine)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=False)


@pytest.fixture
async def session(session_factory) -> AsyncSession:
    async with session_factory() as session:
        yield session
        await session.rollback()


# =============================================================================
# SETTINGS & FAKES
# =============================================================================


@pytest.fixture(autouse=True)
async def drain_dispatches():
    """Background notifications must not outlive the test's event loop."""
    yield
    await drain_background_tasks()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        environment="test",
        sms_enabled=True,
        sms_throttle_seconds=0,
        realtime_pending_limit=10,
        notification_retention_days=30,
    )


class FakeSmsProvider(SmsProvider):
    """Records every send. Phones in ``fail_phones`` are rejected."""

    name = "fake"

    def __init__(self, fail_phones: set[str] | None = None, crash: bool = False):
        self.sent: list[tuple[str, str]] = []
        self.fail_phones = fail_phones or set()
        self.crash = crash

    async def send(self, phone: str, message: str) -> ProviderResult:
        self.sent.append((phone, message))
        if self.crash:
            raise RuntimeError("provider exploded")
        if phone in self.fail_phones:
            return ProviderResult(success=False, error="Numéro rejeté par l'opérateur")
        return ProviderResult(success=True, reference=f"ref-{len(self.sent)}", cost_fcfa=25)


class FakeWebSocket:
    """Stands in for a Starlette WebSocket: records ``send_json`` calls."""

    def __init__(self, fail: bool = False, incoming: list[Any] | None = None):
        self.sent: list[dict] = []
        self.fail = fail
        self.accepted = False
        self.incoming = list(incoming or [])

    async def accept(self) -> None:
        self.accepted = True

    async def receive_json(self) -> Any:
        if not self.incoming:
            raise WebSocketDisconnect(code=1000)
        message = self.incoming.pop(0)
        if isinstance(message, Exception):
            raise message
        return message

    async def send_json(self, data: dict) -> None:
        if self.fail:
            raise RuntimeError("connection reset")
        self.sent.append(data)

    def events(self, name: str) -> list[dict]:
        return [m for m in self.sent if m["event"] == name]


class RecordingNotifier:
    """Notifier double that only records what it was asked to send."""

    def __init__(self):
        self.new_votes: list[tuple] = []
        self.closed_votes: list[tuple] = []
        self.approved_claims: list[UUID] = []

    async def notify_new_vote(self, vote, members) -> None:
        self.new_votes.append((vote, list(members)))

    async def notify_vote_closed(self, vote, recipient_ids) -> None:
        self.closed_votes.append((vote, list(recipient_ids)))

    async def notify_claim_approved(self, claim_id) -> None:
        self.approved_claims.append(claim_id)


@pytest.fixture
def sms_provider() -> FakeSmsProvider:
    return FakeSmsProvider()


@pytest.fixture
def connections() -> ConnectionRegistry:
    return ConnectionRegistry()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


# =============================================================================
# MEMBERS & CLAIMS
# =============================================================================


async def add_member(
    session: AsyncSession,
    nom: str,
    telephone: str | None = None,
    roles: list[Role] | None = None,
    statut: MemberStatus = MemberStatus.ACTIF,
) -> Membre:
    member = Membre(nom_complet=nom, telephone_1=telephone, statut=statut)
    session.add(member)
    await session.flush()
    for role in roles or []:
        session.add(MembreRole(membre_id=member.id, role_id=role.id))
    await session.flush()
    return member


@pytest.fixture
async def roles(session: AsyncSession) -> dict[str, Role]:
    created = {nom: Role(nom=nom) for nom in ("admin", "tresorier", "membre")}
    session.add_all(created.values())
    await session.flush()
    return created


@pytest.fixture
async def admin(session: AsyncSession, roles) -> Membre:
    return await add_member(session, "Admin Principal", "+237 690 00 00 00", [roles["admin"]])


@pytest.fixture
async def treasurer(session: AsyncSession, roles) -> Membre:
    return await add_member(session, "Trésorier Central", "690000099", [roles["tresorier"]])


@pytest.fixture
async def members(session: AsyncSession, roles) -> list[Membre]:
    """Ten active members with valid phone numbers."""
    return [
        await add_member(session, f"Membre {i:02d}", f"+237 6991234{i:02d}", [roles["membre"]])
        for i in range(10)
    ]


@pytest.fixture
async def claim(session: AsyncSession, members) -> Sinistre:
    sinistre = Sinistre(
        membre_id=members[0].id,
        type_sinistre="Décès",
        description="Décès d'un parent",
        montant_demande=150000,
        statut=ClaimStatus.EN_COURS,
    )
    session.add(sinistre)
    await session.flush()
    return sinistre


@pytest.fixture
def vote_engine(session, notifier, settings) -> VoteEngine:
    return VoteEngine(session, notifier=notifier, settings=settings)


@pytest.fixture
def open_vote(vote_engine, admin, members, claim):
    """Factory opening a vote on the claim, eligible members default to ``members``."""

    async def factory(
        type_vote: VoteType = VoteType.SIMPLE_MAJORITE,
        eligible: list[Membre] | None = None,
        quorum: int | None = None,
        objet_type: str = "sinistre",
        duree_heures: int = 72,
    ):
        created = await vote_engine.create_vote(
            CreateVoteInput(
                objet_type=objet_type,
                objet_id=claim.id,
                titre="Validation du sinistre décès",
                type_vote=type_vote,
                duree_heures=duree_heures,
                quorum_requis=quorum,
                membres_eligibles=[m.id for m in (eligible if eligible is not None else members)],
            ),
            creator_id=admin.id,
        )
        return created.vote

    return factory
