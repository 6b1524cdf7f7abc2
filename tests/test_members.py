"""
Tests for the member directory.

These tests verify:
1. ACTIVE MEMBERS: Only active members are listed, an empty filter means everyone
2. LOOKUP: Unknown members raise
3. ROLES: Role checks and role-based recipient lists
"""

from uuid import uuid4

import pytest

from combis.models import MemberStatus
from combis.services import MemberDirectory, MemberNotFoundError

from conftest import add_member


# =============================================================================
# TEST: ACTIVE MEMBERS
# =============================================================================


class TestListActiveMembers:
    async def test_suspended_and_inactive_excluded(self, session, members):
        await add_member(session, "Membre Suspendu", statut=MemberStatus.SUSPENDU)
        await add_member(session, "Membre Parti", statut=MemberStatus.INACTIF)

        listed = await MemberDirectory(session).list_active_members()

        assert {m.id for m in listed} == {m.id for m in members}

    async def test_filter_intersects_active_members(self, session, members):
        suspended = await add_member(session, "Membre Suspendu", statut=MemberStatus.SUSPENDU)

        listed = await MemberDirectory(session).list_active_members(
            [members[0].id, members[1].id, suspended.id, uuid4()]
        )

        assert [m.id for m in listed] == [members[0].id, members[1].id]
        assert listed[0].telephone == members[0].telephone_1

    async def test_empty_filter_means_everyone(self, session, members):
        listed = await MemberDirectory(session).list_active_members([])

        assert len(listed) == len(members)


# =============================================================================
# TEST: LOOKUP
# =============================================================================


class TestGetMember:
    async def test_found(self, session, members):
        member = await MemberDirectory(session).get_member(members[3].id)

        assert member.nom_complet == "Membre 03"

    async def test_unknown(self, session):
        with pytest.raises(MemberNotFoundError):
            await MemberDirectory(session).get_member(uuid4())


# =============================================================================
# TEST: ROLES
# =============================================================================


class TestRoles:
    async def test_has_role(self, session, admin, treasurer):
        directory = MemberDirectory(session)

        assert await directory.has_role(admin.id, ["admin"])
        assert await directory.has_role(treasurer.id, ["admin", "tresorier"])
        assert not await directory.has_role(treasurer.id, ["admin"])
        assert not await directory.has_role(uuid4(), ["admin"])

    async def test_member_ids_with_roles(self, session, roles, admin, treasurer):
        # Holds both roles, listed once
        both = await add_member(session, "Double Casquette", roles=[roles["admin"], roles["tresorier"]])
        await add_member(
            session, "Ancien Trésorier", roles=[roles["tresorier"]], statut=MemberStatus.SUSPENDU
        )

        ids = await MemberDirectory(session).member_ids_with_roles(["admin", "tresorier"])

        assert sorted(ids) == sorted([admin.id, treasurer.id, both.id])
