"""
Tests for the SMS Service.

These tests verify:
1. FORMATTING: Phone normalization and template rendering
2. SEND: Every dispatched SMS is recorded, disabled/invalid ones are not
3. BULK: One recipient's failure never aborts the batch
4. STATUS: Delivery status only moves forward
5. PROVIDERS: HTTP adapters map provider responses to results
"""

import json

import httpx
import pytest
from sqlalchemy import func, select

from combis.core.config import Settings
from combis.models import NotificationSMS, SmsStatus
from combis.services import (
    InvalidPhoneError,
    InvalidStatusTransitionError,
    NotificationNotFoundError,
    SmsRecipient,
    SmsService,
    TemplateNotFoundError,
    ValidationError,
    get_provider,
    normalize_phone,
    render_template,
)
from combis.services.sms_service import (
    MtnSmsProvider,
    NexmoSmsProvider,
    OrangeSmsProvider,
)

from conftest import FakeSmsProvider


async def sms_count(session) -> int:
    result = await session.execute(select(func.count(NotificationSMS.id)))
    return result.scalar()


# =============================================================================
# TEST: FORMATTING
# =============================================================================


class TestNormalizePhone:
    """Phone numbers reduce to the 9-digit local form."""

    @pytest.mark.parametrize(
        "raw",
        ["+237699123456", "237699123456", "699123456", "699 12 34 56", "+237 6-99-12-34-56"],
    )
    def test_valid_forms(self, raw):
        assert normalize_phone(raw) == "699123456"

    @pytest.mark.parametrize("raw", [None, "", "12345", "6991234567", "+33 6 12 34 56 78"])
    def test_invalid_forms(self, raw):
        with pytest.raises(InvalidPhoneError):
            normalize_phone(raw)

    def test_invalid_phone_is_a_validation_error(self):
        with pytest.raises(ValidationError):
            normalize_phone("abc")


class TestRenderTemplate:
    def test_placeholders_replaced(self):
        text = render_template("Bonjour {{nom_complet}}, vote {{ titre_vote }}", {
            "nom_complet": "Awa",
            "titre_vote": "Budget",
        })
        assert text == "Bonjour Awa, vote Budget"

    def test_unknown_placeholder_left_as_is(self):
        assert render_template("Lien: {{lien}}", {}) == "Lien: {{lien}}"

    def test_non_string_values(self):
        assert render_template("{{montant}} FCFA", {"montant": 150000}) == "150000 FCFA"


# =============================================================================
# TEST: SEND
# =============================================================================


class TestSendSms:
    """Tests for a single send."""

    async def test_success_is_recorded(self, session, settings, sms_provider, admin, members):
        service = SmsService(session, sms_provider, settings)

        result = await service.send_sms(
            members[0].id, members[0].telephone_1, "Bonjour", "test", sender_id=admin.id
        )

        assert result.success is True
        assert sms_provider.sent == [("699123400", "Bonjour")]

        record = await session.get(NotificationSMS, result.notification_id)
        assert record.statut == SmsStatus.ENVOYE
        assert record.telephone == "699123400"
        assert record.reference_externe == result.reference
        assert record.cout_fcfa == 25
        assert record.tentatives == 1
        assert record.date_envoi is not None
        assert record.expediteur_id == admin.id

    async def test_provider_failure_is_recorded(self, session, settings, members):
        provider = FakeSmsProvider(fail_phones={"699123400"})
        service = SmsService(session, provider, settings)

        result = await service.send_sms(members[0].id, members[0].telephone_1, "Bonjour", "test")

        assert result.success is False
        record = await session.get(NotificationSMS, result.notification_id)
        assert record.statut == SmsStatus.ECHEC
        assert record.erreur == "Numéro rejeté par l'opérateur"
        assert record.cout_fcfa == 0
        assert record.tentatives == 1

    async def test_provider_crash_is_recorded(self, session, settings, members):
        service = SmsService(session, FakeSmsProvider(crash=True), settings)

        result = await service.send_sms(members[0].id, members[0].telephone_1, "Bonjour", "test")

        assert result.success is False
        record = await session.get(NotificationSMS, result.notification_id)
        assert record.statut == SmsStatus.ECHEC
        assert "provider exploded" in record.erreur

    async def test_disabled_sms_sends_nothing(self, session, sms_provider, members):
        service = SmsService(session, sms_provider, Settings(sms_enabled=False))

        result = await service.send_sms(members[0].id, members[0].telephone_1, "Bonjour", "test")

        assert result.success is False
        assert result.error == "SMS désactivé"
        assert sms_provider.sent == []
        assert await sms_count(session) == 0

    async def test_invalid_phone_sends_nothing(self, session, settings, sms_provider, members):
        service = SmsService(session, sms_provider, settings)

        result = await service.send_sms(members[0].id, "12345", "Bonjour", "test")

        assert result.success is False
        assert sms_provider.sent == []
        assert await sms_count(session) == 0

    async def test_raise_for_failure(self, session, settings, members):
        from combis.services import DeliveryError

        service = SmsService(session, FakeSmsProvider(fail_phones={"699123400"}), settings)
        result = await service.send_sms(members[0].id, members[0].telephone_1, "Bonjour", "test")

        with pytest.raises(DeliveryError):
            result.raise_for_failure()


# =============================================================================
# TEST: BULK
# =============================================================================


class TestSendBulkSms:
    """Tests for templated bulk sends."""

    @pytest.fixture
    async def service(self, session, settings, sms_provider):
        service = SmsService(session, sms_provider, settings)
        await service.upsert_template("Nouveau vote", "Bonjour {{nom_complet}}, vote {{titre_vote}}")
        return service

    async def test_one_failure_does_not_abort_batch(self, session, service, sms_provider, members):
        recipients = [
            SmsRecipient(id=members[0].id, telephone=members[0].telephone_1, nom_complet="A"),
            SmsRecipient(id=members[1].id, telephone="000", nom_complet="B"),
            SmsRecipient(id=members[2].id, telephone=members[2].telephone_1, nom_complet="C"),
        ]

        results = await service.send_bulk_sms(recipients, "Nouveau vote", {"titre_vote": "Budget"})

        assert [r.success for r in results] == [True, False, True]
        assert [r.nom_complet for r in results] == ["A", "B", "C"]
        assert results[1].error
        assert len(sms_provider.sent) == 2
        assert await sms_count(session) == 2

    async def test_provider_rejection_mid_batch(self, session, settings, members):
        provider = FakeSmsProvider(fail_phones={"699123401"})
        service = SmsService(session, provider, settings)
        await service.upsert_template("Rappel", "Rappel {{nom_complet}}")
        recipients = [
            SmsRecipient(id=m.id, telephone=m.telephone_1, nom_complet=m.nom_complet)
            for m in members[:3]
        ]

        results = await service.send_bulk_sms(recipients, "Rappel")

        assert [r.success for r in results] == [True, False, True]
        failed = await session.execute(
            select(NotificationSMS).where(NotificationSMS.statut == SmsStatus.ECHEC)
        )
        assert [r.telephone for r in failed.scalars()] == ["699123401"]

    async def test_recipient_variables_win(self, service, sms_provider, members):
        recipients = [
            SmsRecipient(
                id=members[0].id,
                telephone=members[0].telephone_1,
                nom_complet="Awa",
                variables={"titre_vote": "Budget 2025"},
            ),
        ]

        await service.send_bulk_sms(
            recipients, "Nouveau vote", {"nom_complet": "Global", "titre_vote": "Global"}
        )

        assert sms_provider.sent == [("699123400", "Bonjour Awa, vote Budget 2025")]

    async def test_notification_type_from_template_name(self, session, service, members):
        await service.send_bulk_sms(
            [SmsRecipient(id=members[0].id, telephone=members[0].telephone_1, nom_complet="A")],
            "Nouveau vote",
        )
        record = (await session.execute(select(NotificationSMS))).scalar_one()
        assert record.type_notification == "nouveau_vote"

    async def test_missing_template(self, service, members):
        with pytest.raises(TemplateNotFoundError):
            await service.send_bulk_sms([], "Inexistant")

    async def test_inactive_template(self, service):
        await service.upsert_template("Ancien", "Texte", actif=False)
        with pytest.raises(TemplateNotFoundError):
            await service.send_bulk_sms([], "Ancien")


# =============================================================================
# TEST: STATUS & TEMPLATES & REPORTING
# =============================================================================


class TestDeliveryStatus:
    """Status only moves forward."""

    async def test_delivery_receipt(self, session, settings, sms_provider, members):
        service = SmsService(session, sms_provider, settings)
        sent = await service.send_sms(members[0].id, members[0].telephone_1, "Bonjour", "test")

        record = await service.mark_delivered(sent.reference)

        assert record.statut == SmsStatus.LIVRE
        assert record.date_livraison is not None
        # Repeated receipt
        again = await service.mark_delivered(sent.reference)
        assert again.statut == SmsStatus.LIVRE

    async def test_failed_sms_cannot_be_delivered(self, session, settings, members):
        service = SmsService(session, FakeSmsProvider(fail_phones={"699123400"}), settings)
        record = NotificationSMS(
            telephone="699123400",
            message="Bonjour",
            type_notification="test",
            statut=SmsStatus.ECHEC,
            reference_externe="ref-echec",
        )
        session.add(record)
        await session.flush()

        with pytest.raises(InvalidStatusTransitionError):
            await service.mark_delivered("ref-echec")

    async def test_unknown_reference(self, session, settings, sms_provider):
        service = SmsService(session, sms_provider, settings)
        with pytest.raises(NotificationNotFoundError):
            await service.mark_delivered("inconnue")


class TestTemplatesAndReporting:
    async def test_upsert_replaces_body(self, session, settings, sms_provider):
        service = SmsService(session, sms_provider, settings)
        first = await service.upsert_template("Cotisation", "Version 1")
        second = await service.upsert_template("Cotisation", "Version 2", notification_type="rappel")

        assert first.id == second.id
        templates = await service.list_templates()
        assert [(t.nom, t.template, t.type_notification) for t in templates] == [
            ("Cotisation", "Version 2", "rappel"),
        ]

    async def test_statistics_and_listing(self, session, settings, members):
        service = SmsService(session, FakeSmsProvider(fail_phones={"699123401"}), settings)
        for member in members[:3]:
            await service.send_sms(member.id, member.telephone_1, "Bonjour", "rappel")

        stats = await service.get_statistics()
        assert (stats.total, stats.envoyes, stats.echecs, stats.cout_total) == (3, 2, 1, 50)
        assert stats.par_type[0]["type_notification"] == "rappel"

        failed, total = await service.list_sms(statut=SmsStatus.ECHEC)
        assert total == 1
        assert failed[0].destinataire_id == members[1].id


# =============================================================================
# TEST: PROVIDERS
# =============================================================================


def provider_with(provider_cls, handler, **kwargs):
    return provider_cls(
        api_key="key",
        api_secret="secret",
        sender_id="COMBIS",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestProviders:
    """HTTP adapters, exercised against a mock transport."""

    async def test_orange_success(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            captured["auth"] = request.headers["Authorization"]
            return httpx.Response(
                201,
                json={"outboundSMSMessageRequest": {"resourceURL": "https://orange/requests/42"}},
            )

        result = await provider_with(OrangeSmsProvider, handler).send("699123456", "Salut")

        assert result.success is True
        assert result.reference == "https://orange/requests/42"
        assert result.cost_fcfa == 25
        request = captured["body"]["outboundSMSMessageRequest"]
        assert request["address"] == "tel:+237699123456"
        assert request["outboundSMSTextMessage"] == {"message": "Salut"}
        assert captured["auth"] == "Bearer key"

    async def test_mtn_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert json.loads(request.content) == {"to": "699123456", "from": "COMBIS", "text": "Salut"}
            return httpx.Response(200, json={"messageId": "mtn-1"})

        result = await provider_with(MtnSmsProvider, handler).send("699123456", "Salut")

        assert (result.success, result.reference) == (True, "mtn-1")

    async def test_nexmo_rejection_status(self):
        def handler(request: httpx.Request) -> httpx.Response:
            body = json.loads(request.content)
            assert body["to"] == "237699123456"
            assert body["api_secret"] == "secret"
            return httpx.Response(
                200,
                json={"messages": [{"status": "4", "error-text": "Bad Credentials"}]},
            )

        result = await provider_with(NexmoSmsProvider, handler).send("699123456", "Salut")

        assert result.success is False
        assert result.error == "Bad Credentials"
        assert result.cost_fcfa == 0

    async def test_nexmo_success(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"messages": [{"status": "0", "message-id": "nx-9"}]})

        result = await provider_with(NexmoSmsProvider, handler).send("699123456", "Salut")

        assert (result.success, result.reference, result.cost_fcfa) == (True, "nx-9", 50)

    async def test_http_error_is_a_failure_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(503, text="maintenance")

        result = await provider_with(MtnSmsProvider, handler).send("699123456", "Salut")

        assert result.success is False
        assert result.error.startswith("HTTP 503")

    async def test_transport_error_is_a_failure_result(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        result = await provider_with(OrangeSmsProvider, handler).send("699123456", "Salut")

        assert result.success is False
        assert "unreachable" in result.error

    def test_get_provider(self):
        provider = get_provider("nexmo", Settings(SMS_API_KEY="k", SMS_API_SECRET="s"))
        assert isinstance(provider, NexmoSmsProvider)
        assert provider.api_secret == "s"

    def test_unknown_provider(self):
        with pytest.raises(ValidationError):
            get_provider("pigeon")
