"""
SMS Service: templated, provider-abstracted SMS delivery.

This module is responsible for:
1. Normalizing phone numbers to the 9-digit local form
2. Rendering ``{{variable}}`` templates per recipient
3. Dispatching through the configured provider adapter
4. Recording every attempt in ``notifications_sms``
"""

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Sequence
from uuid import UUID

import httpx
from sqlalchemy import case, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..models import ModeleSMS, NotificationSMS, SmsStatus, utcnow
from .exceptions import (
    DeliveryError,
    InvalidPhoneError,
    InvalidStatusTransitionError,
    NotificationNotFoundError,
    TemplateNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)

COUNTRY_CODE = "237"
LOCAL_NUMBER_LENGTH = 9

# Forward-only delivery status transitions
ALLOWED_TRANSITIONS: dict[SmsStatus, set[SmsStatus]] = {
    SmsStatus.EN_ATTENTE: {SmsStatus.ENVOYE, SmsStatus.ECHEC},
    SmsStatus.ENVOYE: {SmsStatus.LIVRE},
    SmsStatus.LIVRE: set(),
    SmsStatus.ECHEC: set(),
}

_PLACEHOLDER = re.compile(r"\{\{\s*(\w+)\s*\}\}")
_NON_DIGIT = re.compile(r"\D")


# =============================================================================
# FORMATTING
# =============================================================================


def normalize_phone(raw: str | None) -> str:
    """
    Reduce a phone number to its 9-digit local form.

    ``+237699123456``, ``237699123456`` and ``699 12 34 56`` all give
    ``699123456``.

    Raises:
        InvalidPhoneError: If the result is not exactly 9 digits
    """
    if not raw:
        raise InvalidPhoneError("Phone number is empty")

    digits = _NON_DIGIT.sub("", raw)
    if raw.strip().startswith("+" + COUNTRY_CODE) or (
        digits.startswith(COUNTRY_CODE) and len(digits) > LOCAL_NUMBER_LENGTH
    ):
        digits = digits[len(COUNTRY_CODE):]

    if len(digits) != LOCAL_NUMBER_LENGTH:
        raise InvalidPhoneError(f"Invalid phone number: {raw}")
    return digits


def render_template(template: str, variables: dict[str, Any]) -> str:
    """Substitute ``{{name}}`` placeholders. Unknown placeholders are left as is."""

    def replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables or variables[key] is None:
            return match.group(0)
        return str(variables[key])

    return _PLACEHOLDER.sub(replace, template)


# =============================================================================
# PROVIDERS
# =============================================================================


@dataclass
class ProviderResult:
    """Outcome of a single provider call."""
    success: bool
    reference: str | None = None
    cost_fcfa: int = 0
    error: str | None = None


class SmsProvider(ABC):
    """Abstract base for SMS provider adapters."""

    name: str = ""

    @abstractmethod
    async def send(self, phone: str, message: str) -> ProviderResult:
        """
        Send one SMS to a normalized 9-digit phone number.

        Provider and transport failures are returned, never raised.
        """
        pass


class HttpSmsProvider(SmsProvider):
    """Provider reached with a JSON POST over HTTPS."""

    url: str = ""
    cost_fcfa: int = 25

    def __init__(
        self,
        api_key: str | None,
        sender_id: str,
        timeout: float = 15.0,
        api_secret: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.api_secret = api_secret
        self.sender_id = sender_id
        self.timeout = timeout
        self._transport = transport

    def build_payload(self, phone: str, message: str) -> dict[str, Any]:
        raise NotImplementedError

    def headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def parse_response(self, data: dict[str, Any]) -> ProviderResult:
        raise NotImplementedError

    async def send(self, phone: str, message: str) -> ProviderResult:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.url,
                    json=self.build_payload(phone, message),
                    headers=self.headers(),
                )
            response.raise_for_status()
            return self.parse_response(response.json())
        except httpx.HTTPStatusError as e:
            error = f"HTTP {e.response.status_code}: {e.response.text[:200]}"
            logger.warning(f"[SMS] {self.name} rejected message to {phone}: {error}")
            return ProviderResult(success=False, error=error)
        except httpx.HTTPError as e:
            error = str(e) or e.__class__.__name__
            logger.warning(f"[SMS] {self.name} unreachable for {phone}: {error}")
            return ProviderResult(success=False, error=error)
        except (ValueError, KeyError, IndexError) as e:
            logger.warning(f"[SMS] {self.name} returned an unreadable response: {e}")
            return ProviderResult(success=False, error=f"Invalid provider response: {e}")


class OrangeSmsProvider(HttpSmsProvider):
    """Orange SMS API (Cameroon)."""

    name = "orange_sms_api"
    url = "https://api.orange.com/smsmessaging/v1/outbound/tel%3A%2B237/requests"
    cost_fcfa = 25

    def build_payload(self, phone: str, message: str) -> dict[str, Any]:
        return {
            "outboundSMSMessageRequest": {
                "address": f"tel:+{COUNTRY_CODE}{phone}",
                "senderAddress": f"tel:+{COUNTRY_CODE}{self.sender_id}",
                "outboundSMSTextMessage": {"message": message},
            }
        }

    def parse_response(self, data: dict[str, Any]) -> ProviderResult:
        request = data.get("outboundSMSMessageRequest") or {}
        return ProviderResult(
            success=True,
            reference=request.get("resourceURL"),
            cost_fcfa=self.cost_fcfa,
        )


class MtnSmsProvider(HttpSmsProvider):
    """MTN SMS API (Cameroon)."""

    name = "mtn_api"
    url = "https://api.mtn.cm/v1/sms/send"
    cost_fcfa = 25

    def build_payload(self, phone: str, message: str) -> dict[str, Any]:
        return {"to": phone, "from": self.sender_id, "text": message}

    def parse_response(self, data: dict[str, Any]) -> ProviderResult:
        return ProviderResult(
            success=True,
            reference=data.get("messageId"),
            cost_fcfa=self.cost_fcfa,
        )


class NexmoSmsProvider(HttpSmsProvider):
    """Nexmo / Vonage (international). Credentials travel in the body."""

    name = "nexmo"
    url = "https://rest.nexmo.com/sms/json"
    cost_fcfa = 50

    def headers(self) -> dict[str, str]:
        return {"Content-Type": "application/json"}

    def build_payload(self, phone: str, message: str) -> dict[str, Any]:
        return {
            "from": self.sender_id,
            "to": f"{COUNTRY_CODE}{phone}",
            "text": message,
            "api_key": self.api_key,
            "api_secret": self.api_secret,
        }

    def parse_response(self, data: dict[str, Any]) -> ProviderResult:
        first = data["messages"][0]
        # Status "0" means accepted
        if first.get("status") != "0":
            return ProviderResult(
                success=False,
                reference=first.get("message-id"),
                error=first.get("error-text") or f"Nexmo status {first.get('status')}",
            )
        return ProviderResult(
            success=True,
            reference=first.get("message-id"),
            cost_fcfa=self.cost_fcfa,
        )


PROVIDERS: dict[str, type[HttpSmsProvider]] = {
    OrangeSmsProvider.name: OrangeSmsProvider,
    MtnSmsProvider.name: MtnSmsProvider,
    NexmoSmsProvider.name: NexmoSmsProvider,
}


def get_provider(name: str, settings: Settings | None = None) -> SmsProvider:
    """Build the provider adapter registered under ``name``."""
    settings = settings or get_settings()
    provider_cls = PROVIDERS.get(name)
    if provider_cls is None:
        raise ValidationError(f"Unsupported SMS provider: {name}")
    return provider_cls(
        api_key=settings.sms_api_key,
        api_secret=settings.sms_api_secret,
        sender_id=settings.sms_sender_id,
        timeout=settings.sms_timeout_seconds,
    )


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class SmsRecipient:
    """Recipient of a templated SMS, with its own template variables."""
    id: UUID | None
    telephone: str | None
    nom_complet: str = ""
    variables: dict[str, Any] = field(default_factory=dict)

    def as_variables(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "nom_complet": self.nom_complet,
            "telephone": self.telephone,
            **self.variables,
        }


@dataclass
class SmsSendResult:
    success: bool
    notification_id: UUID | None = None
    reference: str | None = None
    error: str | None = None

    def raise_for_failure(self) -> None:
        if not self.success:
            raise DeliveryError(self.error or "SMS not sent")


@dataclass
class BulkSmsResult:
    """Per-recipient outcome of a bulk send."""
    membre_id: UUID | None
    nom_complet: str
    telephone: str | None
    success: bool
    error: str | None = None


@dataclass
class SmsStatistics:
    total: int
    en_attente: int
    envoyes: int
    livres: int
    echecs: int
    cout_total: int
    par_type: list[dict] = field(default_factory=list)


# =============================================================================
# SMS SERVICE
# =============================================================================


class SmsService:
    """Sends SMS and keeps their delivery records."""

    def __init__(
        self,
        session: AsyncSession,
        provider: SmsProvider | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.settings = settings or get_settings()
        self.provider = provider or get_provider(self.settings.sms_provider, self.settings)

    async def send_sms(
        self,
        recipient_id: UUID | None,
        phone: str | None,
        message: str,
        notification_type: str,
        sender_id: UUID | None = None,
    ) -> SmsSendResult:
        """
        Send one SMS and record the attempt.

        Disabled SMS and unnormalizable numbers fail before any record is
        created or any provider call is made.
        """
        if not self.settings.sms_enabled:
            logger.info("[SMS] SMS disabled in configuration, message not sent")
            return SmsSendResult(success=False, error="SMS désactivé")

        try:
            local_phone = normalize_phone(phone)
        except InvalidPhoneError as e:
            logger.warning(f"[SMS] {e}")
            return SmsSendResult(success=False, error=str(e))

        record = NotificationSMS(
            destinataire_id=recipient_id,
            telephone=local_phone,
            message=message,
            type_notification=notification_type,
            expediteur_id=sender_id,
            statut=SmsStatus.EN_ATTENTE,
            tentatives=0,
            cout_fcfa=0,
            created_at=utcnow(),
        )
        self.session.add(record)
        await self.session.flush()

        try:
            result = await self.provider.send(local_phone, message)
        except Exception as e:
            logger.exception(f"[SMS] Provider {self.provider.name} crashed for {local_phone}")
            result = ProviderResult(success=False, error=str(e) or e.__class__.__name__)

        self._advance_status(record, SmsStatus.ENVOYE if result.success else SmsStatus.ECHEC)
        record.reference_externe = result.reference
        record.cout_fcfa = result.cost_fcfa if result.success else 0
        record.erreur = result.error
        record.tentatives = (record.tentatives or 0) + 1
        record.date_envoi = utcnow()
        await self.session.flush()

        return SmsSendResult(
            success=result.success,
            notification_id=record.id,
            reference=result.reference,
            error=result.error,
        )

    async def send_bulk_sms(
        self,
        recipients: Sequence[SmsRecipient],
        template_name: str,
        variables: dict[str, Any] | None = None,
        sender_id: UUID | None = None,
    ) -> list[BulkSmsResult]:
        """
        Render a template per recipient and send sequentially.

        Recipient variables win over global ``variables``. One recipient's
        failure never aborts the batch.

        Raises:
            TemplateNotFoundError: If the template is missing or inactive
        """
        template = await self.get_template(template_name)
        notification_type = template_name.lower().replace(" ", "_")
        global_variables = variables or {}

        results: list[BulkSmsResult] = []
        for index, recipient in enumerate(recipients):
            if index and self.settings.sms_throttle_seconds:
                # Provider rate limits
                await asyncio.sleep(self.settings.sms_throttle_seconds)

            message = render_template(
                template.template, {**global_variables, **recipient.as_variables()}
            )
            try:
                async with self.session.begin_nested():
                    sent = await self.send_sms(
                        recipient.id,
                        recipient.telephone,
                        message,
                        notification_type,
                        sender_id=sender_id,
                    )
            except SQLAlchemyError as e:
                logger.error(f"[SMS] Could not record SMS to {recipient.telephone}: {e}")
                sent = SmsSendResult(success=False, error="Erreur d'enregistrement")

            results.append(
                BulkSmsResult(
                    membre_id=recipient.id,
                    nom_complet=recipient.nom_complet,
                    telephone=recipient.telephone,
                    success=sent.success,
                    error=sent.error,
                )
            )

        succeeded = sum(1 for r in results if r.success)
        logger.info(f"[SMS] Bulk '{template_name}': {succeeded}/{len(results)} sent")
        return results

    async def mark_delivered(self, reference: str) -> NotificationSMS:
        """Apply a provider delivery receipt. Repeated receipts are a no-op."""
        result = await self.session.execute(
            select(NotificationSMS).where(NotificationSMS.reference_externe == reference)
        )
        record = result.scalars().first()
        if not record:
            raise NotificationNotFoundError(f"No SMS with reference {reference}")

        if record.statut == SmsStatus.LIVRE:
            return record

        self._advance_status(record, SmsStatus.LIVRE)
        record.date_livraison = utcnow()
        await self.session.flush()
        return record

    # -------------------------------------------------------------------------
    # TEMPLATES
    # -------------------------------------------------------------------------

    async def get_template(self, name: str) -> ModeleSMS:
        result = await self.session.execute(
            select(ModeleSMS).where(ModeleSMS.nom == name, ModeleSMS.actif.is_(True))
        )
        template = result.scalar_one_or_none()
        if not template:
            raise TemplateNotFoundError(f"SMS template not found: {name}")
        return template

    async def upsert_template(
        self,
        name: str,
        template: str,
        notification_type: str | None = None,
        actif: bool = True,
    ) -> ModeleSMS:
        """Create or replace the template registered under ``name``."""
        if not name or not template:
            raise ValidationError("Template name and body are required")

        result = await self.session.execute(select(ModeleSMS).where(ModeleSMS.nom == name))
        existing = result.scalar_one_or_none()
        notification_type = notification_type or name.lower().replace(" ", "_")

        if existing:
            existing.template = template
            existing.type_notification = notification_type
            existing.actif = actif
            await self.session.flush()
            return existing

        created = ModeleSMS(
            nom=name,
            template=template,
            type_notification=notification_type,
            actif=actif,
        )
        self.session.add(created)
        await self.session.flush()
        return created

    async def list_templates(self, active_only: bool = False) -> list[ModeleSMS]:
        query = select(ModeleSMS).order_by(ModeleSMS.nom)
        if active_only:
            query = query.where(ModeleSMS.actif.is_(True))
        result = await self.session.execute(query)
        return list(result.scalars().all())

    # -------------------------------------------------------------------------
    # REPORTING
    # -------------------------------------------------------------------------

    async def list_sms(
        self,
        page: int = 1,
        page_size: int = 20,
        statut: SmsStatus | None = None,
        notification_type: str | None = None,
        recipient_id: UUID | None = None,
    ) -> tuple[list[NotificationSMS], int]:
        conditions = []
        if statut is not None:
            conditions.append(NotificationSMS.statut == statut)
        if notification_type:
            conditions.append(NotificationSMS.type_notification == notification_type)
        if recipient_id is not None:
            conditions.append(NotificationSMS.destinataire_id == recipient_id)

        count_result = await self.session.execute(
            select(func.count(NotificationSMS.id)).where(*conditions)
        )
        total = count_result.scalar() or 0

        result = await self.session.execute(
            select(NotificationSMS)
            .where(*conditions)
            .order_by(NotificationSMS.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def get_statistics(
        self,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> SmsStatistics:
        conditions = []
        if date_from is not None:
            conditions.append(NotificationSMS.created_at >= date_from)
        if date_to is not None:
            conditions.append(NotificationSMS.created_at <= date_to)

        def counters():
            return (
                func.count(NotificationSMS.id),
                func.count(case((NotificationSMS.statut == SmsStatus.EN_ATTENTE, 1))),
                func.count(case((NotificationSMS.statut == SmsStatus.ENVOYE, 1))),
                func.count(case((NotificationSMS.statut == SmsStatus.LIVRE, 1))),
                func.count(case((NotificationSMS.statut == SmsStatus.ECHEC, 1))),
                func.coalesce(func.sum(NotificationSMS.cout_fcfa), 0),
            )

        global_result = await self.session.execute(select(*counters()).where(*conditions))
        total, en_attente, envoyes, livres, echecs, cout_total = global_result.one()

        by_type = await self.session.execute(
            select(NotificationSMS.type_notification, *counters())
            .where(*conditions)
            .group_by(NotificationSMS.type_notification)
            .order_by(func.count(NotificationSMS.id).desc())
        )

        return SmsStatistics(
            total=total,
            en_attente=en_attente,
            envoyes=envoyes,
            livres=livres,
            echecs=echecs,
            cout_total=int(cout_total),
            par_type=[
                {
                    "type_notification": row[0],
                    "total": row[1],
                    "en_attente": row[2],
                    "envoyes": row[3],
                    "livres": row[4],
                    "echecs": row[5],
                    "cout_total": int(row[6]),
                }
                for row in by_type.all()
            ],
        )

    # -------------------------------------------------------------------------
    # HELPERS
    # -------------------------------------------------------------------------

    def _advance_status(self, record: NotificationSMS, new_status: SmsStatus) -> None:
        current = record.statut or SmsStatus.EN_ATTENTE
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise InvalidStatusTransitionError(
                f"SMS {record.id} cannot move from {current.value} to {new_status.value}"
            )
        record.statut = new_status
