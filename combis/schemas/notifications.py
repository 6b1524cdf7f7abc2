"""Pydantic schemas for push notifications and SMS."""

from datetime import datetime
from typing import Any
from uuid import UUID

from pydantic import Field

from ..models import SmsStatus
from .base import CombisBaseModel


# =============================================================================
# PUSH NOTIFICATIONS
# =============================================================================


class NotificationResponse(CombisBaseModel):
    id: UUID
    titre: str
    message: str
    type_notification: str
    donnees_extra: dict[str, Any] | None = None
    lien_action: str | None = None
    lu: bool
    created_at: datetime
    date_lecture: datetime | None = None


class UnreadCountResponse(CombisBaseModel):
    count: int


class NotificationSendRequest(CombisBaseModel):
    """Push sent by an administrator. No recipients means every connected member."""

    destinataires: list[UUID] = Field(default_factory=list)
    titre: str = Field(..., min_length=1, max_length=255)
    message: str = Field(..., min_length=1)
    type_notification: str = Field(default="info", max_length=50)
    donnees_extra: dict[str, Any] = Field(default_factory=dict)
    lien_action: str | None = Field(default=None, max_length=500)


class NotificationSendResponse(CombisBaseModel):
    message: str
    envoyees: int


# =============================================================================
# SMS
# =============================================================================


class SmsResponse(CombisBaseModel):
    id: UUID
    destinataire_id: UUID | None = None
    telephone: str
    message: str
    type_notification: str
    statut: SmsStatus
    reference_externe: str | None = None
    cout_fcfa: int = 0
    erreur: str | None = None
    tentatives: int = 0
    created_at: datetime
    date_envoi: datetime | None = None
    date_livraison: datetime | None = None


class SmsSendRequest(CombisBaseModel):
    destinataire_id: UUID
    message: str = Field(..., min_length=1, max_length=1000)
    type_notification: str = Field(..., min_length=1, max_length=50)


class SmsSendResponse(CombisBaseModel):
    message: str
    notification_id: UUID | None = None
    reference: str | None = None


class BulkSmsRecipient(CombisBaseModel):
    """Recipient of a bulk send, with extra template variables."""

    id: UUID
    variables: dict[str, Any] = Field(default_factory=dict)


class BulkSmsRequest(CombisBaseModel):
    destinataires: list[BulkSmsRecipient] = Field(..., min_length=1)
    template_nom: str = Field(..., min_length=1, max_length=100)
    variables: dict[str, Any] = Field(default_factory=dict)


class BulkSmsResultSchema(CombisBaseModel):
    membre_id: UUID | None = None
    nom_complet: str
    telephone: str | None = None
    success: bool
    error: str | None = None


class BulkSmsResponse(CombisBaseModel):
    message: str
    details: list[BulkSmsResultSchema]


class SmsTemplateUpsert(CombisBaseModel):
    nom: str = Field(..., min_length=1, max_length=100)
    type_notification: str | None = Field(default=None, max_length=50)
    template: str = Field(..., min_length=1)
    actif: bool = True


class SmsTemplateResponse(CombisBaseModel):
    id: UUID
    nom: str
    type_notification: str
    template: str
    actif: bool


class SmsStatisticsResponse(CombisBaseModel):
    total: int
    en_attente: int
    envoyes: int
    livres: int
    echecs: int
    cout_total: int
    par_type: list[dict]


class DeliveryReport(CombisBaseModel):
    """Provider delivery receipt."""

    reference: str = Field(..., min_length=1, max_length=255)
