"""
Notification API Routes: push notifications and SMS.

Members read their own push notifications. SMS sending, templates and
reporting are reserved to administrators and treasurers.
"""

import logging
from datetime import datetime
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..core import AdminDep, AdminOrTreasurerDep, CurrentMemberDep, SessionDep
from ..models import SmsStatus
from ..schemas import (
    BulkSmsRequest,
    BulkSmsResponse,
    BulkSmsResultSchema,
    DeliveryReport,
    MessageResponse,
    NotificationResponse,
    NotificationSendRequest,
    NotificationSendResponse,
    PaginatedResponse,
    SmsResponse,
    SmsSendRequest,
    SmsSendResponse,
    SmsStatisticsResponse,
    SmsTemplateResponse,
    SmsTemplateUpsert,
    UnreadCountResponse,
)
from ..services.exceptions import (
    DeliveryError,
    InvalidStatusTransitionError,
    MemberNotFoundError,
    NotificationNotFoundError,
    TemplateNotFoundError,
    ValidationError,
)
from ..services.members import MemberDirectory
from ..services.realtime import NotificationPayload, RealtimeNotificationService, registry
from ..services.sms_service import SmsRecipient, SmsService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/notifications", tags=["notifications"])


# =============================================================================
# DEPENDENCIES
# =============================================================================


def get_realtime_service(session: SessionDep) -> RealtimeNotificationService:
    return RealtimeNotificationService(session, registry)


def get_sms_service(session: SessionDep) -> SmsService:
    return SmsService(session)


RealtimeServiceDep = Annotated[RealtimeNotificationService, Depends(get_realtime_service)]
SmsServiceDep = Annotated[SmsService, Depends(get_sms_service)]


# =============================================================================
# PUSH NOTIFICATIONS
# =============================================================================


@router.get("", response_model=PaginatedResponse, summary="My notifications")
async def list_notifications(
    current_member: CurrentMemberDep,
    service: RealtimeServiceDep,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    type_notification: str | None = Query(default=None),
    lu: bool | None = Query(default=None),
):
    notifications, total = await service.list_for_member(
        current_member.id,
        page=page,
        page_size=page_size,
        type_notification=type_notification,
        lu=lu,
    )
    return PaginatedResponse.create(
        items=[NotificationResponse.model_validate(n) for n in notifications],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def get_unread_count(current_member: CurrentMemberDep, service: RealtimeServiceDep):
    return UnreadCountResponse(count=await service.unread_count(current_member.id))


@router.patch("/{notification_id}/read", response_model=NotificationResponse)
async def mark_notification_read(
    notification_id: UUID,
    current_member: CurrentMemberDep,
    service: RealtimeServiceDep,
):
    try:
        notification = await service.mark_read(notification_id, current_member.id)
    except NotificationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification non trouvée")
    return NotificationResponse.model_validate(notification)


@router.post("/send", response_model=NotificationSendResponse, summary="Send a push notification")
async def send_notification(
    request: NotificationSendRequest,
    current_member: AdminDep,
    service: RealtimeServiceDep,
):
    """Persist and push to the given members, or broadcast to connected sessions."""
    payload = NotificationPayload(
        titre=request.titre,
        message=request.message,
        type_notification=request.type_notification,
        donnees_extra=request.donnees_extra,
        lien_action=request.lien_action,
    )
    if not request.destinataires:
        reached = await service.broadcast(payload)
        return NotificationSendResponse(message="Notification diffusée", envoyees=reached)

    sent = await service.send_bulk(request.destinataires, payload)
    return NotificationSendResponse(message="Notification envoyée", envoyees=len(sent))


# =============================================================================
# SMS
# =============================================================================


@router.get("/sms", response_model=PaginatedResponse, summary="SMS history")
async def list_sms(
    current_member: AdminOrTreasurerDep,
    service: SmsServiceDep,
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100),
    statut: SmsStatus | None = Query(default=None),
    type_notification: str | None = Query(default=None),
):
    records, total = await service.list_sms(
        page=page,
        page_size=page_size,
        statut=statut,
        notification_type=type_notification,
    )
    return PaginatedResponse.create(
        items=[SmsResponse.model_validate(r) for r in records],
        total=total,
        page=page,
        page_size=page_size,
    )


@router.post("/sms/envoyer", response_model=SmsSendResponse, summary="Send one SMS")
async def send_sms(
    request: SmsSendRequest,
    current_member: AdminOrTreasurerDep,
    session: SessionDep,
    service: SmsServiceDep,
):
    try:
        member = await MemberDirectory(session).get_member(request.destinataire_id)
    except MemberNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Membre non trouvé")

    result = await service.send_sms(
        member.id,
        member.telephone_1,
        request.message,
        request.type_notification,
        sender_id=current_member.id,
    )
    try:
        result.raise_for_failure()
    except DeliveryError:
        # Keep the failed attempt on record; detail stays there and in the logs
        await session.commit()
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Erreur lors de l'envoi du SMS",
        )

    return SmsSendResponse(
        message="SMS envoyé avec succès",
        notification_id=result.notification_id,
        reference=result.reference,
    )


@router.post("/sms/masse", response_model=BulkSmsResponse, summary="Templated bulk SMS")
async def send_bulk_sms(
    request: BulkSmsRequest,
    current_member: AdminDep,
    session: SessionDep,
    service: SmsServiceDep,
):
    extra = {r.id: r.variables for r in request.destinataires}
    members = await MemberDirectory(session).list_active_members(list(extra))
    recipients = [
        SmsRecipient(
            id=m.id,
            telephone=m.telephone,
            nom_complet=m.nom_complet,
            variables=extra.get(m.id, {}),
        )
        for m in members
    ]

    try:
        results = await service.send_bulk_sms(
            recipients,
            request.template_nom,
            request.variables,
            sender_id=current_member.id,
        )
    except TemplateNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Template SMS non trouvé")

    succeeded = sum(1 for r in results if r.success)
    return BulkSmsResponse(
        message=f"{succeeded}/{len(results)} SMS envoyés",
        details=[BulkSmsResultSchema.model_validate(r) for r in results],
    )


@router.get("/sms/templates", response_model=list[SmsTemplateResponse])
async def list_sms_templates(current_member: AdminOrTreasurerDep, service: SmsServiceDep):
    return [SmsTemplateResponse.model_validate(t) for t in await service.list_templates()]


@router.post("/sms/templates", response_model=SmsTemplateResponse, summary="Create or update a template")
async def upsert_sms_template(
    request: SmsTemplateUpsert,
    current_member: AdminDep,
    service: SmsServiceDep,
):
    try:
        template = await service.upsert_template(
            request.nom,
            request.template,
            notification_type=request.type_notification,
            actif=request.actif,
        )
    except ValidationError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Nom et contenu du template requis")
    return SmsTemplateResponse.model_validate(template)


@router.get("/sms/statistiques", response_model=SmsStatisticsResponse)
async def get_sms_statistics(
    current_member: AdminOrTreasurerDep,
    service: SmsServiceDep,
    date_debut: datetime | None = Query(default=None),
    date_fin: datetime | None = Query(default=None),
):
    stats = await service.get_statistics(date_from=date_debut, date_to=date_fin)
    return SmsStatisticsResponse.model_validate(stats)


@router.post("/sms/delivery-report", response_model=MessageResponse, summary="Provider delivery receipt")
async def sms_delivery_report(
    report: DeliveryReport,
    current_member: AdminDep,
    service: SmsServiceDep,
):
    try:
        await service.mark_delivered(report.reference)
    except NotificationNotFoundError:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="SMS non trouvé")
    except InvalidStatusTransitionError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Statut SMS incompatible")
    return MessageResponse(message="Livraison enregistrée")
