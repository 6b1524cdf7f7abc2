"""
Real-time notification channel.

Notifications are persisted before any delivery attempt. A connected member
receives them over its WebSocket once the storing transaction commits; others
get the most recent unread ones flushed when their next session authenticates.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Sequence
from uuid import UUID

from fastapi import WebSocket
from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import Settings, get_settings
from ..core.tasks import dispatch_after_commit
from ..models import NotificationRealtime, utcnow
from .exceptions import NotificationNotFoundError

logger = logging.getLogger(__name__)


# Outbound event names
EVENT_AUTHENTICATED = "authenticated"
EVENT_AUTHENTICATION_ERROR = "authentication_error"
EVENT_PENDING = "notifications_en_attente"
EVENT_NEW = "nouvelle_notification"
EVENT_UNREAD_COUNT = "unread_count"


def make_event(event: str, data: Any) -> dict[str, Any]:
    return {"event": event, "data": data}


# =============================================================================
# CONNECTION REGISTRY
# =============================================================================


class ConnectionRegistry:
    """
    Maps connected members to their live WebSocket.

    At most one session per member: a reconnect overwrites the mapping and
    only the newest session receives pushes. An orphaned session that later
    disconnects does not remove the newer mapping.
    """

    def __init__(self):
        self._connections: dict[UUID, WebSocket] = {}
        self._lock = asyncio.Lock()

    async def register(self, member_id: UUID, websocket: WebSocket) -> None:
        async with self._lock:
            replaced = member_id in self._connections
            self._connections[member_id] = websocket
        logger.info(f"[WS] Member {member_id} connected{' (replaced previous session)' if replaced else ''}")

    async def unregister(self, member_id: UUID, websocket: WebSocket) -> bool:
        """Remove the mapping if it still points to ``websocket``."""
        async with self._lock:
            if self._connections.get(member_id) is not websocket:
                logger.debug(f"[WS] Orphaned session of member {member_id} disconnected")
                return False
            del self._connections[member_id]
        logger.info(f"[WS] Member {member_id} disconnected")
        return True

    def is_connected(self, member_id: UUID) -> bool:
        return member_id in self._connections

    def connected_members(self) -> list[UUID]:
        return list(self._connections)

    async def send(self, member_id: UUID, message: dict[str, Any]) -> bool:
        """Push a message to a member's live session. False if not delivered."""
        async with self._lock:
            websocket = self._connections.get(member_id)
        if websocket is None:
            return False
        return await self._send_to(websocket, message, member_id)

    async def broadcast(self, message: dict[str, Any]) -> int:
        """Push a message to every live session. Returns the number reached."""
        async with self._lock:
            targets = list(self._connections.items())

        delivered = 0
        for member_id, websocket in targets:
            if await self._send_to(websocket, message, member_id):
                delivered += 1

        logger.debug(f"[WS] Broadcast {message.get('event')} to {delivered}/{len(targets)} sessions")
        return delivered

    async def _send_to(self, websocket: WebSocket, message: dict[str, Any], member_id: UUID) -> bool:
        try:
            await websocket.send_json(message)
            return True
        except Exception as e:
            # Disconnect handler cleans up the mapping
            logger.warning(f"[WS] Failed to push to member {member_id}: {e}")
            return False


# Process-wide registry used by the WebSocket endpoint and the notifier
registry = ConnectionRegistry()


# =============================================================================
# NOTIFICATION SERVICE
# =============================================================================


@dataclass
class NotificationPayload:
    """Content of a push notification."""
    titre: str
    message: str
    type_notification: str = "info"
    donnees_extra: dict[str, Any] = field(default_factory=dict)
    lien_action: str | None = None


def serialize_notification(notification: NotificationRealtime) -> dict[str, Any]:
    return {
        "id": str(notification.id),
        "titre": notification.titre,
        "message": notification.message,
        "type_notification": notification.type_notification,
        "donnees_extra": notification.donnees_extra or {},
        "lien_action": notification.lien_action,
        "lu": notification.lu,
        "created_at": notification.created_at.isoformat() if notification.created_at else None,
    }


class RealtimeNotificationService:
    """Persists push notifications and delivers them to live sessions."""

    def __init__(
        self,
        session: AsyncSession,
        connections: ConnectionRegistry | None = None,
        settings: Settings | None = None,
    ):
        self.session = session
        self.connections = connections if connections is not None else registry
        self.settings = settings or get_settings()

    async def send_notification(
        self,
        member_id: UUID,
        payload: NotificationPayload,
    ) -> NotificationRealtime:
        """
        Persist the notification. The push to a connected member goes out once
        the session commits, so a member is never told about a row that does
        not exist.
        """
        notification = NotificationRealtime(
            destinataire_id=member_id,
            titre=payload.titre,
            message=payload.message,
            type_notification=payload.type_notification,
            donnees_extra=dict(payload.donnees_extra),
            lien_action=payload.lien_action,
            lu=False,
            created_at=utcnow(),
        )
        self.session.add(notification)
        await self.session.flush()

        event = make_event(EVENT_NEW, serialize_notification(notification))
        dispatch_after_commit(
            self.session,
            lambda: self.push(member_id, event),
            name=f"push-notification-{notification.id}",
        )
        return notification

    async def push(self, member_id: UUID, event: dict[str, Any]) -> bool:
        """Deliver an event to a member's live session, if any."""
        if not self.connections.is_connected(member_id):
            return False
        return await self.connections.send(member_id, event)

    async def send_bulk(
        self,
        member_ids: Sequence[UUID],
        payload: NotificationPayload,
    ) -> list[NotificationRealtime]:
        """Send the same notification to many members. One failure does not stop the rest."""
        sent: list[NotificationRealtime] = []
        for member_id in member_ids:
            try:
                async with self.session.begin_nested():
                    notification = await self.send_notification(member_id, payload)
                sent.append(notification)
            except SQLAlchemyError as e:
                logger.error(f"Failed to store notification for member {member_id}: {e}")
        return sent

    async def flush_pending(self, member_id: UUID, websocket: WebSocket) -> int:
        """Send the most recent unread notifications to a freshly authenticated session."""
        result = await self.session.execute(
            select(NotificationRealtime)
            .where(
                NotificationRealtime.destinataire_id == member_id,
                NotificationRealtime.lu.is_(False),
            )
            .order_by(NotificationRealtime.created_at.desc())
            .limit(self.settings.realtime_pending_limit)
        )
        pending = list(result.scalars().all())
        if not pending:
            return 0

        await websocket.send_json(
            make_event(EVENT_PENDING, [serialize_notification(n) for n in pending])
        )
        logger.debug(f"[WS] Flushed {len(pending)} pending notifications to member {member_id}")
        return len(pending)

    async def mark_read(self, notification_id: UUID, member_id: UUID) -> NotificationRealtime:
        """Mark a member's notification as read. Already read is a no-op."""
        result = await self.session.execute(
            select(NotificationRealtime).where(
                NotificationRealtime.id == notification_id,
                NotificationRealtime.destinataire_id == member_id,
            )
        )
        notification = result.scalar_one_or_none()
        if not notification:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")

        if not notification.lu:
            notification.lu = True
            notification.date_lecture = utcnow()
            await self.session.flush()
        return notification

    async def unread_count(self, member_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count(NotificationRealtime.id)).where(
                NotificationRealtime.destinataire_id == member_id,
                NotificationRealtime.lu.is_(False),
            )
        )
        return result.scalar() or 0

    async def list_for_member(
        self,
        member_id: UUID,
        page: int = 1,
        page_size: int = 20,
        type_notification: str | None = None,
        lu: bool | None = None,
    ) -> tuple[list[NotificationRealtime], int]:
        """Paginated notifications of a member, newest first."""
        conditions = [NotificationRealtime.destinataire_id == member_id]
        if type_notification:
            conditions.append(NotificationRealtime.type_notification == type_notification)
        if lu is not None:
            conditions.append(NotificationRealtime.lu.is_(lu))

        count_result = await self.session.execute(
            select(func.count(NotificationRealtime.id)).where(*conditions)
        )
        total = count_result.scalar() or 0

        result = await self.session.execute(
            select(NotificationRealtime)
            .where(*conditions)
            .order_by(NotificationRealtime.created_at.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        return list(result.scalars().all()), total

    async def purge_older_than(self, days: int | None = None) -> int:
        """Delete notifications older than ``days`` (default: retention setting)."""
        days = days if days is not None else self.settings.notification_retention_days
        cutoff = utcnow() - timedelta(days=days)
        result = await self.session.execute(
            delete(NotificationRealtime)
            .where(NotificationRealtime.created_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        purged = result.rowcount or 0
        if purged:
            logger.info(f"Purged {purged} notifications older than {days} days")
        return purged

    async def broadcast(self, payload: NotificationPayload) -> int:
        """Push to every connected session without persisting."""
        data = {
            "titre": payload.titre,
            "message": payload.message,
            "type_notification": payload.type_notification,
            "donnees_extra": payload.donnees_extra,
            "lien_action": payload.lien_action,
            "created_at": utcnow().isoformat(),
        }
        return await self.connections.broadcast(make_event(EVENT_NEW, data))
