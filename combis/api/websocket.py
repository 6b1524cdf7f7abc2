"""
WebSocket Route: real-time notification channel.

Connect to ``/ws`` and authenticate with a JSON message:
    {"event": "authenticate", "data": {"token": "<jwt>"}}

Incoming events once authenticated:
- mark_notification_read: {"notification_id": "..."}
- get_unread_count

Outgoing events:
- authenticated, authentication_error
- notifications_en_attente (unread backlog, newest first)
- nouvelle_notification
- unread_count
"""

import logging
from typing import Any
from uuid import UUID

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.database import async_session_factory, get_session_context
from ..core.dependencies import authenticate_token
from ..services.exceptions import NotificationNotFoundError
from ..services.realtime import (
    EVENT_AUTHENTICATED,
    EVENT_AUTHENTICATION_ERROR,
    EVENT_UNREAD_COUNT,
    ConnectionRegistry,
    RealtimeNotificationService,
    make_event,
    registry,
)

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])


class RealtimeSession:
    """One WebSocket connection, from handshake to disconnect."""

    def __init__(
        self,
        websocket: WebSocket,
        connections: ConnectionRegistry,
        session_factory: async_sessionmaker[AsyncSession],
    ):
        self.websocket = websocket
        self.connections = connections
        self.session_factory = session_factory
        self.member_id: UUID | None = None

    async def run(self) -> None:
        await self.websocket.accept()
        try:
            while True:
                try:
                    message = await self.websocket.receive_json()
                except ValueError:
                    # Malformed JSON
                    continue
                await self.handle(message)
        except WebSocketDisconnect:
            pass
        finally:
            if self.member_id is not None:
                await self.connections.unregister(self.member_id, self.websocket)

    async def handle(self, message: Any) -> None:
        if not isinstance(message, dict):
            return
        event = message.get("event")
        data = message.get("data") or {}
        if not isinstance(data, dict):
            logger.debug(f"[WS] Ignoring {event!r} with non-object data")
            return

        if event == "authenticate":
            token = data.get("token")
            await self.authenticate(token if isinstance(token, str) else None)
        elif self.member_id is None:
            await self.websocket.send_json(
                make_event(EVENT_AUTHENTICATION_ERROR, {"message": "Non authentifié"})
            )
        elif event == "mark_notification_read":
            await self.mark_read(data.get("notification_id"))
        elif event == "get_unread_count":
            await self.send_unread_count()
        else:
            logger.debug(f"[WS] Ignoring unknown event {event!r}")

    async def authenticate(self, token: str | None) -> None:
        async with get_session_context(self.session_factory) as session:
            current = await authenticate_token(session, token) if token else None
            if current is None:
                await self.websocket.send_json(
                    make_event(EVENT_AUTHENTICATION_ERROR, {"message": "Jeton invalide"})
                )
                return

            if self.member_id is not None and self.member_id != current.id:
                await self.connections.unregister(self.member_id, self.websocket)
            self.member_id = current.id
            await self.connections.register(current.id, self.websocket)
            await self.websocket.send_json(
                make_event(EVENT_AUTHENTICATED, {"membre_id": str(current.id)})
            )

            service = RealtimeNotificationService(session, self.connections)
            await service.flush_pending(current.id, self.websocket)

    async def mark_read(self, notification_id: str | None) -> None:
        try:
            parsed = UUID(str(notification_id))
        except ValueError:
            return

        async with get_session_context(self.session_factory) as session:
            service = RealtimeNotificationService(session, self.connections)
            try:
                await service.mark_read(parsed, self.member_id)
            except NotificationNotFoundError:
                logger.debug(f"[WS] Member {self.member_id} marked unknown notification {parsed}")
            count = await service.unread_count(self.member_id)
        await self.websocket.send_json(make_event(EVENT_UNREAD_COUNT, {"count": count}))

    async def send_unread_count(self) -> None:
        async with get_session_context(self.session_factory) as session:
            count = await RealtimeNotificationService(session, self.connections).unread_count(
                self.member_id
            )
        await self.websocket.send_json(make_event(EVENT_UNREAD_COUNT, {"count": count}))


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Real-time notifications for one member session."""
    await RealtimeSession(websocket, registry, async_session_factory).run()
