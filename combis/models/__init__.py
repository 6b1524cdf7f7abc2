"""SQLAlchemy ORM Models for Combis."""

from .base import Base, JSONType, TimestampMixin, UUIDMixin, utcnow
from .models import (
    # Enums
    ClaimStatus,
    MemberStatus,
    ObjectType,
    ResponseChoice,
    SmsStatus,
    VoteStatus,
    VoteType,
    # Member directory
    Membre,
    MembreRole,
    Role,
    # Claims
    Sinistre,
    # Votes
    ReponseVote,
    Vote,
    # Notifications
    ModeleSMS,
    NotificationRealtime,
    NotificationSMS,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "JSONType",
    "utcnow",
    # Enums
    "MemberStatus",
    "ClaimStatus",
    "ObjectType",
    "VoteType",
    "VoteStatus",
    "ResponseChoice",
    "SmsStatus",
    # Member directory
    "Membre",
    "Role",
    "MembreRole",
    # Claims
    "Sinistre",
    # Votes
    "Vote",
    "ReponseVote",
    # Notifications
    "NotificationRealtime",
    "NotificationSMS",
    "ModeleSMS",
]
