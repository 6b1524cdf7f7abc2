"""Combis API Schemas.

Schemas are organized by domain:
- base: Common types, pagination, errors
- votes: Votes, responses, statistics
- notifications: Push notifications, SMS, templates
"""

from .base import (
    CombisBaseModel,
    ErrorResponse,
    MessageResponse,
    PaginatedResponse,
)
from .notifications import (
    BulkSmsRecipient,
    BulkSmsRequest,
    BulkSmsResponse,
    BulkSmsResultSchema,
    DeliveryReport,
    NotificationResponse,
    NotificationSendRequest,
    NotificationSendResponse,
    SmsResponse,
    SmsSendRequest,
    SmsSendResponse,
    SmsStatisticsResponse,
    SmsTemplateResponse,
    SmsTemplateUpsert,
    UnreadCountResponse,
)
from .votes import (
    ClosedVoteSchema,
    ExpiredVotesResponse,
    ResponseViewSchema,
    VoteCast,
    VoteCastResponse,
    VoteCloseResponse,
    VoteConfigResponse,
    VoteCreate,
    VoteCreatedResponse,
    VoteDetailsResponse,
    VoteOption,
    VoteResponse,
    VoteStatisticsResponse,
    VoteSummaryResponse,
)

__all__ = [
    # Base
    "CombisBaseModel",
    "MessageResponse",
    "PaginatedResponse",
    "ErrorResponse",
    # Votes
    "VoteCreate",
    "VoteCast",
    "VoteResponse",
    "VoteCreatedResponse",
    "VoteSummaryResponse",
    "VoteDetailsResponse",
    "VoteCastResponse",
    "VoteCloseResponse",
    "ResponseViewSchema",
    "ClosedVoteSchema",
    "ExpiredVotesResponse",
    "VoteStatisticsResponse",
    "VoteOption",
    "VoteConfigResponse",
    # Notifications
    "NotificationResponse",
    "UnreadCountResponse",
    "NotificationSendRequest",
    "NotificationSendResponse",
    "SmsResponse",
    "SmsSendRequest",
    "SmsSendResponse",
    "BulkSmsRecipient",
    "BulkSmsRequest",
    "BulkSmsResultSchema",
    "BulkSmsResponse",
    "SmsTemplateUpsert",
    "SmsTemplateResponse",
    "SmsStatisticsResponse",
    "DeliveryReport",
]
