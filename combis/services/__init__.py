"""Business logic services for Combis."""

from .exceptions import (
    CombisError,
    DeliveryError,
    DuplicateVoteError,
    InvalidObjectReferenceError,
    InvalidPhoneError,
    InvalidStatusTransitionError,
    MemberNotFoundError,
    NotFoundError,
    NotificationNotFoundError,
    ResultApplicationError,
    TemplateNotFoundError,
    TransientStorageError,
    ValidationError,
    VoteClosedError,
    VoteNotFoundError,
)
from .members import MemberDirectory, MemberInfo
from .notification_gateway import (
    NotificationGateway,
    VoteRef,
    seed_default_templates,
)
from .realtime import (
    ConnectionRegistry,
    NotificationPayload,
    RealtimeNotificationService,
    registry,
)
from .result_applier import ResultApplier
from .sms_service import (
    BulkSmsResult,
    ProviderResult,
    SmsProvider,
    SmsRecipient,
    SmsSendResult,
    SmsService,
    get_provider,
    normalize_phone,
    render_template,
)
from .vote_engine import (
    ClosedVoteResult,
    CreateVoteInput,
    CreatedVote,
    Tally,
    VoteDetails,
    VoteEngine,
    VoteSummary,
    compute_quorum,
    decide_expired_outcome,
    decide_outcome,
    percentage,
)

__all__ = [
    # Exceptions
    "CombisError",
    "ValidationError",
    "InvalidPhoneError",
    "NotFoundError",
    "VoteNotFoundError",
    "MemberNotFoundError",
    "TemplateNotFoundError",
    "NotificationNotFoundError",
    "InvalidObjectReferenceError",
    "VoteClosedError",
    "DuplicateVoteError",
    "DeliveryError",
    "TransientStorageError",
    "ResultApplicationError",
    "InvalidStatusTransitionError",
    # Member directory
    "MemberDirectory",
    "MemberInfo",
    # Vote engine
    "VoteEngine",
    "CreateVoteInput",
    "CreatedVote",
    "ClosedVoteResult",
    "VoteSummary",
    "VoteDetails",
    "Tally",
    "compute_quorum",
    "decide_outcome",
    "decide_expired_outcome",
    "percentage",
    "ResultApplier",
    # Notifications
    "NotificationGateway",
    "VoteRef",
    "seed_default_templates",
    "ConnectionRegistry",
    "NotificationPayload",
    "RealtimeNotificationService",
    "registry",
    "SmsService",
    "SmsProvider",
    "SmsRecipient",
    "SmsSendResult",
    "BulkSmsResult",
    "ProviderResult",
    "get_provider",
    "normalize_phone",
    "render_template",
]
