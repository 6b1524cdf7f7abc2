"""Domain exceptions shared by the Combis services."""


class CombisError(Exception):
    """Base exception for Combis domain operations."""
    pass


class ValidationError(CombisError):
    """Input rejected before anything was persisted."""
    pass


class InvalidPhoneError(ValidationError):
    """Phone number cannot be normalized to the local 9-digit form."""
    pass


class NotFoundError(CombisError):
    """Referenced entity does not exist."""
    pass


class VoteNotFoundError(NotFoundError):
    """Vote does not exist."""
    pass


class MemberNotFoundError(NotFoundError):
    """Member does not exist."""
    pass


class TemplateNotFoundError(NotFoundError):
    """SMS template does not exist or is inactive."""
    pass


class NotificationNotFoundError(NotFoundError):
    """Notification does not exist for this recipient."""
    pass


class InvalidObjectReferenceError(NotFoundError):
    """Vote creation without a usable object reference."""
    pass


class VoteClosedError(CombisError):
    """Vote is no longer open or its end date has passed."""
    pass


class DuplicateVoteError(CombisError):
    """Member already responded to this vote."""
    pass


class DeliveryError(CombisError):
    """Notification could not be delivered."""
    pass


class TransientStorageError(CombisError):
    """Storage failure during an atomic unit; the unit was rolled back."""
    pass


class ResultApplicationError(CombisError):
    """Approval side effect failed; the closing was rolled back."""
    pass


class InvalidStatusTransitionError(CombisError):
    """Status change would move backwards."""
    pass
