"""
MarketDAO Exceptions

Every error aborts the whole call that raised it; the facade reverts any
state touched before the raise.
"""


class MarketDAOError(Exception):
    """Base exception for MarketDAO."""
    pass


class ValidationError(MarketDAOError):
    """Malformed input (non-positive amount, empty description, ...)."""
    pass


class ProposalNotFound(ValidationError):
    """No proposal with the given id."""
    pass


class PurchasesDisabledError(ValidationError):
    """Direct token purchase is disabled (token price is zero)."""
    pass


class InsufficientBalance(MarketDAOError):
    """Balance too low for the requested amount."""
    pass


class InsufficientVestedBalance(InsufficientBalance):
    """Vested (usable) balance too low; unvested tokens cannot move or vote."""
    pass


class Unauthorized(MarketDAOError):
    """Caller may not perform this action."""
    pass


class TooManySchedules(MarketDAOError):
    """Holder already has the maximum number of distinct unlock heights."""
    pass


class AlreadyClaimed(MarketDAOError):
    """Voting tokens for this election were already claimed by the holder."""
    pass


class NotYetElection(MarketDAOError):
    """Operation requires a triggered election."""
    pass


class ElectionClosed(MarketDAOError):
    """Election has been resolved or its duration has elapsed."""
    pass


class ProposalExpired(MarketDAOError):
    """Proposal exceeded its maximum age without triggering an election."""
    pass


class ProposalLifecycleError(MarketDAOError):
    """Operation is not valid in the proposal's current state."""
    pass


class FundsUnavailable(MarketDAOError):
    """Treasury does not hold enough unlocked funds."""
    pass


class ExecutionFailed(MarketDAOError):
    """A passed proposal's payload could not be carried out."""
    pass


class ReentrantCallError(MarketDAOError):
    """A guarded section was entered again before it completed."""
    pass


class ConfigurationError(MarketDAOError):
    """Configuration error."""
    pass
