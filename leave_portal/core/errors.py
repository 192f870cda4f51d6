class LeavePortalError(Exception):
    """Base class for errors raised by the leave workflow."""


class ValidationError(LeavePortalError):
    """Input rejected before anything was written (missing remarks, bad dates...)."""


class InvalidStateError(LeavePortalError):
    """Transition attempted on a request that is not in the required state."""


class StaleStateError(InvalidStateError):
    """Conditional write lost: someone else changed the request first."""

    def __init__(self, request_id: str) -> None:
        super().__init__("request was already processed by someone else")
        self.request_id = request_id


class PersistenceError(LeavePortalError):
    """Underlying document store failure (network, permission, quota, timeout)."""


class NotFoundError(LeavePortalError):
    pass


class AuthorizationError(LeavePortalError):
    pass
