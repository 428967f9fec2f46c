"""Identity reconciliation errors."""


class IdentityError(Exception):
    """Base class for identity reconciliation failures."""


class InvalidIdentityRequest(IdentityError):
    """Raised when a request carries neither an email nor a phone number."""


class IdentityConsistencyError(IdentityError):
    """Raised when stored contacts violate the cluster invariants.

    Seeing this means some other writer broke the one-primary-per-cluster
    rule; it is never the caller's fault.
    """


class IdentityLockTimeout(IdentityError):
    """Raised when identifier locks could not be acquired in time."""

    def __init__(self, keys: list[str], timeout: float):
        self.keys = keys
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for locks on {keys}")
