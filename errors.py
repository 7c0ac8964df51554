class IdentityError(Exception):
    """Base class for identity reconciliation failures."""


class ValidationError(IdentityError, ValueError):
    pass


class StoreUnavailable(IdentityError):
    """The contact database could not be opened or locked."""


class InvariantViolation(IdentityError):
    """A write would break the primary/secondary linking rules."""
