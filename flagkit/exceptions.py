"""Domain errors raised by the store and write validation.

Decision engines never raise these for well-formed input. Every error
carries the HTTP status the API layer maps it to.
"""


class FlagkitError(Exception):
    """Base class for all flagkit errors."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFoundError(FlagkitError):
    """No active version exists for the requested key."""

    status_code = 404


class ValidationError(FlagkitError):
    """A write would persist an entity that breaks an invariant."""

    status_code = 400


class InvalidTransitionError(FlagkitError):
    """An experiment lifecycle change outside the allowed state graph."""

    status_code = 409


class ConflictError(FlagkitError):
    """A concurrent write won the race; retry against fresh state."""

    status_code = 409
