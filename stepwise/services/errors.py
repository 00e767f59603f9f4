class StepwiseError(Exception):
    """Base class for errors raised by the gating engine and admin services."""

    status_code = 400

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class NotFound(StepwiseError):
    status_code = 404


class UnauthorizedTransition(StepwiseError):
    """The record's current status does not allow the requested operation."""

    status_code = 403


class AnswerValidationError(StepwiseError):
    """A submitted value does not satisfy a declared requirement.

    ``requirement`` names what was unmet, e.g. ``no_file``, ``no_text``,
    ``empty`` or ``comment``.
    """

    status_code = 422

    def __init__(self, requirement: str, detail: str):
        super().__init__(detail)
        self.requirement = requirement


class StorageFailure(StepwiseError):
    """The artifact store could not take an upload. Safe to retry."""

    status_code = 503


class IntegrityViolation(StepwiseError):
    status_code = 409


class AlreadyEnrolled(StepwiseError):
    status_code = 400
