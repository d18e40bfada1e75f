class WorkflowError(Exception):
    """Base class for everything the workflow engine raises."""


class InputValidationError(WorkflowError, ValueError):
    """The run was rejected before any stage started."""


class StageError(WorkflowError):
    """A stage could not produce its output. Aborts the run."""

    def __init__(self, message: str, stage_id: str | None = None):
        super().__init__(message)
        self.stage_id = stage_id


class NotAuthenticatedError(StageError):
    pass


class MissingContentError(StageError):
    pass


class PublishError(StageError):
    pass


class AuthenticationError(WorkflowError):
    pass


class AuthenticationTimeout(AuthenticationError):
    pass
