"""Exception taxonomy for the exam session engine."""


class ExamError(Exception):
    """Base class for every error raised by the exam engine."""


class PreconditionError(ExamError):
    """An exam cannot start (or continue) because a precondition does not hold."""


class EmptyPoolError(PreconditionError):
    """The question pool for a class/subject is empty."""


class AlreadySubmittedError(PreconditionError):
    """The student already has a submitted attempt."""


class ValidationError(ExamError):
    """Rejected input; session state is left unchanged."""


class SessionClosedError(ExamError):
    """A mutating call arrived after the session left the Active state."""


class PersistenceError(ExamError):
    """A collaborator write failed. ``result`` holds the retained Result, if any."""

    def __init__(self, message: str, result=None):
        super().__init__(message)
        self.result = result
