"""
Error taxonomy for the coordination engine.

Conflicts are expected under concurrent load and are retryable; precondition
errors are client mistakes. Both are returned to callers inside a Result.
IntegrityViolation and botocore ClientError (infrastructure) propagate.
"""
import functools
from typing import Any, Callable, Dict, Optional

from .logging import logger


class ErrorKind:
    CONFLICT = 'conflict'
    PRECONDITION = 'precondition'


class CoordinationError(Exception):
    """Base class for expected, caller-facing failures."""

    code = 'CoordinationError'
    kind = ErrorKind.PRECONDITION
    status_code = 400
    retryable = False
    default_message = 'Request cannot be completed'

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details = details
        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        body = {
            'error': self.code,
            'kind': self.kind,
            'message': self.message,
            'retryable': self.retryable,
        }
        body.update(self.details)
        return body


class ConflictError(CoordinationError):
    code = 'Conflict'
    kind = ErrorKind.CONFLICT
    status_code = 409
    retryable = True
    default_message = 'Request conflicted with a concurrent change, refresh and retry'


class ActiveAssignmentExists(ConflictError):
    code = 'ActiveAssignmentExists'
    default_message = 'You already have an active assignment, release it first'

    def __init__(self, assignment_id: str, message: Optional[str] = None, **details: Any):
        super().__init__(message, assignmentId=assignment_id, **details)
        self.assignment_id = assignment_id


class ItemNoLongerAvailable(ConflictError):
    code = 'ItemNoLongerAvailable'
    default_message = 'This item is no longer available, refresh the list and pick another'


class AssignmentAlreadyClosed(ConflictError):
    code = 'AssignmentAlreadyClosed'
    default_message = 'This assignment is no longer active, claim the item again to continue'


class NoWorkAvailable(ConflictError):
    code = 'NoWorkAvailable'
    default_message = 'No items are available right now, try again later'


class ConcurrentModification(ConflictError):
    code = 'ConcurrentModification'
    default_message = 'Another request changed this record at the same time, retry'


class PreconditionError(CoordinationError):
    code = 'PreconditionFailed'


class ValidationError(PreconditionError):
    code = 'ValidationError'
    default_message = 'Invalid request'


class Forbidden(PreconditionError):
    code = 'Forbidden'
    status_code = 403
    default_message = 'You are not allowed to perform this action'


class NotFound(PreconditionError):
    code = 'NotFound'
    status_code = 404
    default_message = 'Not found'


class ItemNotClaimable(PreconditionError):
    code = 'ItemNotClaimable'
    default_message = 'This item is not open for transcription'


class SubmissionNotPending(PreconditionError):
    code = 'SubmissionNotPending'
    default_message = 'This submission is not awaiting review'


class PaymentNotPending(PreconditionError):
    code = 'PaymentNotPending'
    default_message = 'This payment has already been settled'


class IntegrityViolation(Exception):
    """Datastore state contradicts an invariant. Always a defect."""


class Result:
    """Outcome of a write operation: a value or a CoordinationError."""

    __slots__ = ('value', 'error')

    def __init__(self, value: Any = None, error: Optional[CoordinationError] = None):
        self.value = value
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Any) -> 'Result':
        return cls(value=value)

    @classmethod
    def failure(cls, error: CoordinationError) -> 'Result':
        return cls(error=error)

    def __repr__(self) -> str:
        if self.ok:
            return f"Result.success({self.value!r})"
        return f"Result.failure({self.error.code}: {self.error.message})"


def returns_result(func: Callable) -> Callable:
    """
    Wrap a write operation so expected errors come back as Result.failure.

    The wrapped function returns its value on success and raises
    CoordinationError subclasses for expected failures.
    """

    @functools.wraps(func)
    def wrapper(*args, **kwargs) -> Result:
        try:
            return Result.success(func(*args, **kwargs))
        except ConflictError as e:
            logger.info(f"{func.__name__}: {e.code} ({e.message})")
            return Result.failure(e)
        except PreconditionError as e:
            logger.info(f"{func.__name__} rejected: {e.code} ({e.message})")
            return Result.failure(e)
        except IntegrityViolation as e:
            logger.critical(f"{func.__name__}: integrity violation: {e}")
            raise

    return wrapper
