"""Error taxonomy shared by the actor, the workflow engine and the API.

Every user-visible failure carries a stable machine-readable ``code`` and a
human-readable message. Internal causes are logged, never exposed beyond
this taxonomy.
"""

from typing import Optional


class AssistantError(Exception):
    """Base class for all assistant failures"""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class ValidationError(AssistantError):
    """A required field is missing or malformed"""

    code = "VALIDATION_ERROR"


class InvalidMessageError(AssistantError):
    """An inbound frame is not a JSON object with a known type"""

    code = "INVALID_MESSAGE"


class NotFoundError(AssistantError):
    """A task or user does not exist"""

    code = "NOT_FOUND"


class SessionLostError(AssistantError):
    """Session identity could not be recovered for a transport handle"""

    code = "SESSION_LOST"


class ConflictError(AssistantError):
    """A connection claimed a different user than the actor serves"""

    code = "CONFLICT"


class TransientBackendError(AssistantError):
    """A backend call failed in a way that may succeed on retry"""

    code = "BACKEND_UNAVAILABLE"


class BackendRateLimitedError(TransientBackendError):
    """An upstream service rejected the call for exceeding its rate limit"""


class CompletionTimeoutError(TransientBackendError):
    """The language model did not answer within the configured timeout"""

    code = "COMPLETION_TIMEOUT"


class FatalWorkflowError(AssistantError):
    """A workflow run cannot proceed and must not be retried"""

    code = "WORKFLOW_FAILED"


class StepRetriesExhaustedError(FatalWorkflowError):
    """A step kept failing transiently past its retry budget"""

    code = "STEP_RETRIES_EXHAUSTED"
