"""Error taxonomy shared by the stores, the memory backend and the agent loop."""


class JournalError(Exception):
    """Base class for all journal companion errors."""


class NotFoundError(JournalError):
    """A conversation, thread, assistant or memory is absent for the caller."""


class ConversationNotFoundError(NotFoundError):
    """The conversation does not exist or is not owned by the caller."""

    def __init__(self, conversation_id: str = "") -> None:
        self.conversation_id = conversation_id
        super().__init__("Conversation not found")


class FailedPreconditionError(JournalError):
    """The backend was used before its assistant was initialized."""


class BackendError(JournalError):
    """A memory backend call failed (network error or non-success response)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class BackendNotFoundError(BackendError, NotFoundError):
    """The backend reported that the requested resource does not exist."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status_code=404)
