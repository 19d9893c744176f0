"""Error taxonomy shared by ingestion, storage, tools and the API.

Every error carries a ``user_message`` that is safe to show to an end user.
The exception's ``str()`` may hold internal detail (SQL text, engine
messages) and is only ever written to the log.
"""


class DataChatError(Exception):
    """Base class for all expected failures.

    Args:
        detail: Internal description, logged but never shown to users.
        user_message: Override for the generic caller-facing message.
    """

    user_message = "The request could not be completed."

    def __init__(self, detail: str = "", *, user_message: str | None = None):
        super().__init__(detail or self.user_message)
        if user_message is not None:
            self.user_message = user_message

    @property
    def kind(self) -> str:
        return type(self).__name__


class ValidationError(DataChatError):
    """Input failed validation (bad arguments, non-read-only query, etc.)."""

    user_message = "The request was invalid."


class UnsupportedFormat(DataChatError):
    """Uploaded file extension is not one of csv, xlsx, xls."""

    user_message = "Unsupported file format. Please upload a CSV or Excel file."


class EmptyDataset(DataChatError):
    """Uploaded file produced zero data rows."""

    user_message = "The uploaded file contains no data rows."


class ScopeViolation(DataChatError):
    """A query referenced something other than the dataset's own table."""

    user_message = "Queries may only read from the current dataset."


class UnsupportedSyntax(DataChatError):
    """A query used a construct the storage engine does not support.

    The offending token is available as ``token``.
    """

    def __init__(self, token: str, detail: str = ""):
        self.token = token
        super().__init__(
            detail or f"unsupported construct: {token}",
            user_message=f"The query uses '{token}', which is not supported. Use SQLite-compatible syntax.",
        )


class NotFound(DataChatError):
    """A dataset (or its table) does not exist."""

    user_message = "The requested dataset was not found."


class EngineError(DataChatError):
    """The storage engine failed while executing a statement."""

    user_message = "The data store could not complete the operation."


class ReasoningCapabilityUnavailable(DataChatError):
    """The external reasoning provider failed or is not configured."""

    user_message = "The assistant is temporarily unavailable. Please try again later."


class Aborted(DataChatError):
    """A run ended before reaching a final answer (cycle budget or cancel)."""

    user_message = "The analysis was stopped before it could finish."
