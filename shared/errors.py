"""Error taxonomy of the localrag core.

Every error carries the HTTP status the API boundary renders it with, so the
routers never have to translate exceptions by hand.
"""


class LocalRagError(Exception):
    """Base class for all errors surfaced by the core."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotInitializedError(LocalRagError):
    """The core was accessed before (or after) its lifecycle."""

    status_code = 503


class NotFoundError(LocalRagError):
    """A topic, document or topic name does not exist."""

    status_code = 404


class DuplicateNameError(LocalRagError):
    """A topic with the same (case-insensitive) name already exists."""

    status_code = 400


class ReadOnlyTopicError(LocalRagError):
    """A mutation was attempted on a topic of the common registry."""

    status_code = 400


class ModelMismatchError(LocalRagError):
    """Stored and active embedding models differ and the stored one is unavailable."""

    status_code = 500

    def __init__(self, message: str, stored_model: str, current_model: str) -> None:
        super().__init__(message)
        self.stored_model = stored_model
        self.current_model = current_model


class ModelSwitchError(LocalRagError):
    """Hot-switching the active embedding model to a topic's model failed."""

    status_code = 500


class VectorStoreUnavailableError(LocalRagError):
    """A topic has no vector store on disk yet."""

    status_code = 500


class ArchiveInvalidError(LocalRagError):
    """An import archive lacks a required entry or is unreadable."""

    status_code = 400


class UnreachableError(LocalRagError):
    """The core's HTTP API could not be reached (client side only)."""

    status_code = 503


class InvalidRequestError(LocalRagError):
    """A request lacks a required parameter or carries an invalid one."""

    status_code = 400


class BackendError(LocalRagError):
    """An external backend (the embedding runtime) answered with an error status."""

    status_code = 502
