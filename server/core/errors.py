class MeetingServiceError(Exception):
    """Base class for errors surfaced to API callers with a readable message."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class InvalidInputError(MeetingServiceError):
    """Rejected input: empty fields, bad images, or images without text."""

    status_code = 400


class NotFoundError(MeetingServiceError):
    status_code = 404


class ProviderError(MeetingServiceError):
    """A remote AI capability failed or returned something unusable."""

    status_code = 502


class PersistenceError(MeetingServiceError):
    """A database write failed or the database is not available."""

    status_code = 503
